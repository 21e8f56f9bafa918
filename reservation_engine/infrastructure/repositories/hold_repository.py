# reservation_engine/infrastructure/repositories/hold_repository.py

from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from reservation_engine.infrastructure.db.models import Hold
from reservation_engine.domain.exceptions import ConcurrencyConflictError
from reservation_engine.domain.state_machine import (
    CAPACITY_STATUSES,
    HoldStateMachine,
    HoldStatus,
)


class HoldRepository:
    """
    Hold ledger. Append-mostly: rows are inserted ACTIVE and afterwards
    only their status (and finalized_at) ever changes.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        hold_id: str,
        for_update: bool = False,
    ) -> Hold | None:

        stmt = select(Hold).where(Hold.id == hold_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def insert(self, hold: Hold) -> Hold:
        self.db.add(hold)
        self.db.flush()
        return hold

    def update_state(
        self,
        hold: Hold,
        new_status: HoldStatus,
        now: datetime,
    ) -> Hold:
        """
        Moves a hold along the state machine with a compare-and-set on
        its current status, so two writers can never both finalize it.
        """

        current = hold.status
        HoldStateMachine.validate_transition(current, new_status)

        stmt = (
            update(Hold)
            .where(Hold.id == hold.id)
            .where(Hold.status == current)
            .values(status=new_status, finalized_at=now)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                f"Hold {hold.id} left {current.value} concurrently"
            )

        self.db.refresh(hold)
        return hold

    def find_active_by_unit(self, unit_id: str) -> list[Hold]:
        stmt = (
            select(Hold)
            .where(Hold.unit_id == unit_id)
            .where(Hold.status == HoldStatus.ACTIVE)
        )
        return list(self.db.execute(stmt).scalars().all())

    def find_live_by_units(self, unit_ids: Iterable[str]) -> list[Hold]:
        """ACTIVE or CONFIRMED holds for the given units; expiry is judged by the caller."""

        unit_ids = list(unit_ids)
        if not unit_ids:
            return []

        stmt = (
            select(Hold)
            .where(Hold.unit_id.in_(unit_ids))
            .where(Hold.status.in_(CAPACITY_STATUSES))
        )
        return list(self.db.execute(stmt).scalars().all())

    def find_by_owner(
        self,
        owner_id: str,
        active_only: bool = False,
    ) -> list[Hold]:

        stmt = select(Hold).where(Hold.owner_id == owner_id)
        if active_only:
            stmt = stmt.where(Hold.status == HoldStatus.ACTIVE)
        stmt = stmt.order_by(Hold.created_at)
        return list(self.db.execute(stmt).scalars().all())

    def find_expired(self, now: datetime) -> list[Hold]:
        stmt = (
            select(Hold)
            .where(Hold.status == HoldStatus.ACTIVE)
            .where(Hold.expires_at <= now)
            .order_by(Hold.expires_at)
        )
        return list(self.db.execute(stmt).scalars().all())
