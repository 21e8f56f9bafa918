# reservation_engine/infrastructure/repositories/catalog_repository.py

from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy import select, update

from reservation_engine.infrastructure.db.models import Event, SellableUnit
from reservation_engine.domain.catalog import TierSummary, summarize_catalog, tier_slug
from reservation_engine.domain.exceptions import (
    ConcurrencyConflictError,
    NotFoundError,
)


class CatalogRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_event(self, event_id: str) -> Event:
        stmt = select(Event).where(Event.id == event_id)
        event = self.db.execute(stmt).scalar_one_or_none()

        if not event:
            raise NotFoundError(f"Event {event_id} not found")

        return event

    def list_event_units(self, event_id: str) -> list[SellableUnit]:
        self.get_event(event_id)
        stmt = (
            select(SellableUnit)
            .where(SellableUnit.event_id == event_id)
            .order_by(SellableUnit.section, SellableUnit.row, SellableUnit.seat_label)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_tiers(self, event_id: str) -> list[TierSummary]:
        return summarize_catalog(self.list_event_units(event_id))

    def list_units(self, event_id: str, tier_id: str) -> list[SellableUnit]:
        self.get_event(event_id)
        stmt = (
            select(SellableUnit)
            .where(SellableUnit.event_id == event_id)
            .where(SellableUnit.tier_id == tier_id)
            .order_by(SellableUnit.section, SellableUnit.row, SellableUnit.seat_label)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_unit(self, unit_id: str) -> SellableUnit:
        stmt = select(SellableUnit).where(SellableUnit.id == unit_id)
        unit = self.db.execute(stmt).scalar_one_or_none()

        if not unit:
            raise NotFoundError(f"Unit {unit_id} not found")

        return unit

    def lock_unit(self, unit_id: str) -> SellableUnit:
        """
        SELECT ... FOR UPDATE
        Serialises hold creation per unit across processes.
        """

        stmt = (
            select(SellableUnit)
            .where(SellableUnit.id == unit_id)
            .with_for_update()
        )

        unit = self.db.execute(stmt).scalar_one_or_none()

        if not unit:
            raise NotFoundError(f"Unit {unit_id} not found")

        return unit

    def claim_version(self, unit: SellableUnit) -> None:
        """
        Compare-and-set on the unit's version. Raises
        ConcurrencyConflictError when another writer got there first.
        """

        expected = unit.version
        stmt = (
            update(SellableUnit)
            .where(SellableUnit.id == unit.id)
            .where(SellableUnit.version == expected)
            .values(version=expected + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                f"Unit {unit.id} changed while reserving (version {expected})"
            )

        set_committed_value(unit, "version", expected + 1)

    def create_event(
        self,
        title: str,
        venue: str,
        starts_at: datetime,
        units: Iterable[dict],
    ) -> tuple[Event, list[SellableUnit]]:
        event = Event(title=title, venue=venue, starts_at=starts_at)
        self.db.add(event)
        self.db.flush()

        created = []
        for item in units:
            unit = SellableUnit(
                event_id=event.id,
                tier_name=item["tier_name"],
                tier_id=tier_slug(item["tier_name"]),
                section=item.get("section") or "General Admission",
                row=item.get("row"),
                seat_label=item.get("seat_label"),
                total_quantity=item["total_quantity"],
                unit_price=item["unit_price"],
                currency=item.get("currency", "USD"),
                version=0,
            )
            self.db.add(unit)
            created.append(unit)

        self.db.flush()
        return event, created
