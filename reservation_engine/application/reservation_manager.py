import logging
from datetime import datetime
from typing import Callable, Iterable, Sequence
from uuid import uuid4

from sqlalchemy.exc import OperationalError, TimeoutError as SQLAlchemyTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from reservation_engine.config import ReservationSettings
from reservation_engine.domain.availability import (
    TierAvailability,
    UnitAvailability,
    available_quantity,
    summarize_tier,
    unit_availability,
)
from reservation_engine.domain.clock import Clock, as_utc, utc_now
from reservation_engine.domain.exceptions import (
    AlreadyFinalizedError,
    ConcurrencyConflictError,
    ErrorKind,
    ForbiddenError,
    HoldExpiredError,
    InsufficientAvailabilityError,
    InvalidInputError,
    NotFoundError,
    ReservationEngineError,
)
from reservation_engine.domain.results import HoldResult
from reservation_engine.domain.state_machine import HoldStatus
from reservation_engine.application.unit_locks import UnitLockRegistry
from reservation_engine.infrastructure.db.models import Hold
from reservation_engine.infrastructure.db.session import get_db_session
from reservation_engine.infrastructure.repositories.catalog_repository import CatalogRepository
from reservation_engine.infrastructure.repositories.hold_repository import HoldRepository


logger = logging.getLogger(__name__)


def _is_storage_degraded(exc: Exception) -> bool:
    return isinstance(exc, (OperationalError, SQLAlchemyTimeoutError))


class ReservationManager:
    """
    Sole writer of the hold ledger.

    Commands (request/confirm/release) return a HoldResult; expected
    business failures never raise. Every command runs in its own
    transaction, so a failure leaves no partial write behind.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: ReservationSettings,
        clock: Clock = utc_now,
        unit_locks: UnitLockRegistry | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock
        self.unit_locks = unit_locks or UnitLockRegistry()

    # -----------------------------
    # Commands
    # -----------------------------
    def request_hold(self, unit_id: str, owner_id: str, quantity: int) -> HoldResult:
        if quantity < 1:
            return HoldResult.failure(
                ErrorKind.INVALID_INPUT,
                "Quantity must be at least 1",
                unit_id=unit_id,
            )

        with self.unit_locks.acquire([unit_id]):
            result = self._execute(
                "request_hold",
                lambda db: self._reserve(db, owner_id, [(unit_id, quantity)], batch_id=None),
            )

        if result.ok:
            logger.info(
                "Hold created. hold_id=%s unit_id=%s owner_id=%s quantity=%s",
                result.hold.id,
                unit_id,
                owner_id,
                quantity,
            )
        return result

    def request_holds(
        self,
        owner_id: str,
        selections: Sequence[tuple[str, int]],
    ) -> HoldResult:
        """
        All-or-nothing hold across several units. Either every selection
        is held under one batch id and one expiry, or nothing is written.
        """
        try:
            self._validate_selections(selections)
        except InvalidInputError as exc:
            return HoldResult.from_exception(exc)

        unit_ids = [unit_id for unit_id, _ in selections]
        batch_id = str(uuid4())
        with self.unit_locks.acquire(unit_ids):
            result = self._execute(
                "request_holds",
                lambda db: self._reserve(db, owner_id, selections, batch_id=batch_id),
            )

        if result.ok:
            logger.info(
                "Batch hold created. batch_id=%s owner_id=%s units=%s",
                batch_id,
                owner_id,
                len(result.holds),
            )
        return result

    def confirm_hold(self, hold_id: str, owner_id: str) -> HoldResult:
        def work(db: Session) -> HoldResult:
            now = self.clock()
            ledger = HoldRepository(db)
            hold = self._owned_hold(ledger, hold_id, owner_id)

            if hold.status == HoldStatus.EXPIRED:
                raise HoldExpiredError(f"Hold {hold_id} expired before it was confirmed")
            if hold.status != HoldStatus.ACTIVE:
                raise AlreadyFinalizedError(
                    f"Hold {hold_id} is already {hold.status.value}"
                )

            if as_utc(hold.expires_at) <= as_utc(now):
                ledger.update_state(hold, HoldStatus.EXPIRED, now)
                return HoldResult(
                    holds=[hold],
                    error=ErrorKind.EXPIRED,
                    message=f"Hold {hold_id} expired before it was confirmed",
                )

            ledger.update_state(hold, HoldStatus.CONFIRMED, now)
            return HoldResult.success(hold)

        result = self._execute("confirm_hold", work)
        if result.ok:
            logger.info("Hold confirmed. hold_id=%s owner_id=%s", hold_id, owner_id)
        return result

    def release_hold(self, hold_id: str, owner_id: str) -> HoldResult:
        """
        Releasing a hold that already ended as RELEASED or EXPIRED is a
        successful no-op: a cancel can race the reaper and lose.
        """

        def work(db: Session) -> HoldResult:
            now = self.clock()
            ledger = HoldRepository(db)
            hold = self._owned_hold(ledger, hold_id, owner_id)

            if hold.status in (HoldStatus.RELEASED, HoldStatus.EXPIRED):
                return HoldResult.success(hold, message="Hold already ended")
            if hold.status == HoldStatus.CONFIRMED:
                raise AlreadyFinalizedError(f"Hold {hold_id} is already CONFIRMED")

            self._finish(ledger, hold, now)
            return HoldResult.success(hold)

        result = self._execute("release_hold", work)
        if result.ok:
            logger.info(
                "Hold released. hold_id=%s owner_id=%s status=%s",
                hold_id,
                owner_id,
                result.hold.status.value,
            )
        return result

    def release_owner_holds(
        self,
        owner_id: str,
        hold_ids: Iterable[str] | None = None,
    ) -> HoldResult:
        """
        Ends every ACTIVE hold of an owner, or only the listed ones.
        Ids that are unknown or belong to someone else are skipped.
        """
        wanted = set(hold_ids) if hold_ids else None

        def work(db: Session) -> HoldResult:
            now = self.clock()
            ledger = HoldRepository(db)
            finished = []
            for hold in ledger.find_by_owner(owner_id, active_only=True):
                if wanted is not None and hold.id not in wanted:
                    continue
                finished.append(self._finish(ledger, hold, now))
            return HoldResult.success(
                *finished,
                message=f"Released {len(finished)} hold(s)",
            )

        result = self._execute("release_owner_holds", work)
        if result.ok:
            logger.info("Owner holds released. owner_id=%s count=%s", owner_id, len(result.holds))
        return result

    def reap_expired(self, now: datetime | None = None) -> int:
        """
        Bookkeeping sweep: flips logically dead ACTIVE rows to EXPIRED.
        Capacity decisions never depend on this having run.
        """
        now = now or self.clock()
        reaped = 0
        with get_db_session(self.session_factory) as db:
            ledger = HoldRepository(db)
            for hold in ledger.find_expired(now):
                try:
                    ledger.update_state(hold, HoldStatus.EXPIRED, now)
                except ConcurrencyConflictError:
                    logger.debug("Hold %s finalized elsewhere during sweep", hold.id)
                    continue
                reaped += 1

        if reaped:
            logger.info("Reaped %s expired hold(s)", reaped)
        return reaped

    # -----------------------------
    # Queries
    # -----------------------------
    def get_unit_availability(self, unit_id: str) -> UnitAvailability:
        with get_db_session(self.session_factory) as db:
            unit = CatalogRepository(db).get_unit(unit_id)
            holds = HoldRepository(db).find_live_by_units([unit.id])
            return unit_availability(unit, holds, self.clock())

    def get_tier_availability(self, event_id: str, tier_id: str) -> TierAvailability:
        with get_db_session(self.session_factory) as db:
            units = CatalogRepository(db).list_units(event_id, tier_id)
            if not units:
                raise NotFoundError(f"Tier {tier_id} not found for event {event_id}")
            holds = HoldRepository(db).find_live_by_units(unit.id for unit in units)
            return summarize_tier(units, holds, self.clock())

    def list_owner_holds(self, owner_id: str, active_only: bool = False) -> list[Hold]:
        with get_db_session(self.session_factory) as db:
            return HoldRepository(db).find_by_owner(owner_id, active_only=active_only)

    # -----------------------------
    # Internals
    # -----------------------------
    def _execute(self, operation: str, work: Callable[[Session], HoldResult]) -> HoldResult:
        max_attempts = max(1, self.settings.conflict_max_retries)

        for attempt in range(1, max_attempts + 1):
            try:
                with get_db_session(self.session_factory) as db:
                    return work(db)
            except ConcurrencyConflictError as exc:
                logger.warning(
                    "Write conflict in %s (attempt %s/%s): %s",
                    operation,
                    attempt,
                    max_attempts,
                    exc,
                )
            except ReservationEngineError as exc:
                return HoldResult.from_exception(exc)
            except Exception as exc:
                if not _is_storage_degraded(exc):
                    raise
                logger.warning("Storage unavailable during %s: %s", operation, exc)
                return HoldResult.failure(
                    ErrorKind.STORAGE_UNAVAILABLE,
                    "Hold storage is unavailable. Please retry.",
                )

        return HoldResult.failure(
            ErrorKind.STORAGE_UNAVAILABLE,
            f"Gave up on {operation} after {max_attempts} conflicting attempts",
        )

    def _reserve(
        self,
        db: Session,
        owner_id: str,
        selections: Sequence[tuple[str, int]],
        batch_id: str | None,
    ) -> HoldResult:
        now = self.clock()
        catalog = CatalogRepository(db)
        ledger = HoldRepository(db)

        units = {}
        for unit_id in sorted(unit_id for unit_id, _ in selections):
            units[unit_id] = catalog.lock_unit(unit_id)

        live = ledger.find_live_by_units(units)
        by_unit: dict[str, list[Hold]] = {}
        for hold in live:
            by_unit.setdefault(hold.unit_id, []).append(hold)

        for unit_id, quantity in selections:
            available = available_quantity(units[unit_id], by_unit.get(unit_id, []), now)
            if quantity > available:
                raise InsufficientAvailabilityError(unit_id, quantity, available)

        for unit_id in sorted(units):
            catalog.claim_version(units[unit_id])

        expires_at = now + self.settings.hold_duration
        holds = [
            ledger.insert(
                Hold(
                    unit_id=unit_id,
                    owner_id=owner_id,
                    quantity=quantity,
                    status=HoldStatus.ACTIVE,
                    batch_id=batch_id,
                    created_at=now,
                    expires_at=expires_at,
                    finalized_at=None,
                )
            )
            for unit_id, quantity in selections
        ]
        return HoldResult.success(*holds)

    def _validate_selections(self, selections: Sequence[tuple[str, int]]) -> None:
        if not selections:
            raise InvalidInputError("Seat selections are required")
        if len(selections) > self.settings.max_selections:
            raise InvalidInputError(
                f"At most {self.settings.max_selections} selections per request"
            )

        seen = set()
        for unit_id, quantity in selections:
            if quantity < 1:
                raise InvalidInputError(f"Quantity for unit {unit_id} must be at least 1")
            if unit_id in seen:
                raise InvalidInputError(f"Unit {unit_id} selected more than once")
            seen.add(unit_id)

    @staticmethod
    def _owned_hold(ledger: HoldRepository, hold_id: str, owner_id: str) -> Hold:
        hold = ledger.get_by_id(hold_id, for_update=True)
        if not hold:
            raise NotFoundError(f"Hold {hold_id} not found")
        if hold.owner_id != owner_id:
            raise ForbiddenError(f"Hold {hold_id} belongs to another owner")
        return hold

    @staticmethod
    def _finish(ledger: HoldRepository, hold: Hold, now: datetime) -> Hold:
        # An ACTIVE hold past its TTL already ended as EXPIRED, logically.
        if as_utc(hold.expires_at) <= as_utc(now):
            return ledger.update_state(hold, HoldStatus.EXPIRED, now)
        return ledger.update_state(hold, HoldStatus.RELEASED, now)
