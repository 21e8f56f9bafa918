from datetime import datetime
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError, TimeoutError as SQLAlchemyTimeoutError

from reservation_engine.config import load_settings
from reservation_engine.infrastructure.db.session import SessionLocal
from reservation_engine.application.reservation_manager import ReservationManager
from reservation_engine.application.payment_signal_service import PaymentSignalService
from reservation_engine.api.schemas.schemas import (
    EventCreate,
    EventResponse,
    SellableUnitResponse,
    TierSummaryResponse,
    UnitAvailabilityResponse,
    SectionAvailabilityResponse,
    TierAvailabilityResponse,
    HoldRequest,
    BatchHoldRequest,
    HoldActionRequest,
    ReleaseOwnerHoldsRequest,
    HoldResponse,
    BatchHoldResponse,
    ReleaseOwnerHoldsResponse,
    ReapResponse,
    PaymentSignalRequest,
)
from reservation_engine.domain.clock import as_utc
from reservation_engine.domain.exceptions import ErrorKind, NotFoundError
from reservation_engine.domain.results import HoldResult
from reservation_engine.infrastructure.db.models import Hold, SellableUnit
from reservation_engine.infrastructure.repositories.catalog_repository import CatalogRepository


router = APIRouter()
logger = logging.getLogger(__name__)

settings = load_settings()
reservation_manager = ReservationManager(SessionLocal, settings)
payment_signal_service = PaymentSignalService(SessionLocal, reservation_manager)

_ERROR_STATUS = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INSUFFICIENT_AVAILABILITY: status.HTTP_409_CONFLICT,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.ALREADY_FINALIZED: status.HTTP_409_CONFLICT,
    ErrorKind.EXPIRED: status.HTTP_410_GONE,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.STORAGE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_reservation_manager() -> ReservationManager:
    return reservation_manager


def get_payment_signal_service() -> PaymentSignalService:
    return payment_signal_service


def _is_db_degraded(exc: Exception) -> bool:
    return isinstance(exc, (OperationalError, SQLAlchemyTimeoutError))


def _raise_for_failure(result: HoldResult) -> None:
    if result.ok:
        return
    detail = {"error": result.error.value, "message": result.message}
    if result.unit_id:
        detail["unit_id"] = result.unit_id
    raise HTTPException(status_code=_ERROR_STATUS[result.error], detail=detail)


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error": exc.kind.value, "message": str(exc)},
    )


def _storage_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "error": ErrorKind.STORAGE_UNAVAILABLE.value,
            "message": "Hold storage is unavailable. Please retry.",
        },
    )


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def _unit_response(unit: SellableUnit) -> SellableUnitResponse:
    return SellableUnitResponse(
        id=unit.id,
        event_id=unit.event_id,
        tier_id=unit.tier_id,
        tier_name=unit.tier_name,
        section=unit.section,
        row=unit.row,
        seat_label=unit.seat_label,
        total_quantity=unit.total_quantity,
        unit_price=unit.unit_price,
        currency=unit.currency,
    )


def _hold_response(hold: Hold) -> HoldResponse:
    return HoldResponse(
        hold_id=hold.id,
        unit_id=hold.unit_id,
        owner_id=hold.owner_id,
        quantity=hold.quantity,
        status=hold.status.value,
        batch_id=hold.batch_id,
        created_at=_iso(hold.created_at),
        expires_at=_iso(hold.expires_at),
        finalized_at=_iso(hold.finalized_at),
    )


@router.get("/health")
def health():
    return {"message": "Seat hold reservation engine is running"}


# -----------------------------
# Catalog
# -----------------------------
@router.post("/events", response_model=EventResponse)
def create_event(request: EventCreate, db: Session = Depends(get_db)):
    try:
        starts_at = datetime.fromisoformat(request.starts_at)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid starts_at format. Use ISO format.",
        ) from exc

    event, units = CatalogRepository(db).create_event(
        title=request.title,
        venue=request.venue,
        starts_at=starts_at,
        units=[unit.model_dump() for unit in request.units],
    )
    logger.info("Event listed. event_id=%s units=%s", event.id, len(units))

    return EventResponse(
        id=event.id,
        title=event.title,
        venue=event.venue,
        starts_at=event.starts_at.isoformat(),
        units=[_unit_response(unit) for unit in units],
    )


@router.get("/events/{event_id}/tiers", response_model=list[TierSummaryResponse])
def list_tiers(event_id: str, db: Session = Depends(get_db)):
    try:
        tiers = CatalogRepository(db).list_tiers(event_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc

    return [
        TierSummaryResponse(
            tier_id=tier.tier_id,
            tier_name=tier.tier_name,
            min_price=tier.min_price,
            max_price=tier.max_price,
            unit_count=tier.unit_count,
            total_quantity=tier.total_quantity,
            sections=tier.sections,
        )
        for tier in tiers
    ]


@router.get(
    "/events/{event_id}/tiers/{tier_id}/units",
    response_model=list[SellableUnitResponse],
)
def list_units(event_id: str, tier_id: str, db: Session = Depends(get_db)):
    try:
        units = CatalogRepository(db).list_units(event_id, tier_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return [_unit_response(unit) for unit in units]


# -----------------------------
# Availability
# -----------------------------
@router.get(
    "/events/{event_id}/tiers/{tier_id}/availability",
    response_model=TierAvailabilityResponse,
)
def get_tier_availability(
    event_id: str,
    tier_id: str,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        tier = manager.get_tier_availability(event_id, tier_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except Exception as exc:
        if not _is_db_degraded(exc):
            raise
        raise _storage_unavailable() from exc

    return TierAvailabilityResponse(
        tier_id=tier.tier_id,
        tier_name=tier.tier_name,
        total_quantity=tier.total_quantity,
        available_quantity=tier.available_quantity,
        min_price=tier.min_price,
        max_price=tier.max_price,
        sections=[
            SectionAvailabilityResponse(
                section=section.section,
                available_quantity=section.available_quantity,
                unit_ids=section.unit_ids,
            )
            for section in tier.sections
        ],
    )


@router.get("/units/{unit_id}/availability", response_model=UnitAvailabilityResponse)
def get_unit_availability(
    unit_id: str,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        availability = manager.get_unit_availability(unit_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except Exception as exc:
        if not _is_db_degraded(exc):
            raise
        raise _storage_unavailable() from exc

    return UnitAvailabilityResponse(
        unit_id=availability.unit_id,
        total_quantity=availability.total_quantity,
        held_quantity=availability.held_quantity,
        available_quantity=availability.available_quantity,
        unit_price=availability.unit_price,
    )


# -----------------------------
# Holds
# -----------------------------
@router.post("/holds", response_model=HoldResponse)
def request_hold(
    request: HoldRequest,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    result = manager.request_hold(
        unit_id=request.unit_id,
        owner_id=request.owner_id,
        quantity=request.quantity,
    )
    _raise_for_failure(result)
    return _hold_response(result.hold)


@router.post("/holds/batch", response_model=BatchHoldResponse)
def request_holds(
    request: BatchHoldRequest,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    result = manager.request_holds(
        owner_id=request.owner_id,
        selections=[(item.unit_id, item.quantity) for item in request.selections],
    )
    _raise_for_failure(result)
    expires_at = _iso(result.hold.expires_at)
    return BatchHoldResponse(
        holds=[_hold_response(hold) for hold in result.holds],
        expires_at=expires_at,
        message=(
            f"Successfully reserved {len(result.holds)} seat selection(s). "
            f"Reservation expires at {expires_at}."
        ),
    )


@router.post("/holds/release", response_model=ReleaseOwnerHoldsResponse)
def release_owner_holds(
    request: ReleaseOwnerHoldsRequest,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    result = manager.release_owner_holds(request.owner_id, request.hold_ids)
    _raise_for_failure(result)
    return ReleaseOwnerHoldsResponse(
        released_count=len(result.holds),
        holds=[_hold_response(hold) for hold in result.holds],
        message=result.message,
    )


@router.post("/holds/reap", response_model=ReapResponse)
def reap_expired_holds(
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        reaped = manager.reap_expired()
    except Exception as exc:
        if not _is_db_degraded(exc):
            raise
        raise _storage_unavailable() from exc
    return ReapResponse(reaped_count=reaped)


@router.post("/holds/{hold_id}/confirm", response_model=HoldResponse)
def confirm_hold(
    hold_id: str,
    request: HoldActionRequest,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    result = manager.confirm_hold(hold_id, request.owner_id)
    _raise_for_failure(result)
    return _hold_response(result.hold)


@router.post("/holds/{hold_id}/release", response_model=HoldResponse)
def release_hold(
    hold_id: str,
    request: HoldActionRequest,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    result = manager.release_hold(hold_id, request.owner_id)
    _raise_for_failure(result)
    return _hold_response(result.hold)


@router.get("/owners/{owner_id}/holds", response_model=list[HoldResponse])
def list_owner_holds(
    owner_id: str,
    active_only: bool = False,
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        holds = manager.list_owner_holds(owner_id, active_only=active_only)
    except Exception as exc:
        if not _is_db_degraded(exc):
            raise
        raise _storage_unavailable() from exc
    return [_hold_response(hold) for hold in holds]


# -----------------------------
# Payment collaborator
# -----------------------------
@router.post("/payments/signals", response_model=HoldResponse)
def receive_payment_signal(
    request: PaymentSignalRequest,
    service: PaymentSignalService = Depends(get_payment_signal_service),
):
    result = service.handle(
        provider=request.provider,
        payment_id=request.payment_id,
        event_type=request.event_type,
        hold_id=request.hold_id,
        owner_id=request.owner_id,
    )
    _raise_for_failure(result)
    return _hold_response(result.hold)
