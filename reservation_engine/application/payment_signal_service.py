import hashlib
import json
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from reservation_engine.application.reservation_manager import ReservationManager
from reservation_engine.domain.exceptions import ErrorKind
from reservation_engine.domain.results import HoldResult
from reservation_engine.infrastructure.db.session import get_db_session
from reservation_engine.infrastructure.repositories.hold_repository import HoldRepository
from reservation_engine.infrastructure.repositories.payment_signal_repository import (
    PaymentSignalRepository,
)


logger = logging.getLogger(__name__)

PAYMENT_COMPLETED = "payment.completed"
PAYMENT_FAILED = "payment.failed"
PAYMENT_ABANDONED = "payment.abandoned"

SUPPORTED_EVENT_TYPES = {PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_ABANDONED}
TRANSIENT_ERRORS = {ErrorKind.STORAGE_UNAVAILABLE}


def _hash_signal_payload(
    provider: str,
    payment_id: str,
    event_type: str,
    hold_id: str,
    owner_id: str,
) -> str:
    payload = {
        "provider": provider,
        "payment_id": payment_id,
        "event_type": event_type,
        "hold_id": hold_id,
        "owner_id": owner_id,
    }
    encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class PaymentSignalService:
    """
    Turns payment outcomes reported by the payment collaborator into
    hold transitions. Each (provider, payment_id) is acted on once;
    redeliveries get the recorded outcome back. Signals that hit
    unavailable storage are not recorded, so a redelivery retries them.
    """

    def __init__(self, session_factory: sessionmaker, manager: ReservationManager):
        self.session_factory = session_factory
        self.manager = manager

    def handle(
        self,
        provider: str,
        payment_id: str,
        event_type: str,
        hold_id: str,
        owner_id: str,
    ) -> HoldResult:
        if event_type not in SUPPORTED_EVENT_TYPES:
            return HoldResult.failure(
                ErrorKind.INVALID_INPUT,
                f"Unsupported payment event type: {event_type}",
            )

        payload_hash = _hash_signal_payload(provider, payment_id, event_type, hold_id, owner_id)

        with get_db_session(self.session_factory) as db:
            existing = PaymentSignalRepository(db).get_by_payment_id(provider, payment_id)
            if existing:
                return self._redelivery(db, existing, payload_hash)

        if event_type == PAYMENT_COMPLETED:
            result = self.manager.confirm_hold(hold_id, owner_id)
        else:
            result = self.manager.release_hold(hold_id, owner_id)

        outcome = result.error.value if result.error else "APPLIED"
        if result.error in TRANSIENT_ERRORS:
            # Left unrecorded so the collaborator's redelivery retries the transition.
            logger.warning(
                "Payment signal not applied, awaiting redelivery. provider=%s payment_id=%s hold_id=%s",
                provider,
                payment_id,
                hold_id,
            )
            return result

        try:
            with get_db_session(self.session_factory) as db:
                PaymentSignalRepository(db).record(
                    provider=provider,
                    payment_id=payment_id,
                    event_type=event_type,
                    hold_id=hold_id,
                    payload_hash=payload_hash,
                    outcome=outcome,
                )
        except IntegrityError:
            # A concurrent delivery of the same payment recorded first;
            # the hold transitions above are idempotent either way.
            logger.warning(
                "Duplicate payment signal delivery. provider=%s payment_id=%s",
                provider,
                payment_id,
            )

        logger.info(
            "Payment signal processed. provider=%s payment_id=%s event_type=%s hold_id=%s outcome=%s",
            provider,
            payment_id,
            event_type,
            hold_id,
            outcome,
        )
        return result

    @staticmethod
    def _redelivery(db, existing, payload_hash: str) -> HoldResult:
        if existing.payload_hash != payload_hash:
            return HoldResult.failure(
                ErrorKind.INVALID_INPUT,
                f"Payment {existing.payment_id} was already reported with a different payload",
            )

        hold = HoldRepository(db).get_by_id(existing.hold_id)
        if hold is None:
            return HoldResult.failure(ErrorKind.NOT_FOUND, f"Hold {existing.hold_id} not found")
        error = None if existing.outcome == "APPLIED" else ErrorKind(existing.outcome)
        return HoldResult(holds=[hold], error=error, message="Payment signal already processed")
