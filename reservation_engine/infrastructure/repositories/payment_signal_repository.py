# reservation_engine/infrastructure/repositories/payment_signal_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from reservation_engine.infrastructure.db.models import PaymentSignal


class PaymentSignalRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_payment_id(
        self,
        provider: str,
        payment_id: str,
    ) -> PaymentSignal | None:

        stmt = (
            select(PaymentSignal)
            .where(PaymentSignal.provider == provider)
            .where(PaymentSignal.payment_id == payment_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def record(
        self,
        provider: str,
        payment_id: str,
        event_type: str,
        hold_id: str,
        payload_hash: str,
        outcome: str,
    ) -> PaymentSignal:

        signal = PaymentSignal(
            provider=provider,
            payment_id=payment_id,
            event_type=event_type,
            hold_id=hold_id,
            payload_hash=payload_hash,
            outcome=outcome,
        )
        self.db.add(signal)
        self.db.flush()
        return signal
