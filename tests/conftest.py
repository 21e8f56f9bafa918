import os

# Must be set before the app modules build their module-level engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REAPER_ENABLED", "false")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from reservation_engine.config import ReservationSettings
from reservation_engine.application.reservation_manager import ReservationManager
from reservation_engine.application.payment_signal_service import PaymentSignalService
from reservation_engine.infrastructure.db.models import Base
from reservation_engine.infrastructure.db.session import (
    build_engine,
    build_session_factory,
    get_db_session,
)
from reservation_engine.infrastructure.repositories.catalog_repository import CatalogRepository


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 5, 15, 20, 0, tzinfo=timezone.utc))


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'holds.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def settings():
    return ReservationSettings(
        hold_duration_seconds=600,
        conflict_max_retries=3,
        max_selections=5,
        reaper_enabled=False,
    )


@pytest.fixture
def manager(session_factory, settings, clock):
    return ReservationManager(session_factory, settings, clock=clock)


@pytest.fixture
def list_event(session_factory):
    """Lists an event and returns its units in the order given."""

    def _list_event(*units, title="Test Event"):
        with get_db_session(session_factory) as db:
            _, created = CatalogRepository(db).create_event(
                title=title,
                venue="Test Arena",
                starts_at=datetime(2026, 6, 1, 19, 0, tzinfo=timezone.utc),
                units=list(units),
            )
        return created

    return _list_event


@pytest.fixture
def unit(list_event):
    def _unit(total_quantity=1, tier_name="General", section="Floor", unit_price=5000):
        (created,) = list_event(
            {
                "tier_name": tier_name,
                "section": section,
                "total_quantity": total_quantity,
                "unit_price": unit_price,
            }
        )
        return created

    return _unit


@pytest.fixture
def client(session_factory, manager):
    from reservation_engine.main import app
    from reservation_engine.api.routes import routes

    def override_get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[routes.get_db] = override_get_db
    app.dependency_overrides[routes.get_reservation_manager] = lambda: manager
    app.dependency_overrides[routes.get_payment_signal_service] = (
        lambda: PaymentSignalService(session_factory, manager)
    )
    yield TestClient(app)
    app.dependency_overrides.clear()
