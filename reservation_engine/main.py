import logging

from fastapi import FastAPI

from reservation_engine.api.routes.routes import router, reservation_manager, settings
from reservation_engine.application.hold_reaper import HoldReaper
from reservation_engine.infrastructure.db.session import engine, wait_for_database
from reservation_engine.infrastructure.db.models import Base

app = FastAPI(title="Seat Hold Reservation Engine")

app.include_router(router)
logger = logging.getLogger(__name__)

reaper = HoldReaper(reservation_manager, settings.reaper_interval_seconds)


@app.on_event("startup")
def on_startup() -> None:
    wait_for_database(
        engine,
        attempts=max(1, settings.db_connect_max_retries),
        delay_seconds=settings.db_connect_retry_delay,
    )
    Base.metadata.create_all(bind=engine)
    if settings.reaper_enabled:
        reaper.start()
    else:
        logger.info("Hold reaper disabled; expiry is still enforced on every read.")


@app.on_event("shutdown")
def on_shutdown() -> None:
    reaper.stop()
