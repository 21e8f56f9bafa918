import logging
import threading

from reservation_engine.application.reservation_manager import ReservationManager


logger = logging.getLogger(__name__)


class HoldReaper:
    """Background thread that periodically expires dead ACTIVE holds."""

    def __init__(self, manager: ReservationManager, interval_seconds: float):
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="hold-reaper",
            daemon=True,
        )
        self._thread.start()
        logger.info("Hold reaper started (interval=%.1fs)", self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Hold reaper stopped")

    def run_once(self) -> int:
        try:
            return self.manager.reap_expired()
        except Exception:
            # Storage hiccups must not kill the sweeper; next tick retries.
            logger.exception("Hold reaper sweep failed")
            return 0

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.run_once()
