# reservation_engine/config.py

import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ReservationSettings:
    hold_duration_seconds: int = 900
    conflict_max_retries: int = 3
    max_selections: int = 10
    reaper_enabled: bool = True
    reaper_interval_seconds: float = 30.0
    db_connect_max_retries: int = 30
    db_connect_retry_delay: float = 1.5

    @property
    def hold_duration(self) -> timedelta:
        return timedelta(seconds=self.hold_duration_seconds)


def load_settings() -> ReservationSettings:
    return ReservationSettings(
        hold_duration_seconds=int(os.getenv("HOLD_DURATION_SECONDS", "900")),
        conflict_max_retries=int(os.getenv("HOLD_CONFLICT_MAX_RETRIES", "3")),
        max_selections=int(os.getenv("HOLD_MAX_SELECTIONS", "10")),
        reaper_enabled=_env_bool("REAPER_ENABLED", "true"),
        reaper_interval_seconds=float(os.getenv("REAPER_INTERVAL_SECONDS", "30")),
        db_connect_max_retries=int(os.getenv("DB_CONNECT_MAX_RETRIES", "30")),
        db_connect_retry_delay=float(os.getenv("DB_CONNECT_RETRY_DELAY", "1.5")),
    )
