from dataclasses import dataclass, field
from typing import Any

from reservation_engine.domain.exceptions import ErrorKind, ReservationEngineError


@dataclass(frozen=True)
class HoldResult:
    """
    Outcome of a Reservation Manager command.

    Expected business failures (capacity, ownership, expiry) come back
    as a failed result with an ErrorKind instead of an exception.
    """

    holds: list[Any] = field(default_factory=list)
    error: ErrorKind | None = None
    message: str = ""
    unit_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def hold(self) -> Any | None:
        return self.holds[0] if self.holds else None

    @classmethod
    def success(cls, *holds: Any, message: str = "") -> "HoldResult":
        return cls(holds=list(holds), message=message)

    @classmethod
    def failure(
        cls,
        error: ErrorKind,
        message: str,
        unit_id: str | None = None,
    ) -> "HoldResult":
        return cls(error=error, message=message, unit_id=unit_id)

    @classmethod
    def from_exception(cls, exc: ReservationEngineError) -> "HoldResult":
        return cls.failure(
            exc.kind,
            str(exc),
            unit_id=getattr(exc, "unit_id", None),
        )
