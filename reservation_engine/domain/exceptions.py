from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    INSUFFICIENT_AVAILABILITY = "INSUFFICIENT_AVAILABILITY"
    FORBIDDEN = "FORBIDDEN"
    ALREADY_FINALIZED = "ALREADY_FINALIZED"
    EXPIRED = "EXPIRED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"


class ReservationEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the reservation engine.
    """

    kind: ErrorKind


class NotFoundError(ReservationEngineError):
    """Raised when an event, unit or hold does not exist."""

    kind = ErrorKind.NOT_FOUND


class InvalidInputError(ReservationEngineError):
    kind = ErrorKind.INVALID_INPUT


class InsufficientAvailabilityError(ReservationEngineError):
    """Raised when a unit cannot cover the requested quantity."""

    kind = ErrorKind.INSUFFICIENT_AVAILABILITY

    def __init__(self, unit_id: str, requested: int, available: int):
        self.unit_id = unit_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough seats available for unit {unit_id}. "
            f"Requested: {requested}, Available: {available}"
        )


class ForbiddenError(ReservationEngineError):
    """Raised when a hold is acted on by someone other than its owner."""

    kind = ErrorKind.FORBIDDEN


class AlreadyFinalizedError(ReservationEngineError):
    kind = ErrorKind.ALREADY_FINALIZED


class HoldExpiredError(ReservationEngineError):
    """Raised when a hold's TTL has passed before it could be confirmed."""

    kind = ErrorKind.EXPIRED


class InvalidStateTransitionError(ReservationEngineError):
    """
    Raised when an illegal hold state transition is attempted.
    """

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class ConcurrencyConflictError(Exception):
    """
    Raised by repositories when a compare-and-set write lost a race.
    Never leaves the application layer: it is retried there and
    surfaces as a STORAGE_UNAVAILABLE result once retries run out.
    """
