# reservation_engine/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from reservation_engine.domain.exceptions import InvalidStateTransitionError


class HoldStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CONFIRMED = "CONFIRMED"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"


# Statuses whose quantity still counts against a unit's capacity
# (ACTIVE only while unexpired, see domain.availability).
CAPACITY_STATUSES = (HoldStatus.ACTIVE, HoldStatus.CONFIRMED)


class HoldStateMachine:
    """
    Central lifecycle controller for hold transitions.
    Every transition leaves ACTIVE; nothing leaves a terminal state.
    """

    _ALLOWED_TRANSITIONS: Dict[HoldStatus, Set[HoldStatus]] = {
        HoldStatus.ACTIVE: {
            HoldStatus.CONFIRMED,
            HoldStatus.RELEASED,
            HoldStatus.EXPIRED,
        },
        HoldStatus.CONFIRMED: set(),
        HoldStatus.RELEASED: set(),
        HoldStatus.EXPIRED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: HoldStatus,
        to_status: HoldStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: HoldStatus,
        to_status: HoldStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: HoldStatus) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(
        cls, status: HoldStatus
    ) -> Set[HoldStatus]:
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @staticmethod
    def _ensure_valid_status(status: HoldStatus) -> None:
        if not isinstance(status, HoldStatus):
            raise TypeError(
                f"Expected HoldStatus, got {type(status)}"
            )
