"""
Availability calculator.

Pure functions over an explicit snapshot of units and holds. Expiry is
always judged against ``now`` (logical expiry), never against whether the
reaper has already flipped a row to EXPIRED.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Protocol, Sequence

from reservation_engine.domain.clock import as_utc
from reservation_engine.domain.state_machine import HoldStatus


class UnitLike(Protocol):
    id: str
    tier_id: str
    tier_name: str
    section: str
    total_quantity: int
    unit_price: int


class HoldLike(Protocol):
    unit_id: str
    quantity: int
    status: HoldStatus
    expires_at: datetime


@dataclass(frozen=True)
class UnitAvailability:
    unit_id: str
    total_quantity: int
    held_quantity: int
    available_quantity: int
    unit_price: int


@dataclass(frozen=True)
class SectionAvailability:
    section: str
    available_quantity: int
    unit_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TierAvailability:
    tier_id: str
    tier_name: str
    total_quantity: int
    available_quantity: int
    min_price: int | None
    max_price: int | None
    sections: list[SectionAvailability] = field(default_factory=list)


def counts_against_capacity(hold: HoldLike, now: datetime) -> bool:
    if hold.status == HoldStatus.CONFIRMED:
        return True
    if hold.status == HoldStatus.ACTIVE:
        return as_utc(hold.expires_at) > as_utc(now)
    return False


def held_quantity(holds: Iterable[HoldLike], now: datetime) -> int:
    return sum(hold.quantity for hold in holds if counts_against_capacity(hold, now))


def available_quantity(unit: UnitLike, holds: Iterable[HoldLike], now: datetime) -> int:
    # Clamped for display only; the ledger never lets this go negative.
    return max(0, unit.total_quantity - held_quantity(holds, now))


def unit_availability(
    unit: UnitLike,
    holds: Iterable[HoldLike],
    now: datetime,
) -> UnitAvailability:
    held = held_quantity(holds, now)
    return UnitAvailability(
        unit_id=unit.id,
        total_quantity=unit.total_quantity,
        held_quantity=held,
        available_quantity=max(0, unit.total_quantity - held),
        unit_price=unit.unit_price,
    )


def _holds_by_unit(holds: Iterable[HoldLike]) -> dict[str, list[HoldLike]]:
    grouped: dict[str, list[HoldLike]] = {}
    for hold in holds:
        grouped.setdefault(hold.unit_id, []).append(hold)
    return grouped


def summarize_tier(
    units: Sequence[UnitLike],
    holds: Iterable[HoldLike],
    now: datetime,
) -> TierAvailability:
    """
    Aggregate a tier's units into per-section and tier-wide availability.

    ``units`` must be non-empty and belong to a single tier. Min/max price
    only consider units that still have something to sell, so a sold-out
    tier reports ``None`` for both.
    """
    if not units:
        raise ValueError("Cannot summarize a tier without units")

    grouped = _holds_by_unit(holds)
    section_totals: dict[str, int] = {}
    section_units: dict[str, list[str]] = {}
    available_prices: list[int] = []
    total = 0
    available = 0

    for unit in units:
        unit_available = available_quantity(unit, grouped.get(unit.id, []), now)
        total += unit.total_quantity
        available += unit_available
        section_totals[unit.section] = section_totals.get(unit.section, 0) + unit_available
        section_units.setdefault(unit.section, []).append(unit.id)
        if unit_available > 0:
            available_prices.append(unit.unit_price)

    first = units[0]
    return TierAvailability(
        tier_id=first.tier_id,
        tier_name=first.tier_name,
        total_quantity=total,
        available_quantity=available,
        min_price=min(available_prices) if available_prices else None,
        max_price=max(available_prices) if available_prices else None,
        sections=[
            SectionAvailability(
                section=section,
                available_quantity=section_totals[section],
                unit_ids=section_units[section],
            )
            for section in sorted(section_totals)
        ],
    )
