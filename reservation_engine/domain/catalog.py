import re
from dataclasses import dataclass, field
from typing import Iterable

from reservation_engine.domain.availability import UnitLike


@dataclass(frozen=True)
class TierSummary:
    """Display projection of one price tier, straight from the catalog."""

    tier_id: str
    tier_name: str
    min_price: int
    max_price: int
    unit_count: int
    total_quantity: int
    sections: list[str] = field(default_factory=list)


def tier_slug(tier_name: str) -> str:
    return re.sub(r"\s+", "-", tier_name.strip().lower())


def summarize_catalog(units: Iterable[UnitLike]) -> list[TierSummary]:
    tiers: dict[str, dict] = {}
    for unit in units:
        tier = tiers.setdefault(
            unit.tier_id,
            {
                "tier_name": unit.tier_name,
                "prices": [],
                "sections": set(),
                "unit_count": 0,
                "total_quantity": 0,
            },
        )
        tier["prices"].append(unit.unit_price)
        tier["unit_count"] += 1
        tier["total_quantity"] += unit.total_quantity
        if unit.section:
            tier["sections"].add(unit.section)

    summaries = [
        TierSummary(
            tier_id=tier_id,
            tier_name=data["tier_name"],
            min_price=min(data["prices"]),
            max_price=max(data["prices"]),
            unit_count=data["unit_count"],
            total_quantity=data["total_quantity"],
            sections=sorted(data["sections"]),
        )
        for tier_id, data in tiers.items()
    ]
    # Most expensive tier first.
    return sorted(summaries, key=lambda item: (-item.max_price, item.tier_name))
