from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from reservation_engine.infrastructure.db.models import Base, Event
from reservation_engine.infrastructure.db.session import SessionLocal, engine
from reservation_engine.infrastructure.repositories.catalog_repository import CatalogRepository


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now = datetime.now(timezone.utc)
    target = now + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def _numbered_seats(tier_name: str, section: str, rows: str, seats_per_row: int, price: int) -> list[dict]:
    return [
        {
            "tier_name": tier_name,
            "section": section,
            "row": row,
            "seat_label": str(seat),
            "total_quantity": 1,
            "unit_price": price,
        }
        for row in rows
        for seat in range(1, seats_per_row + 1)
    ]


def seed_events(db) -> None:
    event_defs = [
        {
            "title": "The Eras Tour",
            "venue": "SoFi Stadium, Los Angeles, CA",
            "starts_at": _dt(days_from_now=10, hour=20, minute=0),
            "units": (
                _numbered_seats("VIP Premium", "Floor", "AB", 6, 45000)
                + _numbered_seats("Premium", "Lower Level", "CDE", 8, 25000)
                + [
                    {
                        "tier_name": "Standard",
                        "section": "Upper Level",
                        "total_quantity": 200,
                        "unit_price": 15000,
                    },
                ]
            ),
        },
        {
            "title": "Hamilton - Broadway Musical",
            "venue": "Richard Rodgers Theatre, New York, NY",
            "starts_at": _dt(days_from_now=15, hour=19, minute=0),
            "units": (
                _numbered_seats("Orchestra", "Orchestra", "ABC", 10, 29900)
                + [
                    {
                        "tier_name": "Mezzanine",
                        "section": "Mezzanine",
                        "total_quantity": 80,
                        "unit_price": 12900,
                    },
                ]
            ),
        },
    ]

    catalog = CatalogRepository(db)
    for item in event_defs:
        existing = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if existing:
            # Listed units are immutable once on sale; leave them alone.
            continue

        catalog.create_event(
            title=item["title"],
            venue=item["venue"],
            starts_at=item["starts_at"],
            units=item["units"],
        )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_events(db)
        db.commit()
        print("Seed complete: Eras Tour and Hamilton listed with seats and GA blocks.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
