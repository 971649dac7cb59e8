from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from ticket_engine.infrastructure.db.models import Base, Event
from ticket_engine.infrastructure.db.session import SessionLocal, engine
from ticket_engine.infrastructure.repositories.event_repository import EventRepository


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    wat = timezone(timedelta(hours=1))
    now_wat = datetime.now(wat)
    target = now_wat + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_events(db) -> list[Event]:
    # Prices are in kobo.
    event_defs = [
        {
            "title": "Lagos Tech Meetup",
            "organizer_id": "organizer-demo",
            "starts_at": _dt(days_from_now=7, hour=17, minute=0),
            "ends_at": _dt(days_from_now=7, hour=21, minute=0),
            "ticket_types": [
                {"name": "Free Admission", "price": 0, "capacity": 150},
            ],
        },
        {
            "title": "Afrobeats Night Live",
            "organizer_id": "organizer-demo",
            "starts_at": _dt(days_from_now=14, hour=19, minute=30),
            "ends_at": _dt(days_from_now=14, hour=23, minute=30),
            "ticket_types": [
                {"name": "Regular", "price": 1000000, "capacity": 400},
                {"name": "VIP", "price": 4500000, "capacity": 80},
            ],
        },
    ]

    seeded = []
    for item in event_defs:
        existing = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if existing:
            seeded.append(existing)
            continue

        seeded.append(
            EventRepository(db).create_event(
                title=item["title"],
                starts_at=item["starts_at"],
                ends_at=item["ends_at"],
                ticket_types=item["ticket_types"],
                organizer_id=item["organizer_id"],
            )
        )
    return seeded


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        events = seed_events(db)
        db.commit()
        for event in events:
            print(f"{event.title}: {event.id}")
            for ticket_type in event.ticket_types:
                print(f"  {ticket_type.name} ({ticket_type.price}): {ticket_type.id}")
        print("Seed complete.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
