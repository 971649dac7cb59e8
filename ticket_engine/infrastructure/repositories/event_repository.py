# ticket_engine/infrastructure/repositories/event_repository.py

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ticket_engine.infrastructure.db.models import Event, TicketType


class EventRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, event_id: str) -> Event | None:
        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .options(selectinload(Event.ticket_types))
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_ticket_type(self, ticket_type_id: str) -> TicketType | None:
        stmt = (
            select(TicketType)
            .where(TicketType.id == ticket_type_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_event(
        self,
        title: str,
        starts_at: datetime,
        ends_at: datetime,
        ticket_types: list[dict],
        organizer_id: str | None = None,
    ) -> Event:
        event = Event(
            title=title,
            organizer_id=organizer_id,
            starts_at=starts_at,
            ends_at=ends_at,
        )
        self.db.add(event)
        self.db.flush()

        for item in ticket_types:
            self.db.add(
                TicketType(
                    event_id=event.id,
                    name=item["name"],
                    price=item["price"],
                    capacity=item["capacity"],
                    sold=0,
                )
            )

        self.db.flush()
        self.db.refresh(event)
        return event
