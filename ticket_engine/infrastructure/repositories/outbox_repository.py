# ticket_engine/infrastructure/repositories/outbox_repository.py

import json
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ticket_engine.infrastructure.db.models import OutboxEvent


class OutboxRepository:
    """Domain events for downstream consumers (emails, refunds)."""

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
        dedupe_key: str,
        last_error: str | None = None,
    ) -> OutboxEvent:
        existing = self.db.execute(
            select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key)
        ).scalar_one_or_none()
        if existing:
            if last_error:
                existing.attempts += 1
                existing.last_error = last_error
            return existing

        event = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=json.dumps(payload, sort_keys=True),
            dedupe_key=dedupe_key,
            status="PENDING",
            attempts=1 if last_error else 0,
            last_error=last_error,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def list_by_status(self, status: str, limit: int) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status == status)
            .order_by(OutboxEvent.created_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_by_id(self, event_id: str) -> OutboxEvent | None:
        return self.db.execute(
            select(OutboxEvent).where(OutboxEvent.id == event_id)
        ).scalar_one_or_none()

    def mark_published(self, event: OutboxEvent, published_at: datetime) -> OutboxEvent:
        event.status = "PUBLISHED"
        event.published_at = published_at
        event.attempts += 1
        return event
