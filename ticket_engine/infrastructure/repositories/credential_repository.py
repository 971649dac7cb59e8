# ticket_engine/infrastructure/repositories/credential_repository.py

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ticket_engine.infrastructure.db.models import Attendee, Booking, Credential
from ticket_engine.domain.state_machine import BookingStatus


class CredentialRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_token(self, token: str) -> Credential | None:
        stmt = (
            select(Credential)
            .where(Credential.token == token)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_code(self, event_id: str, verification_code: str) -> Credential | None:
        stmt = (
            select(Credential)
            .where(Credential.event_id == event_id)
            .where(Credential.verification_code == verification_code)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, credential_id: str) -> Credential | None:
        stmt = (
            select(Credential)
            .where(Credential.id == credential_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_booking(self, booking_id: str) -> list[Credential]:
        stmt = select(Credential).where(Credential.booking_id == booking_id)
        return list(self.db.execute(stmt).scalars().all())

    def count_consumed_for_booking(self, booking_id: str) -> int:
        stmt = (
            select(func.count(Credential.id))
            .where(Credential.booking_id == booking_id)
            .where(Credential.consumed.is_(True))
        )
        return int(self.db.scalar(stmt) or 0)

    def consume(self, credential_id: str, consumed_at: datetime, consumed_by: str) -> bool:
        """
        Single-use flip. Returns True only for the one caller that
        moved the credential from unconsumed to consumed.
        """
        result = self.db.execute(
            update(Credential)
            .where(Credential.id == credential_id)
            .where(Credential.consumed.is_(False))
            .values(consumed=True, consumed_at=consumed_at, consumed_by=consumed_by)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def attendee_rows_for_event(
        self,
        event_id: str,
        checked_in: bool | None,
        page: int,
        limit: int,
    ) -> tuple[list[tuple[Attendee, Booking, Credential | None]], int]:
        """
        Attendees of confirmed bookings for one event, joined to the
        credential that admits them (the booking-level one for legacy
        bookings).
        """
        admits = (Credential.attendee_id == Attendee.id) | (
            Credential.attendee_id.is_(None) & (Credential.booking_id == Booking.id)
        )
        stmt = (
            select(Attendee, Booking, Credential)
            .join(Booking, Attendee.booking_id == Booking.id)
            .outerjoin(Credential, admits)
            .where(Booking.event_id == event_id)
            .where(Booking.status == BookingStatus.CONFIRMED)
        )
        if checked_in is True:
            stmt = stmt.where(Credential.consumed.is_(True))
        elif checked_in is False:
            stmt = stmt.where((Credential.consumed.is_(False)) | (Credential.id.is_(None)))

        total = self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        rows = self.db.execute(
            stmt.order_by(Booking.created_at, Attendee.position)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return [tuple(row) for row in rows], int(total or 0)

    def checkin_stats(self, event_id: str) -> dict:
        base = (
            select(Attendee.id, Credential.consumed)
            .join(Booking, Attendee.booking_id == Booking.id)
            .outerjoin(
                Credential,
                (Credential.attendee_id == Attendee.id)
                | (Credential.attendee_id.is_(None) & (Credential.booking_id == Booking.id)),
            )
            .where(Booking.event_id == event_id)
            .where(Booking.status == BookingStatus.CONFIRMED)
        )
        rows = self.db.execute(base).all()
        total = len(rows)
        checked_in = sum(1 for _, consumed in rows if consumed)
        return {"total": total, "checked_in": checked_in, "pending": total - checked_in}
