# ticket_engine/infrastructure/repositories/booking_repository.py

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func, select

from ticket_engine.infrastructure.db.models import Attendee, Booking
from ticket_engine.domain.state_machine import BookingStatus
from ticket_engine.domain.validation import AttendeeDetails


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_idempotency_key(
        self,
        user_id: str,
        idempotency_key: str,
    ) -> Booking | None:
        stmt = select(Booking).where(
            Booking.user_id == user_id,
            Booking.idempotency_key == idempotency_key,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_payment_reference(self, payment_reference: str) -> Booking | None:
        stmt = select(Booking).where(Booking.payment_reference == payment_reference)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(
        self,
        booking_id: str,
        for_update: bool = False,
    ) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .options(selectinload(Booking.attendees), selectinload(Booking.credentials))
        )
        if for_update:
            # Re-read under the row lock; callers flush before locking.
            stmt = stmt.with_for_update(of=Booking).execution_options(
                populate_existing=True
            )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(
        self,
        user_id: str,
        page: int,
        limit: int,
    ) -> tuple[list[Booking], int]:
        total = self.db.scalar(
            select(func.count(Booking.id)).where(Booking.user_id == user_id)
        )
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .options(selectinload(Booking.attendees), selectinload(Booking.credentials))
            .order_by(Booking.created_at.desc(), Booking.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all()), int(total or 0)

    def list_by_status(self, status: BookingStatus) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.status == status)
            .order_by(Booking.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_by_reservation(self, reservation_id: str) -> Booking | None:
        stmt = select(Booking).where(Booking.reservation_id == reservation_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add_booking(self, booking: Booking, attendees: tuple[AttendeeDetails, ...]) -> Booking:
        booking.attendees = [
            Attendee(
                position=position,
                name=details.name,
                email=details.email,
                phone=details.phone,
            )
            for position, details in enumerate(attendees)
        ]
        booking.credentials = []
        self.db.add(booking)
        self.db.flush()
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status
