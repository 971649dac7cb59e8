# ticket_engine/infrastructure/repositories/inventory_ledger.py

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ticket_engine.domain.clock import utc_now
from ticket_engine.domain.exceptions import (
    InsufficientInventoryError,
    ReservationExpiredError,
    TicketTypeNotFoundError,
)
from ticket_engine.domain.policy import BookingPolicy
from ticket_engine.infrastructure.db.models import Reservation, TicketType

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    The only writer of TicketType.sold.

    Every mutation is a single conditional UPDATE, so the database row
    lock orders concurrent writers on one ticket type and sold can never
    pass capacity. Different ticket types never contend.
    """

    def __init__(self, db: Session, policy: BookingPolicy | None = None):
        self.db = db
        self.policy = policy or BookingPolicy()

    def remaining(self, ticket_type_id: str) -> int:
        ticket_type = self._load_ticket_type(ticket_type_id)
        if not ticket_type:
            raise TicketTypeNotFoundError(ticket_type_id)
        return ticket_type.remaining

    def try_reserve(
        self,
        ticket_type_id: str,
        quantity: int,
        now: datetime | None = None,
    ) -> Reservation:
        if quantity < 1:
            raise ValueError("Reservation quantity must be positive")

        stmt = (
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .where(TicketType.sold + quantity <= TicketType.capacity)
            .values(sold=TicketType.sold + quantity)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            ticket_type = self._load_ticket_type(ticket_type_id)
            if not ticket_type:
                raise TicketTypeNotFoundError(ticket_type_id)
            raise InsufficientInventoryError(
                ticket_type_id=ticket_type_id,
                requested=quantity,
                remaining=ticket_type.remaining,
            )

        reservation = Reservation(
            ticket_type_id=ticket_type_id,
            quantity=quantity,
            status=Reservation.HELD,
            expires_at=(now or utc_now()) + self.policy.reservation_ttl,
        )
        self.db.add(reservation)
        self.db.flush()

        logger.info(
            "Reserved inventory. reservation_id=%s ticket_type_id=%s quantity=%s",
            reservation.id,
            ticket_type_id,
            quantity,
        )
        return reservation

    def status(self, reservation_id: str) -> str | None:
        stmt = select(Reservation.status).where(Reservation.id == reservation_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def commit(self, reservation_id: str) -> None:
        if not self._flip_status(reservation_id, Reservation.HELD, Reservation.COMMITTED):
            raise ReservationExpiredError(
                f"Reservation {reservation_id} is no longer held"
            )

    def release(self, reservation_id: str) -> bool:
        """
        Returns the held seats to the pool. Returns False when the
        reservation was already committed or released.
        """
        return self._return_seats(reservation_id, Reservation.HELD, Reservation.RELEASED)

    def restore(self, reservation_id: str) -> bool:
        """Puts committed seats back on sale (booking cancellation)."""
        return self._return_seats(reservation_id, Reservation.COMMITTED, Reservation.RESTORED)

    def sweep_expired(self, now: datetime | None = None) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.status == Reservation.HELD)
            .where(Reservation.expires_at <= (now or utc_now()))
            .order_by(Reservation.expires_at)
        )
        expired = list(self.db.execute(stmt).scalars().all())

        released = [
            reservation for reservation in expired if self.release(reservation.id)
        ]
        if released:
            logger.info("Swept %s expired reservation(s).", len(released))
        return released

    def _return_seats(self, reservation_id: str, from_status: str, to_status: str) -> bool:
        reservation = self.db.get(Reservation, reservation_id)
        if not reservation:
            raise ValueError("Reservation not found")

        if not self._flip_status(reservation_id, from_status, to_status):
            return False

        self.db.execute(
            update(TicketType)
            .where(TicketType.id == reservation.ticket_type_id)
            .values(sold=TicketType.sold - reservation.quantity)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Returned inventory. reservation_id=%s ticket_type_id=%s quantity=%s status=%s",
            reservation_id,
            reservation.ticket_type_id,
            reservation.quantity,
            to_status,
        )
        return True

    def _flip_status(self, reservation_id: str, from_status: str, to_status: str) -> bool:
        result = self.db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id)
            .where(Reservation.status == from_status)
            .values(status=to_status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _load_ticket_type(self, ticket_type_id: str) -> TicketType | None:
        stmt = (
            select(TicketType)
            .where(TicketType.id == ticket_type_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()
