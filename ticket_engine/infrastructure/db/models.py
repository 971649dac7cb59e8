# ticket_engine/infrastructure/db/models.py

from sqlalchemy import (
    Boolean,
    String,
    Integer,
    DateTime,
    Enum,
    Text,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from uuid import uuid4

from ticket_engine.infrastructure.db.session import Base
from ticket_engine.domain.state_machine import BookingStatus, PaymentStatus


def _uuid() -> str:
    return str(uuid4())


class Event(Base):
    """
    Reference data owned by the event catalogue.
    Capacity lives on ticket types; event totals are derived.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    organizer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    ticket_types: Mapped[list["TicketType"]] = relationship(
        back_populates="event",
        order_by="TicketType.name",
    )

    @property
    def max_attendees(self) -> int:
        return sum(ticket_type.capacity for ticket_type in self.ticket_types)

    @property
    def tickets_sold(self) -> int:
        return sum(ticket_type.sold for ticket_type in self.ticket_types)

    __table_args__ = (
        CheckConstraint("ends_at >= starts_at", name="ck_event_ends_after_start"),
    )


class TicketType(Base):
    """sold is only ever changed through the inventory ledger."""

    __tablename__ = "ticket_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    event: Mapped[Event] = relationship(back_populates="ticket_types")

    @property
    def remaining(self) -> int:
        return self.capacity - self.sold

    __table_args__ = (
        UniqueConstraint("event_id", "name", name="uq_ticket_type_event_name"),
        CheckConstraint("price >= 0", name="ck_ticket_type_price_nonnegative"),
        CheckConstraint("capacity >= 0", name="ck_ticket_type_capacity_nonnegative"),
        CheckConstraint("sold >= 0", name="ck_ticket_type_sold_nonnegative"),
        CheckConstraint("sold <= capacity", name="ck_ticket_type_sold_lte_capacity"),
    )


class Reservation(Base):
    __tablename__ = "reservations"

    HELD = "HELD"
    COMMITTED = "COMMITTED"
    RELEASED = "RELEASED"
    RESTORED = "RESTORED"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ticket_type_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ticket_types.id"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=HELD)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
    )


class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    DB stores current state safely.
    """

    __tablename__ = "bookings"

    PER_ATTENDEE = "PER_ATTENDEE"
    LEGACY_SINGLE = "LEGACY_SINGLE"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
    )
    ticket_type_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ticket_types.id"),
        nullable=False,
    )
    reservation_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("reservations.id"),
        nullable=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vat: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="NGN")
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status"),
        nullable=False,
        default=BookingStatus.DRAFT,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.NOT_REQUIRED,
    )
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    request_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    credential_mode: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=PER_ATTENDEE,
    )
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    attendees: Mapped[list["Attendee"]] = relationship(
        back_populates="booking",
        order_by="Attendee.position",
    )
    credentials: Mapped[list["Credential"]] = relationship(
        back_populates="booking",
        order_by="Credential.created_at",
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "idempotency_key",
            name="uq_booking_user_idempotency_key",
        ),
        UniqueConstraint("payment_reference", name="uq_booking_payment_reference"),
        CheckConstraint(
            "quantity > 0",
            name="ck_booking_quantity_positive",
        ),
    )


class Attendee(Base):
    __tablename__ = "attendees"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)

    booking: Mapped[Booking] = relationship(back_populates="attendees")

    __table_args__ = (
        UniqueConstraint("booking_id", "position", name="uq_attendee_booking_position"),
    )


class Credential(Base):
    """
    One per attendee, or one per booking for legacy bookings
    (attendee_id is NULL). consumed flips exactly once, at check-in.
    """

    __tablename__ = "credentials"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    attendee_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("attendees.id"),
        nullable=True,
    )
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
    )
    token: Mapped[str] = mapped_column(String(255), nullable=False)
    verification_code: Mapped[str] = mapped_column(String(16), nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    consumed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    booking: Mapped[Booking] = relationship(back_populates="credentials")
    attendee: Mapped[Attendee | None] = relationship()

    __table_args__ = (
        UniqueConstraint("token", name="uq_credential_token"),
        UniqueConstraint("booking_id", "attendee_id", name="uq_credential_booking_attendee"),
        UniqueConstraint("event_id", "verification_code", name="uq_credential_event_code"),
    )


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_outbox_dedupe_key"),
    )
