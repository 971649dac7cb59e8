from typing import Literal
from pydantic import BaseModel, Field


class AttendeeInput(BaseModel):
    # Left permissive so every missing field is reported in one response.
    name: str = ""
    email: str = ""
    phone: str = ""


class BookingRequest(BaseModel):
    event_id: str
    ticket_type_id: str
    quantity: int
    attendees: list[AttendeeInput] = Field(default_factory=list)
    idempotency_key: str = Field(min_length=1, max_length=128)
    payment_confirmation_id: str | None = None


class PaymentRequest(BaseModel):
    payment_confirmation_id: str = Field(min_length=1)


class PricingResponse(BaseModel):
    subtotal: int
    platform_fee: int
    vat: int
    total: int
    currency: str


class CredentialResponse(BaseModel):
    credential_id: str
    attendee_id: str | None
    token: str
    verification_code: str
    display_code: str
    consumed: bool
    checked_in_at: str | None = None


class AttendeeResponse(BaseModel):
    attendee_id: str
    name: str
    email: str
    phone: str


class BookingResponse(BaseModel):
    booking_id: str
    event_id: str
    ticket_type_id: str
    quantity: int
    status: str
    payment_status: str
    pricing: PricingResponse
    attendees: list[AttendeeResponse] = Field(default_factory=list)
    credentials: list[CredentialResponse] = Field(default_factory=list)
    failure_reason: str | None = None
    can_cancel: bool = False
    created_at: str | None = None


class BookingListResponse(BaseModel):
    items: list[BookingResponse]
    page: int
    limit: int
    total: int


class TicketTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    price: int = Field(ge=0)
    capacity: int = Field(ge=0)


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=128)
    starts_at: str
    ends_at: str
    organizer_id: str | None = None
    ticket_types: list[TicketTypeCreate] = Field(min_length=1)


class TicketTypeResponse(BaseModel):
    id: str
    name: str
    price: int
    capacity: int
    sold: int
    remaining: int


class EventResponse(BaseModel):
    id: str
    title: str
    organizer_id: str | None
    starts_at: str
    ends_at: str
    max_attendees: int
    tickets_sold: int
    ticket_types: list[TicketTypeResponse]


class CheckInResponse(BaseModel):
    result: Literal["CHECKED_IN", "ALREADY_CHECKED_IN"]
    credential_id: str
    booking_id: str
    attendee_id: str | None
    checked_in_at: str | None


class AttendeeCheckInResponse(BaseModel):
    attendee_id: str
    booking_id: str
    name: str
    email: str
    phone: str
    checked_in: bool
    checked_in_at: str | None = None


class CheckInStats(BaseModel):
    total: int
    checked_in: int
    pending: int


class AttendeeListResponse(BaseModel):
    items: list[AttendeeCheckInResponse]
    page: int
    limit: int
    total: int
    stats: CheckInStats


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    last_error: str | None = None
    created_at: str
