from datetime import datetime
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ticket_engine.infrastructure.db.session import SessionLocal
from ticket_engine.application.booking_service import BookingService
from ticket_engine.application.checkin_service import ATTENDEE_FILTERS, CheckInService
from ticket_engine.api.schemas.schemas import (
    AttendeeCheckInResponse,
    AttendeeListResponse,
    AttendeeResponse,
    BookingListResponse,
    BookingRequest,
    BookingResponse,
    CheckInResponse,
    CheckInStats,
    CredentialResponse,
    EventCreate,
    EventResponse,
    OutboxEventResponse,
    PaymentRequest,
    PricingResponse,
    TicketTypeResponse,
)
from ticket_engine.domain.caller import CallerContext
from ticket_engine.domain.clock import as_utc, utc_now
from ticket_engine.domain.credentials import format_verification_code
from ticket_engine.domain.exceptions import (
    BookingNotFoundError,
    BookingValidationError,
    CancellationNotAllowedError,
    EventMismatchError,
    EventNotFoundError,
    ForbiddenError,
    IdempotencyConflictError,
    InsufficientInventoryError,
    InvalidCredentialError,
    InvalidStateTransitionError,
    PaymentAlreadyUsedError,
    PaymentAuthorityError,
    PaymentFailedError,
    TicketEngineError,
    TicketTypeNotFoundError,
)
from ticket_engine.domain.payment import PaymentAuthority
from ticket_engine.domain.policy import BookingPolicy
from ticket_engine.domain.validation import AttendeeDetails, BookingDraft
from ticket_engine.infrastructure.db.models import Booking, Event
from ticket_engine.infrastructure.repositories.event_repository import EventRepository
from ticket_engine.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_STATUS: tuple[tuple[type[TicketEngineError], int], ...] = (
    (BookingValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InsufficientInventoryError, status.HTTP_409_CONFLICT),
    (IdempotencyConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (PaymentAlreadyUsedError, status.HTTP_409_CONFLICT),
    (CancellationNotAllowedError, status.HTTP_409_CONFLICT),
    (EventMismatchError, status.HTTP_409_CONFLICT),
    (PaymentFailedError, status.HTTP_402_PAYMENT_REQUIRED),
    (EventNotFoundError, status.HTTP_404_NOT_FOUND),
    (TicketTypeNotFoundError, status.HTTP_404_NOT_FOUND),
    (BookingNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidCredentialError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (PaymentAuthorityError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_caller(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> CallerContext:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHENTICATED", "message": "X-User-Id header is required"},
        )
    return CallerContext(user_id=x_user_id.strip())


def get_policy() -> BookingPolicy:
    return BookingPolicy.from_env()


def get_payment_authority() -> PaymentAuthority | None:
    # Imported lazily so free-ticket deployments run without Razorpay keys.
    from ticket_engine.infrastructure.payments.razorpay_authority import (
        RazorpayPaymentAuthority,
    )

    try:
        return RazorpayPaymentAuthority.from_env()
    except PaymentAuthorityError as exc:
        logger.warning("Payment authority unavailable: %s", exc)
        return None


def _http_error(exc: TicketEngineError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = mapped
            break

    detail: dict[str, Any] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, BookingValidationError):
        detail["errors"] = [
            {"field": error.field, "message": error.message} for error in exc.errors
        ]
    elif isinstance(exc, InsufficientInventoryError):
        detail["remaining"] = exc.remaining
    elif isinstance(exc, PaymentAuthorityError):
        detail["message"] = "Payment service is not available."

    return HTTPException(status_code=status_code, detail=detail)


def _isoformat(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def _event_response(event: Event) -> EventResponse:
    return EventResponse(
        id=event.id,
        title=event.title,
        organizer_id=event.organizer_id,
        starts_at=_isoformat(event.starts_at),
        ends_at=_isoformat(event.ends_at),
        max_attendees=event.max_attendees,
        tickets_sold=event.tickets_sold,
        ticket_types=[
            TicketTypeResponse(
                id=ticket_type.id,
                name=ticket_type.name,
                price=ticket_type.price,
                capacity=ticket_type.capacity,
                sold=ticket_type.sold,
                remaining=ticket_type.remaining,
            )
            for ticket_type in event.ticket_types
        ],
    )


def _booking_response(booking: Booking, service: BookingService) -> BookingResponse:
    positions = {attendee.id: attendee.position for attendee in booking.attendees}
    credentials = sorted(
        booking.credentials,
        key=lambda credential: positions.get(credential.attendee_id, -1),
    )
    return BookingResponse(
        booking_id=booking.id,
        event_id=booking.event_id,
        ticket_type_id=booking.ticket_type_id,
        quantity=booking.quantity,
        status=booking.status.value,
        payment_status=booking.payment_status.value,
        pricing=PricingResponse(
            subtotal=booking.subtotal,
            platform_fee=booking.platform_fee,
            vat=booking.vat,
            total=booking.total,
            currency=booking.currency,
        ),
        attendees=[
            AttendeeResponse(
                attendee_id=attendee.id,
                name=attendee.name,
                email=attendee.email,
                phone=attendee.phone,
            )
            for attendee in booking.attendees
        ],
        credentials=[
            CredentialResponse(
                credential_id=credential.id,
                attendee_id=credential.attendee_id,
                token=credential.token,
                verification_code=credential.verification_code,
                display_code=format_verification_code(credential.verification_code),
                consumed=credential.consumed,
                checked_in_at=_isoformat(credential.consumed_at),
            )
            for credential in credentials
        ],
        failure_reason=booking.failure_reason,
        can_cancel=service.can_cancel(booking),
        created_at=_isoformat(booking.created_at),
    )


def _outbox_response(item) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        last_error=item.last_error,
        created_at=_isoformat(item.created_at),
    )


@router.get("/health")
def health():
    return {"message": "Ticket Booking & Verification Engine is running"}


@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_by_status(status_filter, safe_limit)
    return [_outbox_response(item) for item in events]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: str,
    db: Session = Depends(get_db),
):
    repo = OutboxRepository(db)
    item = repo.get_by_id(event_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "OUTBOX_EVENT_NOT_FOUND", "message": "Outbox event not found"},
        )

    repo.mark_published(item, utc_now())
    db.flush()
    return _outbox_response(item)


@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    request: EventCreate,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    try:
        starts_at = datetime.fromisoformat(request.starts_at)
        ends_at = datetime.fromisoformat(request.ends_at)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_DATETIME", "message": "Invalid datetime format. Use ISO format."},
        ) from exc

    if ends_at < starts_at:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_DATETIME", "message": "ends_at must not be before starts_at."},
        )

    event = EventRepository(db).create_event(
        title=request.title,
        starts_at=starts_at,
        ends_at=ends_at,
        ticket_types=[ticket_type.model_dump() for ticket_type in request.ticket_types],
        organizer_id=request.organizer_id or caller.user_id,
    )
    logger.info("Event created. event_id=%s organizer_id=%s", event.id, event.organizer_id)
    return _event_response(event)


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(
    event_id: str,
    db: Session = Depends(get_db),
):
    event = EventRepository(db).get_by_id(event_id)
    if not event:
        raise _http_error(EventNotFoundError(event_id))
    return _event_response(event)


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingRequest,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
    policy: BookingPolicy = Depends(get_policy),
    payment_authority: PaymentAuthority | None = Depends(get_payment_authority),
):
    service = BookingService(db, payment_authority=payment_authority, policy=policy)
    draft = BookingDraft(
        event_id=request.event_id,
        ticket_type_id=request.ticket_type_id,
        quantity=request.quantity,
        idempotency_key=request.idempotency_key,
        attendees=tuple(
            AttendeeDetails(name=item.name, email=item.email, phone=item.phone)
            for item in request.attendees
        ),
        payment_confirmation_id=request.payment_confirmation_id,
    )

    try:
        booking = service.submit(caller, draft)
    except TicketEngineError as exc:
        raise _http_error(exc) from exc

    return _booking_response(booking, service)


@router.get("/bookings", response_model=BookingListResponse)
def list_bookings(
    page: int = 1,
    limit: int = 10,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    service = BookingService(db)
    safe_page = max(1, page)
    safe_limit = max(1, min(limit, 100))
    bookings, total = service.list_bookings(caller, safe_page, safe_limit)
    return BookingListResponse(
        items=[_booking_response(booking, service) for booking in bookings],
        page=safe_page,
        limit=safe_limit,
        total=total,
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    service = BookingService(db)
    try:
        booking = service.get_booking(caller, booking_id)
    except TicketEngineError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking, service)


@router.post("/bookings/{booking_id}/payment", response_model=BookingResponse)
def confirm_booking_payment(
    booking_id: str,
    request: PaymentRequest,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
    policy: BookingPolicy = Depends(get_policy),
    payment_authority: PaymentAuthority | None = Depends(get_payment_authority),
):
    service = BookingService(db, payment_authority=payment_authority, policy=policy)
    try:
        booking = service.confirm_payment(caller, booking_id, request.payment_confirmation_id)
    except TicketEngineError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking, service)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
    policy: BookingPolicy = Depends(get_policy),
):
    service = BookingService(db, policy=policy)
    try:
        booking = service.cancel(caller, booking_id)
    except TicketEngineError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking, service)


@router.post("/events/{event_id}/checkin", response_model=CheckInResponse)
def check_in(
    event_id: str,
    payload: Any = Body(...),
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    try:
        result = CheckInService(db).check_in(caller, event_id, payload)
    except TicketEngineError as exc:
        raise _http_error(exc) from exc

    return CheckInResponse(
        result=result.result,
        credential_id=result.credential_id,
        booking_id=result.booking_id,
        attendee_id=result.attendee_id,
        checked_in_at=_isoformat(result.checked_in_at),
    )


@router.get("/events/{event_id}/attendees", response_model=AttendeeListResponse)
def list_event_attendees(
    event_id: str,
    status_filter: str = "all",
    page: int = 1,
    limit: int = 50,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    if status_filter not in ATTENDEE_FILTERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "INVALID_FILTER",
                "message": f"status_filter must be one of {', '.join(ATTENDEE_FILTERS)}",
            },
        )

    safe_page = max(1, page)
    safe_limit = max(1, min(limit, 200))
    try:
        entries, total, stats = CheckInService(db).list_attendees(
            caller, event_id, status_filter, safe_page, safe_limit
        )
    except TicketEngineError as exc:
        raise _http_error(exc) from exc

    return AttendeeListResponse(
        items=[
            AttendeeCheckInResponse(
                attendee_id=entry.attendee.id,
                booking_id=entry.booking.id,
                name=entry.attendee.name,
                email=entry.attendee.email,
                phone=entry.attendee.phone,
                checked_in=entry.checked_in,
                checked_in_at=_isoformat(entry.credential.consumed_at) if entry.credential else None,
            )
            for entry in entries
        ],
        page=safe_page,
        limit=safe_limit,
        total=total,
        stats=CheckInStats(**stats),
    )
