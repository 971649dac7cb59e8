import hashlib
import json
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticket_engine.application.credential_service import CredentialIssuer
from ticket_engine.domain.caller import CallerContext
from ticket_engine.domain.clock import as_utc, utc_now
from ticket_engine.domain.exceptions import (
    BookingNotFoundError,
    CancellationNotAllowedError,
    CredentialIssuanceError,
    EventClosedError,
    EventNotFoundError,
    ForbiddenError,
    IdempotencyConflictError,
    InsufficientInventoryError,
    InvalidStateTransitionError,
    PaymentAlreadyUsedError,
    PaymentAuthorityError,
    PaymentFailedError,
    PaymentTimeoutError,
    ReservationExpiredError,
    TicketEngineError,
    TicketTypeNotFoundError,
)
from ticket_engine.domain.payment import PaymentAuthority, PaymentConfirmation
from ticket_engine.domain.policy import BookingPolicy
from ticket_engine.domain.pricing import price
from ticket_engine.domain.state_machine import BookingStateMachine, BookingStatus, PaymentStatus
from ticket_engine.domain.validation import BookingDraft, BookingValidator
from ticket_engine.infrastructure.db.models import Booking, Reservation, TicketType
from ticket_engine.infrastructure.repositories.booking_repository import BookingRepository
from ticket_engine.infrastructure.repositories.credential_repository import CredentialRepository
from ticket_engine.infrastructure.repositories.event_repository import EventRepository
from ticket_engine.infrastructure.repositories.inventory_ledger import InventoryLedger
from ticket_engine.infrastructure.repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)

# Payment authority round trips run here so they can be bounded by a timeout.
_payment_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="payment-authority")


def request_fingerprint(user_id: str, draft: BookingDraft) -> str:
    payload = {
        "user_id": user_id,
        "event_id": draft.event_id,
        "ticket_type_id": draft.ticket_type_id,
        "quantity": draft.quantity,
        "attendees": [
            [attendee.name, attendee.email.lower(), attendee.phone]
            for attendee in (a.normalized() for a in draft.attendees)
        ],
    }
    encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class BookingService:
    """Application service coordinating the booking lifecycle."""

    def __init__(
        self,
        db: Session,
        payment_authority: PaymentAuthority | None = None,
        policy: BookingPolicy | None = None,
        issuer: CredentialIssuer | None = None,
    ):
        self.db = db
        self.payment_authority = payment_authority
        self.policy = policy or BookingPolicy()
        self.validator = BookingValidator(self.policy)
        self.ledger = InventoryLedger(db, self.policy)
        self.issuer = issuer or CredentialIssuer(db)
        self.booking_repository = BookingRepository(db)
        self.event_repository = EventRepository(db)
        self.credential_repository = CredentialRepository(db)
        self.outbox = OutboxRepository(db)

    # -----------------------------
    # Submission
    # -----------------------------
    def submit(self, caller: CallerContext, draft: BookingDraft) -> Booking:
        fingerprint = request_fingerprint(caller.user_id, draft)

        existing = self._find_duplicate(caller, draft, fingerprint)
        if existing:
            return self._replay(existing, fingerprint, draft)

        booking = Booking(
            user_id=caller.user_id,
            event_id=draft.event_id,
            ticket_type_id=draft.ticket_type_id,
            quantity=draft.quantity,
            idempotency_key=draft.idempotency_key,
            request_fingerprint=fingerprint,
            currency=self.policy.currency,
            credential_mode=Booking.PER_ATTENDEE,
            status=BookingStatus.DRAFT,
        )

        self._transition(booking, BookingStatus.VALIDATING)
        try:
            ticket_type = self._resolve_ticket_type(draft)
            valid = self.validator.validate(draft, remaining=ticket_type.remaining)
        except TicketEngineError as exc:
            self._transition(booking, BookingStatus.FAILED)
            logger.info(
                "Booking rejected during validation. user_id=%s event_id=%s reason=%s",
                caller.user_id,
                draft.event_id,
                exc.code,
            )
            raise

        pricing = price(ticket_type.price, valid.quantity, self.policy)
        booking.subtotal = pricing.subtotal
        booking.platform_fee = pricing.platform_fee
        booking.vat = pricing.vat
        booking.total = pricing.total
        booking.payment_status = (
            PaymentStatus.NOT_REQUIRED if pricing.is_free else PaymentStatus.PENDING
        )

        self._transition(booking, BookingStatus.RESERVING)
        try:
            with self.db.begin_nested():
                reservation = self.ledger.try_reserve(ticket_type.id, valid.quantity)
                booking.reservation_id = reservation.id
                if not pricing.is_free:
                    self._transition(booking, BookingStatus.AWAITING_PAYMENT)
                self.booking_repository.add_booking(booking, valid.attendees)
        except InsufficientInventoryError as exc:
            self._transition(booking, BookingStatus.FAILED)
            logger.info(
                "Booking rejected, insufficient inventory. ticket_type_id=%s requested=%s remaining=%s",
                exc.ticket_type_id,
                exc.requested,
                exc.remaining,
            )
            raise
        except IntegrityError:
            # Lost a race against a concurrent submission with the same key.
            # The savepoint rollback already returned its seats.
            winner = self.booking_repository.get_by_idempotency_key(
                caller.user_id, draft.idempotency_key
            )
            if not winner:
                raise
            return self._replay(winner, fingerprint, draft)

        if pricing.is_free:
            self.ledger.commit(reservation.id)
            self._transition(booking, BookingStatus.ISSUING)
            return self._issue(booking)

        # Hold is durable before any external call, so the TTL sweep can
        # reclaim it if this process never comes back.
        self.db.commit()
        logger.info(
            "Booking awaiting payment. booking_id=%s total=%s %s",
            booking.id,
            booking.total,
            booking.currency,
        )

        if draft.payment_confirmation_id:
            return self._settle_payment(booking, draft.payment_confirmation_id)
        return booking

    def confirm_payment(
        self,
        caller: CallerContext,
        booking_id: str,
        payment_confirmation_id: str,
    ) -> Booking:
        booking = self._owned_booking(caller, booking_id)
        return self._settle_payment(booking, payment_confirmation_id)

    # -----------------------------
    # Queries
    # -----------------------------
    def get_booking(self, caller: CallerContext, booking_id: str) -> Booking:
        return self._owned_booking(caller, booking_id)

    def list_bookings(
        self,
        caller: CallerContext,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Booking], int]:
        safe_page = max(1, page)
        safe_limit = max(1, min(limit, 100))
        return self.booking_repository.list_for_user(caller.user_id, safe_page, safe_limit)

    def can_cancel(self, booking: Booking) -> bool:
        if booking.status != BookingStatus.CONFIRMED:
            return False
        event = self.event_repository.get_by_id(booking.event_id)
        return bool(event) and as_utc(event.ends_at) > utc_now()

    # -----------------------------
    # Cancellation
    # -----------------------------
    def cancel(self, caller: CallerContext, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise BookingNotFoundError(booking_id)
        if booking.user_id != caller.user_id:
            raise ForbiddenError("Booking belongs to another user")

        if booking.status != BookingStatus.CONFIRMED:
            raise CancellationNotAllowedError(
                f"Cannot cancel booking in status {booking.status.value}."
            )

        event = self.event_repository.get_by_id(booking.event_id)
        if as_utc(event.ends_at) <= utc_now():
            raise CancellationNotAllowedError("Event has already ended.")

        if self.credential_repository.count_consumed_for_booking(booking.id):
            raise CancellationNotAllowedError("Booking has already been checked in.")

        if not self.ledger.restore(booking.reservation_id):
            raise CancellationNotAllowedError("Booking inventory is not committed.")

        self._transition(booking, BookingStatus.CANCELLED)
        if booking.payment_status == PaymentStatus.SUCCEEDED:
            booking.payment_status = PaymentStatus.REFUND_PENDING

        self.outbox.add(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="BOOKING_CANCELLED",
            payload={
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "ticket_type_id": booking.ticket_type_id,
                "quantity": booking.quantity,
                "refund_amount": booking.total,
            },
            dedupe_key=f"booking:{booking.id}:cancelled",
        )
        self.db.flush()
        logger.info("Booking cancelled. booking_id=%s", booking.id)
        return booking

    # -----------------------------
    # Maintenance
    # -----------------------------
    def expire_stale_reservations(self, now: datetime | None = None) -> int:
        """
        Releases holds past their TTL and fails the bookings that were
        still waiting on payment for them.
        """
        released = self.ledger.sweep_expired(now)

        for reservation in released:
            booking = self.booking_repository.get_by_reservation(reservation.id)
            if not booking:
                continue
            booking = self.booking_repository.get_by_id(booking.id, for_update=True)
            if booking.status != BookingStatus.AWAITING_PAYMENT:
                continue
            self._mark_payment_failed(booking, "PAYMENT_WINDOW_EXPIRED")
            logger.info(
                "Payment window expired. booking_id=%s reservation_id=%s",
                booking.id,
                reservation.id,
            )

        self.db.flush()
        return len(released)

    def retry_pending_issuance(self) -> int:
        """Re-runs credential issuance for bookings stuck in ISSUING."""
        confirmed = 0
        for booking in self.booking_repository.list_by_status(BookingStatus.ISSUING):
            self._issue(booking)
            if booking.status == BookingStatus.CONFIRMED:
                confirmed += 1
            self.db.commit()
        return confirmed

    # -----------------------------
    # Internals
    # -----------------------------
    def _find_duplicate(
        self,
        caller: CallerContext,
        draft: BookingDraft,
        fingerprint: str,
    ) -> Booking | None:
        existing = self.booking_repository.get_by_idempotency_key(
            caller.user_id, draft.idempotency_key
        )
        if existing or not draft.payment_confirmation_id:
            return existing

        paid_with = self.booking_repository.get_by_payment_reference(
            draft.payment_confirmation_id
        )
        if paid_with and (
            paid_with.user_id != caller.user_id
            or paid_with.request_fingerprint != fingerprint
        ):
            raise PaymentAlreadyUsedError("Payment id already consumed by another booking.")
        return paid_with

    def _replay(self, existing: Booking, fingerprint: str, draft: BookingDraft) -> Booking:
        if existing.request_fingerprint != fingerprint:
            raise IdempotencyConflictError(
                "Idempotency key was already used with different booking details"
            )

        logger.info(
            "Returning existing booking for duplicate submission. booking_id=%s status=%s",
            existing.id,
            existing.status.value,
        )
        if (
            existing.status == BookingStatus.AWAITING_PAYMENT
            and draft.payment_confirmation_id
        ):
            return self._settle_payment(existing, draft.payment_confirmation_id)
        return existing

    def _resolve_ticket_type(self, draft: BookingDraft) -> TicketType:
        event = self.event_repository.get_by_id(draft.event_id)
        if not event:
            raise EventNotFoundError(draft.event_id)

        ticket_type = self.event_repository.get_ticket_type(draft.ticket_type_id)
        if not ticket_type or ticket_type.event_id != event.id:
            raise TicketTypeNotFoundError(draft.ticket_type_id)

        if as_utc(event.ends_at) <= utc_now():
            raise EventClosedError("Event has already ended")
        return ticket_type

    def _owned_booking(self, caller: CallerContext, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)
        if booking.user_id != caller.user_id:
            raise ForbiddenError("Booking belongs to another user")
        return booking

    def _settle_payment(self, booking: Booking, payment_confirmation_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking.id, for_update=True)
        if booking.status != BookingStatus.AWAITING_PAYMENT:
            if self._settled_with(booking, payment_confirmation_id):
                return booking
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=BookingStatus.PAID.value,
            )

        if self.payment_authority is None:
            raise PaymentAuthorityError("No payment authority configured")

        paid_with = self.booking_repository.get_by_payment_reference(payment_confirmation_id)
        if paid_with and paid_with.id != booking.id:
            raise PaymentAlreadyUsedError("Payment id already consumed by another booking.")

        # Claim the payment id before asking the authority about it.
        booking.payment_reference = payment_confirmation_id
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise PaymentAlreadyUsedError(
                "Payment id already consumed by another booking."
            ) from exc

        try:
            confirmation = self._confirm_with_authority(payment_confirmation_id, booking.total)
        except (PaymentTimeoutError, PaymentAuthorityError) as exc:
            logger.warning(
                "Payment authority unavailable. booking_id=%s payment_id=%s error=%s",
                booking.id,
                payment_confirmation_id,
                exc,
            )
            self._fail_payment(booking.id, "PAYMENT_AUTHORITY_UNAVAILABLE", keep_reference=False)
            raise PaymentTimeoutError(
                "Payment could not be confirmed in time. Your reservation was released; please retry."
            ) from exc

        if not confirmation.ok:
            logger.warning(
                "Payment rejected. booking_id=%s payment_id=%s reason=%s",
                booking.id,
                payment_confirmation_id,
                confirmation.reason,
            )
            self._fail_payment(booking.id, confirmation.reason or "PAYMENT_REJECTED")
            raise PaymentFailedError(
                "Payment could not be verified. Your reservation was released; please retry."
            )

        return self._complete_payment(booking.id, payment_confirmation_id)

    def _confirm_with_authority(self, payment_confirmation_id: str, amount: int) -> PaymentConfirmation:
        future = _payment_executor.submit(
            self.payment_authority.confirm,
            payment_confirmation_id,
            amount,
        )
        try:
            return future.result(timeout=self.policy.payment_timeout_seconds)
        except FuturesTimeoutError as exc:
            future.cancel()
            raise PaymentTimeoutError("Payment authority timed out") from exc
        except PaymentAuthorityError:
            raise
        except Exception as exc:
            # Transport failures from the provider SDK carry no verdict.
            raise PaymentAuthorityError(f"Payment authority call failed: {exc!r}") from exc

    @staticmethod
    def _settled_with(booking: Booking, payment_confirmation_id: str) -> bool:
        return booking.payment_reference == payment_confirmation_id and booking.status in (
            BookingStatus.PAID,
            BookingStatus.ISSUING,
            BookingStatus.CONFIRMED,
        )

    def _complete_payment(self, booking_id: str, payment_confirmation_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, for_update=True)

        if self._settled_with(booking, payment_confirmation_id):
            # A concurrent confirmation of the same payment finished first.
            return booking

        if booking.status != BookingStatus.AWAITING_PAYMENT:
            # The hold expired while the authority was answering.
            booking.payment_status = PaymentStatus.REFUND_PENDING
            self._record_refund(booking, "PAYMENT_WINDOW_EXPIRED")
            self.db.commit()
            raise PaymentTimeoutError(
                "Your reservation expired before payment completed. A refund has been requested."
            )

        try:
            self.ledger.commit(booking.reservation_id)
        except ReservationExpiredError:
            hold_status = self.ledger.status(booking.reservation_id)
            if hold_status == Reservation.COMMITTED:
                booking = self.booking_repository.get_by_id(booking_id, for_update=True)
                if self._settled_with(booking, payment_confirmation_id):
                    return booking
                raise InvalidStateTransitionError(
                    from_state=booking.status.value,
                    to_state=BookingStatus.PAID.value,
                )
            if hold_status != Reservation.RELEASED or not self._rereserve(booking):
                self._transition(booking, BookingStatus.FAILED)
                booking.payment_status = PaymentStatus.REFUND_PENDING
                booking.failure_reason = "SOLD_OUT_DURING_PAYMENT"
                self._record_refund(booking, "SOLD_OUT_DURING_PAYMENT")
                self.db.commit()
                raise PaymentFailedError(
                    "Tickets sold out while payment was processing. A refund has been requested."
                )

        booking.payment_status = PaymentStatus.SUCCEEDED
        self._transition(booking, BookingStatus.PAID)
        self._transition(booking, BookingStatus.ISSUING)
        logger.info("Payment confirmed. booking_id=%s", booking.id)
        return self._issue(booking)

    def _rereserve(self, booking: Booking) -> bool:
        try:
            with self.db.begin_nested():
                reservation = self.ledger.try_reserve(booking.ticket_type_id, booking.quantity)
                self.ledger.commit(reservation.id)
        except InsufficientInventoryError:
            return False
        booking.reservation_id = reservation.id
        return True

    def _fail_payment(self, booking_id: str, reason: str, keep_reference: bool = True) -> None:
        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if booking.status != BookingStatus.AWAITING_PAYMENT:
            self.db.commit()
            return

        self.ledger.release(booking.reservation_id)
        if not keep_reference:
            # The id was never judged; let the payer reuse it.
            booking.payment_reference = None
        self._mark_payment_failed(booking, reason)
        self.db.commit()

    def _mark_payment_failed(self, booking: Booking, reason: str) -> None:
        booking.payment_status = PaymentStatus.FAILED
        booking.failure_reason = reason
        self._transition(booking, BookingStatus.PAYMENT_FAILED)
        self._transition(booking, BookingStatus.FAILED)
        self.outbox.add(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="BOOKING_PAYMENT_FAILED",
            payload={
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "ticket_type_id": booking.ticket_type_id,
                "reason": reason,
            },
            dedupe_key=f"booking:{booking.id}:payment_failed",
        )

    def _record_refund(self, booking: Booking, reason: str) -> None:
        self.outbox.add(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="PAYMENT_REFUND_REQUIRED",
            payload={
                "booking_id": booking.id,
                "payment_reference": booking.payment_reference,
                "amount": booking.total,
                "currency": booking.currency,
                "reason": reason,
            },
            dedupe_key=f"booking:{booking.id}:refund",
        )

    def _issue(self, booking: Booking) -> Booking:
        self.db.flush()
        try:
            with self.db.begin_nested():
                credentials = self.issuer.issue(booking.id)
        except CredentialIssuanceError as exc:
            # Seats and money are already committed; the booking waits in
            # ISSUING for the maintenance worker.
            logger.exception("Credential issuance failed. booking_id=%s", booking.id)
            self.outbox.add(
                aggregate_type="booking",
                aggregate_id=booking.id,
                event_type="CREDENTIAL_ISSUANCE_FAILED",
                payload={"booking_id": booking.id},
                dedupe_key=f"booking:{booking.id}:issuance_failed",
                last_error=str(exc),
            )
            return booking

        self._transition(booking, BookingStatus.CONFIRMED)
        self.outbox.add(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="BOOKING_CONFIRMED",
            payload={
                "booking_id": booking.id,
                "user_id": booking.user_id,
                "event_id": booking.event_id,
                "ticket_type_id": booking.ticket_type_id,
                "quantity": booking.quantity,
                "total": booking.total,
                "currency": booking.currency,
                "credential_ids": [credential.id for credential in credentials],
            },
            dedupe_key=f"booking:{booking.id}:confirmed",
        )
        self.db.flush()
        logger.info(
            "Booking confirmed. booking_id=%s credentials=%s",
            booking.id,
            len(credentials),
        )
        return booking

    def _transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.status, to_status)
        self.booking_repository.update_status(booking, to_status)
