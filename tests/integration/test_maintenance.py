# tests/integration/test_maintenance.py

from datetime import timedelta

from ticket_engine.application.booking_service import BookingService
from ticket_engine.application.maintenance import MaintenanceWorker
from ticket_engine.domain.caller import CallerContext
from ticket_engine.domain.clock import utc_now
from ticket_engine.domain.policy import BookingPolicy
from ticket_engine.domain.state_machine import BookingStatus, PaymentStatus
from ticket_engine.domain.validation import AttendeeDetails, BookingDraft
from ticket_engine.infrastructure.db.session import get_db_session
from ticket_engine.infrastructure.repositories.inventory_ledger import InventoryLedger

POLICY = BookingPolicy(reservation_ttl=timedelta(minutes=15))


def _draft(event, quantity, key) -> BookingDraft:
    return BookingDraft(
        event_id=event["event_id"],
        ticket_type_id=event["ticket_types"]["Regular"],
        quantity=quantity,
        idempotency_key=key,
        attendees=tuple(
            AttendeeDetails(name=f"Guest {i}", email=f"guest{i}@example.com", phone="0800")
            for i in range(quantity)
        ),
    )


def test_unpaid_hold_is_released_after_ttl(create_event):
    capacity = 4
    event = create_event(ticket_types=[{"name": "Regular", "price": 5000, "capacity": capacity}])
    ticket_type_id = event["ticket_types"]["Regular"]
    caller = CallerContext(user_id="user-1")

    with get_db_session() as db:
        booking = BookingService(db, policy=POLICY).submit(caller, _draft(event, capacity, "hold"))
        booking_id = booking.id
        assert booking.status == BookingStatus.AWAITING_PAYMENT

    with get_db_session() as db:
        assert InventoryLedger(db).remaining(ticket_type_id) == 0

    # Nothing is due yet.
    with get_db_session() as db:
        assert BookingService(db, policy=POLICY).expire_stale_reservations() == 0

    with get_db_session() as db:
        released = BookingService(db, policy=POLICY).expire_stale_reservations(
            now=utc_now() + timedelta(minutes=16)
        )
        assert released == 1

    with get_db_session() as db:
        booking = BookingService(db).get_booking(caller, booking_id)
        assert booking.status == BookingStatus.FAILED
        assert booking.payment_status == PaymentStatus.FAILED
        assert booking.failure_reason == "PAYMENT_WINDOW_EXPIRED"

    # Released capacity can be reserved again, all the way up to the cap.
    with get_db_session() as db:
        ledger = InventoryLedger(db)
        assert ledger.remaining(ticket_type_id) == capacity
        ledger.try_reserve(ticket_type_id, capacity)
        assert ledger.remaining(ticket_type_id) == 0


def test_payment_after_expiry_is_rejected(
    client, create_event, booking_payload, user_headers, payment_authority
):
    event = create_event(ticket_types=[{"name": "Regular", "price": 5000, "capacity": 2}])
    booking_id = client.post(
        "/bookings",
        json=booking_payload(event, ticket_type="Regular"),
        headers=user_headers(),
    ).json()["booking_id"]

    with get_db_session() as db:
        BookingService(db).expire_stale_reservations(now=utc_now() + timedelta(hours=1))

    response = client.post(
        f"/bookings/{booking_id}/payment",
        json={"payment_confirmation_id": "pay_late"},
        headers=user_headers(),
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "INVALID_STATE_TRANSITION"
    assert payment_authority.calls == []


def test_worker_pass_runs_sweep_and_retry(monkeypatch):
    calls = []
    monkeypatch.setattr(
        "ticket_engine.application.maintenance.expire_stale_reservations",
        lambda policy=None: calls.append("sweep") or 0,
    )
    monkeypatch.setattr(
        "ticket_engine.application.maintenance.retry_pending_issuance",
        lambda policy=None: calls.append("retry") or 0,
    )

    MaintenanceWorker(interval_seconds=60).run_once()

    assert calls == ["sweep", "retry"]


def test_worker_disabled_by_zero_interval(monkeypatch):
    monkeypatch.setenv("MAINTENANCE_INTERVAL_SECONDS", "0")

    assert MaintenanceWorker.from_env() is None
