# tests/conftest.py

import os
import tempfile
import threading
from datetime import timedelta

_TEST_DB_DIR = tempfile.mkdtemp(prefix="ticket-engine-tests-")

# Must be set before the engine is created at import time.
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ["CREDENTIAL_SIGNING_SECRET"] = "test-signing-secret"
os.environ["MAINTENANCE_INTERVAL_SECONDS"] = "0"
os.environ["DB_CONNECT_MAX_RETRIES"] = "1"

import pytest
from fastapi.testclient import TestClient

from ticket_engine.api.routes.routes import get_payment_authority
from ticket_engine.domain.clock import utc_now
from ticket_engine.domain.payment import PaymentConfirmation
from ticket_engine.infrastructure.db.models import Base
from ticket_engine.infrastructure.db.session import engine, get_db_session
from ticket_engine.infrastructure.repositories.event_repository import EventRepository
from ticket_engine.main import app


class FakePaymentAuthority:
    """Stands in for Razorpay. Unknown payment ids are treated as captured."""

    def __init__(self):
        self.results: dict[str, PaymentConfirmation] = {}
        self.calls: list[tuple[str, int]] = []
        self.delay_seconds = 0.0
        self.error: Exception | None = None
        self._lock = threading.Lock()

    def reject(self, payment_confirmation_id: str, reason: str = "PAYMENT_FAILED") -> None:
        self.results[payment_confirmation_id] = PaymentConfirmation(ok=False, reason=reason)

    def confirm(self, payment_confirmation_id: str, min_amount: int) -> PaymentConfirmation:
        with self._lock:
            self.calls.append((payment_confirmation_id, min_amount))
        if self.delay_seconds:
            threading.Event().wait(self.delay_seconds)
        if self.error:
            raise self.error
        return self.results.get(payment_confirmation_id, PaymentConfirmation(ok=True))


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def payment_authority():
    return FakePaymentAuthority()


@pytest.fixture
def client(payment_authority):
    app.dependency_overrides[get_payment_authority] = lambda: payment_authority
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def create_event():
    def _create(
        ticket_types=None,
        organizer_id="organizer-1",
        title="Lagos Tech Meetup",
        starts_in=timedelta(days=7),
        duration=timedelta(hours=4),
    ):
        starts_at = utc_now() + starts_in
        with get_db_session() as db:
            event = EventRepository(db).create_event(
                title=title,
                starts_at=starts_at,
                ends_at=starts_at + duration,
                ticket_types=ticket_types
                or [{"name": "General", "price": 0, "capacity": 10}],
                organizer_id=organizer_id,
            )
            return {
                "event_id": event.id,
                "ticket_types": {
                    ticket_type.name: ticket_type.id for ticket_type in event.ticket_types
                },
            }

    return _create


@pytest.fixture
def booking_payload():
    def _payload(event, ticket_type="General", quantity=1, key="key-1", **extra):
        payload = {
            "event_id": event["event_id"],
            "ticket_type_id": event["ticket_types"][ticket_type],
            "quantity": quantity,
            "idempotency_key": key,
            "attendees": [
                {
                    "name": f"Attendee {index}",
                    "email": f"attendee{index}@example.com",
                    "phone": f"+23480000000{index:02d}",
                }
                for index in range(quantity)
            ],
        }
        payload.update(extra)
        return payload

    return _payload


def headers(user_id: str = "user-1") -> dict:
    return {"X-User-Id": user_id}


@pytest.fixture
def user_headers():
    return headers


def in_parallel(count: int, call):
    """Runs call() on count threads released together; returns results in thread order."""
    barrier = threading.Barrier(count)
    results = [None] * count

    def worker(index):
        barrier.wait()
        results[index] = call()

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


@pytest.fixture
def run_in_parallel():
    return in_parallel
