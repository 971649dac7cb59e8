import logging
import os
import threading

from ticket_engine.application.booking_service import BookingService
from ticket_engine.domain.policy import BookingPolicy
from ticket_engine.infrastructure.db.session import get_db_session

logger = logging.getLogger(__name__)


def expire_stale_reservations(policy: BookingPolicy | None = None) -> int:
    with get_db_session() as db:
        return BookingService(db, policy=policy).expire_stale_reservations()


def retry_pending_issuance(policy: BookingPolicy | None = None) -> int:
    with get_db_session() as db:
        return BookingService(db, policy=policy).retry_pending_issuance()


class MaintenanceWorker(threading.Thread):
    """
    Background loop that reclaims abandoned payment holds and finishes
    bookings whose credential issuance failed.
    """

    def __init__(self, interval_seconds: float, policy: BookingPolicy | None = None):
        super().__init__(name="ticket-engine-maintenance", daemon=True)
        self.interval_seconds = interval_seconds
        self.policy = policy
        self._stop_event = threading.Event()

    @classmethod
    def from_env(cls, policy: BookingPolicy | None = None) -> "MaintenanceWorker | None":
        interval = float(os.getenv("MAINTENANCE_INTERVAL_SECONDS", "30"))
        if interval <= 0:
            logger.info("Maintenance worker disabled.")
            return None
        return cls(interval, policy=policy)

    def run(self) -> None:
        logger.info("Maintenance worker started. interval=%.1fs", self.interval_seconds)
        while not self._stop_event.wait(self.interval_seconds):
            self.run_once()
        logger.info("Maintenance worker stopped.")

    def run_once(self) -> None:
        # One failing pass must not end the loop; the next tick retries.
        try:
            released = expire_stale_reservations(self.policy)
            confirmed = retry_pending_issuance(self.policy)
        except Exception:
            logger.exception("Maintenance pass failed.")
            return

        if released or confirmed:
            logger.info(
                "Maintenance pass done. released=%s confirmed=%s",
                released,
                confirmed,
            )

    def stop(self) -> None:
        self._stop_event.set()
