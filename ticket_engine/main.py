import logging
import os
import time

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from ticket_engine.api.routes.routes import router
from ticket_engine.application.credential_service import credential_signing_secret
from ticket_engine.application.maintenance import MaintenanceWorker
from ticket_engine.domain.policy import BookingPolicy
from ticket_engine.infrastructure.db.session import engine
from ticket_engine.infrastructure.db.models import Base

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Ticket Booking & Verification Engine")

app.include_router(router)
logger = logging.getLogger(__name__)

_maintenance_worker: MaintenanceWorker | None = None


def _wait_for_db() -> None:
    # Handles the common case where API starts before Postgres is ready.
    max_retries = int(os.getenv("DB_CONNECT_MAX_RETRIES", "30"))
    retry_delay_seconds = float(os.getenv("DB_CONNECT_RETRY_DELAY", "1.5"))

    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable.")
            return
        except OperationalError:
            if attempt == max_retries:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            time.sleep(retry_delay_seconds)


@app.on_event("startup")
def on_startup() -> None:
    global _maintenance_worker

    _wait_for_db()
    Base.metadata.create_all(bind=engine)

    # Warns once at boot when the development secret is in use.
    credential_signing_secret()

    _maintenance_worker = MaintenanceWorker.from_env(BookingPolicy.from_env())
    if _maintenance_worker:
        _maintenance_worker.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    if _maintenance_worker:
        _maintenance_worker.stop()
