"""
Cancels orders that were never paid and gives their stock back.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import UUID
import logging
import threading

from fulfillment.config import settings
from fulfillment.db.database import unit_of_work
from fulfillment.errors import FulfillmentError
from fulfillment.services.order_lifecycle import OrderLifecycle
from fulfillment.services.order_store import OrderStore

logger = logging.getLogger(__name__)

EXPIRED_REASON = "expired"


@dataclass
class SweepResult:
    candidates: int = 0
    cancelled: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[Tuple[UUID, str]] = field(default_factory=list)


class ExpirationSweeper:
    """Drives stale PENDING orders through the normal cancel path.

    Each order is cancelled in its own transaction and its lock is requested
    with NOWAIT, so an order busy in a webhook is reported as a failure for
    this run and picked up again by the next one.
    """

    def __init__(
        self,
        lifecycle: OrderLifecycle,
        session_factory=None,
        expiration_minutes: Optional[int] = None,
        batch_size: int = 500,
    ):
        self.lifecycle = lifecycle
        self.session_factory = session_factory
        self.expiration_minutes = expiration_minutes or settings.order_expiration_minutes
        if self.expiration_minutes <= settings.payment_session_expiry_minutes:
            # A shorter window would cancel orders whose checkout session can still be paid
            raise ValueError(
                f"Expiration window of {self.expiration_minutes} minutes must be longer than the "
                f"{settings.payment_session_expiry_minutes} minute payment session expiry"
            )
        self.batch_size = batch_size

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=self.expiration_minutes)

        with unit_of_work(self.session_factory) as db:
            candidates = OrderStore(db).find_expired_pending(cutoff, limit=self.batch_size)

        result = SweepResult(candidates=len(candidates))
        for order_id in candidates:
            try:
                outcome = self.lifecycle.cancel(order_id, reason=EXPIRED_REASON, nowait=True)
            except FulfillmentError as e:
                logger.warning(f"Could not expire order {order_id}: {e.message}")
                result.failed += 1
                result.failures.append((order_id, e.message))
                continue
            except Exception as e:
                logger.error(f"Unexpected error expiring order {order_id}: {e}", exc_info=True)
                result.failed += 1
                result.failures.append((order_id, str(e)))
                continue

            if outcome.applied:
                result.cancelled += 1
            else:
                # Paid or cancelled since the candidate query ran
                result.skipped += 1

        if result.candidates:
            logger.info(
                f"Expiration sweep: {result.candidates} candidates, {result.cancelled} cancelled, "
                f"{result.skipped} skipped, {result.failed} failed"
            )
        return result


class ExpirationScheduler:
    """Runs the sweeper on a fixed interval in a daemon thread"""

    def __init__(self, sweeper: ExpirationSweeper, interval_seconds: Optional[float] = None):
        self.sweeper = sweeper
        self.interval_seconds = interval_seconds or settings.sweeper_interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            logger.warning("Expiration scheduler is already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="expiration-sweeper")
        self._thread.start()
        logger.info(f"Started expiration scheduler (every {self.interval_seconds}s)")

    def stop(self, timeout: float = 10.0):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Stopped expiration scheduler")

    def _run(self):
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.sweeper.sweep()
            except Exception as e:
                logger.error(f"Expiration sweep failed: {e}", exc_info=True)
