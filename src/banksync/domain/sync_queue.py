"""Outbound sync queue.

Local category/tag edits of bank transactions are pushed back to the bank
through durable SyncQueueItem rows. Workers claim items under a lease, push
them through the bank client and record the outcome. Transient failures are
retried with capped exponential backoff; exhaustion or a permanent failure
leaves the item in the terminal ``failed`` state until an operator retries it.
"""

import logging
import random
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from banksync.bank.client import BankApiClient, PushResult
from banksync.bank.rate_limiter import ApiUsageTracker
from banksync.config import SyncConfig
from banksync.database.base import Database
from banksync.domain.entities import QueueStatus, SyncField, SyncQueueItem, SyncStatus
from banksync.domain.errors import (
    NotFoundError,
    SyncError,
    sync_item_not_found,
)
from banksync.utils.date_parser import utcnow

logger = logging.getLogger(__name__)

# A push may need two calls (tag diff reads the transaction first)
CALLS_PER_PUSH = 2


def compute_backoff(
    attempts: int,
    config: SyncConfig,
    rate_limited: bool = False,
    rng: Callable[[], float] = random.random,
) -> float:
    """Seconds to wait before the next attempt.

    delay = base_delay * 2**attempts * (1 + U(0, jitter_ratio)), capped at
    max_delay. With jitter_ratio <= 1 the delay never decreases as attempts
    grows. Rate-limited failures wait at least rate_limit_floor.

    Args:
        attempts: Attempts already made before the one that just failed
        config: Supplies base_delay, max_delay, jitter_ratio, rate_limit_floor
        rate_limited: The failure was a 429 response
        rng: Returns a float in [0, 1)
    """
    delay = config.base_delay * (2 ** attempts) * (1 + rng() * config.jitter_ratio)
    if rate_limited:
        delay = max(delay, config.rate_limit_floor)
    return min(delay, config.max_delay)


def _previous_delay(item: SyncQueueItem) -> float:
    """Seconds the item waited before this attempt, 0 for a fresh budget."""
    if item.attempts == 0 or item.last_attempt is None:
        return 0.0
    return max((item.scheduled_for - item.last_attempt).total_seconds(), 0.0)


def _field_value(field: SyncField, category: Optional[str], tags: list[str]) -> Any:
    if field is SyncField.CATEGORY:
        return category
    if field is SyncField.TAGS:
        return list(tags)
    return {"category": category, "tags": list(tags)}


class SyncQueueService:
    """Service for enqueuing and inspecting outbound sync work."""

    def __init__(
        self,
        db: Database,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize sync queue service.

        Args:
            db: Database instance
            config: Queue configuration
            clock: Returns the current naive UTC time
        """
        self.db = db
        self.config = config or SyncConfig()
        self.clock = clock

    def enqueue(
        self,
        transaction_id: int,
        field: SyncField,
        new_value: Any,
        old_value: Any = None,
    ) -> int:
        """Queue a push of one field (or both) for a transaction.

        An untouched pending item for the same field is updated in place
        instead of adding a second item.

        Returns:
            Sync queue item ID

        Raises:
            NotFoundError: If transaction doesn't exist
        """
        field = SyncField(field)
        item_id = self.db.enqueue_sync_item(
            transaction_id=transaction_id,
            field=field,
            new_value=new_value,
            old_value=old_value,
            scheduled_for=self.clock(),
        )
        logger.info("Queued %s push for transaction %d (item %d)", field.value, transaction_id, item_id)
        return item_id

    def enqueue_change(
        self,
        transaction_id: int,
        old_category: Optional[str],
        old_tags: list[str],
        new_category: Optional[str],
        new_tags: list[str],
    ) -> Optional[int]:
        """Queue whatever changed between two category/tag states.

        Returns:
            Sync queue item ID, or None if nothing changed
        """
        category_changed = old_category != new_category
        tags_changed = list(old_tags) != list(new_tags)
        if category_changed and tags_changed:
            field = SyncField.BOTH
        elif category_changed:
            field = SyncField.CATEGORY
        elif tags_changed:
            field = SyncField.TAGS
        else:
            return None
        return self.enqueue(
            transaction_id,
            field,
            _field_value(field, new_category, new_tags),
            _field_value(field, old_category, old_tags),
        )

    def get_item(self, item_id: int) -> SyncQueueItem:
        """Get sync queue item by ID.

        Raises:
            NotFoundError: If item doesn't exist
        """
        item = self.db.get_sync_item(item_id)
        if item is None:
            raise NotFoundError(sync_item_not_found(item_id))
        return item

    def list_items(
        self,
        status: Optional[QueueStatus] = None,
        transaction_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[SyncQueueItem]:
        """List queue items, oldest first."""
        return self.db.list_sync_items(status=status, transaction_id=transaction_id, limit=limit)

    def retry_item(self, item_id: int) -> SyncQueueItem:
        """Put a failed item back in the queue with a fresh attempt budget.

        Raises:
            NotFoundError: If item doesn't exist
            ValidationError: If item is not failed
        """
        self.db.reset_sync_item(item_id, self.clock())
        item = self.get_item(item_id)
        txn = self.db.get_transaction(item.transaction_id)
        if txn is not None and txn.sync_status == SyncStatus.FAILED:
            self.db.set_sync_status(txn.id, SyncStatus.PENDING)
        logger.info("Sync queue item %d reset for retry", item_id)
        return item


@dataclass(frozen=True)
class SyncOutcome:
    """What happened to one claimed item."""

    item_id: int
    transaction_id: int
    result: str  # completed, retrying, failed or lease_lost
    error: Optional[str] = None
    retry_at: Optional[datetime] = None


@dataclass
class BatchReport:
    """Counts for one batch of processed items."""

    completed: int = 0
    retrying: int = 0
    failed: int = 0
    lease_lost: int = 0
    deferred: bool = False
    outcomes: list[SyncOutcome] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    def add(self, outcome: SyncOutcome) -> None:
        self.outcomes.append(outcome)
        setattr(self, outcome.result, getattr(self, outcome.result) + 1)


class SyncQueueWorker:
    """Claims queue items and pushes them to the bank."""

    def __init__(
        self,
        db: Database,
        client: BankApiClient,
        config: Optional[SyncConfig] = None,
        worker_id: Optional[str] = None,
        usage: Optional[ApiUsageTracker] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Callable[[], float] = random.random,
    ):
        """Initialize worker.

        Args:
            db: Database instance
            client: Bank API client used for pushes
            config: Retry, lease and batch configuration
            worker_id: Lease owner name (random if omitted)
            usage: Optional hourly budget; the worker defers when it runs low
            clock: Returns the current naive UTC time
            rng: Jitter source for backoff
        """
        self.db = db
        self.client = client
        self.config = config or SyncConfig()
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.usage = usage
        self.clock = clock
        self.rng = rng

    def has_capacity(self) -> bool:
        """False when the hourly API budget is too low for another push."""
        if self.usage is None:
            return True
        return self.usage.can_make_call(CALLS_PER_PUSH)

    def process_next(self) -> Optional[SyncOutcome]:
        """Claim and process one item.

        Returns:
            Outcome, or None if no item was claimable
        """
        now = self.clock()
        item = self.db.claim_sync_item(self.worker_id, now, self.config.lease_timeout)
        if item is None:
            return None
        logger.debug("%s claimed item %d (%s)", self.worker_id, item.id, item.field.value)

        if item.attempts >= self.config.max_attempts:
            # Earlier workers lost their leases mid-push until the budget ran out
            return self._fail(item, item.error or "Retry budget exhausted", item.attempts)

        txn = self.db.get_transaction(item.transaction_id)
        if txn is None or txn.external_id is None:
            return self._fail(item, "Transaction has no bank id to push to")

        try:
            result = self.client.push_field_update(txn.external_id, item.field, item.new_value)
        except SyncError as e:
            result = PushResult.from_error(e)
        except Exception as e:
            logger.exception("Push of sync item %d crashed", item.id)
            result = PushResult(ok=False, retryable=True, error=f"{e.__class__.__name__}: {e}")

        if result.ok:
            return self._complete(item)
        attempts = item.attempts + 1
        if not result.retryable or attempts >= self.config.max_attempts:
            return self._fail(item, result.error or "Push failed", attempts)
        return self._reschedule(item, result, attempts)

    def _complete(self, item: SyncQueueItem) -> SyncOutcome:
        now = self.clock()
        if not self.db.complete_sync_item(item.id, self.worker_id, now):
            return self._lease_lost(item)

        value = item.new_value
        if item.field is SyncField.CATEGORY:
            self.db.set_synced_category(item.transaction_id, value)
        elif item.field is SyncField.TAGS:
            self.db.set_synced_tags(item.transaction_id, value or [])
        else:
            self.db.set_synced_category(item.transaction_id, value.get("category"))
            self.db.set_synced_tags(item.transaction_id, value.get("tags") or [])

        if self.db.count_open_sync_items(item.transaction_id) == 0:
            txn = self.db.get_transaction(item.transaction_id)
            if txn is not None and txn.sync_status != SyncStatus.CONFLICT:
                self.db.set_sync_status(item.transaction_id, SyncStatus.SYNCED)
        logger.info("Sync item %d completed", item.id)
        return SyncOutcome(item.id, item.transaction_id, "completed")

    def _reschedule(self, item: SyncQueueItem, result: PushResult, attempts: int) -> SyncOutcome:
        now = self.clock()
        delay = compute_backoff(item.attempts, self.config, result.rate_limited, self.rng)
        # A rate-limit wait carries over to later failures of other kinds
        delay = min(max(delay, _previous_delay(item)), self.config.max_delay)
        retry_at = now + timedelta(seconds=delay)
        error = result.error or "Push failed"
        if not self.db.reschedule_sync_item(item.id, self.worker_id, attempts, error, retry_at, now):
            return self._lease_lost(item)
        logger.warning(
            "Sync item %d attempt %d/%d failed, retrying in %.0fs: %s",
            item.id,
            attempts,
            self.config.max_attempts,
            delay,
            error,
        )
        return SyncOutcome(item.id, item.transaction_id, "retrying", error, retry_at)

    def _fail(self, item: SyncQueueItem, error: str, attempts: Optional[int] = None) -> SyncOutcome:
        now = self.clock()
        attempts = item.attempts + 1 if attempts is None else attempts
        if not self.db.fail_sync_item(item.id, self.worker_id, attempts, error, now):
            return self._lease_lost(item)
        txn = self.db.get_transaction(item.transaction_id)
        if txn is not None and txn.sync_status != SyncStatus.CONFLICT:
            self.db.set_sync_status(item.transaction_id, SyncStatus.FAILED)
        logger.error("Sync item %d failed after %d attempt(s): %s", item.id, attempts, error)
        return SyncOutcome(item.id, item.transaction_id, "failed", error)

    def _lease_lost(self, item: SyncQueueItem) -> SyncOutcome:
        logger.warning("%s lost lease on sync item %d; result discarded", self.worker_id, item.id)
        return SyncOutcome(item.id, item.transaction_id, "lease_lost")

    def run_batch(self, limit: Optional[int] = None) -> BatchReport:
        """Process up to limit items (config.batch_size by default)."""
        limit = limit or self.config.batch_size
        report = BatchReport()
        while report.processed < limit:
            if not self.has_capacity():
                logger.warning("API budget low; deferring remaining queue items")
                report.deferred = True
                break
            outcome = self.process_next()
            if outcome is None:
                break
            report.add(outcome)
        if report.processed:
            logger.info(
                "Sync batch: %d completed, %d retrying, %d failed",
                report.completed,
                report.retrying,
                report.failed,
            )
        return report

    def run(self, stop_event: threading.Event, poll_interval: Optional[float] = None) -> None:
        """Poll the queue until stop_event is set."""
        poll_interval = self.config.poll_interval if poll_interval is None else poll_interval
        logger.info("Sync worker %s started", self.worker_id)
        while not stop_event.is_set():
            try:
                report = self.run_batch()
            except Exception:
                # Claimed items are recovered when their lease expires
                logger.exception("Sync worker %s batch crashed", self.worker_id)
                report = BatchReport()
            if report.processed == 0 or report.deferred:
                stop_event.wait(poll_interval)
        logger.info("Sync worker %s stopped", self.worker_id)


def run_workers(
    db: Database,
    client: BankApiClient,
    count: int,
    stop_event: threading.Event,
    config: Optional[SyncConfig] = None,
    usage: Optional[ApiUsageTracker] = None,
) -> list[threading.Thread]:
    """Start count worker threads polling the queue. Returns the started threads."""
    threads = []
    for index in range(count):
        worker = SyncQueueWorker(
            db, client, config=config, worker_id=f"worker-{index + 1}", usage=usage
        )
        thread = threading.Thread(
            target=worker.run, args=(stop_event,), name=worker.worker_id, daemon=True
        )
        thread.start()
        threads.append(thread)
    return threads
