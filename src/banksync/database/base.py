"""Abstract database interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

# Import entities directly to avoid circular import through domain/__init__.py
from banksync.domain.entities import (
    ApiLog,
    AutotagRule,
    QueueStatus,
    RuleStatus,
    SettlementStatus,
    SyncField,
    SyncProgress,
    SyncQueueItem,
    SyncStatus,
    Transaction,
    TransactionSource,
    WebhookEvent,
    WebhookEventType,
)


class Database(ABC):
    """Abstract database interface for banksync.

    Every mutating method is a single atomic unit. Implementations must be
    safe to call from several worker threads.
    """

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    # Transaction operations
    @abstractmethod
    def create_transaction(
        self,
        owner_id: str,
        amount: Decimal,
        occurred_at: datetime,
        description: str,
        account_id: Optional[str] = None,
        external_id: Optional[str] = None,
        category: Optional[str] = None,
        tags: Sequence[str] = (),
        status: SettlementStatus = SettlementStatus.SETTLED,
        raw_payload: Optional[dict[str, Any]] = None,
        sync_status: SyncStatus = SyncStatus.PENDING,
        source: TransactionSource = TransactionSource.MANUAL,
        processed: bool = False,
        synced_category: Optional[str] = None,
        synced_tags: Sequence[str] = (),
    ) -> int:
        """Create a transaction. Returns transaction ID.

        Raises:
            ConflictError: If external_id is already taken
        """
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        """Get transaction by ID."""
        pass

    @abstractmethod
    def get_transaction_by_external_id(self, external_id: str) -> Optional[Transaction]:
        """Get transaction by bank transaction id."""
        pass

    @abstractmethod
    def merge_bank_fields(
        self,
        transaction_id: int,
        amount: Decimal,
        description: str,
        status: SettlementStatus,
        occurred_at: datetime,
        account_id: Optional[str],
        raw_payload: Optional[dict[str, Any]],
    ) -> None:
        """Overwrite the bank-owned fields. Category and tags are left alone."""
        pass

    @abstractmethod
    def update_categorization(
        self,
        transaction_id: int,
        category: Optional[str],
        tags: Sequence[str],
        processed: Optional[bool] = None,
        sync_status: Optional[SyncStatus] = None,
        expected_updated_at: Optional[datetime] = None,
    ) -> None:
        """Set category and tags (and optionally processed/sync status).

        This is the only mutation the rule engine uses; amount and settlement
        status are not reachable through it.

        Raises:
            NotFoundError: If transaction doesn't exist
            ConflictError: If expected_updated_at is given and the row changed since
        """
        pass

    @abstractmethod
    def mark_processed(self, transaction_id: int) -> None:
        """Flag a transaction as evaluated by the rule engine."""
        pass

    @abstractmethod
    def set_sync_status(self, transaction_id: int, sync_status: SyncStatus) -> None:
        """Set transaction sync status."""
        pass

    @abstractmethod
    def set_synced_category(self, transaction_id: int, category: Optional[str]) -> None:
        """Record the category the bank is believed to hold."""
        pass

    @abstractmethod
    def set_synced_tags(self, transaction_id: int, tags: Sequence[str]) -> None:
        """Record the tags the bank is believed to hold."""
        pass

    @abstractmethod
    def mark_transaction_deleted(
        self, transaction_id: int, deleted_at: datetime, sync_status: SyncStatus
    ) -> None:
        """Leave a tombstone on a transaction deleted at the bank."""
        pass

    @abstractmethod
    def list_transactions(
        self,
        owner_id: Optional[str] = None,
        sync_status: SyncStatus | Iterable[SyncStatus] | None = None,
        processed: Optional[bool] = None,
        include_deleted: bool = False,
        external_only: bool = False,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        """List transactions with optional filters, oldest first.

        Args:
            owner_id: Optional owner filter
            sync_status: One status or a collection of statuses
            processed: Optional processed flag filter
            include_deleted: Include tombstoned transactions
            external_only: Only transactions with a bank id
            limit: Maximum number of rows
        """
        pass

    # Webhook event operations
    @abstractmethod
    def create_webhook_event(
        self,
        event_type: WebhookEventType,
        payload: dict[str, Any],
        external_transaction_id: Optional[str] = None,
        delivery_id: Optional[str] = None,
    ) -> int:
        """Store an inbound event. Returns event ID.

        Raises:
            ConflictError: If delivery_id was already stored
        """
        pass

    @abstractmethod
    def get_webhook_event(self, event_id: int) -> Optional[WebhookEvent]:
        """Get webhook event by ID."""
        pass

    @abstractmethod
    def get_webhook_event_by_delivery_id(self, delivery_id: str) -> Optional[WebhookEvent]:
        """Get webhook event by the bank's delivery id."""
        pass

    @abstractmethod
    def finish_webhook_event(
        self,
        event_id: int,
        processed: bool,
        processed_at: Optional[datetime],
        transaction_id: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        """Record the outcome of handling an event. The payload is never changed."""
        pass

    @abstractmethod
    def list_webhook_events(
        self, processed: Optional[bool] = None, limit: Optional[int] = None
    ) -> list[WebhookEvent]:
        """List webhook events in arrival order."""
        pass

    # Rule operations
    @abstractmethod
    def create_rule(
        self,
        owner_id: str,
        name: str,
        search_criteria: dict[str, Any],
        apply_criteria: dict[str, Any],
        status: RuleStatus = RuleStatus.ACTIVE,
    ) -> int:
        """Create an auto-tag rule. Returns rule ID."""
        pass

    @abstractmethod
    def get_rule(self, rule_id: int) -> Optional[AutotagRule]:
        """Get rule by ID."""
        pass

    @abstractmethod
    def list_rules(
        self, owner_id: Optional[str] = None, status: Optional[RuleStatus] = None
    ) -> list[AutotagRule]:
        """List rules in insertion order."""
        pass

    @abstractmethod
    def update_rule(
        self,
        rule_id: int,
        name: Optional[str] = None,
        status: Optional[RuleStatus] = None,
        search_criteria: Optional[dict[str, Any]] = None,
        apply_criteria: Optional[dict[str, Any]] = None,
    ) -> None:
        """Update rule fields."""
        pass

    @abstractmethod
    def delete_rule(self, rule_id: int) -> None:
        """Delete a rule."""
        pass

    @abstractmethod
    def record_rule_run(
        self,
        evaluated_rule_ids: Sequence[int],
        matched_rule_ids: Sequence[int],
        run_at: datetime,
        transaction_id: int,
    ) -> None:
        """Stamp last_run on evaluated rules and count matches on matched ones."""
        pass

    # Sync queue operations
    @abstractmethod
    def enqueue_sync_item(
        self,
        transaction_id: int,
        field: SyncField,
        new_value: Any,
        old_value: Any,
        scheduled_for: datetime,
    ) -> int:
        """Queue a push. Coalesces into an untouched pending item for the same field.

        Returns the item ID.
        """
        pass

    @abstractmethod
    def get_sync_item(self, item_id: int) -> Optional[SyncQueueItem]:
        """Get sync queue item by ID."""
        pass

    @abstractmethod
    def list_sync_items(
        self,
        status: Optional[QueueStatus] = None,
        transaction_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[SyncQueueItem]:
        """List sync queue items in creation order."""
        pass

    @abstractmethod
    def claim_sync_item(
        self, worker_id: str, now: datetime, lease_seconds: float
    ) -> Optional[SyncQueueItem]:
        """Atomically claim the oldest claimable item, or return None."""
        pass

    @abstractmethod
    def complete_sync_item(self, item_id: int, worker_id: str, now: datetime) -> bool:
        """Mark a claimed item completed. False if the lease was lost."""
        pass

    @abstractmethod
    def reschedule_sync_item(
        self,
        item_id: int,
        worker_id: str,
        attempts: int,
        error: str,
        scheduled_for: datetime,
        now: datetime,
    ) -> bool:
        """Return a claimed item to pending for a later retry. False if the lease was lost."""
        pass

    @abstractmethod
    def fail_sync_item(
        self, item_id: int, worker_id: str, attempts: int, error: str, now: datetime
    ) -> bool:
        """Mark a claimed item failed. False if the lease was lost."""
        pass

    @abstractmethod
    def fail_open_sync_items(self, transaction_id: int, error: str, now: datetime) -> int:
        """Fail every non-terminal item of a transaction. Returns how many."""
        pass

    @abstractmethod
    def reset_sync_item(self, item_id: int, now: datetime) -> None:
        """Put a failed item back to pending with a fresh retry budget."""
        pass

    @abstractmethod
    def count_open_sync_items(self, transaction_id: int) -> int:
        """Count pending and processing items for a transaction."""
        pass

    # API log and usage operations
    @abstractmethod
    def create_api_log(
        self,
        endpoint: str,
        method: str,
        status_code: Optional[int],
        latency_ms: int,
        error: Optional[str] = None,
        rate_limited: bool = False,
    ) -> int:
        """Append an API log row. Returns log ID."""
        pass

    @abstractmethod
    def list_api_logs(self, limit: Optional[int] = None) -> list[ApiLog]:
        """List API logs, newest first."""
        pass

    @abstractmethod
    def increment_api_usage(self, hour_window: datetime, count: int, calls_limit: int) -> int:
        """Add calls to the hourly counter. Returns calls used in the window."""
        pass

    @abstractmethod
    def get_api_usage(self, hour_window: datetime) -> int:
        """Return calls used in the given hour window."""
        pass

    @abstractmethod
    def delete_api_usage_before(self, cutoff: datetime) -> int:
        """Delete hourly counters older than cutoff. Returns rows removed."""
        pass

    # Settings operations
    @abstractmethod
    def set_setting(
        self,
        owner_id: str,
        key: str,
        value_text: Optional[str] = None,
        value_encrypted: Optional[str] = None,
    ) -> None:
        """Create or replace a setting."""
        pass

    @abstractmethod
    def get_setting(self, owner_id: str, key: str) -> Optional[dict[str, Optional[str]]]:
        """Get a setting as {'value_text': ..., 'value_encrypted': ...}."""
        pass

    # Backfill progress operations
    @abstractmethod
    def get_sync_progress(self, owner_id: str) -> Optional[SyncProgress]:
        """Get backfill progress for an owner."""
        pass

    @abstractmethod
    def save_sync_progress(self, owner_id: str, **values: Any) -> None:
        """Create or update backfill progress fields."""
        pass
