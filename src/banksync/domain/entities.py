"""Domain model entities for banksync.

These are pure data classes representing business concepts, independent of
database schema. Components pass them around by value and reference each other
by id only; the store is the single source of truth.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class SettlementStatus(str, Enum):
    """Bank-side settlement state."""

    HELD = "HELD"
    SETTLED = "SETTLED"


class SyncStatus(str, Enum):
    """Whether local edits of a transaction have reached the bank."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    CONFLICT = "conflict"


class TransactionSource(str, Enum):
    """Where a transaction came from."""

    BANK = "bank"
    MANUAL = "manual"
    TRANSFER = "transfer"
    IMPORT = "import"


class WebhookEventType(str, Enum):
    """Inbound notification types."""

    CREATED = "created"
    SETTLED = "settled"
    DELETED = "deleted"
    PING = "ping"


class RuleStatus(str, Enum):
    """Only active rules participate in matching."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"


class SyncField(str, Enum):
    """Transaction field pushed by a queue item."""

    CATEGORY = "category"
    TAGS = "tags"
    BOTH = "both"

    def overlaps(self, other: "SyncField") -> bool:
        """Return True if two items touch at least one common field."""
        return self is other or SyncField.BOTH in (self, other)


class QueueStatus(str, Enum):
    """Sync queue item state. completed and failed are terminal."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)


@dataclass(frozen=True)
class Transaction:
    """Transaction domain entity."""

    id: int
    external_id: Optional[str]
    owner_id: str
    account_id: Optional[str]
    amount: Decimal
    occurred_at: datetime
    description: str
    category: Optional[str]
    tags: tuple[str, ...]
    status: SettlementStatus
    raw_payload: Optional[dict[str, Any]]
    sync_status: SyncStatus
    source: TransactionSource
    processed: bool
    synced_category: Optional[str]
    synced_tags: tuple[str, ...]
    deleted_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class WebhookEvent:
    """Record of one inbound notification."""

    id: int
    event_type: WebhookEventType
    transaction_id: Optional[int]
    external_transaction_id: Optional[str]
    delivery_id: Optional[str]
    payload: dict[str, Any]
    processed: bool
    received_at: datetime
    processed_at: Optional[datetime]
    error: Optional[str]


@dataclass(frozen=True)
class AutotagRule:
    """User-authored matching rule.

    Criteria are kept as the raw stored mappings; they are parsed into
    SearchCriteria/ApplyCriteria at evaluation time so that a malformed
    rule can be skipped instead of failing to load.
    """

    id: int
    owner_id: str
    name: str
    status: RuleStatus
    search_criteria: dict[str, Any]
    apply_criteria: dict[str, Any]
    matches: int
    last_run: Optional[datetime]
    last_matched: Optional[datetime]
    performance: dict[str, Any]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class SyncQueueItem:
    """One durable unit of outbound work."""

    id: int
    transaction_id: int
    field: SyncField
    new_value: Any
    old_value: Any
    attempts: int
    last_attempt: Optional[datetime]
    status: QueueStatus
    error: Optional[str]
    scheduled_for: datetime
    lease_owner: Optional[str]
    lease_expires_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ApiLog:
    """Append-only record of an outbound call."""

    id: int
    endpoint: str
    method: str
    status_code: Optional[int]
    latency_ms: int
    error: Optional[str]
    rate_limited: bool
    created_at: datetime


@dataclass(frozen=True)
class SyncProgress:
    """Backfill cursor state for one owner."""

    owner_id: str
    cursor: Optional[str]
    status: str
    total_synced: int
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    error: Optional[str]


@dataclass(frozen=True)
class RemoteTransaction:
    """Snapshot of a transaction as the bank reports it."""

    external_id: str
    account_id: Optional[str]
    amount: Decimal
    description: str
    status: SettlementStatus
    occurred_at: datetime
    category: Optional[str]
    tags: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict)
