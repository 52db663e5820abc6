"""Request and response models for the HTTP API."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from banksync.domain.entities import (
    AutotagRule,
    QueueStatus,
    RuleStatus,
    SyncField,
    SyncQueueItem,
    SyncStatus,
    Transaction,
)


class IngestResponse(BaseModel):
    """Outcome of a webhook delivery."""
    event_id: int
    status: str
    transaction_id: Optional[int] = None
    error: Optional[str] = None
    matched_rule_ids: List[int] = Field(default_factory=list)


class RuleCreate(BaseModel):
    """Request model for creating a rule."""
    name: str = Field(..., min_length=1)
    search_criteria: Dict[str, Any] = Field(default_factory=dict, description="Fields a transaction must match")
    apply_criteria: Dict[str, Any] = Field(..., description="Category and/or tags to apply")
    owner_id: str = "default"
    status: RuleStatus = RuleStatus.ACTIVE
    confirm_match_all: bool = Field(default=False, description="Allow empty search criteria")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "NBN internet",
                "search_criteria": {"description": "nbn|aussie broadband", "amount_max": "120.00"},
                "apply_criteria": {"category": "internet", "tags": ["bills", "bill-{mmyy}"]},
            }
        }


class RuleUpdate(BaseModel):
    """Request model for updating a rule. Omitted fields are unchanged."""
    name: Optional[str] = None
    search_criteria: Optional[Dict[str, Any]] = None
    apply_criteria: Optional[Dict[str, Any]] = None
    status: Optional[RuleStatus] = None
    confirm_match_all: bool = False


class RuleResponse(BaseModel):
    id: int
    owner_id: str
    name: str
    status: RuleStatus
    search_criteria: Dict[str, Any]
    apply_criteria: Dict[str, Any]
    matches: int
    last_run: Optional[datetime] = None
    last_matched: Optional[datetime] = None
    performance: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, rule: AutotagRule) -> "RuleResponse":
        return cls(**rule.__dict__)


class TransactionResponse(BaseModel):
    id: int
    external_id: Optional[str] = None
    owner_id: str
    account_id: Optional[str] = None
    amount: Decimal
    occurred_at: datetime
    description: str
    category: Optional[str] = None
    tags: List[str]
    status: str
    sync_status: SyncStatus
    source: str
    processed: bool
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, txn: Transaction) -> "TransactionResponse":
        return cls(
            id=txn.id,
            external_id=txn.external_id,
            owner_id=txn.owner_id,
            account_id=txn.account_id,
            amount=txn.amount,
            occurred_at=txn.occurred_at,
            description=txn.description,
            category=txn.category,
            tags=list(txn.tags),
            status=txn.status.value,
            sync_status=txn.sync_status,
            source=txn.source.value,
            processed=txn.processed,
            deleted_at=txn.deleted_at,
        )


class SyncItemResponse(BaseModel):
    id: int
    transaction_id: int
    field: SyncField
    new_value: Any = None
    old_value: Any = None
    attempts: int
    status: QueueStatus
    error: Optional[str] = None
    last_attempt: Optional[datetime] = None
    scheduled_for: datetime
    created_at: datetime

    @classmethod
    def from_entity(cls, item: SyncQueueItem) -> "SyncItemResponse":
        return cls(
            id=item.id,
            transaction_id=item.transaction_id,
            field=item.field,
            new_value=item.new_value,
            old_value=item.old_value,
            attempts=item.attempts,
            status=item.status,
            error=item.error,
            last_attempt=item.last_attempt,
            scheduled_for=item.scheduled_for,
            created_at=item.created_at,
        )
