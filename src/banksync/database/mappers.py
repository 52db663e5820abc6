"""Mapper functions to convert between domain models and SQLAlchemy models.

This layer isolates the conversion logic, including enum coercion and the
JSON encoding of queued values.
"""

import json
from decimal import Decimal
from typing import Any

from banksync.domain import entities as domain
from banksync.database.models import (
    ApiLog as ORMApiLog,
    AutotagRule as ORMAutotagRule,
    SyncProgress as ORMSyncProgress,
    SyncQueueItem as ORMSyncQueueItem,
    Transaction as ORMTransaction,
    WebhookEvent as ORMWebhookEvent,
)


def encode_value(value: Any) -> str:
    """Encode a queued field value for the text column."""
    return json.dumps(value, sort_keys=True)


def decode_value(text: str | None) -> Any:
    """Decode a queued field value."""
    if text is None:
        return None
    return json.loads(text)


def transaction_to_domain(orm_transaction: ORMTransaction) -> domain.Transaction:
    """Convert SQLAlchemy Transaction model to domain Transaction entity."""
    return domain.Transaction(
        id=orm_transaction.id,
        external_id=orm_transaction.external_id,
        owner_id=orm_transaction.owner_id,
        account_id=orm_transaction.account_id,
        amount=Decimal(orm_transaction.amount),
        occurred_at=orm_transaction.occurred_at,
        description=orm_transaction.description or "",
        category=orm_transaction.category,
        tags=tuple(orm_transaction.tags or ()),
        status=domain.SettlementStatus(orm_transaction.status),
        raw_payload=orm_transaction.raw_payload,
        sync_status=domain.SyncStatus(orm_transaction.sync_status),
        source=domain.TransactionSource(orm_transaction.source),
        processed=bool(orm_transaction.processed),
        synced_category=orm_transaction.synced_category,
        synced_tags=tuple(orm_transaction.synced_tags or ()),
        deleted_at=orm_transaction.deleted_at,
        created_at=orm_transaction.created_at,
        updated_at=orm_transaction.updated_at,
    )


def webhook_event_to_domain(orm_event: ORMWebhookEvent) -> domain.WebhookEvent:
    """Convert SQLAlchemy WebhookEvent model to domain WebhookEvent entity."""
    return domain.WebhookEvent(
        id=orm_event.id,
        event_type=domain.WebhookEventType(orm_event.event_type),
        transaction_id=orm_event.transaction_id,
        external_transaction_id=orm_event.external_transaction_id,
        delivery_id=orm_event.delivery_id,
        payload=orm_event.payload,
        processed=bool(orm_event.processed),
        received_at=orm_event.received_at,
        processed_at=orm_event.processed_at,
        error=orm_event.error,
    )


def rule_to_domain(orm_rule: ORMAutotagRule) -> domain.AutotagRule:
    """Convert SQLAlchemy AutotagRule model to domain AutotagRule entity."""
    return domain.AutotagRule(
        id=orm_rule.id,
        owner_id=orm_rule.owner_id,
        name=orm_rule.name,
        status=domain.RuleStatus(orm_rule.status),
        search_criteria=dict(orm_rule.search_criteria or {}),
        apply_criteria=dict(orm_rule.apply_criteria or {}),
        matches=orm_rule.matches or 0,
        last_run=orm_rule.last_run,
        last_matched=orm_rule.last_matched,
        performance=dict(orm_rule.performance or {}),
        created_at=orm_rule.created_at,
        updated_at=orm_rule.updated_at,
    )


def sync_item_to_domain(orm_item: ORMSyncQueueItem) -> domain.SyncQueueItem:
    """Convert SQLAlchemy SyncQueueItem model to domain SyncQueueItem entity."""
    return domain.SyncQueueItem(
        id=orm_item.id,
        transaction_id=orm_item.transaction_id,
        field=domain.SyncField(orm_item.field),
        new_value=decode_value(orm_item.new_value),
        old_value=decode_value(orm_item.old_value),
        attempts=orm_item.attempts or 0,
        last_attempt=orm_item.last_attempt,
        status=domain.QueueStatus(orm_item.status),
        error=orm_item.error,
        scheduled_for=orm_item.scheduled_for,
        lease_owner=orm_item.lease_owner,
        lease_expires_at=orm_item.lease_expires_at,
        created_at=orm_item.created_at,
        updated_at=orm_item.updated_at,
    )


def api_log_to_domain(orm_log: ORMApiLog) -> domain.ApiLog:
    """Convert SQLAlchemy ApiLog model to domain ApiLog entity."""
    return domain.ApiLog(
        id=orm_log.id,
        endpoint=orm_log.endpoint,
        method=orm_log.method,
        status_code=orm_log.status_code,
        latency_ms=orm_log.latency_ms or 0,
        error=orm_log.error,
        rate_limited=bool(orm_log.rate_limited),
        created_at=orm_log.created_at,
    )


def sync_progress_to_domain(orm_progress: ORMSyncProgress) -> domain.SyncProgress:
    """Convert SQLAlchemy SyncProgress model to domain SyncProgress entity."""
    return domain.SyncProgress(
        owner_id=orm_progress.owner_id,
        cursor=orm_progress.cursor,
        status=orm_progress.status,
        total_synced=orm_progress.total_synced or 0,
        started_at=orm_progress.started_at,
        completed_at=orm_progress.completed_at,
        error=orm_progress.error,
    )
