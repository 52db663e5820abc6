"""Webhook ingestion.

Inbound bank notifications are stored first and processed second. Events are
idempotent on the bank's delivery id and transactions are upserted on the
bank's transaction id, so replays and re-deliveries never duplicate rows.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Optional

from banksync.bank.client import BankApiClient
from banksync.config import SyncConfig
from banksync.database.base import Database
from banksync.domain.criteria import split_tags
from banksync.domain.entities import (
    RemoteTransaction,
    SettlementStatus,
    SyncStatus,
    TransactionSource,
    WebhookEvent,
    WebhookEventType,
)
from banksync.domain.errors import ConflictError, SyncError, ValidationError
from banksync.domain.locks import KeyedLock
from banksync.domain.rules import EvaluationResult, RuleEngine
from banksync.utils.amount_parser import parse_amount
from banksync.utils.date_parser import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

EVENT_TYPE_NAMES = {
    "created": WebhookEventType.CREATED,
    "settled": WebhookEventType.SETTLED,
    "deleted": WebhookEventType.DELETED,
    "ping": WebhookEventType.PING,
    "transaction_created": WebhookEventType.CREATED,
    "transaction_settled": WebhookEventType.SETTLED,
    "transaction_deleted": WebhookEventType.DELETED,
}

_EXTERNAL_ID_KEYS = ("upTransactionId", "transactionId", "transaction_id", "external_id")
_DELIVERY_ID_KEYS = ("deliveryId", "delivery_id", "eventId", "event_id")
_EVENT_TYPE_KEYS = ("type", "eventType", "event_type")


@dataclass(frozen=True)
class InboundEvent:
    """A structurally valid notification."""

    event_type: WebhookEventType
    external_id: Optional[str]
    delivery_id: Optional[str]
    payload: dict[str, Any]
    # Transaction fields carried inline (flat form only)
    fields: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingest call."""

    event_id: int
    status: str  # processed, duplicate or error
    transaction_id: Optional[int] = None
    error: Optional[str] = None
    evaluation: Optional[EvaluationResult] = None


def _first(mapping: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def _event_type(raw: Any) -> WebhookEventType:
    if not isinstance(raw, str) or raw.lower() not in EVENT_TYPE_NAMES:
        raise ValidationError(f"Unrecognized webhook event type {raw!r}")
    return EVENT_TYPE_NAMES[raw.lower()]


def parse_event(body: Any) -> InboundEvent:
    """Validate the structure of a notification body.

    Accepts the flat form ``{"type": "created", "upTransactionId": ...,
    "amount": ..., ...}`` and the UP Bank envelope ``{"data": {"id": ...,
    "attributes": {"eventType": ...}, "relationships": {"transaction":
    {"data": {"id": ...}}}}}``.

    Raises:
        ValidationError: If the body is not an object, the event type is
            unknown or a non-ping event has no transaction id
    """
    if not isinstance(body, dict):
        raise ValidationError(f"Webhook body must be a JSON object, got {type(body).__name__}")

    data = body.get("data")
    if isinstance(data, dict) and isinstance(data.get("attributes"), dict):
        event_type = _event_type(data["attributes"].get("eventType"))
        delivery_id = data.get("id")
        transaction = ((data.get("relationships") or {}).get("transaction") or {}).get("data")
        external_id = transaction.get("id") if isinstance(transaction, dict) else None
        fields = None
    else:
        event_type = _event_type(_first(body, _EVENT_TYPE_KEYS))
        delivery_id = _first(body, _DELIVERY_ID_KEYS)
        external_id = _first(body, _EXTERNAL_ID_KEYS)
        fields = body if "amount" in body else None

    if event_type is not WebhookEventType.PING:
        if not isinstance(external_id, str) or not external_id.strip():
            raise ValidationError(f"{event_type.value} event must carry a bank transaction id")
        external_id = external_id.strip()
    if delivery_id is not None and not isinstance(delivery_id, str):
        delivery_id = str(delivery_id)

    return InboundEvent(
        event_type=event_type,
        external_id=external_id if isinstance(external_id, str) else None,
        delivery_id=delivery_id,
        payload=body,
        fields=fields,
    )


def _text_field(fields: dict[str, Any], keys: tuple[str, ...]) -> Optional[str]:
    value = _first(fields, keys)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{keys[0]} must be a string, got {type(value).__name__}")
    return value


def remote_from_fields(external_id: str, fields: dict[str, Any]) -> RemoteTransaction:
    """Build a bank snapshot from the fields of a flat notification.

    Raises:
        ValueError: If a field has the wrong type or amount or timestamp cannot be parsed
    """
    status = str(fields.get("status") or SettlementStatus.SETTLED.value).upper()
    if status not in SettlementStatus.__members__:
        raise ValidationError(f"Unknown settlement status '{status}'")
    occurred = _first(fields, ("createdAt", "occurred_at", "date"))
    category = _text_field(fields, ("category",))
    return RemoteTransaction(
        external_id=external_id,
        account_id=_text_field(fields, ("accountId", "account_id")),
        amount=parse_amount(fields["amount"]),
        description=_text_field(fields, ("description",)) or "",
        status=SettlementStatus(status),
        occurred_at=parse_timestamp(occurred) if occurred is not None else utcnow(),
        category=category or None,
        tags=tuple(split_tags(fields.get("tags"))),
        raw=fields,
    )


class WebhookIngestionService:
    """Stores inbound bank events and applies them to transactions."""

    def __init__(
        self,
        db: Database,
        rules: RuleEngine,
        client: Optional[BankApiClient] = None,
        config: Optional[SyncConfig] = None,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize ingestion service.

        Args:
            db: Database instance
            rules: Rule engine run on new and unprocessed transactions
            client: Bank client used when a notification carries only an id
            config: Supplies the owner of ingested transactions
            locks: Per-external-id locks (share one across services in a process)
            clock: Returns the current naive UTC time
        """
        self.db = db
        self.rules = rules
        self.client = client
        self.config = config or SyncConfig()
        self.locks = locks if locks is not None else KeyedLock()
        self.clock = clock

    def ingest(self, body: Any) -> IngestResult:
        """Store and process one notification.

        Processing errors are recorded on the stored event and reported in
        the result; only structurally invalid bodies raise.

        Raises:
            ValidationError: If the body is structurally invalid (nothing is stored)
        """
        event = parse_event(body)

        if event.delivery_id is not None:
            existing = self.db.get_webhook_event_by_delivery_id(event.delivery_id)
            if existing is not None:
                return self._redelivered(existing, event)

        try:
            event_id = self.db.create_webhook_event(
                event_type=event.event_type,
                payload=event.payload,
                external_transaction_id=event.external_id,
                delivery_id=event.delivery_id,
            )
        except ConflictError:
            # Stored concurrently by another request
            existing = self.db.get_webhook_event_by_delivery_id(event.delivery_id)
            return self._redelivered(existing, event)

        logger.info(
            "Received %s event %d for %s", event.event_type.value, event_id, event.external_id
        )
        return self._process(event_id, event)

    def _redelivered(self, existing: WebhookEvent, event: InboundEvent) -> IngestResult:
        if existing.processed:
            logger.info("Duplicate delivery %s ignored", event.delivery_id)
            return IngestResult(existing.id, "duplicate", existing.transaction_id)
        return self._process(existing.id, event)

    def retry_unprocessed(self, limit: Optional[int] = None) -> list[IngestResult]:
        """Re-process stored events that failed earlier."""
        results = []
        for stored in self.db.list_webhook_events(processed=False, limit=limit):
            try:
                event = parse_event(stored.payload)
            except ValidationError as e:
                self.db.finish_webhook_event(stored.id, False, None, error=str(e))
                results.append(IngestResult(stored.id, "error", error=str(e)))
                continue
            results.append(self._process(stored.id, event))
        return results

    def _process(self, event_id: int, event: InboundEvent) -> IngestResult:
        if event.event_type is WebhookEventType.PING:
            self.db.finish_webhook_event(event_id, True, self.clock())
            return IngestResult(event_id, "processed")

        transaction_id = None
        evaluation = None
        try:
            with self.locks(event.external_id):
                if event.event_type is WebhookEventType.DELETED:
                    transaction_id = self._apply_delete(event.external_id)
                else:
                    transaction_id, evaluation = self._upsert(self._snapshot(event))
        except (ValueError, SyncError) as e:
            return self._failed(event_id, transaction_id, e)
        except Exception as e:
            logger.exception("Webhook event %d crashed", event_id)
            return self._failed(event_id, transaction_id, e)

        self.db.finish_webhook_event(event_id, True, self.clock(), transaction_id)
        return IngestResult(event_id, "processed", transaction_id, evaluation=evaluation)

    def _failed(self, event_id: int, transaction_id: Optional[int], error: Exception) -> IngestResult:
        message = f"{error.__class__.__name__}: {error}"
        logger.warning("Webhook event %d failed: %s", event_id, message)
        self.db.finish_webhook_event(event_id, False, None, transaction_id, error=message)
        return IngestResult(event_id, "error", transaction_id, error=message)

    def _snapshot(self, event: InboundEvent) -> RemoteTransaction:
        if event.fields is not None:
            remote = remote_from_fields(event.external_id, event.fields)
        elif self.client is None:
            raise ValidationError(
                f"Event for {event.external_id} carries no transaction data "
                "and no bank client is configured"
            )
        else:
            remote = self.client.fetch_transaction(event.external_id)
        if event.event_type is WebhookEventType.SETTLED:
            remote = replace(remote, status=SettlementStatus.SETTLED)
        return remote

    def upsert_remote(self, remote: RemoteTransaction) -> tuple[int, Optional[EvaluationResult]]:
        """Insert or merge a bank snapshot under the per-id lock."""
        with self.locks(remote.external_id):
            return self._upsert(remote)

    def _upsert(self, remote: RemoteTransaction) -> tuple[int, Optional[EvaluationResult]]:
        existing = self.db.get_transaction_by_external_id(remote.external_id)
        if existing is None:
            try:
                transaction_id = self.db.create_transaction(
                    owner_id=self.config.owner_id,
                    amount=remote.amount,
                    occurred_at=remote.occurred_at,
                    description=remote.description,
                    account_id=remote.account_id,
                    external_id=remote.external_id,
                    category=remote.category,
                    tags=remote.tags,
                    status=remote.status,
                    raw_payload=remote.raw,
                    sync_status=SyncStatus.SYNCED,
                    source=TransactionSource.BANK,
                    processed=False,
                    synced_category=remote.category,
                    synced_tags=remote.tags,
                )
                logger.info("Created transaction %d for %s", transaction_id, remote.external_id)
            except ConflictError:
                # Inserted by another process between lookup and insert
                existing = self.db.get_transaction_by_external_id(remote.external_id)
        if existing is not None:
            transaction_id = existing.id
            status = remote.status
            if existing.status == SettlementStatus.SETTLED:
                status = SettlementStatus.SETTLED
            self.db.merge_bank_fields(
                transaction_id,
                amount=remote.amount,
                description=remote.description,
                status=status,
                occurred_at=remote.occurred_at,
                account_id=remote.account_id,
                raw_payload=remote.raw,
            )
            logger.debug("Merged bank fields into transaction %d", transaction_id)

        txn = self.db.get_transaction(transaction_id)
        evaluation = None
        if not txn.processed and not txn.is_deleted:
            evaluation = self.rules.evaluate(transaction_id)
        return transaction_id, evaluation

    def _apply_delete(self, external_id: str) -> Optional[int]:
        txn = self.db.get_transaction_by_external_id(external_id)
        if txn is None:
            logger.info("Delete event for unknown transaction %s ignored", external_id)
            return None
        if txn.is_deleted:
            return txn.id
        now = self.clock()
        has_local_edits = txn.category is not None or bool(txn.tags)
        sync_status = SyncStatus.CONFLICT if has_local_edits else SyncStatus.SYNCED
        self.db.mark_transaction_deleted(txn.id, now, sync_status)
        failed = self.db.fail_open_sync_items(txn.id, "Transaction deleted at the bank", now)
        logger.warning(
            "Transaction %d deleted at the bank (sync status %s, %d queue item(s) failed)",
            txn.id,
            sync_status.value,
            failed,
        )
        return txn.id
