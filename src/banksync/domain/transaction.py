"""Transaction domain service."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from banksync.database.base import Database
from banksync.domain.criteria import merge_tags, split_tags
from banksync.domain.entities import SyncStatus, Transaction, TransactionSource
from banksync.domain.errors import (
    NotFoundError,
    ValidationError,
    external_transaction_not_found,
    transaction_not_found,
)
from banksync.domain.locks import KeyedLock, lock_key
from banksync.domain.sync_queue import SyncQueueService

logger = logging.getLogger(__name__)


class TransactionService:
    """Service for managing transactions and user edits."""

    def __init__(self, db: Database, queue: SyncQueueService, locks: Optional[KeyedLock] = None):
        """Initialize transaction service.

        Args:
            db: Database instance
            queue: Sync queue for pushing edits of bank transactions
            locks: Per-transaction locks shared with ingestion and the rule engine
        """
        self.db = db
        self.queue = queue
        self.locks = locks if locks is not None else KeyedLock()

    def create_transaction(
        self,
        amount: Decimal,
        occurred_at: datetime,
        description: str,
        owner_id: str = "default",
        account_id: Optional[str] = None,
        category: Optional[str] = None,
        tags: Iterable[str] = (),
        source: TransactionSource = TransactionSource.MANUAL,
    ) -> int:
        """Create a locally-entered transaction.

        Local transactions have no bank id and are never pushed.

        Returns:
            Transaction ID

        Raises:
            ValidationError: If source is bank
        """
        if TransactionSource(source) == TransactionSource.BANK:
            raise ValidationError("Bank transactions are created by ingestion only")
        return self.db.create_transaction(
            owner_id=owner_id,
            amount=amount,
            occurred_at=occurred_at,
            description=description,
            account_id=account_id,
            category=category,
            tags=merge_tags([], split_tags(list(tags))),
            sync_status=SyncStatus.SYNCED,
            source=source,
        )

    def get_transaction(self, transaction_id: int) -> Transaction:
        """Get transaction by ID.

        Raises:
            NotFoundError: If transaction doesn't exist
        """
        txn = self.db.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(transaction_not_found(transaction_id))
        return txn

    def get_by_external_id(self, external_id: str) -> Transaction:
        """Get transaction by bank id.

        Raises:
            NotFoundError: If transaction doesn't exist
        """
        txn = self.db.get_transaction_by_external_id(external_id)
        if txn is None:
            raise NotFoundError(external_transaction_not_found(external_id))
        return txn

    def list_transactions(
        self,
        owner_id: Optional[str] = None,
        sync_status: Optional[SyncStatus] = None,
        include_deleted: bool = False,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        """List transactions, optionally filtered by sync status."""
        return self.db.list_transactions(
            owner_id=owner_id,
            sync_status=sync_status,
            include_deleted=include_deleted,
            limit=limit,
        )

    def update_category(self, transaction_id: int, category: Optional[str]) -> Transaction:
        """Set a transaction's category; bank transactions get a push queued."""
        txn = self.get_transaction(transaction_id)
        with self.locks(lock_key(txn)):
            txn = self.get_transaction(transaction_id)
            return self._edit(txn, category or None, list(txn.tags))

    def update_tags(self, transaction_id: int, tags: Iterable[str]) -> Transaction:
        """Replace a transaction's tags; bank transactions get a push queued."""
        new_tags = merge_tags([], split_tags(list(tags)))
        txn = self.get_transaction(transaction_id)
        with self.locks(lock_key(txn)):
            txn = self.get_transaction(transaction_id)
            return self._edit(txn, txn.category, new_tags)

    def _edit(self, txn: Transaction, category: Optional[str], tags: list[str]) -> Transaction:
        if txn.is_deleted:
            raise ValidationError(f"Transaction {txn.id} was deleted at the bank")
        if category == txn.category and tags == list(txn.tags):
            return txn

        pushes = txn.source == TransactionSource.BANK and txn.external_id is not None
        sync_status = None
        if pushes and txn.sync_status != SyncStatus.CONFLICT:
            sync_status = SyncStatus.PENDING
        self.db.update_categorization(
            txn.id, category, tags, sync_status=sync_status, expected_updated_at=txn.updated_at
        )
        if pushes:
            self.queue.enqueue_change(txn.id, txn.category, list(txn.tags), category, tags)
        logger.info("Transaction %d edited: category=%r tags=%s", txn.id, category, tags)
        return self.get_transaction(txn.id)
