"""Detects bank-side edits that diverge from local state.

A conflict is recorded when the bank's category or tags differ from both
the local value and the last value pushed (the synced baseline): someone
changed the transaction at the bank. Conflicts block the transaction's
queue items until an operator acknowledges them; nothing is resolved
automatically.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from banksync.bank.client import BankApiClient
from banksync.database.base import Database
from banksync.domain.entities import RemoteTransaction, SyncStatus, Transaction
from banksync.domain.errors import (
    ConflictError,
    NotFoundError,
    SyncError,
    ValidationError,
    remote_diverged,
    transaction_not_found,
)
from banksync.domain.locks import KeyedLock
from banksync.utils.date_parser import utcnow

logger = logging.getLogger(__name__)


def _tag_set(tags: Iterable[str]) -> frozenset[str]:
    return frozenset(tag.lower() for tag in tags)


@dataclass
class ReconcileReport:
    """Result of one reconciliation sweep."""

    checked: int = 0
    in_sync: int = 0
    conflicts: list[tuple[int, str]] = field(default_factory=list)
    errors: list[tuple[int, str]] = field(default_factory=list)


class ConflictReconciler:
    """Compares local transactions with the bank's view."""

    def __init__(
        self,
        db: Database,
        client: BankApiClient,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize reconciler.

        Args:
            db: Database instance
            client: Bank client used to fetch remote snapshots
            locks: Per-external-id locks shared with ingestion
            clock: Returns the current naive UTC time
        """
        self.db = db
        self.client = client
        self.locks = locks if locks is not None else KeyedLock()
        self.clock = clock

    def divergences(self, txn: Transaction, remote: RemoteTransaction) -> list[str]:
        """Describe each field the bank changed behind our back."""
        messages = []
        if remote.category != txn.synced_category and remote.category != txn.category:
            messages.append(
                remote_diverged(txn.id, "category", remote.category, txn.category, txn.synced_category)
            )
        remote_tags = _tag_set(remote.tags)
        if remote_tags != _tag_set(txn.synced_tags) and remote_tags != _tag_set(txn.tags):
            messages.append(
                remote_diverged(
                    txn.id, "tags", sorted(remote.tags), sorted(txn.tags), sorted(txn.synced_tags)
                )
            )
        return messages

    def run(self, owner_id: Optional[str] = None, limit: Optional[int] = None) -> ReconcileReport:
        """Check synced and pending bank transactions against the bank.

        Fetch failures are recorded per transaction and never stop the sweep.
        """
        report = ReconcileReport()
        candidates = self.db.list_transactions(
            owner_id=owner_id,
            sync_status=(SyncStatus.SYNCED, SyncStatus.PENDING),
            external_only=True,
            limit=limit,
        )
        for candidate in candidates:
            try:
                remote = self.client.fetch_transaction(candidate.external_id)
            except SyncError as e:
                logger.warning("Could not fetch %s: %s", candidate.external_id, e)
                report.errors.append((candidate.id, str(e)))
                continue

            report.checked += 1
            with self.locks(candidate.external_id):
                txn = self.db.get_transaction(candidate.id)
                if txn.sync_status not in (SyncStatus.SYNCED, SyncStatus.PENDING):
                    continue
                messages = self.divergences(txn, remote)
                if messages:
                    self.db.set_sync_status(txn.id, SyncStatus.CONFLICT)
                    error = ConflictError("; ".join(messages))
                    logger.warning("Conflict detected: %s", error)
                    report.conflicts.append((txn.id, str(error)))
                    continue
                self._adopt_matching_remote(txn, remote)
                report.in_sync += 1

        logger.info(
            "Reconciled %d transaction(s): %d conflict(s), %d error(s)",
            report.checked,
            len(report.conflicts),
            len(report.errors),
        )
        return report

    def _adopt_matching_remote(self, txn: Transaction, remote: RemoteTransaction) -> None:
        # The bank already holds the local value, so the baseline catches up
        if remote.category == txn.category and remote.category != txn.synced_category:
            self.db.set_synced_category(txn.id, remote.category)
        if _tag_set(remote.tags) == _tag_set(txn.tags) and _tag_set(remote.tags) != _tag_set(
            txn.synced_tags
        ):
            self.db.set_synced_tags(txn.id, remote.tags)

    def acknowledge(self, transaction_id: int) -> Transaction:
        """Accept the bank's current values as the new baseline.

        The transaction leaves ``conflict``: it returns to ``pending`` when
        queue items are waiting (they may push again) and ``synced``
        otherwise. Tombstoned transactions are simply marked synced.

        Raises:
            NotFoundError: If transaction doesn't exist
            ValidationError: If transaction is not in conflict
            SyncError: If the remote snapshot cannot be fetched
        """
        txn = self.db.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(transaction_not_found(transaction_id))
        if txn.sync_status != SyncStatus.CONFLICT:
            raise ValidationError(
                f"Transaction {transaction_id} is {txn.sync_status.value}, not in conflict"
            )

        if txn.is_deleted or txn.external_id is None:
            self.db.set_sync_status(txn.id, SyncStatus.SYNCED)
        else:
            remote = self.client.fetch_transaction(txn.external_id)
            with self.locks(txn.external_id):
                self.db.set_synced_category(txn.id, remote.category)
                self.db.set_synced_tags(txn.id, remote.tags)
                if self.db.count_open_sync_items(txn.id):
                    self.db.set_sync_status(txn.id, SyncStatus.PENDING)
                else:
                    self.db.set_sync_status(txn.id, SyncStatus.SYNCED)
        logger.info("Conflict on transaction %d acknowledged", transaction_id)
        return self.db.get_transaction(transaction_id)
