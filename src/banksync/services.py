"""Wiring of banksync services around one database."""

from dataclasses import dataclass
from typing import Callable, Optional

from banksync.bank.client import BankApiClient
from banksync.bank.rate_limiter import ApiUsageTracker
from banksync.config import SyncConfig
from banksync.database.base import Database
from banksync.domain.backfill import BackfillService
from banksync.domain.errors import ValidationError
from banksync.domain.ingestion import WebhookIngestionService
from banksync.domain.locks import KeyedLock
from banksync.domain.reconciler import ConflictReconciler
from banksync.domain.rules import RuleEngine, RuleService
from banksync.domain.settings import SettingsService
from banksync.domain.sync_queue import SyncQueueService, SyncQueueWorker
from banksync.domain.transaction import TransactionService


@dataclass
class Services:
    """All services sharing one database, config and lock table."""

    db: Database
    config: SyncConfig
    client: Optional[BankApiClient]
    locks: KeyedLock
    usage: ApiUsageTracker
    settings: SettingsService
    queue: SyncQueueService
    rules: RuleService
    engine: RuleEngine
    ingestion: WebhookIngestionService
    transactions: TransactionService

    def require_client(self) -> BankApiClient:
        if self.client is None:
            raise ValidationError(
                "No bank API token configured (set BANKSYNC_UP_TOKEN or the up_bank_token setting)"
            )
        return self.client

    def reconciler(self) -> ConflictReconciler:
        return ConflictReconciler(self.db, self.require_client(), locks=self.locks)

    def backfill(self) -> BackfillService:
        return BackfillService(
            self.db, self.require_client(), self.ingestion, config=self.config, usage=self.usage
        )

    def worker(self, worker_id: Optional[str] = None) -> SyncQueueWorker:
        return SyncQueueWorker(
            self.db, self.require_client(), config=self.config, worker_id=worker_id, usage=self.usage
        )


def build_services(
    db: Database,
    config: Optional[SyncConfig] = None,
    client: Optional[BankApiClient] = None,
    decrypt: Optional[Callable[[str], str]] = None,
) -> Services:
    """Build the service graph for a database.

    Args:
        db: Database instance
        config: Configuration (defaults if omitted)
        client: Bank API client; features that talk to the bank need one
        decrypt: Decrypts encrypted settings
    """
    config = config or SyncConfig()
    locks = KeyedLock()
    queue = SyncQueueService(db, config)
    engine = RuleEngine(db, queue, locks=locks)
    return Services(
        db=db,
        config=config,
        client=client,
        locks=locks,
        usage=ApiUsageTracker(db, config),
        settings=SettingsService(db, decrypt),
        queue=queue,
        rules=RuleService(db),
        engine=engine,
        ingestion=WebhookIngestionService(db, engine, client=client, config=config, locks=locks),
        transactions=TransactionService(db, queue, locks=locks),
    )
