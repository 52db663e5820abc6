"""Paged pull of bank transactions.

Backfill walks the bank's transaction list page by page and feeds every
transaction through the same idempotent upsert as webhooks, so it is safe to
re-run. The page cursor is saved after each page, which lets an interrupted
run resume where it stopped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from banksync.bank.client import BankApiClient
from banksync.bank.rate_limiter import ApiUsageTracker
from banksync.config import SyncConfig
from banksync.database.base import Database
from banksync.domain.entities import SyncProgress
from banksync.domain.errors import SyncError
from banksync.domain.ingestion import WebhookIngestionService
from banksync.utils.date_parser import utcnow

logger = logging.getLogger(__name__)

PAGE_SIZE = 100

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"


@dataclass
class BackfillReport:
    """Result of one backfill run."""

    pages: int = 0
    synced: int = 0
    completed: bool = False
    error: Optional[str] = None
    item_errors: list[tuple[str, str]] = field(default_factory=list)


class BackfillService:
    """Pulls bank transactions into the store."""

    def __init__(
        self,
        db: Database,
        client: BankApiClient,
        ingestion: WebhookIngestionService,
        config: Optional[SyncConfig] = None,
        usage: Optional[ApiUsageTracker] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.client = client
        self.ingestion = ingestion
        self.config = config or SyncConfig()
        self.usage = usage
        self.clock = clock

    def progress(self) -> Optional[SyncProgress]:
        return self.db.get_sync_progress(self.config.owner_id)

    def run(
        self,
        max_pages: Optional[int] = None,
        page_size: int = PAGE_SIZE,
        restart: bool = False,
    ) -> BackfillReport:
        """Fetch pages until the bank has no more, max_pages is reached or budget runs low.

        Args:
            max_pages: Stop after this many pages (progress is kept for the next run)
            page_size: Transactions per page
            restart: Ignore a saved cursor and start from the newest page
        """
        owner_id = self.config.owner_id
        progress = self.progress()
        cursor = None
        total = 0
        if progress is not None and not restart and progress.status != STATUS_COMPLETED:
            cursor = progress.cursor
            total = progress.total_synced
        if cursor is None:
            self.db.save_sync_progress(
                owner_id, started_at=self.clock(), completed_at=None, total_synced=0
            )
            total = 0
        self.db.save_sync_progress(owner_id, status=STATUS_RUNNING, error=None)

        report = BackfillReport()
        while max_pages is None or report.pages < max_pages:
            if self.usage is not None and not self.usage.can_make_call():
                logger.warning("API budget low; backfill paused after %d page(s)", report.pages)
                break
            try:
                page = self.client.list_transactions(page_size, cursor)
            except SyncError as e:
                report.error = str(e)
                logger.error("Backfill failed on page %d: %s", report.pages + 1, e)
                self.db.save_sync_progress(owner_id, status=STATUS_ERROR, error=str(e))
                return report

            # Unreadable resources are reported and the cursor still moves on
            report.item_errors.extend(page.errors)
            for remote in page.transactions:
                try:
                    self.ingestion.upsert_remote(remote)
                except ValueError as e:
                    logger.warning("Backfill of %s failed: %s", remote.external_id, e)
                    report.item_errors.append((remote.external_id, str(e)))
                    continue
                report.synced += 1

            report.pages += 1
            total += len(page.transactions)
            cursor = page.cursor
            self.db.save_sync_progress(owner_id, cursor=cursor, total_synced=total)
            logger.info("Backfill page %d: %d transaction(s)", report.pages, len(page.transactions))

            if cursor is None:
                report.completed = True
                self.db.save_sync_progress(
                    owner_id, status=STATUS_COMPLETED, completed_at=self.clock()
                )
                logger.info("Backfill completed: %d transaction(s) in total", total)
                return report

        self.db.save_sync_progress(owner_id, status=STATUS_IDLE)
        return report
