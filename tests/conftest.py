"""Shared pytest fixtures for banksync tests."""

import tempfile
import os
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional
import pytest

from banksync.bank.client import BankApiClient, PushResult, TransactionPage
from banksync.config import SyncConfig
from banksync.database.factories import create_sqlite_database
from banksync.domain.entities import RemoteTransaction, SettlementStatus, SyncField
from banksync.domain.errors import PermanentError, SyncError
from banksync.services import build_services
from banksync.utils.date_parser import utcnow


class FakeClock:
    """Controllable clock returning naive UTC datetimes.

    Starts a minute ahead of the wall clock so items queued by services
    running on real time are already due.
    """

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or utcnow() + timedelta(minutes=1)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeBankClient(BankApiClient):
    """In-memory bank.

    Remote transactions live in ``remote``. Queue ``push_results`` to make
    the next pushes fail; successful pushes update the remote copy.
    """

    def __init__(self):
        self.remote: dict[str, RemoteTransaction] = {}
        self.push_results: list[PushResult] = []
        self.pushes: list[tuple[str, SyncField, Any]] = []
        self.fetch_errors: dict[str, SyncError] = {}
        self.fetches: list[str] = []

    def add_remote(
        self,
        external_id: str,
        amount: str = "-10.00",
        description: str = "Test",
        category: Optional[str] = None,
        tags: tuple[str, ...] = (),
        status: SettlementStatus = SettlementStatus.SETTLED,
        occurred_at: Optional[datetime] = None,
    ) -> RemoteTransaction:
        remote = RemoteTransaction(
            external_id=external_id,
            account_id="acc-1",
            amount=Decimal(amount),
            description=description,
            status=status,
            occurred_at=occurred_at or datetime(2024, 3, 15, 9, 30),
            category=category,
            tags=tuple(tags),
            raw={"id": external_id},
        )
        self.remote[external_id] = remote
        return remote

    def set_remote(self, external_id: str, **changes: Any) -> None:
        from dataclasses import replace

        self.remote[external_id] = replace(self.remote[external_id], **changes)

    def push_field_update(self, external_id: str, field: SyncField, value: Any) -> PushResult:
        self.pushes.append((external_id, SyncField(field), value))
        if self.push_results:
            result = self.push_results.pop(0)
            if not result.ok:
                return result
        if external_id in self.remote:
            field = SyncField(field)
            if field is SyncField.CATEGORY:
                self.set_remote(external_id, category=value)
            elif field is SyncField.TAGS:
                self.set_remote(external_id, tags=tuple(value))
            else:
                self.set_remote(external_id, category=value["category"], tags=tuple(value["tags"]))
        return PushResult(ok=True)

    def fetch_transaction(self, external_id: str) -> RemoteTransaction:
        self.fetches.append(external_id)
        if external_id in self.fetch_errors:
            raise self.fetch_errors[external_id]
        if external_id not in self.remote:
            raise PermanentError(f"GET /transactions/{external_id} returned 404", 404)
        return self.remote[external_id]

    def list_transactions(self, page_size: int = 100, page_after: Optional[str] = None):
        ids = sorted(self.remote)
        start = ids.index(page_after) + 1 if page_after else 0
        page = ids[start:start + page_size]
        cursor = page[-1] if start + page_size < len(ids) else None
        return TransactionPage([self.remote[i] for i in page], cursor)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    # Cleanup
    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def config():
    """Config with small delays so retry tests stay readable."""
    return SyncConfig(base_delay=10.0, max_delay=1000.0, jitter_ratio=0.0, max_attempts=3)


@pytest.fixture
def fake_bank():
    """Create an in-memory bank client."""
    return FakeBankClient()


@pytest.fixture
def clock():
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def services(temp_db, config, fake_bank):
    """Build all services on the temporary database with the fake bank."""
    return build_services(temp_db, config, fake_bank)


@pytest.fixture
def worker(services, clock):
    """Create a sync worker driven by the fake clock."""
    from banksync.domain.sync_queue import SyncQueueWorker

    return SyncQueueWorker(
        services.db, services.client, config=services.config, worker_id="w1", clock=clock
    )


@pytest.fixture
def bank_transaction(temp_db):
    """Create an ingested bank transaction with no category or tags."""

    def _create(external_id: str = "up-1", description: str = "NBN Co Internet", amount: str = "-79.00"):
        return temp_db.create_transaction(
            owner_id="default",
            amount=Decimal(amount),
            occurred_at=datetime(2024, 3, 15, 9, 30),
            description=description,
            account_id="acc-1",
            external_id=external_id,
            status=SettlementStatus.SETTLED,
            sync_status="synced",
            source="bank",
            processed=False,
        )

    return _create


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
