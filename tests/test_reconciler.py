"""Tests for conflict detection against the bank's view."""

import pytest
from datetime import datetime
from decimal import Decimal

from banksync.domain.entities import SyncField, SyncStatus
from banksync.domain.errors import NotFoundError, TransientError, ValidationError


@pytest.fixture
def reconciler(services):
    return services.reconciler()


@pytest.fixture
def ingested(services, fake_bank):
    """Ingest a bank transaction so the local copy and baseline match the bank."""

    def _ingest(external_id="up-1", **remote_fields):
        remote = fake_bank.add_remote(external_id, **remote_fields)
        transaction_id, _ = services.ingestion.upsert_remote(remote)
        return transaction_id

    return _ingest


class TestConflictReconciler:
    """Tests for ConflictReconciler."""

    def test_unchanged_transaction_is_in_sync(self, reconciler, ingested, temp_db):
        txn_id = ingested(category="internet", tags=("bills",))

        report = reconciler.run()

        assert report.checked == 1
        assert report.in_sync == 1
        assert report.conflicts == []
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.SYNCED

    def test_bank_side_edit_is_a_conflict(self, reconciler, ingested, fake_bank, temp_db):
        txn_id = ingested(category="internet")
        fake_bank.set_remote("up-1", category="groceries")

        report = reconciler.run()

        assert [c[0] for c in report.conflicts] == [txn_id]
        assert "category diverged" in report.conflicts[0][1]
        assert "groceries" in report.conflicts[0][1]
        txn = temp_db.get_transaction(txn_id)
        assert txn.sync_status == SyncStatus.CONFLICT
        assert txn.category == "internet"

    def test_tag_edit_is_a_conflict(self, reconciler, ingested, fake_bank):
        ingested(tags=("bills",))
        fake_bank.set_remote("up-1", tags=("bills", "shared"))

        report = reconciler.run()

        assert len(report.conflicts) == 1
        assert "tags diverged" in report.conflicts[0][1]

    def test_tags_compare_case_insensitively(self, reconciler, ingested, fake_bank):
        ingested(tags=("bills",))
        fake_bank.set_remote("up-1", tags=("Bills",))

        assert reconciler.run().conflicts == []

    def test_pending_local_edit_is_not_a_conflict(self, services, reconciler, ingested, temp_db):
        txn_id = ingested(category="internet")
        services.transactions.update_category(txn_id, "utilities")

        report = reconciler.run()

        assert report.conflicts == []
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.PENDING

    def test_remote_matching_local_moves_baseline(self, reconciler, ingested, fake_bank, temp_db):
        txn_id = ingested()
        temp_db.update_categorization(txn_id, "internet", ["bills"])
        fake_bank.set_remote("up-1", category="internet", tags=("bills",))

        report = reconciler.run()

        assert report.in_sync == 1
        txn = temp_db.get_transaction(txn_id)
        assert txn.synced_category == "internet"
        assert txn.synced_tags == ("bills",)

    def test_fetch_errors_do_not_stop_the_sweep(self, reconciler, ingested, fake_bank):
        failing = ingested("up-1")
        ingested("up-2")
        fake_bank.fetch_errors["up-1"] = TransientError("GET /transactions/up-1 returned 503", 503)

        report = reconciler.run()

        assert [e[0] for e in report.errors] == [failing]
        assert report.checked == 1
        assert report.in_sync == 1

    def test_manual_and_conflicted_transactions_are_skipped(
        self, services, reconciler, ingested, fake_bank, temp_db
    ):
        services.transactions.create_transaction(
            amount=Decimal("-5.00"), occurred_at=datetime(2024, 3, 15), description="Cash"
        )
        txn_id = ingested()
        temp_db.set_sync_status(txn_id, SyncStatus.CONFLICT)

        report = reconciler.run()

        assert report.checked == 0
        assert fake_bank.fetches == []

    def test_conflict_blocks_queue_until_acknowledged(
        self, services, reconciler, ingested, fake_bank, worker, temp_db
    ):
        txn_id = ingested(category="internet")
        services.transactions.update_tags(txn_id, ["bills"])
        fake_bank.set_remote("up-1", category="groceries")

        reconciler.run()
        assert worker.process_next() is None

        txn = reconciler.acknowledge(txn_id)
        assert txn.sync_status == SyncStatus.PENDING
        assert txn.synced_category == "groceries"

        outcome = worker.process_next()
        assert outcome.result == "completed"
        assert fake_bank.pushes[-1] == ("up-1", SyncField.TAGS, ["bills"])
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.SYNCED


class TestAcknowledge:
    """Tests for ConflictReconciler.acknowledge."""

    def test_acknowledge_adopts_remote_baseline(self, reconciler, ingested, fake_bank, temp_db):
        txn_id = ingested(category="internet")
        fake_bank.set_remote("up-1", category="groceries", tags=("shared",))
        reconciler.run()

        txn = reconciler.acknowledge(txn_id)

        assert txn.sync_status == SyncStatus.SYNCED
        assert txn.synced_category == "groceries"
        assert txn.synced_tags == ("shared",)
        assert txn.category == "internet"
        assert reconciler.run().conflicts == []

    def test_acknowledge_requires_conflict(self, reconciler, ingested):
        txn_id = ingested()
        with pytest.raises(ValidationError, match="not in conflict"):
            reconciler.acknowledge(txn_id)

    def test_acknowledge_missing_transaction(self, reconciler):
        with pytest.raises(NotFoundError):
            reconciler.acknowledge(999)

    def test_acknowledge_deleted_transaction(self, services, reconciler, ingested, fake_bank, temp_db):
        txn_id = ingested()
        services.transactions.update_category(txn_id, "internet")
        services.ingestion.ingest({"type": "deleted", "upTransactionId": "up-1", "deliveryId": "d-9"})
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.CONFLICT

        txn = reconciler.acknowledge(txn_id)

        assert txn.sync_status == SyncStatus.SYNCED
        assert txn.is_deleted
        assert fake_bank.fetches == []
