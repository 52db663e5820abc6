"""Tests for the outbound sync queue and its workers."""

import threading
import time
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from banksync.bank.client import PushResult
from banksync.bank.rate_limiter import ApiUsageTracker
from banksync.config import SyncConfig
from banksync.domain.entities import QueueStatus, SyncField, SyncStatus
from banksync.domain.errors import NotFoundError, TransientError, ValidationError
from banksync.domain.sync_queue import (
    SyncQueueWorker,
    compute_backoff,
    run_workers,
)


def transient(message="GET /transactions returned 503"):
    return PushResult(ok=False, retryable=True, error=message)


@pytest.fixture
def queued(services, bank_transaction, temp_db):
    """Create a bank transaction with a pending category push."""

    def _queue(external_id="up-1", category="internet"):
        txn_id = bank_transaction(external_id=external_id)
        temp_db.set_sync_status(txn_id, SyncStatus.PENDING)
        item_id = services.queue.enqueue(txn_id, SyncField.CATEGORY, category, None)
        return txn_id, item_id

    return _queue


class TestComputeBackoff:
    """Tests for compute_backoff."""

    def test_doubles_per_attempt(self, config):
        assert [compute_backoff(n, config) for n in range(4)] == [10, 20, 40, 80]

    def test_capped_at_max_delay(self, config):
        assert compute_backoff(20, config) == 1000

    def test_never_decreases_with_full_jitter(self):
        config = SyncConfig(base_delay=30, max_delay=3600, jitter_ratio=1.0)
        for attempts in range(10):
            high = compute_backoff(attempts, config, rng=lambda: 0.999999)
            low_next = compute_backoff(attempts + 1, config, rng=lambda: 0.0)
            assert high <= low_next

    def test_jitter_scales_delay(self):
        config = SyncConfig(base_delay=100, max_delay=3600, jitter_ratio=0.5)
        assert compute_backoff(0, config, rng=lambda: 0.5) == pytest.approx(125)

    def test_rate_limit_floor(self, config):
        assert compute_backoff(0, config, rate_limited=True) == 900
        capped = SyncConfig(base_delay=10, max_delay=600, jitter_ratio=0)
        assert compute_backoff(0, capped, rate_limited=True) == 600


class TestSyncQueueService:
    """Tests for SyncQueueService."""

    def test_enqueue_coalesces_untouched_pending_item(self, services, queued, temp_db):
        txn_id, item_id = queued(category="internet")
        second = services.queue.enqueue(txn_id, SyncField.CATEGORY, "utilities", "internet")

        assert second == item_id
        [item] = temp_db.list_sync_items(transaction_id=txn_id)
        assert item.new_value == "utilities"
        assert item.old_value is None

    def test_different_fields_are_separate_items(self, services, queued, temp_db):
        txn_id, item_id = queued()
        tags_item = services.queue.enqueue(txn_id, SyncField.TAGS, ["bills"], [])

        assert tags_item != item_id
        assert len(temp_db.list_sync_items(transaction_id=txn_id)) == 2

    def test_enqueue_change_picks_field(self, services, bank_transaction):
        txn_id = bank_transaction()
        assert services.queue.enqueue_change(txn_id, None, [], None, []) is None

        item_id = services.queue.enqueue_change(txn_id, None, [], None, ["bills"])
        item = services.queue.get_item(item_id)
        assert item.field == SyncField.TAGS
        assert item.new_value == ["bills"]

    def test_enqueue_for_missing_transaction(self, services):
        with pytest.raises(NotFoundError):
            services.queue.enqueue(999, SyncField.CATEGORY, "x")

    def test_get_missing_item(self, services):
        with pytest.raises(NotFoundError):
            services.queue.get_item(999)

    def test_retry_item_resets_failed_item(self, services, worker, queued, fake_bank, temp_db):
        txn_id, item_id = queued()
        fake_bank.push_results.append(PushResult(ok=False, error="422 invalid category"))
        worker.process_next()
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.FAILED

        item = services.queue.retry_item(item_id)

        assert item.status == QueueStatus.PENDING
        assert item.attempts == 0
        assert item.error is None
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.PENDING

    def test_retry_item_rejects_open_item(self, services, queued):
        _, item_id = queued()
        with pytest.raises(ValidationError, match="only failed items"):
            services.queue.retry_item(item_id)


class TestSyncQueueWorker:
    """Tests for SyncQueueWorker."""

    def test_successful_push(self, worker, queued, fake_bank, temp_db):
        fake_bank.add_remote("up-1")
        txn_id, item_id = queued()

        outcome = worker.process_next()

        assert outcome.result == "completed"
        assert fake_bank.pushes == [("up-1", SyncField.CATEGORY, "internet")]
        assert fake_bank.remote["up-1"].category == "internet"
        item = temp_db.get_sync_item(item_id)
        assert item.status == QueueStatus.COMPLETED
        assert item.lease_owner is None
        txn = temp_db.get_transaction(txn_id)
        assert txn.sync_status == SyncStatus.SYNCED
        assert txn.synced_category == "internet"

    def test_empty_queue(self, worker):
        assert worker.process_next() is None
        assert worker.run_batch().processed == 0

    def test_transient_failure_is_retried_after_backoff(self, worker, queued, fake_bank, clock, temp_db):
        txn_id, item_id = queued()
        fake_bank.push_results.append(transient())

        outcome = worker.process_next()

        assert outcome.result == "retrying"
        assert outcome.retry_at == clock.now + timedelta(seconds=10)
        item = temp_db.get_sync_item(item_id)
        assert item.status == QueueStatus.PENDING
        assert item.attempts == 1
        assert item.error == "GET /transactions returned 503"
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.PENDING

        assert worker.process_next() is None
        clock.advance(10)
        assert worker.process_next().result == "completed"
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.SYNCED

    def test_exhausted_attempts_fail_item(self, worker, queued, fake_bank, clock, temp_db):
        txn_id, item_id = queued()
        fake_bank.push_results.extend([transient(), transient(), transient()])

        assert worker.process_next().result == "retrying"
        clock.advance(10)
        second = worker.process_next()
        assert second.result == "retrying"
        assert second.retry_at == clock.now + timedelta(seconds=20)
        clock.advance(20)
        assert worker.process_next().result == "failed"

        item = temp_db.get_sync_item(item_id)
        assert item.status == QueueStatus.FAILED
        assert item.attempts == 3
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.FAILED
        assert len(fake_bank.pushes) == 3

        clock.advance(10000)
        assert worker.process_next() is None

    def test_permanent_failure_is_not_retried(self, worker, queued, fake_bank, temp_db):
        _, item_id = queued()
        fake_bank.push_results.append(PushResult(ok=False, error="PATCH returned 400"))

        outcome = worker.process_next()

        assert outcome.result == "failed"
        assert outcome.error == "PATCH returned 400"
        assert temp_db.get_sync_item(item_id).attempts == 1

    def test_rate_limited_failure_waits_for_floor(self, worker, queued, fake_bank, clock):
        queued()
        fake_bank.push_results.append(
            PushResult(ok=False, retryable=True, rate_limited=True, error="429")
        )
        outcome = worker.process_next()
        assert outcome.retry_at == clock.now + timedelta(seconds=900)

    def test_backoff_keeps_rate_limit_wait_after_other_failure(self, worker, queued, fake_bank, clock):
        queued()
        fake_bank.push_results.extend(
            [PushResult(ok=False, retryable=True, rate_limited=True, error="429"), transient()]
        )

        first = worker.process_next()
        assert first.retry_at == clock.now + timedelta(seconds=900)
        clock.advance(900)

        second = worker.process_next()
        assert second.result == "retrying"
        assert second.retry_at == clock.now + timedelta(seconds=900)

    def test_client_exception_becomes_result(self, services, queued, clock, temp_db, fake_bank):
        class RaisingBank(type(fake_bank)):
            def push_field_update(self, external_id, field, value):
                raise TransientError("connection reset")

        _, item_id = queued()
        worker = SyncQueueWorker(
            temp_db, RaisingBank(), config=services.config, worker_id="w1", clock=clock
        )

        assert worker.process_next().result == "retrying"
        assert temp_db.get_sync_item(item_id).error == "connection reset"

    def test_transaction_without_bank_id_fails(self, services, worker, temp_db):
        txn_id = services.transactions.create_transaction(
            amount=Decimal("-5.00"), occurred_at=datetime(2024, 3, 15), description="Cash"
        )
        services.queue.enqueue(txn_id, SyncField.CATEGORY, "food")

        outcome = worker.process_next()

        assert outcome.result == "failed"
        assert "no bank id" in outcome.error

    def test_conflict_blocks_claim(self, worker, queued, temp_db):
        txn_id, _ = queued()
        temp_db.set_sync_status(txn_id, SyncStatus.CONFLICT)

        assert worker.process_next() is None

        temp_db.set_sync_status(txn_id, SyncStatus.PENDING)
        assert worker.process_next().result == "completed"

    def test_expired_lease_is_reclaimed(self, services, queued, clock, temp_db, fake_bank):
        _, item_id = queued()
        crashed = temp_db.claim_sync_item("crashed-worker", clock.now, lease_seconds=300)
        assert crashed.id == item_id
        worker = SyncQueueWorker(
            temp_db, fake_bank, config=services.config, worker_id="w2", clock=clock
        )

        assert worker.process_next() is None
        clock.advance(301)
        assert worker.process_next().result == "completed"
        assert not temp_db.complete_sync_item(item_id, "crashed-worker", clock.now)

    def test_crashing_push_uses_retry_budget(self, services, queued, clock, temp_db, fake_bank):
        class BrokenBank(type(fake_bank)):
            def push_field_update(self, external_id, field, value):
                raise RuntimeError("response body could not be decoded")

        txn_id, item_id = queued()
        worker = SyncQueueWorker(
            temp_db, BrokenBank(), config=services.config, worker_id="w1", clock=clock
        )

        first = worker.process_next()
        assert first.result == "retrying"
        assert first.error == "RuntimeError: response body could not be decoded"
        for _ in range(2):
            clock.advance(1000)
            last = worker.process_next()

        assert last.result == "failed"
        item = temp_db.get_sync_item(item_id)
        assert item.status == QueueStatus.FAILED
        assert item.attempts == 3
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.FAILED

    def test_abandoned_leases_count_as_attempts(self, services, worker, queued, clock, temp_db, fake_bank):
        txn_id, item_id = queued()
        lease = services.config.lease_timeout

        assert temp_db.claim_sync_item("crashed-1", clock.now, lease).attempts == 0
        clock.advance(lease + 1)
        reclaimed = temp_db.claim_sync_item("crashed-2", clock.now, lease)
        assert reclaimed.attempts == 1
        assert reclaimed.error == "Lease expired before the push finished"
        clock.advance(lease + 1)
        assert temp_db.claim_sync_item("crashed-3", clock.now, lease).attempts == 2
        clock.advance(lease + 1)

        outcome = worker.process_next()

        assert outcome.result == "failed"
        assert fake_bank.pushes == []
        item = temp_db.get_sync_item(item_id)
        assert item.status == QueueStatus.FAILED
        assert item.attempts == 3
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.FAILED

    def test_result_of_expired_lease_is_discarded(self, services, queued, clock, temp_db, fake_bank):
        class SlowBank(type(fake_bank)):
            def push_field_update(self, external_id, field, value):
                # Another worker takes over while this push is in flight
                temp_db.claim_sync_item("w2", clock.now + timedelta(seconds=400), 300)
                return PushResult(ok=True)

        txn_id, item_id = queued()
        worker = SyncQueueWorker(
            temp_db, SlowBank(), config=services.config, worker_id="w1", clock=clock
        )

        assert worker.process_next().result == "lease_lost"
        item = temp_db.get_sync_item(item_id)
        assert item.status == QueueStatus.PROCESSING
        assert item.lease_owner == "w2"
        assert temp_db.get_transaction(txn_id).synced_category is None

    def test_items_are_processed_in_creation_order(self, worker, queued, fake_bank):
        queued(external_id="up-1", category="first")
        queued(external_id="up-2", category="second")

        worker.run_batch()

        assert [p[2] for p in fake_bank.pushes] == ["first", "second"]

    def test_newer_item_waits_for_older_item_on_same_field(
        self, services, worker, queued, fake_bank, clock, temp_db
    ):
        txn_id, first_id = queued(category="internet")
        fake_bank.push_results.append(transient())
        assert worker.process_next().result == "retrying"

        second_id = services.queue.enqueue(txn_id, SyncField.BOTH, {"category": "utilities", "tags": []})
        assert second_id != first_id
        assert worker.process_next() is None

        clock.advance(10)
        assert worker.process_next().item_id == first_id
        assert worker.process_next().item_id == second_id
        assert [p[2] for p in fake_bank.pushes][-2:] == [
            "internet",
            {"category": "utilities", "tags": []},
        ]

    def test_other_field_is_not_blocked(self, services, worker, queued, fake_bank):
        txn_id, _ = queued()
        fake_bank.push_results.append(transient())
        worker.process_next()

        tags_id = services.queue.enqueue(txn_id, SyncField.TAGS, ["bills"], [])
        assert worker.process_next().item_id == tags_id

    def test_transaction_stays_pending_while_items_remain(
        self, services, worker, queued, fake_bank, temp_db
    ):
        txn_id, _ = queued()
        services.queue.enqueue(txn_id, SyncField.TAGS, ["bills"], [])

        worker.process_next()
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.PENDING
        worker.process_next()
        assert temp_db.get_transaction(txn_id).sync_status == SyncStatus.SYNCED

    def test_run_batch_respects_limit(self, worker, queued):
        for n in range(3):
            queued(external_id=f"up-{n}")

        report = worker.run_batch(limit=2)

        assert report.processed == 2
        assert report.completed == 2

    def test_low_budget_defers_batch(self, services, queued, clock, temp_db, fake_bank):
        config = SyncConfig(hourly_call_limit=100, safety_margin=50)
        usage = ApiUsageTracker(temp_db, config)
        usage.track_call(49)
        _, item_id = queued()
        worker = SyncQueueWorker(temp_db, fake_bank, config=config, usage=usage, clock=clock)

        report = worker.run_batch()

        assert report.deferred
        assert report.processed == 0
        assert temp_db.get_sync_item(item_id).status == QueueStatus.PENDING


class TestRunWorkers:
    """Concurrent workers never push an item twice."""

    def test_each_item_pushed_once(self, services, queued, fake_bank, temp_db):
        item_ids = [queued(external_id=f"up-{n}")[1] for n in range(8)]
        stop = threading.Event()
        config = services.config.with_overrides(poll_interval=0.05)

        threads = run_workers(temp_db, fake_bank, 3, stop, config=config)
        deadline = time.monotonic() + 20
        while time.monotonic() < deadline:
            done = temp_db.list_sync_items(status=QueueStatus.COMPLETED)
            if len(done) == len(item_ids):
                break
            time.sleep(0.05)
        stop.set()
        for thread in threads:
            thread.join(timeout=5)

        assert sorted(i.id for i in temp_db.list_sync_items(status=QueueStatus.COMPLETED)) == item_ids
        assert sorted(p[0] for p in fake_bank.pushes) == sorted(f"up-{n}" for n in range(8))
