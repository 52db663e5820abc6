"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from banksync.api import create_app
from banksync.domain.entities import SyncStatus
from banksync.domain.errors import TransientError


@pytest.fixture
def http(temp_db, services):
    app = create_app(temp_db, services=services)
    with TestClient(app) as client:
        yield client


def webhook(event_type="created", external_id="up-1", delivery_id="d-1", **fields):
    body = {"type": event_type, "upTransactionId": external_id, "deliveryId": delivery_id}
    body.update(fields)
    return body


class TestWebhookEndpoint:
    """Tests for POST /webhooks/up."""

    def test_accepts_event(self, http, temp_db):
        response = http.post("/webhooks/up", json=webhook(amount="-79.00", description="NBN"))

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "processed"
        assert temp_db.get_transaction(data["transaction_id"]).external_id == "up-1"

    def test_duplicate_delivery(self, http):
        body = webhook(amount="-79.00")
        http.post("/webhooks/up", json=body)
        response = http.post("/webhooks/up", json=body)

        assert response.status_code == 202
        assert response.json()["status"] == "duplicate"

    def test_reports_matched_rules(self, http, services):
        rule_id = services.rules.create_rule(
            name="NBN", search_criteria={"description": "nbn"}, apply_criteria={"category": "internet"}
        )
        response = http.post("/webhooks/up", json=webhook(amount="-79.00", description="NBN Co"))
        assert response.json()["matched_rule_ids"] == [rule_id]

    def test_malformed_body_is_rejected(self, http, temp_db):
        response = http.post("/webhooks/up", json={"type": "created"})

        assert response.status_code == 400
        assert "transaction id" in response.json()["detail"]
        assert temp_db.list_webhook_events() == []

    def test_processing_error_is_accepted(self, http):
        response = http.post("/webhooks/up", json=webhook(amount="lots"))

        assert response.status_code == 202
        assert response.json()["status"] == "error"


class TestRuleEndpoints:
    """Tests for /rules."""

    def test_create_and_get(self, http):
        response = http.post(
            "/rules",
            json={
                "name": "NBN",
                "search_criteria": {"description": "nbn"},
                "apply_criteria": {"category": "internet"},
            },
        )
        assert response.status_code == 201
        rule = response.json()
        assert rule["status"] == "active"
        assert rule["matches"] == 0

        fetched = http.get(f"/rules/{rule['id']}")
        assert fetched.json()["name"] == "NBN"

    def test_empty_search_requires_confirmation(self, http):
        body = {"name": "All", "search_criteria": {}, "apply_criteria": {"tags": ["x"]}}
        assert http.post("/rules", json=body).status_code == 400

        body["confirm_match_all"] = True
        assert http.post("/rules", json=body).status_code == 201

    def test_invalid_criteria(self, http):
        response = http.post(
            "/rules",
            json={
                "name": "Bad",
                "search_criteria": {"amount_min": "10", "amount_max": "1"},
                "apply_criteria": {"category": "x"},
            },
        )
        assert response.status_code == 400
        assert "Amount minimum" in response.json()["detail"]

    def test_missing_rule(self, http):
        assert http.get("/rules/999").status_code == 404
        assert http.delete("/rules/999").status_code == 404

    def test_update_list_and_delete(self, http, services):
        rule_id = services.rules.create_rule(
            name="NBN", search_criteria={"description": "nbn"}, apply_criteria={"category": "internet"}
        )

        response = http.patch(f"/rules/{rule_id}", json={"status": "inactive", "name": "Old NBN"})
        assert response.status_code == 200
        assert response.json()["name"] == "Old NBN"

        assert http.get("/rules", params={"status": "active"}).json() == []
        assert len(http.get("/rules").json()) == 1

        assert http.delete(f"/rules/{rule_id}").status_code == 204
        assert http.get("/rules").json() == []

    def test_preview(self, http, services, bank_transaction):
        txn_id = bank_transaction()
        bank_transaction(external_id="up-2", description="Coles")
        rule_id = services.rules.create_rule(
            name="NBN", search_criteria={"description": "nbn"}, apply_criteria={"category": "internet"}
        )

        response = http.post(f"/rules/{rule_id}/preview")

        assert response.status_code == 200
        assert [t["id"] for t in response.json()] == [txn_id]


class TestSyncEndpoints:
    """Tests for /sync."""

    def test_list_transactions_by_sync_status(self, http, temp_db, bank_transaction):
        bank_transaction(external_id="up-1")
        conflicted = bank_transaction(external_id="up-2")
        temp_db.set_sync_status(conflicted, SyncStatus.CONFLICT)

        response = http.get("/sync/transactions", params={"sync_status": "conflict"})

        assert response.status_code == 200
        assert [t["id"] for t in response.json()] == [conflicted]
        assert response.json()[0]["amount"] in ("-79.00", -79.0)

    def test_queue_listing_and_retry(self, http, services, worker, fake_bank, bank_transaction):
        from banksync.bank.client import PushResult

        txn_id = bank_transaction()
        services.transactions.update_category(txn_id, "internet")
        fake_bank.push_results.append(PushResult(ok=False, error="PATCH returned 400"))
        worker.process_next()

        failed = http.get("/sync/queue", params={"status": "failed"}).json()
        assert len(failed) == 1
        assert failed[0]["error"] == "PATCH returned 400"

        response = http.post(f"/sync/queue/{failed[0]['id']}/retry")
        assert response.status_code == 200
        assert response.json()["status"] == "pending"

        assert http.post(f"/sync/queue/{failed[0]['id']}/retry").status_code == 400
        assert http.post("/sync/queue/999/retry").status_code == 404

    def test_acknowledge(self, http, services, fake_bank, temp_db):
        remote = fake_bank.add_remote("up-1", category="internet")
        txn_id, _ = services.ingestion.upsert_remote(remote)
        fake_bank.set_remote("up-1", category="groceries")
        services.reconciler().run()

        response = http.post(f"/sync/transactions/{txn_id}/acknowledge")

        assert response.status_code == 200
        assert response.json()["sync_status"] == "synced"
        assert http.post(f"/sync/transactions/{txn_id}/acknowledge").status_code == 400

    def test_bank_failure_is_bad_gateway(self, http, services, fake_bank, temp_db):
        remote = fake_bank.add_remote("up-1")
        txn_id, _ = services.ingestion.upsert_remote(remote)
        temp_db.set_sync_status(txn_id, SyncStatus.CONFLICT)
        fake_bank.fetch_errors["up-1"] = TransientError("GET /transactions/up-1 returned 503", 503)

        response = http.post(f"/sync/transactions/{txn_id}/acknowledge")

        assert response.status_code == 502

    def test_usage(self, http):
        response = http.get("/sync/usage")
        assert response.status_code == 200
        assert response.json()["calls_limit"] == 1000

    def test_health(self, http):
        assert http.get("/health").json() == {"status": "ok"}
