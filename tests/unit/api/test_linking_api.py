"""Tests for the linking API endpoints."""

from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from clientlink.errors import PersistenceError
from clientlink.linking.state_machine import LinkingStateMachine, get_state_machine
from clientlink.main import app


class TestDocumentEndpoints:
    """Tests for single-document endpoints."""

    def test_ingest_links_exact_email(self, client, store):
        response = client.post(
            "/api/v1/linking/documents",
            json={
                "id": "doc-new",
                "ownerEmail": "owner@acme.com",
                "title": "Intro call",
                "timestamp": "2024-05-02T10:00:00Z",
                "participantEmails": ["owner@acme.com", "info@beststudio.io"],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "auto_linked"
        assert data["client_id"] == "client-best"
        assert data["confidence"] == 1.0

    def test_resolve_escalates_unmatched(self, client, telegram):
        response = client.post("/api/v1/linking/documents/doc-1/resolve")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "needs_human"
        assert data["escalation"]["status"] == "sent"
        assert len(telegram.sent) == 1

    def test_resolve_missing_document(self, client):
        response = client.post("/api/v1/linking/documents/nope/resolve")

        assert response.status_code == 404
        body = response.json()
        assert body["error_code"] == "NOT_FOUND"
        assert body["success"] is False
        assert response.headers["X-Error-Code"] == "NOT_FOUND"

    def test_escalate_twice(self, client, telegram):
        first = client.post("/api/v1/linking/documents/doc-escalated/escalate")
        second = client.post("/api/v1/linking/documents/doc-escalated/escalate")

        assert first.json()["status"] == "sent"
        assert second.json()["status"] == "skipped"
        assert len(telegram.sent) == 1

    def test_get_document_uses_camel_case(self, client):
        client.post("/api/v1/linking/documents/doc-1/resolve")

        response = client.get("/api/v1/linking/documents/doc-1")

        assert response.status_code == 200
        data = response.json()
        assert data["linkingStatus"] == "needs_human"
        assert [entry["stage"] for entry in data["linkingHistory"]] == ["auto", "ai", "telegram"]

    def test_persistence_failure_is_500(self, configured_settings, make_document, clients):
        store = MagicMock()
        store.get_document = AsyncMock(return_value=make_document(participants=["info@beststudio.io"]))
        store.list_clients = AsyncMock(return_value=clients)
        store.record_attempt = AsyncMock(side_effect=PersistenceError("database is locked"))
        app.dependency_overrides[get_state_machine] = lambda: LinkingStateMachine(store)
        try:
            with TestClient(app) as test_client:
                response = test_client.post("/api/v1/linking/documents/doc-1/resolve")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["error_code"] == "PERSISTENCE_ERROR"


class TestBatchEndpoint:
    """Tests for batch reconciliation over HTTP."""

    def test_dry_run_by_default(self, client, store):
        response = client.post("/api/v1/linking/batch", json={"ownerEmail": "owner@acme.com"})

        assert response.status_code == 200
        data = response.json()
        assert data["dryRun"] is True
        assert "executionResults" not in data
        assert data["summary"] == {"total": 3, "matched": 1, "unmatched": 2, "executed": 0}
        assert data["matched"][0]["documentId"] == "doc-2"
        assert data["matched"][0]["label"] == "high"

    def test_execute_links(self, client, store):
        response = client.post(
            "/api/v1/linking/batch",
            json={"ownerEmail": "owner@acme.com", "dryRun": False, "strategy": "participants_email"},
        )

        data = response.json()
        assert data["executionResults"] == [{"id": "doc-2", "success": True}]
        assert data["summary"]["executed"] == 1
        linked = client.get("/api/v1/linking/documents/doc-2").json()
        assert linked["clientId"] == "client-northwind"
        assert linked["linkingStatus"] == "auto_linked"

    def test_limit_is_clamped(self, client):
        response = client.post(
            "/api/v1/linking/batch", json={"ownerEmail": "owner@acme.com", "limit": 0}
        )

        assert response.json()["summary"]["total"] == 1

    def test_rejects_unknown_strategy(self, client):
        response = client.post(
            "/api/v1/linking/batch",
            json={"ownerEmail": "owner@acme.com", "strategy": "magic"},
        )

        assert response.status_code == 422

    def test_rejects_owner_without_at_sign(self, client):
        response = client.post("/api/v1/linking/batch", json={"ownerEmail": "owner"})

        assert response.status_code == 422
        assert response.headers["X-Error-Code"] == "VALIDATION_ERROR"
        assert response.json()["details"][0]["field"] == "ownerEmail"


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
