"""Tests for the HTTP routes, with fakes installed on app.state."""

import pytest
from fastapi.testclient import TestClient

from email_intake.core.errors import LLMError, LLMErrorCode
from email_intake.core.models import Failed, Pending
from email_intake.main import app
from email_intake.processors.orchestrator import EmailProcessor
from email_intake.services.poller import EmailPoller

from conftest import FakeDelivery, FakeLLM, make_record


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def client(store, llm, no_sleep):
    """TestClient without lifespan, so no Redis or scheduler is started."""
    delivery = FakeDelivery()
    app.state.store = store
    app.state.llm = llm
    app.state.llm_error = None
    app.state.delivery = delivery
    app.state.processor = EmailProcessor(store, llm, delivery, sleep=no_sleep)
    app.state.poller = EmailPoller(store)
    yield TestClient(app)
    for name in ("store", "llm", "llm_error", "delivery", "processor", "poller"):
        delattr(app.state, name)


def seed(store, *records):
    for record in records:
        store.records[record.id] = record
        store.tracked.add(record.id)
        store.states[record.id] = Pending()


class TestEmailRoutes:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_list_emails(self, client, store):
        """Test emails are listed newest first with stats."""
        seed(store, make_record("a", history_id=1), make_record("b", history_id=2))

        data = client.get("/emails").json()

        assert [e["id"] for e in data["emails"]] == ["b", "a"]
        assert data["emails"][0]["status"] == "pending"
        assert data["stats"]["pending"] == 2

    def test_poll(self, client, store):
        store.add_upstream(make_record("new", history_id=7))

        data = client.get("/emails/poll").json()

        assert data["success"] is True
        assert data["newCount"] == 1
        assert data["newIds"] == ["new"]
        assert data["lastHistoryId"] == 7

    def test_manual_add(self, client, store):
        """Test the camelCase payload is accepted."""
        response = client.post(
            "/emails/poll",
            json={
                "id": "manual-1",
                "threadId": "t",
                "from": "ops@shipper.com",
                "subject": "Test",
                "body": "Need a quote",
                "historyId": 9,
            },
        )

        assert response.status_code == 200
        assert response.json()["emailId"] == "manual-1"
        assert store.records["manual-1"].sender == "ops@shipper.com"

    def test_manual_add_existing_id_is_conflict(self, client, store):
        seed(store, make_record("a"))

        response = client.post(
            "/emails/poll",
            json={"id": "a", "from": "ops@shipper.com", "subject": "Replacement", "body": "x"},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "Email already exists: a"
        assert store.records["a"].subject != "Replacement"

    def test_manual_add_requires_fields(self, client):
        response = client.post("/emails/poll", json={"id": "x", "subject": "no sender"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing required email fields"

    def test_refresh(self, client, store):
        store.add_upstream(make_record("b", history_id=30))

        data = client.put("/emails/poll").json()
        assert data["imported"] == 1
        assert data["maxHistoryId"] == 30


class TestProcessRoutes:
    """Tests for /process routes and error mapping."""

    def test_process_one(self, client, store):
        seed(store, make_record("a"))

        response = client.post("/process/a")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "completed"
        assert data["emailSent"] is True

    def test_not_found(self, client):
        response = client.post("/process/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "Email not found: missing"

    def test_invalid_transition_is_conflict(self, client, store):
        seed(store, make_record("a"))
        client.post("/process/a")

        response = client.post("/process/a")

        assert response.status_code == 409
        assert response.json()["error"] == "Cannot process email with status: completed"

    def test_failure_status_code(self, client, store, llm):
        llm.outcomes = [LLMError(LLMErrorCode.INVALID_REQUEST, "bad")]
        seed(store, make_record("a"))

        response = client.post("/process/a")

        assert response.status_code == 202
        assert response.json()["status"] == "manual-review"

    def test_llm_unavailable(self, client, store):
        """Test processing routes answer 503 when the client could not be built."""
        app.state.llm = None
        app.state.llm_error = "Unknown model family for 'llama'"
        seed(store, make_record("a"))

        response = client.post("/process/a")

        assert response.status_code == 503
        assert "Unknown model family" in response.json()["detail"]

    def test_queue(self, client, store):
        seed(store, make_record("a", history_id=1), make_record("b", history_id=2))

        data = client.post("/process/queue").json()

        assert data["summary"]["processed"] == 2
        assert data["summary"]["successful"] == 2
        assert data["stats"]["before"]["pending"] == 2
        assert data["stats"]["after"]["completed"] == 2

    def test_queue_status(self, client, store):
        seed(store, make_record("a"))

        data = client.get("/process/queue").json()

        assert data["queue"]["pending"] == 1
        assert data["openAIConfigured"] is True
        assert data["sweepRunning"] is False

    def test_status(self, client, store):
        seed(store, make_record("a"))
        assert client.get("/process/a").json() == {"emailId": "a", "status": "pending"}

    def test_retry_from_pending_rejected(self, client, store):
        seed(store, make_record("a"))
        assert client.post("/process/retry/a").status_code == 409

    def test_retry_failed(self, client, store):
        seed(store, make_record("a"))
        store.states["a"] = Failed(error="timeout")

        response = client.post("/process/retry/a")
        assert response.json()["status"] == "completed"

    def test_reset_and_check(self, client, store):
        """Test the reset check reports what a reset would discard."""
        seed(store, make_record("a"))
        client.post("/process/a")

        check = client.get("/process/reset/a").json()
        assert check["canReset"] is True
        assert check["hasResponse"] is True
        assert check["responseLength"] == len("Reply to a")

        data = client.post("/process/reset/a").json()
        assert data["previousStatus"] == "completed"
        assert data["newStatus"] == "pending"
        assert isinstance(store.states["a"], Pending)

    def test_reset_with_rerun(self, client, store, llm):
        seed(store, make_record("a"))
        client.post("/process/a")

        data = client.post("/process/reset/a", params={"rerun": "true"}).json()

        assert data["status"] == "completed"
        assert llm.calls == ["a", "a"]

    def test_stats(self, client, store):
        seed(store, make_record("a"))
        client.post("/process/a")

        data = client.get("/process/stats").json()

        assert data["status"]["protocol"] == "chat_completions"
        assert data["processing"]["completed"] == 1
        assert data["tokenUsage"]["totalTokens"] == 150


class TestDiagnosticsRoutes:
    def test_llm_test(self, client):
        data = client.get("/llm/test").json()

        assert data["success"] is True
        assert data["protocol"] == "chat_completions"

    def test_delivery_test(self, client):
        data = client.post("/delivery/test", json={"to": "ops@shipper.com"}).json()

        assert data["success"] is True
        assert data["messageId"] == "re_123"
        assert data["configuration"]["enabled"] is True
