"""
Tests for the /api endpoints.

Tests cover:
- POST /api/send success, validation errors and carrier failures
- GET /api/messages ordering, default and capped limits
- Health and metrics endpoints, CORS scoped to /api
"""

import pytest

from smsrelay.config import Settings, get_settings
from smsrelay.errors import GatewayError, StorageError
from smsrelay.gateway import SendReceipt
from smsrelay.main import app, get_store
from smsrelay.models import Direction, MessageRecord
from smsrelay.storage import SessionLocal


def seed(count):
    with SessionLocal() as db:
        db.add_all([
            MessageRecord(
                direction=Direction.INBOUND.value,
                from_number="+15551234567",
                to_number="+15550001111",
                body=f"message {i}",
                status="received",
                provider_message_id=f"msg_{i}",
                created_at="2025-01-15T10:00:00Z",
            )
            for i in range(count)
        ])
        db.commit()


class TestSend:
    def test_send_success(self, client, fake_gateway):
        fake_gateway.receipt = SendReceipt(provider_id="msg_out_1", status="queued")

        response = client.post("/api/send", json={"to": "+15559876543", "body": "hello"})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "id": "msg_out_1", "status": "queued"}

        stored = client.get("/api/messages").json()
        assert len(stored) == 1
        assert stored[0]["direction"] == "out"
        assert stored[0]["to_number"] == "+15559876543"
        assert stored[0]["from_number"] == "+15550001111"
        assert stored[0]["body"] == "hello"
        assert stored[0]["provider_message_id"] == "msg_out_1"

    def test_send_uses_configured_sender(self, client, fake_gateway):
        client.post("/api/send", json={"to": "+15559876543", "body": "hello"})

        to, body, sender = fake_gateway.calls[0]
        assert (to, body) == ("+15559876543", "hello")
        assert sender.from_number == "+15550001111"

    @pytest.mark.parametrize("payload", [
        {"to": "+15559876543"},
        {"body": "hello"},
        {"to": "", "body": "hello"},
        {"to": "+15559876543", "body": ""},
        {},
    ])
    def test_missing_fields_return_400(self, client, fake_gateway, payload):
        response = client.post("/api/send", json=payload)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing to or body"}
        assert fake_gateway.calls == []
        assert client.get("/api/messages").json() == []

    def test_no_body_returns_400(self, client, fake_gateway):
        response = client.post("/api/send")

        assert response.status_code == 400
        assert fake_gateway.calls == []

    def test_invalid_json_returns_400(self, client, fake_gateway):
        response = client.post(
            "/api/send",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"
        assert fake_gateway.calls == []

    def test_non_string_field_returns_400(self, client, fake_gateway):
        response = client.post("/api/send", json={"to": 15559876543, "body": "hi"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"
        assert fake_gateway.calls == []
        assert client.get("/api/messages").json() == []

    def test_missing_sender_configuration_returns_400(self, client, fake_gateway):
        app.dependency_overrides[get_settings] = lambda: Settings(
            _env_file=None, FROM_NUMBER=None, TELNYX_MESSAGING_PROFILE_ID=None
        )

        response = client.post("/api/send", json={"to": "+15559876543", "body": "hello"})

        assert response.status_code == 400
        assert "FROM_NUMBER" in response.json()["error"]
        assert fake_gateway.calls == []

    def test_gateway_error_returns_500_with_detail(self, client, fake_gateway):
        detail = {"errors": [{"code": "40300", "title": "Blocked due to STOP message"}]}
        fake_gateway.error = GatewayError(detail=detail)

        response = client.post("/api/send", json={"to": "+15559876543", "body": "hello"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to send", "detail": detail}
        assert client.get("/api/messages").json() == []

    def test_storage_error_returns_500(self, client, fake_gateway):
        class BrokenStore:
            def insert(self, record):
                raise StorageError("Failed to store message", detail="database is locked")

        app.dependency_overrides[get_store] = lambda: BrokenStore()

        response = client.post("/api/send", json={"to": "+15559876543", "body": "hello"})

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to store message"
        assert len(fake_gateway.calls) == 1


class TestMessages:
    def test_empty(self, client):
        response = client.get("/api/messages")

        assert response.status_code == 200
        assert response.json() == []

    def test_newest_first(self, client):
        seed(5)

        data = client.get("/api/messages").json()

        ids = [m["id"] for m in data]
        assert ids == sorted(ids, reverse=True)
        assert data[0]["provider_message_id"] == "msg_4"

    def test_message_fields(self, client):
        seed(1)

        message = client.get("/api/messages").json()[0]

        assert set(message) == {
            "id", "direction", "from_number", "to_number", "body",
            "status", "provider_message_id", "created_at",
        }

    def test_limit(self, client):
        seed(10)

        data = client.get("/api/messages?limit=3").json()

        assert [m["provider_message_id"] for m in data] == ["msg_9", "msg_8", "msg_7"]

    def test_default_limit_is_200(self, client):
        seed(205)

        assert len(client.get("/api/messages").json()) == 200

    def test_limit_is_capped_at_500(self, client):
        seed(510)

        data = client.get("/api/messages?limit=1000").json()

        assert len(data) == 500
        ids = [m["id"] for m in data]
        assert ids == sorted(ids, reverse=True)

    def test_zero_limit_returns_one(self, client):
        seed(3)

        assert len(client.get("/api/messages?limit=0").json()) == 1

    def test_non_integer_limit(self, client):
        response = client.get("/api/messages?limit=lots")

        assert response.status_code == 422
        assert response.json()["error"] == "Input validation failed"


class TestHealthAndMetrics:
    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    def test_not_ready_without_sender(self, client):
        app.dependency_overrides[get_settings] = lambda: Settings(
            _env_file=None, FROM_NUMBER=None, TELNYX_MESSAGING_PROFILE_ID=None
        )

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_request_id_header(self, client):
        response = client.get("/health/live")

        assert "X-Request-ID" in response.headers

    def test_metrics_exposed(self, client):
        client.post("/webhooks/telnyx", content=b"not json")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "webhook_events_total" in response.text
        assert 'result="invalid_payload"' in response.text

    def test_cors_headers_on_api_routes(self, client):
        response = client.get("/api/messages", headers={"Origin": "https://ui.example"})

        assert response.status_code == 200
        assert "access-control-allow-origin" in response.headers

    def test_no_cors_headers_outside_api(self, client):
        response = client.get("/health/live", headers={"Origin": "https://ui.example"})

        assert response.status_code == 200
        assert "access-control-allow-origin" not in response.headers
