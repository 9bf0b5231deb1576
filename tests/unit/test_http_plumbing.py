from __future__ import annotations

import json

from app.core.database import normalize_dsn
from app.core.exceptions import validation_errors_for_response
from app.core.middleware import format_body_for_log
from app.core.security import get_current_active_user
from app.main import app
from fastapi.testclient import TestClient


def test_subscription_body_is_logged_without_key_material():
  body = json.dumps({"endpoint": "https://fcm.googleapis.com/fcm/send/device-token", "keys": {"p256dh": "BEl6", "auth": "gq8Y"}}).encode()

  rendered = json.loads(format_body_for_log(body, "application/json", 4096))

  assert rendered == {"endpoint": "<fcm.googleapis.com>", "keys": "***"}


def test_body_log_placeholders():
  assert format_body_for_log(b"", "application/json", 10) == "<empty>"
  assert format_body_for_log(b"abc", "text/plain", 10) == "<non-json body 3 bytes>"
  assert format_body_for_log(b'{"a": 1}', "application/json", 2) == "<json body 8 bytes, over log limit>"
  assert format_body_for_log(b"{not json", "application/json", 100) == "<unparseable json body 9 bytes>"


def test_normalize_dsn_routes_postgres_through_asyncpg():
  assert normalize_dsn("postgres://u:p@db/care") == "postgresql+asyncpg://u:p@db/care"
  assert normalize_dsn("postgresql://u:p@db/care") == "postgresql+asyncpg://u:p@db/care"
  assert normalize_dsn("postgresql+asyncpg://u:p@db/care") == "postgresql+asyncpg://u:p@db/care"
  assert normalize_dsn(None) is None


def test_validation_errors_drop_submitted_values():
  errors = [{"type": "push_auth_format", "loc": ("body", "keys", "auth"), "msg": "auth must be base64url encoded.", "input": "secret-value", "ctx": {"input": "secret-value"}}]

  cleaned = validation_errors_for_response(errors)

  assert cleaned == [{"type": "push_auth_format", "loc": ["body", "keys", "auth"], "msg": "auth must be base64url encoded.", "ctx": {}}]


def test_push_responses_carry_request_id_and_no_store():
  client = TestClient(app)

  response = client.get("/api/push/vapid-key")

  assert response.status_code == 503
  assert response.json()["detail"] == "Push notifications not configured"
  assert response.headers["x-request-id"] == response.json()["requestId"]
  assert response.headers["cache-control"] == "no-store"
  assert "server" not in response.headers


def test_invalid_subscription_is_rejected_without_echoing_keys(approved_user):
  app.dependency_overrides[get_current_active_user] = lambda: approved_user
  client = TestClient(app)

  try:
    response = client.post("/api/push/subscribe", json={"endpoint": "http://evil.example.com/push", "keys": {"p256dh": "x" * 60, "auth": "not base64 !!!!!!"}})
  finally:
    app.dependency_overrides.clear()

  assert response.status_code == 422
  assert "not base64" not in response.text
  assert "evil.example.com" not in response.text
