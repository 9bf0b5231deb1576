from __future__ import annotations

import dataclasses
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from app.api.deps import get_fanout_service, get_notification_composer, get_preferences_repo, get_push_subscription_repo
from app.config import get_settings
from app.core.database import get_db
from app.core.security import get_current_active_user
from app.main import app
from app.notifications.contracts import DeliveryOutcome, UserDeliveryReport
from app.notifications.fanout import SKIP_NO_SUBSCRIPTIONS
from fastapi.testclient import TestClient


def _build_payload(endpoint: str = "https://fcm.googleapis.com/fcm/send/abc") -> dict:
  return {"endpoint": endpoint, "expirationTime": None, "keys": {"p256dh": "BEl6f5Y8X5Y_u7d8mV_AbpZfXfTLT3s1O3L4wM1x8QY2_5qWQ-jxJq7uKjv8mQ4I", "auth": "gq8Yh5xA9l2mQ6pR"}}


@pytest.fixture
def repos(approved_user):
  subscription_repo = AsyncMock()
  subscription_repo.delete_for_user_endpoint.return_value = 1
  preferences_repo = AsyncMock()
  app.dependency_overrides[get_current_active_user] = lambda: approved_user
  app.dependency_overrides[get_push_subscription_repo] = lambda: subscription_repo
  app.dependency_overrides[get_preferences_repo] = lambda: preferences_repo
  yield subscription_repo, preferences_repo
  app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
  return TestClient(app)


def test_push_subscribe_rejects_non_https(repos, client):
  response = client.post("/api/push/subscribe", json=_build_payload(endpoint="http://fcm.googleapis.com/fcm/send/abc"))

  assert response.status_code == 422
  repos[0].upsert.assert_not_awaited()


def test_push_subscribe_rejects_unknown_host(repos, client):
  response = client.post("/api/push/subscribe", json=_build_payload(endpoint="https://example.com/push/abc"))

  assert response.status_code == 422


def test_push_subscribe_rejects_invalid_keys(repos, client):
  payload = _build_payload()
  payload["keys"]["p256dh"] = "not-valid-***" * 4

  response = client.post("/api/push/subscribe", json=payload)

  assert response.status_code == 422


def test_push_subscribe_upserts_and_enables_push(repos, client, approved_user):
  subscription_repo, preferences_repo = repos

  response = client.post("/api/push/subscribe", json=_build_payload(), headers={"user-agent": "Mozilla/5.0 " + "x" * 600})

  assert response.status_code == 200
  assert response.json() == {"success": True}
  entry = subscription_repo.upsert.await_args.args[0]
  assert entry.user_id == approved_user.id
  assert entry.endpoint == "https://fcm.googleapis.com/fcm/send/abc"
  assert entry.subscription_data == _build_payload()
  assert len(entry.user_agent) == 512
  preferences_repo.set_push_enabled.assert_awaited_once_with(user_id=approved_user.id, enabled=True)


def test_push_subscribe_storage_failure_is_500(repos, client):
  repos[0].upsert.side_effect = RuntimeError("db down")

  response = client.post("/api/push/subscribe", json=_build_payload())

  assert response.status_code == 500
  assert response.json()["detail"] == "Internal Server Error"


def test_push_unsubscribe_deletes_owned_row_and_disables_push(repos, client, approved_user):
  subscription_repo, preferences_repo = repos

  response = client.post("/api/push/unsubscribe", json={"endpoint": "https://fcm.googleapis.com/fcm/send/abc"})

  assert response.status_code == 200
  subscription_repo.delete_for_user_endpoint.assert_awaited_once_with(user_id=approved_user.id, endpoint="https://fcm.googleapis.com/fcm/send/abc")
  preferences_repo.set_push_enabled.assert_awaited_once_with(user_id=approved_user.id, enabled=False)


def test_vapid_key_unconfigured_returns_503(client):
  app.dependency_overrides[get_settings] = lambda: dataclasses.replace(get_settings(), push_notifications_enabled=False)
  try:
    response = client.get("/api/push/vapid-key")
  finally:
    app.dependency_overrides.clear()

  assert response.status_code == 503
  assert response.json()["detail"] == "Push notifications not configured"


def test_vapid_key_returns_public_key(client):
  app.dependency_overrides[get_settings] = lambda: dataclasses.replace(get_settings(), push_notifications_enabled=True, push_vapid_public_key="BPublicKey", push_vapid_private_key="private")
  try:
    response = client.get("/api/push/vapid-key")
  finally:
    app.dependency_overrides.clear()

  assert response.status_code == 200
  assert response.json() == {"publicKey": "BPublicKey"}


def _fanout(configured: bool, report: UserDeliveryReport | None = None) -> MagicMock:
  fanout = MagicMock()
  fanout.configured = configured
  fanout.send_test = AsyncMock(return_value=report)
  return fanout


def test_test_push_unconfigured_returns_503(repos, client):
  app.dependency_overrides[get_fanout_service] = lambda: _fanout(False)

  response = client.post("/api/push/test")

  assert response.status_code == 503


def test_test_push_without_subscriptions_returns_404(repos, client, approved_user):
  app.dependency_overrides[get_fanout_service] = lambda: _fanout(True, UserDeliveryReport(user_id=approved_user.id, skipped_reason=SKIP_NO_SUBSCRIPTIONS))

  response = client.post("/api/push/test")

  assert response.status_code == 404
  assert response.json()["detail"] == "No push subscriptions found"


def test_test_push_reports_per_device_results(repos, client, approved_user):
  outcomes = (
    DeliveryOutcome(subscription_id=uuid.uuid4(), endpoint="https://fcm.googleapis.com/fcm/send/ok", success=True),
    DeliveryOutcome(subscription_id=uuid.uuid4(), endpoint="https://web.push.apple.com/gone", success=False, status_code=410, error="gone", removed=True),
  )
  app.dependency_overrides[get_fanout_service] = lambda: _fanout(True, UserDeliveryReport(user_id=approved_user.id, outcomes=outcomes))

  response = client.post("/api/push/test")

  body = response.json()
  assert response.status_code == 200
  assert body["success"] is True
  assert body["totalSubscriptions"] == 2
  assert body["successCount"] == 1
  assert body["failedCount"] == 1
  assert body["failures"] == [{"error": "gone", "statusCode": 410, "endpoint": "https://web.push.apple.com/gone..."}]


def test_send_for_unknown_notification_returns_404(repos, client, override_get_db):
  composer = MagicMock()
  composer.send_for_notification = AsyncMock(return_value=None)
  app.dependency_overrides[get_notification_composer] = lambda: composer
  app.dependency_overrides[get_db] = override_get_db

  response = client.post("/api/push/send", json={"notificationId": str(uuid.uuid4())})

  assert response.status_code == 404


def test_send_for_notification_passes_id_through(repos, client, override_get_db, approved_user):
  notification_id = uuid.uuid4()
  composer = MagicMock()
  composer.send_for_notification = AsyncMock(return_value=UserDeliveryReport(user_id=approved_user.id, outcomes=(DeliveryOutcome(subscription_id=uuid.uuid4(), endpoint="https://fcm.googleapis.com/fcm/send/a", success=True),)))
  app.dependency_overrides[get_notification_composer] = lambda: composer
  app.dependency_overrides[get_db] = override_get_db

  response = client.post("/api/push/send", json={"notificationId": str(notification_id)})

  assert response.status_code == 200
  assert response.json()["success"] is True
  assert composer.send_for_notification.await_args.args[1] == notification_id
  assert composer.send_for_notification.await_args.kwargs["requester"] is approved_user


def test_send_requires_notification_id(repos, client, override_get_db):
  app.dependency_overrides[get_db] = override_get_db

  response = client.post("/api/push/send", json={})

  assert response.status_code == 422
