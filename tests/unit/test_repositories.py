from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from app.notifications.preferences_repo import NotificationPreferencesEntry, NotificationPreferencesRepository
from app.notifications.push_subscription_repo import PushSubscriptionEntry, PushSubscriptionRepository
from sqlalchemy.dialects import postgresql


def _session_factory(session: AsyncMock) -> MagicMock:
  factory = MagicMock()
  factory.return_value.__aenter__.return_value = session
  return factory


def _sql(statement) -> str:
  return str(statement.compile(dialect=postgresql.dialect()))


@pytest.mark.anyio
async def test_repositories_are_noops_without_database(monkeypatch):
  monkeypatch.setattr("app.notifications.push_subscription_repo.get_session_factory", lambda: None)
  monkeypatch.setattr("app.notifications.preferences_repo.get_session_factory", lambda: None)
  user_id = uuid.uuid4()

  assert await PushSubscriptionRepository().list_for_user(user_id=user_id) == []
  assert await PushSubscriptionRepository().delete_for_user_endpoint(user_id=user_id, endpoint="https://fcm.googleapis.com/fcm/send/a") == 0
  assert await NotificationPreferencesRepository().get_for_user(user_id=user_id) is None
  assert await NotificationPreferencesRepository().get_or_create_defaults(user_id=user_id) == NotificationPreferencesEntry(user_id=user_id)


@pytest.mark.anyio
async def test_subscription_upsert_conflicts_on_endpoint(monkeypatch):
  session = AsyncMock()
  monkeypatch.setattr("app.notifications.push_subscription_repo.get_session_factory", lambda: _session_factory(session))
  entry = PushSubscriptionEntry(user_id=uuid.uuid4(), endpoint="https://fcm.googleapis.com/fcm/send/a", p256dh_key="p", auth_key="a", subscription_data={"endpoint": "https://fcm.googleapis.com/fcm/send/a"})

  await PushSubscriptionRepository().upsert(entry)

  sql = _sql(session.execute.await_args.args[0])
  assert "ON CONFLICT (endpoint) DO UPDATE" in sql
  assert "user_id = excluded.user_id" in sql or "user_id = %(param_1)s" in sql
  session.commit.assert_awaited_once()


@pytest.mark.anyio
async def test_delete_for_user_endpoint_is_scoped_to_owner(monkeypatch):
  session = AsyncMock()
  session.execute.return_value = MagicMock(rowcount=1)
  monkeypatch.setattr("app.notifications.push_subscription_repo.get_session_factory", lambda: _session_factory(session))

  removed = await PushSubscriptionRepository().delete_for_user_endpoint(user_id=uuid.uuid4(), endpoint="https://fcm.googleapis.com/fcm/send/a")

  sql = _sql(session.execute.await_args.args[0])
  assert removed == 1
  assert "push_subscriptions.user_id" in sql
  assert "push_subscriptions.endpoint" in sql


@pytest.mark.anyio
async def test_set_push_enabled_upserts_preference_row(monkeypatch):
  session = AsyncMock()
  monkeypatch.setattr("app.notifications.preferences_repo.get_session_factory", lambda: _session_factory(session))

  await NotificationPreferencesRepository().set_push_enabled(user_id=uuid.uuid4(), enabled=True)

  sql = _sql(session.execute.await_args.args[0])
  assert "INSERT INTO notification_preferences" in sql
  assert "ON CONFLICT (user_id) DO UPDATE" in sql


@pytest.mark.anyio
async def test_preferences_update_ignores_unknown_fields(monkeypatch):
  monkeypatch.setattr("app.notifications.preferences_repo.get_session_factory", lambda: None)

  result = await NotificationPreferencesRepository().update(user_id=uuid.uuid4(), changes={"is_admin": True, "push_enabled": True})

  assert result is None
