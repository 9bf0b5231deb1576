from __future__ import annotations

import os

import pytest
from app.config import DEFAULT_PUSH_HOSTS, get_settings
from app.notifications.factory import build_push_sender, push_configured
from app.notifications.push_sender import NullPushSender, WebPushSender
from app.utils.env import load_env_file


@pytest.fixture
def fresh_settings(monkeypatch):
  monkeypatch.setenv("CARE_ALLOWED_ORIGINS", "http://localhost:3000")
  for name in ("CARE_PUSH_NOTIFICATIONS_ENABLED", "CARE_PUSH_VAPID_PUBLIC_KEY", "CARE_PUSH_VAPID_PRIVATE_KEY", "CARE_PUSH_VAPID_SUB", "CARE_PUSH_ALLOWED_HOSTS"):
    monkeypatch.delenv(name, raising=False)
  get_settings.cache_clear()
  yield
  get_settings.cache_clear()


def test_push_defaults(fresh_settings):
  settings = get_settings()

  assert settings.push_notifications_enabled is False
  assert settings.push_vapid_sub == "mailto:admin@carecoordination.app"
  assert settings.push_ttl_seconds == 86400
  assert settings.push_allowed_hosts == DEFAULT_PUSH_HOSTS
  assert settings.service_worker_path == "/sw.js"
  assert settings.service_worker_scope == "/"
  assert push_configured(settings) is False
  assert isinstance(build_push_sender(settings), NullPushSender)


def test_wildcard_origin_is_rejected(fresh_settings, monkeypatch):
  monkeypatch.setenv("CARE_ALLOWED_ORIGINS", "*")

  with pytest.raises(ValueError, match="CARE_ALLOWED_ORIGINS"):
    get_settings()


def test_enabled_push_requires_keys(fresh_settings, monkeypatch):
  monkeypatch.setenv("CARE_PUSH_NOTIFICATIONS_ENABLED", "true")
  monkeypatch.setenv("CARE_PUSH_VAPID_PUBLIC_KEY", "BPub")

  with pytest.raises(ValueError, match="CARE_PUSH_VAPID_PRIVATE_KEY"):
    get_settings()


def test_enabled_push_requires_valid_subject(fresh_settings, monkeypatch):
  monkeypatch.setenv("CARE_PUSH_NOTIFICATIONS_ENABLED", "1")
  monkeypatch.setenv("CARE_PUSH_VAPID_PUBLIC_KEY", "BPub")
  monkeypatch.setenv("CARE_PUSH_VAPID_PRIVATE_KEY", "priv")
  monkeypatch.setenv("CARE_PUSH_VAPID_SUB", "admin@example.com")

  with pytest.raises(ValueError, match="CARE_PUSH_VAPID_SUB"):
    get_settings()


def test_configured_push_builds_web_push_sender(fresh_settings, monkeypatch):
  monkeypatch.setenv("CARE_PUSH_NOTIFICATIONS_ENABLED", "yes")
  monkeypatch.setenv("CARE_PUSH_VAPID_PUBLIC_KEY", "BPub")
  monkeypatch.setenv("CARE_PUSH_VAPID_PRIVATE_KEY", "priv")
  monkeypatch.setenv("CARE_PUSH_ALLOWED_HOSTS", "FCM.googleapis.com, push.example.org")
  monkeypatch.setattr("app.notifications.push_sender.load_vapid_key", lambda raw: object())

  settings = get_settings()
  sender = build_push_sender(settings)

  assert settings.push_allowed_hosts == ("fcm.googleapis.com", "push.example.org")
  assert isinstance(sender, WebPushSender)
  assert sender.public_key == "BPub"


def test_env_file_loader_keeps_existing_values(tmp_path, monkeypatch):
  env_file = tmp_path / ".env"
  env_file.write_text('# comment\nexport CARE_TEST_A="quoted value"\nCARE_TEST_B=file\nnot a pair\n', encoding="utf-8")
  monkeypatch.setenv("CARE_TEST_B", "process")
  monkeypatch.delenv("CARE_TEST_A", raising=False)

  load_env_file(env_file)

  assert os.environ["CARE_TEST_A"] == "quoted value"
  assert os.environ["CARE_TEST_B"] == "process"
  os.environ.pop("CARE_TEST_A", None)
