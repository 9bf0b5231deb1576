from __future__ import annotations

import json
from dataclasses import dataclass

import pytest
from app.service_worker.context import NotificationPermission, PlatformCapabilities, WorkerContext
from app.service_worker.effects import ClaimClients, CloseNotification, DeleteCachesWithPrefix, FocusOrOpenWindow, Parallel, Resubscribe, ShowNotification, SkipWaiting
from app.service_worker.events import ActivateEvent, DisplayedNotification, InstallEvent, NotificationClickEvent, NotificationCloseEvent, PushEvent, PushSubscriptionChangeEvent, WorkerEvent
from app.service_worker.handlers import handle, parse_push_data, select_client

ORIGIN = "https://care.example.org"
NOW_MS = 1_700_000_000_000


def _context(*, permission: NotificationPermission = NotificationPermission.GRANTED, vibration: bool = True, actions: bool = True) -> WorkerContext:
  capabilities = PlatformCapabilities(supports_vibration=vibration, supports_actions=actions)
  return WorkerContext(origin=ORIGIN, capabilities=capabilities, permission=permission, clock_ms=lambda: NOW_MS)


def _push(payload: object) -> PushEvent:
  return PushEvent(data=json.dumps(payload).encode())


def _shown(effects) -> ShowNotification:
  assert len(effects) == 1
  assert isinstance(effects[0], ShowNotification)
  return effects[0]


def test_install_skips_waiting():
  assert handle(InstallEvent(), _context()) == [SkipWaiting()]


def test_activate_claims_clients_and_clears_push_caches_together():
  effects = handle(ActivateEvent(), _context())

  assert effects == [Parallel(effects=(ClaimClients(), DeleteCachesWithPrefix(prefix="push-")))]


@pytest.mark.parametrize("permission", [NotificationPermission.DENIED, NotificationPermission.DEFAULT])
def test_push_without_permission_shows_nothing(permission):
  assert handle(_push({"title": "Urgent", "priority": "critical"}), _context(permission=permission)) == []


@pytest.mark.parametrize("data", [b"{not json", b"\xff\xfe\xfa", b"[1, 2]", b"", None])
def test_push_with_unusable_data_still_notifies_with_defaults(data):
  effect = _shown(handle(PushEvent(data=data), _context()))

  assert effect.title == "Care Coordination Alert"
  assert effect.options["body"] == "You have a new notification"
  assert effect.options["tag"] == f"care-coordination-{NOW_MS}"
  assert effect.options["data"] == {"url": "/dashboard", "issueId": None, "notificationId": None, "timestamp": NOW_MS}


@pytest.mark.parametrize("priority", ["urgent", "critical"])
def test_urgent_priorities_require_interaction_and_long_vibration(priority):
  options = _shown(handle(_push({"priority": priority}), _context())).options

  assert options["requireInteraction"] is True
  assert options["vibrate"] == [200, 100, 200]


@pytest.mark.parametrize("payload", [{"priority": "normal"}, {}])
def test_normal_priority_is_dismissable_with_short_vibration(payload):
  options = _shown(handle(_push(payload), _context())).options

  assert options["requireInteraction"] is False
  assert options["vibrate"] == [100]
  assert options["silent"] is False


def test_capabilities_gate_vibration_and_actions():
  options = _shown(handle(_push({"priority": "urgent"}), _context(vibration=False, actions=False))).options

  assert "vibrate" not in options
  assert "actions" not in options
  assert options["requireInteraction"] is True


def test_push_payload_fields_flow_into_options():
  payload = {"title": "New Issue: Pain", "message": "Nina reported an issue", "url": "/dashboard?issue=9", "tag": "new_issue-5", "issueId": "9", "notificationId": "n-1"}
  effect = _shown(handle(_push(payload), _context()))

  assert effect.title == "New Issue: Pain"
  assert effect.options["body"] == "Nina reported an issue"
  assert effect.options["tag"] == "new_issue-5"
  assert effect.options["icon"] == "/icon-192.svg"
  assert effect.options["badge"] == "/icon-192.svg"
  assert effect.options["data"]["url"] == "/dashboard?issue=9"
  assert effect.options["data"]["issueId"] == "9"
  assert effect.options["data"]["notificationId"] == "n-1"
  assert [action["action"] for action in effect.options["actions"]] == ["view", "dismiss"]


def test_body_prefers_body_over_message():
  options = _shown(handle(_push({"body": "from body", "message": "from message"}), _context())).options

  assert options["body"] == "from body"


def test_push_carries_a_minimal_fallback_with_distinct_tag():
  effect = _shown(handle(_push({"title": "T", "body": "B", "tag": "custom", "priority": "urgent"}), _context()))

  assert effect.fallback == ShowNotification(title="T", options={"body": "B", "icon": "/icon-192.svg", "tag": f"care-coordination-fallback-{NOW_MS}"})
  assert effect.fallback.options["tag"] != effect.options["tag"]


def test_click_resolves_url_against_origin():
  event = NotificationClickEvent(notification=DisplayedNotification(tag="t", data={"url": "/dashboard/after-shift-reports"}))

  effects = handle(event, _context())

  assert effects == [CloseNotification(tag="t"), FocusOrOpenWindow(url=f"{ORIGIN}/dashboard/after-shift-reports")]


def test_click_without_url_opens_dashboard():
  effects = handle(NotificationClickEvent(action="view"), _context())

  assert effects[-1] == FocusOrOpenWindow(url=f"{ORIGIN}/dashboard")


def test_dismiss_action_only_closes():
  event = NotificationClickEvent(notification=DisplayedNotification(tag="t", data={"url": "/dashboard"}), action="dismiss")

  assert handle(event, _context()) == [CloseNotification(tag="t")]


def test_close_is_log_only():
  assert handle(NotificationCloseEvent(), _context()) == []


def test_subscription_change_resubscribes_with_previous_key():
  effects = handle(PushSubscriptionChangeEvent(old_application_server_key="BOldKey"), _context())

  assert effects == [Resubscribe(application_server_key="BOldKey", register_url="/api/push/subscribe")]


def test_unknown_event_is_ignored():
  @dataclass(frozen=True)
  class _SyncEvent(WorkerEvent):
    type = "sync"

  assert handle(_SyncEvent(), _context()) == []


def test_parse_push_data_returns_object_payloads():
  assert parse_push_data(b'{"title": "x"}') == {"title": "x"}


@dataclass
class _Client:
  url: str


def test_select_client_picks_first_same_origin_window():
  clients = [_Client("https://other.example.org/dashboard"), _Client(f"{ORIGIN}/patients"), _Client(f"{ORIGIN}/dashboard")]

  assert select_client(clients, ORIGIN) is clients[1]


def test_select_client_rejects_prefix_lookalike_origins():
  assert select_client([_Client("https://care.example.org.evil.test/")], ORIGIN) is None


def test_explicit_empty_handler_map_is_respected():
  context = WorkerContext(origin="https://care.example.org", permission=NotificationPermission.GRANTED)

  assert handle(InstallEvent(), context, {}) == []
  assert handle(PushEvent(data=b"{}"), context, {}) == []
