"""Pure service worker event handlers.

Each handler maps an event plus the worker context to the list of effects the runtime should
perform. Nothing here touches the platform, so defaulting, urgency mapping and fallback
construction can be checked without a browser.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from typing import Any, Protocol, TypeVar
from urllib.parse import urljoin, urlsplit

from app.service_worker.context import NotificationPermission, WorkerContext
from app.service_worker.effects import ClaimClients, CloseNotification, DeleteCachesWithPrefix, Effect, FocusOrOpenWindow, Parallel, Resubscribe, ShowNotification, SkipWaiting
from app.service_worker.events import (
  ACTIVATE,
  INSTALL,
  NOTIFICATION_CLICK,
  NOTIFICATION_CLOSE,
  PUSH,
  PUSH_SUBSCRIPTION_CHANGE,
  ActivateEvent,
  InstallEvent,
  NotificationClickEvent,
  NotificationCloseEvent,
  PushEvent,
  PushSubscriptionChangeEvent,
  WorkerEvent,
)

logger = logging.getLogger(__name__)

SW_VERSION = "2.0.0"
CACHE_PREFIX = "push-"
DEFAULT_TITLE = "Care Coordination Alert"
DEFAULT_BODY = "You have a new notification"
DEFAULT_URL = "/dashboard"
ICON = "/icon-192.svg"
URGENT_PRIORITIES = frozenset({"urgent", "critical"})
URGENT_VIBRATION = [200, 100, 200]
NORMAL_VIBRATION = [100]
DISMISS_ACTION = "dismiss"
ACTIONS = [{"action": "view", "title": "View"}, {"action": DISMISS_ACTION, "title": "Dismiss"}]

Handler = Callable[[Any, WorkerContext], list[Effect]]


def on_install(event: InstallEvent, context: WorkerContext) -> list[Effect]:
  logger.info("Service Worker v%s: Installing...", SW_VERSION)
  return [SkipWaiting()]


def on_activate(event: ActivateEvent, context: WorkerContext) -> list[Effect]:
  logger.info("Service Worker v%s: Activating...", SW_VERSION)
  return [Parallel(effects=(ClaimClients(), DeleteCachesWithPrefix(prefix=CACHE_PREFIX)))]


def parse_push_data(data: bytes | None) -> dict[str, Any]:
  """Decode a push body as a JSON object, falling back to an empty payload."""
  if not data:
    return {}

  try:
    parsed = json.loads(data)
  except (ValueError, UnicodeDecodeError) as exc:
    logger.error("Service Worker: Failed to parse push data: %s", exc)
    # The text form is only useful for diagnosing what the sender put on the wire.
    logger.info("Service Worker: Push data as text: %s", data.decode("utf-8", errors="replace"))
    return {}

  if not isinstance(parsed, dict):
    logger.warning("Service Worker: Push data is not an object type=%s", type(parsed).__name__)
    return {}
  return parsed


def is_urgent(payload: dict[str, Any]) -> bool:
  return payload.get("priority") in URGENT_PRIORITIES


def build_notification_options(payload: dict[str, Any], context: WorkerContext) -> dict[str, Any]:
  """Build the full option set for showNotification from a parsed payload."""
  now_ms = context.now_ms()
  urgent = is_urgent(payload)
  options: dict[str, Any] = {
    "body": payload.get("body") or payload.get("message") or DEFAULT_BODY,
    "icon": ICON,
    "badge": ICON,
    "tag": payload.get("tag") or f"care-coordination-{now_ms}",
    "data": {"url": payload.get("url") or DEFAULT_URL, "issueId": payload.get("issueId"), "notificationId": payload.get("notificationId"), "timestamp": now_ms},
    "requireInteraction": urgent,
    "silent": False,
  }
  if context.capabilities.supports_vibration:
    options["vibrate"] = list(URGENT_VIBRATION if urgent else NORMAL_VIBRATION)
  if context.capabilities.supports_actions:
    options["actions"] = [dict(action) for action in ACTIONS]
  return options


def build_fallback_notification(title: str, payload: dict[str, Any], context: WorkerContext) -> ShowNotification:
  """Minimal notification used when the platform rejects the full option set."""
  options = {"body": payload.get("body") or DEFAULT_BODY, "icon": ICON, "tag": f"care-coordination-fallback-{context.now_ms()}"}
  return ShowNotification(title=title, options=options)


def on_push(event: PushEvent, context: WorkerContext) -> list[Effect]:
  logger.info("Service Worker v%s: Push event received", SW_VERSION)
  if context.permission is not NotificationPermission.GRANTED:
    logger.warning("Service Worker: Notification permission not granted")
    return []

  payload = parse_push_data(event.data)
  title = payload.get("title") or DEFAULT_TITLE
  options = build_notification_options(payload, context)
  return [ShowNotification(title=title, options=options, fallback=build_fallback_notification(title, payload, context))]


def resolve_url(url: str | None, origin: str) -> str:
  return urljoin(origin.rstrip("/") + "/", url or DEFAULT_URL)


def on_notification_click(event: NotificationClickEvent, context: WorkerContext) -> list[Effect]:
  logger.info("Service Worker v%s: Notification clicked action=%s", SW_VERSION, event.action)
  effects: list[Effect] = [CloseNotification(tag=event.notification.tag)]
  if event.action == DISMISS_ACTION:
    return effects

  effects.append(FocusOrOpenWindow(url=resolve_url(event.notification.data.get("url"), context.origin)))
  return effects


def on_notification_close(event: NotificationCloseEvent, context: WorkerContext) -> list[Effect]:
  logger.info("Service Worker v%s: Notification closed tag=%s", SW_VERSION, event.notification.tag)
  return []


def on_push_subscription_change(event: PushSubscriptionChangeEvent, context: WorkerContext) -> list[Effect]:
  logger.info("Service Worker v%s: Push subscription changed", SW_VERSION)
  return [Resubscribe(application_server_key=event.old_application_server_key)]


HANDLERS: dict[str, Handler] = {
  INSTALL: on_install,
  ACTIVATE: on_activate,
  PUSH: on_push,
  NOTIFICATION_CLICK: on_notification_click,
  NOTIFICATION_CLOSE: on_notification_close,
  PUSH_SUBSCRIPTION_CHANGE: on_push_subscription_change,
}


def handle(event: WorkerEvent, context: WorkerContext, handlers: dict[str, Handler] | None = None) -> list[Effect]:
  """Route an event to its handler; unknown events produce no effects."""
  handler = (HANDLERS if handlers is None else handlers).get(event.type)
  if handler is None:
    logger.warning("Service Worker: Ignoring unknown event type=%s", event.type)
    return []
  return handler(event, context)


class HasUrl(Protocol):
  @property
  def url(self) -> str: ...


ClientT = TypeVar("ClientT", bound=HasUrl)


def same_origin(url: str, origin: str) -> bool:
  candidate = urlsplit(url)
  expected = urlsplit(origin)
  return (candidate.scheme, candidate.netloc) == (expected.scheme, expected.netloc)


def select_client(clients: Iterable[ClientT], origin: str) -> ClientT | None:
  """Pick the first open window that belongs to the app's origin."""
  for client in clients:
    if same_origin(client.url, origin):
      return client
  return None
