"""In-page bridge between the browser push facilities and the push registration API."""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Callable
from typing import Any, Literal, Protocol

import httpx

from app.config import Settings

logger = logging.getLogger(__name__)

VAPID_KEY_PATH = "/api/push/vapid-key"
SUBSCRIBE_PATH = "/api/push/subscribe"
UNSUBSCRIBE_PATH = "/api/push/unsubscribe"

NoticeLevel = Literal["success", "error"]
Notifier = Callable[[NoticeLevel, str], None]


def url_base64_to_bytes(value: str) -> bytes:
  """Decode a base64url string that may be missing its padding."""
  padding = "=" * (-len(value) % 4)
  return base64.urlsafe_b64decode(value + padding)


class BrowserSubscription(Protocol):
  @property
  def endpoint(self) -> str: ...

  def to_json(self) -> dict[str, Any]:
    """Serialize as the browser does: endpoint, expirationTime and keys."""

  async def unsubscribe(self) -> bool: ...


class WorkerRegistration(Protocol):
  async def get_subscription(self) -> BrowserSubscription | None: ...

  async def subscribe(self, *, user_visible_only: bool, application_server_key: bytes) -> BrowserSubscription: ...


class BrowserPushEnvironment(Protocol):
  """The slice of navigator/Notification the manager relies on."""

  def is_supported(self) -> bool:
    """Service workers, PushManager and Notification are all available."""

  def permission(self) -> str: ...

  async def request_permission(self) -> str: ...

  async def get_registration(self, scope: str) -> WorkerRegistration | None: ...

  async def register(self, script_path: str, *, scope: str) -> WorkerRegistration: ...

  async def ready(self) -> WorkerRegistration:
    """Resolve once a worker for the page is in the activated state."""


class PushSubscriptionError(Exception):
  """A step of the subscribe flow failed; the message is safe to show."""


class PushSubscriptionManager:
  """Subscribe and unsubscribe the current browser for push.

  A subscription only counts as established once the server accepted it. Every failure is
  reported once through the notifier and turned into a False return value.
  """

  def __init__(
    self,
    *,
    environment: BrowserPushEnvironment,
    http_client: httpx.AsyncClient,
    notifier: Notifier,
    script_path: str = "/sw.js",
    scope: str = "/",
    activation_timeout_seconds: float = 10.0,
  ) -> None:
    self._environment = environment
    self._http = http_client
    self._notify = notifier
    self._script_path = script_path
    self._scope = scope
    self._activation_timeout_seconds = activation_timeout_seconds

  @classmethod
  def from_settings(cls, settings: Settings, *, environment: BrowserPushEnvironment, http_client: httpx.AsyncClient, notifier: Notifier) -> PushSubscriptionManager:
    return cls(environment=environment, http_client=http_client, notifier=notifier, script_path=settings.service_worker_path, scope=settings.service_worker_scope)

  async def request_permission(self) -> bool:
    if not self._environment.is_supported():
      self._notify("error", "Push notifications are not supported in this browser")
      return False

    try:
      result = await self._environment.request_permission()
    except Exception as exc:  # noqa: BLE001
      logger.error("Error requesting permission: %s", exc)
      self._notify("error", "Failed to request notification permission")
      return False

    if result == "granted":
      self._notify("success", "Notification permission granted")
      return True
    if result == "denied":
      self._notify("error", "Notification permission denied")
    return False

  async def subscribe(self) -> bool:
    """Run the full opt-in flow; True only when the server stored the subscription."""
    if not self._environment.is_supported():
      self._notify("error", "Push notifications are not supported")
      return False

    if self._environment.permission() != "granted" and not await self.request_permission():
      return False

    try:
      registration = await self._register_worker()
      await asyncio.wait_for(self._environment.ready(), timeout=self._activation_timeout_seconds)
      public_key = await self._fetch_public_key()
      subscription = await registration.subscribe(user_visible_only=True, application_server_key=url_base64_to_bytes(public_key))
      response = await self._http.post(SUBSCRIBE_PATH, json=subscription.to_json())
      if response.is_error:
        raise PushSubscriptionError(f"Failed to save subscription (status={response.status_code})")
    except Exception as exc:  # noqa: BLE001
      logger.error("Push subscribe failed: %s", exc)
      self._notify("error", "Failed to enable push notifications")
      return False

    self._notify("success", "Push notifications enabled")
    return True

  async def unsubscribe(self) -> bool:
    """Drop the browser subscription and tell the server; a missing subscription is a no-op."""
    try:
      registration = await self._environment.ready()
      subscription = await registration.get_subscription()
      if subscription is None:
        return True

      endpoint = subscription.endpoint
      await subscription.unsubscribe()
      response = await self._http.post(UNSUBSCRIBE_PATH, json={"endpoint": endpoint})
      if response.is_error:
        raise PushSubscriptionError(f"Failed to remove subscription (status={response.status_code})")
    except Exception as exc:  # noqa: BLE001
      logger.error("Error unsubscribing from push: %s", exc)
      self._notify("error", "Failed to disable push notifications")
      return False

    self._notify("success", "Push notifications disabled")
    return True

  async def is_subscribed(self) -> bool:
    """Report whether this browser holds a push subscription; errors read as False."""
    if not self._environment.is_supported():
      return False

    try:
      if await self._environment.get_registration(self._scope) is None:
        return False
      registration = await self._environment.ready()
      return await registration.get_subscription() is not None
    except Exception as exc:  # noqa: BLE001
      logger.debug("Push subscription status check failed: %s", exc)
      return False

  async def _register_worker(self) -> WorkerRegistration:
    registration = await self._environment.get_registration(self._scope)
    if registration is not None:
      logger.debug("Service worker already registered scope=%s", self._scope)
      return registration
    return await self._environment.register(self._script_path, scope=self._scope)

  async def _fetch_public_key(self) -> str:
    response = await self._http.get(VAPID_KEY_PATH)
    if response.is_error:
      raise PushSubscriptionError(f"Failed to get VAPID key (status={response.status_code})")
    public_key = response.json().get("publicKey")
    if not public_key:
      raise PushSubscriptionError("VAPID key missing from response")
    return str(public_key)
