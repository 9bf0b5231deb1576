"""Runtime adapter that drives the worker lifecycle and executes handler effects."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from enum import Enum
from typing import Any, Protocol

from app.service_worker.context import NotificationPermission, WorkerContext
from app.service_worker.effects import ClaimClients, CloseNotification, DeleteCachesWithPrefix, Effect, FocusOrOpenWindow, Parallel, Resubscribe, ShowNotification, SkipWaiting
from app.service_worker.events import ACTIVATE, INSTALL, WorkerEvent
from app.service_worker.handlers import HANDLERS, SW_VERSION, Handler, handle, select_client

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
  """Lifecycle of a registered worker."""

  PARSED = "parsed"
  INSTALLING = "installing"
  INSTALLED = "installed"
  ACTIVATING = "activating"
  ACTIVATED = "activated"


class WindowClient(Protocol):
  """An open browser window controlled by or visible to the worker."""

  @property
  def url(self) -> str: ...

  async def navigate(self, url: str) -> WindowClient | None:
    """Navigate the window; resolves to the client or None when it cannot be addressed."""

  async def focus(self) -> None:
    """Bring the window to the foreground."""


class Platform(Protocol):
  """Browser facilities the runtime needs; injected so tests can observe every call."""

  async def skip_waiting(self) -> None: ...

  async def claim_clients(self) -> None: ...

  async def cache_keys(self) -> list[str]: ...

  async def delete_cache(self, name: str) -> bool: ...

  async def show_notification(self, title: str, options: dict[str, Any]) -> None: ...

  async def close_notification(self, tag: str | None) -> None: ...

  async def match_clients(self, *, include_uncontrolled: bool) -> list[WindowClient]: ...

  async def open_window(self, url: str) -> WindowClient | None: ...

  async def subscribe_push(self, *, user_visible_only: bool, application_server_key: str | bytes | None) -> dict[str, Any]: ...

  async def post_json(self, url: str, payload: dict[str, Any]) -> int:
    """POST a JSON body with credentials and return the HTTP status."""

  async def notification_permission(self) -> str:
    """Current `Notification.permission`; the user may revoke it at any time."""


class ServiceWorkerRuntime:
  """Run events through the handler map and perform the resulting effects.

  `dispatch` holds the event open until every effect settles, mirroring waitUntil. It never
  raises: each failing effect is logged and the worker moves on to the next event.
  """

  def __init__(self, *, platform: Platform, context: WorkerContext, handlers: dict[str, Handler] | None = None) -> None:
    self._platform = platform
    self._context = context
    self._handlers = HANDLERS if handlers is None else handlers
    self.state = WorkerState.PARSED
    self.controlling = False

  @property
  def context(self) -> WorkerContext:
    return self._context

  async def dispatch(self, event: WorkerEvent) -> None:
    if event.type == INSTALL:
      self.state = WorkerState.INSTALLING
    elif event.type == ACTIVATE:
      self.state = WorkerState.ACTIVATING

    try:
      effects = handle(event, await self._event_context(), self._handlers)
    except Exception as exc:  # noqa: BLE001
      logger.error("Service Worker v%s: Handler failed event=%s error=%s", SW_VERSION, event.type, exc, exc_info=True)
      effects = []

    for effect in effects:
      await self._execute_safely(effect)

    # Lifecycle advances once the effects settle, whether or not they succeeded.
    if event.type == INSTALL:
      self.state = WorkerState.INSTALLED
    elif event.type == ACTIVATE:
      self.state = WorkerState.ACTIVATED
      logger.info("Service Worker v%s: Activated controlling=%s", SW_VERSION, self.controlling)

  async def _event_context(self) -> WorkerContext:
    """Context for one event with the permission read fresh from the platform."""
    try:
      permission = NotificationPermission(await self._platform.notification_permission())
    except Exception as exc:  # noqa: BLE001
      logger.warning("Service Worker: Could not read notification permission, treating as default: %s", exc)
      permission = NotificationPermission.DEFAULT
    return dataclasses.replace(self._context, permission=permission)

  async def _execute_safely(self, effect: Effect) -> None:
    try:
      await self._execute(effect)
    except Exception as exc:  # noqa: BLE001
      logger.error("Service Worker v%s: Effect failed effect=%s error=%s", SW_VERSION, type(effect).__name__, exc, exc_info=True)

  async def _execute(self, effect: Effect) -> None:
    if isinstance(effect, Parallel):
      await asyncio.gather(*(self._execute_safely(inner) for inner in effect.effects))
    elif isinstance(effect, SkipWaiting):
      await self._platform.skip_waiting()
    elif isinstance(effect, ClaimClients):
      await self._platform.claim_clients()
      self.controlling = True
    elif isinstance(effect, DeleteCachesWithPrefix):
      await self._delete_caches(effect.prefix)
    elif isinstance(effect, ShowNotification):
      await self._show_notification(effect)
    elif isinstance(effect, CloseNotification):
      await self._platform.close_notification(effect.tag)
    elif isinstance(effect, FocusOrOpenWindow):
      await self._focus_or_open(effect.url)
    elif isinstance(effect, Resubscribe):
      await self._resubscribe(effect)
    else:
      logger.warning("Service Worker: Unsupported effect %s", type(effect).__name__)

  async def _delete_caches(self, prefix: str) -> None:
    names = [name for name in await self._platform.cache_keys() if name.startswith(prefix)]
    await asyncio.gather(*(self._platform.delete_cache(name) for name in names))

  async def _show_notification(self, effect: ShowNotification) -> None:
    try:
      await self._platform.show_notification(effect.title, effect.options)
      logger.info("Service Worker v%s: Notification displayed successfully", SW_VERSION)
      return
    except Exception as exc:  # noqa: BLE001
      logger.error("Service Worker v%s: Failed to show notification: %s", SW_VERSION, exc)
      if effect.fallback is None:
        return

    try:
      await self._platform.show_notification(effect.fallback.title, effect.fallback.options)
    except Exception as exc:  # noqa: BLE001
      logger.error("Service Worker v%s: Fallback notification failed: %s", SW_VERSION, exc)

  async def _focus_or_open(self, url: str) -> None:
    clients = await self._platform.match_clients(include_uncontrolled=True)
    logger.info("Service Worker v%s: Found %d clients", SW_VERSION, len(clients))

    client = select_client(clients, self._context.origin)
    if client is not None:
      try:
        navigated = await client.navigate(url)
      except Exception as exc:  # noqa: BLE001
        logger.warning("Service Worker: Navigate failed, focusing existing window: %s", exc)
        await client.focus()
        return
      if navigated is not None:
        await navigated.focus()
      return

    if self._context.capabilities.supports_open_window:
      await self._platform.open_window(url)
    else:
      logger.warning("Service Worker: Cannot open window for url=%s", url)

  async def _resubscribe(self, effect: Resubscribe) -> None:
    if not self._context.capabilities.supports_push_manager:
      logger.warning("Service Worker: Push manager unavailable; cannot resubscribe")
      return

    try:
      subscription = await self._platform.subscribe_push(user_visible_only=True, application_server_key=effect.application_server_key)
      logger.info("Service Worker v%s: Resubscribed to push", SW_VERSION)
      status = await self._platform.post_json(effect.register_url, subscription)
    except Exception as exc:  # noqa: BLE001
      logger.error("Service Worker v%s: Failed to resubscribe: %s", SW_VERSION, exc)
      return

    if status >= 400:
      logger.error("Service Worker v%s: Subscription registration rejected status=%s", SW_VERSION, status)
