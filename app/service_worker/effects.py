"""Effect descriptions returned by handlers and executed by the runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

REGISTER_URL = "/api/push/subscribe"


@dataclass(frozen=True)
class Effect:
  """Base class for everything a handler can ask the platform to do."""


@dataclass(frozen=True)
class SkipWaiting(Effect):
  pass


@dataclass(frozen=True)
class ClaimClients(Effect):
  pass


@dataclass(frozen=True)
class DeleteCachesWithPrefix(Effect):
  prefix: str


@dataclass(frozen=True)
class Parallel(Effect):
  """Run the wrapped effects concurrently and settle once all of them have."""

  effects: tuple[Effect, ...]


@dataclass(frozen=True)
class ShowNotification(Effect):
  """Display a notification; `fallback` is tried once if the platform rejects this one."""

  title: str
  options: dict[str, Any] = field(default_factory=dict)
  fallback: ShowNotification | None = None


@dataclass(frozen=True)
class CloseNotification(Effect):
  tag: str | None = None


@dataclass(frozen=True)
class FocusOrOpenWindow(Effect):
  """Reuse a same-origin window at `url`, or open one."""

  url: str


@dataclass(frozen=True)
class Resubscribe(Effect):
  application_server_key: str | bytes | None
  register_url: str = REGISTER_URL
