"""Platform capabilities and per-event context handed to service worker handlers."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum


class NotificationPermission(str, Enum):
  """Browser notification permission states."""

  GRANTED = "granted"
  DENIED = "denied"
  DEFAULT = "default"


@dataclass(frozen=True)
class PlatformCapabilities:
  """Feature support probed once when the runtime starts."""

  supports_vibration: bool = False
  supports_actions: bool = False
  supports_push_manager: bool = True
  supports_open_window: bool = True


def _wall_clock_ms() -> int:
  return int(time.time() * 1000)


@dataclass(frozen=True)
class WorkerContext:
  """Everything a handler may read besides the event itself."""

  origin: str
  capabilities: PlatformCapabilities = field(default_factory=PlatformCapabilities)
  permission: NotificationPermission = NotificationPermission.DEFAULT
  clock_ms: Callable[[], int] = _wall_clock_ms

  def now_ms(self) -> int:
    return self.clock_ms()
