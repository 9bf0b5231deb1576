"""Service worker events as plain values."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

INSTALL = "install"
ACTIVATE = "activate"
PUSH = "push"
NOTIFICATION_CLICK = "notificationclick"
NOTIFICATION_CLOSE = "notificationclose"
PUSH_SUBSCRIPTION_CHANGE = "pushsubscriptionchange"


@dataclass(frozen=True)
class WorkerEvent:
  type: ClassVar[str] = ""


@dataclass(frozen=True)
class InstallEvent(WorkerEvent):
  type: ClassVar[str] = INSTALL


@dataclass(frozen=True)
class ActivateEvent(WorkerEvent):
  type: ClassVar[str] = ACTIVATE


@dataclass(frozen=True)
class PushEvent(WorkerEvent):
  """Raw push message; `data` is the decrypted body or None when the push carried none."""

  type: ClassVar[str] = PUSH
  data: bytes | None = None


@dataclass(frozen=True)
class DisplayedNotification:
  """The notification a click or close refers to."""

  tag: str | None = None
  data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationClickEvent(WorkerEvent):
  type: ClassVar[str] = NOTIFICATION_CLICK
  notification: DisplayedNotification = field(default_factory=DisplayedNotification)
  action: str = ""


@dataclass(frozen=True)
class NotificationCloseEvent(WorkerEvent):
  type: ClassVar[str] = NOTIFICATION_CLOSE
  notification: DisplayedNotification = field(default_factory=DisplayedNotification)


@dataclass(frozen=True)
class PushSubscriptionChangeEvent(WorkerEvent):
  """The platform rotated the subscription; carries the key the old one was created with."""

  type: ClassVar[str] = PUSH_SUBSCRIPTION_CHANGE
  old_application_server_key: str | bytes | None = None
