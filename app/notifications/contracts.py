"""Contracts for push notification payloads, deliveries and sender failures."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

DEFAULT_URL = "/dashboard"
DEFAULT_TAG = "care-coordination"


class Priority(str, Enum):
  """Urgency of a notification; drives vibration and pinning on the device."""

  NORMAL = "normal"
  URGENT = "urgent"
  CRITICAL = "critical"

  @property
  def is_urgent(self) -> bool:
    return self in {Priority.URGENT, Priority.CRITICAL}


@dataclass(frozen=True)
class PushNotificationPayload:
  """Transient notification content sent to every device of a recipient."""

  title: str
  body: str
  url: str = DEFAULT_URL
  tag: str = DEFAULT_TAG
  priority: Priority = Priority.NORMAL
  issue_id: str | None = None
  notification_id: str | None = None

  def to_wire(self) -> dict[str, Any]:
    """Return the JSON object the service worker parses on push."""
    return {"title": self.title, "body": self.body, "url": self.url or DEFAULT_URL, "tag": self.tag or DEFAULT_TAG, "priority": Priority(self.priority).value, "issueId": self.issue_id, "notificationId": self.notification_id}

  def to_json(self) -> str:
    return json.dumps(self.to_wire())


@dataclass(frozen=True)
class PushDelivery:
  """A single encrypted push addressed to one stored subscription."""

  subscription_id: uuid.UUID
  endpoint: str
  subscription_data: dict[str, Any]
  payload: str


@dataclass(frozen=True)
class DeliveryOutcome:
  """Result of one delivery attempt against one subscription."""

  subscription_id: uuid.UUID
  endpoint: str
  success: bool
  status_code: int | None = None
  error: str | None = None
  removed: bool = False


@dataclass(frozen=True)
class UserDeliveryReport:
  """Per-device outcomes of delivering one payload to one user."""

  user_id: uuid.UUID
  skipped_reason: str | None = None
  outcomes: tuple[DeliveryOutcome, ...] = field(default_factory=tuple)

  @property
  def success_count(self) -> int:
    return sum(1 for outcome in self.outcomes if outcome.success)

  @property
  def fail_count(self) -> int:
    return sum(1 for outcome in self.outcomes if not outcome.success)


@dataclass(frozen=True)
class FanoutResult:
  """Aggregate per-device counts of a batch send."""

  success_count: int = 0
  fail_count: int = 0


class NotificationError(Exception):
  """Base class for all notification delivery failures."""


class PushNotConfiguredError(NotificationError):
  """Raised when an operation needs VAPID keys that are not configured."""


class NotificationProviderError(NotificationError):
  """Exception raised when the push service rejects a delivery."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class InvalidPushSubscriptionError(NotificationProviderError):
  """The push service reports the endpoint as permanently gone (404/410)."""


class TransientPushProviderError(NotificationProviderError):
  """Any other delivery failure; the subscription is kept and not retried."""


class PushSender(Protocol):
  """Delivery contract for sending push notifications."""

  def send(self, delivery: PushDelivery) -> None:
    """Send a push message synchronously."""
