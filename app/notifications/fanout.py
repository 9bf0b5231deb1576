"""Fan-out of one push payload to every device of every eligible recipient."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable

from starlette.concurrency import run_in_threadpool

from app.notifications.contracts import (
  DeliveryOutcome,
  FanoutResult,
  InvalidPushSubscriptionError,
  NotificationProviderError,
  Priority,
  PushDelivery,
  PushNotConfiguredError,
  PushNotificationPayload,
  PushSender,
  UserDeliveryReport,
)
from app.notifications.preferences_repo import NotificationPreferencesRepository
from app.notifications.push_subscription_repo import PushSubscriptionEntry, PushSubscriptionRepository

logger = logging.getLogger(__name__)

SKIP_PUSH_DISABLED = "push_disabled"
SKIP_NO_SUBSCRIPTIONS = "no_subscriptions"
SKIP_LOOKUP_FAILED = "lookup_failed"

TEST_PAYLOAD = PushNotificationPayload(title="🔔 Test Notification", body="Push notifications are working! You will receive alerts for critical issues.", url="/dashboard", tag="test-notification", priority=Priority.NORMAL)


def _short(endpoint: str) -> str:
  return endpoint[:60]


class PushFanoutService:
  """Deliver payloads to stored subscriptions and prune the ones the push service reports gone.

  Delivery is best effort per endpoint: one device failing never affects another device or
  another user, and batch calls never raise. Transient failures are not retried here; the
  next business event that notifies the same user is the retry.
  """

  def __init__(self, *, push_sender: PushSender, subscription_repo: PushSubscriptionRepository, preferences_repo: NotificationPreferencesRepository, configured: bool) -> None:
    self._push_sender = push_sender
    self._subscription_repo = subscription_repo
    self._preferences_repo = preferences_repo
    self._configured = configured

  @property
  def configured(self) -> bool:
    return self._configured

  async def send_to_users(self, user_ids: Iterable[uuid.UUID], payload: PushNotificationPayload) -> FanoutResult:
    """Send a payload to all devices of all users and return per-device counts."""
    if not self._configured:
      logger.warning("Push notifications not configured; skipping fan-out title=%s", payload.title)
      return FanoutResult()

    unique_ids = list(dict.fromkeys(user_ids))
    if not unique_ids:
      return FanoutResult()

    reports = await asyncio.gather(*(self._send_to_user_safely(user_id, payload) for user_id in unique_ids))
    result = FanoutResult(success_count=sum(report.success_count for report in reports), fail_count=sum(report.fail_count for report in reports))
    logger.info("Push fan-out finished users=%d success=%d failed=%d", len(unique_ids), result.success_count, result.fail_count)
    return result

  async def send_to_user(self, user_id: uuid.UUID, payload: PushNotificationPayload) -> UserDeliveryReport:
    """Send a payload to one user's devices, honouring the push preference gate."""
    if not self._configured:
      raise PushNotConfiguredError("Push notifications not configured")

    preferences = await self._preferences_repo.get_for_user(user_id=user_id)
    # A missing row means the user never opted in.
    if preferences is None or not preferences.push_enabled:
      logger.debug("Push disabled for user_id=%s", user_id)
      return UserDeliveryReport(user_id=user_id, skipped_reason=SKIP_PUSH_DISABLED)

    subscriptions = await self._subscription_repo.list_for_user(user_id=user_id)
    return await self._deliver_all(user_id, subscriptions, payload)

  async def send_test(self, user_id: uuid.UUID) -> UserDeliveryReport:
    """Send the diagnostic payload to the user's own devices, bypassing preferences."""
    if not self._configured:
      raise PushNotConfiguredError("Push notifications not configured")

    subscriptions = await self._subscription_repo.list_for_user(user_id=user_id)
    report = await self._deliver_all(user_id, subscriptions, TEST_PAYLOAD)
    logger.info("Test push results user_id=%s success=%d/%d", user_id, report.success_count, len(report.outcomes))
    return report

  async def _send_to_user_safely(self, user_id: uuid.UUID, payload: PushNotificationPayload) -> UserDeliveryReport:
    try:
      return await self.send_to_user(user_id, payload)
    except Exception as exc:  # noqa: BLE001
      logger.error("Push lookup failed user_id=%s error=%s", user_id, exc, exc_info=True)
      return UserDeliveryReport(user_id=user_id, skipped_reason=SKIP_LOOKUP_FAILED)

  async def _deliver_all(self, user_id: uuid.UUID, subscriptions: list[PushSubscriptionEntry], payload: PushNotificationPayload) -> UserDeliveryReport:
    if not subscriptions:
      logger.debug("No push subscriptions for user_id=%s", user_id)
      return UserDeliveryReport(user_id=user_id, skipped_reason=SKIP_NO_SUBSCRIPTIONS)

    wire_payload = payload.to_json()
    outcomes = await asyncio.gather(*(self._deliver(subscription, wire_payload) for subscription in subscriptions))
    return UserDeliveryReport(user_id=user_id, outcomes=tuple(outcomes))

  async def _deliver(self, subscription: PushSubscriptionEntry, wire_payload: str) -> DeliveryOutcome:
    """Attempt one delivery; never raises."""
    subscription_id = subscription.id or uuid.uuid4()
    delivery = PushDelivery(subscription_id=subscription_id, endpoint=subscription.endpoint, subscription_data=subscription.subscription_data, payload=wire_payload)
    try:
      # pywebpush is blocking; keep the event loop free while the request is in flight.
      await run_in_threadpool(self._push_sender.send, delivery)
    except InvalidPushSubscriptionError as exc:
      removed = await self._remove_gone_subscription(subscription)
      logger.info("Push subscription gone endpoint=%s status=%s removed=%s", _short(subscription.endpoint), exc.status_code, removed)
      return DeliveryOutcome(subscription_id=subscription_id, endpoint=subscription.endpoint, success=False, status_code=exc.status_code, error=str(exc), removed=removed)
    except NotificationProviderError as exc:
      logger.error("Push notification delivery failed (provider error) endpoint=%s: %s", _short(subscription.endpoint), exc)
      return DeliveryOutcome(subscription_id=subscription_id, endpoint=subscription.endpoint, success=False, status_code=exc.status_code, error=str(exc))
    except Exception as exc:  # noqa: BLE001
      logger.error("Push notification delivery failed endpoint=%s: %s", _short(subscription.endpoint), exc, exc_info=True)
      return DeliveryOutcome(subscription_id=subscription_id, endpoint=subscription.endpoint, success=False, error=str(exc))

    logger.debug("Push delivered endpoint=%s", _short(subscription.endpoint))
    return DeliveryOutcome(subscription_id=subscription_id, endpoint=subscription.endpoint, success=True)

  async def _remove_gone_subscription(self, subscription: PushSubscriptionEntry) -> bool:
    # A concurrent unsubscribe may already have removed the row; deletes are idempotent.
    try:
      if subscription.id is not None:
        await self._subscription_repo.delete_by_id(subscription_id=subscription.id)
      else:
        await self._subscription_repo.delete_by_endpoint(endpoint=subscription.endpoint)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed deleting gone push subscription endpoint=%s error=%s", _short(subscription.endpoint), exc, exc_info=True)
      return False
    return True
