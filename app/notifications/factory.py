"""Factory helpers for notification services."""

from __future__ import annotations

import logging

from app.config import Settings
from app.notifications.composer import NotificationComposer
from app.notifications.contracts import PushSender
from app.notifications.fanout import PushFanoutService
from app.notifications.in_app_repo import InAppNotificationRepository
from app.notifications.preferences_repo import NotificationPreferencesRepository
from app.notifications.push_sender import NullPushSender, VapidConfig, WebPushSender
from app.notifications.push_subscription_repo import PushSubscriptionRepository

logger = logging.getLogger(__name__)


def push_configured(settings: Settings) -> bool:
  """True when push is switched on and both VAPID keys are present."""
  return bool(settings.push_notifications_enabled and settings.push_vapid_public_key and settings.push_vapid_private_key)


def build_push_sender(settings: Settings) -> PushSender:
  """Construct the Web Push sender, or a null sender when push is not configured."""
  if not push_configured(settings):
    logger.warning("Push notifications not configured - VAPID keys missing or push disabled")
    return NullPushSender()

  vapid_config = VapidConfig(public_key=settings.push_vapid_public_key or "", private_key=settings.push_vapid_private_key or "", sub=settings.push_vapid_sub)
  return WebPushSender(vapid_config=vapid_config, ttl_seconds=settings.push_ttl_seconds, timeout_seconds=settings.push_timeout_seconds)


def build_fanout_service(settings: Settings) -> PushFanoutService:
  """Construct the push fan-out service based on environment configuration."""
  return PushFanoutService(push_sender=build_push_sender(settings), subscription_repo=PushSubscriptionRepository(), preferences_repo=NotificationPreferencesRepository(), configured=push_configured(settings))


def build_notification_composer(settings: Settings, *, fanout: PushFanoutService | None = None) -> NotificationComposer:
  """Construct the composer used by business routes to announce events."""
  return NotificationComposer(fanout=fanout or build_fanout_service(settings), in_app_repo=InAppNotificationRepository())
