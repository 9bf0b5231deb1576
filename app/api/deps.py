"""Shared FastAPI dependencies for sessions and notification services."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.database import get_db
from app.notifications.composer import NotificationComposer
from app.notifications.factory import build_fanout_service, build_notification_composer
from app.notifications.fanout import PushFanoutService
from app.notifications.preferences_repo import NotificationPreferencesRepository
from app.notifications.push_subscription_repo import PushSubscriptionRepository


async def get_db_session(session: AsyncSession = Depends(get_db)) -> AsyncSession:  # noqa: B008
  """Dependency to get the database session."""
  return session


@lru_cache
def get_fanout_service() -> PushFanoutService:
  """Process-wide push fan-out service built from settings."""
  return build_fanout_service(get_settings())


@lru_cache
def get_notification_composer() -> NotificationComposer:
  """Process-wide composer sharing the fan-out service."""
  return build_notification_composer(get_settings(), fanout=get_fanout_service())


def get_push_subscription_repo() -> PushSubscriptionRepository:
  return PushSubscriptionRepository()


def get_preferences_repo() -> NotificationPreferencesRepository:
  return NotificationPreferencesRepository()
