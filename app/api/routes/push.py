"""Routes for Web Push subscription lifecycle management and delivery."""

from __future__ import annotations

import logging
import re
import urllib.parse
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db_session, get_fanout_service, get_notification_composer, get_preferences_repo, get_push_subscription_repo
from app.config import Settings, get_settings
from app.core.security import get_current_active_user
from app.notifications.composer import NotificationComposer
from app.notifications.contracts import PushNotConfiguredError, UserDeliveryReport
from app.notifications.factory import push_configured
from app.notifications.fanout import SKIP_NO_SUBSCRIPTIONS, PushFanoutService
from app.notifications.preferences_repo import NotificationPreferencesRepository
from app.notifications.push_subscription_repo import PushSubscriptionEntry, PushSubscriptionRepository
from app.schema.sql import User

logger = logging.getLogger(__name__)

_BASE64_RE = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")
_USER_AGENT_MAX_CHARS = 512

router = APIRouter()


def _validate_push_endpoint(value: str) -> str:
  """Restrict endpoints to known provider hosts over HTTPS."""
  normalized = value.strip()
  parsed = urllib.parse.urlparse(normalized)

  if parsed.scheme.lower() != "https":
    raise PydanticCustomError("push_endpoint_https", "endpoint must use https.")

  host = (parsed.hostname or "").lower()
  if host not in get_settings().push_allowed_hosts:
    raise PydanticCustomError("push_endpoint_host", "endpoint host is not allowed.")

  return normalized


class PushSubscriptionKeys(BaseModel):
  """Browser-provided key material for Web Push encryption."""

  p256dh: str = Field(min_length=40, max_length=512)
  auth: str = Field(min_length=16, max_length=256)
  model_config = ConfigDict(extra="forbid")

  @field_validator("p256dh")
  @classmethod
  def validate_p256dh(cls, value: str) -> str:
    normalized = value.strip()
    if not _BASE64_RE.fullmatch(normalized):
      raise PydanticCustomError("push_p256dh_format", "p256dh must be base64url encoded.")
    return normalized

  @field_validator("auth")
  @classmethod
  def validate_auth(cls, value: str) -> str:
    normalized = value.strip()
    if not _BASE64_RE.fullmatch(normalized):
      raise PydanticCustomError("push_auth_format", "auth must be base64url encoded.")
    return normalized


class PushSubscribeRequest(BaseModel):
  """Standard browser push subscription object payload."""

  endpoint: str = Field(min_length=1, max_length=2048)
  expiration_time: int | None = Field(default=None, alias="expirationTime")
  keys: PushSubscriptionKeys
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @field_validator("endpoint")
  @classmethod
  def validate_endpoint(cls, value: str) -> str:
    return _validate_push_endpoint(value)

  def subscription_data(self) -> dict[str, Any]:
    """The subscription object as the browser serialized it, for the sender."""
    return self.model_dump(by_alias=True)


class PushUnsubscribeRequest(BaseModel):
  """Payload for deleting an existing push subscription."""

  endpoint: str = Field(min_length=1, max_length=2048)
  model_config = ConfigDict(extra="forbid")

  @field_validator("endpoint")
  @classmethod
  def validate_endpoint(cls, value: str) -> str:
    return _validate_push_endpoint(value)


class PushSendRequest(BaseModel):
  """Request to push an existing in-app notification to its owner."""

  notification_id: uuid.UUID = Field(alias="notificationId")
  model_config = ConfigDict(extra="forbid", populate_by_name=True)


def _report_payload(report: UserDeliveryReport) -> dict[str, Any]:
  failures = [{"error": outcome.error, "statusCode": outcome.status_code, "endpoint": outcome.endpoint[:50] + "..."} for outcome in report.outcomes if not outcome.success]
  return {"success": report.success_count > 0, "totalSubscriptions": len(report.outcomes), "successCount": report.success_count, "failedCount": report.fail_count, "failures": failures}


@router.get("/vapid-key")
async def get_vapid_key(settings: Settings = Depends(get_settings)) -> dict[str, str]:  # noqa: B008
  """Expose the VAPID public key browsers need to subscribe."""
  if not push_configured(settings) or not settings.push_vapid_public_key:
    logger.warning("VAPID keys not configured; refusing to hand out a public key.")
    raise PushNotConfiguredError("Push notifications not configured")
  return {"publicKey": settings.push_vapid_public_key}


@router.post("/subscribe")
async def subscribe_to_push(
  payload: PushSubscribeRequest,
  current_user: User = Depends(get_current_active_user),  # noqa: B008
  user_agent: str | None = Header(default=None),  # noqa: B008
  subscription_repo: PushSubscriptionRepository = Depends(get_push_subscription_repo),  # noqa: B008
  preferences_repo: NotificationPreferencesRepository = Depends(get_preferences_repo),  # noqa: B008
) -> dict[str, bool]:
  """Upsert the authenticated user's browser push subscription and opt them in."""
  normalized_user_agent = None
  if user_agent:
    # Clamp user agent size to reduce storage abuse while keeping device context.
    normalized_user_agent = user_agent.strip()[:_USER_AGENT_MAX_CHARS] or None

  entry = PushSubscriptionEntry(user_id=current_user.id, endpoint=payload.endpoint, p256dh_key=payload.keys.p256dh, auth_key=payload.keys.auth, subscription_data=payload.subscription_data(), user_agent=normalized_user_agent)
  try:
    await subscription_repo.upsert(entry)
    await preferences_repo.set_push_enabled(user_id=current_user.id, enabled=True)
  except Exception as exc:  # noqa: BLE001
    logger.error("Failed to save push subscription user_id=%s error=%s", current_user.id, exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save push subscription") from exc

  logger.info("Push subscription saved user_id=%s endpoint=%s", current_user.id, payload.endpoint[:60])
  return {"success": True}


@router.post("/unsubscribe")
async def unsubscribe_from_push(
  payload: PushUnsubscribeRequest,
  current_user: User = Depends(get_current_active_user),  # noqa: B008
  subscription_repo: PushSubscriptionRepository = Depends(get_push_subscription_repo),  # noqa: B008
  preferences_repo: NotificationPreferencesRepository = Depends(get_preferences_repo),  # noqa: B008
) -> dict[str, bool]:
  """Delete a push subscription owned by the authenticated user and opt them out."""
  # Delete by user and endpoint while keeping the operation idempotent.
  try:
    removed = await subscription_repo.delete_for_user_endpoint(user_id=current_user.id, endpoint=payload.endpoint)
    await preferences_repo.set_push_enabled(user_id=current_user.id, enabled=False)
  except Exception as exc:  # noqa: BLE001
    logger.error("Failed to delete push subscription user_id=%s error=%s", current_user.id, exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to remove push subscription") from exc

  logger.info("Push subscription removed user_id=%s rows=%d", current_user.id, removed)
  return {"success": True}


@router.post("/test")
async def send_test_push(current_user: User = Depends(get_current_active_user), fanout: PushFanoutService = Depends(get_fanout_service)) -> dict[str, Any]:  # noqa: B008
  """Send a diagnostic notification to every device of the caller."""
  if not fanout.configured:
    raise PushNotConfiguredError("Push notifications not configured")

  try:
    report = await fanout.send_test(current_user.id)
  except PushNotConfiguredError:
    raise
  except Exception as exc:  # noqa: BLE001
    logger.error("Error sending test notification user_id=%s error=%s", current_user.id, exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to send test notification") from exc

  if report.skipped_reason == SKIP_NO_SUBSCRIPTIONS:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No push subscriptions found")
  return _report_payload(report)


@router.post("/send")
async def send_notification_push(
  payload: PushSendRequest,
  current_user: User = Depends(get_current_active_user),  # noqa: B008
  session: AsyncSession = Depends(get_db_session),  # noqa: B008
  composer: NotificationComposer = Depends(get_notification_composer),  # noqa: B008
) -> dict[str, Any]:
  """Push a stored in-app notification to its owner; notifications outside the caller's facility read as missing."""
  try:
    report = await composer.send_for_notification(session, payload.notification_id, requester=current_user)
  except PushNotConfiguredError:
    raise
  except Exception as exc:  # noqa: BLE001
    logger.error("Error sending push notification notification_id=%s error=%s", payload.notification_id, exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to send push notification") from exc

  if report is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")

  result = _report_payload(report)
  result["error"] = report.skipped_reason
  logger.info("Push sent for notification_id=%s by user_id=%s success=%s", payload.notification_id, current_user.id, result["success"])
  return result
