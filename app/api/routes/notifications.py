from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db_session, get_preferences_repo
from app.core.security import get_current_active_user
from app.notifications.in_app_repo import InAppNotificationRepository
from app.notifications.preferences_repo import NotificationPreferencesRepository
from app.schema.sql import User

logger = logging.getLogger(__name__)

router = APIRouter()


class NotificationPreferencesUpdate(BaseModel):
  """Partial update of notification preference switches."""

  push_enabled: bool | None = None
  email_enabled: bool | None = None
  in_app_enabled: bool | None = None
  notify_on_assignment: bool | None = None
  notify_on_mention: bool | None = None
  notify_on_issue_update: bool | None = None
  notify_on_handoff: bool | None = None
  notify_on_overdue: bool | None = None
  model_config = ConfigDict(extra="forbid")


@router.get("", response_model=list[dict[str, Any]])
async def list_notifications(
  current_user: User = Depends(get_current_active_user),  # noqa: B008
  session: AsyncSession = Depends(get_db_session),  # noqa: B008
  limit: int = Query(50, ge=1, le=100),  # noqa: B008
  offset: int = Query(0, ge=0),  # noqa: B008
  unread: bool = Query(False),  # noqa: B008
) -> list[dict[str, Any]]:
  """
  Poll for recent notifications for the current user.

  - **limit**: Max number of notifications to return.
  - **offset**: Number of notifications to skip (for pagination).
  - **unread**: Only return notifications not yet marked read.
  """
  try:
    rows = await InAppNotificationRepository().list_for_user(session, user_id=current_user.id, limit=limit, offset=offset, unread_only=unread)
  except Exception as exc:  # noqa: BLE001
    logger.error("Error fetching notifications user_id=%s error=%s", current_user.id, exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to fetch notifications") from exc

  return [
    {
      "id": str(row.id),
      "created_at": row.created_at,
      "type": row.type,
      "title": row.title,
      "message": row.message,
      "related_issue_id": str(row.related_issue_id) if row.related_issue_id else None,
      "metadata": row.metadata_json or {},
      "read": bool(row.read),
    }
    for row in rows
  ]


@router.api_route("/read-all", methods=["POST", "PATCH"])
async def mark_all_read(current_user: User = Depends(get_current_active_user), session: AsyncSession = Depends(get_db_session)) -> dict[str, Any]:  # noqa: B008
  """Mark every unread notification of the caller as read."""
  try:
    updated = await InAppNotificationRepository().mark_all_read(session, user_id=current_user.id)
  except Exception as exc:  # noqa: BLE001
    logger.error("Error marking all notifications as read user_id=%s error=%s", current_user.id, exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to mark notifications as read") from exc

  return {"success": True, "updated": updated}


@router.get("/preferences")
async def get_preferences(current_user: User = Depends(get_current_active_user), preferences_repo: NotificationPreferencesRepository = Depends(get_preferences_repo)) -> dict[str, Any]:  # noqa: B008
  """Return the caller's preferences, creating the defaults on first access."""
  try:
    preferences = await preferences_repo.get_or_create_defaults(user_id=current_user.id)
  except Exception as exc:  # noqa: BLE001
    logger.error("Error fetching notification preferences user_id=%s error=%s", current_user.id, exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to fetch preferences") from exc

  return preferences.as_dict()


@router.put("/preferences")
async def update_preferences(
  payload: NotificationPreferencesUpdate,
  current_user: User = Depends(get_current_active_user),  # noqa: B008
  preferences_repo: NotificationPreferencesRepository = Depends(get_preferences_repo),  # noqa: B008
) -> dict[str, Any]:
  """Apply a partial update to the caller's preferences."""
  changes = payload.model_dump(exclude_none=True)
  try:
    preferences = await preferences_repo.update(user_id=current_user.id, changes=changes)
  except Exception as exc:  # noqa: BLE001
    logger.error("Error updating notification preferences user_id=%s error=%s", current_user.id, exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update preferences") from exc

  if preferences is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Preferences storage unavailable")
  return preferences.as_dict()
