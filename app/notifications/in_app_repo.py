"""Repository helpers for in-app notifications."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.schema.notifications import InAppNotification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InAppNotificationEntry:
  """Capture a single in-app notification entry."""

  user_id: uuid.UUID
  type: str
  title: str
  message: str
  related_issue_id: uuid.UUID | None = None
  metadata: dict[str, Any] = field(default_factory=dict)
  id: uuid.UUID | None = field(default=None, compare=False)


def _to_entry(row: InAppNotification) -> InAppNotificationEntry:
  return InAppNotificationEntry(id=row.id, user_id=row.user_id, type=row.type, title=row.title, message=row.message, related_issue_id=row.related_issue_id, metadata=dict(row.metadata_json or {}))


class InAppNotificationRepository:
  """Persist in-app notifications using the caller's session."""

  async def insert_many(self, session: AsyncSession, entries: list[InAppNotificationEntry]) -> None:
    """Insert one notification row per recipient."""
    if not entries:
      return
    session.add_all([InAppNotification(user_id=entry.user_id, type=entry.type, title=entry.title, message=entry.message, related_issue_id=entry.related_issue_id, metadata_json=entry.metadata, read=False) for entry in entries])
    await session.commit()

  async def get(self, session: AsyncSession, notification_id: uuid.UUID) -> InAppNotificationEntry | None:
    row = await session.get(InAppNotification, notification_id)
    return _to_entry(row) if row is not None else None

  async def merge_metadata(self, session: AsyncSession, notification_id: uuid.UUID, changes: dict[str, Any]) -> None:
    """Merge keys into a notification's metadata object."""
    row = await session.get(InAppNotification, notification_id)
    if row is None:
      logger.warning("Notification vanished before metadata update notification_id=%s", notification_id)
      return
    row.metadata_json = {**(row.metadata_json or {}), **changes}
    await session.commit()

  async def list_for_user(self, session: AsyncSession, *, user_id: uuid.UUID, limit: int, offset: int = 0, unread_only: bool = False) -> list[InAppNotification]:
    stmt = select(InAppNotification).where(InAppNotification.user_id == user_id)
    if unread_only:
      stmt = stmt.where(InAppNotification.read.is_(False))
    stmt = stmt.order_by(InAppNotification.created_at.desc()).limit(limit).offset(offset)
    result = await session.execute(stmt)
    return list(result.scalars().all())

  async def mark_all_read(self, session: AsyncSession, *, user_id: uuid.UUID) -> int:
    result = await session.execute(update(InAppNotification).where(InAppNotification.user_id == user_id, InAppNotification.read.is_(False)).values(read=True))
    await session.commit()
    return int(result.rowcount or 0)
