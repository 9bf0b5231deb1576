"""Repository helpers for per-user notification preferences."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session_factory
from app.schema.notifications import NotificationPreferences

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("push_enabled", "email_enabled", "in_app_enabled", "notify_on_assignment", "notify_on_mention", "notify_on_issue_update", "notify_on_handoff", "notify_on_overdue")


@dataclass(frozen=True)
class NotificationPreferencesEntry:
  """Per-user channel and category switches."""

  user_id: uuid.UUID
  push_enabled: bool = False
  email_enabled: bool = True
  in_app_enabled: bool = True
  notify_on_assignment: bool = True
  notify_on_mention: bool = True
  notify_on_issue_update: bool = True
  notify_on_handoff: bool = True
  notify_on_overdue: bool = True

  def as_dict(self) -> dict[str, Any]:
    payload = asdict(self)
    payload["user_id"] = str(self.user_id)
    return payload


def _to_entry(row: NotificationPreferences) -> NotificationPreferencesEntry:
  return NotificationPreferencesEntry(user_id=row.user_id, **{name: bool(getattr(row, name)) for name in UPDATABLE_FIELDS})


class NotificationPreferencesRepository:
  """Read and write notification preference rows."""

  async def get_for_user(self, *, user_id: uuid.UUID) -> NotificationPreferencesEntry | None:
    """Return the user's preferences, or None when the user never saved any."""
    session_factory = get_session_factory()
    if session_factory is None:
      return None

    async with session_factory() as session:
      row = await session.get(NotificationPreferences, user_id)
      return _to_entry(row) if row is not None else None

  async def get_or_create_defaults(self, *, user_id: uuid.UUID) -> NotificationPreferencesEntry:
    """Return stored preferences, inserting the default row on first access."""
    session_factory = get_session_factory()
    if session_factory is None:
      return NotificationPreferencesEntry(user_id=user_id)

    async with session_factory() as session:
      return await self._get_or_create_with_session(session=session, user_id=user_id)

  async def _get_or_create_with_session(self, *, session: AsyncSession, user_id: uuid.UUID) -> NotificationPreferencesEntry:
    defaults = NotificationPreferencesEntry(user_id=user_id)
    # Concurrent first loads race on insert; DO NOTHING keeps the loser harmless.
    stmt = insert(NotificationPreferences).values(user_id=user_id, **{name: getattr(defaults, name) for name in UPDATABLE_FIELDS}).on_conflict_do_nothing(index_elements=["user_id"])
    await session.execute(stmt)
    await session.commit()
    result = await session.execute(select(NotificationPreferences).where(NotificationPreferences.user_id == user_id))
    return _to_entry(result.scalar_one())

  async def update(self, *, user_id: uuid.UUID, changes: dict[str, Any]) -> NotificationPreferencesEntry | None:
    """Apply a partial update of known preference fields."""
    values = {name: bool(value) for name, value in changes.items() if name in UPDATABLE_FIELDS}
    ignored = sorted(set(changes) - set(values))
    if ignored:
      logger.debug("Ignoring unknown preference fields user_id=%s fields=%s", user_id, ignored)

    session_factory = get_session_factory()
    if session_factory is None:
      return None

    async with session_factory() as session:
      await self._get_or_create_with_session(session=session, user_id=user_id)
      if values:
        await session.execute(update(NotificationPreferences).where(NotificationPreferences.user_id == user_id).values(**values))
        await session.commit()
      row = await session.get(NotificationPreferences, user_id, populate_existing=True)
      return _to_entry(row) if row is not None else None

  async def set_push_enabled(self, *, user_id: uuid.UUID, enabled: bool) -> None:
    """Upsert the push channel switch, used by subscribe and unsubscribe."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      stmt = insert(NotificationPreferences).values(user_id=user_id, push_enabled=enabled).on_conflict_do_update(index_elements=["user_id"], set_={"push_enabled": enabled})
      await session.execute(stmt)
      await session.commit()
