"""Repository helpers for Web Push subscription persistence."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session_factory
from app.schema.push_subscriptions import PushSubscription


@dataclass(frozen=True)
class PushSubscriptionEntry:
  """Capture a single web push subscription for storage and fan-out."""

  user_id: uuid.UUID
  endpoint: str
  p256dh_key: str
  auth_key: str
  subscription_data: dict[str, Any]
  user_agent: str | None = None
  id: uuid.UUID | None = field(default=None, compare=False)


class PushSubscriptionRepository:
  """Persist and manage push subscriptions in Postgres."""

  async def upsert(self, entry: PushSubscriptionEntry) -> None:
    """Insert a subscription row keyed by endpoint."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await self._upsert_with_session(session=session, entry=entry)

  async def _upsert_with_session(self, *, session: AsyncSession, entry: PushSubscriptionEntry) -> None:
    # The endpoint identifies the device; a re-subscribe from another account takes the row over.
    stmt = insert(PushSubscription).values(user_id=entry.user_id, endpoint=entry.endpoint, p256dh_key=entry.p256dh_key, auth_key=entry.auth_key, subscription_data=entry.subscription_data, user_agent=entry.user_agent)
    stmt = stmt.on_conflict_do_update(index_elements=["endpoint"], set_={"user_id": entry.user_id, "p256dh_key": entry.p256dh_key, "auth_key": entry.auth_key, "subscription_data": entry.subscription_data, "user_agent": entry.user_agent, "updated_at": func.now()})
    await session.execute(stmt)
    await session.commit()

  async def list_for_user(self, *, user_id: uuid.UUID) -> list[PushSubscriptionEntry]:
    """List all push subscriptions for a user."""
    session_factory = get_session_factory()
    if session_factory is None:
      return []

    async with session_factory() as session:
      return await self._list_for_user_with_session(session=session, user_id=user_id)

  async def _list_for_user_with_session(self, *, session: AsyncSession, user_id: uuid.UUID) -> list[PushSubscriptionEntry]:
    stmt = select(PushSubscription).where(PushSubscription.user_id == user_id).order_by(PushSubscription.created_at)
    result = await session.execute(stmt)
    rows = result.scalars().all()
    return [
      PushSubscriptionEntry(id=row.id, user_id=row.user_id, endpoint=row.endpoint, p256dh_key=row.p256dh_key, auth_key=row.auth_key, subscription_data=row.subscription_data, user_agent=row.user_agent) for row in rows
    ]

  async def delete_for_user_endpoint(self, *, user_id: uuid.UUID, endpoint: str) -> int:
    """Delete a subscription for a specific user and endpoint; returns rows removed."""
    session_factory = get_session_factory()
    if session_factory is None:
      return 0

    async with session_factory() as session:
      return await self._delete_for_user_endpoint_with_session(session=session, user_id=user_id, endpoint=endpoint)

  async def _delete_for_user_endpoint_with_session(self, *, session: AsyncSession, user_id: uuid.UUID, endpoint: str) -> int:
    # Constrain delete by user ownership so users cannot remove other devices.
    stmt = delete(PushSubscription).where(PushSubscription.user_id == user_id, PushSubscription.endpoint == endpoint)
    result = await session.execute(stmt)
    await session.commit()
    return int(result.rowcount or 0)

  async def delete_by_id(self, *, subscription_id: uuid.UUID) -> None:
    """Delete a single subscription row, used when the push service reports it gone."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await session.execute(delete(PushSubscription).where(PushSubscription.id == subscription_id))
      await session.commit()

  async def delete_by_endpoint(self, *, endpoint: str) -> None:
    """Delete subscriptions by endpoint regardless of owner."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await session.execute(delete(PushSubscription).where(PushSubscription.endpoint == endpoint))
      await session.commit()
