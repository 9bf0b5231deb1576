from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.schema.sql import User


async def get_user_by_firebase_uid(session: AsyncSession, firebase_uid: str) -> User | None:
  """Fetch a user by Firebase UID to support auth and session validation."""
  stmt = select(User).where(User.firebase_uid == firebase_uid)
  result = await session.execute(stmt)
  return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: uuid.UUID) -> User | None:
  """Fetch a user by primary key."""
  result = await session.execute(select(User).where(User.id == user_id))
  return result.scalar_one_or_none()


async def get_display_name(session: AsyncSession, user_id: uuid.UUID) -> str:
  """Resolve the name used in notification copy for a user id."""
  user = await get_user_by_id(session, user_id)
  if user is None:
    return "Someone"
  return user.display_name


async def list_facility_user_ids(session: AsyncSession, *, facility_id: uuid.UUID, exclude_user_id: uuid.UUID | None = None) -> list[uuid.UUID]:
  """List every user in a facility, optionally skipping the acting user."""
  stmt = select(User.id).where(User.facility_id == facility_id)
  if exclude_user_id is not None:
    stmt = stmt.where(User.id != exclude_user_id)
  result = await session.execute(stmt)
  return list(result.scalars().all())
