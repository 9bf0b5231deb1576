"""SQLAlchemy models for in-app notifications and per-user delivery preferences."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class InAppNotification(Base):
  """Persist in-app notifications shown in the notification center."""

  __tablename__ = "notifications"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
  type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  related_issue_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
  metadata_json: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)
  read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class NotificationPreferences(Base):
  """Per-user channel and category opt-in switches."""

  __tablename__ = "notification_preferences"

  user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
  push_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  in_app_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  notify_on_assignment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  notify_on_mention: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  notify_on_issue_update: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  notify_on_handoff: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  notify_on_overdue: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
