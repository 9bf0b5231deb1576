"""Compose care-coordination events into in-app rows and background push fan-out."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_factory
from app.notifications.contracts import DEFAULT_URL, FanoutResult, Priority, PushNotificationPayload, UserDeliveryReport
from app.notifications.fanout import PushFanoutService
from app.notifications.in_app_repo import InAppNotificationEntry, InAppNotificationRepository
from app.schema.sql import User
from app.services.users import get_display_name, get_user_by_id, list_facility_user_ids

logger = logging.getLogger(__name__)

NOTE_PREVIEW_CHARS = 100


@dataclass(frozen=True)
class PatientRef:
  """Minimal patient identity used in notification copy."""

  first_name: str
  last_name: str
  id: uuid.UUID | None = None
  mrn: str | None = None

  @property
  def full_name(self) -> str:
    return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class IssueRef:
  """Minimal issue identity used in notification copy and deep links."""

  id: uuid.UUID
  issue_number: int
  issue_type: str | None = None
  description: str | None = None


@dataclass(frozen=True)
class FacilityNotification:
  """One business event addressed to every member of a facility but the actor."""

  type: str
  title: str
  message: str
  sender_id: uuid.UUID
  facility_id: uuid.UUID
  url: str = DEFAULT_URL
  related_issue_id: uuid.UUID | None = None
  related_patient_id: uuid.UUID | None = None
  priority: Priority = Priority.NORMAL
  metadata: dict[str, Any] = field(default_factory=dict)


def issue_url(issue_id: uuid.UUID | str) -> str:
  return f"/dashboard?issue={issue_id}"


SessionFactoryProvider = Callable[[], async_sessionmaker[AsyncSession] | None]
NotificationBuilder = Callable[[AsyncSession], Awaitable[FacilityNotification]]


class NotificationComposer:
  """Turn domain events into stored notifications plus a fire-and-forget push fan-out.

  Every event runs in the composer's own database session, so the caller's transaction is
  left untouched whatever happens here. Notifying never raises: a failure is
  logged and reported as zero recipients. Push delivery runs as a background task so a slow
  push service never delays the request that triggered the event.
  """

  def __init__(self, *, fanout: PushFanoutService, in_app_repo: InAppNotificationRepository, session_factory: SessionFactoryProvider = get_session_factory, clock: Callable[[], float] = time.time) -> None:
    self._fanout = fanout
    self._in_app_repo = in_app_repo
    self._session_factory = session_factory
    self._clock = clock
    self._background_tasks: set[asyncio.Task[FanoutResult]] = set()

  def _now_ms(self) -> int:
    return int(self._clock() * 1000)

  async def notify_facility(self, notification: FacilityNotification) -> int:
    """Notify every facility member except the sender; returns the recipient count."""

    async def build(session: AsyncSession) -> FacilityNotification:
      return notification

    return await self._notify(notification.type, build)

  async def _notify(self, label: str, build: NotificationBuilder) -> int:
    factory = self._session_factory()
    if factory is None:
      logger.warning("Database not configured; dropping notification type=%s", label)
      return 0

    try:
      async with factory() as session:
        notification = await build(session)
        recipient_ids = await list_facility_user_ids(session, facility_id=notification.facility_id, exclude_user_id=notification.sender_id)
        if not recipient_ids:
          return 0
        await self._store_in_app(session, self._in_app_entries(notification, recipient_ids), label)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to compose notification type=%s error=%s", label, exc, exc_info=True)
      return 0

    payload = PushNotificationPayload(
      title=notification.title,
      body=notification.message,
      url=notification.url or DEFAULT_URL,
      tag=f"{notification.type}-{self._now_ms()}",
      priority=notification.priority,
      issue_id=str(notification.related_issue_id) if notification.related_issue_id else None,
    )
    self._schedule_push(recipient_ids, payload)
    return len(recipient_ids)

  @staticmethod
  def _in_app_entries(notification: FacilityNotification, recipient_ids: list[uuid.UUID]) -> list[InAppNotificationEntry]:
    metadata = {**notification.metadata, "sender_id": str(notification.sender_id), "push_queued": True}
    if notification.related_patient_id is not None:
      metadata["patient_id"] = str(notification.related_patient_id)
    if notification.priority is not Priority.NORMAL:
      metadata["push_priority"] = notification.priority.value
    return [InAppNotificationEntry(user_id=user_id, type=notification.type, title=notification.title, message=notification.message, related_issue_id=notification.related_issue_id, metadata=metadata) for user_id in recipient_ids]

  async def _store_in_app(self, session: AsyncSession, entries: list[InAppNotificationEntry], label: str) -> None:
    try:
      await self._in_app_repo.insert_many(session, entries)
    except Exception as exc:  # noqa: BLE001
      # Push still goes out; the in-app feed is a convenience copy.
      logger.error("Failed to create notifications type=%s error=%s", label, exc, exc_info=True)
      await session.rollback()

  def _schedule_push(self, user_ids: Iterable[uuid.UUID], payload: PushNotificationPayload) -> None:
    task = asyncio.create_task(self._fanout.send_to_users(list(user_ids), payload))
    self._background_tasks.add(task)
    task.add_done_callback(self._background_tasks.discard)
    task.add_done_callback(self._log_task_error)

  @staticmethod
  def _log_task_error(task: asyncio.Task[FanoutResult]) -> None:
    """Log background task exceptions to avoid silent delivery failures."""
    if task.cancelled():
      return
    try:
      _ = task.result()
    except Exception as exc:  # noqa: BLE001
      logger.error("Background push dispatch task failed: %s", exc, exc_info=True)

  async def drain(self) -> None:
    """Wait for in-flight push fan-outs, used on shutdown."""
    if self._background_tasks:
      await asyncio.gather(*self._background_tasks, return_exceptions=True)

  async def notify_new_patient(self, *, sender_id: uuid.UUID, facility_id: uuid.UUID, patient: PatientRef) -> int:
    async def build(session: AsyncSession) -> FacilityNotification:
      sender_name = await get_display_name(session, sender_id)
      return FacilityNotification(
        type="new_patient",
        title="New Patient Added",
        message=f"{sender_name} added {patient.full_name} (MRN: {patient.mrn})",
        sender_id=sender_id,
        facility_id=facility_id,
        related_patient_id=patient.id,
        metadata={"patient_name": patient.full_name, "patient_mrn": patient.mrn, "sender_name": sender_name},
      )

    return await self._notify("new_patient", build)

  async def notify_patient_update(self, *, sender_id: uuid.UUID, facility_id: uuid.UUID, patient: PatientRef, changes: str | None = None) -> int:
    async def build(session: AsyncSession) -> FacilityNotification:
      sender_name = await get_display_name(session, sender_id)
      suffix = f": {changes}" if changes else ""
      return FacilityNotification(
        type="patient_update",
        title="Patient Updated",
        message=f"{sender_name} updated {patient.full_name}{suffix}",
        sender_id=sender_id,
        facility_id=facility_id,
        related_patient_id=patient.id,
        metadata={"patient_name": patient.full_name, "patient_mrn": patient.mrn, "sender_name": sender_name, "changes": changes},
      )

    return await self._notify("patient_update", build)

  async def notify_new_issue(self, *, sender_id: uuid.UUID, facility_id: uuid.UUID, issue: IssueRef, patient: PatientRef, priority: Priority = Priority.NORMAL) -> int:
    """Announce a newly reported issue; urgent issues pin the device notification."""

    async def build(session: AsyncSession) -> FacilityNotification:
      sender_name = await get_display_name(session, sender_id)
      return FacilityNotification(
        type="new_issue",
        title=f"New Issue: {issue.issue_type}",
        message=f"{sender_name} reported an issue for {patient.full_name}",
        sender_id=sender_id,
        facility_id=facility_id,
        url=issue_url(issue.id),
        related_issue_id=issue.id,
        priority=priority,
        metadata={"issue_number": issue.issue_number, "issue_type": issue.issue_type, "patient_name": patient.full_name, "sender_name": sender_name, "description": issue.description},
      )

    return await self._notify("new_issue", build)

  async def notify_issue_update(self, *, sender_id: uuid.UUID, facility_id: uuid.UUID, issue: IssueRef, patient: PatientRef, note: str) -> int:
    async def build(session: AsyncSession) -> FacilityNotification:
      sender_name = await get_display_name(session, sender_id)
      return FacilityNotification(
        type="issue_update",
        title="Issue Update Added",
        message=f"{sender_name} added a note to Issue #{issue.issue_number} ({patient.full_name})",
        sender_id=sender_id,
        facility_id=facility_id,
        url=issue_url(issue.id),
        related_issue_id=issue.id,
        metadata={"issue_number": issue.issue_number, "patient_name": patient.full_name, "sender_name": sender_name, "note": note[:NOTE_PREVIEW_CHARS]},
      )

    return await self._notify("issue_update", build)

  async def notify_issue_status_change(self, *, sender_id: uuid.UUID, facility_id: uuid.UUID, issue: IssueRef, patient: PatientRef, old_status: str, new_status: str) -> int:
    async def build(session: AsyncSession) -> FacilityNotification:
      sender_name = await get_display_name(session, sender_id)
      if new_status == "resolved":
        notification_type = "issue_resolved"
        title = "Issue Resolved"
        message = f"{sender_name} resolved Issue #{issue.issue_number} ({patient.full_name})"
      else:
        notification_type = "status_change"
        title = "Issue Status Changed"
        message = f"{sender_name} changed Issue #{issue.issue_number} to {new_status.replace('_', ' ', 1)}"

      return FacilityNotification(
        type=notification_type,
        title=title,
        message=message,
        sender_id=sender_id,
        facility_id=facility_id,
        url=issue_url(issue.id),
        related_issue_id=issue.id,
        metadata={"issue_number": issue.issue_number, "patient_name": patient.full_name, "sender_name": sender_name, "old_status": old_status, "new_status": new_status},
      )

    return await self._notify("status_change", build)

  async def notify_issue_assigned(self, *, sender_id: uuid.UUID, facility_id: uuid.UUID, issue: IssueRef, patient: PatientRef, assignee_id: uuid.UUID) -> int:
    async def build(session: AsyncSession) -> FacilityNotification:
      sender_name = await get_display_name(session, sender_id)
      assignee_name = await get_display_name(session, assignee_id)
      return FacilityNotification(
        type="issue_assigned",
        title="Issue Assigned",
        message=f"{sender_name} assigned Issue #{issue.issue_number} to {assignee_name}",
        sender_id=sender_id,
        facility_id=facility_id,
        url=issue_url(issue.id),
        related_issue_id=issue.id,
        metadata={"issue_number": issue.issue_number, "patient_name": patient.full_name, "sender_name": sender_name, "assignee_id": str(assignee_id), "assignee_name": assignee_name},
      )

    return await self._notify("issue_assigned", build)

  async def notify_handoff_submitted(self, *, sender_id: uuid.UUID, facility_id: uuid.UUID, handoff_id: uuid.UUID, issue_count: int) -> int:
    """Tell the incoming shift that an after-shift handoff is ready for review."""

    async def build(session: AsyncSession) -> FacilityNotification:
      sender_name = await get_display_name(session, sender_id)
      noun = "issue" if issue_count == 1 else "issues"
      return FacilityNotification(
        type="handoff",
        title="Shift Handoff Submitted",
        message=f"{sender_name} submitted a handoff with {issue_count} {noun}",
        sender_id=sender_id,
        facility_id=facility_id,
        url="/dashboard/after-shift-reports",
        metadata={"handoff_id": str(handoff_id), "issue_count": issue_count, "sender_name": sender_name},
      )

    return await self._notify("handoff", build)

  async def notify_new_message(
    self, *, sender_id: uuid.UUID, conversation_id: uuid.UUID, conversation_type: str, participant_ids: Iterable[uuid.UUID], content: str, patient_id: uuid.UUID | None = None
  ) -> int:
    """Notify conversation participants other than the sender of a new message."""
    recipient_ids = [user_id for user_id in dict.fromkeys(participant_ids) if user_id != sender_id]
    if not recipient_ids:
      return 0

    factory = self._session_factory()
    if factory is None:
      logger.warning("Database not configured; dropping message notification conversation_id=%s", conversation_id)
      return 0

    preview = content.strip()[:NOTE_PREVIEW_CHARS]
    try:
      async with factory() as session:
        sender_name = await get_display_name(session, sender_id)
        metadata: dict[str, Any] = {"conversation_id": str(conversation_id), "conversation_type": conversation_type, "sender_id": str(sender_id), "sender_name": sender_name, "push_queued": True}
        if patient_id is not None:
          metadata["patient_id"] = str(patient_id)
        entries = [InAppNotificationEntry(user_id=user_id, type="message", title=f"New message from {sender_name}", message=preview, metadata=metadata) for user_id in recipient_ids]
        await self._store_in_app(session, entries, "message")
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to compose message notification conversation_id=%s error=%s", conversation_id, exc, exc_info=True)
      return 0

    # One tag per conversation so a burst of messages replaces rather than stacks.
    payload = PushNotificationPayload(title=f"Message from {sender_name}", body=preview, url=f"/dashboard/messages?conversation={conversation_id}", tag=f"message-{conversation_id}")
    self._schedule_push(recipient_ids, payload)
    return len(recipient_ids)

  async def send_for_notification(self, session: AsyncSession, notification_id: uuid.UUID, *, requester: User | None = None) -> UserDeliveryReport | None:
    """Push an already stored in-app notification to its owner.

    Returns None when the notification does not exist or, given a requester, when it belongs
    to a user outside the requester's facility.
    """
    notification = await self._in_app_repo.get(session, notification_id)
    if notification is None:
      return None
    if requester is not None and not await self._visible_to(session, notification.user_id, requester):
      logger.warning("Push send refused notification_id=%s requester_id=%s", notification_id, requester.id)
      return None

    try:
      priority = Priority(notification.metadata.get("push_priority") or Priority.NORMAL.value)
    except ValueError:
      logger.warning("Unknown push priority on notification_id=%s; using normal", notification_id)
      priority = Priority.NORMAL

    issue_id = str(notification.related_issue_id) if notification.related_issue_id else None
    payload = PushNotificationPayload(
      title=notification.title,
      body=notification.message,
      url=issue_url(issue_id) if issue_id else DEFAULT_URL,
      tag=notification.type,
      priority=priority,
      issue_id=issue_id,
      notification_id=str(notification_id),
    )
    report = await self._fanout.send_to_user(notification.user_id, payload)
    if report.success_count > 0:
      await self._in_app_repo.merge_metadata(session, notification_id, {"push_sent": True, "push_sent_at": datetime.now(UTC).isoformat()})
    return report

  @staticmethod
  async def _visible_to(session: AsyncSession, owner_id: uuid.UUID, requester: User) -> bool:
    if owner_id == requester.id:
      return True
    if requester.facility_id is None:
      return False
    owner = await get_user_by_id(session, owner_id)
    return owner is not None and owner.facility_id == requester.facility_id
