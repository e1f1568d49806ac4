"""
Session notifications raised from change-feed events.

Which events notify whom is a table of ``NotificationRule`` entries; the
session pipeline hands every applied change to ``evaluate`` and pushes the
result into the session's ``NotificationCenter``. Events the session caused
itself never notify it.
"""
import datetime as dt
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..errors import NotFound
from ..models.entities import (
    AppNotification,
    Entity,
    LeaveStatus,
    NotificationKind,
    NotificationSeverity,
    Severity,
    TaskPriority,
    TaskStatus,
)
from ..models.tables import DOCUMENTS, FORUM_POSTS, LEAVE_REQUESTS, MESSAGES, SAFETY_REPORTS, TASKS
from ..store.provider import ChangeOperation
from .context import SessionContext
from .directory import Directory
from .mirror import AppliedChange
from .permissions import LEAVE_DECIDER_ROLES, can_review_safety, is_leave_owner
from .visibility import can_view_leave


Clock = Callable[[], dt.datetime]

INFO = NotificationSeverity.INFO
URGENT = NotificationSeverity.URGENT


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class NotificationRule:
    table: str
    operation: ChangeOperation
    kind: NotificationKind
    title: str
    # (context, directory, change) -> does the session user belong to the audience
    audience: Callable[[SessionContext, Directory, AppliedChange], bool]
    message: Callable[[Entity, Directory], str]
    # user id of whoever caused the change, when the record names one
    actor: Callable[[Entity, Directory], Optional[str]] = lambda record, directory: None
    severity: Callable[[Entity], NotificationSeverity] = lambda record: INFO


def _is_broadcast(ctx: SessionContext, change: AppliedChange) -> bool:
    return change.after.recipient_id == ctx.broadcast_user_id


def _status_changed(change: AppliedChange) -> bool:
    return change.before is not None and change.before.status != change.after.status


def _task_progressed(ctx: SessionContext, directory: Directory, change: AppliedChange) -> bool:
    task = change.after
    return (
        task.assigned_to == ctx.user.name
        and _status_changed(change)
        and task.status in (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)
    )


def _leave_decider(ctx: SessionContext, directory: Directory, change: AppliedChange) -> bool:
    return ctx.user.role in LEAVE_DECIDER_ROLES and can_view_leave(ctx.user, change.after, directory)


def _leave_requester(record: Entity, directory: Directory) -> Optional[str]:
    requester = directory.by_staff_id(record.staff_id)
    return requester.id if requester else None


def _uploader(record: Entity, directory: Directory) -> Optional[str]:
    uploader = directory.by_name(record.uploaded_by)
    return uploader.id if uploader else None


RULES: List[NotificationRule] = [
    NotificationRule(
        table=MESSAGES,
        operation=ChangeOperation.INSERT,
        kind=NotificationKind.BROADCAST,
        title="🚨 EMERGENCY BROADCAST",
        audience=lambda ctx, directory, change: _is_broadcast(ctx, change),
        message=lambda record, directory: record.text,
        actor=lambda record, directory: record.sender_id,
        severity=lambda record: URGENT,
    ),
    NotificationRule(
        table=MESSAGES,
        operation=ChangeOperation.INSERT,
        kind=NotificationKind.MESSAGE,
        title="New Secure Message",
        audience=lambda ctx, directory, change: change.after.recipient_id == ctx.user.id,
        message=lambda record, directory: f"{record.sender_name}: {record.text}",
        actor=lambda record, directory: record.sender_id,
    ),
    NotificationRule(
        table=SAFETY_REPORTS,
        operation=ChangeOperation.INSERT,
        kind=NotificationKind.SAFETY,
        title="Safety Intelligence Alert",
        audience=lambda ctx, directory, change: can_review_safety(ctx.user),
        message=lambda record, directory: f"New hazard reported: {record.description[:40]}...",
        actor=lambda record, directory: record.reporter_id,
        severity=lambda record: URGENT if record.severity == Severity.HIGH else INFO,
    ),
    NotificationRule(
        table=FORUM_POSTS,
        operation=ChangeOperation.INSERT,
        kind=NotificationKind.FORUM,
        title="Forum Update",
        audience=lambda ctx, directory, change: True,
        message=lambda record, directory: f"{record.author_name} posted: {record.title}",
        actor=lambda record, directory: record.author_id,
    ),
    NotificationRule(
        table=DOCUMENTS,
        operation=ChangeOperation.INSERT,
        kind=NotificationKind.DOC,
        title="Manual Updated",
        audience=lambda ctx, directory, change: True,
        message=lambda record, directory: f"{record.name} is now available in the portal.",
        actor=_uploader,
    ),
    NotificationRule(
        table=TASKS,
        operation=ChangeOperation.INSERT,
        kind=NotificationKind.TASK,
        title="New Duty Assignment",
        audience=lambda ctx, directory, change: change.after.assigned_to == ctx.user.name,
        message=lambda record, directory: f"Assigned: {record.title}",
        severity=lambda record: URGENT if record.priority == TaskPriority.CRITICAL else INFO,
    ),
    NotificationRule(
        table=TASKS,
        operation=ChangeOperation.UPDATE,
        kind=NotificationKind.TASK,
        title="Task Synchronized",
        audience=_task_progressed,
        message=lambda record, directory: f"{record.title} is now {record.status.value.replace('_', ' ')}.",
    ),
    NotificationRule(
        table=LEAVE_REQUESTS,
        operation=ChangeOperation.INSERT,
        kind=NotificationKind.LEAVE,
        title="New Leave Request",
        audience=_leave_decider,
        message=lambda record, directory: f"{record.staff_name} submitted a request.",
        actor=_leave_requester,
    ),
    NotificationRule(
        table=LEAVE_REQUESTS,
        operation=ChangeOperation.UPDATE,
        kind=NotificationKind.LEAVE,
        title="Leave Status Updated",
        audience=lambda ctx, directory, change: is_leave_owner(ctx.user, change.after) and _status_changed(change),
        message=lambda record, directory: f"Your request has been {record.status.value.replace('_', ' ')}.",
        severity=lambda record: INFO if record.status == LeaveStatus.APPROVED else URGENT,
    ),
]


def _operation_of(change: AppliedChange) -> Optional[ChangeOperation]:
    # An update for a record this session never held is a late arrival, not news.
    if change.operation == ChangeOperation.INSERT and change.before is None:
        return ChangeOperation.INSERT
    if change.operation == ChangeOperation.UPDATE and change.before is not None:
        return ChangeOperation.UPDATE
    return None


def evaluate(
    change: AppliedChange,
    context: SessionContext,
    directory: Directory,
    rules: Optional[List[NotificationRule]] = None,
) -> Optional[NotificationRule]:
    """Return the first rule that notifies this session about ``change``, if any."""
    operation = _operation_of(change)
    if operation is None or change.after is None:
        return None
    for rule in rules if rules is not None else RULES:
        if rule.table != change.table or rule.operation != operation:
            continue
        if not rule.audience(context, directory, change):
            continue
        actor = rule.actor(change.after, directory)
        if actor is not None and actor == context.user.id:
            return None
        return rule
    return None


class NotificationCenter:
    """Per-session notification list plus the single transient toast."""

    def __init__(self, context: SessionContext, clock: Optional[Clock] = None) -> None:
        self.context = context
        self._clock = clock or utcnow
        self._items: List[AppNotification] = []
        self._toast: Optional[AppNotification] = None
        self._log = context.log.bind(component="notifications")

    def raise_for(self, rule: NotificationRule, record: Entity, directory: Directory) -> AppNotification:
        return self.push(rule.kind, rule.title, rule.message(record, directory), rule.severity(record))

    def push(
        self,
        kind: NotificationKind,
        title: str,
        message: str,
        severity: NotificationSeverity = INFO,
    ) -> AppNotification:
        notification = AppNotification(
            id=uuid.uuid4().hex,
            title=title,
            message=message,
            type=kind,
            severity=severity,
            timestamp=self._clock(),
        )
        self._items.insert(0, notification)
        self._toast = notification
        self._log.info("notification_raised", kind=kind.value, severity=severity.value, title=title)
        return notification

    def items(self) -> List[AppNotification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.is_read)

    def _index(self, notification_id: str) -> int:
        for idx, n in enumerate(self._items):
            if n.id == notification_id:
                return idx
        raise NotFound("Notification not found")

    def mark_read(self, notification_id: str) -> AppNotification:
        idx = self._index(notification_id)
        self._items[idx] = self._items[idx].model_copy(update={"is_read": True})
        return self._items[idx]

    def mark_all_read(self) -> None:
        self._items = [n.model_copy(update={"is_read": True}) for n in self._items]

    def dismiss(self, notification_id: str) -> None:
        removed = self._items.pop(self._index(notification_id))
        if self._toast is not None and self._toast.id == removed.id:
            self._toast = None

    def active_toast(self) -> Optional[AppNotification]:
        if self._toast is None:
            return None
        age = (self._clock() - self._toast.timestamp).total_seconds()
        if age >= self.context.toast_ttl_seconds:
            self._toast = None
        return self._toast

    def clear(self) -> None:
        self._items.clear()
        self._toast = None
