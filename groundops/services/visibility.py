"""
Role-scoped visibility over the local mirror.

Every view reads through ``VisibilityEngine``; nothing renders a raw mirror
collection. Role scopes are closed tables keyed by ``UserRole`` so a new role
fails loudly instead of silently seeing nothing.
"""
from typing import Dict, List, Optional

from ..models.entities import (
    ChatMessage,
    DocFile,
    Entity,
    ForumPost,
    LeaveRequest,
    LeaveStatus,
    SafetyReport,
    Task,
    TaskStatus,
    User,
    UserRole,
)
from ..models.tables import DOCUMENTS, FORUM_POSTS, LEAVE_REQUESTS, MESSAGES, SAFETY_REPORTS, TASKS
from .context import SessionContext
from .directory import Directory
from .mirror import AppliedChange, LocalMirror
from .permissions import is_leave_owner


# scope names: all | department | own
TASK_SCOPE: Dict[UserRole, str] = {
    UserRole.ADMIN: "all",
    UserRole.MANAGER: "department",
    UserRole.SUPERVISOR: "department",
    UserRole.SAFETY_MANAGER: "own",
    UserRole.STAFF: "own",
}

LEAVE_SCOPE: Dict[UserRole, str] = {
    UserRole.ADMIN: "all",
    UserRole.MANAGER: "department",
    UserRole.SUPERVISOR: "own",
    UserRole.SAFETY_MANAGER: "own",
    UserRole.STAFF: "own",
}


def can_view_task(user: User, task: Task) -> bool:
    scope = TASK_SCOPE[user.role]
    if scope == "all":
        return True
    if task.assigned_to == user.name:
        return True
    return scope == "department" and task.department == user.department


def can_view_leave(user: User, request: LeaveRequest, directory: Directory) -> bool:
    scope = LEAVE_SCOPE[user.role]
    if scope == "all" or is_leave_owner(user, request):
        return True
    if scope != "department":
        return False
    requester = directory.by_staff_id(request.staff_id)
    if requester is None:
        return False
    return requester.department == user.department or requester.manager_id == user.id


def can_view_message(user: User, message: ChatMessage, broadcast_user_id: str) -> bool:
    return (
        message.sender_id == user.id
        or message.recipient_id == user.id
        or message.recipient_id == broadcast_user_id
    )


def can_view_report(user: User, report: SafetyReport) -> bool:
    # Report contents are open to every role; only status changes are restricted.
    return True


class VisibilityEngine:
    def __init__(self, context: SessionContext, mirror: LocalMirror, directory: Directory) -> None:
        self.context = context
        self.mirror = mirror
        self.directory = directory

    @property
    def user(self) -> User:
        return self.context.user

    def tasks(self, status: Optional[TaskStatus] = None) -> List[Task]:
        return [
            t
            for t in self.mirror.items(TASKS)
            if can_view_task(self.user, t) and (status is None or t.status == status)
        ]

    def safety_reports(self) -> List[SafetyReport]:
        return [r for r in self.mirror.items(SAFETY_REPORTS) if can_view_report(self.user, r)]

    def leave_requests(self, status: Optional[LeaveStatus] = None) -> List[LeaveRequest]:
        return [
            r
            for r in self.mirror.items(LEAVE_REQUESTS)
            if can_view_leave(self.user, r, self.directory) and (status is None or r.status == status)
        ]

    def own_leave_requests(self) -> List[LeaveRequest]:
        return [r for r in self.mirror.items(LEAVE_REQUESTS) if is_leave_owner(self.user, r)]

    def messages(self) -> List[ChatMessage]:
        broadcast_id = self.context.broadcast_user_id
        return [m for m in self.mirror.items(MESSAGES) if can_view_message(self.user, m, broadcast_id)]

    def conversation(self, contact_id: str) -> List[ChatMessage]:
        me = self.user.id
        return [
            m
            for m in self.messages()
            if (m.sender_id == me and m.recipient_id == contact_id)
            or (m.sender_id == contact_id and m.recipient_id == me)
        ]

    def broadcasts(self) -> List[ChatMessage]:
        return [m for m in self.messages() if m.recipient_id == self.context.broadcast_user_id]

    def forum_posts(self) -> List[ForumPost]:
        return self.mirror.items(FORUM_POSTS)

    def documents(self) -> List[DocFile]:
        return self.mirror.items(DOCUMENTS)

    def users(self) -> List[User]:
        return self.directory.users()

    def is_visible(self, table: str, record: Entity) -> bool:
        if table == TASKS:
            return can_view_task(self.user, record)
        if table == LEAVE_REQUESTS:
            return can_view_leave(self.user, record, self.directory)
        if table == MESSAGES:
            return can_view_message(self.user, record, self.context.broadcast_user_id)
        if table == SAFETY_REPORTS:
            return can_view_report(self.user, record)
        return True

    def delta(self, change: AppliedChange) -> Optional[str]:
        """How an applied change moved a record in or out of this session's view."""
        was = change.before is not None and self.is_visible(change.table, change.before)
        now = change.after is not None and self.is_visible(change.table, change.after)
        if was and now:
            return "changed"
        if now:
            return "added"
        if was:
            return "removed"
        return None

    def reporter_name(self, report: SafetyReport) -> Optional[str]:
        if report.is_anonymous:
            return None
        return self.directory.display_name(report.reporter_id)
