import uuid
from typing import Any, Dict, Optional

from ..errors import NotFound, PermissionDenied
from ..models.entities import Task, TaskPriority, TaskStatus
from ..models.tables import TASKS
from .permissions import can_create_task, can_execute_task, can_modify_task, is_admin
from .session import PortalSession
from .visibility import can_view_task


EDITABLE_FIELDS = ("title", "description", "assigned_to", "priority", "location", "department")


def get_visible_task(session: PortalSession, task_id: str) -> Task:
    task = session.mirror.get(TASKS, task_id)
    if task is None or not can_view_task(session.user, task):
        raise NotFound("Task not found")
    return task


def _check_department(session: PortalSession, department: str) -> None:
    if not is_admin(session.user) and department != session.user.department:
        raise PermissionDenied("Tasks can only be assigned within your own department")


async def create_task(
    session: PortalSession,
    *,
    title: str,
    description: str = "",
    assigned_to: Optional[str] = None,
    priority: TaskPriority = TaskPriority.MEDIUM,
    location: Optional[str] = None,
    department: Optional[str] = None,
) -> Task:
    user = session.user
    if not can_create_task(user):
        raise PermissionDenied("Not allowed to create tasks")
    department = department or user.department
    _check_department(session, department)
    task = Task(
        id=str(uuid.uuid4()),
        title=title,
        description=description or "",
        assigned_to=assigned_to or "Unassigned",
        status=TaskStatus.PENDING,
        priority=priority,
        location=location or "N/A",
        department=department,
    )
    session.log.info("task_create", task_id=task.id, department=department)
    return await session.insert(TASKS, task)


async def update_task(session: PortalSession, task_id: str, changes: Dict[str, Any]) -> Task:
    task = get_visible_task(session, task_id)
    if not can_modify_task(session.user, task):
        raise PermissionDenied("Not allowed to edit this task")
    patch = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
    if "department" in patch:
        _check_department(session, patch["department"])
    if not patch:
        return task
    return await session.update(TASKS, task_id, patch)


async def set_task_status(session: PortalSession, task_id: str, status: TaskStatus) -> Task:
    task = get_visible_task(session, task_id)
    if not can_execute_task(session.user, task):
        raise PermissionDenied("Not allowed to update this task")
    if task.status == status:
        return task
    return await session.update(TASKS, task_id, {"status": status})


async def delete_task(session: PortalSession, task_id: str) -> None:
    task = get_visible_task(session, task_id)
    if not can_modify_task(session.user, task):
        raise PermissionDenied("Not allowed to delete this task")
    await session.delete(TASKS, task_id)
    session.log.info("task_deleted", task_id=task_id)
