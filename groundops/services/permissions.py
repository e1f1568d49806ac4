"""
Permission checks for portal actions.

Read visibility lives in ``visibility``; these predicates decide which
mutations a role is offered.
"""
from ..models.entities import LeaveRequest, Task, User, UserRole


DEPARTMENT_LEAD_ROLES = frozenset({UserRole.MANAGER, UserRole.SUPERVISOR})
SAFETY_REVIEW_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER, UserRole.SAFETY_MANAGER})
MODERATOR_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER})
LEAVE_DECIDER_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER})


def is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN


def is_department_lead(user: User) -> bool:
    return user.role in DEPARTMENT_LEAD_ROLES


def can_create_task(user: User) -> bool:
    return user.role != UserRole.STAFF


def can_modify_task(user: User, task: Task) -> bool:
    """
    Check if user can edit or delete a task.
    - Admin can modify any task
    - Manager/supervisor can modify tasks of their own department
    """
    if is_admin(user):
        return True
    return is_department_lead(user) and task.department == user.department


def can_execute_task(user: User, task: Task) -> bool:
    """
    Check if user can move a task through its statuses.
    - The assignee can
    - Manager/supervisor of the task's department can
    """
    if task.assigned_to == user.name:
        return True
    return is_department_lead(user) and task.department == user.department


def can_review_safety(user: User) -> bool:
    return user.role in SAFETY_REVIEW_ROLES


def can_manage_documents(user: User) -> bool:
    return user.role in MODERATOR_ROLES


def can_moderate_forum(user: User) -> bool:
    return user.role in MODERATOR_ROLES


def can_manage_users(user: User) -> bool:
    return is_admin(user)


def can_broadcast(user: User) -> bool:
    return user.role in SAFETY_REVIEW_ROLES


def is_leave_owner(user: User, request: LeaveRequest) -> bool:
    return bool(user.staff_id) and request.staff_id == user.staff_id
