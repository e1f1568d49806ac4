"""
Staff directory administration: accounts, roles, status, passwords and
reporting lines. Everything except changing one's own password is admin only.
"""
import uuid
from typing import Any, Dict, List, Optional

from pydantic import Field
from slugify import slugify

from ..auth.security import MIN_PASSWORD_LENGTH, get_password_hash, verify_password
from ..errors import Conflict, NotFound, PermissionDenied, PortalError
from ..models.entities import PortalModel, User, UserRole, UserStatus
from ..models.tables import USERS
from .hierarchy import get_direct_reports, validate_manager_assignment
from .permissions import can_manage_users
from .session import PortalSession


EDITABLE_FIELDS = ("name", "staff_id", "username", "role", "department", "status")


class OrgNode(PortalModel):
    user: User
    reports: List["OrgNode"] = Field(default_factory=list)


def _require_admin(session: PortalSession) -> None:
    if not can_manage_users(session.user):
        raise PermissionDenied("Only administrators can manage users")


def _target(session: PortalSession, user_id: str) -> User:
    user = session.directory.by_id(user_id)
    if user is None or user.id == session.context.broadcast_user_id:
        raise NotFound("User not found")
    return user


def compute_username(name: str, suffix: Optional[int] = None) -> str:
    parts = name.split()
    last = slugify(parts[-1] if parts else name, lowercase=True, separator="", regex_pattern=r"[^A-Za-z0-9]")
    first_initial = slugify(parts[0][:1] if parts else "", lowercase=True, separator="", regex_pattern=r"[^A-Za-z0-9]")
    base = f"{last}{first_initial}" or "user"
    return f"{base}{suffix}" if suffix else base


def find_available_username(session: PortalSession, name: str) -> str:
    i = 0
    while True:
        candidate = compute_username(name, i or None)
        if session.directory.by_username(candidate) is None:
            return candidate
        i += 1


def _check_username(session: PortalSession, username: str, user_id: Optional[str] = None) -> None:
    existing = session.directory.by_username(username)
    if existing is not None and existing.id != user_id:
        raise Conflict(f"Username '{username}' is already taken")


def _check_staff_id(session: PortalSession, staff_id: str, user_id: Optional[str] = None) -> None:
    existing = session.directory.by_staff_id(staff_id)
    if existing is not None and existing.id != user_id:
        raise Conflict(f"Staff id '{staff_id}' is already assigned")


def validate_new_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise PortalError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


async def create_user(
    session: PortalSession,
    *,
    name: str,
    staff_id: str,
    username: Optional[str] = None,
    role: UserRole = UserRole.STAFF,
    department: Optional[str] = None,
    password: Optional[str] = None,
) -> User:
    """New accounts start active, with the default password and a forced change on first login."""
    _require_admin(session)
    name = name.strip()
    if not name or not staff_id.strip():
        raise PortalError("Name and staff id are required")
    username = (username or "").strip() or find_available_username(session, name)
    _check_username(session, username)
    _check_staff_id(session, staff_id)
    user = User(
        id=str(uuid.uuid4()),
        name=name,
        username=username,
        staff_id=staff_id.strip(),
        role=role,
        department=department or session.cfg.departments[0],
        status=UserStatus.ACTIVE,
        must_change_password=True,
    )
    secret = get_password_hash(password or session.cfg.default_password)
    created = await session.insert(USERS, user, extra={"password": secret})
    session.log.info("user_created", target_user_id=created.id, role=role.value)
    return created


async def update_user(session: PortalSession, user_id: str, changes: Dict[str, Any]) -> User:
    _require_admin(session)
    target = _target(session, user_id)
    patch = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
    if "username" in patch:
        _check_username(session, patch["username"], target.id)
    if "staff_id" in patch:
        _check_staff_id(session, patch["staff_id"], target.id)
    if target.id == session.user.id and patch.get("role", UserRole.ADMIN) != UserRole.ADMIN:
        raise PermissionDenied("You cannot remove your own administrator role")
    if target.id == session.user.id and patch.get("status", UserStatus.ACTIVE) != UserStatus.ACTIVE:
        raise PermissionDenied("You cannot deactivate your own account")
    if patch.get("role") == UserRole.STAFF and get_direct_reports(target.id, session.directory):
        raise PermissionDenied("Reassign this user's direct reports before making them staff")
    if not patch:
        return target
    return await session.update(USERS, target.id, patch)


async def set_user_status(session: PortalSession, user_id: str, status: UserStatus) -> User:
    return await update_user(session, user_id, {"status": status})


async def toggle_user_status(session: PortalSession, user_id: str) -> User:
    target = _target(session, user_id)
    status = UserStatus.INACTIVE if target.is_active else UserStatus.ACTIVE
    return await set_user_status(session, user_id, status)


async def reset_password(session: PortalSession, user_id: str, new_password: str) -> User:
    _require_admin(session)
    target = _target(session, user_id)
    validate_new_password(new_password)
    session.log.info("user_password_reset", target_user_id=target.id)
    return await session.update(
        USERS,
        target.id,
        {"must_change_password": True},
        extra={"password": get_password_hash(new_password)},
    )


async def delete_user(session: PortalSession, user_id: str) -> None:
    _require_admin(session)
    target = _target(session, user_id)
    if target.id == session.user.id:
        raise PermissionDenied("You cannot delete your own account")
    await session.delete(USERS, target.id)
    session.log.info("user_deleted", target_user_id=target.id)


async def assign_manager(session: PortalSession, user_id: str, manager_id: Optional[str]) -> User:
    _require_admin(session)
    manager_id = manager_id or None
    validate_manager_assignment(user_id, manager_id, session.directory)
    return await session.update(USERS, user_id, {"manager_id": manager_id})


async def change_own_password(session: PortalSession, new_password: str) -> User:
    """Set a new password for the session's own user and lift the forced change gate."""
    validate_new_password(new_password)
    current = session.directory.by_id(session.user.id) or session.user
    if verify_password(new_password, current.password, session.cfg.default_password):
        raise PortalError("New password must not match the previous password")
    updated = await session.update(
        USERS,
        session.user.id,
        {"must_change_password": False},
        extra={"password": get_password_hash(new_password)},
    )
    session.context.user = updated
    session.log.info("password_changed")
    return updated


def org_chart(session: PortalSession) -> List[OrgNode]:
    """Reporting tree; users without a (known) manager are roots."""
    users = session.directory.users()
    known = {u.id for u in users}

    def build(user: User, seen: frozenset) -> OrgNode:
        children = [
            build(u, seen | {u.id})
            for u in users
            if u.manager_id == user.id and u.id not in seen
        ]
        return OrgNode(user=user, reports=children)

    return [build(u, frozenset({u.id})) for u in users if not u.manager_id or u.manager_id not in known]
