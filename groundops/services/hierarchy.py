from __future__ import annotations

from typing import List, Optional, Set

from ..errors import NotFound, PermissionDenied
from ..models.entities import UserRole
from .directory import Directory


def get_manager_chain(user_id: str, directory: Directory, max_depth: int = 8) -> List[str]:
    """Return list of manager user_ids from direct to top for the given user."""
    chain: List[str] = []
    visited: Set[str] = set()
    current = directory.by_id(user_id)
    depth = 0
    while current and current.manager_id and depth < max_depth:
        mid = current.manager_id
        if mid in visited:
            break
        chain.append(mid)
        visited.add(mid)
        depth += 1
        current = directory.by_id(mid)
    return chain


def get_direct_reports(manager_id: str, directory: Directory) -> List[str]:
    return [u.id for u in directory.users() if u.manager_id == manager_id]


def is_in_chain(manager_id: str, user_id: str, directory: Directory) -> bool:
    return str(manager_id) in set(get_manager_chain(user_id, directory))


def validate_manager_assignment(user_id: str, manager_id: Optional[str], directory: Directory) -> None:
    """A manager must be another, non-staff user, and must not report to the user."""
    if directory.by_id(user_id) is None:
        raise NotFound("User not found")
    if not manager_id:
        return
    manager = directory.by_id(manager_id)
    if manager is None:
        raise NotFound("Manager not found")
    if manager.id == user_id:
        raise PermissionDenied("A user cannot manage themselves")
    if manager.role == UserRole.STAFF:
        raise PermissionDenied("Staff members cannot be assigned as managers")
    if is_in_chain(user_id, manager.id, directory):
        raise PermissionDenied("Assignment would create a reporting cycle")
