"""
Resolver for denormalized user references.

Tasks point at users by display name and leave requests by staff id; every
lookup of that kind goes through here.
"""
from typing import Iterator, List, Optional

from ..models.entities import User
from ..models.tables import USERS
from .mirror import LocalMirror


class Directory:
    def __init__(self, mirror: LocalMirror, broadcast_user_id: Optional[str] = None) -> None:
        self._mirror = mirror
        self._broadcast_user_id = broadcast_user_id

    def users(self, include_broadcast: bool = False) -> List[User]:
        users = self._mirror.items(USERS)
        if include_broadcast or not self._broadcast_user_id:
            return users
        return [u for u in users if u.id != self._broadcast_user_id]

    def _iter(self) -> Iterator[User]:
        return iter(self._mirror.items(USERS))

    def by_id(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        return self._mirror.get(USERS, str(user_id))

    def by_name(self, name: Optional[str]) -> Optional[User]:
        if not name:
            return None
        return next((u for u in self._iter() if u.name == name), None)

    def by_staff_id(self, staff_id: Optional[str]) -> Optional[User]:
        if not staff_id:
            return None
        return next((u for u in self._iter() if u.staff_id == staff_id), None)

    def by_username(self, username: str) -> Optional[User]:
        return next((u for u in self._iter() if u.username == username), None)

    def display_name(self, user_id: Optional[str]) -> Optional[str]:
        user = self.by_id(user_id)
        return user.name if user else None
