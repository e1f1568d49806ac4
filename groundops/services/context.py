import uuid
from dataclasses import dataclass, field
from typing import Any

from ..config import Settings
from ..logging import get_logger
from ..models.entities import User


@dataclass
class SessionContext:
    """Everything that is scoped to one logged-in session.

    Passed explicitly to the mirror, the visibility engine and the notification
    center so several sessions can live in one process side by side.
    """

    user: User
    broadcast_user_id: str
    toast_ttl_seconds: float
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    log: Any = None

    def __post_init__(self) -> None:
        if self.log is None:
            self.log = get_logger("groundops.session", session_id=self.session_id, user_id=self.user.id)

    @classmethod
    def create(cls, user: User, cfg: Settings) -> "SessionContext":
        return cls(
            user=user,
            broadcast_user_id=cfg.broadcast_user_id,
            toast_ttl_seconds=cfg.toast_ttl_seconds,
        )
