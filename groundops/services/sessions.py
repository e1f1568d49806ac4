"""
Login, logout and the registry of live portal sessions.
"""
import asyncio
import datetime as dt
from typing import Dict, List, Optional, Set

from ..auth.security import get_password_hash, needs_rehash, verify_password
from ..config import Settings
from ..errors import ActionFailed, AuthenticationFailed, PermissionDenied
from ..logging import get_logger
from ..models.entities import User
from ..models.tables import USERS
from ..store.provider import MutationOp, RemoteStore
from .chat_hub import ChatHub
from .notifications import Clock, utcnow
from .session import PortalSession


logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid username or password."


class SessionManager:
    def __init__(
        self,
        store: RemoteStore,
        cfg: Settings,
        storage=None,
        analyzer=None,
        hub: Optional[ChatHub] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.cfg = cfg
        self.storage = storage
        self.analyzer = analyzer
        self.hub = hub
        self.clock = clock
        self._sessions: Dict[str, PortalSession] = {}
        self._closing: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    async def _find_user(self, username: str) -> Optional[User]:
        users = await self.store.fetch_all(USERS)
        if users is None:
            raise ActionFailed("Database link not established.", "connectivity")
        return next(
            (u for u in users if u.username == username and u.id != self.cfg.broadcast_user_id),
            None,
        )

    async def _upgrade_password(self, user: User, password: str) -> None:
        result = await self.store.mutate(
            USERS, MutationOp.UPDATE, payload={"password": get_password_hash(password)}, match={"id": user.id}
        )
        if result.ok:
            logger.info("password_rehashed", user_id=user.id)
        else:
            logger.warning("password_rehash_failed", user_id=user.id, error=result.error)

    async def login(self, username: str, password: str) -> PortalSession:
        await self.sweep()
        user = await self._find_user(username.strip())
        if user is None or not verify_password(password, user.password, self.cfg.default_password):
            logger.info("login_failed", username=username)
            raise AuthenticationFailed(INVALID_CREDENTIALS)
        if not user.is_active:
            logger.info("login_refused_inactive", user_id=user.id)
            raise PermissionDenied("This account has been deactivated. Contact an administrator.")
        if needs_rehash(user.password):
            await self._upgrade_password(user, password)

        session = PortalSession(
            user,
            self.store,
            self.cfg,
            storage=self.storage,
            analyzer=self.analyzer,
            hub=self.hub,
            clock=self.clock,
        )
        await session.start()
        self.renew(session)
        self._sessions[session.id] = session
        logger.info("login_succeeded", user_id=user.id, session_id=session.id, must_change_password=user.must_change_password)
        return session

    def _now(self) -> dt.datetime:
        return (self.clock or utcnow)()

    def renew(self, session: PortalSession) -> None:
        """Line the session up with a freshly issued token."""
        session.expires_at = self._now() + dt.timedelta(seconds=self.cfg.jwt_ttl_seconds)

    def _expired(self, session: PortalSession) -> bool:
        return session.expires_at is not None and session.expires_at <= self._now()

    def get(self, session_id: str) -> Optional[PortalSession]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.revoked or session.closed or self._expired(session):
            self._sessions.pop(session_id, None)
            self._spawn_close(session)
            return None
        return session

    def sessions(self) -> List[PortalSession]:
        return list(self._sessions.values())

    async def sweep(self) -> int:
        """Close every session whose token lifetime has passed."""
        expired = [s for s in self._sessions.values() if self._expired(s)]
        for session in expired:
            self._sessions.pop(session.id, None)
            await self._close(session)
        if expired:
            logger.info("sessions_expired", count=len(expired))
        return len(expired)

    async def _close(self, session: PortalSession) -> None:
        await session.close()
        if self.hub is not None:
            await self.hub.drop_session(session.id)

    def _spawn_close(self, session: PortalSession) -> None:
        task = asyncio.get_running_loop().create_task(self._close(session))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def logout(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        await self._close(session)

    async def shutdown(self) -> None:
        sessions, self._sessions = list(self._sessions.values()), {}
        await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)
        logger.info("sessions_closed", count=len(sessions))
