"""
One logged-in portal session.

Owns the session's mirror, visibility engine and notification center, and runs
every change-feed event through the same pipeline:

    event -> mirror merge -> visibility delta -> notification

Writes are optimistic: the mirror changes first, the store second, and a
failed store call reverts the optimistic change before ``ActionFailed`` is
raised. Feed events merged while the call was in flight survive the revert.
"""
import asyncio
import datetime as dt
from typing import Any, Dict, List, Mapping, Optional, Set

from pydantic import ValidationError

from ..config import Settings
from ..errors import ActionFailed, NotFound
from ..models.entities import Entity, User
from ..models.tables import MIRRORED_TABLES, SUBSCRIBED_TABLES, USERS, get_table
from ..store.provider import ChangeEvent, MutationOp, MutationResult, RemoteStore, Subscription, build_event
from .chat_hub import ChatHub
from .context import SessionContext
from .directory import Directory
from .mirror import AppliedChange, LocalMirror
from .notifications import Clock, NotificationCenter, evaluate
from .visibility import VisibilityEngine


FAILURE_MESSAGES = {
    "connectivity": "The server could not be reached; your change was not saved.",
    "constraint": "The change conflicts with existing records and was not saved.",
}


class PortalSession:
    def __init__(
        self,
        user: User,
        store: RemoteStore,
        cfg: Settings,
        storage=None,
        analyzer=None,
        hub: Optional[ChatHub] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.storage = storage
        self.analyzer = analyzer
        self.hub = hub
        self.context = SessionContext.create(user, cfg)
        self.mirror = LocalMirror(self.context)
        self.directory = Directory(self.mirror, cfg.broadcast_user_id)
        self.visibility = VisibilityEngine(self.context, self.mirror, self.directory)
        self.notifications = NotificationCenter(self.context, clock)
        self.revoked = False
        self.closed = False
        # set by the session manager from the token lifetime
        self.expires_at: Optional[dt.datetime] = None
        self._subscription: Optional[Subscription] = None
        self._tasks: Set[asyncio.Task] = set()
        self.log = self.context.log

    @property
    def id(self) -> str:
        return self.context.session_id

    @property
    def user(self) -> User:
        return self.context.user

    # Lifecycle

    async def start(self) -> None:
        await self.resync()
        self._subscription = await self.store.subscribe(SUBSCRIBED_TABLES, self.handle_event)
        self.log.info("session_started", tables=len(SUBSCRIBED_TABLES))

    async def resync(self) -> None:
        """Full fetch of every table; tables the store cannot serve keep their current contents."""
        results = await asyncio.gather(*(self.store.fetch_all(table) for table in MIRRORED_TABLES))
        for table, records in zip(MIRRORED_TABLES, results):
            if records is None:
                self.log.warning("resync_skipped", table=table)
                continue
            self.mirror.replace_all(table, records)
        me = self.directory.by_id(self.user.id)
        if me is not None:
            self.context.user = me

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._subscription is not None:
            subscription, self._subscription = self._subscription, None
            await subscription.close()
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.mirror.clear()
        self.notifications.clear()
        self.log.info("session_closed", revoked=self.revoked)

    # Change feed

    def handle_event(self, event: ChangeEvent) -> Optional[AppliedChange]:
        if self.closed:
            return None
        change = self.mirror.apply_event(event)
        if change is None:
            return None
        if change.table == USERS:
            self._track_own_user(change)
            if self.revoked:
                return change
        delta = self.visibility.delta(change)
        if delta is not None:
            self._publish("sync", {"table": change.table, "operation": change.operation.value, "delta": delta})
        if delta not in ("added", "changed"):
            return change
        rule = evaluate(change, self.context, self.directory)
        if rule is not None:
            notification = self.notifications.raise_for(rule, change.after, self.directory)
            self._publish("notification", notification.model_dump(mode="json", by_alias=True))
        return change

    def _track_own_user(self, change: AppliedChange) -> None:
        before, after = change.before, change.after
        if after is not None and after.id == self.user.id:
            if not after.is_active:
                self._revoke("deactivated")
            else:
                self.context.user = after
        elif after is None and before is not None and before.id == self.user.id:
            self._revoke("deleted")

    def _revoke(self, reason: str) -> None:
        if self.revoked:
            return
        self.revoked = True
        self.log.warning("session_revoked", reason=reason)
        self._publish("revoked", {"reason": reason})
        self._spawn(self.close())

    def _publish(self, event: str, payload: Any) -> None:
        if self.hub is None:
            return
        self._spawn(self.hub.send_to_session(self.id, event, payload))

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Optimistic writes

    def _fail(self, table: str, result: MutationResult) -> ActionFailed:
        self.log.warning("action_failed", table=table, kind=result.kind, error=result.error)
        message = FAILURE_MESSAGES.get(result.kind, f"The server rejected the change: {result.error}")
        return ActionFailed(message, result.kind)

    def _settle(self, table: str, rows) -> None:
        # Fill server-assigned columns (created_at) without waiting for the echo.
        for row in rows or []:
            self.mirror.apply_event(build_event(table, "insert", row))

    async def insert(self, table: str, record: Entity, extra: Optional[Mapping[str, Any]] = None) -> Entity:
        """Insert ``record``; ``extra`` carries columns the entity never exposes (password hashes)."""
        snapshot = self.mirror.upsert(table, record)
        payload = {**record.model_dump(exclude_none=True), **(extra or {})}
        result = await self.store.mutate(table, MutationOp.INSERT, payload=payload)
        if not result.ok:
            self.mirror.restore(snapshot)
            raise self._fail(table, result)
        self._settle(table, result.rows)
        if get_table(table).is_child:
            return record
        return self.mirror.get(table, record.id) or record

    async def update(
        self,
        table: str,
        key: str,
        changes: Dict[str, Any],
        extra: Optional[Mapping[str, Any]] = None,
    ) -> Entity:
        existing = self.mirror.get(table, key)
        if existing is None:
            raise NotFound("Record not found")
        spec = get_table(table)
        try:
            updated = spec.model.model_validate({**dict(existing), **changes})
        except ValidationError as e:
            raise ActionFailed(f"Invalid value: {e.errors(include_url=False)[0]['msg']}", "rejected")
        snapshot = self.mirror.upsert(table, updated)
        result = await self.store.mutate(table, MutationOp.UPDATE, payload={**changes, **(extra or {})}, match={"id": key})
        if not result.ok:
            self.mirror.restore(snapshot)
            raise self._fail(table, result)
        return self.mirror.get(table, key) or updated

    async def update_many(
        self,
        table: str,
        keys: List[str],
        changes: Dict[str, Any],
        match: Mapping[str, Any],
    ) -> int:
        """Apply ``changes`` to every row matching ``match``; ``keys`` are the mirror rows it covers."""
        spec = get_table(table)
        snapshots = []
        for key in keys:
            existing = self.mirror.get(table, key)
            if existing is not None:
                snapshots.append(self.mirror.upsert(table, spec.model.model_validate({**dict(existing), **changes})))
        result = await self.store.mutate(table, MutationOp.UPDATE, payload=changes, match=match)
        if not result.ok:
            for snapshot in reversed(snapshots):
                self.mirror.restore(snapshot)
            raise self._fail(table, result)
        return len(snapshots)

    async def delete(self, table: str, key: str) -> Entity:
        snapshot = self.mirror.remove(table, key)
        if snapshot.record is None:
            raise NotFound("Record not found")
        result = await self.store.mutate(table, MutationOp.DELETE, match={"id": key})
        if not result.ok:
            self.mirror.restore(snapshot)
            raise self._fail(table, result)
        return snapshot.record
