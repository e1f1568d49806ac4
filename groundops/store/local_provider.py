"""
In-process remote store for development and tests.
Keeps rows in memory and echoes every mutation back through the change feed,
the way the hosted store's realtime channel does.
"""
import asyncio
import copy
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic_core import to_jsonable_python

from ..logging import get_logger
from ..models.entities import Entity
from ..models.tables import FORUM_POSTS, FORUM_REPLIES, MESSAGES, TABLES, USERS, get_table
from .provider import (
    ChangeHandler,
    MutationOp,
    MutationResult,
    RemoteStore,
    Subscription,
    build_event,
    rows_to_entities,
)


logger = get_logger(__name__)

# (table, column) -> referenced table; enforced on insert/update like the hosted schema
FOREIGN_KEYS: Dict[Tuple[str, str], str] = {
    (MESSAGES, "sender_id"): USERS,
    (MESSAGES, "recipient_id"): USERS,
    (FORUM_REPLIES, "post_id"): FORUM_POSTS,
    (USERS, "manager_id"): USERS,
}
UNIQUE_COLUMNS: Dict[str, Tuple[str, ...]] = {USERS: ("username",)}


class LocalSubscription(Subscription):
    def __init__(self, store: "LocalRemoteStore", entry) -> None:
        self._store = store
        self._entry = entry

    async def close(self) -> None:
        self._store._unsubscribe(self._entry)


class LocalRemoteStore(RemoteStore):
    def __init__(self, seed: Optional[Mapping[str, Iterable[Mapping[str, Any]]]] = None) -> None:
        self._rows: Dict[str, List[Dict[str, Any]]] = {name: [] for name in TABLES}
        self._subscribers: List[Tuple[frozenset, ChangeHandler]] = []
        self.online = True
        for table, rows in (seed or {}).items():
            for row in rows:
                self._rows[table].append(self._stamp(table, dict(row)))

    def is_configured(self) -> bool:
        return True

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._rows[table])

    def _stamp(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        row = to_jsonable_python(row)
        row.setdefault("id", str(uuid.uuid4()))
        if table != USERS:
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return row

    def _ordered(self, table: str) -> List[Dict[str, Any]]:
        spec = get_table(table)
        rows = copy.deepcopy(self._rows[table])
        if not spec.order_column:
            return rows
        rows.sort(key=lambda r: r.get(spec.order_column) or "")
        if spec.descending:
            rows.reverse()
        return rows

    async def fetch_all(self, table: str) -> Optional[List[Entity]]:
        if not self.online:
            logger.warning("store_fetch_failed", table=table, error="offline")
            return None
        rows = self._ordered(table)
        if table == FORUM_POSTS:
            replies = self._ordered(FORUM_REPLIES)
            for row in rows:
                row["forum_replies"] = [r for r in replies if str(r.get("post_id")) == str(row["id"])]
        return rows_to_entities(get_table(table), rows)

    def _matches(self, row: Mapping[str, Any], match: Mapping[str, Any]) -> bool:
        return all(str(row.get(column)) == str(value) for column, value in match.items())

    def _check_constraints(self, table: str, row: Mapping[str, Any], exclude_id: Optional[str] = None) -> Optional[str]:
        for (fk_table, column), target in FOREIGN_KEYS.items():
            if fk_table != table or row.get(column) in (None, ""):
                continue
            if not any(str(r["id"]) == str(row[column]) for r in self._rows[target]):
                return (
                    f'insert or update on table "{table}" violates foreign key constraint '
                    f'"{table}_{column}_fkey"'
                )
        for column in UNIQUE_COLUMNS.get(table, ()):
            if any(
                r.get(column) == row.get(column) and str(r["id"]) != str(exclude_id or row.get("id"))
                for r in self._rows[table]
            ):
                return f'duplicate key value violates unique constraint "{table}_{column}_key"'
        return None

    async def mutate(
        self,
        table: str,
        op: MutationOp,
        payload: Optional[Mapping[str, Any]] = None,
        match: Optional[Mapping[str, Any]] = None,
    ) -> MutationResult:
        if not self.online:
            return MutationResult.failure("connectivity", "Connection error")
        spec = get_table(table)
        body = spec.to_row(payload or {})
        match = to_jsonable_python(spec.to_row(match or {}))

        if op == MutationOp.INSERT:
            row = self._stamp(table, body)
            error = self._check_constraints(table, row)
            if error:
                return MutationResult.failure("constraint", error)
            self._rows[table].append(row)
            self._echo(table, "insert", row, {})
            return MutationResult.success([copy.deepcopy(row)])

        if not match:
            return MutationResult.failure("rejected", f"{op.value} on {table} requires a filter")
        targets = [r for r in self._rows[table] if self._matches(r, match)]
        if op == MutationOp.UPDATE:
            changes = to_jsonable_python(body)
            for row in targets:
                error = self._check_constraints(table, {**row, **changes}, exclude_id=row["id"])
                if error:
                    return MutationResult.failure("constraint", error)
            updated = []
            for row in targets:
                old = copy.deepcopy(row)
                row.update(changes)
                updated.append(copy.deepcopy(row))
                self._echo(table, "update", row, old)
            return MutationResult.success(updated)

        self._rows[table] = [r for r in self._rows[table] if not self._matches(r, match)]
        for row in targets:
            self._echo(table, "delete", {}, row)
        return MutationResult.success(copy.deepcopy(targets))

    def _echo(self, table: str, operation: str, record: Mapping[str, Any], old_record: Mapping[str, Any]) -> None:
        if not self._subscribers:
            return
        loop = asyncio.get_running_loop()
        for tables, handler in list(self._subscribers):
            if table in tables:
                event = build_event(table, operation, copy.deepcopy(dict(record)), copy.deepcopy(dict(old_record)))
                loop.call_soon(handler, event)

    async def subscribe(self, tables: Iterable[str], handler: ChangeHandler) -> Subscription:
        entry = (frozenset(tables), handler)
        self._subscribers.append(entry)
        return LocalSubscription(self, entry)

    def _unsubscribe(self, entry) -> None:
        if entry in self._subscribers:
            self._subscribers.remove(entry)


def default_seed(cfg) -> Dict[str, List[Dict[str, Any]]]:
    """Broadcast account plus one administrator who must set a password on first login."""
    return {
        USERS: [
            {
                "id": cfg.broadcast_user_id,
                "name": "SYSTEM BROADCAST",
                "username": "system_broadcast",
                "password": secrets.token_urlsafe(24),
                "role": "admin",
                "staff_id": "SYS-000",
                "department": "Operations",
                "status": "inactive",
            },
            {
                "id": str(uuid.uuid4()),
                "name": "Portal Admin",
                "username": "admin",
                "role": "admin",
                "staff_id": "ADM-001",
                "department": cfg.departments[0],
                "status": "active",
                "must_change_password": True,
            },
        ]
    }
