import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..logging import get_logger
from ..models.entities import Entity
from ..models.tables import TableSpec, get_table


logger = get_logger(__name__)


class ChangeOperation(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """One change-feed notification, with columns already renamed to entity fields."""

    table: str
    operation: ChangeOperation
    record: Dict[str, Any] = field(default_factory=dict)
    old_record: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Optional[str]:
        value = self.record.get("id")
        if value is None:
            value = self.old_record.get("id")
        return str(value) if value is not None else None


ChangeHandler = Callable[[ChangeEvent], None]


@dataclass
class MutationResult:
    ok: bool
    rows: List[Dict[str, Any]] = field(default_factory=list)
    # connectivity | constraint | rejected
    kind: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, rows: Optional[List[Dict[str, Any]]] = None) -> "MutationResult":
        return cls(ok=True, rows=rows or [])

    @classmethod
    def failure(cls, kind: str, error: str) -> "MutationResult":
        return cls(ok=False, kind=kind, error=error)


class MutationOp(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Subscription:
    async def close(self) -> None:
        raise NotImplementedError


class RemoteStore:
    """Narrow interface over the hosted backend. Never caches and never touches a mirror."""

    def is_configured(self) -> bool:
        raise NotImplementedError

    async def fetch_all(self, table: str) -> Optional[List[Entity]]:
        """Every row of ``table`` as entities, or ``None`` when the store is unreachable."""
        raise NotImplementedError

    async def subscribe(self, tables: Iterable[str], handler: ChangeHandler) -> Subscription:
        raise NotImplementedError

    async def mutate(
        self,
        table: str,
        op: MutationOp,
        payload: Optional[Mapping[str, Any]] = None,
        match: Optional[Mapping[str, Any]] = None,
    ) -> MutationResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def rows_to_entities(spec: TableSpec, rows: Iterable[Mapping[str, Any]]) -> List[Entity]:
    entities: List[Entity] = []
    for row in rows:
        try:
            entities.append(spec.to_entity(row))
        except ValueError as e:
            logger.warning("store_row_skipped", table=spec.name, row_id=row.get("id"), error=str(e))
    return entities


def build_event(
    table: str,
    operation: str,
    record: Optional[Mapping[str, Any]] = None,
    old_record: Optional[Mapping[str, Any]] = None,
) -> ChangeEvent:
    spec = get_table(table)
    return ChangeEvent(
        table=table,
        operation=ChangeOperation(operation.lower()),
        record=spec.to_fields(record or {}),
        old_record=spec.to_fields(old_record or {}),
    )


def event_from_payload(table: str, payload: Mapping[str, Any]) -> Optional[ChangeEvent]:
    """Normalize a realtime ``postgres_changes`` payload; ``None`` when it cannot be read."""
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
    operation = data.get("type") or data.get("eventType")
    record = data.get("record") if "record" in data else data.get("new")
    old_record = data.get("old_record") if "old_record" in data else data.get("old")
    try:
        return build_event(data.get("table") or table, str(operation), record, old_record)
    except (KeyError, ValueError) as e:
        logger.warning("change_event_unreadable", table=table, error=str(e))
        return None


def get_remote_store(cfg=None) -> RemoteStore:
    from ..config import settings

    cfg = cfg or settings
    if cfg.store_provider == "local":
        from .local_provider import LocalRemoteStore, default_seed

        return LocalRemoteStore(default_seed(cfg))
    from .supabase_provider import SupabaseRemoteStore

    return SupabaseRemoteStore(cfg)
