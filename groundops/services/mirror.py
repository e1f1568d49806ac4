"""
Local mirror: the session's in-memory copy of every collection.

Change-feed events and optimistic writes both land here. Merges are idempotent
and tolerate out-of-order delivery within a table; bad events are dropped and
logged, never raised.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from ..models.entities import Entity
from ..models.tables import MIRRORED_TABLES, TableSpec, get_table
from ..store.provider import ChangeEvent, ChangeOperation
from .context import SessionContext


@dataclass(frozen=True)
class AppliedChange:
    table: str
    operation: ChangeOperation
    before: Optional[Entity]
    after: Optional[Entity]
    # for child tables: the parent record after the merge
    parent: Optional[Entity] = None


@dataclass(frozen=True)
class Snapshot:
    table: str
    key: str
    # before the optimistic write; None when it inserted
    record: Optional[Entity]
    index: int
    # what the write put in the mirror; None when it removed
    applied: Optional[Entity] = None
    # child writes: ``record``/``applied`` live in this field of the ``key`` row
    parent_field: Optional[str] = None


class LocalMirror:
    def __init__(self, context: SessionContext, tables: Iterable[str] = MIRRORED_TABLES) -> None:
        self.context = context
        self._collections: Dict[str, List[Entity]] = {name: [] for name in tables}
        # updates that arrived before their insert and were too partial to stand alone
        self._parked: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._log = context.log.bind(component="mirror")

    # Reads

    def items(self, table: str) -> List[Entity]:
        return list(self._collections[table])

    def get(self, table: str, key: str) -> Optional[Entity]:
        idx = self._index(table, key)
        return self._collections[table][idx] if idx is not None else None

    def _index(self, table: str, key: str) -> Optional[int]:
        for idx, record in enumerate(self._collections[table]):
            if record.id == key:
                return idx
        return None

    def _insert_at(self, spec: TableSpec, records: List[Entity], record: Entity) -> None:
        # Keep the fetch order: newest first for descending tables.
        if spec.order_column and spec.descending:
            records.insert(0, record)
        else:
            records.append(record)

    # Bulk

    def replace_all(self, table: str, records: Iterable[Entity]) -> None:
        self._collections[table] = list(records)
        for parked_key in [k for k in self._parked if k[0] == table]:
            del self._parked[parked_key]

    def clear(self) -> None:
        for table in self._collections:
            self._collections[table] = []
        self._parked.clear()

    # Change feed

    def apply_event(self, event: ChangeEvent) -> Optional[AppliedChange]:
        try:
            spec = get_table(event.table)
        except KeyError:
            self._log.warning("mirror_event_dropped", table=event.table, reason="unknown_table")
            return None
        key = event.key
        if key is None:
            self._log.warning("mirror_event_dropped", table=event.table, reason="missing_primary_key")
            return None
        try:
            if spec.is_child:
                return self._apply_child(spec, event, key)
            if event.operation == ChangeOperation.INSERT:
                return self._insert(spec, key, event.record)
            if event.operation == ChangeOperation.UPDATE:
                return self._update(spec, key, event.record)
            return self._delete(spec, key)
        except ValidationError as e:
            self._log.warning(
                "mirror_event_dropped",
                table=event.table,
                key=key,
                reason="invalid_fields",
                error=e.errors(include_url=False),
            )
            return None

    def _insert(self, spec: TableSpec, key: str, fields: Dict[str, Any]) -> Optional[AppliedChange]:
        records = self._collections[spec.name]
        idx = self._index(spec.name, key)
        if idx is not None:
            # Duplicate insert (optimistic write + echo, or insert after update):
            # fields already held win, the insert only fills the gaps.
            existing = records[idx]
            held = {name: getattr(existing, name) for name in existing.model_fields_set}
            merged = spec.model.model_validate({**fields, **held})
            if merged.model_dump() == existing.model_dump():
                return None
            records[idx] = merged
            return AppliedChange(spec.name, ChangeOperation.UPDATE, existing, merged)
        parked = self._parked.pop((spec.name, key), {})
        record = spec.model.model_validate({**fields, **parked})
        self._insert_at(spec, records, record)
        return AppliedChange(spec.name, ChangeOperation.INSERT, None, record)

    def _update(self, spec: TableSpec, key: str, fields: Dict[str, Any]) -> Optional[AppliedChange]:
        records = self._collections[spec.name]
        idx = self._index(spec.name, key)
        if idx is None:
            pending = {**self._parked.get((spec.name, key), {}), **fields}
            try:
                record = spec.model.model_validate(pending)
            except ValidationError:
                self._parked[(spec.name, key)] = pending
                self._log.info("mirror_update_parked", table=spec.name, key=key)
                return None
            self._parked.pop((spec.name, key), None)
            self._insert_at(spec, records, record)
            return AppliedChange(spec.name, ChangeOperation.UPDATE, None, record)
        existing = records[idx]
        merged = spec.model.model_validate({**dict(existing), **fields})
        records[idx] = merged
        return AppliedChange(spec.name, ChangeOperation.UPDATE, existing, merged)

    def _delete(self, spec: TableSpec, key: str) -> Optional[AppliedChange]:
        self._parked.pop((spec.name, key), None)
        idx = self._index(spec.name, key)
        if idx is None:
            return None
        removed = self._collections[spec.name].pop(idx)
        return AppliedChange(spec.name, ChangeOperation.DELETE, removed, None)

    def _find_parent(self, spec: TableSpec, event: ChangeEvent, key: str) -> Optional[int]:
        parent_id = event.record.get(spec.parent_key) or event.old_record.get(spec.parent_key)
        parents = self._collections[spec.parent]
        if parent_id is not None:
            return self._index(spec.parent, str(parent_id))
        # delete payloads may only carry the child's id
        for idx, parent in enumerate(parents):
            if any(child.id == key for child in getattr(parent, spec.parent_field)):
                return idx
        return None

    def _apply_child(self, spec: TableSpec, event: ChangeEvent, key: str) -> Optional[AppliedChange]:
        pidx = self._find_parent(spec, event, key)
        if pidx is None:
            self._log.warning("mirror_event_dropped", table=spec.name, key=key, reason="parent_not_loaded")
            return None
        parents = self._collections[spec.parent]
        parent = parents[pidx]
        children = list(getattr(parent, spec.parent_field))
        cidx = next((i for i, child in enumerate(children) if child.id == key), None)
        before = children[cidx] if cidx is not None else None

        if event.operation == ChangeOperation.DELETE:
            if cidx is None:
                return None
            children.pop(cidx)
            after = None
        elif cidx is None:
            after = spec.model.model_validate(event.record)
            children.append(after)
        else:
            if event.operation == ChangeOperation.INSERT:
                return None
            after = spec.model.model_validate({**dict(before), **event.record})
            children[cidx] = after

        parents[pidx] = parent.model_copy(update={spec.parent_field: children})
        return AppliedChange(spec.name, event.operation, before, after, parent=parents[pidx])

    # Optimistic writes (rollback is the caller's job, via ``restore``)

    def upsert(self, table: str, record: Entity) -> Snapshot:
        spec = get_table(table)
        if spec.is_child:
            parent_id = str(getattr(record, spec.parent_key))
            idx = self._index(spec.parent, parent_id)
            if idx is None:
                return Snapshot(spec.parent, parent_id, None, 0, record, spec.parent_field)
            parent = self._collections[spec.parent][idx]
            children = list(getattr(parent, spec.parent_field))
            previous = next((c for c in children if c.id == record.id), None)
            children = [c for c in children if c.id != record.id]
            children.append(record)
            self._collections[spec.parent][idx] = parent.model_copy(update={spec.parent_field: children})
            return Snapshot(spec.parent, parent_id, previous, idx, record, spec.parent_field)
        snapshot = self._snapshot(table, record.id, record)
        records = self._collections[table]
        if snapshot.record is not None:
            records[snapshot.index] = record
        else:
            self._insert_at(spec, records, record)
        return snapshot

    def remove(self, table: str, key: str) -> Snapshot:
        snapshot = self._snapshot(table, key, None)
        if snapshot.record is not None:
            self._collections[table].pop(snapshot.index)
        return snapshot

    def restore(self, snapshot: Snapshot) -> None:
        """Undo one optimistic write.

        Only what the write itself changed is put back, and only where the
        mirror still holds the optimistic value; feed events merged while the
        write was in flight are kept.
        """
        if snapshot.parent_field is not None:
            self._restore_child(snapshot)
        else:
            records = self._collections[snapshot.table]
            idx = self._index(snapshot.table, snapshot.key)
            current = records[idx] if idx is not None else None
            if snapshot.record is None:
                if current is not None and current == snapshot.applied:
                    records.pop(idx)
            elif snapshot.applied is None:
                if current is None:
                    records.insert(min(snapshot.index, len(records)), snapshot.record)
            elif current is not None:
                reverted = _revert(snapshot.record, snapshot.applied, current)
                if reverted is not None:
                    records[idx] = reverted
        self._log.info("mirror_rolled_back", table=snapshot.table, key=snapshot.key)

    def _restore_child(self, snapshot: Snapshot) -> None:
        parents = self._collections[snapshot.table]
        pidx = self._index(snapshot.table, snapshot.key)
        if pidx is None:
            return
        parent = parents[pidx]
        children = list(getattr(parent, snapshot.parent_field))
        cidx = next((i for i, c in enumerate(children) if c.id == snapshot.applied.id), None)
        if cidx is None:
            return
        current = children[cidx]
        if snapshot.record is None:
            if current != snapshot.applied:
                return
            children.pop(cidx)
        else:
            reverted = _revert(snapshot.record, snapshot.applied, current)
            if reverted is None:
                return
            children[cidx] = reverted
        parents[pidx] = parent.model_copy(update={snapshot.parent_field: children})

    def _snapshot(self, table: str, key: str, applied: Optional[Entity]) -> Snapshot:
        idx = self._index(table, key)
        if idx is None:
            return Snapshot(table, key, None, 0, applied)
        return Snapshot(table, key, self._collections[table][idx], idx, applied)


def _revert(before: Entity, applied: Entity, current: Entity) -> Optional[Entity]:
    """Fields the write changed go back to ``before`` unless something newer replaced them."""
    changes = {}
    for name in type(applied).model_fields:
        old, new = getattr(before, name), getattr(applied, name)
        if old != new and getattr(current, name) == new:
            changes[name] = old
    if not changes:
        return None
    return current.model_copy(update=changes)
