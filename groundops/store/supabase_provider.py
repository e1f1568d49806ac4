"""
Supabase-backed remote store.
Rows go through PostgREST over httpx; the change feed uses the Realtime channel.
"""
from functools import partial
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx
from pydantic_core import to_jsonable_python
from realtime import AsyncRealtimeClient

from ..config import Settings, is_store_configured, settings as default_settings
from ..logging import get_logger
from ..models.entities import Entity
from ..models.tables import FORUM_POSTS, get_table
from .provider import (
    ChangeHandler,
    MutationOp,
    MutationResult,
    RemoteStore,
    Subscription,
    event_from_payload,
    rows_to_entities,
)


logger = get_logger(__name__)

# Postgres error classes the store enforces on writes
CONSTRAINT_CODES = {"23502", "23503", "23505", "23514"}


class RealtimeSubscription(Subscription):
    def __init__(self, client: AsyncRealtimeClient, channel) -> None:
        self._client = client
        self._channel = channel
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._client.remove_channel(self._channel)
        finally:
            await self._client.close()


class SupabaseRemoteStore(RemoteStore):
    def __init__(self, cfg: Optional[Settings] = None) -> None:
        self.cfg = cfg or default_settings
        self._http: Optional[httpx.AsyncClient] = None

    def is_configured(self) -> bool:
        return is_store_configured(self.cfg)

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.cfg.supabase_anon_key,
            "Authorization": f"Bearer {self.cfg.supabase_anon_key}",
        }

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=f"{self.cfg.supabase_url.rstrip('/')}/rest/v1",
                headers=self._headers(),
                timeout=self.cfg.request_timeout_s,
            )
        return self._http

    async def fetch_all(self, table: str) -> Optional[List[Entity]]:
        if not self.is_configured():
            logger.warning("store_not_configured", table=table)
            return None
        spec = get_table(table)
        params: Dict[str, str] = {"select": spec.select}
        if spec.order_column:
            params["order"] = f"{spec.order_column}.{'desc' if spec.descending else 'asc'}"
        if table == FORUM_POSTS:
            params["forum_replies.order"] = "created_at.asc"
        try:
            response = await self._client().get(f"/{table}", params=params)
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("store_fetch_failed", table=table, error=str(e))
            return None
        return rows_to_entities(spec, rows)

    async def mutate(
        self,
        table: str,
        op: MutationOp,
        payload: Optional[Mapping[str, Any]] = None,
        match: Optional[Mapping[str, Any]] = None,
    ) -> MutationResult:
        if not self.is_configured():
            logger.warning("store_not_configured", table=table, op=op.value)
            return MutationResult.failure("connectivity", "Database link not established.")
        spec = get_table(table)
        filters = to_jsonable_python(spec.to_row(match or {}))
        params = {column: f"eq.{value}" for column, value in filters.items()}
        headers = {"Prefer": "return=representation"}
        body = to_jsonable_python(spec.to_row(payload or {}))
        client = self._client()
        try:
            if op == MutationOp.INSERT:
                response = await client.post(f"/{table}", json=[body], headers=headers)
            elif op == MutationOp.UPDATE:
                response = await client.patch(f"/{table}", params=params, json=body, headers=headers)
            else:
                response = await client.delete(f"/{table}", params=params, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return self._classify(table, op, e.response)
        except httpx.TransportError as e:
            logger.warning("store_mutation_unreachable", table=table, op=op.value, error=str(e))
            return MutationResult.failure("connectivity", str(e) or "Connection error")
        rows = response.json() if response.content else []
        return MutationResult.success(rows)

    def _classify(self, table: str, op: MutationOp, response: httpx.Response) -> MutationResult:
        try:
            detail = response.json()
        except ValueError:
            detail = {"message": response.text}
        code = str(detail.get("code") or "")
        message = detail.get("message") or f"HTTP {response.status_code}"
        kind = "constraint" if code in CONSTRAINT_CODES else "rejected"
        logger.warning("store_mutation_failed", table=table, op=op.value, code=code, error=message)
        return MutationResult.failure(kind, message)

    async def subscribe(self, tables: Iterable[str], handler: ChangeHandler) -> Subscription:
        tables = list(tables)
        client = AsyncRealtimeClient(f"{self.cfg.supabase_url.rstrip('/')}/realtime/v1", self.cfg.supabase_anon_key)
        await client.connect()
        channel = client.channel(self.cfg.realtime_channel)
        for table in tables:
            channel.on_postgres_changes("*", schema="public", table=table, callback=partial(self._dispatch, table, handler))
        await channel.subscribe()
        logger.info("change_feed_subscribed", channel=self.cfg.realtime_channel, tables=list(tables))
        return RealtimeSubscription(client, channel)

    @staticmethod
    def _dispatch(table: str, handler: ChangeHandler, payload: Dict[str, Any]) -> None:
        event = event_from_payload(table, payload)
        if event is not None:
            handler(event)

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
