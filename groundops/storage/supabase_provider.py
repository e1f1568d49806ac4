"""
Supabase Storage provider: document blobs live in one bucket, addressed by
object path. Calls go straight to the Storage REST API over httpx.
"""
from typing import Dict, Optional
from urllib.parse import quote

import httpx

from ..config import Settings, is_store_configured
from ..logging import get_logger
from .provider import StorageError, StorageProvider


logger = get_logger(__name__)


class SupabaseStorageProvider(StorageProvider):
    def __init__(self, cfg: Settings) -> None:
        self.cfg = cfg
        self._bucket = cfg.documents_bucket
        self._http: Optional[httpx.AsyncClient] = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=f"{self.cfg.supabase_url.rstrip('/')}/storage/v1",
                headers={
                    "apikey": self.cfg.supabase_anon_key,
                    "Authorization": f"Bearer {self.cfg.supabase_anon_key}",
                },
                timeout=self.cfg.request_timeout_s,
            )
        return self._http

    def _object(self, key: str) -> str:
        return f"/object/{self._bucket}/{quote(key.lstrip('/'))}"

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        if not is_store_configured(self.cfg):
            raise StorageError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
        try:
            resp = await self._client().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise StorageError(f"Storage unreachable: {e}") from e
        if resp.status_code >= 400:
            raise StorageError(f"Storage error {resp.status_code}: {resp.text[:200]}")
        return resp

    async def copy_in(self, data: bytes, key: str, content_type: str = "application/octet-stream") -> None:
        headers: Dict[str, str] = {"Content-Type": content_type, "x-upsert": "false"}
        await self._send("POST", self._object(key), content=data, headers=headers)

    async def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        try:
            resp = await self._send(
                "POST", f"/object/sign/{self._bucket}/{quote(key.lstrip('/'))}", json={"expiresIn": expires_s}
            )
        except StorageError as e:
            logger.warning("storage_sign_failed", key=key, error=str(e))
            return None
        signed = resp.json().get("signedURL") or resp.json().get("signedUrl")
        if not signed:
            return None
        return f"{self.cfg.supabase_url.rstrip('/')}/storage/v1{signed}"

    async def exists(self, key: str) -> bool:
        try:
            await self._send("HEAD", self._object(key))
        except StorageError:
            return False
        return True

    async def delete(self, key: str) -> None:
        await self._send("DELETE", f"/object/{self._bucket}", json={"prefixes": [key.lstrip("/")]})

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
