"""
Local filesystem storage provider for development.
Saves document blobs to a local directory instead of the hosted bucket.
"""
from typing import Optional
from pathlib import Path
from urllib.parse import quote

from ..logging import get_logger
from .provider import StorageError, StorageProvider


logger = get_logger(__name__)


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider for development."""

    def __init__(self, base_dir: str = "var/storage", public_base_url: str = "http://localhost:8000"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        (self.base_dir / "uploads").mkdir(exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def path_for(self, key: str) -> Path:
        """Get the local filesystem path for a given key."""
        # Remove leading slash and sanitize
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / "uploads" / clean_key

    async def copy_in(self, data: bytes, key: str, content_type: str = "application/octet-stream") -> None:
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(str(e)) from e

    async def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        if self.path_for(key).exists():
            return f"{self.public_base_url}/files/local/{quote(key.lstrip('/'))}"
        return None

    async def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    async def delete(self, key: str) -> None:
        path = self.path_for(key)
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            raise StorageError(str(e)) from e
