from typing import Optional

from ..config import Settings, settings as default_settings


class StorageError(Exception):
    """Blob storage rejected or could not complete a request."""


class StorageProvider:
    async def copy_in(self, data: bytes, key: str, content_type: str = "application/octet-stream") -> None:
        raise NotImplementedError

    async def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def get_storage_provider(cfg: Optional[Settings] = None) -> StorageProvider:
    cfg = cfg or default_settings
    if cfg.storage_provider == "local":
        from .local_provider import LocalStorageProvider

        return LocalStorageProvider(cfg.local_storage_dir, cfg.public_base_url)
    from .supabase_provider import SupabaseStorageProvider

    return SupabaseStorageProvider(cfg)
