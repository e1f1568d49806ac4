"""
Manuals and documents: blob in storage, metadata row in ``documents``.
"""
import os
import time
import uuid
from typing import Optional

from slugify import slugify

from ..errors import ActionFailed, NotFound, PermissionDenied, PortalError
from ..models.entities import DocFile
from ..models.tables import DOCUMENTS
from ..storage.provider import StorageError
from .permissions import can_manage_documents
from .session import PortalSession


EXTENSION_TYPES = {"pdf": "PDF", "doc": "DOC", "docx": "DOC", "xls": "XLS", "xlsx": "XLS"}

DOWNLOAD_URL_TTL_S = 3600


def canonical_key(display_name: str, original_name: str) -> str:
    ext = os.path.splitext(original_name)[1]
    return f"{int(time.time() * 1000)}-{slugify(display_name) or 'document'}{ext.lower()}"


def infer_type(original_name: str) -> str:
    ext = os.path.splitext(original_name)[1].lstrip(".").lower()
    return EXTENSION_TYPES.get(ext, "PDF")


def _require_storage(session: PortalSession):
    if session.storage is None:
        raise ActionFailed("Document storage is not configured", "connectivity")
    return session.storage


async def upload_document(
    session: PortalSession,
    *,
    data: bytes,
    filename: str,
    name: Optional[str] = None,
    type: Optional[str] = None,
    content_type: str = "application/octet-stream",
) -> DocFile:
    """Upload the blob, then insert its metadata; the blob is removed again if the insert fails."""
    if not can_manage_documents(session.user):
        raise PermissionDenied("Only managers can upload documents")
    if not data:
        raise PortalError("The uploaded file is empty")
    storage = _require_storage(session)
    display_name = (name or os.path.splitext(filename)[0]).strip()
    if not display_name:
        raise PortalError("Document name is required")
    key = canonical_key(display_name, filename)
    try:
        await storage.copy_in(data, key, content_type)
    except StorageError as e:
        session.log.warning("document_upload_failed", key=key, error=str(e))
        raise ActionFailed("Failed to upload file. Please try again.", "connectivity") from e

    doc = DocFile(
        id=str(uuid.uuid4()),
        name=display_name,
        type=type or infer_type(filename),
        uploaded_by=session.user.name,
        file_path=key,
        file_size=len(data),
    )
    try:
        saved = await session.insert(DOCUMENTS, doc)
    except ActionFailed:
        try:
            await storage.delete(key)
        except StorageError as e:
            session.log.warning("document_cleanup_failed", key=key, error=str(e))
        raise
    session.log.info("document_uploaded", document_id=saved.id, key=key, size=len(data))
    return saved


async def delete_document(session: PortalSession, document_id: str) -> None:
    """Remove the row first; a blob that cannot be removed afterwards is only logged."""
    if not can_manage_documents(session.user):
        raise PermissionDenied("Only managers can remove documents")
    removed = await session.delete(DOCUMENTS, document_id)
    if removed.file_path and session.storage is not None:
        try:
            await session.storage.delete(removed.file_path)
        except StorageError as e:
            session.log.warning("document_blob_delete_failed", key=removed.file_path, error=str(e))


async def download_url(session: PortalSession, document_id: str) -> str:
    doc = session.mirror.get(DOCUMENTS, document_id)
    if doc is None:
        raise NotFound("Document not found")
    if not doc.file_path:
        raise NotFound("This document has no attached file")
    url = await _require_storage(session).get_download_url(doc.file_path, DOWNLOAD_URL_TTL_S)
    if url is None:
        raise NotFound("File not found in storage")
    return url
