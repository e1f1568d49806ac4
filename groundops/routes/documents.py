from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

from ..auth.security import get_active_session
from ..models.entities import DocFile
from ..services import documents as document_service
from ..services.session import PortalSession
from ..storage.local_provider import LocalStorageProvider


router = APIRouter(tags=["documents"])


@router.get("/documents", response_model=List[DocFile])
def list_documents(session: PortalSession = Depends(get_active_session)):
    return session.visibility.documents()


@router.post("/documents", response_model=DocFile, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    type: Optional[str] = Form(None),
    session: PortalSession = Depends(get_active_session),
):
    data = await file.read()
    return await document_service.upload_document(
        session,
        data=data,
        filename=file.filename or "document",
        name=name,
        type=type,
        content_type=file.content_type or "application/octet-stream",
    )


@router.get("/documents/{document_id}/url")
async def document_url(document_id: str, session: PortalSession = Depends(get_active_session)):
    return {"url": await document_service.download_url(session, document_id)}


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(document_id: str, session: PortalSession = Depends(get_active_session)):
    await document_service.delete_document(session, document_id)


@router.get("/files/local/{key:path}", include_in_schema=False)
def local_file(key: str, request: Request):
    storage = request.app.state.storage
    if not isinstance(storage, LocalStorageProvider):
        raise HTTPException(status_code=404, detail="Not found")
    path = storage.path_for(key)
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(path)
