from typing import List

from fastapi import APIRouter, Depends

from ..auth.security import get_active_session
from ..models.entities import ChatMessage
from ..schemas.portal import BroadcastCreate, MessageCreate, TextResult, TranslateRequest
from ..services import messaging
from ..services.session import PortalSession


router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/contacts", response_model=List[messaging.Contact])
def contacts(session: PortalSession = Depends(get_active_session)):
    return messaging.contacts(session)


@router.get("/broadcasts", response_model=List[ChatMessage])
def broadcasts(session: PortalSession = Depends(get_active_session)):
    return session.visibility.broadcasts()


@router.get("/unread-count")
def unread_count(session: PortalSession = Depends(get_active_session)):
    return {"count": messaging.unread_count(session)}


@router.post("", response_model=ChatMessage, status_code=201)
async def send(body: MessageCreate, session: PortalSession = Depends(get_active_session)):
    return await messaging.send_message(session, body.recipient_id, body.text)


@router.post("/broadcast", response_model=ChatMessage, status_code=201)
async def broadcast(body: BroadcastCreate, session: PortalSession = Depends(get_active_session)):
    return await messaging.broadcast(session, body.text)


@router.post("/translate", response_model=TextResult)
async def translate(body: TranslateRequest, session: PortalSession = Depends(get_active_session)):
    text = await messaging.translate(session, body.text, body.target_lang)
    return TextResult(text=text or body.text, available=text is not None)


@router.get("/{contact_id}", response_model=List[ChatMessage])
def conversation(contact_id: str, session: PortalSession = Depends(get_active_session)):
    return session.visibility.conversation(contact_id)


@router.post("/{contact_id}/read")
async def mark_read(contact_id: str, session: PortalSession = Depends(get_active_session)):
    return {"updated": await messaging.mark_conversation_read(session, contact_id)}


@router.post("/{contact_id}/summary", response_model=TextResult)
async def summary(contact_id: str, session: PortalSession = Depends(get_active_session)):
    text = await messaging.summarize_conversation(session, contact_id)
    return TextResult(text=text or "Summary unavailable.", available=text is not None)
