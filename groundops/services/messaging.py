"""
Direct messages and emergency broadcasts.

A broadcast is an ordinary message addressed to the reserved broadcast user;
every session sees it.
"""
import datetime as dt
import uuid
from typing import List, Optional

from ..errors import ActionFailed, NotFound, PermissionDenied, PortalError
from ..models.entities import ChatMessage, MessageStatus, NotificationKind, PortalModel
from ..models.tables import MESSAGES
from .permissions import can_broadcast
from .session import PortalSession


MISSING_BROADCAST_USER = (
    "The broadcast account does not exist in the database. "
    "Run scripts/setup_broadcast_user.py to create the SYSTEM BROADCAST user."
)


class Contact(PortalModel):
    id: str
    name: str
    avatar: Optional[str] = None
    department: str
    online: bool
    unread_count: int = 0
    last_message: Optional[ChatMessage] = None


def _new_message(session: PortalSession, recipient_id: str, text: str) -> ChatMessage:
    text = (text or "").strip()
    if not text:
        raise PortalError("Message text is empty")
    return ChatMessage(
        id=str(uuid.uuid4()),
        sender_id=session.user.id,
        recipient_id=recipient_id,
        sender_name=session.user.name,
        text=text,
        status=MessageStatus.SENT,
    )


async def send_message(session: PortalSession, recipient_id: str, text: str) -> ChatMessage:
    if recipient_id == session.context.broadcast_user_id:
        return await broadcast(session, text)
    if session.directory.by_id(recipient_id) is None:
        raise NotFound("Recipient not found")
    message = _new_message(session, recipient_id, text)
    return await session.insert(MESSAGES, message)


async def broadcast(session: PortalSession, text: str) -> ChatMessage:
    if not can_broadcast(session.user):
        raise PermissionDenied("Not allowed to send broadcasts")
    message = _new_message(session, session.context.broadcast_user_id, text)
    try:
        sent = await session.insert(MESSAGES, message)
    except ActionFailed as e:
        if e.kind == "constraint":
            raise ActionFailed(MISSING_BROADCAST_USER, e.kind) from e
        raise
    session.log.info("broadcast_sent", message_id=sent.id)
    session.notifications.push(
        NotificationKind.SAFETY,
        "Broadcast Sent",
        "Your emergency alert has been transmitted to all personnel.",
    )
    return sent


def _unread_from(session: PortalSession, contact_id: str) -> List[ChatMessage]:
    me = session.user.id
    return [
        m
        for m in session.visibility.messages()
        if m.sender_id == contact_id and m.recipient_id == me and m.status != MessageStatus.READ
    ]


async def mark_conversation_read(session: PortalSession, contact_id: str) -> int:
    keys = [m.id for m in _unread_from(session, contact_id) if m.status == MessageStatus.SENT]
    if not keys:
        return 0
    return await session.update_many(
        MESSAGES,
        keys,
        {"status": MessageStatus.READ},
        match={"sender_id": contact_id, "recipient_id": session.user.id, "status": MessageStatus.SENT},
    )


def unread_count(session: PortalSession) -> int:
    me = session.user.id
    return sum(1 for m in session.visibility.messages() if m.recipient_id == me and m.status != MessageStatus.READ)


def _sort_key(contact: Contact) -> dt.datetime:
    stamp = contact.last_message.timestamp if contact.last_message else None
    return stamp or dt.datetime.min.replace(tzinfo=dt.timezone.utc)


def contacts(session: PortalSession) -> List[Contact]:
    """People this session has exchanged direct messages with, most recent first."""
    me = session.user.id
    broadcast_id = session.context.broadcast_user_id
    last: dict = {}
    for m in session.visibility.messages():
        for other in (m.sender_id, m.recipient_id):
            if other not in (me, broadcast_id) and (m.sender_id == me or m.recipient_id == me):
                last[other] = m
    result = []
    for user_id, message in last.items():
        user = session.directory.by_id(user_id)
        if user is None:
            continue
        result.append(
            Contact(
                id=user.id,
                name=user.name,
                avatar=user.avatar,
                department=user.department,
                online=user.is_active,
                unread_count=len(_unread_from(session, user.id)),
                last_message=message,
            )
        )
    result.sort(key=_sort_key, reverse=True)
    return result


async def summarize_conversation(session: PortalSession, contact_id: str) -> Optional[str]:
    if session.analyzer is None:
        return None
    return await session.analyzer.summarize_chat(session.visibility.conversation(contact_id))


async def translate(session: PortalSession, text: str, target_lang: str) -> Optional[str]:
    if session.analyzer is None:
        return None
    return await session.analyzer.translate(text, target_lang)
