import uuid

from ..errors import NotFound, PermissionDenied, PortalError
from ..models.entities import ForumPost, ForumReply
from ..models.tables import FORUM_POSTS, FORUM_REPLIES
from .permissions import can_moderate_forum
from .session import PortalSession


def _require_text(value: str, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise PortalError(f"{label} is required")
    return value


async def create_post(session: PortalSession, *, title: str, content: str) -> ForumPost:
    post = ForumPost(
        id=str(uuid.uuid4()),
        author_id=session.user.id,
        author_name=session.user.name,
        title=_require_text(title, "Title"),
        content=_require_text(content, "Content"),
    )
    return await session.insert(FORUM_POSTS, post)


async def add_reply(session: PortalSession, post_id: str, content: str) -> ForumReply:
    if session.mirror.get(FORUM_POSTS, post_id) is None:
        raise NotFound("Post not found")
    reply = ForumReply(
        id=str(uuid.uuid4()),
        post_id=post_id,
        author_name=session.user.name,
        content=_require_text(content, "Reply"),
    )
    return await session.insert(FORUM_REPLIES, reply)


async def delete_post(session: PortalSession, post_id: str) -> None:
    if not can_moderate_forum(session.user):
        raise PermissionDenied("Only managers can remove forum posts")
    await session.delete(FORUM_POSTS, post_id)
    session.log.info("forum_post_deleted", post_id=post_id)
