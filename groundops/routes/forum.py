from typing import List

from fastapi import APIRouter, Depends

from ..auth.security import get_active_session
from ..models.entities import ForumPost, ForumReply
from ..schemas.portal import PostCreate, ReplyCreate
from ..services import forum as forum_service
from ..services.session import PortalSession


router = APIRouter(prefix="/forum", tags=["forum"])


@router.get("", response_model=List[ForumPost])
def list_posts(session: PortalSession = Depends(get_active_session)):
    return session.visibility.forum_posts()


@router.post("", response_model=ForumPost, status_code=201)
async def create_post(body: PostCreate, session: PortalSession = Depends(get_active_session)):
    return await forum_service.create_post(session, title=body.title, content=body.content)


@router.post("/{post_id}/replies", response_model=ForumReply, status_code=201)
async def reply(post_id: str, body: ReplyCreate, session: PortalSession = Depends(get_active_session)):
    return await forum_service.add_reply(session, post_id, body.content)


@router.delete("/{post_id}", status_code=204)
async def delete_post(post_id: str, session: PortalSession = Depends(get_active_session)):
    await forum_service.delete_post(session, post_id)
