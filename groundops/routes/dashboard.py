from fastapi import APIRouter, Depends, Query

from ..auth.security import get_active_session
from ..models.entities import TaskStatus
from ..schemas.portal import TextResult
from ..services.search import SearchResults, deep_search
from ..services.session import PortalSession


router = APIRouter(tags=["dashboard"])


@router.get("/search", response_model=SearchResults)
def search(q: str = Query("", min_length=0), session: PortalSession = Depends(get_active_session)):
    return deep_search(session, q)


@router.post("/sync")
async def sync(session: PortalSession = Depends(get_active_session)):
    """Re-fetch every table into this session's mirror."""
    await session.resync()
    return {"status": "ok"}


@router.get("/dashboard/briefing", response_model=TextResult)
async def briefing(session: PortalSession = Depends(get_active_session)):
    open_tasks = [t for t in session.visibility.tasks() if t.status != TaskStatus.COMPLETED]
    text = await session.analyzer.shift_briefing(open_tasks) if session.analyzer else None
    return TextResult(text=text or "Briefing generation failed.", available=text is not None)
