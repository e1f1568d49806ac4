from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..auth.security import get_active_session
from ..models.entities import LeaveRequest, LeaveStatus
from ..schemas.portal import LeaveCreate, LeaveSuggestion
from ..services.leave import LeaveAction, apply_leave_action, submit_leave
from ..services.session import PortalSession


router = APIRouter(prefix="/leave", tags=["leave"])


@router.get("", response_model=List[LeaveRequest])
def list_requests(
    status: Optional[LeaveStatus] = Query(None),
    session: PortalSession = Depends(get_active_session),
):
    return session.visibility.leave_requests(status)


@router.get("/mine", response_model=List[LeaveRequest])
def my_requests(session: PortalSession = Depends(get_active_session)):
    return session.visibility.own_leave_requests()


@router.post("", response_model=LeaveRequest, status_code=201)
async def create_request(body: LeaveCreate, session: PortalSession = Depends(get_active_session)):
    return await submit_leave(
        session, type=body.type, start_date=body.start_date, end_date=body.end_date, reason=body.reason
    )


@router.post("/{request_id}/approve", response_model=LeaveRequest)
async def approve(request_id: str, session: PortalSession = Depends(get_active_session)):
    return await apply_leave_action(session, request_id, LeaveAction.APPROVE)


@router.post("/{request_id}/reject", response_model=LeaveRequest)
async def reject(request_id: str, session: PortalSession = Depends(get_active_session)):
    return await apply_leave_action(session, request_id, LeaveAction.REJECT)


@router.post("/{request_id}/suggest", response_model=LeaveRequest)
async def suggest(request_id: str, body: LeaveSuggestion, session: PortalSession = Depends(get_active_session)):
    return await apply_leave_action(
        session,
        request_id,
        LeaveAction.SUGGEST,
        suggestion=body.suggestion,
        suggested_start_date=body.suggested_start_date,
        suggested_end_date=body.suggested_end_date,
    )


@router.post("/{request_id}/accept", response_model=LeaveRequest)
async def accept(request_id: str, session: PortalSession = Depends(get_active_session)):
    return await apply_leave_action(session, request_id, LeaveAction.ACCEPT)


@router.delete("/{request_id}", status_code=204)
async def withdraw(request_id: str, session: PortalSession = Depends(get_active_session)):
    await apply_leave_action(session, request_id, LeaveAction.WITHDRAW)
