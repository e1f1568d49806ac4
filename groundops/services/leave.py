"""
Leave request workflow.

    pending          --approve-->  approved
    pending          --reject-->   rejected
    pending          --suggest-->  suggestion_sent
    suggestion_sent  --accept-->   approved   (suggested dates become the dates)
    suggestion_sent  --reject-->   rejected
    pending | suggestion_sent --withdraw--> (row deleted)

approved and rejected are terminal.
"""
import datetime as dt
import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..errors import InvalidTransition, NotFound, PermissionDenied, PortalError
from ..models.entities import LeaveRequest, LeaveStatus, LeaveType, User
from ..models.tables import LEAVE_REQUESTS
from .directory import Directory
from .permissions import LEAVE_DECIDER_ROLES, is_leave_owner
from .session import PortalSession
from .visibility import can_view_leave


class LeaveAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    SUGGEST = "suggest"
    ACCEPT = "accept"
    WITHDRAW = "withdraw"


TRANSITIONS: Dict[LeaveStatus, Dict[LeaveAction, Optional[LeaveStatus]]] = {
    LeaveStatus.PENDING: {
        LeaveAction.APPROVE: LeaveStatus.APPROVED,
        LeaveAction.REJECT: LeaveStatus.REJECTED,
        LeaveAction.SUGGEST: LeaveStatus.SUGGESTION_SENT,
        LeaveAction.WITHDRAW: None,
    },
    LeaveStatus.SUGGESTION_SENT: {
        LeaveAction.ACCEPT: LeaveStatus.APPROVED,
        LeaveAction.REJECT: LeaveStatus.REJECTED,
        LeaveAction.WITHDRAW: None,
    },
    LeaveStatus.APPROVED: {},
    LeaveStatus.REJECTED: {},
}

DECIDER_ACTIONS = frozenset({LeaveAction.APPROVE, LeaveAction.REJECT, LeaveAction.SUGGEST})
OWNER_ACTIONS = frozenset({LeaveAction.ACCEPT, LeaveAction.WITHDRAW})

_CLEARED_SUGGESTION = {"suggestion": None, "suggested_start_date": None, "suggested_end_date": None}


@dataclass(frozen=True)
class LeavePlan:
    """What to write for one transition: a field patch, or a hard delete."""

    delete: bool = False
    changes: Dict[str, Any] = field(default_factory=dict)


def can_decide_leave(user: User, request: LeaveRequest, directory: Directory) -> bool:
    return user.role in LEAVE_DECIDER_ROLES and can_view_leave(user, request, directory)


def _authorize(user: User, request: LeaveRequest, action: LeaveAction, directory: Directory) -> None:
    owner = is_leave_owner(user, request)
    decider = can_decide_leave(user, request, directory)
    if action in OWNER_ACTIONS and not owner:
        raise PermissionDenied("Only the requester can do this")
    if action in DECIDER_ACTIONS:
        # the owner may still turn down a counter-offer
        declining = action == LeaveAction.REJECT and owner and request.status == LeaveStatus.SUGGESTION_SENT
        if not (decider or declining):
            raise PermissionDenied("Not allowed to decide on this request")


def plan_transition(
    user: User,
    request: LeaveRequest,
    action: LeaveAction,
    directory: Directory,
    suggestion: Optional[str] = None,
    suggested_start_date: Optional[dt.date] = None,
    suggested_end_date: Optional[dt.date] = None,
) -> LeavePlan:
    _authorize(user, request, action, directory)
    allowed = TRANSITIONS[request.status]
    if action not in allowed:
        raise InvalidTransition(f"Cannot {action.value} a request that is {request.status.value}")

    target = allowed[action]
    if target is None:
        return LeavePlan(delete=True)

    if action == LeaveAction.SUGGEST:
        if suggested_start_date is None or suggested_end_date is None:
            raise PortalError("Suggested start and end dates are required")
        if suggested_end_date < suggested_start_date:
            raise PortalError("Suggested end date is before the start date")
        return LeavePlan(
            changes={
                "status": target,
                "suggestion": suggestion or "",
                "suggested_start_date": suggested_start_date,
                "suggested_end_date": suggested_end_date,
            }
        )

    if action == LeaveAction.ACCEPT:
        if request.suggested_start_date is None or request.suggested_end_date is None:
            raise InvalidTransition("This request carries no suggested dates")
        return LeavePlan(
            changes={
                "status": target,
                "start_date": request.suggested_start_date,
                "end_date": request.suggested_end_date,
                **_CLEARED_SUGGESTION,
            }
        )

    return LeavePlan(changes={"status": target})


async def submit_leave(
    session: PortalSession,
    *,
    type: LeaveType,
    start_date: dt.date,
    end_date: dt.date,
    reason: str = "",
) -> LeaveRequest:
    user = session.user
    if not user.staff_id:
        raise PortalError("Your account has no staff id; ask an administrator to set one")
    if end_date < start_date:
        raise PortalError("End date is before the start date")
    request = LeaveRequest(
        id=str(uuid.uuid4()),
        staff_id=user.staff_id,
        staff_name=user.name,
        type=type,
        start_date=start_date,
        end_date=end_date,
        status=LeaveStatus.PENDING,
        reason=reason or "",
    )
    session.log.info("leave_submit", request_id=request.id, type=type.value)
    return await session.insert(LEAVE_REQUESTS, request)


async def apply_leave_action(
    session: PortalSession,
    request_id: str,
    action: LeaveAction,
    suggestion: Optional[str] = None,
    suggested_start_date: Optional[dt.date] = None,
    suggested_end_date: Optional[dt.date] = None,
) -> Optional[LeaveRequest]:
    """Run one workflow step; returns the updated request, or None when it was withdrawn."""
    request = session.mirror.get(LEAVE_REQUESTS, request_id)
    if request is None or not can_view_leave(session.user, request, session.directory):
        raise NotFound("Leave request not found")
    plan = plan_transition(
        session.user,
        request,
        action,
        session.directory,
        suggestion=suggestion,
        suggested_start_date=suggested_start_date,
        suggested_end_date=suggested_end_date,
    )
    session.log.info("leave_transition", request_id=request_id, action=action.value, status=request.status.value)
    if plan.delete:
        await session.delete(LEAVE_REQUESTS, request_id)
        return None
    return await session.update(LEAVE_REQUESTS, request_id, plan.changes)
