from typing import List

from fastapi import APIRouter, Depends

from ..auth.security import get_active_session, require_role
from ..models.entities import User
from ..schemas.portal import ManagerAssignment, PasswordReset, UserCreate, UserStatusUpdate, UserUpdate
from ..services import users as user_service
from ..services.permissions import can_manage_users
from ..services.session import PortalSession


router = APIRouter(prefix="/users", tags=["users"])

admin_session = require_role(can_manage_users)


@router.get("", response_model=List[User])
def list_users(session: PortalSession = Depends(get_active_session)):
    return session.visibility.users()


@router.get("/org", response_model=List[user_service.OrgNode])
def org_chart(session: PortalSession = Depends(get_active_session)):
    return user_service.org_chart(session)


@router.post("", response_model=User, status_code=201)
async def create_user(body: UserCreate, session: PortalSession = Depends(admin_session)):
    return await user_service.create_user(session, **body.model_dump())


@router.patch("/{user_id}", response_model=User)
async def update_user(user_id: str, body: UserUpdate, session: PortalSession = Depends(admin_session)):
    return await user_service.update_user(session, user_id, body.model_dump(exclude_unset=True))


@router.post("/{user_id}/status", response_model=User)
async def set_status(user_id: str, body: UserStatusUpdate, session: PortalSession = Depends(admin_session)):
    """Set the given status, or toggle active/inactive when none is given."""
    if body.status is None:
        return await user_service.toggle_user_status(session, user_id)
    return await user_service.set_user_status(session, user_id, body.status)


@router.post("/{user_id}/reset-password", response_model=User)
async def reset_password(user_id: str, body: PasswordReset, session: PortalSession = Depends(admin_session)):
    return await user_service.reset_password(session, user_id, body.new_password)


@router.put("/{user_id}/manager", response_model=User)
async def assign_manager(user_id: str, body: ManagerAssignment, session: PortalSession = Depends(admin_session)):
    return await user_service.assign_manager(session, user_id, body.manager_id)


@router.delete("/{user_id}", status_code=204)
async def delete_user(user_id: str, session: PortalSession = Depends(admin_session)):
    await user_service.delete_user(session, user_id)
