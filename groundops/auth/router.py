from fastapi import APIRouter, Depends, HTTPException

from ..schemas.auth import ChangePasswordRequest, LoginRequest, MeResponse, TokenResponse
from ..services import permissions
from ..services.session import PortalSession
from ..services.users import change_own_password
from .security import create_access_token, get_current_session, get_session_manager


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(req: LoginRequest, manager=Depends(get_session_manager)):
    session = await manager.login(req.username, req.password)
    access = create_access_token(session.user.id, session.id, manager.cfg)
    return TokenResponse(
        access_token=access,
        must_change_password=session.user.must_change_password,
        user=session.user,
    )


@router.post("/change-password", response_model=TokenResponse)
async def change_password(
    req: ChangePasswordRequest,
    session: PortalSession = Depends(get_current_session),
    manager=Depends(get_session_manager),
):
    if req.confirm_password is not None and req.confirm_password != req.new_password:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    user = await change_own_password(session, req.new_password)
    manager.renew(session)
    return TokenResponse(
        access_token=create_access_token(user.id, session.id, manager.cfg),
        must_change_password=False,
        user=user,
    )


@router.post("/logout")
async def logout(session: PortalSession = Depends(get_current_session), manager=Depends(get_session_manager)):
    await manager.logout(session.id)
    return {"status": "ok"}


@router.get("/me", response_model=MeResponse)
def me(session: PortalSession = Depends(get_current_session)):
    user = session.user
    return MeResponse(
        user=user,
        session_id=session.id,
        can_manage_users=permissions.can_manage_users(user),
        can_review_safety=permissions.can_review_safety(user),
        can_manage_documents=permissions.can_manage_documents(user),
        can_create_tasks=permissions.can_create_task(user),
        can_broadcast=permissions.can_broadcast(user),
    )

