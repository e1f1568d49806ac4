from typing import Optional

from pydantic import Field

from ..models.entities import PortalModel, User


class LoginRequest(PortalModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class TokenResponse(PortalModel):
    access_token: str
    token_type: str = "bearer"
    must_change_password: bool = False
    user: User


class ChangePasswordRequest(PortalModel):
    new_password: str
    confirm_password: Optional[str] = None


class MeResponse(PortalModel):
    user: User
    session_id: str
    can_manage_users: bool
    can_review_safety: bool
    can_manage_documents: bool
    can_create_tasks: bool
    can_broadcast: bool
