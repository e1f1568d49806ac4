import hmac
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext

from ..config import Settings, settings
from ..models.entities import User
from ..services.session import PortalSession


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)

MIN_PASSWORD_LENGTH = 6


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def is_hashed(stored: Optional[str]) -> bool:
    return bool(stored) and pwd_context.identify(stored, required=False) is not None


def verify_password(plain: str, stored: Optional[str], default_password: Optional[str] = None) -> bool:
    """
    Check a password against the stored value.
    - Hashed values verify through passlib
    - Legacy plaintext values compare directly (rehashed on the next login)
    - An empty stored value only accepts the default password
    """
    if not stored:
        return default_password is not None and hmac.compare_digest(plain, default_password)
    if not is_hashed(stored):
        return hmac.compare_digest(plain.encode("utf-8"), stored.encode("utf-8"))
    try:
        return pwd_context.verify(plain, stored)
    except ValueError:
        return False


def needs_rehash(stored: Optional[str]) -> bool:
    return not is_hashed(stored) or pwd_context.needs_update(stored)


def create_access_token(user_id: str, session_id: str, cfg: Optional[Settings] = None) -> str:
    cfg = cfg or settings
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": user_id,
        "sid": session_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=cfg.jwt_ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, cfg.jwt_secret, algorithm=cfg.jwt_algorithm)


def decode_token(token: str, cfg: Optional[Settings] = None) -> dict:
    cfg = cfg or settings
    try:
        return jwt.decode(token, cfg.jwt_secret, algorithms=[cfg.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_session_manager(request: Request):
    return request.app.state.sessions


def resolve_session(manager, token: str) -> PortalSession:
    payload = decode_token(token, manager.cfg)
    session = manager.get(str(payload.get("sid") or ""))
    if session is None or session.user.id != payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")
    return session


async def get_current_session(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    manager=Depends(get_session_manager),
) -> PortalSession:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return resolve_session(manager, creds.credentials)


def get_active_session(session: PortalSession = Depends(get_current_session)) -> PortalSession:
    """A session past the forced password change gate."""
    if session.user.must_change_password:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Password change required")
    return session


def require_role(check: Callable[[User], bool]):
    def _dep(session: PortalSession = Depends(get_active_session)) -> PortalSession:
        if not check(session.user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return session

    return _dep
