"""Bearer token verification.

Tokens are minted by the upstream auth provider and signed with the shared
secret from settings. This service only verifies them and resolves the
caller's profile and roles; it never issues tokens or keeps sessions.
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import get_settings
from .db import get_db
from .models import UserInfo, UserRole


logger = logging.getLogger("taskreport.auth")

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    settings = get_settings()
    return jwt.decode(
        token,
        settings.security.jwt_secret,
        algorithms=[settings.security.jwt_algorithm],
        # Provider tokens carry an audience we do not pin.
        options={"verify_aud": False},
    )


def user_roles(db: Session, user_id: str) -> set[str]:
    rows = db.query(UserRole.role).filter(UserRole.user_id == str(user_id)).all()
    return {str(r) for (r,) in rows}


def is_admin(db: Session, user_id: str) -> bool:
    return get_settings().security.admin_role in user_roles(db, user_id)


def get_current_user_api(
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserInfo:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or not credentials.credentials:
        raise credentials_exception
    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise credentials_exception

    subject = payload.get("sub")
    if not subject:
        raise credentials_exception

    user = db.get(UserInfo, str(subject))
    if user is None:
        logger.info("Rejected token for unknown user %s", subject)
        raise credentials_exception
    return user


def require_admin_api(
    db: Session = Depends(get_db),
    current_user: UserInfo = Depends(get_current_user_api),
) -> UserInfo:
    if not is_admin(db, current_user.id):
        raise HTTPException(status_code=403, detail="Forbidden: Admin access required")
    return current_user
