"""Authentication helpers and FastAPI security dependencies.

This module provides password hashing, JWT issue/decode helpers and the
FastAPI dependencies used by the routers:

- `get_current_user` validates the bearer token and returns the `User`
  loaded in the request's session,
- `get_optional_user` does the same but returns `None` for anonymous
  requests (guest bookings, public catalog pages),
- `require_roles(...)` builds a dependency restricting a route to roles.

Token verification raises HTTPExceptions on failure so it can be used
directly inside route dependencies.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

bearer_scheme = HTTPBearer()
optional_bearer = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return PWD_CTX.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Return False for malformed hashes instead of raising."""
    try:
        return PWD_CTX.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def create_access_token(user: models.User) -> str:
    """Sign a JWT carrying the user's id, e-mail and role."""
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
    payload = {
        "user_id": user.id,
        "email": user.email,
        "role": user.role.value,
        "exp": int(expire.timestamp()),
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="invalid token")


def _user_from_token(token: str, db: Session) -> models.User:
    payload = decode_token(token)
    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=401, detail="invalid token payload")
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="user not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="account disabled")
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The user is loaded through the request's own session so routes can
    modify and commit it directly. Raises HTTPException(401) for any
    authentication issue.
    """
    return _user_from_token(credentials.credentials, db)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_bearer),
    db: Session = Depends(get_session),
) -> Optional[models.User]:
    """Like `get_current_user` but anonymous requests yield `None`.

    A token that is present but invalid is still rejected.
    """
    if credentials is None:
        return None
    return _user_from_token(credentials.credentials, db)


def require_roles(*roles: models.UserRole):
    """Dependency factory restricting a route to the given roles."""
    allowed = set(roles)

    def _dependency(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role not in allowed:
            raise HTTPException(status_code=403, detail="insufficient permissions")
        return user

    return _dependency


require_admin = require_roles(*models.ADMIN_ROLES)
