"""Registration, login, profile and password endpoints, plus admin user management."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_admin
from ..database import get_session
from ..schemas import (AdminUserUpdate, ChangePasswordIn, EmailIn, LoginIn, ProfileUpdate, RegisterIn,
                       ResetPasswordIn, TokenIn)
from ..serializers import user_out
from ..services.auth import AuthService, UserAdminService
from ..utils.rate_limit import enforce_rate_limit

router = APIRouter(tags=["auth"])


@router.post("/auth/register", status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Create a student account and return it with an access token."""
    return AuthService(db).register(payload.email, payload.password, payload.first_name,
                                    payload.last_name, payload.phone)


@router.post("/auth/login")
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate and return a signed JWT.

    The token carries `user_id`, `email` and `role` and expires after
    `JWT_EXPIRE_HOURS`.
    """
    enforce_rate_limit(request)
    return AuthService(db).authenticate(payload.email, payload.password)


@router.get("/auth/me")
def me(user: models.User = Depends(get_current_user)):
    return user_out(user)


@router.put("/auth/profile")
def update_profile(payload: ProfileUpdate, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    changes = payload.model_dump(exclude_unset=True)
    return user_out(AuthService(db).update_profile(user, changes))


@router.post("/auth/change-password")
def change_password(payload: ChangePasswordIn, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    AuthService(db).change_password(user, payload.current_password, payload.new_password)
    return {"message": "Password changed successfully"}


@router.post("/auth/verify-email")
def verify_email(payload: TokenIn, db: Session = Depends(get_session)):
    user = AuthService(db).verify_email(payload.token)
    return {"message": "Email verified", "user": user_out(user)}


@router.post("/auth/resend-verification")
def resend_verification(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    AuthService(db).resend_verification(user)
    return {"message": "Verification email sent"}


@router.post("/auth/forgot-password")
def forgot_password(payload: EmailIn, request: Request, db: Session = Depends(get_session)):
    """Always answers 200 so the endpoint cannot reveal which addresses are registered."""
    enforce_rate_limit(request)
    AuthService(db).forgot_password(payload.email)
    return {"message": "If the account exists, a reset link has been sent"}


@router.post("/auth/reset-password")
def reset_password(payload: ResetPasswordIn, db: Session = Depends(get_session)):
    AuthService(db).reset_password(payload.token, payload.new_password)
    return {"message": "Password has been reset"}


@router.get("/admin/users")
def admin_list_users(search: Optional[str] = None, role: Optional[models.UserRole] = None,
                     page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return UserAdminService(db).list(search, role, page, limit)


@router.get("/admin/users/{user_id}")
def admin_get_user(user_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return user_out(UserAdminService(db).get(user_id))


@router.patch("/admin/users/{user_id}")
def admin_update_user(user_id: int, payload: AdminUserUpdate, db: Session = Depends(get_session),
                      admin: models.User = Depends(require_admin)):
    changes = payload.model_dump(exclude_unset=True)
    return user_out(UserAdminService(db).update(admin, user_id, changes))
