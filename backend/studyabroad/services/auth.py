"""Account lifecycle: registration, login, profile, e-mail verification and
password reset, plus the admin user-management operations."""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlmodel import Session

from .. import models, repositories
from ..auth import create_access_token, hash_password, verify_password
from ..config import settings
from ..database import utcnow
from ..errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from ..serializers import user_out
from ..utils.mailer import EmailType, send_email
from ..utils.pagination import pagination_block

logger = logging.getLogger("studyabroad.auth")

RESET_TOKEN_TTL = timedelta(hours=1)


def _verify_url(token: str) -> str:
    return f"{settings.APP_URL}/verify-email?token={token}"


class AuthService:
    """Authentication related operations."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, email: str, password: str, first_name: str, last_name: str,
                 phone: Optional[str] = None) -> dict:
        """Create a STUDENT account and e-mail the verification link.

        Returns the user payload plus an access token.
        """
        if self.user_repo.get_by_email(email):
            raise ConflictError("User with this email already exists")
        user = models.User(
            email=email.strip().lower(),
            password_hash=hash_password(password),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            phone=phone,
            role=models.UserRole.STUDENT,
            verification_token=secrets.token_urlsafe(32),
        )
        user = self.user_repo.save(user)
        logger.info("user_registered user_id=%s", user.id)
        send_email(EmailType.WELCOME, user.email, {
            "first_name": user.first_name,
            "verify_url": _verify_url(user.verification_token),
        })
        return {"user": user_out(user), "access_token": create_access_token(user), "token_type": "bearer"}

    def authenticate(self, email: str, password: str) -> dict:
        """Verify credentials, record the login and return a signed token."""
        user = self.user_repo.get_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            raise UnauthorizedError("Invalid email or password")
        if not user.is_active:
            raise UnauthorizedError("Account is disabled")
        user.last_login = utcnow()
        user = self.user_repo.save(user)
        return {"access_token": create_access_token(user), "token_type": "bearer", "user": user_out(user)}

    def update_profile(self, user: models.User, changes: dict) -> models.User:
        for key, value in changes.items():
            setattr(user, key, value)
        user.updated_at = utcnow()
        return self.user_repo.save(user)

    def change_password(self, user: models.User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise BadRequestError("Current password is incorrect")
        user.password_hash = hash_password(new_password)
        user.updated_at = utcnow()
        self.user_repo.save(user)

    def verify_email(self, token: str) -> models.User:
        user = self.user_repo.get_by_verification_token(token)
        if not user:
            raise BadRequestError("Invalid or expired verification token")
        user.is_verified = True
        user.verification_token = None
        user.updated_at = utcnow()
        return self.user_repo.save(user)

    def resend_verification(self, user: models.User) -> None:
        if user.is_verified:
            raise BadRequestError("Email is already verified")
        user.verification_token = secrets.token_urlsafe(32)
        self.user_repo.save(user)
        send_email(EmailType.EMAIL_VERIFICATION, user.email, {
            "first_name": user.first_name,
            "verify_url": _verify_url(user.verification_token),
        })

    def forgot_password(self, email: str) -> None:
        """Store and mail a reset token; silent when the address is unknown."""
        user = self.user_repo.get_by_email(email)
        if not user:
            return
        user.reset_token = secrets.token_urlsafe(32)
        user.reset_token_expires = utcnow() + RESET_TOKEN_TTL
        self.user_repo.save(user)
        send_email(EmailType.PASSWORD_RESET, user.email, {
            "first_name": user.first_name,
            "reset_url": f"{settings.APP_URL}/reset-password?token={user.reset_token}",
        })

    def reset_password(self, token: str, new_password: str) -> None:
        user = self.user_repo.get_by_reset_token(token)
        if not user or not user.reset_token_expires or user.reset_token_expires < utcnow():
            raise BadRequestError("Invalid or expired reset token")
        user.password_hash = hash_password(new_password)
        user.reset_token = None
        user.reset_token_expires = None
        user.updated_at = utcnow()
        self.user_repo.save(user)


class UserAdminService:
    """Admin listing and role/status changes."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def list(self, search: Optional[str], role: Optional[models.UserRole], page: int, limit: int) -> dict:
        users, total = self.user_repo.search(search, role, page, limit)
        return {"users": [user_out(u) for u in users], "pagination": pagination_block(page, limit, total)}

    def get(self, user_id: int) -> models.User:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def update(self, admin: models.User, user_id: int, changes: dict) -> models.User:
        """Apply role/status changes.

        Only SUPER_ADMIN may grant or revoke admin roles, and nobody can
        deactivate their own account.
        """
        user = self.get(user_id)
        new_role = changes.get("role")
        if new_role is not None and new_role != user.role:
            touches_admin = new_role in models.ADMIN_ROLES or user.role in models.ADMIN_ROLES
            if touches_admin and admin.role != models.UserRole.SUPER_ADMIN:
                raise ForbiddenError("Only a super admin can change admin roles")
            user.role = new_role
        if changes.get("is_active") is False and user.id == admin.id:
            raise BadRequestError("You cannot deactivate your own account")
        if changes.get("is_active") is not None:
            user.is_active = changes["is_active"]
        if changes.get("is_verified") is not None:
            user.is_verified = changes["is_verified"]
        user.updated_at = utcnow()
        logger.info("user_updated admin_id=%s user_id=%s changes=%s", admin.id, user.id, sorted(changes))
        return self.user_repo.save(user)
