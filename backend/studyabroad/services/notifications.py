"""In-app notifications and the admin broadcast job."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .. import models, repositories
from ..database import open_session, utcnow
from ..errors import ForbiddenError, NotFoundError
from ..utils.mailer import EmailType, send_email
from ..utils.pagination import pagination_block

logger = logging.getLogger("studyabroad.notifications")


class NotificationService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.NotificationRepository(session)

    def notify(self, user_id: int, ntype: str, title: str, message: str,
               action_url: Optional[str] = None) -> Optional[models.Notification]:
        """Store an in-app notification; failures are logged, never raised."""
        try:
            return self.repo.save(models.Notification(
                user_id=user_id, type=ntype, title=title, message=message, action_url=action_url,
            ))
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("notification_failed user_id=%s type=%s", user_id, ntype)
            return None

    def list(self, user: models.User, page: int, limit: int, unread_only: bool = False,
             ntype: Optional[str] = None) -> dict:
        items, total = self.repo.search(user.id, page, limit, unread_only, ntype)
        return {
            "notifications": [n.model_dump() for n in items],
            "unread_count": self.repo.unread_count(user.id),
            "pagination": pagination_block(page, limit, total),
        }

    def _owned(self, user: models.User, notification_id: int) -> models.Notification:
        notification = self.repo.get(notification_id)
        if not notification:
            raise NotFoundError("Notification not found")
        if notification.user_id != user.id:
            raise ForbiddenError()
        return notification

    def set_read(self, user: models.User, notification_id: int, is_read: bool = True) -> models.Notification:
        notification = self._owned(user, notification_id)
        notification.is_read = is_read
        notification.read_at = utcnow() if is_read else None
        return self.repo.save(notification)

    def mark_all_read(self, user: models.User) -> int:
        now = utcnow()
        unread = self.repo.unread(user.id)
        for n in unread:
            n.is_read = True
            n.read_at = now
            self.session.add(n)
        self.session.commit()
        return len(unread)

    def delete(self, user: models.User, notification_id: int) -> None:
        self.repo.delete(self._owned(user, notification_id))


def run_broadcast(params: dict) -> dict:
    """Background worker: deliver one broadcast to its audience.

    Runs outside the request, so it opens its own session.
    """
    channel = params["channel"]
    sent_in_app = sent_email = 0
    with open_session() as session:
        users_repo = repositories.UserRepository(session)
        if params.get("user_ids"):
            users = users_repo.list_by_ids(params["user_ids"])
        else:
            users = users_repo.list_by_role(models.UserRole(params["role"]))
        svc = NotificationService(session)
        for user in users:
            if channel in ("in_app", "both"):
                if svc.notify(user.id, params["type"], params["title"], params["message"], params.get("action_url")):
                    sent_in_app += 1
            if channel in ("email", "both"):
                if send_email(EmailType.NEWSLETTER, user.email, {
                    "first_name": user.first_name,
                    "title": params["title"],
                    "message": params["message"],
                    "action_url": params.get("action_url"),
                }):
                    sent_email += 1
    logger.info("broadcast_done recipients=%s in_app=%s email=%s", len(users), sent_in_app, sent_email)
    return {"recipients": len(users), "in_app_sent": sent_in_app, "emails_sent": sent_email}
