"""In-app notifications of the signed-in user."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..schemas import NotificationUpdate
from ..services.notifications import NotificationService

router = APIRouter(tags=["notifications"])


@router.get("/notifications")
def list_notifications(unread_only: bool = False, type: Optional[str] = None, page: int = Query(1, ge=1),
                       limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    return NotificationService(db).list(user, page, limit, unread_only, type)


@router.post("/notifications/mark-all-read")
def mark_all_read(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {"updated": NotificationService(db).mark_all_read(user)}


@router.patch("/notifications/{notification_id}")
def update_notification(notification_id: int, payload: NotificationUpdate, db: Session = Depends(get_session),
                        user: models.User = Depends(get_current_user)):
    return NotificationService(db).set_read(user, notification_id, payload.is_read).model_dump()


@router.delete("/notifications/{notification_id}")
def delete_notification(notification_id: int, db: Session = Depends(get_session),
                        user: models.User = Depends(get_current_user)):
    NotificationService(db).delete(user, notification_id)
    return {"message": "Notification deleted"}
