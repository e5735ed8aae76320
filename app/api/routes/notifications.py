from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.exceptions import AppException
from app.db.models import User
from app.db.session import get_db
from app.services import notification_service

router = APIRouter()


@router.get("/")
def inbox(
    unreadOnly: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"data": notification_service.list_notifications(db, user.id, unread_only=unreadOnly)}


@router.get("/unread-count")
def unread_count(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"data": {"unread": notification_service.count_unread_notifications(db, user.id)}}


@router.post("/read-all")
def read_all(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"data": {"updated": notification_service.mark_all_notifications_read(db, user.id)}}


@router.post("/{notification_id}/read")
def read_one(
    notification_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = notification_service.mark_notification_read(db, user.id, notification_id)
    if data is None:
        raise AppException("Notification not found", status_code=404)
    return {"data": data}
