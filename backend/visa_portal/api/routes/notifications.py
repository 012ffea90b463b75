import math
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from visa_portal.db.hooks import after_commit
from visa_portal.db.session import get_db
from visa_portal.api.deps import get_current_identity, get_dispatcher, require_roles
from visa_portal.models.notification import Notification, NOTIFICATION_TYPES
from visa_portal.realtime.dispatcher import EventDispatcher
from visa_portal.services.notifications import create_notification

router = APIRouter()

# How many of the latest notifications are re-pushed after "mark all read"
READ_ALL_PUSH_LIMIT = 10

class NotificationCreate(BaseModel):
    user_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    type: str = Field("info", pattern="^(" + "|".join(NOTIFICATION_TYPES) + ")$")
    application_id: str | None = None

@router.get("/")
def list_notifications(
    db: Session = Depends(get_db),
    identity=Depends(get_current_identity),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    unread_only: bool = Query(False),
):
    user_id, _roles = identity
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.is_read == False)  # noqa: E712
    total = q.count()
    items = q.order_by(Notification.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "notifications": [n.to_record() for n in items],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }

@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), identity=Depends(get_current_identity)):
    user_id, _roles = identity
    count = db.query(Notification).filter(Notification.user_id == user_id, Notification.is_read == False).count()  # noqa: E712
    return {"count": count}

@router.post("/", status_code=status.HTTP_201_CREATED)
def send_notification(
    payload: NotificationCreate,
    db: Session = Depends(get_db),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
    _admin=Depends(require_roles("admin")),
):
    """Admin: create a notification for a user and push it if they are online."""
    n = create_notification(
        db,
        dispatcher,
        payload.user_id,
        payload.title,
        payload.message,
        type=payload.type,
        application_id=payload.application_id,
    )
    db.commit()
    return n.to_record()

@router.put("/read-all")
def mark_all_read(
    db: Session = Depends(get_db),
    identity=Depends(get_current_identity),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    """Mark every notification of the user as read."""
    user_id, _roles = identity
    db.query(Notification).filter(Notification.user_id == user_id, Notification.is_read == False).update({Notification.is_read: True})  # noqa: E712
    # Other open views refresh from the latest few; older ones catch up on reload
    recent = db.query(Notification).filter(Notification.user_id == user_id).order_by(Notification.created_at.desc()).limit(READ_ALL_PUSH_LIMIT).all()
    for n in recent:
        after_commit(db, dispatcher.notification_updated, user_id, n.to_record())
    db.commit()
    return {"message": "All notifications marked as read"}

@router.put("/{notification_id}/read")
def mark_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    identity=Depends(get_current_identity),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    user_id, _roles = identity
    n = db.query(Notification).filter(Notification.id == notification_id, Notification.user_id == user_id).first()
    if not n:
        raise HTTPException(status_code=404, detail="Not found")
    n.is_read = True
    db.flush()
    after_commit(db, dispatcher.notification_updated, user_id, n.to_record())
    db.commit()
    return {"message": "Notification marked as read"}

@router.delete("/{notification_id}")
def delete_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    identity=Depends(get_current_identity),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    user_id, _roles = identity
    deleted = db.query(Notification).filter(Notification.id == notification_id, Notification.user_id == user_id).delete()
    if not deleted:
        db.rollback()
        raise HTTPException(status_code=404, detail="Not found")
    after_commit(db, dispatcher.notification_deleted, user_id, notification_id)
    db.commit()
    return {"message": "Notification deleted"}
