import uuid
from sqlalchemy.orm import Session

from visa_portal.db.hooks import after_commit
from visa_portal.models.base import utcnow
from visa_portal.models.notification import Notification, NOTIFICATION_TYPES
from visa_portal.realtime.dispatcher import EventDispatcher


def create_notification(
    db: Session,
    dispatcher: EventDispatcher,
    user_id: str,
    title: str,
    message: str,
    type: str = "info",
    application_id: str | None = None,
) -> Notification:
    """Stage a notification row and its realtime push.

    The caller owns the transaction; the push only happens if it commits.
    """
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {type}")
    n = Notification(
        id=str(uuid.uuid4()),
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        is_read=False,
        created_at=utcnow(),
        application_id=application_id,
    )
    db.add(n)
    db.flush()
    after_commit(db, dispatcher.new_notification, user_id, n.to_record())
    return n
