import uuid
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm import Session

from visa_portal.db.hooks import after_commit
from visa_portal.db.session import get_db
from visa_portal.api.deps import get_current_identity, get_dispatcher
from visa_portal.models.message import Message
from visa_portal.models.base import utcnow
from visa_portal.realtime.dispatcher import EventDispatcher

router = APIRouter()

class SendMessageBody(BaseModel):
    content: str = Field(min_length=1, max_length=5000)
    recipient_id: str = Field(min_length=1)
    application_id: str | None = None
    sender_name: str | None = Field(None, max_length=255, description="Display name shown to the recipient")

@router.post("/", status_code=status.HTTP_201_CREATED)
def send_message(
    payload: SendMessageBody,
    db: Session = Depends(get_db),
    identity=Depends(get_current_identity),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    """Store a message and push it to the recipient's open socket."""
    user_id, roles = identity
    content = payload.content.strip()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing content")
    if payload.recipient_id == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot send a message to yourself")
    m = Message(
        id=str(uuid.uuid4()),
        sender_id=user_id,
        recipient_id=payload.recipient_id,
        sender_name=payload.sender_name or ("Admin" if "admin" in roles else "Applicant"),
        sender_role="ADMIN" if "admin" in roles else "APPLICANT",
        content=content,
        application_id=payload.application_id,
        is_read=False,
        created_at=utcnow(),
    )
    db.add(m)
    db.flush()
    record = m.to_record()
    after_commit(db, dispatcher.new_message, payload.recipient_id, record)
    db.commit()
    return record

@router.get("/")
def list_messages(
    db: Session = Depends(get_db),
    identity=Depends(get_current_identity),
    application_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
):
    user_id, _roles = identity
    q = db.query(Message).filter(or_(Message.sender_id == user_id, Message.recipient_id == user_id))
    if application_id:
        q = q.filter(Message.application_id == application_id)
    items = q.order_by(Message.created_at.desc()).limit(limit).all()
    return {"messages": [m.to_record() for m in items]}

@router.put("/{message_id}/read")
def mark_message_read(message_id: str, db: Session = Depends(get_db), identity=Depends(get_current_identity)):
    user_id, _roles = identity
    updated = db.query(Message).filter(Message.id == message_id, Message.recipient_id == user_id).update({Message.is_read: True})
    db.commit()
    return {"success": updated > 0}
