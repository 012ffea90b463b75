import uuid
from sqlalchemy import String, Boolean, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime

from visa_portal.models.base import Base, utcnow

class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sender_id: Mapped[str] = mapped_column(String(64), index=True)
    recipient_id: Mapped[str] = mapped_column(String(64), index=True)
    sender_name: Mapped[str] = mapped_column(String(255))
    sender_role: Mapped[str] = mapped_column(String(32))  # APPLICANT | ADMIN
    content: Mapped[str] = mapped_column(Text)
    application_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "senderRole": self.sender_role,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
            "isRead": bool(self.is_read),
            "applicationId": self.application_id,
        }
