import uuid
from sqlalchemy import String, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime

from visa_portal.models.base import Base, utcnow

APPLICATION_STATUSES = (
    "NOT_STARTED",
    "PENDING_DOCUMENTS",
    "IN_REVIEW",
    "APPOINTMENT_SCHEDULED",
    "APPROVED",
    "REJECTED",
)

class Application(Base):
    __tablename__ = "applications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    visa_type: Mapped[str] = mapped_column(String(32))  # VITEM_XI | VITEM_III
    status: Mapped[str] = mapped_column(String(32), default="NOT_STARTED")
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "visaType": self.visa_type,
            "status": self.status,
            "rejectionReason": self.rejection_reason,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
