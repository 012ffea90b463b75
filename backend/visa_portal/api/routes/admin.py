from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from visa_portal.db.hooks import after_commit
from visa_portal.db.session import get_db
from visa_portal.api.deps import get_dispatcher, require_roles
from visa_portal.models.application import Application, APPLICATION_STATUSES
from visa_portal.realtime.dispatcher import EventDispatcher
from visa_portal.services.notifications import create_notification

router = APIRouter()

# Notification wording per status; statuses not listed get a generic line
_STATUS_NOTICES = {
    "APPROVED": ("success", "Application approved", "Your visa application has been approved."),
    "REJECTED": ("error", "Application rejected", "Your visa application has been rejected."),
    "PENDING_DOCUMENTS": ("warning", "Documents required", "Some documents need your attention."),
    "APPOINTMENT_SCHEDULED": ("info", "Appointment scheduled", "Your appointment has been scheduled."),
}

class ApplicationStatusBody(BaseModel):
    status: str = Field(pattern="^(" + "|".join(APPLICATION_STATUSES) + ")$")
    rejection_reason: str | None = Field(None, max_length=2000)

@router.put("/applications/{application_id}/status")
def update_application_status(
    application_id: str,
    payload: ApplicationStatusBody,
    db: Session = Depends(get_db),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
    _admin=Depends(require_roles("admin")),
):
    """Set an application's status and tell the applicant in real time.

    Transition rules live with the review workflow; this endpoint only records
    the decision and fans it out.
    """
    app_row = db.get(Application, application_id)
    if not app_row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
    app_row.status = payload.status
    app_row.rejection_reason = payload.rejection_reason if payload.status == "REJECTED" else None
    db.flush()

    kind, title, default_message = _STATUS_NOTICES.get(
        payload.status, ("info", "Application updated", f"Your application status is now {payload.status}.")
    )
    message = default_message
    if payload.status == "REJECTED" and payload.rejection_reason:
        message = f"{default_message} Reason: {payload.rejection_reason}"
    record = app_row.to_record()
    after_commit(db, dispatcher.application_updated, app_row.user_id, record)
    create_notification(db, dispatcher, app_row.user_id, title, message, type=kind, application_id=app_row.id)
    db.commit()
    return record
