"""Server-to-client envelopes pushed over the realtime socket.

Every frame is one JSON object ``{"type": ..., "payload": {...}}``. The set of
``type`` values is closed; each one has its own payload model.
"""
from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

CONNECTION_ESTABLISHED = "connection-established"
APPLICATION_UPDATED = "application-updated"
NEW_MESSAGE = "new-message"
NEW_NOTIFICATION = "new-notification"
NOTIFICATION_UPDATED = "notification-updated"
NOTIFICATION_DELETED = "notification-deleted"


class MessageRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    content: str
    sender_id: str = Field(alias="senderId")
    sender_name: str = Field(alias="senderName")
    sender_role: str = Field(alias="senderRole")
    timestamp: str
    is_read: bool = Field(default=False, alias="isRead")
    application_id: Optional[str] = Field(default=None, alias="applicationId")


class NotificationRecord(BaseModel):
    id: str
    title: str
    message: str
    type: str
    is_read: bool = False
    created_at: str
    application_id: Optional[str] = None


class EmptyPayload(BaseModel):
    pass


class ApplicationPayload(BaseModel):
    # Full application record as rendered by the REST API; shape owned by that layer
    application: dict[str, Any]


class MessagePayload(BaseModel):
    message: MessageRecord


class NotificationPayload(BaseModel):
    notification: NotificationRecord


class NotificationDeletedPayload(BaseModel):
    id: str


class ConnectionEstablished(BaseModel):
    type: Literal["connection-established"] = CONNECTION_ESTABLISHED
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class ApplicationUpdated(BaseModel):
    type: Literal["application-updated"] = APPLICATION_UPDATED
    payload: ApplicationPayload


class NewMessage(BaseModel):
    type: Literal["new-message"] = NEW_MESSAGE
    payload: MessagePayload


class NewNotification(BaseModel):
    type: Literal["new-notification"] = NEW_NOTIFICATION
    payload: NotificationPayload


class NotificationUpdated(BaseModel):
    type: Literal["notification-updated"] = NOTIFICATION_UPDATED
    payload: NotificationPayload


class NotificationDeleted(BaseModel):
    type: Literal["notification-deleted"] = NOTIFICATION_DELETED
    payload: NotificationDeletedPayload


Envelope = Annotated[
    Union[
        ConnectionEstablished,
        ApplicationUpdated,
        NewMessage,
        NewNotification,
        NotificationUpdated,
        NotificationDeleted,
    ],
    Field(discriminator="type"),
]

envelope_adapter: TypeAdapter[Envelope] = TypeAdapter(Envelope)


def encode(envelope: BaseModel) -> str:
    """Serialize an envelope to its stable wire form.

    Keys are sorted and separators compact so equal envelopes always produce
    identical frames.
    """
    data = envelope.model_dump(mode="json", by_alias=True)
    return json.dumps(data, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def decode(raw: str | bytes) -> Envelope:
    """Parse a wire frame back into its envelope model (clients and tests)."""
    return envelope_adapter.validate_json(raw)
