"""Best-effort delivery of realtime events to a single user.

Every producer in the API calls into this module after its own database
writes are committed. Nothing here raises into the caller: a user who is not
connected, a closed socket or a failed write all end in a dropped event and a
log line. The durable record is whatever the caller stored.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping

from pydantic import BaseModel

from visa_portal.realtime import events
from visa_portal.realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class EventDispatcher:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry
        self._counter_lock = threading.Lock()
        self.delivered = 0
        self.dropped = 0

    def deliver(self, user_id: str, envelope: BaseModel) -> bool:
        """Write ``envelope`` to the user's live connection, if there is one.

        Returns True when the frame was handed to the connection. Callers
        should not branch on the result.
        """
        try:
            handle = self._registry.get(user_id)
            if handle is None or not handle.is_open:
                logger.debug("No open connection, dropping %s user_id=%s", envelope.type, user_id)  # type: ignore[attr-defined]
                self._count(False)
                return False
            handle.send_nowait(events.encode(envelope))
        except Exception as exc:
            logger.warning("Delivery failed user_id=%s: %s", user_id, exc)
            self._count(False)
            return False
        self._count(True)
        return True

    def application_updated(self, user_id: str, application: Mapping[str, Any]) -> bool:
        return self._deliver_record(
            user_id, events.ApplicationPayload, {"application": application},
            lambda payload: events.ApplicationUpdated(payload=payload),
        )

    def new_message(self, user_id: str, message: events.MessageRecord | Mapping[str, Any]) -> bool:
        return self._deliver_record(
            user_id, events.MessageRecord, message,
            lambda record: events.NewMessage(payload=events.MessagePayload(message=record)),
        )

    def new_notification(self, user_id: str, notification: events.NotificationRecord | Mapping[str, Any]) -> bool:
        return self._deliver_record(
            user_id, events.NotificationRecord, notification,
            lambda record: events.NewNotification(payload=events.NotificationPayload(notification=record)),
        )

    def notification_updated(self, user_id: str, notification: events.NotificationRecord | Mapping[str, Any]) -> bool:
        return self._deliver_record(
            user_id, events.NotificationRecord, notification,
            lambda record: events.NotificationUpdated(payload=events.NotificationPayload(notification=record)),
        )

    def notification_deleted(self, user_id: str, notification_id: str) -> bool:
        return self.deliver(
            user_id,
            events.NotificationDeleted(payload=events.NotificationDeletedPayload(id=str(notification_id))),
        )

    def _deliver_record(self, user_id: str, model: type[BaseModel], value: Any, wrap: Callable[[Any], BaseModel]) -> bool:
        try:
            record = value if isinstance(value, model) else model.model_validate(value)
        except ValueError as exc:
            # pydantic.ValidationError subclasses ValueError
            logger.warning("Malformed %s record user_id=%s: %s", model.__name__, user_id, exc)
            self._count(False)
            return False
        return self.deliver(user_id, wrap(record))

    def frame_dropped(self) -> None:
        """Move one frame from delivered to dropped.

        Connections call this for frames they accepted but never wrote, so
        ``delivered`` counts frames handed to a live socket.
        """
        with self._counter_lock:
            self.delivered -= 1
            self.dropped += 1

    def _count(self, delivered: bool) -> None:
        with self._counter_lock:
            if delivered:
                self.delivered += 1
            else:
                self.dropped += 1
