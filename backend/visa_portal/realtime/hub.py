from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from visa_portal.core.config import Settings
from visa_portal.core.security import decode_access_token
from visa_portal.realtime.dispatcher import EventDispatcher
from visa_portal.realtime.lifecycle import ConnectionLifecycle
from visa_portal.realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class RealtimeHub:
    """Owns the registry and the two components built around it.

    One hub per application instance, created with the app and shut down with
    it.
    """

    def __init__(
        self,
        verify: Callable[[str], Dict[str, Any]] = decode_access_token,
        max_queue: int = 100,
        registry: Optional[ConnectionRegistry] = None,
    ) -> None:
        self.registry = registry or ConnectionRegistry()
        self.dispatcher = EventDispatcher(self.registry)
        self.lifecycle = ConnectionLifecycle(
            self.registry, verify=verify, max_queue=max_queue, on_drop=self.dispatcher.frame_dropped,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "RealtimeHub":
        return cls(max_queue=settings.ws_send_queue_size)

    def stats(self) -> dict:
        return {
            "connections": len(self.registry),
            "delivered": self.dispatcher.delivered,
            "dropped": self.dispatcher.dropped,
        }

    def shutdown(self) -> None:
        closed = self.registry.close_all()
        if closed:
            logger.info("Closed %d realtime connection(s) on shutdown", closed)
