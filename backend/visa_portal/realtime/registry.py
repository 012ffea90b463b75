from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from visa_portal.realtime.connection import ConnectionHandle

logger = logging.getLogger(__name__)

REPLACED_CLOSE_CODE = 1000
REPLACED_REASON = "Replaced by a newer connection"


class ConnectionRegistry:
    """Maps a user id to the single live connection for that user.

    Sync route handlers run on worker threads, so every operation takes the
    lock. No I/O happens here beyond asking an evicted handle to close, which
    is non-blocking.
    """

    def __init__(self) -> None:
        self._handles: Dict[str, ConnectionHandle] = {}
        self._lock = threading.Lock()

    def put(self, user_id: str, handle: ConnectionHandle) -> Optional[ConnectionHandle]:
        """Register ``handle`` for ``user_id``, evicting any previous handle.

        The previous handle is closed before the new one becomes visible, so
        no event can reach two connections of the same user. Returns the
        evicted handle, if any.
        """
        with self._lock:
            previous = self._handles.get(user_id)
            if previous is handle:
                return None
            if previous is not None:
                try:
                    previous.close_nowait(REPLACED_CLOSE_CODE, REPLACED_REASON)
                except Exception:
                    logger.exception("Failed to close evicted connection user_id=%s", user_id)
            self._handles[user_id] = handle
        if previous is not None:
            logger.info("Evicted previous connection user_id=%s", user_id)
        return previous

    def remove(self, user_id: str, handle: ConnectionHandle) -> bool:
        """Drop the entry for ``user_id`` only if it still points at ``handle``.

        A late close from a replaced connection must not wipe out the newer
        registration.
        """
        with self._lock:
            if self._handles.get(user_id) is not handle:
                return False
            del self._handles[user_id]
            return True

    def get(self, user_id: str) -> Optional[ConnectionHandle]:
        with self._lock:
            return self._handles.get(user_id)

    def user_ids(self) -> List[str]:
        with self._lock:
            return list(self._handles)

    def close_all(self, code: int = 1001, reason: str = "Server shutting down") -> int:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            try:
                handle.close_nowait(code, reason)
            except Exception:
                logger.exception("Failed to close connection user_id=%s", handle.user_id)
        return len(handles)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._handles
