from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import jwt
from fastapi import WebSocket, status

from visa_portal.core.security import TokenPayloadError, decode_access_token, identity_from_payload
from visa_portal.realtime import events
from visa_portal.realtime.connection import WebSocketConnection
from visa_portal.realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

TOKEN_REQUIRED = "Token required"
INVALID_TOKEN = "Invalid token"
INVALID_TOKEN_PAYLOAD = "Invalid token payload"


class ConnectionLifecycle:
    """Authenticates inbound sockets and keeps the registry in step with them.

    This is the only component that adds or removes registry entries.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        verify: Callable[[str], Dict[str, Any]] = decode_access_token,
        max_queue: int = 100,
        on_drop: Optional[Callable[[], None]] = None,
    ) -> None:
        self._registry = registry
        self._verify = verify
        self._max_queue = max_queue
        self._on_drop = on_drop

    async def serve(self, websocket: WebSocket) -> None:
        """Run one socket from handshake to close."""
        # Accept first so the close frame (and its reason) reaches the client
        await websocket.accept()
        user_id = await self._authenticate(websocket)
        if user_id is None:
            return

        connection = WebSocketConnection(
            websocket, user_id, asyncio.get_running_loop(), self._max_queue, on_drop=self._on_drop,
        )
        connection.start()
        self._registry.put(user_id, connection)
        logger.info("Client connected user_id=%s", user_id)
        try:
            connection.send_nowait(events.encode(events.ConnectionEstablished()), tracked=False)
            # Clients do not send anything meaningful; read only to notice the disconnect
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except ConnectionError as exc:
            # Client left between the handshake and the greeting
            logger.info("Connection closed early user_id=%s: %s", user_id, exc)
        except Exception:
            logger.exception("Socket error user_id=%s", user_id)
        finally:
            self._registry.remove(user_id, connection)
            await connection.aclose()
            logger.info("Client disconnected user_id=%s", user_id)

    async def _authenticate(self, websocket: WebSocket) -> str | None:
        token = websocket.query_params.get("token")
        if not token:
            logger.warning("Connection attempt without token")
            await self._reject(websocket, TOKEN_REQUIRED)
            return None
        try:
            payload = self._verify(token)
        except (jwt.PyJWTError, ValueError) as exc:
            logger.warning("Authentication error: %s", exc)
            await self._reject(websocket, INVALID_TOKEN)
            return None
        try:
            return identity_from_payload(payload)
        except TokenPayloadError:
            logger.warning("Token missing user id")
            await self._reject(websocket, INVALID_TOKEN_PAYLOAD)
            return None

    async def _reject(self, websocket: WebSocket, reason: str) -> None:
        try:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)
        except RuntimeError as exc:
            # The client hung up during the handshake
            logger.debug("Close after rejection failed: %s", exc)
