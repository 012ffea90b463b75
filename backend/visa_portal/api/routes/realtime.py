from fastapi import APIRouter, WebSocket

router = APIRouter()

@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    """Realtime push channel.

    The client passes its access token in the query string (``/ws?token=...``)
    because browsers cannot set headers on the upgrade request. Frames sent by
    the server look like ``{"type": "new-notification", "payload": {...}}``.
    """
    await websocket.app.state.realtime.lifecycle.serve(websocket)
