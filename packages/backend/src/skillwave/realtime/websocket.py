"""WebSocket endpoint — the gateway's transport.

Each client connects to /ws?token=JWT. The handler:
1. Authenticates via the JWT query param (close 4001 on failure)
2. Registers the connection in the presence registry
3. Feeds every client frame to the gateway until the socket closes
4. Cleans up presence (user_left_room fan-out) on disconnect

One connection per user per process; a newer socket replaces an older
one's registry entry without closing it.
"""

import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from skillwave.auth.dependencies import identity_from_token
from skillwave.errors import AuthenticationError
from skillwave.realtime.gateway import WebSocketConnection, gateway

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws")
async def gateway_websocket(websocket: WebSocket):
    # ── Authentication ──────────────────────────────────────
    token = websocket.query_params.get("token")
    try:
        if not token:
            raise AuthenticationError("Authentication required")
        identity = identity_from_token(token)
    except AuthenticationError as e:
        logger.warning("gateway.auth_failed", error=e.message)
        await websocket.close(code=4001, reason=e.message)
        return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()
    conn = WebSocketConnection(websocket, identity.user_id)
    gateway.connect(conn)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await conn.send("error", {"message": "Invalid JSON"})
                continue
            if not isinstance(frame, dict):
                await conn.send("error", {"message": "Invalid frame"})
                continue
            if frame.get("type") == "ping":
                await conn.send("pong")
                continue
            await gateway.handle(conn, frame)
    except WebSocketDisconnect:
        pass
    finally:
        await gateway.disconnect(conn)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
