"""Gateway socket tests — handshake authentication and frame handling.

Uses Starlette's synchronous TestClient; these tests never touch the
database.
"""

import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from skillwave.auth.jwt import create_access_token
from skillwave.main import app
from skillwave.realtime.gateway import registry

USER_ID = "00000000-0000-0000-0000-0000000000a1"


def test_missing_token_closes_with_4001():
    with pytest.raises(WebSocketDisconnect) as exc:
        with TestClient(app).websocket_connect("/ws"):
            pass
    assert exc.value.code == 4001


def test_invalid_token_closes_with_4001():
    with pytest.raises(WebSocketDisconnect) as exc:
        with TestClient(app).websocket_connect("/ws?token=garbage"):
            pass
    assert exc.value.code == 4001


def test_ping_pong_and_presence():
    token = create_access_token(USER_ID)
    with TestClient(app).websocket_connect(f"/ws?token={token}") as ws:
        ws.send_text(json.dumps({"type": "ping"}))
        assert ws.receive_json() == {"type": "pong", "data": {}}
        assert registry.is_connected(USER_ID)

        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "data": {"message": "Invalid JSON"}}

        ws.send_text(json.dumps({"type": "teleport", "data": {}}))
        assert ws.receive_json()["data"]["message"] == "Unknown event"
