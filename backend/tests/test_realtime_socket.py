import contextlib
from datetime import datetime, timedelta, timezone

import pytest
from starlette.websockets import WebSocketDisconnect


@pytest.fixture
def put_calls(app, monkeypatch):
    registry = app.state.realtime.registry
    calls = []
    original = registry.put

    def spy(user_id, handle):
        calls.append(user_id)
        return original(user_id, handle)

    monkeypatch.setattr(registry, "put", spy)
    return calls


def _expect_rejection(client, url: str) -> WebSocketDisconnect:
    with client.websocket_connect(url) as ws:
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    return exc.value


def test_missing_token_is_rejected(client, app, put_calls):
    exc = _expect_rejection(client, "/ws")
    assert exc.code == 1008
    assert exc.reason == "Token required"
    assert put_calls == []
    assert len(app.state.realtime.registry) == 0


def test_token_in_header_is_not_enough(client, put_calls, token_for):
    with client.websocket_connect("/ws", headers={"Authorization": f"Bearer {token_for('u1')}"}) as ws:
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.reason == "Token required"
    assert put_calls == []


def test_wrongly_signed_token_is_rejected(client, app, put_calls, raw_token):
    token = raw_token({"sub": "u1"}, secret="some-other-secret-that-is-long-enough!!")
    exc = _expect_rejection(client, f"/ws?token={token}")
    assert exc.code == 1008
    assert exc.reason == "Invalid token"
    assert put_calls == []
    assert len(app.state.realtime.registry) == 0


def test_expired_token_is_rejected(client, put_calls, raw_token):
    token = raw_token({"sub": "u1", "exp": datetime.now(tz=timezone.utc) - timedelta(minutes=1)})
    exc = _expect_rejection(client, f"/ws?token={token}")
    assert exc.reason == "Invalid token"
    assert put_calls == []


def test_garbage_token_is_rejected(client, put_calls):
    exc = _expect_rejection(client, "/ws?token=not-a-jwt")
    assert exc.reason == "Invalid token"
    assert put_calls == []


def test_token_without_identity_is_rejected(client, app, put_calls, raw_token):
    token = raw_token({"roles": ["applicant"]})
    exc = _expect_rejection(client, f"/ws?token={token}")
    assert exc.code == 1008
    assert exc.reason == "Invalid token payload"
    assert put_calls == []
    assert len(app.state.realtime.registry) == 0


def test_valid_token_registers_and_greets(client, app, token_for):
    registry = app.state.realtime.registry
    with client.websocket_connect(f"/ws?token={token_for('u1')}") as ws:
        assert ws.receive_json() == {"type": "connection-established", "payload": {}}
        handle = registry.get("u1")
        assert handle is not None and handle.is_open
        assert handle.user_id == "u1"
    # Close handler ran when the client went away
    assert registry.get("u1") is None


def test_legacy_id_claim_is_accepted(client, app, raw_token):
    token = raw_token({"id": "legacy-7", "role": "applicant"})
    with client.websocket_connect(f"/ws?token={token}") as ws:
        assert ws.receive_json()["type"] == "connection-established"
        assert "legacy-7" in app.state.realtime.registry


def test_reconnect_replaces_previous_connection(client, app, token_for):
    registry = app.state.realtime.registry
    dispatcher = app.state.realtime.dispatcher
    url = f"/ws?token={token_for('u1')}"

    with client.websocket_connect(url) as c1:
        c1.receive_json()
        first = registry.get("u1")
        with client.websocket_connect(url) as c2:
            c2.receive_json()
            second = registry.get("u1")
            assert second is not first
            assert not first.is_open

            with pytest.raises(WebSocketDisconnect) as exc:
                c1.receive_json()
            assert exc.value.code == 1000
            assert exc.value.reason == "Replaced by a newer connection"

            assert dispatcher.notification_deleted("u1", "n-1") is True
            assert c2.receive_json() == {"type": "notification-deleted", "payload": {"id": "n-1"}}


def test_late_close_of_replaced_connection_keeps_new_one(client, app, token_for):
    registry = app.state.realtime.registry
    url = f"/ws?token={token_for('u1')}"

    with contextlib.ExitStack() as first_session:
        c1 = first_session.enter_context(client.websocket_connect(url))
        c1.receive_json()
        with client.websocket_connect(url) as c2:
            c2.receive_json()
            current = registry.get("u1")

            # Tear down the first socket while the second is still live
            first_session.close()

            assert registry.get("u1") is current
            app.state.realtime.dispatcher.notification_deleted("u1", "n-2")
            assert c2.receive_json()["payload"] == {"id": "n-2"}


def test_events_for_offline_user_are_dropped(client, app):
    dispatcher = app.state.realtime.dispatcher
    before = dispatcher.delivered
    assert dispatcher.notification_deleted("never-connected", "n-1") is False
    assert dispatcher.delivered == before


def test_client_messages_are_ignored(client, app, token_for):
    with client.websocket_connect(f"/ws?token={token_for('u1')}") as ws:
        ws.receive_json()
        ws.send_text("ping")
        ws.send_bytes(b"\x00")
        app.state.realtime.dispatcher.notification_deleted("u1", "n-3")
        assert ws.receive_json()["type"] == "notification-deleted"
