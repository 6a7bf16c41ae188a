# tests/v1/test_chat_socket.py
"""End-to-end tests for the chat WebSocket over the ASGI test client."""

import pytest
from starlette.websockets import WebSocketDisconnect

from parley_stage.core.security import create_access_token
from parley_stage.models import Message

WS_URL = "/api/v1/chat/ws"


def _connect(ws, user) -> None:
    ws.send_json({"event": "handshake", "data": {"token": create_access_token(user.id)}})
    assert ws.receive_json() == {"event": "connected", "data": {"user_id": user.id}}


def test_handshake_acknowledged(client, chat_channel, alice) -> None:
    with client.websocket_connect(WS_URL) as ws:
        _connect(ws, alice)
        assert chat_channel.registry.is_online(alice.id)


def test_invalid_token_closes_with_policy_violation(client, chat_channel) -> None:
    with client.websocket_connect(WS_URL) as ws:
        ws.send_json({"event": "handshake", "data": {"token": "forged"}})

        assert ws.receive_json() == {"event": "error", "data": {"message": "Authentication error"}}
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()

    assert exc_info.value.code == 1008
    assert chat_channel.registry.connection_count() == 0


def test_conversation_between_two_users(
    client, chat_channel, cipher, db_session, alice, bob, mutual_follow, bob_keys
) -> None:
    with client.websocket_connect(WS_URL) as alice_ws, client.websocket_connect(WS_URL) as bob_ws:
        _connect(alice_ws, alice)
        _connect(bob_ws, bob)

        alice_ws.send_json({"event": "start_chat", "data": bob.id})
        assert alice_ws.receive_json() == {"event": "chat_history", "data": []}

        alice_ws.send_json(
            {"event": "send_message", "data": {"receiverId": bob.id, "content": "hi"}}
        )
        echoed = alice_ws.receive_json()
        delivered = bob_ws.receive_json()

        assert echoed == delivered
        assert delivered["event"] == "new_message"
        assert cipher.decrypt_message(delivered["data"]["content"], bob_keys.private_key) == "hi"

        bob_ws.send_json({"event": "start_chat", "data": alice.id})
        history = bob_ws.receive_json()
        assert history["event"] == "chat_history"
        assert [m["id"] for m in history["data"]] == [delivered["data"]["id"]]

    assert chat_channel.registry.connection_count() == 0
    assert db_session.query(Message).count() == 1


def test_errors_do_not_close_the_session(client, chat_channel, alice, bob) -> None:
    with client.websocket_connect(WS_URL) as ws:
        _connect(ws, alice)

        ws.send_json({"event": "start_chat", "data": bob.id})
        assert ws.receive_json() == {
            "event": "error",
            "data": {"message": "Users must follow each other to chat"},
        }

        ws.send_json({"event": "wave", "data": None})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Unknown event: wave"}}

        ws.send_text("not json")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid payload"}}

        assert chat_channel.registry.is_online(alice.id)


def test_binary_frame_reports_invalid_payload_and_keeps_session(client, chat_channel, alice) -> None:
    with client.websocket_connect(WS_URL) as ws:
        _connect(ws, alice)

        ws.send_bytes(b'{"event":"wave","data":null}')
        assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid payload"}}

        ws.send_json({"event": "wave", "data": None})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Unknown event: wave"}}

        assert chat_channel.registry.is_online(alice.id)

    assert chat_channel.registry.connection_count() == 0


def test_empty_message_is_delivered(client, chat_channel, cipher, alice, bob, mutual_follow, bob_keys) -> None:
    with client.websocket_connect(WS_URL) as ws:
        _connect(ws, alice)
        ws.send_json({"event": "send_message", "data": {"receiverId": bob.id, "content": ""}})

        frame = ws.receive_json()

    assert frame["event"] == "new_message"
    assert cipher.decrypt_message(frame["data"]["content"], bob_keys.private_key) == ""


def test_receiver_without_key(client, chat_channel, db_session, alice, bob, mutual_follow) -> None:
    with client.websocket_connect(WS_URL) as ws:
        _connect(ws, alice)
        ws.send_json({"event": "send_message", "data": {"receiverId": bob.id, "content": "hi"}})

        assert ws.receive_json() == {
            "event": "error",
            "data": {"message": "Receiver has no public key"},
        }

    assert db_session.query(Message).count() == 0
