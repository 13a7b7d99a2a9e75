from __future__ import annotations

import json


def _auth(ws, user_id: int) -> None:
    ws.send_json({"type": "auth", "userId": user_id})
    assert ws.receive_json() == {"type": "auth_success"}


def _private(receiver_id: int, content: str) -> dict:
    return {"type": "private_message", "receiverId": receiver_id, "content": content, "mediaType": "text", "mediaUrl": ""}


def _chat(room_id: int, content: str) -> dict:
    return {"type": "chat_message", "roomId": room_id, "content": content, "mediaType": "text", "mediaUrl": ""}


def _sync(ws) -> None:
    """Round-trip an invalid frame; anything pushed to ws before it would be received first."""
    ws.send_text("sync")
    assert ws.receive_json() == {"type": "error", "message": "Invalid message format"}


def test_auth_registers_connection_until_close(client, registry):
    with client.websocket_connect("/ws") as ws:
        _auth(ws, 42)
        assert len(registry.connections_for(42)) == 1

    assert 42 not in registry


def test_each_connection_counts_until_it_closes(client, registry):
    with client.websocket_connect("/ws") as tab_1:
        _auth(tab_1, 7)
        with client.websocket_connect("/ws") as tab_2:
            _auth(tab_2, 7)
            with client.websocket_connect("/ws") as tab_3:
                _auth(tab_3, 7)
                assert len(registry.connections_for(7)) == 3
            assert len(registry.connections_for(7)) == 2
        assert len(registry.connections_for(7)) == 1

    assert 7 not in registry
    assert registry.connection_count() == 0


def test_private_message_reaches_every_receiver_connection_only(client):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob_1, client.websocket_connect(
        "/ws"
    ) as bob_2:
        _auth(alice, 1)
        _auth(bob_1, 2)
        _auth(bob_2, 2)

        alice.send_json(_private(2, "hello bob"))

        for bob in (bob_1, bob_2):
            frame = bob.receive_json()
            assert frame["type"] == "private_message"
            message = frame["message"]
            assert message["senderId"] == 1
            assert message["receiverId"] == 2
            assert message["content"] == "hello bob"
            assert message["read"] is False
            assert "createdAt" in message and "id" in message

        # The sender gets no echo.
        _sync(alice)

        # Exactly one push per connection: the next frame is the next message.
        alice.send_json(_private(2, "second"))
        assert bob_1.receive_json()["message"]["content"] == "second"
        assert bob_2.receive_json()["message"]["content"] == "second"


def test_message_to_offline_user_is_persisted_without_pushes(client, store):
    with client.websocket_connect("/ws") as ws:
        _auth(ws, 42)
        ws.send_json(_private(99, "hi"))
        _sync(ws)

    [message] = store.get_messages_between_users(42, 99)
    assert message.sender_id == 42
    assert message.receiver_id == 99
    assert message.content == "hi"
    assert message.read is False


def test_persistence_failure_reports_error_and_delivers_nothing(client, redis_faults, store):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        _auth(alice, 1)
        _auth(bob, 2)

        redis_faults.fail("incr")
        alice.send_json(_private(2, "lost"))
        assert alice.receive_json() == {"type": "error", "message": "Failed to process message"}

        redis_faults.clear()
        alice.send_json(_private(2, "kept"))
        assert bob.receive_json()["message"]["content"] == "kept"

    assert [m.content for m in store.get_messages_between_users(1, 2)] == ["kept"]


def test_failed_index_write_leaves_no_message_behind(client, redis_faults, store):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        _auth(alice, 1)
        _auth(bob, 2)

        redis_faults.fail("sadd")
        alice.send_json(_private(2, "half written"))
        assert alice.receive_json() == {"type": "error", "message": "Failed to process message"}
        _sync(bob)

    redis_faults.clear()
    assert store.get_messages_between_users(1, 2) == []
    assert store.get_message(1) is None
    assert store.get_unread_message_count(2) == 0


def test_room_persistence_failure_reports_error_and_delivers_nothing(client, redis_faults, store):
    room = store.create_chat_room("general", created_by=1)
    store.add_user_to_room(room.id, 2)

    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        _auth(alice, 1)
        _auth(bob, 2)

        redis_faults.fail("incr")
        alice.send_json(_chat(room.id, "lost"))
        assert alice.receive_json() == {"type": "error", "message": "Failed to process message"}
        _sync(bob)

    redis_faults.clear()
    assert store.get_chat_messages_by_room_id(room.id) == []


def test_room_message_fans_out_to_each_member_connection(client, store):
    room = store.create_chat_room("general", created_by=1)
    store.add_user_to_room(room.id, 2)
    store.add_user_to_room(room.id, 3)

    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob_1, client.websocket_connect(
        "/ws"
    ) as bob_2:
        _auth(alice, 1)
        _auth(bob_1, 2)
        _auth(bob_2, 2)

        alice.send_json(_chat(room.id, "hi all"))

        for ws in (alice, bob_1, bob_2):
            frame = ws.receive_json()
            assert frame["type"] == "chat_message"
            assert frame["message"]["roomId"] == room.id
            assert frame["message"]["userId"] == 1
            assert frame["message"]["content"] == "hi all"

        # No duplicates: the next frame each Bob tab sees is a fresh direct message.
        alice.send_json(_private(2, "just you"))
        assert bob_1.receive_json()["type"] == "private_message"
        assert bob_2.receive_json()["type"] == "private_message"

    # Carol was offline; the message is still in the room history.
    assert [m.content for m in store.get_chat_messages_by_room_id(room.id)] == ["hi all"]


def test_room_membership_is_resolved_per_message(client, store):
    room = store.create_chat_room("general", created_by=1)

    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        _auth(alice, 1)
        _auth(bob, 2)

        alice.send_json(_chat(room.id, "before bob joined"))
        assert alice.receive_json()["message"]["content"] == "before bob joined"

        store.add_user_to_room(room.id, 2)
        alice.send_json(_chat(room.id, "after bob joined"))
        assert alice.receive_json()["message"]["content"] == "after bob joined"
        assert bob.receive_json()["message"]["content"] == "after bob joined"


def test_membership_lookup_failure_keeps_message_and_reports_error(client, store, redis_faults):
    room = store.create_chat_room("general", created_by=1)

    with client.websocket_connect("/ws") as alice:
        _auth(alice, 1)
        redis_faults.fail("smembers")
        alice.send_json(_chat(room.id, "stored anyway"))
        assert alice.receive_json() == {"type": "error", "message": "Message saved but could not be delivered"}

    redis_faults.clear()
    assert [m.content for m in store.get_chat_messages_by_room_id(room.id)] == ["stored anyway"]


def test_messages_before_auth_are_rejected(client, registry, store):
    with client.websocket_connect("/ws") as ws:
        ws.send_json(_private(2, "too early"))
        assert ws.receive_json() == {"type": "error", "message": "Not authenticated"}
        assert registry.user_count() == 0

    assert store.get_messages_between_users(1, 2) == []


def test_malformed_auth_is_ignored_and_connection_stays_unauthenticated(client, registry):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "auth", "userId": "42"})
        ws.send_json({"type": "auth", "userId": -1})
        ws.send_json({"type": "auth", "userId": True})
        ws.send_json({"type": "auth"})

        # None of the attempts above produced a frame.
        ws.send_json(_private(2, "still anonymous"))
        assert ws.receive_json() == {"type": "error", "message": "Not authenticated"}
        assert registry.user_count() == 0

        _auth(ws, 42)
        assert len(registry.connections_for(42)) == 1


def test_invalid_frames_get_error_frames_and_connection_stays_open(client):
    with client.websocket_connect("/ws") as ws:
        _auth(ws, 5)

        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "message": "Invalid message format"}

        ws.send_text("[1, 2]")
        assert ws.receive_json() == {"type": "error", "message": "Invalid message format"}

        ws.send_json({"type": "typing"})
        assert ws.receive_json() == {"type": "error", "message": "Unknown message type: typing"}

        ws.send_json({"content": "no type"})
        assert ws.receive_json() == {"type": "error", "message": "Unknown message type: None"}

        ws.send_json({"type": "private_message", "content": "who to?"})
        frame = ws.receive_json()
        assert frame["type"] == "error"
        assert frame["message"].startswith("Invalid private_message")

        ws.send_json(_private(6, ""))
        assert ws.receive_json()["type"] == "error"

        # Still usable: a message to self is pushed back on this connection.
        ws.send_bytes(json.dumps(_private(5, "note to self")).encode())
        frame = ws.receive_json()
        assert frame["type"] == "private_message"
        assert frame["message"]["content"] == "note to self"


def test_repeated_auth_does_not_duplicate_delivery(client, registry):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        _auth(bob, 2)
        _auth(bob, 2)
        assert len(registry.connections_for(2)) == 1

        _auth(alice, 1)
        alice.send_json(_private(2, "once"))
        alice.send_json(_private(2, "twice"))
        assert bob.receive_json()["message"]["content"] == "once"
        assert bob.receive_json()["message"]["content"] == "twice"


def test_reauth_as_another_user_moves_the_registration(client, registry):
    with client.websocket_connect("/ws") as ws:
        _auth(ws, 1)
        _auth(ws, 2)

        assert 1 not in registry
        assert len(registry.connections_for(2)) == 1

    assert registry.user_count() == 0


def test_frames_from_several_senders_arrive_in_send_order(client):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        _auth(alice, 1)
        _auth(bob, 2)

        for i in range(5):
            alice.send_json(_private(2, f"m{i}"))

        assert [bob.receive_json()["message"]["content"] for _ in range(5)] == ["m0", "m1", "m2", "m3", "m4"]
