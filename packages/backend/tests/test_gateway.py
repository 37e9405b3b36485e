"""Real-time gateway tests — rooms, chat fan-out, typing, disconnects.

The gateway runs against fake in-memory connections and a per-test
SQLite database; the relay delivers locally (no Redis in tests).
"""

import asyncio
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import select

from skillwave.db.models import Message
from skillwave.realtime.gateway import Gateway


@pytest.fixture()
def gw(registry, relay, session_factory):
    return Gateway(registry, relay, session_factory)


@pytest_asyncio.fixture()
async def room(gw, make_user, make_category, make_request, make_conn):
    """Alice (requester) and Bob (helper) connected and joined to one room."""
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    req = await make_request(alice, await make_category(), helper=bob, status="in_progress")
    a, b = make_conn(alice), make_conn(bob)
    gw.connect(a)
    gw.connect(b)
    await gw.join_room(a, {"requestId": str(req.id)})
    await gw.join_room(b, {"requestId": str(req.id)})
    a.sent.clear()
    b.sent.clear()
    return req, alice, bob, a, b


# ═══════════════════════════════════════════════════════════
# join_room / leave_room
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_join_notifies_other_members(gw, registry, make_user, make_category,
                                           make_request, make_conn):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    req = await make_request(alice, await make_category(), helper=bob, status="in_progress")
    a, b = make_conn(alice), make_conn(bob)
    gw.connect(a)
    gw.connect(b)

    await gw.join_room(a, {"requestId": str(req.id)})
    await gw.join_room(b, {"requestId": str(req.id)})

    joined = a.events("user_joined_room")
    assert len(joined) == 1
    assert joined[0]["userId"] == str(bob.id)
    assert joined[0]["requestId"] == str(req.id)
    assert "timestamp" in joined[0]
    assert b.events("user_joined_room") == []
    assert registry.room_members(str(req.id)) == {str(alice.id), str(bob.id)}


@pytest.mark.asyncio
async def test_join_refused_for_outsider(gw, registry, make_user, make_category,
                                         make_request, make_conn):
    alice = await make_user("Alice")
    carol = await make_user("Carol")
    req = await make_request(alice, await make_category())
    a, c = make_conn(alice), make_conn(carol)
    gw.connect(a)
    gw.connect(c)
    await gw.join_room(a, {"requestId": str(req.id)})
    a.sent.clear()

    await gw.join_room(c, {"requestId": str(req.id)})

    assert c.events("error") == [{
        "event": "join_room",
        "requestId": str(req.id),
        "message": "Not authorized to join this room",
    }]
    assert a.sent == []
    assert registry.room_members(str(req.id)) == {str(alice.id)}


@pytest.mark.asyncio
async def test_join_missing_request(gw, registry, make_conn):
    c = make_conn(uuid.uuid4())
    gw.connect(c)
    missing = str(uuid.uuid4())
    await gw.join_room(c, {"requestId": missing})
    assert c.events("error")[0]["message"] == "Request not found"
    assert not registry.has_room(missing)


@pytest.mark.asyncio
async def test_join_malformed_request_id(gw, make_conn):
    c = make_conn(uuid.uuid4())
    gw.connect(c)
    await gw.join_room(c, {"requestId": "not-a-uuid"})
    assert c.events("error")[0]["event"] == "join_room"


@pytest.mark.asyncio
async def test_leave_room_notifies_remaining(gw, registry, room):
    req, alice, _, a, b = room
    await gw.leave_room(a, {"requestId": str(req.id)})

    left = b.events("user_left_room")
    assert left[0]["userId"] == str(alice.id)
    assert a.sent == []
    assert registry.user_rooms(str(alice.id)) == set()


@pytest.mark.asyncio
async def test_last_member_leaving_deletes_room(gw, registry, room):
    req, _, _, a, b = room
    await gw.leave_room(a, {"requestId": str(req.id)})
    await gw.leave_room(b, {"requestId": str(req.id)})
    assert not registry.has_room(str(req.id))


# ═══════════════════════════════════════════════════════════
# send_message
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_send_message_persists_and_fans_out(gw, room, db_session):
    req, alice, bob, a, b = room
    await gw.send_message(a, {"requestId": str(req.id), "content": "hi Bob"})

    # Everyone in the room gets the message, sender included
    for conn in (a, b):
        msgs = conn.events("message")
        assert len(msgs) == 1
        assert msgs[0]["content"] == "hi Bob"
        assert msgs[0]["senderName"] == "Alice"
        assert msgs[0]["isRead"] is False

    # Only the other member is notified
    assert a.events("notification") == []
    note = b.events("notification")[0]
    assert note["message"] == "New message from Alice"
    assert note["requestId"] == str(req.id)

    stored = (await db_session.execute(select(Message))).scalars().all()
    assert len(stored) == 1
    assert str(stored[0].id) == b.events("message")[0]["id"]


@pytest.mark.asyncio
async def test_send_message_file_fields(gw, room):
    req, _, _, a, b = room
    await gw.send_message(a, {
        "requestId": str(req.id),
        "content": "http://x/uploads/file-1-2.png",
        "messageType": "image",
        "fileName": "tree.png",
        "fileSize": 10,
        "fileUrl": "http://x/uploads/file-1-2.png",
    })
    msg = b.events("message")[0]
    assert msg["messageType"] == "image"
    assert msg["fileName"] == "tree.png"


@pytest.mark.asyncio
async def test_send_message_failure_reaches_sender_only(gw, room, make_user, make_conn):
    req, _, _, a, b = room
    carol = await make_user("Carol")
    c = make_conn(carol)
    gw.connect(c)

    await gw.send_message(c, {"requestId": str(req.id), "content": "let me in"})

    assert c.events("error") == [{
        "event": "send_message",
        "requestId": str(req.id),
        "message": "Failed to send message",
    }]
    assert a.sent == []
    assert b.sent == []


@pytest.mark.asyncio
async def test_send_message_unknown_sender_dropped(gw, room, make_conn, db_session):
    req, _, _, a, _ = room
    ghost = make_conn(uuid.uuid4())
    gw.connect(ghost)
    await gw.send_message(ghost, {"requestId": str(req.id), "content": "boo"})

    assert ghost.sent == []
    assert a.sent == []
    assert (await db_session.execute(select(Message))).scalars().all() == []


@pytest.mark.asyncio
async def test_concurrent_sends_both_delivered(gw, room, db_session):
    req, _, _, a, b = room
    await asyncio.gather(
        gw.send_message(a, {"requestId": str(req.id), "content": "from alice"}),
        gw.send_message(b, {"requestId": str(req.id), "content": "from bob"}),
    )
    for conn in (a, b):
        assert {m["content"] for m in conn.events("message")} == {"from alice", "from bob"}
    stored = (await db_session.execute(select(Message))).scalars().all()
    assert len(stored) == 2


# ═══════════════════════════════════════════════════════════
# typing / dispatch / disconnect
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_typing_relayed_to_others(gw, room):
    req, alice, _, a, b = room
    await gw.typing(a, {"requestId": str(req.id), "userName": "Alice", "isTyping": True})
    assert a.sent == []
    t = b.events("typing")[0]
    assert t["userId"] == str(alice.id)
    assert t["userName"] == "Alice"
    assert t["isTyping"] is True


@pytest.mark.asyncio
async def test_handle_dispatches_by_type(gw, room):
    req, _, _, a, b = room
    await gw.handle(a, {"type": "typing", "data": {"requestId": str(req.id), "isTyping": False}})
    assert b.events("typing")[0]["isTyping"] is False


@pytest.mark.asyncio
async def test_handle_unknown_event(gw, make_conn):
    c = make_conn("u1")
    await gw.handle(c, {"type": "teleport", "data": {}})
    assert c.events("error") == [{"event": "teleport", "message": "Unknown event"}]


@pytest.mark.asyncio
async def test_claimed_user_id_is_ignored(gw, room):
    req, alice, bob, a, b = room
    await gw.handle(a, {
        "type": "typing",
        "data": {"requestId": str(req.id), "userId": str(bob.id), "isTyping": True},
    })
    assert b.events("typing")[0]["userId"] == str(alice.id)


@pytest.mark.asyncio
async def test_disconnect_notifies_rooms(gw, registry, room):
    req, alice, _, a, b = room
    await gw.disconnect(a)
    assert b.events("user_left_room")[0]["userId"] == str(alice.id)
    assert not registry.is_connected(str(alice.id))
    assert registry.room_members(str(req.id)) == {str(b.user_id)}


@pytest.mark.asyncio
async def test_superseded_disconnect_is_silent(gw, registry, room, make_conn):
    req, alice, _, a, b = room
    newer = make_conn(alice)
    gw.connect(newer)

    await gw.disconnect(a)

    assert b.events("user_left_room") == []
    assert registry.get_connection(str(alice.id)) is newer
    assert str(alice.id) in registry.room_members(str(req.id))


@pytest.mark.asyncio
async def test_notification_reaches_newer_connection(gw, registry, room, make_conn):
    """A member who reconnected is notified on the socket now registered."""
    req, alice, _, a, b = room
    newer = make_conn(alice)
    gw.connect(newer)
    await gw.disconnect(a)

    await gw.send_message(b, {"requestId": str(req.id), "content": "hi"})

    assert str(alice.id) in registry.room_members(str(req.id))
    notes = newer.events("notification")
    assert len(notes) == 1
    assert notes[0]["message"] == "New message from Bob"
    assert b.events("notification") == []


@pytest.mark.asyncio
async def test_rejoin_restores_delivery(gw, room):
    req, _, _, a, b = room
    rid = str(req.id)

    await gw.leave_room(a, {"requestId": rid})
    await gw.send_message(b, {"requestId": rid, "content": "while you were out"})
    assert a.events("message") == []
    assert a.events("notification") == []

    await gw.join_room(a, {"requestId": rid})
    await gw.send_message(b, {"requestId": rid, "content": "welcome back"})

    assert [m["content"] for m in a.events("message")] == ["welcome back"]
    assert len(a.events("notification")) == 1


@pytest.mark.asyncio
async def test_leave_room_not_joined_is_ignored(gw, registry, room, make_user, make_conn):
    req, _, _, a, b = room
    carol = make_conn(await make_user("Carol"))
    gw.connect(carol)

    await gw.leave_room(carol, {"requestId": str(req.id)})

    assert a.sent == []
    assert b.sent == []
    assert len(registry.room_members(str(req.id))) == 2


@pytest.mark.asyncio
async def test_send_message_rejects_unknown_type(gw, room, db_session):
    req, _, _, a, b = room
    await gw.send_message(a, {
        "requestId": str(req.id),
        "content": "clip.mp4",
        "messageType": "video",
    })

    assert a.events("error") == [{
        "event": "send_message",
        "requestId": str(req.id),
        "message": "Failed to send message",
    }]
    assert b.sent == []
    assert (await db_session.execute(select(Message))).scalars().all() == []


@pytest.mark.asyncio
async def test_send_message_rejects_bad_file_size(gw, room, db_session):
    req, _, _, a, b = room
    await gw.send_message(a, {
        "requestId": str(req.id),
        "content": "notes.pdf",
        "messageType": "file",
        "fileSize": -5,
    })

    assert a.events("error")[0]["event"] == "send_message"
    assert b.sent == []
    assert (await db_session.execute(select(Message))).scalars().all() == []
