"""Message API tests — history, send, read state, unread counts."""

import uuid

import pytest
import pytest_asyncio

from skillwave.errors import ValidationError
from skillwave.services.message_service import MessageService


@pytest_asyncio.fixture()
async def chat(make_user, make_category, make_request):
    """A request in progress between Alice (requester) and Bob (helper)."""
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    carol = await make_user("Carol")
    req = await make_request(
        alice, await make_category(), helper=bob, status="in_progress"
    )
    return alice, bob, carol, req


async def _send(client, req, content="hello", **extra):
    return await client.post(
        "/api/messages", json={"requestId": str(req.id), "content": content, **extra}
    )


# ═══════════════════════════════════════════════════════════
# Send + history
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_send_and_history_oldest_first(client, act_as, chat):
    alice, bob, _, req = chat

    act_as(alice)
    r = await _send(client, req, "first")
    assert r.status_code == 201
    msg = r.json()
    assert msg["senderName"] == "Alice"
    assert msg["messageType"] == "text"
    assert msg["isRead"] is False

    act_as(bob)
    await _send(client, req, "second")

    r = await client.get(f"/api/messages/request/{req.id}")
    assert r.status_code == 200
    assert [m["content"] for m in r.json()] == ["first", "second"]
    assert r.json()[1]["senderId"] == str(bob.id)


@pytest.mark.asyncio
async def test_send_file_message(client, act_as, chat):
    alice, _, _, req = chat
    act_as(alice)
    r = await _send(
        client,
        req,
        "http://test/uploads/file-1-2.pdf",
        messageType="file",
        fileName="notes.pdf",
        fileSize=2048,
        fileUrl="http://test/uploads/file-1-2.pdf",
    )
    assert r.status_code == 201
    assert r.json()["fileName"] == "notes.pdf"
    assert r.json()["fileSize"] == 2048


@pytest.mark.asyncio
async def test_send_emails_other_party_and_pushes_to_room(
    client, act_as, chat, emails, registry, make_conn
):
    alice, bob, _, req = chat
    bob_conn = make_conn(bob)
    registry.connect(bob_conn)
    registry.join(str(req.id), bob_conn)

    act_as(alice)
    await _send(client, req, "are you there?")

    assert emails.to(bob.email)[0]["subject"] == f"New message on request: {req.title}"
    assert emails.to(alice.email) == []
    pushed = bob_conn.events("message")
    assert len(pushed) == 1
    assert pushed[0]["content"] == "are you there?"


@pytest.mark.asyncio
async def test_outsider_cannot_read_or_send(client, act_as, chat):
    _, _, carol, req = chat
    act_as(carol)
    assert (await client.get(f"/api/messages/request/{req.id}")).status_code == 403
    assert (await _send(client, req)).status_code == 403


@pytest.mark.asyncio
async def test_missing_request_is_404(client, act_as, chat):
    alice, _, _, _ = chat
    act_as(alice)
    r = await client.get(f"/api/messages/request/{uuid.uuid4()}")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_empty_content_rejected(client, act_as, chat):
    alice, _, _, req = chat
    act_as(alice)
    assert (await _send(client, req, "")).status_code == 422


# ═══════════════════════════════════════════════════════════
# Read state
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_unread_count_and_mark_request_read(
    client, act_as, chat, make_category, make_request
):
    alice, bob, _, req = chat

    act_as(alice)
    await _send(client, req, "one")
    await _send(client, req, "two")

    # A second request Bob helps with
    other = await make_request(alice, await make_category("Design"), helper=bob,
                               status="in_progress")
    await _send(client, other, "three")

    act_as(bob)
    r = await client.get("/api/messages/unread/count")
    assert r.json() == {"count": 3}

    r = await client.put(f"/api/messages/request/{req.id}/read")
    assert r.status_code == 200
    assert r.json()["message"] == "Messages marked as read"
    assert (await client.get("/api/messages/unread/count")).json() == {"count": 1}

    history = (await client.get(f"/api/messages/request/{req.id}")).json()
    assert all(m["isRead"] for m in history)


@pytest.mark.asyncio
async def test_mark_all_read(client, act_as, chat):
    alice, bob, _, req = chat
    act_as(alice)
    await _send(client, req, "one")

    act_as(bob)
    r = await client.put("/api/messages/read-all")
    assert r.status_code == 200
    assert (await client.get("/api/messages/unread/count")).json() == {"count": 0}


@pytest.mark.asyncio
async def test_unread_count_ignores_other_requests(client, act_as, chat):
    alice, _, carol, req = chat
    act_as(alice)
    await _send(client, req, "private")

    act_as(carol)
    assert (await client.get("/api/messages/unread/count")).json() == {"count": 0}


@pytest.mark.asyncio
async def test_outsider_cannot_mark_read(client, act_as, chat):
    _, _, carol, req = chat
    act_as(carol)
    r = await client.put(f"/api/messages/request/{req.id}/read")
    assert r.status_code == 403


# ═══════════════════════════════════════════════════════════
# Message type
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_unknown_message_type_rejected_by_api(client, act_as, chat):
    alice, _, _, req = chat
    act_as(alice)
    r = await _send(client, req, content="clip.mp4", messageType="video")
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_unknown_message_type_rejected_by_service(chat, db_session):
    alice, _, _, req = chat
    with pytest.raises(ValidationError, match="Invalid message type"):
        await MessageService(db_session).send_message(
            request_id=req.id,
            sender_id=alice.id,
            content="clip.mp4",
            message_type="video",
        )
