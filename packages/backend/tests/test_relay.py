"""Notification relay tests — envelope targeting and local delivery."""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from skillwave.realtime import pubsub
from skillwave.realtime.relay import make_envelope, message_notification, status_envelope


@pytest.mark.asyncio
async def test_room_envelope_excludes_connection(registry, relay, make_conn):
    a, b = make_conn("a"), make_conn("b")
    for c in (a, b):
        registry.connect(c)
        registry.join("r1", c)

    sent = await relay.deliver(make_envelope("typing", {"x": 1}, room="r1", exclude_connection=a.id))
    assert sent == 1
    assert a.sent == []
    assert b.sent == [("typing", {"x": 1})]


@pytest.mark.asyncio
async def test_targets_are_deduplicated(registry, relay, make_conn):
    a = make_conn("a")
    registry.connect(a)
    registry.join("r1", a)

    await relay.deliver(make_envelope("ping", {}, room="r1", user_ids=["a"], broadcast=True))
    assert len(a.sent) == 1


@pytest.mark.asyncio
async def test_exclude_user(registry, relay, make_conn):
    a, b = make_conn("a"), make_conn("b")
    for c in (a, b):
        registry.connect(c)
        registry.join("r1", c)

    await relay.deliver(make_envelope("notification", {}, room="r1", exclude_user="a"))
    assert a.sent == []
    assert len(b.sent) == 1


@pytest.mark.asyncio
async def test_failed_send_does_not_stop_others(registry, relay, make_conn):
    broken, ok = make_conn("a", fail=True), make_conn("b")
    registry.connect(broken)
    registry.connect(ok)

    sent = await relay.deliver(make_envelope("hello", {}, user_ids=["a", "b"]))
    assert sent == 1
    assert ok.sent == [("hello", {})]


@pytest.mark.asyncio
async def test_dispatch_without_redis_is_local(registry, relay, make_conn):
    a = make_conn("a")
    registry.connect(a)
    await relay.dispatch(make_envelope("hello", {"n": 1}, user_ids=["a"]))
    assert a.sent == [("hello", {"n": 1})]


def test_status_envelope_scoped_by_default():
    env = status_envelope(
        "request_status_updated", {}, request_id="r1", participant_ids=["a", None, "b"]
    )
    assert env["room"] == "r1"
    assert env["user_ids"] == ["a", "b"]
    assert env["broadcast"] is False


def test_status_envelope_broadcast_opt_in():
    env = status_envelope("request_accepted", {}, request_id="r1",
                          participant_ids=["a"], broadcast=True)
    assert env["broadcast"] is True
    assert env["room"] is None


def test_message_notification_payload():
    data = message_notification("r1", "Alice")
    assert data["requestId"] == "r1"
    assert data["message"] == "New message from Alice"
    assert data["senderName"] == "Alice"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_room_members_use_registered_connection(registry, relay, make_conn):
    old, b = make_conn("a"), make_conn("b")
    for c in (old, b):
        registry.connect(c)
        registry.join("r1", c)
    newer = make_conn("a")
    registry.connect(newer)

    await relay.deliver(
        make_envelope("notification", {}, room_members="r1", exclude_user="b")
    )
    assert newer.sent == [("notification", {})]
    assert old.sent == []
    assert b.sent == []


# ─── Redis listener ─────────────────────────────────────


class _FakePubSub:
    def __init__(self, fail: bool):
        self.fail = fail

    async def subscribe(self, *channels):
        pass

    async def listen(self):
        if self.fail:
            raise RedisConnectionError("connection lost")
        await asyncio.Event().wait()
        yield {}

    async def unsubscribe(self, *channels):
        pass

    async def aclose(self):
        pass


class _FakeRedis:
    def __init__(self, fail: bool):
        self.fail = fail
        self.subscriptions = 0

    def pubsub(self):
        self.subscriptions += 1
        return _FakePubSub(self.fail)


@pytest.fixture()
def fake_redis(monkeypatch):
    """Pretend Redis is up; publishes are recorded instead of sent."""
    published = []

    async def publish(envelope):
        published.append(envelope)

    redis = _FakeRedis(fail=False)
    redis.published = published
    monkeypatch.setattr(pubsub, "redis_available", lambda: True)
    monkeypatch.setattr(pubsub, "get_redis", lambda: redis)
    monkeypatch.setattr(pubsub, "publish_envelope", publish)
    return redis


async def _stop(task):
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@pytest.mark.asyncio
async def test_dispatch_publishes_while_subscribed(registry, relay, make_conn, fake_redis):
    a = make_conn("a")
    registry.connect(a)
    task = asyncio.create_task(relay.run_listener())
    await asyncio.sleep(0.01)
    try:
        assert relay.listening
        await relay.dispatch(make_envelope("hello", {}, user_ids=["a"]))
    finally:
        await _stop(task)

    assert [e["type"] for e in fake_redis.published] == ["hello"]
    assert a.sent == []
    assert not relay.listening


@pytest.mark.asyncio
async def test_lost_listener_falls_back_to_local_delivery(
    registry, relay, make_conn, fake_redis
):
    fake_redis.fail = True
    a = make_conn("a")
    registry.connect(a)
    task = asyncio.create_task(
        relay.run_listener(retry_seconds=0.01, max_retry_seconds=0.01)
    )
    await asyncio.sleep(0.05)
    try:
        # The listener keeps retrying instead of dying
        assert not task.done()
        assert fake_redis.subscriptions > 1
        assert not relay.listening

        await relay.dispatch(make_envelope("hello", {"n": 1}, user_ids=["a"]))
    finally:
        await _stop(task)

    assert fake_redis.published == []
    assert a.sent == [("hello", {"n": 1})]
