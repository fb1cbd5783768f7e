import asyncio

from nosuite.schemas.storage import FileChangeEvent
from nosuite.services.broadcaster import ConnectionRegistry


class FakeConnection:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(message)


EVENT = FileChangeEvent(path="/notes/1.txt", action="write", app="notes.nosuite.fr", client_id="A")


def test_fans_out_with_by_self():
    registry = ConnectionRegistry()
    a, b, other_user = FakeConnection(), FakeConnection(), FakeConnection()
    registry.register(a, "a@x.com", "notes.nosuite.fr", "A")
    registry.register(b, "a@x.com", "notes.nosuite.fr", "B")
    registry.register(other_user, "b@x.com", "notes.nosuite.fr", "C")

    delivered = asyncio.run(registry.broadcast("a@x.com", EVENT, "A"))

    assert delivered == 2
    assert a.sent == [{"event": "file-change", "data": {**EVENT.model_dump(), "by_self": True}}]
    assert b.sent[0]["data"]["by_self"] is False
    assert b.sent[0]["data"]["path"] == "/notes/1.txt"
    assert other_user.sent == []


def test_without_origin_nobody_is_self():
    registry = ConnectionRegistry()
    a = FakeConnection()
    registry.register(a, "a@x.com", "notes.nosuite.fr", None)
    asyncio.run(registry.broadcast("a@x.com", EVENT, None))
    assert a.sent[0]["data"]["by_self"] is False


def test_failed_connection_is_dropped():
    registry = ConnectionRegistry()
    good, broken = FakeConnection(), FakeConnection(fail=True)
    registry.register(good, "a@x.com", "notes.nosuite.fr", "A")
    registry.register(broken, "a@x.com", "notes.nosuite.fr", "B")

    assert asyncio.run(registry.broadcast("a@x.com", EVENT, "A")) == 1
    assert [live.connection for live in registry.connections_for("a@x.com")] == [good]


def test_unregister_removes_every_membership():
    registry = ConnectionRegistry()
    conn = FakeConnection()
    registry.register(conn, "a@x.com", "notes.nosuite.fr", "A")
    registry.register(conn, "b@x.com", "notes.nosuite.fr", "A")
    assert registry.count() == 2

    registry.unregister(conn)
    assert registry.count() == 0
    assert registry.connections_for("a@x.com") == []
    assert asyncio.run(registry.broadcast("a@x.com", EVENT, "A")) == 0


def test_reregister_updates_client_id():
    registry = ConnectionRegistry()
    conn = FakeConnection()
    registry.register(conn, "a@x.com", "notes.nosuite.fr", "A")
    registry.register(conn, "a@x.com", "notes.nosuite.fr", "A2")
    assert [live.client_id for live in registry.connections_for("a@x.com")] == ["A2"]


def test_registries_are_isolated():
    first, second = ConnectionRegistry(), ConnectionRegistry()
    first.register(FakeConnection(), "a@x.com", "notes.nosuite.fr")
    assert second.count() == 0
