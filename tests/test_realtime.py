import pytest

from realtime import ConnectionManager


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, payload):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


@pytest.mark.asyncio
async def test_broadcast_reaches_every_connected_client():
    manager = ConnectionManager()
    first, second = FakeSocket(), FakeSocket()
    await manager.connect(first)
    await manager.connect(second)

    await manager.broadcast("complaintDeleted", "abc123")

    assert first.accepted and second.accepted
    assert first.sent == [{"type": "complaintDeleted", "data": "abc123"}]
    assert second.sent == first.sent


@pytest.mark.asyncio
async def test_failed_client_is_dropped_without_affecting_others():
    manager = ConnectionManager()
    broken, healthy = FakeSocket(fail=True), FakeSocket()
    await manager.connect(broken)
    await manager.connect(healthy)

    await manager.broadcast("newMessage", {"id": "m1"})
    await manager.broadcast("newMessage", {"id": "m2"})

    assert manager.active == [healthy]
    assert [p["data"]["id"] for p in healthy.sent] == ["m1", "m2"]


@pytest.mark.asyncio
async def test_disconnected_client_misses_later_events():
    manager = ConnectionManager()
    socket = FakeSocket()
    await manager.connect(socket)
    manager.disconnect(socket)
    manager.disconnect(socket)

    await manager.broadcast("complaintCreated", {"id": "c1"})

    assert socket.sent == []
