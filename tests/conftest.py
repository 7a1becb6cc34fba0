import asyncio

import pytest

from duet.registry import PeerRegistry, RoomTable


class FakeWebSocket:
    """Stands in for a Starlette WebSocket: records every frame sent to it."""

    def __init__(self, fail_sends=False):
        self.accepted = False
        self.sent = []
        self.fail_sends = fail_sends

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail_sends:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent.append(data)

    def types(self):
        return [m["type"] for m in self.sent]

    def of_type(self, kind):
        return [m for m in self.sent if m["type"] == kind]

    def clear(self):
        self.sent.clear()


@pytest.fixture
def peers():
    return PeerRegistry()


@pytest.fixture
def rooms():
    return RoomTable(capacity=2)


@pytest.fixture
def make_socket():
    return FakeWebSocket



class StalledWebSocket(FakeWebSocket):
    """A peer that stopped reading: the first send never completes."""

    def __init__(self):
        super().__init__()
        self.blocked = False

    async def send_json(self, data):
        self.blocked = True
        await asyncio.Event().wait()
