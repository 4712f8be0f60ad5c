import json

import pytest

from relay.models import Connection
from relay.transport import pump_outbox


class FakeWebSocket:
    def __init__(self, fail_on_send=False):
        self.sent = []
        self.closed_with = None
        self.fail_on_send = fail_on_send

    async def send_text(self, text):
        if self.fail_on_send:
            raise ConnectionResetError("peer went away")
        self.sent.append(json.loads(text))

    async def close(self, code=1000, reason=None):
        self.closed_with = (code, reason)


@pytest.mark.asyncio
async def test_flushes_frames_before_closing():
    websocket = FakeWebSocket()
    connection = Connection(identity="a", websocket=websocket)
    connection.send({"n": 1})
    connection.send({"n": 2})
    connection.close(1008, "Ratelimit exceeded")

    await pump_outbox(connection)

    assert websocket.sent == [{"n": 1}, {"n": 2}]
    assert websocket.closed_with == (1008, "Ratelimit exceeded")


@pytest.mark.asyncio
async def test_terminate_drops_queued_frames():
    websocket = FakeWebSocket()
    connection = Connection(identity="a", websocket=websocket)
    connection.send({"n": 1})
    connection.terminate(1001, "Keepalive timeout")

    await pump_outbox(connection)

    assert websocket.sent == []
    assert websocket.closed_with == (1001, "Keepalive timeout")


@pytest.mark.asyncio
async def test_send_failure_closes_connection():
    websocket = FakeWebSocket(fail_on_send=True)
    connection = Connection(identity="a", websocket=websocket)
    connection.send({"n": 1})

    await pump_outbox(connection)

    assert connection.closed
    assert websocket.closed_with == (1011, "Delivery failed")


def test_terminate_after_close_queues_nothing():
    connection = Connection(identity="a", websocket=FakeWebSocket())
    connection.close(1008, "Ratelimit exceeded")
    connection.terminate(1001, "Keepalive timeout")

    assert connection.outbox.qsize() == 1
    assert connection.close_code == 1008
