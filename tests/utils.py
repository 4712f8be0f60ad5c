import json

from relay.config import RelaySettings
from relay.models import AuthResult, CloseFrame


class StubAuthBridge:
    """Auth bridge double; set ``gate`` to an asyncio.Event to hold calls until it is set"""

    def __init__(self, result=AuthResult(True, 200)):
        self.result = result
        self.calls = []
        self.gate = None

    async def authenticate(self, uuid, token):
        self.calls.append((uuid, token))
        if self.gate is not None:
            await self.gate.wait()
        return self.result

    async def aclose(self):
        pass


def make_settings(**overrides):
    values = {
        "max_packets_per_window": 5,
        "keepalive_interval": 60,
        "auth_url": "http://auth.test/v1/auth-token",
    }
    values.update(overrides)
    return RelaySettings(**values)


def packet(command_type, targets=None, data=None, packet_id=1, meta=None):
    return json.dumps({
        "command": {"type": command_type, "meta": meta},
        "targets": targets,
        "data": data,
        "id": packet_id,
    })


def drain(connection):
    """Pop every queued frame from a connection, decoding JSON frames"""
    frames = []
    while not connection.outbox.empty():
        frame = connection.outbox.get_nowait()
        frames.append(frame if isinstance(frame, CloseFrame) else json.loads(frame))
    return frames


def responses(frames):
    return [frame for frame in frames if isinstance(frame, dict) and frame.get("packetState") == 0]


def server_packets(frames, command_type=None):
    return [
        frame for frame in frames
        if isinstance(frame, dict) and frame.get("packetState") == 1
        and (command_type is None or frame["command"]["type"] == command_type)
    ]
