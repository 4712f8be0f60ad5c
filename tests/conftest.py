import pytest

from relay.message_handler import MessageHandler
from relay.room_manager import RoomManager

from tests.utils import StubAuthBridge, drain, make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def registry():
    return RoomManager()


@pytest.fixture
def auth_bridge():
    return StubAuthBridge()


@pytest.fixture
def handler(registry, settings, auth_bridge):
    return MessageHandler(registry, settings, auth_bridge=auth_bridge)


@pytest.fixture
def connect(handler):
    """Open a connection through the handler and discard its bootstrap frames"""

    def _connect(initial_room=None):
        connection = handler.open_connection(initial_room=initial_room)
        drain(connection)
        return connection

    return _connect
