"""
Real-time message relay: connection and room registry, packet validation
and command routing
"""

from .models import (
    Connection,
    Room,
    Status,
    CommandType,
    ResponseType,
    PacketState,
    create_response,
    create_server_packet,
)
from .config import RelaySettings, get_settings, reset_settings
from .validators import validate_packet, validate_room, parse_packet
from .room_manager import RoomManager
from .message_handler import MessageHandler
from .monitor import LivenessMonitor
from .auth import AuthBridge
from .transport import pump_outbox
from .logger import (
    get_logger,
    set_log_level,
    log_security_event,
    log_connection_event,
    log_packet_event,
    log_websocket_event,
    log_system_event,
)

__all__ = [
    'Connection',
    'Room',
    'Status',
    'CommandType',
    'ResponseType',
    'PacketState',
    'create_response',
    'create_server_packet',
    'RelaySettings',
    'get_settings',
    'reset_settings',
    'validate_packet',
    'validate_room',
    'parse_packet',
    'RoomManager',
    'MessageHandler',
    'LivenessMonitor',
    'AuthBridge',
    'pump_outbox',
    'get_logger',
    'set_log_level',
    'log_security_event',
    'log_connection_event',
    'log_packet_event',
    'log_websocket_event',
    'log_system_event',
]
