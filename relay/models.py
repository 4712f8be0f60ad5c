"""
Data models for the relay: connection and room state, decoded commands, wire packets
"""

import asyncio
import json
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from .constants import NO_ROOM_WIRE, OUTBOX_LIMIT

RoomId = Union[int, float]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Millisecond timestamp used for server-assigned packet ids"""
    return int(time.time() * 1000)


def is_room_id(value: Any) -> bool:
    """Room ids are finite numbers; bools are rejected even though they are ints"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def room_to_wire(room: Optional[RoomId]):
    return NO_ROOM_WIRE if room is None else room


class Status(IntEnum):
    """Result kinds, numerically identical to the HTTP codes used on the wire"""
    OK = 200
    CREATED = 201
    NOT_MODIFIED = 304
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    NOT_ACCEPTABLE = 406
    CONFLICT = 409
    PAYLOAD_TOO_LARGE = 413
    LOCKED = 423
    TOO_MANY_REQUESTS = 429
    INTERNAL_ERROR = 500
    NOT_IMPLEMENTED = 501

    @property
    def accepted(self) -> bool:
        return self.value < 300


class CommandType(str, Enum):
    USERNAME = "username"
    PACKET = "packet"
    ROOM = "room"
    INFO = "info"
    AUTH = "auth"
    # Server to client
    USERLIST = "userlist"
    UUID = "uuid"
    PING = "ping"
    ERROR = "error"
    # Optional idle keepalive from clients, handled before validation
    PONG = "pong"

    @classmethod
    def parse(cls, value: Any) -> Optional["CommandType"]:
        """Inbound command type, or None if a client may not send it"""
        if not isinstance(value, str) or not value:
            return None
        try:
            command_type = cls(value)
        except ValueError:
            return None
        return command_type if command_type in INBOUND_COMMAND_TYPES else None


# Types accepted from clients. userlist and uuid are recognised but answered with 501.
INBOUND_COMMAND_TYPES = frozenset({
    CommandType.USERNAME,
    CommandType.PACKET,
    CommandType.ROOM,
    CommandType.INFO,
    CommandType.AUTH,
    CommandType.USERLIST,
    CommandType.UUID,
})


class ResponseType(str, Enum):
    FORWARD = "forward"
    VALIDATE = "validate"
    INFO = "info"


class PacketState(IntEnum):
    RESPONSE = 0
    PACKET = 1


class TargetKind(Enum):
    NONE = "none"
    CURRENT_ROOM = "current_room"
    ROOMS = "rooms"
    USERS = "users"


# Decoded commands, one shape per command type

@dataclass(frozen=True)
class ForwardCommand:
    type: ClassVar[CommandType] = CommandType.PACKET
    packet_id: Any
    data: Any
    kind: TargetKind
    targets: Tuple = ()
    meta: Any = None


@dataclass(frozen=True)
class JoinRoomCommand:
    type: ClassVar[CommandType] = CommandType.ROOM
    packet_id: Any
    room_id: RoomId


@dataclass(frozen=True)
class SetUsernameCommand:
    type: ClassVar[CommandType] = CommandType.USERNAME
    packet_id: Any
    username: str


@dataclass(frozen=True)
class InfoCommand:
    type: ClassVar[CommandType] = CommandType.INFO
    packet_id: Any


@dataclass(frozen=True)
class AuthCommand:
    type: ClassVar[CommandType] = CommandType.AUTH
    packet_id: Any
    uuid: str
    token: str = field(repr=False)


Command = Union[ForwardCommand, JoinRoomCommand, SetUsernameCommand, InfoCommand, AuthCommand]


@dataclass(frozen=True)
class Validation:
    """Outcome of validating one inbound packet"""
    status: Status
    command: Optional[Command] = None

    @property
    def accepted(self) -> bool:
        return self.status.accepted


@dataclass(frozen=True)
class AuthResult:
    result: bool
    status: int


# Wire packets

@dataclass
class ServerResponse:
    """Answer to a specific inbound packet, correlated by id"""
    status: int
    data: Any = None
    packet_id: Any = None
    response_type: ResponseType = ResponseType.VALIDATE
    origin_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": int(self.status),
            "data": self.data,
            "id": self.packet_id,
            "type": self.response_type.value,
            "originType": self.origin_type,
            "packetState": PacketState.RESPONSE.value,
        }


@dataclass
class ServerPacket:
    """Unsolicited push; sender None marks a server-originated packet"""
    command_type: str
    data: Any = None
    sender: Optional[str] = None
    meta: Any = None
    packet_id: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": {"type": self.command_type, "meta": self.meta},
            "data": self.data,
            "id": self.packet_id,
            "packetState": PacketState.PACKET.value,
            "sender": self.sender,
        }


def create_response(status: int, data: Any, packet_id: Any, response_type: ResponseType,
                    origin_type: Optional[Union[CommandType, str]]) -> Dict[str, Any]:
    if isinstance(origin_type, CommandType):
        origin_type = origin_type.value
    return ServerResponse(status, data, packet_id, response_type, origin_type).to_dict()


def create_server_packet(command_type: Union[CommandType, str], data: Any,
                         sender: Optional[str] = None, meta: Any = None) -> Dict[str, Any]:
    if isinstance(command_type, CommandType):
        command_type = command_type.value
    return ServerPacket(command_type, data, sender, meta).to_dict()


# Registry state

class DeliveryError(Exception):
    """Raised when a frame cannot be queued for a connection"""


@dataclass(frozen=True)
class CloseFrame:
    code: int
    reason: str


@dataclass(eq=False)
class Connection:
    """One live client session. Identity is the registry key."""
    identity: str
    websocket: Any = None
    display_name: str = ""
    room: Optional[RoomId] = None
    packet_count: int = 0
    rate_limited: bool = False
    alive: bool = True
    authenticated: bool = False
    auth_pending: bool = False
    ip_address: str = "unknown"
    connected_at: datetime = field(default_factory=utcnow)
    outbox_limit: int = OUTBOX_LIMIT
    closed: bool = False
    close_code: Optional[int] = None
    close_reason: str = ""
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)

    def __post_init__(self):
        # The bootstrap identity doubles as the initial display name
        if not self.display_name:
            self.display_name = self.identity

    @property
    def has_custom_name(self) -> bool:
        return self.display_name != self.identity

    def send(self, payload: Dict[str, Any]):
        """Queue one JSON frame for the writer task"""
        if self.closed:
            raise DeliveryError(f"connection {self.identity} is closed")
        if self.outbox_limit and self.outbox.qsize() >= self.outbox_limit:
            raise DeliveryError(f"outbox full for {self.identity}")
        self.outbox.put_nowait(json.dumps(payload))

    def close(self, code: int, reason: str = ""):
        """Close after flushing frames already queued"""
        if not self.closed:
            self._queue_close(code, reason)

    def terminate(self, code: int, reason: str = ""):
        """Close immediately, dropping anything still queued"""
        if self.closed:
            return
        while not self.outbox.empty():
            self.outbox.get_nowait()
        self._queue_close(code, reason)

    def _queue_close(self, code: int, reason: str):
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self.outbox.put_nowait(CloseFrame(code, reason))

    def reset_window(self):
        self.packet_count = 0
        self.rate_limited = False

    def info(self) -> Dict[str, Any]:
        return {
            "uuid": self.identity,
            "username": self.display_name,
            "room": room_to_wire(self.room),
        }


@dataclass
class Room:
    """A group of connections; members are identities in join order"""
    room_id: RoomId
    members: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    idle_ticks: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "room": self.room_id,
            "members": len(self.members),
            "created_at": self.created_at.isoformat(),
        }
