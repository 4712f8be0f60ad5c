"""
Connection and room registry
"""

from typing import Dict, List, Optional, Tuple

from .logger import get_logger, log_connection_event
from .models import Connection, CommandType, Room, RoomId, create_server_packet

logger = get_logger()


class RoomManager:
    """
    Owns the two process-wide maps: identity -> connection and room id -> room.

    All mutation goes through these methods. Every method is synchronous so a
    caller's sequence of reads and writes cannot be interleaved with another
    handler on the event loop.
    """

    def __init__(self):
        # identity -> Connection
        self._connections: Dict[str, Connection] = {}
        # room id -> Room
        self._rooms: Dict[RoomId, Room] = {}

    # Connections

    def register(self, connection: Connection):
        if connection.identity in self._connections:
            raise ValueError(f"Identity already registered: {connection.identity}")
        self._connections[connection.identity] = connection
        log_connection_event(connection.identity, connection.room, "connect", connection.ip_address)

    def unregister(self, connection: Connection) -> bool:
        """
        Remove a connection and its room membership. Safe to call more than once.

        Returns:
            True if the connection was registered
        """
        if self._connections.get(connection.identity) is not connection:
            return False

        room_id = connection.room
        del self._connections[connection.identity]
        self._leave_current_room(connection)
        log_connection_event(connection.identity, room_id, "disconnect", connection.ip_address)
        return True

    def get(self, identity: str) -> Optional[Connection]:
        return self._connections.get(identity)

    def has_identity(self, identity: str) -> bool:
        return identity in self._connections

    def is_registered(self, connection: Connection) -> bool:
        return self._connections.get(connection.identity) is connection

    def connections(self) -> List[Connection]:
        """Snapshot of every registered connection"""
        return list(self._connections.values())

    def display_name_in_use(self, name: str, exclude: Optional[Connection] = None) -> bool:
        return any(
            conn.display_name == name and conn is not exclude
            for conn in self._connections.values()
        )

    def rekey(self, connection: Connection, new_identity: str):
        """
        Move a connection to a new identity, carrying its room membership along

        Raises:
            KeyError: the connection is not registered
            ValueError: another connection already holds new_identity
        """
        if not self.is_registered(connection):
            raise KeyError(connection.identity)
        holder = self._connections.get(new_identity)
        if holder is not None and holder is not connection:
            raise ValueError(f"Identity already registered: {new_identity}")

        old_identity = connection.identity
        del self._connections[old_identity]
        self._connections[new_identity] = connection
        connection.identity = new_identity

        if connection.room is not None:
            members = self._rooms[connection.room].members
            members[members.index(old_identity)] = new_identity

        log_connection_event(new_identity, connection.room, f"rekey from {old_identity}", connection.ip_address)

    # Rooms

    def has_room(self, room_id: RoomId) -> bool:
        return room_id in self._rooms

    def get_room(self, room_id: RoomId) -> Optional[Room]:
        return self._rooms.get(room_id)

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def join_room(self, connection: Connection, room_id: RoomId) -> Tuple[Optional[Room], Room]:
        """
        Move a connection into a room, creating the room if needed

        Returns:
            Tuple of (previous room or None, destination room)
        """
        previous = self._leave_current_room(connection)

        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id=room_id)
            self._rooms[room_id] = room
            logger.info(f"Room created: {room_id}")

        room.members.append(connection.identity)
        room.idle_ticks = 0
        connection.room = room_id

        log_connection_event(connection.identity, room_id, "join")
        return previous, room

    def _leave_current_room(self, connection: Connection) -> Optional[Room]:
        if connection.room is None:
            return None

        room = self._rooms.get(connection.room)
        if room is not None and connection.identity in room.members:
            room.members.remove(connection.identity)
        connection.room = None
        return room

    def members(self, room: Room) -> List[Connection]:
        """Live connections for a room's member identities, in join order"""
        return [self._connections[identity] for identity in room.members if identity in self._connections]

    def userlist(self, room: Room) -> dict:
        """Server packet carrying the room's current membership"""
        return create_server_packet(
            CommandType.USERLIST,
            [{"username": conn.display_name, "uuid": conn.identity} for conn in self.members(room)],
        )

    def reap_empty_rooms(self, idle_ticks: int) -> List[RoomId]:
        """
        Count a tick against every empty room and drop the ones idle for idle_ticks

        Args:
            idle_ticks: Ticks a room may stay empty; 0 keeps rooms forever

        Returns:
            Ids of removed rooms
        """
        if idle_ticks <= 0:
            return []

        reaped = []
        for room in list(self._rooms.values()):
            if room.members:
                room.idle_ticks = 0
                continue
            room.idle_ticks += 1
            if room.idle_ticks >= idle_ticks:
                del self._rooms[room.room_id]
                reaped.append(room.room_id)

        if reaped:
            logger.info(f"Reaped {len(reaped)} empty rooms")
        return reaped

    def get_connection_stats(self) -> Dict[str, int]:
        return {
            "total_connections": len(self._connections),
            "total_rooms": len(self._rooms),
            "occupied_rooms": sum(1 for room in self._rooms.values() if room.members),
        }

    def __len__(self) -> int:
        return len(self._connections)
