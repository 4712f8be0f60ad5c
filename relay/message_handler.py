"""
Command routing: executes validated packets against the registry and fans
out the resulting server packets.

Everything here runs to completion without yielding to the event loop,
except the auth flow, which is scheduled as its own task so the connection
keeps being served while the external call is outstanding.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional

from .auth import AuthBridge
from .config import RelaySettings
from .constants import INVALID_ORIGIN
from .logger import get_logger, log_packet_event, log_security_event
from .models import (
    AuthCommand,
    CommandType,
    Connection,
    DeliveryError,
    ForwardCommand,
    InfoCommand,
    JoinRoomCommand,
    ResponseType,
    Room,
    SetUsernameCommand,
    Status,
    TargetKind,
    create_response,
    create_server_packet,
)
from .room_manager import RoomManager
from .validators import parse_packet, validate_packet, validate_room

logger = get_logger()


def _origin_type(packet: Any) -> str:
    if isinstance(packet, dict):
        command = packet.get("command")
        if isinstance(command, dict) and command.get("type") is not None:
            return command["type"]
    return INVALID_ORIGIN


def _parse_room_param(raw: Optional[str]):
    """Room id from the connection query string, or None if not numeric"""
    if raw is None:
        return None
    raw = raw.strip()
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return None


class MessageHandler:
    """Validates inbound frames and routes the accepted commands"""

    def __init__(self, registry: RoomManager, settings: RelaySettings,
                 auth_bridge: Optional[AuthBridge] = None):
        self.registry = registry
        self.settings = settings
        self.auth_bridge = auth_bridge or AuthBridge(settings)
        self._auth_tasks: Dict[Connection, asyncio.Task] = {}
        self._routes = {
            CommandType.PACKET: self._route_packet,
            CommandType.ROOM: self._route_room,
            CommandType.USERNAME: self._route_username,
            CommandType.INFO: self._route_info,
            CommandType.AUTH: self._route_auth,
        }

    # Connection lifecycle

    def open_connection(self, websocket: Any = None, ip_address: str = "unknown",
                        initial_room: Optional[str] = None) -> Connection:
        """
        Register a new transport session

        Args:
            websocket: Transport handle drained by the writer task
            ip_address: Client address, for logging
            initial_room: Raw ``roomid`` query parameter, if supplied

        Returns:
            The registered Connection
        """
        connection = Connection(
            identity=str(uuid.uuid4()),
            websocket=websocket,
            ip_address=ip_address,
            outbox_limit=self.settings.outbox_limit,
        )
        self.registry.register(connection)

        if initial_room is not None:
            self._join_initial_room(connection, initial_room)

        if not self.settings.auth_required:
            self.deliver(connection, create_server_packet(CommandType.UUID, connection.identity))

        return connection

    def _join_initial_room(self, connection: Connection, raw_room: str):
        if self.settings.auth_required:
            # Rooms are closed until an explicit auth command succeeds
            self.deliver(connection, create_response(
                Status.FORBIDDEN, None, None, ResponseType.VALIDATE, CommandType.ROOM))
            return

        room_id = _parse_room_param(raw_room)
        status = validate_room(room_id, connection, self.registry)
        if status.accepted and status != Status.NOT_MODIFIED:
            self._join(connection, room_id)
        self.deliver(connection, create_response(
            status, None, None, ResponseType.VALIDATE, CommandType.ROOM))

    def close_connection(self, connection: Connection) -> bool:
        """Drop a connection from the registry and cancel its pending auth call"""
        task = self._auth_tasks.pop(connection, None)
        if task is not None and not task.done():
            task.cancel()
        return self.registry.unregister(connection)

    # Inbound

    def handle(self, connection: Connection, raw: str) -> Optional[asyncio.Task]:
        """
        Process one inbound frame

        Args:
            connection: Sender
            raw: Frame text

        Returns:
            The scheduled auth task for an accepted auth command, else None
        """
        if connection.closed:
            return None
        # Any inbound frame acknowledges the last liveness probe
        connection.alive = True
        self._count_packet(connection)

        packet = parse_packet(raw)
        if packet is not None and _origin_type(packet) == CommandType.PONG.value:
            return None

        try:
            validation = validate_packet(packet, connection, self.registry, self.settings)
            if not validation.accepted:
                origin = _origin_type(packet)
                log_packet_event("rejected", connection.identity, origin, f"status={int(validation.status)}")
                packet_id = packet.get("id") if packet is not None else None
                self.deliver(connection, create_response(
                    validation.status, None, packet_id, ResponseType.VALIDATE, origin))
                return None

            route = self._routes[validation.command.type]
            return route(connection, validation.command, validation.status)

        except Exception:
            logger.exception(f"Failed to handle packet from {connection.identity}: {raw[:200]!r}")
            self._send_internal_error(connection)
            return None

    def _count_packet(self, connection: Connection):
        connection.packet_count += 1
        if connection.packet_count > self.settings.max_packets_per_window and not connection.rate_limited:
            connection.rate_limited = True
            log_security_event("rate_limited", {
                "user": connection.identity,
                "packets": connection.packet_count,
                "limit": self.settings.max_packets_per_window,
            })
            self.deliver(connection, create_response(
                Status.TOO_MANY_REQUESTS, None, None, ResponseType.VALIDATE, None))

    # Routes

    def _route_packet(self, connection: Connection, command: ForwardCommand, status: Status):
        envelope = create_server_packet(
            CommandType.PACKET, command.data, sender=connection.identity, meta=command.meta)

        recipients = self.resolve_targets(connection, command)
        delivered = sum(1 for target in recipients if self.deliver(target, envelope))

        log_packet_event("forward", connection.identity, command.type.value,
                         f"kind={command.kind.value} targets={len(recipients)} delivered={delivered}")

    def resolve_targets(self, connection: Connection, command: ForwardCommand) -> List[Connection]:
        """Connections a forwarded packet goes to, de-duplicated, in target order"""
        if command.kind == TargetKind.NONE:
            return []

        if command.kind == TargetKind.CURRENT_ROOM:
            room = self.registry.get_room(connection.room) if connection.room is not None else None
            if room is None:
                return []
            return [member for member in self.registry.members(room) if member is not connection]

        if command.kind == TargetKind.ROOMS:
            candidates = []
            for room_id in command.targets:
                room = self.registry.get_room(room_id)
                if room is not None:
                    candidates.extend(self.registry.members(room))
        else:
            candidates = [self.registry.get(identity) for identity in command.targets]

        recipients = []
        for candidate in candidates:
            if candidate is not None and candidate not in recipients:
                recipients.append(candidate)
        return recipients

    def _route_room(self, connection: Connection, command: JoinRoomCommand, status: Status):
        if status != Status.NOT_MODIFIED:
            self._join(connection, command.room_id)

        log_packet_event("join", connection.identity, command.type.value,
                         f"room={command.room_id} status={int(status)}")
        self.deliver(connection, create_response(
            status, None, command.packet_id, ResponseType.VALIDATE, command.type))

    def _join(self, connection: Connection, room_id):
        previous, room = self.registry.join_room(connection, room_id)
        if previous is not None and previous is not room:
            self.push_userlist(previous)
        self.push_userlist(room)

    def _route_username(self, connection: Connection, command: SetUsernameCommand, status: Status):
        connection.display_name = command.username
        log_packet_event("rename", connection.identity, command.type.value, f"username={command.username}")
        self.deliver(connection, create_response(
            status, None, command.packet_id, ResponseType.VALIDATE, command.type))

    def _route_info(self, connection: Connection, command: InfoCommand, status: Status):
        self.deliver(connection, create_response(
            status, connection.info(), command.packet_id, ResponseType.INFO, command.type))

    def _route_auth(self, connection: Connection, command: AuthCommand, status: Status) -> asyncio.Task:
        connection.auth_pending = True
        task = asyncio.ensure_future(self.authenticate(connection, command))
        self._auth_tasks[connection] = task
        task.add_done_callback(lambda done: self._forget_auth_task(connection, done))
        return task

    def _forget_auth_task(self, connection: Connection, task: asyncio.Task):
        if self._auth_tasks.get(connection) is task:
            del self._auth_tasks[connection]

    async def authenticate(self, connection: Connection, command: AuthCommand):
        """
        Run the auth bridge for one command and commit the identity change

        The connection may have changed while the call was outstanding, so
        its state is checked again before the registry is re-keyed.
        """
        bootstrap_identity = connection.identity
        try:
            try:
                result = await self.auth_bridge.authenticate(command.uuid, command.token)
            finally:
                connection.auth_pending = False

            if connection.closed or not self.registry.is_registered(connection):
                logger.info(f"Auth finished for closed connection {bootstrap_identity}")
                return

            if result.result:
                if not self._can_assume_identity(connection, bootstrap_identity, command.uuid):
                    log_security_event("auth_commit_conflict", {"user": bootstrap_identity, "uuid": command.uuid})
                    self.deliver(connection, create_response(
                        Status.CONFLICT, False, command.packet_id, ResponseType.VALIDATE, command.type))
                    return

                self.registry.rekey(connection, command.uuid)
                connection.display_name = command.uuid
                connection.authenticated = True

            log_packet_event("auth", connection.identity, command.type.value,
                             f"result={result.result} status={result.status}")
            self.deliver(connection, create_response(
                result.status, result.result, command.packet_id, ResponseType.VALIDATE, command.type))

        except Exception:
            logger.exception(f"Auth flow failed for {bootstrap_identity}")
            self._send_internal_error(connection)

    def _can_assume_identity(self, connection: Connection, bootstrap_identity: str, new_identity: str) -> bool:
        if connection.identity != bootstrap_identity or connection.authenticated:
            return False
        if connection.room is not None:
            return False
        holder = self.registry.get(new_identity)
        if holder is not None and holder is not connection:
            return False
        return not self.registry.display_name_in_use(new_identity, exclude=connection)

    # Outbound

    def deliver(self, connection: Connection, payload: Dict[str, Any]) -> bool:
        """Queue a frame for one connection; failures stay local to that target"""
        try:
            connection.send(payload)
            return True
        except DeliveryError as e:
            logger.warning(f"Failed to deliver to {connection.identity}: {e}")
            return False

    def push_userlist(self, room: Room) -> int:
        """Send the room's membership snapshot to every member"""
        snapshot = self.registry.userlist(room)
        return sum(1 for member in self.registry.members(room) if self.deliver(member, snapshot))

    def _send_internal_error(self, connection: Connection):
        if not connection.closed:
            self.deliver(connection, create_server_packet(CommandType.ERROR, int(Status.INTERNAL_ERROR)))

    async def aclose(self):
        for task in list(self._auth_tasks.values()):
            task.cancel()
        self._auth_tasks.clear()
        await self.auth_bridge.aclose()
