"""
Inbound packet validation.

validate_packet() is a pure decision function: it reads the sender's state
and the registry, never mutates either, and returns a Validation carrying
the status and, when accepted, the decoded command.
"""

import json
from typing import Any, Dict, List

from .config import RelaySettings
from .logger import get_logger, log_security_event
from .models import (
    AuthCommand,
    CommandType,
    Connection,
    ForwardCommand,
    InfoCommand,
    JoinRoomCommand,
    SetUsernameCommand,
    Status,
    TargetKind,
    Validation,
    is_room_id,
)
from .room_manager import RoomManager

logger = get_logger()

_MISSING = object()


def byte_size(value: Any) -> int:
    """
    Size of a value as it travels on the wire

    Strings are measured as UTF-8 text, everything else as compact JSON.
    """
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    try:
        return len(json.dumps(value, separators=(",", ":")).encode("utf-8"))
    except (TypeError, ValueError):
        return len(str(value).encode("utf-8"))


def parse_packet(raw: str):
    """
    Decode a raw frame. Returns None for anything that is not a JSON object.
    """
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def validate_room(room_id: Any, sender: Connection, registry: RoomManager) -> Status:
    """
    Check a room join target

    Returns:
        400 if not a room id, 304 if already there, 201 if the room will be
        created, otherwise 200
    """
    if not is_room_id(room_id):
        return Status.BAD_REQUEST
    if sender.room is not None and sender.room == room_id:
        return Status.NOT_MODIFIED
    if not registry.has_room(room_id):
        return Status.CREATED
    return Status.OK


def validate_packet(packet: Any, sender: Connection, registry: RoomManager,
                    settings: RelaySettings) -> Validation:
    """
    Validate one inbound packet against the sender's current state

    Args:
        packet: Decoded JSON payload (None when the frame was not an object)
        sender: Connection that sent the packet
        registry: Connection and room registry
        settings: Relay policy

    Returns:
        Validation with an accepted (2xx) or rejected status
    """
    if not isinstance(packet, dict):
        return Validation(Status.BAD_REQUEST)

    data = packet.get("data")
    if byte_size(data) > settings.max_packet_size:
        log_security_event("packet_too_large", {"user": sender.identity, "limit": settings.max_packet_size})
        return Validation(Status.PAYLOAD_TOO_LARGE)

    command = packet.get("command")
    if not isinstance(command, dict):
        return Validation(Status.BAD_REQUEST)
    command_type = CommandType.parse(command.get("type"))
    if command_type is None:
        return Validation(Status.BAD_REQUEST)

    targets = packet.get("targets", _MISSING)
    if targets is _MISSING:
        return Validation(Status.BAD_REQUEST)
    if not (targets is None or targets is True or isinstance(targets, list)):
        return Validation(Status.BAD_REQUEST)

    packet_id = packet.get("id")
    if not packet_id:
        return Validation(Status.BAD_REQUEST)

    validator = _VALIDATORS.get(command_type)
    if validator is None:
        logger.debug(f"Unimplemented packet type {command_type.value}")
        return Validation(Status.NOT_IMPLEMENTED)

    return validator(packet, command, targets, packet_id, sender, registry, settings)


def _validate_forward(packet: Dict[str, Any], command: Dict[str, Any], targets: Any, packet_id: Any,
                      sender: Connection, registry: RoomManager, settings: RelaySettings) -> Validation:
    data = packet.get("data")
    if not data:
        return Validation(Status.BAD_REQUEST)

    meta = command.get("meta")

    if targets is None:
        return Validation(Status.OK, ForwardCommand(packet_id, data, TargetKind.NONE, meta=meta))

    if targets is True:
        if sender.room is None:
            return Validation(Status.BAD_REQUEST)
        return Validation(Status.OK, ForwardCommand(packet_id, data, TargetKind.CURRENT_ROOM, meta=meta))

    if targets and is_room_id(targets[0]):
        status = _check_room_targets(targets, sender, registry, settings)
        kind = TargetKind.ROOMS
    else:
        status = _check_user_targets(targets, registry)
        kind = TargetKind.USERS

    if not status.accepted:
        return Validation(status)
    return Validation(Status.OK, ForwardCommand(packet_id, data, kind, tuple(targets), meta))


def _check_room_targets(targets: List[Any], sender: Connection, registry: RoomManager,
                        settings: RelaySettings) -> Status:
    if not settings.allow_cross_room_messaging:
        log_security_event("cross_room_denied", {"user": sender.identity})
        return Status.FORBIDDEN
    for target in targets:
        if not is_room_id(target):
            # Mixed target types
            return Status.BAD_REQUEST
        if not registry.has_room(target):
            return Status.NOT_FOUND
    return Status.OK


def _check_user_targets(targets: List[Any], registry: RoomManager) -> Status:
    for target in targets:
        if not isinstance(target, str):
            return Status.BAD_REQUEST
        if not registry.has_identity(target):
            return Status.NOT_FOUND
    return Status.OK


def _validate_room(packet: Dict[str, Any], command: Dict[str, Any], targets: Any, packet_id: Any,
                   sender: Connection, registry: RoomManager, settings: RelaySettings) -> Validation:
    if sender.room is not None and not settings.allow_room_change:
        log_security_event("room_change_denied", {"user": sender.identity, "room": sender.room})
        return Validation(Status.FORBIDDEN)
    if settings.auth_required and not sender.authenticated:
        return Validation(Status.UNAUTHORIZED)
    if not isinstance(targets, list) or not targets:
        return Validation(Status.BAD_REQUEST)

    room_id = targets[0]
    status = validate_room(room_id, sender, registry)
    if not status.accepted:
        return Validation(status)
    return Validation(status, JoinRoomCommand(packet_id, room_id))


def _validate_username(packet: Dict[str, Any], command: Dict[str, Any], targets: Any, packet_id: Any,
                       sender: Connection, registry: RoomManager, settings: RelaySettings) -> Validation:
    username = packet.get("data")
    if not isinstance(username, str) or not username:
        return Validation(Status.BAD_REQUEST)
    if registry.display_name_in_use(username, exclude=sender) or registry.has_identity(username):
        return Validation(Status.CONFLICT)
    if byte_size(username) > settings.max_username_size:
        return Validation(Status.PAYLOAD_TOO_LARGE)
    if sender.has_custom_name and not settings.allow_username_change:
        return Validation(Status.LOCKED)
    return Validation(Status.OK, SetUsernameCommand(packet_id, username))


def _validate_info(packet: Dict[str, Any], command: Dict[str, Any], targets: Any, packet_id: Any,
                   sender: Connection, registry: RoomManager, settings: RelaySettings) -> Validation:
    return Validation(Status.OK, InfoCommand(packet_id))


def _validate_auth(packet: Dict[str, Any], command: Dict[str, Any], targets: Any, packet_id: Any,
                   sender: Connection, registry: RoomManager, settings: RelaySettings) -> Validation:
    if not settings.auth_required:
        return Validation(Status.LOCKED)
    if sender.authenticated:
        # Identity may only be promoted once
        return Validation(Status.LOCKED)
    if sender.room is not None or sender.auth_pending:
        return Validation(Status.NOT_ACCEPTABLE)

    credentials = packet.get("data")
    if not isinstance(credentials, dict):
        return Validation(Status.BAD_REQUEST)
    uuid = credentials.get("uuid")
    token = credentials.get("token")
    if not isinstance(uuid, str) or not isinstance(token, str) or not uuid:
        return Validation(Status.BAD_REQUEST)
    return Validation(Status.OK, AuthCommand(packet_id, uuid, token))


_VALIDATORS = {
    CommandType.PACKET: _validate_forward,
    CommandType.ROOM: _validate_room,
    CommandType.USERNAME: _validate_username,
    CommandType.INFO: _validate_info,
    CommandType.AUTH: _validate_auth,
}
