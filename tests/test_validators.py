import json

import pytest

from relay.models import Connection, Status, TargetKind
from relay.room_manager import RoomManager
from relay.validators import byte_size, parse_packet, validate_packet, validate_room

from tests.utils import make_settings, packet


@pytest.fixture
def registry():
    return RoomManager()


@pytest.fixture
def sender(registry):
    connection = Connection(identity="sender-uuid")
    registry.register(connection)
    return connection


def validate(raw, sender, registry, **overrides):
    return validate_packet(parse_packet(raw), sender, registry, make_settings(**overrides))


def test_oversized_data_is_rejected_first(sender, registry):
    raw = json.dumps({"command": "not-an-object", "targets": None, "data": "x" * 3000, "id": 1})
    assert validate(raw, sender, registry).status == Status.PAYLOAD_TOO_LARGE


def test_non_object_frames_are_bad_requests(sender, registry):
    assert validate("not json", sender, registry).status == Status.BAD_REQUEST
    assert validate("[1, 2, 3]", sender, registry).status == Status.BAD_REQUEST


@pytest.mark.parametrize("frame", [
    {"targets": None, "data": "x", "id": 1},
    {"command": "packet", "targets": None, "data": "x", "id": 1},
    {"command": {"type": ""}, "targets": None, "data": "x", "id": 1},
    {"command": {"type": "shout"}, "targets": None, "data": "x", "id": 1},
    {"command": {"type": "info"}, "data": "x", "id": 1},
    {"command": {"type": "info"}, "targets": "everyone", "id": 1},
    {"command": {"type": "info"}, "targets": False, "id": 1},
    {"command": {"type": "info"}, "targets": None},
    {"command": {"type": "info"}, "targets": None, "id": 0},
])
def test_structural_violations(frame, sender, registry):
    assert validate(json.dumps(frame), sender, registry).status == Status.BAD_REQUEST


def test_outbound_only_types_are_not_implemented(sender, registry):
    assert validate(packet("userlist"), sender, registry).status == Status.NOT_IMPLEMENTED
    assert validate(packet("uuid"), sender, registry).status == Status.NOT_IMPLEMENTED


@pytest.mark.parametrize("command_type", ["ping", "error", "pong"])
def test_server_packet_types_are_not_accepted_from_clients(command_type, sender, registry):
    assert validate(packet(command_type), sender, registry).status == Status.BAD_REQUEST


class TestPacketCommand:
    def test_requires_data(self, sender, registry):
        assert validate(packet("packet", targets=None), sender, registry).status == Status.BAD_REQUEST

    def test_null_targets_delivers_nowhere(self, sender, registry):
        result = validate(packet("packet", targets=None, data={"a": 1}), sender, registry)
        assert result.status == Status.OK
        assert result.command.kind == TargetKind.NONE

    def test_room_broadcast_requires_a_room(self, sender, registry):
        raw = packet("packet", targets=True, data={"a": 1})
        assert validate(raw, sender, registry).status == Status.BAD_REQUEST

        registry.join_room(sender, 7)
        result = validate(raw, sender, registry)
        assert result.status == Status.OK
        assert result.command.kind == TargetKind.CURRENT_ROOM

    def test_cross_room_needs_configuration(self, sender, registry):
        registry.join_room(sender, 7)
        raw = packet("packet", targets=[7], data="hi")
        assert validate(raw, sender, registry).status == Status.FORBIDDEN
        assert validate(raw, sender, registry, allow_cross_room_messaging=True).status == Status.OK

    def test_cross_room_targets_must_exist(self, sender, registry):
        registry.join_room(sender, 7)
        raw = packet("packet", targets=[7, 8], data="hi")
        assert validate(raw, sender, registry, allow_cross_room_messaging=True).status == Status.NOT_FOUND

    def test_mixed_targets_are_rejected(self, sender, registry):
        registry.join_room(sender, 7)
        raw = packet("packet", targets=[7, "sender-uuid"], data="hi")
        assert validate(raw, sender, registry, allow_cross_room_messaging=True).status == Status.BAD_REQUEST

        raw = packet("packet", targets=["sender-uuid", 7], data="hi")
        assert validate(raw, sender, registry).status == Status.BAD_REQUEST

    def test_user_targets_must_exist(self, sender, registry):
        assert validate(packet("packet", targets=["ghost"], data="hi"), sender, registry).status == Status.NOT_FOUND

        other = Connection(identity="other-uuid")
        registry.register(other)
        result = validate(packet("packet", targets=["other-uuid"], data="hi"), sender, registry)
        assert result.status == Status.OK
        assert result.command.kind == TargetKind.USERS
        assert result.command.targets == ("other-uuid",)


class TestRoomCommand:
    def test_new_room_will_be_created(self, sender, registry):
        result = validate(packet("room", targets=[42]), sender, registry)
        assert result.status == Status.CREATED
        assert result.command.room_id == 42

    def test_existing_room(self, sender, registry):
        other = Connection(identity="other-uuid")
        registry.register(other)
        registry.join_room(other, 42)
        assert validate(packet("room", targets=[42]), sender, registry).status == Status.OK

    def test_room_change_disabled(self, sender, registry):
        registry.join_room(sender, 1)
        assert validate(packet("room", targets=[2]), sender, registry).status == Status.FORBIDDEN

    def test_same_room_is_not_modified(self, sender, registry):
        registry.join_room(sender, 1)
        result = validate(packet("room", targets=[1]), sender, registry, allow_room_change=True)
        assert result.status == Status.NOT_MODIFIED

    def test_auth_required(self, sender, registry):
        result = validate(packet("room", targets=[1]), sender, registry, auth_required=True)
        assert result.status == Status.UNAUTHORIZED

        sender.authenticated = True
        assert validate(packet("room", targets=[1]), sender, registry, auth_required=True).status == Status.CREATED

    @pytest.mark.parametrize("targets", [None, [], ["lobby"], [True]])
    def test_room_must_be_numeric(self, targets, sender, registry):
        assert validate(packet("room", targets=targets), sender, registry).status == Status.BAD_REQUEST


class TestUsernameCommand:
    def test_sets_name(self, sender, registry):
        result = validate(packet("username", data="alice"), sender, registry)
        assert result.status == Status.OK
        assert result.command.username == "alice"

    def test_name_must_be_a_string(self, sender, registry):
        assert validate(packet("username", data=12), sender, registry).status == Status.BAD_REQUEST

    def test_taken_name_conflicts(self, sender, registry):
        other = Connection(identity="other-uuid", display_name="alice")
        registry.register(other)
        assert validate(packet("username", data="alice"), sender, registry).status == Status.CONFLICT
        assert validate(packet("username", data="other-uuid"), sender, registry).status == Status.CONFLICT

    def test_name_size_ceiling(self, sender, registry):
        raw = packet("username", data="n" * 201)
        assert validate(raw, sender, registry).status == Status.PAYLOAD_TOO_LARGE

    def test_name_can_only_be_set_once(self, sender, registry):
        sender.display_name = "alice"
        raw = packet("username", data="bob")
        assert validate(raw, sender, registry).status == Status.LOCKED
        assert validate(raw, sender, registry, allow_username_change=True).status == Status.OK

    def test_current_name_is_not_a_conflict_with_itself(self, sender, registry):
        sender.display_name = "alice"
        raw = packet("username", data="alice")
        assert validate(raw, sender, registry).status == Status.LOCKED
        assert validate(raw, sender, registry, allow_username_change=True).status == Status.OK


def test_info_needs_only_an_id(sender, registry):
    assert validate(packet("info"), sender, registry).status == Status.OK


class TestAuthCommand:
    credentials = {"uuid": "account-1", "token": "secret"}

    def test_disabled_without_auth_mode(self, sender, registry):
        assert validate(packet("auth", data=self.credentials), sender, registry).status == Status.LOCKED

    def test_not_acceptable_inside_a_room(self, sender, registry):
        registry.join_room(sender, 3)
        raw = packet("auth", data=self.credentials)
        assert validate(raw, sender, registry, auth_required=True).status == Status.NOT_ACCEPTABLE

    def test_not_acceptable_while_pending(self, sender, registry):
        sender.auth_pending = True
        raw = packet("auth", data=self.credentials)
        assert validate(raw, sender, registry, auth_required=True).status == Status.NOT_ACCEPTABLE

    def test_identity_changes_only_once(self, sender, registry):
        sender.authenticated = True
        raw = packet("auth", data=self.credentials)
        assert validate(raw, sender, registry, auth_required=True).status == Status.LOCKED

    @pytest.mark.parametrize("data", [
        None,
        "account-1:secret",
        {"uuid": "account-1"},
        {"token": "secret"},
        {"uuid": 1, "token": "secret"},
        {"uuid": "account-1", "token": None},
    ])
    def test_credentials_shape(self, data, sender, registry):
        raw = packet("auth", data=data)
        assert validate(raw, sender, registry, auth_required=True).status == Status.BAD_REQUEST

    def test_accepted(self, sender, registry):
        result = validate(packet("auth", data=self.credentials), sender, registry, auth_required=True)
        assert result.status == Status.OK
        assert result.command.uuid == "account-1"
        assert result.command.token == "secret"


def test_validation_does_not_mutate(sender, registry):
    registry.join_room(sender, 5)
    before = (sender.room, sender.display_name, len(registry.rooms()), list(registry.get_room(5).members))

    for raw in (
        packet("room", targets=[9]),
        packet("username", data="alice"),
        packet("packet", targets=True, data="hi"),
        packet("info"),
    ):
        validate(raw, sender, registry, allow_room_change=True)

    assert (sender.room, sender.display_name, len(registry.rooms()), list(registry.get_room(5).members)) == before


def test_validate_room_rejects_non_finite(sender, registry):
    assert validate_room(float("nan"), sender, registry) == Status.BAD_REQUEST
    assert validate_room(None, sender, registry) == Status.BAD_REQUEST


def test_byte_size_measures_utf8():
    assert byte_size("héllo") == 6
    assert byte_size({"a": 1}) == len('{"a":1}')
    assert byte_size(None) == 4
