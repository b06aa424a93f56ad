import struct

import pytest

from minidrone_comms.command import ArgumentSpec, CommandInstance, CommandTemplate
from minidrone_comms.errors import FrameDecodeFailure, InvalidArgumentValue, UnsupportedType
from minidrone_comms.protocol import BufferClass, BufferId, FrameType


def test_takeoff_encodes_to_six_bytes(catalog) -> None:
    frame = catalog.new_command("minidrone", "Piloting", "TakeOff").to_bytes()

    assert frame == bytes([FrameType.DATA_WITH_ACK, 0x00, 2, 0, 1, 0])


def test_flip_back_encodes_ordinal(catalog) -> None:
    flip = catalog.new_command("minidrone", "Animations", "Flip", {"direction": "back"})
    frame = flip.to_bytes()

    assert len(frame) == 10
    assert frame[:6] == bytes([FrameType.DATA_WITH_ACK, 0x00, 2, 4, 0, 0])
    assert frame[6:] == struct.pack("<i", 1)


def test_buffer_class_drives_channel(catalog) -> None:
    pcmd = catalog.new_command("minidrone", "Piloting", "PCMD")
    emergency = catalog.new_command("minidrone", "Piloting", "Emergency")
    takeoff = catalog.new_command("minidrone", "Piloting", "TakeOff")

    assert pcmd.buffer_class is BufferClass.NON_ACK
    assert pcmd.buffer_flag == FrameType.DATA
    assert pcmd.buffer_id == BufferId.SEND_NO_ACK
    assert pcmd.requires_ack is False

    assert emergency.buffer_id == BufferId.SEND_HIGH_PRIORITY
    assert emergency.requires_ack is False
    assert emergency.template.timeout_action == "RETRY"

    assert takeoff.buffer_id == BufferId.SEND_WITH_ACK
    assert takeoff.requires_ack is True


def test_pcmd_layout(catalog) -> None:
    pcmd = catalog.new_command(
        "minidrone",
        "Piloting",
        "PCMD",
        {"flag": 1, "roll": -10, "pitch": 20, "yaw": 0, "gaz": 50, "timestamp": 1000},
    )
    frame = pcmd.to_bytes()

    assert frame[6:] == bytes([1, 0xF6, 20, 0, 50]) + struct.pack("<I", 1000)


def test_defaults_and_named_access(catalog) -> None:
    pcmd = catalog.new_command("minidrone", "Piloting", "PCMD")

    assert pcmd.values == (0, 0, 0, 0, 0, 0)
    pcmd["roll"] = 25
    pcmd.set("gaz", -5.5)

    assert pcmd.get("roll") == 25
    assert pcmd["gaz"] == -6
    assert pcmd.as_dict()["roll"] == 25


def test_initial_values_ignore_unknown_keys(catalog) -> None:
    flip = catalog.new_command("minidrone", "Animations", "Flip", {"direction": "left", "speed": 9})

    assert flip.values == (3,)


def test_set_unknown_argument_rejected(catalog) -> None:
    flip = catalog.new_command("minidrone", "Animations", "Flip")

    with pytest.raises(InvalidArgumentValue, match="has no such argument"):
        flip.set("speed", 1)


def test_set_invalid_value_keeps_previous(catalog) -> None:
    flip = catalog.new_command("minidrone", "Animations", "Flip", {"direction": "right"})

    with pytest.raises(InvalidArgumentValue):
        flip.set("direction", "sideways")
    assert flip.enum_name("direction") == "right"


def test_clone_is_independent(catalog) -> None:
    cap = catalog.new_command("minidrone", "Animations", "Cap", {"offset": 90})
    copy = cap.clone()
    copy["offset"] = -90

    assert cap["offset"] == 90
    assert copy.template is cap.template
    assert copy != cap


def test_load_reads_arguments_after_header(catalog) -> None:
    source = catalog.new_command(
        "common", "SettingsState", "ProductVersionChanged", {"software": "3.0.6", "hardware": "1.0"}
    )
    payload = source.to_bytes()[2:]

    target = CommandInstance(source.template)
    end = target.load(payload, 4)

    assert end == len(payload)
    assert target == source


def test_load_truncated_frame(catalog) -> None:
    template = catalog.lookup_by_name("minidrone", "Animations", "Cap")

    with pytest.raises(FrameDecodeFailure, match="offset"):
        CommandInstance(template).load(bytes([2, 4, 1, 0, 0x5A]), 4)


def test_to_string_renders_enum_names(catalog) -> None:
    flip = catalog.new_command("minidrone", "Animations", "Flip", {"direction": "back"})

    assert str(flip) == 'minidrone Animations Flip direction="back"(1)'
    assert "(enum)direction" in flip.to_string(debug=True)


def test_to_string_unknown_ordinal(catalog) -> None:
    template = catalog.lookup_by_name("minidrone", "PilotingState", "FlyingStateChanged")
    state = CommandInstance(template, [99])

    assert str(state) == 'minidrone PilotingState FlyingStateChanged state="?"(99)'


def test_value_count_checked(catalog) -> None:
    template = catalog.lookup_by_name("minidrone", "Animations", "Flip")

    with pytest.raises(ValueError, match="expects 1 values"):
        CommandInstance(template, [0, 1])


def test_set_unsupported_type_names_command() -> None:
    template = CommandTemplate(
        project_id=9,
        project_name="lab",
        class_id=0,
        class_name="Io",
        command_id=1,
        command_name="Mask",
        arguments=(ArgumentSpec("mask", "bitfield"),),
    )
    command = CommandInstance(template)

    with pytest.raises(UnsupportedType, match="argument 'mask' in lab/Io/Mask") as info:
        command.set("mask", 3)
    assert info.value.token == "lab/Io/Mask"
