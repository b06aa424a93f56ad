import struct

import pytest

from minidrone_comms import codec
from minidrone_comms.errors import InvalidArgumentValue, UnsupportedType

DIRECTIONS = ("front", "back", "right", "left")


def test_fixed_widths() -> None:
    assert codec.width("u8") == 1
    assert codec.width("i16") == 2
    assert codec.width("u32") == 4
    assert codec.width("i64") == 8
    assert codec.width("float") == 4
    assert codec.width("double") == 8
    assert codec.width("enum") == codec.ENUM_WIDTH == 4


def test_string_width_counts_terminator() -> None:
    assert codec.width("string", "") == 1
    assert codec.width("string", "Mambo") == 6


def test_encode_little_endian() -> None:
    assert codec.encode("u16", 0x1234) == b"\x34\x12"
    assert codec.encode("i8", -1) == b"\xff"
    assert codec.encode("u32", 1) == b"\x01\x00\x00\x00"


def test_encode_string_appends_nul() -> None:
    assert codec.encode("string", "abc") == b"abc\x00"


def test_enum_is_four_byte_ordinal() -> None:
    assert codec.encode("enum", 1, DIRECTIONS) == struct.pack("<i", 1)
    assert codec.decode("enum", struct.pack("<i", 3), 0, DIRECTIONS) == 3


@pytest.mark.parametrize(
    "type_tag,value",
    [
        ("u8", 255),
        ("i8", -128),
        ("u16", 65535),
        ("i32", -123456),
        ("u64", 2**63),
        ("double", 1.0 / 3.0),
        ("string", "hello"),
    ],
)
def test_decode_returns_encoded_value(type_tag: str, value) -> None:
    data = b"\xaa" + codec.encode(type_tag, value)
    decoded, size = codec.read(type_tag, data, 1)

    assert decoded == value
    assert size == len(data) - 1


def test_float_is_rounded_to_single_precision_on_set() -> None:
    stored = codec.coerce("float", 0.1)

    assert stored != 0.1
    assert codec.decode("float", codec.encode("float", stored)) == stored


def test_negative_zero_normalized() -> None:
    assert codec.coerce("float", -0.0) == 0
    assert str(codec.coerce("float", -0.0)) == "0.0"
    assert codec.coerce("i8", -0.0) == 0


def test_integer_coercion_floors_and_parses() -> None:
    assert codec.coerce("i8", 3.9) == 3
    assert codec.coerce("i8", -3.1) == -4
    assert codec.coerce("u8", "0x10") == 16
    assert codec.coerce("u16", "42") == 42


def test_integer_out_of_range_rejected() -> None:
    with pytest.raises(InvalidArgumentValue, match="out of range"):
        codec.coerce("u8", 256, "percent")
    with pytest.raises(InvalidArgumentValue, match="out of range"):
        codec.coerce("i8", -129, "roll")


def test_integer_garbage_rejected() -> None:
    with pytest.raises(InvalidArgumentValue, match="is not an integer"):
        codec.coerce("u8", "many", "count")


def test_enum_coercion_by_name_or_ordinal() -> None:
    assert codec.coerce("enum", "back", "direction", DIRECTIONS) == 1
    assert codec.coerce("enum", 0, "direction", DIRECTIONS) == 0
    assert codec.coerce("enum", 3, "direction", DIRECTIONS) == 3


def test_enum_rejects_unknown_name() -> None:
    with pytest.raises(InvalidArgumentValue, match="Available options are front=0, back=1"):
        codec.coerce("enum", "sideways", "direction", DIRECTIONS)
    with pytest.raises(InvalidArgumentValue):
        codec.coerce("enum", 4, "direction", DIRECTIONS)


def test_enum_decode_keeps_unlisted_ordinal() -> None:
    assert codec.decode("enum", struct.pack("<i", 42), 0, DIRECTIONS) == 42


def test_string_must_be_ascii() -> None:
    with pytest.raises(InvalidArgumentValue, match="not ASCII"):
        codec.coerce("string", "café", "name")


def test_string_strips_trailing_nul() -> None:
    assert codec.coerce("string", "abc\x00") == "abc"


def test_string_without_terminator_reads_to_end() -> None:
    value, size = codec.read("string", b"xxabc", 2)

    assert value == "abc"
    assert size == 3


def test_unsupported_type() -> None:
    with pytest.raises(UnsupportedType, match='"bitfield"'):
        codec.encode("bitfield", 1)
    with pytest.raises(UnsupportedType):
        codec.read("bitfield", b"\x00")
    with pytest.raises(UnsupportedType):
        codec.coerce("bitfield", 1, "mask")
