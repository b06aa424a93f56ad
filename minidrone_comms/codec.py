from __future__ import annotations

import math
import struct
from typing import Any, Optional, Sequence, Tuple

from .errors import InvalidArgumentValue, UnsupportedType

STRUCT_FORMATS = {
    "u8": "<B",
    "u16": "<H",
    "u32": "<I",
    "u64": "<Q",
    "i8": "<b",
    "i16": "<h",
    "i32": "<i",
    "i64": "<q",
    "float": "<f",
    "double": "<d",
    "enum": "<i",
}

INTEGER_TYPES = ("u8", "u16", "u32", "u64", "i8", "i16", "i32", "i64")
FLOAT_TYPES = ("float", "double")
SUPPORTED_TYPES = tuple(STRUCT_FORMATS) + ("string",)

ENUM_WIDTH = 4


def integer_range(type_tag: str) -> Tuple[int, int]:
    bits = int(type_tag[1:])
    if type_tag.startswith("u"):
        return 0, (1 << bits) - 1
    return -(1 << (bits - 1)), (1 << (bits - 1)) - 1


def width(type_tag: str, value: Any = None) -> int:
    """Encoded size in bytes. Strings need their value: ASCII bytes plus the NUL."""
    if type_tag == "string":
        text = "" if value is None else str(value)
        return len(text.encode("ascii")) + 1
    fmt = STRUCT_FORMATS.get(type_tag)
    if fmt is None:
        raise UnsupportedType(type_tag)
    return struct.calcsize(fmt)


def coerce(
    type_tag: str,
    value: Any,
    name: str = "",
    enum: Optional[Sequence[str]] = None,
) -> Any:
    """Validate ``value`` for ``type_tag`` and return its canonical form."""
    if isinstance(value, float) and value == 0.0:
        value = 0

    if type_tag in INTEGER_TYPES:
        result = _to_int(value, name)
        low, high = integer_range(type_tag)
        if not low <= result <= high:
            raise InvalidArgumentValue(name, f"{result} out of range for {type_tag} [{low}, {high}]")
        return result

    if type_tag in FLOAT_TYPES:
        if isinstance(value, bool):
            value = int(value)
        try:
            result = float(value)
        except (TypeError, ValueError):
            raise InvalidArgumentValue(name, f"{value!r} is not a number") from None
        if type_tag == "float":
            try:
                result = struct.unpack("<f", struct.pack("<f", result))[0]
            except (OverflowError, struct.error):
                raise InvalidArgumentValue(name, f"{value!r} does not fit a 32-bit float") from None
        return result

    if type_tag == "enum":
        options = list(enum or ())
        if isinstance(value, str) and value in options:
            return options.index(value)
        if isinstance(value, int) and not isinstance(value, bool) and 0 <= value < len(options):
            return value
        available = ", ".join(f"{option}={index}" for index, option in enumerate(options))
        raise InvalidArgumentValue(
            name, f"{value!r} is not an enum value. Available options are {available}"
        )

    if type_tag == "string":
        text = str(value).rstrip("\0")
        try:
            text.encode("ascii")
        except UnicodeEncodeError:
            raise InvalidArgumentValue(name, f"{text!r} is not ASCII") from None
        return text

    raise UnsupportedType(type_tag, name)


def _to_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidArgumentValue(name, f"{value!r} is not finite")
        return math.floor(value)
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            pass
        try:
            return _to_int(float(value), name)
        except ValueError:
            pass
    raise InvalidArgumentValue(name, f"{value!r} is not an integer")


def encode(type_tag: str, value: Any, enum: Optional[Sequence[str]] = None) -> bytes:
    if type_tag == "string":
        return str(value).encode("ascii") + b"\0"
    fmt = STRUCT_FORMATS.get(type_tag)
    if fmt is None:
        raise UnsupportedType(type_tag)
    return struct.pack(fmt, value)


def read(
    type_tag: str,
    data: bytes,
    offset: int = 0,
    enum: Optional[Sequence[str]] = None,
) -> Tuple[Any, int]:
    """Decode one field at ``offset`` and return ``(value, bytes_consumed)``.

    Enum ordinals are returned as-is; devices report ordinals outside the
    declared mapping for "unavailable" states.
    """
    if type_tag == "string":
        end = data.find(b"\0", offset)
        if end == -1:
            raw = bytes(data[offset:])
            return raw.decode("ascii", errors="replace"), len(raw)
        return bytes(data[offset:end]).decode("ascii", errors="replace"), end - offset + 1

    fmt = STRUCT_FORMATS.get(type_tag)
    if fmt is None:
        raise UnsupportedType(type_tag)
    return struct.unpack_from(fmt, data, offset)[0], struct.calcsize(fmt)


def decode(
    type_tag: str,
    data: bytes,
    offset: int = 0,
    enum: Optional[Sequence[str]] = None,
) -> Any:
    return read(type_tag, data, offset, enum)[0]
