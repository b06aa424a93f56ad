from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from . import codec
from .errors import FrameDecodeFailure, InvalidArgumentValue, UnsupportedType
from .protocol import COMMAND_HEADER_SIZE, BufferClass


@dataclass(frozen=True)
class ArgumentSpec:
    name: str
    type: str
    enum: Optional[Tuple[str, ...]] = None
    description: str = ""

    @property
    def is_enum(self) -> bool:
        return self.type == "enum"

    def default(self) -> Any:
        if self.type == "string":
            return ""
        if self.type in codec.FLOAT_TYPES:
            return 0.0
        return 0

    def coerce(self, value: Any) -> Any:
        return codec.coerce(self.type, value, self.name, self.enum)

    def enum_name(self, ordinal: int) -> Optional[str]:
        if self.enum is not None and 0 <= ordinal < len(self.enum):
            return self.enum[ordinal]
        return None

    def format_value(self, value: Any, precision: int = 3) -> str:
        if self.type == "string":
            return f'"{value}"'
        if self.type in codec.FLOAT_TYPES:
            text = f"{value:.{precision}f}".rstrip("0")
            return text + "0" if text.endswith(".") else text
        if self.type == "enum":
            name = self.enum_name(value)
            return f'"{name if name is not None else "?"}"({value})'
        return str(value)


@dataclass(frozen=True)
class CommandTemplate:
    """Immutable metadata for one ``project/class/command`` triplet."""

    project_id: int
    project_name: str
    class_id: int
    class_name: str
    command_id: int
    command_name: str
    arguments: Tuple[ArgumentSpec, ...] = ()
    buffer_class: BufferClass = BufferClass.DATA_WITH_ACK
    deprecated: bool = False
    timeout_action: str = "POP"
    description: str = ""
    _index: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", {arg.name: i for i, arg in enumerate(self.arguments)})

    @property
    def token(self) -> str:
        return f"{self.project_name}/{self.class_name}/{self.command_name}"

    @property
    def ids(self) -> Tuple[int, int, int]:
        return self.project_id, self.class_id, self.command_id

    @property
    def buffer_id(self) -> int:
        return self.buffer_class.buffer_id

    @property
    def requires_ack(self) -> bool:
        return self.buffer_class.requires_ack

    @property
    def argument_names(self) -> List[str]:
        return [arg.name for arg in self.arguments]

    def index_of(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise InvalidArgumentValue(name, f"{self.token} has no such argument") from None

    def has_argument(self, name: str) -> bool:
        return name in self._index

    def instantiate(self, values: Optional[Mapping[str, Any]] = None) -> "CommandInstance":
        command = CommandInstance(self)
        for name, value in (values or {}).items():
            if self.has_argument(name):
                command.set(name, value)
        return command


class CommandInstance:
    """Concrete argument values bound to a shared :class:`CommandTemplate`."""

    __slots__ = ("template", "_values")

    def __init__(self, template: CommandTemplate, values: Optional[Iterable[Any]] = None) -> None:
        self.template = template
        if values is None:
            self._values = [arg.default() for arg in template.arguments]
        else:
            self._values = list(values)
            if len(self._values) != len(template.arguments):
                raise ValueError(
                    f"{template.token} expects {len(template.arguments)} values, got {len(self._values)}"
                )

    @property
    def token(self) -> str:
        return self.template.token

    @property
    def project_name(self) -> str:
        return self.template.project_name

    @property
    def class_name(self) -> str:
        return self.template.class_name

    @property
    def command_name(self) -> str:
        return self.template.command_name

    @property
    def buffer_class(self) -> BufferClass:
        return self.template.buffer_class

    @property
    def buffer_flag(self) -> int:
        return self.template.buffer_class.flag

    @property
    def buffer_id(self) -> int:
        return self.template.buffer_id

    @property
    def requires_ack(self) -> bool:
        return self.template.requires_ack

    @property
    def values(self) -> Tuple[Any, ...]:
        return tuple(self._values)

    def has_argument(self, name: str) -> bool:
        return self.template.has_argument(name)

    def get(self, name: str) -> Any:
        return self._values[self.template.index_of(name)]

    def set(self, name: str, value: Any) -> None:
        index = self.template.index_of(name)
        arg = self.template.arguments[index]
        try:
            self._values[index] = arg.coerce(value)
        except UnsupportedType:
            raise UnsupportedType(arg.type, arg.name, self.token) from None

    def update(self, values: Mapping[str, Any]) -> None:
        for name, value in values.items():
            self.set(name, value)

    def enum_name(self, name: str) -> Optional[str]:
        index = self.template.index_of(name)
        return self.template.arguments[index].enum_name(self._values[index])

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def as_dict(self) -> Dict[str, Any]:
        return {arg.name: value for arg, value in zip(self.template.arguments, self._values)}

    def clone(self) -> "CommandInstance":
        return CommandInstance(self.template, self._values)

    def to_bytes(self) -> bytes:
        """``[flag][seq placeholder][project][class][command u16][args...]``."""
        frame = bytearray(COMMAND_HEADER_SIZE)
        frame[0] = self.buffer_flag
        frame[2] = self.template.project_id & 0xFF
        frame[3] = self.template.class_id & 0xFF
        frame[4] = self.template.command_id & 0xFF
        frame[5] = (self.template.command_id >> 8) & 0xFF

        for arg, value in zip(self.template.arguments, self._values):
            try:
                frame += codec.encode(arg.type, value, arg.enum)
            except UnsupportedType:
                raise UnsupportedType(arg.type, arg.name, self.token) from None
        return bytes(frame)

    def load(self, data: bytes, offset: int) -> int:
        """Decode argument values from ``data`` starting at ``offset``; returns the end offset."""
        values = []
        for arg in self.template.arguments:
            try:
                value, size = codec.read(arg.type, data, offset, arg.enum)
            except UnsupportedType:
                raise UnsupportedType(arg.type, arg.name, self.token) from None
            except struct.error as exc:
                raise FrameDecodeFailure(
                    f"Can't decode argument '{arg.name}' of {self.token} at offset {offset}: {exc}",
                    bytes(data),
                ) from exc
            values.append(value)
            offset += size
        self._values = values
        return offset

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CommandInstance):
            return NotImplemented
        return self.template.ids == other.template.ids and self._values == other._values

    def __repr__(self) -> str:
        return f"<CommandInstance {self.to_string(debug=True)}>"

    def __str__(self) -> str:
        return self.to_string()

    def to_string(self, debug: bool = False) -> str:
        parts = [self.template.project_name, self.template.class_name, self.template.command_name]
        for arg, value in zip(self.template.arguments, self._values):
            prefix = f"({arg.type})" if debug else ""
            parts.append(f"{prefix}{arg.name}={arg.format_value(value)}")
        return " ".join(parts)
