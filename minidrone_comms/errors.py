from __future__ import annotations

from typing import Optional, Sequence, Union


class DroneProtocolError(Exception):
    """Base class for every error raised by minidrone_comms."""


class UnknownElement(DroneProtocolError):
    """A project, class or command could not be found in the catalog."""

    def __init__(
        self,
        kind: str,
        identifier: Union[str, int],
        context: Sequence[str] = (),
    ) -> None:
        self.kind = kind
        self.identifier = identifier
        self.context = tuple(context)

        if isinstance(identifier, int):
            message = f"Can't find {kind} with the value 0x{identifier:02x}"
        else:
            message = f'Can\'t find {kind} called "{identifier}"'
        if self.context:
            message += " (" + ", ".join(self.context) + ")"
        super().__init__(message)


class InvalidArgumentValue(DroneProtocolError):
    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid value for argument '{name}': {reason}")


class UnsupportedType(DroneProtocolError):
    def __init__(self, type_tag: str, argument: str = "", token: str = "") -> None:
        self.type_tag = type_tag
        self.argument = argument
        self.token = token
        where = f" for argument '{argument}'" if argument else ""
        if token:
            where += f" in {token}"
        super().__init__(f'Unsupported data type "{type_tag}"{where}')


class FrameDecodeFailure(DroneProtocolError):
    def __init__(self, reason: str, frame: Optional[bytes] = None) -> None:
        self.reason = reason
        self.frame = frame
        super().__init__(reason)


class PendingAckConflict(DroneProtocolError):
    def __init__(self, buffer_id: int, packet_id: int) -> None:
        self.buffer_id = buffer_id
        self.packet_id = packet_id
        super().__init__(
            f"An acknowledgment is already pending for buffer {buffer_id} packet {packet_id}"
        )


class CommandTimeout(DroneProtocolError):
    def __init__(self, token: str, buffer_id: int, packet_id: int, timeout_s: float) -> None:
        self.token = token
        self.buffer_id = buffer_id
        self.packet_id = packet_id
        self.timeout_s = timeout_s
        super().__init__(
            f"No acknowledgment for {token} (buffer {buffer_id}, packet {packet_id}) "
            f"within {timeout_s:.1f}s"
        )


class HandshakeRejected(DroneProtocolError):
    def __init__(self, status: int, status_name: str, detail: str = "") -> None:
        self.status = status
        self.status_name = status_name
        message = f"Handshake rejected by device: {status_name} ({status})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class TransportIOError(DroneProtocolError):
    pass


class NotConnected(TransportIOError):
    pass
