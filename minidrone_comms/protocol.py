from __future__ import annotations

import struct
from enum import Enum, IntEnum
from typing import List, Tuple

ACK_OFFSET = 128

# type, buffer id, sequence, total frame length
WIFI_HEADER = struct.Struct("<BBBI")
WIFI_HEADER_SIZE = WIFI_HEADER.size
WIFI_ACK_FRAME_SIZE = WIFI_HEADER_SIZE + 1

# flag, sequence, project, class, command (u16)
COMMAND_HEADER_SIZE = 6
COMMAND_PREFIX_SIZE = 2


class FrameType(IntEnum):
    ACK = 0x01
    DATA = 0x02
    LOW_LATENCY_DATA = 0x03
    DATA_WITH_ACK = 0x04


class BufferId(IntEnum):
    PING = 0
    PONG = 1
    SEND_NO_ACK = 10
    SEND_WITH_ACK = 11
    SEND_HIGH_PRIORITY = 12
    RECV_NO_ACK = 126
    RECV_WITH_ACK = 127
    ACK_RECV_WITH_ACK = RECV_WITH_ACK + ACK_OFFSET


class BufferClass(Enum):
    ACK = "ACK"
    DATA = "DATA"
    NON_ACK = "NON_ACK"
    HIGH_PRIO = "HIGH_PRIO"
    LOW_LATENCY_DATA = "LOW_LATENCY_DATA"
    DATA_WITH_ACK = "DATA_WITH_ACK"

    @classmethod
    def parse(cls, raw: str) -> "BufferClass":
        return cls(str(raw).strip().upper())

    @property
    def flag(self) -> int:
        return _BUFFER_FLAGS[self]

    @property
    def buffer_id(self) -> int:
        return _BUFFER_CHANNELS[self]

    @property
    def requires_ack(self) -> bool:
        return self is BufferClass.DATA_WITH_ACK


_BUFFER_FLAGS = {
    BufferClass.ACK: FrameType.ACK,
    BufferClass.DATA: FrameType.DATA,
    BufferClass.NON_ACK: FrameType.DATA,
    BufferClass.HIGH_PRIO: FrameType.DATA,
    BufferClass.LOW_LATENCY_DATA: FrameType.LOW_LATENCY_DATA,
    BufferClass.DATA_WITH_ACK: FrameType.DATA_WITH_ACK,
}

_BUFFER_CHANNELS = {
    BufferClass.ACK: BufferId.ACK_RECV_WITH_ACK,
    BufferClass.DATA: BufferId.SEND_NO_ACK,
    BufferClass.NON_ACK: BufferId.SEND_NO_ACK,
    BufferClass.HIGH_PRIO: BufferId.SEND_HIGH_PRIORITY,
    BufferClass.LOW_LATENCY_DATA: BufferId.SEND_NO_ACK,
    BufferClass.DATA_WITH_ACK: BufferId.SEND_WITH_ACK,
}


def ack_buffer_for(buffer_id: int) -> int:
    return (buffer_id + ACK_OFFSET) & 0xFF


def acked_buffer_of(buffer_id: int) -> int:
    return (buffer_id - ACK_OFFSET) & 0xFF


def encode_ack(sequence: int, acked_sequence: int) -> bytes:
    """Link-neutral ack: ``[ACK][sequence][acked sequence]``."""
    return bytes((FrameType.ACK, sequence & 0xFF, acked_sequence & 0xFF))


def encode_wifi_frame(frame_type: int, buffer_id: int, sequence: int, payload: bytes = b"") -> bytes:
    size = WIFI_HEADER_SIZE + len(payload)
    return WIFI_HEADER.pack(frame_type & 0xFF, buffer_id & 0xFF, sequence & 0xFF, size) + payload


def decode_wifi_header(data: bytes, offset: int = 0) -> Tuple[int, int, int, int]:
    if len(data) - offset < WIFI_HEADER_SIZE:
        raise ValueError(f"Truncated frame header: {len(data) - offset} bytes")
    return WIFI_HEADER.unpack_from(data, offset)


class DatagramSplitter:
    """Splits UDP datagrams into frames; one datagram may carry several."""

    __slots__ = ("dropped_bytes", "malformed_frames")

    def __init__(self) -> None:
        self.dropped_bytes = 0
        self.malformed_frames = 0

    def feed(self, datagram: bytes) -> List[Tuple[int, int, int, bytes]]:
        frames: List[Tuple[int, int, int, bytes]] = []
        offset = 0

        while offset < len(datagram):
            remaining = len(datagram) - offset
            if remaining < WIFI_HEADER_SIZE:
                self.malformed_frames += 1
                self.dropped_bytes += remaining
                break

            frame_type, buffer_id, sequence, size = WIFI_HEADER.unpack_from(datagram, offset)
            if size < WIFI_HEADER_SIZE or size > remaining:
                self.malformed_frames += 1
                self.dropped_bytes += remaining
                break

            payload = bytes(datagram[offset + WIFI_HEADER_SIZE : offset + size])
            frames.append((frame_type, buffer_id, sequence, payload))
            offset += size

        return frames
