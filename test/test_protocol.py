import struct

import pytest

from minidrone_comms.protocol import (
    WIFI_ACK_FRAME_SIZE,
    BufferClass,
    BufferId,
    DatagramSplitter,
    FrameType,
    ack_buffer_for,
    acked_buffer_of,
    decode_wifi_header,
    encode_ack,
    encode_wifi_frame,
)


def test_buffer_class_flags() -> None:
    assert BufferClass.ACK.flag == 0x01
    assert BufferClass.DATA.flag == 0x02
    assert BufferClass.NON_ACK.flag == 0x02
    assert BufferClass.HIGH_PRIO.flag == 0x02
    assert BufferClass.LOW_LATENCY_DATA.flag == 0x03
    assert BufferClass.DATA_WITH_ACK.flag == 0x04


def test_buffer_class_channels() -> None:
    assert BufferClass.NON_ACK.buffer_id == BufferId.SEND_NO_ACK == 10
    assert BufferClass.DATA_WITH_ACK.buffer_id == BufferId.SEND_WITH_ACK == 11
    assert BufferClass.HIGH_PRIO.buffer_id == BufferId.SEND_HIGH_PRIORITY == 12
    assert BufferClass.ACK.buffer_id == 255


def test_buffer_class_parse() -> None:
    assert BufferClass.parse(" non_ack ") is BufferClass.NON_ACK
    with pytest.raises(ValueError):
        BufferClass.parse("SOMETIMES")


def test_ack_buffer_offset() -> None:
    assert ack_buffer_for(11) == 139
    assert ack_buffer_for(127) == 255
    assert acked_buffer_of(139) == 11


def test_encode_ack() -> None:
    assert encode_ack(3, 200) == bytes([FrameType.ACK, 3, 200])


def test_wifi_ack_frame_is_eight_bytes() -> None:
    frame = encode_wifi_frame(FrameType.ACK, 255, 7, bytes([42]))

    assert len(frame) == WIFI_ACK_FRAME_SIZE == 8
    assert frame == bytes([1, 255, 7]) + struct.pack("<I", 8) + bytes([42])
    assert decode_wifi_header(frame) == (1, 255, 7, 8)


def test_decode_header_truncated() -> None:
    with pytest.raises(ValueError, match="Truncated"):
        decode_wifi_header(b"\x01\x02")


def test_splitter_handles_concatenated_frames() -> None:
    splitter = DatagramSplitter()
    first = encode_wifi_frame(FrameType.DATA, 126, 1, bytes([0, 5, 1, 0, 80]))
    second = encode_wifi_frame(FrameType.ACK, 139, 2, bytes([9]))

    frames = splitter.feed(first + second)

    assert frames == [
        (FrameType.DATA, 126, 1, bytes([0, 5, 1, 0, 80])),
        (FrameType.ACK, 139, 2, bytes([9])),
    ]
    assert splitter.malformed_frames == 0


def test_splitter_drops_malformed_tail() -> None:
    splitter = DatagramSplitter()
    good = encode_wifi_frame(FrameType.DATA, 126, 1, b"\x00\x05\x01\x00")
    bad = bytes([2, 126, 2]) + struct.pack("<I", 500) + b"\x00"

    frames = splitter.feed(good + bad)

    assert len(frames) == 1
    assert splitter.malformed_frames == 1
    assert splitter.dropped_bytes == len(bad)


def test_splitter_rejects_short_datagram() -> None:
    splitter = DatagramSplitter()

    assert splitter.feed(b"\x02\x7e") == []
    assert splitter.malformed_frames == 1
    assert splitter.dropped_bytes == 2
