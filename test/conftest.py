from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from minidrone_comms.catalog import CommandCatalog
from minidrone_comms.protocol import BufferId, FrameType
from minidrone_comms.transport import Frame, Transport


class FakeTransport(Transport):
    """In-memory transport recording every write."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: List[Tuple[int, bytes]] = []
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.connect_error: Optional[BaseException] = None
        self.write_error: Optional[BaseException] = None
        self.on_write: Optional[Callable[[int, bytes], None]] = None
        self.connect_gate: Optional[asyncio.Event] = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self._connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False

    async def write(self, buffer_id: int, data: bytes) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((buffer_id, bytes(data)))
        if self.on_write is not None:
            self.on_write(buffer_id, bytes(data))

    def inject(self, frame: Frame) -> None:
        self._deliver(frame)

    def drop(self, exc: BaseException) -> None:
        self._connected = False
        self._lost(exc)


def command_payload(
    catalog: CommandCatalog,
    project: str,
    class_name: str,
    command: str,
    values: Optional[Dict[str, Any]] = None,
) -> bytes:
    """Inbound payload (project id onwards) for a command built from the catalog."""
    return catalog.new_command(project, class_name, command, values).to_bytes()[2:]


def data_frame(
    payload: bytes,
    frame_type: int = FrameType.DATA,
    buffer_id: int = BufferId.RECV_NO_ACK,
    sequence: int = 0,
) -> Frame:
    return Frame(frame_type, buffer_id, sequence, payload)


@pytest.fixture(scope="session")
def catalog() -> CommandCatalog:
    return CommandCatalog(warmup=True)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
