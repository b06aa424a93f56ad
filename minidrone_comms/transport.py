from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from .protocol import FrameType


@dataclass(frozen=True)
class Frame:
    frame_type: int
    buffer_id: int
    sequence: int
    payload: bytes

    @property
    def is_ack(self) -> bool:
        return self.frame_type == FrameType.ACK

    @property
    def requires_ack(self) -> bool:
        return self.frame_type == FrameType.DATA_WITH_ACK


FrameHandler = Callable[[Frame], None]
LostHandler = Callable[[Optional[BaseException]], None]


class Transport(ABC):
    """One physical link (BLE or WiFi/UDP) carrying opaque frames.

    ``write()`` gets a buffer id and a stamped frame
    ``[flag][seq][project][class][command u16][args...]`` or an ack
    ``[0x01][seq][acked seq]`` and wraps it in the link envelope. Inbound
    frames reach the attached handler as :class:`Frame` in receive order.
    A link failure is reported once through ``on_lost`` after resources
    are released.
    """

    def __init__(self) -> None:
        self._on_frame: Optional[FrameHandler] = None
        self._on_lost: Optional[LostHandler] = None

    def attach(self, on_frame: FrameHandler, on_lost: LostHandler) -> None:
        self._on_frame = on_frame
        self._on_lost = on_lost

    def _deliver(self, frame: Frame) -> None:
        if self._on_frame is not None:
            self._on_frame(frame)

    def _lost(self, exc: Optional[BaseException]) -> None:
        if self._on_lost is not None:
            self._on_lost(exc)

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the link; returns once frames can flow, raises on failure."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release every link resource. Safe to call more than once."""

    @abstractmethod
    async def write(self, buffer_id: int, data: bytes) -> None:
        ...
