from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .errors import NotConnected, TransportIOError
from .protocol import BufferId, ack_buffer_for
from .transport import Frame, Transport

logger = logging.getLogger(__name__)

DRONE_PREFIXES = ("RS_", "Mars_", "Travis_", "Maclan_", "Mambo_", "Blaze_", "NewZ_")

MANUFACTURER_SERIALS = (
    "4300cf1900090100",
    "4300cf1909090100",
    "4300cf1907090100",
)

# Short ids are the 3rd and 4th bytes of the characteristic UUID:
# "fa" sending service, "fb" receiving service, "fd" BLE FTP services.
SEND_CHARACTERISTICS: Dict[int, str] = {
    BufferId.SEND_NO_ACK: "fa0a",
    BufferId.SEND_WITH_ACK: "fa0b",
    BufferId.SEND_HIGH_PRIORITY: "fa0c",
    BufferId.ACK_RECV_WITH_ACK: "fa1e",
}

RECEIVE_CHARACTERISTICS: Dict[str, int] = {
    "fb0e": BufferId.RECV_WITH_ACK,
    "fb0f": BufferId.RECV_NO_ACK,
    "fb1b": ack_buffer_for(BufferId.SEND_WITH_ACK),
    "fb1c": ack_buffer_for(BufferId.SEND_HIGH_PRIORITY),
}

HANDSHAKE_CHARACTERISTICS = (
    "fb0f", "fb0e", "fb1b", "fb1c",
    "fd22", "fd23", "fd24", "fd52",
    "fd53", "fd54",
)

DEFAULT_SCAN_TIMEOUT_S = 30.0
DEFAULT_SETTLE_DELAY_S = 0.2


@dataclass(frozen=True)
class Advertisement:
    address: str
    local_name: Optional[str] = None
    manufacturer_data: bytes = b""


def short_id(uuid: str) -> str:
    return uuid[4:8].lower()


def is_drone(advertisement: Advertisement, name_filter: Optional[str] = None) -> bool:
    name = advertisement.local_name or ""
    if name_filter:
        name_match = name == name_filter
    else:
        name_match = any(prefix in name for prefix in DRONE_PREFIXES)
    manufacturer_match = advertisement.manufacturer_data.hex() in MANUFACTURER_SERIALS
    return name_match or manufacturer_match


class BleCentral(ABC):
    """The slice of a BLE central stack the transport needs.

    Implementations raise ``OSError`` (or :class:`TransportIOError`) on radio
    failures and call the registered disconnect callback when the
    peripheral drops.
    """

    @abstractmethod
    async def scan(
        self,
        matches: Callable[[Advertisement], bool],
        timeout_s: float,
    ) -> Optional[Advertisement]:
        """Return the first advertisement accepted by ``matches`` or None on timeout."""

    @abstractmethod
    async def connect(self, address: str) -> None:
        ...

    @abstractmethod
    async def characteristics(self) -> List[str]:
        """Full UUIDs of every characteristic of the connected peripheral."""

    @abstractmethod
    async def subscribe(self, uuid: str, callback: Callable[[bytes], None]) -> None:
        ...

    @abstractmethod
    async def write(self, uuid: str, data: bytes, response: bool = False) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    def set_disconnect_callback(self, callback: Optional[Callable[[], None]]) -> None:
        ...


class BleTransport(Transport):
    def __init__(
        self,
        central: BleCentral,
        name_filter: Optional[str] = None,
        scan_timeout_s: float = DEFAULT_SCAN_TIMEOUT_S,
        settle_delay_s: float = DEFAULT_SETTLE_DELAY_S,
    ) -> None:
        super().__init__()
        if scan_timeout_s <= 0:
            raise ValueError("scan_timeout_s must be > 0")
        if settle_delay_s < 0:
            raise ValueError("settle_delay_s must be >= 0")

        self.central = central
        self.name_filter = name_filter
        self.scan_timeout_s = float(scan_timeout_s)
        self.settle_delay_s = float(settle_delay_s)

        self.peripheral: Optional[Advertisement] = None
        self._characteristics: Dict[str, str] = {}
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def matches(self, advertisement: Advertisement) -> bool:
        return is_drone(advertisement, self.name_filter)

    def characteristic(self, short: str) -> Optional[str]:
        return self._characteristics.get(short.lower())

    async def connect(self) -> None:
        if self._connected:
            logger.warning("Already connected, ignoring connect request")
            return

        logger.info("Searching for drones...")
        try:
            advertisement = await self.central.scan(self.matches, self.scan_timeout_s)
        except OSError as exc:
            raise TransportIOError(f"BLE scan failed: {exc}") from exc
        if advertisement is None:
            raise TransportIOError(f"No drone found within {self.scan_timeout_s:.1f}s")

        logger.info("Peripheral found %s", advertisement.local_name or advertisement.address)
        try:
            await self.central.connect(advertisement.address)
            self.peripheral = advertisement
            await self._setup()
        except OSError as exc:
            await self._release()
            raise TransportIOError(f"BLE setup failed: {exc}") from exc
        except BaseException:
            await self._release()
            raise

        self.central.set_disconnect_callback(self._on_central_disconnect)
        await asyncio.sleep(self.settle_delay_s)
        self._connected = True
        logger.info("Device connected %s", advertisement.local_name or advertisement.address)

    async def _setup(self) -> None:
        uuids = await self.central.characteristics()
        self._characteristics = {short_id(uuid): uuid for uuid in uuids}
        logger.debug("characteristics: %s", ", ".join(sorted(self._characteristics)))

        missing = [sid for sid in RECEIVE_CHARACTERISTICS if sid not in self._characteristics]
        if missing:
            raise TransportIOError(f"Peripheral lacks receive characteristic(s) {', '.join(missing)}")

        logger.debug("Performing handshake")
        for sid in HANDSHAKE_CHARACTERISTICS:
            uuid = self._characteristics.get(sid)
            if uuid is None:
                logger.info("handshake characteristic %s not present, skipping", sid)
                continue
            await self.central.subscribe(uuid, self._listener_for(sid))

    def _listener_for(self, sid: str) -> Callable[[bytes], None]:
        buffer_id = RECEIVE_CHARACTERISTICS.get(sid)
        if buffer_id is None:
            return lambda data: logger.debug("notification on %s: %s", sid, bytes(data).hex(" "))
        return lambda data: self._on_notification(buffer_id, data)

    def _on_notification(self, buffer_id: int, data: bytes) -> None:
        if len(data) < 2:
            logger.warning("short notification on buffer %d: %s", buffer_id, bytes(data).hex(" "))
            return
        self._deliver(Frame(data[0], buffer_id, data[1], bytes(data[2:])))

    async def write(self, buffer_id: int, data: bytes) -> None:
        if not self._connected:
            raise NotConnected("BLE peripheral is not connected")

        sid = SEND_CHARACTERISTICS.get(buffer_id)
        if sid is None:
            raise ValueError(f"No BLE characteristic for buffer {buffer_id}")
        uuid = self._characteristics.get(sid)
        if uuid is None:
            raise TransportIOError(f"Peripheral lacks send characteristic {sid}")

        try:
            await self.central.write(uuid, bytes(data))
        except OSError as exc:
            raise TransportIOError(f"BLE write to {sid} failed: {exc}") from exc

    async def disconnect(self) -> None:
        self._connected = False
        await self._release()

    async def _release(self) -> None:
        self.central.set_disconnect_callback(None)
        self._characteristics = {}
        if self.peripheral is not None:
            self.peripheral = None
            try:
                await self.central.disconnect()
            except OSError as exc:
                logger.debug("BLE disconnect: %s", exc)

    def _on_central_disconnect(self) -> None:
        if not self._connected:
            return
        logger.warning("peripheral disconnected")
        self._connected = False
        self.peripheral = None
        self._characteristics = {}
        self._lost(TransportIOError("BLE peripheral disconnected"))
