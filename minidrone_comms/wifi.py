from __future__ import annotations

import asyncio
import json
import logging
import socket
from typing import Any, Optional, Tuple

from .discovery import DEFAULT_SERVICE_TYPE, DiscoveryStatus, ServiceBrowser, ServiceInfo, status_name
from .errors import HandshakeRejected, NotConnected, TransportIOError
from .protocol import COMMAND_PREFIX_SIZE, DatagramSplitter, encode_wifi_frame
from .transport import Frame, Transport

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_PORT = 44444
DEFAULT_HANDSHAKE_TIMEOUT_S = 5.0
DEFAULT_DISCOVERY_TIMEOUT_S = 10.0
DEFAULT_CONTROLLER_TYPE = "computer"
DEFAULT_CONTROLLER_NAME = "minidrone_comms"

_MAX_HANDSHAKE_RESPONSE = 4096


def build_handshake_request(d2c_port: int, controller_type: str, controller_name: str) -> bytes:
    request = {
        "d2c_port": int(d2c_port),
        "controller_type": controller_type,
        "controller_name": controller_name,
    }
    return json.dumps(request).encode("utf-8") + b"\x00"


def parse_handshake_response(raw: bytes) -> int:
    """Return the drone's command port; raise :class:`HandshakeRejected` otherwise."""
    text = bytes(raw).split(b"\x00", 1)[0].decode("utf-8", errors="replace").strip()
    parsing = DiscoveryStatus.ERROR_JSON_PARSSING

    try:
        payload = json.loads(text)
        status = int(payload["status"])
    except (ValueError, KeyError, TypeError) as exc:
        raise HandshakeRejected(int(parsing), parsing.name, f"invalid response {text!r}") from exc

    if status != DiscoveryStatus.OK:
        raise HandshakeRejected(status, status_name(status))

    try:
        c2d_port = int(payload["c2d_port"])
    except (ValueError, KeyError, TypeError) as exc:
        raise HandshakeRejected(int(parsing), parsing.name, "response has no c2d_port") from exc
    if not 0 < c2d_port <= 0xFFFF:
        raise HandshakeRejected(int(parsing), parsing.name, f"c2d_port out of range: {c2d_port}")
    return c2d_port


def _response_complete(data: bytes) -> bool:
    if b"\x00" in data:
        return True
    try:
        json.loads(data.decode("utf-8"))
    except ValueError:
        return False
    return True


class _DataChannel(asyncio.DatagramProtocol):
    def __init__(self, owner: "WifiTransport") -> None:
        self._owner = owner

    def datagram_received(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        self._owner._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._owner._on_socket_error(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            self._owner._on_socket_error(exc)


class WifiTransport(Transport):
    """UDP data channel negotiated through the ARSDK JSON handshake.

    Either ``host`` (and optionally ``port``) or a ``browser`` must be given;
    with a browser the first service whose name matches ``name_filter``
    (any name when unset) is used.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: int = DEFAULT_DISCOVERY_PORT,
        browser: Optional[ServiceBrowser] = None,
        name_filter: Optional[str] = None,
        service_type: str = DEFAULT_SERVICE_TYPE,
        controller_type: str = DEFAULT_CONTROLLER_TYPE,
        controller_name: str = DEFAULT_CONTROLLER_NAME,
        d2c_port: int = 0,
        bind_host: str = "0.0.0.0",
        handshake_timeout_s: float = DEFAULT_HANDSHAKE_TIMEOUT_S,
        discovery_timeout_s: float = DEFAULT_DISCOVERY_TIMEOUT_S,
    ) -> None:
        super().__init__()
        if host is None and browser is None:
            raise ValueError("WifiTransport needs a host or a service browser")
        if handshake_timeout_s <= 0:
            raise ValueError("handshake_timeout_s must be > 0")
        if discovery_timeout_s <= 0:
            raise ValueError("discovery_timeout_s must be > 0")
        if not 0 <= int(d2c_port) <= 0xFFFF:
            raise ValueError("d2c_port must be in 0..65535")

        self.host = host
        self.port = int(port)
        self.browser = browser
        self.name_filter = name_filter
        self.service_type = service_type
        self.controller_type = controller_type
        self.controller_name = controller_name
        self.d2c_port = int(d2c_port)
        self.bind_host = bind_host
        self.handshake_timeout_s = float(handshake_timeout_s)
        self.discovery_timeout_s = float(discovery_timeout_s)

        self.service: Optional[ServiceInfo] = None
        self._browsing = False
        self._reserved: Optional[socket.socket] = None
        self._udp: Optional[asyncio.DatagramTransport] = None
        self._peer: Optional[Tuple[str, int]] = None
        self._splitter = DatagramSplitter()

    @property
    def connected(self) -> bool:
        return self._udp is not None and not self._udp.is_closing()

    @property
    def data_channel_open(self) -> bool:
        return self._udp is not None

    @property
    def local_port(self) -> Optional[int]:
        sock = self._reserved
        if sock is None and self._udp is not None:
            sock = self._udp.get_extra_info("socket")
        if sock is None:
            return None
        return sock.getsockname()[1]

    @property
    def peer(self) -> Optional[Tuple[str, int]]:
        return self._peer

    @property
    def dropped_bytes(self) -> int:
        return self._splitter.dropped_bytes

    async def connect(self) -> None:
        if self.connected:
            return

        host, port = await self._resolve()
        sock = self._reserve_port()
        d2c_port = sock.getsockname()[1]
        logger.debug("reserved UDP port %d, handshaking with %s:%d", d2c_port, host, port)

        try:
            c2d_port = await self._handshake(host, port, d2c_port)
        except BaseException:
            self._release_reserved()
            raise

        loop = asyncio.get_running_loop()
        try:
            udp, _ = await loop.create_datagram_endpoint(lambda: _DataChannel(self), sock=sock)
        except OSError as exc:
            self._release_reserved()
            raise TransportIOError(f"Can't open data channel: {exc}") from exc

        self._reserved = None
        self._udp = udp
        self._peer = (host, c2d_port)
        logger.info("data channel open: local %d -> %s:%d", d2c_port, host, c2d_port)

    async def disconnect(self) -> None:
        self._stop_browser()
        self._close()

    async def write(self, buffer_id: int, data: bytes) -> None:
        if self._udp is None or self._peer is None:
            raise NotConnected("WiFi data channel is not open")
        if len(data) < COMMAND_PREFIX_SIZE:
            raise ValueError(f"frame too short: {len(data)} bytes")

        datagram = encode_wifi_frame(data[0], buffer_id, data[1], bytes(data[COMMAND_PREFIX_SIZE:]))
        try:
            self._udp.sendto(datagram, self._peer)
        except OSError as exc:
            self._close()
            raise TransportIOError(f"UDP send failed: {exc}") from exc

    # ------------------------------------------------------------------

    async def _resolve(self) -> Tuple[str, int]:
        if self.host is not None:
            return self.host, self.port

        assert self.browser is not None
        loop = asyncio.get_running_loop()
        found: asyncio.Future = loop.create_future()

        def accept(info: ServiceInfo) -> None:
            if not found.done():
                found.set_result(info)

        def on_service(info: ServiceInfo) -> None:
            if self.name_filter is not None and info.name != self.name_filter:
                logger.debug("skipping service %s", info.name)
                return
            loop.call_soon_threadsafe(accept, info)

        self._browsing = True
        self.browser.start(self.service_type, on_service)
        try:
            info = await asyncio.wait_for(found, self.discovery_timeout_s)
        except asyncio.TimeoutError:
            raise TransportIOError(
                f"No {self.service_type} service found within {self.discovery_timeout_s:.1f}s"
            ) from None
        finally:
            self._stop_browser()

        logger.info("Found service %s at %s:%d", info.name, info.host, info.port)
        self.service = info
        return info.host, info.port

    def _stop_browser(self) -> None:
        if self._browsing and self.browser is not None:
            self._browsing = False
            self.browser.stop()

    def _reserve_port(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setblocking(False)
            sock.bind((self.bind_host, self.d2c_port))
        except OSError as exc:
            sock.close()
            raise TransportIOError(f"Can't bind UDP port {self.d2c_port}: {exc}") from exc
        self._reserved = sock
        return sock

    def _release_reserved(self) -> None:
        if self._reserved is not None:
            self._reserved.close()
            self._reserved = None

    async def _handshake(self, host: str, port: int, d2c_port: int) -> int:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), self.handshake_timeout_s
            )
        except asyncio.TimeoutError:
            raise TransportIOError(f"Handshake connect to {host}:{port} timed out") from None
        except OSError as exc:
            raise TransportIOError(f"Handshake connect to {host}:{port} failed: {exc}") from exc

        try:
            writer.write(build_handshake_request(d2c_port, self.controller_type, self.controller_name))
            await writer.drain()
            raw = await asyncio.wait_for(self._read_response(reader), self.handshake_timeout_s)
        except asyncio.TimeoutError:
            raise TransportIOError(f"No handshake response from {host}:{port}") from None
        except OSError as exc:
            raise TransportIOError(f"Handshake with {host}:{port} failed: {exc}") from exc
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as exc:
                logger.debug("handshake socket close: %s", exc)

        logger.debug("handshake response: %r", raw)
        return parse_handshake_response(raw)

    @staticmethod
    async def _read_response(reader: asyncio.StreamReader) -> bytes:
        data = b""
        while len(data) < _MAX_HANDSHAKE_RESPONSE:
            chunk = await reader.read(1024)
            if not chunk:
                break
            data += chunk
            if _response_complete(data):
                break
        return data

    def _close(self) -> None:
        self._release_reserved()
        udp, self._udp = self._udp, None
        self._peer = None
        if udp is not None:
            udp.close()
            logger.info("data channel closed")

    def _on_datagram(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        malformed = self._splitter.malformed_frames
        for frame_type, buffer_id, sequence, payload in self._splitter.feed(data):
            self._deliver(Frame(frame_type, buffer_id, sequence, payload))
        if self._splitter.malformed_frames != malformed:
            logger.warning("dropped malformed frame data from %s (%d bytes total)", addr, self.dropped_bytes)

    def _on_socket_error(self, exc: Exception) -> None:
        if self._udp is None:
            return
        logger.error("data channel error: %s", exc)
        self._close()
        self._lost(TransportIOError(f"UDP socket error: {exc}"))
