from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from .catalog import CommandCatalog
from .command import CommandInstance
from .errors import (
    CommandTimeout,
    DroneProtocolError,
    NotConnected,
    TransportIOError,
)
from .pending import PendingAckTable
from .protocol import BufferId, FrameType, ack_buffer_for, acked_buffer_of, encode_ack
from .sensors import SensorStore, make_token
from .sequence import SequenceTracker
from .transport import Frame, Transport

logger = logging.getLogger(__name__)

DEFAULT_ACK_TIMEOUT_S = 5.0

EVENT_CONNECTED = "connected"
EVENT_DISCONNECTED = "disconnected"
SENSOR_EVENT_PREFIX = "sensor:"
EVENT_ANY_SENSOR = SENSOR_EVENT_PREFIX + "*"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(slots=True)
class LinkStats:
    tx_frames_ok: int = 0
    tx_errors: int = 0
    rx_frames_ok: int = 0
    rx_decode_errors: int = 0
    acks_matched: int = 0
    acks_unmatched: int = 0
    acks_sent: int = 0
    timeouts: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class DroneConnection:
    """Transport-neutral command/telemetry exchange with one drone.

    All methods except the read-only accessors must run on the event loop
    that drives the transport.
    """

    def __init__(
        self,
        transport: Transport,
        catalog: Optional[CommandCatalog] = None,
        ack_timeout_s: float = DEFAULT_ACK_TIMEOUT_S,
        warmup: bool = True,
    ) -> None:
        if ack_timeout_s <= 0:
            raise ValueError("ack_timeout_s must be > 0")

        self.transport = transport
        self.catalog = catalog if catalog is not None else CommandCatalog()
        self.ack_timeout_s = float(ack_timeout_s)

        if warmup:
            self.catalog.warmup()

        self._state = ConnectionState.DISCONNECTED
        self._sequences = SequenceTracker()
        self._pending = PendingAckTable()
        self._sensors = SensorStore()

        self._listeners: Dict[str, List[Callable[..., Any]]] = {}
        self._listeners_lock = threading.Lock()

        self._stats = LinkStats()
        self._stats_lock = threading.Lock()

        self._tasks: Set[asyncio.Task] = set()
        self._log_enabled = False

        self.transport.attach(self.on_frame, self._on_transport_lost)

    async def __aenter__(self) -> "DroneConnection":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def pending_acks(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self._state is not ConnectionState.DISCONNECTED:
            return

        self._state = ConnectionState.CONNECTING
        try:
            await self.transport.connect()
        except BaseException as exc:
            await self._teardown(exc)
            raise

        if self._state is not ConnectionState.CONNECTING:
            # disconnect() ran while the transport was still connecting
            await self.transport.disconnect()
            raise TransportIOError(f"connect over {type(self.transport).__name__} aborted by disconnect")

        self._sequences.reset()
        self._state = ConnectionState.CONNECTED
        logger.info("connected over %s", type(self.transport).__name__)
        self._emit(EVENT_CONNECTED)

    async def disconnect(self) -> None:
        await self._teardown(TransportIOError("connection closed"))

    async def _teardown(self, reason: BaseException) -> None:
        previous = self._state
        self._state = ConnectionState.DISCONNECTED
        failed = self._pending.fail_all(reason)
        if failed:
            logger.debug("failed %d pending acknowledgment(s): %s", failed, reason)

        try:
            await self.transport.disconnect()
        finally:
            if previous is not ConnectionState.DISCONNECTED:
                logger.info("disconnected: %s", reason)
                self._emit(EVENT_DISCONNECTED)

    def _on_transport_lost(self, exc: Optional[BaseException]) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            return

        self._state = ConnectionState.DISCONNECTED
        reason = exc if isinstance(exc, TransportIOError) else TransportIOError(f"link lost: {exc}")
        self._pending.fail_all(reason)
        logger.warning("transport lost: %s", exc)
        self._emit(EVENT_DISCONNECTED)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def new_command(
        self,
        project: str,
        class_name: str,
        command: str,
        initial_values: Optional[Mapping[str, Any]] = None,
    ) -> CommandInstance:
        return self.catalog.new_command(project, class_name, command, initial_values)

    async def send_command(self, command: CommandInstance) -> None:
        """Send ``command``; when its buffer class requires it, wait for the ack.

        A missing ack tears the whole link down: the caller gets
        :class:`CommandTimeout` and must ``connect()`` again.
        """
        if self._state is not ConnectionState.CONNECTED:
            raise NotConnected(f"Can't send {command.token}: not connected")

        frame = bytearray(command.to_bytes())
        buffer_id = command.buffer_id
        packet_id = self._sequences.next(buffer_id)
        frame[1] = packet_id

        waiter = None
        if command.requires_ack:
            waiter = self._pending.register(buffer_id, packet_id)

        self._trace("TX", buffer_id, bytes(frame), command)
        try:
            await self.transport.write(buffer_id, bytes(frame))
        except (TransportIOError, OSError) as exc:
            if waiter is not None:
                self._pending.discard(buffer_id, packet_id)
            with self._stats_lock:
                self._stats.tx_errors += 1
            error = exc if isinstance(exc, TransportIOError) else TransportIOError(str(exc))
            await self._teardown(error)
            if error is exc:
                raise
            raise error from exc

        with self._stats_lock:
            self._stats.tx_frames_ok += 1

        if waiter is None:
            return

        try:
            await asyncio.wait_for(waiter, self.ack_timeout_s)
        except asyncio.TimeoutError:
            self._pending.discard(buffer_id, packet_id)
            with self._stats_lock:
                self._stats.timeouts += 1
            error = CommandTimeout(command.token, buffer_id, packet_id, self.ack_timeout_s)
            logger.warning("%s, dropping link", error)
            await self._teardown(error)
            raise error from None
        except asyncio.CancelledError:
            self._pending.discard(buffer_id, packet_id)
            raise

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def on_frame(self, frame: Frame) -> None:
        self._trace("RX", frame.buffer_id, frame.payload)

        if frame.is_ack:
            self._handle_ack(frame)
            return

        if frame.buffer_id == BufferId.PING:
            self._reply_pong(frame)
            return

        self._handle_data(frame)

        if frame.requires_ack:
            self._send_ack(frame)

    def _handle_ack(self, frame: Frame) -> None:
        if not frame.payload:
            with self._stats_lock:
                self._stats.rx_decode_errors += 1
            logger.warning("empty ack frame on buffer %d", frame.buffer_id)
            return

        buffer_id = acked_buffer_of(frame.buffer_id)
        packet_id = frame.payload[0]
        if self._pending.resolve(buffer_id, packet_id):
            with self._stats_lock:
                self._stats.acks_matched += 1
            logger.debug("ACK buffer %d packet %d", buffer_id, packet_id)
        else:
            with self._stats_lock:
                self._stats.acks_unmatched += 1
            logger.debug("ACK buffer %d packet %d, nobody waiting", buffer_id, packet_id)

    def _handle_data(self, frame: Frame) -> None:
        payload = frame.payload
        if len(payload) >= 3 and payload[2] == 0:
            logger.debug("ignoring keepalive frame on buffer %d", frame.buffer_id)
            return

        try:
            command = self.catalog.decode_frame(payload)
        except DroneProtocolError as exc:
            with self._stats_lock:
                self._stats.rx_decode_errors += 1
            logger.warning("Unable to parse packet [%s]: %s", payload.hex(" "), exc)
            return

        token = self._sensors.update(command)
        with self._stats_lock:
            self._stats.rx_frames_ok += 1
        logger.debug("RECV %s", command)

        self._emit_sensor(SENSOR_EVENT_PREFIX + token, command)
        self._emit_sensor(EVENT_ANY_SENSOR, command)

    def _send_ack(self, frame: Frame) -> None:
        ack_buffer = ack_buffer_for(frame.buffer_id)
        data = encode_ack(self._sequences.next(ack_buffer), frame.sequence)
        self._spawn(self._write_control(ack_buffer, data, count_ack=True))

    def _reply_pong(self, frame: Frame) -> None:
        data = bytes((FrameType.DATA, self._sequences.next(BufferId.PONG))) + frame.payload
        self._spawn(self._write_control(BufferId.PONG, data))

    async def _write_control(self, buffer_id: int, data: bytes, count_ack: bool = False) -> None:
        if self._state is not ConnectionState.CONNECTED:
            return
        self._trace("TX", buffer_id, data)
        try:
            await self.transport.write(buffer_id, data)
        except (TransportIOError, OSError) as exc:
            with self._stats_lock:
                self._stats.tx_errors += 1
            logger.warning("control write on buffer %d failed: %s", buffer_id, exc)
            await self._teardown(exc if isinstance(exc, TransportIOError) else TransportIOError(str(exc)))
            return
        if count_ack:
            with self._stats_lock:
                self._stats.acks_sent += 1

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until every scheduled ack/pong write has completed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Sensors and events
    # ------------------------------------------------------------------

    def get_sensor(self, project: str, class_name: str, command: str) -> Optional[CommandInstance]:
        return self._sensors.get(make_token(project, class_name, command))

    def get_sensor_from_token(self, token: str) -> Optional[CommandInstance]:
        return self._sensors.get(token)

    def sensors(self) -> Dict[str, CommandInstance]:
        return self._sensors.snapshot()

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        with self._listeners_lock:
            self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable[..., Any]) -> None:
        with self._listeners_lock:
            callbacks = self._listeners.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def _callbacks(self, event: str) -> List[Callable[..., Any]]:
        with self._listeners_lock:
            return list(self._listeners.get(event, ()))

    def _emit(self, event: str, *args: Any) -> None:
        for callback in self._callbacks(event):
            try:
                callback(*args)
            except Exception:
                logger.exception("listener for '%s' failed", event)

    def _emit_sensor(self, event: str, command: CommandInstance) -> None:
        for callback in self._callbacks(event):
            try:
                callback(command.clone())
            except Exception:
                logger.exception("listener for '%s' failed", event)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def set_log_enabled(self, enabled: bool) -> None:
        self._log_enabled = bool(enabled)

    def get_stats(self) -> LinkStats:
        with self._stats_lock:
            return LinkStats(**self._stats.as_dict())

    def _trace(self, direction: str, buffer_id: int, data: bytes, command: Optional[CommandInstance] = None) -> None:
        level = logging.INFO if self._log_enabled else logging.DEBUG
        if not logger.isEnabledFor(level):
            return
        suffix = f" {command}" if command is not None else ""
        logger.log(level, "[%s] buffer=%d %s%s", direction, buffer_id, data.hex(" "), suffix)
