from __future__ import annotations

import argparse
import asyncio
import json
import logging
import threading
import time
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .bridge import DEFAULT_WS_HOST, SensorBridge
from .command import CommandInstance
from .connection import DEFAULT_ACK_TIMEOUT_S, EVENT_ANY_SENSOR, EVENT_DISCONNECTED, DroneConnection
from .errors import CommandTimeout, DroneProtocolError
from .wifi import DEFAULT_CONTROLLER_NAME, DEFAULT_DISCOVERY_PORT, WifiTransport

logger = logging.getLogger(__name__)

DEFAULT_HOST = "192.168.99.3"

HELP_TEXT = """Commands:
  help
  status
  send <project> <class> <command> [name=value ...]
  sensor <project> <class> <command>
  sensors
  watch on|off
  log on|off
  quit
"""


class SessionLogger:
    """Appends one JSON line per console action: the command token, how the
    drone answered it, and the sensor state right after."""

    def __init__(self, path: Optional[str]) -> None:
        self._path = Path(path).expanduser() if path else None
        self._file = None
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self._path.open("a", encoding="utf-8")

    def record(
        self,
        line: str,
        outcome: str,
        command: Optional[CommandInstance] = None,
        ack_wait_ms: Optional[float] = None,
        sensors: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        if self._file is None:
            return
        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "line": line,
            "outcome": outcome,
        }
        if command is not None:
            entry["token"] = command.token
            entry["buffer_id"] = command.buffer_id
            entry["requires_ack"] = command.requires_ack
            entry["args"] = command.as_dict()
        if ack_wait_ms is not None:
            entry["ack_wait_ms"] = round(ack_wait_ms, 1)
        if sensors is not None:
            entry["sensors"] = sensors
        if error is not None:
            entry["error"] = error
        self._file.write(json.dumps(entry, ensure_ascii=True) + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


class LoopThread:
    """Runs an asyncio loop in a daemon thread for the blocking REPL."""

    def __init__(self, name: str = "minidrone-loop") -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._main, daemon=True, name=name)

    def _main(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> None:
        self._thread.start()

    def run(self, coro, timeout: Optional[float] = None) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return future.result(timeout)
        except FutureTimeoutError:
            future.cancel()
            raise

    def stop(self) -> None:
        if self._thread.is_alive():
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join(timeout=1.0)
        if not self.loop.is_running():
            self.loop.close()


_TOGGLES = {"on": True, "off": False}


def parse_toggle(raw: str, usage: str) -> bool:
    value = _TOGGLES.get(raw.lower())
    if value is None:
        raise ValueError(f"usage: {usage}")
    return value


def parse_value(raw: str) -> Any:
    """Best-effort literal: int, then float, then the raw (unquoted) string."""
    try:
        return int(raw, 0)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return raw.strip('"')


def parse_assignments(parts: List[str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for part in parts:
        name, sep, raw = part.partition("=")
        if not sep or not name:
            raise ValueError(f"expected name=value, got '{part}'")
        values[name] = parse_value(raw)
    return values


def _snapshot(connection: DroneConnection) -> Dict[str, Any]:
    return {token: cmd.as_dict() for token, cmd in connection.sensors().items()}


def _format_stats(connection: DroneConnection) -> str:
    stats = connection.get_stats()
    return (
        "stats: "
        f"tx_ok={stats.tx_frames_ok} tx_err={stats.tx_errors} "
        f"rx_ok={stats.rx_frames_ok} rx_bad={stats.rx_decode_errors} "
        f"ack_ok={stats.acks_matched} ack_stray={stats.acks_unmatched} "
        f"ack_sent={stats.acks_sent} timeouts={stats.timeouts}"
    )


def run_cli(args: argparse.Namespace) -> int:
    transport = WifiTransport(
        host=args.host,
        port=args.port,
        controller_name=args.controller_name,
    )
    connection = DroneConnection(transport, ack_timeout_s=args.ack_timeout)
    session = SessionLogger(args.log_file)
    runner = LoopThread()
    bridge: Optional[SensorBridge] = None

    watch_state = {"watch": False}

    def on_sensor(command: CommandInstance) -> None:
        if watch_state["watch"]:
            print(f"< {command}")

    def on_disconnected() -> None:
        print("link lost; use 'quit' and reconnect")

    connection.on(EVENT_ANY_SENSOR, on_sensor)
    connection.on(EVENT_DISCONNECTED, on_disconnected)

    # generous enough for the handshake plus the settle time
    connect_timeout = transport.handshake_timeout_s * 3

    try:
        runner.start()
        runner.run(connection.connect(), timeout=connect_timeout)
        if args.ws_port:
            bridge = SensorBridge(connection, host=args.ws_host, port=args.ws_port)
            runner.run(bridge.start(), timeout=5.0)
        print(f"Connected to {args.host}:{args.port}. Type 'help' for commands.")

        while True:
            try:
                raw = input("drone> ").strip()
            except EOFError:
                raw = "quit"

            if not raw:
                continue

            parts = raw.split()
            cmd = parts[0].lower()
            command: Optional[CommandInstance] = None

            try:
                if cmd == "help":
                    print(HELP_TEXT, end="")

                elif cmd == "status":
                    print(f"state: {connection.state.value}")
                    print(f"pending acks: {connection.pending_acks}")
                    print(_format_stats(connection))

                elif cmd == "send":
                    if len(parts) < 4:
                        raise ValueError("usage: send <project> <class> <command> [name=value ...]")
                    command = connection.new_command(parts[1], parts[2], parts[3], parse_assignments(parts[4:]))
                    started = time.monotonic()
                    runner.run(connection.send_command(command), timeout=connection.ack_timeout_s + 1.0)
                    if command.requires_ack:
                        ack_wait_ms = (time.monotonic() - started) * 1000.0
                        print(f"acked {command} ({ack_wait_ms:.0f} ms)")
                        session.record(raw, "acked", command, ack_wait_ms, _snapshot(connection))
                    else:
                        print(f"sent {command}")
                        session.record(raw, "sent", command, sensors=_snapshot(connection))

                elif cmd == "sensor":
                    if len(parts) != 4:
                        raise ValueError("usage: sensor <project> <class> <command>")
                    reading = connection.get_sensor(parts[1], parts[2], parts[3])
                    print(reading if reading is not None else "no value yet")
                    session.record(raw, "read", reading)

                elif cmd == "sensors":
                    for token, reading in sorted(connection.sensors().items()):
                        print(f"{token}: {reading}")

                elif cmd == "watch":
                    watch_state["watch"] = parse_toggle(parts[1] if len(parts) == 2 else "", "watch on|off")
                    print(f"watch={'on' if watch_state['watch'] else 'off'}")

                elif cmd == "log":
                    enabled = parse_toggle(parts[1] if len(parts) == 2 else "", "log on|off")
                    connection.set_log_enabled(enabled)
                    print(f"log={'on' if enabled else 'off'}")

                elif cmd == "quit":
                    print("bye")
                    session.record(raw, "quit", sensors=_snapshot(connection))
                    break

                else:
                    print("unknown command, try: help")

            except CommandTimeout as exc:
                print(f"error: {exc}")
                session.record(raw, "timeout", command, error=str(exc))

            except (ValueError, DroneProtocolError, FutureTimeoutError) as exc:
                print(f"error: {exc}")
                session.record(raw, "error", command, error=str(exc))

    except KeyboardInterrupt:
        print("\ninterrupted")

    except (DroneProtocolError, FutureTimeoutError) as exc:
        logger.error("connect failed: %s", exc)
        print(f"error: {exc}")
        return 1

    finally:
        if bridge is not None:
            runner.run(bridge.stop(), timeout=2.0)
        if runner.loop.is_running():
            runner.run(connection.disconnect(), timeout=2.0)
        runner.stop()
        session.close()

    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Console client for Parrot minidrones over WiFi")
    parser.add_argument("--host", default=DEFAULT_HOST, help=f"Drone address (default: {DEFAULT_HOST})")
    parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_DISCOVERY_PORT,
        help=f"Handshake TCP port (default: {DEFAULT_DISCOVERY_PORT})",
    )
    parser.add_argument(
        "--controller-name",
        default=DEFAULT_CONTROLLER_NAME,
        help="Name announced in the handshake",
    )
    parser.add_argument(
        "--ack-timeout",
        type=float,
        default=DEFAULT_ACK_TIMEOUT_S,
        help=f"Seconds to wait for an acknowledgment (default: {DEFAULT_ACK_TIMEOUT_S})",
    )
    parser.add_argument("--ws-host", default=DEFAULT_WS_HOST, help="Bind address of the websocket bridge")
    parser.add_argument("--ws-port", type=int, default=None, help="Enable the websocket bridge on this port")
    parser.add_argument("--log-file", default=None, help="Optional JSONL session log")
    parser.add_argument("--log-level", default="WARNING", help="Python logging level (default: WARNING)")
    return parser
