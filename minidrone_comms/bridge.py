from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

import websockets

from .command import CommandInstance
from .connection import EVENT_ANY_SENSOR, DroneConnection
from .errors import DroneProtocolError

logger = logging.getLogger(__name__)

DEFAULT_WS_HOST = "127.0.0.1"
DEFAULT_WS_PORT = 8765


def sensor_message(command: CommandInstance) -> Dict[str, Any]:
    return {
        "event": "sensor",
        "token": command.token,
        "values": command.as_dict(),
        "text": str(command),
    }


class SensorBridge:
    """Websocket front end for a :class:`DroneConnection`.

    Every client receives each decoded sensor frame as JSON and may send
    command requests ``{"project", "class", "command", "args"}``, or
    ``{"sensors": true}`` for the latest snapshot. Must run on the
    connection's event loop.
    """

    def __init__(
        self,
        connection: DroneConnection,
        host: str = DEFAULT_WS_HOST,
        port: int = DEFAULT_WS_PORT,
    ) -> None:
        self.connection = connection
        self.host = host
        self.port = int(port)

        self._server = None
        self._clients: Set[Any] = set()
        self._sends: Set[asyncio.Future] = set()

    @property
    def clients(self) -> int:
        return len(self._clients)

    @property
    def bound_port(self) -> Optional[int]:
        if self._server is None or not self._server.sockets:
            return None
        return list(self._server.sockets)[0].getsockname()[1]

    async def start(self) -> None:
        if self._server is not None:
            return
        self.connection.on(EVENT_ANY_SENSOR, self._on_sensor)
        self._server = await websockets.serve(self._handler, self.host, self.port)
        logger.info("WebSocket bridge listening on ws://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        self.connection.off(EVENT_ANY_SENSOR, self._on_sensor)
        if self._sends:
            await asyncio.gather(*list(self._sends), return_exceptions=True)
        server, self._server = self._server, None
        if server is not None:
            server.close()
            await server.wait_closed()
            logger.info("WebSocket bridge stopped")

    async def _handler(self, websocket) -> None:
        self._clients.add(websocket)
        try:
            hello = {"ok": True, "message": "minidrone_comms ready", "connected": self.connection.connected}
            await websocket.send(json.dumps(hello, ensure_ascii=True))
            async for raw in websocket:
                response = await self.handle_raw(raw)
                await websocket.send(json.dumps(response, ensure_ascii=True))
        except websockets.ConnectionClosed:
            logger.debug("websocket client went away")
        finally:
            self._clients.discard(websocket)

    async def handle_raw(self, raw: Any) -> Dict[str, Any]:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            return {"ok": False, "error": f"invalid_json: {exc}"}

        if not isinstance(data, dict):
            return {"ok": False, "error": "payload must be object"}

        if data.get("sensors") is True:
            snapshot = {token: sensor_message(cmd) for token, cmd in self.connection.sensors().items()}
            return {"ok": True, "sensors": snapshot}

        try:
            project = self._required_str(data, "project")
            class_name = self._required_str(data, "class")
            command_name = self._required_str(data, "command")
            args = data.get("args") or {}
            if not isinstance(args, dict):
                raise ValueError("'args' must be object")

            command = self.connection.new_command(project, class_name, command_name, args)
            await self.connection.send_command(command)
        except (ValueError, DroneProtocolError) as exc:
            return {"ok": False, "error": str(exc)}

        return {"ok": True, "command": str(command)}

    @staticmethod
    def _required_str(data: Dict[str, Any], key: str) -> str:
        value = data.get(key)
        if not isinstance(value, str) or not value:
            raise ValueError(f"'{key}' must be a non-empty string")
        return value

    def _on_sensor(self, command: CommandInstance) -> None:
        if not self._clients:
            return
        message = json.dumps(sensor_message(command), ensure_ascii=True)
        for client in list(self._clients):
            task = asyncio.ensure_future(self._send(client, message))
            self._sends.add(task)
            task.add_done_callback(self._send_done)

    def _send_done(self, task: asyncio.Future) -> None:
        self._sends.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("websocket broadcast failed: %s", task.exception())

    async def _send(self, client, message: str) -> None:
        try:
            await client.send(message)
        except websockets.ConnectionClosed:
            self._clients.discard(client)
