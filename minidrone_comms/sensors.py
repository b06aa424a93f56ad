from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from .command import CommandInstance


def make_token(project: str, class_name: str, command: str) -> str:
    return f"{project}/{class_name}/{command}"


@dataclass(slots=True)
class SensorReading:
    command: CommandInstance
    rx_monotonic_s: float

    def as_dict(self) -> dict:
        return {
            "token": self.command.token,
            "values": self.command.as_dict(),
            "text": str(self.command),
            "rx_monotonic_s": self.rx_monotonic_s,
        }


class SensorStore:
    """Last observed value per command token. Readers only ever get clones."""

    def __init__(self) -> None:
        self._readings: Dict[str, SensorReading] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._readings)

    def update(self, command: CommandInstance, rx_monotonic_s: Optional[float] = None) -> str:
        reading = SensorReading(
            command=command.clone(),
            rx_monotonic_s=time.monotonic() if rx_monotonic_s is None else rx_monotonic_s,
        )
        with self._lock:
            self._readings[command.token] = reading
        return command.token

    def get(self, token: str) -> Optional[CommandInstance]:
        with self._lock:
            reading = self._readings.get(token)
        return None if reading is None else reading.command.clone()

    def reading(self, token: str) -> Optional[SensorReading]:
        with self._lock:
            reading = self._readings.get(token)
        if reading is None:
            return None
        return SensorReading(command=reading.command.clone(), rx_monotonic_s=reading.rx_monotonic_s)

    def tokens(self) -> List[str]:
        with self._lock:
            return sorted(self._readings)

    def snapshot(self) -> Dict[str, CommandInstance]:
        with self._lock:
            readings = dict(self._readings)
        return {token: reading.command.clone() for token, reading in readings.items()}

    def clear(self) -> None:
        with self._lock:
            self._readings.clear()
