"""Globally ordered event stream written as newline-delimited JSON."""

from __future__ import annotations

import json
import logging
import sys
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TextIO

from ..utils.logging import get_logger
from .errors import DeployAborted
from .steps import current_step

logger = get_logger(__name__)

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class Event:
    """One observable occurrence. ``payload`` is omitted when ``None``."""

    id: int
    step: str
    type: str
    time: float
    payload: Any = None

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "id": self.id,
            "step": self.step,
            "type": self.type,
            "time": self.time,
        }
        if self.payload is not None:
            record["payload"] = self.payload
        return record

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        return cls(
            id=int(data["id"]),
            step=data["step"],
            type=data["type"],
            time=float(data["time"]),
            payload=data.get("payload"),
        )


class EventStream:
    """Sequencer and sink for run events.

    Id allocation, clock sampling, serialization and the write of one record
    share a single lock, so ids follow true emission order and records never
    interleave. Each record is flushed as soon as it is written.

    The first fatal error closes the stream: it is written by
    :meth:`terminate` inside the same critical section that closes it, and
    every later emission raises :class:`DeployAborted` instead of writing.
    """

    def __init__(
        self,
        output: Optional[TextIO] = None,
        prefix: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.output = output if output is not None else sys.stdout
        self.prefix = prefix
        self._clock = clock
        self._started = clock()
        self._last_time = 0.0
        self._next_id = 1
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, type_: str, payload: Any = None, *, step: Optional[str] = None) -> Event:
        if step is None:
            step = current_step()
        with self._lock:
            if self._closed:
                raise DeployAborted()
            return self._write(type_, payload, step)

    def terminate(self, payload: Any, *, step: Optional[str] = None) -> Optional[Event]:
        """Write the run's one ``event:error`` and close the stream.

        Returns ``None`` when an earlier failure already closed it.
        """
        if step is None:
            step = current_step()
        with self._lock:
            if self._closed:
                return None
            self._closed = True
            return self._write("event:error", payload, step)

    def _write(self, type_: str, payload: Any, step: str) -> Event:
        elapsed = max(self._clock() - self._started, self._last_time)
        self._last_time = elapsed
        event = Event(
            id=self._next_id,
            step=step,
            type=type_,
            time=elapsed,
            payload=payload,
        )
        self._next_id += 1
        line = json.dumps(event.to_dict(), ensure_ascii=False, default=str)
        self.output.write(f"{self.prefix}{line}\n")
        self.output.flush()
        return event

    def event(self, name: str, payload: Any = None) -> Event:
        """Lifecycle signal: ``start``, ``end``, ``error`` or ``exec``."""
        return self.emit(f"event:{name}", payload)

    def log(self, level: str, message: str) -> Event:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)
        return self.emit(f"log:{level}", {"message": message})

    def info(self, message: str) -> Event:
        return self.log("info", message)

    def debug(self, message: str) -> Event:
        return self.log("debug", message)

    def error(self, message: str) -> Event:
        return self.log("error", message)

    def artifact(self, name: str, payload: Any) -> Event:
        """Publish ``payload`` under ``name``; later emissions supersede it."""
        return self.emit(f"artifact:{name}", payload)
