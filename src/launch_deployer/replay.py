"""Rebuilds the latest state of a run from its event stream."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .engine import ROOT_STEP, Event


@dataclass
class RunState:
    """What an observer knows after reading a stream up to ``last_id``."""

    artifacts: Dict[str, Any] = field(default_factory=dict)
    steps: Dict[str, str] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    last_id: int = 0
    started: bool = False
    finished: bool = False

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    @property
    def planned_steps(self) -> List[Dict[str, Any]]:
        meta = self.artifacts.get("meta") or {}
        return list(meta.get("steps", []))

    def apply(self, event: Event) -> None:
        self.last_id = max(self.last_id, event.id)
        kind, _, name = event.type.partition(":")
        if kind == "artifact":
            # same-named artifacts overwrite
            self.artifacts[name] = event.payload
        elif kind == "event":
            self._apply_lifecycle(event, name)

    def _apply_lifecycle(self, event: Event, name: str) -> None:
        if name == "error":
            self.errors.append({"step": event.step, **(event.payload or {})})
            # steps still open when the run ends never finish
            for step, status in self.steps.items():
                if status == "running":
                    self.steps[step] = "aborted"
            if event.step != ROOT_STEP:
                self.steps[event.step] = "failed"
        elif event.step == ROOT_STEP:
            if name == "start":
                self.started = True
            elif name == "end":
                self.finished = True
        elif name == "start":
            self.steps[event.step] = "running"
        elif name == "end":
            self.steps[event.step] = "done"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_id": self.last_id,
            "started": self.started,
            "finished": self.finished,
            "failed": self.failed,
            "planned_steps": self.planned_steps,
            "steps": dict(self.steps),
            "errors": list(self.errors),
            "artifacts": dict(self.artifacts),
        }


def parse_line(line: str, prefix: str = "") -> Optional[Event]:
    """Parse one stream line; anything that is not an event record yields ``None``."""
    line = line.strip()
    if prefix:
        if not line.startswith(prefix):
            return None
        line = line[len(prefix):]
    try:
        data = json.loads(line)
        return Event.from_dict(data)
    except (ValueError, KeyError, TypeError):
        return None


def replay(lines: Iterable[str], prefix: str = "") -> RunState:
    state = RunState()
    for line in lines:
        event = parse_line(line, prefix)
        if event is not None:
            state.apply(event)
    return state
