"""Step-scoped execution and event-streaming engine.

- EventStream: globally ordered, newline-delimited JSON events
- current_step/enter_step/restore_step: per-path step binding
- CommandRunner: runs commands and streams their output line by line
- StepExecutor: step wrapper, fatal boundary and fork/join side task
"""

from .errors import (
    DeployAborted,
    DeployerError,
    ExecError,
    InvalidGitRepoUrlError,
    ParseError,
    UncaughtError,
    UnsupportedVersionError,
    ValidationError,
)
from .events import Event, EventStream
from .executor import SideTask, StepExecutor
from .runner import CommandRunner
from .steps import ROOT_STEP, current_step, enter_step, previous_step, restore_step, spawn_in_context

__all__ = [
    "DeployAborted",
    "DeployerError",
    "ExecError",
    "InvalidGitRepoUrlError",
    "ParseError",
    "UncaughtError",
    "UnsupportedVersionError",
    "ValidationError",
    "Event",
    "EventStream",
    "SideTask",
    "StepExecutor",
    "CommandRunner",
    "ROOT_STEP",
    "current_step",
    "enter_step",
    "previous_step",
    "restore_step",
    "spawn_in_context",
]
