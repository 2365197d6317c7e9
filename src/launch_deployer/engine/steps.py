"""Current-step tracking for every path of execution.

The active step lives in a ``ContextVar``. Threads do not inherit it on
their own, so anything spawned mid-step must capture it explicitly: output
readers take the captured step as an argument, side-path tasks run inside a
context copied at spawn time (see :func:`spawn_in_context`).
"""

from __future__ import annotations

import contextvars
import threading
from typing import Any, Callable, Optional

ROOT_STEP = "root"

_current_step: contextvars.ContextVar[str] = contextvars.ContextVar(
    "launch_deployer_step", default=ROOT_STEP
)

StepToken = contextvars.Token


def current_step() -> str:
    """Return the step bound to the calling path, or ``ROOT_STEP``."""
    return _current_step.get()


def enter_step(step: str) -> StepToken:
    """Bind ``step`` and return the token that restores the previous one."""
    return _current_step.set(step)


def restore_step(token: StepToken) -> None:
    _current_step.reset(token)


def previous_step(token: StepToken) -> str:
    """Step that was active before the ``enter_step`` call producing ``token``."""
    old = token.old_value
    return ROOT_STEP if old is contextvars.Token.MISSING else old


def spawn_in_context(
    target: Callable[..., Any],
    *args: Any,
    name: Optional[str] = None,
) -> threading.Thread:
    """Start ``target`` on a daemon thread bound to the caller's current context.

    The context is copied here, at spawn time, so later step changes in the
    spawning path never leak into the worker.
    """
    context = contextvars.copy_context()
    thread = threading.Thread(
        target=context.run,
        args=(target, *args),
        name=name,
        daemon=True,
    )
    thread.start()
    return thread
