"""Step execution, the fatal-error boundary and the fork/join side task."""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from ..utils.logging import get_logger
from .errors import DeployAborted, DeployerError, UncaughtError
from .events import EventStream
from .steps import enter_step, restore_step, spawn_in_context

logger = get_logger(__name__)


class SideTask:
    """Handle for the one piece of work that runs beside the main path.

    The body runs on a daemon thread that inherits the spawning path's step
    context. Its outcome is only observed through :meth:`join`, which
    re-raises whatever stopped the body.
    """

    def __init__(self, executor: "StepExecutor", body: Callable[..., Any], *args: Any, name: str) -> None:
        self._executor = executor
        self.name = name
        self._result: Any = None
        self._error: Optional[BaseException] = None
        self._thread = spawn_in_context(self._run, body, *args, name=name)

    def _run(self, body: Callable[..., Any], *args: Any) -> None:
        try:
            self._result = body(*args)
        except DeployAborted as exc:
            self._error = exc
        except DeployerError as exc:
            self._error = self._executor.fail(exc)
        except Exception as exc:
            logger.exception("side task %s failed", self.name)
            self._error = self._executor.fail(UncaughtError.from_exception(exc))

    def join(self) -> Any:
        self._thread.join()
        if self._error is not None:
            raise self._error
        return self._result


class StepExecutor:
    """
    Runs step bodies under their step binding and owns the fatal boundary.

    A failure inside a step is reported once as ``event:error`` attributed to
    that step, marks the run aborted and travels up as :class:`DeployAborted`
    to :meth:`run`, which turns it into the process exit code.
    """

    def __init__(self, stream: EventStream, aborted: Optional[threading.Event] = None) -> None:
        self.stream = stream
        self.aborted = aborted if aborted is not None else threading.Event()

    def in_step(self, step: str, body: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run ``body`` as ``step`` and return its result."""
        self._check_aborted()
        token = enter_step(step)
        try:
            self.stream.event("start")
            try:
                result = body(*args, **kwargs)
            except DeployAborted:
                # already reported; the closed stream ends every open activation
                raise
            except DeployerError as exc:
                raise self.fail(exc) from exc
            except Exception as exc:
                logger.exception("step %s failed", step)
                raise self.fail(UncaughtError.from_exception(exc)) from exc
            self.stream.event("end")
            return result
        finally:
            restore_step(token)

    def spawn(self, body: Callable[..., Any], *args: Any, name: str = "side-path") -> SideTask:
        """Fork ``body`` beside the main path; call ``join()`` where its results are needed."""
        self._check_aborted()
        return SideTask(self, body, *args, name=name)

    def fail(self, error: DeployerError) -> DeployAborted:
        """Report ``error`` on the stream, abort the run and return the signal to raise.

        Only the first failure of a run is written; later ones find the stream
        already closed.
        """
        try:
            self.stream.terminate(error.to_payload())
        finally:
            self.aborted.set()
        return DeployAborted(error)

    def run(self, body: Callable[..., Any], *args: Any) -> int:
        """Fatal boundary: run the whole pipeline and return the exit code."""
        try:
            body(*args)
        except DeployAborted as exc:
            return exc.exit_code
        except DeployerError as exc:
            return self.fail(exc).exit_code
        except Exception as exc:
            logger.exception("deployment failed")
            return self.fail(UncaughtError.from_exception(exc)).exit_code
        return 0

    def _check_aborted(self) -> None:
        if self.aborted.is_set():
            raise DeployAborted()
