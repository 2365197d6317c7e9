"""Local command execution with line-by-line output streaming."""

from __future__ import annotations

import os
import subprocess
import threading
from typing import Dict, IO, List, Optional

from ..utils.logging import get_logger
from .errors import DeployAborted, ExecError, UncaughtError
from .events import EventStream
from .steps import current_step

logger = get_logger(__name__)


class _Capture:
    """Combined output of one command, appended to by both readers.

    ``error`` holds the first exception that stopped a reader.
    """

    def __init__(self) -> None:
        self._lines: List[str] = []
        self._lock = threading.Lock()
        self.error: Optional[BaseException] = None

    def fail(self, exc: BaseException) -> None:
        with self._lock:
            if self.error is None:
                self.error = exc

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def text(self) -> str:
        with self._lock:
            return "".join(f"{line}\n" for line in self._lines)


class CommandRunner:
    """
    Runs shell commands and re-emits their output on the event stream.

    Each call streams stdout and stderr through two reader threads bound to
    the step that was active when the command was launched. A non-zero exit
    raises :class:`ExecError`; reporting it and ending the run is left to the
    step executor.
    """

    def __init__(
        self,
        stream: EventStream,
        *,
        aborted: Optional[threading.Event] = None,
        working_dir: Optional[str] = None,
        executable: Optional[str] = "/bin/bash",
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        self.stream = stream
        self.aborted = aborted
        self.working_dir = working_dir
        self.executable = executable
        self.env = env

    def run(self, command: str, display: Optional[str] = None, log: bool = True) -> str:
        """
        Execute ``command`` and return its captured output.

        Args:
            command: The command line handed to the shell
            display: Redacted form shown on the stream instead of ``command``
            log: Emit each output line as a ``stdout``/``stderr`` event

        Returns:
            Every output line, newline-terminated, in arrival order
        """
        if self.aborted is not None and self.aborted.is_set():
            raise DeployAborted()

        shown = display or command
        self.stream.event("exec", {"command": shown})
        logger.debug("exec: %s", shown)

        process = subprocess.Popen(
            command,
            shell=True,
            executable=self.executable,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            bufsize=1,
            cwd=self.working_dir,
            env=self._get_env(),
        )

        step = current_step()
        capture = _Capture()
        readers = [
            threading.Thread(
                target=self._pump,
                args=(process.stdout, "stdout", step, log, capture),
                name=f"{step}-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=self._pump,
                args=(process.stderr, "stderr", step, log, capture),
                name=f"{step}-stderr",
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()
        # output must be complete before the exit status decides anything
        for reader in readers:
            reader.join()

        exit_code = process.wait()
        if capture.error is not None:
            # a reader failed, so the capture is incomplete
            if isinstance(capture.error, DeployAborted):
                raise capture.error
            raise UncaughtError.from_exception(capture.error) from capture.error
        if exit_code != 0:
            logger.debug("exit %s: %s", exit_code, shown)
            raise ExecError(shown, exit_code)
        return capture.text()

    def _pump(
        self,
        pipe: IO[str],
        channel: str,
        step: str,
        log: bool,
        capture: _Capture,
    ) -> None:
        with pipe:
            try:
                for line in pipe:
                    line = line.rstrip("\r\n")
                    if log:
                        self.stream.emit(channel, line, step=step)
                    capture.append(line)
            except Exception as exc:
                capture.fail(exc)
                # keep draining so the command never blocks on a full pipe
                for _ in pipe:
                    pass

    def _get_env(self) -> Optional[Dict[str, str]]:
        if self.env is None:
            return None
        env = os.environ.copy()
        env.update(self.env)
        return env
