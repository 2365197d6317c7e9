"""Error taxonomy for a deployment run.

Every error is terminal. Each carries a ``kind`` tag and structured details
so it can be reported as a single ``event:error`` record.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DeployerError(RuntimeError):
    """Base class for failures reported on the event stream."""

    kind = "uncaught"

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.kind, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(DeployerError):
    """Required configuration is missing or inconsistent."""

    kind = "validation"


class InvalidGitRepoUrlError(ValidationError):
    kind = "invalid_git_repo_url"


class ExecError(DeployerError):
    """Raised when a command exits with a non-zero status."""

    kind = "exec"

    def __init__(self, command: str, exit_code: int) -> None:
        self.command = command
        self.exit_code = exit_code
        super().__init__(
            f"command exited with status {exit_code}: {command}",
            exit_code=exit_code,
            command=command,
        )


class ParseError(DeployerError):
    """A structured artifact (manifest, session, git head) failed to decode."""

    kind = "json"

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        self.raw = raw
        super().__init__(message, json=raw)


class UnsupportedVersionError(DeployerError):
    kind = "unsupported_version"


class UncaughtError(DeployerError):
    kind = "uncaught"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "UncaughtError":
        message = str(exc) or exc.__class__.__name__
        return cls(message, exception=exc.__class__.__name__)


class DeployAborted(Exception):
    """Carries an already-reported failure up to the fatal boundary.

    It is never reported again; ``error`` is ``None`` when the abort was
    triggered by a failure on another path of execution.
    """

    exit_code = 1

    def __init__(self, error: Optional[DeployerError] = None) -> None:
        self.error = error
        super().__init__(error.message if error is not None else "deployment aborted")
