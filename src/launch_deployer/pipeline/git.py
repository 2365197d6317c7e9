"""Git-based source sync and branch publishing."""

from __future__ import annotations

import json
import shlex
from typing import Any, Dict, Optional
from urllib.parse import SplitResult, urlunsplit

from ..config import redact
from ..engine import CommandRunner, EventStream, ParseError
from .catalog import Artifact

FLYIO_BRANCH_NAME = "flyio-new-files"

_HEAD_FORMAT = (
    '{"commit": "%H", "author": "%an", "author_email": "%ae", '
    '"date": "%ad", "message": "%f"}'
)


class GitRepository:
    """Wraps ``git`` CLI commands run through the step-aware runner."""

    def __init__(self, runner: CommandRunner, stream: EventStream, git_binary: str = "git") -> None:
        self.runner = runner
        self.stream = stream
        self.git_binary = git_binary

    def pull(self, repository: str, url: SplitResult, ref: Optional[str] = None) -> Dict[str, Any]:
        """Fetch ``ref`` (or the remote's default branch) into the working directory.

        The real URL may embed credentials; only its redacted form is ever
        displayed.
        """
        self.stream.artifact(Artifact.GIT_INFO, {"repository": repository, "reference": ref})

        self._run("init", log=False)
        self._run(
            f"remote add origin {shlex.quote(urlunsplit(url))}",
            display=f"remote add origin {shlex.quote(redact(url))}",
        )

        if not ref:
            ref = self.default_branch()

        self._run(f"-c protocol.version=2 fetch origin {shlex.quote(ref)}")
        self._run("reset --hard --recurse-submodules FETCH_HEAD")

        head = self.head()
        self.stream.artifact(Artifact.GIT_HEAD, head)
        return head

    def default_branch(self) -> str:
        output = self.runner.run(
            f"{self.git_binary} remote show origin | sed -n '/HEAD branch/s/.*: //p'",
            log=False,
        )
        return output.strip()

    def head(self) -> Dict[str, Any]:
        raw = self._run(f"log -1 --pretty=format:{shlex.quote(_HEAD_FORMAT)}", log=False)
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ParseError(f"invalid git head: {exc}", raw) from exc

    def staged_diff(self) -> str:
        self._run("add -A", log=False)
        return self._run("diff --cached", log=False)

    def create_and_push_branch(self, branch: str = FLYIO_BRANCH_NAME) -> None:
        quoted = shlex.quote(branch)
        self._run(f"checkout -b {quoted}")
        self._run('config user.name "Fly.io"')
        self._run('config user.email "noreply@fly.io"')
        self._run("add .")
        self.runner.run(
            f'{self.git_binary} commit -m "New files from Fly.io Launch" || echo "No changes to commit"'
        )
        self._run(f"push -f origin {quoted}")

    def _run(self, args: str, display: Optional[str] = None, log: bool = True) -> str:
        command = f"{self.git_binary} {args}"
        shown = f"{self.git_binary} {display}" if display is not None else None
        return self.runner.run(command, display=shown, log=log)
