"""Configuration loading utilities for launch-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import SplitResult, quote, urlsplit, urlunsplit

from dotenv import load_dotenv

from .engine.errors import InvalidGitRepoUrlError, ValidationError


def get_env(environ: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    """Read ``name``; blank values count as unset."""
    value = environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass
class RuntimeDefaults:
    """Runtime versions used when the plan does not pin one."""

    ruby: str = "3.1.6"
    elixir: str = "1.16"
    erlang: str = "26.2.5.2"
    node: str = "20.16.0"
    bun: str = "1.1.24"
    php: str = "8.1"
    python: str = "3.12"

    def for_language(self, language: Optional[str]) -> Optional[str]:
        if not language:
            return None
        return self.__dict__.get(language)

    def languages(self) -> list:
        return list(self.__dict__.keys())


@dataclass
class DeployerConfig:
    """Everything a run needs, resolved once at startup."""

    # source
    git_repo: Optional[str] = None
    git_ref: Optional[str] = None
    git_url_user: Optional[str] = None
    git_url_password: Optional[str] = None
    source_cwd: Optional[str] = None

    # app identity
    app_name: Optional[str] = None
    org_slug: Optional[str] = None
    app_region: Optional[str] = None
    fly_config_path: Optional[str] = None
    copy_config: bool = False

    # pipeline shape
    deploy_now: bool = False
    customize: bool = True
    deploy_only: bool = False
    create_and_push_branch: bool = False
    skip_extensions: bool = False

    # execution environment
    workdir: str = "/usr/src/app"
    event_prefix: str = ""
    flyctl: str = "flyctl"
    shell: str = "/bin/bash"
    manifest_path: str = "/tmp/manifest.json"
    session_path: str = "/tmp/session.json"
    log_level: str = "WARNING"

    runtimes: RuntimeDefaults = field(default_factory=RuntimeDefaults)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DeployerConfig":
        # fields starting with "_" are comments
        payload = {k: v for k, v in (payload or {}).items() if not k.startswith("_")}
        runtimes_payload = payload.pop("runtimes", {}) or {}
        defaults = {k: v for k, v in cls().__dict__.items() if k != "runtimes"}
        return cls(
            **{**defaults, **payload},
            runtimes=RuntimeDefaults(**{**RuntimeDefaults().__dict__, **runtimes_payload}),
        )

    def apply_env(self, environ: Mapping[str, str]) -> "DeployerConfig":
        """Override fields from environment variables (highest priority)."""
        strings = {
            "GIT_REPO": "git_repo",
            "GIT_REF": "git_ref",
            "GIT_URL_USER": "git_url_user",
            "GIT_URL_PASSWORD": "git_url_password",
            "DEPLOYER_SOURCE_CWD": "source_cwd",
            "DEPLOY_APP_NAME": "app_name",
            "DEPLOY_ORG_SLUG": "org_slug",
            "DEPLOY_APP_REGION": "app_region",
            "DEPLOYER_FLY_CONFIG_PATH": "fly_config_path",
            "DEPLOYER_WORKDIR": "workdir",
            "DEPLOYER_EVENT_PREFIX": "event_prefix",
            "DEPLOYER_FLYCTL_BIN": "flyctl",
            "DEPLOYER_SHELL": "shell",
            "DEPLOYER_MANIFEST_PATH": "manifest_path",
            "DEPLOYER_SESSION_PATH": "session_path",
            "DEPLOYER_LOG_LEVEL": "log_level",
        }
        for name, attr in strings.items():
            value = get_env(environ, name)
            if value is not None:
                setattr(self, attr, value)

        # flags are switched on by presence
        flags = {
            "DEPLOY_NOW": "deploy_now",
            "DEPLOY_ONLY": "deploy_only",
            "DEPLOY_COPY_CONFIG": "copy_config",
            "DEPLOY_CREATE_AND_PUSH_BRANCH": "create_and_push_branch",
            "SKIP_EXTENSIONS": "skip_extensions",
        }
        for name, attr in flags.items():
            if get_env(environ, name) is not None:
                setattr(self, attr, True)
        if get_env(environ, "NO_DEPLOY_CUSTOMIZE") is not None:
            self.customize = False

        for language in self.runtimes.languages():
            value = get_env(environ, f"DEFAULT_{language.upper()}_VERSION")
            if value is not None:
                setattr(self.runtimes, language, value)
        return self

    @property
    def can_create_and_push_branch(self) -> bool:
        return self.create_and_push_branch and bool(self.git_repo)

    def validate(self) -> None:
        """Raise :class:`ValidationError` for configuration no run can proceed with."""
        if not self.customize and not self.app_name:
            raise ValidationError("missing app name")
        if not self.customize and not self.org_slug:
            raise ValidationError("missing organization slug")
        self.git_repo_url()

    def git_repo_url(self) -> Optional[SplitResult]:
        """Parsed ``git_repo`` with credentials applied, or ``None`` without a repo."""
        if not self.git_repo:
            return None
        try:
            url = urlsplit(self.git_repo)
            url.port  # raises for a malformed port
        except ValueError as exc:
            raise InvalidGitRepoUrlError(str(exc)) from exc
        if not url.scheme or (url.scheme != "file" and not url.hostname):
            raise InvalidGitRepoUrlError(f"bad URI(is not URI?): {self.git_repo!r}")
        return with_credentials(url, self.git_url_user, self.git_url_password)


def _host_part(url: SplitResult) -> str:
    """The netloc after any userinfo, exactly as written (case, brackets and port kept)."""
    return url.netloc.rpartition("@")[2]


def with_credentials(url: SplitResult, user: Optional[str], password: Optional[str]) -> SplitResult:
    """Return ``url`` with its user and password replaced where given.

    New values are percent-encoded; values kept from ``url`` are already
    encoded and pass through unchanged.
    """
    if user is None and password is None:
        return url
    user_part = quote(user.strip(), safe="") if user is not None else (url.username or "")
    password_part = quote(password.strip(), safe="") if password is not None else url.password
    userinfo = user_part if password_part is None else f"{user_part}:{password_part}"
    return url._replace(netloc=f"{userinfo}@{_host_part(url)}")


def redact(url: SplitResult) -> str:
    """``url`` as text with any user and password removed."""
    return urlunsplit(url._replace(netloc=_host_part(url)))


def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = None,
) -> DeployerConfig:
    """Load configuration from defaults, an optional JSON file, ``.env`` and the environment.

    Environment variables win over the file. A ``.env`` file never overrides
    variables that are already set.
    """
    if environ is None:
        load_dotenv(dotenv_path, override=False)
        environ = os.environ

    config = DeployerConfig()
    if path:
        candidate = Path(path)
        if not candidate.is_file():
            raise FileNotFoundError(f"Could not find configuration file: {candidate}")
        with candidate.open("r", encoding="utf-8") as handle:
            config = DeployerConfig.from_dict(json.load(handle))

    return config.apply_env(environ)
