"""Deployment pipeline: the ordered, conditional sequence of steps.

Everything runs on the main path except the dependency side path
(``install_dependencies`` then ``generate_build_requirements``), which is
forked right after the plan resolves, runs beside plan customization and is
joined immediately before the build.
"""

from __future__ import annotations

import json
import os
import secrets
import shlex
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..config import DeployerConfig
from ..engine import (
    CommandRunner,
    DeployAborted,
    EventStream,
    ParseError,
    StepExecutor,
    ValidationError,
)
from ..utils.logging import get_logger
from .catalog import Artifact, Step, StepPlan
from .extensions import ExtensionProvisioner
from .git import FLYIO_BRANCH_NAME, GitRepository
from .runtimes import DependencyInstaller, needs_dependencies

logger = get_logger(__name__)

FLY_CONFIG_NAMES = ("fly.toml", "fly.json", "fly.yaml", "fly.yml")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def dig(data: Any, *keys: str) -> Any:
    """Nested lookup that yields ``None`` on any missing level."""
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


class ManifestHandoff:
    """One-shot hand-over of the settled manifest from the main path to the side path."""

    def __init__(self) -> None:
        self._ready = threading.Event()
        self._manifest: Optional[Dict[str, Any]] = None
        self._cancelled = False

    def set(self, manifest: Dict[str, Any]) -> None:
        self._manifest = manifest
        self._ready.set()

    def cancel(self) -> None:
        if not self._ready.is_set():
            self._cancelled = True
            self._ready.set()

    def wait(self) -> Dict[str, Any]:
        self._ready.wait()
        if self._cancelled:
            raise DeployAborted()
        return self._manifest


class DeployPipeline:
    """Coordinates one deployment run on top of the step executor."""

    def __init__(
        self,
        config: DeployerConfig,
        stream: EventStream,
        executor: Optional[StepExecutor] = None,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.config = config
        self.stream = stream
        self.executor = executor or StepExecutor(stream)
        self.runner = runner or CommandRunner(
            stream,
            aborted=self.executor.aborted,
            working_dir=config.workdir,
            executable=config.shell,
        )
        self.git = GitRepository(self.runner, stream)
        self.plan = StepPlan()
        self.flyctl = config.flyctl

    def execute(self) -> int:
        """Run every step and return the process exit code."""
        return self.executor.run(self._run)

    # ------------------------------------------------------------------
    # main path
    # ------------------------------------------------------------------

    def _run(self) -> None:
        cfg = self.config
        self.stream.event("start", {"ts": _timestamp()})

        cfg.validate()
        repo_url = cfg.git_repo_url()

        if cfg.git_repo:
            self.plan.add(Step.GIT_PULL, "Setup and pull from git repository")
        if not cfg.deploy_only:
            self.plan.add(Step.PLAN, "Prepare deployment plan")
            if cfg.customize:
                self.plan.add(Step.CUSTOMIZE, "Customize deployment plan")
        else:
            # nothing left to discover, publish the full plan right away
            self.plan.add(Step.BUILD, "Build image")
            if cfg.deploy_now:
                self.plan.add(Step.DEPLOY, "Deploy application")
            self._publish_plan()

        if repo_url is not None:
            self.executor.in_step(Step.GIT_PULL, self._pull_source, repo_url)

        fly_config_path = self._resolve_fly_config_path()

        manifest = None
        if not cfg.deploy_only:
            manifest = self._launch(fly_config_path)

        fly_config = self._fly_config(manifest, fly_config_path)
        app_name = cfg.app_name or fly_config.get("app")
        if not app_name:
            raise ValidationError("missing app name")

        image_ref = self.executor.in_step(
            Step.BUILD, self._build_image, app_name, fly_config, fly_config_path
        )

        if not cfg.deploy_only and not cfg.skip_extensions:
            self._provision_extensions(manifest, app_name)

        if cfg.deploy_now:
            self.executor.in_step(Step.DEPLOY, self._deploy, app_name, image_ref, fly_config_path)

        if cfg.can_create_and_push_branch:
            self.executor.in_step(
                Step.CREATE_AND_PUSH_BRANCH, self.git.create_and_push_branch, FLYIO_BRANCH_NAME
            )

        self.stream.event("end", {"ts": _timestamp()})

    def _launch(self, fly_config_path: Optional[str]) -> Dict[str, Any]:
        """Plan, fork the dependency side path, customize, then join before the build."""
        cfg = self.config
        manifest = self.executor.in_step(Step.PLAN, self._propose_plan)

        language = dig(manifest, "plan", "runtime", "language")
        version = dig(manifest, "plan", "runtime", "version")
        install_deps = needs_dependencies(language)
        gen_reqs = not cfg.copy_config or fly_config_path is None
        self.stream.debug(f"generate reqs? {gen_reqs}")

        if install_deps:
            self.plan.add(
                Step.INSTALL_DEPENDENCIES, "Install required dependencies", async_=True
            )
        if gen_reqs:
            self.plan.add(Step.GENERATE_BUILD_REQUIREMENTS, "Generate requirements for build")
        self._publish_plan()

        handoff = ManifestHandoff()
        side = self.executor.spawn(
            self._side_path, install_deps, language, version, gen_reqs, handoff,
            name="install-dependencies",
        )
        try:
            if cfg.customize:
                manifest = self.executor.in_step(Step.CUSTOMIZE, self._customize)
            self._plan_remaining_steps(manifest)
            self._publish_plan()
            handoff.set(manifest)
        finally:
            handoff.cancel()

        side.join()
        return manifest

    def _plan_remaining_steps(self, manifest: Dict[str, Any]) -> None:
        cfg = self.config
        self.plan.add(Step.BUILD, "Build image")
        if dig(manifest, "plan", "postgres", "fly_postgres"):
            self.plan.add(Step.FLY_POSTGRES_CREATE, "Create and attach PostgreSQL database")
        if dig(manifest, "plan", "postgres", "supabase_postgres"):
            self.plan.add(Step.SUPABASE_POSTGRES, "Create Supabase PostgreSQL database")
        if dig(manifest, "plan", "redis", "upstash_redis"):
            self.plan.add(Step.UPSTASH_REDIS, "Create Upstash Redis database")
        if dig(manifest, "plan", "object_storage", "tigris_object_storage"):
            self.plan.add(Step.TIGRIS_OBJECT_STORAGE, "Create Tigris object storage bucket")
        if dig(manifest, "plan", "sentry") is True:
            self.plan.add(Step.SENTRY, "Create Sentry project")
        if cfg.deploy_now:
            self.plan.add(Step.DEPLOY, "Deploy application")
        if cfg.can_create_and_push_branch:
            self.plan.add(Step.CREATE_AND_PUSH_BRANCH, "Create Fly.io git branch with new files")

    def _publish_plan(self) -> None:
        self.stream.artifact(Artifact.META, self.plan.to_payload())

    # ------------------------------------------------------------------
    # side path
    # ------------------------------------------------------------------

    def _side_path(
        self,
        install_deps: bool,
        language: Optional[str],
        version: Optional[str],
        gen_reqs: bool,
        handoff: ManifestHandoff,
    ) -> None:
        if install_deps:
            installer = DependencyInstaller(self.runner, self.config.runtimes)
            self.executor.in_step(Step.INSTALL_DEPENDENCIES, installer.install, language, version)
        if gen_reqs:
            # requirements are generated from the settled manifest only
            handoff.wait()
            self.executor.in_step(Step.GENERATE_BUILD_REQUIREMENTS, self._generate_build_requirements)

    # ------------------------------------------------------------------
    # step bodies
    # ------------------------------------------------------------------

    def _pull_source(self, repo_url) -> Dict[str, Any]:
        head = self.git.pull(self.config.git_repo, repo_url, self.config.git_ref)
        if self.config.source_cwd:
            self.runner.working_dir = str(self._path(self.config.source_cwd))
        return head

    def _propose_plan(self) -> Dict[str, Any]:
        cfg = self.config
        cmd = f"{self.flyctl} launch plan propose --manifest-path {shlex.quote(cfg.manifest_path)}"
        if cfg.org_slug:
            cmd += f" --org {shlex.quote(cfg.org_slug)}"
        if cfg.app_name:
            cmd += f" --force-name --name {shlex.quote(cfg.app_name)}"
        if cfg.app_region:
            cmd += f" --region {shlex.quote(cfg.app_region)}"
        if cfg.copy_config:
            cmd += " --copy-config"
        self.runner.run(cmd)

        manifest = self._read_json(cfg.manifest_path)
        self.stream.artifact(Artifact.MANIFEST, manifest)
        return manifest

    def _customize(self) -> Dict[str, Any]:
        cfg = self.config
        manifest_path = shlex.quote(cfg.manifest_path)
        session_path = shlex.quote(cfg.session_path)

        self.runner.run(
            f"{self.flyctl} launch sessions create --session-path {session_path} "
            f"--manifest-path {manifest_path} --from-manifest {manifest_path}"
        )
        self.stream.artifact(Artifact.SESSION, self._read_json(cfg.session_path))

        self.runner.run(
            f"{self.flyctl} launch sessions finalize --session-path {session_path} "
            f"--manifest-path {manifest_path}"
        )
        manifest = self._read_json(cfg.manifest_path)
        # supersedes the manifest published by the plan step
        self.stream.artifact(Artifact.MANIFEST, manifest)
        return manifest

    def _generate_build_requirements(self) -> None:
        self.runner.run(
            f"{self.flyctl} launch plan generate {shlex.quote(self.config.manifest_path)}"
        )
        if self.config.git_repo:
            diff = self.git.staged_diff()
            self.stream.artifact(Artifact.DIFF, {"output": diff})

    def _build_image(
        self, app_name: str, fly_config: Dict[str, Any], fly_config_path: Optional[str]
    ) -> str:
        image_ref = dig(fly_config, "build", "image")
        if isinstance(image_ref, str) and image_ref.strip():
            image_ref = image_ref.strip()
            self.stream.info(f"Skipping build, using image defined in fly config: {image_ref}")
            return image_ref

        image_tag = secrets.token_hex(16)
        image_ref = f"registry.fly.io/{app_name}:{image_tag}"
        self.runner.run(
            f"{self.flyctl} deploy --build-only --depot=false --push -a {shlex.quote(app_name)} "
            f"--image-label {image_tag}{self._config_flag(fly_config_path)}"
        )
        self.stream.artifact(Artifact.DOCKER_IMAGE, {"ref": image_ref})
        return image_ref

    def _provision_extensions(self, manifest: Dict[str, Any], app_name: str) -> None:
        provisioner = ExtensionProvisioner(
            self.runner,
            self.stream,
            flyctl=self.flyctl,
            app_name=app_name,
            org=dig(manifest, "plan", "org"),
            region=dig(manifest, "plan", "region"),
        )
        fly_pg = dig(manifest, "plan", "postgres", "fly_postgres")
        supabase = dig(manifest, "plan", "postgres", "supabase_postgres")
        upstash = dig(manifest, "plan", "redis", "upstash_redis")
        tigris = dig(manifest, "plan", "object_storage", "tigris_object_storage")

        if fly_pg:
            self.executor.in_step(Step.FLY_POSTGRES_CREATE, provisioner.fly_postgres, fly_pg)
        elif supabase:
            self.executor.in_step(Step.SUPABASE_POSTGRES, provisioner.supabase, supabase)
        if upstash:
            self.executor.in_step(Step.UPSTASH_REDIS, provisioner.upstash_redis, upstash)
        if tigris:
            self.executor.in_step(Step.TIGRIS_OBJECT_STORAGE, provisioner.tigris, tigris)
        if dig(manifest, "plan", "sentry") is True:
            self.executor.in_step(Step.SENTRY, provisioner.sentry)

    def _deploy(self, app_name: str, image_ref: str, fly_config_path: Optional[str]) -> None:
        self.runner.run(
            f"{self.flyctl} deploy -a {shlex.quote(app_name)} --image {shlex.quote(image_ref)}"
            f"{self._config_flag(fly_config_path)}"
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _resolve_fly_config_path(self) -> Optional[str]:
        explicit = self.config.fly_config_path
        if explicit is not None:
            if not self._path(explicit).exists():
                raise ValidationError(f"Config file {explicit} does not exist")
            return explicit
        for name in FLY_CONFIG_NAMES:
            if self._path(name).is_file():
                return name
        return None

    def _fly_config(self, manifest: Optional[Dict[str, Any]], fly_config_path: Optional[str]) -> Dict[str, Any]:
        config = dig(manifest, "config")
        if config is not None:
            return config
        if fly_config_path is None:
            raise ValidationError("no fly config found and no launch manifest to derive one from")
        raw = self.runner.run(
            f"{self.flyctl} config show --local --config {shlex.quote(fly_config_path)}",
            log=False,
        )
        return self._parse_json(raw, f"fly config {fly_config_path}")

    def _config_flag(self, fly_config_path: Optional[str]) -> str:
        if fly_config_path is None:
            return ""
        return f" --config {shlex.quote(fly_config_path)}"

    def _path(self, path: str) -> Path:
        base = self.runner.working_dir or os.getcwd()
        return Path(base) / path

    def _read_json(self, path: str) -> Dict[str, Any]:
        raw = self._path(path).read_text(encoding="utf-8")
        return self._parse_json(raw, path)

    @staticmethod
    def _parse_json(raw: str, source: str) -> Dict[str, Any]:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ParseError(f"invalid JSON in {source}: {exc}", raw) from exc
