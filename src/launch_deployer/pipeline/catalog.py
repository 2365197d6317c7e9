"""Step and artifact names, and the evolving step plan published as ``meta``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List


class Step:
    """Identifiers of the pipeline's steps."""

    GIT_PULL = "git_pull"
    PLAN = "plan"
    CUSTOMIZE = "customize"
    INSTALL_DEPENDENCIES = "install_dependencies"
    GENERATE_BUILD_REQUIREMENTS = "generate_build_requirements"
    BUILD = "build"
    FLY_POSTGRES_CREATE = "fly_postgres_create"
    SUPABASE_POSTGRES = "supabase_postgres"
    UPSTASH_REDIS = "upstash_redis"
    TIGRIS_OBJECT_STORAGE = "tigris_object_storage"
    SENTRY = "sentry"
    DEPLOY = "deploy"
    CREATE_AND_PUSH_BRANCH = "create_and_push_branch"


class Artifact:
    """Names of the data checkpoints published on the stream."""

    META = "meta"
    GIT_INFO = "git_info"
    GIT_HEAD = "git_head"
    MANIFEST = "manifest"
    SESSION = "session"
    DIFF = "diff"
    DOCKER_IMAGE = "docker_image"
    FLY_POSTGRES = "fly_postgres"
    SUPABASE_POSTGRES = "supabase_postgres"
    UPSTASH_REDIS = "upstash_redis"
    TIGRIS_OBJECT_STORAGE = "tigris_object_storage"


@dataclass
class PlannedStep:
    id: str
    description: str
    async_: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "description": self.description}
        if self.async_:
            data["async"] = True
        return data


class StepPlan:
    """Ordered step descriptors, extended as earlier steps resolve."""

    def __init__(self) -> None:
        self.steps: List[PlannedStep] = []

    def add(self, step_id: str, description: str, *, async_: bool = False) -> None:
        self.steps.append(PlannedStep(step_id, description, async_))

    def to_payload(self) -> Dict[str, Any]:
        return {"steps": [step.to_dict() for step in self.steps]}
