"""Deployment pipeline built on the step engine.

- DeployPipeline: runs the steps of one deployment
- Step/Artifact: step and artifact identifiers
- StepPlan: the step list published as the ``meta`` artifact
"""

from .catalog import Artifact, PlannedStep, Step, StepPlan
from .driver import DeployPipeline, ManifestHandoff
from .extensions import ExtensionProvisioner
from .git import FLYIO_BRANCH_NAME, GitRepository
from .runtimes import DependencyInstaller, needs_dependencies

__all__ = [
    "Artifact",
    "PlannedStep",
    "Step",
    "StepPlan",
    "DeployPipeline",
    "ManifestHandoff",
    "ExtensionProvisioner",
    "FLYIO_BRANCH_NAME",
    "GitRepository",
    "DependencyInstaller",
    "needs_dependencies",
]
