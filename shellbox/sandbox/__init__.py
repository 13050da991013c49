"""Sandbox infrastructure for isolated shell script execution.

Scripts run in disposable Docker containers with a fixed resource
envelope, optionally after mounting an NFS or SMB/CIFS share, and under
an unprivileged identity unless root is explicitly requested.
"""

from shellbox.sandbox.composer import ComposedScript, ScriptComposer, StageKind
from shellbox.sandbox.direct import DirectRunner
from shellbox.sandbox.images import ImageResolver
from shellbox.sandbox.models import (
    ExecutionRequest,
    ExecutionResult,
    MountCredentials,
    MountKind,
    MountSpec,
    PrivilegeMode,
)
from shellbox.sandbox.mounts import MountPlan, MountPlanner
from shellbox.sandbox.policies import SandboxConstraints, UnprivilegedIdentity
from shellbox.sandbox.runner import SandboxRunner, build_request, run_script
from shellbox.sandbox.streams import OutputDemultiplexer
from shellbox.sandbox.supervisor import SandboxSupervisor

__all__ = [
    # Models
    "ExecutionRequest",
    "ExecutionResult",
    "MountCredentials",
    "MountKind",
    "MountSpec",
    "PrivilegeMode",
    # Policies
    "SandboxConstraints",
    "UnprivilegedIdentity",
    # Pipeline stages
    "ComposedScript",
    "ImageResolver",
    "MountPlan",
    "MountPlanner",
    "OutputDemultiplexer",
    "SandboxSupervisor",
    "ScriptComposer",
    "StageKind",
    # Runners
    "DirectRunner",
    "SandboxRunner",
    "build_request",
    "run_script",
]
