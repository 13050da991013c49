"""Resource and identity policies for sandbox containers.

Defines the fixed resource envelope every container runs in and the
unprivileged identity user scripts are dropped to.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shellbox.settings import Settings, get_settings

MIB = 1024 * 1024

# Docker's default CFS scheduling period in microseconds
CPU_PERIOD_US = 100_000


class SandboxConstraints(BaseModel):
    """Container resource and capability constraints.

    Constraints are immutable after creation.
    """

    model_config = ConfigDict(frozen=True)

    memory_bytes: int = Field(default=512 * MIB, ge=64 * MIB, description="Memory cap in bytes")
    cpu_fraction_of_core: float = Field(
        default=0.5,
        gt=0.0,
        le=8.0,
        description="CPU cap as a fraction of one core",
    )
    capabilities: frozenset[str] = Field(
        default=frozenset({"SYS_ADMIN"}),
        description="Capabilities added on top of Docker's default set (mounting needs SYS_ADMIN)",
    )
    security_opt: tuple[str, ...] = Field(
        default=("apparmor:unconfined",),
        description="Security options; some mount operations are blocked by the default AppArmor profile",
    )
    auto_remove: bool = Field(default=True, description="Delete the container when it exits")

    @property
    def cpu_quota(self) -> int:
        return int(self.cpu_fraction_of_core * CPU_PERIOD_US)

    def to_host_config(self) -> dict[str, Any]:
        """Convert constraints to a Docker ``HostConfig`` body.

        Returns:
            HostConfig dictionary for ``POST /containers/create``
        """
        return {
            "AutoRemove": self.auto_remove,
            "Memory": self.memory_bytes,
            "CpuPeriod": CPU_PERIOD_US,
            "CpuQuota": self.cpu_quota,
            "CapAdd": sorted(self.capabilities),
            "SecurityOpt": list(self.security_opt),
        }


class UnprivilegedIdentity(BaseModel):
    """The non-root account user scripts run under.

    Allocation policy: use ``uid`` when it is free, otherwise the first
    free UID in ``fallback_first..fallback_last`` (inclusive). The group
    always uses ``gid``.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(default="sandbox", pattern=r"^[a-z_][a-z0-9_-]*$")
    uid: int = Field(default=1001, ge=1000)
    gid: int = Field(default=1001, ge=1000)
    fallback_first: int = Field(default=1002, ge=1000)
    fallback_last: int = Field(default=1010, ge=1000)

    @model_validator(mode="after")
    def _check_range(self) -> "UnprivilegedIdentity":
        if self.fallback_last < self.fallback_first:
            msg = "fallback_last must not be lower than fallback_first"
            raise ValueError(msg)
        return self

    @property
    def fallback_uids(self) -> range:
        return range(self.fallback_first, self.fallback_last + 1)


class ScriptLayout(BaseModel):
    """Fixed paths inside the container."""

    model_config = ConfigDict(frozen=True)

    workspace_dir: str = "/workspace"
    staging_dir: str = "/tmp/shellbox"  # nosec B108

    @property
    def composed_script_path(self) -> str:
        return f"{self.staging_dir}/composed.sh"

    @property
    def user_script_path(self) -> str:
        return f"{self.staging_dir}/user-script.sh"


def constraints_from_settings(settings: Settings | None = None) -> SandboxConstraints:
    settings = settings or get_settings()
    return SandboxConstraints(
        memory_bytes=settings.memory_mb * MIB,
        cpu_fraction_of_core=settings.cpu_fraction,
    )


def identity_from_settings(settings: Settings | None = None) -> UnprivilegedIdentity:
    settings = settings or get_settings()
    return UnprivilegedIdentity(
        name=settings.sandbox_user,
        uid=settings.sandbox_uid,
        gid=settings.sandbox_gid,
        fallback_first=settings.uid_fallback_first,
        fallback_last=settings.uid_fallback_last,
    )


def layout_from_settings(settings: Settings | None = None) -> ScriptLayout:
    settings = settings or get_settings()
    return ScriptLayout(workspace_dir=settings.workspace_dir)


__all__ = [
    "CPU_PERIOD_US",
    "MIB",
    "SandboxConstraints",
    "ScriptLayout",
    "UnprivilegedIdentity",
    "constraints_from_settings",
    "identity_from_settings",
    "layout_from_settings",
]
