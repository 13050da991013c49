"""Request and result models for sandboxed script execution.

All models are immutable once built. A fresh ``ExecutionRequest`` is
constructed per invocation and exactly one ``ExecutionResult`` is
produced for it.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

DEFAULT_MOUNT_POINT = "/mnt/network"
DEFAULT_IMAGE = "ubuntu:latest"


class MountKind(StrEnum):
    """Network filesystem types that can be mounted inside the sandbox."""

    NFS = "nfs"
    CIFS = "cifs"

    @classmethod
    def parse(cls, value: str) -> "MountKind":
        """Parse a form value, accepting ``smb`` as an alias for CIFS."""
        normalized = value.strip().lower()
        if normalized == "smb":
            return cls.CIFS
        return cls(normalized)


class PrivilegeMode(StrEnum):
    """Identity the user script runs under."""

    DROP_PRIVILEGES = "drop_privileges"
    RUN_AS_ROOT = "run_as_root"


class MountCredentials(BaseModel):
    """SMB/CIFS credentials."""

    model_config = ConfigDict(frozen=True)

    username: str
    password: SecretStr | None = None


class MountSpec(BaseModel):
    """Network mount configuration.

    ``credentials`` are only honoured for CIFS mounts.
    """

    model_config = ConfigDict(frozen=True)

    kind: MountKind
    source: str = Field(..., min_length=1, description="server:/path or //server/share")
    mount_point: str = Field(default=DEFAULT_MOUNT_POINT)
    options: str = Field(default="", description="Mount options; type default when empty")
    credentials: MountCredentials | None = None

    @field_validator("mount_point")
    @classmethod
    def _absolute_mount_point(cls, value: str) -> str:
        if not value.startswith("/"):
            msg = f"mount point must be an absolute path, got {value!r}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_form(
        cls,
        mount_type: str | None,
        source: str | None,
        mount_point: str | None = None,
        options: str | None = None,
        username: str | None = None,
        password: str | None = None,
    ) -> "MountSpec | None":
        """Build a mount spec from flat form values.

        Returns ``None`` when no mount type is selected or no source is
        given, which voids the whole mount stage.
        """
        if not mount_type or mount_type.strip().lower() == "none":
            return None
        if not source or not source.strip():
            return None

        credentials = None
        if username:
            credentials = MountCredentials(
                username=username,
                password=SecretStr(password) if password else None,
            )
        return cls(
            kind=MountKind.parse(mount_type),
            source=source.strip(),
            mount_point=mount_point or DEFAULT_MOUNT_POINT,
            options=options or "",
            credentials=credentials,
        )


class ExecutionRequest(BaseModel):
    """A single script execution request."""

    model_config = ConfigDict(frozen=True)

    script: str
    mount: MountSpec | None = None
    image: str = Field(default=DEFAULT_IMAGE, min_length=1)
    timeout_seconds: int = Field(default=30, gt=0)
    privilege_mode: PrivilegeMode = PrivilegeMode.DROP_PRIVILEGES

    @property
    def run_as_root(self) -> bool:
        return self.privilege_mode == PrivilegeMode.RUN_AS_ROOT


class ExecutionResult(BaseModel):
    """Outcome of one script execution.

    ``exit_code`` is ``None`` when the container was killed on timeout.
    """

    model_config = ConfigDict(frozen=True)

    succeeded: bool
    stdout: bytes = b""
    stderr: bytes = b""
    exit_code: int | None = None
    timed_out: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    duration_seconds: float = 0.0
    container_id: str | None = None

    @property
    def output(self) -> str:
        """Decoded stdout, as surfaced to the action layer."""
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def error_output(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    def to_action_output(self) -> dict[str, Any]:
        """Render the result in the shape the action layer consumes."""
        return {
            "success": self.succeeded,
            "output": self.output,
            "stdout": self.output,
            "stderr": self.error_output,
            "exitCode": self.exit_code,
            "timedOut": self.timed_out,
            "executionTime": self.timestamp.isoformat(),
        }


__all__ = [
    "DEFAULT_IMAGE",
    "DEFAULT_MOUNT_POINT",
    "ExecutionRequest",
    "ExecutionResult",
    "MountCredentials",
    "MountKind",
    "MountSpec",
    "PrivilegeMode",
]
