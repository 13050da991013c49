"""Docker-backed script execution pipeline.

Runs user shell scripts in disposable containers, optionally with an
NFS or SMB/CIFS share mounted first:

    control-plane check -> image resolution -> script composition
        -> container supervision -> demultiplexed result

Only control-plane and image failures (and container setup failures)
raise; mount failures, user script failures and timeouts are reported
in the returned ``ExecutionResult``.
"""

import logging
from typing import Any

from shellbox.docker.client import DockerClient, ProgressCallback
from shellbox.exceptions import ControlPlaneUnavailableError, IsolationLayerError, ValidationError
from shellbox.sandbox.composer import ComposedScript, ScriptComposer
from shellbox.sandbox.images import ImageResolver
from shellbox.sandbox.models import (
    ExecutionRequest,
    ExecutionResult,
    MountSpec,
    PrivilegeMode,
)
from shellbox.sandbox.supervisor import SandboxSupervisor
from shellbox.settings import get_settings

logger = logging.getLogger(__name__)


def build_request(
    script: str,
    *,
    mount_type: str | None = None,
    mount_source: str | None = None,
    mount_point: str | None = None,
    mount_options: str | None = None,
    mount_username: str | None = None,
    mount_password: str | None = None,
    image: str | None = None,
    timeout_seconds: int | None = None,
    run_as_root: bool = False,
) -> ExecutionRequest:
    """Build an ``ExecutionRequest`` from flat form values.

    Empty values fall back to the configured defaults; a mount without a
    source is dropped entirely.

    Raises:
        ValidationError: When a value is rejected (unknown mount type,
            relative mount point, ...)
    """
    settings = get_settings()
    try:
        mount = MountSpec.from_form(
            mount_type,
            mount_source,
            mount_point=mount_point or settings.default_mount_point,
            options=mount_options,
            username=mount_username,
            password=mount_password,
        )
        return ExecutionRequest(
            script=script,
            mount=mount,
            image=image or settings.default_image,
            timeout_seconds=timeout_seconds or settings.default_timeout_seconds,
            privilege_mode=PrivilegeMode.RUN_AS_ROOT if run_as_root else PrivilegeMode.DROP_PRIVILEGES,
        )
    except ValueError as e:
        # pydantic's ValidationError is a ValueError too
        raise ValidationError(str(e)) from e


class SandboxRunner:
    """Runs shell scripts in isolated Docker containers.

    Usage:
        async with SandboxRunner() as runner:
            result = await runner.run(ExecutionRequest(script="echo hi"))

        # With an NFS mount
        request = build_request(
            "ls /mnt/network",
            mount_type="nfs",
            mount_source="fileserver:/exports/data",
        )
        result = await runner.run(request)
    """

    def __init__(
        self,
        client: DockerClient | None = None,
        composer: ScriptComposer | None = None,
    ) -> None:
        """Initialize the sandbox runner.

        Args:
            client: Docker API client (default: configured UNIX socket)
            composer: Script composer (default: configured identity and layout)
        """
        self.client = client or DockerClient()
        self.composer = composer or ScriptComposer()
        self.images = ImageResolver(self.client)

    async def __aenter__(self) -> "SandboxRunner":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    def compose(self, request: ExecutionRequest) -> ComposedScript:
        return self.composer.compose(request)

    async def run(
        self,
        request: ExecutionRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionResult:
        """Execute a request in a fresh container.

        Args:
            request: What to run and how
            on_progress: Optional callback for image pull progress events

        Returns:
            ExecutionResult with demultiplexed output

        Raises:
            ControlPlaneUnavailableError: Docker socket unreachable
            ImageResolutionError: Image missing and not pullable
            IsolationLayerError: Container create/attach/start failed
        """
        await self.client.ping()
        image = await self.images.resolve(request.image, on_progress=on_progress)

        composed = self.compose(request)
        command = self.composer.bootstrap_command(composed)

        supervisor = SandboxSupervisor(self.client)
        result = await supervisor.supervise(image, command, request.timeout_seconds)
        logger.info(
            "Sandbox run finished: success=%s exit_code=%s timed_out=%s duration=%.2fs",
            result.succeeded,
            result.exit_code,
            result.timed_out,
            result.duration_seconds,
        )
        return result

    async def check_runtime(self) -> dict[str, Any]:
        """Check if the sandbox runtime is available.

        Returns:
            Dictionary with runtime status information
        """
        settings = get_settings()
        result: dict[str, Any] = {
            "socket_path": self.client.config.socket_path,
            "docker_available": False,
            "image_available": False,
            "errors": [],
        }

        try:
            await self.client.ping()
            result["docker_available"] = True
            version = await self.client.version()
            result["docker_version"] = version.get("Version", "unknown")
            result["api_version"] = version.get("ApiVersion", "unknown")
        except (ControlPlaneUnavailableError, IsolationLayerError) as e:
            result["errors"].append(str(e))
            return result

        try:
            result["image_available"] = await self.client.inspect_image(settings.default_image) is not None
            if not result["image_available"]:
                result["errors"].append(f"Image '{settings.default_image}' not found locally (will be pulled)")
        except IsolationLayerError as e:
            result["errors"].append(f"Error checking image: {e}")

        return result


# Convenience function
async def run_script(
    script: str,
    *,
    mount: MountSpec | None = None,
    image: str | None = None,
    timeout_seconds: int | None = None,
    run_as_root: bool = False,
) -> ExecutionResult:
    """Run a script in the sandbox.

    Convenience wrapper around SandboxRunner.run().
    """
    settings = get_settings()
    request = ExecutionRequest(
        script=script,
        mount=mount,
        image=image or settings.default_image,
        timeout_seconds=timeout_seconds or settings.default_timeout_seconds,
        privilege_mode=PrivilegeMode.RUN_AS_ROOT if run_as_root else PrivilegeMode.DROP_PRIVILEGES,
    )
    async with SandboxRunner() as runner:
        return await runner.run(request)


__all__ = [
    "SandboxRunner",
    "build_request",
    "run_script",
]
