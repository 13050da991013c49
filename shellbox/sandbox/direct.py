"""Non-sandboxed script execution on the host.

Runs the script with the host's ``bash`` and wraps it in the same
best-effort mount/unmount shell the sandbox uses, without installing
packages and without any privilege separation.

WARNING: Only use when ``direct_execution_enabled`` is set. It is never
permitted in production.
"""

import asyncio
import contextlib
import logging
import os
import shlex
import signal
from datetime import UTC, datetime
from pathlib import Path

from shellbox.exceptions import ConfigurationError
from shellbox.sandbox.composer import strip_interpreter_directive
from shellbox.sandbox.models import ExecutionRequest, ExecutionResult, PrivilegeMode
from shellbox.sandbox.mounts import MountPlanner
from shellbox.settings import get_settings

logger = logging.getLogger(__name__)

TIMEOUT_NOTE = b"Execution timed out"

# How long to keep reading after the process has exited
_READ_GRACE_SECONDS = 1.0
_READ_CHUNK = 64 * 1024


async def _collect(stream: asyncio.StreamReader, buffer: bytearray) -> None:
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        buffer += chunk


class DirectRunner:
    """Runs scripts as host subprocesses."""

    def __init__(self, working_directory: str | None = None, planner: MountPlanner | None = None) -> None:
        self.working_directory = Path(working_directory or get_settings().direct_working_directory)
        self.planner = planner or MountPlanner()

    def build_script(
        self,
        request: ExecutionRequest,
        working_directory: Path | None = None,
    ) -> tuple[str, str | None]:
        """Return the host script and, when mounting, the cleanup command."""
        workdir = working_directory or self.working_directory
        lines = []
        cleanup = None
        if request.mount is not None:
            plan = self.planner.plan(request.mount)
            lines.append(f"mkdir -p {shlex.quote(plan.mount_point)}")
            lines.append(f"{plan.mount_fragment} || echo '[Error] Mount failed' >&2")
            cleanup = plan.unmount_fragment
        lines.append(f"cd {shlex.quote(str(workdir))} || exit 1")
        lines.append(strip_interpreter_directive(request.script))
        return "\n".join(lines), cleanup

    async def run(
        self,
        request: ExecutionRequest,
        working_directory: str | None = None,
    ) -> ExecutionResult:
        """Execute ``request`` directly on the host.

        Args:
            request: What to run
            working_directory: Overrides the runner's working directory for this call

        Returns:
            ExecutionResult; on timeout it keeps whatever the script wrote
            before it was killed

        Raises:
            ConfigurationError: When direct execution is disabled or the
                environment is production
        """
        settings = get_settings()
        if settings.environment == "production":
            raise ConfigurationError(
                "Direct execution is never permitted in production. "
                "Use the sandboxed runner instead."
            )
        if not settings.direct_execution_enabled:
            raise ConfigurationError(
                "Direct execution is disabled. Set SHELLBOX_DIRECT_EXECUTION_ENABLED=true "
                "to run scripts on the host without isolation."
            )
        if request.privilege_mode == PrivilegeMode.DROP_PRIVILEGES:
            logger.warning("Direct execution does not drop privileges; running as the current user")

        workdir = Path(working_directory) if working_directory else self.working_directory
        workdir.mkdir(parents=True, exist_ok=True)
        script, cleanup = self.build_script(request, workdir)

        loop = asyncio.get_running_loop()
        start_time = loop.time()
        # New session so a timeout kills the script's children too
        process = await asyncio.create_subprocess_exec(
            "bash",
            "-c",
            script,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
        stdout = bytearray()
        stderr = bytearray()
        readers = [
            asyncio.create_task(_collect(process.stdout, stdout)),
            asyncio.create_task(_collect(process.stderr, stderr)),
        ]
        timed_out = False
        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=request.timeout_seconds)
            except TimeoutError:
                timed_out = True
                logger.warning("Direct execution exceeded %ss, killing", request.timeout_seconds)
                self._kill(process)
                await process.wait()
            await asyncio.wait(readers, timeout=_READ_GRACE_SECONDS)
        finally:
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
            if cleanup:
                await self._unmount(cleanup)

        if timed_out:
            if stderr and not stderr.endswith(b"\n"):
                stderr += b"\n"
            stderr += TIMEOUT_NOTE

        exit_code = None if timed_out else process.returncode
        return ExecutionResult(
            succeeded=exit_code == 0,
            stdout=bytes(stdout),
            stderr=bytes(stderr),
            exit_code=exit_code,
            timed_out=timed_out,
            timestamp=datetime.now(UTC),
            duration_seconds=loop.time() - start_time,
        )

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            os.killpg(process.pid, signal.SIGKILL)

    async def _unmount(self, command: str) -> None:
        process = await asyncio.create_subprocess_exec(
            "bash",
            "-c",
            command,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await process.wait()


__all__ = ["DirectRunner"]
