"""Container lifecycle supervision.

State machine::

    CREATED -> STARTED -> COMPLETED   (the script exited, any code)
                       -> KILLED      (the wall-clock timer fired first)

The combined output stream is attached and the exit wait registered
before the container starts, so neither early output nor a fast exit
can be missed. Whatever the terminal state, the container is removed
before ``supervise`` returns.
"""

import asyncio
import contextlib
import logging
import uuid
from enum import StrEnum

import httpx

from shellbox.docker.client import DockerClient
from shellbox.exceptions import ShellboxError
from shellbox.sandbox.models import ExecutionResult
from shellbox.sandbox.policies import SandboxConstraints, constraints_from_settings
from shellbox.sandbox.streams import OutputDemultiplexer
from shellbox.settings import get_settings

logger = logging.getLogger(__name__)

MANAGED_LABEL = "shellbox.managed"


class SupervisorState(StrEnum):
    PENDING = "pending"
    CREATED = "created"
    STARTED = "started"
    COMPLETED = "completed"
    KILLED = "killed"


class SandboxSupervisor:
    """Runs one command in one container and collects its output.

    A supervisor instance handles a single container at a time; create
    one per request.
    """

    def __init__(
        self,
        client: DockerClient,
        constraints: SandboxConstraints | None = None,
        working_dir: str | None = None,
        drain_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self.client = client
        self.constraints = constraints or constraints_from_settings(settings)
        self.working_dir = working_dir or settings.workspace_dir
        self.drain_seconds = settings.stream_drain_seconds if drain_seconds is None else drain_seconds
        self.state = SupervisorState.PENDING

    def container_body(self, image: str, command: list[str]) -> dict:
        return {
            "Image": image,
            "Cmd": command,
            "WorkingDir": self.working_dir,
            "AttachStdin": False,
            "AttachStdout": True,
            "AttachStderr": True,
            "OpenStdin": False,
            "Tty": False,
            "Labels": {MANAGED_LABEL: "true"},
            "HostConfig": self.constraints.to_host_config(),
        }

    async def supervise(self, image: str, command: list[str], timeout_seconds: float) -> ExecutionResult:
        """Create, start and wait for a container, killing it on timeout.

        Args:
            image: Locally available image
            command: Container command
            timeout_seconds: Wall-clock limit, armed when the container starts

        Returns:
            ExecutionResult; ``timed_out`` tells the terminal states apart

        Raises:
            IsolationLayerError: When create, attach or start fails
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        name = f"shellbox-{uuid.uuid4().hex[:12]}"

        container_id = await self.client.create_container(self.container_body(image, command), name=name)
        self.state = SupervisorState.CREATED
        short_id = container_id[:12]
        logger.info("Created container %s (%s) from %s", short_id, name, image)

        demux = OutputDemultiplexer()
        pump: asyncio.Task | None = None
        wait_response: httpx.Response | None = None
        exit_code: int | None = None
        try:
            stream = await self.client.attach_container(container_id)
            pump = asyncio.create_task(self._pump(stream, demux))
            wait_response = await self.client.wait_container(container_id)

            await self.client.start_container(container_id)
            self.state = SupervisorState.STARTED
            logger.debug("Started container %s, timeout %ss", short_id, timeout_seconds)

            try:
                exit_code = await asyncio.wait_for(
                    self.client.read_wait_status(wait_response),
                    timeout=timeout_seconds,
                )
            except TimeoutError:
                self.state = SupervisorState.KILLED
                logger.warning("Container %s exceeded %ss, killing", short_id, timeout_seconds)
                await self._kill(container_id)
            else:
                self.state = SupervisorState.COMPLETED
                logger.info("Container %s exited with code %d", short_id, exit_code)

            await self._drain(pump)
        finally:
            if pump is not None and not pump.done():
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump
            if wait_response is not None:
                await wait_response.aclose()
            await self._remove(container_id)

        demux.close()
        timed_out = self.state == SupervisorState.KILLED
        return ExecutionResult(
            succeeded=not timed_out and exit_code == 0,
            stdout=demux.stdout,
            stderr=demux.stderr,
            exit_code=None if timed_out else exit_code,
            timed_out=timed_out,
            duration_seconds=loop.time() - start_time,
            container_id=container_id,
        )

    async def _pump(self, stream: httpx.Response, demux: OutputDemultiplexer) -> None:
        try:
            async for chunk in stream.aiter_raw():
                demux.feed(chunk)
        except httpx.HTTPError as e:
            # A killed container can drop the connection mid-frame
            logger.debug("Output stream closed abruptly: %s", e)
        finally:
            await stream.aclose()

    async def _drain(self, pump: asyncio.Task) -> None:
        """Wait for the output stream to close after the container stopped."""
        try:
            await asyncio.wait_for(asyncio.shield(pump), timeout=self.drain_seconds)
        except TimeoutError:
            logger.warning("Output stream still open %ss after exit; returning captured output", self.drain_seconds)

    async def _kill(self, container_id: str) -> None:
        try:
            await self.client.kill_container(container_id)
        except ShellboxError as e:
            # The forced remove below still terminates the container
            logger.error("Failed to kill container %s: %s", container_id[:12], e)

    async def _remove(self, container_id: str) -> None:
        try:
            if await self.client.remove_container(container_id, force=True):
                logger.debug("Removed container %s", container_id[:12])
        except ShellboxError as e:
            logger.error("Failed to remove container %s: %s", container_id[:12], e)


__all__ = ["MANAGED_LABEL", "SandboxSupervisor", "SupervisorState"]
