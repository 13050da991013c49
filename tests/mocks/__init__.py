"""Fake isolation layer and stream fixtures.

Provides an in-memory stand-in for ``DockerClient`` so the pipeline can
be exercised without a Docker daemon.
"""

import asyncio
from collections.abc import Sequence
from typing import Any

from shellbox.docker.client import DockerClientConfig
from shellbox.exceptions import ControlPlaneUnavailableError, IsolationLayerError
from shellbox.sandbox.streams import StreamType, encode_frame


def stdout_frame(text: str) -> bytes:
    return encode_frame(StreamType.STDOUT, text.encode())


def stderr_frame(text: str) -> bytes:
    return encode_frame(StreamType.STDERR, text.encode())


class FakeAttachStream:
    """Mimics the streaming ``httpx.Response`` returned by attach."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.closed = False

    async def aiter_raw(self):
        while True:
            chunk = await self.queue.get()
            if chunk is None:
                return
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class FakeWaitResponse:
    """Mimics the streaming wait response; resolves with the exit code."""

    def __init__(self) -> None:
        self.status: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


class FakeDockerClient:
    """In-memory Docker client.

    On start, emits ``frames`` on the attach stream and, unless
    ``runs_forever`` is set, exits with ``exit_code``. A running
    container only stops when killed.
    """

    def __init__(
        self,
        *,
        frames: Sequence[bytes] = (),
        exit_code: int = 0,
        runs_forever: bool = False,
        local_images: Sequence[str] = ("ubuntu:latest",),
        ping_error: Exception | None = None,
        pull_error: Exception | None = None,
        start_error: Exception | None = None,
    ) -> None:
        self.config = DockerClientConfig(socket_path="/tmp/fake-docker.sock")  # nosec B108
        self.frames = list(frames)
        self.exit_code = exit_code
        self.runs_forever = runs_forever
        self.local_images = set(local_images)
        self.ping_error = ping_error
        self.pull_error = pull_error
        self.start_error = start_error

        self.calls: list[str] = []
        self.created: list[dict[str, Any]] = []
        self.pulled: list[tuple[str, str]] = []
        self.removed: list[str] = []
        self.killed = False
        self.running = False
        self.closed = False
        self._stream: FakeAttachStream | None = None
        self._wait: FakeWaitResponse | None = None

    async def close(self) -> None:
        self.closed = True

    async def ping(self) -> bool:
        self.calls.append("ping")
        if self.ping_error is not None:
            raise self.ping_error
        return True

    async def version(self) -> dict[str, Any]:
        return {"Version": "27.0.0", "ApiVersion": "1.46"}

    async def inspect_image(self, name: str) -> dict[str, Any] | None:
        self.calls.append("inspect_image")
        return {"Id": f"sha256:{name}"} if name in self.local_images else None

    async def pull_image(self, repository: str, tag: str, on_progress=None) -> None:
        self.calls.append("pull_image")
        self.pulled.append((repository, tag))
        if self.pull_error is not None:
            raise self.pull_error
        if on_progress is not None:
            on_progress({"status": "Pull complete"})
        self.local_images.add(f"{repository}:{tag}")

    async def create_container(self, body: dict[str, Any], name: str | None = None) -> str:
        self.calls.append("create_container")
        self.created.append(body)
        return "c0ffee" * 10

    async def attach_container(self, container_id: str) -> FakeAttachStream:
        self.calls.append("attach_container")
        self._stream = FakeAttachStream()
        return self._stream

    async def wait_container(self, container_id: str, condition: str = "next-exit") -> FakeWaitResponse:
        self.calls.append("wait_container")
        self._wait = FakeWaitResponse()
        return self._wait

    async def read_wait_status(self, response: FakeWaitResponse) -> int:
        return await response.status

    async def start_container(self, container_id: str) -> None:
        self.calls.append("start_container")
        if self.start_error is not None:
            raise self.start_error
        self.running = True
        for frame in self.frames:
            self._stream.queue.put_nowait(frame)
        if not self.runs_forever:
            self._stop(self.exit_code)

    async def kill_container(self, container_id: str, signal: str = "SIGKILL") -> bool:
        self.calls.append("kill_container")
        if not self.running:
            return False
        self.killed = True
        self._stop(137)
        return True

    async def remove_container(self, container_id: str, force: bool = True) -> bool:
        self.calls.append("remove_container")
        self.removed.append(container_id)
        return True

    def _stop(self, code: int) -> None:
        self.running = False
        self._stream.queue.put_nowait(None)
        if self._wait is not None and not self._wait.status.done():
            self._wait.status.set_result(code)


def unreachable_control_plane() -> ControlPlaneUnavailableError:
    return ControlPlaneUnavailableError("/tmp/fake-docker.sock", "socket not found")  # nosec B108


def missing_image_error() -> IsolationLayerError:
    return IsolationLayerError(
        "Docker API pull_image failed: manifest unknown",
        "pull_image",
        status_code=404,
    )
