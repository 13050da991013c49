"""Async client for the Docker Engine API over its UNIX socket.

Only the endpoints the sandbox pipeline needs are wrapped. Every call is
a non-blocking ``httpx`` request; the attach, pull and wait endpoints
are consumed as streams.
"""

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, Field

from shellbox.exceptions import ControlPlaneUnavailableError, IsolationLayerError
from shellbox.settings import get_settings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, Any]], None]

# Status codes Docker uses for "already stopped" / "already being removed"
_GONE = (404, 409)


class DockerClientConfig(BaseModel):
    """Configuration for the Docker client."""

    socket_path: str = Field(default="/var/run/docker.sock", description="Docker daemon socket")
    api_version: str | None = Field(default=None, description="Pinned API version, e.g. 'v1.43'")
    timeout: float = Field(default=30.0, description="Timeout for non-streaming requests")

    @property
    def base_url(self) -> str:
        if self.api_version:
            return f"http://docker/{self.api_version.strip('/')}"
        return "http://docker"


class DockerClient:
    """Minimal async Docker Engine API client.

    Usage:
        async with DockerClient() as client:
            await client.ping()
            container_id = await client.create_container({...})
    """

    def __init__(
        self,
        config: DockerClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Optional configuration (uses settings if not provided)
            transport: Custom transport; defaults to the UNIX socket transport
        """
        if config is None:
            settings = get_settings()
            config = DockerClientConfig(
                socket_path=settings.docker_socket,
                api_version=settings.docker_api_version,
                timeout=settings.docker_request_timeout,
            )
        self.config = config
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "DockerClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared httpx.AsyncClient."""
        if self._http_client is None:
            transport = self._transport or httpx.AsyncHTTPTransport(uds=self.config.socket_path)
            self._http_client = httpx.AsyncClient(
                transport=transport,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client and release connections."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # -- transport -------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        stream: bool = False,
        timeout: httpx.Timeout | float | None = None,
    ) -> httpx.Response:
        """Send a request, translating transport failures.

        Streaming responses are returned unread; the caller must close them.
        """
        client = self._get_http_client()
        request = client.build_request(
            method,
            path,
            params=params,
            json=json_body,
            timeout=timeout if timeout is not None else self.config.timeout,
        )
        try:
            response = await client.send(request, stream=stream)
        except (httpx.ConnectError, FileNotFoundError, ConnectionRefusedError) as e:
            raise ControlPlaneUnavailableError(self.config.socket_path, str(e) or type(e).__name__) from e
        except httpx.TimeoutException as e:
            raise IsolationLayerError(f"Docker API {operation} timed out", operation) from e

        logger.debug("docker %s %s -> %d", method, path, response.status_code)
        return response

    @staticmethod
    async def _error_message(response: httpx.Response) -> str:
        await response.aread()
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            return response.text.strip() or f"HTTP {response.status_code}"
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return f"HTTP {response.status_code}"

    async def _raise_for_status(self, response: httpx.Response, operation: str) -> None:
        if response.is_success:
            return
        message = await self._error_message(response)
        await response.aclose()
        raise IsolationLayerError(
            f"Docker API {operation} failed: {message}",
            operation,
            status_code=response.status_code,
        )

    async def _call(
        self,
        method: str,
        path: str,
        operation: str,
        **kwargs: Any,
    ) -> Any:
        response = await self._send(method, path, operation, **kwargs)
        await self._raise_for_status(response, operation)
        if not response.content:
            return None
        return response.json()

    # -- system ----------------------------------------------------------

    def socket_exists(self) -> bool:
        return Path(self.config.socket_path).exists()

    async def ping(self) -> bool:
        """Verify the daemon answers on its socket.

        Raises:
            ControlPlaneUnavailableError: When the socket is missing or refuses connections
        """
        if self._transport is None and not self.socket_exists():
            raise ControlPlaneUnavailableError(self.config.socket_path, "socket not found")
        response = await self._send("GET", "/_ping", "ping")
        if response.status_code != 200:
            raise ControlPlaneUnavailableError(
                self.config.socket_path,
                f"ping returned HTTP {response.status_code}",
            )
        return True

    async def version(self) -> dict[str, Any]:
        return await self._call("GET", "/version", "version")

    # -- images ----------------------------------------------------------

    async def inspect_image(self, name: str) -> dict[str, Any] | None:
        """Inspect a locally cached image.

        Returns:
            Image details, or None when the image is not present locally
        """
        response = await self._send("GET", f"/images/{name}/json", "inspect_image")
        if response.status_code == 404:
            return None
        await self._raise_for_status(response, "inspect_image")
        return response.json()

    async def pull_image(
        self,
        repository: str,
        tag: str,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Pull an image and block until the progress stream ends.

        Docker reports pull failures both as HTTP errors and as
        ``{"error": ...}`` events inside a 200 stream; both raise.

        Raises:
            IsolationLayerError: When the pull fails
        """
        response = await self._send(
            "POST",
            "/images/create",
            "pull_image",
            params={"fromImage": repository, "tag": tag},
            stream=True,
            timeout=httpx.Timeout(self.config.timeout, read=None),
        )
        await self._raise_for_status(response, "pull_image")
        try:
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Unparseable pull event: %s", line)
                    continue
                if event.get("error"):
                    raise IsolationLayerError(
                        f"Docker API pull_image failed: {event['error']}",
                        "pull_image",
                    )
                if on_progress is not None:
                    on_progress(event)
        finally:
            await response.aclose()

    # -- containers ------------------------------------------------------

    async def create_container(self, body: dict[str, Any], name: str | None = None) -> str:
        params = {"name": name} if name else None
        data = await self._call(
            "POST",
            "/containers/create",
            "create_container",
            params=params,
            json_body=body,
        )
        for warning in data.get("Warnings") or []:
            logger.warning("Docker create warning: %s", warning)
        return str(data["Id"])

    async def attach_container(self, container_id: str) -> httpx.Response:
        """Attach to stdout/stderr; returns the open raw stream response."""
        response = await self._send(
            "POST",
            f"/containers/{container_id}/attach",
            "attach_container",
            params={"stream": 1, "stdout": 1, "stderr": 1},
            stream=True,
            timeout=httpx.Timeout(self.config.timeout, read=None),
        )
        await self._raise_for_status(response, "attach_container")
        return response

    async def start_container(self, container_id: str) -> None:
        # 304 means already started
        response = await self._send("POST", f"/containers/{container_id}/start", "start_container")
        if response.status_code == 304:
            return
        await self._raise_for_status(response, "start_container")

    async def wait_container(self, container_id: str, condition: str = "next-exit") -> httpx.Response:
        """Register a wait and return once the daemon acknowledges it.

        The daemon sends headers as soon as the wait is registered and
        the body (``{"StatusCode": n}``) when the condition is met; read
        it with ``read_wait_status``.
        """
        response = await self._send(
            "POST",
            f"/containers/{container_id}/wait",
            "wait_container",
            params={"condition": condition},
            stream=True,
            timeout=httpx.Timeout(self.config.timeout, read=None),
        )
        await self._raise_for_status(response, "wait_container")
        return response

    @staticmethod
    async def read_wait_status(response: httpx.Response) -> int:
        """Block until the wait response body arrives and return the exit code."""
        body = await response.aread()
        data = json.loads(body) if body else {}
        error = (data.get("Error") or {}).get("Message")
        if error:
            logger.warning("Container wait reported an error: %s", error)
        return int(data.get("StatusCode", -1))

    async def kill_container(self, container_id: str, signal: str = "SIGKILL") -> bool:
        """Force-terminate a container.

        Returns:
            False when the container had already stopped or been removed
        """
        response = await self._send(
            "POST",
            f"/containers/{container_id}/kill",
            "kill_container",
            params={"signal": signal},
        )
        if response.status_code in _GONE:
            logger.debug("Kill of %s ignored: container already stopped", container_id[:12])
            return False
        await self._raise_for_status(response, "kill_container")
        return True

    async def remove_container(self, container_id: str, force: bool = True) -> bool:
        """Delete a container.

        Returns:
            False when the container was already gone or being removed
        """
        response = await self._send(
            "DELETE",
            f"/containers/{container_id}",
            "remove_container",
            params={"force": str(force).lower()},
        )
        if response.status_code in _GONE:
            return False
        await self._raise_for_status(response, "remove_container")
        return True


__all__ = ["DockerClient", "DockerClientConfig", "ProgressCallback"]
