"""Shellbox exception hierarchy.

Base exceptions for all layers with correlation ID support.

Only control-plane, image-resolution and container-setup failures are
raised to callers; everything that happens inside the container
(mount failures, user script failures, timeouts) is reported through
``ExecutionResult`` instead.

Usage:
    from shellbox.exceptions import ControlPlaneUnavailableError

    try:
        result = await runner.run(request)
    except ControlPlaneUnavailableError as e:
        logger.error("Docker unreachable (%s): %s", e.correlation_id, e)
"""

import uuid

CONTROL_PLANE_HINT = (
    "control plane unreachable - ensure the isolation daemon is running "
    "and its socket is accessible"
)


class ShellboxError(Exception):
    """Base exception for all Shellbox errors.

    Carries a correlation_id for tracing errors across layers.
    """

    def __init__(self, message: str, *, correlation_id: str | None = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(message)


class SandboxError(ShellboxError):
    """Errors from sandboxed script execution."""

    def __init__(self, message: str, *, timeout: bool = False, **kwargs):
        self.timeout = timeout
        super().__init__(message, **kwargs)


class ControlPlaneUnavailableError(SandboxError):
    """The Docker daemon socket cannot be reached."""

    def __init__(self, socket_path: str, reason: str | None = None, **kwargs):
        self.socket_path = socket_path
        message = f"{CONTROL_PLANE_HINT} (socket: {socket_path})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, **kwargs)


class IsolationLayerError(SandboxError):
    """The Docker API rejected a request.

    Raised with the daemon's own message when creating, attaching to or
    starting a container fails.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        *,
        status_code: int | None = None,
        **kwargs,
    ):
        self.operation = operation
        self.status_code = status_code
        super().__init__(message, **kwargs)


class ImageResolutionError(SandboxError):
    """The requested image is neither cached locally nor pullable."""

    def __init__(self, image: str, reason: str | None = None, **kwargs):
        self.image = image
        message = (
            f"Docker image {image} not found and could not be pulled. "
            "Please check the image name and your network connection."
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, **kwargs)


class ValidationError(ShellboxError):
    """Rejected request values, raised by ``build_request``."""

    pass


class ConfigurationError(ShellboxError):
    """Errors from application configuration."""

    pass
