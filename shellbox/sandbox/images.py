"""Ensures the requested base image is present in the local cache.

Concurrent resolution of the same image by two requests is tolerated:
both may pull, and the daemon deduplicates the layers.
"""

import logging
from typing import Any

from shellbox.docker.client import DockerClient, ProgressCallback
from shellbox.exceptions import ImageResolutionError, IsolationLayerError

logger = logging.getLogger(__name__)


def split_image_reference(image: str) -> tuple[str, str]:
    """Split an image reference into the repository and tag/digest.

    Examples:
        ubuntu -> (ubuntu, latest)
        ubuntu:22.04 -> (ubuntu, 22.04)
        registry:5000/team/tool -> (registry:5000/team/tool, latest)
        alpine@sha256:abc -> (alpine, sha256:abc)
    """
    if "@" in image:
        repository, digest = image.split("@", 1)
        return repository, digest
    last_component = image.rsplit("/", 1)[-1]
    if ":" in last_component:
        repository, tag = image.rsplit(":", 1)
        return repository, tag
    return image, "latest"


def _log_progress(event: dict[str, Any]) -> None:
    status = event.get("status")
    if status:
        progress = event.get("progress")
        logger.debug("%s%s", status, f": {progress}" if progress else "")


class ImageResolver:
    """Resolves an image reference to a locally available image.

    Usage:
        resolver = ImageResolver(client)
        image = await resolver.resolve("ubuntu:latest")
    """

    def __init__(self, client: DockerClient) -> None:
        self.client = client

    async def resolve(self, image: str, on_progress: ProgressCallback | None = None) -> str:
        """Return ``image`` once it is present locally, pulling it if needed.

        Args:
            image: Image reference
            on_progress: Optional callback receiving each pull progress event

        Raises:
            ImageResolutionError: When the image is missing and cannot be pulled
        """
        logger.info("Checking for Docker image %s...", image)
        try:
            if await self.client.inspect_image(image) is not None:
                logger.info("Image %s found locally", image)
                return image
        except IsolationLayerError as e:
            raise ImageResolutionError(image, str(e)) from e

        logger.info("Image %s not found locally, pulling...", image)
        repository, tag = split_image_reference(image)
        try:
            await self.client.pull_image(repository, tag, on_progress=on_progress or _log_progress)
        except IsolationLayerError as e:
            raise ImageResolutionError(image, str(e)) from e

        logger.info("Successfully pulled %s", image)
        return image


__all__ = ["ImageResolver", "split_image_reference"]
