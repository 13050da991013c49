"""Unit tests for shellbox/sandbox/images.py."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from shellbox.exceptions import ImageResolutionError, IsolationLayerError
from shellbox.sandbox.images import ImageResolver, split_image_reference
from tests.mocks import FakeDockerClient, missing_image_error


class TestSplitImageReference:
    @pytest.mark.parametrize(
        ("image", "expected"),
        [
            ("ubuntu", ("ubuntu", "latest")),
            ("ubuntu:22.04", ("ubuntu", "22.04")),
            ("library/alpine:3.20", ("library/alpine", "3.20")),
            ("registry:5000/team/tool", ("registry:5000/team/tool", "latest")),
            ("registry:5000/team/tool:v2", ("registry:5000/team/tool", "v2")),
            ("alpine@sha256:abcdef", ("alpine", "sha256:abcdef")),
        ],
    )
    def test_split(self, image, expected):
        assert split_image_reference(image) == expected


class TestImageResolver:
    async def test_local_image_is_not_pulled(self):
        client = FakeDockerClient(local_images=["ubuntu:latest"])
        assert await ImageResolver(client).resolve("ubuntu:latest") == "ubuntu:latest"
        assert client.pulled == []

    async def test_missing_image_is_pulled(self):
        client = FakeDockerClient(local_images=[])
        progress = []
        await ImageResolver(client).resolve("alpine:3.20", on_progress=progress.append)
        assert client.pulled == [("alpine", "3.20")]
        assert progress == [{"status": "Pull complete"}]

    async def test_pull_failure_names_the_image(self):
        client = FakeDockerClient(local_images=[], pull_error=missing_image_error())
        with pytest.raises(ImageResolutionError) as exc_info:
            await ImageResolver(client).resolve("does-not-exist:latest")
        assert exc_info.value.image == "does-not-exist:latest"
        assert str(exc_info.value).startswith(
            "Docker image does-not-exist:latest not found and could not be pulled"
        )
        assert "manifest unknown" in str(exc_info.value)

    async def test_inspect_failure_is_resolution_error(self):
        client = MagicMock()
        client.inspect_image = AsyncMock(side_effect=IsolationLayerError("boom", "inspect_image"))
        client.pull_image = AsyncMock()
        with pytest.raises(ImageResolutionError):
            await ImageResolver(client).resolve("ubuntu:latest")
        client.pull_image.assert_not_awaited()

    async def test_default_progress_logger(self):
        client = MagicMock()
        client.inspect_image = AsyncMock(return_value=None)
        client.pull_image = AsyncMock()
        await ImageResolver(client).resolve("ubuntu")
        args, kwargs = client.pull_image.await_args
        assert args == ("ubuntu", "latest")
        assert callable(kwargs["on_progress"])
        kwargs["on_progress"]({"status": "Downloading", "progress": "[==>  ]"})
