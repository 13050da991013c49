"""Docker Engine API access over the local control-plane socket."""

from shellbox.docker.client import DockerClient, DockerClientConfig

__all__ = ["DockerClient", "DockerClientConfig"]
