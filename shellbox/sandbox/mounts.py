"""Shell fragments for mounting network filesystems inside the sandbox.

The planner turns a ``MountSpec`` into three fragments: install the
client utilities, mount, and unmount. It never raises; a missing package
manager or a failed installation only prints a warning from inside the
container, and the composer treats a failed mount as non-fatal.
"""

import logging
import shlex
from dataclasses import dataclass

from shellbox.sandbox.models import MountKind, MountSpec

logger = logging.getLogger(__name__)

APT_TIMEOUT_SECONDS = 30

DEFAULT_OPTIONS: dict[MountKind, str] = {
    MountKind.NFS: "rw,sync",
    MountKind.CIFS: "rw",
}


@dataclass(frozen=True)
class ClientPackages:
    """Package names providing a mount helper, per package manager."""

    helper: str
    apt: str
    apk: str
    yum: str


CLIENT_PACKAGES: dict[MountKind, ClientPackages] = {
    MountKind.NFS: ClientPackages(helper="mount.nfs", apt="nfs-common", apk="nfs-utils", yum="nfs-utils"),
    MountKind.CIFS: ClientPackages(helper="mount.cifs", apt="cifs-utils", apk="cifs-utils", yum="cifs-utils"),
}


@dataclass(frozen=True)
class MountPlan:
    """Install, mount and unmount fragments for one mount."""

    install_fragment: str
    mount_fragment: str
    unmount_fragment: str
    mount_point: str


def _warn(message: str) -> str:
    return f"echo {shlex.quote(f'[Warning] {message}')} >&2"


def build_install_fragment(kind: MountKind) -> str:
    """Best-effort installation of the mount helper for ``kind``.

    Skips installation when the helper binary is already present; probes
    apt, apk and yum in that order.
    """
    pkgs = CLIENT_PACKAGES[kind]
    return "\n".join(
        [
            f"# Install {kind.value.upper()} client utilities",
            "export DEBIAN_FRONTEND=noninteractive",
            f"if command -v {pkgs.helper} >/dev/null 2>&1; then",
            "  :",
            "elif command -v apt-get >/dev/null 2>&1; then",
            f"  timeout {APT_TIMEOUT_SECONDS} apt-get update -qq >/dev/null 2>&1 || {_warn('apt-get update failed')}",
            f"  timeout {APT_TIMEOUT_SECONDS} apt-get install -y --no-install-recommends {pkgs.apt} >/dev/null 2>&1"
            f" || {_warn(f'{pkgs.apt} installation failed')}",
            "elif command -v apk >/dev/null 2>&1; then",
            f"  apk add --no-cache {pkgs.apk} >/dev/null 2>&1 || {_warn(f'{pkgs.apk} installation failed')}",
            "elif command -v yum >/dev/null 2>&1; then",
            f"  yum install -y {pkgs.yum} >/dev/null 2>&1 || {_warn(f'{pkgs.yum} installation failed')}",
            "else",
            f"  {_warn(f'no supported package manager found, cannot install {pkgs.helper}')}",
            "fi",
        ]
    )


def build_mount_options(spec: MountSpec) -> str:
    """Resolve the ``-o`` option string for ``spec``.

    CIFS credentials are appended as ``username=``/``password=``; they are
    ignored for NFS.
    """
    options = spec.options or DEFAULT_OPTIONS[spec.kind]
    if spec.kind == MountKind.CIFS and spec.credentials is not None:
        options += f",username={spec.credentials.username}"
        if spec.credentials.password is not None:
            options += f",password={spec.credentials.password.get_secret_value()}"
    elif spec.credentials is not None:
        logger.debug("Ignoring credentials for %s mount of %s", spec.kind.value, spec.source)
    return options


def build_mount_fragment(spec: MountSpec) -> str:
    return " ".join(
        [
            "mount",
            "-t",
            spec.kind.value,
            "-o",
            shlex.quote(build_mount_options(spec)),
            shlex.quote(spec.source),
            shlex.quote(spec.mount_point),
        ]
    )


def build_unmount_fragment(spec: MountSpec) -> str:
    return f"umount {shlex.quote(spec.mount_point)} 2>/dev/null || true"


class MountPlanner:
    """Plans the shell commands for a network mount.

    Usage:
        plan = MountPlanner().plan(spec)
        plan.install_fragment  # apt/apk/yum probe
        plan.mount_fragment    # mount -t nfs -o rw,sync server:/export /mnt/network
        plan.unmount_fragment  # umount /mnt/network 2>/dev/null || true
    """

    def plan(self, spec: MountSpec) -> MountPlan:
        return MountPlan(
            install_fragment=build_install_fragment(spec.kind),
            mount_fragment=build_mount_fragment(spec),
            unmount_fragment=build_unmount_fragment(spec),
            mount_point=spec.mount_point,
        )


__all__ = [
    "CLIENT_PACKAGES",
    "DEFAULT_OPTIONS",
    "MountPlan",
    "MountPlanner",
    "build_install_fragment",
    "build_mount_fragment",
    "build_mount_options",
    "build_unmount_fragment",
]
