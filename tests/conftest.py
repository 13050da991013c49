"""Shared test fixtures for Shellbox.

Provides common fixtures used across unit and integration tests.
"""

import os
from collections.abc import Generator

import pytest

from shellbox.sandbox.models import ExecutionRequest, MountKind, MountSpec
from shellbox.settings import Settings, get_settings

# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Run every test against default settings, ignoring the caller's env."""
    for key in list(os.environ):
        if key.startswith("SHELLBOX_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("SHELLBOX_ENVIRONMENT", "testing")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Provide the settings the code under test will see."""
    return get_settings()


# =============================================================================
# REQUESTS
# =============================================================================


@pytest.fixture
def echo_request() -> ExecutionRequest:
    return ExecutionRequest(script="echo hi", timeout_seconds=30)


@pytest.fixture
def nfs_mount() -> MountSpec:
    return MountSpec(kind=MountKind.NFS, source="fileserver:/exports/data")


@pytest.fixture
def cifs_mount() -> MountSpec:
    return MountSpec.from_form(
        "smb",
        "//fileserver/share",
        username="svc-backup",
        password="s3cret",
    )
