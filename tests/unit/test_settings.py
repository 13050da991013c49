"""Unit tests for application settings and logging setup."""

import logging

import pytest
from pydantic import ValidationError

from shellbox.logging_config import NOISY_LOGGERS, configure_logging
from shellbox.sandbox.policies import constraints_from_settings, identity_from_settings, layout_from_settings
from shellbox.settings import Settings, get_settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.docker_socket == "/var/run/docker.sock"
        assert settings.default_image == "ubuntu:latest"
        assert settings.default_timeout_seconds == 30
        assert settings.memory_mb == 512
        assert settings.cpu_fraction == 0.5
        assert settings.sandbox_user == "sandbox"
        assert settings.sandbox_uid == 1001
        assert (settings.uid_fallback_first, settings.uid_fallback_last) == (1002, 1010)
        assert settings.direct_execution_enabled is False

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SHELLBOX_DOCKER_SOCKET", "/run/podman/podman.sock")
        monkeypatch.setenv("SHELLBOX_MEMORY_MB", "256")
        settings = Settings(_env_file=None)
        assert settings.docker_socket == "/run/podman/podman.sock"
        assert settings.memory_mb == 256

    def test_uid_range_validated(self):
        with pytest.raises(ValidationError, match="uid_fallback_last"):
            Settings(_env_file=None, uid_fallback_first=1010, uid_fallback_last=1002)

    def test_system_uids_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, sandbox_uid=0)

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestPoliciesFromSettings:
    def test_constraints(self, monkeypatch):
        monkeypatch.setenv("SHELLBOX_MEMORY_MB", "1024")
        monkeypatch.setenv("SHELLBOX_CPU_FRACTION", "2")
        constraints = constraints_from_settings()
        assert constraints.memory_bytes == 1024 * 1024 * 1024
        assert constraints.cpu_quota == 200_000

    def test_identity(self):
        identity = identity_from_settings(Settings(_env_file=None, sandbox_user="runner", sandbox_uid=2000))
        assert identity.name == "runner"
        assert identity.uid == 2000
        assert list(identity.fallback_uids) == list(range(1002, 1011))

    def test_layout(self):
        layout = layout_from_settings(Settings(_env_file=None, workspace_dir="/work"))
        assert layout.workspace_dir == "/work"
        assert layout.composed_script_path == "/tmp/shellbox/composed.sh"  # nosec B108


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_levels(self):
        configure_logging("DEBUG")
        assert logging.getLogger("shellbox").level == logging.DEBUG
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_defaults_to_settings_level(self, monkeypatch):
        monkeypatch.setenv("SHELLBOX_LOG_LEVEL", "WARNING")
        configure_logging()
        assert logging.getLogger("shellbox").level == logging.WARNING
