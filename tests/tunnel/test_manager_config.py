"""Tests for ManagerConfig."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from cloudflared_manager.tunnel.config import ManagerConfig
from cloudflared_manager.tunnel.errors import ExecutableNotFound


class TestManagerConfig:
    """Configuration defaults and validation."""

    def test_defaults(self):
        config = ManagerConfig()
        assert config.check_interval == 30.0
        assert config.startup_grace_period == 2.0
        assert config.stop_timeout == 5.0
        assert config.quick_tunnel_args == ["--no-autoupdate"]
        assert config.login_timeout == 300.0
        assert config.config_dir == Path(os.path.expanduser("~/.cloudflared"))

    def test_expands_user_paths(self):
        config = ManagerConfig(config_dir="~/tunnels", cloudflared_path="~/bin/cf")
        assert not str(config.config_dir).startswith("~")
        assert not config.cloudflared_path.startswith("~")

    @pytest.mark.parametrize("interval", [0, -1, 3601])
    def test_check_interval_bounds(self, interval):
        with pytest.raises(ValidationError):
            ManagerConfig(check_interval=interval)

    def test_validate_assignment(self):
        config = ManagerConfig()
        config.check_interval = 5
        assert config.check_interval == 5
        with pytest.raises(ValidationError):
            config.check_interval = 0

    def test_forbids_unknown_fields(self):
        with pytest.raises(ValidationError):
            ManagerConfig(unknown=True)

    def test_grace_cannot_exceed_timeout(self):
        with pytest.raises(ValidationError, match="startup_grace_period"):
            ManagerConfig(startup_grace_period=10, startup_timeout=5)

    def test_grace_can_be_disabled(self):
        assert ManagerConfig(startup_grace_period=None).startup_grace_period is None

    def test_empty_binary_path_rejected(self):
        with pytest.raises(ValidationError):
            ManagerConfig(cloudflared_path="   ")


class TestResolveExecutable:
    """Locating the cloudflared binary."""

    def test_explicit_path(self, fake_binary):
        assert ManagerConfig(cloudflared_path=fake_binary).resolve_executable() == fake_binary

    def test_explicit_path_missing(self, tmp_path):
        config = ManagerConfig(cloudflared_path=str(tmp_path / "none"))
        with pytest.raises(ExecutableNotFound) as exc_info:
            config.resolve_executable()
        assert exc_info.value.path == str(tmp_path / "none")

    def test_found_on_path(self):
        with patch("cloudflared_manager.tunnel.config.shutil.which") as mock_which:
            mock_which.return_value = "/usr/bin/cloudflared"
            assert ManagerConfig().resolve_executable() == "/usr/bin/cloudflared"
            mock_which.assert_called_once_with("cloudflared")

    def test_falls_back_to_well_known_paths(self, fake_binary):
        with (
            patch("cloudflared_manager.tunnel.config.shutil.which", return_value=None),
            patch(
                "cloudflared_manager.tunnel.config.WELL_KNOWN_BINARY_PATHS",
                ("/nonexistent/cloudflared", fake_binary),
            ),
        ):
            assert ManagerConfig().resolve_executable() == fake_binary

    def test_not_found_anywhere(self):
        with (
            patch("cloudflared_manager.tunnel.config.shutil.which", return_value=None),
            patch(
                "cloudflared_manager.tunnel.config.WELL_KNOWN_BINARY_PATHS",
                ("/nonexistent/cloudflared",),
            ),
        ):
            with pytest.raises(ExecutableNotFound):
                ManagerConfig().resolve_executable()
