"""Tests for tunnel configuration discovery."""

import errno
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from cloudflared_manager.tunnel.discovery import (
    discover_tunnel_configs,
    ensure_config_dir,
    parse_tunnel_config,
    resolve_credentials_path,
)
from cloudflared_manager.tunnel.errors import (
    ConfigNotFound,
    FileMissing,
    InvalidConfiguration,
    PermissionDenied,
)


class TestParseTunnelConfig:
    """Parsing a single cloudflared YAML file."""

    def test_parses_fields(self, config_dir, tunnel_config_writer):
        path = tunnel_config_writer(config_dir, "web", port=3000, hostname="web.example.com")

        config = parse_tunnel_config(path)

        assert config.name == "web"
        assert config.path == str(path)
        assert config.port == 3000
        assert config.hostname == "web.example.com"
        assert config.tunnel_uuid == "6ff42ae2-765d-4adf-8112-31c55c1551ef"
        assert config.credentials_file.endswith(".json")

    def test_port_from_loopback_service(self, config_dir):
        path = config_dir / "api.yaml"
        path.write_text(
            "tunnel: api\ningress:\n  - service: http://127.0.0.1:9000\n"
        )
        config = parse_tunnel_config(path)
        assert config.name == "api"
        assert config.port == 9000
        assert config.hostname is None

    def test_port_from_raw_text_without_ingress(self, config_dir):
        path = config_dir / "legacy.yml"
        path.write_text("tunnel: legacy\nurl: http://localhost:4000\n")
        assert parse_tunnel_config(path).port == 4000

    def test_no_port(self, config_dir):
        path = config_dir / "static.yml"
        path.write_text("tunnel: x\ningress:\n  - service: http_status:404\n")
        assert parse_tunnel_config(path).port is None

    def test_empty_file(self, config_dir):
        path = config_dir / "empty.yml"
        path.write_text("")
        config = parse_tunnel_config(path)
        assert config.name == "empty"
        assert config.tunnel_uuid is None

    def test_missing_file(self, config_dir):
        with pytest.raises(ConfigNotFound):
            parse_tunnel_config(config_dir / "ghost.yml")

    def test_invalid_yaml(self, config_dir):
        path = config_dir / "broken.yml"
        path.write_text("tunnel: [unclosed\n")
        with pytest.raises(InvalidConfiguration, match="broken.yml"):
            parse_tunnel_config(path)

    def test_non_mapping(self, config_dir):
        path = config_dir / "list.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(InvalidConfiguration, match="mapping"):
            parse_tunnel_config(path)

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores file permissions")
    def test_unreadable_file(self, config_dir, tunnel_config_writer):
        path = tunnel_config_writer(config_dir, "secret")
        path.chmod(0o000)
        try:
            with pytest.raises(PermissionDenied):
                parse_tunnel_config(path)
        finally:
            path.chmod(0o644)


class TestResolveCredentialsPath:
    def test_absolute_path(self, tmp_path):
        creds = tmp_path / "creds.json"
        creds.write_text("{}")
        assert resolve_credentials_path(str(creds), tmp_path / "other") == creds

    def test_relative_to_config_dir(self, config_dir):
        creds = config_dir / "creds.json"
        creds.write_text("{}")
        assert resolve_credentials_path("creds.json", config_dir) == creds

    def test_missing(self, config_dir):
        with pytest.raises(FileMissing) as exc_info:
            resolve_credentials_path("/nonexistent/creds.json", config_dir)
        assert exc_info.value.path == "/nonexistent/creds.json"


class TestDiscoverTunnelConfigs:
    """Scanning the configuration directory."""

    def test_lists_yaml_files_sorted(self, config_dir, tunnel_config_writer):
        tunnel_config_writer(config_dir, "zeta", port=3001)
        tunnel_config_writer(config_dir, "Alpha", port=3002)
        (config_dir / "beta.yaml").write_text("tunnel: b\n")
        (config_dir / "notes.txt").write_text("ignored")
        (config_dir / "cert.pem").write_text("ignored")

        configs = discover_tunnel_configs(config_dir)

        assert [c.name for c in configs] == ["Alpha", "beta", "zeta"]

    def test_creates_missing_directory(self, tmp_path):
        target = tmp_path / "new" / "cloudflared"
        assert discover_tunnel_configs(target) == []
        assert target.is_dir()

    def test_unparsable_file_is_still_listed(self, config_dir):
        (config_dir / "broken.yml").write_text("tunnel: [unclosed\n")

        configs = discover_tunnel_configs(config_dir)

        assert len(configs) == 1
        assert configs[0].name == "broken"
        assert configs[0].port is None

    def test_path_is_a_file(self, tmp_path):
        target = tmp_path / "file"
        target.write_text("")
        with pytest.raises(InvalidConfiguration):
            ensure_config_dir(target)

    def test_mkdir_failure_is_invalid_configuration(self, tmp_path):
        target = tmp_path / "readonly" / "cloudflared"
        with patch.object(
            Path, "mkdir", side_effect=OSError(errno.EROFS, "Read-only file system")
        ):
            with pytest.raises(InvalidConfiguration, match="cannot create"):
                ensure_config_dir(target)

    def test_mkdir_permission_error(self, tmp_path):
        target = tmp_path / "locked" / "cloudflared"
        with patch.object(Path, "mkdir", side_effect=PermissionError("denied")):
            with pytest.raises(PermissionDenied):
                ensure_config_dir(target)

    def test_unlistable_directory_is_permission_denied(self, config_dir):
        with patch.object(Path, "iterdir", side_effect=PermissionError("denied")):
            with pytest.raises(PermissionDenied) as exc_info:
                discover_tunnel_configs(config_dir)
        assert exc_info.value.file == str(config_dir)

    def test_listing_failure_is_invalid_configuration(self, config_dir):
        with patch.object(Path, "iterdir", side_effect=OSError(errno.EIO, "I/O error")):
            with pytest.raises(InvalidConfiguration, match="cannot list"):
                discover_tunnel_configs(config_dir)
