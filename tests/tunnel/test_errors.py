"""Tests for the typed tunnel failure taxonomy."""

import pytest

from cloudflared_manager.common.exceptions import CloudflaredManagerError
from cloudflared_manager.tunnel.errors import (
    AlreadyRunning,
    ConfigNotFound,
    CreationFailed,
    ErrorKind,
    ExecutableNotFound,
    FileMissing,
    InvalidConfiguration,
    NetworkError,
    PermissionDenied,
    PortConflict,
    ProcessStartFailed,
    ProcessStopFailed,
    TunnelError,
    TunnelNotFound,
)
from cloudflared_manager.tunnel.events import NotificationLevel

ALL_ERRORS = [
    ExecutableNotFound("/usr/local/bin/cloudflared"),
    ConfigNotFound("/home/u/.cloudflared/web.yml"),
    PortConflict(8080),
    PermissionDenied("/home/u/.cloudflared/web.yml"),
    FileMissing("/home/u/.cloudflared/creds.json"),
    AlreadyRunning("web"),
    CreationFailed("quota exceeded"),
    ProcessStartFailed("exec failed"),
    ProcessStopFailed("still alive"),
    InvalidConfiguration("bad yaml"),
    NetworkError("timeout"),
    TunnelNotFound("abc123"),
]


class TestTaxonomy:
    """Shared behaviour of every failure kind."""

    @pytest.mark.parametrize("error", ALL_ERRORS, ids=lambda e: type(e).__name__)
    def test_is_tunnel_error(self, error):
        assert isinstance(error, TunnelError)
        assert isinstance(error, CloudflaredManagerError)
        assert isinstance(error.kind, ErrorKind)

    @pytest.mark.parametrize("error", ALL_ERRORS, ids=lambda e: type(e).__name__)
    def test_str_is_description(self, error):
        assert str(error) == error.description
        assert error.description

    def test_kinds_are_distinct(self):
        assert len({type(e).kind for e in ALL_ERRORS}) == len(ALL_ERRORS)

    def test_formatting_is_pure(self):
        """Formatting twice gives identical text."""
        error = PortConflict(3000, "node")
        assert error.description == error.description
        assert error.recovery_suggestion == error.recovery_suggestion

    def test_can_be_raised_and_caught_by_kind(self):
        with pytest.raises(TunnelError) as exc_info:
            raise AlreadyRunning("web")
        assert exc_info.value.kind == ErrorKind.ALREADY_RUNNING
        assert exc_info.value.name == "web"


class TestMessages:
    def test_executable_not_found_mentions_path(self):
        error = ExecutableNotFound("/opt/cf")
        assert "/opt/cf" in error.description
        assert "/opt/cf" in error.recovery_suggestion

    def test_already_running(self):
        assert AlreadyRunning("web").description == "Tunnel 'web' is already running"

    def test_not_found(self):
        assert TunnelNotFound("abc").description == "Tunnel 'abc' not found"

    def test_reason_is_kept(self):
        error = CreationFailed("name taken")
        assert error.reason == "name taken"
        assert "name taken" in error.description


class TestPortConflict:
    """Port conflict suggestions."""

    def test_without_process(self):
        error = PortConflict(8080)
        assert error.description == "Port 8080 is already in use"
        assert "8081" in error.recovery_suggestion
        assert "lsof" not in error.recovery_suggestion

    def test_with_process(self):
        error = PortConflict(8080, "python3")
        assert error.description == "Port 8080 is already in use by python3"
        assert "8081" in error.recovery_suggestion
        assert "lsof -ti:8080 | xargs kill -9" in error.recovery_suggestion


class TestToNotification:
    def test_builds_error_notification(self):
        notification = PortConflict(8080, "nginx").to_notification("web")

        assert notification.kind == "port_conflict"
        assert notification.level == NotificationLevel.ERROR
        assert notification.title == "Port in use"
        assert notification.message == "Port 8080 is already in use by nginx"
        assert "8081" in notification.recovery_suggestion
        assert notification.tunnel == "web"
