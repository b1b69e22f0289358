"""Typed failure kinds for tunnel operations.

Every failure that leaves the orchestrator is one of the classes below. Each
carries its parameters as attributes and formats itself without touching any
presentation layer, so an alert dialog, a log line and a desktop notification
can all consume the same value.
"""

from enum import Enum
from typing import TYPE_CHECKING, ClassVar

from ..common.exceptions import CloudflaredManagerError

if TYPE_CHECKING:
    from .events import Notification

CLOUDFLARED_INSTALL_URL = (
    "https://developers.cloudflare.com/cloudflare-one/connections/"
    "connect-apps/install-and-setup/installation/"
)


class ErrorKind(str, Enum):
    """Closed set of failure kinds."""

    EXECUTABLE_NOT_FOUND = "executable_not_found"
    CONFIG_NOT_FOUND = "config_not_found"
    PORT_CONFLICT = "port_conflict"
    PERMISSION_DENIED = "permission_denied"
    FILE_MISSING = "file_missing"
    ALREADY_RUNNING = "already_running"
    CREATION_FAILED = "creation_failed"
    PROCESS_START_FAILED = "process_start_failed"
    PROCESS_STOP_FAILED = "process_stop_failed"
    INVALID_CONFIGURATION = "invalid_configuration"
    NETWORK_ERROR = "network_error"
    NOT_FOUND = "not_found"


class TunnelError(CloudflaredManagerError):
    """Base class for all typed tunnel failures."""

    kind: ClassVar[ErrorKind]
    title: ClassVar[str] = "Tunnel error"

    def __init__(self) -> None:
        super().__init__(self.description)

    @property
    def description(self) -> str:
        """Canonical one-line description."""
        raise NotImplementedError

    @property
    def recovery_suggestion(self) -> str | None:
        """Optional multi-step recovery guidance."""
        return None

    def to_notification(self, tunnel: str | None = None) -> "Notification":
        """Build the structured notification for this failure."""
        from .events import Notification, NotificationLevel  # noqa: PLC0415

        return Notification(
            kind=self.kind.value,
            level=NotificationLevel.ERROR,
            title=self.title,
            message=self.description,
            recovery_suggestion=self.recovery_suggestion,
            tunnel=tunnel,
        )

    def __str__(self) -> str:
        return self.description

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r})"


class ExecutableNotFound(TunnelError):
    kind = ErrorKind.EXECUTABLE_NOT_FOUND
    title = "cloudflared not found"

    def __init__(self, path: str):
        self.path = path
        super().__init__()

    @property
    def description(self) -> str:
        return f"cloudflared executable not found: {self.path}"

    @property
    def recovery_suggestion(self) -> str:
        return (
            "Steps:\n"
            f"1. Download cloudflared: {CLOUDFLARED_INSTALL_URL}\n"
            "2. Set the correct path in the manager configuration\n"
            "3. Or install it with: brew install cloudflare/cloudflare/cloudflared\n"
            "\n"
            f"Expected location: {self.path}"
        )


class ConfigNotFound(TunnelError):
    kind = ErrorKind.CONFIG_NOT_FOUND
    title = "Configuration missing"

    def __init__(self, path: str):
        self.path = path
        super().__init__()

    @property
    def description(self) -> str:
        return f"Configuration file not found: {self.path}"

    @property
    def recovery_suggestion(self) -> str:
        return "Make sure the configuration file exists."


class PortConflict(TunnelError):
    kind = ErrorKind.PORT_CONFLICT
    title = "Port in use"

    def __init__(self, port: int, occupying_process: str | None = None):
        self.port = port
        self.occupying_process = occupying_process
        super().__init__()

    @property
    def description(self) -> str:
        if self.occupying_process:
            return f"Port {self.port} is already in use by {self.occupying_process}"
        return f"Port {self.port} is already in use"

    @property
    def recovery_suggestion(self) -> str:
        suggestion = (
            "Options:\n"
            f"1. Use a different port (e.g. {self.port + 1})\n"
            "2. Stop the conflicting service"
        )
        if self.occupying_process is not None:
            suggestion += f"\n3. In a terminal: lsof -ti:{self.port} | xargs kill -9"
        return suggestion


class PermissionDenied(TunnelError):
    kind = ErrorKind.PERMISSION_DENIED
    title = "Permission denied"

    def __init__(self, file: str):
        self.file = file
        super().__init__()

    @property
    def description(self) -> str:
        return f"No permission to access file: {self.file}"

    @property
    def recovery_suggestion(self) -> str:
        return (
            "Steps:\n"
            "1. Open a terminal\n"
            f"2. Run: sudo chmod 644 '{self.file}'\n"
            "3. Enter your administrator password\n"
            "4. Try again"
        )


class FileMissing(TunnelError):
    kind = ErrorKind.FILE_MISSING
    title = "File missing"

    def __init__(self, path: str):
        self.path = path
        super().__init__()

    @property
    def description(self) -> str:
        return f"Required file not found: {self.path}"

    @property
    def recovery_suggestion(self) -> str:
        return (
            "Check that:\n"
            f"1. The file exists: {self.path}\n"
            "2. The path in the tunnel configuration is correct"
        )


class AlreadyRunning(TunnelError):
    kind = ErrorKind.ALREADY_RUNNING
    title = "Tunnel already running"

    def __init__(self, name: str):
        self.name = name
        super().__init__()

    @property
    def description(self) -> str:
        return f"Tunnel '{self.name}' is already running"

    @property
    def recovery_suggestion(self) -> str:
        return "Stop the tunnel and start it again."


class CreationFailed(TunnelError):
    kind = ErrorKind.CREATION_FAILED
    title = "Tunnel creation failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__()

    @property
    def description(self) -> str:
        return f"Tunnel could not be created: {self.reason}"

    @property
    def recovery_suggestion(self) -> str:
        return (
            f"Error detail: {self.reason}\n"
            "Check your Cloudflare account and network connection."
        )


class ProcessStartFailed(TunnelError):
    kind = ErrorKind.PROCESS_START_FAILED
    title = "Process start failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__()

    @property
    def description(self) -> str:
        return f"Process could not be started: {self.reason}"

    @property
    def recovery_suggestion(self) -> str:
        return "Check system resources and try again."


class ProcessStopFailed(TunnelError):
    kind = ErrorKind.PROCESS_STOP_FAILED
    title = "Process stop failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__()

    @property
    def description(self) -> str:
        return f"Process could not be stopped: {self.reason}"

    @property
    def recovery_suggestion(self) -> str:
        return "Terminate the cloudflared process manually and refresh."


class InvalidConfiguration(TunnelError):
    kind = ErrorKind.INVALID_CONFIGURATION
    title = "Invalid configuration"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__()

    @property
    def description(self) -> str:
        return f"Invalid configuration: {self.reason}"

    @property
    def recovery_suggestion(self) -> str:
        return "Check the configuration file or create it again."


class NetworkError(TunnelError):
    kind = ErrorKind.NETWORK_ERROR
    title = "Network error"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__()

    @property
    def description(self) -> str:
        return f"Network error: {self.reason}"

    @property
    def recovery_suggestion(self) -> str:
        return "Check your internet connection and try again."


class TunnelNotFound(TunnelError):
    kind = ErrorKind.NOT_FOUND
    title = "Tunnel not found"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__()

    @property
    def description(self) -> str:
        return f"Tunnel '{self.identifier}' not found"

    @property
    def recovery_suggestion(self) -> str:
        return "Refresh the tunnel list and try again."
