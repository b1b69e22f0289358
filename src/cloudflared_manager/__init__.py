"""cloudflared manager - supervision of local cloudflared tunnel processes."""

from .common.exceptions import (
    BinaryNotFoundError,
    CloudflaredManagerError,
    ProcessError,
)
from .common.logging import get_logger, setup_logging
from .common.process import ProcessManager
from .common.utils import validate_port
from .tunnel import (
    AlreadyRunning,
    BulkResult,
    ConfigNotFound,
    CreationFailed,
    ErrorKind,
    ExecutableNotFound,
    FileMissing,
    InvalidConfiguration,
    ManagedTunnel,
    ManagerConfig,
    NetworkError,
    Notification,
    NotificationBus,
    NotificationLevel,
    PermissionDenied,
    PortConflict,
    PortProbe,
    ProcessStartFailed,
    ProcessStopFailed,
    QuickTunnel,
    TunnelError,
    TunnelKind,
    TunnelNotFound,
    TunnelOrchestrator,
    TunnelRegistry,
    TunnelSnapshot,
    TunnelStatus,
)

# Setup logging on package initialization
setup_logging()

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # Orchestration
    "TunnelOrchestrator",
    "TunnelRegistry",
    "ManagerConfig",
    "PortProbe",
    "ProcessManager",
    # Models
    "ManagedTunnel",
    "QuickTunnel",
    "TunnelKind",
    "TunnelStatus",
    "TunnelSnapshot",
    "BulkResult",
    # Notifications
    "Notification",
    "NotificationBus",
    "NotificationLevel",
    # Exceptions
    "CloudflaredManagerError",
    "BinaryNotFoundError",
    "ProcessError",
    "ErrorKind",
    "TunnelError",
    "ExecutableNotFound",
    "ConfigNotFound",
    "PortConflict",
    "PermissionDenied",
    "FileMissing",
    "AlreadyRunning",
    "CreationFailed",
    "ProcessStartFailed",
    "ProcessStopFailed",
    "InvalidConfiguration",
    "NetworkError",
    "TunnelNotFound",
    # Utilities
    "get_logger",
    "setup_logging",
    "validate_port",
]
