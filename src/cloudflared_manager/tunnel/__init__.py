"""Tunnel supervision: models, registry, orchestration and provisioning."""

from .config import ManagerConfig
from .discovery import (
    TunnelConfigFile,
    discover_tunnel_configs,
    parse_tunnel_config,
    resolve_credentials_path,
)
from .errors import (
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
from .events import Notification, NotificationBus, NotificationLevel
from .models import (
    BulkFailure,
    BulkResult,
    ManagedTunnel,
    QuickTunnel,
    TunnelKind,
    TunnelSnapshot,
    TunnelStatus,
)
from .orchestrator import TunnelOrchestrator
from .output import LineKind, OutputEvent, classify_line, find_public_url
from .ports import PortProbe
from .provisioning import CreatedTunnel, TunnelProvisioner
from .reconciler import Reconciler
from .registry import TunnelRegistry
from .watcher import OutputWatcher

__all__ = [
    # Orchestration
    "TunnelOrchestrator",
    "TunnelRegistry",
    "ManagerConfig",
    "Reconciler",
    "OutputWatcher",
    # Models
    "ManagedTunnel",
    "QuickTunnel",
    "TunnelKind",
    "TunnelStatus",
    "TunnelSnapshot",
    "BulkResult",
    "BulkFailure",
    # Notifications
    "Notification",
    "NotificationBus",
    "NotificationLevel",
    # Ports
    "PortProbe",
    # Output parsing
    "LineKind",
    "OutputEvent",
    "classify_line",
    "find_public_url",
    # Config files
    "TunnelConfigFile",
    "discover_tunnel_configs",
    "parse_tunnel_config",
    "resolve_credentials_path",
    "TunnelProvisioner",
    "CreatedTunnel",
    # Errors
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
]
