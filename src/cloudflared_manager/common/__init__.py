"""Common utilities and shared functionality."""

from .exceptions import BinaryNotFoundError, CloudflaredManagerError, ProcessError
from .logging import get_logger, setup_logging
from .process import ProcessManager
from .utils import (
    MAX_PORT,
    MIN_PORT,
    find_local_service_port,
    first_lines,
    port_from_local_url,
    validate_port,
)

__all__ = [
    # Process management
    "ProcessManager",
    # Exceptions
    "CloudflaredManagerError",
    "BinaryNotFoundError",
    "ProcessError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "port_from_local_url",
    "find_local_service_port",
    "first_lines",
    "MIN_PORT",
    "MAX_PORT",
]
