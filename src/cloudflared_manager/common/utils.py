"""Utility functions shared across the tunnel manager."""

import re

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

DEFAULT_HTTP_PORT = 80

_LOCAL_SERVICE_PORT_RE = re.compile(r"(localhost|127\.0\.0\.1):(\d+)")


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if (
        not isinstance(port, int)
        or isinstance(port, bool)
        or not (MIN_PORT <= port <= MAX_PORT)
    ):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def port_from_local_url(local_url: str) -> int:
    """Derive the port from the trailing ``:``-separated segment of a URL.

    ``http://127.0.0.1:8080`` gives 8080. Anything that does not end in a
    plain number (no port, a trailing path) falls back to 80.
    """
    tail = local_url.rsplit(":", 1)[-1]
    try:
        port = int(tail)
    except ValueError:
        return DEFAULT_HTTP_PORT
    if not (MIN_PORT <= port <= MAX_PORT):
        return DEFAULT_HTTP_PORT
    return port


def find_local_service_port(text: str) -> int | None:
    """Return the first ``localhost:PORT`` or ``127.0.0.1:PORT`` port in text."""
    match = _LOCAL_SERVICE_PORT_RE.search(text)
    if match is None:
        return None
    port = int(match.group(2))
    if not (MIN_PORT <= port <= MAX_PORT):
        return None
    return port


def first_lines(text: str, limit: int = 3) -> str:
    """Keep the first ``limit`` non-empty lines of a multi-line message."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return "\n".join(lines[:limit])
