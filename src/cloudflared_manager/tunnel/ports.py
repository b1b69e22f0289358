"""Local port probing and conflict detection."""

import socket
import subprocess

import psutil

from ..common.logging import get_logger
from ..common.utils import MAX_PORT, validate_port
from .errors import PortConflict

logger = get_logger(__name__)


class PortProbe:
    """Checks local TCP ports before a tunnel is spawned.

    Availability is decided by binding a socket, the same operation the
    tunnel's local service performs, so a port reported free can be bound
    right afterwards. The owner lookup is diagnostic only.
    """

    def __init__(self, host: str = "", lookup_timeout: float = 2.0):
        """Initialize port probe.

        Args:
            host: Address to bind when probing (wildcard by default)
            lookup_timeout: Timeout for the lsof fallback lookup
        """
        self.host = host
        self.lookup_timeout = lookup_timeout

    def is_available(self, port: int) -> bool:
        """Return True if ``port`` can be bound right now.

        The probe socket is always closed. A socket that cannot even be
        created counts as unavailable.
        """
        validate_port(port)
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            logger.warning("Could not create probe socket", port=port, error=str(e))
            return False

        with sock:
            try:
                sock.bind((self.host, port))
            except OSError:
                return False
        return True

    def find_occupying_process(self, port: int) -> str | None:
        """Best-effort name of the process listening on ``port``."""
        try:
            return self._lookup_with_psutil(port)
        except (psutil.Error, OSError) as e:
            logger.debug("psutil port lookup failed", port=port, error=str(e))
        return self._lookup_with_lsof(port)

    def _lookup_with_psutil(self, port: int) -> str | None:
        for conn in psutil.net_connections(kind="tcp"):
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            if conn.laddr.port != port or conn.pid is None:
                continue
            try:
                return psutil.Process(conn.pid).name()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                return None
        return None

    def _lookup_with_lsof(self, port: int) -> str | None:
        try:
            result = subprocess.run(
                ["lsof", "-i", f":{port}", "-sTCP:LISTEN"],
                capture_output=True,
                text=True,
                timeout=self.lookup_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("lsof port lookup failed", port=port, error=str(e))
            return None

        lines = result.stdout.splitlines()
        if len(lines) < 2:
            return None
        fields = lines[1].split()
        return fields[0] if fields else None

    def check_port(self, port: int) -> None:
        """Ensure ``port`` is free.

        Raises:
            PortConflict: If the port is already bound
        """
        if self.is_available(port):
            return
        occupant = self.find_occupying_process(port)
        logger.info("Port conflict detected", port=port, occupying_process=occupant)
        raise PortConflict(port, occupant)

    def find_free_port(self, start: int, max_attempts: int = 100) -> int | None:
        """First available port in ``[start, start + max_attempts)``."""
        validate_port(start, "Start port")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        end = min(start + max_attempts - 1, MAX_PORT)
        return self.find_free_port_in_range(start, end)

    def find_free_port_in_range(self, start: int, end: int) -> int | None:
        """First available port in the closed range ``[start, end]``."""
        validate_port(start, "Start port")
        validate_port(end, "End port")
        if end < start:
            raise ValueError("End port must not be lower than start port")
        for port in range(start, end + 1):
            if self.is_available(port):
                return port
        return None
