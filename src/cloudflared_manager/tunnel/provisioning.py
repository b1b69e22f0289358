"""One-shot cloudflared commands for creating, routing and deleting named tunnels."""

import os
import re
import subprocess
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict

from ..common.logging import get_logger
from ..common.utils import first_lines, validate_port
from .errors import CreationFailed, InvalidConfiguration, NetworkError

logger = get_logger(__name__)

TUNNEL_UUID_RE = re.compile(
    r"[a-fA-F0-9]{8}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{12}"
)
CREATED_LINE_RE = re.compile(r"Created tunnel .+ with id \S+")
CREDENTIALS_PATH_RE = re.compile(r"/[^ \n]+\.json")

CATCH_ALL_SERVICE = "http_status:404"
TUNNEL_GONE_MARKERS = ("tunnel not found", "could not find tunnel")
LOGGED_IN_MARKERS = ("successfully logged in", "already logged in")


class CreatedTunnel(BaseModel):
    """Result of ``cloudflared tunnel create``."""

    model_config = ConfigDict(frozen=True)

    name: str
    tunnel_uuid: str
    credentials_file: str


def validate_tunnel_name(name: str) -> str:
    """Names are passed on the command line and used as file stems."""
    if not name or any(ch.isspace() for ch in name):
        raise InvalidConfiguration("Tunnel name cannot be empty or contain whitespace")
    if "/" in name or "\\" in name:
        raise InvalidConfiguration("Tunnel name cannot contain path separators")
    return name


def validate_hostname(hostname: str) -> str:
    if not hostname or "." not in hostname or any(ch.isspace() for ch in hostname):
        raise InvalidConfiguration(f"Invalid hostname: '{hostname}'")
    return hostname


def parse_create_output(output: str) -> tuple[str | None, str | None]:
    """Extract the tunnel UUID and credentials path from ``tunnel create``.

    The credentials path is searched after the "Created tunnel" line first,
    then anywhere in the output.
    """
    uuid_match = TUNNEL_UUID_RE.search(output)
    tunnel_uuid = uuid_match.group(0) if uuid_match else None

    credentials = None
    created = CREATED_LINE_RE.search(output)
    if created is not None:
        path_match = CREDENTIALS_PATH_RE.search(output, created.end())
        if path_match is not None:
            credentials = path_match.group(0)
    if credentials is None:
        path_match = CREDENTIALS_PATH_RE.search(output)
        if path_match is not None:
            credentials = path_match.group(0)

    return tunnel_uuid, credentials


def build_config_document(
    tunnel_uuid: str, credentials_file: str, hostname: str, port: int
) -> dict[str, object]:
    """Config mapping routing ``hostname`` to the local port, 404 otherwise."""
    return {
        "tunnel": tunnel_uuid,
        "credentials-file": credentials_file,
        "ingress": [
            {"hostname": hostname, "service": f"http://localhost:{port}"},
            {"service": CATCH_ALL_SERVICE},
        ],
    }


class TunnelProvisioner:
    """Runs cloudflared account commands and writes tunnel configs."""

    def __init__(
        self,
        cloudflared_path: str,
        config_dir: str | Path,
        command_timeout: float = 60.0,
        login_timeout: float = 300.0,
    ):
        self.cloudflared_path = cloudflared_path
        self.config_dir = Path(config_dir)
        self.command_timeout = command_timeout
        self.login_timeout = login_timeout

    def _run(
        self, args: list[str], timeout: float | None = None
    ) -> subprocess.CompletedProcess[str]:
        command = [self.cloudflared_path, *args]
        logger.info("Running cloudflared command", command=command)
        cwd = str(self.config_dir) if self.config_dir.is_dir() else None
        return subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout or self.command_timeout,
            cwd=cwd,
        )

    def create_tunnel(self, name: str) -> CreatedTunnel:
        """Create a named tunnel in the Cloudflare account.

        Raises:
            InvalidConfiguration: If the name is empty or contains whitespace
            CreationFailed: If the command fails or its output is unusable
        """
        validate_tunnel_name(name)
        try:
            result = self._run(["tunnel", "create", name])
        except subprocess.TimeoutExpired as e:
            raise CreationFailed(f"'tunnel create' timed out after {e.timeout}s") from e
        except OSError as e:
            raise CreationFailed(str(e)) from e

        output = result.stdout.strip()
        if result.returncode != 0:
            detail = result.stderr.strip() or (
                f"unknown error (exit code {result.returncode}); "
                "are you logged in to your Cloudflare account?"
            )
            logger.error("Tunnel creation failed", name=name, error=detail)
            raise CreationFailed(first_lines(detail))

        # cloudflared logs to stderr, the credentials line can land on either
        tunnel_uuid, credentials = parse_create_output(f"{output}\n{result.stderr}")
        if tunnel_uuid is None or credentials is None:
            raise CreationFailed(
                f"UUID ({tunnel_uuid or 'none'}) or credentials path "
                f"({credentials or 'none'}) not found in cloudflared output"
            )

        credentials = os.path.normpath(credentials)
        if not os.path.isfile(credentials):
            raise CreationFailed(f"Credentials file not found: {credentials}")

        logger.info("Tunnel created", name=name, tunnel_uuid=tunnel_uuid)
        return CreatedTunnel(
            name=name, tunnel_uuid=tunnel_uuid, credentials_file=credentials
        )

    def config_path_for(self, name: str) -> Path:
        stem = re.sub(r"\.ya?ml$", "", name).replace("/", "_").replace("\\", "_")
        if not stem:
            raise InvalidConfiguration("Invalid config file name")
        return self.config_dir / f"{stem}.yml"

    def write_config(
        self,
        name: str,
        tunnel_uuid: str,
        credentials_file: str,
        hostname: str,
        port: int,
    ) -> Path:
        """Write ``<config_dir>/<name>.yml`` for a created tunnel.

        Raises:
            CreationFailed: If the file already exists or cannot be written
        """
        validate_port(port)
        validate_hostname(hostname)
        target = self.config_path_for(name)
        if target.exists():
            raise CreationFailed(f"Configuration file already exists: {target}")

        document = build_config_document(
            tunnel_uuid, os.path.normpath(credentials_file), hostname, port
        )
        header = f"# Tunnel UUID: {tunnel_uuid}\n# Config File: {target}\n\n"
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(target, "x", encoding="utf-8") as f:
                f.write(header)
                yaml.safe_dump(document, f, default_flow_style=False, sort_keys=False)
        except FileExistsError as e:
            raise CreationFailed(f"Configuration file already exists: {target}") from e
        except OSError as e:
            raise CreationFailed(f"Could not write {target}: {e}") from e

        logger.info("Tunnel config written", name=name, path=str(target))
        return target

    def route_dns(self, identifier: str, hostname: str) -> str:
        """Point ``hostname`` at the tunnel with a CNAME record.

        An already existing record counts as success.

        Returns:
            Human readable outcome

        Raises:
            InvalidConfiguration: If the hostname is malformed
            NetworkError: If cloudflared reports a failure
        """
        validate_hostname(hostname)
        try:
            result = self._run(["tunnel", "route", "dns", identifier, hostname])
        except subprocess.TimeoutExpired as e:
            raise NetworkError(f"'tunnel route dns' timed out after {e.timeout}s") from e
        except OSError as e:
            raise NetworkError(str(e)) from e

        output = result.stdout.strip()
        errors = result.stderr.strip()
        if result.returncode != 0:
            detail = errors or (
                f"DNS routing failed (exit code {result.returncode}); "
                "is the domain on Cloudflare?"
            )
            logger.error("DNS routing failed", hostname=hostname, error=detail)
            raise NetworkError(first_lines(detail))

        if "already exists" in output.lower() or "already exists" in errors.lower():
            logger.info("DNS record already exists", hostname=hostname)
            return f"DNS record for {hostname} already exists"
        logger.info("DNS routed", identifier=identifier, hostname=hostname)
        return output or f"DNS record for {hostname} added"

    def delete_tunnel(self, identifier: str) -> str:
        """Delete a named tunnel from the Cloudflare account.

        A tunnel Cloudflare no longer knows counts as deleted.

        Args:
            identifier: Tunnel UUID, or its name when no UUID is known

        Raises:
            InvalidConfiguration: If the identifier is empty
            NetworkError: If cloudflared reports a failure
        """
        if not identifier.strip():
            raise InvalidConfiguration("Tunnel identifier cannot be empty")
        try:
            result = self._run(["tunnel", "delete", identifier])
        except subprocess.TimeoutExpired as e:
            raise NetworkError(f"'tunnel delete' timed out after {e.timeout}s") from e
        except OSError as e:
            raise NetworkError(str(e)) from e

        if result.returncode == 0:
            logger.info("Tunnel deleted", identifier=identifier)
            return f"Tunnel {identifier} deleted"

        errors = result.stderr.strip()
        if any(marker in errors.lower() for marker in TUNNEL_GONE_MARKERS):
            logger.info("Tunnel already gone from Cloudflare", identifier=identifier)
            return f"Tunnel {identifier} was already deleted"

        detail = errors or f"unknown error (exit code {result.returncode})"
        logger.error("Tunnel deletion failed", identifier=identifier, error=detail)
        raise NetworkError(first_lines(detail))

    def login(self) -> str:
        """Run ``cloudflared tunnel login`` and wait for the browser flow.

        Returns:
            Human readable outcome

        Raises:
            NetworkError: If the command fails or the login is not finished in time
        """
        try:
            result = self._run(["tunnel", "login"], timeout=self.login_timeout)
        except subprocess.TimeoutExpired as e:
            raise NetworkError(
                f"'tunnel login' timed out after {e.timeout}s; "
                "finish the login in your browser and try again"
            ) from e
        except OSError as e:
            raise NetworkError(str(e)) from e

        output = result.stdout.strip()
        errors = result.stderr.strip()
        if result.returncode != 0:
            detail = errors or f"login failed (exit code {result.returncode})"
            logger.error("Cloudflare login failed", error=detail)
            raise NetworkError(first_lines(detail))

        combined = f"{output}\n{errors}".lower()
        if any(marker in combined for marker in LOGGED_IN_MARKERS):
            logger.info("Logged in to Cloudflare")
            return "Logged in to Cloudflare"
        logger.info("Cloudflare login handed off to the browser")
        return output or "Continue the login in your browser"
