"""Discovery and parsing of managed tunnel configuration files."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..common.logging import get_logger
from ..common.utils import find_local_service_port
from .errors import (
    ConfigNotFound,
    FileMissing,
    InvalidConfiguration,
    PermissionDenied,
    TunnelError,
)

logger = get_logger(__name__)

CONFIG_SUFFIXES = (".yml", ".yaml")


class TunnelConfigFile(BaseModel):
    """Parsed view of one cloudflared YAML configuration."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Config file stem")
    path: str = Field(description="Absolute path of the config file")
    tunnel_uuid: str | None = None
    credentials_file: str | None = None
    hostname: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigNotFound(str(path)) from e
    except PermissionError as e:
        raise PermissionDenied(str(path)) from e
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidConfiguration(f"{path}: {e}") from e


def _ingress_rules(data: dict[str, Any]) -> list[dict[str, Any]]:
    ingress = data.get("ingress")
    if not isinstance(ingress, list):
        return []
    return [rule for rule in ingress if isinstance(rule, dict)]


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_tunnel_config(path: str | Path) -> TunnelConfigFile:
    """Parse a cloudflared configuration file.

    The port is taken from the first ingress service pointing at
    ``localhost`` or ``127.0.0.1``; files without a parsable ingress section
    are searched as plain text.

    Raises:
        ConfigNotFound: If the file does not exist
        PermissionDenied: If the file cannot be read
        InvalidConfiguration: If the file is not a YAML mapping
    """
    config_path = Path(path)
    text = _read_text(config_path)

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidConfiguration(f"{config_path.name}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidConfiguration(f"{config_path.name}: expected a YAML mapping")

    rules = _ingress_rules(data)
    hostname = next(
        (_optional_str(rule.get("hostname")) for rule in rules if rule.get("hostname")),
        None,
    )

    port = None
    for rule in rules:
        service = rule.get("service")
        if isinstance(service, str):
            port = find_local_service_port(service)
            if port is not None:
                break
    if port is None:
        port = find_local_service_port(text)

    return TunnelConfigFile(
        name=config_path.stem,
        path=str(config_path),
        tunnel_uuid=_optional_str(data.get("tunnel")),
        credentials_file=_optional_str(data.get("credentials-file")),
        hostname=hostname,
        port=port,
    )


def resolve_credentials_path(value: str, config_dir: str | Path) -> Path:
    """Resolve the ``credentials-file`` value of a config.

    Absolute (or ``~``) paths are used as-is; otherwise the path is looked up
    relative to the configuration directory.

    Raises:
        FileMissing: If the credentials file cannot be found
        PermissionDenied: If it exists but cannot be read
    """
    candidate = Path(os.path.expanduser(value))
    candidates = [candidate] if candidate.is_absolute() else []
    candidates.append(Path(config_dir) / value)

    for path in candidates:
        resolved = Path(os.path.normpath(path))
        if resolved.is_file():
            if not os.access(resolved, os.R_OK):
                raise PermissionDenied(str(resolved))
            return resolved

    raise FileMissing(str(candidates[0]))


def ensure_config_dir(directory: str | Path) -> Path:
    """Create the configuration directory if it does not exist.

    Raises:
        InvalidConfiguration: If the path exists but is not a directory
        PermissionDenied: If it cannot be created
        InvalidConfiguration: If creation fails for any other reason
    """
    config_dir = Path(directory)
    if config_dir.exists() and not config_dir.is_dir():
        raise InvalidConfiguration(f"{config_dir} is not a directory")
    try:
        config_dir.mkdir(parents=True, exist_ok=True)
    except PermissionError as e:
        raise PermissionDenied(str(config_dir)) from e
    except OSError as e:
        raise InvalidConfiguration(f"cannot create {config_dir}: {e}") from e
    return config_dir


def _list_dir(config_dir: Path) -> list[Path]:
    try:
        return list(config_dir.iterdir())
    except PermissionError as e:
        raise PermissionDenied(str(config_dir)) from e
    except OSError as e:
        raise InvalidConfiguration(f"cannot list {config_dir}: {e}") from e


def discover_tunnel_configs(directory: str | Path) -> list[TunnelConfigFile]:
    """List every ``*.yml``/``*.yaml`` config in ``directory`` sorted by name.

    A file that cannot be parsed is still listed, with only its name and
    path, so it stays visible; starting it reports the parse failure.
    """
    config_dir = ensure_config_dir(directory)
    configs: list[TunnelConfigFile] = []

    for entry in _list_dir(config_dir):
        if not entry.is_file() or entry.suffix.lower() not in CONFIG_SUFFIXES:
            continue
        try:
            configs.append(parse_tunnel_config(entry))
        except TunnelError as e:
            logger.warning("Skipping unreadable tunnel config", path=str(entry), error=str(e))
            configs.append(TunnelConfigFile(name=entry.stem, path=str(entry)))

    configs.sort(key=lambda c: c.name.lower())
    logger.debug("Discovered tunnel configs", directory=str(config_dir), count=len(configs))
    return configs
