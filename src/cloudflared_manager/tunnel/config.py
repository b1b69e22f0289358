"""Manager configuration model."""

import os
import shutil
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ExecutableNotFound

CLOUDFLARED_BINARY = "cloudflared"

# Install locations checked when the binary is not on PATH
WELL_KNOWN_BINARY_PATHS = (
    "/opt/homebrew/bin/cloudflared",
    "/usr/local/bin/cloudflared",
    "/usr/bin/cloudflared",
)

DEFAULT_CONFIG_DIR = "~/.cloudflared"


class ManagerConfig(BaseModel):
    """Configuration for launching and supervising cloudflared tunnels."""

    model_config = ConfigDict(
        str_strip_whitespace=True, validate_assignment=True, extra="forbid"
    )

    cloudflared_path: str | None = Field(
        default=None, description="cloudflared binary (auto-detected if None)"
    )
    config_dir: Path = Field(
        default=Path(DEFAULT_CONFIG_DIR),
        validate_default=True,
        description="Directory scanned for managed tunnel YAML files",
    )
    check_interval: float = Field(
        default=30.0, gt=0, le=3600, description="Reconciliation interval in seconds"
    )
    startup_grace_period: float | None = Field(
        default=2.0,
        gt=0,
        description="Seconds after which a live process counts as running",
    )
    startup_timeout: float = Field(
        default=30.0, gt=0, description="Seconds allowed to reach running"
    )
    stop_timeout: float = Field(
        default=5.0, gt=0, le=60, description="Graceful shutdown timeout"
    )
    kill_timeout: float = Field(
        default=2.0, gt=0, le=30, description="Wait after the forced kill"
    )
    lookup_timeout: float = Field(
        default=2.0, gt=0, le=30, description="Port owner lookup timeout"
    )
    command_timeout: float = Field(
        default=60.0, gt=0, description="Timeout for one-shot cloudflared commands"
    )
    login_timeout: float = Field(
        default=300.0, gt=0, description="Timeout for the browser login command"
    )
    max_tunnels: int = Field(
        default=50, ge=1, le=1000, description="Maximum tunnels in the registry"
    )
    watch_config_dir: bool = Field(
        default=True, description="Rescan config_dir on every reconciliation tick"
    )
    quick_tunnel_args: list[str] = Field(
        default_factory=lambda: ["--no-autoupdate"],
        description="Extra arguments appended to quick tunnel invocations",
    )

    @field_validator("config_dir")
    @classmethod
    def expand_config_dir(cls, v: Path) -> Path:
        return Path(os.path.expanduser(str(v)))

    @field_validator("cloudflared_path")
    @classmethod
    def expand_cloudflared_path(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not v:
            raise ValueError("cloudflared_path cannot be empty")
        return os.path.expanduser(v)

    @model_validator(mode="after")
    def check_timeouts(self) -> "ManagerConfig":
        if (
            self.startup_grace_period is not None
            and self.startup_grace_period > self.startup_timeout
        ):
            raise ValueError("startup_grace_period cannot exceed startup_timeout")
        return self

    def resolve_executable(self) -> str:
        """Return the cloudflared binary to run.

        Raises:
            ExecutableNotFound: If no executable binary can be located
        """
        if self.cloudflared_path is not None:
            if os.path.isfile(self.cloudflared_path) and os.access(
                self.cloudflared_path, os.X_OK
            ):
                return self.cloudflared_path
            raise ExecutableNotFound(self.cloudflared_path)

        found = shutil.which(CLOUDFLARED_BINARY)
        if found is not None:
            return found

        for candidate in WELL_KNOWN_BINARY_PATHS:
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate

        raise ExecutableNotFound(WELL_KNOWN_BINARY_PATHS[0])
