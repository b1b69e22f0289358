"""Tunnel models.

Both tunnel kinds are frozen pydantic models. A transition builds a new,
re-validated instance which the registry swaps in, so a snapshot handed to a
caller never changes underneath it.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..common.utils import port_from_local_url


class TunnelStatus(str, Enum):
    """Tunnel status enumeration."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


LIVE_STATUSES = frozenset(
    {TunnelStatus.STARTING, TunnelStatus.RUNNING, TunnelStatus.STOPPING}
)


class TunnelKind(str, Enum):
    """Tunnel kind enumeration."""

    MANAGED = "managed"
    QUICK = "quick"


def _new_id() -> str:
    return uuid.uuid4().hex


class TunnelSnapshot(BaseModel):
    """Read-only bookkeeping exported to presentation layers."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Tunnel name (managed) or id (quick)")
    kind: TunnelKind
    status: TunnelStatus
    port: int | None = None
    pid: int | None = None
    last_error: str | None = None
    public_url: str | None = None


class BaseTunnel(BaseModel):
    """State shared by managed and quick tunnels."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id, min_length=1, description="Unique id")
    status: TunnelStatus = Field(default=TunnelStatus.STOPPED)
    pid: int | None = Field(default=None, description="PID of the live subprocess")
    last_error: str | None = Field(default=None, description="Last failure message")
    started_at: datetime | None = Field(default=None)

    @model_validator(mode="after")
    def check_pid_matches_status(self) -> "BaseTunnel":
        """A process id is present exactly while the tunnel is live."""
        live = self.status in LIVE_STATUSES
        if live and self.pid is None:
            raise ValueError(f"Status '{self.status.value}' requires a process id")
        if not live and self.pid is not None:
            raise ValueError(f"Status '{self.status.value}' cannot carry a process id")
        return self

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def is_running(self) -> bool:
        return self.status == TunnelStatus.RUNNING

    def evolve(self, **changes: Any) -> Any:
        """Return a validated copy with ``changes`` applied."""
        return type(self).model_validate({**self.model_dump(), **changes})

    def with_status(self, status: TunnelStatus, **changes: Any) -> Any:
        """Return a copy in ``status``.

        Leaving the live statuses drops the process id; entering ``starting``
        stamps ``started_at``.
        """
        update: dict[str, Any] = {"status": status}
        if status not in LIVE_STATUSES:
            update["pid"] = None
        if status == TunnelStatus.STARTING:
            update["started_at"] = datetime.now()
        update.update(changes)
        return self.evolve(**update)


class ManagedTunnel(BaseTunnel):
    """Tunnel backed by a YAML configuration file."""

    name: str = Field(min_length=1, description="Logical name, unique per registry")
    config_path: str | None = Field(default=None, description="Backing config file")
    port: int | None = Field(default=None, ge=1, le=65535, description="Local port")
    tunnel_uuid: str | None = Field(default=None, description="'tunnel:' from config")
    hostname: str | None = Field(default=None, description="First ingress hostname")
    credentials_file: str | None = Field(default=None)

    @property
    def kind(self) -> TunnelKind:
        return TunnelKind.MANAGED

    @property
    def run_identifier(self) -> str:
        """Identifier passed to ``cloudflared tunnel run``."""
        return self.tunnel_uuid or self.name

    def snapshot(self) -> TunnelSnapshot:
        return TunnelSnapshot(
            key=self.name,
            kind=self.kind,
            status=self.status,
            port=self.port,
            pid=self.pid,
            last_error=self.last_error,
        )


class QuickTunnel(BaseTunnel):
    """Ephemeral tunnel created directly against a local URL."""

    local_url: str = Field(min_length=1, description="Local endpoint being exposed")
    public_url: str | None = Field(default=None, description="Published endpoint")

    @field_validator("local_url")
    @classmethod
    def validate_local_url(cls, v: str) -> str:
        if any(ch.isspace() for ch in v):
            raise ValueError("Local URL cannot contain whitespace")
        return v

    @property
    def kind(self) -> TunnelKind:
        return TunnelKind.QUICK

    @property
    def port(self) -> int:
        return port_from_local_url(self.local_url)

    def with_public_url(self, public_url: str) -> "QuickTunnel":
        """Set the public URL once; later calls leave the first value in place."""
        if self.public_url is not None:
            return self
        return self.evolve(public_url=public_url)  # type: ignore[no-any-return]

    def snapshot(self) -> TunnelSnapshot:
        return TunnelSnapshot(
            key=self.id,
            kind=self.kind,
            status=self.status,
            port=self.port,
            pid=self.pid,
            last_error=self.last_error,
            public_url=self.public_url,
        )


class BulkFailure(BaseModel):
    """One member failure of a bulk operation."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: str
    message: str


class BulkResult(BaseModel):
    """Aggregate result of a best-effort bulk operation."""

    attempted: list[str] = Field(default_factory=list)
    failures: list[BulkFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def succeeded(self) -> list[str]:
        failed = {failure.name for failure in self.failures}
        return [name for name in self.attempted if name not in failed]
