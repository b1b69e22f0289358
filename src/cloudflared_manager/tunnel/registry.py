"""Tunnel registry holding the authoritative state of every known tunnel."""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr

from ..common.process import ProcessManager
from .errors import CreationFailed, TunnelNotFound
from .models import (
    LIVE_STATUSES,
    ManagedTunnel,
    QuickTunnel,
    TunnelKind,
    TunnelSnapshot,
    TunnelStatus,
)

logger = logging.getLogger(__name__)


class TunnelRegistry(BaseModel):
    """In-memory store for managed and quick tunnels and their processes.

    All mutations take one re-entrant lock. Callers that need a
    check-then-act sequence hold ``locked()`` around it; the same lock backs
    a condition so waiters wake on every committed change.
    """

    managed: dict[str, ManagedTunnel] = Field(
        default_factory=dict, description="Managed tunnels by name"
    )
    quick: dict[str, QuickTunnel] = Field(
        default_factory=dict, description="Quick tunnels by id"
    )
    max_tunnels: int = Field(
        default=50, ge=1, le=1000, description="Maximum number of tunnels"
    )

    _lock: Any = PrivateAttr(default_factory=threading.RLock)
    _changed: Any = PrivateAttr()
    _processes: dict[tuple[TunnelKind, str], ProcessManager] = PrivateAttr(
        default_factory=dict
    )

    def model_post_init(self, __context: Any) -> None:
        self._changed = threading.Condition(self._lock)

    @contextmanager
    def locked(self) -> Iterator["TunnelRegistry"]:
        """Hold the writer lock for a compound operation."""
        with self._lock:
            yield self

    def _commit(self) -> None:
        self._changed.notify_all()

    def wait_for(self, predicate: Callable[[], bool], timeout: float) -> bool:
        """Block until ``predicate`` holds or ``timeout`` elapses.

        Returns:
            The final value of the predicate
        """
        deadline = time.monotonic() + timeout
        with self._changed:
            while not predicate():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._changed.wait(remaining)
            return True

    def _check_capacity(self) -> None:
        if len(self.managed) + len(self.quick) >= self.max_tunnels:
            raise CreationFailed(f"Maximum tunnel limit ({self.max_tunnels}) reached")

    # Managed tunnels

    def add_managed(self, tunnel: ManagedTunnel) -> None:
        """Add a managed tunnel.

        Raises:
            CreationFailed: If the name is taken or the registry is full
        """
        with self._lock:
            if tunnel.name in self.managed:
                raise CreationFailed(f"Tunnel '{tunnel.name}' already exists")
            self._check_capacity()
            self.managed[tunnel.name] = tunnel
            self._commit()
        logger.info(f"Added managed tunnel {tunnel.name} to registry")

    def get_managed(self, name: str) -> ManagedTunnel | None:
        with self._lock:
            return self.managed.get(name)

    def require_managed(self, name: str) -> ManagedTunnel:
        """Get a managed tunnel or raise TunnelNotFound."""
        tunnel = self.get_managed(name)
        if tunnel is None:
            raise TunnelNotFound(name)
        return tunnel

    def replace_managed(self, tunnel: ManagedTunnel) -> ManagedTunnel:
        """Swap in a new version of an existing managed tunnel."""
        with self._lock:
            previous = self.managed.get(tunnel.name)
            if previous is None:
                raise TunnelNotFound(tunnel.name)
            self.managed[tunnel.name] = tunnel
            self._commit()
        if previous.status != tunnel.status:
            logger.info(
                f"Managed tunnel {tunnel.name}: {previous.status.value} -> "
                f"{tunnel.status.value}"
            )
        return tunnel

    def remove_managed(self, name: str) -> ManagedTunnel:
        with self._lock:
            if name not in self.managed:
                raise TunnelNotFound(name)
            tunnel = self.managed.pop(name)
            self._commit()
        logger.info(f"Removed managed tunnel {name} from registry")
        return tunnel

    def list_managed(self, status: TunnelStatus | None = None) -> list[ManagedTunnel]:
        with self._lock:
            tunnels = sorted(self.managed.values(), key=lambda t: t.name.lower())
        if status is not None:
            tunnels = [t for t in tunnels if t.status == status]
        return tunnels

    # Quick tunnels

    def add_quick(self, tunnel: QuickTunnel) -> None:
        """Add a quick tunnel.

        Raises:
            CreationFailed: If the id is taken or the registry is full
        """
        with self._lock:
            if tunnel.id in self.quick:
                raise CreationFailed(f"Quick tunnel '{tunnel.id}' already exists")
            self._check_capacity()
            self.quick[tunnel.id] = tunnel
            self._commit()
        logger.info(f"Added quick tunnel {tunnel.id} for {tunnel.local_url}")

    def get_quick(self, tunnel_id: str) -> QuickTunnel | None:
        with self._lock:
            return self.quick.get(tunnel_id)

    def require_quick(self, tunnel_id: str) -> QuickTunnel:
        """Get a quick tunnel or raise TunnelNotFound."""
        tunnel = self.get_quick(tunnel_id)
        if tunnel is None:
            raise TunnelNotFound(tunnel_id)
        return tunnel

    def replace_quick(self, tunnel: QuickTunnel) -> QuickTunnel:
        """Swap in a new version of an existing quick tunnel."""
        with self._lock:
            previous = self.quick.get(tunnel.id)
            if previous is None:
                raise TunnelNotFound(tunnel.id)
            self.quick[tunnel.id] = tunnel
            self._commit()
        if previous.status != tunnel.status:
            logger.info(
                f"Quick tunnel {tunnel.id}: {previous.status.value} -> "
                f"{tunnel.status.value}"
            )
        return tunnel

    def remove_quick(self, tunnel_id: str) -> QuickTunnel:
        with self._lock:
            if tunnel_id not in self.quick:
                raise TunnelNotFound(tunnel_id)
            tunnel = self.quick.pop(tunnel_id)
            self._commit()
        logger.info(f"Removed quick tunnel {tunnel_id} from registry")
        return tunnel

    def list_quick(self) -> list[QuickTunnel]:
        with self._lock:
            return list(self.quick.values())

    # Process handles

    def attach_process(
        self, kind: TunnelKind, key: str, process: ProcessManager
    ) -> None:
        """Record the process handle owned by a tunnel entry."""
        with self._lock:
            self._processes[(kind, key)] = process

    def get_process(self, kind: TunnelKind, key: str) -> ProcessManager | None:
        with self._lock:
            return self._processes.get((kind, key))

    def detach_process(self, kind: TunnelKind, key: str) -> ProcessManager | None:
        """Release the process handle of a tunnel entry."""
        with self._lock:
            return self._processes.pop((kind, key), None)

    def owns_process(self, kind: TunnelKind, key: str, process: ProcessManager) -> bool:
        """Whether ``process`` is still the handle held for the entry."""
        with self._lock:
            return self._processes.get((kind, key)) is process

    def process_items(self) -> list[tuple[TunnelKind, str, ProcessManager]]:
        with self._lock:
            return [(kind, key, pm) for (kind, key), pm in self._processes.items()]

    # Snapshots

    def live_count(self) -> int:
        with self._lock:
            tunnels = [*self.managed.values(), *self.quick.values()]
            return len([t for t in tunnels if t.status in LIVE_STATUSES])

    def snapshot(self) -> list[TunnelSnapshot]:
        """Consistent read-only view of every tunnel."""
        with self._lock:
            managed = sorted(self.managed.values(), key=lambda t: t.name.lower())
            quick = list(self.quick.values())
        return [t.snapshot() for t in managed] + [t.snapshot() for t in quick]
