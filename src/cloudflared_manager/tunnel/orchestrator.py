"""Tunnel orchestrator: the single entry point for tunnel lifecycle operations."""

from collections.abc import Callable
from pathlib import Path
from types import TracebackType
from typing import Any, Literal, NoReturn
from urllib.parse import urlsplit

from pydantic import ValidationError

from ..common.exceptions import BinaryNotFoundError, ProcessError
from ..common.logging import get_logger
from ..common.process import ProcessManager
from .config import ManagerConfig
from .discovery import discover_tunnel_configs, parse_tunnel_config, resolve_credentials_path
from .errors import (
    AlreadyRunning,
    ConfigNotFound,
    CreationFailed,
    ExecutableNotFound,
    InvalidConfiguration,
    NetworkError,
    PermissionDenied,
    PortConflict,
    ProcessStartFailed,
    ProcessStopFailed,
    TunnelError,
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
from .output import LineKind, OutputEvent
from .ports import PortProbe
from .provisioning import TunnelProvisioner
from .reconciler import Reconciler
from .registry import TunnelRegistry
from .watcher import OutputWatcher

logger = get_logger(__name__)

ProcessFactory = Callable[..., ProcessManager]
Tunnel = ManagedTunnel | QuickTunnel
WatchKey = tuple[TunnelKind, str]


class TunnelOrchestrator:
    """Spawns, supervises and stops cloudflared tunnel subprocesses.

    Managed tunnels are keyed by name, quick tunnels by their generated id.
    Every failure leaves as a ``TunnelError``; the same failure is also
    published on the notification bus.

    Example:
        >>> with TunnelOrchestrator(ManagerConfig()) as orchestrator:
        ...     tunnel_id = orchestrator.start_quick_tunnel("http://localhost:8080")
        ...     url = orchestrator.wait_for_public_url(tunnel_id, timeout=30)
    """

    def __init__(
        self,
        config: ManagerConfig | None = None,
        registry: TunnelRegistry | None = None,
        port_probe: PortProbe | None = None,
        notifications: NotificationBus | None = None,
        process_factory: ProcessFactory = ProcessManager,
    ):
        """Initialize the orchestrator.

        Args:
            config: Manager configuration (defaults when None)
            registry: Tunnel registry (a fresh one when None)
            port_probe: Port checker used before each spawn
            notifications: Bus receiving lifecycle notifications
            process_factory: Callable building a ProcessManager
        """
        self.config = config or ManagerConfig()
        self.registry = registry or TunnelRegistry(max_tunnels=self.config.max_tunnels)
        self.port_probe = port_probe or PortProbe(
            lookup_timeout=self.config.lookup_timeout
        )
        self.notifications = notifications or NotificationBus()
        self._process_factory = process_factory
        self._watchers: dict[WatchKey, OutputWatcher] = {}
        self._reconciler = Reconciler(self._tick, self.config.check_interval)
        self._opened = False
        logger.info(
            "Initialized TunnelOrchestrator",
            config_dir=str(self.config.config_dir),
            check_interval=self.config.check_interval,
        )

    # Lifecycle

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self) -> "TunnelOrchestrator":
        """Discover managed tunnels and start the reconciliation loop."""
        if self._opened:
            return self
        try:
            self.refresh_managed_tunnels()
        except TunnelError as e:
            logger.warning("Initial tunnel discovery failed", error=str(e))
            self.notifications.emit(e.to_notification())
        self._reconciler.start()
        self._opened = True
        return self

    def close(self) -> BulkResult:
        """Stop the reconciliation loop and every tunnel subprocess."""
        self._reconciler.stop()
        result = self.stop_all()
        with self.registry.locked():
            watchers = list(self._watchers.values())
            self._watchers.clear()
        for watcher in watchers:
            watcher.cancel()
            watcher.join(self.config.kill_timeout)
        self._opened = False
        logger.info("TunnelOrchestrator closed", failures=len(result.failures))
        return result

    def __enter__(self) -> "TunnelOrchestrator":
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.close()
        return False

    @property
    def check_interval(self) -> float:
        return self._reconciler.interval

    def set_check_interval(self, seconds: float) -> None:
        """Change the reconciliation interval, effective from the next wait."""
        try:
            self.config.check_interval = seconds
        except ValidationError as e:
            raise InvalidConfiguration(f"check_interval: {seconds}") from e
        self._reconciler.interval = seconds

    # Helpers

    def _get(self, kind: TunnelKind, key: str) -> Tunnel | None:
        if kind == TunnelKind.MANAGED:
            return self.registry.get_managed(key)
        return self.registry.get_quick(key)

    def _replace(self, tunnel: Tunnel) -> Any:
        if isinstance(tunnel, ManagedTunnel):
            return self.registry.replace_managed(tunnel)
        return self.registry.replace_quick(tunnel)

    def _notify(
        self,
        kind: str,
        title: str,
        message: str,
        tunnel: str | None = None,
        level: NotificationLevel = NotificationLevel.INFO,
    ) -> None:
        self.notifications.emit(
            Notification(kind=kind, level=level, title=title, message=message, tunnel=tunnel)
        )

    def _spawn(self, binary: str, args: list[str], cwd: str | None = None) -> ProcessManager:
        try:
            process = self._process_factory(binary, args, cwd=cwd)
            process.start()
        except BinaryNotFoundError as e:
            raise ExecutableNotFound(binary) from e
        except ProcessError as e:
            raise ProcessStartFailed(str(e)) from e
        return process

    def _watch(self, kind: TunnelKind, key: str, process: ProcessManager) -> None:
        """Attach an output watcher and its startup timers. Caller holds the lock."""
        watcher = OutputWatcher(
            name=key,
            process=process,
            on_event=lambda event: self._on_output(kind, key, process, event),
            on_exit=lambda code: self._on_exit(kind, key, process, code),
            exit_wait=self.config.stop_timeout,
        )
        previous = self._watchers.pop((kind, key), None)
        if previous is not None:
            previous.cancel()
        self._watchers[(kind, key)] = watcher

        grace = self.config.startup_grace_period
        if kind == TunnelKind.MANAGED and grace is not None:
            watcher.schedule(grace, lambda: self._confirm_started(kind, key, process))
        watcher.schedule(
            self.config.startup_timeout,
            lambda: self._enforce_startup_timeout(kind, key, process),
        )
        watcher.start()

    def _release(self, kind: TunnelKind, key: str) -> OutputWatcher | None:
        """Drop the handle and watcher of an entry. Caller holds the lock."""
        self.registry.detach_process(kind, key)
        return self._watchers.pop((kind, key), None)

    # Output and exit handling

    def _on_output(
        self, kind: TunnelKind, key: str, process: ProcessManager, event: OutputEvent
    ) -> None:
        ready_url = None
        became_running = False
        with self.registry.locked():
            if not self.registry.owns_process(kind, key, process):
                return
            tunnel = self._get(kind, key)
            if tunnel is None or tunnel.status not in (
                TunnelStatus.STARTING,
                TunnelStatus.RUNNING,
            ):
                return

            if isinstance(tunnel, QuickTunnel):
                if (
                    event.kind == LineKind.PUBLIC_URL
                    and event.value
                    and tunnel.public_url is None
                ):
                    updated = tunnel.with_public_url(event.value)
                    self._replace(
                        updated.with_status(TunnelStatus.RUNNING, last_error=None)
                    )
                    ready_url = event.value
                elif event.kind == LineKind.ERROR and tunnel.public_url is None:
                    self._replace(tunnel.evolve(last_error=event.value))
            elif tunnel.status == TunnelStatus.STARTING:
                if event.kind == LineKind.READY:
                    self._replace(
                        tunnel.with_status(TunnelStatus.RUNNING, last_error=None)
                    )
                    became_running = True
                elif event.kind == LineKind.ERROR:
                    self._replace(tunnel.evolve(last_error=event.value))

        if ready_url is not None:
            logger.info("Quick tunnel published", tunnel_id=key, public_url=ready_url)
            self._notify(
                "quick_tunnel_ready",
                "Quick tunnel ready",
                f"Public URL: {ready_url}",
                tunnel=key,
                level=NotificationLevel.SUCCESS,
            )
        if became_running:
            self._announce_running(key)

    def _announce_running(self, name: str) -> None:
        logger.info("Managed tunnel connected", name=name)
        self._notify(
            "tunnel_running",
            "Tunnel running",
            f"Tunnel '{name}' is running",
            tunnel=name,
            level=NotificationLevel.SUCCESS,
        )

    def _confirm_started(self, kind: TunnelKind, key: str, process: ProcessManager) -> None:
        with self.registry.locked():
            if not self.registry.owns_process(kind, key, process):
                return
            tunnel = self._get(kind, key)
            if tunnel is None or tunnel.status != TunnelStatus.STARTING:
                return
            if not process.is_running():
                return
            self._replace(tunnel.with_status(TunnelStatus.RUNNING))
        self._announce_running(key)

    def _enforce_startup_timeout(
        self, kind: TunnelKind, key: str, process: ProcessManager
    ) -> None:
        timeout = self.config.startup_timeout
        with self.registry.locked():
            if not self.registry.owns_process(kind, key, process):
                return
            tunnel = self._get(kind, key)
            if tunnel is None or tunnel.status != TunnelStatus.STARTING:
                return
            self._replace(tunnel.with_status(TunnelStatus.STOPPING))

        error = ProcessStartFailed(f"tunnel did not become ready within {timeout:g}s")
        logger.warning("Tunnel startup timed out", tunnel=key, timeout=timeout)
        try:
            process.stop(self.config.stop_timeout, self.config.kill_timeout)
        except ProcessError as e:
            logger.error("Failed to stop timed out tunnel", tunnel=key, error=str(e))

        with self.registry.locked():
            if not self.registry.owns_process(kind, key, process):
                return
            watcher = self._release(kind, key)
            tunnel = self._get(kind, key)
            if tunnel is not None:
                self._replace(
                    tunnel.with_status(TunnelStatus.ERROR, last_error=error.description)
                )
        if watcher is not None:
            watcher.cancel()
        self.notifications.emit(error.to_notification(key))

    def _on_exit(
        self, kind: TunnelKind, key: str, process: ProcessManager, code: int | None
    ) -> None:
        watcher = self._watchers.get((kind, key))
        errors = watcher.recent_errors if watcher is not None else []
        tail = watcher.tail if watcher is not None else []
        self._settle_exit(kind, key, process, code, errors, tail)

    def _settle_exit(
        self,
        kind: TunnelKind,
        key: str,
        process: ProcessManager,
        code: int | None,
        errors: list[str],
        tail: list[str],
    ) -> None:
        """Record the exit of a process nobody asked to stop.

        Shared by the output watcher and the reconciliation tick; whichever
        gets here first settles the entry, the other finds the handle gone.
        """
        with self.registry.locked():
            if not self.registry.owns_process(kind, key, process):
                return
            if code is None and process.is_running():
                return
            tunnel = self._get(kind, key)
            if tunnel is None:
                self._release(kind, key)
                return
            # The caller stopping it settles the final state
            if tunnel.status == TunnelStatus.STOPPING:
                return

            watcher = self._release(kind, key)
            unpublished = isinstance(tunnel, QuickTunnel) and tunnel.public_url is None
            if code == 0 and not unpublished:
                settled = self._replace(tunnel.with_status(TunnelStatus.STOPPED))
            else:
                message = self._exit_message(code, errors, tail, unpublished)
                settled = self._replace(
                    tunnel.with_status(TunnelStatus.ERROR, last_error=message)
                )

        if watcher is not None:
            watcher.cancel()

        if settled.status == TunnelStatus.STOPPED:
            logger.info("Tunnel process exited", tunnel=key, exit_code=code)
            self._notify(
                "tunnel_stopped", "Tunnel stopped", f"Tunnel '{key}' exited", tunnel=key
            )
        else:
            logger.error(
                "Tunnel process exited unexpectedly",
                tunnel=key,
                exit_code=code,
                error=settled.last_error,
            )
            self._notify(
                "tunnel_exited",
                "Tunnel stopped unexpectedly",
                settled.last_error or f"Tunnel '{key}' exited",
                tunnel=key,
                level=NotificationLevel.ERROR,
            )

    @staticmethod
    def _exit_message(
        code: int | None, errors: list[str], tail: list[str], unpublished: bool
    ) -> str:
        if errors:
            return "\n".join(errors)
        code_text = "unknown" if code is None else str(code)
        if unpublished:
            message = f"could not start (exit code {code_text})"
            if tail:
                message += "\n" + "\n".join(tail[-3:])
            return message
        return f"exited unexpectedly (code {code_text})"

    # Managed tunnels

    def refresh_managed_tunnels(self) -> list[ManagedTunnel]:
        """Sync managed tunnels with the configuration directory.

        New configs are registered as stopped, known ones get their metadata
        refreshed, and tunnels whose file disappeared are stopped and removed.
        """
        configs = discover_tunnel_configs(self.config.config_dir)
        seen: set[str] = set()

        with self.registry.locked():
            for cfg in configs:
                if cfg.name in seen:
                    logger.warning("Duplicate tunnel config name", name=cfg.name, path=cfg.path)
                    continue
                seen.add(cfg.name)
                metadata = {
                    "config_path": cfg.path,
                    "port": cfg.port,
                    "tunnel_uuid": cfg.tunnel_uuid,
                    "hostname": cfg.hostname,
                    "credentials_file": cfg.credentials_file,
                }
                existing = self.registry.get_managed(cfg.name)
                if existing is None:
                    try:
                        self.registry.add_managed(ManagedTunnel(name=cfg.name, **metadata))
                    except CreationFailed as e:
                        logger.warning("Tunnel not registered", name=cfg.name, error=str(e))
                    continue
                updated = existing.evolve(**metadata)
                if updated != existing:
                    self.registry.replace_managed(updated)

            vanished = [t for t in self.registry.list_managed() if t.name not in seen]

        for tunnel in vanished:
            logger.info("Tunnel config removed", name=tunnel.name)
            if self.registry.get_process(TunnelKind.MANAGED, tunnel.name) is not None:
                try:
                    self.stop_managed_tunnel(tunnel.name)
                except TunnelError as e:
                    logger.error("Failed to stop removed tunnel", name=tunnel.name, error=str(e))
            with self.registry.locked():
                if self.registry.get_managed(tunnel.name) is not None:
                    watcher = self._release(TunnelKind.MANAGED, tunnel.name)
                    if watcher is not None:
                        watcher.cancel()
                    self.registry.remove_managed(tunnel.name)

        return self.registry.list_managed()

    def _prepare_managed(self, tunnel: ManagedTunnel) -> ManagedTunnel:
        """Re-read the backing config so a start always uses current values."""
        if tunnel.config_path is None:
            raise ConfigNotFound(tunnel.name)
        parsed = parse_tunnel_config(tunnel.config_path)
        credentials = None
        if parsed.credentials_file is not None:
            credentials = str(
                resolve_credentials_path(
                    parsed.credentials_file, Path(tunnel.config_path).parent
                )
            )
        return tunnel.evolve(
            port=parsed.port,
            tunnel_uuid=parsed.tunnel_uuid,
            hostname=parsed.hostname,
            credentials_file=credentials,
        )

    def start_managed_tunnel(self, name: str) -> ManagedTunnel:
        """Start a managed tunnel from its configuration file.

        Args:
            name: Tunnel name (config file stem)

        Returns:
            The tunnel in ``starting`` state

        Raises:
            TunnelNotFound: If no tunnel has that name
            AlreadyRunning: If the tunnel already has a live process
            ExecutableNotFound: If cloudflared cannot be located
            ConfigNotFound: If the config file is gone
            PermissionDenied: If a required file cannot be read
            InvalidConfiguration: If the config cannot be parsed
            FileMissing: If the credentials file is missing
            PortConflict: If the local port is already bound
            ProcessStartFailed: If the subprocess cannot be spawned
        """
        with self.registry.locked():
            tunnel = self.registry.require_managed(name)
            if tunnel.is_live:
                raise AlreadyRunning(name)

            try:
                binary = self.config.resolve_executable()
                tunnel = self._prepare_managed(tunnel)
            except TunnelError as e:
                self.registry.replace_managed(tunnel.evolve(last_error=e.description))
                logger.warning("Managed tunnel not started", name=name, error=str(e))
                self.notifications.emit(e.to_notification(name))
                raise

            port_busy = tunnel.port is not None and not self.port_probe.is_available(
                tunnel.port
            )
            if not port_busy:
                started = self._spawn_managed(tunnel, binary)

        if port_busy:
            self._reject_port_conflict(name, tunnel.port)

        logger.info("Managed tunnel starting", name=name, pid=started.pid)
        self._notify("tunnel_starting", "Tunnel starting", f"Starting '{name}'", tunnel=name)
        return started

    def _spawn_managed(self, tunnel: ManagedTunnel, binary: str) -> ManagedTunnel:
        """Spawn and attach a prepared managed tunnel. Caller holds the lock."""
        name = tunnel.name
        config_path = Path(str(tunnel.config_path))
        args = ["tunnel", "--config", str(config_path), "run", tunnel.run_identifier]
        try:
            process = self._spawn(binary, args, cwd=str(config_path.parent))
        except TunnelError as e:
            self.registry.replace_managed(
                tunnel.with_status(TunnelStatus.ERROR, last_error=e.description)
            )
            logger.error("Managed tunnel spawn failed", name=name, error=str(e))
            self.notifications.emit(e.to_notification(name))
            raise

        started = self.registry.replace_managed(
            tunnel.with_status(TunnelStatus.STARTING, pid=process.spawned_pid, last_error=None)
        )
        self.registry.attach_process(TunnelKind.MANAGED, name, process)
        self._watch(TunnelKind.MANAGED, name, process)
        return started

    def _reject_port_conflict(self, name: str, port: int) -> NoReturn:
        """Name the port owner and fail the start. Runs without the lock."""
        error = PortConflict(port, self.port_probe.find_occupying_process(port))
        with self.registry.locked():
            current = self.registry.get_managed(name)
            if current is not None and not current.is_live:
                self.registry.replace_managed(current.evolve(last_error=error.description))
        logger.warning("Managed tunnel not started", name=name, error=str(error))
        self.notifications.emit(error.to_notification(name))
        raise error

    def stop_managed_tunnel(self, name: str) -> ManagedTunnel:
        """Stop a managed tunnel, escalating to a forced kill if needed.

        Stopping a stopped tunnel is a no-op; concurrent calls all return
        once the process is gone.

        Raises:
            TunnelNotFound: If no tunnel has that name
            ProcessStopFailed: If the process survives the forced kill
        """
        with self.registry.locked():
            tunnel = self.registry.require_managed(name)
            if tunnel.status == TunnelStatus.STOPPED:
                return tunnel
            process = self.registry.get_process(TunnelKind.MANAGED, name)
            if process is None:
                return self.registry.replace_managed(
                    tunnel.with_status(TunnelStatus.STOPPED)
                )
            if tunnel.status != TunnelStatus.STOPPING:
                self.registry.replace_managed(tunnel.with_status(TunnelStatus.STOPPING))

        logger.info("Stopping managed tunnel", name=name, pid=tunnel.pid)
        self._stop_process(TunnelKind.MANAGED, name, process)

        with self.registry.locked():
            owned = self.registry.owns_process(TunnelKind.MANAGED, name, process)
            watcher = self._release(TunnelKind.MANAGED, name) if owned else None
            current = self.registry.get_managed(name)
            if owned and current is not None:
                current = self.registry.replace_managed(
                    current.with_status(TunnelStatus.STOPPED)
                )

        if watcher is not None:
            watcher.cancel()
            watcher.join(self.config.kill_timeout)
        if owned:
            self._notify("tunnel_stopped", "Tunnel stopped", f"Stopped '{name}'", tunnel=name)
        return current or tunnel

    def _stop_process(self, kind: TunnelKind, key: str, process: ProcessManager) -> None:
        try:
            process.stop(self.config.stop_timeout, self.config.kill_timeout)
        except ProcessError as e:
            error = ProcessStopFailed(str(e))
            with self.registry.locked():
                if self.registry.owns_process(kind, key, process):
                    watcher = self._release(kind, key)
                    if watcher is not None:
                        watcher.cancel()
                    tunnel = self._get(kind, key)
                    if tunnel is not None:
                        self._replace(
                            tunnel.with_status(
                                TunnelStatus.ERROR, last_error=error.description
                            )
                        )
            logger.error("Failed to stop tunnel process", tunnel=key, error=str(e))
            self.notifications.emit(error.to_notification(key))
            raise error from e

    def start_all_managed(self) -> BulkResult:
        """Start every managed tunnel that is not live, collecting failures."""
        result = BulkResult()
        for tunnel in self.registry.list_managed():
            if tunnel.is_live:
                continue
            result.attempted.append(tunnel.name)
            try:
                self.start_managed_tunnel(tunnel.name)
            except TunnelError as e:
                result.failures.append(
                    BulkFailure(name=tunnel.name, kind=e.kind.value, message=e.description)
                )
        logger.info(
            "Started all managed tunnels",
            attempted=len(result.attempted),
            failed=len(result.failures),
        )
        return result

    def stop_all_managed(self) -> BulkResult:
        """Stop every live managed tunnel, collecting failures."""
        result = BulkResult()
        for tunnel in self.registry.list_managed():
            if not tunnel.is_live:
                continue
            result.attempted.append(tunnel.name)
            try:
                self.stop_managed_tunnel(tunnel.name)
            except TunnelError as e:
                result.failures.append(
                    BulkFailure(name=tunnel.name, kind=e.kind.value, message=e.description)
                )
        return result

    # Quick tunnels

    def _validate_local_url(self, local_url: str) -> str:
        url = local_url.strip()
        if not url or any(ch.isspace() for ch in url):
            raise InvalidConfiguration(f"Invalid local URL: '{local_url}'")
        if "://" in url:
            parts = urlsplit(url)
            if not parts.scheme or not parts.netloc:
                raise InvalidConfiguration(f"Invalid local URL: '{local_url}'")
        return url

    def start_quick_tunnel(self, local_url: str) -> str:
        """Start a quick tunnel exposing ``local_url``.

        Returns immediately with the new tunnel id; the public URL arrives
        asynchronously (see ``wait_for_public_url``).

        Raises:
            InvalidConfiguration: If the URL is malformed
            ExecutableNotFound: If cloudflared cannot be located
            CreationFailed: If the registry is full
            ProcessStartFailed: If the subprocess cannot be spawned
        """
        try:
            url = self._validate_local_url(local_url)
            try:
                tunnel = QuickTunnel(local_url=url)
            except ValidationError as e:
                raise InvalidConfiguration(f"Invalid local URL: '{local_url}'") from e
            binary = self.config.resolve_executable()
        except TunnelError as e:
            logger.warning("Quick tunnel not started", local_url=local_url, error=str(e))
            self.notifications.emit(e.to_notification())
            raise
        args = ["tunnel", "--url", url, *self.config.quick_tunnel_args]

        with self.registry.locked():
            try:
                self.registry.add_quick(tunnel)
            except CreationFailed as e:
                self.notifications.emit(e.to_notification(tunnel.id))
                raise
            try:
                process = self._spawn(binary, args)
            except TunnelError as e:
                self.registry.replace_quick(
                    tunnel.with_status(TunnelStatus.ERROR, last_error=e.description)
                )
                logger.error("Quick tunnel spawn failed", tunnel_id=tunnel.id, error=str(e))
                self.notifications.emit(e.to_notification(tunnel.id))
                raise
            started = self.registry.replace_quick(
                tunnel.with_status(TunnelStatus.STARTING, pid=process.spawned_pid)
            )
            self.registry.attach_process(TunnelKind.QUICK, tunnel.id, process)
            self._watch(TunnelKind.QUICK, tunnel.id, process)

        logger.info("Quick tunnel starting", tunnel_id=tunnel.id, local_url=url, pid=started.pid)
        self._notify(
            "tunnel_starting", "Quick tunnel starting", f"Exposing {url}", tunnel=tunnel.id
        )
        return tunnel.id

    def stop_quick_tunnel(self, tunnel_id: str) -> QuickTunnel:
        """Stop a quick tunnel and remove it from the registry.

        Raises:
            TunnelNotFound: If the id is unknown (nothing is changed)
            ProcessStopFailed: If the process survives the forced kill
        """
        with self.registry.locked():
            tunnel = self.registry.require_quick(tunnel_id)
            process = self.registry.get_process(TunnelKind.QUICK, tunnel_id)
            if process is not None and tunnel.status != TunnelStatus.STOPPING:
                self.registry.replace_quick(tunnel.with_status(TunnelStatus.STOPPING))

        if process is not None:
            logger.info("Stopping quick tunnel", tunnel_id=tunnel_id, pid=tunnel.pid)
            self._stop_process(TunnelKind.QUICK, tunnel_id, process)

        with self.registry.locked():
            watcher = self._release(TunnelKind.QUICK, tunnel_id)
            removed = self.registry.get_quick(tunnel_id)
            if removed is not None:
                self.registry.remove_quick(tunnel_id)

        if watcher is not None:
            watcher.cancel()
            watcher.join(self.config.kill_timeout)
        if removed is None:
            return tunnel
        self._notify(
            "tunnel_stopped",
            "Quick tunnel stopped",
            f"Stopped quick tunnel for {tunnel.local_url}",
            tunnel=tunnel_id,
        )
        return removed.with_status(TunnelStatus.STOPPED)  # type: ignore[no-any-return]

    def wait_for_public_url(self, tunnel_id: str, timeout: float) -> str | None:
        """Block until the quick tunnel publishes its URL or stops trying.

        Returns:
            The public URL, or None on timeout, error or removal
        """

        def settled() -> bool:
            tunnel = self.registry.get_quick(tunnel_id)
            return (
                tunnel is None
                or tunnel.public_url is not None
                or not tunnel.is_live
            )

        self.registry.wait_for(settled, timeout)
        tunnel = self.registry.get_quick(tunnel_id)
        return tunnel.public_url if tunnel is not None else None

    def stop_all(self) -> BulkResult:
        """Stop every managed tunnel and every quick tunnel."""
        result = self.stop_all_managed()
        for tunnel in self.registry.list_quick():
            result.attempted.append(tunnel.id)
            try:
                self.stop_quick_tunnel(tunnel.id)
            except TunnelError as e:
                result.failures.append(
                    BulkFailure(name=tunnel.id, kind=e.kind.value, message=e.description)
                )
        logger.info(
            "Stopped all tunnels",
            attempted=len(result.attempted),
            failed=len(result.failures),
        )
        return result

    # Reconciliation

    def _tick(self) -> None:
        self.reconcile(refresh=self.config.watch_config_dir)

    def reconcile(self, refresh: bool = False) -> None:
        """Repair registry state against actual process liveness.

        Dead processes are settled exactly as if their watcher had seen the
        exit, running entries get their pid refreshed, and entries marked live
        without a process handle are reset to stopped.
        """
        if refresh:
            try:
                self.refresh_managed_tunnels()
            except TunnelError as e:
                logger.warning("Tunnel discovery failed during reconcile", error=str(e))

        for kind, key, process in self.registry.process_items():
            code = process.returncode
            if code is not None:
                watcher = self._watchers.get((kind, key))
                errors = watcher.recent_errors if watcher is not None else []
                tail = watcher.tail if watcher is not None else []
                self._settle_exit(kind, key, process, code, errors, tail)
                continue

            pid = process.pid
            with self.registry.locked():
                if not self.registry.owns_process(kind, key, process):
                    continue
                tunnel = self._get(kind, key)
                if (
                    tunnel is not None
                    and tunnel.status == TunnelStatus.RUNNING
                    and pid is not None
                    and tunnel.pid != pid
                ):
                    self._replace(tunnel.evolve(pid=pid))

        with self.registry.locked():
            orphans: list[Tunnel] = [
                t
                for t in [*self.registry.list_managed(), *self.registry.list_quick()]
                if t.is_live
                and self.registry.get_process(
                    t.kind, t.name if isinstance(t, ManagedTunnel) else t.id
                )
                is None
            ]
            for tunnel in orphans:
                logger.warning("Live tunnel without process", tunnel=tunnel.id)
                self._replace(tunnel.with_status(TunnelStatus.STOPPED))

    # Provisioning

    def _provisioner(self) -> TunnelProvisioner:
        return TunnelProvisioner(
            self.config.resolve_executable(),
            self.config.config_dir,
            command_timeout=self.config.command_timeout,
            login_timeout=self.config.login_timeout,
        )

    def create_managed_tunnel(self, name: str, hostname: str, port: int) -> ManagedTunnel:
        """Create a named tunnel, write its config and register it.

        A port already in use only produces a warning notification.

        Raises:
            ExecutableNotFound: If cloudflared cannot be located
            CreationFailed: If any creation step fails
        """
        provisioner = self._provisioner()
        try:
            target = provisioner.config_path_for(name)
            if self.registry.get_managed(name) is not None or target.exists():
                raise CreationFailed(f"Tunnel '{name}' already exists")
            if not self.port_probe.is_available(port):
                conflict = PortConflict(port, self.port_probe.find_occupying_process(port))
                logger.warning("Creating tunnel for a busy port", name=name, port=port)
                self.notifications.emit(
                    conflict.to_notification(name).model_copy(
                        update={"level": NotificationLevel.WARNING}
                    )
                )
            created = provisioner.create_tunnel(name)
            provisioner.write_config(
                name, created.tunnel_uuid, created.credentials_file, hostname, port
            )
        except (InvalidConfiguration, ValueError) as e:
            reason = e.reason if isinstance(e, InvalidConfiguration) else str(e)
            failure = CreationFailed(reason)
            self.notifications.emit(failure.to_notification(name))
            raise failure from e
        except CreationFailed as e:
            self.notifications.emit(e.to_notification(name))
            raise

        self.refresh_managed_tunnels()
        tunnel = self.registry.require_managed(name)
        self._notify(
            "tunnel_created",
            "Tunnel created",
            f"Tunnel '{name}' created for {hostname}",
            tunnel=name,
            level=NotificationLevel.SUCCESS,
        )
        return tunnel

    def route_dns(self, name: str, hostname: str) -> str:
        """Route ``hostname`` to a managed tunnel.

        Raises:
            TunnelNotFound: If no tunnel has that name
            NetworkError: If cloudflared reports a failure
        """
        tunnel = self.registry.require_managed(name)
        message = self._provisioner().route_dns(tunnel.run_identifier, hostname)
        self._notify(
            "dns_routed", "DNS routed", message, tunnel=name, level=NotificationLevel.SUCCESS
        )
        return message

    def delete_managed_tunnel(self, name: str) -> str:
        """Stop a managed tunnel, delete it from Cloudflare and remove its config.

        A tunnel Cloudflare no longer knows still has its config removed.

        Returns:
            Human readable outcome of the delete command

        Raises:
            TunnelNotFound: If no tunnel has that name
            ExecutableNotFound: If cloudflared cannot be located
            ProcessStopFailed: If the running process survives the forced kill
            NetworkError: If cloudflared reports a failure
            PermissionDenied: If the config file cannot be removed
            CreationFailed: If removing the config file fails otherwise
        """
        tunnel = self.registry.require_managed(name)
        try:
            provisioner = self._provisioner()
        except ExecutableNotFound as e:
            self.notifications.emit(e.to_notification(name))
            raise

        self.stop_managed_tunnel(name)
        try:
            message = provisioner.delete_tunnel(tunnel.run_identifier)
        except (InvalidConfiguration, NetworkError) as e:
            logger.error("Tunnel deletion failed", name=name, error=str(e))
            self.notifications.emit(e.to_notification(name))
            raise
        if tunnel.config_path is not None:
            self._remove_config(name, Path(tunnel.config_path))

        self.refresh_managed_tunnels()
        logger.info("Managed tunnel deleted", name=name)
        self._notify(
            "tunnel_deleted",
            "Tunnel deleted",
            message,
            tunnel=name,
            level=NotificationLevel.SUCCESS,
        )
        return message

    def _remove_config(self, name: str, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except PermissionError as e:
            error: TunnelError = PermissionDenied(str(path))
            self.notifications.emit(error.to_notification(name))
            raise error from e
        except OSError as e:
            error = CreationFailed(f"Could not remove {path}: {e}")
            self.notifications.emit(error.to_notification(name))
            raise error from e

    def login(self) -> str:
        """Run the browser login that authorizes cloudflared for the account.

        Blocks until the login completes or ``login_timeout`` elapses.

        Raises:
            ExecutableNotFound: If cloudflared cannot be located
            NetworkError: If the login fails or times out
        """
        try:
            message = self._provisioner().login()
        except (ExecutableNotFound, NetworkError) as e:
            self.notifications.emit(e.to_notification())
            raise
        self._notify("logged_in", "Cloudflare login", message, level=NotificationLevel.SUCCESS)
        return message

    # Queries

    def snapshot(self) -> list[TunnelSnapshot]:
        """Consistent read-only view of every known tunnel."""
        return self.registry.snapshot()

    def get_managed_tunnel(self, name: str) -> ManagedTunnel:
        return self.registry.require_managed(name)

    def get_quick_tunnel(self, tunnel_id: str) -> QuickTunnel:
        return self.registry.require_quick(tunnel_id)
