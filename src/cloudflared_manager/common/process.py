"""Process management for the cloudflared binary."""

import os
import subprocess
import threading
from collections.abc import Generator, Mapping, Sequence
from pathlib import Path
from types import TracebackType
from typing import Literal

from .exceptions import BinaryNotFoundError, ProcessError
from .logging import get_logger

logger = get_logger(__name__)


class ProcessManager:
    """Owns a single cloudflared subprocess with context manager support"""

    def __init__(
        self,
        binary_path: str,
        args: Sequence[str],
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ):
        """Initialize ProcessManager with binary path and arguments

        Args:
            binary_path: Path to cloudflared binary
            args: Arguments passed after the binary
            cwd: Working directory for the subprocess
            env: Environment for the subprocess (inherits when None)

        Raises:
            BinaryNotFoundError: If binary doesn't exist or isn't executable
        """
        self.binary_path = binary_path
        self.args = list(args)
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self._process: subprocess.Popen[str] | None = None
        self._stop_lock = threading.Lock()
        self._validate_binary()
        logger.debug(
            "ProcessManager initialized", binary_path=binary_path, args=self.args
        )

    def _validate_binary(self) -> None:
        """Validate binary path"""
        binary_path = Path(self.binary_path)

        if not binary_path.exists():
            raise BinaryNotFoundError(f"Binary not found: {self.binary_path}")

        if not binary_path.is_file():
            raise BinaryNotFoundError(f"Binary path is not a file: {self.binary_path}")

        if not os.access(self.binary_path, os.X_OK):
            raise BinaryNotFoundError(f"Binary is not executable: {self.binary_path}")

    @property
    def command(self) -> list[str]:
        """Full argument vector used to spawn the process"""
        return [self.binary_path, *self.args]

    def start(self) -> bool:
        """Start the subprocess

        Returns:
            True if started successfully

        Raises:
            ProcessError: If the process fails to start
        """
        if self.is_running():
            logger.debug("Process already running", pid=self.pid)
            return True

        logger.info("Starting cloudflared process", command=self.command)
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
                cwd=self.cwd,
                env=self.env,
            )
            logger.info("cloudflared process started", pid=self._process.pid)
            return True
        except OSError as e:
            logger.error("Failed to start cloudflared process", error=str(e))
            raise ProcessError(f"Failed to start cloudflared process: {e}") from e

    def stop(self, timeout: float = 5.0, kill_timeout: float = 2.0) -> int | None:
        """Stop the subprocess, escalating from SIGTERM to SIGKILL

        Concurrent callers are serialised; a caller arriving after the process
        has exited gets the same exit code without any further signal.

        Args:
            timeout: Seconds to wait for a graceful exit
            kill_timeout: Seconds to wait after the forced kill

        Returns:
            Exit code, or None if the process was never started

        Raises:
            ProcessError: If the process survives the forced kill
        """
        with self._stop_lock:
            if self._process is None:
                return None

            if self._process.poll() is not None:
                return self._process.returncode

            pid = self._process.pid
            logger.info("Stopping cloudflared process", pid=pid)
            self._process.terminate()
            try:
                code = self._process.wait(timeout=timeout)
                logger.info("cloudflared process terminated gracefully", pid=pid)
                return code
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Process did not terminate gracefully, force killing", pid=pid
                )
                self._process.kill()
                try:
                    return self._process.wait(timeout=kill_timeout)
                except subprocess.TimeoutExpired as e:
                    logger.error("Failed to kill process", pid=pid)
                    raise ProcessError(
                        f"Process {pid} did not exit after forced kill"
                    ) from e

    def is_running(self) -> bool:
        """Check if process is currently running"""
        if self._process is None:
            return False

        return self._process.poll() is None

    @property
    def pid(self) -> int | None:
        """Get process ID if running"""
        if self.is_running() and self._process:
            return self._process.pid
        return None

    @property
    def spawned_pid(self) -> int | None:
        """Process ID assigned at spawn, kept after the process exits"""
        if self._process is None:
            return None
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        """Exit code once the process has exited, None while running"""
        if self._process is None:
            return None
        return self._process.poll()

    def wait(self, timeout: float) -> int | None:
        """Wait up to ``timeout`` seconds for exit, returning the exit code"""
        if self._process is None:
            return None
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def iter_output(self) -> Generator[str, None, None]:
        """Lazily yield output lines until the stream reaches EOF

        stderr is merged into stdout, so this is the single channel carrying
        both the published URL and startup errors. Closing the generator
        closes the stream.
        """
        process = self._process
        if process is None or process.stdout is None:
            return

        stream = process.stdout
        try:
            for line in stream:
                yield line.rstrip("\r\n")
        except (OSError, ValueError) as e:
            logger.debug("Output stream closed", pid=process.pid, error=str(e))
        finally:
            stream.close()

    def __enter__(self) -> "ProcessManager":
        """Context manager entry - automatically start process"""
        logger.debug("Entering ProcessManager context")
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        """Context manager exit - automatically stop process"""
        logger.debug("Exiting ProcessManager context")
        try:
            self.stop()
        except ProcessError as e:
            logger.error("Error during context exit", error=str(e))
        return False
