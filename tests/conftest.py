"""Shared pytest fixtures for cloudflared manager tests."""

import itertools
import logging
import queue
import socket
import threading
from collections.abc import Callable, Generator
from pathlib import Path
from unittest.mock import Mock

import pytest
import structlog

_pids = itertools.count(40000)


class FakeProcess:
    """Stand-in for ProcessManager whose output and exit are driven by the test."""

    def __init__(self, binary_path, args, cwd=None, env=None):
        self.binary_path = binary_path
        self.args = list(args)
        self.cwd = cwd
        self.spawned_pid = next(_pids)
        self.stop_calls = 0
        self.stop_error: Exception | None = None
        self._lines: queue.Queue[str | None] = queue.Queue()
        self._exited = threading.Event()
        self._exit_code: int | None = None
        self._started = False

    def start(self) -> bool:
        self._started = True
        return True

    def emit(self, line: str) -> None:
        """Write one line to the fake output stream."""
        self._lines.put(line)

    def die(self, code: int) -> None:
        """Exit without closing the output stream."""
        self._exit_code = code
        self._exited.set()

    def exit(self, code: int) -> None:
        """Exit and close the output stream."""
        self.die(code)
        self._lines.put(None)

    def is_running(self) -> bool:
        return self._started and not self._exited.is_set()

    @property
    def pid(self) -> int | None:
        return self.spawned_pid if self.is_running() else None

    @property
    def returncode(self) -> int | None:
        return self._exit_code

    def wait(self, timeout: float) -> int | None:
        self._exited.wait(timeout)
        return self._exit_code

    def stop(self, timeout: float = 5.0, kill_timeout: float = 2.0) -> int | None:
        self.stop_calls += 1
        if self.stop_error is not None:
            raise self.stop_error
        if not self._exited.is_set():
            self.exit(-15)
        return self._exit_code

    def iter_output(self) -> Generator[str, None, None]:
        while True:
            line = self._lines.get()
            if line is None:
                return
            yield line


class FakeProcessFactory:
    """Process factory recording every FakeProcess it builds."""

    def __init__(self) -> None:
        self.created: list[FakeProcess] = []
        self.error: Exception | None = None

    def __call__(self, binary_path, args, cwd=None, env=None) -> FakeProcess:
        if self.error is not None:
            raise self.error
        process = FakeProcess(binary_path, args, cwd=cwd, env=env)
        self.created.append(process)
        return process

    @property
    def last(self) -> FakeProcess:
        return self.created[-1]


@pytest.fixture
def process_factory():
    """Factory producing test-driven fake processes.

    Returns:
        FakeProcessFactory: Factory to pass as ``process_factory``
    """
    return FakeProcessFactory()


@pytest.fixture
def mock_subprocess(monkeypatch):
    """Mock subprocess.Popen for testing process management.

    Returns:
        Mock: Mocked Popen class
    """
    mock_popen = Mock()
    monkeypatch.setattr("subprocess.Popen", mock_popen)
    return mock_popen


@pytest.fixture
def mock_process():
    """Create a mock Popen object for testing.

    Returns:
        Mock: Mock process with common attributes
    """
    process = Mock()
    process.pid = 12345
    process.poll.return_value = None  # Process is running
    process.returncode = None
    process.terminate.return_value = None
    process.kill.return_value = None
    process.wait.return_value = 0
    process.stdout = Mock()
    return process


@pytest.fixture
def fake_binary(tmp_path) -> str:
    """An executable file standing in for the cloudflared binary."""
    binary_path = tmp_path / "bin" / "cloudflared"
    binary_path.parent.mkdir()
    binary_path.write_text("#!/bin/sh\nexit 0\n")
    binary_path.chmod(0o755)
    return str(binary_path)


@pytest.fixture
def make_cloudflared(tmp_path) -> Callable[[str], str]:
    """Build a fake cloudflared shell script with the given body.

    Returns:
        Callable taking the script body and returning the script path
    """

    def factory(body: str) -> str:
        script = tmp_path / "fake-cloudflared"
        script.write_text("#!/bin/sh\n" + body)
        script.chmod(0o755)
        return str(script)

    return factory


@pytest.fixture
def config_dir(tmp_path) -> Path:
    """Empty cloudflared configuration directory."""
    directory = tmp_path / "cloudflared"
    directory.mkdir()
    return directory


def write_tunnel_config(
    directory: Path,
    name: str,
    port: int = 8080,
    hostname: str = "app.example.com",
    tunnel_uuid: str = "6ff42ae2-765d-4adf-8112-31c55c1551ef",
    with_credentials: bool = True,
) -> Path:
    """Write a cloudflared config file (and its credentials) into ``directory``."""
    lines = [f"tunnel: {tunnel_uuid}"]
    if with_credentials:
        credentials = directory / f"{tunnel_uuid}.json"
        credentials.write_text("{}")
        lines.append(f"credentials-file: {credentials}")
    lines += [
        "ingress:",
        f"  - hostname: {hostname}",
        f"    service: http://localhost:{port}",
        "  - service: http_status:404",
    ]
    path = directory / f"{name}.yml"
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def tunnel_config_writer() -> Callable[..., Path]:
    """Helper writing cloudflared config files, see ``write_tunnel_config``."""
    return write_tunnel_config


@pytest.fixture
def free_port() -> int:
    """A TCP port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("", 0))
        return int(sock.getsockname()[1])


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration after each test.

    This prevents tests from interfering with each other's logging setup.
    """
    yield
    structlog.reset_defaults()
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
