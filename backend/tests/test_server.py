"""
Lets-Go-WorkSpace Backend — Server Lifecycle Tests
===================================================

What:  Tests for the listener state machine and graceful shutdown.
How:   The transition function and controller handlers are tested directly;
       serve() runs against a mocked uvicorn server; the process tests start
       a real server and send it SIGTERM.

What we test:
    ✅ Transition table, including LifecycleError on invalid events
    ✅ First signal drains, second signal forces close
    ✅ Exit code 0 after a clean close, 1 if the listener never started
    ✅ SIGTERM to a real process: listener closes, exit code 0
    ✅ A request in flight at SIGTERM still gets its 200
    ✅ A second SIGTERM cuts a long drain short
"""

import logging
import os
import re
import signal
import subprocess
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.config import Settings
from app.exceptions import LifecycleError
from app.main import create_app
from app.server import (
    CLOSED,
    DRAINING,
    RUNNING,
    SHUTDOWN_SIGNAL,
    STARTED,
    STOPPED,
    ServerController,
    next_state,
)

BACKEND_DIR = Path(__file__).resolve().parent.parent

# The real app plus a handler that takes `seconds` to answer
SLOW_APP = """
import asyncio
import sys

from app.main import create_app
from app.server import ServerController

app = create_app()


@app.get("/slow")
async def slow(seconds: float):
    await asyncio.sleep(seconds)
    return {"slept": seconds}


sys.exit(asyncio.run(ServerController(app).serve()))
"""


@pytest.fixture
def controller():
    app_settings = Settings(port=0, host="127.0.0.1", node_env="test", shutdown_timeout=5)
    return ServerController(create_app(app_settings), app_settings)


class TestTransitions:
    """Tests for next_state()."""

    @pytest.mark.parametrize(
        "state, event, expected",
        [
            (STOPPED, STARTED, RUNNING),
            (RUNNING, SHUTDOWN_SIGNAL, DRAINING),
            (DRAINING, SHUTDOWN_SIGNAL, DRAINING),
            (DRAINING, CLOSED, STOPPED),
            (RUNNING, CLOSED, STOPPED),
            (STOPPED, SHUTDOWN_SIGNAL, STOPPED),
        ],
    )
    def test_valid_transitions(self, state, event, expected):
        assert next_state(state, event) == expected

    @pytest.mark.parametrize(
        "state, event",
        [
            (RUNNING, STARTED),
            (DRAINING, STARTED),
            (STOPPED, CLOSED),
        ],
    )
    def test_invalid_transitions_raise(self, state, event):
        with pytest.raises(LifecycleError, match=event):
            next_state(state, event)


class TestServerController:
    """Tests for the controller's event handlers."""

    def test_initial_state(self, controller):
        assert controller.state == STOPPED
        assert controller.has_started is False
        assert controller.exit_code == 1

    def test_config_from_settings(self, controller):
        assert controller.config.host == "127.0.0.1"
        assert controller.config.timeout_graceful_shutdown == 5

    def test_started_logs_port_and_environment(self, controller, caplog):
        caplog.set_level(logging.INFO, logger="app.server")

        controller.on_started()

        assert controller.state == RUNNING
        assert controller.has_started is True
        assert "Lets-Go-WorkSpace Backend Server running on port 0" in caplog.messages
        assert "Environment: test" in caplog.messages

    def test_first_signal_drains(self, controller, caplog):
        caplog.set_level(logging.INFO, logger="app.server")
        controller.on_started()

        controller.on_signal(signal.SIGTERM)

        assert controller.state == DRAINING
        assert controller.server.should_exit is True
        assert controller.server.force_exit is False
        assert "SIGTERM received, shutting down gracefully" in caplog.messages

    def test_second_signal_forces_close(self, controller):
        controller.on_started()
        controller.on_signal(signal.SIGTERM)

        controller.on_signal(signal.SIGINT)

        assert controller.state == DRAINING
        assert controller.forced is True
        assert controller.server.force_exit is True

    def test_second_signal_drops_open_connections(self, controller):
        connection = MagicMock()
        connection.transport.is_closing.return_value = False
        controller.server.server_state.connections.add(connection)
        controller.on_started()
        controller.on_signal(signal.SIGTERM)

        connection.transport.close.assert_not_called()

        controller.on_signal(signal.SIGTERM)

        connection.transport.close.assert_called_once_with()

    def test_closed_after_drain(self, controller, caplog):
        caplog.set_level(logging.INFO, logger="app.server")
        controller.on_started()
        controller.on_signal(signal.SIGTERM)

        controller.on_closed()

        assert controller.state == STOPPED
        assert controller.exit_code == 0
        assert "Server closed" in caplog.messages

    def test_signal_during_startup_aborts(self, controller):
        controller.on_signal(signal.SIGTERM)

        assert controller.state == STOPPED
        assert controller.server.should_exit is True
        assert controller.exit_code == 1

    def test_started_twice_is_invalid(self, controller):
        controller.on_started()

        with pytest.raises(LifecycleError):
            controller.on_started()


class TestServe:
    """serve() against a mocked uvicorn server."""

    @pytest.mark.asyncio
    async def test_clean_run_exits_zero(self, controller):
        async def fake_serve(sockets=None):
            controller.on_started()
            controller.on_signal(signal.SIGTERM)
            controller.on_closed()

        controller.server.serve = AsyncMock(side_effect=fake_serve)

        assert await controller.serve() == 0
        assert controller.state == STOPPED

    @pytest.mark.asyncio
    async def test_startup_failure_exits_one(self, controller):
        controller.server.serve = AsyncMock(return_value=None)

        assert await controller.serve() == 1

    @pytest.mark.asyncio
    async def test_signal_during_startup_still_closes_listener(self, controller):
        """uvicorn skips its own shutdown when told to exit during startup."""

        async def fake_serve(sockets=None):
            controller.on_signal(signal.SIGTERM)
            controller.on_started()

        async def fake_shutdown(sockets=None):
            controller.on_closed()

        controller.server.serve = AsyncMock(side_effect=fake_serve)
        controller.server.shutdown = AsyncMock(side_effect=fake_shutdown)

        assert await controller.serve() == 0
        controller.server.shutdown.assert_awaited_once()


def start_server(script=None):
    """
    Start a server process on a free port.

    Runs `python -m app`, or `script` via `python -c` when given.

    Returns:
        (process, port) once the server has logged the port it bound.
    """
    env = dict(
        os.environ,
        PORT="0",
        HOST="127.0.0.1",
        LOG_LEVEL="INFO",
        NODE_ENV="test",
        PYTHONUNBUFFERED="1",
        PYTHONPATH=str(BACKEND_DIR),
    )
    command = [sys.executable, "-c", script] if script else [sys.executable, "-m", "app"]
    proc = subprocess.Popen(
        command,
        cwd=BACKEND_DIR,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
    )
    match = wait_for_output(proc, r"running on port (\d+)")
    if match is None:
        stop_server(proc)
        pytest.fail("server did not report its port")
    return proc, int(match.group(1))


def wait_for_output(proc, pattern):
    """Read the process output line by line until `pattern` matches."""
    for line in proc.stdout:
        match = re.search(pattern, line)
        if match:
            return match
    return None


def stop_server(proc):
    if proc.poll() is None:
        proc.kill()
        proc.communicate()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals required")
class TestGracefulShutdownProcess:
    """End-to-end: a real server process receives SIGTERM."""

    def test_sigterm_closes_listener_and_exits_zero(self):
        proc, port = start_server()
        try:
            response = httpx.get(f"http://127.0.0.1:{port}/api/health", timeout=5)
            assert response.status_code == 200

            proc.send_signal(signal.SIGTERM)
            output, _ = proc.communicate(timeout=15)
        finally:
            stop_server(proc)

        assert proc.returncode == 0
        assert "SIGTERM received, shutting down gracefully" in output
        assert "Server closed" in output

        with pytest.raises(httpx.ConnectError):
            httpx.get(f"http://127.0.0.1:{port}/api/health", timeout=2)

    def test_in_flight_request_completes_during_drain(self):
        proc, port = start_server(SLOW_APP)
        try:
            with ThreadPoolExecutor(max_workers=1) as pool:
                pending = pool.submit(
                    httpx.get,
                    f"http://127.0.0.1:{port}/slow",
                    params={"seconds": 2},
                    timeout=15,
                )
                assert wait_for_output(proc, r"GET /slow")

                proc.send_signal(signal.SIGTERM)
                assert wait_for_output(proc, r"shutting down gracefully")
                time.sleep(0.5)  # uvicorn closes the listener on its next tick

                with pytest.raises(httpx.ConnectError):
                    httpx.get(f"http://127.0.0.1:{port}/api/health", timeout=2)

                response = pending.result(timeout=15)

            output, _ = proc.communicate(timeout=15)
        finally:
            stop_server(proc)

        assert response.status_code == 200
        assert response.json() == {"slept": 2.0}
        assert proc.returncode == 0
        assert "Server closed" in output

    def test_second_sigterm_cuts_drain_short(self):
        proc, port = start_server(SLOW_APP)
        try:
            with ThreadPoolExecutor(max_workers=1) as pool:
                pending = pool.submit(
                    httpx.get,
                    f"http://127.0.0.1:{port}/slow",
                    params={"seconds": 30},
                    timeout=40,
                )
                assert wait_for_output(proc, r"GET /slow")
                started = time.monotonic()

                proc.send_signal(signal.SIGTERM)
                assert wait_for_output(proc, r"shutting down gracefully")
                proc.send_signal(signal.SIGTERM)

                output, _ = proc.communicate(timeout=15)
                elapsed = time.monotonic() - started

                # The slow request is dropped, not answered
                with pytest.raises(httpx.TransportError):
                    pending.result(timeout=15)
        finally:
            stop_server(proc)

        assert elapsed < 15
        assert proc.returncode == 0
        assert "received again while draining, forcing shutdown" in output
        assert "Server closed" in output
