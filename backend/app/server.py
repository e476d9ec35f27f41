"""
Lets-Go-WorkSpace Backend — Server Lifecycle Controller
========================================================

What:  Owns the HTTP listener (a uvicorn server) from bind to process exit.
Why:   Startup, signal handling and shutdown are one explicit state machine
       instead of callbacks scattered over module globals, so each transition
       can be tested on its own.
How:   ServerController wraps uvicorn.Server. uvicorn's own signal capture is
       disabled; the controller installs SIGTERM/SIGINT handlers on the event
       loop and drives uvicorn through `should_exit` / `force_exit`.
Who:   `python -m app` and the `letsgo-backend` console script call run().

State Machine:
    STOPPED  ──started──────────▶ RUNNING     log port and environment
    RUNNING  ──shutdown_signal──▶ DRAINING    stop accepting, let requests finish
    DRAINING ──shutdown_signal──▶ DRAINING    second signal: force close
    DRAINING ──closed───────────▶ STOPPED     log "Server closed"
    RUNNING  ──closed───────────▶ STOPPED     listener closed without a signal
    STOPPED  ──shutdown_signal──▶ STOPPED     signal during startup: abort it

    Any other (state, event) pair raises LifecycleError.

Drain timeout:
    SHUTDOWN_TIMEOUT maps to uvicorn's timeout_graceful_shutdown. Unset, the
    server waits for every in-flight request, however long it takes.
"""

import asyncio
import contextlib
import logging
import signal
import sys
from typing import Dict, Iterator, Optional, Tuple

import uvicorn
from fastapi import FastAPI

from app.config import Settings, settings
from app.exceptions import LifecycleError

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)

# States
RUNNING = "running"
DRAINING = "draining"
STOPPED = "stopped"

# Events
STARTED = "started"
SHUTDOWN_SIGNAL = "shutdown_signal"
CLOSED = "closed"

TRANSITIONS: Dict[Tuple[str, str], str] = {
    (STOPPED, STARTED): RUNNING,
    (RUNNING, SHUTDOWN_SIGNAL): DRAINING,
    (DRAINING, SHUTDOWN_SIGNAL): DRAINING,
    (DRAINING, CLOSED): STOPPED,
    (RUNNING, CLOSED): STOPPED,
    (STOPPED, SHUTDOWN_SIGNAL): STOPPED,
}


def next_state(state: str, event: str) -> str:
    """
    Pure transition function of the lifecycle state machine.

    Raises:
        LifecycleError: the event is not valid in `state`.
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise LifecycleError(state=state, event=event)


class ListenerServer(uvicorn.Server):
    """
    uvicorn server that reports lifecycle events to its controller and
    leaves signal handling to it.
    """

    def __init__(self, config: uvicorn.Config, controller: "ServerController"):
        super().__init__(config)
        self.controller = controller

    def install_signal_handlers(self) -> None:
        # uvicorn < 0.29 installs handlers here
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        # uvicorn >= 0.29 captures and re-raises signals here
        yield

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self.controller.on_started()

    async def shutdown(self, sockets=None) -> None:
        await super().shutdown(sockets=sockets)
        self.controller.on_closed()


class ServerController:
    """
    Single owner of the listener and its lifecycle state.

    Attributes:
        state:        Current state (RUNNING, DRAINING or STOPPED)
        has_started:  True once the listener was bound at least once
        forced:       True if a second signal cut draining short
    """

    def __init__(self, app: FastAPI, app_settings: Optional[Settings] = None):
        self.settings = app_settings or settings
        self.state = STOPPED
        self.has_started = False
        self.forced = False
        self.config = uvicorn.Config(
            app,
            host=self.settings.host,
            port=self.settings.port,
            log_config=None,      # keep the app's logging setup
            access_log=False,     # app.middleware.logging covers it
            server_header=False,
            timeout_graceful_shutdown=self.settings.shutdown_timeout,
        )
        self.server = ListenerServer(self.config, controller=self)

    @property
    def bound_port(self) -> int:
        """Port the listener actually bound (differs from config when PORT=0)."""
        # uvicorn only creates `servers` once startup binds
        for server in getattr(self.server, "servers", ()):
            for sock in server.sockets or ():
                return sock.getsockname()[1]
        return self.config.port

    def _transition(self, event: str) -> str:
        """Apply `event`, returning the state it was applied in."""
        previous = self.state
        self.state = next_state(previous, event)
        logger.debug("Server state %s -> %s on %s", previous, self.state, event)
        return previous

    # ── Event Handlers ────────────────────────────────────────────────────

    def on_started(self) -> None:
        self._transition(STARTED)
        self.has_started = True
        logger.info("Lets-Go-WorkSpace Backend Server running on port %d", self.bound_port)
        logger.info("Environment: %s", self.settings.node_env)

    def on_signal(self, signum: int) -> None:
        """Handle SIGTERM/SIGINT according to the current state."""
        name = signal.Signals(signum).name
        previous = self._transition(SHUTDOWN_SIGNAL)

        if previous == RUNNING:
            logger.info("%s received, shutting down gracefully", name)
            self.server.should_exit = True
        elif previous == DRAINING:
            logger.warning("%s received again while draining, forcing shutdown", name)
            self.forced = True
            self.server.force_exit = True
            self.close_connections()
        else:
            logger.info("%s received during startup, aborting", name)
            self.server.should_exit = True

    def close_connections(self) -> None:
        """
        Drop every open client connection, mid-request or not.

        asyncio's Server.wait_closed() waits for active connections on
        Python 3.12+, so force_exit alone would still block on a slow request.
        """
        connections = list(self.server.server_state.connections)
        for connection in connections:
            transport = getattr(connection, "transport", None)
            if transport is not None and not transport.is_closing():
                transport.close()
        if connections:
            logger.info("Closed %d open connection(s)", len(connections))

    def on_closed(self) -> None:
        self._transition(CLOSED)
        logger.info("Server closed")

    # ── Running ───────────────────────────────────────────────────────────

    @property
    def exit_code(self) -> int:
        """0 once the listener ran and closed, 1 if it never came up."""
        return 0 if self.has_started and self.state == STOPPED else 1

    async def serve(self) -> int:
        """
        Run the listener until it has closed.

        Returns:
            Process exit code (see exit_code).
        """
        loop = asyncio.get_running_loop()
        for signum in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(signum, self.on_signal, signum)

        try:
            await self.server.serve()
            if self.state == RUNNING:
                # A signal during startup makes uvicorn return without closing
                await self.server.shutdown()
        finally:
            for signum in SHUTDOWN_SIGNALS:
                loop.remove_signal_handler(signum)

        return self.exit_code


def run() -> None:
    """Entry point: serve app.main:app and exit with the controller's code."""
    from app.main import app

    controller = ServerController(app)
    sys.exit(asyncio.run(controller.serve()))
