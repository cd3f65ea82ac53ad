"""TCP transport that owns its bridge server process.

For LOCAL slots the core spawns the device model's server on the slot's
port, waits for it to listen, and then talks to it like any other TCP
server. Closing the transport terminates the server.
"""

from __future__ import annotations

import socket

from telescope_control.config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_RECONNECT_INTERVAL,
    DEFAULT_SERVER_START_TIMEOUT,
    DEFAULT_STOP_GRACE_PERIOD,
)
from telescope_control.description import TelescopeDescription
from telescope_control.exceptions import ConnectError, SpawnError
from telescope_control.observability import get_logger
from telescope_control.transports.direct import TcpTransport
from telescope_control.transports.process import ServerProcess
from telescope_control.transports.types import Clock, ConnectionState

logger = get_logger(__name__)

LOOPBACK_HOST = "127.0.0.1"
STARTUP_CONNECT_INTERVAL = 0.05  # seconds between connect attempts while the server starts


class BridgedTransport(TcpTransport):
    """TCP client of a server process it spawned and exclusively owns.

    If the server exits while the slot is live, the transport moves to
    FAILED; it is not restarted.
    """

    def __init__(
        self,
        description: TelescopeDescription,
        process: ServerProcess,
        *,
        start_timeout: float = DEFAULT_SERVER_START_TIMEOUT,
        stop_grace_period: float = DEFAULT_STOP_GRACE_PERIOD,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
        clock: Clock | None = None,
    ) -> None:
        """Create the transport (the process is started by open()).

        Args:
            description: LOCAL description with a port.
            process: Prepared, not yet started server process.
            start_timeout: Seconds to wait for the server to accept.
            stop_grace_period: Seconds the server gets to exit on close().
            connect_timeout: Seconds before a reconnect attempt is abandoned.
            reconnect_interval: Seconds between reconnect attempts.
            clock: Time source.
        """
        super().__init__(
            description,
            host=LOOPBACK_HOST,
            connect_timeout=connect_timeout,
            reconnect_interval=reconnect_interval,
            clock=clock,
        )
        self._process = process
        self._start_timeout = start_timeout
        self._stop_grace_period = stop_grace_period

    @property
    def process(self) -> ServerProcess:
        return self._process

    def open(self) -> None:
        """Spawn the server and connect once it listens.

        Raises:
            SpawnError: If the server cannot be launched or exits during
                startup.
            ConnectError: If the server does not accept within start_timeout.
        """
        self._set_state(ConnectionState.CONNECTING)
        self._process.start()

        deadline = self._clock.monotonic() + self._start_timeout
        while True:
            returncode = self._process.poll()
            if returncode is not None:
                raise SpawnError(f"Server exited during startup with code {returncode}")
            try:
                sock = socket.create_connection(
                    (LOOPBACK_HOST, self._port), timeout=STARTUP_CONNECT_INTERVAL
                )
            except OSError:
                if self._clock.monotonic() >= deadline:
                    raise ConnectError(
                        f"Server did not accept on port {self._port} "
                        f"within {self._start_timeout}s"
                    ) from None
                self._clock.sleep(STARTUP_CONNECT_INTERVAL)
                continue
            self._attach(sock)
            return

    def poll(self) -> int:
        if self._state is not ConnectionState.FAILED:
            returncode = self._process.poll()
            if returncode is not None:
                self.mark_failed(SpawnError(f"Server exited with code {returncode}"))
                return 0
        return super().poll()

    def close(self) -> bool:
        super().close()
        stopped = self._process.terminate(self._stop_grace_period)
        if not stopped:
            logger.warning(
                "Server process termination not confirmed",
                telescope=self.name,
                pid=self._process.pid,
            )
        return stopped


__all__ = ["BridgedTransport"]
