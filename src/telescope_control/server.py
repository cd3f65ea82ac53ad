"""Reference bridge server speaking the telescope wire protocol.

Runs a simulated mount and serves it to any number of TCP clients: every
`delay` microseconds the mount advances one step and its position is sent
to all clients; goto messages from any client retarget it. The command
line matches what LOCAL slots spawn, so the server doubles as the
"Virtual mount server" device model and as a test double for the bridged
transport.

Usage:
    telescope-control-server --port 10001 --delay 500000
    python -m telescope_control.server --port 10001 --delay 500000
"""

from __future__ import annotations

import argparse
import logging
import selectors
import signal
import socket
import sys
from dataclasses import dataclass, field
from typing import Any

from telescope_control.config import DEFAULT_DELAY_US
from telescope_control.description import MAX_DELAY_US
from telescope_control.exceptions import ProtocolFramingError
from telescope_control.observability import configure_logging, get_logger
from telescope_control.protocol import STATUS_OK, FrameDecoder, GotoCommand, PositionReport
from telescope_control.transports.types import Clock, SystemClock
from telescope_control.transports.virtual import VirtualMount

logger = get_logger("telescope_control.server")  # also when run as __main__

RECV_SIZE = 4096
MAX_CLIENT_BACKLOG = 64 * 1024  # bytes queued for a client before it is dropped


@dataclass
class _Client:
    address: Any
    decoder: FrameDecoder[GotoCommand] = field(
        default_factory=lambda: FrameDecoder(GotoCommand)
    )
    outbox: bytearray = field(default_factory=bytearray)


class BridgeServer:
    """Single-threaded protocol server around a VirtualMount.

    Example:
        with BridgeServer(port=10001, delay_us=200_000) as server:
            server.start()
            server.serve_forever()
    """

    def __init__(
        self,
        port: int,
        delay_us: int = DEFAULT_DELAY_US,
        *,
        host: str = "",
        mount: VirtualMount | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Create the server (nothing is bound until start()).

        Args:
            port: TCP port to listen on, 0 for an ephemeral port.
            delay_us: Interval between position reports in microseconds.
            host: Interface to bind, "" for all.
            mount: Simulated mount to serve.
            clock: Time source.
        """
        self._host = host
        self._port = port
        self._delay = delay_us / 1_000_000
        self._mount = mount or VirtualMount()
        self._clock: Clock = clock or SystemClock()
        self._selector = selectors.DefaultSelector()
        self._listener: socket.socket | None = None
        self._clients: dict[socket.socket, _Client] = {}
        self._next_report = 0.0
        self._stopping = False

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port); valid after start()."""
        if self._listener is None:
            return (self._host, self._port)
        host, port = self._listener.getsockname()[:2]
        return (host, port)

    @property
    def mount(self) -> VirtualMount:
        return self._mount

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def start(self) -> None:
        """Bind and listen.

        Raises:
            OSError: If the port cannot be bound.
        """
        listener = socket.create_server((self._host, self._port))
        listener.setblocking(False)
        self._selector.register(listener, selectors.EVENT_READ, data=None)
        self._listener = listener
        self._next_report = self._clock.monotonic()
        logger.info("Bridge server listening", port=self.address[1], delay_s=self._delay)

    def stop(self) -> None:
        """Ask serve_forever() to return after the current iteration."""
        self._stopping = True

    def serve_forever(self) -> None:
        while not self._stopping:
            self.run_once()

    def run_once(self, timeout: float | None = None) -> None:
        """Handle ready sockets, then report position if it is due.

        Args:
            timeout: Longest wait for socket activity. Defaults to the time
                left until the next report.
        """
        if timeout is None:
            timeout = max(0.0, self._next_report - self._clock.monotonic())
        for key, _ in self._selector.select(timeout):
            if key.data is None:
                self._accept()
            else:
                self._receive(key.fileobj, key.data)  # type: ignore[arg-type]

        now = self._clock.monotonic()
        if now >= self._next_report:
            self._next_report = now + self._delay
            self._broadcast()

    def _accept(self) -> None:
        assert self._listener is not None
        try:
            conn, address = self._listener.accept()
        except (BlockingIOError, InterruptedError):
            return
        conn.setblocking(False)
        client = _Client(address)
        self._clients[conn] = client
        self._selector.register(conn, selectors.EVENT_READ, data=client)
        logger.info("Client connected", client=str(address))

    def _receive(self, conn: socket.socket, client: _Client) -> None:
        try:
            data = conn.recv(RECV_SIZE)
        except (BlockingIOError, InterruptedError):
            return
        except OSError as e:
            self._drop(conn, str(e))
            return
        if not data:
            self._drop(conn, "closed by client")
            return

        try:
            commands = client.decoder.feed(data)
        except ProtocolFramingError as e:
            self._drop(conn, str(e))
            return
        for command in commands:
            try:
                self._mount.goto(command.direction)
            except ValueError as e:
                logger.warning("Ignoring goto", client=str(client.address), error=str(e))
                continue
            logger.info("Goto received", client=str(client.address), target=command.direction)

    def _broadcast(self) -> None:
        direction = self._mount.step()
        payload = PositionReport(direction, STATUS_OK, self._clock.time_us()).encode()
        for conn, client in list(self._clients.items()):
            client.outbox.extend(payload)
            if len(client.outbox) > MAX_CLIENT_BACKLOG:
                self._drop(conn, "client not reading")
                continue
            try:
                sent = conn.send(client.outbox)
            except (BlockingIOError, InterruptedError):
                continue
            except OSError as e:
                self._drop(conn, str(e))
                continue
            del client.outbox[:sent]

    def _drop(self, conn: socket.socket, reason: str) -> None:
        client = self._clients.pop(conn, None)
        self._selector.unregister(conn)
        conn.close()
        logger.info(
            "Client disconnected",
            client=str(client.address) if client else "?",
            reason=reason,
        )

    def close(self) -> None:
        for conn in list(self._clients):
            self._drop(conn, "server shutting down")
        if self._listener is not None:
            self._selector.unregister(self._listener)
            self._listener.close()
            self._listener = None
        self._selector.close()

    def __enter__(self) -> BridgeServer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def _delay(value: str) -> int:
    delay = int(value)
    if not 0 < delay < MAX_DELAY_US:
        raise argparse.ArgumentTypeError(f"delay must be in (0, {MAX_DELAY_US}) us")
    return delay


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse the bridge server command line.

    Returns:
        Namespace with port, delay, serial_port, host and log_level.

    Example:
        >>> args = parse_args(["--port", "10001", "--delay", "250000"])
        >>> args.port, args.delay
        (10001, 250000)
    """
    parser = argparse.ArgumentParser(
        prog="telescope-control-server",
        description="Telescope protocol server with a simulated mount",
    )
    parser.add_argument("--port", type=int, required=True, help="TCP port to listen on")
    parser.add_argument(
        "--delay",
        type=_delay,
        default=DEFAULT_DELAY_US,
        help="Interval between position reports in microseconds",
    )
    parser.add_argument(
        "--serial-port",
        default=None,
        help="Serial device of the mount (accepted for compatibility; the "
        "simulated mount does not use it)",
    )
    parser.add_argument("--host", default="", help="Interface to bind (default: all)")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug"],
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entry point of telescope-control-server.

    Serves until SIGTERM or SIGINT.

    Returns:
        Process exit code.
    """
    args = parse_args(argv)
    configure_logging(level=args.log_level.upper(), stream=sys.stdout, force=True)

    server = BridgeServer(args.port, args.delay, host=args.host)

    def _request_stop(signum: int, frame: Any) -> None:
        logger.info("Stop requested", signal=signal.Signals(signum).name)
        server.stop()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)

    try:
        server.start()
    except OSError as e:
        logger.error("Cannot listen", port=args.port, error=str(e))
        return 1

    if args.serial_port:
        logger.info("Serial port ignored by simulated mount", serial_port=args.serial_port)

    with server:
        server.serve_forever()
    logging.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
