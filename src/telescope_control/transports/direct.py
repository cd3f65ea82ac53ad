"""Direct protocol transports: TCP socket and serial port.

Both variants speak the binary wire protocol themselves. The TCP transport
connects without blocking and keeps retrying while the server is
unreachable; the serial transport opens the port once and fails the slot
if the device goes away.

Example:
    transport = TcpTransport(description, connect_timeout=5.0)
    transport.open()
    while True:
        transport.poll()
        transport.flush()
"""

from __future__ import annotations

import errno
import os
import select
import socket

from telescope_control.config import DEFAULT_CONNECT_TIMEOUT, DEFAULT_RECONNECT_INTERVAL
from telescope_control.description import TelescopeDescription
from telescope_control.drivers.serial import DEFAULT_BAUDRATE, SerialPort, open_serial_port
from telescope_control.exceptions import ConnectError
from telescope_control.observability import get_logger
from telescope_control.protocol import FrameDecoder, PositionReport
from telescope_control.transports.types import BaseTransport, Clock, ConnectionState

logger = get_logger(__name__)

RECV_SIZE = 4096

# connect_ex() results meaning "still in progress" (10035 is WSAEWOULDBLOCK)
_CONNECT_IN_PROGRESS = frozenset({errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY, 10035})


class _FramedTransport(BaseTransport):
    """Binary framing shared by the socket and serial links."""

    def __init__(self, description: TelescopeDescription, clock: Clock | None = None) -> None:
        super().__init__(description, clock)
        self._decoder: FrameDecoder[PositionReport] = FrameDecoder(PositionReport)
        self._outbox = bytearray()

    def _receive(self, data: bytes) -> int:
        reports = self._decoder.feed(data)
        for report in reports:
            self._record_position(report)
        return len(reports)

    def _stage_goto(self) -> int:
        """Move the pending goto into the outbox once the previous one is written.

        Returns:
            1 if a command was staged, else 0.
        """
        if self._outbox:
            return 0
        command = self._take_pending_goto()
        if command is None:
            return 0
        self._outbox.extend(command.encode())
        logger.debug("Sending goto", telescope=self.name, timestamp_us=command.timestamp_us)
        return 1

    def _reset_stream(self) -> None:
        self._decoder.reset()
        self._outbox.clear()


class TcpTransport(_FramedTransport):
    """Protocol client over a non-blocking TCP socket.

    States:
        CONNECTING: from open() until the first connect succeeds; refused
            or timed out attempts are retried every reconnect_interval
        CONNECTED: reports are drained and gotos sent
        DISCONNECTED: connection dropped; retried every reconnect_interval
        FAILED: host name cannot be encoded; never retried
    """

    def __init__(
        self,
        description: TelescopeDescription,
        *,
        host: str | None = None,
        port: int | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
        clock: Clock | None = None,
    ) -> None:
        """Create a TCP transport (no I/O until open()).

        Args:
            description: Description the transport was started from.
            host: Server host, defaults to description.host.
            port: Server port, defaults to description.port.
            connect_timeout: Seconds before a pending connect is abandoned.
            reconnect_interval: Seconds between connection attempts.
            clock: Time source.
        """
        super().__init__(description, clock)
        self._host = host if host is not None else description.host
        self._port = port if port is not None else description.port
        self._connect_timeout = connect_timeout
        self._reconnect_interval = reconnect_interval
        self._socket: socket.socket | None = None
        self._connect_started = 0.0
        self._next_attempt = 0.0

    @classmethod
    def _create_with_socket(
        cls,
        sock: socket.socket,
        description: TelescopeDescription,
        *,
        clock: Clock | None = None,
    ) -> TcpTransport:
        """Create instance around an already connected socket (for testing).

        Args:
            sock: Connected socket. Switched to non-blocking mode.
            description: Description the transport represents.
            clock: Time source.

        Returns:
            CONNECTED transport.
        """
        host, port = sock.getpeername()[:2]
        instance = cls(description, host=host, port=port, clock=clock)
        instance._attach(sock)
        return instance

    @property
    def address(self) -> tuple[str, int | None]:
        """(host, port) the transport connects to."""
        return (self._host, self._port)

    def open(self) -> None:
        """Start the first connection attempt.

        Refused or unreachable servers are not an error: the transport
        stays CONNECTING and retries from poll(). A host name the resolver
        cannot encode fails the transport.
        """
        self._set_state(ConnectionState.CONNECTING)
        self._start_connect()

    def _attach(self, sock: socket.socket) -> None:
        sock.setblocking(False)
        self._socket = sock
        self._reset_stream()
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected", telescope=self.name, host=self._host, port=self._port)

    def _start_connect(self) -> None:
        try:
            family, sock_type, proto, _, address = socket.getaddrinfo(
                self._host, self._port, type=socket.SOCK_STREAM
            )[0]
            sock = socket.socket(family, sock_type, proto)
        except ValueError as e:
            self.mark_failed(ConnectError(f"Invalid host name {self._host!r}: {e}"))
            return
        except OSError as e:
            self._schedule_retry(f"cannot resolve or create socket: {e}")
            return

        sock.setblocking(False)
        try:
            result = sock.connect_ex(address)
        except OSError as e:
            result = e.errno or errno.ECONNREFUSED
        if result != 0 and result not in _CONNECT_IN_PROGRESS:
            sock.close()
            self._schedule_retry(os.strerror(result))
            return

        self._socket = sock
        self._connect_started = self._clock.monotonic()
        self._set_state(ConnectionState.CONNECTING)
        logger.debug("Connecting", telescope=self.name, host=self._host, port=self._port)

    def _finish_connect(self) -> bool:
        assert self._socket is not None
        _, writable, failed = select.select([], [self._socket], [self._socket], 0)
        if not writable and not failed:
            if self._clock.monotonic() - self._connect_started >= self._connect_timeout:
                self._schedule_retry("connect timed out")
            return False

        result = self._socket.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if result != 0:
            self._schedule_retry(os.strerror(result))
            return False

        self._reset_stream()
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected", telescope=self.name, host=self._host, port=self._port)
        return True

    def _schedule_retry(self, reason: str) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        self._reset_stream()
        self._next_attempt = self._clock.monotonic() + self._reconnect_interval
        if self._state is ConnectionState.CONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
        logger.info(
            "Connection unavailable, will retry",
            telescope=self.name,
            host=self._host,
            port=self._port,
            reason=reason,
            retry_in=self._reconnect_interval,
        )

    def poll(self) -> int:
        if self._state is ConnectionState.FAILED:
            return 0
        if self._socket is None:
            if self._clock.monotonic() >= self._next_attempt:
                self._start_connect()
            return 0
        if self._state is ConnectionState.CONNECTING and not self._finish_connect():
            return 0
        return self._drain()

    def _drain(self) -> int:
        received = 0
        while self._socket is not None:
            try:
                chunk = self._socket.recv(RECV_SIZE)
            except (BlockingIOError, InterruptedError):
                break
            except OSError as e:
                self._schedule_retry(str(e))
                break
            if not chunk:
                self._schedule_retry("connection closed by server")
                break
            received += self._receive(chunk)
        return received

    def flush(self) -> int:
        if self._state is not ConnectionState.CONNECTED or self._socket is None:
            return 0
        staged = self._stage_goto()
        if self._outbox:
            try:
                sent = self._socket.send(self._outbox)
            except (BlockingIOError, InterruptedError):
                sent = 0
            except OSError as e:
                self._schedule_retry(str(e))
                return 0
            del self._outbox[:sent]
        return staged

    def close(self) -> bool:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        self._reset_stream()
        if self._state is not ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)
        return True


class SerialTransport(_FramedTransport):
    """Protocol client over a serial port.

    The port is opened with zero timeouts so poll() and flush() only move
    bytes that are ready. Losing the device raises ConnectError from
    poll()/flush(), which fails the slot.
    """

    def __init__(
        self,
        description: TelescopeDescription,
        *,
        baudrate: int = DEFAULT_BAUDRATE,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(description, clock)
        self._baudrate = baudrate
        self._serial: SerialPort | None = None

    @classmethod
    def _create_with_serial(
        cls,
        serial_port: SerialPort,
        description: TelescopeDescription,
        clock: Clock | None = None,
    ) -> SerialTransport:
        """Create instance with injected serial port (for testing).

        Args:
            serial_port: Mock or real serial port implementing SerialPort protocol.
            description: Description the transport represents.
            clock: Time source.

        Returns:
            CONNECTED transport.
        """
        instance = cls(description, clock=clock)
        instance._attach(serial_port)
        return instance

    def open(self) -> None:
        """Open the description's serial port.

        Raises:
            ConnectError: If the port cannot be opened.
        """
        port = self._description.serial_port
        if not port:
            raise ConnectError(f"No serial port configured for {self.name!r}")
        self._attach(open_serial_port(port, self._baudrate))

    def _attach(self, serial_port: SerialPort) -> None:
        self._serial = serial_port
        self._reset_stream()
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Serial link open", telescope=self.name, port=self._description.serial_port)

    def poll(self) -> int:
        if self._state is not ConnectionState.CONNECTED or self._serial is None:
            return 0
        try:
            waiting = self._serial.in_waiting
            data = self._serial.read(waiting) if waiting else b""
        except OSError as e:
            raise ConnectError(f"Serial link lost: {e}") from e
        return self._receive(data) if data else 0

    def flush(self) -> int:
        if self._state is not ConnectionState.CONNECTED or self._serial is None:
            return 0
        staged = self._stage_goto()
        if self._outbox:
            try:
                written = self._serial.write(bytes(self._outbox))
            except OSError as e:
                raise ConnectError(f"Serial link lost: {e}") from e
            del self._outbox[: len(self._outbox) if written is None else written]
        return staged

    def close(self) -> bool:
        if self._serial is not None:
            self._serial.close()
            self._serial = None
        self._reset_stream()
        if self._state is not ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)
        return True


__all__ = ["TcpTransport", "SerialTransport"]
