"""Unit tests for the transport variants.

Tests the shared goto queue and state handling, the simulated mount, the
serial transport against a mock port, and the TCP transport against real
sockets on 127.0.0.1.

Test Categories:
- Goto supersession and failure handling (BaseTransport)
- VirtualMount convergence and VirtualTransport reporting
- SerialTransport framing, partial writes and link loss
- TcpTransport connect, reconnect, receive and send

Example:
    Run all transport tests:
        pdm run pytest tests/test_transports.py -v
"""

from __future__ import annotations

import math
import socket
from dataclasses import replace

import pytest

from telescope_control.description import ConnectionKind, TelescopeDescription
from telescope_control.exceptions import ConnectError, ProtocolFramingError, SpawnError
from telescope_control.protocol import STATUS_OK, GotoCommand, PositionReport
from telescope_control.transports import (
    ConnectionState,
    SerialTransport,
    TcpTransport,
    Transport,
    UnavailableTransport,
    VirtualMount,
    VirtualTransport,
)
from tests.helpers import MockClock, assert_implements_protocol, free_port, wait_until


def _distance(a, b):
    return math.dist(a, b)


@pytest.fixture
def serial_description() -> TelescopeDescription:
    return TelescopeDescription(
        name="Direct", connection=ConnectionKind.SERIAL, serial_port="/dev/ttyUSB0"
    )


@pytest.fixture
def listener():
    """Listening TCP socket on an ephemeral loopback port."""
    sock = socket.create_server(("127.0.0.1", 0))
    sock.settimeout(5.0)
    yield sock
    sock.close()


def _recv_exactly(conn: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


# =============================================================================
# Protocol compliance
# =============================================================================


class TestProtocolCompliance:
    """Every variant satisfies the Transport protocol."""

    def test_virtual(self, virtual_description):
        assert_implements_protocol(VirtualTransport(virtual_description), Transport)

    def test_serial(self, serial_description, mock_serial):
        transport = SerialTransport._create_with_serial(mock_serial, serial_description)
        assert_implements_protocol(transport, Transport)

    def test_tcp(self, remote_description):
        assert_implements_protocol(TcpTransport(remote_description), Transport)

    def test_unavailable(self, virtual_description):
        transport = UnavailableTransport(virtual_description, SpawnError("boom"))
        assert_implements_protocol(transport, Transport)


# =============================================================================
# Shared behaviour
# =============================================================================


class TestBaseTransport:
    """Tests for the goto queue, failure handling and description accessors."""

    def test_accessors_follow_description(self, virtual_description):
        transport = VirtualTransport(virtual_description)

        assert transport.name == "Sim"
        assert transport.delay == 100_000
        assert transport.description is virtual_description
        assert transport.state is ConnectionState.DISCONNECTED
        assert "VirtualTransport" in repr(transport)

    def test_later_goto_supersedes_unsent_one(self, virtual_description, clock):
        """Verifies only the most recent unsent goto reaches the mount.

        Arrangement:
        1. Open VirtualTransport with a MockClock.
        2. Two gotos queued before any flush.

        Action:
        Flushes once.

        Assertion Strategy:
        Validates supersession by confirming:
        - pending_goto holds the second command before flush.
        - The mount target is the second direction.
        - Nothing is pending after flush.
        """
        transport = VirtualTransport(virtual_description, clock=clock)
        transport.open()

        transport.queue_goto((0.0, 1.0, 0.0))
        second = transport.queue_goto((0.0, 0.0, 1.0))

        assert transport.pending_goto == second
        assert transport.flush() == 1
        assert transport.mount.target == (0.0, 0.0, 1.0)
        assert transport.pending_goto is None

    def test_goto_timestamp_from_clock(self, virtual_description, clock):
        transport = VirtualTransport(virtual_description, clock=clock)
        command = transport.queue_goto((1.0, 0.0, 0.0))
        assert command.timestamp_us == clock.time_us()

    def test_mark_failed_drops_pending_goto(self, virtual_description):
        transport = VirtualTransport(virtual_description)
        transport.open()
        transport.queue_goto((0.0, 1.0, 0.0))
        error = ConnectError("gone")

        transport.mark_failed(error)

        assert transport.state is ConnectionState.FAILED
        assert transport.error is error
        assert transport.pending_goto is None
        assert transport.poll() == 0
        assert transport.flush() == 0

    def test_close_keeps_failed_state(self, virtual_description):
        transport = VirtualTransport(virtual_description)
        transport.mark_failed(ConnectError("gone"))
        assert transport.close() is True
        assert transport.state is ConnectionState.FAILED


class TestUnavailableTransport:
    """Tests for the FAILED placeholder."""

    def test_is_failed_with_error(self, virtual_description):
        error = SpawnError("no server")
        transport = UnavailableTransport(virtual_description, error)

        assert transport.state is ConnectionState.FAILED
        assert transport.error is error
        assert not transport.is_connected

    def test_operations_are_no_ops(self, virtual_description):
        transport = UnavailableTransport(virtual_description, SpawnError("no server"))
        transport.open()
        transport.queue_goto((0.0, 1.0, 0.0))

        assert transport.pending_goto is None
        assert transport.poll() == 0
        assert transport.flush() == 0
        assert transport.close() is True


# =============================================================================
# Virtual
# =============================================================================


class TestVirtualMount:
    """Tests for the simulated mount model."""

    def test_converges_on_target(self):
        mount = VirtualMount()
        mount.goto((0.0, 1.0, 0.0))

        for _ in range(600):
            mount.step()

        assert mount.is_settled(1e-4)
        assert _distance(mount.direction, (0.0, 1.0, 0.0)) < 1e-4

    def test_each_step_gets_closer(self):
        mount = VirtualMount()
        mount.goto((0.0, 0.0, 1.0))
        previous = _distance(mount.direction, mount.target)
        for _ in range(10):
            mount.step()
            current = _distance(mount.direction, mount.target)
            assert current < previous
            previous = current

    def test_opposite_target_snaps(self):
        mount = VirtualMount(approach_rate=0.5)
        mount.goto((-1.0, 0.0, 0.0))
        assert mount.step() == (-1.0, 0.0, 0.0)

    @pytest.mark.parametrize("direction", [(0.0, 0.0, 0.0), (math.nan, 0.0, 1.0)])
    def test_invalid_goto(self, direction):
        with pytest.raises(ValueError):
            VirtualMount().goto(direction)

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            VirtualMount(approach_rate=0.0)


class TestVirtualTransport:
    """Tests for VirtualTransport."""

    def test_open_connects(self, virtual_description, clock):
        transport = VirtualTransport(virtual_description, clock=clock)
        transport.open()
        assert transport.is_connected

    def test_reports_once_per_delay(self, virtual_description, clock):
        transport = VirtualTransport(virtual_description, clock=clock)
        transport.open()

        assert transport.poll() == 1
        assert transport.poll() == 0
        clock.advance(0.05)
        assert transport.poll() == 0
        clock.advance(0.06)
        assert transport.poll() == 1
        assert transport.position.status == STATUS_OK

    def test_not_polled_before_open(self, virtual_description, clock):
        transport = VirtualTransport(virtual_description, clock=clock)
        assert transport.poll() == 0
        assert transport.position is None

    def test_goto_reaches_target(self, virtual_description, clock):
        transport = VirtualTransport(virtual_description, clock=clock)
        transport.open()
        transport.queue_goto((0.0, 0.0, 1.0))
        transport.flush()

        for _ in range(600):
            clock.advance(0.1)
            transport.poll()

        assert _distance(transport.position.direction, (0.0, 0.0, 1.0)) < 1e-4

    def test_interpolated_direction_lags_by_delay(self, virtual_description, clock):
        transport = VirtualTransport(virtual_description, clock=clock)
        transport.open()
        transport.poll()
        first = transport.position
        transport.queue_goto((0.0, 1.0, 0.0))
        transport.flush()
        clock.advance(0.1)
        transport.poll()

        # now - delay is exactly the first report
        assert transport.interpolated_direction() == first.direction
        latest = transport.position.direction
        assert transport.interpolated_direction(now=10**18) == latest


# =============================================================================
# Serial
# =============================================================================


class TestSerialTransport:
    """Tests for SerialTransport with a mock port."""

    def test_receives_reports_split_across_reads(self, serial_description, mock_serial):
        transport = SerialTransport._create_with_serial(mock_serial, serial_description)
        data = PositionReport((0.0, 1.0, 0.0), STATUS_OK, 10).encode()

        mock_serial.queue_bytes(data[:7])
        assert transport.poll() == 0
        mock_serial.queue_bytes(data[7:])
        assert transport.poll() == 1
        assert transport.position.timestamp_us == 10

    def test_flush_writes_goto(self, serial_description, mock_serial, clock):
        transport = SerialTransport._create_with_serial(
            mock_serial, serial_description, clock
        )
        command = transport.queue_goto((0.0, 0.0, 1.0))

        assert transport.flush() == 1
        assert bytes(mock_serial.written) == command.encode()
        assert transport.flush() == 0

    def test_partial_write_is_completed_before_next_goto(
        self, serial_description, mock_serial, clock
    ):
        """Verifies a half-written goto finishes before a newer one is staged.

        Arrangement:
        1. Mock port accepting only 8 bytes per write.
        2. One goto flushed, then a second queued.

        Action:
        Flushes until the port has taken both commands.

        Assertion Strategy:
        Validates ordering by confirming the written bytes are the first
        command followed by the second, never interleaved.
        """
        mock_serial.write_limit = 8
        transport = SerialTransport._create_with_serial(
            mock_serial, serial_description, clock
        )
        first = transport.queue_goto((0.0, 1.0, 0.0))
        assert transport.flush() == 1
        second = transport.queue_goto((0.0, 0.0, 1.0))

        assert transport.flush() == 0  # first still draining
        for _ in range(10):
            transport.flush()

        assert bytes(mock_serial.written) == first.encode() + second.encode()

    def test_read_failure_raises_connect_error(self, serial_description, mock_serial):
        transport = SerialTransport._create_with_serial(mock_serial, serial_description)
        mock_serial.fail_reads = True
        with pytest.raises(ConnectError, match="Serial link lost"):
            transport.poll()

    def test_write_failure_raises_connect_error(self, serial_description, mock_serial):
        transport = SerialTransport._create_with_serial(mock_serial, serial_description)
        mock_serial.fail_writes = True
        transport.queue_goto((0.0, 1.0, 0.0))
        with pytest.raises(ConnectError):
            transport.flush()

    def test_framing_error_propagates(self, serial_description, mock_serial):
        transport = SerialTransport._create_with_serial(mock_serial, serial_description)
        mock_serial.queue_bytes(b"\x02\x00\x00\x00")
        with pytest.raises(ProtocolFramingError):
            transport.poll()

    def test_close_releases_port(self, serial_description, mock_serial):
        transport = SerialTransport._create_with_serial(mock_serial, serial_description)
        assert transport.close() is True
        assert not mock_serial.is_open
        assert transport.state is ConnectionState.DISCONNECTED

    def test_open_without_port_raises(self, serial_description):
        transport = SerialTransport(replace(serial_description, serial_port=None))
        with pytest.raises(ConnectError, match="No serial port"):
            transport.open()

    def test_open_missing_device_raises(self, serial_description):
        transport = SerialTransport(
            replace(serial_description, serial_port="/dev/does-not-exist-telescope")
        )
        with pytest.raises(ConnectError):
            transport.open()


# =============================================================================
# TCP
# =============================================================================


class TestTcpTransport:
    """Tests for TcpTransport against loopback sockets."""

    def test_connects_receives_and_sends(self, remote_description, listener):
        """Verifies a full exchange with a TCP server.

        Arrangement:
        1. Listening socket on 127.0.0.1.
        2. TcpTransport pointed at its port.

        Action:
        Opens, polls until connected, receives one report, sends one goto.

        Assertion Strategy:
        Validates the exchange by confirming:
        - State reaches CONNECTED.
        - The report's direction is recorded.
        - The server receives a 20-byte goto for the queued direction.
        """
        port = listener.getsockname()[1]
        transport = TcpTransport(replace(remote_description, port=port))
        transport.open()
        assert wait_until(lambda: transport.is_connected, transport.poll)

        conn, _ = listener.accept()
        conn.settimeout(5.0)
        try:
            conn.sendall(PositionReport((0.0, 0.0, 1.0), STATUS_OK, 123).encode())
            assert wait_until(lambda: transport.position is not None, transport.poll)
            assert transport.position.timestamp_us == 123

            transport.queue_goto((0.0, 1.0, 0.0))
            assert transport.flush() == 1
            command = GotoCommand.decode(_recv_exactly(conn, 20))
            assert _distance(command.direction, (0.0, 1.0, 0.0)) < 1e-6
        finally:
            conn.close()
            transport.close()

    def test_refused_then_retried(self, remote_description):
        port = free_port()
        transport = TcpTransport(
            replace(remote_description, port=port), reconnect_interval=0.05
        )
        transport.open()
        assert transport.state is ConnectionState.CONNECTING
        connected = wait_until(lambda: transport.is_connected, transport.poll, 0.2)
        assert not connected
        assert transport.state is ConnectionState.CONNECTING

        server = socket.create_server(("127.0.0.1", port))
        try:
            assert wait_until(lambda: transport.is_connected, transport.poll)
        finally:
            transport.close()
            server.close()

    def test_server_close_disconnects(self, remote_description, listener):
        port = listener.getsockname()[1]
        description = replace(remote_description, port=port)
        transport = TcpTransport(description, reconnect_interval=60)
        transport.open()
        assert wait_until(lambda: transport.is_connected, transport.poll)

        conn, _ = listener.accept()
        conn.close()

        assert wait_until(
            lambda: transport.state is ConnectionState.DISCONNECTED, transport.poll
        )
        transport.close()

    def test_framing_error_propagates(self, remote_description, listener):
        port = listener.getsockname()[1]
        transport = TcpTransport(replace(remote_description, port=port))
        transport.open()
        assert wait_until(lambda: transport.is_connected, transport.poll)
        conn, _ = listener.accept()
        try:
            conn.sendall(b"\xff\xff\x00\x00")
            with pytest.raises(ProtocolFramingError):
                wait_until(lambda: False, transport.poll, timeout=2.0)
        finally:
            conn.close()
            transport.close()

    def test_flush_before_connect_keeps_goto(self, remote_description):
        transport = TcpTransport(replace(remote_description, port=free_port()))
        transport.queue_goto((0.0, 1.0, 0.0))
        assert transport.flush() == 0
        assert transport.pending_goto is not None

    def test_unresolvable_host_waits_for_retry(self, remote_description):
        clock = MockClock()
        transport = TcpTransport(
            replace(remote_description, host="host.invalid"), clock=clock
        )
        transport.open()
        assert transport.state is ConnectionState.CONNECTING
        assert transport.poll() == 0

    def test_unencodable_host_fails(self, remote_description):
        """A host label over 63 characters fails the transport instead of raising."""
        description = replace(remote_description, host="a" * 64 + ".example")
        transport = TcpTransport(description, clock=MockClock())

        transport.open()

        assert transport.state is ConnectionState.FAILED
        assert isinstance(transport.error, ConnectError)
        assert "Invalid host name" in str(transport.error)
        assert transport.poll() == 0
        assert transport.close() is True

    def test_create_with_socket(self, remote_description, listener):
        client = socket.create_connection(listener.getsockname()[:2])
        server_side, _ = listener.accept()
        try:
            transport = TcpTransport._create_with_socket(client, remote_description)
            assert transport.is_connected
            assert transport.address == listener.getsockname()[:2]

            server_side.sendall(PositionReport((1.0, 0.0, 0.0), STATUS_OK, 7).encode())
            assert wait_until(lambda: transport.position is not None, transport.poll)
            transport.close()
            assert transport.state is ConnectionState.DISCONNECTED
        finally:
            server_side.close()
