"""Test helpers for telescope-control.

Provides protocol compliance checks, a controllable clock, an in-memory
serial port and small socket utilities shared by the test modules.

Example:
    from tests.helpers import MockClock, assert_implements_protocol
    from telescope_control.transports import Transport

    def test_virtual_transport_is_a_transport(virtual_description):
        transport = VirtualTransport(virtual_description, clock=MockClock())
        assert_implements_protocol(transport, Transport)
"""

from __future__ import annotations

import socket
import time
from collections.abc import Callable
from typing import Any, Protocol


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance implements a runtime-checkable Protocol.

    Args:
        instance: Object to check for protocol compliance.
        protocol: Protocol class decorated with @runtime_checkable.

    Raises:
        AssertionError: Listing the members the instance lacks.
    """
    if isinstance(instance, protocol):
        return

    object_attrs = set(dir(object))
    protocol_members = {
        attr for attr in set(dir(protocol)) - object_attrs if not attr.startswith("_")
    }
    missing = sorted(m for m in protocol_members if not hasattr(instance, m))
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {', '.join(missing) or 'unknown'}"
    )


class MockClock:
    """Clock whose time only moves when told to.

    Implements the transports Clock protocol. sleep() advances time
    instead of blocking.
    """

    def __init__(self, start: float = 1_000.0) -> None:
        self._time = start

    def monotonic(self) -> float:
        return self._time

    def sleep(self, seconds: float) -> None:
        self._time += seconds

    def time_us(self) -> int:
        return int(self._time * 1_000_000)

    def advance(self, seconds: float) -> None:
        self._time += seconds


class MockSerialPort:
    """Mock serial port implementing SerialPort protocol.

    Bytes queued with queue_bytes() are returned by read(); everything
    written is kept in written.
    """

    def __init__(self) -> None:
        self.is_open = True
        self._incoming = bytearray()
        self.written = bytearray()
        self.fail_reads = False
        self.fail_writes = False
        self.write_limit: int | None = None

    @property
    def in_waiting(self) -> int:
        if self.fail_reads:
            raise OSError("device disconnected")
        return len(self._incoming)

    def queue_bytes(self, data: bytes) -> None:
        self._incoming.extend(data)

    def read(self, size: int = 1) -> bytes:
        if self.fail_reads:
            raise OSError("device disconnected")
        data = bytes(self._incoming[:size])
        del self._incoming[:size]
        return data

    def write(self, data: bytes) -> int:
        if self.fail_writes:
            raise OSError("device disconnected")
        accepted = data if self.write_limit is None else data[: self.write_limit]
        self.written.extend(accepted)
        return len(accepted)

    def close(self) -> None:
        self.is_open = False


def free_port() -> int:
    """A TCP port on 127.0.0.1 that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def wait_until(
    condition: Callable[[], Any],
    step: Callable[[], Any] | None = None,
    timeout: float = 5.0,
    interval: float = 0.01,
) -> bool:
    """Repeat step() until condition() holds or timeout elapses (real time).

    Returns:
        True if the condition was met.
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if step is not None:
            step()
        if condition():
            return True
        time.sleep(interval)
    return bool(condition())


class FakeTransport:
    """Scriptable transport for registry and loop tests.

    Subclasses nothing so that the Transport protocol, not BaseTransport,
    is what the code under test relies on.
    """

    def __init__(
        self,
        name: str = "Fake",
        *,
        connected: bool = True,
        close_result: bool = True,
        poll_error: BaseException | None = None,
        flush_error: BaseException | None = None,
    ) -> None:
        from telescope_control.description import Equinox
        from telescope_control.transports import ConnectionState

        self._states = ConnectionState
        self.name = name
        self.equinox = Equinox.J2000
        self.delay = 100_000
        self.state = (
            ConnectionState.CONNECTED if connected else ConnectionState.CONNECTING
        )
        self.error: BaseException | None = None
        self.position = None
        self.pending_goto = None
        self.close_result = close_result
        self.poll_error = poll_error
        self.flush_error = flush_error
        self.calls: list[str] = []
        self.closed = False

    @property
    def is_connected(self) -> bool:
        return self.state is self._states.CONNECTED

    def set_connected(self, connected: bool) -> None:
        self.state = self._states.CONNECTED if connected else self._states.DISCONNECTED

    def queue_goto(self, direction: Any) -> Any:
        self.pending_goto = direction
        return direction

    def interpolated_direction(self, now: int | None = None) -> Any:
        return None

    def poll(self) -> int:
        self.calls.append("poll")
        if self.poll_error is not None:
            raise self.poll_error
        return 0

    def flush(self) -> int:
        self.calls.append("flush")
        if self.flush_error is not None:
            raise self.flush_error
        return 0

    def mark_failed(self, error: BaseException) -> None:
        self.state = self._states.FAILED
        self.error = error

    def close(self) -> bool:
        self.calls.append("close")
        self.closed = True
        return self.close_result
