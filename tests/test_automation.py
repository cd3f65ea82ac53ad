"""Unit tests for the ASCOM automation transport.

Uses a mock backend and a fake ITelescope object, so neither pywin32 nor
alpyca is needed.
"""

from __future__ import annotations

import math

import pytest

from telescope_control.description import ConnectionKind, TelescopeDescription
from telescope_control.exceptions import ConnectError
from telescope_control.transports import (
    AscomTelescopeBackend,
    AutomationTransport,
    ConnectionState,
    TelescopeBackend,
)
from tests.helpers import assert_implements_protocol

# =============================================================================
# Mock Classes for Testing
# =============================================================================


class MockBackend:
    """Mock backend implementing TelescopeBackend protocol."""

    def __init__(self) -> None:
        self.connected = False
        self.coordinates = (0.0, 0.0)
        self.slews: list[tuple[float, float]] = []
        self.fail_connect = False
        self.fail_read = False
        self.fail_disconnect = False

    def connect(self) -> None:
        if self.fail_connect:
            raise RuntimeError("driver not responding")
        self.connected = True

    def disconnect(self) -> None:
        if self.fail_disconnect:
            raise RuntimeError("COM object released")
        self.connected = False

    def read_coordinates(self) -> tuple[float, float]:
        if self.fail_read:
            raise RuntimeError("timeout")
        return self.coordinates

    def slew_to(self, ra_hours: float, dec_degrees: float) -> None:
        self.slews.append((ra_hours, dec_degrees))


class FakeTelescopeDevice:
    """Stand-in for an ASCOM ITelescope object."""

    def __init__(self, accept_connection: bool = True) -> None:
        self._accept = accept_connection
        self._connected = False
        self.RightAscension = 6.0
        self.Declination = 45.0
        self.CanSetTracking = True
        self.Tracking = False
        self.slews: list[tuple[float, float]] = []

    @property
    def Connected(self) -> bool:  # noqa: N802
        return self._connected

    @Connected.setter
    def Connected(self, value: bool) -> None:  # noqa: N802
        self._connected = value and self._accept

    def SlewToCoordinatesAsync(self, ra: float, dec: float) -> None:  # noqa: N802
        self.slews.append((ra, dec))


@pytest.fixture
def ascom_description() -> TelescopeDescription:
    return TelescopeDescription(
        name="Alpaca",
        connection=ConnectionKind.ASCOM_REMOTE,
        host="10.0.0.2",
        port=11111,
        delay=200_000,
    )


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def transport(ascom_description, backend, clock) -> AutomationTransport:
    transport = AutomationTransport(ascom_description, backend, clock=clock)
    transport.open()
    return transport


# =============================================================================
# AutomationTransport
# =============================================================================


class TestAutomationTransport:
    """Tests for AutomationTransport."""

    def test_mock_backend_is_a_backend(self, backend):
        assert_implements_protocol(backend, TelescopeBackend)

    def test_open_connects_backend(self, transport, backend):
        assert backend.connected
        assert transport.state is ConnectionState.CONNECTED

    def test_connect_failure_becomes_connect_error(self, ascom_description, backend):
        backend.fail_connect = True
        transport = AutomationTransport(ascom_description, backend)
        with pytest.raises(ConnectError, match="driver not responding"):
            transport.open()

    def test_poll_converts_coordinates(self, transport, backend):
        """Verifies RA hours and Dec degrees become a direction vector.

        Arrangement:
        1. Backend reporting RA 6h, Dec 0 (the +Y axis).

        Action:
        Polls once.

        Assertion Strategy:
        Validates conversion by confirming the recorded direction is
        (0, 1, 0) within floating point error.
        """
        backend.coordinates = (6.0, 0.0)

        assert transport.poll() == 1
        assert math.dist(transport.position.direction, (0.0, 1.0, 0.0)) < 1e-12

    def test_poll_throttled_by_delay(self, transport, clock):
        assert transport.poll() == 1
        assert transport.poll() == 0
        clock.advance(0.25)
        assert transport.poll() == 1

    def test_read_failure_becomes_connect_error(self, transport, backend):
        backend.fail_read = True
        with pytest.raises(ConnectError, match="position read failed"):
            transport.poll()

    def test_flush_slews_in_hours_and_degrees(self, transport, backend):
        transport.queue_goto((0.0, 0.0, 1.0))

        assert transport.flush() == 1
        ra_hours, dec_degrees = backend.slews[0]
        assert ra_hours == 0.0
        assert math.isclose(dec_degrees, 90.0)
        assert transport.flush() == 0

    def test_flush_negative_ra_wraps(self, transport, backend):
        transport.queue_goto((0.0, -1.0, 0.0))
        transport.flush()
        assert math.isclose(backend.slews[0][0], 18.0)

    def test_close_disconnects(self, transport, backend):
        assert transport.close() is True
        assert not backend.connected
        assert transport.state is ConnectionState.DISCONNECTED

    def test_close_tolerates_disconnect_error(self, transport, backend):
        backend.fail_disconnect = True
        assert transport.close() is True


# =============================================================================
# AscomTelescopeBackend
# =============================================================================


class TestAscomTelescopeBackend:
    """Tests for the ITelescope adapter."""

    def test_connect_and_read(self):
        device = FakeTelescopeDevice()
        backend = AscomTelescopeBackend(device, "Fake.Telescope")

        backend.connect()

        assert device.Connected
        assert backend.read_coordinates() == (6.0, 45.0)

    def test_refused_connection(self):
        device = FakeTelescopeDevice(accept_connection=False)
        backend = AscomTelescopeBackend(device, "Fake")
        with pytest.raises(ConnectError, match="refused"):
            backend.connect()

    def test_slew_enables_tracking(self):
        device = FakeTelescopeDevice()
        backend = AscomTelescopeBackend(device, "Fake")

        backend.slew_to(12.0, -30.0)

        assert device.Tracking is True
        assert device.slews == [(12.0, -30.0)]

    def test_disconnect(self):
        device = FakeTelescopeDevice()
        backend = AscomTelescopeBackend(device, "Fake")
        backend.connect()
        backend.disconnect()
        assert not device.Connected
        assert repr(backend) == "<AscomTelescopeBackend(Fake)>"
