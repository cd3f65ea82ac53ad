"""Automation-layer transports (ASCOM).

ASCOM mounts are driven through their telescope object rather than the
wire protocol: on Windows through a COM driver selected by ProgID, anywhere
else through an Alpaca device over HTTP. Both expose the same ITelescope
members, so one backend adapter serves both and only the way the device
object is obtained differs.

The COM (pywin32) and Alpaca (alpyca) libraries are imported when a
backend is created, so the rest of the package works without them.

Example:
    backend = AscomTelescopeBackend.alpaca("192.168.1.20:11111", 0)
    transport = AutomationTransport(description, backend)
    transport.open()
"""

from __future__ import annotations

import math
from typing import Any, Protocol, runtime_checkable

from telescope_control.description import TelescopeDescription
from telescope_control.exceptions import ConnectError
from telescope_control.observability import get_logger
from telescope_control.protocol import (
    STATUS_OK,
    PositionReport,
    angles_to_direction,
    direction_to_angles,
)
from telescope_control.transports.types import BaseTransport, Clock, ConnectionState

logger = get_logger(__name__)

HOURS_PER_RADIAN = 12.0 / math.pi


@runtime_checkable
class TelescopeBackend(Protocol):  # pragma: no cover
    """Protocol for an automation-layer telescope.

    Example:
        class MockBackend:
            def __init__(self):
                self.connected = False
                self.coordinates = (0.0, 0.0)

            def connect(self) -> None:
                self.connected = True

            def disconnect(self) -> None:
                self.connected = False

            def read_coordinates(self) -> tuple[float, float]:
                return self.coordinates

            def slew_to(self, ra_hours: float, dec_degrees: float) -> None:
                self.coordinates = (ra_hours, dec_degrees)
    """

    def connect(self) -> None:
        """Establish the link to the driver.

        Raises:
            Exception: Driver-specific error if the mount is unreachable.
        """
        ...

    def disconnect(self) -> None:
        """Release the link to the driver."""
        ...

    def read_coordinates(self) -> tuple[float, float]:
        """Current (right ascension hours, declination degrees)."""
        ...

    def slew_to(self, ra_hours: float, dec_degrees: float) -> None:
        """Start an asynchronous slew to the coordinates."""
        ...


class AscomTelescopeBackend:
    """Adapter over an ASCOM ITelescope object (COM or Alpaca)."""

    def __init__(self, device: Any, label: str) -> None:
        """Wrap a telescope device object.

        Args:
            device: Object exposing the ITelescope members.
            label: Driver identity used in log messages.
        """
        self._device = device
        self._label = label

    @classmethod
    def com(cls, prog_id: str) -> AscomTelescopeBackend:
        """Create a backend for an ASCOM COM driver (Windows).

        Raises:
            ConnectError: If pywin32 is unavailable or the driver cannot be
                instantiated.
        """
        try:
            import win32com.client
        except ImportError as e:
            raise ConnectError(
                "ASCOM COM drivers need pywin32 on Windows. "
                "Run: pip install 'telescope-control[ascom]'"
            ) from e
        try:
            device = win32com.client.Dispatch(prog_id)
        except Exception as e:
            raise ConnectError(f"Cannot create ASCOM driver {prog_id!r}: {e}") from e
        return cls(device, prog_id)

    @classmethod
    def alpaca(cls, address: str, device_number: int = 0) -> AscomTelescopeBackend:
        """Create a backend for an ASCOM Alpaca telescope.

        Args:
            address: "host:port" of the Alpaca server.
            device_number: Telescope device number on that server.

        Raises:
            ConnectError: If alpyca is not installed.
        """
        try:
            from alpaca.telescope import Telescope
        except ImportError as e:
            raise ConnectError(
                "ASCOM Alpaca support needs alpyca. "
                "Run: pip install 'telescope-control[ascom]'"
            ) from e
        return cls(Telescope(address, device_number), f"{address}/{device_number}")

    def connect(self) -> None:
        self._device.Connected = True
        if not self._device.Connected:
            raise ConnectError(f"ASCOM driver {self._label} refused to connect")

    def disconnect(self) -> None:
        self._device.Connected = False

    def read_coordinates(self) -> tuple[float, float]:
        return float(self._device.RightAscension), float(self._device.Declination)

    def slew_to(self, ra_hours: float, dec_degrees: float) -> None:
        if self._device.CanSetTracking and not self._device.Tracking:
            self._device.Tracking = True
        self._device.SlewToCoordinatesAsync(ra_hours, dec_degrees)

    def __repr__(self) -> str:
        return f"<AscomTelescopeBackend({self._label})>"


class AutomationTransport(BaseTransport):
    """Transport driving a mount through an automation backend.

    Position is read at most once per description delay. Driver errors
    of any type are converted to ConnectError, which fails the slot.
    """

    def __init__(
        self,
        description: TelescopeDescription,
        backend: TelescopeBackend,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(description, clock)
        self._backend = backend
        self._next_read = 0.0

    @property
    def backend(self) -> TelescopeBackend:
        return self._backend

    def open(self) -> None:
        """Connect the backend.

        Raises:
            ConnectError: If the driver does not connect.
        """
        self._set_state(ConnectionState.CONNECTING)
        try:
            self._backend.connect()
        except ConnectError:
            raise
        except Exception as e:
            raise ConnectError(f"ASCOM connect failed: {e}") from e
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Automation link open", telescope=self.name, backend=repr(self._backend))

    def poll(self) -> int:
        if self._state is not ConnectionState.CONNECTED:
            return 0
        now = self._clock.monotonic()
        if now < self._next_read:
            return 0
        self._next_read = now + self.delay / 1_000_000

        try:
            ra_hours, dec_degrees = self._backend.read_coordinates()
        except Exception as e:
            raise ConnectError(f"ASCOM position read failed: {e}") from e
        direction = angles_to_direction(ra_hours / HOURS_PER_RADIAN, math.radians(dec_degrees))
        self._record_position(PositionReport(direction, STATUS_OK, self._clock.time_us()))
        return 1

    def flush(self) -> int:
        if self._state is not ConnectionState.CONNECTED:
            return 0
        command = self._take_pending_goto()
        if command is None:
            return 0
        ra, dec = direction_to_angles(command.direction)
        try:
            self._backend.slew_to(ra * HOURS_PER_RADIAN, math.degrees(dec))
        except Exception as e:
            raise ConnectError(f"ASCOM slew failed: {e}") from e
        logger.debug("Slew requested", telescope=self.name, ra_rad=ra, dec_rad=dec)
        return 1

    def close(self) -> bool:
        if self._state in (ConnectionState.CONNECTED, ConnectionState.FAILED):
            try:
                self._backend.disconnect()
            except Exception as e:
                logger.warning("ASCOM disconnect failed", telescope=self.name, error=str(e))
        if self._state is not ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)
        return True


__all__ = ["TelescopeBackend", "AscomTelescopeBackend", "AutomationTransport"]
