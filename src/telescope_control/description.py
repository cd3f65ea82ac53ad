"""Telescope descriptions: what is configured at each slot.

A TelescopeDescription is the persisted, immutable record of how to reach
one mount. Descriptions are stored by the slot registry without validation;
validate_description() is applied by the transport factory when a slot is
started, so an operator can save a half-finished configuration.

Example:
    description = TelescopeDescription(
        name="Backyard LX200",
        connection=ConnectionKind.LOCAL,
        port=10001,
        device_model="Meade LX200 (compatible)",
        serial_port="/dev/ttyUSB0",
    )
    validate_description(description, catalog)
    data = description.to_dict()
    assert TelescopeDescription.from_dict(data) == description
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from telescope_control.config import DEFAULT_DELAY_US, MAX_SLOTS
from telescope_control.exceptions import InvalidDescriptionError

if TYPE_CHECKING:
    from telescope_control.catalog import DeviceCatalog

MIN_PORT = 1024
MAX_PORT = 65535
MAX_DELAY_US = 10_000_000


class ConnectionKind(Enum):
    """How the core reaches a mount."""

    LOCAL = "local"  # Spawned bridge server on localhost
    REMOTE = "remote"  # TCP server at host:port
    SERIAL = "serial"  # Binary protocol straight over a serial port
    ASCOM_LOCAL = "ascom_local"  # ASCOM COM driver (Windows)
    ASCOM_REMOTE = "ascom_remote"  # ASCOM Alpaca device over HTTP
    VIRTUAL = "virtual"  # In-process simulated mount

    @property
    def uses_network(self) -> bool:
        """True if the kind needs a TCP port."""
        return self in (
            ConnectionKind.LOCAL,
            ConnectionKind.REMOTE,
            ConnectionKind.ASCOM_REMOTE,
        )

    @property
    def spawns_server(self) -> bool:
        """True if starting the kind launches a bridge server process."""
        return self is ConnectionKind.LOCAL


class Equinox(Enum):
    """Equinox frame tag of the coordinates a mount speaks."""

    J2000 = "J2000"
    JNOW = "JNow"


def is_valid_slot(slot: object) -> bool:
    """Check that slot is an int in [1, MAX_SLOTS].

    Example:
        >>> is_valid_slot(1), is_valid_slot(0), is_valid_slot(True)
        (True, False, False)
    """
    return isinstance(slot, int) and not isinstance(slot, bool) and 1 <= slot <= MAX_SLOTS


def is_valid_port(port: object) -> bool:
    """Check that port is a TCP port in IANA's registered/dynamic range."""
    return (
        isinstance(port, int)
        and not isinstance(port, bool)
        and MIN_PORT <= port <= MAX_PORT
    )


def is_valid_delay(delay: object) -> bool:
    """Check that delay is a positive microsecond value below ten seconds."""
    return (
        isinstance(delay, int)
        and not isinstance(delay, bool)
        and 0 < delay < MAX_DELAY_US
    )


@dataclass(frozen=True)
class TelescopeDescription:
    """Persisted description of the telescope configured at one slot.

    Attributes:
        name: Display name shown by the GUI and sent with connect events.
        connection: Connection kind, selects the transport.
        equinox: Frame tag of the mount's coordinates.
        host: Host name or address for REMOTE and ASCOM_REMOTE.
        port: TCP port (LOCAL, REMOTE, ASCOM_REMOTE).
        delay: Position report interval / interpolation delay in microseconds.
        device_model: Catalog key selecting the bridge server for LOCAL.
        server: Explicit server command for LOCAL, overrides device_model.
        serial_port: Serial device for SERIAL, passed on to LOCAL servers.
        ascom_driver: COM ProgID for ASCOM_LOCAL.
        ascom_device_number: Alpaca device number for ASCOM_REMOTE.
        connect_at_startup: Start the slot when the configuration is loaded.
        fov_circles: Field-of-view circle diameters in degrees (GUI only).
    """

    name: str
    connection: ConnectionKind
    equinox: Equinox = Equinox.J2000
    host: str = "localhost"
    port: int | None = None
    delay: int = DEFAULT_DELAY_US
    device_model: str | None = None
    server: str | None = None
    serial_port: str | None = None
    ascom_driver: str | None = None
    ascom_device_number: int = 0
    connect_at_startup: bool = False
    fov_circles: tuple[float, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict, omitting unset optionals."""
        data: dict[str, Any] = {
            "name": self.name,
            "connection": self.connection.value,
            "equinox": self.equinox.value,
            "host_name": self.host,
            "delay": self.delay,
            "connect_at_startup": self.connect_at_startup,
        }
        if self.port is not None:
            data["tcp_port"] = self.port
        if self.device_model is not None:
            data["device_model"] = self.device_model
        if self.server is not None:
            data["server"] = self.server
        if self.serial_port is not None:
            data["serial_port"] = self.serial_port
        if self.ascom_driver is not None:
            data["ascom_driver"] = self.ascom_driver
        if self.connection is ConnectionKind.ASCOM_REMOTE or self.ascom_device_number:
            data["ascom_device_number"] = self.ascom_device_number
        if self.fov_circles:
            data["circles"] = list(self.fov_circles)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TelescopeDescription:
        """Deserialize a dict produced by to_dict().

        Raises:
            InvalidDescriptionError: If required keys are missing or a
                field has the wrong type.
        """
        if not isinstance(data, dict):
            raise InvalidDescriptionError(
                f"Description must be an object, got {type(data).__name__}"
            )
        try:
            name = data["name"]
            connection = ConnectionKind(data["connection"])
            equinox = Equinox(data.get("equinox", Equinox.J2000.value))
        except KeyError as e:
            raise InvalidDescriptionError(f"Missing field {e.args[0]!r}") from e
        except ValueError as e:
            raise InvalidDescriptionError(str(e)) from e

        if not isinstance(name, str):
            raise InvalidDescriptionError("Field 'name' must be a string")

        port = data.get("tcp_port")
        delay = data.get("delay", DEFAULT_DELAY_US)
        device_number = data.get("ascom_device_number", 0)
        for key, value in (("tcp_port", port), ("delay", delay)):
            if value is not None and (not isinstance(value, int) or isinstance(value, bool)):
                raise InvalidDescriptionError(f"Field {key!r} must be an integer")
        if not isinstance(device_number, int) or isinstance(device_number, bool):
            raise InvalidDescriptionError("Field 'ascom_device_number' must be an integer")

        circles = data.get("circles", [])
        if not isinstance(circles, list) or not all(
            isinstance(c, int | float) and not isinstance(c, bool) for c in circles
        ):
            raise InvalidDescriptionError("Field 'circles' must be a list of numbers")

        return cls(
            name=name,
            connection=connection,
            equinox=equinox,
            host=str(data.get("host_name", "localhost")),
            port=port,
            delay=delay,
            device_model=_optional_str(data, "device_model"),
            server=_optional_str(data, "server"),
            serial_port=_optional_str(data, "serial_port"),
            ascom_driver=_optional_str(data, "ascom_driver"),
            ascom_device_number=device_number,
            connect_at_startup=bool(data.get("connect_at_startup", False)),
            fov_circles=tuple(float(c) for c in circles),
        )


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidDescriptionError(f"Field {key!r} must be a string")
    return value


def validate_description(
    description: TelescopeDescription,
    catalog: DeviceCatalog | None = None,
) -> None:
    """Check a description is complete enough to start its transport.

    Args:
        description: Description to check.
        catalog: Device catalog used to resolve device_model for LOCAL.
            When None, a device_model is accepted without lookup.

    Raises:
        InvalidDescriptionError: Listing every problem found.

    Example:
        >>> validate_description(TelescopeDescription("Sim", ConnectionKind.VIRTUAL))
    """
    problems: list[str] = []
    kind = description.connection

    if not description.name:
        problems.append("name is empty")
    if not is_valid_delay(description.delay):
        problems.append(f"delay {description.delay!r} is not in (0, {MAX_DELAY_US}) us")

    if kind.uses_network and not is_valid_port(description.port):
        problems.append(
            f"port {description.port!r} is not in [{MIN_PORT}, {MAX_PORT}]"
        )
    if kind in (ConnectionKind.REMOTE, ConnectionKind.ASCOM_REMOTE) and not description.host:
        problems.append("host is empty")

    if kind.spawns_server and not description.server:
        if not description.device_model:
            problems.append("no server command or device model")
        elif catalog is not None and description.device_model not in catalog:
            problems.append(f"unknown device model {description.device_model!r}")

    if kind is ConnectionKind.SERIAL and not description.serial_port:
        problems.append("serial port is empty")
    if kind is ConnectionKind.ASCOM_LOCAL and not description.ascom_driver:
        problems.append("ASCOM driver ProgID is empty")

    if problems:
        raise InvalidDescriptionError(
            f"Invalid description {description.name!r}: " + "; ".join(problems)
        )


__all__ = [
    "ConnectionKind",
    "Equinox",
    "TelescopeDescription",
    "is_valid_slot",
    "is_valid_port",
    "is_valid_delay",
    "validate_description",
]
