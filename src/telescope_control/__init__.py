"""Telescope control core.

Manages up to MAX_SLOTS telescope mounts reached over TCP, serial ports,
spawned bridge servers, ASCOM drivers or a simulated mount, and exposes a
uniform goto operation.

    from telescope_control import TelescopeControl, TelescopeDescription, ConnectionKind
"""

from telescope_control.catalog import DeviceCatalog, DeviceModel
from telescope_control.config import MAX_SLOTS, ControlConfig
from telescope_control.control import TelescopeControl
from telescope_control.description import (
    ConnectionKind,
    Equinox,
    TelescopeDescription,
    validate_description,
)
from telescope_control.exceptions import TelescopeControlError
from telescope_control.loop import CommunicationLoop, ConnectionHooks
from telescope_control.registry import SlotRegistry
from telescope_control.store import ConfigStore, ConnectionParameters
from telescope_control.transports import ConnectionState, create_client

__version__ = "0.1.0"

__all__ = [
    "MAX_SLOTS",
    "CommunicationLoop",
    "ConfigStore",
    "ConnectionHooks",
    "ConnectionKind",
    "ConnectionParameters",
    "ConnectionState",
    "ControlConfig",
    "DeviceCatalog",
    "DeviceModel",
    "Equinox",
    "SlotRegistry",
    "TelescopeControl",
    "TelescopeControlError",
    "TelescopeDescription",
    "create_client",
    "validate_description",
    "__version__",
]
