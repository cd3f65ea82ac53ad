"""Transports: how the core talks to a mount.

Variants:
    TcpTransport: Binary protocol over TCP (REMOTE)
    SerialTransport: Binary protocol over a serial port (SERIAL)
    BridgedTransport: TCP to a spawned bridge server it owns (LOCAL)
    AutomationTransport: ASCOM COM or Alpaca telescope (ASCOM_LOCAL, ASCOM_REMOTE)
    VirtualTransport: In-process simulated mount (VIRTUAL)

    from telescope_control.transports import create_client, ConnectionState
"""

from telescope_control.transports.automation import (
    AscomTelescopeBackend,
    AutomationTransport,
    TelescopeBackend,
)
from telescope_control.transports.bridged import BridgedTransport
from telescope_control.transports.direct import SerialTransport, TcpTransport
from telescope_control.transports.factory import TRANSPORT_BUILDERS, create_client
from telescope_control.transports.position import PositionHistory
from telescope_control.transports.process import (
    ServerProcess,
    build_server_argv,
    resolve_server_command,
)
from telescope_control.transports.types import (
    BaseTransport,
    Clock,
    ConnectionState,
    SystemClock,
    Transport,
    UnavailableTransport,
)
from telescope_control.transports.virtual import VirtualMount, VirtualTransport

__all__ = [
    "AscomTelescopeBackend",
    "AutomationTransport",
    "BaseTransport",
    "BridgedTransport",
    "Clock",
    "ConnectionState",
    "PositionHistory",
    "SerialTransport",
    "ServerProcess",
    "SystemClock",
    "TRANSPORT_BUILDERS",
    "TcpTransport",
    "TelescopeBackend",
    "Transport",
    "UnavailableTransport",
    "VirtualMount",
    "VirtualTransport",
    "build_server_argv",
    "create_client",
    "resolve_server_command",
]
