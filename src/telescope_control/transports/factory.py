"""Transport factory: one dispatch on the connection kind.

create_client() validates a description, builds the transport variant for
its connection kind and opens it. It never raises for an invalid
description, an unsupported kind, or a failed spawn/connect: the caller
gets a transport in FAILED with the cause in transport.error, and every
resource acquired on the way has been released.

Example:
    transport = create_client(description, catalog=catalog, config=config)
    if transport.state is ConnectionState.FAILED:
        print(transport.error)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from telescope_control.catalog import DeviceCatalog
from telescope_control.config import ControlConfig
from telescope_control.description import (
    ConnectionKind,
    TelescopeDescription,
    validate_description,
)
from telescope_control.exceptions import (
    InvalidDescriptionError,
    TelescopeControlError,
    UnsupportedConnectionError,
)
from telescope_control.observability import get_logger
from telescope_control.transports.automation import AscomTelescopeBackend, AutomationTransport
from telescope_control.transports.bridged import BridgedTransport
from telescope_control.transports.direct import SerialTransport, TcpTransport
from telescope_control.transports.process import ServerProcess, build_server_argv
from telescope_control.transports.types import (
    BaseTransport,
    Clock,
    Transport,
    UnavailableTransport,
)
from telescope_control.transports.virtual import VirtualTransport

if TYPE_CHECKING:
    from telescope_control.slot_log import SlotLog

logger = get_logger(__name__)


@dataclass(frozen=True)
class FactoryContext:
    """Everything a builder may need besides the description."""

    catalog: DeviceCatalog
    config: ControlConfig
    log: SlotLog | None = None
    clock: Clock | None = None


TransportBuilder = Callable[[TelescopeDescription, FactoryContext], BaseTransport]


def _build_remote(description: TelescopeDescription, context: FactoryContext) -> BaseTransport:
    return TcpTransport(
        description,
        connect_timeout=context.config.connect_timeout,
        reconnect_interval=context.config.reconnect_interval,
        clock=context.clock,
    )


def _build_serial(description: TelescopeDescription, context: FactoryContext) -> BaseTransport:
    return SerialTransport(description, clock=context.clock)


def _build_local(description: TelescopeDescription, context: FactoryContext) -> BaseTransport:
    command = description.server
    if not command:
        model = context.catalog.get(description.device_model or "")
        if model is None:
            raise InvalidDescriptionError(
                f"Unknown device model {description.device_model!r}"
            )
        command = model.server

    argv = build_server_argv(command, description, context.config.servers_dir)
    output = context.log.binary if context.log is not None else None
    config = context.config
    return BridgedTransport(
        description,
        ServerProcess(argv, output=output),
        start_timeout=config.server_start_timeout,
        stop_grace_period=config.stop_grace_period,
        connect_timeout=config.connect_timeout,
        reconnect_interval=config.reconnect_interval,
        clock=context.clock,
    )


def _build_ascom_local(
    description: TelescopeDescription, context: FactoryContext
) -> BaseTransport:
    backend = AscomTelescopeBackend.com(description.ascom_driver or "")
    return AutomationTransport(description, backend, clock=context.clock)


def _build_ascom_remote(
    description: TelescopeDescription, context: FactoryContext
) -> BaseTransport:
    backend = AscomTelescopeBackend.alpaca(
        f"{description.host}:{description.port}", description.ascom_device_number
    )
    return AutomationTransport(description, backend, clock=context.clock)


def _build_virtual(description: TelescopeDescription, context: FactoryContext) -> BaseTransport:
    return VirtualTransport(description, clock=context.clock)


TRANSPORT_BUILDERS: dict[ConnectionKind, TransportBuilder] = {
    ConnectionKind.REMOTE: _build_remote,
    ConnectionKind.SERIAL: _build_serial,
    ConnectionKind.LOCAL: _build_local,
    ConnectionKind.ASCOM_LOCAL: _build_ascom_local,
    ConnectionKind.ASCOM_REMOTE: _build_ascom_remote,
    ConnectionKind.VIRTUAL: _build_virtual,
}


def create_client(
    description: TelescopeDescription,
    *,
    catalog: DeviceCatalog,
    config: ControlConfig,
    log: SlotLog | None = None,
    clock: Clock | None = None,
    builders: dict[ConnectionKind, TransportBuilder] | None = None,
) -> Transport:
    """Build and open the transport for a description.

    Args:
        description: Description of the slot being started.
        catalog: Device catalog resolving LOCAL device models.
        config: Timeouts and search paths.
        log: Slot log receiving a spawned server's output.
        clock: Time source for the transport.
        builders: Dispatch table override (defaults to TRANSPORT_BUILDERS).

    Returns:
        An open transport (CONNECTING or CONNECTED), or a FAILED one
        carrying the cause in .error.
    """
    table = TRANSPORT_BUILDERS if builders is None else builders
    context = FactoryContext(catalog=catalog, config=config, log=log, clock=clock)

    try:
        validate_description(description, catalog)
        builder = table.get(description.connection)
        if builder is None:
            raise UnsupportedConnectionError(
                f"No transport for connection kind {description.connection.value!r}"
            )
        transport = builder(description, context)
    except TelescopeControlError as e:
        logger.warning("Cannot create transport", telescope=description.name, error=str(e))
        return UnavailableTransport(description, e, clock)

    try:
        transport.open()
    except (TelescopeControlError, OSError, ValueError) as e:
        transport.mark_failed(e)
        transport.close()
    return transport


__all__ = ["FactoryContext", "TransportBuilder", "TRANSPORT_BUILDERS", "create_client"]
