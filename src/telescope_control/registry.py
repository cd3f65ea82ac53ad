"""Slot registry: descriptions and live transports per slot.

SlotRegistry is the single owner of the slot table. For each slot in
[1, MAX_SLOTS] it holds an optional persisted TelescopeDescription and, when
the slot is active, the live Transport plus the slot's optional log file.

Every operation reports failure as a boolean result and a log record;
nothing here raises for an invalid slot, a missing description, a slot
that is already active, or a transport that fails to start.

Example:
    from telescope_control.registry import SlotRegistry

    with SlotRegistry(catalog, config) as registry:
        registry.add_at_slot(1, description)
        if registry.start_at_slot(1):
            print(registry.is_connected(1))
    # All slots stopped on exit
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from telescope_control.catalog import DeviceCatalog
from telescope_control.config import ControlConfig
from telescope_control.description import TelescopeDescription, is_valid_slot
from telescope_control.exceptions import (
    AlreadyActiveError,
    InvalidSlotError,
    MissingDescriptionError,
    TelescopeControlError,
)
from telescope_control.observability import LogContext, get_logger
from telescope_control.slot_log import SlotLog
from telescope_control.transports import Clock, ConnectionState, Transport, create_client

logger = get_logger(__name__)

ClientFactory = Callable[..., Transport]


class SlotRegistry:
    """Bounded slot table owning transport and log lifecycles.

    Provides:
    - Description storage per slot (no validation on add)
    - Start/stop of one transport per slot, with rollback on failure
    - In-memory status queries for the GUI
    - Automatic cleanup via context manager

    Thread Safety:
        Not thread-safe. All calls are expected from the host's main thread.
    """

    def __init__(
        self,
        catalog: DeviceCatalog,
        config: ControlConfig | None = None,
        client_factory: ClientFactory = create_client,
        clock: Clock | None = None,
    ) -> None:
        """Create an empty registry.

        Args:
            catalog: Device catalog handed to the transport factory.
            config: Timeouts, log directory and server log switch.
            client_factory: Callable with the signature of create_client,
                injectable for testing.
            clock: Time source handed to transports.
        """
        self._catalog = catalog
        self._config = config or ControlConfig()
        self._client_factory = client_factory
        self._clock = clock

        self._descriptions: dict[int, TelescopeDescription] = {}
        self._transports: dict[int, Transport] = {}
        self._logs: dict[int, SlotLog] = {}

    @property
    def catalog(self) -> DeviceCatalog:
        return self._catalog

    @catalog.setter
    def catalog(self, catalog: DeviceCatalog) -> None:
        """Swap the catalog used for slots started from now on."""
        self._catalog = catalog

    @property
    def config(self) -> ControlConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Descriptions
    # -------------------------------------------------------------------------

    def add_at_slot(self, slot: int, description: TelescopeDescription) -> bool:
        """Store a description, replacing any previous one.

        The description is not validated here; validation happens when the
        slot is started, so incomplete configurations can still be saved.
        A live transport keeps running with the description it was
        started from.

        Args:
            slot: Slot number.
            description: Description to store.

        Returns:
            False only if slot is out of range.
        """
        if not is_valid_slot(slot):
            logger.warning("Cannot add telescope", error=str(InvalidSlotError(slot)))
            return False
        self._descriptions[slot] = description
        logger.debug("Description stored", slot=slot, telescope=description.name)
        return True

    def get_at_slot(self, slot: int) -> TelescopeDescription | None:
        """Description stored at slot, or None (also for invalid slots)."""
        if not is_valid_slot(slot):
            return None
        return self._descriptions.get(slot)

    def remove_at_slot(self, slot: int) -> bool:
        """Erase the description at slot.

        A live transport is not stopped; call stop_at_slot() first to
        release it. Removing from an empty slot succeeds.

        Returns:
            False only if slot is out of range.
        """
        if not is_valid_slot(slot):
            logger.warning("Cannot remove telescope", error=str(InvalidSlotError(slot)))
            return False
        removed = self._descriptions.pop(slot, None)
        if removed is not None:
            logger.debug("Description removed", slot=slot, telescope=removed.name)
        return True

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start_at_slot(self, slot: int) -> bool:
        """Create and open the transport for the slot's description.

        Opens the slot log first when server logs are enabled, so a spawned
        server's output and the startup records land in it.

        On failure nothing is left behind: no transport entry, no open log,
        no running process.

        Args:
            slot: Slot number.

        Returns:
            True if the slot is now active (CONNECTING or CONNECTED). False
            if the slot is invalid, empty or already active, or the transport
            could not be built or opened.

        Example:
            registry.add_at_slot(2, description)
            if not registry.start_at_slot(2):
                print("see log for the cause")
        """
        with LogContext(slot=slot):
            try:
                description = self._startable_description(slot)
            except TelescopeControlError as e:
                logger.warning("Cannot start telescope", error=str(e))
                return False

            log = self._open_log(slot)
            try:
                transport = self._client_factory(
                    description,
                    catalog=self._catalog,
                    config=self._config,
                    log=log,
                    clock=self._clock,
                )
            except Exception as e:
                logger.warning(
                    "Telescope failed to start",
                    telescope=description.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self._close_log(slot)
                return False

            if transport.state is ConnectionState.FAILED:
                logger.warning(
                    "Telescope failed to start",
                    telescope=description.name,
                    error=str(transport.error),
                )
                transport.close()
                self._close_log(slot)
                return False

            self._transports[slot] = transport
            logger.info(
                "Telescope started",
                telescope=description.name,
                connection=description.connection.value,
                state=transport.state.value,
            )
            return True

    def _startable_description(self, slot: int) -> TelescopeDescription:
        if not is_valid_slot(slot):
            raise InvalidSlotError(slot)
        description = self._descriptions.get(slot)
        if description is None:
            raise MissingDescriptionError(f"No telescope configured at slot {slot}")
        if slot in self._transports:
            raise AlreadyActiveError(f"Slot {slot} is already active")
        return description

    def stop_at_slot(self, slot: int) -> bool:
        """Close the slot's transport and log and forget the entry.

        Stopping an inactive slot is a successful no-op. For a LOCAL slot
        the server gets the configured grace period before it is killed.

        Returns:
            True if nothing was live or the release was confirmed. False if
            the slot is invalid or an owned process could not be confirmed
            gone (a warning is logged; the entry is removed either way).
        """
        if not is_valid_slot(slot):
            logger.warning("Cannot stop telescope", error=str(InvalidSlotError(slot)))
            return False

        transport = self._transports.pop(slot, None)
        if transport is None:
            self._close_log(slot)
            return True

        with LogContext(slot=slot):
            try:
                confirmed = transport.close()
            except (TelescopeControlError, OSError) as e:
                logger.warning("Error while stopping telescope", telescope=transport.name, error=str(e))
                confirmed = False

            if confirmed:
                logger.info("Telescope stopped", telescope=transport.name)
            else:
                logger.warning("Telescope stop not confirmed", telescope=transport.name)
            self._close_log(slot)
        return confirmed

    def stop_all(self) -> bool:
        """Stop every active slot.

        Returns:
            True iff every slot stopped cleanly.
        """
        results = [self.stop_at_slot(slot) for slot in sorted(self._transports)]
        return all(results)

    def delete_all(self) -> None:
        """Stop every slot, then erase every description."""
        self.stop_all()
        self._descriptions.clear()
        logger.debug("All descriptions deleted")

    def _open_log(self, slot: int) -> SlotLog | None:
        if not self._config.use_server_logs:
            return None
        try:
            log = SlotLog.open(self._config.resolved_log_dir, slot)
        except OSError as e:
            logger.warning("Cannot open server log", error=str(e))
            return None
        self._logs[slot] = log
        return log

    def _close_log(self, slot: int) -> None:
        log = self._logs.pop(slot, None)
        if log is not None:
            log.close()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_active(self, slot: int) -> bool:
        """True if the slot has a live transport (connected or not)."""
        return slot in self._transports

    def is_connected(self, slot: int) -> bool:
        """True if the slot's transport is CONNECTED."""
        transport = self._transports.get(slot)
        return transport is not None and transport.is_connected

    def transport_at_slot(self, slot: int) -> Transport | None:
        return self._transports.get(slot)

    def log_stream_at_slot(self, slot: int) -> SlotLog | None:
        """Open log of the slot, used by SlotLogHandler."""
        return self._logs.get(slot)

    @property
    def active_slots(self) -> list[int]:
        """Sorted slots with a live transport."""
        return sorted(self._transports)

    @property
    def descriptions(self) -> dict[int, TelescopeDescription]:
        """Copy of the stored descriptions keyed by slot."""
        return dict(self._descriptions)

    def connected_clients_names(self) -> dict[int, str]:
        """Names of the connected telescopes keyed by slot."""
        return {
            slot: transport.name
            for slot, transport in sorted(self._transports.items())
            if transport.is_connected
        }

    # -------------------------------------------------------------------------
    # Context manager
    # -------------------------------------------------------------------------

    def __enter__(self) -> SlotRegistry:
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop_all()

    def __repr__(self) -> str:
        return (
            f"<SlotRegistry(described={sorted(self._descriptions)}, "
            f"active={self.active_slots})>"
        )


__all__ = ["SlotRegistry", "ClientFactory"]
