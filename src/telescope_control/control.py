"""Telescope control core: the object a host application drives.

TelescopeControl wires the pieces together: the device catalog, the slot
registry, the communication loop and the configuration store. The host
constructs one explicitly, calls init() at startup, update() every frame,
and deinit() at shutdown.

Example:
    from telescope_control import ConnectionHooks, TelescopeControl

    hooks = ConnectionHooks(on_connected=lambda slot, name: print(slot, name))
    with TelescopeControl(hooks=hooks) as control:
        control.start_at_slot(1)
        while running:
            control.update(frame_seconds)
            control.telescope_goto(1, (0.0, 0.0, 1.0))
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np

from telescope_control.catalog import DeviceCatalog, DeviceModel, restore_default_device_models
from telescope_control.config import ControlConfig
from telescope_control.description import TelescopeDescription
from telescope_control.loop import CommunicationLoop, ConnectionHooks, DisplayFaders
from telescope_control.observability import SlotLogHandler, get_logger
from telescope_control.observability.logging import ROOT_LOGGER_NAME
from telescope_control.protocol import Vector3
from telescope_control.registry import ClientFactory, SlotRegistry
from telescope_control.store import ConfigStore, ConnectionParameters
from telescope_control.transports import Clock, ConnectionState, create_client

logger = get_logger(__name__)


class TelescopeControl:
    """Multi-slot telescope control core.

    Owns one SlotRegistry, one CommunicationLoop and one ConfigStore. All
    methods are meant to be called from the host's main thread.
    """

    def __init__(
        self,
        config: ControlConfig | None = None,
        hooks: ConnectionHooks | None = None,
        *,
        clock: Clock | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Create the core without touching the filesystem.

        Args:
            config: Directories, timeouts and logging switches.
            hooks: Connection event callbacks for the host.
            clock: Time source handed to transports.
            client_factory: Transport factory override (for testing).
        """
        self._config = config or ControlConfig()
        self._faders = DisplayFaders()
        self._registry = SlotRegistry(
            DeviceCatalog(),
            self._config,
            client_factory or create_client,
            clock,
        )
        self._loop = CommunicationLoop(self._registry, hooks, self._faders)
        self._store = ConfigStore(self._config.config_dir)
        self._log_handler: SlotLogHandler | None = None

    @property
    def config(self) -> ControlConfig:
        return self._config

    @property
    def registry(self) -> SlotRegistry:
        return self._registry

    @property
    def loop(self) -> CommunicationLoop:
        return self._loop

    @property
    def store(self) -> ConfigStore:
        return self._store

    # -------------------------------------------------------------------------
    # Startup / shutdown
    # -------------------------------------------------------------------------

    def init(self) -> None:
        """Load the device catalog and the saved telescopes.

        Slots marked connect_at_startup are started. Per-slot log routing
        is attached to the package logger.
        """
        self._attach_log_handler()
        self._registry.catalog = DeviceCatalog.load(
            self._config.resolved_device_models_path,
            indi_drivers_path=self._config.indi_drivers_path,
        )
        self.load_telescopes()

    def deinit(self) -> bool:
        """Stop every slot and detach log routing.

        Returns:
            True if every slot stopped cleanly.
        """
        clean = self.stop_all()
        self._detach_log_handler()
        return clean

    def _attach_log_handler(self) -> None:
        if self._log_handler is not None:
            return
        self._log_handler = SlotLogHandler(self._registry.log_stream_at_slot)
        logging.getLogger(ROOT_LOGGER_NAME).addHandler(self._log_handler)

    def _detach_log_handler(self) -> None:
        if self._log_handler is None:
            return
        logging.getLogger(ROOT_LOGGER_NAME).removeHandler(self._log_handler)
        self._log_handler.close()
        self._log_handler = None

    # -------------------------------------------------------------------------
    # Goto
    # -------------------------------------------------------------------------

    def telescope_goto(self, slot: int, direction: Sequence[float]) -> bool:
        """Queue a slew of the telescope at slot toward direction.

        The vector is normalized before it is queued. A goto issued before
        the previous one was sent replaces it.

        Args:
            slot: Slot number.
            direction: Three-component direction vector in the mount's
                equinox frame.

        Returns:
            False if the slot is not active, its transport has failed, or
            direction is not a finite non-zero 3-vector.
        """
        transport = self._registry.transport_at_slot(slot)
        if transport is None:
            logger.warning("Goto ignored, slot not active", slot=slot)
            return False
        if transport.state is ConnectionState.FAILED:
            logger.warning("Goto ignored, transport failed", slot=slot, telescope=transport.name)
            return False

        vector = np.asarray(direction, dtype=float)
        if vector.shape != (3,) or not np.all(np.isfinite(vector)):
            logger.warning("Goto ignored, invalid direction", slot=slot)
            return False
        norm = float(np.linalg.norm(vector))
        if norm == 0.0:
            logger.warning("Goto ignored, zero direction", slot=slot)
            return False

        x, y, z = (vector / norm).tolist()
        transport.queue_goto((x, y, z))
        return True

    def telescope_direction(self, slot: int) -> Vector3 | None:
        """Interpolated direction of the telescope at slot, for display."""
        transport = self._registry.transport_at_slot(slot)
        return transport.interpolated_direction() if transport is not None else None

    # -------------------------------------------------------------------------
    # Slots
    # -------------------------------------------------------------------------

    def add_at_slot(self, slot: int, description: TelescopeDescription) -> bool:
        return self._registry.add_at_slot(slot, description)

    def get_at_slot(self, slot: int) -> TelescopeDescription | None:
        return self._registry.get_at_slot(slot)

    def remove_at_slot(self, slot: int) -> bool:
        return self._registry.remove_at_slot(slot)

    def start_at_slot(self, slot: int) -> bool:
        return self._registry.start_at_slot(slot)

    def stop_at_slot(self, slot: int) -> bool:
        stopped = self._registry.stop_at_slot(slot)
        self._loop.detect_connection_changes()
        return stopped

    def stop_all(self) -> bool:
        stopped = self._registry.stop_all()
        self._loop.detect_connection_changes()
        return stopped

    def delete_all(self) -> None:
        self._registry.delete_all()
        self._loop.detect_connection_changes()

    def is_active(self, slot: int) -> bool:
        return self._registry.is_active(slot)

    def is_connected(self, slot: int) -> bool:
        return self._registry.is_connected(slot)

    def connected_clients_names(self) -> dict[int, str]:
        return self._registry.connected_clients_names()

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    @property
    def device_models(self) -> Mapping[str, DeviceModel]:
        return self._registry.catalog.models

    @property
    def indi_device_models(self) -> Mapping[str, str]:
        return self._registry.catalog.indi_drivers

    def restore_device_models(self) -> bool:
        """Replace the user's device list with the packaged one and reload it.

        Returns:
            True if the default list was restored.
        """
        path = self._config.resolved_device_models_path
        if not restore_default_device_models(path):
            return False
        self._registry.catalog = DeviceCatalog.load(
            path, indi_drivers_path=self._config.indi_drivers_path
        )
        return True

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def update(self, delta_time: float) -> None:
        """Host tick: fade display elements and talk to every slot."""
        self._loop.update(delta_time)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save_telescopes(self) -> None:
        """Write every stored description and its connection parameters.

        Raises:
            PersistenceError: If a document cannot be written.
        """
        descriptions = self._registry.descriptions
        self._store.save(descriptions)
        self._store.save_connections(
            {
                slot: ConnectionParameters.of(description)
                for slot, description in descriptions.items()
                if description.connection.uses_network
            }
        )

    def load_telescopes(self) -> int:
        """Replace every slot with the saved configuration.

        All slots are stopped and cleared first. Saved descriptions with
        connect_at_startup set are started.

        Returns:
            Number of descriptions loaded.
        """
        self.delete_all()
        descriptions = self._store.load()
        for slot, description in sorted(descriptions.items()):
            self._registry.add_at_slot(slot, description)
        for slot, description in sorted(descriptions.items()):
            if description.connect_at_startup:
                self._registry.start_at_slot(slot)
        return len(descriptions)

    # -------------------------------------------------------------------------
    # Display flags
    # -------------------------------------------------------------------------

    @property
    def faders(self) -> DisplayFaders:
        return self._faders

    def set_flag_telescope_reticles(self, visible: bool) -> None:
        self._faders.reticle.set_state(visible)

    def get_flag_telescope_reticles(self) -> bool:
        return self._faders.reticle.state

    def set_flag_telescope_labels(self, visible: bool) -> None:
        self._faders.label.set_state(visible)

    def get_flag_telescope_labels(self) -> bool:
        return self._faders.label.state

    def set_flag_telescope_circles(self, visible: bool) -> None:
        self._faders.circle.set_state(visible)

    def get_flag_telescope_circles(self) -> bool:
        return self._faders.circle.state

    @property
    def use_server_logs(self) -> bool:
        return self._config.use_server_logs

    @use_server_logs.setter
    def use_server_logs(self, enabled: bool) -> None:
        """Applies to slots started afterwards."""
        self._config.use_server_logs = enabled

    # -------------------------------------------------------------------------
    # Context manager
    # -------------------------------------------------------------------------

    def __enter__(self) -> TelescopeControl:
        self.init()
        return self

    def __exit__(self, *args: Any) -> None:
        self.deinit()

    def __repr__(self) -> str:
        return f"<TelescopeControl(config_dir={self._config.config_dir}, {self._registry!r})>"


__all__ = ["TelescopeControl"]
