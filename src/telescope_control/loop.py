"""Per-tick communication with every active transport.

The host calls CommunicationLoop.update() once per frame. Each active slot
gets one non-blocking turn: poll() advances the connection and drains
inbound position reports, then flush() hands over the pending goto. A
failure in one slot marks that slot's transport FAILED and never stops the
other slots from being serviced.

After the slots are serviced, connection edges are reported through
ConnectionHooks so the GUI can follow telescopes coming and going.

Example:
    loop = CommunicationLoop(
        registry,
        hooks=ConnectionHooks(
            on_connected=lambda slot, name: print(f"{name} on {slot}"),
            on_disconnected=lambda slot: print(f"slot {slot} gone"),
        ),
    )
    while running:
        loop.update(frame_seconds)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from telescope_control.exceptions import ProtocolFramingError, TelescopeControlError
from telescope_control.observability import LogContext, get_logger
from telescope_control.registry import SlotRegistry
from telescope_control.transports import ConnectionState, Transport

logger = get_logger(__name__)

OnConnectedCallback = Callable[[int, str], None]
OnDisconnectedCallback = Callable[[int], None]

DEFAULT_FADE_DURATION = 1.0  # seconds


@dataclass
class ConnectionHooks:
    """Optional callbacks for slot connection events.

    Attributes:
        on_connected: Called with (slot, name) when a slot becomes connected
        on_disconnected: Called with slot when a connected slot drops or
            is stopped
    """

    on_connected: OnConnectedCallback | None = None
    on_disconnected: OnDisconnectedCallback | None = None


class LinearFader:
    """Value moving linearly between 0 and 1 when its state flips.

    Example:
        fader = LinearFader(duration=0.5)
        fader.set_state(True)
        fader.update(0.25)
        assert fader.value == 0.5
    """

    def __init__(self, duration: float = DEFAULT_FADE_DURATION, state: bool = False) -> None:
        if duration < 0:
            raise ValueError(f"Fade duration must not be negative, got {duration}")
        self._duration = duration
        self._state = state
        self._value = 1.0 if state else 0.0

    @property
    def state(self) -> bool:
        return self._state

    @property
    def value(self) -> float:
        """Current intensity in [0, 1]."""
        return self._value

    @property
    def is_transitioning(self) -> bool:
        return self._value != (1.0 if self._state else 0.0)

    def set_state(self, state: bool) -> None:
        self._state = state
        if self._duration == 0:
            self._value = 1.0 if state else 0.0

    def update(self, delta_time: float) -> None:
        """Advance the fade by delta_time seconds."""
        target = 1.0 if self._state else 0.0
        if self._value == target:
            return
        if self._duration == 0:
            self._value = target
            return
        step = max(delta_time, 0.0) / self._duration
        if target > self._value:
            self._value = min(target, self._value + step)
        else:
            self._value = max(target, self._value - step)


@dataclass
class DisplayFaders:
    """Fade state of the telescope display elements."""

    reticle: LinearFader = field(default_factory=LinearFader)
    label: LinearFader = field(default_factory=LinearFader)
    circle: LinearFader = field(default_factory=LinearFader)

    def update(self, delta_time: float) -> None:
        for fader in (self.reticle, self.label, self.circle):
            fader.update(delta_time)


class CommunicationLoop:
    """Drives every transport the registry holds, once per host tick."""

    def __init__(
        self,
        registry: SlotRegistry,
        hooks: ConnectionHooks | None = None,
        faders: DisplayFaders | None = None,
    ) -> None:
        """Create the loop.

        Args:
            registry: Registry whose active transports are serviced.
            hooks: Connection event callbacks.
            faders: Display fade state advanced on every update.
        """
        self._registry = registry
        self._hooks = hooks or ConnectionHooks()
        self._faders = faders or DisplayFaders()
        self._connected: dict[int, str] = {}

    @property
    def hooks(self) -> ConnectionHooks:
        return self._hooks

    @property
    def faders(self) -> DisplayFaders:
        return self._faders

    def update(self, delta_time: float) -> None:
        """Host tick: advance the faders, then communicate.

        Args:
            delta_time: Seconds since the previous tick.
        """
        self._faders.update(delta_time)
        self.communicate()

    def communicate(self) -> None:
        """Give every active slot one poll/flush turn, then report edges."""
        for slot in self._registry.active_slots:
            transport = self._registry.transport_at_slot(slot)
            if transport is None:
                continue
            with LogContext(slot=slot):
                self._service(transport)
        self.detect_connection_changes()

    def _service(self, transport: Transport) -> None:
        if transport.state is ConnectionState.FAILED:
            return
        try:
            transport.poll()
            transport.flush()
        except ProtocolFramingError as e:
            logger.error("Protocol framing error", telescope=transport.name, error=str(e))
            transport.mark_failed(e)
        except (TelescopeControlError, OSError) as e:
            transport.mark_failed(e)
        except Exception as e:
            logger.error(
                "Unexpected transport error",
                telescope=transport.name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            transport.mark_failed(e)

    def detect_connection_changes(self) -> None:
        """Fire hooks for slots whose connected status changed.

        Also called right after a slot is stopped so its disconnect is
        reported without waiting for the next tick.
        """
        current: dict[int, str] = {}
        for slot in self._registry.active_slots:
            transport = self._registry.transport_at_slot(slot)
            if transport is not None and transport.is_connected:
                current[slot] = transport.name

        for slot in sorted(self._connected.keys() - current.keys()):
            logger.info("Telescope disconnected", slot=slot, telescope=self._connected[slot])
            self._fire(self._hooks.on_disconnected, slot)
        for slot in sorted(current.keys() - self._connected.keys()):
            logger.info("Telescope connected", slot=slot, telescope=current[slot])
            self._fire(self._hooks.on_connected, slot, current[slot])

        self._connected = current

    def _fire(self, callback: Callable[..., None] | None, *args: object) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(
                "Connection hook failed",
                hook=getattr(callback, "__name__", repr(callback)),
                error=str(e),
                exc_info=True,
            )


__all__ = [
    "ConnectionHooks",
    "CommunicationLoop",
    "DisplayFaders",
    "LinearFader",
]
