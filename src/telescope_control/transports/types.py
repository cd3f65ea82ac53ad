"""Transport type definitions and protocols.

This module contains the connection state enum, the injectable clock, the
Transport protocol the registry and communication loop program against, and
BaseTransport, the shared implementation of the goto queue and the position
history. Keeping them apart from the concrete transports avoids circular
imports between the variants and the factory.

Types defined here:
- ConnectionState: Lifecycle state of a transport
- Clock / SystemClock: Injectable time source
- Transport: Protocol every transport variant implements
- BaseTransport: Common state shared by all variants
- UnavailableTransport: FAILED placeholder when no variant could be built

Example:
    from telescope_control.transports.types import BaseTransport, ConnectionState

    class LoopbackTransport(BaseTransport):
        def poll(self) -> int:
            return 0

        def flush(self) -> int:
            return 0

        def close(self) -> bool:
            return True
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Protocol, runtime_checkable

from telescope_control.description import Equinox, TelescopeDescription
from telescope_control.observability import get_logger
from telescope_control.protocol import GotoCommand, PositionReport, Vector3, now_us
from telescope_control.transports.position import PositionHistory

logger = get_logger(__name__)


class ConnectionState(Enum):
    """Lifecycle state of a transport."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class Clock(Protocol):  # pragma: no cover
    """Protocol for time functions (injectable for testing).

    Example:
        class MockClock:
            def __init__(self):
                self._time = 0.0

            def monotonic(self) -> float:
                return self._time

            def sleep(self, seconds: float) -> None:
                self._time += seconds

            def time_us(self) -> int:
                return int(self._time * 1_000_000)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds for timeouts and polling."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block the calling thread for the given duration."""
        ...

    def time_us(self) -> int:
        """Return wall-clock time in microseconds since the Unix epoch.

        Used for protocol timestamps, which the far end compares with its
        own clock.
        """
        ...


class SystemClock:
    """Default clock using the time module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def time_us(self) -> int:
        return now_us()


@runtime_checkable
class Transport(Protocol):  # pragma: no cover
    """Protocol for a live link to one mount.

    Transports are owned by the slot registry and driven from a single
    thread: poll() and flush() are called once per host tick and must not
    block.
    """

    @property
    def name(self) -> str:
        """Display name of the telescope."""
        ...

    @property
    def equinox(self) -> Equinox:
        """Frame tag of the mount's coordinates."""
        ...

    @property
    def delay(self) -> int:
        """Position interpolation delay in microseconds."""
        ...

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        ...

    @property
    def is_connected(self) -> bool:
        """True when state is CONNECTED."""
        ...

    @property
    def error(self) -> BaseException | None:
        """Error that moved the transport to FAILED, if any."""
        ...

    @property
    def position(self) -> PositionReport | None:
        """Most recent position report."""
        ...

    @property
    def pending_goto(self) -> GotoCommand | None:
        """Goto command waiting to be sent."""
        ...

    def queue_goto(self, direction: Vector3) -> GotoCommand:
        """Queue a slew, replacing any goto not yet sent."""
        ...

    def interpolated_direction(self, now: int | None = None) -> Vector3 | None:
        """Mount direction interpolated at now - delay."""
        ...

    def poll(self) -> int:
        """Advance the connection and drain inbound messages.

        Returns:
            Number of position reports received.

        Raises:
            ProtocolFramingError: If the inbound stream is malformed.
        """
        ...

    def flush(self) -> int:
        """Send the pending goto if the link can take it.

        Returns:
            Number of goto commands handed to the link (0 or 1).
        """
        ...

    def mark_failed(self, error: BaseException) -> None:
        """Move to FAILED, recording the cause."""
        ...

    def close(self) -> bool:
        """Release every resource the transport owns.

        Returns:
            True if the release was confirmed (owned process gone).
        """
        ...


class BaseTransport:
    """Shared state of every transport variant.

    Holds the description the transport was built from, the connection
    state, the single pending goto and the position history. Subclasses
    implement poll(), flush() and close().
    """

    def __init__(
        self,
        description: TelescopeDescription,
        clock: Clock | None = None,
    ) -> None:
        """Create transport state for a description.

        Args:
            description: Description the transport was started from.
            clock: Time source (defaults to SystemClock).
        """
        self._description = description
        self._clock: Clock = clock or SystemClock()
        self._state = ConnectionState.DISCONNECTED
        self._error: BaseException | None = None
        self._pending_goto: GotoCommand | None = None
        self._history = PositionHistory()

    @property
    def description(self) -> TelescopeDescription:
        return self._description

    @property
    def name(self) -> str:
        return self._description.name

    @property
    def equinox(self) -> Equinox:
        return self._description.equinox

    @property
    def delay(self) -> int:
        return self._description.delay

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def position(self) -> PositionReport | None:
        return self._history.latest

    @property
    def pending_goto(self) -> GotoCommand | None:
        return self._pending_goto

    def queue_goto(self, direction: Vector3) -> GotoCommand:
        """Queue a slew toward direction.

        Only one goto is kept: a command queued before the previous one was
        sent replaces it.

        Args:
            direction: Target direction vector.

        Returns:
            The queued command.
        """
        command = GotoCommand(
            (float(direction[0]), float(direction[1]), float(direction[2])),
            self._clock.time_us(),
        )
        if self._pending_goto is not None:
            logger.debug("Superseding unsent goto", telescope=self.name)
        self._pending_goto = command
        return command

    def interpolated_direction(self, now: int | None = None) -> Vector3 | None:
        """Mount direction interpolated at now - delay.

        Args:
            now: Wall-clock time in microseconds (defaults to the clock).

        Returns:
            Unit direction vector, or None before the first report.
        """
        if now is None:
            now = self._clock.time_us()
        return self._history.interpolate(now - self.delay)

    def mark_failed(self, error: BaseException) -> None:
        """Move to FAILED, recording the cause.

        The pending goto is dropped. Resources are kept until close().
        """
        if self._state is not ConnectionState.FAILED:
            logger.warning(
                "Transport failed",
                telescope=self.name,
                error=str(error),
                error_type=type(error).__name__,
            )
        self._state = ConnectionState.FAILED
        self._error = error
        self._pending_goto = None

    def open(self) -> None:
        raise NotImplementedError

    def poll(self) -> int:
        raise NotImplementedError

    def flush(self) -> int:
        raise NotImplementedError

    def close(self) -> bool:
        raise NotImplementedError

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug(
            "Transport state changed",
            telescope=self.name,
            old=self._state.value,
            new=state.value,
        )
        self._state = state

    def _record_position(self, report: PositionReport) -> None:
        self._history.append(report)

    def _take_pending_goto(self) -> GotoCommand | None:
        command, self._pending_goto = self._pending_goto, None
        return command

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(name={self.name!r}, state={self._state.value})>"


class UnavailableTransport(BaseTransport):
    """Transport that could not be built, permanently FAILED.

    Returned by the factory when the description is invalid or its
    connection kind has no implementation, so callers always receive a
    Transport carrying the error.
    """

    def __init__(
        self,
        description: TelescopeDescription,
        error: BaseException,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(description, clock)
        self._state = ConnectionState.FAILED
        self._error = error

    def open(self) -> None:
        pass

    def queue_goto(self, direction: Vector3) -> GotoCommand:
        # Accepted and discarded; there is no link to send it on.
        return GotoCommand(
            (float(direction[0]), float(direction[1]), float(direction[2])),
            self._clock.time_us(),
        )

    def poll(self) -> int:
        return 0

    def flush(self) -> int:
        return 0

    def close(self) -> bool:
        return True


__all__ = [
    "ConnectionState",
    "Clock",
    "SystemClock",
    "Transport",
    "BaseTransport",
    "UnavailableTransport",
]
