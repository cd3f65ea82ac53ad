"""In-process simulated mount.

VirtualMount is the mount model shared by the VIRTUAL transport and the
reference bridge server: each step moves the pointing a fixed fraction of
the way toward the goto target, so it slews quickly at first and settles
smoothly.
"""

from __future__ import annotations

import numpy as np

from telescope_control.description import TelescopeDescription
from telescope_control.observability import get_logger
from telescope_control.protocol import STATUS_OK, PositionReport, Vector3
from telescope_control.transports.types import BaseTransport, Clock, ConnectionState

logger = get_logger(__name__)

APPROACH_RATE = 1.0 / 32.0
HOME_DIRECTION: Vector3 = (1.0, 0.0, 0.0)


def _unit(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0 or not np.isfinite(norm):
        raise ValueError("Direction must be a finite non-zero vector")
    return vector / norm


class VirtualMount:
    """Mount model converging on its target.

    Example:
        mount = VirtualMount()
        mount.goto((0.0, 1.0, 0.0))
        for _ in range(200):
            mount.step()
        assert mount.is_settled()
    """

    def __init__(
        self,
        direction: Vector3 = HOME_DIRECTION,
        approach_rate: float = APPROACH_RATE,
    ) -> None:
        if not 0.0 < approach_rate <= 1.0:
            raise ValueError(f"Approach rate must be in (0, 1], got {approach_rate}")
        self._direction = _unit(np.asarray(direction, dtype=float))
        self._target = self._direction.copy()
        self._approach_rate = approach_rate

    @property
    def direction(self) -> Vector3:
        x, y, z = self._direction.tolist()
        return (x, y, z)

    @property
    def target(self) -> Vector3:
        x, y, z = self._target.tolist()
        return (x, y, z)

    def goto(self, direction: Vector3) -> None:
        """Set a new target.

        Raises:
            ValueError: If direction is zero or not finite.
        """
        self._target = _unit(np.asarray(direction, dtype=float))

    def step(self) -> Vector3:
        """Advance one step toward the target and return the new direction."""
        blended = (1.0 - self._approach_rate) * self._direction + self._approach_rate * self._target
        norm = float(np.linalg.norm(blended))
        # Exactly opposite target: the blend passes through zero.
        self._direction = self._target.copy() if norm < 1e-9 else blended / norm
        return self.direction

    def is_settled(self, tolerance: float = 1e-6) -> bool:
        return float(np.linalg.norm(self._direction - self._target)) <= tolerance


class VirtualTransport(BaseTransport):
    """Transport to a VirtualMount, reporting once per description delay."""

    def __init__(
        self,
        description: TelescopeDescription,
        mount: VirtualMount | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(description, clock)
        self._mount = mount or VirtualMount()
        self._next_report = 0.0

    @property
    def mount(self) -> VirtualMount:
        return self._mount

    def open(self) -> None:
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Virtual mount ready", telescope=self.name)

    def poll(self) -> int:
        if self._state is not ConnectionState.CONNECTED:
            return 0
        now = self._clock.monotonic()
        if now < self._next_report:
            return 0
        self._next_report = now + self.delay / 1_000_000
        direction = self._mount.step()
        self._record_position(PositionReport(direction, STATUS_OK, self._clock.time_us()))
        return 1

    def flush(self) -> int:
        if self._state is not ConnectionState.CONNECTED:
            return 0
        command = self._take_pending_goto()
        if command is None:
            return 0
        self._mount.goto(command.direction)
        return 1

    def close(self) -> bool:
        if self._state is not ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)
        return True


__all__ = ["VirtualMount", "VirtualTransport", "APPROACH_RATE"]
