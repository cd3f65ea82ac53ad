"""Bounded history of position reports with time interpolation.

Mounts report their position every few hundred milliseconds. To draw a
smoothly moving marker, the display asks for the direction at a time
slightly in the past (now - delay) and gets a value interpolated between
the two reports around it.
"""

from __future__ import annotations

from collections import deque

import numpy as np

from telescope_control.protocol import PositionReport, Vector3

HISTORY_SIZE = 16


class PositionHistory:
    """Ring buffer of the most recent position reports.

    Reports are kept in arrival order; a report older than the newest one
    is dropped so the timestamps stay increasing.

    Example:
        history = PositionHistory()
        history.append(report_a)
        history.append(report_b)
        direction = history.interpolate(report_a.timestamp_us + 1000)
    """

    def __init__(self, size: int = HISTORY_SIZE) -> None:
        if size < 1:
            raise ValueError(f"History size must be positive, got {size}")
        self._reports: deque[PositionReport] = deque(maxlen=size)

    def __len__(self) -> int:
        return len(self._reports)

    @property
    def latest(self) -> PositionReport | None:
        """Newest report, or None when empty."""
        return self._reports[-1] if self._reports else None

    def append(self, report: PositionReport) -> bool:
        """Add a report.

        Returns:
            False if the report was older than the newest one and dropped.
        """
        if self._reports and report.timestamp_us < self._reports[-1].timestamp_us:
            return False
        self._reports.append(report)
        return True

    def clear(self) -> None:
        self._reports.clear()

    def interpolate(self, at_us: int) -> Vector3 | None:
        """Direction at a point in time.

        Before the first report the oldest direction is returned, after the
        last one the newest. In between, the two surrounding directions are
        linearly blended and renormalized.

        Args:
            at_us: Time in microseconds since the Unix epoch.

        Returns:
            Unit direction vector, or None when no report was received.
        """
        if not self._reports:
            return None

        times = np.fromiter((r.timestamp_us for r in self._reports), dtype=np.int64)
        index = int(np.searchsorted(times, at_us, side="right"))
        if index == 0:
            return self._reports[0].direction
        if index == len(times):
            return self._reports[-1].direction

        before = self._reports[index - 1]
        after = self._reports[index]
        span = after.timestamp_us - before.timestamp_us
        if span <= 0:
            return after.direction
        weight = (at_us - before.timestamp_us) / span

        blended = (1.0 - weight) * np.asarray(before.direction) + weight * np.asarray(
            after.direction
        )
        norm = float(np.linalg.norm(blended))
        if norm == 0.0:
            return after.direction if weight >= 0.5 else before.direction
        x, y, z = (blended / norm).tolist()
        return (x, y, z)


__all__ = ["PositionHistory", "HISTORY_SIZE"]
