"""Per-slot server log files.

When server logs are enabled, starting a slot opens
log_TelescopeServer<slot>.txt in the log directory. The binary handle
receives a spawned bridge server's stdout/stderr; the text stream layered
on it receives the core's own records for that slot (via SlotLogHandler).
Both are appended to the same file and closed when the slot stops.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import BinaryIO

LOG_FILE_TEMPLATE = "log_TelescopeServer{slot}.txt"


def slot_log_path(log_dir: Path, slot: int) -> Path:
    """Location of a slot's log file."""
    return log_dir / LOG_FILE_TEMPLATE.format(slot=slot)


class SlotLog:
    """Log file owned by one active slot.

    Example:
        log = SlotLog.open(Path("logs"), 3)
        log.write_line("Server starting")
        process = ServerProcess(argv, output=log.binary)
        ...
        log.close()
    """

    def __init__(self, path: Path, binary: BinaryIO) -> None:
        self._path = path
        self._binary = binary
        self._text = io.TextIOWrapper(binary, encoding="utf-8", line_buffering=True)

    @classmethod
    def open(cls, log_dir: Path, slot: int) -> SlotLog:
        """Open (append) the log file for a slot, creating log_dir.

        Raises:
            OSError: If the directory or file cannot be created.
        """
        log_dir.mkdir(parents=True, exist_ok=True)
        path = slot_log_path(log_dir, slot)
        return cls(path, open(path, "ab"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def binary(self) -> BinaryIO:
        """Binary handle, passed to a server process as stdout/stderr."""
        return self._binary

    @property
    def closed(self) -> bool:
        return self._text.closed

    def write_line(self, text: str) -> None:
        if self._text.closed:
            return
        self._text.write(text.rstrip("\n") + "\n")

    def close(self) -> None:
        """Flush and close the text stream and the file. Idempotent."""
        if not self._text.closed:
            self._text.close()

    def __enter__(self) -> SlotLog:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<SlotLog({self._path}, closed={self.closed})>"


__all__ = ["SlotLog", "slot_log_path", "LOG_FILE_TEMPLATE"]
