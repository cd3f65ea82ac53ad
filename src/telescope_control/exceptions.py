"""Exception hierarchy for telescope control.

Every error raised inside the core derives from TelescopeControlError so
that the slot registry and the communication loop can convert failures
into boolean results or a FAILED slot without catching unrelated errors.

Hierarchy:
    TelescopeControlError
    ├── InvalidSlotError            slot number outside [1, MAX_SLOTS]
    ├── MissingDescriptionError     start requested on an empty slot
    ├── AlreadyActiveError          start requested on a live slot
    ├── InvalidDescriptionError     description fails field validation
    ├── UnsupportedConnectionError  no transport for the connection kind
    ├── SpawnError                  server process could not be launched
    ├── ConnectError                socket/serial/automation link failed
    ├── ProtocolFramingError        malformed inbound message
    └── PersistenceError            document unreadable or unwritable
"""

from __future__ import annotations


class TelescopeControlError(Exception):
    """Base exception for telescope control operations."""

    pass


class InvalidSlotError(TelescopeControlError):
    """Raised when a slot number is outside the addressable range."""

    def __init__(self, slot: object) -> None:
        """Create error for an out-of-range slot.

        Args:
            slot: The rejected slot value (kept for diagnostics).
        """
        super().__init__(f"Invalid slot number: {slot!r}")
        self.slot = slot


class MissingDescriptionError(TelescopeControlError):
    """Raised when a slot without a stored description is started."""

    pass


class AlreadyActiveError(TelescopeControlError):
    """Raised when a slot that already has a live transport is started."""

    pass


class InvalidDescriptionError(TelescopeControlError):
    """Raised when a telescope description fails validation."""

    pass


class UnsupportedConnectionError(TelescopeControlError):
    """Raised when no transport exists for a connection kind."""

    pass


class SpawnError(TelescopeControlError):
    """Raised when a bridge server process cannot be launched."""

    pass


class ConnectError(TelescopeControlError):
    """Raised when a link to the mount cannot be established."""

    pass


class ProtocolFramingError(TelescopeControlError):
    """Raised when an inbound message violates the wire framing."""

    pass


class PersistenceError(TelescopeControlError):
    """Raised when a configuration document cannot be read or written."""

    pass


__all__ = [
    "TelescopeControlError",
    "InvalidSlotError",
    "MissingDescriptionError",
    "AlreadyActiveError",
    "InvalidDescriptionError",
    "UnsupportedConnectionError",
    "SpawnError",
    "ConnectError",
    "ProtocolFramingError",
    "PersistenceError",
]
