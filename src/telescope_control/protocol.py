"""Binary wire protocol between the core and telescope servers.

All messages are little-endian and start with a 4-byte header:

    uint16 LENGTH   total message length in bytes, header included
    uint16 TYPE     message type (0 = position / goto)

Goto command (client -> server), LENGTH = 20:

    int64  TIME     client time in microseconds since the Unix epoch
    uint32 RA       right ascension, 0x100000000 = 24h
    int32  DEC      declination, 0x40000000 = 90 degrees

Current position (server -> client), LENGTH = 24:

    int64  TIME     server time in microseconds since the Unix epoch
    uint32 RA
    int32  DEC
    int32  STATUS   0 = OK, anything else is a server-specific error

The layout matches the Stellarium telescope server protocol, so existing
third-party servers can be bridged without modification. Direction vectors
cross the wire as the RA/DEC angles of the unit vector; no frame conversion
is applied.

Messages of unknown type are skipped by their length. A LENGTH below the
header size or above MAX_MESSAGE_SIZE, or a type-0 message with the wrong
length, cannot be resynchronized and raises ProtocolFramingError.
"""

from __future__ import annotations

import math
import struct
import time
from dataclasses import dataclass
from typing import Generic, TypeVar

from telescope_control.exceptions import ProtocolFramingError

Vector3 = tuple[float, float, float]

HEADER = struct.Struct("<HH")
GOTO = struct.Struct("<HHqIi")
POSITION = struct.Struct("<HHqIii")

MSG_TYPE_POSITION = 0
MAX_MESSAGE_SIZE = 120
STATUS_OK = 0

_ANGLE_SCALE = 0x80000000 / math.pi


def now_us() -> int:
    """Current wall-clock time in microseconds since the Unix epoch."""
    return time.time_ns() // 1000


def direction_to_angles(direction: Vector3) -> tuple[float, float]:
    """Split a direction vector into (ra, dec) in radians, ra in [0, 2*pi)."""
    x, y, z = direction
    ra = math.atan2(y, x) % (2 * math.pi)
    dec = math.atan2(z, math.hypot(x, y))
    return ra, dec


def angles_to_direction(ra: float, dec: float) -> Vector3:
    """Build a unit direction vector from (ra, dec) in radians."""
    cos_dec = math.cos(dec)
    return (cos_dec * math.cos(ra), cos_dec * math.sin(ra), math.sin(dec))


def direction_to_wire(direction: Vector3) -> tuple[int, int]:
    """Encode a direction vector as the protocol's RA/DEC integers.

    Args:
        direction: Direction vector (need not be normalized, must be non-zero).

    Returns:
        (ra_int, dec_int) with ra_int as uint32 and dec_int as int32.
    """
    ra, dec = direction_to_angles(direction)
    ra_int = int(round(ra * _ANGLE_SCALE)) & 0xFFFFFFFF
    dec_int = int(round(dec * _ANGLE_SCALE))
    return ra_int, dec_int


def wire_to_direction(ra_int: int, dec_int: int) -> Vector3:
    """Decode protocol RA/DEC integers into a unit direction vector."""
    return angles_to_direction(ra_int / _ANGLE_SCALE, dec_int / _ANGLE_SCALE)


@dataclass(frozen=True)
class GotoCommand:
    """Request to slew a mount toward a direction.

    Attributes:
        direction: Target direction vector.
        timestamp_us: Time the request was issued, microseconds since epoch.
    """

    direction: Vector3
    timestamp_us: int

    def encode(self) -> bytes:
        """Serialize to the 20-byte goto message."""
        ra_int, dec_int = direction_to_wire(self.direction)
        return GOTO.pack(GOTO.size, MSG_TYPE_POSITION, self.timestamp_us, ra_int, dec_int)

    @classmethod
    def decode(cls, data: bytes) -> GotoCommand:
        _, _, timestamp_us, ra_int, dec_int = GOTO.unpack(data)
        return cls(wire_to_direction(ra_int, dec_int), timestamp_us)


@dataclass(frozen=True)
class PositionReport:
    """Position reported by a mount.

    Attributes:
        direction: Unit direction vector the mount points at.
        status: Server status word, STATUS_OK when healthy.
        timestamp_us: Server time of the observation, microseconds since epoch.
    """

    direction: Vector3
    status: int
    timestamp_us: int

    def encode(self) -> bytes:
        """Serialize to the 24-byte position message."""
        ra_int, dec_int = direction_to_wire(self.direction)
        return POSITION.pack(
            POSITION.size,
            MSG_TYPE_POSITION,
            self.timestamp_us,
            ra_int,
            dec_int,
            self.status,
        )

    @classmethod
    def decode(cls, data: bytes) -> PositionReport:
        _, _, timestamp_us, ra_int, dec_int, status = POSITION.unpack(data)
        return cls(wire_to_direction(ra_int, dec_int), status, timestamp_us)


MessageT = TypeVar("MessageT", GotoCommand, PositionReport)


class FrameDecoder(Generic[MessageT]):
    """Incremental decoder for a byte stream of protocol messages.

    Bytes are fed as they arrive; complete messages are returned and any
    partial tail is kept for the next call.

    Example:
        decoder = FrameDecoder(PositionReport)
        for report in decoder.feed(sock.recv(4096)):
            handle(report)
    """

    def __init__(self, message_type: type[MessageT]) -> None:
        """Create a decoder for one direction of the protocol.

        Args:
            message_type: PositionReport on the client side, GotoCommand
                on the server side.
        """
        self._message_type = message_type
        self._expected_size = POSITION.size if message_type is PositionReport else GOTO.size
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet forming a full message."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[MessageT]:
        """Append received bytes and return every complete message.

        Raises:
            ProtocolFramingError: If the stream cannot be framed.
        """
        self._buffer.extend(data)
        messages: list[MessageT] = []

        while len(self._buffer) >= HEADER.size:
            length, msg_type = HEADER.unpack_from(self._buffer)
            if length < HEADER.size or length > MAX_MESSAGE_SIZE:
                raise ProtocolFramingError(f"Invalid message length {length}")
            if len(self._buffer) < length:
                break

            frame = bytes(self._buffer[:length])
            del self._buffer[:length]

            if msg_type != MSG_TYPE_POSITION:
                continue  # Unknown type, skipped by length
            if length != self._expected_size:
                raise ProtocolFramingError(
                    f"{self._message_type.__name__} must be {self._expected_size} "
                    f"bytes, got {length}"
                )
            messages.append(self._message_type.decode(frame))

        return messages

    def reset(self) -> None:
        """Discard buffered bytes (after a reconnect)."""
        self._buffer.clear()


__all__ = [
    "Vector3",
    "GotoCommand",
    "PositionReport",
    "FrameDecoder",
    "MAX_MESSAGE_SIZE",
    "STATUS_OK",
    "direction_to_angles",
    "angles_to_direction",
    "direction_to_wire",
    "wire_to_direction",
    "now_us",
]
