"""Serial port abstraction for the direct serial transport.

Provides a protocol over the subset of pyserial the SERIAL connection kind
uses, so the transport can be driven by an in-memory fake in tests.

Protocol:
    SerialPort: Non-blocking byte I/O on an open port

Functions:
    open_serial_port: Open a pyserial port in non-blocking mode
    list_serial_ports: Enumerate ports for the operator

Example:
    class MockSerialPort:
        is_open = True
        in_waiting = 0

        def read(self, size=1):
            return b""

        def write(self, data):
            return len(data)

        def close(self):
            self.is_open = False

    transport = SerialTransport._create_with_serial(MockSerialPort(), ...)
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from telescope_control.exceptions import ConnectError

DEFAULT_BAUDRATE = 9600


@runtime_checkable
class SerialPort(Protocol):  # pragma: no cover
    """Protocol for non-blocking serial port operations.

    Matches the subset of pyserial.Serial used by SerialTransport. The
    port must be opened with timeout=0 and write_timeout=0 so that read()
    and write() never wait on the device.
    """

    @property
    def is_open(self) -> bool:
        """Whether the port is currently open."""
        ...

    @property
    def in_waiting(self) -> int:
        """Number of bytes that can be read without blocking."""
        ...

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes, returning what is immediately available.

        Raises:
            SerialException: If the port is closed or the device vanished.
        """
        ...

    def write(self, data: bytes) -> int | None:
        """Queue bytes for transmission and return how many were accepted.

        Raises:
            SerialException: If the port is closed or the device vanished.
            SerialTimeoutException: If the output buffer is full.
        """
        ...

    def close(self) -> None:
        """Close the port. Safe to call more than once."""
        ...


def open_serial_port(port: str, baudrate: int = DEFAULT_BAUDRATE) -> SerialPort:
    """Open a serial port in non-blocking mode.

    Args:
        port: Device path such as "/dev/ttyUSB0" or "COM3".
        baudrate: Line speed.

    Returns:
        Open pyserial port satisfying SerialPort.

    Raises:
        ConnectError: If pyserial is missing or the port cannot be opened.
    """
    try:
        import serial as serial_module
    except ImportError as e:
        raise ConnectError("pyserial not installed. Run: pip install pyserial") from e

    try:
        return serial_module.Serial(port, baudrate=baudrate, timeout=0, write_timeout=0)
    except (serial_module.SerialException, ValueError, OSError) as e:
        raise ConnectError(f"Failed to open serial port {port}: {e}") from e


def list_serial_ports() -> list[Any]:  # pragma: no cover
    """List available serial ports on the system.

    Returns:
        Port info objects with device/description attributes. Empty if
        pyserial is not installed.

    Example:
        >>> for p in list_serial_ports():
        ...     print(f"{p.device}: {p.description}")
    """
    try:
        import serial.tools.list_ports

        return list(serial.tools.list_ports.comports())
    except ImportError:
        return []


__all__ = [
    "SerialPort",
    "open_serial_port",
    "list_serial_ports",
]
