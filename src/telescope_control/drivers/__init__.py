"""Hardware driver helpers.

Serial Protocol:
    SerialPort enables testing of the serial transport without hardware.

    from telescope_control.drivers import SerialPort
"""

from telescope_control.drivers.serial import (
    SerialPort,
    list_serial_ports,
    open_serial_port,
)

__all__ = [
    "SerialPort",
    "list_serial_ports",
    "open_serial_port",
]
