"""CLI entry point for telescope-control.

Provides the ``telescope-control`` console script with subcommands:

- ``run``: Load the saved telescopes and drive them headless
- ``models``: List the device catalog (and INDI drivers)
- ``ports``: List serial ports for SERIAL and LOCAL slots

Usage::

    # Drive every connect_at_startup slot until Ctrl+C
    telescope-control run

    # Same, with per-slot server logs and a custom configuration directory
    telescope-control run --config-dir ./observatory --server-logs

    # Show the supported mount models
    telescope-control models --indi

Module Structure:
    - ``main()``: CLI entry point, dispatches subcommands
    - ``build_parser()``: argparse definition
    - ``run_headless()``: Tick loop around TelescopeControl
    - ``config_from_args()``: Map flags onto ControlConfig
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from functools import lru_cache
from pathlib import Path

from telescope_control.catalog import DeviceCatalog
from telescope_control.config import ControlConfig
from telescope_control.control import TelescopeControl
from telescope_control.drivers.serial import list_serial_ports
from telescope_control.loop import ConnectionHooks
from telescope_control.observability import configure_logging

PROGRAM_NAME = "telescope-control"
DEFAULT_TICK = 0.05  # seconds between host ticks


@lru_cache(maxsize=1)
def _get_logger() -> logging.Logger:
    """Get module logger with cached initialization.

    Creates a logger with simple message-only format for CLI output.

    Returns:
        logging.Logger: Configured logger for CLI output.
    """
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    return logging.getLogger(__name__)


def _log(message: str, *, emoji: str = "") -> None:
    """Log message with optional emoji prefix for CLI feedback.

    Example:
        >>> _log("Slot 1 connected", emoji="🔭")
    """
    prefix = f"{emoji} " if emoji else ""
    _get_logger().info(f"{prefix}{message}")


def config_from_args(args: argparse.Namespace) -> ControlConfig:
    """Build a ControlConfig from parsed arguments.

    Flags that were not given keep the ControlConfig defaults.
    """
    config = ControlConfig()
    overrides: dict[str, object] = {}
    if args.config_dir is not None:
        overrides["config_dir"] = Path(args.config_dir).expanduser()
    if getattr(args, "log_dir", None) is not None:
        overrides["log_dir"] = Path(args.log_dir).expanduser()
    if getattr(args, "server_logs", False):
        overrides["use_server_logs"] = True
    if getattr(args, "servers_dir", None) is not None:
        overrides["servers_dir"] = Path(args.servers_dir).expanduser()
    if args.device_models is not None:
        overrides["device_models_path"] = Path(args.device_models).expanduser()
    return config.with_overrides(**overrides) if overrides else config


def run_headless(
    control: TelescopeControl,
    tick: float = DEFAULT_TICK,
    duration: float | None = None,
) -> bool:
    """Drive the core until interrupted or duration elapses.

    Args:
        control: Core, not yet initialized.
        tick: Seconds between updates.
        duration: Stop after this many seconds (None runs until Ctrl+C).

    Returns:
        True if every slot stopped cleanly on exit.
    """
    control.init()
    active = control.registry.active_slots
    _log(f"{len(control.registry.descriptions)} telescope(s) loaded, {len(active)} started")

    started = time.monotonic()
    previous = started
    try:
        while duration is None or time.monotonic() - started < duration:
            now = time.monotonic()
            control.update(now - previous)
            previous = now
            time.sleep(tick)
    except KeyboardInterrupt:
        _log("Interrupted, stopping telescopes")
    return control.deinit()


def _run(args: argparse.Namespace) -> int:
    configure_logging(level=args.log_level.upper(), json_format=args.json_logs, force=True)
    hooks = ConnectionHooks(
        on_connected=lambda slot, name: _log(f"Slot {slot}: {name} connected", emoji="🔭"),
        on_disconnected=lambda slot: _log(f"Slot {slot}: disconnected", emoji="⚠️"),
    )
    control = TelescopeControl(config_from_args(args), hooks)
    clean = run_headless(control, tick=args.tick, duration=args.duration)
    return 0 if clean else 1


def _models(args: argparse.Namespace) -> int:
    config = config_from_args(args)
    catalog = DeviceCatalog.load(
        config.resolved_device_models_path,
        indi_drivers_path=config.indi_drivers_path,
    )
    if not len(catalog):
        _log("No device models available", emoji="❌")
        return 1
    for model in catalog:
        _log(f"{model.name}: {model.server} (delay {model.default_delay} us)")
    if args.indi:
        for label, driver in sorted(catalog.indi_drivers.items()):
            _log(f"[INDI] {label}: {driver}")
    return 0


def _ports(args: argparse.Namespace) -> int:
    ports = list_serial_ports()
    if not ports:
        _log("No serial ports found")
        return 0
    for port in ports:
        _log(f"{port.device}: {port.description}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for the telescope-control command."""
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME,
        description="Multi-slot telescope control core",
    )
    parser.add_argument(
        "--config-dir",
        default=None,
        help="Directory with telescopes.json (default: ~/.telescope-control)",
    )
    parser.add_argument(
        "--device-models",
        default=None,
        help="Device catalog document (default: <config-dir>/device_models.json)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Drive the saved telescopes headless")
    run_parser.add_argument("--log-dir", default=None, help="Directory for server logs")
    run_parser.add_argument(
        "--server-logs",
        action="store_true",
        help="Write log_TelescopeServer<slot>.txt for every started slot",
    )
    run_parser.add_argument(
        "--servers-dir",
        default=None,
        help="Extra directory searched for bridge server executables",
    )
    run_parser.add_argument("--tick", type=float, default=DEFAULT_TICK, help="Seconds per update")
    run_parser.add_argument(
        "--duration", type=float, default=None, help="Stop after this many seconds"
    )
    run_parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug"],
    )
    run_parser.add_argument("--json-logs", action="store_true", help="Emit NDJSON logs")
    run_parser.set_defaults(handler=_run)

    models_parser = subparsers.add_parser("models", help="List supported device models")
    models_parser.add_argument("--indi", action="store_true", help="Include INDI drivers")
    models_parser.set_defaults(handler=_models)

    ports_parser = subparsers.add_parser("ports", help="List serial ports")
    ports_parser.set_defaults(handler=_ports)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point for telescope-control.

    Returns:
        Exit code 0 for success, non-zero for errors.

    Raises:
        SystemExit: On --help or argument parsing errors.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2
    return int(args.handler(args))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
