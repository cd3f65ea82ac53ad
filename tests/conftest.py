"""Pytest configuration and fixtures for telescope-control tests.

Fixtures here give every test an isolated configuration directory, a
controllable clock, a small device catalog and ready-made descriptions,
and reset the package logger so tests never share handlers.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from telescope_control.catalog import DeviceCatalog, DeviceModel
from telescope_control.config import ControlConfig
from telescope_control.description import ConnectionKind, TelescopeDescription
from telescope_control.observability import reset_logging
from tests.helpers import MockClock, MockSerialPort


@pytest.fixture(autouse=True)
def _isolated_logging():
    """Reset the telescope_control logger around every test."""
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def clock() -> MockClock:
    return MockClock()


@pytest.fixture
def mock_serial() -> MockSerialPort:
    return MockSerialPort()


@pytest.fixture
def config(tmp_path: Path) -> ControlConfig:
    """Configuration rooted in the test's temporary directory."""
    return ControlConfig(
        config_dir=tmp_path / "config",
        log_dir=tmp_path / "logs",
        server_start_timeout=10.0,
        connect_timeout=2.0,
        reconnect_interval=0.5,
        stop_grace_period=3.0,
        indi_drivers_path=None,
    )


@pytest.fixture
def catalog() -> DeviceCatalog:
    return DeviceCatalog(
        {
            "Virtual mount server": DeviceModel(
                name="Virtual mount server",
                server="telescope-control-server",
                default_delay=100_000,
            ),
            "Meade LX200 (compatible)": DeviceModel(
                name="Meade LX200 (compatible)",
                server="TelescopeServerLx200",
            ),
        }
    )


@pytest.fixture
def virtual_description() -> TelescopeDescription:
    return TelescopeDescription(
        name="Sim", connection=ConnectionKind.VIRTUAL, delay=100_000
    )


@pytest.fixture
def remote_description() -> TelescopeDescription:
    return TelescopeDescription(
        name="Remote",
        connection=ConnectionKind.REMOTE,
        host="127.0.0.1",
        port=10001,
        delay=100_000,
    )
