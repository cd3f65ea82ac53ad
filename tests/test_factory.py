"""Unit tests for the transport factory."""

from __future__ import annotations

import sys
from dataclasses import replace

import pytest

from telescope_control.description import ConnectionKind, TelescopeDescription
from telescope_control.exceptions import (
    ConnectError,
    InvalidDescriptionError,
    UnsupportedConnectionError,
)
from telescope_control.transports import (
    TRANSPORT_BUILDERS,
    ConnectionState,
    TcpTransport,
    UnavailableTransport,
    VirtualTransport,
    create_client,
)
from telescope_control.transports.types import BaseTransport
from tests.helpers import free_port


class FailingOpenTransport(BaseTransport):
    """Transport whose open() fails, recording close()."""

    closed = False

    def open(self) -> None:
        raise ConnectError("link down")

    def poll(self) -> int:
        return 0

    def flush(self) -> int:
        return 0

    def close(self) -> bool:
        self.closed = True
        return True


class TestCreateClient:
    """Tests for create_client()."""

    def test_every_kind_has_a_builder(self):
        assert set(TRANSPORT_BUILDERS) == set(ConnectionKind)

    def test_virtual(self, virtual_description, catalog, config, clock):
        transport = create_client(
            virtual_description, catalog=catalog, config=config, clock=clock
        )

        assert isinstance(transport, VirtualTransport)
        assert transport.state is ConnectionState.CONNECTED

    def test_remote_unreachable_stays_active(self, remote_description, catalog, config):
        """Verifies an unreachable REMOTE server is retried, not failed.

        Arrangement:
        1. REMOTE description pointing at a free (closed) loopback port.

        Action:
        create_client().

        Assertion Strategy:
        Validates retry semantics by confirming the transport is a
        TcpTransport that is still CONNECTING.
        """
        description = replace(remote_description, port=free_port())

        transport = create_client(description, catalog=catalog, config=config)
        try:
            assert isinstance(transport, TcpTransport)
            assert transport.state is ConnectionState.CONNECTING
        finally:
            transport.close()

    def test_remote_unencodable_host_fails(self, remote_description, catalog, config):
        description = replace(remote_description, host="a" * 64 + ".example")

        transport = create_client(description, catalog=catalog, config=config)

        assert isinstance(transport, TcpTransport)
        assert transport.state is ConnectionState.FAILED
        assert isinstance(transport.error, ConnectError)

    def test_invalid_description(self, catalog, config):
        description = TelescopeDescription("Remote", ConnectionKind.REMOTE, port=None)

        transport = create_client(description, catalog=catalog, config=config)

        assert isinstance(transport, UnavailableTransport)
        assert isinstance(transport.error, InvalidDescriptionError)

    def test_unknown_device_model(self, catalog, config):
        description = TelescopeDescription(
            "Local", ConnectionKind.LOCAL, port=10001, device_model="Unknown"
        )

        transport = create_client(description, catalog=catalog, config=config)

        assert transport.state is ConnectionState.FAILED
        assert isinstance(transport.error, InvalidDescriptionError)

    def test_unsupported_kind(self, virtual_description, catalog, config):
        transport = create_client(
            virtual_description, catalog=catalog, config=config, builders={}
        )

        assert transport.state is ConnectionState.FAILED
        assert isinstance(transport.error, UnsupportedConnectionError)

    def test_open_failure_closes_transport(self, virtual_description, catalog, config):
        built: list[FailingOpenTransport] = []

        def build(description, context):
            built.append(FailingOpenTransport(description, context.clock))
            return built[0]

        transport = create_client(
            virtual_description,
            catalog=catalog,
            config=config,
            builders={ConnectionKind.VIRTUAL: build},
        )

        assert transport is built[0]
        assert transport.state is ConnectionState.FAILED
        assert isinstance(transport.error, ConnectError)
        assert transport.closed

    def test_serial_missing_device_fails(self, catalog, config):
        description = TelescopeDescription(
            "Direct", ConnectionKind.SERIAL, serial_port="/dev/does-not-exist-telescope"
        )

        transport = create_client(description, catalog=catalog, config=config)

        assert transport.state is ConnectionState.FAILED
        assert isinstance(transport.error, ConnectError)

    @pytest.mark.skipif(sys.platform == "win32", reason="pywin32 may be installed")
    def test_ascom_local_without_pywin32(self, catalog, config):
        description = TelescopeDescription(
            "COM", ConnectionKind.ASCOM_LOCAL, ascom_driver="ASCOM.Simulator.Telescope"
        )

        transport = create_client(description, catalog=catalog, config=config)

        assert transport.state is ConnectionState.FAILED
        assert isinstance(transport.error, ConnectError)

    def test_builder_receives_context(
        self, virtual_description, catalog, config, clock
    ):
        seen = {}

        def build(description, context):
            seen["context"] = context
            return VirtualTransport(description, clock=context.clock)

        create_client(
            virtual_description,
            catalog=catalog,
            config=config,
            clock=clock,
            builders={ConnectionKind.VIRTUAL: build},
        )

        context = seen["context"]
        assert context.catalog is catalog
        assert context.config is config
        assert context.clock is clock
        assert context.log is None
