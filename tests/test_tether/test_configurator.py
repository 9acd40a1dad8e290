"""Tests for reverse_tether.tether.configurator — NetworkConfigurator."""

from __future__ import annotations

from unittest.mock import MagicMock, call

import pytest

from reverse_tether.core.errors import (
    AddressAssignmentError,
    ConfigurationError,
    ConnectivityError,
    InterfaceNotFoundError,
    ResolverError,
    RouteAssignmentError,
    VerificationError,
)
from reverse_tether.core.models import (
    CommandResult,
    InterfaceState,
    NetworkConfig,
    PingResult,
)
from reverse_tether.tether.configurator import NetworkConfigurator
from reverse_tether.tether.resolver import ResolverManager


@pytest.fixture
def resolver():
    return MagicMock(spec=ResolverManager)


@pytest.fixture
def configurator(mock_host, resolver):
    return NetworkConfigurator(mock_host, resolver, sleep=MagicMock())


@pytest.fixture
def config():
    return NetworkConfig(interface="usb0")


# ---------------------------------------------------------------------------
# configure
# ---------------------------------------------------------------------------

class TestConfigure:
    def test_happy_path(self, configurator, mock_host, resolver, config):
        result = configurator.configure("usb0", config)

        assert result.reachable is True
        mock_host.add_address.assert_called_once_with(
            "usb0", "192.168.42.100/24", "192.168.42.255"
        )
        mock_host.add_default_route.assert_called_once_with("192.168.42.1", "usb0")
        resolver.apply.assert_called_once_with(["8.8.8.8", "8.8.4.4"])
        mock_host.ping.assert_called_once_with("8.8.8.8", count=1, timeout=5)

    def test_old_state_removed_before_assignment(self, configurator, mock_host, config):
        configurator.configure("usb0", config)
        names = [c[0] for c in mock_host.method_calls]
        assert names.index("flush_addresses") < names.index("add_address")
        assert names.index("remove_default_route") < names.index("add_default_route")

    def test_missing_interface(self, configurator, mock_host, config):
        mock_host.interface_exists.return_value = False
        with pytest.raises(InterfaceNotFoundError):
            configurator.configure("usb9", config)
        mock_host.add_address.assert_not_called()

    def test_empty_interface_name(self, configurator, mock_host, config):
        with pytest.raises(InterfaceNotFoundError):
            configurator.configure("", config)

    def test_address_command_fails(self, configurator, mock_host, resolver, config):
        mock_host.add_address.return_value = CommandResult(
            success=False, stderr="RTNETLINK answers: Operation not permitted", exit_code=2,
        )
        with pytest.raises(AddressAssignmentError, match="not permitted"):
            configurator.configure("usb0", config)
        mock_host.add_default_route.assert_not_called()
        resolver.apply.assert_not_called()

    def test_address_not_read_back(self, configurator, mock_host, config):
        mock_host.get_interface_state.return_value = InterfaceState(name="usb0")
        with pytest.raises(VerificationError, match="no addresses"):
            configurator.configure("usb0", config)

    def test_route_command_fails(self, configurator, mock_host, config):
        mock_host.add_default_route.return_value = CommandResult(
            success=False, stderr="RTNETLINK answers: File exists", exit_code=2,
        )
        with pytest.raises(RouteAssignmentError):
            configurator.configure("usb0", config)

    def test_route_not_read_back(self, configurator, mock_host, resolver, config):
        mock_host.has_default_route.return_value = False
        with pytest.raises(VerificationError, match="Route validation"):
            configurator.configure("usb0", config)
        resolver.apply.assert_not_called()

    def test_resolver_write_failure(self, configurator, mock_host, resolver, config):
        resolver.apply.side_effect = PermissionError(
            "[Errno 1] Operation not permitted: '/etc/resolv.conf'"
        )
        with pytest.raises(ResolverError, match="Operation not permitted"):
            configurator.configure("usb0", config)
        mock_host.ping.assert_not_called()

    def test_resolver_error_is_a_configuration_error(self):
        assert issubclass(ResolverError, ConfigurationError)

    def test_link_up_failure_only_warns(self, configurator, mock_host, config):
        mock_host.set_interface_up.return_value = CommandResult(
            success=False, stderr="already up", exit_code=2,
        )
        assert configurator.configure("usb0", config).reachable is True


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------

class TestConnectivity:
    def test_unreachable_keeps_configuration(self, configurator, mock_host, resolver, config):
        mock_host.ping.side_effect = [
            PingResult(success=False, output="100% packet loss"),
            PingResult(success=True, output="1 received"),
        ]
        with pytest.raises(ConnectivityError) as exc_info:
            configurator.configure("usb0", config)

        err = exc_info.value
        assert err.result.reachable is False
        assert err.result.interface == "usb0"
        assert "Current routing table:" in err.diagnostics
        assert "Ping to gateway (192.168.42.1): reachable" in err.diagnostics
        resolver.apply.assert_called_once()
        resolver.cleanup.assert_not_called()
        mock_host.flush_addresses.assert_called_once_with("usb0")

    def test_diagnostics_include_addresses_and_routes(self, configurator, mock_host, config):
        mock_host.ping.return_value = PingResult(success=False, output="timeout")
        text = configurator.diagnostics("usb0", config)
        assert "inet 192.168.42.100/24" in text
        assert "default via 192.168.42.1 dev usb0" in text
        assert "unreachable" in text
        assert "Link usb0: UP, MTU 1500" in text

    def test_diagnostics_with_link_down(self, configurator, mock_host, config):
        mock_host.ping.return_value = PingResult(success=False, output="timeout")
        mock_host.get_interface_state.return_value = InterfaceState(name="usb0")
        text = configurator.diagnostics("usb0", config)
        assert "Link usb0: DOWN, MTU unknown" in text


# ---------------------------------------------------------------------------
# reset_interface
# ---------------------------------------------------------------------------

class TestResetInterface:
    def test_flush_down_up_with_pauses(self, mock_host, resolver):
        sleep = MagicMock()
        configurator = NetworkConfigurator(
            mock_host, resolver, reset_cycle_seconds=2, sleep=sleep,
        )
        configurator.reset_interface("usb0")

        assert [c[0] for c in mock_host.method_calls] == [
            "flush_addresses", "set_interface_down", "set_interface_up",
        ]
        assert sleep.call_args_list == [call(2), call(2)]
