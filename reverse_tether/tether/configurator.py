"""Network configuration of the tethering interface, verified step by step."""

from __future__ import annotations

import logging
import time
from typing import Callable

from reverse_tether.core.errors import (
    AddressAssignmentError,
    ConnectivityError,
    InterfaceNotFoundError,
    ResolverError,
    RouteAssignmentError,
    VerificationError,
)
from reverse_tether.core.host import HostNetwork
from reverse_tether.core.models import ConfigResult, NetworkConfig
from reverse_tether.tether.resolver import ResolverManager

logger = logging.getLogger(__name__)


class NetworkConfigurator:
    """Assigns the fixed address, default route and DNS to one interface.

    Address assignment and route installation are hard failures, and each is
    only accepted after reading the result back from the kernel. Removing old
    state (addresses, a previous default route) never fails.
    """

    def __init__(
        self,
        host: HostNetwork,
        resolver: ResolverManager,
        probe_target: str = "8.8.8.8",
        probe_timeout: int = 5,
        link_settle_seconds: float = 1.0,
        reset_cycle_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.host = host
        self.resolver = resolver
        self.probe_target = probe_target
        self.probe_timeout = probe_timeout
        self.link_settle_seconds = link_settle_seconds
        self.reset_cycle_seconds = reset_cycle_seconds
        self._sleep = sleep

    def configure(self, interface: str, config: NetworkConfig) -> ConfigResult:
        if not interface or not self.host.interface_exists(interface):
            raise InterfaceNotFoundError(interface)

        logger.info("Configuring network interface %s", interface)
        up = self.host.set_interface_up(interface)
        if not up.success:
            logger.warning("Bringing %s up reported: %s", interface, up.stderr.strip())
        self._sleep(self.link_settle_seconds)

        self.host.flush_addresses(interface)

        self._assign_address(interface, config)
        self._install_route(interface, config)

        try:
            backup = self.resolver.apply(config.dns_servers)
        except OSError as e:
            raise ResolverError(f"Failed to set DNS servers: {e}") from e
        if backup:
            logger.info("Backup of %s kept at %s", backup.original_path, backup.path)
        logger.info("DNS set to %s", ", ".join(config.dns_servers))

        try:
            self.check_connectivity(interface, config)
        except ConnectivityError as e:
            e.result = ConfigResult(
                interface=interface,
                config=config,
                reachable=False,
                diagnostics=e.diagnostics,
            )
            raise
        return ConfigResult(interface=interface, config=config, reachable=True)

    def check_connectivity(self, interface: str, config: NetworkConfig) -> None:
        probe = self.host.ping(self.probe_target, count=1, timeout=self.probe_timeout)
        if probe.success:
            logger.info("Network connectivity established")
            return
        raise ConnectivityError(
            f"No network connectivity through {interface} "
            f"({self.probe_target} unreachable)",
            diagnostics=self.diagnostics(interface, config),
        )

    def diagnostics(self, interface: str, config: NetworkConfig) -> str:
        gateway = self.host.ping(config.gateway, count=1, timeout=self.probe_timeout)
        state = self.host.get_interface_state(interface)
        return "\n".join([
            f"Link {interface}: {'UP' if state.is_up else 'DOWN'}, "
            f"MTU {state.mtu if state.mtu is not None else 'unknown'}",
            f"Current IP configuration on {interface}:",
            self.host.show_addresses(interface).rstrip(),
            "Current routing table:",
            self.host.show_routes().rstrip(),
            f"Ping to gateway ({config.gateway}): "
            + ("reachable" if gateway.success else "unreachable"),
            gateway.output.rstrip(),
        ])

    def reset_interface(self, interface: str) -> None:
        """Flush, cycle the link down and up, and let it settle."""
        logger.info("Resetting %s before retrying", interface)
        self.host.flush_addresses(interface)
        self.host.set_interface_down(interface)
        self._sleep(self.reset_cycle_seconds)
        self.host.set_interface_up(interface)
        self._sleep(self.reset_cycle_seconds)

    def _assign_address(self, interface: str, config: NetworkConfig) -> None:
        result = self.host.add_address(interface, config.cidr, config.broadcast)
        if not result.success:
            raise AddressAssignmentError(
                f"Failed to set {config.cidr} on {interface}: "
                f"{(result.stderr or result.error).strip()}"
            )
        state = self.host.get_interface_state(interface)
        if config.cidr not in state.addresses:
            raise VerificationError(
                f"Address validation failed on {interface}: expected {config.cidr}, "
                f"found {', '.join(state.addresses) or 'no addresses'}"
            )
        logger.info("IP address %s configured on %s", config.cidr, interface)

    def _install_route(self, interface: str, config: NetworkConfig) -> None:
        self.host.remove_default_route(config.gateway, interface)
        result = self.host.add_default_route(config.gateway, interface)
        if not result.success:
            raise RouteAssignmentError(
                f"Failed to set default route via {config.gateway} on {interface}: "
                f"{(result.stderr or result.error).strip()}"
            )
        if not self.host.has_default_route(config.gateway, interface):
            raise VerificationError(
                f"Route validation failed: no 'default via {config.gateway} "
                f"dev {interface}' in the routing table"
            )
        logger.info("Default route via %s configured on %s", config.gateway, interface)
