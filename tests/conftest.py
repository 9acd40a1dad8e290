"""Shared test fixtures for reverse-tether tests."""

from __future__ import annotations

import io
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from reverse_tether.core.config import TetherSettings
from reverse_tether.core.executor import AdbExecutor
from reverse_tether.core.host import HostNetwork
from reverse_tether.core.models import (
    OS,
    CommandResult,
    Environment,
    InterfaceState,
    PingResult,
)

ORIGINAL_RESOLVER = "# original\nnameserver 192.168.1.1\n"


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(success=True, stdout=stdout, exit_code=0)


def fail(stderr: str = "", exit_code: int = 2) -> CommandResult:
    return CommandResult(success=False, stderr=stderr, exit_code=exit_code)


@pytest.fixture
def settings(tmp_path) -> TetherSettings:
    """Settings whose resolver files live under tmp_path."""
    return TetherSettings(
        resolver_path=str(tmp_path / "resolv.conf"),
        staging_resolver_path=str(tmp_path / "resolv.conf.tether"),
        backup_resolver_path=str(tmp_path / "resolv.conf.backup"),
        usb_autosuspend_path=str(tmp_path / "autosuspend"),
        sys_class_net=str(tmp_path / "sys" / "class" / "net"),
        tune=False,
    )


@pytest.fixture
def resolver_file(settings, tmp_path):
    """A regular /etc/resolv.conf stand-in."""
    path = tmp_path / "resolv.conf"
    path.write_text(ORIGINAL_RESOLVER)
    return path


@pytest.fixture
def mock_executor() -> MagicMock:
    """AdbExecutor with one authorized device."""
    executor = MagicMock(spec=AdbExecutor)
    executor.list_devices.return_value = [("ABC123", "device")]
    executor.run_shell.return_value = ok("test\n")
    executor.wait_for_device.return_value = ok()
    executor.get_property.side_effect = lambda serial, name: {
        "ro.product.model": "Pixel 7",
        "ro.build.version.release": "14",
    }.get(name, "")
    return executor


@pytest.fixture
def mock_host() -> MagicMock:
    """HostNetwork where usb0 appears after activation and every step succeeds."""
    host = MagicMock(spec=HostNetwork)
    host.list_interfaces.side_effect = [{"eth0"}, {"eth0", "usb0"}]
    host.interface_exists.return_value = True
    host.set_interface_up.return_value = ok()
    host.set_interface_down.return_value = ok()
    host.flush_addresses.return_value = ok()
    host.add_address.return_value = ok()
    host.get_interface_state.return_value = InterfaceState(
        name="usb0", addresses=["192.168.42.100/24"], mtu=1500, is_up=True,
    )
    host.remove_default_route.return_value = fail("RTNETLINK answers: No such process")
    host.add_default_route.return_value = ok()
    host.has_default_route.return_value = True
    host.show_addresses.return_value = "inet 192.168.42.100/24 scope global usb0"
    host.show_routes.return_value = "default via 192.168.42.1 dev usb0"
    host.ping.return_value = PingResult(success=True, latency_ms=42.0, output="1 received")
    host.read_sysctl.return_value = "reno cubic bbr"
    host.write_sysctl.return_value = ok()
    host.set_mtu.return_value = ok()
    host.write_sys_file.return_value = False
    host.find_power_control.return_value = None
    return host


@pytest.fixture
def quiet_console() -> Console:
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def linux_root_environment() -> Environment:
    return Environment(
        os=OS.LINUX,
        os_version="Arch Linux",
        python_version="3.12.0",
        is_root=True,
        tools={
            "adb": "/usr/bin/adb",
            "ip": "/usr/bin/ip",
            "ping": "/usr/bin/ping",
            "sysctl": "/usr/bin/sysctl",
        },
    )
