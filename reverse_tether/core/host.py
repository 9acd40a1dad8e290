"""Host network access — interface inspection and mutation via iproute2, ping, sysctl.

Every method here touches host-global state (links, addresses, the default
route, kernel tunables, sysfs). Nothing is locked: callers are expected to
run a single session at a time.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Optional

from reverse_tether.core.models import CommandResult, InterfaceState, PingResult

logger = logging.getLogger(__name__)

_RTT_RE = re.compile(r"=\s*[\d.]+/([\d.]+)/[\d.]+")
_FRAG_MARKERS = ("frag needed", "message too long", "local error")
_LINK_RE = re.compile(r"^\d+:\s+([^:@\s]+)(?:@\S+)?:\s+<([^>]*)>(.*)$")
_MTU_RE = re.compile(r"\bmtu\s+(\d+)")
_INET_RE = re.compile(r"\binet\s+(\d+\.\d+\.\d+\.\d+/\d+)")


class HostNetwork:
    """Inspect and change the local network configuration."""

    def __init__(self, timeout: int = 15, sys_class_net: str = "/sys/class/net"):
        self.timeout = timeout
        self.sys_class_net = Path(sys_class_net)

    # -- inspection ------------------------------------------------------

    def list_interfaces(self, exclude_loopback: bool = True) -> set[str]:
        result = self._run(["ip", "-o", "link", "show"])
        names: set[str] = set()
        if not result.success:
            logger.warning("Could not list interfaces: %s", result.stderr or result.error)
            return names
        for line in result.stdout.splitlines():
            match = _LINK_RE.match(line.strip())
            if not match:
                continue
            name = match.group(1)
            if exclude_loopback and name == "lo":
                continue
            names.add(name)
        return names

    def interface_exists(self, name: str) -> bool:
        return self._run(["ip", "link", "show", "dev", name]).success

    def get_interface_state(self, name: str) -> InterfaceState:
        state = InterfaceState(name=name)
        link = self._run(["ip", "-o", "link", "show", "dev", name])
        if link.success:
            match = _LINK_RE.match(link.stdout.strip())
            if match:
                flags = match.group(2).split(",")
                state.is_up = "UP" in flags
                mtu = _MTU_RE.search(match.group(3))
                if mtu:
                    state.mtu = int(mtu.group(1))
        addr = self._run(["ip", "-o", "-4", "addr", "show", "dev", name])
        if addr.success:
            state.addresses = _INET_RE.findall(addr.stdout)
        return state

    def show_addresses(self, name: str) -> str:
        result = self._run(["ip", "addr", "show", "dev", name])
        return result.stdout if result.success else result.stderr or result.error

    def show_routes(self) -> str:
        result = self._run(["ip", "route", "show"])
        return result.stdout if result.success else result.stderr or result.error

    def has_default_route(self, gateway: str, name: str) -> bool:
        expected = f"default via {gateway} dev {name}"
        for line in self.show_routes().splitlines():
            if line.strip().startswith(expected):
                rest = line.strip()[len(expected):]
                if not rest or rest[0] == " ":
                    return True
        return False

    def ping(
        self,
        target: str,
        count: int = 1,
        timeout: int = 5,
        size: Optional[int] = None,
        dont_fragment: bool = False,
    ) -> PingResult:
        cmd = ["ping", "-c", str(count), "-W", str(timeout)]
        if size is not None:
            cmd += ["-s", str(size)]
        if dont_fragment:
            cmd += ["-M", "do"]
        cmd.append(target)
        result = self._run(cmd, timeout=count * timeout + 5)
        output = result.stdout + result.stderr
        latency = None
        match = _RTT_RE.search(result.stdout)
        if match:
            latency = float(match.group(1))
        lowered = output.lower()
        return PingResult(
            success=result.success,
            latency_ms=latency,
            fragmentation_needed=any(m in lowered for m in _FRAG_MARKERS),
            output=output,
        )

    def read_sysctl(self, key: str) -> Optional[str]:
        result = self._run(["sysctl", "-n", key])
        if not result.success:
            return None
        return result.stdout.strip()

    def find_power_control(self, name: str) -> Optional[Path]:
        """Locate the power/control attribute of the device backing ``name``."""
        device_dir = self.sys_class_net / name / "device"
        if not device_dir.exists():
            return None
        for root, dirs, _files in os.walk(device_dir):
            if "power" in dirs:
                control = Path(root) / "power" / "control"
                if control.exists():
                    return control
        return None

    # -- mutation --------------------------------------------------------

    def set_interface_up(self, name: str) -> CommandResult:
        return self._run(["ip", "link", "set", "dev", name, "up"])

    def set_interface_down(self, name: str) -> CommandResult:
        return self._run(["ip", "link", "set", "dev", name, "down"])

    def flush_addresses(self, name: str) -> CommandResult:
        result = self._run(["ip", "addr", "flush", "dev", name])
        if not result.success:
            logger.debug("Flush on %s reported: %s", name, result.stderr.strip())
        return result

    def add_address(self, name: str, cidr: str, broadcast: str) -> CommandResult:
        return self._run(
            ["ip", "addr", "add", cidr, "broadcast", broadcast, "dev", name]
        )

    def add_default_route(self, gateway: str, name: str) -> CommandResult:
        return self._run(["ip", "route", "add", "default", "via", gateway, "dev", name])

    def remove_default_route(self, gateway: str, name: str) -> CommandResult:
        result = self._run(["ip", "route", "del", "default", "via", gateway, "dev", name])
        if not result.success:
            logger.debug("No default route via %s on %s to remove", gateway, name)
        return result

    def set_mtu(self, name: str, mtu: int) -> CommandResult:
        return self._run(["ip", "link", "set", "dev", name, "mtu", str(mtu)])

    def write_sysctl(self, key: str, value: str) -> CommandResult:
        return self._run(["sysctl", "-w", f"{key}={value}"])

    def write_sys_file(self, path: Path | str, value: str) -> bool:
        """Write a sysfs attribute. A missing or read-only path returns False."""
        p = Path(path)
        if not p.exists():
            return False
        try:
            p.write_text(value)
        except OSError as e:
            logger.debug("Could not write %s: %s", p, e)
            return False
        return True

    def _run(self, cmd: list[str], timeout: Optional[int] = None) -> CommandResult:
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                success=False,
                exit_code=-1,
                error=f"{cmd[0]} timed out",
            )
        except FileNotFoundError:
            return CommandResult(
                success=False,
                exit_code=127,
                error=f"{cmd[0]} not found",
            )
        return CommandResult(
            success=result.returncode == 0,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.returncode,
        )
