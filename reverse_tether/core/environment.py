"""Environment detection — OS, privileges, required host tools."""

from __future__ import annotations

import os
import platform
import shutil
import subprocess

from reverse_tether.core.errors import PrerequisiteError
from reverse_tether.core.models import OS, Environment

REQUIRED_TOOLS = ("ip", "ping", "sysctl")

INSTALL_HINTS = {
    "adb": "Install android-tools (pacman), android-tools-adb (apt) or android-tools (dnf)",
    "ip": "Install iproute2",
    "ping": "Install iputils",
    "sysctl": "Install procps",
}


class EnvironmentDetector:
    """Detects what the host can do before any session starts."""

    @staticmethod
    def detect_current(adb_path: str = "adb") -> Environment:
        """Detect the current environment."""
        tools = {"adb": shutil.which(adb_path)}
        for tool in REQUIRED_TOOLS:
            tools[tool] = shutil.which(tool)
        return Environment(
            os=_detect_os(),
            os_version=_detect_os_version(),
            python_version=platform.python_version(),
            is_root=_detect_root(),
            tools=tools,
        )

    @staticmethod
    def check_prerequisites(environment: Environment) -> None:
        """Raise PrerequisiteError unless a session can run here."""
        if environment.os != OS.LINUX:
            raise PrerequisiteError(
                f"Reverse tethering needs Linux, found {environment.os.value}"
            )
        missing = environment.missing_tools()
        if missing:
            hints = "; ".join(
                f"{tool}: {INSTALL_HINTS.get(tool, 'not found')}" for tool in missing
            )
            raise PrerequisiteError(f"Missing required tools ({hints})")
        if not environment.is_root:
            raise PrerequisiteError(
                "Changing addresses, routes and /etc/resolv.conf needs root. "
                "Run again with sudo."
            )


def _detect_os() -> OS:
    system = platform.system().lower()
    if system == "linux":
        return OS.LINUX
    elif system == "darwin":
        return OS.MACOS
    elif system == "windows":
        return OS.WINDOWS
    return OS.LINUX


def _detect_os_version() -> str:
    try:
        if platform.system() == "Linux":
            result = subprocess.run(
                ["lsb_release", "-ds"],
                capture_output=True, text=True, timeout=5,
            )
            if result.returncode == 0 and result.stdout.strip():
                return result.stdout.strip().strip('"')
        return platform.platform()
    except Exception:
        return platform.platform()


def _detect_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        return False
    return geteuid() == 0
