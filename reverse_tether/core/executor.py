"""adb executor — runs debug-bridge commands against the attached phone."""

from __future__ import annotations

import logging
import subprocess

from reverse_tether.core.models import CommandResult

logger = logging.getLogger(__name__)

# `adb devices` lines that are not device entries
_NOISE_PREFIXES = ("List of devices", "* daemon", "adb server", "adb: ")


class AdbExecutor:
    """Thin wrapper around the adb client program."""

    def __init__(self, adb_path: str = "adb", timeout: int = 30):
        self.adb_path = adb_path
        self.timeout = timeout

    def list_devices(self) -> list[tuple[str, str]]:
        """Return (serial, state) for every device adb reports."""
        result = self._run(["devices"])
        if not result.success:
            logger.debug("adb devices failed: %s", result.error or result.stderr)
            return []
        devices: list[tuple[str, str]] = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line or line.startswith(_NOISE_PREFIXES):
                continue
            parts = line.split()
            if len(parts) < 2:
                continue
            devices.append((parts[0], parts[1]))
        return devices

    def run_shell(self, serial: str, command: str) -> CommandResult:
        return self._run(["-s", serial, "shell", command])

    def wait_for_device(self) -> CommandResult:
        """Block until adb sees a device."""
        return self._run(["wait-for-device"], blocking=True)

    def get_property(self, serial: str, name: str) -> str:
        result = self.run_shell(serial, f"getprop {name}")
        if not result.success:
            return ""
        return result.stdout.replace("\r", "").strip()

    def _run(self, args: list[str], blocking: bool = False) -> CommandResult:
        timeout = None if blocking else self.timeout
        cmd = [self.adb_path] + args
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                success=False,
                exit_code=-1,
                error=f"adb timed out after {timeout} seconds",
            )
        except FileNotFoundError:
            return CommandResult(
                success=False,
                exit_code=127,
                error=f"adb not found at {self.adb_path!r}",
            )
        return CommandResult(
            success=result.returncode == 0,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.returncode,
        )
