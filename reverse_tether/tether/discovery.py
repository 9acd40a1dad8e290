"""Device discovery and USB-debugging authorization."""

from __future__ import annotations

import logging
import time
from typing import Callable

from reverse_tether.core.errors import AmbiguousDeviceError, NoDeviceError
from reverse_tether.core.executor import AdbExecutor
from reverse_tether.core.models import AuthState, Device

logger = logging.getLogger(__name__)

MODEL_PROPERTY = "ro.product.model"
VERSION_PROPERTY = "ro.build.version.release"


class DeviceSessionManager:
    """Finds the single attached phone and confirms adb may talk to it."""

    def __init__(
        self,
        executor: AdbExecutor,
        auth_grace_seconds: float = 3.0,
        wait_settle_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.executor = executor
        self.auth_grace_seconds = auth_grace_seconds
        self.wait_settle_seconds = wait_settle_seconds
        self._sleep = sleep

    def discover_device(self) -> Device:
        devices = self.executor.list_devices()
        if not devices:
            raise NoDeviceError(
                "No Android device detected. Connect the phone via USB "
                "and enable USB debugging."
            )
        if len(devices) > 1:
            raise AmbiguousDeviceError([serial for serial, _state in devices])

        serial, adb_state = devices[0]
        state = AuthState.AUTHORIZED if adb_state == "device" else AuthState.UNAUTHORIZED
        device = Device(serial=serial, state=state)
        if state == AuthState.AUTHORIZED:
            self._load_info(device)
        logger.info("Using device %s (%s)", serial, adb_state)
        return device

    def wait_for_device(self) -> None:
        logger.info("Waiting for a device to be connected")
        self.executor.wait_for_device()
        self._sleep(self.wait_settle_seconds)

    def discover_with_wait(self) -> Device:
        """Discover, and on NoDeviceError wait for a device and try exactly once more."""
        try:
            return self.discover_device()
        except NoDeviceError:
            self.wait_for_device()
        return self.discover_device()

    def verify_authorization(self, device: Device) -> bool:
        """Probe the shell; on failure give the user time to accept the prompt, then retry once."""
        if self._probe(device):
            device.state = AuthState.AUTHORIZED
            return True
        logger.info(
            "Shell probe failed on %s; waiting %.0fs for authorization",
            device.serial, self.auth_grace_seconds,
        )
        self._sleep(self.auth_grace_seconds)
        if self._probe(device):
            device.state = AuthState.AUTHORIZED
            if device.model is None:
                self._load_info(device)
            return True
        device.state = AuthState.UNAUTHORIZED
        return False

    def _probe(self, device: Device) -> bool:
        result = self.executor.run_shell(device.serial, "echo test")
        return result.success

    def _load_info(self, device: Device) -> None:
        device.model = self.executor.get_property(device.serial, MODEL_PROPERTY) or None
        device.android_version = (
            self.executor.get_property(device.serial, VERSION_PROPERTY) or None
        )
