"""Session settings — defaults, environment overrides, validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Optional

from reverse_tether.core.models import MtuPolicy

logger = logging.getLogger(__name__)

ENV_PREFIX = "REVERSE_TETHER_"

# Interface re-enumeration after the USB mode switch usually completes within this window.
CALIBRATED_SETTLE_RANGE = (5.0, 10.0)

DEFAULT_TUNABLES: dict[str, str] = {
    "net.core.rmem_max": "16777216",
    "net.core.wmem_max": "16777216",
    "net.ipv4.tcp_rmem": "4096 87380 16777216",
    "net.ipv4.tcp_wmem": "4096 65536 16777216",
    "net.ipv4.tcp_window_scaling": "1",
    "net.ipv4.tcp_fastopen": "3",
    "net.ipv4.tcp_timestamps": "1",
    "net.ipv4.tcp_sack": "1",
}


@dataclass
class TetherSettings:
    adb_path: str = "adb"
    command_timeout: int = 30

    # Delays, in seconds
    settle_seconds: float = 10.0
    auth_grace_seconds: float = 3.0
    device_wait_settle_seconds: float = 2.0
    link_settle_seconds: float = 1.0
    reset_cycle_seconds: float = 2.0

    # Connectivity
    probe_target: str = "8.8.8.8"
    probe_timeout: int = 5

    # Resolver files
    resolver_path: str = "/etc/resolv.conf"
    staging_resolver_path: str = "/etc/resolv.conf.tether"
    backup_resolver_path: str = "/etc/resolv.conf.backup"

    # Tuning
    tune: bool = True
    tunables: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TUNABLES))
    congestion_preference: tuple[str, ...] = ("bbr", "cubic")
    mtu_policy: MtuPolicy = MtuPolicy.PROBE
    fixed_mtu: int = 1440
    fallback_mtu: int = 1400
    mtu_candidates: tuple[int, ...] = (1500, 1480, 1460, 1440, 1420, 1400)
    mtu_probe_count: int = 3
    usb_autosuspend_path: str = "/sys/module/usbcore/parameters/autosuspend"
    sys_class_net: str = "/sys/class/net"

    # Throughput measurement
    speed_test: bool = False
    speed_test_url: str = "http://speedtest.tele2.net/1MB.zip"
    speed_test_timeout: int = 30

    def validate(self) -> None:
        """Raise ValueError for settings the session cannot run with."""
        if self.settle_seconds <= 0:
            raise ValueError("settle_seconds must be positive")
        low, high = CALIBRATED_SETTLE_RANGE
        if not low <= self.settle_seconds <= high:
            logger.warning(
                "Settle delay %.1fs is outside the calibrated %.0f-%.0fs range",
                self.settle_seconds, low, high,
            )
        if not self.mtu_candidates:
            raise ValueError("mtu_candidates must not be empty")
        if list(self.mtu_candidates) != sorted(self.mtu_candidates, reverse=True):
            raise ValueError("mtu_candidates must be in descending order")
        if self.fixed_mtu < 576 or self.fallback_mtu < 576:
            raise ValueError("MTU values must be at least 576")
        if self.mtu_probe_count < 1:
            raise ValueError("mtu_probe_count must be at least 1")


_ENV_FIELDS: dict[str, str] = {
    "ADB": "adb_path",
    "SETTLE": "settle_seconds",
    "MTU_POLICY": "mtu_policy",
    "SPEED_URL": "speed_test_url",
    "PROBE_TARGET": "probe_target",
}


def _coerce(name: str, raw: Any) -> Any:
    if name == "mtu_policy":
        if isinstance(raw, MtuPolicy):
            return raw
        try:
            return MtuPolicy(str(raw).lower())
        except ValueError:
            valid = ", ".join(p.value for p in MtuPolicy)
            raise ValueError(f"Unknown MTU policy {raw!r}. Valid: {valid}")
    if name == "settle_seconds":
        try:
            return float(raw)
        except (TypeError, ValueError):
            raise ValueError(f"Settle delay must be a number, got {raw!r}")
    return raw


def load_settings(overrides: Optional[dict[str, Any]] = None) -> TetherSettings:
    """Resolve settings: explicit override → environment variable → default."""
    settings = TetherSettings()
    values: dict[str, Any] = {}

    for suffix, name in _ENV_FIELDS.items():
        env_value = os.environ.get(ENV_PREFIX + suffix)
        if env_value:
            values[name] = _coerce(name, env_value)

    known = {f.name for f in fields(TetherSettings)}
    for name, value in (overrides or {}).items():
        if value is None:
            continue
        if name not in known:
            raise ValueError(f"Unknown setting: {name}")
        values[name] = _coerce(name, value)

    settings = replace(settings, **values)
    settings.validate()
    return settings
