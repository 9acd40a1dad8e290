"""Throughput tuning — TCP tunables, MTU selection, USB power management.

Every step is best effort. Failures are recorded on the report and logged;
nothing raises out of :meth:`PerformanceTuner.tune`.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from reverse_tether.core.config import TetherSettings
from reverse_tether.core.errors import TuningError
from reverse_tether.core.host import HostNetwork
from reverse_tether.core.models import MtuPolicy, TuningReport
from reverse_tether.tether.speedtest import measure_throughput, percent_change

logger = logging.getLogger(__name__)

# IPv4 header (20) + ICMP header (8)
ICMP_OVERHEAD = 28

CONGESTION_KEY = "net.ipv4.tcp_congestion_control"
AVAILABLE_CONGESTION_KEY = "net.ipv4.tcp_available_congestion_control"


def choose_congestion_control(
    available: Optional[str], preference: tuple[str, ...]
) -> Optional[str]:
    """First preferred algorithm the kernel offers, or None to keep the default."""
    offered = set((available or "").split())
    for name in preference:
        if name in offered:
            return name
    return None


class PerformanceTuner:
    def __init__(
        self,
        host: HostNetwork,
        settings: TetherSettings,
        measure: Callable[[str, int], Optional[float]] = measure_throughput,
    ):
        self.host = host
        self.settings = settings
        self._measure = measure

    def tune(self, interface: str) -> TuningReport:
        report = TuningReport(interface=interface, mtu_policy=self.settings.mtu_policy)

        if self.settings.speed_test:
            report.speed_before_mbps = self._measure(
                self.settings.speed_test_url, self.settings.speed_test_timeout
            )

        steps = (
            self.apply_tcp_tunables,
            self.apply_congestion_control,
            self.apply_mtu,
            self.disable_usb_power_management,
        )
        for step in steps:
            try:
                step(interface, report)
            except Exception as e:
                logger.warning("Tuning step %s failed: %s", step.__name__, e)
                report.failures.append(f"{step.__name__}: {e}")

        if self.settings.speed_test:
            report.speed_after_mbps = self._measure(
                self.settings.speed_test_url, self.settings.speed_test_timeout
            )
            report.speed_change_percent = percent_change(
                report.speed_before_mbps, report.speed_after_mbps
            )
        return report

    def apply_tcp_tunables(self, interface: str, report: TuningReport) -> None:
        for key, value in self.settings.tunables.items():
            result = self.host.write_sysctl(key, value)
            if result.success:
                report.tunables[key] = value
            else:
                report.failures.append(f"sysctl {key}")
                logger.debug("sysctl %s=%s failed: %s", key, value, result.stderr.strip())

    def apply_congestion_control(self, interface: str, report: TuningReport) -> None:
        available = self.host.read_sysctl(AVAILABLE_CONGESTION_KEY)
        algorithm = choose_congestion_control(
            available, self.settings.congestion_preference
        )
        if algorithm is None:
            logger.info("Keeping the default congestion control (%s available)", available)
            return
        result = self.host.write_sysctl(CONGESTION_KEY, algorithm)
        if not result.success:
            raise TuningError(f"Could not enable {algorithm} congestion control")
        report.congestion_control = algorithm
        logger.info("Enabled %s congestion control", algorithm)

    def apply_mtu(self, interface: str, report: TuningReport) -> None:
        settings = self.settings
        online = self.host.ping(settings.probe_target, count=1, timeout=2).success
        if not online:
            mtu = settings.fallback_mtu
            logger.info("No connectivity; using safe MTU %d", mtu)
        elif settings.mtu_policy == MtuPolicy.FIXED:
            mtu = settings.fixed_mtu
        else:
            mtu = self.probe_mtu()
        result = self.host.set_mtu(interface, mtu)
        if not result.success:
            raise TuningError(f"Could not set MTU {mtu} on {interface}")
        report.mtu = mtu
        logger.info("MTU set to %d on %s", mtu, interface)

    def probe_mtu(self) -> int:
        """Lowest-latency candidate that passes unfragmented, else the fallback."""
        settings = self.settings
        best: Optional[tuple[float, int]] = None
        for mtu in settings.mtu_candidates:
            probe = self.host.ping(
                settings.probe_target,
                count=settings.mtu_probe_count,
                timeout=2,
                size=mtu - ICMP_OVERHEAD,
                dont_fragment=True,
            )
            if not probe.success or probe.fragmentation_needed or probe.latency_ms is None:
                logger.debug("MTU %d rejected", mtu)
                continue
            logger.debug("MTU %d: %.1f ms", mtu, probe.latency_ms)
            if best is None or probe.latency_ms < best[0]:
                best = (probe.latency_ms, mtu)
        if best is None:
            return settings.fallback_mtu
        return best[1]

    def disable_usb_power_management(self, interface: str, report: TuningReport) -> None:
        if self.host.write_sys_file(self.settings.usb_autosuspend_path, "-1"):
            report.usb_autosuspend_disabled = True
            logger.info("Disabled USB autosuspend globally")
        control = self.host.find_power_control(interface)
        if control is not None and self.host.write_sys_file(control, "on"):
            report.usb_device_power_pinned = True
            logger.info("Disabled power management for the %s USB device", interface)
