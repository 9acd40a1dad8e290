"""Tethering activation — switch the phone to RNDIS and find the interface it creates.

The phone never acknowledges that tethering is up. Activation therefore
sends its commands, waits, and infers success from a new local interface.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Callable, Optional

from reverse_tether.core.errors import (
    AmbiguousInterfaceError,
    AuthorizationError,
    InterfaceNotDetectedError,
)
from reverse_tether.core.executor import AdbExecutor
from reverse_tether.core.host import HostNetwork
from reverse_tether.core.models import (
    CandidateTier,
    Device,
    InterfaceCandidate,
    InterfaceSnapshot,
)
from reverse_tether.tether.discovery import DeviceSessionManager

logger = logging.getLogger(__name__)

TETHER_NAME_PATTERN = re.compile(r"usb|rndis|eth[0-9]+|enp.*u[0-9]+")

ACTIVATION_COMMANDS = [
    "settings put global tether_dun_required 0",
    "svc usb setFunctions rndis",
    "settings put global tether_offload_disabled 0",
]

TIER_ORDER = (
    CandidateTier.EXPLICIT_MATCH,
    CandidateTier.NEWLY_APPEARED,
    CandidateTier.FALLBACK,
)

ChooseCallback = Callable[[list[str]], Optional[str]]


def classify_candidates(
    before: InterfaceSnapshot, after: InterfaceSnapshot
) -> dict[CandidateTier, list[str]]:
    """Sort the interfaces in ``after`` into the three candidate tiers.

    Explicit matches come from the new names. When nothing new appeared
    (the phone was already in RNDIS mode), every tether-like name in
    ``after`` counts instead.
    """
    new = after.new_since(before)
    pool = new or after.names
    explicit = sorted(n for n in pool if TETHER_NAME_PATTERN.search(n))
    appeared = sorted(n for n in new if n not in explicit)
    return {
        CandidateTier.EXPLICIT_MATCH: explicit,
        CandidateTier.NEWLY_APPEARED: appeared,
        CandidateTier.FALLBACK: sorted(after.names),
    }


def select_candidate(
    tiers: dict[CandidateTier, list[str]],
    choose: Optional[ChooseCallback] = None,
) -> InterfaceCandidate:
    """Pick from the best non-empty tier; several names there need ``choose``."""
    for tier in TIER_ORDER:
        names = tiers.get(tier, [])
        if not names:
            continue
        if len(names) == 1:
            return InterfaceCandidate(name=names[0], tier=tier)
        if choose is None:
            raise AmbiguousInterfaceError(names)
        picked = choose(names)
        if picked not in names:
            raise AmbiguousInterfaceError(names)
        return InterfaceCandidate(name=picked, tier=tier)
    raise InterfaceNotDetectedError()


class TetheringActivator:
    def __init__(
        self,
        executor: AdbExecutor,
        host: HostNetwork,
        devices: DeviceSessionManager,
        settle_seconds: float = 10.0,
        choose: Optional[ChooseCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.executor = executor
        self.host = host
        self.devices = devices
        self.settle_seconds = settle_seconds
        self.choose = choose
        self._sleep = sleep
        self.before: Optional[InterfaceSnapshot] = None
        self.after: Optional[InterfaceSnapshot] = None

    def snapshot(self) -> InterfaceSnapshot:
        return InterfaceSnapshot.of(self.host.list_interfaces(exclude_loopback=True))

    def enable(self, device: Device) -> None:
        """Snapshot, check authorization, send the tethering commands and settle."""
        self.before = self.snapshot()
        logger.debug("Interfaces before activation: %s", sorted(self.before.names))

        if not self.devices.verify_authorization(device):
            raise AuthorizationError(device.serial)

        for command in ACTIVATION_COMMANDS:
            result = self.executor.run_shell(device.serial, command)
            # Exit status only means the command reached the phone.
            logger.info(
                "Sent %r (exit %d)", command, result.exit_code,
            )

        logger.info("Waiting %.0fs for the USB network interface", self.settle_seconds)
        self._sleep(self.settle_seconds)

    def detect(self) -> InterfaceCandidate:
        if self.before is None:
            raise InterfaceNotDetectedError("No interface snapshot taken before activation")
        self.after = self.snapshot()
        logger.debug("Interfaces after activation: %s", sorted(self.after.names))
        candidate = select_candidate(
            classify_candidates(self.before, self.after), self.choose
        )
        logger.info(
            "Detected tethering interface %s (%s)", candidate.name, candidate.tier.value
        )
        return candidate

    def activate(self, device: Device) -> InterfaceCandidate:
        self.enable(device)
        return self.detect()

    def clear(self) -> None:
        self.before = None
        self.after = None
