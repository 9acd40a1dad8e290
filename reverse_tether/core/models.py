"""Core data models for reverse-tether."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class OS(Enum):
    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"


class AuthState(Enum):
    AUTHORIZED = "authorized"
    UNAUTHORIZED = "unauthorized"


class CandidateTier(Enum):
    EXPLICIT_MATCH = "explicit-match"
    NEWLY_APPEARED = "newly-appeared"
    FALLBACK = "fallback"


class MtuPolicy(Enum):
    PROBE = "probe"
    FIXED = "fixed"


class SessionState(Enum):
    IDLE = "idle"
    DISCOVERING_DEVICE = "discovering-device"
    AUTHORIZING = "authorizing"
    ACTIVATING = "activating"
    DETECTING_INTERFACE = "detecting-interface"
    CONFIGURING = "configuring"
    TUNING = "tuning"
    DONE = "done"
    ABORTED = "aborted"
    CLEANING_UP = "cleaning-up"


class SessionOutcome(Enum):
    SUCCESS = "success"
    DECLINED = "declined"
    DEVICE_NOT_FOUND = "device-not-found"
    AMBIGUOUS_DEVICE = "ambiguous-device"
    AUTHORIZATION_FAILED = "authorization-failed"
    INTERFACE_NOT_DETECTED = "interface-not-detected"
    CONFIGURATION_FAILED = "configuration-failed"
    CONFIGURATION_FAILED_AFTER_RETRY = "configuration-failed-after-retry"
    NO_CONNECTIVITY = "no-connectivity"
    INTERRUPTED = "interrupted"


@dataclass
class Environment:
    os: OS
    os_version: str
    python_version: str
    is_root: bool
    tools: dict[str, Optional[str]] = field(default_factory=dict)

    def missing_tools(self) -> list[str]:
        return [name for name, path in self.tools.items() if not path]


@dataclass
class CommandResult:
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    error: str = ""


@dataclass
class Device:
    serial: str
    state: AuthState
    model: Optional[str] = None
    android_version: Optional[str] = None

    @property
    def description(self) -> str:
        if self.model and self.android_version:
            return f"{self.model} (Android {self.android_version})"
        return self.model or self.serial


@dataclass(frozen=True)
class InterfaceSnapshot:
    """Interface names seen at one instant. Loopback is never included."""

    names: frozenset[str] = frozenset()

    @classmethod
    def of(cls, names) -> InterfaceSnapshot:
        return cls(frozenset(n for n in names if n != "lo"))

    def new_since(self, before: InterfaceSnapshot) -> frozenset[str]:
        return self.names - before.names

    def __contains__(self, name: str) -> bool:
        return name in self.names

    def __len__(self) -> int:
        return len(self.names)


@dataclass(frozen=True)
class InterfaceCandidate:
    name: str
    tier: CandidateTier


@dataclass
class InterfaceState:
    name: str
    addresses: list[str] = field(default_factory=list)
    mtu: Optional[int] = None
    is_up: bool = False


@dataclass
class PingResult:
    success: bool
    latency_ms: Optional[float] = None
    fragmentation_needed: bool = False
    output: str = ""


@dataclass
class NetworkConfig:
    interface: str
    address: str = "192.168.42.100"
    prefix_length: int = 24
    broadcast: str = "192.168.42.255"
    gateway: str = "192.168.42.1"
    dns_servers: list[str] = field(
        default_factory=lambda: ["8.8.8.8", "8.8.4.4"]
    )

    @property
    def cidr(self) -> str:
        return f"{self.address}/{self.prefix_length}"


@dataclass
class ResolverBackup:
    path: str
    original_path: str


@dataclass
class ConfigResult:
    interface: str
    config: NetworkConfig
    reachable: bool = True
    diagnostics: Optional[str] = None


@dataclass
class TuningReport:
    interface: str
    tunables: dict[str, str] = field(default_factory=dict)
    congestion_control: Optional[str] = None
    mtu: Optional[int] = None
    mtu_policy: Optional[MtuPolicy] = None
    usb_autosuspend_disabled: bool = False
    usb_device_power_pinned: bool = False
    speed_before_mbps: Optional[float] = None
    speed_after_mbps: Optional[float] = None
    speed_change_percent: Optional[float] = None
    failures: list[str] = field(default_factory=list)


@dataclass
class SessionResult:
    outcome: SessionOutcome
    states: list[SessionState] = field(default_factory=list)
    device: Optional[Device] = None
    interface: Optional[str] = None
    duration_seconds: float = 0.0
    error_message: Optional[str] = None
    diagnostics: Optional[str] = None
    tuning: Optional[TuningReport] = None

    @property
    def success(self) -> bool:
        return self.outcome == SessionOutcome.SUCCESS

    @property
    def exit_code(self) -> int:
        if self.outcome in (SessionOutcome.SUCCESS, SessionOutcome.DECLINED):
            return 0
        return 1
