"""Exception hierarchy for a tethering session."""

from __future__ import annotations

from typing import Optional


class TetherError(Exception):
    """Base class for every failure the session reports."""


class PrerequisiteError(TetherError):
    """A required host tool is missing or the process lacks privileges."""


class DeviceError(TetherError):
    pass


class NoDeviceError(DeviceError):
    def __init__(self, message: str = "No Android device detected"):
        super().__init__(message)


class AmbiguousDeviceError(DeviceError):
    def __init__(self, serials: list[str]):
        self.serials = list(serials)
        super().__init__(
            f"Multiple devices detected ({', '.join(self.serials)}). "
            "Disconnect the others and run again."
        )


class AuthorizationError(TetherError):
    def __init__(self, serial: str):
        self.serial = serial
        super().__init__(
            f"USB debugging not authorized on {serial}. "
            "Accept the prompt on the phone and run again."
        )


class ActivationError(TetherError):
    pass


class InterfaceNotDetectedError(ActivationError):
    def __init__(self, message: str = "Failed to detect a USB tethering interface"):
        super().__init__(message)


class AmbiguousInterfaceError(ActivationError):
    def __init__(self, candidates: list[str]):
        self.candidates = list(candidates)
        super().__init__(
            "Several interfaces could be the tether "
            f"({', '.join(self.candidates)}); pick one with --interface"
        )


class ConfigurationError(TetherError):
    pass


class InterfaceNotFoundError(ConfigurationError):
    def __init__(self, interface: str):
        self.interface = interface
        super().__init__(f"Interface {interface} does not exist")


class AddressAssignmentError(ConfigurationError):
    pass


class RouteAssignmentError(ConfigurationError):
    pass


class VerificationError(ConfigurationError):
    pass


class ResolverError(ConfigurationError):
    """The resolver files could not be staged, backed up or replaced."""


class ConnectivityError(TetherError):
    """Configuration was applied but the probe target is unreachable."""

    def __init__(self, message: str, diagnostics: Optional[str] = None):
        self.diagnostics = diagnostics
        self.result = None
        super().__init__(message)


class TuningError(TetherError):
    pass
