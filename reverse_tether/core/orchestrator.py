"""Orchestrator — runs one tethering session from discovery to cleanup."""

from __future__ import annotations

import logging
import signal
import time
from typing import Callable, Optional

from rich.console import Console
from rich.panel import Panel

from reverse_tether.core.config import TetherSettings
from reverse_tether.core.errors import (
    ActivationError,
    AmbiguousDeviceError,
    AuthorizationError,
    ConfigurationError,
    ConnectivityError,
    NoDeviceError,
)
from reverse_tether.core.executor import AdbExecutor
from reverse_tether.core.host import HostNetwork
from reverse_tether.core.models import (
    Device,
    NetworkConfig,
    SessionOutcome,
    SessionResult,
    SessionState,
    TuningReport,
)
from reverse_tether.tether.activator import TetheringActivator
from reverse_tether.tether.configurator import NetworkConfigurator
from reverse_tether.tether.discovery import DeviceSessionManager
from reverse_tether.tether.resolver import ResolverManager
from reverse_tether.tether.tuner import PerformanceTuner

logger = logging.getLogger(__name__)


class _SessionAbort(Exception):
    def __init__(
        self,
        outcome: SessionOutcome,
        message: str,
        diagnostics: Optional[str] = None,
    ):
        super().__init__(message)
        self.outcome = outcome
        self.diagnostics = diagnostics


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt(f"signal {signum}")


class SessionOrchestrator:
    """Runs the session: discover → authorize → activate → detect → configure → tune.

    Cleanup runs on every exit path, including Ctrl-C and SIGTERM.
    """

    def __init__(
        self,
        settings: TetherSettings,
        executor: Optional[AdbExecutor] = None,
        host: Optional[HostNetwork] = None,
        auto_confirm: bool = False,
        console: Optional[Console] = None,
        interface: Optional[str] = None,
        retry_configuration: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.auto_confirm = auto_confirm
        self.console = console or Console()
        self.preferred_interface = interface
        self.retry_configuration = retry_configuration

        self.confirm_callback: Callable[[str], bool]
        if auto_confirm:
            self.confirm_callback = lambda _: True
        else:
            self.confirm_callback = self._interactive_confirm

        self.executor = executor or AdbExecutor(
            settings.adb_path, timeout=settings.command_timeout
        )
        self.host = host or HostNetwork(sys_class_net=settings.sys_class_net)
        self.devices = DeviceSessionManager(
            self.executor,
            auth_grace_seconds=settings.auth_grace_seconds,
            wait_settle_seconds=settings.device_wait_settle_seconds,
            sleep=sleep,
        )
        self.activator = TetheringActivator(
            self.executor,
            self.host,
            self.devices,
            settle_seconds=settings.settle_seconds,
            choose=self._choose_interface,
            sleep=sleep,
        )
        self.resolver = ResolverManager(
            settings.resolver_path,
            settings.staging_resolver_path,
            settings.backup_resolver_path,
        )
        self.configurator = NetworkConfigurator(
            self.host,
            self.resolver,
            probe_target=settings.probe_target,
            probe_timeout=settings.probe_timeout,
            link_settle_seconds=settings.link_settle_seconds,
            reset_cycle_seconds=settings.reset_cycle_seconds,
            sleep=sleep,
        )
        self.tuner = PerformanceTuner(self.host, settings)

        self.states: list[SessionState] = []
        self.device: Optional[Device] = None
        self.interface: Optional[str] = None
        self.tuning: Optional[TuningReport] = None

    @property
    def state(self) -> SessionState:
        return self.states[-1] if self.states else SessionState.IDLE

    def run(self) -> SessionResult:
        """Execute the full session and always clean up afterwards."""
        start_time = time.time()
        self.states = [SessionState.IDLE]
        outcome = SessionOutcome.SUCCESS
        error_message: Optional[str] = None
        diagnostics: Optional[str] = None

        previous_handlers = self._install_signal_handlers()
        try:
            outcome, diagnostics = self._run_steps()
            if outcome == SessionOutcome.NO_CONNECTIVITY:
                error_message = "Configured, but the phone's data connection is unreachable"
        except _SessionAbort as abort:
            self._transition(SessionState.ABORTED)
            outcome = abort.outcome
            error_message = str(abort)
            diagnostics = abort.diagnostics
        except KeyboardInterrupt:
            self._transition(SessionState.ABORTED)
            outcome = SessionOutcome.INTERRUPTED
            error_message = "Interrupted"
            self.console.print("\n[yellow]Interrupted, cleaning up...[/]")
        finally:
            self._transition(SessionState.CLEANING_UP)
            # A second Ctrl-C must not cut the resolver restore short.
            self._ignore_signals(previous_handlers)
            try:
                self.cleanup()
            finally:
                self._restore_signal_handlers(previous_handlers)

        result = SessionResult(
            outcome=outcome,
            states=list(self.states),
            device=self.device,
            interface=self.interface,
            duration_seconds=time.time() - start_time,
            error_message=error_message,
            diagnostics=diagnostics,
            tuning=self.tuning,
        )
        self._display_final_result(result)
        return result

    def _run_steps(self) -> tuple[SessionOutcome, Optional[str]]:
        self.console.print(
            Panel(
                "[bold]Reverse tethering[/]: share the phone's mobile data "
                "with this computer over USB",
                title="Reverse Tether Session",
                border_style="blue",
            )
        )

        # 1. DISCOVER
        self._transition(SessionState.DISCOVERING_DEVICE)
        self.console.print("[dim]Looking for an Android device...[/]")
        try:
            self.device = self.devices.discover_with_wait()
        except NoDeviceError as e:
            raise _SessionAbort(SessionOutcome.DEVICE_NOT_FOUND, str(e))
        except AmbiguousDeviceError as e:
            raise _SessionAbort(SessionOutcome.AMBIGUOUS_DEVICE, str(e))

        # 2. AUTHORIZE
        self._transition(SessionState.AUTHORIZING)
        if not self.devices.verify_authorization(self.device):
            raise _SessionAbort(
                SessionOutcome.AUTHORIZATION_FAILED,
                str(AuthorizationError(self.device.serial)),
            )
        self.console.print(f"[green]Connected to: {self.device.description}[/]")

        if not self.confirm_callback(
            "Enable USB tethering on this device and route this computer "
            "through it? Make sure the phone has an active data connection."
        ):
            self.console.print("[yellow]Operation cancelled by user.[/]")
            self._transition(SessionState.ABORTED)
            return SessionOutcome.DECLINED, None

        # 3. ACTIVATE
        self._transition(SessionState.ACTIVATING)
        self.console.print("[cyan]Enabling USB tethering mode...[/]")
        try:
            self.activator.enable(self.device)
        except AuthorizationError as e:
            raise _SessionAbort(SessionOutcome.AUTHORIZATION_FAILED, str(e))

        # 4. DETECT
        self._transition(SessionState.DETECTING_INTERFACE)
        try:
            candidate = self.activator.detect()
        except ActivationError as e:
            raise _SessionAbort(SessionOutcome.INTERFACE_NOT_DETECTED, str(e))
        self.interface = candidate.name
        self.console.print(
            f"[green]Detected USB tethering interface: {candidate.name}[/] "
            f"[dim]({candidate.tier.value})[/]"
        )

        # 5. CONFIGURE
        self._transition(SessionState.CONFIGURING)
        outcome, diagnostics = self._configure(candidate.name)

        # 6. TUNE
        if self.settings.tune:
            self._transition(SessionState.TUNING)
            self.console.print("[cyan]Tuning TCP, MTU and USB power settings...[/]")
            self.tuning = self.tuner.tune(candidate.name)

        self._transition(SessionState.DONE)
        return outcome, diagnostics

    def _configure(self, interface: str) -> tuple[SessionOutcome, Optional[str]]:
        """Configure once, and once more after a link reset if that fails."""
        config = NetworkConfig(interface=interface)
        try:
            self.configurator.configure(interface, config)
            return SessionOutcome.SUCCESS, None
        except (ConfigurationError, ConnectivityError) as e:
            self.console.print(f"[red]{e}[/]")
            if isinstance(e, ConnectivityError) and e.diagnostics:
                self.console.print(f"[dim]{e.diagnostics}[/]")
            if not self.retry_configuration:
                if isinstance(e, ConnectivityError):
                    return SessionOutcome.NO_CONNECTIVITY, e.diagnostics
                raise _SessionAbort(SessionOutcome.CONFIGURATION_FAILED, str(e))

        self.console.print("[yellow]Trying alternative method...[/]")
        self.configurator.reset_interface(interface)
        try:
            self.configurator.configure(interface, config)
        except ConfigurationError as e:
            raise _SessionAbort(SessionOutcome.CONFIGURATION_FAILED_AFTER_RETRY, str(e))
        except ConnectivityError as e:
            self.console.print(f"[red]{e}[/]")
            if e.diagnostics:
                self.console.print(f"[dim]{e.diagnostics}[/]")
            return SessionOutcome.NO_CONNECTIVITY, e.diagnostics
        return SessionOutcome.SUCCESS, None

    def cleanup(self) -> None:
        """Drop snapshots, remove staging DNS, restore the resolver backup. Never raises."""
        try:
            self.activator.clear()
            for problem in self.resolver.cleanup():
                logger.warning(problem)
                self.console.print(f"[yellow]{problem}[/]")
        except Exception:
            logger.warning("Cleanup failed", exc_info=True)

    def _transition(self, state: SessionState) -> None:
        logger.debug("%s -> %s", self.state.value, state.value)
        self.states.append(state)

    def _install_signal_handlers(self) -> dict:
        """Route SIGTERM onto the Ctrl-C path and remember what to restore."""
        try:
            return {
                signal.SIGINT: signal.getsignal(signal.SIGINT),
                signal.SIGTERM: signal.signal(signal.SIGTERM, _raise_interrupt),
            }
        except ValueError:
            # Not the main thread
            return {}

    @staticmethod
    def _ignore_signals(handlers: dict) -> None:
        for signum in handlers:
            signal.signal(signum, signal.SIG_IGN)

    @staticmethod
    def _restore_signal_handlers(handlers: dict) -> None:
        for signum, handler in handlers.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

    def _display_final_result(self, result: SessionResult) -> None:
        self.console.print()
        if result.outcome == SessionOutcome.DECLINED:
            return
        if result.success:
            config = NetworkConfig(interface=result.interface or "")
            lines = [
                "[bold green]Your computer is now using the phone's network connection.[/]",
                f"Interface: {config.interface}",
                f"IP Address: {config.address}",
                f"Gateway: {config.gateway}",
                f"DNS: {', '.join(config.dns_servers)}",
            ]
            if result.tuning is not None:
                lines.extend(self._tuning_lines(result.tuning))
            lines.append(f"Duration: {result.duration_seconds:.1f}s")
            self.console.print(
                Panel(
                    "\n".join(lines),
                    title="USB Tethering Setup Complete",
                    border_style="green",
                )
            )
            self.console.print(
                "[yellow]To disconnect, unplug your phone or run: "
                "adb shell svc usb setFunctions[/]"
            )
        else:
            self.console.print(
                Panel(
                    f"[bold red]Tethering failed[/] ({result.outcome.value})\n"
                    f"Duration: {result.duration_seconds:.1f}s\n"
                    f"Error: {result.error_message}",
                    title="Session Failed",
                    border_style="red",
                )
            )
            if result.outcome in (
                SessionOutcome.NO_CONNECTIVITY,
                SessionOutcome.CONFIGURATION_FAILED_AFTER_RETRY,
            ):
                self.console.print(
                    "[yellow]Some phones require enabling USB tethering "
                    "explicitly in the phone's settings.[/]"
                )

    @staticmethod
    def _tuning_lines(tuning: TuningReport) -> list[str]:
        lines = []
        if tuning.congestion_control:
            lines.append(f"Congestion control: {tuning.congestion_control}")
        if tuning.mtu:
            lines.append(f"MTU: {tuning.mtu} ({tuning.mtu_policy.value})")
        if tuning.speed_change_percent is not None:
            lines.append(
                f"Throughput: {tuning.speed_before_mbps:.2f} → "
                f"{tuning.speed_after_mbps:.2f} Mbit/s "
                f"({tuning.speed_change_percent:+.1f}%)"
            )
        return lines

    def _choose_interface(self, candidates: list[str]) -> Optional[str]:
        """Resolve several possible tether interfaces via --interface or a prompt."""
        if self.preferred_interface:
            return self.preferred_interface
        if self.auto_confirm:
            return None
        from rich.prompt import Prompt

        self.console.print()
        self.console.print("[bold yellow]Several interfaces could be the tether:[/]")
        for i, name in enumerate(candidates, 1):
            self.console.print(f"  [cyan]{i}.[/] {name}")
        answer = Prompt.ask(
            "Enter the number of the interface to use",
            console=self.console,
        )
        try:
            idx = int(answer)
            if 1 <= idx <= len(candidates):
                return candidates[idx - 1]
        except ValueError:
            pass
        return answer.strip()

    def _interactive_confirm(self, message: str) -> bool:
        """Prompt user for confirmation."""
        from rich.prompt import Confirm

        return Confirm.ask(f"[yellow]{message}[/]")
