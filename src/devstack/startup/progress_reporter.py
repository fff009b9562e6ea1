"""devstack startup progress reporter.

Provides clear, real-time feedback while the stack starts: phases, steps,
per-service health state lines and the port conflict table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
import logging
import sys
import time
from typing import Any, TextIO

from rich.console import Console
from rich.table import Table

from devstack.startup.verifier import CheckState, ServiceCheck

logger = logging.getLogger(__name__)


class ProgressPhase(StrEnum):
    """Startup progress phases."""

    INITIALIZING = "initializing"
    RESOLVING_PROFILE = "resolving_profile"
    PREFLIGHT = "preflight"
    LAUNCHING = "launching"
    VERIFYING_HEALTH = "verifying_health"
    READY = "ready"
    FAILED = "failed"


@dataclass
class ProgressStep:
    """Individual progress step."""

    name: str
    phase: ProgressPhase
    status: str = "pending"  # pending, running, completed, failed, skipped
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    start_time: float | None = None
    end_time: float | None = None
    error: Exception | None = None

    @property
    def duration_ms(self) -> float:
        """Get step duration in milliseconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time) * 1000
        return 0.0

    def start(self) -> None:
        self.status = "running"
        self.start_time = time.time()

    def complete(
        self, message: str = "", details: dict[str, Any] | None = None
    ) -> None:
        self.status = "completed"
        self.end_time = time.time()
        if message:
            self.message = message
        if details:
            self.details.update(details)

    def fail(
        self,
        message: str,
        error: Exception | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status = "failed"
        self.end_time = time.time()
        self.message = message
        self.error = error
        if details:
            self.details.update(details)


class StartupProgressReporter:
    """Reports startup progress with clear status messages."""

    def __init__(
        self, output: TextIO | None = None, *, enable_colors: bool = True
    ) -> None:
        """Initialize progress reporter.

        Args:
            output: Output stream (defaults to stdout)
            enable_colors: Whether to use colored output
        """
        self.output = output or sys.stdout
        self.enable_colors = (
            enable_colors and hasattr(sys.stdout, "isatty") and sys.stdout.isatty()
        )
        self.steps: list[ProgressStep] = []
        self.current_phase = ProgressPhase.INITIALIZING
        self.start_time = time.time()
        self.end_time: float | None = None
        self._service_states: dict[str, CheckState] = {}

        self.console = Console(
            file=self.output,
            force_terminal=self.enable_colors,
            no_color=not self.enable_colors,
            highlight=False,
            soft_wrap=True,
        )

        # Color codes
        self.colors = (
            {
                "reset": "\033[0m",
                "bold": "\033[1m",
                "green": "\033[32m",
                "yellow": "\033[33m",
                "red": "\033[31m",
                "blue": "\033[34m",
                "cyan": "\033[36m",
                "gray": "\033[90m",
            }
            if self.enable_colors
            else dict.fromkeys(
                ["reset", "bold", "green", "yellow", "red", "blue", "cyan", "gray"], ""
            )
        )

    def _colorize(self, text: str, color: str) -> str:
        """Apply color to text if colors are enabled."""
        return f"{self.colors[color]}{text}{self.colors['reset']}"

    def _print(self, message: str) -> None:
        print(message, file=self.output, flush=True)

    def _get_phase_emoji(self, phase: ProgressPhase) -> str:
        phase_emojis = {
            ProgressPhase.INITIALIZING: "🚀",
            ProgressPhase.RESOLVING_PROFILE: "⚙️",
            ProgressPhase.PREFLIGHT: "🔍",
            ProgressPhase.LAUNCHING: "🔧",
            ProgressPhase.VERIFYING_HEALTH: "🩺",
            ProgressPhase.READY: "✅",
            ProgressPhase.FAILED: "❌",
        }
        return phase_emojis.get(phase, "📍")

    def _get_status_symbol(self, status: str) -> str:
        symbols = {
            "pending": "⏳",
            "running": "🔄",
            "checking": "🔄",
            "completed": "✅",
            "healthy": "✅",
            "failed": "❌",
            "unhealthy": "❌",
            "skipped": "⏭️",
        }
        return symbols.get(status, "❓")

    def start_startup(self, profile_name: str) -> None:
        """Start startup progress reporting."""
        self.start_time = time.time()
        header = (
            f"{self._colorize('🚀 Starting local stack', 'bold')} "
            f"(profile: {self._colorize(profile_name, 'cyan')})"
        )
        self._print(f"\n{header}")
        self._print(f"{self._colorize('=' * 60, 'gray')}")

    def start_phase(self, phase: ProgressPhase, message: str = "") -> None:
        """Start a new startup phase."""
        self.current_phase = phase
        emoji = self._get_phase_emoji(phase)
        phase_name = phase.value.replace("_", " ").title()

        if message:
            display_message = f"{emoji} {self._colorize(phase_name, 'bold')}: {message}"
        else:
            display_message = f"{emoji} {self._colorize(phase_name, 'bold')}"

        self._print(f"\n{display_message}")
        logger.info("Startup phase: %s", phase_name)

    def start_step(self, name: str, message: str = "") -> ProgressStep:
        """Start a new progress step."""
        step = ProgressStep(name=name, phase=self.current_phase)
        self.steps.append(step)
        step.start()

        symbol = self._get_status_symbol("running")
        display_message = f"  {symbol} {name}"
        if message:
            display_message += f": {self._colorize(message, 'gray')}"

        self._print(display_message)
        return step

    def complete_step(
        self,
        step: ProgressStep,
        message: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Mark step as completed."""
        step.complete(message, details)

        symbol = self._get_status_symbol("completed")
        display_message = f"  {symbol} {self._colorize(step.name, 'green')}"

        if message:
            display_message += f": {message}"

        if step.duration_ms > 0:
            duration_str = f"({step.duration_ms:.0f}ms)"
            display_message += f" {self._colorize(duration_str, 'gray')}"

        self._print(display_message)
        logger.info("Completed: %s in %.0fms", step.name, step.duration_ms)

    def fail_step(
        self,
        step: ProgressStep,
        message: str,
        error: Exception | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Mark step as failed."""
        step.fail(message, error, details)

        symbol = self._get_status_symbol("failed")
        display_message = (
            f"  {symbol} {self._colorize(step.name, 'red')}: "
            f"{self._colorize(message, 'red')}"
        )
        self._print(display_message)
        logger.error("Step failed: %s - %s", step.name, message)

    def skip_step(self, step: ProgressStep, reason: str) -> None:
        """Mark step as skipped."""
        step.status = "skipped"
        step.message = reason
        step.end_time = time.time()

        symbol = self._get_status_symbol("skipped")
        display_message = (
            f"  {symbol} {self._colorize(step.name, 'yellow')}: "
            f"{self._colorize(reason, 'gray')}"
        )
        self._print(display_message)
        logger.info("Skipped: %s - %s", step.name, reason)

    def warn(self, message: str) -> None:
        self._print(f"  ⚠️  {self._colorize(message, 'yellow')}")

    def report_service_state(self, check: ServiceCheck) -> None:
        """Print one line per distinct state change of a service."""
        if self._service_states.get(check.service_id) == check.state:
            return
        self._service_states[check.service_id] = check.state

        name = check.spec.display_name
        symbol = self._get_status_symbol(check.state.value)
        if check.state == CheckState.CHECKING:
            suffix = " (direct liveness check)" if check.used_fallback else ""
            line = f"  {symbol} {name}: waiting for healthy status{suffix}"
        elif check.state == CheckState.HEALTHY:
            line = f"  {symbol} {self._colorize(name, 'green')}: healthy"
            if check.attempts > 1:
                line += self._colorize(f" (after {check.attempts} attempts)", "gray")
        elif check.state == CheckState.UNHEALTHY:
            line = (
                f"  {symbol} {self._colorize(name, 'red')}: "
                f"{self._colorize(check.message, 'red')}"
            )
        elif check.state == CheckState.SKIPPED:
            line = (
                f"  {symbol} {self._colorize(name, 'yellow')}: "
                f"{self._colorize(check.message, 'gray')}"
            )
        else:
            line = f"  {symbol} {name}: {check.state.value}"
        self._print(line)

    def report_port_conflicts(self, conflicts: list[Any], overlay_name: str) -> None:
        """Render the conflict table followed by two remedies per port."""
        table = Table(title="Port conflicts", show_lines=False)
        table.add_column("Port", justify="right")
        table.add_column("Service")
        table.add_column("Variable")
        table.add_column("Used by")
        for binding in conflicts:
            table.add_row(
                str(binding.port), binding.service_id, binding.variable, binding.owner
            )
        self.console.print(table)

        for binding in conflicts:
            self._print(f"\n  Port {binding.port} ({binding.service_id}):")
            if binding.pid is not None:
                self._print(f"    1. Stop the process using it: kill {binding.pid}")
            else:
                self._print(
                    f"    1. Find and stop the process using it: lsof -i :{binding.port}"
                )
            self._print(
                f"    2. Or use a different port: set {binding.variable} in {overlay_name}"
            )

    def report_settings_validation(self, validation_errors: list[str]) -> None:
        """Report environment settings that failed validation."""
        self.start_phase(ProgressPhase.INITIALIZING, "Validating settings")
        step = self.start_step("Settings validation")
        self.fail_step(
            step,
            f"Found {len(validation_errors)} configuration error(s)",
            details={"errors": validation_errors},
        )
        self._print(f"\n{self._colorize('Configuration Errors:', 'red')}")
        for i, error in enumerate(validation_errors, 1):
            self._print(f"  {i}. {self._colorize(error, 'red')}")

    def report_output(self, title: str, lines: list[str]) -> None:
        self._print(f"\n{self._colorize(title, 'gray')}")
        for line in lines:
            self._print(f"  {line}")

    def report_error(
        self,
        message: str,
        next_steps: list[str],
        *,
        causes: list[str] | None = None,
        help_text: str = "",
    ) -> None:
        """Print a fatal diagnosis followed by the commands to run next."""
        self._print(f"\n{self._colorize('Error:', 'red')} {message}")
        if causes:
            self._print(f"\n{self._colorize('Common causes:', 'bold')}")
            for cause in causes:
                self._print(f"  • {cause}")
        if next_steps:
            self._print(f"\n{self._colorize('Next steps:', 'bold')}")
            for command in next_steps:
                self._print(f"  • {command}")
        if help_text:
            self._print(f"\n{help_text}")

    def report_startup_complete(
        self, *, success: bool = True, message: str = ""
    ) -> None:
        """Report startup completion."""
        self.end_time = time.time()
        total_duration = (self.end_time - self.start_time) * 1000

        if success:
            self.current_phase = ProgressPhase.READY
            emoji = self._get_phase_emoji(ProgressPhase.READY)
            status_msg = (
                f"{emoji} {self._colorize('Startup Complete', 'green')} "
                f"({total_duration:.0f}ms)"
            )
            if message:
                status_msg += f": {message}"
            self._print(f"\n{status_msg}")
            logger.info("Startup completed successfully in %.0fms", total_duration)
        else:
            self.current_phase = ProgressPhase.FAILED
            emoji = self._get_phase_emoji(ProgressPhase.FAILED)
            status_msg = (
                f"{emoji} {self._colorize('Startup Failed', 'red')} "
                f"({total_duration:.0f}ms)"
            )
            if message:
                status_msg += f": {message}"
            self._print(f"\n{status_msg}")
            logger.error("Startup failed after %.0fms: %s", total_duration, message)

        self._print(f"{self._colorize('=' * 60, 'gray')}\n")

    def get_startup_summary(self) -> dict[str, Any]:
        """Get startup summary."""
        completed_steps = [s for s in self.steps if s.status == "completed"]
        failed_steps = [s for s in self.steps if s.status == "failed"]
        skipped_steps = [s for s in self.steps if s.status == "skipped"]

        total_duration = 0.0
        if self.end_time:
            total_duration = (self.end_time - self.start_time) * 1000

        return {
            "total_duration_ms": total_duration,
            "total_steps": len(self.steps),
            "completed_steps": len(completed_steps),
            "failed_steps": len(failed_steps),
            "skipped_steps": len(skipped_steps),
            "final_phase": self.current_phase.value,
            "success": len(failed_steps) == 0
            and self.current_phase == ProgressPhase.READY,
        }
