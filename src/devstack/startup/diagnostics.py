"""Troubleshooting output for services that failed health verification."""

from __future__ import annotations

from collections.abc import Callable
import logging
import sys
from typing import TextIO

import click

from devstack.startup.error_catalog import general_checklist, service_checklist
from devstack.startup.profiles import Profile
from devstack.startup.runtime import ContainerRuntime
from devstack.startup.verifier import ServiceCheck

logger = logging.getLogger(__name__)


class DiagnosticsReporter:
    """Prints per-service checklists and, optionally, recent service logs."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        *,
        output: TextIO | None = None,
        show_logs: bool = False,
        tail_lines: int = 50,
        interactive: bool | None = None,
        confirm: Callable[[str], bool] | None = None,
    ) -> None:
        """Initialize the reporter.

        Args:
            runtime: Used to fetch service logs
            output: Output stream (defaults to stdout)
            show_logs: Show logs for every failing service without asking
            tail_lines: Number of log lines to show per service
            interactive: Whether prompting is allowed; defaults to stdin being a TTY
            confirm: Yes/no prompt, ``click.confirm`` unless injected
        """
        self.runtime = runtime
        self.output = output or sys.stdout
        self.show_logs = show_logs
        self.tail_lines = tail_lines
        if interactive is None:
            interactive = sys.stdin is not None and sys.stdin.isatty()
        self.interactive = interactive
        self._confirm = confirm or (lambda prompt: click.confirm(prompt, default=False))

    def _print(self, message: str = "") -> None:
        print(message, file=self.output, flush=True)

    def report(self, failures: list[ServiceCheck], profile: Profile) -> None:
        if not failures:
            return
        compose = self.runtime.compose_display()

        self._print()
        self._print(f"{len(failures)} service(s) failed health checks:")
        for check in failures:
            self._print(f"  • {check.spec.display_name}: {check.message}")

        for check in failures:
            self._print()
            self._print(f"Troubleshooting suggestions for {check.spec.display_name}:")
            for line in service_checklist(
                check.service_id,
                port=profile.port_for(check.service_id),
                compose=compose,
            ):
                self._print(f"  - {line}")

        self._print()
        self._print("General troubleshooting:")
        for line in general_checklist(compose=compose):
            self._print(f"  - {line}")

        for check in failures:
            if self.should_show_logs(check):
                self.print_logs(check)

        self._print()
        self._print("Services are left running for inspection.")

    def should_show_logs(self, check: ServiceCheck) -> bool:
        if self.show_logs:
            return True
        if not self.interactive:
            return False
        try:
            return self._confirm(
                f"Show last {self.tail_lines} log lines for {check.spec.display_name}?"
            )
        except click.Abort as e:
            # click turns Ctrl-C and EOF at the prompt into Abort.
            raise KeyboardInterrupt from e

    def print_logs(self, check: ServiceCheck) -> None:
        self._print()
        self._print(
            f"Last {self.tail_lines} log lines for {check.spec.display_name} "
            f"({check.service_id}):"
        )
        result = self.runtime.logs(check.service_id, self.tail_lines)
        if not result.ok:
            logger.warning("Could not read logs for %s: %s", check.service_id, result.output)
            self._print(f"  (logs unavailable: {result.output or 'no output'})")
            return
        self._print(result.output or "  (no log output)")
