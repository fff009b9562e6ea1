"""Tests for failure diagnostics."""

from __future__ import annotations

import io
from unittest.mock import Mock

import click
import pytest

from devstack.startup.diagnostics import DiagnosticsReporter
from devstack.startup.profiles import SERVICES
from devstack.startup.runtime import CommandResult
from devstack.startup.verifier import CheckState, ServiceCheck


def make_runtime() -> Mock:
    runtime = Mock()
    runtime.compose_display.side_effect = lambda *args: " ".join(("docker", "compose", *args))
    runtime.logs.return_value = CommandResult(("docker",), 0, "redis  | Ready to accept\n")
    return runtime


def failed(service_id: str, message: str = "did not become healthy") -> ServiceCheck:
    return ServiceCheck(spec=SERVICES[service_id], state=CheckState.UNHEALTHY, message=message)


class TestDiagnosticsReporter:
    """Test DiagnosticsReporter."""

    def setup_method(self) -> None:
        self.output = io.StringIO()
        self.runtime = make_runtime()

    def test_cache_checklist(self, full_profile) -> None:
        reporter = DiagnosticsReporter(self.runtime, output=self.output, interactive=False)

        reporter.report([failed("redis", "Cache did not become healthy")], full_profile)

        text = self.output.getvalue()
        assert "1 service(s) failed health checks:" in text
        assert "Cache: Cache did not become healthy" in text
        assert "Troubleshooting suggestions for Cache:" in text
        assert "  - Check cache logs: docker compose logs redis" in text
        assert "  - Verify cache port 56379 is available" in text
        assert "General troubleshooting:" in text
        assert "Services are left running for inspection." in text

    def test_backend_checklist_uses_profile_port(self, minimal_profile) -> None:
        reporter = DiagnosticsReporter(self.runtime, output=self.output, interactive=False)

        reporter.report([failed("backend")], minimal_profile)

        assert "curl http://localhost:53001/health/ready" in self.output.getvalue()

    def test_no_failures_prints_nothing(self, full_profile) -> None:
        DiagnosticsReporter(self.runtime, output=self.output).report([], full_profile)

        assert self.output.getvalue() == ""

    def test_show_logs_prints_without_prompt(self, full_profile) -> None:
        confirm = Mock()
        reporter = DiagnosticsReporter(
            self.runtime,
            output=self.output,
            show_logs=True,
            tail_lines=20,
            confirm=confirm,
        )

        reporter.report([failed("redis")], full_profile)

        confirm.assert_not_called()
        self.runtime.logs.assert_called_once_with("redis", 20)
        assert "Ready to accept" in self.output.getvalue()

    def test_non_interactive_never_prompts(self, full_profile) -> None:
        confirm = Mock(return_value=True)
        reporter = DiagnosticsReporter(
            self.runtime, output=self.output, interactive=False, confirm=confirm
        )

        reporter.report([failed("redis"), failed("frontend")], full_profile)

        confirm.assert_not_called()
        self.runtime.logs.assert_not_called()

    def test_interactive_prompts_per_service(self, full_profile) -> None:
        confirm = Mock(side_effect=[True, False])
        reporter = DiagnosticsReporter(
            self.runtime, output=self.output, interactive=True, confirm=confirm
        )

        reporter.report([failed("redis"), failed("frontend")], full_profile)

        assert confirm.call_count == 2
        self.runtime.logs.assert_called_once_with("redis", 50)

    def test_unavailable_logs(self, full_profile) -> None:
        self.runtime.logs.return_value = CommandResult(("docker",), 1, stderr="no such service")
        reporter = DiagnosticsReporter(self.runtime, output=self.output, show_logs=True)

        reporter.report([failed("redis")], full_profile)

        assert "logs unavailable: no such service" in self.output.getvalue()

    def test_abort_at_prompt_is_an_interrupt(self, full_profile) -> None:
        confirm = Mock(side_effect=click.Abort)
        reporter = DiagnosticsReporter(
            self.runtime, output=self.output, interactive=True, confirm=confirm
        )

        with pytest.raises(KeyboardInterrupt):
            reporter.report([failed("redis"), failed("frontend")], full_profile)

        confirm.assert_called_once()
        self.runtime.logs.assert_not_called()
