"""Tests for the devstack startup orchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
import io
import os
from pathlib import Path
import signal
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from devstack.startup.config_schema import StackSettings
from devstack.startup.diagnostics import DiagnosticsReporter
from devstack.startup.health_checks import ServiceHealthChecker
from devstack.startup.orchestrator import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_SUCCESS,
    StartupOrchestrator,
)
from devstack.startup.preflight import PreflightChecker
from devstack.startup.progress_reporter import StartupProgressReporter
from devstack.startup.runtime import CommandResult
from tests.fakes.stack import FakeConnection, make_runtime, readiness_handler


@pytest.fixture
def free_ports() -> Iterator[None]:
    with (
        patch.object(PreflightChecker, "_listening_sockets", return_value={}),
        patch.object(PreflightChecker, "_port_accepts_connections", return_value=False),
    ):
        yield


@pytest.fixture
def database() -> Iterator[FakeConnection]:
    conn = FakeConnection()
    with patch(
        "devstack.startup.health_checks.asyncpg.connect", AsyncMock(return_value=conn)
    ):
        yield conn


class TestStartupOrchestrator:
    """Test startup orchestrator functionality."""

    @pytest.fixture(autouse=True)
    def _setup(self, project_root: Path) -> None:
        self.output = io.StringIO()
        self.runtime = make_runtime()
        self.settings = StackSettings(
            project_root=project_root,
            health_check_timeout=1.0,
            health_check_interval=0.5,
            startup_grace_period=0,
        )
        self.sleep = AsyncMock()

    def make_orchestrator(
        self, profile_name: str | None, **handler_kwargs: object
    ) -> StartupOrchestrator:
        return StartupOrchestrator(
            self.settings,
            profile_name=profile_name,
            reporter=StartupProgressReporter(self.output, enable_colors=False),
            runtime=self.runtime,
            checker=ServiceHealthChecker(
                timeout=1.0,
                transport=httpx.MockTransport(readiness_handler(**handler_kwargs)),
            ),
            diagnostics=DiagnosticsReporter(
                self.runtime, output=self.output, interactive=False
            ),
            output=self.output,
            sleep=self.sleep,
        )

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("free_ports", "database")
    async def test_successful_startup(self) -> None:
        orchestrator = self.make_orchestrator("minimal")

        exit_code = await orchestrator.orchestrate_startup()

        assert exit_code == EXIT_SUCCESS
        assert orchestrator.launched
        assert orchestrator.health is not None
        assert [c.service_id for c in orchestrator.health.healthy] == ["postgres", "backend"]
        text = self.output.getvalue()
        assert "SUCCESS! Environment ready for development." in text
        assert "Startup Complete" in text

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("free_ports", "database")
    async def test_profile_name_is_case_insensitive(self) -> None:
        orchestrator = self.make_orchestrator("MINIMAL")

        assert await orchestrator.orchestrate_startup() == EXIT_SUCCESS
        assert orchestrator.profile is not None
        assert orchestrator.profile.name == "minimal"

    @pytest.mark.asyncio
    async def test_unknown_profile_is_fatal(self) -> None:
        orchestrator = self.make_orchestrator("staging")

        exit_code = await orchestrator.orchestrate_startup()

        assert exit_code == EXIT_FAILURE
        text = self.output.getvalue()
        assert "Unknown profile: 'staging'" in text
        assert "devstack up minimal" in text
        self.runtime.info.assert_not_called()
        self.runtime.compose.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_overlay_is_fatal(self, project_root: Path) -> None:
        (project_root / ".env.full").unlink()
        orchestrator = self.make_orchestrator("full")

        assert await orchestrator.orchestrate_startup() == EXIT_FAILURE
        assert ".env.full" in self.output.getvalue()
        self.runtime.compose.assert_not_called()

    @pytest.mark.asyncio
    async def test_daemon_down_is_fatal(self) -> None:
        self.runtime.info.return_value = CommandResult(
            ("docker", "info"), 1, stderr="Cannot connect to the Docker daemon"
        )
        orchestrator = self.make_orchestrator("minimal")

        assert await orchestrator.orchestrate_startup() == EXIT_FAILURE
        assert "not running" in self.output.getvalue()
        self.runtime.compose.assert_not_called()

    @pytest.mark.asyncio
    async def test_port_conflict_is_fatal(self) -> None:
        orchestrator = self.make_orchestrator("minimal")

        with (
            patch.object(
                PreflightChecker,
                "_listening_sockets",
                return_value={55432: (4242, "postgres")},
            ),
            patch.object(PreflightChecker, "_port_accepts_connections", return_value=False),
        ):
            exit_code = await orchestrator.orchestrate_startup()

        assert exit_code == EXIT_FAILURE
        text = self.output.getvalue()
        assert "1 required port(s) already in use: 55432" in text
        assert "postgres (PID 4242)" in text
        assert "kill 4242" in text
        assert "set DATABASE_PORT in .env.minimal" in text
        assert "Common causes:" in text
        self.runtime.compose.assert_not_called()
        assert not orchestrator.launched

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("free_ports")
    async def test_launch_failure_is_fatal(self) -> None:
        self.runtime.compose.return_value = CommandResult(
            ("docker",), 1, stderr="Error response from daemon: pull access denied"
        )
        orchestrator = self.make_orchestrator("minimal")

        with patch.object(orchestrator.checker, "build_probe") as build_probe:
            exit_code = await orchestrator.orchestrate_startup()

        assert exit_code == EXIT_FAILURE
        text = self.output.getvalue()
        assert "Docker Compose output:" in text
        assert "pull access denied" in text
        assert "docker compose ps" in text
        build_probe.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("free_ports", "database")
    async def test_grace_period_is_slept_before_probing(self) -> None:
        self.settings = self.settings.with_overrides(startup_grace_period=3.0)
        orchestrator = self.make_orchestrator("minimal")

        await orchestrator.orchestrate_startup()

        assert self.sleep.await_args_list[0].args == (3.0,)

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("free_ports", "database")
    async def test_unexpected_error_exits_one(self) -> None:
        orchestrator = self.make_orchestrator("minimal")

        with patch.object(
            orchestrator.launcher, "launch", side_effect=RuntimeError("boom")
        ):
            exit_code = await orchestrator.orchestrate_startup()

        assert exit_code == EXIT_FAILURE
        assert "Unexpected error: boom" in self.output.getvalue()


class TestInterrupt:
    """Test interrupt handling of StartupOrchestrator.run."""

    @pytest.mark.usefixtures("free_ports")
    def test_interrupt_during_launch(self, project_root: Path) -> None:
        output = io.StringIO()
        runtime = make_runtime()
        runtime.compose.side_effect = KeyboardInterrupt
        orchestrator = StartupOrchestrator(
            StackSettings(project_root=project_root, startup_grace_period=0),
            profile_name="minimal",
            reporter=StartupProgressReporter(output, enable_colors=False),
            runtime=runtime,
            output=output,
        )

        assert orchestrator.run() == EXIT_INTERRUPTED

        text = output.getvalue()
        assert "Startup interrupted" in text
        assert "To stop services: docker compose down" in text
        assert "Services will continue running in the background." in text

    def test_interrupt_before_launch(self, project_root: Path) -> None:
        output = io.StringIO()
        orchestrator = StartupOrchestrator(
            StackSettings(project_root=project_root),
            profile_name="minimal",
            reporter=StartupProgressReporter(output, enable_colors=False),
            runtime=make_runtime(),
            output=output,
        )

        with patch.object(orchestrator, "orchestrate_startup", side_effect=KeyboardInterrupt):
            assert orchestrator.run() == EXIT_INTERRUPTED

        text = output.getvalue()
        assert "Startup interrupted" in text
        assert "docker compose down" not in text

    @pytest.mark.usefixtures("free_ports", "database")
    def test_ctrl_c_at_log_prompt(self, project_root: Path) -> None:
        output = io.StringIO()
        runtime = make_runtime()
        orchestrator = StartupOrchestrator(
            StackSettings(
                project_root=project_root,
                health_check_timeout=1.0,
                health_check_interval=0.5,
                startup_grace_period=0,
            ),
            profile_name="minimal",
            reporter=StartupProgressReporter(output, enable_colors=False),
            runtime=runtime,
            checker=ServiceHealthChecker(
                timeout=1.0,
                transport=httpx.MockTransport(readiness_handler(database="error")),
            ),
            diagnostics=DiagnosticsReporter(runtime, output=output, interactive=True),
            output=output,
            sleep=AsyncMock(),
        )

        with patch("click.termui.visible_prompt_func", side_effect=KeyboardInterrupt):
            assert orchestrator.run() == EXIT_INTERRUPTED

        text = output.getvalue()
        assert "Troubleshooting suggestions for Backend:" in text
        assert "Startup interrupted" in text
        assert "Services will continue running in the background." in text
        runtime.logs.assert_not_called()

    @pytest.mark.usefixtures("free_ports", "database")
    def test_sigint_during_health_verification(self, project_root: Path) -> None:
        output = io.StringIO()
        runtime = make_runtime()
        sleeps: list[float] = []

        async def interrupting_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            os.kill(os.getpid(), signal.SIGINT)
            await asyncio.sleep(0)

        orchestrator = StartupOrchestrator(
            StackSettings(
                project_root=project_root,
                health_check_timeout=10.0,
                health_check_interval=1.0,
                startup_grace_period=0,
            ),
            profile_name="minimal",
            reporter=StartupProgressReporter(output, enable_colors=False),
            runtime=runtime,
            checker=ServiceHealthChecker(
                timeout=1.0,
                transport=httpx.MockTransport(readiness_handler(database="error")),
            ),
            diagnostics=DiagnosticsReporter(runtime, output=output, interactive=False),
            output=output,
            sleep=interrupting_sleep,
        )

        assert orchestrator.run() == EXIT_INTERRUPTED

        assert sleeps == [1.0]
        assert orchestrator.launched
        text = output.getvalue()
        assert "Startup interrupted" in text
        assert "To stop services: docker compose down" in text
        assert "Services will continue running in the background." in text
        runtime.compose.assert_called_once()
        assert "down" not in runtime.compose.call_args.args[0]
