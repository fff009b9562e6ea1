"""devstack startup orchestrator.

Runs the startup pipeline for one profile: resolve the profile, run preflight
checks, launch the services, verify their health, then present either the
connection summary or the troubleshooting output. Fatal errors are raised at
each stage boundary and caught once here.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
import signal
import sys
from types import FrameType
from typing import TextIO

from devstack.core.exceptions import DevstackError, LaunchFailed, PortConflict
from devstack.startup.config_schema import StackSettings
from devstack.startup.diagnostics import DiagnosticsReporter
from devstack.startup.error_catalog import error_catalog
from devstack.startup.health_checks import ServiceHealthChecker
from devstack.startup.launcher import Launcher
from devstack.startup.preflight import PreflightChecker
from devstack.startup.profiles import Profile, ProfileResolver
from devstack.startup.progress_reporter import ProgressPhase, StartupProgressReporter
from devstack.startup.runtime import ContainerRuntime
from devstack.startup.seeder import AutoSeeder, SeedState
from devstack.startup.summary import SummaryPresenter
from devstack.startup.verifier import HealthRunResult, HealthVerifier, OverallResult

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

LAUNCH_OUTPUT_LINES = 20


class StartupOrchestrator:
    """Orchestrates one ``devstack up`` run and maps it to an exit code."""

    def __init__(
        self,
        settings: StackSettings,
        *,
        profile_name: str | None = None,
        reporter: StartupProgressReporter | None = None,
        runtime: ContainerRuntime | None = None,
        checker: ServiceHealthChecker | None = None,
        diagnostics: DiagnosticsReporter | None = None,
        output: TextIO | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize startup orchestrator.

        Args:
            settings: Validated tunables for this run
            profile_name: Requested profile, defaults to the full stack
            reporter: Progress reporter (creates default if not provided)
            runtime: Container runtime wrapper
            checker: Health probe factory
            diagnostics: Failure reporter
            output: Stream for summary and diagnostics (defaults to stdout)
            sleep: Awaitable sleep shared by the grace period and polling
        """
        self.settings = settings
        self.profile_name = profile_name
        self.output = output or sys.stdout
        self.reporter = reporter or StartupProgressReporter(self.output)
        self.runtime = runtime or ContainerRuntime(
            settings.project_root,
            settings.compose_path,
            command_timeout=settings.command_timeout,
        )
        self.checker = checker or ServiceHealthChecker(
            probe_host=settings.probe_host,
            timeout=settings.health_check_request_timeout,
        )
        self.diagnostics = diagnostics or DiagnosticsReporter(
            self.runtime,
            output=self.output,
            show_logs=settings.show_logs_on_failure,
            tail_lines=settings.log_tail_lines,
        )
        self._sleep = sleep

        self.resolver = ProfileResolver(settings.project_root)
        self.preflight = PreflightChecker(self.runtime, probe_host=settings.probe_host)
        self.launcher = Launcher(self.runtime, timeout=settings.launch_timeout)
        self.seeder = AutoSeeder(
            settings.seeds_path,
            enabled=settings.auto_seed_database,
            probe_host=settings.probe_host,
            timeout=max(settings.health_check_request_timeout, 30.0),
        )

        self.profile: Profile | None = None
        self.launched = False
        self.health: HealthRunResult | None = None

    async def orchestrate_startup(self) -> int:
        """Run every phase. Returns the process exit code."""
        self.reporter.start_startup(self.resolver.normalize(self.profile_name))
        logger.debug("Startup configuration: %s", self.settings.get_startup_summary())

        try:
            profile = self._resolve_profile()
            self._run_preflight(profile)
            self._launch(profile)
            health = await self._verify_health(profile)
        except DevstackError as e:
            self._report_fatal(e)
            return EXIT_FAILURE
        except Exception as e:
            logger.exception("Unexpected startup error")
            self.reporter.report_startup_complete(
                success=False, message=f"Unexpected error: {e!s}"
            )
            return EXIT_FAILURE

        if health.overall == OverallResult.FAIL:
            for error in health.errors:
                logger.error("[%s] %s", error.error_code, error.message)
            self.diagnostics.report(health.failures, profile)
            names = ", ".join(check.spec.display_name for check in health.failures)
            self.reporter.report_startup_complete(
                success=False, message=f"Unhealthy: {names}"
            )
            return EXIT_FAILURE

        SummaryPresenter(self.output, compose=self.runtime.compose_display()).render(
            profile
        )
        self.reporter.report_startup_complete(
            success=True, message=f"All {len(health.healthy)} service(s) healthy"
        )
        logger.debug("Startup summary: %s", self.reporter.get_startup_summary())
        return EXIT_SUCCESS

    def _resolve_profile(self) -> Profile:
        self.reporter.start_phase(ProgressPhase.RESOLVING_PROFILE)
        step = self.reporter.start_step("Loading profile configuration")
        try:
            profile = self.resolver.resolve(self.profile_name)
        except DevstackError as e:
            self.reporter.fail_step(step, e.message)
            raise
        self.profile = profile
        self.reporter.complete_step(
            step,
            f"{profile.name}: {', '.join(profile.services)}",
            {"overlay": str(profile.overlay_path)},
        )
        return profile

    def _run_preflight(self, profile: Profile) -> None:
        self.reporter.start_phase(ProgressPhase.PREFLIGHT)
        step = self.reporter.start_step("Checking Docker and required ports")
        try:
            report = self.preflight.run(profile)
        except DevstackError as e:
            self.reporter.fail_step(step, e.message)
            raise
        for warning in report.warnings:
            self.reporter.warn(warning)
        self.reporter.complete_step(
            step,
            f"Docker {report.runtime_version}, compose {report.compose_version}, "
            f"{len(report.bindings)} port(s) free",
        )

    def _launch(self, profile: Profile) -> None:
        self.reporter.start_phase(ProgressPhase.LAUNCHING, ", ".join(profile.services))
        step = self.reporter.start_step(
            "Starting services",
            self.runtime.compose_display(*self.launcher.build_args(profile)),
        )
        self.launched = True
        try:
            self.launcher.launch(profile)
        except DevstackError as e:
            self.reporter.fail_step(step, e.message)
            raise
        self.reporter.complete_step(step, "Services started in detached mode")

    async def _verify_health(self, profile: Profile) -> HealthRunResult:
        self.reporter.start_phase(
            ProgressPhase.VERIFYING_HEALTH,
            f"timeout {self.settings.health_check_timeout:g}s, "
            f"interval {self.settings.health_check_interval:g}s per service",
        )
        if self.settings.startup_grace_period > 0:
            await self._sleep(self.settings.startup_grace_period)

        verifier = HealthVerifier(
            self.checker,
            timeout=self.settings.health_check_timeout,
            interval=self.settings.health_check_interval,
            sleep=self._sleep,
            on_state_change=self.reporter.report_service_state,
            on_datastore_healthy=self._seed_database,
        )
        async with self.checker:
            self.health = await verifier.verify(profile)
        return self.health

    async def _seed_database(self, profile: Profile) -> None:
        if not self.seeder.enabled:
            return
        step = self.reporter.start_step("Auto-seeding database")
        outcome = await self.seeder.seed_if_empty(profile)
        if outcome.state == SeedState.SEEDED:
            self.reporter.complete_step(step, outcome.message)
        elif outcome.state == SeedState.FAILED:
            self.reporter.fail_step(step, outcome.message)
            self.reporter.warn("Continuing without seed data")
        else:
            self.reporter.skip_step(step, outcome.message)

    def _report_fatal(self, error: DevstackError) -> None:
        if isinstance(error, PortConflict):
            overlay_name = (
                self.profile.overlay_path.name if self.profile else ".env.<profile>"
            )
            self.reporter.report_port_conflicts(error.conflicts, overlay_name)
        if isinstance(error, LaunchFailed) and error.output:
            tail = error.output.splitlines()[-LAUNCH_OUTPUT_LINES:]
            self.reporter.report_output("Docker Compose output:", tail)

        causes: list[str] = []
        help_text = ""
        info = error_catalog.get_error_info(error.error_code or "")
        if info is not None:
            causes = info.common_causes
            if logger.isEnabledFor(logging.DEBUG):
                help_text = error_catalog.format_error_help(
                    info.code,
                    {k: str(v) for k, v in error.details.items() if v is not None},
                )
        self.reporter.report_error(
            error.message, error.next_steps, causes=causes, help_text=help_text
        )
        self.reporter.report_startup_complete(
            success=False, message=f"{error.phase.title()} failed"
        )

    def report_interrupted(self) -> None:
        next_steps = []
        if self.launched:
            next_steps.append(f"To stop services: {self.runtime.compose_display('down')}")
        self.reporter.report_error("Startup interrupted", next_steps)
        if self.launched:
            print(
                "Services will continue running in the background.",
                file=self.output,
                flush=True,
            )

    def run(self) -> int:
        """Run the pipeline on a fresh event loop, mapping interrupts to 130."""
        previous = signal.getsignal(signal.SIGTERM)
        signal.signal(signal.SIGTERM, _raise_keyboard_interrupt)
        try:
            return asyncio.run(self.orchestrate_startup())
        except KeyboardInterrupt:
            logger.info("Startup interrupted by operator")
            self.report_interrupted()
            return EXIT_INTERRUPTED
        finally:
            signal.signal(signal.SIGTERM, previous)


def _raise_keyboard_interrupt(signum: int, frame: FrameType | None) -> None:
    raise KeyboardInterrupt
