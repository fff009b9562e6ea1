"""Health verification state machine.

Each in-scope service is polled until it reports healthy or its timeout
window is exhausted. Services are verified one at a time: the datastore
first, then the profile's declared order, with dependent-flag checks deferred
until the service hosting their payload has finished its own check.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
import logging
import math
import time

from devstack.core.exceptions import HealthCheckError
from devstack.startup.health_checks import ProbeResult, ServiceHealthChecker
from devstack.startup.profiles import SERVICES, CheckKind, Profile, ServiceSpec

logger = logging.getLogger(__name__)


class CheckState(StrEnum):
    """Lifecycle of one service check."""

    PENDING = "pending"
    CHECKING = "checking"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    SKIPPED = "skipped"


class OverallResult(StrEnum):
    PASS = "pass"
    FAIL = "fail"


# Forward-only: no transition out of a terminal state.
ALLOWED_TRANSITIONS: dict[CheckState, frozenset[CheckState]] = {
    CheckState.PENDING: frozenset({CheckState.CHECKING, CheckState.SKIPPED}),
    CheckState.CHECKING: frozenset({CheckState.HEALTHY, CheckState.UNHEALTHY}),
    CheckState.HEALTHY: frozenset(),
    CheckState.UNHEALTHY: frozenset(),
    CheckState.SKIPPED: frozenset(),
}

TERMINAL_STATES = frozenset(
    {CheckState.HEALTHY, CheckState.UNHEALTHY, CheckState.SKIPPED}
)


@dataclass
class ServiceCheck:
    """Mutable progress record for one service during a verification run."""

    spec: ServiceSpec
    state: CheckState = CheckState.PENDING
    attempts: int = 0
    message: str = ""
    elapsed: float = 0.0
    used_fallback: bool = False
    last_result: ProbeResult | None = None

    @property
    def service_id(self) -> str:
        return self.spec.service_id

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: CheckState, message: str = "") -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            msg = (
                f"Invalid state transition for {self.service_id}: "
                f"{self.state.value} -> {new_state.value}"
            )
            raise ValueError(msg)
        self.state = new_state
        if message:
            self.message = message


@dataclass
class HealthRunResult:
    """Typed outcome of one verification run."""

    overall: OverallResult
    checks: dict[str, ServiceCheck]
    elapsed: float = 0.0

    @property
    def states(self) -> dict[str, CheckState]:
        return {sid: check.state for sid, check in self.checks.items()}

    @property
    def failures(self) -> list[ServiceCheck]:
        return [c for c in self.checks.values() if c.state == CheckState.UNHEALTHY]

    @property
    def healthy(self) -> list[ServiceCheck]:
        return [c for c in self.checks.values() if c.state == CheckState.HEALTHY]

    @property
    def skipped(self) -> list[ServiceCheck]:
        return [c for c in self.checks.values() if c.state == CheckState.SKIPPED]

    @property
    def errors(self) -> list[HealthCheckError]:
        """One accumulated error per Unhealthy service."""
        return [
            HealthCheckError(c.service_id, c.message, attempts=c.attempts)
            for c in self.failures
        ]


def get_overall_health(checks: dict[str, ServiceCheck]) -> OverallResult:
    """Pass only when every check is Healthy or Skipped."""
    for check in checks.values():
        if check.state not in {CheckState.HEALTHY, CheckState.SKIPPED}:
            return OverallResult.FAIL
    return OverallResult.PASS


def attempts_for(timeout: float, interval: float) -> int:
    """Number of attempts in a ``while elapsed < timeout`` loop.

    Rounded before the ceiling so that 1.0 / 0.1 gives 10, not 11.
    """
    return max(1, math.ceil(round(timeout / interval, 9)))


StateListener = Callable[[ServiceCheck], None]
DatastoreHook = Callable[[Profile], Awaitable[object]]


class HealthVerifier:
    """Polls every in-scope service and reduces the outcomes to pass/fail."""

    def __init__(
        self,
        checker: ServiceHealthChecker,
        *,
        timeout: float,
        interval: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_state_change: StateListener | None = None,
        on_datastore_healthy: DatastoreHook | None = None,
    ) -> None:
        """Initialize the verifier.

        Args:
            checker: Builds the single-attempt probe for each service
            timeout: Per-service timeout window in seconds
            interval: Seconds slept between failed attempts
            sleep: Awaitable sleep, injectable so tests run instantly
            on_state_change: Called once per distinct state change
            on_datastore_healthy: Awaited right after the datastore turns
                Healthy, before any other service is polled
        """
        self.checker = checker
        self.timeout = timeout
        self.interval = interval
        self._sleep = sleep
        self._on_state_change = on_state_change
        self._on_datastore_healthy = on_datastore_healthy

    @property
    def max_attempts(self) -> int:
        return attempts_for(self.timeout, self.interval)

    @staticmethod
    def check_order(profile: Profile) -> list[ServiceSpec]:
        """Datastore first, then declared order, dependent flags after their host."""
        specs = profile.service_specs
        datastores = [s for s in specs if s.kind == CheckKind.DATASTORE]
        ordered = list(datastores)
        deferred: list[ServiceSpec] = []
        for spec in specs:
            if spec in datastores:
                continue
            if (
                spec.kind == CheckKind.DEPENDENT_FLAG
                and spec.host_service
                and profile.includes(spec.host_service)
                and spec.host_service not in {s.service_id for s in ordered}
            ):
                deferred.append(spec)
                continue
            ordered.append(spec)
            for waiting in list(deferred):
                if waiting.host_service == spec.service_id:
                    ordered.append(waiting)
                    deferred.remove(waiting)
        return ordered + deferred

    async def verify(self, profile: Profile) -> HealthRunResult:
        """Verify every service of ``profile``; services outside it are Skipped."""
        start_time = time.monotonic()
        checks = {sid: ServiceCheck(spec=spec) for sid, spec in SERVICES.items()}

        for sid, check in checks.items():
            if not profile.includes(sid):
                self._set_state(check, CheckState.SKIPPED, f"not in {profile.name} profile")

        for spec in self.check_order(profile):
            check = checks[spec.service_id]
            await self._verify_service(check, profile, checks)
            if (
                spec.kind == CheckKind.DATASTORE
                and check.state == CheckState.HEALTHY
                and self._on_datastore_healthy is not None
            ):
                await self._on_datastore_healthy(profile)

        overall = get_overall_health(checks)
        result = HealthRunResult(
            overall=overall, checks=checks, elapsed=time.monotonic() - start_time
        )
        logger.info(
            "Health verification finished: %s (%d healthy, %d unhealthy, %d skipped)",
            overall.value,
            len(result.healthy),
            len(result.failures),
            len(result.skipped),
        )
        return result

    async def _verify_service(
        self, check: ServiceCheck, profile: Profile, checks: dict[str, ServiceCheck]
    ) -> None:
        spec = check.spec
        kind = spec.kind
        if kind == CheckKind.DEPENDENT_FLAG:
            host = checks.get(spec.host_service or "")
            if host is None or host.state != CheckState.HEALTHY:
                if spec.fallback_kind is None:
                    self._set_state(check, CheckState.CHECKING)
                    self._set_state(
                        check,
                        CheckState.UNHEALTHY,
                        f"{spec.host_service} is not healthy, so {spec.payload_flag} "
                        "status cannot be read",
                    )
                    return
                logger.info(
                    "%s host %s unavailable, falling back to %s check",
                    spec.display_name,
                    spec.host_service,
                    spec.fallback_kind.value,
                )
                kind = spec.fallback_kind
                check.used_fallback = True

        self._set_state(check, CheckState.CHECKING)
        try:
            probe = self.checker.build_probe(spec, profile, kind=kind)
        except ValueError as e:
            self._set_state(check, CheckState.UNHEALTHY, str(e))
            return

        elapsed = 0.0
        max_attempts = self.max_attempts
        result: ProbeResult | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                result = await probe()
            except Exception as e:
                logger.exception("%s probe raised", spec.display_name)
                result = ProbeResult(
                    ok=False, message=f"Probe error: {e.__class__.__name__}: {e}"
                )
            check.attempts = attempt
            check.last_result = result
            check.elapsed = elapsed
            if result.ok:
                self._set_state(check, CheckState.HEALTHY, result.message)
                return
            logger.debug(
                "%s attempt %d/%d failed: %s",
                spec.display_name,
                attempt,
                max_attempts,
                result.message,
            )
            if attempt < max_attempts:
                await self._sleep(self.interval)
                elapsed += self.interval
                check.elapsed = elapsed

        last = result.message if result else "no result"
        self._set_state(
            check,
            CheckState.UNHEALTHY,
            f"{spec.display_name} did not become healthy within {self.timeout:g}s "
            f"({check.attempts} attempts): {last}",
        )

    def _set_state(self, check: ServiceCheck, state: CheckState, message: str = "") -> None:
        if check.state == state:
            return
        check.transition(state, message)
        logger.info("%s: %s %s", check.spec.display_name, state.value, message)
        if self._on_state_change is not None:
            self._on_state_change(check)
