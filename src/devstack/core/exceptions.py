"""Exception hierarchy for the devstack startup pipeline.

Fatal stages (configuration, preflight, launch) raise a subclass of
``DevstackError`` at their boundary. The orchestrator catches it once and
renders the diagnosis together with the concrete next commands attached to it.
``HealthCheckError`` and ``SeedError`` are never propagated across stages:
health failures are accumulated per service and seed failures are logged.
"""

from __future__ import annotations

from typing import Any


class DevstackError(Exception):
    """Base error with the failing phase, structured details and next steps."""

    phase = "startup"
    error_code: str | None = None

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        next_steps: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.next_steps = next_steps or []


# Configuration


class ConfigurationError(DevstackError):
    """Bad or missing profile, or a required variable is absent."""

    phase = "configuration"
    error_code = "CONFIG_001"


class ProfileNotFound(ConfigurationError):
    """Requested profile is not one of the known profiles."""

    error_code = "CONFIG_002"

    def __init__(self, profile: str, valid_profiles: list[str]) -> None:
        self.profile = profile
        self.valid_profiles = list(valid_profiles)
        super().__init__(
            f"Unknown profile: '{profile}'. Valid profiles: {', '.join(self.valid_profiles)}",
            details={"profile": profile, "valid_profiles": self.valid_profiles},
            next_steps=[f"devstack up {name}" for name in self.valid_profiles]
            + ["devstack profiles"],
        )


class ProfileConfigInvalid(ConfigurationError):
    """Profile overlay is missing, unreadable or lacks a required variable."""

    error_code = "CONFIG_001"

    def __init__(
        self,
        profile: str,
        message: str,
        *,
        variable: str | None = None,
        overlay_path: str | None = None,
    ) -> None:
        self.profile = profile
        self.variable = variable
        self.overlay_path = overlay_path
        next_steps = []
        if overlay_path:
            if variable:
                next_steps.append(f"Add {variable}=<value> to {overlay_path}")
            else:
                next_steps.append(f"Create {overlay_path} (copy .env.example)")
        next_steps.append(f"devstack validate {profile}")
        super().__init__(
            message,
            details={
                "profile": profile,
                "variable": variable,
                "overlay_path": overlay_path,
            },
            next_steps=next_steps,
        )


# Preflight


class PreflightError(DevstackError):
    """Pre-launch check failed; nothing has been started."""

    phase = "preflight"
    error_code = "PRE_001"


class RuntimeUnavailable(PreflightError):
    """Container runtime or compose tool is not reachable."""

    error_code = "PRE_001"


class PortConflict(PreflightError):
    """One or more required host ports are already bound."""

    error_code = "PRE_002"

    def __init__(self, conflicts: list[Any]) -> None:
        self.conflicts = list(conflicts)
        ports = ", ".join(str(binding.port) for binding in self.conflicts)
        super().__init__(
            f"{len(self.conflicts)} required port(s) already in use: {ports}",
            details={"ports": [binding.port for binding in self.conflicts]},
            next_steps=["Free the ports listed above, then re-run: devstack up"],
        )


# Launch


class LaunchError(DevstackError):
    """Orchestration tool invocation failed."""

    phase = "launch"
    error_code = "LAUNCH_001"


class LaunchFailed(LaunchError):
    """``compose up`` returned non-zero or timed out."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        output: str = "",
        next_steps: list[str] | None = None,
    ) -> None:
        self.returncode = returncode
        self.output = output
        super().__init__(
            message,
            details={"returncode": returncode},
            next_steps=next_steps,
        )


# Non-fatal


class HealthCheckError(DevstackError):
    """A service did not become healthy within its timeout window."""

    phase = "health"
    error_code = "HEALTH_001"

    def __init__(self, service_id: str, message: str, *, attempts: int = 0) -> None:
        self.service_id = service_id
        self.attempts = attempts
        super().__init__(
            message, details={"service": service_id, "attempts": attempts}
        )


class SeedError(DevstackError):
    """Seeding an empty datastore failed. Logged, never fatal."""

    phase = "seed"
    error_code = "SEED_001"
