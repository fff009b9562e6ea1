"""devstack startup pipeline.

Profile resolution, preflight checks, launch, health verification, seeding
and the operator-facing reports around them.
"""

from __future__ import annotations

from devstack.startup.config_schema import StackSettings
from devstack.startup.health_checks import ServiceHealthChecker
from devstack.startup.orchestrator import StartupOrchestrator
from devstack.startup.profiles import ProfileResolver
from devstack.startup.progress_reporter import StartupProgressReporter
from devstack.startup.verifier import HealthVerifier

__all__ = [
    "HealthVerifier",
    "ProfileResolver",
    "ServiceHealthChecker",
    "StackSettings",
    "StartupOrchestrator",
    "StartupProgressReporter",
]
