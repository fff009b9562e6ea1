"""devstack startup error catalog.

Catalog of fatal startup errors with causes and solutions, plus the
service-keyed troubleshooting checklists shown for services that fail health
verification.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType


class ErrorCategory(StrEnum):
    """Error categories for organization."""

    CONFIGURATION = "configuration"
    ENVIRONMENT = "environment"
    NETWORKING = "networking"
    DEPENDENCIES = "dependencies"
    RESOURCES = "resources"


class ErrorSeverity(StrEnum):
    """Error severity levels."""

    CRITICAL = "critical"  # Aborts the run
    HIGH = "high"  # Run completes but fails
    LOW = "low"  # Logged only


@dataclass
class ErrorSolution:
    """Suggested solution for an error."""

    description: str
    steps: list[str]
    documentation_links: list[str] = field(default_factory=list)


@dataclass
class StartupErrorInfo:
    """Comprehensive error information."""

    code: str
    title: str
    description: str
    category: ErrorCategory
    severity: ErrorSeverity
    solutions: list[ErrorSolution]
    common_causes: list[str]
    related_errors: list[str] = field(default_factory=list)


# Placeholders: {compose} is the detected compose command, {port} the
# service's port from the active profile.
SERVICE_REMEDIATION: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "postgres": (
            "Check database logs: {compose} logs postgres",
            "Verify DATABASE_PASSWORD in the profile's .env file",
            "Check if database port {port} is available",
            "Verify the database schema was initialized (check init.sql)",
            "Try a manual connection: {compose} exec postgres psql -U postgres",
        ),
        "backend": (
            "Check backend logs: {compose} logs backend",
            "Verify the backend can connect to the database and cache",
            "Check if backend port {port} is available",
            "Ensure the profile's .env variables are set correctly",
            "Check the readiness endpoint manually: curl http://localhost:{port}/health/ready",
        ),
        "frontend": (
            "Check frontend logs: {compose} logs frontend",
            "Verify the frontend can reach the backend API",
            "Check if frontend port {port} is available",
            "Ensure VITE_API_URL is set correctly in the profile's .env file",
            "Check for build errors in the logs",
        ),
        "redis": (
            "Check cache logs: {compose} logs redis",
            "Verify cache port {port} is available",
            "Check if the backend can connect to the cache",
            "Verify REDIS_URL in the profile's .env file",
        ),
    }
)

GENERAL_TROUBLESHOOTING: tuple[str, ...] = (
    "Stop and restart: {compose} down && devstack up",
    "Check Docker resources: docker system df",
    "View all logs: {compose} logs",
    "Check container status: {compose} ps",
)


def service_checklist(
    service_id: str, *, port: int | None = None, compose: str = "docker compose"
) -> list[str]:
    """Render the troubleshooting checklist for one service."""
    templates = SERVICE_REMEDIATION.get(service_id, ())
    port_text = str(port) if port is not None else "<unset>"
    return [line.format(compose=compose, port=port_text) for line in templates]


def general_checklist(*, compose: str = "docker compose") -> list[str]:
    return [line.format(compose=compose) for line in GENERAL_TROUBLESHOOTING]


class StartupErrorCatalog:
    """Catalog of startup errors with solutions."""

    def __init__(self) -> None:
        self.errors: dict[str, StartupErrorInfo] = self._build_error_catalog()

    def _build_error_catalog(self) -> dict[str, StartupErrorInfo]:
        """Build the error catalog."""
        errors = {}

        # Configuration
        errors["CONFIG_001"] = StartupErrorInfo(
            code="CONFIG_001",
            title="Invalid Profile Configuration",
            description="The profile's overlay file is missing, unreadable or "
            "lacks a required variable.",
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            common_causes=[
                "Overlay file .env.<profile> was never created",
                "Required variable missing or empty",
                "Port value is not a number between 1 and 65535",
            ],
            solutions=[
                ErrorSolution(
                    description="Create or complete the profile overlay",
                    steps=[
                        "Copy .env.example to .env.<profile>",
                        "Set DATABASE_*, BACKEND_PORT (and FRONTEND_PORT, REDIS_PORT for full)",
                        "Check it with: devstack validate <profile>",
                    ],
                )
            ],
            related_errors=["CONFIG_002"],
        )

        errors["CONFIG_002"] = StartupErrorInfo(
            code="CONFIG_002",
            title="Unknown Profile",
            description="The requested profile is not one of the known profiles.",
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            common_causes=[
                "Typo in the profile name",
                "Profile renamed or removed",
            ],
            solutions=[
                ErrorSolution(
                    description="Use a valid profile name",
                    steps=["List profiles with: devstack profiles"],
                )
            ],
            related_errors=["CONFIG_001"],
        )

        # Preflight
        errors["PRE_001"] = StartupErrorInfo(
            code="PRE_001",
            title="Container Runtime Unavailable",
            description="The Docker daemon is not reachable or no compose tool "
            "is installed.",
            category=ErrorCategory.ENVIRONMENT,
            severity=ErrorSeverity.CRITICAL,
            common_causes=[
                "Docker Desktop is not running",
                "Docker daemon stopped or current user lacks socket access",
                "Neither the compose plugin nor docker-compose is installed",
            ],
            solutions=[
                ErrorSolution(
                    description="Start Docker",
                    steps=[
                        "Start Docker Desktop, or: sudo systemctl start docker",
                        "Verify with: docker info",
                    ],
                ),
                ErrorSolution(
                    description="Install Docker Compose",
                    steps=["Verify with: docker compose version"],
                    documentation_links=["https://docs.docker.com/compose/install/"],
                ),
            ],
        )

        errors["PRE_002"] = StartupErrorInfo(
            code="PRE_002",
            title="Port Conflict",
            description="A host port required by the profile is already in use.",
            category=ErrorCategory.NETWORKING,
            severity=ErrorSeverity.CRITICAL,
            common_causes=[
                "A local service (database, dev server) is bound to the port",
                "Containers from a previous run are still up",
            ],
            solutions=[
                ErrorSolution(
                    description="Free the port",
                    steps=["Stop the owning process: kill <PID>", "Or: docker compose down"],
                ),
                ErrorSolution(
                    description="Move the service to another port",
                    steps=["Change the port variable in .env.<profile>"],
                ),
            ],
        )

        # Launch
        errors["LAUNCH_001"] = StartupErrorInfo(
            code="LAUNCH_001",
            title="Service Launch Failed",
            description="Docker Compose failed to start the profile's services.",
            category=ErrorCategory.DEPENDENCIES,
            severity=ErrorSeverity.CRITICAL,
            common_causes=[
                "Image build or pull failure",
                "Invalid compose file",
                "Insufficient disk space or memory",
            ],
            solutions=[
                ErrorSolution(
                    description="Inspect the compose project",
                    steps=[
                        "Validate the file: docker compose config --quiet",
                        "Check disk usage: docker system df",
                    ],
                )
            ],
        )

        # Non-fatal
        errors["HEALTH_001"] = StartupErrorInfo(
            code="HEALTH_001",
            title="Service Not Healthy",
            description="A service did not become healthy within its timeout.",
            category=ErrorCategory.RESOURCES,
            severity=ErrorSeverity.HIGH,
            common_causes=[
                "Service crashed on startup",
                "Service slower to start than HEALTH_CHECK_TIMEOUT",
                "Dependency of the service unavailable",
            ],
            solutions=[
                ErrorSolution(
                    description="Follow the service checklist printed above",
                    steps=["Raise the timeout with: HEALTH_CHECK_TIMEOUT=300 devstack up"],
                )
            ],
        )

        errors["SEED_001"] = StartupErrorInfo(
            code="SEED_001",
            title="Database Seeding Failed",
            description="Seed data could not be loaded into the empty database.",
            category=ErrorCategory.RESOURCES,
            severity=ErrorSeverity.LOW,
            common_causes=[
                "Seed SQL out of date with the schema",
                "Seeds directory missing",
            ],
            solutions=[
                ErrorSolution(
                    description="Re-run seeding manually",
                    steps=["Check DEVSTACK_SEEDS_DIR and the seed files it contains"],
                )
            ],
        )

        return errors

    def get_error_info(self, error_code: str) -> StartupErrorInfo | None:
        """Get error information by code."""
        return self.errors.get(error_code)

    def format_error_help(
        self, error_code: str, context: dict[str, str] | None = None
    ) -> str:
        """Format comprehensive error help message."""
        error_info = self.get_error_info(error_code)
        if not error_info:
            return f"Unknown error code: {error_code}"

        lines: list[str] = []
        lines.extend(
            (
                f"🚨 {error_info.title} ({error_info.code})",
                "=" * 60,
                "",
                f"📝 Description: {error_info.description}",
                f"📊 Severity: {error_info.severity.value.upper()}",
                "",
            )
        )

        if error_info.common_causes:
            lines.append("🔍 Common Causes:")
            lines.extend(f"  • {cause}" for cause in error_info.common_causes)
            lines.append("")

        if error_info.solutions:
            lines.append("💡 Solutions:")
            for i, solution in enumerate(error_info.solutions, 1):
                lines.append(f"\n  {i}. {solution.description}")
                lines.extend(f"     • {step}" for step in solution.steps)

                if solution.documentation_links:
                    lines.append("     📖 Documentation:")
                    lines.extend(
                        f"        {link}" for link in solution.documentation_links
                    )

        if context:
            lines.extend(("", "🔧 Context:"))
            for key, value in context.items():
                lines.append(f"  • {key}: {value}")

        if error_info.related_errors:
            lines.extend(("", "🔗 Related Errors:"))
            for related_code in error_info.related_errors:
                related_error = self.get_error_info(related_code)
                if related_error:
                    lines.append(f"  • {related_code}: {related_error.title}")

        return "\n".join(lines)


# Global error catalog instance
error_catalog = StartupErrorCatalog()
