"""Tests for the startup error catalog and service checklists."""

from types import MappingProxyType

import pytest

from devstack.core.exceptions import (
    HealthCheckError,
    LaunchFailed,
    PortConflict,
    ProfileConfigInvalid,
    ProfileNotFound,
    RuntimeUnavailable,
    SeedError,
)
from devstack.startup.error_catalog import (
    GENERAL_TROUBLESHOOTING,
    SERVICE_REMEDIATION,
    ErrorSeverity,
    ErrorSolution,
    StartupErrorCatalog,
    error_catalog,
    general_checklist,
    service_checklist,
)
from devstack.startup.profiles import SERVICES


class TestStartupErrorCatalog:
    """Test startup error catalog."""

    def test_every_error_code_is_catalogued(self):
        catalog = StartupErrorCatalog()
        codes = {
            cls.error_code
            for cls in (
                ProfileNotFound,
                ProfileConfigInvalid,
                RuntimeUnavailable,
                PortConflict,
                LaunchFailed,
                HealthCheckError,
                SeedError,
            )
        }

        for code in codes:
            info = catalog.get_error_info(code)
            assert info is not None, code
            assert info.code == code
            assert info.common_causes
            assert all(isinstance(s, ErrorSolution) for s in info.solutions)

    def test_get_nonexistent_error_info(self):
        assert StartupErrorCatalog().get_error_info("FAKE_999") is None

    def test_fatal_errors_are_critical(self):
        for code in ("CONFIG_001", "CONFIG_002", "PRE_001", "PRE_002", "LAUNCH_001"):
            assert error_catalog.errors[code].severity == ErrorSeverity.CRITICAL
        assert error_catalog.errors["SEED_001"].severity == ErrorSeverity.LOW

    def test_format_error_help(self):
        help_text = error_catalog.format_error_help(
            "PRE_002", {"ports": "5432"}
        )

        assert "Port Conflict (PRE_002)" in help_text
        assert "Common Causes:" in help_text
        assert "Solutions:" in help_text
        assert "ports: 5432" in help_text

    def test_format_error_help_related_errors(self):
        help_text = error_catalog.format_error_help("CONFIG_002")

        assert "CONFIG_001: Invalid Profile Configuration" in help_text

    def test_format_unknown_error(self):
        assert error_catalog.format_error_help("NOPE") == "Unknown error code: NOPE"


class TestServiceChecklists:
    """Test the service-keyed remediation table."""

    def test_every_service_has_a_checklist(self):
        assert set(SERVICE_REMEDIATION) == set(SERVICES)
        assert all(len(items) >= 4 for items in SERVICE_REMEDIATION.values())

    def test_table_is_immutable(self):
        assert isinstance(SERVICE_REMEDIATION, MappingProxyType)
        with pytest.raises(TypeError):
            SERVICE_REMEDIATION["redis"] = ()  # type: ignore[index]

    def test_checklist_uses_active_port_and_compose_command(self):
        checklist = service_checklist("redis", port=56379, compose="docker-compose")

        assert "Check cache logs: docker-compose logs redis" in checklist
        assert "Verify cache port 56379 is available" in checklist

    def test_backend_checklist_points_at_readiness_endpoint(self):
        checklist = service_checklist("backend", port=3001)

        assert "curl http://localhost:3001/health/ready" in checklist[-1]

    def test_unknown_service_has_empty_checklist(self):
        assert service_checklist("mailhog", port=1025) == []

    def test_general_checklist(self):
        checklist = general_checklist(compose="docker compose")

        assert len(checklist) == len(GENERAL_TROUBLESHOOTING)
        assert "Check Docker resources: docker system df" in checklist
        assert "Check container status: docker compose ps" in checklist
