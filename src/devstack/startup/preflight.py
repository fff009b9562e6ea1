"""Preflight checks performed before anything is launched.

Verifies the container runtime and compose tool, and detects host port
conflicts for the resolved service set. Any conflict aborts the run: a
collision is far easier to diagnose before launch than after.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import socket

import psutil

from devstack.core.exceptions import PortConflict, RuntimeUnavailable
from devstack.startup.profiles import Profile
from devstack.startup.runtime import ContainerRuntime, parse_version

logger = logging.getLogger(__name__)

# Profiles in compose files need compose 1.28 or later.
MIN_COMPOSE_VERSION = (1, 28, 0)
UNKNOWN_OWNER = "unknown"


@dataclass(frozen=True)
class PortBinding:
    """A host port required by a service and whether it is already taken."""

    service_id: str
    variable: str
    port: int
    conflict: bool
    pid: int | None = None
    process_name: str = UNKNOWN_OWNER

    @property
    def owner(self) -> str:
        if self.pid is None:
            return UNKNOWN_OWNER
        return f"{self.process_name} (PID {self.pid})"


@dataclass
class PreflightReport:
    """Everything preflight learned about the host."""

    runtime_version: str = ""
    compose_command: tuple[str, ...] = ()
    compose_version: str = ""
    warnings: list[str] = field(default_factory=list)
    bindings: list[PortBinding] = field(default_factory=list)

    @property
    def conflicts(self) -> list[PortBinding]:
        return [binding for binding in self.bindings if binding.conflict]


class PreflightChecker:
    """Validates runtime availability and detects port conflicts."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        *,
        probe_host: str = "localhost",
        probe_timeout: float = 1.0,
    ) -> None:
        self.runtime = runtime
        self.probe_host = probe_host
        self.probe_timeout = probe_timeout

    def run(self, profile: Profile) -> PreflightReport:
        """Run every preflight check.

        Raises:
            RuntimeUnavailable: daemon unreachable or no compose tool installed.
            PortConflict: at least one required port is already bound.
        """
        report = PreflightReport()
        self.check_runtime(report)
        report.bindings = self.check_ports(profile)
        if report.conflicts:
            raise PortConflict(report.conflicts)
        return report

    def check_runtime(self, report: PreflightReport) -> None:
        info = self.runtime.info()
        if not info.ok:
            reason = "not installed" if info.not_found else "not running"
            msg = f"Docker daemon is {reason}"
            raise RuntimeUnavailable(
                msg,
                details={"output": info.output},
                next_steps=[
                    "Start Docker Desktop (macOS/Windows) or: sudo systemctl start docker",
                    "Verify with: docker info",
                ],
            )
        report.runtime_version = info.stdout.strip()

        detected = self.runtime.detect_compose()
        if detected is None:
            msg = "Docker Compose is not installed"
            raise RuntimeUnavailable(
                msg,
                next_steps=[
                    "Install the compose plugin: https://docs.docker.com/compose/install/",
                    "Verify with: docker compose version",
                ],
            )
        report.compose_command, report.compose_version = detected

        version = parse_version(report.compose_version)
        if version is None or version < MIN_COMPOSE_VERSION:
            warning = (
                f"Docker Compose {report.compose_version or 'unknown'} detected. "
                "Profiles require version 1.28 or later; profile selection may not "
                "work correctly. Please upgrade Docker Compose."
            )
            report.warnings.append(warning)
            logger.warning(warning)

    def check_ports(self, profile: Profile) -> list[PortBinding]:
        """Probe every port the profile's services bind on the host."""
        listeners = self._listening_sockets()
        bindings = []
        for spec in profile.service_specs:
            port = profile.port_for(spec.service_id)
            if port is None:
                continue
            owner = listeners.get(port)
            bound = owner is not None or self._port_accepts_connections(port)
            pid, name = owner if owner else (None, UNKNOWN_OWNER)
            binding = PortBinding(
                service_id=spec.service_id,
                variable=spec.port_variable,
                port=port,
                conflict=bound,
                pid=pid,
                process_name=name,
            )
            if bound:
                logger.warning(
                    "Port %s (%s) is already in use by %s",
                    port,
                    spec.display_name,
                    binding.owner,
                )
            bindings.append(binding)
        return bindings

    def _port_accepts_connections(self, port: int) -> bool:
        try:
            with socket.create_connection(
                (self.probe_host, port), timeout=self.probe_timeout
            ):
                return True
        except OSError:
            return False

    @staticmethod
    def _listening_sockets() -> dict[int, tuple[int | None, str]]:
        """Map listening ports to (pid, process name), best effort."""
        listeners: dict[int, tuple[int | None, str]] = {}
        try:
            connections = psutil.net_connections(kind="inet")
        except (psutil.AccessDenied, OSError) as e:
            logger.debug("Listening socket enumeration unavailable: %s", e)
            return listeners

        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            port = conn.laddr.port
            if port in listeners and listeners[port][0] is not None:
                continue
            name = UNKNOWN_OWNER
            if conn.pid is not None:
                try:
                    name = psutil.Process(conn.pid).name()
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    pass
            listeners[port] = (conn.pid, name)
        return listeners
