"""Launches exactly the resolved service set in detached mode."""

from __future__ import annotations

import logging

from devstack.core.exceptions import LaunchFailed
from devstack.startup.profiles import Profile
from devstack.startup.runtime import ContainerRuntime

logger = logging.getLogger(__name__)


class Launcher:
    """Invokes ``compose up -d`` scoped to one profile's services."""

    def __init__(self, runtime: ContainerRuntime, *, timeout: float = 300.0) -> None:
        self.runtime = runtime
        self.timeout = timeout

    def build_args(self, profile: Profile) -> list[str]:
        return ["up", "-d", *profile.services]

    def launch(self, profile: Profile) -> None:
        """Start the profile's services.

        Raises:
            LaunchFailed: compose returned non-zero or did not finish in time.
        """
        env = {**profile.variables, "COMPOSE_PROFILES": profile.name}
        logger.info("Launching services: %s", ", ".join(profile.services))
        result = self.runtime.compose(
            self.build_args(profile),
            timeout=self.timeout,
            env=env,
            profile=profile.name,
        )
        if result.ok:
            logger.info("Services started in detached mode (profile: %s)", profile.name)
            return

        if result.timed_out:
            msg = f"Docker Compose did not finish starting services within {self.timeout:.0f}s"
        elif result.not_found:
            msg = "Docker Compose could not be executed"
        else:
            msg = f"Failed to start Docker Compose services (exit code {result.returncode})"
        raise LaunchFailed(
            msg,
            returncode=result.returncode,
            output=result.output,
            next_steps=[
                self.runtime.compose_display("logs"),
                self.runtime.compose_display("ps"),
                self.runtime.compose_display("config", "--quiet"),
            ],
        )
