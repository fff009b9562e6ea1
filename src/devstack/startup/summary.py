"""Success summary: where each service can be reached."""

from __future__ import annotations

import sys
from typing import TextIO

from devstack.startup.config_schema import ProfileOverlay
from devstack.startup.profiles import SERVICES, Profile, valid_profile_names

# Order shown to the operator.
SUMMARY_ORDER = ("frontend", "backend", "postgres", "redis")


def database_url(overlay: ProfileOverlay) -> str:
    credentials = overlay.database_user
    if overlay.database_password:
        credentials += f":{overlay.database_password}"
    return (
        f"postgresql://{credentials}@{overlay.database_host}:"
        f"{overlay.database_port}/{overlay.database_name}"
    )


def cache_url(overlay: ProfileOverlay) -> str:
    auth = f":{overlay.redis_password}@" if overlay.redis_password else ""
    return f"redis://{auth}{overlay.redis_host}:{overlay.redis_port}"


class SummaryPresenter:
    """Renders endpoints and connection strings from the active profile."""

    def __init__(self, output: TextIO | None = None, *, compose: str = "docker compose") -> None:
        self.output = output or sys.stdout
        self.compose = compose

    def _print(self, message: str = "") -> None:
        print(message, file=self.output, flush=True)

    def endpoints(self, profile: Profile) -> list[tuple[str, str]]:
        """(label, endpoint) pairs for every service in the topology."""
        overlay = profile.overlay
        rows = []
        for service_id in SUMMARY_ORDER:
            label = SERVICES[service_id].display_name
            if not profile.includes(service_id):
                rows.append((label, f"Not started (not in {profile.name} profile)"))
            elif service_id == "postgres":
                rows.append((label, database_url(overlay)))
            elif service_id == "redis":
                rows.append((label, cache_url(overlay)))
            else:
                rows.append((label, f"http://localhost:{profile.port_for(service_id)}"))
        return rows

    def render(self, profile: Profile) -> None:
        self._print()
        self._print("━" * 48)
        self._print("SUCCESS! Environment ready for development.")
        self._print(f"Profile: {profile.name}")
        self._print("━" * 48)
        self._print()
        self._print("Service Access:")
        for label, endpoint in self.endpoints(profile):
            self._print(f"  {label + ':':<11} {endpoint}")

        self._print()
        self._print("Profile Commands:")
        self._print(f"  {'devstack profiles':<26} - List all available profiles")
        for name in valid_profile_names():
            if name != profile.name:
                self._print(f"  {'devstack up ' + name:<26} - Switch to {name} profile")

        self._print()
        self._print("Useful Commands:")
        self._print(f"  {self.compose + ' down':<26} - Stop all services")
        self._print(f"  {self.compose + ' logs -f':<26} - View service logs")
        self._print(f"  {self.compose + ' ps':<26} - Check service status")
        self._print()
