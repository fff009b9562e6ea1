"""Service topology and profile resolution.

A profile names a subset of the stack. Resolving it validates the name, reads
the profile's overlay document and produces one immutable ``Profile`` that is
threaded through every later stage.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from pathlib import Path
from types import MappingProxyType

from dotenv import dotenv_values
from pydantic import ValidationError

from devstack.core.exceptions import ProfileConfigInvalid, ProfileNotFound
from devstack.startup.config_schema import ProfileOverlay

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "full"


class CheckKind(StrEnum):
    """How a service's health is observed."""

    DATASTORE = "datastore"
    HTTP_ENDPOINT = "http-endpoint"
    DEPENDENT_FLAG = "dependent-flag"
    LIVENESS_ONLY = "liveness-only"


@dataclass(frozen=True)
class ServiceSpec:
    """Static description of one service in the stack."""

    service_id: str
    display_name: str
    kind: CheckKind
    port_variable: str
    http_path: str = "/"
    host_service: str | None = None
    payload_flag: str | None = None
    fallback_kind: CheckKind | None = None


POSTGRES = ServiceSpec(
    service_id="postgres",
    display_name="Database",
    kind=CheckKind.DATASTORE,
    port_variable="DATABASE_PORT",
)
BACKEND = ServiceSpec(
    service_id="backend",
    display_name="Backend",
    kind=CheckKind.HTTP_ENDPOINT,
    port_variable="BACKEND_PORT",
    http_path="/health/ready",
)
REDIS = ServiceSpec(
    service_id="redis",
    display_name="Cache",
    kind=CheckKind.DEPENDENT_FLAG,
    port_variable="REDIS_PORT",
    host_service="backend",
    payload_flag="cache",
    fallback_kind=CheckKind.LIVENESS_ONLY,
)
FRONTEND = ServiceSpec(
    service_id="frontend",
    display_name="Frontend",
    kind=CheckKind.HTTP_ENDPOINT,
    port_variable="FRONTEND_PORT",
    http_path="/",
)

# Full topology, in display order.
SERVICES: Mapping[str, ServiceSpec] = MappingProxyType(
    {spec.service_id: spec for spec in (POSTGRES, BACKEND, REDIS, FRONTEND)}
)

PROFILE_SERVICES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "minimal": ("postgres", "backend"),
        "full": ("postgres", "redis", "backend", "frontend"),
    }
)

PROFILE_DESCRIPTIONS: Mapping[str, str] = MappingProxyType(
    {
        "minimal": "Database and API only, for backend work",
        "full": "Complete stack: database, cache, API and UI",
    }
)

COMMON_REQUIRED_VARIABLES = (
    "DATABASE_HOST",
    "DATABASE_PORT",
    "DATABASE_NAME",
    "DATABASE_USER",
    "DATABASE_PASSWORD",
    "BACKEND_PORT",
)

PROFILE_REQUIRED_VARIABLES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "minimal": COMMON_REQUIRED_VARIABLES,
        "full": (*COMMON_REQUIRED_VARIABLES, "FRONTEND_PORT", "REDIS_PORT"),
    }
)


def valid_profile_names() -> list[str]:
    return list(PROFILE_SERVICES)


@dataclass(frozen=True)
class Profile:
    """A resolved profile. Immutable once constructed."""

    name: str
    services: tuple[str, ...]
    overlay_path: Path
    overlay: ProfileOverlay
    variables: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def includes(self, service_id: str) -> bool:
        return service_id in self.services

    @property
    def service_specs(self) -> list[ServiceSpec]:
        return [SERVICES[service_id] for service_id in self.services]

    @property
    def excluded_services(self) -> list[str]:
        return [sid for sid in SERVICES if sid not in self.services]

    def port_for(self, service_id: str) -> int | None:
        return self.overlay.port_for(SERVICES[service_id].port_variable)


@dataclass(frozen=True)
class ProfileInfo:
    """Listing entry for ``devstack profiles``."""

    name: str
    description: str
    services: tuple[str, ...]
    overlay_path: Path
    overlay_exists: bool


class ProfileResolver:
    """Maps a profile name to its service set and validated overlay."""

    def __init__(self, project_root: Path) -> None:
        self.project_root = Path(project_root)

    def overlay_path(self, name: str) -> Path:
        return self.project_root / f".env.{name}"

    @staticmethod
    def normalize(name: str | None) -> str:
        """Lower-case and default the requested profile name."""
        if name is None or not name.strip():
            return DEFAULT_PROFILE
        return name.strip().lower()

    def resolve(self, name: str | None = None) -> Profile:
        """Resolve a profile name into an immutable ``Profile``.

        Raises:
            ProfileNotFound: name is not a known profile.
            ProfileConfigInvalid: overlay is missing, lacks a required variable,
                or holds a value of the wrong type.
        """
        profile_name = self.normalize(name)
        if profile_name not in PROFILE_SERVICES:
            raise ProfileNotFound(profile_name, valid_profile_names())

        path = self.overlay_path(profile_name)
        variables = self._load_overlay(profile_name, path)

        for variable in PROFILE_REQUIRED_VARIABLES[profile_name]:
            if variable == "DATABASE_PASSWORD":
                present = variable in variables
            else:
                present = bool(variables.get(variable, "").strip())
            if not present:
                msg = (
                    f"Profile '{profile_name}' is missing required variable "
                    f"{variable} in {path.name}"
                )
                raise ProfileConfigInvalid(
                    profile_name, msg, variable=variable, overlay_path=str(path)
                )

        try:
            overlay = ProfileOverlay.model_validate(variables)
        except ValidationError as e:
            first = e.errors()[0]
            variable = str(first["loc"][0]) if first["loc"] else None
            msg = (
                f"Profile '{profile_name}' has an invalid value for {variable}: "
                f"{first['msg']}"
            )
            raise ProfileConfigInvalid(
                profile_name, msg, variable=variable, overlay_path=str(path)
            ) from e

        self._check_self_identification(profile_name, overlay, path)

        profile = Profile(
            name=profile_name,
            services=PROFILE_SERVICES[profile_name],
            overlay_path=path,
            overlay=overlay,
            variables=MappingProxyType(dict(variables)),
        )
        logger.info(
            "Resolved profile %s with services %s", profile.name, ", ".join(profile.services)
        )
        return profile

    def list_profiles(self) -> list[ProfileInfo]:
        return [
            ProfileInfo(
                name=name,
                description=PROFILE_DESCRIPTIONS[name],
                services=services,
                overlay_path=self.overlay_path(name),
                overlay_exists=self.overlay_path(name).is_file(),
            )
            for name, services in PROFILE_SERVICES.items()
        ]

    @staticmethod
    def _load_overlay(profile_name: str, path: Path) -> dict[str, str]:
        if not path.is_file():
            msg = f"Profile configuration file not found: {path}"
            raise ProfileConfigInvalid(profile_name, msg, overlay_path=str(path))
        try:
            raw = dotenv_values(path)
        except (OSError, UnicodeDecodeError) as e:
            msg = f"Could not read profile configuration {path}: {e}"
            raise ProfileConfigInvalid(profile_name, msg, overlay_path=str(path)) from e
        return {key: value or "" for key, value in raw.items()}

    @staticmethod
    def _check_self_identification(
        profile_name: str, overlay: ProfileOverlay, path: Path
    ) -> None:
        if overlay.profile is None:
            logger.warning("%s does not declare PROFILE=%s", path.name, profile_name)
        elif overlay.profile.strip().lower() != profile_name:
            logger.warning(
                "PROFILE variable in %s is set to '%s' but should be '%s'",
                path.name,
                overlay.profile,
                profile_name,
            )
