"""devstack service probes.

One probe per check kind. A probe performs a single bounded attempt and never
raises: every library failure becomes an unsuccessful ``ProbeResult`` whose
message explains what was observed. Retrying is the verifier's job.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
import logging
import time
from typing import Any

import asyncpg
import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
import redis.asyncio as redis
from redis.exceptions import RedisError

from devstack.startup.config_schema import ProfileOverlay
from devstack.startup.profiles import CheckKind, Profile, ServiceSpec

logger = logging.getLogger(__name__)

# Minimum schema a healthy datastore must expose.
EXPECTED_TABLES = ("users", "sessions", "api_keys", "audit_logs", "health_checks")

HTTP_OK = 200
HTTP_SERVICE_UNAVAILABLE = 503

Probe = Callable[[], Awaitable["ProbeResult"]]


@dataclass
class ProbeResult:
    """Result of a single probe attempt."""

    ok: bool
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    response_time_ms: float = 0.0


class ReadinessStatus(StrEnum):
    READY = "ready"
    UNAVAILABLE = "unavailable"


class DependencyStatus(StrEnum):
    OK = "ok"
    ERROR = "error"


class ReadinessDocument(BaseModel):
    """Readiness payload served by the API at ``/health/ready``."""

    model_config = ConfigDict(extra="allow")

    status: ReadinessStatus
    database: DependencyStatus | None = None
    cache: DependencyStatus | None = None
    errors: dict[str, str] = {}

    def dependency(self, name: str) -> DependencyStatus | None:
        value = getattr(self, name, None)
        if value is None and self.model_extra:
            value = self.model_extra.get(name)
        if isinstance(value, str):
            try:
                return DependencyStatus(value)
            except ValueError:
                return None
        return value


class ServiceHealthChecker:
    """Builds and runs single-attempt probes for each service kind."""

    def __init__(
        self,
        *,
        probe_host: str = "localhost",
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize health checker.

        Args:
            probe_host: Host the stack's published ports are reachable on
            timeout: Bound on each individual request or query, in seconds
            transport: Optional httpx transport (tests inject a mock)
        """
        self.probe_host = probe_host
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ServiceHealthChecker:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    def url_for(self, port: int, path: str = "/") -> str:
        return f"http://{self.probe_host}:{port}{path}"

    def build_probe(
        self, spec: ServiceSpec, profile: Profile, *, kind: CheckKind | None = None
    ) -> Probe:
        """Return a zero-argument coroutine factory probing ``spec`` once."""
        kind = kind or spec.kind
        overlay = profile.overlay

        if kind == CheckKind.DATASTORE:
            return lambda: self.check_datastore(overlay)
        if kind == CheckKind.LIVENESS_ONLY:
            return lambda: self.check_cache_liveness(overlay)
        if kind == CheckKind.DEPENDENT_FLAG:
            host_port = profile.port_for(spec.host_service or "")
            flag = spec.payload_flag or spec.service_id
            if host_port is None:
                msg = f"{spec.service_id} is hosted by {spec.host_service}, which has no port"
                raise ValueError(msg)
            return lambda: self.check_dependent_flag(host_port, flag)

        port = profile.port_for(spec.service_id)
        if port is None:
            msg = f"No port configured for {spec.service_id}"
            raise ValueError(msg)
        if spec.service_id == "backend":
            return lambda: self.check_api_readiness(port, spec.http_path)
        return lambda: self.check_http_endpoint(port, spec.http_path)

    # HTTP

    async def check_http_endpoint(self, port: int, path: str = "/") -> ProbeResult:
        """Healthy when the endpoint answers 200."""
        url = self.url_for(port, path)
        start_time = time.time()
        try:
            response = await self.client.get(url)
        except httpx.TimeoutException:
            return ProbeResult(
                ok=False,
                message=f"{url} timed out after {self.timeout}s",
                response_time_ms=(time.time() - start_time) * 1000,
            )
        except httpx.HTTPError as e:
            return ProbeResult(
                ok=False,
                message=f"{url} not reachable: {e.__class__.__name__}",
                response_time_ms=(time.time() - start_time) * 1000,
            )

        elapsed = (time.time() - start_time) * 1000
        if response.status_code == HTTP_OK:
            return ProbeResult(
                ok=True,
                message=f"{url} responded 200",
                details={"status_code": response.status_code},
                response_time_ms=elapsed,
            )
        return ProbeResult(
            ok=False,
            message=f"{url} responded {response.status_code}",
            details={"status_code": response.status_code},
            response_time_ms=elapsed,
        )

    async def fetch_readiness(
        self, port: int, path: str = "/health/ready"
    ) -> tuple[ReadinessDocument | None, ProbeResult | None]:
        """Fetch and parse the readiness document.

        Returns (document, None) on success, or (None, failure) when the
        document is unavailable or malformed, which callers treat as
        "not yet healthy".
        """
        url = self.url_for(port, path)
        start_time = time.time()
        try:
            response = await self.client.get(url)
        except httpx.TimeoutException:
            return None, ProbeResult(
                ok=False, message=f"Readiness check timed out after {self.timeout}s"
            )
        except httpx.HTTPError as e:
            return None, ProbeResult(
                ok=False, message=f"Readiness endpoint not reachable: {e.__class__.__name__}"
            )

        if response.status_code not in {HTTP_OK, HTTP_SERVICE_UNAVAILABLE}:
            return None, ProbeResult(
                ok=False,
                message=f"Readiness endpoint responded {response.status_code}",
                details={"status_code": response.status_code},
            )
        try:
            document = ReadinessDocument.model_validate(response.json())
        except (ValueError, ValidationError):
            return None, ProbeResult(
                ok=False,
                message="Readiness document is not valid yet",
                details={"status_code": response.status_code},
            )
        logger.debug(
            "Readiness from %s in %.0fms: %s",
            url,
            (time.time() - start_time) * 1000,
            document.model_dump(),
        )
        return document, None

    async def check_api_readiness(self, port: int, path: str = "/health/ready") -> ProbeResult:
        """Healthy when the API serves its readiness document with database ok.

        Cache status is deliberately not part of the API's own health; it is
        reported as a dependent flag of the cache service.
        """
        start_time = time.time()
        document, failure = await self.fetch_readiness(port, path)
        if failure is not None:
            failure.response_time_ms = (time.time() - start_time) * 1000
            return failure

        database = document.dependency("database")
        details = {"status": document.status.value, "database": database, "cache": document.cache}
        if database == DependencyStatus.OK:
            return ProbeResult(
                ok=True,
                message="API ready (database ok)",
                details=details,
                response_time_ms=(time.time() - start_time) * 1000,
            )
        reason = document.errors.get("database", "database dependency not ok")
        return ProbeResult(
            ok=False,
            message=f"API reports database unavailable: {reason}",
            details=details,
            response_time_ms=(time.time() - start_time) * 1000,
        )

    async def check_dependent_flag(
        self, host_port: int, flag: str, path: str = "/health/ready"
    ) -> ProbeResult:
        """Healthy when the host's readiness document reports ``flag`` ok."""
        start_time = time.time()
        document, failure = await self.fetch_readiness(host_port, path)
        if failure is not None:
            failure.response_time_ms = (time.time() - start_time) * 1000
            return failure

        status = document.dependency(flag)
        if status == DependencyStatus.OK:
            return ProbeResult(
                ok=True,
                message=f"Readiness reports {flag} ok",
                details={flag: status.value},
                response_time_ms=(time.time() - start_time) * 1000,
            )
        reason = document.errors.get(flag, f"{flag} not ok")
        return ProbeResult(
            ok=False,
            message=f"Readiness reports {flag} unavailable: {reason}",
            details={flag: status.value if status else None},
            response_time_ms=(time.time() - start_time) * 1000,
        )

    # Datastore

    async def check_datastore(self, overlay: ProfileOverlay) -> ProbeResult:
        """Connectivity, database identity and minimum schema in one attempt."""
        start_time = time.time()
        target = (
            f"{overlay.database_user}@{self.probe_host}:"
            f"{overlay.database_port}/{overlay.database_name}"
        )
        try:
            conn = await asyncpg.connect(
                host=self.probe_host,
                port=overlay.database_port,
                user=overlay.database_user,
                password=overlay.database_password or None,
                database=overlay.database_name,
                timeout=self.timeout,
            )
        except asyncpg.InvalidCatalogNameError:
            return self._db_failure(
                f"Database '{overlay.database_name}' does not exist", target, start_time
            )
        except asyncpg.InvalidPasswordError:
            return self._db_failure(
                f"Authentication failed for user '{overlay.database_user}'",
                target,
                start_time,
            )
        except (TimeoutError, asyncio.TimeoutError):
            return self._db_failure(
                f"Database connection timed out after {self.timeout}s", target, start_time
            )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            return self._db_failure(f"Failed to connect to database: {e}", target, start_time)

        try:
            if await conn.fetchval("SELECT 1", timeout=self.timeout) != 1:
                return self._db_failure("Unexpected response to SELECT 1", target, start_time)

            current = await conn.fetchval("SELECT current_database()", timeout=self.timeout)
            if current != overlay.database_name:
                return self._db_failure(
                    f"Connected to wrong database: {current}", target, start_time
                )

            rows = await conn.fetch(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = 'public' AND table_name = ANY($1::text[])",
                list(EXPECTED_TABLES),
                timeout=self.timeout,
            )
        except (TimeoutError, asyncio.TimeoutError):
            return self._db_failure(
                f"Database query timed out after {self.timeout}s", target, start_time
            )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            return self._db_failure(f"Database query failed: {e}", target, start_time)
        finally:
            await conn.close(timeout=self.timeout)

        found = {row["table_name"] for row in rows}
        missing = [name for name in EXPECTED_TABLES if name not in found]
        if missing:
            return self._db_failure(
                f"Schema not initialized: found {len(found)} of {len(EXPECTED_TABLES)} "
                f"expected tables (missing: {', '.join(missing)})",
                target,
                start_time,
                missing_tables=missing,
            )
        return ProbeResult(
            ok=True,
            message=f"Database '{overlay.database_name}' reachable with schema initialized",
            details={"target": target, "tables": len(found)},
            response_time_ms=(time.time() - start_time) * 1000,
        )

    @staticmethod
    def _db_failure(
        message: str, target: str, start_time: float, **details: Any
    ) -> ProbeResult:
        return ProbeResult(
            ok=False,
            message=message,
            details={"target": target, **details},
            response_time_ms=(time.time() - start_time) * 1000,
        )

    # Cache

    async def check_cache_liveness(self, overlay: ProfileOverlay) -> ProbeResult:
        """Direct PING against the cache, independent of the API."""
        start_time = time.time()
        if overlay.redis_port is None:
            return ProbeResult(ok=False, message="REDIS_PORT is not configured")
        client = redis.Redis(
            host=self.probe_host,
            port=overlay.redis_port,
            password=overlay.redis_password or None,
            socket_timeout=self.timeout,
            socket_connect_timeout=self.timeout,
        )
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            return ProbeResult(
                ok=False,
                message=f"Cache PING failed: {e}",
                response_time_ms=(time.time() - start_time) * 1000,
            )
        finally:
            await client.aclose()
        return ProbeResult(
            ok=True,
            message="Cache answered PING",
            response_time_ms=(time.time() - start_time) * 1000,
        )
