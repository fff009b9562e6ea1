"""Conditional seeding of an empty datastore.

Seeding runs only when enabled and only while the reference table is empty,
so re-running ``devstack up`` never duplicates seed data.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from pathlib import Path

import asyncpg

from devstack.core.exceptions import SeedError
from devstack.startup.config_schema import ProfileOverlay
from devstack.startup.profiles import Profile

logger = logging.getLogger(__name__)

REFERENCE_TABLE = "users"


class SeedState(StrEnum):
    SEEDED = "seeded"
    SKIPPED_DISABLED = "skipped-disabled"
    SKIPPED_NOT_EMPTY = "skipped-not-empty"
    SKIPPED_UNHEALTHY = "skipped-unhealthy"
    FAILED = "failed"


@dataclass
class SeedOutcome:
    state: SeedState
    message: str = ""
    files: list[str] = field(default_factory=list)
    row_count: int | None = None


class AutoSeeder:
    """Loads ``*.sql`` seed files into an empty database."""

    def __init__(
        self,
        seeds_dir: Path,
        *,
        enabled: bool,
        probe_host: str = "localhost",
        timeout: float = 30.0,
        reference_table: str = REFERENCE_TABLE,
    ) -> None:
        self.seeds_dir = Path(seeds_dir)
        self.enabled = enabled
        self.probe_host = probe_host
        self.timeout = timeout
        self.reference_table = reference_table
        self.outcome: SeedOutcome | None = None

    def final_outcome(self) -> SeedOutcome:
        """Outcome of the run, including the case where seeding never ran."""
        if self.outcome is not None:
            return self.outcome
        if not self.enabled:
            return SeedOutcome(SeedState.SKIPPED_DISABLED, "Auto-seeding disabled")
        return SeedOutcome(
            SeedState.SKIPPED_UNHEALTHY, "Datastore not healthy, seeding not attempted"
        )

    def seed_files(self) -> list[Path]:
        if not self.seeds_dir.is_dir():
            return []
        return sorted(self.seeds_dir.glob("*.sql"))

    async def seed_if_empty(self, profile: Profile) -> SeedOutcome:
        """Seed the datastore if enabled and the reference table is empty.

        Never raises: a failure is logged as a warning and reported as
        ``SeedState.FAILED``.
        """
        if not self.enabled:
            self.outcome = SeedOutcome(SeedState.SKIPPED_DISABLED, "Auto-seeding disabled")
            logger.debug(self.outcome.message)
            return self.outcome

        try:
            self.outcome = await self._seed(profile.overlay)
        except SeedError as e:
            logger.warning("Database seeding failed: %s", e.message)
            self.outcome = SeedOutcome(
                SeedState.FAILED, e.message, files=e.details.get("files", [])
            )
        return self.outcome

    async def _seed(self, overlay: ProfileOverlay) -> SeedOutcome:
        try:
            conn = await asyncpg.connect(
                host=self.probe_host,
                port=overlay.database_port,
                user=overlay.database_user,
                password=overlay.database_password or None,
                database=overlay.database_name,
                timeout=self.timeout,
            )
        except (
            OSError,
            TimeoutError,
            asyncio.TimeoutError,
            asyncpg.PostgresError,
            asyncpg.InterfaceError,
        ) as e:
            msg = f"Could not connect to database for seeding: {e}"
            raise SeedError(msg) from e

        try:
            count = await self._row_count(conn)
            if count > 0:
                logger.info(
                    "Skipping seed: %s already has %d row(s)", self.reference_table, count
                )
                return SeedOutcome(
                    SeedState.SKIPPED_NOT_EMPTY,
                    f"Database already contains data ({count} {self.reference_table})",
                    row_count=count,
                )

            files = self.seed_files()
            if not files:
                msg = f"No seed files found in {self.seeds_dir}"
                raise SeedError(msg)

            applied: list[str] = []
            for path in files:
                try:
                    sql = path.read_text(encoding="utf-8")
                except OSError as e:
                    msg = f"Could not read seed file {path.name}: {e}"
                    raise SeedError(msg, details={"files": applied}) from e
                logger.info("Applying seed file %s", path.name)
                try:
                    async with conn.transaction():
                        await conn.execute(sql, timeout=self.timeout)
                except (asyncpg.PostgresError, TimeoutError, asyncio.TimeoutError) as e:
                    msg = f"Seed file {path.name} failed: {e}"
                    raise SeedError(msg, details={"files": applied}) from e
                applied.append(path.name)
        finally:
            await conn.close(timeout=self.timeout)

        return SeedOutcome(
            SeedState.SEEDED,
            f"Seeded database from {len(applied)} file(s)",
            files=applied,
            row_count=0,
        )

    async def _row_count(self, conn: asyncpg.Connection) -> int:
        try:
            return await conn.fetchval(
                f'SELECT COUNT(*) FROM "{self.reference_table}"',  # noqa: S608
                timeout=self.timeout,
            )
        except (asyncpg.PostgresError, TimeoutError, asyncio.TimeoutError) as e:
            msg = f"Could not count rows in {self.reference_table}: {e}"
            raise SeedError(msg) from e
