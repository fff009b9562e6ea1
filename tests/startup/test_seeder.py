"""Tests for conditional database seeding."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from devstack.startup.seeder import AutoSeeder, SeedState
from tests.fakes.stack import FakeConnection


@pytest.fixture
def seeds_dir(tmp_path: Path) -> Path:
    path = tmp_path / "seeds"
    path.mkdir()
    (path / "02_sessions.sql").write_text("INSERT INTO sessions VALUES (2);", encoding="utf-8")
    (path / "01_users.sql").write_text("INSERT INTO users VALUES (1);", encoding="utf-8")
    (path / "README.md").write_text("not sql", encoding="utf-8")
    return path


def patch_connect(conn: FakeConnection):
    return patch(
        "devstack.startup.seeder.asyncpg.connect", AsyncMock(return_value=conn)
    )


class TestAutoSeeder:
    """Test AutoSeeder."""

    @pytest.mark.asyncio
    async def test_seeds_empty_database_in_sorted_order(
        self, seeds_dir: Path, minimal_profile
    ) -> None:
        conn = FakeConnection(user_count=0)
        seeder = AutoSeeder(seeds_dir, enabled=True)

        with patch_connect(conn) as connect:
            outcome = await seeder.seed_if_empty(minimal_profile)

        assert outcome.state == SeedState.SEEDED
        assert outcome.files == ["01_users.sql", "02_sessions.sql"]
        assert conn.executed == [
            "INSERT INTO users VALUES (1);",
            "INSERT INTO sessions VALUES (2);",
        ]
        assert conn.closed
        assert connect.call_args.kwargs["port"] == 55432
        assert seeder.final_outcome() is outcome

    @pytest.mark.asyncio
    async def test_non_empty_database_is_left_alone(
        self, seeds_dir: Path, minimal_profile
    ) -> None:
        conn = FakeConnection(user_count=3)

        with patch_connect(conn):
            outcome = await AutoSeeder(seeds_dir, enabled=True).seed_if_empty(minimal_profile)

        assert outcome.state == SeedState.SKIPPED_NOT_EMPTY
        assert outcome.row_count == 3
        assert outcome.message == "Database already contains data (3 users)"
        assert conn.executed == []
        assert conn.closed

    @pytest.mark.asyncio
    async def test_disabled_never_connects(self, seeds_dir: Path, minimal_profile) -> None:
        with patch("devstack.startup.seeder.asyncpg.connect", AsyncMock()) as connect:
            outcome = await AutoSeeder(seeds_dir, enabled=False).seed_if_empty(
                minimal_profile
            )

        assert outcome.state == SeedState.SKIPPED_DISABLED
        connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_seed_file_is_a_warning(
        self, seeds_dir: Path, minimal_profile, caplog: pytest.LogCaptureFixture
    ) -> None:
        conn = FakeConnection(execute_error=asyncpg.UndefinedTableError("relation missing"))

        with patch_connect(conn), caplog.at_level(logging.WARNING):
            outcome = await AutoSeeder(seeds_dir, enabled=True).seed_if_empty(
                minimal_profile
            )

        assert outcome.state == SeedState.FAILED
        assert "01_users.sql" in outcome.message
        assert outcome.files == []
        assert "Database seeding failed" in caplog.text
        assert conn.closed

    @pytest.mark.asyncio
    async def test_missing_seed_files_fail(self, tmp_path: Path, minimal_profile) -> None:
        conn = FakeConnection(user_count=0)

        with patch_connect(conn):
            outcome = await AutoSeeder(tmp_path / "nope", enabled=True).seed_if_empty(
                minimal_profile
            )

        assert outcome.state == SeedState.FAILED
        assert "No seed files found" in outcome.message

    @pytest.mark.asyncio
    async def test_connection_failure_is_reported(
        self, seeds_dir: Path, minimal_profile
    ) -> None:
        with patch(
            "devstack.startup.seeder.asyncpg.connect",
            AsyncMock(side_effect=ConnectionRefusedError("refused")),
        ):
            outcome = await AutoSeeder(seeds_dir, enabled=True).seed_if_empty(
                minimal_profile
            )

        assert outcome.state == SeedState.FAILED
        assert outcome.message.startswith("Could not connect to database for seeding")

    def test_final_outcome_without_run(self, seeds_dir: Path) -> None:
        assert AutoSeeder(seeds_dir, enabled=True).final_outcome().state == (
            SeedState.SKIPPED_UNHEALTHY
        )
        assert AutoSeeder(seeds_dir, enabled=False).final_outcome().state == (
            SeedState.SKIPPED_DISABLED
        )

    def test_seed_files_ignores_other_files(self, seeds_dir: Path) -> None:
        names = [p.name for p in AutoSeeder(seeds_dir, enabled=True).seed_files()]

        assert names == ["01_users.sql", "02_sessions.sql"]
