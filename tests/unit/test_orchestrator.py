"""Tests for the orchestrator loop: tick dispatch, error handling, backoff, stop."""

import sqlite3
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from harvester.core.config import SchedulerConfig, Settings
from harvester.core.db import get_job, init_db, insert_account, insert_job, transition_job
from harvester.core.schemas import Job, JobStatus, JobType, Stage, ValidationStatus
from harvester.pipeline.orchestrator import Orchestrator, TickResult


@pytest.fixture
def db(tmp_path: Path) -> sqlite3.Connection:
    return init_db(tmp_path / "test.db")


def _settings() -> Settings:
    return Settings(scheduler=SchedulerConfig(poll_interval_s=5.0, error_backoff_s=10.0))


def _orchestrator(
    db: sqlite3.Connection,
    fetch: AsyncMock | None = None,
    parse: AsyncMock | None = None,
    sleep: AsyncMock | None = None,
) -> tuple[Orchestrator, MagicMock, MagicMock, MagicMock]:
    fetch_stage = MagicMock()
    fetch_stage.run = fetch or AsyncMock(return_value=None)
    parse_stage = MagicMock()
    parse_stage.run = parse or AsyncMock(return_value=None)
    registry = MagicMock()
    registry.close_all = AsyncMock()
    registry.account_ids = MagicMock(return_value=[])
    registry.invalidate = AsyncMock()
    orchestrator = Orchestrator(
        db, fetch_stage, parse_stage, registry, _settings(), sleep=sleep or AsyncMock(),
    )
    return orchestrator, fetch_stage, parse_stage, registry


class TestRunOneTick:
    async def test_idle(self, db: sqlite3.Connection) -> None:
        orchestrator, fetch_stage, parse_stage, _ = _orchestrator(db)
        result = await orchestrator.run_one_tick()
        assert result == TickResult()
        assert result.idle
        fetch_stage.run.assert_not_awaited()
        parse_stage.run.assert_not_awaited()

    async def test_dispatches_by_stage(self, db: sqlite3.Connection) -> None:
        fetch_id = insert_job(db, job_type=JobType.PROFILES, urls=["a"])
        parse_id = insert_job(db, job_type=JobType.PROFILES, urls=["b"])
        transition_job(db, parse_id, stage=Stage.PARSE, status=JobStatus.PENDING)
        orchestrator, fetch_stage, parse_stage, _ = _orchestrator(db)

        result = await orchestrator.run_one_tick()

        assert result.fetched_job_id == fetch_id
        assert result.parsed_job_id == parse_id
        fetched_job: Job = fetch_stage.run.await_args.args[0]
        parsed_job: Job = parse_stage.run.await_args.args[0]
        assert fetched_job.id == fetch_id
        assert parsed_job.id == parse_id

    async def test_highest_priority_first(self, db: sqlite3.Connection) -> None:
        insert_job(db, job_type=JobType.PROFILES, urls=["a"], priority=1)
        urgent = insert_job(db, job_type=JobType.PROFILES, urls=["b"], priority=9)
        orchestrator, _, _, _ = _orchestrator(db)
        result = await orchestrator.run_one_tick()
        assert result.fetched_job_id == urgent

    async def test_cancelled_job_not_picked_up(self, db: sqlite3.Connection) -> None:
        job_id = insert_job(db, job_type=JobType.PROFILES, urls=["a"])
        transition_job(db, job_id, stage=Stage.FETCH, status=JobStatus.CANCELLED)
        orchestrator, fetch_stage, _, _ = _orchestrator(db)
        await orchestrator.run_one_tick()
        fetch_stage.run.assert_not_awaited()

    async def test_stage_crash_fails_job_and_propagates(self, db: sqlite3.Connection) -> None:
        job_id = insert_job(db, job_type=JobType.PROFILES, urls=["a"])
        orchestrator, _, _, _ = _orchestrator(db, fetch=AsyncMock(side_effect=RuntimeError("boom")))

        with pytest.raises(RuntimeError):
            await orchestrator.run_one_tick()

        job = get_job(db, job_id)
        assert job is not None
        assert job.status is JobStatus.FAILED
        assert job.error_message == "internal error: RuntimeError: boom"

    async def test_releases_sessions_of_invalid_accounts(self, db: sqlite3.Connection) -> None:
        valid = insert_account(db, cookies="[]", validation_status=ValidationStatus.ACTIVE)
        invalid = insert_account(db, cookies="[]", validation_status=ValidationStatus.INVALID)
        orchestrator, _, _, registry = _orchestrator(db)
        registry.account_ids.return_value = [valid, invalid, 404]

        await orchestrator.run_one_tick()

        assert [c.args[0] for c in registry.invalidate.await_args_list] == [invalid, 404]


class TestRunForever:
    async def test_polls_until_stopped(self, db: sqlite3.Connection) -> None:
        sleep = AsyncMock()
        orchestrator, fetch_stage, _, _ = _orchestrator(db, sleep=sleep)

        async def _stop_after_three(seconds: float) -> None:
            if sleep.await_count >= 3:
                orchestrator.stop()

        sleep.side_effect = _stop_after_three
        await orchestrator.run_forever()

        assert sleep.await_count == 3
        assert all(call.args[0] == 5.0 for call in sleep.await_args_list)
        assert orchestrator.running is False

    async def test_error_backs_off_and_continues(self, db: sqlite3.Connection) -> None:
        insert_job(db, job_type=JobType.PROFILES, urls=["a"])
        sleep = AsyncMock()
        fetch = AsyncMock(side_effect=RuntimeError("boom"))
        orchestrator, _, _, _ = _orchestrator(db, fetch=fetch, sleep=sleep)

        async def _stop_after_two(seconds: float) -> None:
            if sleep.await_count >= 2:
                orchestrator.stop()

        sleep.side_effect = _stop_after_two
        await orchestrator.run_forever()

        # First tick crashed (backoff), second tick found nothing left (poll)
        assert [call.args[0] for call in sleep.await_args_list] == [10.0, 5.0]
        assert fetch.await_count == 1

    async def test_close_stops_and_releases_sessions(self, db: sqlite3.Connection) -> None:
        orchestrator, _, _, registry = _orchestrator(db)
        await orchestrator.close()
        assert orchestrator.running is False
        registry.close_all.assert_awaited_once()
