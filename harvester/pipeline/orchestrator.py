"""Orchestrator: the polling loop that drives jobs through the stages.

Each tick:
  1. Close sessions of accounts marked invalid
  2. Oldest highest-priority fetch/pending job -> fetch stage
  3. Oldest highest-priority parse/pending job -> parse stage

Jobs run one at a time; the loop only yields at navigation and pacing
waits. Errors from a tick are logged and followed by a longer backoff, the
loop itself never exits on an error. stop() takes effect between ticks.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from harvester.browser.session import SessionRegistry
from harvester.core.config import Settings
from harvester.core.db import get_account, next_pending_job
from harvester.core.errors import StorageError
from harvester.core.schemas import Job, Stage, ValidationStatus
from harvester.pipeline.account_pool import AccountPool
from harvester.pipeline.enrichment import EnrichmentTrigger
from harvester.pipeline.sentinel import Sentinel
from harvester.pipeline.snapshot_store import SnapshotStore
from harvester.pipeline.stages import FetchStage, ParseStage, fail_job
from harvester.platforms.base import PlatformAdapter

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Which jobs a tick processed (None when a stage had nothing to do)."""

    fetched_job_id: int | None = None
    parsed_job_id: int | None = None

    @property
    def idle(self) -> bool:
        return self.fetched_job_id is None and self.parsed_job_id is None


class Orchestrator:
    """Owns the stages and the loop that feeds them.

    Usage::

        orchestrator = Orchestrator.build(conn, settings, LinkedInAdapter())
        try:
            await orchestrator.run_forever()
        finally:
            await orchestrator.close()
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        fetch_stage: FetchStage,
        parse_stage: ParseStage,
        registry: SessionRegistry,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._conn = conn
        self._fetch_stage = fetch_stage
        self._parse_stage = parse_stage
        self._registry = registry
        self._settings = settings
        self._sleep = sleep
        self._running = False

    @classmethod
    def build(
        cls,
        conn: sqlite3.Connection,
        settings: Settings,
        adapter: PlatformAdapter,
        *,
        registry: SessionRegistry | None = None,
        sentinel: Sentinel | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "Orchestrator":
        """Wire the default components for a connection and settings."""
        if registry is None:
            registry = SessionRegistry(settings.browser)
        store = SnapshotStore(conn)
        pool = AccountPool(conn, settings.accounts, clock=clock)
        enrichment = EnrichmentTrigger(conn, settings.enrichment, adapter)
        fetch_stage = FetchStage(
            conn, pool, registry, adapter,
            scheduler_config=settings.scheduler,
            browser_config=settings.browser,
            sentinel=sentinel,
            store=store,
            clock=clock,
        )
        parse_stage = ParseStage(conn, adapter, enrichment, store=store, clock=clock)
        return cls(conn, fetch_stage, parse_stage, registry, settings, sleep=sleep)

    @property
    def running(self) -> bool:
        return self._running

    async def run_one_tick(self) -> TickResult:
        """Process at most one fetch job and one parse job."""
        result = TickResult()
        await self._release_invalid_sessions()

        job = next_pending_job(self._conn, Stage.FETCH)
        if job is not None:
            await self._run_stage(job, self._fetch_stage.run)
            result.fetched_job_id = job.id

        job = next_pending_job(self._conn, Stage.PARSE)
        if job is not None:
            await self._run_stage(job, self._parse_stage.run)
            result.parsed_job_id = job.id

        return result

    async def run_forever(self) -> None:
        """Tick every poll interval until stop() is called."""
        self._running = True
        scheduler = self._settings.scheduler
        logger.info("Orchestrator started (poll every %.1fs)", scheduler.poll_interval_s)
        while self._running:
            try:
                result = await self.run_one_tick()
                if not result.idle:
                    logger.debug("Tick: fetched=%s parsed=%s",
                                 result.fetched_job_id, result.parsed_job_id)
                await self._sleep(scheduler.poll_interval_s)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in job processor, backing off %.1fs",
                                 scheduler.error_backoff_s)
                await self._sleep(scheduler.error_backoff_s)
        logger.info("Orchestrator stopped")

    def stop(self) -> None:
        """Ask the loop to exit after the current tick."""
        self._running = False

    async def close(self) -> None:
        """Stop the loop and close every browser session."""
        self.stop()
        await self._registry.close_all()

    async def _release_invalid_sessions(self) -> None:
        """Close browsers of accounts that were invalidated or removed."""
        for account_id in self._registry.account_ids():
            account = get_account(self._conn, account_id)
            if account is None or account.validation_status is ValidationStatus.INVALID:
                logger.info("Account %d is no longer valid, closing its session", account_id)
                await self._registry.invalidate(account_id)

    async def _run_stage(
        self, job: Job, stage: Callable[[Job], Awaitable[Job | None]],
    ) -> None:
        """Run a stage; an unexpected error fails the job before propagating."""
        try:
            await stage(job)
        except Exception as e:
            try:
                fail_job(self._conn, job, f"internal error: {type(e).__name__}: {e}")
            except StorageError:
                logger.warning("Could not mark job %d failed", job.id, exc_info=True)
            raise
