"""Fetch and parse stages.

Fetch captures raw HTML into snapshots; parse turns stored snapshots into
records. Keeping them apart means a parser change never costs a refetch.

Fetch stage, per job:
  1. Claim the job (pending -> running)
  2. Select an account, bind it to the job
  3. Get or create the account's browser session (under the account lock)
  4. Capture each URL in order, sentinel check, one snapshot per URL
  5. Randomized delay after every URL
  6. Hand over to the parse stage
"""

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime

from harvester.browser.actions import between_urls
from harvester.browser.session import BrowserSession, SessionRegistry
from harvester.core.config import BrowserConfig, SchedulerConfig
from harvester.core.db import (
    bind_account,
    claim_job,
    get_job,
    insert_parsed_record,
    transition_job,
    update_progress,
)
from harvester.core.errors import (
    AntiDetectionError,
    CookieError,
    NavigationError,
    NoAccountAvailableError,
    ParseError,
    StorageError,
)
from harvester.core.schemas import (
    AccountRecord,
    Job,
    JobStatus,
    PageType,
    ParsedRecord,
    RecordStatus,
    Snapshot,
    Stage,
)
from harvester.pipeline.account_pool import AccountPool, Outcome
from harvester.pipeline.enrichment import EnrichmentTrigger
from harvester.pipeline.sentinel import Sentinel, Verdict
from harvester.pipeline.snapshot_store import SnapshotStore
from harvester.platforms.base import PlatformAdapter

logger = logging.getLogger(__name__)

ANTI_DETECTION_REASON = "anti-detection triggered"
NO_ACCOUNT_REASON = "no available account"


def fail_job(
    conn: sqlite3.Connection, job: Job, reason: str, now: datetime | None = None,
) -> None:
    """Mark a job failed in its current stage. Progress counters are kept."""
    transition_job(conn, job.id, stage=job.stage, status=JobStatus.FAILED,
                   error_message=reason, now=now)
    logger.warning("Job %d failed: %s", job.id, reason)


class FetchStage:
    def __init__(
        self,
        conn: sqlite3.Connection,
        pool: AccountPool,
        registry: SessionRegistry,
        adapter: PlatformAdapter,
        *,
        scheduler_config: SchedulerConfig,
        browser_config: BrowserConfig,
        sentinel: Sentinel | None = None,
        store: SnapshotStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._conn = conn
        self._pool = pool
        self._registry = registry
        self._adapter = adapter
        self._scheduler_config = scheduler_config
        self._browser_config = browser_config
        self._sentinel = sentinel or Sentinel()
        self._store = store or SnapshotStore(conn)
        self._clock = clock

    async def run(self, job: Job) -> Job | None:
        """Run the fetch stage for a fetch/pending job.

        Returns the job as stored afterwards, or None if another execution
        claimed it first.
        """
        if not claim_job(self._conn, job.id, Stage.FETCH, self._clock()):
            logger.info("Job %d already claimed, skipping", job.id)
            return None

        logger.info("Fetching job %d (%s, %d URLs)", job.id, job.job_type.value, len(job.urls))
        try:
            account = self._select(job)
        except NoAccountAvailableError:
            fail_job(self._conn, job, NO_ACCOUNT_REASON, self._clock())
            return get_job(self._conn, job.id)

        bind_account(self._conn, job.id, account.id)
        async with self._pool.account_lock(account.id):
            await self._fetch_with_account(job, account)
        return get_job(self._conn, job.id)

    def _select(self, job: Job) -> AccountRecord:
        account = self._pool.select_account(job)
        if account is None:
            msg = f"no account available for job {job.id}"
            raise NoAccountAvailableError(msg)
        return account

    async def _fetch_with_account(self, job: Job, account: AccountRecord) -> None:
        try:
            session = await self._registry.get_or_create_session(
                account.id, account.cookies, account.proxy,
            )
        except CookieError as e:
            self._pool.record_outcome(account.id, Outcome.FAILURE)
            fail_job(self._conn, job, f"cookie error: {e}", self._clock())
            return

        page_type = self._adapter.page_type_for(job.job_type)
        try:
            fetched = await self._fetch_urls(job, session, page_type)
        except AntiDetectionError as e:
            logger.warning("Account %d hit a challenge: %s", account.id, e)
            self._pool.record_outcome(account.id, Outcome.CHALLENGE)
            fail_job(self._conn, job, ANTI_DETECTION_REASON, self._clock())
            return

        if job.urls and not fetched:
            logger.warning("Account %d could not load any URL of job %d", account.id, job.id)
            self._pool.record_outcome(account.id, Outcome.FAILURE)
        else:
            self._pool.record_outcome(account.id, Outcome.SUCCESS)
        moved = transition_job(self._conn, job.id, stage=Stage.PARSE, status=JobStatus.PENDING,
                               now=self._clock())
        if moved:
            logger.info("Job %d fetched, queued for parsing", job.id)
        else:
            logger.info("Job %d was cancelled while fetching", job.id)

    async def _fetch_urls(self, job: Job, session: BrowserSession, page_type: PageType) -> int:
        """Capture every URL in order and return how many were stored.

        Navigation errors are recorded per URL and do not stop the loop.
        Raises AntiDetectionError on a challenge.
        """
        scroll_selectors = self._adapter.scroll_selectors(page_type)
        total = len(job.urls)
        fetched = 0
        for ordinal, url in enumerate(job.urls):
            logger.info("Job %d: fetching %d/%d %s", job.id, ordinal + 1, total, url)
            try:
                capture = await session.capture(
                    url,
                    scroll_selectors=scroll_selectors,
                    timeout_ms=self._browser_config.timeout_ms,
                )
            except NavigationError as e:
                logger.warning("Job %d: %s", job.id, e)
                self._store.write_failed_snapshot(job.id, url, page_type, ordinal, e.reason)
                update_progress(self._conn, job.id, failed_delta=1)
                await between_urls(self._scheduler_config)
                continue

            verdict = self._sentinel.classify(capture.url, capture.title, capture.content)
            if verdict is Verdict.CHALLENGE:
                rule = self._sentinel.explain(capture.url, capture.title, capture.content) or ""
                self._store.write_failed_snapshot(
                    job.id, url, page_type, ordinal, f"{ANTI_DETECTION_REASON} ({rule})",
                )
                update_progress(self._conn, job.id, failed_delta=1)
                raise AntiDetectionError(url, rule)

            self._store.write_snapshot(job.id, url, capture.content, page_type, ordinal)
            update_progress(self._conn, job.id, fetched_delta=1)
            fetched += 1
            await between_urls(self._scheduler_config)
        return fetched


class ParseStage:
    def __init__(
        self,
        conn: sqlite3.Connection,
        adapter: PlatformAdapter,
        enrichment: EnrichmentTrigger,
        *,
        store: SnapshotStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._conn = conn
        self._adapter = adapter
        self._enrichment = enrichment
        self._store = store or SnapshotStore(conn)
        self._clock = clock

    async def run(self, job: Job) -> Job | None:
        """Parse every fetched snapshot of a parse/pending job, then complete it."""
        if not claim_job(self._conn, job.id, Stage.PARSE, self._clock()):
            logger.info("Job %d already claimed, skipping", job.id)
            return None

        snapshots = self._store.unparsed_snapshots(job.id)
        logger.info("Parsing job %d: %d snapshots", job.id, len(snapshots))
        for snapshot in snapshots:
            self._parse_one(job, snapshot)

        moved = transition_job(self._conn, job.id, stage=Stage.COMPLETED,
                               status=JobStatus.COMPLETED, now=self._clock())
        if moved:
            logger.info("Job %d completed", job.id)
        return get_job(self._conn, job.id)

    def _parse_one(self, job: Job, snapshot: Snapshot) -> None:
        parser = self._adapter.parser_for(snapshot.page_type)
        try:
            if parser is None:
                msg = f"no parser for page type '{snapshot.page_type.value}'"
                raise ParseError(msg)
            data = parser.parse(snapshot.content, snapshot.url)
        except ParseError as e:
            self._record_failure(job, snapshot, str(e))
            return
        except Exception as e:
            logger.warning("Parser crashed on snapshot %d", snapshot.id, exc_info=True)
            self._record_failure(job, snapshot, f"{type(e).__name__}: {e}")
            return

        record = ParsedRecord(
            job_id=job.id,
            snapshot_id=snapshot.id,
            source_url=snapshot.url,
            record_type=job.job_type,
            data=data,
            entity_url=parser.entity_url(data, snapshot.url),
            created_at=self._clock(),
        )
        insert_parsed_record(self._conn, record)
        self._store.mark_parsed(snapshot.id)
        update_progress(self._conn, job.id, parsed_delta=1)

        try:
            self._enrichment.maybe_enqueue(job, record)
        except StorageError:
            logger.warning("Enrichment failed for snapshot %d", snapshot.id, exc_info=True)

    def _record_failure(self, job: Job, snapshot: Snapshot, reason: str) -> None:
        logger.warning("Job %d: snapshot %d failed to parse: %s", job.id, snapshot.id, reason)
        insert_parsed_record(
            self._conn,
            ParsedRecord(
                job_id=job.id,
                snapshot_id=snapshot.id,
                source_url=snapshot.url,
                record_type=job.job_type,
                status=RecordStatus.FAILED,
                error_message=reason,
                created_at=self._clock(),
            ),
        )
        self._store.mark_failed(snapshot.id, reason)
        update_progress(self._conn, job.id, failed_delta=1)
