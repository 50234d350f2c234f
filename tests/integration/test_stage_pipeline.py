"""Integration test: fetch -> parse -> enrichment through the orchestrator (no browser)."""

import json
import sqlite3
from collections.abc import Iterator
from datetime import date
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from harvester.core.config import Settings
from harvester.core.db import (
    get_account,
    get_job,
    get_parsed_records,
    init_db,
    insert_account,
    insert_job,
    set_validation_status,
    list_jobs,
)
from harvester.core.errors import CookieError, NavigationError
from harvester.core.schemas import (
    JobStatus,
    JobType,
    PageCapture,
    RecordStatus,
    SnapshotStatus,
    Stage,
    ValidationStatus,
)
from harvester.pipeline.orchestrator import Orchestrator
from harvester.pipeline.snapshot_store import SnapshotStore
from harvester.platforms.linkedin.adapter import LinkedInAdapter

# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

ALICE = "https://www.linkedin.com/in/alice/"
BOB = "https://www.linkedin.com/in/bob/"
CAROL = "https://www.linkedin.com/in/carol/"
ACME = "https://www.linkedin.com/company/acme/"


def _profile_page(name: str, company_slug: str = "acme") -> str:
    return f"""
    <html><body>
    <h1 class="text-heading-xlarge">{name}</h1>
    <div class="text-body-medium break-words">Engineer</div>
    <section data-section="experience">
      <div class="pv-entity__summary-info">
        <h3>Engineer</h3>
        <a href="/company/{company_slug}/?trk=p"><p class="pv-entity__secondary-title">Acme</p></a>
      </div>
    </section>
    </body></html>
    """


_COMPANY_PAGE = """
<html><body><h1 class="org-top-card-summary__title">Acme</h1>
<dl><dt>Industry</dt><dd>Anvils</dd></dl></body></html>
"""

_CHECKPOINT = PageCapture(
    url="https://www.linkedin.com/checkpoint/challenge/AgX",
    title="Security Verification | LinkedIn",
    content="<html><body>Let's do a quick security check</body></html>",
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSession:
    """Serves canned captures; a URL mapped to an exception raises it."""

    def __init__(self, pages: dict[str, Any]) -> None:
        self._pages = pages
        self.visited: list[str] = []

    async def capture(
        self, url: str, *, scroll_selectors: tuple[str, ...] = (), timeout_ms: int | None = None,
    ) -> PageCapture:
        self.visited.append(url)
        page = self._pages[url]
        if isinstance(page, Exception):
            raise page
        if isinstance(page, PageCapture):
            return page
        return PageCapture(url=url, title="LinkedIn", content=page)


class FakeRegistry:
    def __init__(self, session: FakeSession, error: Exception | None = None) -> None:
        self.session = session
        self.error = error
        self.created: list[int] = []
        self.invalidated: list[int] = []
        self.closed = False

    async def get_or_create_session(self, account_id: int, cookies: Any, proxy: Any = None) -> FakeSession:
        if self.error is not None:
            raise self.error
        if account_id not in self.created:
            self.created.append(account_id)
        return self.session

    def account_ids(self) -> list[int]:
        return list(self.created)

    async def invalidate(self, account_id: int) -> None:
        self.created.remove(account_id)
        self.invalidated.append(account_id)

    async def close_all(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

_COOKIES = json.dumps([{"name": "li_at", "value": "x", "domain": ".linkedin.com"}])


@pytest.fixture
def db(tmp_path: Path) -> sqlite3.Connection:
    return init_db(tmp_path / "test.db")


@pytest.fixture(autouse=True)
def no_delays() -> Iterator[AsyncMock]:
    with patch("harvester.pipeline.stages.between_urls", new_callable=AsyncMock) as mock_delay:
        yield mock_delay


@pytest.fixture
def account_id(db: sqlite3.Connection) -> int:
    return insert_account(db, cookies=_COOKIES, validation_status=ValidationStatus.ACTIVE)


def _orchestrator(
    db: sqlite3.Connection, pages: dict[str, Any], error: Exception | None = None,
) -> tuple[Orchestrator, FakeRegistry]:
    registry = FakeRegistry(FakeSession(pages), error)
    orchestrator = Orchestrator.build(
        db, Settings(), LinkedInAdapter(), registry=registry, sleep=AsyncMock(),  # type: ignore[arg-type]
    )
    return orchestrator, registry


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestHappyPath:
    async def test_fetch_parse_complete(
        self, db: sqlite3.Connection, account_id: int, no_delays: AsyncMock,
    ) -> None:
        job_id = insert_job(db, job_type=JobType.PROFILES, urls=[ALICE, BOB])
        orchestrator, registry = _orchestrator(db, {
            ALICE: _profile_page("Alice A"),
            BOB: _profile_page("Bob B"),
        })

        result = await orchestrator.run_one_tick()

        assert result.fetched_job_id == job_id
        assert result.parsed_job_id == job_id
        job = get_job(db, job_id)
        assert job is not None
        assert job.stage is Stage.COMPLETED
        assert job.status is JobStatus.COMPLETED
        assert job.bound_account_id == account_id
        assert job.progress.fetched == job.progress.total == job.progress.parsed == 2
        assert job.progress.failed == 0
        assert registry.session.visited == [ALICE, BOB]
        # Delay after every URL, the last one included
        assert no_delays.await_count == 2

        records = get_parsed_records(db, job_id)
        assert [r.data["full_name"] for r in records] == ["Alice A", "Bob B"]
        assert all(s.status is SnapshotStatus.PARSED for s in SnapshotStore(db).snapshots(job_id))

    async def test_account_usage_counted_once_per_job(
        self, db: sqlite3.Connection, account_id: int,
    ) -> None:
        insert_job(db, job_type=JobType.PROFILES, urls=[ALICE, BOB])
        orchestrator, _ = _orchestrator(db, {ALICE: _profile_page("A"), BOB: _profile_page("B")})
        await orchestrator.run_one_tick()
        account = get_account(db, account_id)
        assert account is not None
        assert account.daily_request_count == 1
        assert account.usage_date == date.today()

    async def test_enrichment_creates_one_company_job(
        self, db: sqlite3.Connection, account_id: int,
    ) -> None:
        job_id = insert_job(db, job_type=JobType.PROFILES, urls=[ALICE, BOB])
        orchestrator, _ = _orchestrator(db, {
            ALICE: _profile_page("Alice A"),
            BOB: _profile_page("Bob B"),
            ACME: _COMPANY_PAGE,
        })

        await orchestrator.run_one_tick()

        children = [j for j in list_jobs(db) if j.parent_job_id == job_id]
        assert len(children) == 1
        child = children[0]
        assert child.job_type is JobType.COMPANIES
        assert child.urls == [ACME]
        assert child.enrichment_depth == 1

        # Next tick runs the company job; its record does not enrich further
        result = await orchestrator.run_one_tick()
        assert result.fetched_job_id == child.id
        done = get_job(db, child.id)
        assert done is not None
        assert done.status is JobStatus.COMPLETED
        [record] = get_parsed_records(db, child.id)
        assert record.entity_url == ACME
        assert record.data["industry"] == "Anvils"
        assert len(list_jobs(db)) == 2

        # A later profile at the same company finds it already parsed
        later = insert_job(db, job_type=JobType.PROFILES, urls=[CAROL])
        orchestrator, _ = _orchestrator(db, {CAROL: _profile_page("Carol C")})
        await orchestrator.run_one_tick()
        assert [j for j in list_jobs(db) if j.parent_job_id == later] == []


class TestChallenge:
    async def test_challenge_at_third_url(self, db: sqlite3.Connection, account_id: int) -> None:
        job_id = insert_job(db, job_type=JobType.PROFILES, urls=[ALICE, BOB, CAROL, ACME])
        orchestrator, registry = _orchestrator(db, {
            ALICE: _profile_page("Alice A"),
            BOB: _profile_page("Bob B"),
            CAROL: _CHECKPOINT,
        })

        result = await orchestrator.run_one_tick()

        assert result.parsed_job_id is None
        job = get_job(db, job_id)
        assert job is not None
        assert job.stage is Stage.FETCH
        assert job.status is JobStatus.FAILED
        assert job.error_message == "anti-detection triggered"
        assert job.progress.fetched == 2
        assert job.progress.failed == 1

        snapshots = SnapshotStore(db).snapshots(job_id)
        assert [s.url for s in snapshots] == [ALICE, BOB, CAROL]
        assert [s.status for s in snapshots] == [
            SnapshotStatus.FETCHED, SnapshotStatus.FETCHED, SnapshotStatus.FAILED,
        ]
        assert registry.session.visited == [ALICE, BOB, CAROL]

        account = get_account(db, account_id)
        assert account is not None
        assert account.consecutive_failures == 1
        assert account.cooldown_until is not None

    async def test_cooled_down_account_not_reused(self, db: sqlite3.Connection, account_id: int) -> None:
        insert_job(db, job_type=JobType.PROFILES, urls=[CAROL])
        second = insert_job(db, job_type=JobType.PROFILES, urls=[ALICE])
        orchestrator, _ = _orchestrator(db, {CAROL: _CHECKPOINT, ALICE: _profile_page("A")})

        await orchestrator.run_one_tick()
        await orchestrator.run_one_tick()

        job = get_job(db, second)
        assert job is not None
        assert job.status is JobStatus.FAILED
        assert job.error_message == "no available account"


class TestPerItemFailures:
    async def test_navigation_error_does_not_abort(
        self, db: sqlite3.Connection, account_id: int,
    ) -> None:
        job_id = insert_job(db, job_type=JobType.PROFILES, urls=[ALICE, BOB, CAROL])
        orchestrator, _ = _orchestrator(db, {
            ALICE: _profile_page("Alice A"),
            BOB: NavigationError(BOB, "timeout after 30000ms"),
            CAROL: "<html><body><p>Page not found</p></body></html>",
        })

        await orchestrator.run_one_tick()

        job = get_job(db, job_id)
        assert job is not None
        assert job.status is JobStatus.COMPLETED
        assert job.progress.fetched == 2
        assert job.progress.parsed == 1
        # Bob failed to load, Carol failed to parse
        assert job.progress.failed == 2

        statuses = {s.url: s.status for s in SnapshotStore(db).snapshots(job_id)}
        assert statuses == {
            ALICE: SnapshotStatus.PARSED,
            BOB: SnapshotStatus.FAILED,
            CAROL: SnapshotStatus.FAILED,
        }
        records = {r.source_url: r.status for r in get_parsed_records(db, job_id)}
        assert records == {ALICE: RecordStatus.SUCCESS, CAROL: RecordStatus.FAILED}

    async def test_every_url_unreachable_counts_as_account_failure(
        self, db: sqlite3.Connection, account_id: int,
    ) -> None:
        job_id = insert_job(db, job_type=JobType.PROFILES, urls=[ALICE, BOB])
        orchestrator, _ = _orchestrator(db, {
            ALICE: NavigationError(ALICE, "Target page, context or browser has been closed"),
            BOB: NavigationError(BOB, "Target page, context or browser has been closed"),
        })

        await orchestrator.run_one_tick()

        job = get_job(db, job_id)
        assert job is not None
        assert job.progress.fetched == 0
        assert job.progress.failed == 2
        account = get_account(db, account_id)
        assert account is not None
        assert account.consecutive_failures == 1

    async def test_partial_success_resets_failure_streak(
        self, db: sqlite3.Connection, account_id: int,
    ) -> None:
        insert_job(db, job_type=JobType.PROFILES, urls=[ALICE])
        insert_job(db, job_type=JobType.PROFILES, urls=[BOB, CAROL])
        orchestrator, _ = _orchestrator(db, {
            ALICE: NavigationError(ALICE, "timeout after 30000ms"),
            BOB: NavigationError(BOB, "timeout after 30000ms"),
            CAROL: _profile_page("Carol C"),
        })

        await orchestrator.run_one_tick()
        account = get_account(db, account_id)
        assert account is not None
        assert account.consecutive_failures == 1

        await orchestrator.run_one_tick()
        account = get_account(db, account_id)
        assert account is not None
        assert account.consecutive_failures == 0


class TestNoAccount:
    async def test_job_fails_without_accounts(self, db: sqlite3.Connection) -> None:
        job_id = insert_job(db, job_type=JobType.PROFILES, urls=[ALICE])
        orchestrator, registry = _orchestrator(db, {ALICE: _profile_page("A")})

        await orchestrator.run_one_tick()

        job = get_job(db, job_id)
        assert job is not None
        assert job.status is JobStatus.FAILED
        assert job.error_message == "no available account"
        assert registry.created == []


class TestCookieError:
    async def test_rejected_cookies_fail_job_without_invalidating(
        self, db: sqlite3.Connection, account_id: int,
    ) -> None:
        job_id = insert_job(db, job_type=JobType.PROFILES, urls=[ALICE, BOB])
        orchestrator, registry = _orchestrator(
            db, {}, error=CookieError("browser rejected cookies for account 1: invalid domain"),
        )

        await orchestrator.run_one_tick()

        job = get_job(db, job_id)
        assert job is not None
        assert job.stage is Stage.FETCH
        assert job.status is JobStatus.FAILED
        assert job.error_message is not None
        assert job.error_message.startswith("cookie error")
        assert job.bound_account_id == account_id
        assert SnapshotStore(db).snapshots(job_id) == []
        assert registry.session.visited == []

        account = get_account(db, account_id)
        assert account is not None
        assert account.consecutive_failures == 1
        assert account.validation_status is ValidationStatus.ACTIVE


class TestInvalidAccountSessions:
    async def test_session_closed_once_account_marked_invalid(
        self, db: sqlite3.Connection, account_id: int,
    ) -> None:
        insert_job(db, job_type=JobType.PROFILES, urls=[ALICE])
        orchestrator, registry = _orchestrator(db, {ALICE: _profile_page("A")})
        await orchestrator.run_one_tick()
        assert registry.account_ids() == [account_id]

        set_validation_status(db, account_id, ValidationStatus.INVALID, "session expired")
        await orchestrator.run_one_tick()

        assert registry.invalidated == [account_id]
        assert registry.account_ids() == []

    async def test_valid_account_session_kept(
        self, db: sqlite3.Connection, account_id: int,
    ) -> None:
        insert_job(db, job_type=JobType.PROFILES, urls=[ALICE])
        orchestrator, registry = _orchestrator(db, {ALICE: _profile_page("A")})
        await orchestrator.run_one_tick()
        await orchestrator.run_one_tick()

        assert registry.invalidated == []
        assert registry.account_ids() == [account_id]
