"""Tests for data models: job requests, proxies, frozen records."""

import pytest
from pydantic import ValidationError

from harvester.core.schemas import (
    AccountSelectionMode,
    Job,
    JobRequest,
    JobStatus,
    JobType,
    PageCapture,
    ParsedRecord,
    ProxyConfig,
    Stage,
)


class TestJobRequest:
    def test_urls_request(self) -> None:
        r = JobRequest(job_type=JobType.PROFILES, urls=["https://www.linkedin.com/in/a/"])
        assert r.account_selection_mode is AccountSelectionMode.ROTATION
        assert r.priority == 5

    def test_blank_urls_dropped(self) -> None:
        r = JobRequest(job_type=JobType.PROFILES, urls=["  https://x/in/a/ ", "", "   "])
        assert r.urls == ["https://x/in/a/"]

    def test_needs_a_target(self) -> None:
        with pytest.raises(ValidationError):
            JobRequest(job_type=JobType.PROFILES)

    def test_urls_and_query_exclusive(self) -> None:
        with pytest.raises(ValidationError):
            JobRequest(job_type=JobType.SEARCH, urls=["https://x/"], search_query="python")

    def test_query_only_for_search_jobs(self) -> None:
        with pytest.raises(ValidationError):
            JobRequest(job_type=JobType.COMPANIES, search_query="acme")

    def test_search_query_accepted(self) -> None:
        r = JobRequest(job_type=JobType.SEARCH, search_query="python engineer", max_pages=3)
        assert r.max_pages == 3

    def test_max_pages_bounds(self) -> None:
        with pytest.raises(ValidationError):
            JobRequest(job_type=JobType.SEARCH, search_query="x", max_pages=0)
        with pytest.raises(ValidationError):
            JobRequest(job_type=JobType.SEARCH, search_query="x", max_pages=11)

    def test_specific_mode_requires_ids(self) -> None:
        with pytest.raises(ValidationError):
            JobRequest(
                job_type=JobType.PROFILES,
                urls=["https://x/in/a/"],
                account_selection_mode=AccountSelectionMode.SPECIFIC,
            )

    def test_unknown_job_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            JobRequest(job_type="jobs", urls=["https://x/"])  # type: ignore[arg-type]


class TestJob:
    def test_defaults(self) -> None:
        job = Job(id=1, job_type=JobType.PROFILES)
        assert job.stage is Stage.FETCH
        assert job.status is JobStatus.PENDING
        assert job.progress.total == 0
        assert job.enrichment_depth == 0


class TestProxyConfig:
    def test_server_only(self) -> None:
        assert ProxyConfig(server="http://p:8080").to_launch_option() == {"server": "http://p:8080"}

    def test_with_credentials(self) -> None:
        option = ProxyConfig(server="http://p:8080", username="u", password="pw").to_launch_option()
        assert option == {"server": "http://p:8080", "username": "u", "password": "pw"}


class TestFrozenModels:
    def test_parsed_record_immutable(self) -> None:
        record = ParsedRecord(job_id=1, snapshot_id=1, source_url="u", record_type=JobType.PROFILES)
        with pytest.raises(ValidationError):
            record.entity_url = "other"  # type: ignore[misc]

    def test_page_capture_defaults(self) -> None:
        capture = PageCapture(url="https://x/")
        assert capture.title == ""
        assert capture.content == ""
