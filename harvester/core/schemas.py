"""Core data models for the harvester."""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class JobType(str, Enum):
    PROFILES = "profiles"
    COMPANIES = "companies"
    SEARCH = "search"


class Stage(str, Enum):
    FETCH = "fetch"
    PARSE = "parse"
    COMPLETED = "completed"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AccountSelectionMode(str, Enum):
    ROTATION = "rotation"
    SPECIFIC = "specific"


class ValidationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    INVALID = "INVALID"


class PageType(str, Enum):
    PROFILE = "profile"
    ORGANIZATION = "organization"
    SEARCH_PAGE = "search_page"


class SnapshotStatus(str, Enum):
    FETCHED = "fetched"
    PARSED = "parsed"
    FAILED = "failed"


class RecordStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class Progress(BaseModel):
    """Per-job counters. Kept on failed jobs as a record of partial work."""

    total: int = Field(default=0, ge=0)
    fetched: int = Field(default=0, ge=0)
    parsed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)


class Job(BaseModel):
    """A unit of extraction work moving through the fetch and parse stages."""

    id: int
    name: str = ""
    job_type: JobType
    stage: Stage = Stage.FETCH
    status: JobStatus = JobStatus.PENDING
    priority: int = 5
    account_selection_mode: AccountSelectionMode = AccountSelectionMode.ROTATION
    selected_account_ids: list[int] = Field(default_factory=list)
    bound_account_id: int | None = None
    urls: list[str] = Field(default_factory=list)
    search_query: str | None = None
    progress: Progress = Field(default_factory=Progress)
    error_message: str | None = None
    parent_job_id: int | None = None
    enrichment_depth: int = 0
    enrichment_key: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class ProxyConfig(BaseModel):
    """Proxy consumed by one account's browser."""

    server: str
    username: str | None = None
    password: str | None = None

    def to_launch_option(self) -> dict[str, str]:
        option = {"server": self.server}
        if self.username:
            option["username"] = self.username
        if self.password:
            option["password"] = self.password
        return option


class AccountRecord(BaseModel):
    """An authenticated platform account and its usage counters."""

    id: int
    label: str = ""
    cookies: str = "[]"
    proxy: ProxyConfig | None = None
    daily_request_count: int = 0
    daily_request_limit: int = 100
    usage_date: date | None = None
    consecutive_failures: int = 0
    cooldown_until: datetime | None = None
    validation_status: ValidationStatus = ValidationStatus.PENDING
    last_error_message: str | None = None
    last_used_at: datetime | None = None


class Snapshot(BaseModel):
    """Raw page content captured for one URL of one job.

    Frozen: content never changes, status transitions go through the store.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    job_id: int
    url: str
    content: str = ""
    page_type: PageType
    status: SnapshotStatus = SnapshotStatus.FETCHED
    ordinal: int
    error_message: str | None = None
    fetched_at: datetime = Field(default_factory=datetime.now)


class ParsedRecord(BaseModel):
    """Structured output of the parser for one snapshot."""

    model_config = ConfigDict(frozen=True)

    id: int = 0
    job_id: int
    snapshot_id: int
    source_url: str
    record_type: JobType
    status: RecordStatus = RecordStatus.SUCCESS
    data: dict[str, Any] = Field(default_factory=dict)
    entity_url: str = ""
    error_message: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class JobRequest(BaseModel):
    """Job intake payload handed over by the API layer."""

    name: str = ""
    job_type: JobType
    urls: list[str] = Field(default_factory=list)
    search_query: str | None = None
    max_pages: int = Field(default=1, ge=1, le=10)
    account_selection_mode: AccountSelectionMode = AccountSelectionMode.ROTATION
    selected_account_ids: list[int] = Field(default_factory=list)
    priority: int = 5

    @field_validator("urls")
    @classmethod
    def strip_urls(cls, v: list[str]) -> list[str]:
        return [u.strip() for u in v if u.strip()]

    @model_validator(mode="after")
    def check_targets(self) -> "JobRequest":
        query = (self.search_query or "").strip()
        if bool(self.urls) == bool(query):
            msg = "exactly one of urls or search_query must be given"
            raise ValueError(msg)
        if query and self.job_type is not JobType.SEARCH:
            msg = "search_query is only valid for search jobs"
            raise ValueError(msg)
        if (
            self.account_selection_mode is AccountSelectionMode.SPECIFIC
            and not self.selected_account_ids
        ):
            msg = "specific account selection requires selected_account_ids"
            raise ValueError(msg)
        return self


class JobStatusView(BaseModel):
    """Job status exposed to the API layer."""

    id: int
    stage: Stage
    status: JobStatus
    progress: Progress
    error_message: str | None = None


class PageCapture(BaseModel):
    """Final state of a page after navigation: what the sentinel inspects."""

    model_config = ConfigDict(frozen=True)

    url: str
    title: str = ""
    content: str = ""
