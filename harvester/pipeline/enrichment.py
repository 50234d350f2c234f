"""Enrichment trigger: follow-on jobs for entities referenced by parsed records.

A profile that names its current company queues a one-URL company job
instead of fetching the company inline, so the parent job never blocks.
Guards against unbounded chains: child jobs carry a depth, and a reference
is skipped when it was already parsed or already has a job.
"""

import logging
import sqlite3
from dataclasses import dataclass

from harvester.core.config import EnrichmentConfig
from harvester.core.db import enrichment_job_exists, has_parsed_entity, insert_job
from harvester.core.schemas import Job, JobType, ParsedRecord, RecordStatus
from harvester.platforms.base import PlatformAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferenceRule:
    """Record field that points at another entity, and the job that fetches it."""

    record_type: JobType
    field: str
    child_job_type: JobType


DEFAULT_REFERENCE_RULES: tuple[ReferenceRule, ...] = (
    ReferenceRule(JobType.PROFILES, "current_company_url", JobType.COMPANIES),
)


class EnrichmentTrigger:
    def __init__(
        self,
        conn: sqlite3.Connection,
        config: EnrichmentConfig,
        adapter: PlatformAdapter,
        rules: tuple[ReferenceRule, ...] = DEFAULT_REFERENCE_RULES,
    ) -> None:
        self._conn = conn
        self._config = config
        self._adapter = adapter
        self._rules = rules

    def references(self, record: ParsedRecord) -> list[tuple[str, JobType]]:
        """Canonical (url, child job type) pairs a record points at."""
        refs: list[tuple[str, JobType]] = []
        if record.status is not RecordStatus.SUCCESS:
            return refs
        for rule in self._rules:
            if rule.record_type is not record.record_type:
                continue
            value = record.data.get(rule.field)
            if isinstance(value, str) and value.strip():
                refs.append((self._adapter.canonical_url(value), rule.child_job_type))
        return refs

    def maybe_enqueue(self, parent: Job, record: ParsedRecord) -> list[int]:
        """Create child jobs for unseen references. Returns the new job IDs."""
        if not self._config.enabled:
            return []
        if parent.enrichment_depth >= self._config.max_depth:
            logger.debug(
                "Job %d at enrichment depth %d, not enriching further",
                parent.id, parent.enrichment_depth,
            )
            return []

        created: list[int] = []
        for url, child_type in self.references(record):
            if url == parent.enrichment_key:
                continue
            if has_parsed_entity(self._conn, url):
                logger.debug("Entity already parsed, skipping enrichment: %s", url)
                continue
            if enrichment_job_exists(self._conn, url):
                logger.debug("Enrichment job already queued for %s", url)
                continue

            child_id = insert_job(
                self._conn,
                name=f"Enrichment of job {parent.id}: {url}",
                job_type=child_type,
                urls=[url],
                priority=self._config.priority,
                account_selection_mode=parent.account_selection_mode,
                selected_account_ids=parent.selected_account_ids,
                parent_job_id=parent.id,
                enrichment_depth=parent.enrichment_depth + 1,
                enrichment_key=url,
            )
            logger.info("Created %s enrichment job %d from job %d: %s",
                        child_type.value, child_id, parent.id, url)
            created.append(child_id)
        return created
