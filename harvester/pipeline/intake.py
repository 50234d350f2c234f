"""Job intake and status, the surface handed to the external API layer.

The API layer authenticates callers and enforces quotas before calling in.
"""

import logging
import sqlite3

from harvester.core import db
from harvester.core.schemas import JobRequest, JobStatusView
from harvester.platforms.base import PlatformAdapter

logger = logging.getLogger(__name__)


def submit_job(conn: sqlite3.Connection, request: JobRequest, adapter: PlatformAdapter) -> int:
    """Create a fetch/pending job from an intake request. Returns the job ID."""
    if request.search_query:
        urls = adapter.search_urls(request.search_query, request.max_pages)
    else:
        urls = list(request.urls)

    job_id = db.insert_job(
        conn,
        name=request.name,
        job_type=request.job_type,
        urls=urls,
        search_query=request.search_query,
        priority=request.priority,
        account_selection_mode=request.account_selection_mode,
        selected_account_ids=request.selected_account_ids,
    )
    logger.info("Submitted %s job %d with %d URLs", request.job_type.value, job_id, len(urls))
    return job_id


def get_job_status(conn: sqlite3.Connection, job_id: int) -> JobStatusView | None:
    job = db.get_job(conn, job_id)
    if job is None:
        return None
    return JobStatusView(
        id=job.id,
        stage=job.stage,
        status=job.status,
        progress=job.progress,
        error_message=job.error_message,
    )


def cancel_job(conn: sqlite3.Connection, job_id: int) -> bool:
    """Cancel a pending or running job.

    Takes effect at pickup: a stage already running is not interrupted, but
    it will not move the job out of the cancelled state when it finishes.
    """
    cancelled = db.cancel_job(conn, job_id)
    if cancelled:
        logger.info("Cancelled job %d", job_id)
    return cancelled
