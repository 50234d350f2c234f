"""Snapshot store: raw page content per job and URL, one row per attempted URL."""

import logging
import sqlite3

from harvester.core.db import get_snapshots, insert_snapshot, set_snapshot_status
from harvester.core.schemas import PageType, Snapshot, SnapshotStatus

logger = logging.getLogger(__name__)


class SnapshotStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def write_snapshot(
        self, job_id: int, url: str, content: str, page_type: PageType, ordinal: int,
    ) -> Snapshot:
        snapshot = insert_snapshot(
            self._conn,
            job_id=job_id,
            url=url,
            content=content,
            page_type=page_type,
            ordinal=ordinal,
        )
        logger.debug("Stored snapshot %d for job %d (%d bytes)", snapshot.id, job_id, len(content))
        return snapshot

    def write_failed_snapshot(
        self, job_id: int, url: str, page_type: PageType, ordinal: int, reason: str,
    ) -> Snapshot:
        """Placeholder for a URL that could not be captured, reason kept inline."""
        snapshot = insert_snapshot(
            self._conn,
            job_id=job_id,
            url=url,
            page_type=page_type,
            ordinal=ordinal,
            status=SnapshotStatus.FAILED,
            error_message=reason,
        )
        logger.debug("Stored failed snapshot %d for job %d: %s", snapshot.id, job_id, reason)
        return snapshot

    def unparsed_snapshots(self, job_id: int) -> list[Snapshot]:
        return get_snapshots(self._conn, job_id, SnapshotStatus.FETCHED)

    def snapshots(self, job_id: int) -> list[Snapshot]:
        return get_snapshots(self._conn, job_id)

    def mark_parsed(self, snapshot_id: int) -> None:
        set_snapshot_status(self._conn, snapshot_id, SnapshotStatus.PARSED)

    def mark_failed(self, snapshot_id: int, reason: str | None = None) -> None:
        set_snapshot_status(self._conn, snapshot_id, SnapshotStatus.FAILED, reason)
