"""SQLite persistence for jobs, accounts, snapshots, and parsed records.

Every function takes an open connection and commits its own writes.
sqlite3 failures surface as StorageError.
"""

import functools
import json
import sqlite3
from collections.abc import Callable, Iterable
from datetime import date, datetime
from pathlib import Path
from typing import Any, TypeVar

from harvester.core.errors import StorageError
from harvester.core.schemas import (
    AccountRecord,
    AccountSelectionMode,
    Job,
    JobStatus,
    JobType,
    PageType,
    ParsedRecord,
    Progress,
    ProxyConfig,
    RecordStatus,
    Snapshot,
    SnapshotStatus,
    Stage,
    ValidationStatus,
)

T = TypeVar("T")

_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS jobs (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    name                    TEXT    NOT NULL DEFAULT '',
    job_type                TEXT    NOT NULL,
    stage                   TEXT    NOT NULL DEFAULT 'fetch',
    status                  TEXT    NOT NULL DEFAULT 'pending',
    priority                INTEGER NOT NULL DEFAULT 5,
    account_selection_mode  TEXT    NOT NULL DEFAULT 'rotation',
    selected_account_ids    TEXT    NOT NULL DEFAULT '[]',
    bound_account_id        INTEGER,
    urls_json               TEXT    NOT NULL DEFAULT '[]',
    search_query            TEXT,
    total_items             INTEGER NOT NULL DEFAULT 0,
    fetched_items           INTEGER NOT NULL DEFAULT 0,
    parsed_items            INTEGER NOT NULL DEFAULT 0,
    failed_items            INTEGER NOT NULL DEFAULT 0,
    error_message           TEXT,
    parent_job_id           INTEGER,
    enrichment_depth        INTEGER NOT NULL DEFAULT 0,
    enrichment_key          TEXT,
    created_at              TEXT    NOT NULL,
    started_at              TEXT,
    completed_at            TEXT
);
"""

_JOBS_PICKUP_INDEX = """
CREATE INDEX IF NOT EXISTS idx_jobs_pickup
    ON jobs (stage, status, priority DESC, created_at ASC);
"""

_ACCOUNTS_TABLE = """
CREATE TABLE IF NOT EXISTS accounts (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    label                 TEXT    NOT NULL DEFAULT '',
    cookies               TEXT    NOT NULL DEFAULT '[]',
    proxy_json            TEXT,
    daily_request_count   INTEGER NOT NULL DEFAULT 0,
    daily_request_limit   INTEGER NOT NULL DEFAULT 100,
    usage_date            TEXT,
    consecutive_failures  INTEGER NOT NULL DEFAULT 0,
    cooldown_until        TEXT,
    validation_status     TEXT    NOT NULL DEFAULT 'PENDING',
    last_error_message    TEXT,
    last_used_at          TEXT
);
"""

_SNAPSHOTS_TABLE = """
CREATE TABLE IF NOT EXISTS snapshots (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id         INTEGER NOT NULL,
    url            TEXT    NOT NULL,
    content        TEXT    NOT NULL DEFAULT '',
    page_type      TEXT    NOT NULL,
    status         TEXT    NOT NULL DEFAULT 'fetched',
    ordinal        INTEGER NOT NULL,
    error_message  TEXT,
    fetched_at     TEXT    NOT NULL
);
"""

_PARSED_RECORDS_TABLE = """
CREATE TABLE IF NOT EXISTS parsed_records (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id         INTEGER NOT NULL,
    snapshot_id    INTEGER NOT NULL,
    source_url     TEXT    NOT NULL,
    record_type    TEXT    NOT NULL,
    status         TEXT    NOT NULL DEFAULT 'success',
    data_json      TEXT    NOT NULL DEFAULT '{}',
    entity_url     TEXT    NOT NULL DEFAULT '',
    error_message  TEXT,
    created_at     TEXT    NOT NULL
);
"""

_INDEXES = (
    _JOBS_PICKUP_INDEX,
    "CREATE INDEX IF NOT EXISTS idx_snapshots_job ON snapshots (job_id, ordinal);",
    "CREATE INDEX IF NOT EXISTS idx_records_entity ON parsed_records (entity_url, status);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_enrichment ON jobs (enrichment_key);",
)


def _storage(func: Callable[..., T]) -> Callable[..., T]:
    """Re-raise sqlite3 errors from a query function as StorageError."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as e:
            msg = f"{func.__name__} failed: {e}"
            raise StorageError(msg) from e

    return wrapper


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@_storage
def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(_JOBS_TABLE)
    conn.execute(_ACCOUNTS_TABLE)
    conn.execute(_SNAPSHOTS_TABLE)
    conn.execute(_PARSED_RECORDS_TABLE)
    for statement in _INDEXES:
        conn.execute(statement)
    conn.commit()
    return conn


# --- Jobs ---


@_storage
def insert_job(
    conn: sqlite3.Connection,
    *,
    job_type: JobType,
    urls: list[str],
    name: str = "",
    search_query: str | None = None,
    priority: int = 5,
    account_selection_mode: AccountSelectionMode = AccountSelectionMode.ROTATION,
    selected_account_ids: list[int] | None = None,
    parent_job_id: int | None = None,
    enrichment_depth: int = 0,
    enrichment_key: str | None = None,
    created_at: datetime | None = None,
) -> int:
    """Create a fetch/pending job. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO jobs
            (name, job_type, priority, account_selection_mode, selected_account_ids,
             urls_json, search_query, total_items, parent_job_id, enrichment_depth,
             enrichment_key, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            name,
            job_type.value,
            priority,
            account_selection_mode.value,
            json.dumps(selected_account_ids or []),
            json.dumps(urls),
            search_query,
            len(urls),
            parent_job_id,
            enrichment_depth,
            enrichment_key,
            (created_at or datetime.now()).isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        name=row["name"],
        job_type=JobType(row["job_type"]),
        stage=Stage(row["stage"]),
        status=JobStatus(row["status"]),
        priority=row["priority"],
        account_selection_mode=AccountSelectionMode(row["account_selection_mode"]),
        selected_account_ids=json.loads(row["selected_account_ids"]),
        bound_account_id=row["bound_account_id"],
        urls=json.loads(row["urls_json"]),
        search_query=row["search_query"],
        progress=Progress(
            total=row["total_items"],
            fetched=row["fetched_items"],
            parsed=row["parsed_items"],
            failed=row["failed_items"],
        ),
        error_message=row["error_message"],
        parent_job_id=row["parent_job_id"],
        enrichment_depth=row["enrichment_depth"],
        enrichment_key=row["enrichment_key"],
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
    )


@_storage
def get_job(conn: sqlite3.Connection, job_id: int) -> Job | None:
    row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
    return _row_to_job(row) if row is not None else None


@_storage
def list_jobs(conn: sqlite3.Connection, limit: int = 50) -> list[Job]:
    """Most recent jobs first."""
    rows = conn.execute(
        "SELECT * FROM jobs ORDER BY created_at DESC, id DESC LIMIT ?", (limit,),
    ).fetchall()
    return [_row_to_job(r) for r in rows]


@_storage
def next_pending_job(conn: sqlite3.Connection, stage: Stage) -> Job | None:
    """Oldest highest-priority pending job in the given stage."""
    row = conn.execute(
        """
        SELECT * FROM jobs
        WHERE stage = ? AND status = 'pending'
        ORDER BY priority DESC, created_at ASC, id ASC
        LIMIT 1
        """,
        (stage.value,),
    ).fetchone()
    return _row_to_job(row) if row is not None else None


@_storage
def claim_job(
    conn: sqlite3.Connection, job_id: int, stage: Stage, now: datetime | None = None,
) -> bool:
    """Atomically move a pending job to running. False if someone else got it."""
    cursor = conn.execute(
        """
        UPDATE jobs SET status = 'running', started_at = ?
        WHERE id = ? AND stage = ? AND status = 'pending'
        """,
        ((now or datetime.now()).isoformat(), job_id, stage.value),
    )
    conn.commit()
    return cursor.rowcount == 1


@_storage
def bind_account(conn: sqlite3.Connection, job_id: int, account_id: int) -> None:
    conn.execute("UPDATE jobs SET bound_account_id = ? WHERE id = ?", (account_id, job_id))
    conn.commit()


@_storage
def update_progress(
    conn: sqlite3.Connection,
    job_id: int,
    *,
    fetched_delta: int = 0,
    parsed_delta: int = 0,
    failed_delta: int = 0,
) -> None:
    """Increment job progress counters."""
    conn.execute(
        """
        UPDATE jobs SET
            fetched_items = fetched_items + ?,
            parsed_items = parsed_items + ?,
            failed_items = failed_items + ?
        WHERE id = ?
        """,
        (fetched_delta, parsed_delta, failed_delta, job_id),
    )
    conn.commit()


@_storage
def transition_job(
    conn: sqlite3.Connection,
    job_id: int,
    *,
    stage: Stage,
    status: JobStatus,
    error_message: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Move a job to a new stage/status.

    A cancelled job stays cancelled. Returns False when nothing was updated.
    """
    finished = status in (JobStatus.COMPLETED, JobStatus.FAILED)
    cursor = conn.execute(
        """
        UPDATE jobs SET
            stage = ?,
            status = ?,
            error_message = COALESCE(?, error_message),
            completed_at = CASE WHEN ? THEN ? ELSE completed_at END
        WHERE id = ? AND status != 'cancelled'
        """,
        (
            stage.value,
            status.value,
            error_message,
            int(finished),
            (now or datetime.now()).isoformat(),
            job_id,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


@_storage
def cancel_job(conn: sqlite3.Connection, job_id: int) -> bool:
    """Mark a pending or running job cancelled."""
    cursor = conn.execute(
        """
        UPDATE jobs SET status = 'cancelled'
        WHERE id = ? AND status IN ('pending', 'running')
        """,
        (job_id,),
    )
    conn.commit()
    return cursor.rowcount == 1


@_storage
def enrichment_job_exists(conn: sqlite3.Connection, enrichment_key: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM jobs WHERE enrichment_key = ? LIMIT 1", (enrichment_key,),
    ).fetchone()
    return row is not None


# --- Accounts ---


@_storage
def insert_account(
    conn: sqlite3.Connection,
    *,
    cookies: str,
    label: str = "",
    daily_request_limit: int = 100,
    daily_request_count: int = 0,
    proxy: ProxyConfig | None = None,
    validation_status: ValidationStatus = ValidationStatus.PENDING,
    usage_date: date | None = None,
    last_used_at: datetime | None = None,
    cooldown_until: datetime | None = None,
    consecutive_failures: int = 0,
) -> int:
    """Register an account. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO accounts
            (label, cookies, proxy_json, daily_request_count, daily_request_limit,
             usage_date, consecutive_failures, cooldown_until, validation_status,
             last_used_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            label,
            cookies,
            proxy.model_dump_json() if proxy is not None else None,
            daily_request_count,
            daily_request_limit,
            (usage_date or date.today()).isoformat(),
            consecutive_failures,
            _ts(cooldown_until),
            validation_status.value,
            _ts(last_used_at),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def _row_to_account(row: sqlite3.Row) -> AccountRecord:
    proxy_json = row["proxy_json"]
    return AccountRecord(
        id=row["id"],
        label=row["label"],
        cookies=row["cookies"],
        proxy=ProxyConfig.model_validate_json(proxy_json) if proxy_json else None,
        daily_request_count=row["daily_request_count"],
        daily_request_limit=row["daily_request_limit"],
        usage_date=row["usage_date"],
        consecutive_failures=row["consecutive_failures"],
        cooldown_until=row["cooldown_until"],
        validation_status=ValidationStatus(row["validation_status"]),
        last_error_message=row["last_error_message"],
        last_used_at=row["last_used_at"],
    )


@_storage
def get_account(conn: sqlite3.Connection, account_id: int) -> AccountRecord | None:
    row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
    return _row_to_account(row) if row is not None else None


@_storage
def list_accounts(conn: sqlite3.Connection) -> list[AccountRecord]:
    rows = conn.execute("SELECT * FROM accounts ORDER BY id").fetchall()
    return [_row_to_account(r) for r in rows]


@_storage
def rollover_daily_counts(conn: sqlite3.Connection, today: date) -> int:
    """Zero the request counter of accounts whose counter belongs to an earlier day."""
    cursor = conn.execute(
        """
        UPDATE accounts SET daily_request_count = 0, usage_date = ?
        WHERE usage_date IS NULL OR usage_date < ?
        """,
        (today.isoformat(), today.isoformat()),
    )
    conn.commit()
    return cursor.rowcount


@_storage
def eligible_accounts(
    conn: sqlite3.Connection,
    *,
    now: datetime,
    statuses: Iterable[ValidationStatus] = (ValidationStatus.ACTIVE,),
    account_ids: list[int] | None = None,
) -> list[AccountRecord]:
    """Accounts under their daily limit and out of cooldown, least-used first."""
    status_values = [s.value for s in statuses]
    params: list[Any] = [*status_values, now.isoformat()]
    id_clause = ""
    if account_ids is not None:
        if not account_ids:
            return []
        id_clause = f"AND id IN ({', '.join('?' for _ in account_ids)})"
        params.extend(account_ids)
    rows = conn.execute(
        f"""
        SELECT * FROM accounts
        WHERE validation_status IN ({', '.join('?' for _ in status_values)})
          AND daily_request_count < daily_request_limit
          AND (cooldown_until IS NULL OR cooldown_until <= ?)
          {id_clause}
        ORDER BY daily_request_count ASC,
                 last_used_at IS NOT NULL,
                 last_used_at ASC,
                 id ASC
        """,  # noqa: S608
        params,
    ).fetchall()
    return [_row_to_account(r) for r in rows]


@_storage
def increment_account_usage(
    conn: sqlite3.Connection, account_id: int, now: datetime,
) -> bool:
    """Count one request against the account if it is still under its limit.

    Conditional update: returns False when the account hit its limit (or was
    invalidated) since it was read.
    """
    cursor = conn.execute(
        """
        UPDATE accounts SET
            daily_request_count = daily_request_count + 1,
            last_used_at = ?
        WHERE id = ?
          AND daily_request_count < daily_request_limit
          AND validation_status != 'INVALID'
        """,
        (now.isoformat(), account_id),
    )
    conn.commit()
    return cursor.rowcount == 1


@_storage
def update_account_health(
    conn: sqlite3.Connection,
    account_id: int,
    *,
    consecutive_failures: int,
    cooldown_until: datetime | None,
) -> None:
    conn.execute(
        """
        UPDATE accounts SET consecutive_failures = ?, cooldown_until = ?
        WHERE id = ?
        """,
        (consecutive_failures, _ts(cooldown_until), account_id),
    )
    conn.commit()


@_storage
def set_validation_status(
    conn: sqlite3.Connection,
    account_id: int,
    status: ValidationStatus,
    error_message: str | None = None,
) -> bool:
    """Hook for the external account validator."""
    cursor = conn.execute(
        """
        UPDATE accounts SET validation_status = ?, last_error_message = ?
        WHERE id = ?
        """,
        (status.value, error_message, account_id),
    )
    conn.commit()
    return cursor.rowcount == 1


# --- Snapshots ---


def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    return Snapshot(
        id=row["id"],
        job_id=row["job_id"],
        url=row["url"],
        content=row["content"],
        page_type=PageType(row["page_type"]),
        status=SnapshotStatus(row["status"]),
        ordinal=row["ordinal"],
        error_message=row["error_message"],
        fetched_at=row["fetched_at"],
    )


@_storage
def insert_snapshot(
    conn: sqlite3.Connection,
    *,
    job_id: int,
    url: str,
    page_type: PageType,
    ordinal: int,
    content: str = "",
    status: SnapshotStatus = SnapshotStatus.FETCHED,
    error_message: str | None = None,
    fetched_at: datetime | None = None,
) -> Snapshot:
    fetched_at = fetched_at or datetime.now()
    cursor = conn.execute(
        """
        INSERT INTO snapshots
            (job_id, url, content, page_type, status, ordinal, error_message, fetched_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job_id,
            url,
            content,
            page_type.value,
            status.value,
            ordinal,
            error_message,
            fetched_at.isoformat(),
        ),
    )
    conn.commit()
    return Snapshot(
        id=cursor.lastrowid or 0,
        job_id=job_id,
        url=url,
        content=content,
        page_type=page_type,
        status=status,
        ordinal=ordinal,
        error_message=error_message,
        fetched_at=fetched_at,
    )


@_storage
def get_snapshots(
    conn: sqlite3.Connection, job_id: int, status: SnapshotStatus | None = None,
) -> list[Snapshot]:
    """Snapshots of a job in ordinal order, optionally filtered by status."""
    if status is None:
        rows = conn.execute(
            "SELECT * FROM snapshots WHERE job_id = ? ORDER BY ordinal ASC, id ASC",
            (job_id,),
        ).fetchall()
    else:
        rows = conn.execute(
            """
            SELECT * FROM snapshots WHERE job_id = ? AND status = ?
            ORDER BY ordinal ASC, id ASC
            """,
            (job_id, status.value),
        ).fetchall()
    return [_row_to_snapshot(r) for r in rows]


@_storage
def set_snapshot_status(
    conn: sqlite3.Connection,
    snapshot_id: int,
    status: SnapshotStatus,
    error_message: str | None = None,
) -> None:
    conn.execute(
        """
        UPDATE snapshots SET status = ?, error_message = COALESCE(?, error_message)
        WHERE id = ?
        """,
        (status.value, error_message, snapshot_id),
    )
    conn.commit()


# --- Parsed records ---


def _row_to_record(row: sqlite3.Row) -> ParsedRecord:
    return ParsedRecord(
        id=row["id"],
        job_id=row["job_id"],
        snapshot_id=row["snapshot_id"],
        source_url=row["source_url"],
        record_type=JobType(row["record_type"]),
        status=RecordStatus(row["status"]),
        data=json.loads(row["data_json"]),
        entity_url=row["entity_url"],
        error_message=row["error_message"],
        created_at=row["created_at"],
    )


@_storage
def insert_parsed_record(conn: sqlite3.Connection, record: ParsedRecord) -> int:
    cursor = conn.execute(
        """
        INSERT INTO parsed_records
            (job_id, snapshot_id, source_url, record_type, status, data_json,
             entity_url, error_message, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.job_id,
            record.snapshot_id,
            record.source_url,
            record.record_type.value,
            record.status.value,
            json.dumps(record.data),
            record.entity_url,
            record.error_message,
            record.created_at.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


@_storage
def get_parsed_records(conn: sqlite3.Connection, job_id: int) -> list[ParsedRecord]:
    rows = conn.execute(
        "SELECT * FROM parsed_records WHERE job_id = ? ORDER BY id ASC", (job_id,),
    ).fetchall()
    return [_row_to_record(r) for r in rows]


@_storage
def has_parsed_entity(conn: sqlite3.Connection, entity_url: str) -> bool:
    """True if a successful record already describes this entity."""
    row = conn.execute(
        """
        SELECT 1 FROM parsed_records
        WHERE entity_url = ? AND status = 'success'
        LIMIT 1
        """,
        (entity_url,),
    ).fetchone()
    return row is not None
