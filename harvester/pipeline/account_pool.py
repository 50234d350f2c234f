"""Account pool: selection, daily request limits, and failure cooldowns.

Usage state lives in SQLite and rolls over when the calendar day changes
(checked on every selection, no explicit reset job). Validation status is
owned by an external validator; this module only reads it.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum

from harvester.core.config import AccountPoolConfig
from harvester.core.db import (
    eligible_accounts,
    get_account,
    increment_account_usage,
    rollover_daily_counts,
    update_account_health,
)
from harvester.core.schemas import AccountRecord, AccountSelectionMode, Job, ValidationStatus

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CHALLENGE = "challenge"


class AccountPool:
    """Picks the least-used eligible account for a job and tracks its health.

    Usage::

        pool = AccountPool(conn, settings.accounts)
        account = pool.select_account(job)
        if account is None:
            ...  # fail the job: no available account
        pool.record_outcome(account.id, Outcome.SUCCESS)
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: AccountPoolConfig,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._conn = conn
        self._config = config
        self._clock = clock
        self._locks: dict[int, asyncio.Lock] = {}

    def account_lock(self, account_id: int) -> asyncio.Lock:
        """Mutex serializing work that touches one account's session."""
        return self._locks.setdefault(account_id, asyncio.Lock())

    def select_account(self, job: Job) -> AccountRecord | None:
        """Return an eligible account with one request already counted, or None."""
        now = self._clock()
        rolled = rollover_daily_counts(self._conn, now.date())
        if rolled:
            logger.info("Reset daily request counters for %d accounts", rolled)

        if job.account_selection_mode is AccountSelectionMode.SPECIFIC:
            candidates = eligible_accounts(
                self._conn,
                now=now,
                statuses=(ValidationStatus.ACTIVE, ValidationStatus.PENDING),
                account_ids=job.selected_account_ids,
            )
        else:
            candidates = eligible_accounts(self._conn, now=now)

        for candidate in candidates:
            if increment_account_usage(self._conn, candidate.id, now):
                selected = get_account(self._conn, candidate.id)
                if selected is None:
                    continue
                logger.info(
                    "Selected account %d for job %d (%d/%d requests today)",
                    selected.id, job.id,
                    selected.daily_request_count, selected.daily_request_limit,
                )
                return selected
            logger.debug("Account %d reached its limit concurrently, trying next", candidate.id)

        logger.warning("No available account for job %d (%s mode)", job.id,
                       job.account_selection_mode.value)
        return None

    def record_outcome(self, account_id: int, outcome: Outcome) -> AccountRecord | None:
        """Update failure streak and cooldown after an account was used."""
        account = get_account(self._conn, account_id)
        if account is None:
            logger.warning("Outcome for unknown account %d ignored", account_id)
            return None

        if outcome is Outcome.SUCCESS:
            if account.consecutive_failures:
                update_account_health(
                    self._conn, account_id,
                    consecutive_failures=0, cooldown_until=account.cooldown_until,
                )
            return get_account(self._conn, account_id)

        failures = account.consecutive_failures + 1
        cooldown_until = account.cooldown_until
        minutes = self.cooldown_minutes(failures)
        if outcome is Outcome.CHALLENGE:
            minutes = max(minutes, self._config.base_cooldown_minutes)
        if minutes:
            cooldown_until = self._clock() + timedelta(minutes=minutes)
            logger.warning(
                "Account %d cooling down for %d min after %d consecutive failures (%s)",
                account_id, minutes, failures, outcome.value,
            )
        update_account_health(
            self._conn, account_id,
            consecutive_failures=failures, cooldown_until=cooldown_until,
        )
        return get_account(self._conn, account_id)

    def cooldown_minutes(self, consecutive_failures: int) -> int:
        """Escalating cooldown: 0 below the threshold, then doubling up to the cap."""
        threshold = self._config.failure_threshold
        if consecutive_failures < threshold:
            return 0
        minutes = self._config.base_cooldown_minutes * 2 ** (consecutive_failures - threshold)
        return min(minutes, self._config.max_cooldown_minutes)
