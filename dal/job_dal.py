"""Durable job queue storage on the jobs table.

State only moves forward: waiting -> active -> completed | failed. A job
whose worker stopped renewing its lease stays `active` and becomes
claimable again by another worker; it never returns to `waiting`. After
`max_attempts` claims an expired job is failed as stalled instead.
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiosqlite

from models.job_models import JobKind, JobPayload, JobRecord, JobState, decode_payload
from utils.database_init import AsyncDatabaseInitializer
from utils.errors import LeaseLostError

# One run plus one recovery after a stalled worker.
DEFAULT_MAX_ATTEMPTS = 2
STALLED_REASON = "Job stalled more than allowable limit"


class JobDAL:
    """Data access layer for queued jobs."""

    _COLUMNS = (
        "id",
        "kind",
        "payload",
        "state",
        "progress",
        "result",
        "failed_reason",
        "attempts",
        "locked_by",
        "locked_until",
        "created_at",
        "updated_at",
        "finished_at",
    )
    _COLUMN_LIST = ", ".join(_COLUMNS)

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def enqueue(self, payload: JobPayload) -> JobRecord:
        """Insert a `waiting` job and return it once committed."""
        now = time.time()
        job_id = uuid.uuid4().hex
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT INTO jobs (id, kind, payload, state, progress, attempts, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, 0, 0, ?, ?)",
                (job_id, payload.kind.value, payload.to_json(), JobState.WAITING.value, now, now),
            )
            await conn.commit()
        return JobRecord(
            id=job_id,
            kind=payload.kind,
            payload=payload,
            created_at=now,
            updated_at=now,
        )

    async def get(self, job_id: str) -> Optional[JobRecord]:
        """Return the job for `job_id`, or None if it never existed or was pruned."""
        async with self._db.connection() as conn:
            cur = await conn.execute(f"SELECT {self._COLUMN_LIST} FROM jobs WHERE id = ?", (job_id,))
            row = await cur.fetchone()
        return self._row_to_record(row) if row else None

    async def list_by_state(self, state: JobState) -> List[JobRecord]:
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMN_LIST} FROM jobs WHERE state = ? ORDER BY created_at ASC, rowid ASC",
                (state.value,),
            )
            rows = await cur.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def claim(
        self,
        worker_id: str,
        lease_seconds: float,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> Optional[JobRecord]:
        """Atomically hand the oldest claimable job to `worker_id`.

        Claimable means `waiting`, or `active` with an expired lease and fewer
        than `max_attempts` attempts so far. Jobs past that limit are left for
        `fail_stalled`.

        Returns:
            The claimed job in state `active`, or None when nothing is claimable.
        """
        now = time.time()
        async with self._db.connection() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                cur = await conn.execute(
                    "SELECT id FROM jobs WHERE state = ? "
                    "OR (state = ? AND locked_until < ? AND attempts < ?) "
                    "ORDER BY created_at ASC, rowid ASC LIMIT 1",
                    (JobState.WAITING.value, JobState.ACTIVE.value, now, max_attempts),
                )
                row = await cur.fetchone()
                if row is None:
                    await conn.rollback()
                    return None
                await conn.execute(
                    "UPDATE jobs SET state = ?, attempts = attempts + 1, locked_by = ?, "
                    "locked_until = ?, updated_at = ? WHERE id = ?",
                    (JobState.ACTIVE.value, worker_id, now + lease_seconds, now, row["id"]),
                )
                cur = await conn.execute(f"SELECT {self._COLUMN_LIST} FROM jobs WHERE id = ?", (row["id"],))
                claimed = await cur.fetchone()
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
        return self._row_to_record(claimed)

    async def update_progress(self, job_id: str, worker_id: str, progress: int, lease_seconds: float) -> None:
        """Raise progress (never lowers it) and renew the lease.

        Raises:
            LeaseLostError: if the job is no longer active under `worker_id`.
        """
        progress = max(0, min(100, int(progress)))
        now = time.time()
        await self._guarded_update(
            job_id,
            "UPDATE jobs SET progress = MAX(progress, ?), locked_until = ?, updated_at = ? "
            "WHERE id = ? AND state = ? AND locked_by = ?",
            (progress, now + lease_seconds, now, job_id, JobState.ACTIVE.value, worker_id),
        )

    async def renew_lease(self, job_id: str, worker_id: str, lease_seconds: float) -> None:
        """Push the lease deadline forward without touching progress.

        Raises:
            LeaseLostError: if the job is no longer active under `worker_id`.
        """
        now = time.time()
        await self._guarded_update(
            job_id,
            "UPDATE jobs SET locked_until = ?, updated_at = ? WHERE id = ? AND state = ? AND locked_by = ?",
            (now + lease_seconds, now, job_id, JobState.ACTIVE.value, worker_id),
        )

    async def complete(
        self,
        job_id: str,
        worker_id: str,
        result: Dict[str, Any],
        progress: Optional[int] = None,
        in_transaction: Optional[Callable[[aiosqlite.Connection], Awaitable[None]]] = None,
    ) -> None:
        """Mark the job completed with `result`.

        `in_transaction`, when given, runs on the same connection after the
        lease check and commits or rolls back together with the state change,
        so output rows are never stored for a job that did not complete.

        Raises:
            LeaseLostError: if the job is no longer active under `worker_id`.
        """
        now = time.time()
        async with self._db.connection() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                cur = await conn.execute(
                    "UPDATE jobs SET state = ?, result = ?, progress = MAX(progress, ?), "
                    "locked_by = NULL, locked_until = NULL, updated_at = ?, finished_at = ? "
                    "WHERE id = ? AND state = ? AND locked_by = ?",
                    (
                        JobState.COMPLETED.value,
                        json.dumps(result),
                        progress if progress is not None else 0,
                        now,
                        now,
                        job_id,
                        JobState.ACTIVE.value,
                        worker_id,
                    ),
                )
                if cur.rowcount != 1:
                    await conn.rollback()
                    raise LeaseLostError(job_id)
                if in_transaction is not None:
                    await in_transaction(conn)
                await conn.commit()
            except LeaseLostError:
                raise
            except BaseException:
                await conn.rollback()
                raise

    async def fail(self, job_id: str, worker_id: str, reason: str) -> None:
        now = time.time()
        await self._guarded_update(
            job_id,
            "UPDATE jobs SET state = ?, failed_reason = ?, locked_by = NULL, locked_until = NULL, "
            "updated_at = ?, finished_at = ? WHERE id = ? AND state = ? AND locked_by = ?",
            (JobState.FAILED.value, reason, now, now, job_id, JobState.ACTIVE.value, worker_id),
        )

    async def fail_stalled(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> int:
        """Fail `active` jobs whose lease expired after `max_attempts` claims.

        Returns:
            Number of jobs moved to `failed`.
        """
        now = time.time()
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "UPDATE jobs SET state = ?, failed_reason = ?, locked_by = NULL, locked_until = NULL, "
                "updated_at = ?, finished_at = ? WHERE state = ? AND locked_until < ? AND attempts >= ?",
                (JobState.FAILED.value, STALLED_REASON, now, now, JobState.ACTIVE.value, now, max_attempts),
            )
            stalled = cur.rowcount if cur.rowcount and cur.rowcount > 0 else 0
            await conn.commit()
        return stalled

    async def prune_terminal(self, keep_completed: int, keep_failed: int) -> int:
        """Delete all but the newest `keep_completed` completed and `keep_failed` failed jobs.

        Returns:
            Number of rows removed. Waiting and active jobs are never touched.
        """
        removed = 0
        async with self._db.connection() as conn:
            for state, keep in ((JobState.COMPLETED, keep_completed), (JobState.FAILED, keep_failed)):
                cur = await conn.execute(
                    "DELETE FROM jobs WHERE state = ? AND id NOT IN ("
                    "SELECT id FROM jobs WHERE state = ? ORDER BY finished_at DESC, rowid DESC LIMIT ?)",
                    (state.value, state.value, max(0, keep)),
                )
                removed += cur.rowcount if cur.rowcount and cur.rowcount > 0 else 0
            await conn.commit()
        return removed

    async def _guarded_update(self, job_id: str, sql: str, params: tuple) -> None:
        async with self._db.connection() as conn:
            cur = await conn.execute(sql, params)
            await conn.commit()
            if cur.rowcount != 1:
                raise LeaseLostError(job_id)

    def _row_to_record(self, row: aiosqlite.Row) -> JobRecord:
        kind = JobKind(row["kind"])
        return JobRecord(
            id=row["id"],
            kind=kind,
            payload=decode_payload(kind, row["payload"]),
            state=JobState(row["state"]),
            progress=int(row["progress"] or 0),
            result=json.loads(row["result"]) if row["result"] else None,
            failed_reason=row["failed_reason"],
            attempts=int(row["attempts"] or 0),
            locked_by=row["locked_by"],
            locked_until=row["locked_until"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            finished_at=row["finished_at"],
        )
