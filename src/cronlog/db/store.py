"""
Slot Store for cronlog

Persists daily jobs, their 24 hour slots and the slot event history in
SQLite. Every status transition is a single conditional UPDATE guarded by the
slot's current status (compare-and-set). That guard is the only concurrency
control in the system: overlapping triggers, retry threads and a second
process sharing the database all race through it.

Connections are opened per operation, so the store is safe to share between
scheduler threads.
"""

import logging
import sqlite3
from collections.abc import Iterable
from datetime import date, datetime, timezone
from pathlib import Path

from cronlog.core.paths import DB_PATH
from cronlog.core.retry import retry_database_operation
from cronlog.db.migrations import get_connection, init_database
from cronlog.models import CLAIMABLE_STATUSES, HourSlot, Job, SlotEvent, SlotStatus

logger = logging.getLogger(__name__)

_SLOT_COLUMNS = """
    job_date, hour_range, status, attempts, last_error, record_count,
    file_path, storage_key, remote_location, uploaded_ts, created_ts, updated_ts
"""


def _to_iso(dt: datetime) -> str:
    """Normalise a timestamp to the UTC ISO form used for every *_ts column."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_slot(row: sqlite3.Row) -> HourSlot:
    return HourSlot(
        job_date=date.fromisoformat(row["job_date"]),
        hour_range=row["hour_range"],
        status=SlotStatus(row["status"]),
        attempts=row["attempts"],
        last_error=row["last_error"],
        record_count=row["record_count"],
        file_path=row["file_path"],
        storage_key=row["storage_key"],
        remote_location=row["remote_location"],
        uploaded_at=_parse_ts(row["uploaded_ts"]),
        created_at=datetime.fromisoformat(row["created_ts"]),
        updated_at=datetime.fromisoformat(row["updated_ts"]),
    )


class SlotStore:
    """
    SQLite-backed persistence for jobs and hour slots.

    The store never decides *whether* a slot should be processed; it only
    applies transitions atomically and reports whether they took effect.
    """

    def __init__(self, db_path: Path | str | None = None, auto_migrate: bool = True):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database
            auto_migrate: Apply pending schema migrations on construction
        """
        self.db_path = Path(db_path) if db_path else DB_PATH
        if auto_migrate:
            init_database(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        return get_connection(self.db_path)

    def _add_event(
        self,
        conn: sqlite3.Connection,
        job_date: str,
        hour_range: str,
        action: str,
        message: str | None,
        ts: str,
    ) -> None:
        conn.execute(
            """
            INSERT INTO slot_events (job_date, hour_range, action, message, ts)
            VALUES (?, ?, ?, ?, ?)
            """,
            (job_date, hour_range, action, message, ts),
        )

    def _touch_job(self, conn: sqlite3.Connection, job_date: str, ts: str) -> None:
        conn.execute("UPDATE jobs SET updated_ts = ? WHERE job_date = ?", (ts, job_date))

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    @retry_database_operation
    def create_job(self, job_date: date, hour_ranges: Iterable[str]) -> tuple[Job, bool]:
        """
        Create a job and its slots in one transaction, unless it exists.

        Args:
            job_date: Calendar date of the job
            hour_ranges: Slot keys in day order

        Returns:
            (job, created) where created is False if the job already existed
        """
        key = job_date.isoformat()
        now = _now_iso()

        conn = self._connect()
        try:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO jobs (job_date, created_ts, updated_ts) VALUES (?, ?, ?)",
                (key, now, now),
            )
            created = cursor.rowcount == 1

            if created:
                conn.executemany(
                    """
                    INSERT INTO hour_slots
                    (job_date, hour_range, slot_index, status, attempts, created_ts, updated_ts)
                    VALUES (?, ?, ?, 'pending', 0, ?, ?)
                    """,
                    [(key, hour_range, index, now, now) for index, hour_range in enumerate(hour_ranges)],
                )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

        job = self.get_job(job_date)
        if job is None:
            raise sqlite3.DatabaseError(f"Job {key} missing immediately after creation")
        return job, created

    @retry_database_operation
    def get_job(self, job_date: date) -> Job | None:
        """Get a job with all of its slots in day order."""
        key = job_date.isoformat()

        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT job_date, created_ts, updated_ts FROM jobs WHERE job_date = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None

            slot_rows = conn.execute(
                f"SELECT {_SLOT_COLUMNS} FROM hour_slots WHERE job_date = ? ORDER BY slot_index",
                (key,),
            ).fetchall()
        finally:
            conn.close()

        return Job(
            job_date=job_date,
            created_at=datetime.fromisoformat(row["created_ts"]),
            updated_at=datetime.fromisoformat(row["updated_ts"]),
            hour_slots=[_row_to_slot(r) for r in slot_rows],
        )

    @retry_database_operation
    def list_job_dates(self, before: date | None = None) -> list[date]:
        """List job dates, oldest first, optionally only those before a date."""
        conn = self._connect()
        try:
            if before is None:
                rows = conn.execute("SELECT job_date FROM jobs ORDER BY job_date").fetchall()
            else:
                rows = conn.execute(
                    "SELECT job_date FROM jobs WHERE job_date < ? ORDER BY job_date",
                    (before.isoformat(),),
                ).fetchall()
        finally:
            conn.close()

        return [date.fromisoformat(r["job_date"]) for r in rows]

    @retry_database_operation
    def delete_jobs_before(self, cutoff: date, dry_run: bool = False) -> list[date]:
        """
        Delete jobs dated strictly before ``cutoff``.

        Jobs with a slot currently PROCESSING are skipped so a sweep never
        races an in-flight attempt. Slots and events cascade.

        Returns:
            Dates that were deleted (or would be, when dry_run)
        """
        eligible = """
            job_date < ?
            AND NOT EXISTS (
                SELECT 1 FROM hour_slots s
                WHERE s.job_date = jobs.job_date AND s.status = 'processing'
            )
        """

        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute(
                f"SELECT job_date FROM jobs WHERE {eligible} ORDER BY job_date",
                (cutoff.isoformat(),),
            ).fetchall()

            if not dry_run and rows:
                conn.execute(f"DELETE FROM jobs WHERE {eligible}", (cutoff.isoformat(),))
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

        return [date.fromisoformat(r["job_date"]) for r in rows]

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    @retry_database_operation
    def get_slot(self, job_date: date, hour_range: str) -> HourSlot | None:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {_SLOT_COLUMNS} FROM hour_slots WHERE job_date = ? AND hour_range = ?",
                (job_date.isoformat(), hour_range),
            ).fetchone()
        finally:
            conn.close()

        return _row_to_slot(row) if row else None

    @retry_database_operation
    def list_slots(
        self,
        status: SlotStatus | None = None,
        job_date: date | None = None,
        attempts_below: int | None = None,
        updated_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[HourSlot]:
        """List slots matching all given filters, oldest window first."""
        clauses = []
        params: list = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if job_date is not None:
            clauses.append("job_date = ?")
            params.append(job_date.isoformat())
        if attempts_below is not None:
            clauses.append("attempts < ?")
            params.append(attempts_below)
        if updated_before is not None:
            clauses.append("updated_ts < ?")
            params.append(_to_iso(updated_before))

        sql = f"SELECT {_SLOT_COLUMNS} FROM hour_slots"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY job_date, slot_index"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()

        return [_row_to_slot(r) for r in rows]

    @retry_database_operation
    def claim_slot(self, job_date: date, hour_range: str, max_attempts: int) -> HourSlot | None:
        """
        Compare-and-set a slot from PENDING/FAILED to PROCESSING.

        The attempt counter is incremented as part of the same UPDATE.

        Returns:
            The claimed slot, or None if another caller holds it or it is
            not claimable (processing, completed, exhausted)
        """
        key = job_date.isoformat()
        now = _now_iso()
        placeholders = ", ".join("?" for _ in CLAIMABLE_STATUSES)

        conn = self._connect()
        try:
            cursor = conn.execute(
                f"""
                UPDATE hour_slots
                SET status = 'processing', attempts = attempts + 1, updated_ts = ?
                WHERE job_date = ? AND hour_range = ?
                AND status IN ({placeholders})
                AND attempts < ?
                """,
                (now, key, hour_range, *[s.value for s in CLAIMABLE_STATUSES], max_attempts),
            )
            claimed = cursor.rowcount == 1

            if claimed:
                attempts = conn.execute(
                    "SELECT attempts FROM hour_slots WHERE job_date = ? AND hour_range = ?",
                    (key, hour_range),
                ).fetchone()["attempts"]
                self._touch_job(conn, key, now)
                self._add_event(conn, key, hour_range, "claimed", f"attempt {attempts}", now)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

        if not claimed:
            return None
        return self.get_slot(job_date, hour_range)

    @retry_database_operation
    def complete_slot(
        self,
        job_date: date,
        hour_range: str,
        record_count: int,
        file_path: str | None,
        storage_key: str,
        remote_location: str,
        uploaded_at: datetime | None = None,
    ) -> bool:
        """
        Mark a PROCESSING slot COMPLETED and clear its last error.

        A slot reclaimed as stale meanwhile is left as it is; its next
        attempt uploads again over the same key.

        Returns:
            True if the slot transitioned
        """
        key = job_date.isoformat()
        now = _now_iso()

        conn = self._connect()
        try:
            cursor = conn.execute(
                """
                UPDATE hour_slots
                SET status = 'completed', last_error = NULL, record_count = ?,
                    file_path = ?, storage_key = ?, remote_location = ?,
                    uploaded_ts = ?, updated_ts = ?
                WHERE job_date = ? AND hour_range = ? AND status = 'processing'
                """,
                (
                    record_count,
                    file_path,
                    storage_key,
                    remote_location,
                    _to_iso(uploaded_at) if uploaded_at else now,
                    now,
                    key,
                    hour_range,
                ),
            )
            updated = cursor.rowcount == 1

            if updated:
                self._touch_job(conn, key, now)
                self._add_event(
                    conn, key, hour_range, "completed", f"{record_count} records -> {remote_location}", now
                )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

        return updated

    @retry_database_operation
    def fail_slot(
        self,
        job_date: date,
        hour_range: str,
        error: str,
        max_attempts: int,
        file_path: str | None = None,
    ) -> SlotStatus | None:
        """
        Record a failed attempt on a PROCESSING slot.

        The slot becomes PERMANENTLY_FAILED when its attempts have reached
        ``max_attempts``, FAILED otherwise.

        Returns:
            The new status, or None if the slot was not PROCESSING
        """
        key = job_date.isoformat()
        now = _now_iso()

        conn = self._connect()
        try:
            cursor = conn.execute(
                """
                UPDATE hour_slots
                SET status = CASE WHEN attempts >= ? THEN 'permanently_failed' ELSE 'failed' END,
                    last_error = ?, file_path = COALESCE(?, file_path), updated_ts = ?
                WHERE job_date = ? AND hour_range = ? AND status = 'processing'
                """,
                (max_attempts, error, file_path, now, key, hour_range),
            )
            if cursor.rowcount != 1:
                conn.commit()
                return None

            status = SlotStatus(
                conn.execute(
                    "SELECT status FROM hour_slots WHERE job_date = ? AND hour_range = ?",
                    (key, hour_range),
                ).fetchone()["status"]
            )
            self._touch_job(conn, key, now)
            self._add_event(conn, key, hour_range, status.value, error, now)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

        return status

    @retry_database_operation
    def reclaim_stale(self, cutoff: datetime, max_attempts: int) -> list[HourSlot]:
        """
        Turn slots stuck in PROCESSING since before ``cutoff`` into failures.

        Each reclaim is a compare-and-set on the observed updated_ts, so a
        slot that makes progress meanwhile is left alone.

        Returns:
            The reclaimed slots in their new state
        """
        stale = self.list_slots(status=SlotStatus.PROCESSING, updated_before=cutoff)
        if not stale:
            return []

        now = _now_iso()
        reclaimed: list[tuple[date, str]] = []

        conn = self._connect()
        try:
            for slot in stale:
                key = slot.job_date.isoformat()
                message = f"Stale processing slot reclaimed (last update {slot.updated_at.isoformat()})"
                cursor = conn.execute(
                    """
                    UPDATE hour_slots
                    SET status = CASE WHEN attempts >= ? THEN 'permanently_failed' ELSE 'failed' END,
                        last_error = ?, updated_ts = ?
                    WHERE job_date = ? AND hour_range = ?
                    AND status = 'processing' AND updated_ts = ?
                    """,
                    (max_attempts, message, now, key, slot.hour_range, _to_iso(slot.updated_at)),
                )
                if cursor.rowcount == 1:
                    self._touch_job(conn, key, now)
                    self._add_event(conn, key, slot.hour_range, "reclaimed", message, now)
                    reclaimed.append((slot.job_date, slot.hour_range))
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

        return [s for d, h in reclaimed if (s := self.get_slot(d, h)) is not None]

    @retry_database_operation
    def reset_slot(self, job_date: date, hour_range: str) -> HourSlot | None:
        """
        Operator override: return a FAILED or PERMANENTLY_FAILED slot to
        PENDING with a fresh attempt budget.

        Returns:
            The reset slot, or None if it was not in a failed state
        """
        key = job_date.isoformat()
        now = _now_iso()

        conn = self._connect()
        try:
            cursor = conn.execute(
                """
                UPDATE hour_slots
                SET status = 'pending', attempts = 0, last_error = NULL, updated_ts = ?
                WHERE job_date = ? AND hour_range = ?
                AND status IN ('failed', 'permanently_failed')
                """,
                (now, key, hour_range),
            )
            updated = cursor.rowcount == 1
            if updated:
                self._touch_job(conn, key, now)
                self._add_event(conn, key, hour_range, "reset", "requeued by operator", now)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

        return self.get_slot(job_date, hour_range) if updated else None

    # ------------------------------------------------------------------
    # Events and stats
    # ------------------------------------------------------------------

    @retry_database_operation
    def get_events(
        self,
        job_date: date | None = None,
        hour_range: str | None = None,
        limit: int | None = None,
    ) -> list[SlotEvent]:
        """Get slot history, newest first."""
        clauses = []
        params: list = []
        if job_date is not None:
            clauses.append("job_date = ?")
            params.append(job_date.isoformat())
        if hour_range is not None:
            clauses.append("hour_range = ?")
            params.append(hour_range)

        sql = "SELECT job_date, hour_range, action, message, ts FROM slot_events"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY event_id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()

        return [
            SlotEvent(
                job_date=date.fromisoformat(r["job_date"]),
                hour_range=r["hour_range"],
                action=r["action"],
                message=r["message"],
                timestamp=datetime.fromisoformat(r["ts"]),
            )
            for r in rows
        ]

    @retry_database_operation
    def status_counts(self) -> dict[str, int]:
        """Count slots per status across all jobs."""
        counts = {status.value: 0 for status in SlotStatus}

        conn = self._connect()
        try:
            for row in conn.execute("SELECT status, COUNT(*) AS n FROM hour_slots GROUP BY status"):
                counts[row["status"]] = row["n"]
        finally:
            conn.close()

        return counts
