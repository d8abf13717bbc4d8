"""Persistent archival job queue."""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from discvault.config import ArchiverConfig
from discvault.error_handling import FailureKind

logger = logging.getLogger(__name__)


class JobState(Enum):
    """Status of an archival job."""

    QUEUED = "queued"
    RUNNING = "running"
    VERIFYING = "verifying"
    RETRYING = "retrying"  # Waiting out a backoff
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)

    @property
    def is_active(self) -> bool:
        return self in (JobState.RUNNING, JobState.VERIFYING)


SCHEDULABLE_STATES = (JobState.QUEUED, JobState.RETRYING)
ACTIVE_STATES = (JobState.RUNNING, JobState.VERIFYING)

JOB_COLUMNS = (
    "id",
    "label",
    "destination",
    "priority",
    "affinity",
    "state",
    "attempts",
    "max_attempts",
    "drive",
    "failure_kind",
    "error_message",
    "next_eligible_at",
    "archive_hash",
    "output_path",
    "cancel_requested",
    "created_at",
    "updated_at",
    "progress_percent",
    "progress_message",
)


class Job:
    """One archival task for one physical disc."""

    def __init__(
        self,
        job_id: int | None = None,
        label: str | None = None,
        destination: Path | None = None,
        priority: int = 0,
        affinity: str | None = None,
        state: JobState = JobState.QUEUED,
        attempts: int = 0,
        max_attempts: int = 3,
        drive: str | None = None,
        failure_kind: FailureKind | None = None,
        error_message: str | None = None,
        next_eligible_at: float | None = None,
        archive_hash: str | None = None,
        output_path: Path | None = None,
        cancel_requested: bool = False,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        progress_percent: float = 0.0,
        progress_message: str | None = None,
    ):
        self.job_id = job_id
        self.label = label
        self.destination = destination
        self.priority = priority
        self.affinity = affinity
        self.state = state
        self.attempts = attempts
        self.max_attempts = max_attempts
        self.drive = drive
        self.failure_kind = failure_kind
        self.error_message = error_message
        self.next_eligible_at = next_eligible_at
        self.archive_hash = archive_hash
        self.output_path = output_path
        self.cancel_requested = cancel_requested
        self.created_at = created_at or datetime.now(UTC)
        self.updated_at = updated_at or datetime.now(UTC)
        self.progress_percent = progress_percent
        self.progress_message = progress_message

    def is_eligible(self, now: float) -> bool:
        """True once any retry backoff has elapsed."""
        return self.next_eligible_at is None or self.next_eligible_at <= now

    def __str__(self) -> str:
        name = self.label or f"Job {self.job_id}"
        return f"{name} ({self.state.value})"


class JobQueue:
    """Manages archival jobs using SQLite."""

    def __init__(self, config: ArchiverConfig):
        self.config = config
        self.db_path = config.queue_db_path
        self._init_database()

    def _datetime_to_str(self, dt: datetime | None) -> str | None:
        """Convert datetime to string for SQLite storage."""
        if dt is None:
            return None
        return dt.isoformat()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection that is properly closed with transaction support."""
        # Drive workers write from their own threads, so wait on locks
        conn = sqlite3.connect(self.db_path, timeout=30)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self) -> None:
        """Initialize the SQLite database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Ensure database has current schema, recreating if necessary."""
        with self._get_connection() as conn:
            try:
                conn.execute(f"SELECT {', '.join(JOB_COLUMNS)} FROM jobs LIMIT 0")
            except sqlite3.OperationalError:
                logger.info("Job schema outdated or missing, recreating...")
                conn.execute("DROP TABLE IF EXISTS jobs")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    label TEXT,
                    destination TEXT,
                    priority INTEGER NOT NULL DEFAULT 0,
                    affinity TEXT,
                    state TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL,
                    drive TEXT,
                    failure_kind TEXT,
                    error_message TEXT,
                    next_eligible_at REAL,
                    archive_hash TEXT,
                    output_path TEXT,
                    cancel_requested INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    progress_percent REAL DEFAULT 0.0,
                    progress_message TEXT
                )
                """,
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_state ON jobs(state)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tray_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    device TEXT NOT NULL,
                    action TEXT NOT NULL,
                    outcome TEXT NOT NULL DEFAULT 'pending',
                    message TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """,
            )

    def add_job(
        self,
        label: str | None = None,
        *,
        destination: Path | None = None,
        priority: int = 0,
        affinity: str | None = None,
        max_attempts: int | None = None,
    ) -> Job:
        """Add a job to the queue."""
        job = Job(
            label=label,
            destination=destination,
            priority=priority,
            affinity=affinity,
            max_attempts=max_attempts or self.config.max_attempts,
        )

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO jobs (label, destination, priority, affinity, state,
                    attempts, max_attempts, created_at, updated_at,
                    progress_percent, progress_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    job.label,
                    str(job.destination) if job.destination else None,
                    job.priority,
                    job.affinity,
                    job.state.value,
                    job.attempts,
                    job.max_attempts,
                    self._datetime_to_str(job.created_at),
                    self._datetime_to_str(job.updated_at),
                    job.progress_percent,
                    job.progress_message,
                ),
            )

            job.job_id = cursor.lastrowid

        logger.info("Added job to queue: %s", job)
        return job

    def update_job(self, job: Job) -> None:
        """Write back a job owned by the caller.

        The cancel flag is left alone; only request_cancel sets it. A job with
        a pending cancel that would go back to waiting is cancelled instead,
        and ``job.state`` is updated to match.
        """
        job.updated_at = datetime.now(UTC)
        waiting = [s.value for s in SCHEDULABLE_STATES]

        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE jobs
                SET label = ?, destination = ?, priority = ?, affinity = ?,
                    state = CASE WHEN cancel_requested = 1 AND ? IN (?, ?)
                                 THEN ? ELSE ? END,
                    attempts = ?, max_attempts = ?, drive = ?,
                    failure_kind = ?, error_message = ?, next_eligible_at = ?,
                    archive_hash = ?, output_path = ?, updated_at = ?,
                    progress_percent = ?, progress_message = ?
                WHERE id = ?
            """,
                (
                    job.label,
                    str(job.destination) if job.destination else None,
                    job.priority,
                    job.affinity,
                    job.state.value,
                    *waiting,
                    JobState.CANCELLED.value,
                    job.state.value,
                    job.attempts,
                    job.max_attempts,
                    job.drive,
                    job.failure_kind.value if job.failure_kind else None,
                    job.error_message,
                    job.next_eligible_at,
                    job.archive_hash,
                    str(job.output_path) if job.output_path else None,
                    self._datetime_to_str(job.updated_at),
                    job.progress_percent,
                    job.progress_message,
                    job.job_id,
                ),
            )
            if job.state in SCHEDULABLE_STATES:
                row = conn.execute(
                    "SELECT state FROM jobs WHERE id = ?",
                    (job.job_id,),
                ).fetchone()
                if row and row[0] == JobState.CANCELLED.value:
                    logger.info("Job %s cancelled before it could be requeued", job.job_id)
                    job.state = JobState.CANCELLED

        logger.debug("Updated job: %s", job)

    def update_progress(self, job: Job) -> None:
        """Write only the progress columns of a running job."""
        with self._get_connection() as conn:
            conn.execute(
                """UPDATE jobs SET progress_percent = ?, progress_message = ?
                   WHERE id = ?""",
                (job.progress_percent, job.progress_message, job.job_id),
            )

    def get_job(self, job_id: int) -> Job | None:
        """Get a specific job by ID."""
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
            if not row:
                return None
            return self._row_to_job(row)

    def get_jobs_by_state(self, state: JobState) -> list[Job]:
        """Get all jobs in a specific state."""
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                "SELECT * FROM jobs WHERE state = ? ORDER BY id",
                (state.value,),
            )
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def get_schedulable_jobs(self) -> list[Job]:
        """Queued and retrying jobs, highest priority first, then oldest first."""
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                """
                SELECT * FROM jobs
                WHERE state IN (?, ?) AND cancel_requested = 0
                ORDER BY priority DESC, id
            """,
                [s.value for s in SCHEDULABLE_STATES],
            )
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def get_all_jobs(self) -> list[Job]:
        """Get all jobs, newest first."""
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute("SELECT * FROM jobs ORDER BY id DESC")
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def mark_dispatched(self, job: Job, device: str) -> bool:
        """Move a schedulable job to RUNNING on ``device`` and count the attempt.

        Returns False when the job was cancelled or taken in the meantime.
        """
        now = datetime.now(UTC)
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET state = ?, drive = ?, attempts = attempts + 1,
                    next_eligible_at = NULL, progress_percent = 0,
                    progress_message = NULL, updated_at = ?
                WHERE id = ? AND state IN (?, ?) AND cancel_requested = 0
            """,
                (
                    JobState.RUNNING.value,
                    device,
                    self._datetime_to_str(now),
                    job.job_id,
                    *[s.value for s in SCHEDULABLE_STATES],
                ),
            )
            if cursor.rowcount == 0:
                return False

        job.state = JobState.RUNNING
        job.drive = device
        job.attempts += 1
        job.next_eligible_at = None
        job.progress_percent = 0.0
        job.progress_message = None
        job.updated_at = now
        return True

    def fail_exhausted(self, job: Job) -> bool:
        """Fail a schedulable job that has no attempts left."""
        job.state = JobState.FAILED
        job.error_message = job.error_message or "No attempts left"
        # An attempt cut short by a crash never got classified
        job.failure_kind = job.failure_kind or FailureKind.TRANSIENT_IO
        with self._get_connection() as conn:
            cursor = conn.execute(
                """UPDATE jobs SET state = ?, failure_kind = ?, error_message = ?,
                       updated_at = ?
                   WHERE id = ? AND state IN (?, ?)""",
                (
                    JobState.FAILED.value,
                    job.failure_kind.value,
                    job.error_message,
                    self._datetime_to_str(datetime.now(UTC)),
                    job.job_id,
                    *[s.value for s in SCHEDULABLE_STATES],
                ),
            )
            return cursor.rowcount > 0

    def request_cancel(self, job_id: int) -> bool:
        """Cancel a job.

        Waiting jobs are cancelled immediately. Active jobs get a flag that
        their drive worker observes at the next checkpoint.
        """
        now = self._datetime_to_str(datetime.now(UTC))
        with self._get_connection() as conn:
            cursor = conn.execute(
                """UPDATE jobs SET state = ?, updated_at = ?
                   WHERE id = ? AND state IN (?, ?)""",
                (
                    JobState.CANCELLED.value,
                    now,
                    job_id,
                    *[s.value for s in SCHEDULABLE_STATES],
                ),
            )
            if cursor.rowcount > 0:
                logger.info("Cancelled job %s", job_id)
                return True

            cursor = conn.execute(
                """UPDATE jobs SET cancel_requested = 1, updated_at = ?
                   WHERE id = ? AND state IN (?, ?)""",
                (now, job_id, *[s.value for s in ACTIVE_STATES]),
            )
            if cursor.rowcount > 0:
                logger.info("Cancellation requested for running job %s", job_id)
                return True

        return False

    def is_cancel_requested(self, job_id: int) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT cancel_requested FROM jobs WHERE id = ?",
                (job_id,),
            ).fetchone()
            return bool(row and row[0])

    def cancel_requested_ids(self) -> set[int]:
        """Active jobs the operator asked to cancel."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT id FROM jobs WHERE cancel_requested = 1 AND state IN (?, ?)",
                [s.value for s in ACTIVE_STATES],
            )
            return {row[0] for row in cursor.fetchall()}

    def retry_job(self, job_id: int) -> bool:
        """Put a failed or cancelled job back in the queue with fresh attempts."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET state = ?, attempts = 0, drive = NULL, failure_kind = NULL,
                    error_message = NULL, next_eligible_at = NULL,
                    cancel_requested = 0, progress_percent = 0,
                    progress_message = NULL, updated_at = ?
                WHERE id = ? AND state IN (?, ?)
            """,
                (
                    JobState.QUEUED.value,
                    self._datetime_to_str(datetime.now(UTC)),
                    job_id,
                    JobState.FAILED.value,
                    JobState.CANCELLED.value,
                ),
            )
            if cursor.rowcount > 0:
                logger.info("Requeued job %s", job_id)
                return True
            return False

    def remove_job(self, job_id: int) -> bool:
        """Remove a job that is not currently on a drive."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM jobs WHERE id = ? AND state NOT IN (?, ?)",
                (job_id, *[s.value for s in ACTIVE_STATES]),
            )

            if cursor.rowcount > 0:
                logger.info("Removed job %s from queue", job_id)
                return True

            return False

    def clear_completed(self) -> int:
        """Remove succeeded and cancelled jobs."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM jobs WHERE state IN (?, ?)",
                (JobState.SUCCEEDED.value, JobState.CANCELLED.value),
            )
            count = cursor.rowcount
            logger.info("Cleared %s completed jobs from queue", count)
            return count

    def clear_failed(self) -> int:
        """Remove only failed jobs."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM jobs WHERE state = ?",
                (JobState.FAILED.value,),
            )
            count = cursor.rowcount
            logger.info("Cleared %s failed jobs from queue", count)
            return count

    def clear_all(self, *, force: bool = False) -> int:
        """Remove all jobs.

        Raises:
            RuntimeError: If jobs are on a drive and force is False.
        """
        with self._get_connection() as conn:
            if not force:
                active = conn.execute(
                    "SELECT COUNT(*) FROM jobs WHERE state IN (?, ?)",
                    [s.value for s in ACTIVE_STATES],
                ).fetchone()[0]
                if active > 0:
                    msg = f"Cannot clear queue: {active} jobs are currently running"
                    logger.warning(msg)
                    raise RuntimeError(msg)

            count = conn.execute("DELETE FROM jobs").rowcount
            logger.info("Cleared %s jobs from queue", count)
            return count

    def reset_interrupted_jobs(self) -> int:
        """Requeue jobs left on a drive by a daemon that did not shut down cleanly.

        Jobs whose cancellation was pending are cancelled instead. The
        interrupted attempt stays counted.
        """
        now = self._datetime_to_str(datetime.now(UTC))
        active = [s.value for s in ACTIVE_STATES]
        with self._get_connection() as conn:
            conn.execute(
                f"""UPDATE jobs SET state = ?, drive = NULL, cancel_requested = 0,
                       updated_at = ?
                    WHERE cancel_requested = 1 AND state IN ({", ".join("?" * len(active))})""",
                (JobState.CANCELLED.value, now, *active),
            )
            cursor = conn.execute(
                f"""UPDATE jobs
                    SET state = ?, drive = NULL, progress_percent = 0,
                        progress_message = 'Reset after interrupted run',
                        updated_at = ?
                    WHERE state IN ({", ".join("?" * len(active))})""",
                (JobState.QUEUED.value, now, *active),
            )
            count = cursor.rowcount
            if count > 0:
                logger.info("Reset %s interrupted jobs to queued", count)
            return count

    def request_tray(self, device: str, action: str) -> int:
        """Record an operator tray action for the running daemon to carry out."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO tray_requests (device, action, created_at) VALUES (?, ?, ?)",
                (device, action, self._datetime_to_str(datetime.now(UTC))),
            )
            request_id = cursor.lastrowid

        logger.info("Requested tray %s on %s (request %s)", action, device, request_id)
        return request_id

    def take_tray_requests(self) -> list[tuple[int, str, str]]:
        """Claim pending tray requests, oldest first, as (id, device, action)."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT id, device, action FROM tray_requests "
                "WHERE outcome = 'pending' ORDER BY id",
            ).fetchall()
            if rows:
                conn.execute(
                    f"""UPDATE tray_requests SET outcome = 'taken'
                        WHERE id IN ({", ".join("?" * len(rows))})""",
                    [row[0] for row in rows],
                )
        return [(row[0], row[1], row[2]) for row in rows]

    def finish_tray_request(
        self,
        request_id: int,
        outcome: str,
        message: str | None = None,
    ) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE tray_requests SET outcome = ?, message = ? WHERE id = ?",
                (outcome, message, request_id),
            )

    def get_tray_request(self, request_id: int) -> tuple[str, str | None] | None:
        """Outcome and message of a tray request, or None if unknown."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT outcome, message FROM tray_requests WHERE id = ?",
                (request_id,),
            ).fetchone()
        return (row[0], row[1]) if row else None

    def check_database_health(self) -> dict[str, Any]:
        """Check database health and return diagnostic information."""
        health_info: dict[str, Any] = {
            "database_exists": self.db_path.exists(),
            "database_readable": False,
            "table_exists": False,
            "columns_present": [],
            "missing_columns": [],
            "integrity_check": False,
            "total_jobs": 0,
        }

        if not health_info["database_exists"]:
            return health_info

        try:
            with self._get_connection() as conn:
                health_info["database_readable"] = True

                cursor = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name='jobs'",
                )
                health_info["table_exists"] = cursor.fetchone() is not None

                if health_info["table_exists"]:
                    cursor = conn.execute("PRAGMA table_info(jobs)")
                    existing_columns = {row[1] for row in cursor.fetchall()}
                    health_info["columns_present"] = sorted(existing_columns)
                    health_info["missing_columns"] = sorted(
                        set(JOB_COLUMNS) - existing_columns,
                    )
                    cursor = conn.execute("SELECT COUNT(*) FROM jobs")
                    health_info["total_jobs"] = cursor.fetchone()[0]

                result = conn.execute("PRAGMA integrity_check").fetchone()
                health_info["integrity_check"] = result[0] == "ok" if result else False

        except sqlite3.Error as e:
            health_info["error"] = str(e)
            logger.exception("Database health check failed")

        return health_info

    def get_queue_stats(self) -> dict[str, int]:
        """Count jobs per state."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT state, COUNT(*) FROM jobs GROUP BY state",
            )
            return {state: count for state, count in cursor.fetchall()}

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a database row to a Job."""
        failure_kind = None
        if row["failure_kind"]:
            try:
                failure_kind = FailureKind(row["failure_kind"])
            except ValueError:
                logger.warning("Unknown failure kind in job %s", row["id"])

        return Job(
            job_id=row["id"],
            label=row["label"],
            destination=Path(row["destination"]) if row["destination"] else None,
            priority=row["priority"],
            affinity=row["affinity"],
            state=JobState(row["state"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            drive=row["drive"],
            failure_kind=failure_kind,
            error_message=row["error_message"],
            next_eligible_at=row["next_eligible_at"],
            archive_hash=row["archive_hash"],
            output_path=Path(row["output_path"]) if row["output_path"] else None,
            cancel_requested=bool(row["cancel_requested"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            progress_percent=row["progress_percent"],
            progress_message=row["progress_message"],
        )
