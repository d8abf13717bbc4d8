"""Per-drive worker that runs the archival pipeline for one job at a time."""

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from discvault.archive.manifest import ArchiveRecord
from discvault.archive.pipeline import ArchivalPipeline, StagedImage
from discvault.config import ArchiverConfig
from discvault.core.policy import RetryPolicy, classify
from discvault.drive.registry import DriveRegistry
from discvault.drive.state import DriveState
from discvault.error_handling import (
    DiscVaultError,
    DriveOfflineError,
    FailureKind,
    OperatorCancelled,
)
from discvault.notify.ntfy import NtfyNotifier
from discvault.queue.manager import Job, JobQueue, JobState
from discvault.services.interfaces import EjectControl

logger = logging.getLogger(__name__)

PROGRESS_STEP = 5.0
MIB = 1024 * 1024

# Kinds a vanished drive tends to produce before the registry notices
OFFLINE_SYMPTOMS = frozenset(
    {FailureKind.TRANSIENT_IO, FailureKind.TIMEOUT, FailureKind.HARDWARE_FAULT},
)


class WorkerStopping(Exception):
    """Raised at a checkpoint when the daemon is shutting down."""


class DriveWorker:
    """Owns one drive: every blocking step runs on the worker's own thread."""

    def __init__(
        self,
        device: str,
        *,
        config: ArchiverConfig,
        registry: DriveRegistry,
        queue: JobQueue,
        pipeline: ArchivalPipeline,
        policy: RetryPolicy,
        ejector: EjectControl,
        notifier: NtfyNotifier | None = None,
        clock: Callable[[], float] = time.time,
        on_finished: Callable[[str, Job], None] | None = None,
    ):
        self.device = device
        self.config = config
        self.registry = registry
        self.queue = queue
        self.pipeline = pipeline
        self.policy = policy
        self.ejector = ejector
        self.notifier = notifier
        self.clock = clock
        self.on_finished = on_finished

        self.current_job: Job | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"drive-{Path(device).name}",
        )
        self._jobs: asyncio.Queue[Job | None] | None = None
        self._task: asyncio.Task | None = None
        self._cancel = threading.Event()
        self._stopping = threading.Event()

    @property
    def is_idle(self) -> bool:
        return self.current_job is None and (self._jobs is None or self._jobs.empty())

    def start(self) -> None:
        if self._task is not None:
            return
        self._jobs = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(
            self._run(),
            name=f"worker-{self.device}",
        )

    async def stop(self) -> None:
        """Interrupt the current job and wait for the worker thread to finish."""
        self._stopping.set()
        if self._task is not None and self._jobs is not None:
            self._jobs.put_nowait(None)
            await self._task
            self._task = None
        self._executor.shutdown(wait=True)

    def submit(self, job: Job) -> None:
        """Queue a dispatched job; must be called from the event loop."""
        if self._jobs is None:
            msg = f"Worker for {self.device} is not started"
            raise RuntimeError(msg)
        self._jobs.put_nowait(job)

    def cancel_current(self, job_id: int) -> bool:
        job = self.current_job
        if job is None or job.job_id != job_id:
            return False
        if not self._cancel.is_set():
            logger.info("Cancelling job %s on %s", job_id, self.device)
            self._cancel.set()
        return True

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            job = await self._jobs.get()
            if job is None:
                break

            self._cancel.clear()
            self.current_job = job
            try:
                await loop.run_in_executor(self._executor, self.process, job)
            except Exception:
                logger.exception("Drive worker %s failed on job %s", self.device, job.job_id)
            finally:
                self.current_job = None

            if self.on_finished:
                self.on_finished(self.device, job)

    def process(self, job: Job) -> None:
        """Run one attempt of ``job`` to a terminal or retry-pending outcome."""
        staged: StagedImage | None = None
        record: ArchiveRecord | None = None
        logger.info(
            "Starting job %s on %s (attempt %s/%s)",
            job.job_id,
            self.device,
            job.attempts,
            job.max_attempts,
        )

        try:
            self._checkpoint(job)
            media = self.pipeline.mount(job, self.device)
            self._checkpoint(job)

            self.registry.transition(self.device, DriveState.READING)
            job.progress_message = "Reading"
            self.queue.update_job(job)
            staged = self.pipeline.read(
                job,
                media,
                lambda: self._checkpoint(job),
                self._progress_reporter(job, "Read"),
            )

            self.registry.transition(self.device, DriveState.VERIFYING)
            job.state = JobState.VERIFYING
            job.progress_message = f"Verifying ({self.config.verify_mode})"
            self.queue.update_job(job)
            self.pipeline.verify(staged, media, lambda: self._checkpoint(job))
            self._checkpoint(job)

            record = self.pipeline.commit(job, staged, media)
            staged = None
        except OperatorCancelled:
            self.pipeline.discard(staged)
            self._finish_cancelled(job)
        except WorkerStopping:
            self.pipeline.discard(staged)
            self._finish_interrupted(job)
        except Exception as e:
            self.pipeline.discard(staged)
            self._finish_failed(job, e)
        else:
            self._finish_succeeded(job, record)

    def _checkpoint(self, job: Job) -> None:
        if self._stopping.is_set():
            raise WorkerStopping
        if self._cancel.is_set():
            raise OperatorCancelled(job.job_id)
        if self.registry.is_vanished(self.device):
            raise DriveOfflineError(self.device)

    def _progress_reporter(self, job: Job, phase: str) -> Callable[[int, int], None]:
        def report(done: int, total: int) -> None:
            percent = done * 100 / total if total else 100.0
            if percent - job.progress_percent < PROGRESS_STEP and done < total:
                return
            job.progress_percent = round(percent, 1)
            job.progress_message = f"{phase} {done // MIB} of {total // MIB} MiB"
            self.queue.update_progress(job)

        return report

    def _finish_succeeded(self, job: Job, record: ArchiveRecord) -> None:
        job.state = JobState.SUCCEEDED
        job.archive_hash = record.content_hash
        job.output_path = record.path
        job.failure_kind = None
        job.error_message = None
        job.progress_percent = 100.0
        job.progress_message = "Archived"
        self.queue.update_job(job)
        self.registry.record_outcome(self.device, success=True)
        logger.info("Job %s archived to %s", job.job_id, record.path)

        if self.notifier:
            self.notifier.notify_job_succeeded(
                job.label or record.disc_label or f"job {job.job_id}",
                self.device,
                str(record.path),
                duplicate=record.duplicate,
            )
        self._eject()

    def _finish_cancelled(self, job: Job) -> None:
        job.state = JobState.CANCELLED
        job.error_message = "Cancelled by operator"
        job.progress_message = None
        self.queue.update_job(job)
        logger.info("Job %s cancelled on %s", job.job_id, self.device)
        self._release_cancelled()

    def _release_cancelled(self) -> None:
        if self.registry.is_vanished(self.device):
            self.registry.transition(
                self.device,
                DriveState.OFFLINE,
                failure=FailureKind.DRIVE_OFFLINE,
                release_job=True,
            )
        else:
            self._eject()

    def _finish_interrupted(self, job: Job) -> None:
        # Shutdown is not the job's fault; give the attempt back
        job.state = JobState.QUEUED
        job.attempts = max(job.attempts - 1, 0)
        job.drive = None
        job.progress_percent = 0.0
        job.progress_message = "Interrupted by shutdown"
        self.queue.update_job(job)

        drive = self.registry.get(self.device)
        if drive is not None and drive.state is DriveState.MOUNTING:
            self.registry.unclaim(self.device, job.job_id)
        elif drive is not None and drive.state.is_operating:
            # READING and VERIFYING only lead back to an idle drive through ERROR
            self.registry.transition(self.device, DriveState.ERROR)
            self.registry.transition(
                self.device,
                DriveState.DISK_PRESENT,
                release_job=True,
                reserve_for=job.job_id if job.state is JobState.QUEUED else None,
            )
        logger.info("Job %s interrupted by shutdown", job.job_id)

    def _finish_failed(self, job: Job, error: Exception) -> None:
        if self._cancel.is_set() or self.queue.is_cancel_requested(job.job_id):
            # The operator asked to stop this job; no retry
            logger.info("Job %s failed after a cancel request: %s", job.job_id, error)
            self._finish_cancelled(job)
            return

        kind = classify(error)
        if kind in OFFLINE_SYMPTOMS and self.registry.is_vanished(self.device):
            kind = FailureKind.DRIVE_OFFLINE
        decision = self.policy.decide(job.attempts, kind, job.max_attempts)
        message = (
            error.message if isinstance(error, DiscVaultError) else str(error)
        ) or type(error).__name__

        job.failure_kind = kind
        job.error_message = message

        if kind is FailureKind.DRIVE_OFFLINE and decision.retry:
            # Waits for its drive to return rather than for a timer
            job.state = JobState.QUEUED
            job.next_eligible_at = None
            job.progress_message = f"Waiting for {self.device} to return"
        elif decision.retry:
            job.state = JobState.RETRYING
            job.next_eligible_at = self.clock() + decision.delay
            job.progress_message = f"Retrying in {decision.delay:.0f}s"
        else:
            job.state = JobState.FAILED
            job.progress_message = None
            if decision.escalated:
                job.error_message = f"{message} (gave up after {job.attempts} attempts)"
        self.queue.update_job(job)
        self.registry.record_outcome(self.device, success=False)
        if job.state is JobState.CANCELLED:
            logger.info("Job %s cancelled on %s", job.job_id, self.device)
            self._release_cancelled()
            return

        logger.warning(
            "Job %s attempt %s/%s on %s failed (%s): %s%s",
            job.job_id,
            job.attempts,
            job.max_attempts,
            self.device,
            kind.value,
            message,
            f" - retrying in {decision.delay:.0f}s" if decision.retry else "",
        )
        if not decision.retry and self.notifier:
            self.notifier.notify_job_failed(
                job.label or f"job {job.job_id}",
                self.device,
                job.error_message,
                job.attempts,
            )

        if kind is FailureKind.DRIVE_OFFLINE:
            self.registry.transition(
                self.device,
                DriveState.OFFLINE,
                failure=kind,
                release_job=True,
                reserve_for=job.job_id if decision.retry else None,
            )
            return

        if decision.retry:
            self.registry.transition(self.device, DriveState.ERROR, failure=kind)
            self.registry.transition(
                self.device,
                DriveState.DISK_PRESENT,
                release_job=True,
                reserve_for=job.job_id,
            )
        elif self.config.eject_on_failure:
            self.registry.transition(self.device, DriveState.ERROR, failure=kind)
            self._eject()
        else:
            # Stays in ERROR until the operator removes the disc
            self.registry.transition(
                self.device,
                DriveState.ERROR,
                failure=kind,
                release_job=True,
            )

    def _eject(self) -> None:
        self.registry.transition(self.device, DriveState.EJECTING)
        try:
            ejected = self.ejector.eject(self.device)
        except DiscVaultError as e:
            logger.warning("Eject failed on %s: %s", self.device, e.message)
            ejected = False

        if ejected:
            self.registry.transition(self.device, DriveState.EMPTY, release_job=True)
        else:
            self.registry.transition(
                self.device,
                DriveState.ERROR,
                failure=FailureKind.HARDWARE_FAULT,
                release_job=True,
            )
