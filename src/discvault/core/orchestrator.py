"""Main orchestration for discvault."""

import asyncio
import json
import logging
import os
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import BinaryIO

from discvault.archive.manifest import ArchiveManifest
from discvault.archive.pipeline import ArchivalPipeline
from discvault.config import ArchiverConfig
from discvault.core.policy import RetryPolicy
from discvault.core.scheduler import JobScheduler
from discvault.core.worker import DriveWorker
from discvault.drive.registry import DriveRegistry, DriveSnapshot
from discvault.drive.state import DriveEvent, DriveState
from discvault.error_handling import DiscVaultError, FailureKind
from discvault.notify.ntfy import NtfyNotifier
from discvault.queue.manager import Job, JobQueue
from discvault.services.device import open_raw_device
from discvault.services.dvdcss import load_decryptor
from discvault.services.eject import EjectTool
from discvault.services.interfaces import (
    Decryptor,
    EjectControl,
    InventorySource,
    LayoutReader,
    MediaProbe,
    TrayAction,
)
from discvault.services.inventory import LsscsiInventory
from discvault.services.isoinfo import IsoInfoReader
from discvault.services.media_probe import BlkidMediaProbe

logger = logging.getLogger(__name__)


class ArchiveOrchestrator:
    """Wires the registry, scheduler and drive workers together.

    Three kinds of task run on the event loop: the refresh loop polls the
    drives on its own thread, the scheduler loop reacts to drive events and
    the poll interval, and one worker per drive runs the pipeline.
    """

    def __init__(
        self,
        config: ArchiverConfig,
        *,
        inventory: InventorySource | None = None,
        media_probe: MediaProbe | None = None,
        layout_reader: LayoutReader | None = None,
        ejector: EjectControl | None = None,
        decryptor: Decryptor | None = None,
        opener: Callable[[str], BinaryIO] = open_raw_device,
        queue: JobQueue | None = None,
        manifest: ArchiveManifest | None = None,
        notifier: NtfyNotifier | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        config.ensure_directories()

        # Collaborators
        self.inventory = inventory or LsscsiInventory(config)
        self.media_probe = media_probe or BlkidMediaProbe(config)
        self.layout_reader = layout_reader or IsoInfoReader(config)
        self.ejector = ejector or EjectTool(config)
        if decryptor is None:
            decryptor = load_decryptor(config)
        self.queue = queue or JobQueue(config)
        self.manifest = manifest or ArchiveManifest(config.manifest_path)
        self.notifier = notifier or NtfyNotifier(config)
        self.clock = clock

        # Core components
        self.registry = DriveRegistry(self.inventory, self.media_probe, clock=clock)
        self.pipeline = ArchivalPipeline(
            config,
            self.manifest,
            self.layout_reader,
            decryptor=decryptor,
            opener=opener,
        )
        self.policy = RetryPolicy.from_config(config)
        self.scheduler = JobScheduler(
            self.queue,
            self.registry,
            self._dispatch,
            clock=clock,
        )
        self.workers: dict[str, DriveWorker] = {}
        self.registry.subscribe(self._on_drive_event)

        self.is_running = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeups: asyncio.Queue | None = None
        self._tasks: list[asyncio.Task] = []
        self._refresh_executor: ThreadPoolExecutor | None = None
        self._scheduler_executor: ThreadPoolExecutor | None = None

    async def start(self) -> None:
        """Start the orchestrator."""
        if self.is_running:
            logger.warning("Orchestrator is already running")
            return

        logger.info("Starting discvault orchestrator")
        self._loop = asyncio.get_running_loop()
        self._wakeups = asyncio.Queue()
        self._refresh_executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="refresh",
        )
        self._scheduler_executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="scheduler",
        )

        reset_count = self.queue.reset_interrupted_jobs()
        if reset_count > 0:
            logger.info("Requeued %s jobs from an interrupted run", reset_count)
        self.pipeline.discard_stale_partials()

        self.is_running = True
        await self.refresh()

        self._tasks = [
            self._loop.create_task(self._refresh_continuously(), name="refresh"),
            self._loop.create_task(self._schedule_continuously(), name="scheduler"),
        ]
        logger.info(
            "Orchestrator started - managing %s drive(s)",
            len(self.registry.snapshot()),
        )

    async def stop(self) -> None:
        """Stop the loops, then the workers; running jobs are requeued."""
        if not self.is_running:
            return

        logger.info("Stopping orchestrator")
        self.is_running = False

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        # A pass cut off by the cancel may still be dispatching
        await self._loop.run_in_executor(None, self._scheduler_executor.shutdown, True)
        self._scheduler_executor = None

        await asyncio.gather(*(worker.stop() for worker in self.workers.values()))
        self.workers.clear()

        if self._refresh_executor:
            self._refresh_executor.shutdown(wait=True)
            self._refresh_executor = None
        self._write_status()
        self._loop = None
        logger.info("Orchestrator stopped")

    async def refresh(self) -> list[DriveEvent]:
        """Poll drives on the refresh thread and start workers for new ones."""
        events = await self._loop.run_in_executor(
            self._refresh_executor,
            self.registry.refresh,
        )
        self._ensure_workers()
        self._write_status()
        return events

    def wake(self) -> None:
        """Ask the scheduler to run a tick soon."""
        if self._loop is None or self._wakeups is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._wakeups.put_nowait, None)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    def enqueue(
        self,
        label: str | None = None,
        *,
        destination: Path | None = None,
        priority: int = 0,
        affinity: str | None = None,
        max_attempts: int | None = None,
    ) -> Job:
        job = self.queue.add_job(
            label,
            destination=destination,
            priority=priority,
            affinity=affinity,
            max_attempts=max_attempts,
        )
        self.wake()
        return job

    def cancel_job(self, job_id: int) -> bool:
        """Cancel a waiting job now, or signal the worker running it."""
        accepted = self.queue.request_cancel(job_id)
        if accepted:
            self._sync_cancellations()
            self.wake()
        return accepted

    async def eject_drive(self, device: str) -> bool:
        """Operator eject of an idle drive."""
        if not self.registry.begin_eject(device):
            logger.warning("Drive %s is busy or has nothing to eject", device)
            return False

        try:
            ejected = await self._loop.run_in_executor(
                None,
                self.ejector.eject,
                device,
            )
        except DiscVaultError as e:
            logger.warning("Eject failed on %s: %s", device, e.message)
            ejected = False

        if ejected:
            self.registry.transition(device, DriveState.EMPTY)
        else:
            self.registry.transition(
                device,
                DriveState.ERROR,
                failure=FailureKind.HARDWARE_FAULT,
            )
        return ejected

    async def close_tray(self, device: str) -> bool:
        """Close a tray; the next refresh picks up whatever disc it holds."""
        closed = await self._loop.run_in_executor(None, self.ejector.close, device)
        if closed:
            await self.refresh()
        return closed

    def get_status(self) -> dict:
        """Get current orchestrator status."""
        stats = self.queue.get_queue_stats()
        drives = self.registry.snapshot()
        return {
            "running": self.is_running,
            "drives": [drive.to_dict() for drive in drives],
            "active_jobs": {
                device: worker.current_job.job_id
                for device, worker in self.workers.items()
                if worker.current_job
            },
            "queue_stats": stats,
            "total_jobs": sum(stats.values()) if stats else 0,
        }

    async def _refresh_continuously(self) -> None:
        logger.info("Started drive refresh loop")

        while self.is_running:
            try:
                await asyncio.sleep(self.config.refresh_interval)
                await self.refresh()
            except asyncio.CancelledError:
                logger.info("Drive refresh loop cancelled")
                break
            except Exception as e:
                logger.exception(f"Error in drive refresh loop: {e}")
                await asyncio.sleep(self.config.error_retry_interval)

        logger.info("Drive refresh loop stopped")

    async def _schedule_continuously(self) -> None:
        logger.info("Started scheduler loop")

        while self.is_running:
            try:
                await self._scheduling_pass()
                await self._wait_for_wakeup()
            except asyncio.CancelledError:
                logger.info("Scheduler loop cancelled")
                break
            except Exception as e:
                logger.exception(f"Error in scheduler loop: {e}")
                await asyncio.sleep(self.config.error_retry_interval)

        logger.info("Scheduler loop stopped")

    async def _scheduling_pass(self) -> None:
        """Forward cancels, run tray requests, then match jobs to drives.

        Queue access runs on the scheduler thread so a locked database never
        stalls the event loop.
        """
        pending = await self._loop.run_in_executor(
            self._scheduler_executor,
            self.queue.cancel_requested_ids,
        )
        self._forward_cancellations(pending)

        requests = await self._loop.run_in_executor(
            self._scheduler_executor,
            self.queue.take_tray_requests,
        )
        for request_id, device, action in requests:
            outcome, message = await self._run_tray_request(device, TrayAction(action))
            await self._loop.run_in_executor(
                self._scheduler_executor,
                self.queue.finish_tray_request,
                request_id,
                outcome,
                message,
            )

        await self._loop.run_in_executor(self._scheduler_executor, self.scheduler.tick)

    async def _run_tray_request(
        self,
        device: str,
        action: TrayAction,
    ) -> tuple[str, str | None]:
        drive = self.registry.get(device)
        if drive is None:
            return "failed", f"Unknown drive {device}"

        if action is TrayAction.CLOSE:
            if await self.close_tray(device):
                return "done", None
            return "failed", f"Could not close {device}"

        if drive.job_id is not None or drive.state.is_operating:
            job_id = drive.job_id
            return "busy", (
                f"{device} is archiving job {job_id}; "
                f"cancel it with 'discvault job cancel {job_id}'"
            )
        if await self.eject_drive(device):
            return "done", None
        return "failed", f"Could not eject {device} ({drive.state.value})"

    async def _wait_for_wakeup(self) -> None:
        """Block until a drive event or wake-up arrives, or the poll interval ends."""
        try:
            await asyncio.wait_for(
                self._wakeups.get(),
                timeout=self.config.queue_poll_interval,
            )
        except TimeoutError:
            return
        # Coalesce bursts into one tick
        while not self._wakeups.empty():
            self._wakeups.get_nowait()

    def _on_drive_event(self, event: DriveEvent) -> None:
        """Registry listener; may run on any thread."""
        if event.current is DriveState.OFFLINE:
            self.notifier.notify_drive_offline(event.device)
        if event.current in (DriveState.DISK_PRESENT, DriveState.EMPTY):
            self.wake()

    def _on_worker_finished(self, device: str, job: Job) -> None:
        logger.debug("Worker %s finished job %s (%s)", device, job.job_id, job.state.value)
        self._write_status()
        self.wake()

    def _ensure_workers(self) -> None:
        if not self.is_running:
            return
        for drive in self.registry.snapshot():
            if drive.device not in self.workers:
                self._create_worker(drive.device)

    def _create_worker(self, device: str) -> DriveWorker:
        worker = DriveWorker(
            device,
            config=self.config,
            registry=self.registry,
            queue=self.queue,
            pipeline=self.pipeline,
            policy=self.policy,
            ejector=self.ejector,
            notifier=self.notifier,
            clock=self.clock,
            on_finished=self._on_worker_finished,
        )
        worker.start()
        self.workers[device] = worker
        logger.debug("Started worker for %s", device)
        return worker

    def _dispatch(self, job: Job, device: str) -> None:
        # Called from the scheduler thread; workers live on the event loop
        self._loop.call_soon_threadsafe(self._submit, job, device)

    def _submit(self, job: Job, device: str) -> None:
        worker = self.workers.get(device) or self._create_worker(device)
        worker.submit(job)

    def _sync_cancellations(self) -> None:
        self._forward_cancellations(self.queue.cancel_requested_ids())

    def _forward_cancellations(self, pending: set[int]) -> None:
        """Signal the workers running jobs the operator asked to cancel."""
        if not pending:
            return
        for worker in self.workers.values():
            job = worker.current_job
            if job is not None and job.job_id in pending:
                worker.cancel_current(job.job_id)

    def _write_status(self) -> None:
        """Publish a drive snapshot for CLI commands run outside the daemon."""
        status_file = self.config.status_file
        payload = {
            "updated_at": self.clock(),
            "running": self.is_running,
            "drives": [drive.to_dict() for drive in self.registry.snapshot()],
        }
        tmp = status_file.with_suffix(".tmp")
        try:
            with open(tmp, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp, status_file)
        except OSError as e:
            logger.warning("Could not write drive status to %s: %s", status_file, e)


def read_status_file(config: ArchiverConfig) -> list[DriveSnapshot] | None:
    """Load the snapshot written by a running daemon, if any."""
    if not config.status_file.exists():
        return None
    try:
        with open(config.status_file) as f:
            payload = json.load(f)
        return [DriveSnapshot.from_dict(d) for d in payload.get("drives", [])]
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning("Unreadable drive status file %s: %s", config.status_file, e)
        return None
