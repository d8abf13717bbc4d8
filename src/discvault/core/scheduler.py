"""Matches schedulable jobs to idle drives."""

import logging
import time
from collections.abc import Callable

from discvault.drive.registry import DriveRegistry
from discvault.queue.manager import Job, JobQueue

logger = logging.getLogger(__name__)


class JobScheduler:
    """Claims drives for queued jobs and hands them to a dispatcher.

    A tick is idempotent: jobs without a usable drive simply stay queued and
    are considered again on the next tick.
    """

    def __init__(
        self,
        queue: JobQueue,
        registry: DriveRegistry,
        dispatch: Callable[[Job, str], None],
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.queue = queue
        self.registry = registry
        self.dispatch = dispatch
        self.clock = clock

    def tick(self) -> list[tuple[int, str]]:
        """Run one scheduling pass, returning the (job id, device) pairs dispatched."""
        now = self.clock()
        jobs = self.queue.get_schedulable_jobs()
        self.registry.release_reservations({job.job_id for job in jobs})

        dispatched: list[tuple[int, str]] = []
        claimed: set[str] = set()
        for job in jobs:
            if job.attempts >= job.max_attempts:
                if self.queue.fail_exhausted(job):
                    logger.warning("Job %s has no attempts left, failing it", job.job_id)
                continue

            if not job.is_eligible(now):
                continue

            device = self._assign(job, claimed)
            if device is None:
                continue

            claimed.add(device)
            self.dispatch(job, device)
            dispatched.append((job.job_id, device))
            logger.info(
                "Dispatched job %s to %s (attempt %s/%s)",
                job.job_id,
                device,
                job.attempts,
                job.max_attempts,
            )

        return dispatched

    def _assign(self, job: Job, claimed: set[str]) -> str | None:
        for drive in self.registry.candidates_for(
            job.job_id,
            job.affinity,
            exclude=claimed,
        ):
            if not self.registry.claim(drive.device, job.job_id):
                continue
            if self.queue.mark_dispatched(job, drive.device):
                return drive.device
            # Cancelled or taken between the read and the claim
            self.registry.unclaim(drive.device, job.job_id)
            return None
        return None
