"""Daemon management for discvault."""

import asyncio
import logging
import signal
import sys
from pathlib import Path

import daemon

from discvault.config import ArchiverConfig
from discvault.core.orchestrator import ArchiveOrchestrator
from discvault.process_lock import ProcessLock

logger = logging.getLogger(__name__)


class ArchiveDaemon:
    """Manages discvault daemon lifecycle."""

    def __init__(self, config: ArchiverConfig):
        self.config = config
        self.orchestrator: ArchiveOrchestrator | None = None
        self.lock: ProcessLock | None = None
        self._stop_event: asyncio.Event | None = None

    def start_daemon(self) -> None:
        """Start discvault as a background daemon."""
        log_file_path = self.config.log_dir / "discvault.log"
        self.config.ensure_directories()

        holder = ProcessLock(self.config).find_holder()
        if holder:
            pid, mode = holder
            msg = f"discvault is already running in {mode} mode (PID {pid})"
            raise RuntimeError(msg)

        logger.info("Starting discvault daemon...")
        logger.info("Log file: %s", log_file_path)
        logger.info("Archive directory: %s", self.config.archive_dir)

        daemon_context = daemon.DaemonContext(
            working_directory=Path.cwd(),
            umask=0o002,
        )

        with daemon_context:
            self._run_daemon(log_file_path, mode="daemon")

    def start_systemd_mode(self) -> None:
        """Start for systemd (foreground with proper logging)."""
        self._run_daemon(None, mode="systemd")  # systemd handles logging

    def _run_daemon(self, log_file_path: Path | None, *, mode: str) -> None:
        """Run the actual daemon process."""
        if log_file_path:
            self._setup_daemon_logging(log_file_path)

        self.lock = ProcessLock(self.config)
        if not self.lock.acquire(mode):
            logger.error("Failed to acquire process lock - another instance may be running")
            sys.exit(1)

        try:
            asyncio.run(self.serve())
        except Exception as e:
            logger.exception("Error in daemon: %s", e)
            sys.exit(1)
        finally:
            self.lock.release()

    async def serve(self, orchestrator: ArchiveOrchestrator | None = None) -> None:
        """Run the orchestrator until SIGTERM/SIGINT or request_stop()."""
        self.orchestrator = orchestrator or ArchiveOrchestrator(self.config)
        self._stop_event = asyncio.Event()

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self._on_signal, signum)

        await self.orchestrator.start()
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.config.status_display_interval,
                    )
                except TimeoutError:
                    self._log_status()
        finally:
            for signum in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(signum)
            await self.orchestrator.stop()

    def request_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    def _on_signal(self, signum: int) -> None:
        logger.info("Received signal %s, stopping daemon", signum)
        self.request_stop()

    def _log_status(self) -> None:
        status = self.orchestrator.get_status()
        busy = ", ".join(
            f"{device}: job {job_id}" for device, job_id in status["active_jobs"].items()
        )
        logger.info(
            "%s drive(s), %s job(s) queued, active: %s",
            len(status["drives"]),
            status["queue_stats"].get("queued", 0),
            busy or "none",
        )

    def _setup_daemon_logging(self, log_file_path: Path) -> None:
        """Set up logging for daemon mode."""
        root = logging.getLogger()
        root.setLevel(logging.INFO)

        file_handler = logging.FileHandler(log_file_path)
        file_handler.setLevel(logging.INFO)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
