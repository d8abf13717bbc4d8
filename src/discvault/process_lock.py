"""Single-instance locking and daemon discovery without PID files."""

import fcntl
import os
import signal
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from discvault.config import ArchiverConfig


class ProcessLock:
    """Manages the daemon's exclusive lock.

    The lock file holds ``"<pid> <mode>"`` of the holder for informational
    purposes; only the flock decides whether a daemon is running.
    """

    def __init__(self, config: "ArchiverConfig") -> None:
        self.lock_file = config.log_dir / "discvault.lock"
        self.lock_fd: int | None = None

    def acquire(self, mode: str = "daemon") -> bool:
        """Try to acquire exclusive lock. Returns True if successful."""
        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            self.lock_fd = os.open(str(self.lock_file), os.O_CREAT | os.O_WRONLY)
            fcntl.flock(self.lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            os.ftruncate(self.lock_fd, 0)
            os.write(self.lock_fd, f"{os.getpid()} {mode}".encode())
            os.fsync(self.lock_fd)
            return True
        except OSError:
            if self.lock_fd is not None:
                os.close(self.lock_fd)
                self.lock_fd = None
            return False

    def release(self) -> None:
        """Release the lock."""
        if self.lock_fd is not None:
            try:
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                os.close(self.lock_fd)
            except OSError:
                pass
            finally:
                self.lock_fd = None

    def find_holder(self) -> tuple[int, str] | None:
        """Return (pid, mode) of the running daemon, or None."""
        if not self.lock_file.exists():
            return None

        try:
            fd = os.open(str(self.lock_file), os.O_RDONLY)
        except OSError:
            return None

        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
            except OSError:
                content = os.read(fd, 64).decode(errors="replace").split()
                if not content:
                    return None
                pid = int(content[0])
                mode = content[1] if len(content) > 1 else "daemon"
                return (pid, mode)
            # We got the lock, so nobody holds it
            fcntl.flock(fd, fcntl.LOCK_UN)
            return None
        except ValueError:
            return None
        finally:
            os.close(fd)

    @staticmethod
    def is_process_running(pid: int) -> bool:
        """Check if a process with given PID is running."""
        try:
            os.kill(pid, 0)
            return True
        except (OSError, ProcessLookupError):
            return False

    @staticmethod
    def stop_process(pid: int, timeout: int = 30) -> bool:
        """Stop a process gracefully, then forcefully if needed.

        Drive workers finish their current read chunk before exiting, so the
        grace period is longer than a plain service would need.
        """
        try:
            os.kill(pid, signal.SIGTERM)

            for _ in range(timeout):
                if not ProcessLock.is_process_running(pid):
                    return True
                time.sleep(1)

            os.kill(pid, signal.SIGKILL)
            time.sleep(0.5)
            return not ProcessLock.is_process_running(pid)

        except (OSError, ProcessLookupError):
            return True
