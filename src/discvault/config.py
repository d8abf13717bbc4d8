"""Configuration management for discvault."""

import hashlib
from pathlib import Path
from typing import Literal

import tomli
from pydantic import BaseModel, Field, field_validator


class ArchiverConfig(BaseModel):
    """Main configuration for discvault."""

    # Paths
    archive_dir: Path = Field(default=Path("~/archive/discs"))
    log_dir: Path = Field(default=Path("~/.local/share/discvault/logs"))

    # Hardware - empty means every cd/dvd drive lsscsi reports
    drives: list[str] = Field(default_factory=list)
    dvdcss_library: str | None = Field(default="libdvdcss.so.2")

    # Notifications
    ntfy_topic: str | None = None

    # Timeout Settings (seconds)
    lsscsi_timeout: int = Field(default=10)
    blkid_timeout: int = Field(default=10)
    isoinfo_timeout: int = Field(default=30)
    eject_timeout: int = Field(default=30)
    read_timeout: int = Field(default=7200)  # 2 hours per full pass
    ntfy_request_timeout: int = Field(default=10)

    # Processing Intervals (seconds)
    refresh_interval: float = Field(default=5.0, gt=0)
    queue_poll_interval: float = Field(default=5.0, gt=0)
    error_retry_interval: float = Field(default=10.0, ge=0)
    status_display_interval: int = Field(default=30)

    # Retry policy
    max_attempts: int = Field(default=3, ge=1)
    backoff_base: float = Field(default=30.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    backoff_cap: float = Field(default=600.0, ge=0)

    # Archival
    verify_mode: Literal["reread", "checksum", "trust"] = Field(default="checksum")
    hash_algorithm: str = Field(default="sha256")
    read_chunk_blocks: int = Field(default=512, ge=1)
    eject_attempts: int = Field(default=5, ge=1)
    eject_on_failure: bool = Field(default=True)

    @field_validator("archive_dir", "log_dir", mode="before")
    @classmethod
    def expand_paths(cls, v: Path | str) -> Path:
        """Expand user home directory in paths."""
        if isinstance(v, str):
            v = Path(v)
        return v.expanduser().resolve()

    @field_validator("hash_algorithm")
    @classmethod
    def known_hash_algorithm(cls, v: str) -> str:
        """Only accept digests every Python build provides."""
        v = v.lower()
        if v not in hashlib.algorithms_guaranteed:
            msg = f"Unsupported hash algorithm: {v}"
            raise ValueError(msg)
        return v

    @property
    def partial_dir(self) -> Path:
        """Staging area for in-flight reads, on the archive filesystem."""
        return self.archive_dir / ".partial"

    @property
    def manifest_path(self) -> Path:
        """Append-only archive record manifest."""
        return self.archive_dir / "manifest.jsonl"

    @property
    def queue_db_path(self) -> Path:
        return self.log_dir / "jobs.db"

    @property
    def status_file(self) -> Path:
        """Drive snapshot written by the daemon for the CLI."""
        return self.log_dir / "drives.json"

    @property
    def lsscsi_binary(self) -> str:
        return "lsscsi"

    @property
    def blkid_binary(self) -> str:
        return "blkid"

    @property
    def isoinfo_binary(self) -> str:
        return "isoinfo"

    @property
    def eject_binary(self) -> str:
        return "eject"

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.archive_dir, self.partial_dir, self.log_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)


def load_config(config_path: Path | None = None) -> ArchiverConfig:
    """Load configuration from file or defaults."""
    if config_path is None:
        possible_paths = [
            Path.home() / ".config" / "discvault" / "config.toml",
            Path.cwd() / "discvault.toml",
        ]

        for path in possible_paths:
            if path.exists():
                config_path = path
                break

    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            config_data = tomli.load(f)
        return ArchiverConfig(**config_data)
    return ArchiverConfig()


def create_sample_config(path: Path) -> None:
    """Create a sample configuration file."""
    sample_config = """# discvault Configuration
# =======================

# ============================================================================
# PATHS
# ============================================================================

archive_dir = "~/archive/discs"                   # Finished images and manifest.jsonl
log_dir = "~/.local/share/discvault/logs"         # Logs, job database, drive status

# ============================================================================
# HARDWARE
# ============================================================================

# Restrict to specific drives. Leave empty to use every cd/dvd drive lsscsi lists.
drives = []                                       # e.g. ["/dev/sr0", "/dev/sr1"]
dvdcss_library = "libdvdcss.so.2"                 # Needed for protected video DVDs

# Notifications (optional)
# ntfy_topic = "https://ntfy.sh/your_topic"

# ============================================================================
# RETRY POLICY
# ============================================================================

max_attempts = 3                                  # Attempts per job before it fails
backoff_base = 30.0                               # First retry delay (seconds)
backoff_factor = 2.0                              # Delay multiplier per attempt
backoff_cap = 600.0                               # Longest retry delay (seconds)

# ============================================================================
# ARCHIVAL
# ============================================================================

verify_mode = "checksum"                          # "reread" | "checksum" | "trust"
hash_algorithm = "sha256"
read_chunk_blocks = 512                           # Blocks per read (512 x 2048 = 1 MiB)
eject_attempts = 5                                # Tray open/close retries
eject_on_failure = true                           # Eject discs whose job failed

# ============================================================================
# ADVANCED SETTINGS
# ============================================================================

# Operation Timeouts (seconds)
lsscsi_timeout = 10
blkid_timeout = 10
isoinfo_timeout = 30
eject_timeout = 30
read_timeout = 7200
ntfy_request_timeout = 10

# Processing Intervals (seconds)
refresh_interval = 5.0                            # Drive re-poll interval
queue_poll_interval = 5.0                         # Scheduler re-evaluation interval
error_retry_interval = 10.0                       # Pause after a loop error
status_display_interval = 30
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(sample_config)
