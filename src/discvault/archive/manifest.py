"""Append-only manifest of archive records."""

import fcntl
import hashlib
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from pathlib import Path

from discvault.error_handling import ArchiveWriteError

logger = logging.getLogger(__name__)

HASH_BLOCK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class ArchiveRecord:
    """Durable proof that one disc was archived intact."""

    content_hash: str
    byte_length: int
    source_drive: str
    path: Path
    completed_at: datetime
    disc_label: str | None = None
    job_id: int | None = None
    hash_algorithm: str = "sha256"
    duplicate: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["path"] = str(self.path)
        data["completed_at"] = self.completed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ArchiveRecord":
        return cls(
            content_hash=data["content_hash"],
            byte_length=int(data["byte_length"]),
            source_drive=data["source_drive"],
            path=Path(data["path"]),
            completed_at=datetime.fromisoformat(data["completed_at"]),
            disc_label=data.get("disc_label"),
            job_id=data.get("job_id"),
            hash_algorithm=data.get("hash_algorithm", "sha256"),
            duplicate=bool(data.get("duplicate", False)),
        )


def hash_file(path: Path, algorithm: str = "sha256") -> tuple[str, int]:
    """Digest and size of a file on disk."""
    digest = hashlib.new(algorithm)
    length = 0
    with open(path, "rb") as f:
        while chunk := f.read(HASH_BLOCK_SIZE):
            digest.update(chunk)
            length += len(chunk)
    return digest.hexdigest(), length


class ArchiveManifest:
    """JSON Lines file of ArchiveRecords; records are only ever appended."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def append(self, record: ArchiveRecord) -> ArchiveRecord:
        """Durably append a record, flagging it when the content is already archived."""
        line = None
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a+", encoding="utf-8") as f:
                    # The CLI may verify while the daemon appends
                    fcntl.flock(f, fcntl.LOCK_EX)
                    try:
                        f.seek(0)
                        duplicate = any(
                            existing.content_hash == record.content_hash
                            and existing.hash_algorithm == record.hash_algorithm
                            for existing in self._parse(f)
                        )
                        if duplicate:
                            record = replace(record, duplicate=True)
                        line = json.dumps(record.to_dict(), sort_keys=True)
                        f.seek(0, os.SEEK_END)
                        f.write(line + "\n")
                        f.flush()
                        os.fsync(f.fileno())
                    finally:
                        fcntl.flock(f, fcntl.LOCK_UN)
            except OSError as e:
                msg = f"Could not append to manifest {self.path}"
                raise ArchiveWriteError(msg, original_error=e) from e

        if record.duplicate:
            logger.info(
                "Archived %s (duplicate of an earlier disc, %s)",
                record.path,
                record.content_hash[:12],
            )
        else:
            logger.info("Archived %s (%s)", record.path, record.content_hash[:12])
        return record

    def records(self) -> list[ArchiveRecord]:
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            return list(self._parse(f))

    def _parse(self, lines):
        for number, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield ArchiveRecord.from_dict(json.loads(line))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed manifest line %s: %s", number, e)

    def find(self, content_hash: str) -> list[ArchiveRecord]:
        """Records whose hash starts with ``content_hash``."""
        prefix = content_hash.lower()
        return [r for r in self.records() if r.content_hash.startswith(prefix)]

    def for_job(self, job_id: int) -> list[ArchiveRecord]:
        return [r for r in self.records() if r.job_id == job_id]

    def verify_record(self, record: ArchiveRecord) -> bool:
        """Re-hash the stored content and compare against the record."""
        if not record.path.exists():
            logger.warning("Archived content missing: %s", record.path)
            return False
        digest, length = hash_file(record.path, record.hash_algorithm)
        if digest != record.content_hash or length != record.byte_length:
            logger.warning("Archived content changed: %s", record.path)
            return False
        return True
