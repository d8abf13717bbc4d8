"""Archival pipeline: mount, full read, verify, commit.

Each step runs on the drive worker's own thread. Steps call the supplied
``checkpoint`` between chunks of work so cancellation and vanished drives are
noticed without waiting for a whole pass over the disc.
"""

import errno
import hashlib
import logging
import os
import re
import shutil
import tempfile
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO

from discvault.archive.manifest import ArchiveManifest, ArchiveRecord, hash_file
from discvault.config import ArchiverConfig
from discvault.error_handling import (
    ArchiveWriteError,
    DecryptionError,
    DriveTimeoutError,
    TransientReadError,
    VerificationMismatchError,
)
from discvault.queue.manager import Job
from discvault.services.device import open_raw_device
from discvault.services.interfaces import Decryptor, LayoutReader, MediaLayout

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"

Checkpoint = Callable[[], None]
ProgressCallback = Callable[[int, int], None]


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for filesystem compatibility."""
    safe_name = re.sub(r'[<>:"/\\|?*]', "_", filename)
    safe_name = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", safe_name)
    return safe_name.strip(" .")


@dataclass(frozen=True)
class MountedMedia:
    """A disc whose layout has been read and that is ready to stream."""

    device: str
    layout: MediaLayout
    decrypted: bool = False


@dataclass(frozen=True)
class StagedImage:
    """A complete first read sitting in the partial directory."""

    path: Path
    content_hash: str
    byte_length: int


class ArchivalPipeline:
    """Turns the disc in one drive into a verified archive record."""

    def __init__(
        self,
        config: ArchiverConfig,
        manifest: ArchiveManifest,
        layout_reader: LayoutReader,
        *,
        decryptor: Decryptor | None = None,
        opener: Callable[[str], BinaryIO] = open_raw_device,
    ):
        self.config = config
        self.manifest = manifest
        self.layout_reader = layout_reader
        self.decryptor = decryptor
        self.opener = opener
        self._commit_lock = threading.Lock()

    def mount(self, job: Job, device: str) -> MountedMedia:
        """Read the volume layout and, for protected DVDs, authenticate."""
        layout = self.layout_reader.read_layout(device)

        decrypted = False
        if layout.video_dvd:
            if self.decryptor is None:
                msg = f"{device} holds a video DVD and no decryption library is loaded"
                raise DecryptionError(
                    msg,
                    device=device,
                    solution="Install libdvdcss and set dvdcss_library",
                    recoverable=False,
                )
            # Open once so authentication failures surface before the read
            with self.decryptor.open(device):
                pass
            decrypted = True

        logger.info(
            "Mounted %s for job %s: %s, %s blocks of %s bytes%s",
            device,
            job.job_id,
            layout.label or "unlabelled",
            layout.blocks,
            layout.block_size,
            " (decrypted)" if decrypted else "",
        )
        return MountedMedia(device=device, layout=layout, decrypted=decrypted)

    def read(
        self,
        job: Job,
        media: MountedMedia,
        checkpoint: Checkpoint,
        progress: ProgressCallback | None = None,
    ) -> StagedImage:
        """Stream the whole volume into a fresh partial file while hashing it."""
        try:
            self.config.partial_dir.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(
                dir=self.config.partial_dir,
                prefix=f"job{job.job_id}-a{job.attempts}-",
                suffix=PARTIAL_SUFFIX,
            )
        except OSError as e:
            msg = f"Cannot create staging file in {self.config.partial_dir}"
            raise ArchiveWriteError(msg, device=media.device, original_error=e) from e

        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as out:
                content_hash, length = self._stream(media, checkpoint, progress, out)
                try:
                    out.flush()
                    os.fsync(out.fileno())
                except OSError as e:
                    msg = f"Cannot flush staging file {path}"
                    raise ArchiveWriteError(
                        msg,
                        device=media.device,
                        original_error=e,
                    ) from e
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        logger.info(
            "Read %s bytes from %s (%s %s)",
            length,
            media.device,
            self.config.hash_algorithm,
            content_hash[:12],
        )
        return StagedImage(path=path, content_hash=content_hash, byte_length=length)

    def verify(
        self,
        staged: StagedImage,
        media: MountedMedia,
        checkpoint: Checkpoint,
        progress: ProgressCallback | None = None,
    ) -> None:
        """Confirm the staged bytes according to ``verify_mode``."""
        mode = self.config.verify_mode
        if mode == "trust":
            logger.debug("Skipping verification of %s", staged.path)
            return

        checkpoint()
        if mode == "reread":
            digest, length = self._stream(media, checkpoint, progress, None)
        else:
            try:
                digest, length = hash_file(staged.path, self.config.hash_algorithm)
            except OSError as e:
                msg = f"Cannot re-read staging file {staged.path}"
                raise ArchiveWriteError(
                    msg,
                    device=media.device,
                    original_error=e,
                ) from e

        if digest != staged.content_hash or length != staged.byte_length:
            raise VerificationMismatchError(
                staged.content_hash,
                digest,
                device=media.device,
            )
        logger.info("Verified %s (%s)", media.device, mode)

    def commit(
        self,
        job: Job,
        staged: StagedImage,
        media: MountedMedia,
    ) -> ArchiveRecord:
        """Move the staged image into place and record it in the manifest."""
        with self._commit_lock:
            final = self._unique_destination(
                self.destination_for(job, media.layout),
                staged.content_hash,
            )
            self._promote(staged.path, final, media.device)

        record = ArchiveRecord(
            content_hash=staged.content_hash,
            byte_length=staged.byte_length,
            source_drive=media.device,
            path=final,
            completed_at=datetime.now(UTC),
            disc_label=media.layout.label,
            job_id=job.job_id,
            hash_algorithm=self.config.hash_algorithm,
        )
        try:
            return self.manifest.append(record)
        except ArchiveWriteError:
            # Content without a record would look archived to nobody
            final.unlink(missing_ok=True)
            raise

    def discard(self, staged: StagedImage | None) -> None:
        if staged is not None:
            staged.path.unlink(missing_ok=True)

    def discard_stale_partials(self) -> int:
        """Remove partial files left behind by an interrupted run."""
        if not self.config.partial_dir.exists():
            return 0
        removed = 0
        for path in self.config.partial_dir.glob(f"*{PARTIAL_SUFFIX}"):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Could not remove stale partial %s: %s", path, e)
        if removed:
            logger.info("Removed %s stale partial files", removed)
        return removed

    def destination_for(self, job: Job, layout: MediaLayout) -> Path:
        """Where a job's image should land before collision handling."""
        name = sanitize_filename(layout.label or job.label or "")
        default_name = f"{name or f'disc-{job.job_id}'}.iso"

        if not job.destination:
            return self.config.archive_dir / default_name

        destination = Path(job.destination).expanduser()
        if not destination.is_absolute():
            destination = self.config.archive_dir / destination
        if destination.is_dir() or str(job.destination).endswith("/"):
            return destination / default_name
        return destination

    def _unique_destination(self, destination: Path, content_hash: str) -> Path:
        """Never overwrite: fall back to a hash-suffixed sibling name."""
        if not destination.exists():
            return destination

        stem, suffix = destination.stem, destination.suffix
        candidate = destination.with_name(f"{stem}.{content_hash[:12]}{suffix}")
        counter = 1
        while candidate.exists():
            candidate = destination.with_name(
                f"{stem}.{content_hash[:12]}-{counter}{suffix}",
            )
            counter += 1

        logger.info("%s exists, archiving as %s", destination.name, candidate.name)
        return candidate

    def _promote(self, source: Path, final: Path, device: str) -> None:
        try:
            final.parent.mkdir(parents=True, exist_ok=True)
            try:
                os.replace(source, final)
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
                # Destination on another filesystem: copy beside it, then rename
                tmp = final.with_name(f".{final.name}{PARTIAL_SUFFIX}")
                shutil.copyfile(source, tmp)
                os.replace(tmp, final)
                source.unlink(missing_ok=True)
        except OSError as e:
            msg = f"Cannot move archive into place at {final}"
            raise ArchiveWriteError(msg, device=device, original_error=e) from e

    def _open_source(self, media: MountedMedia) -> BinaryIO:
        if media.decrypted and self.decryptor is not None:
            return self.decryptor.open(media.device)
        try:
            return self.opener(media.device)
        except OSError as e:
            msg = f"Cannot open {media.device} for reading"
            raise TransientReadError(msg, device=media.device, original_error=e) from e

    def _stream(
        self,
        media: MountedMedia,
        checkpoint: Checkpoint,
        progress: ProgressCallback | None,
        sink: BinaryIO | None,
    ) -> tuple[str, int]:
        """Read exactly the volume length, hashing and optionally copying it."""
        layout = media.layout
        digest = hashlib.new(self.config.hash_algorithm)
        chunk_size = layout.block_size * self.config.read_chunk_blocks
        done = 0
        started = time.monotonic()

        with self._open_source(media) as source:
            while done < layout.length:
                checkpoint()
                want = min(chunk_size, layout.length - done)
                try:
                    data = _read_exact(source, want)
                except OSError as e:
                    msg = f"Read error on {media.device} at byte {done}"
                    raise TransientReadError(
                        msg,
                        device=media.device,
                        original_error=e,
                    ) from e
                if len(data) < want:
                    msg = (
                        f"Short read on {media.device}: "
                        f"{done + len(data)} of {layout.length} bytes"
                    )
                    raise TransientReadError(msg, device=media.device)

                digest.update(data)
                if sink is not None:
                    try:
                        sink.write(data)
                    except OSError as e:
                        msg = "Cannot write to staging file"
                        raise ArchiveWriteError(
                            msg,
                            device=media.device,
                            original_error=e,
                        ) from e

                done += want
                if progress:
                    progress(done, layout.length)

                if time.monotonic() - started > self.config.read_timeout:
                    msg = (
                        f"Reading {media.device} took longer than "
                        f"{self.config.read_timeout}s"
                    )
                    raise DriveTimeoutError(msg, device=media.device)

        checkpoint()
        return digest.hexdigest(), done


def _read_exact(source: BinaryIO, size: int) -> bytes:
    """Read ``size`` bytes, tolerating devices that return partial chunks."""
    parts = []
    remaining = size
    while remaining > 0:
        data = source.read(remaining)
        if not data:
            break
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)
