"""Tests for the archival pipeline steps."""

import errno
import hashlib
from pathlib import Path
from unittest.mock import patch

import pytest

from discvault.archive.manifest import ArchiveManifest
from discvault.archive.pipeline import ArchivalPipeline, sanitize_filename
from discvault.error_handling import (
    ArchiveWriteError,
    DecryptionError,
    DriveTimeoutError,
    OperatorCancelled,
    TransientReadError,
    UnsupportedMediaError,
    VerificationMismatchError,
)
from discvault.queue.manager import Job
from discvault.services.interfaces import MediaLayout
from fakes import BLOCK, FakeDecryptor, SimulatedBay, SimulatedDisc, disc_bytes

DEVICE = "/dev/sr0"


@pytest.fixture
def bay():
    return SimulatedBay()


@pytest.fixture
def manifest(config):
    return ArchiveManifest(config.manifest_path)


def build(config, bay, manifest, **overrides):
    config = config.model_copy(update=overrides)
    return ArchivalPipeline(
        config,
        manifest,
        bay,
        decryptor=FakeDecryptor(bay),
        opener=bay.open_device,
    )


def job(job_id=1, **kwargs):
    return Job(job_id=job_id, attempts=1, **kwargs)


def nothing():
    pass


def run_through(pipeline, the_job, device=DEVICE):
    media = pipeline.mount(the_job, device)
    staged = pipeline.read(the_job, media, nothing)
    pipeline.verify(staged, media, nothing)
    return pipeline.commit(the_job, staged, media)


class TestMount:
    def test_mount_reads_layout(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(4), "HOLIDAY"))
        pipeline = build(config, bay, manifest)

        media = pipeline.mount(job(), DEVICE)

        assert media.layout.label == "HOLIDAY"
        assert media.layout.blocks == 4
        assert media.decrypted is False

    def test_video_dvd_is_authenticated(self, config, bay, manifest):
        disc = SimulatedDisc(disc_bytes(4), video_dvd=True)
        bay.add_drive(DEVICE, disc)
        pipeline = build(config, bay, manifest)

        media = pipeline.mount(job(), DEVICE)

        assert media.decrypted is True
        assert pipeline.decryptor.opened == [DEVICE]

    def test_video_dvd_without_decryptor_is_permanent(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(4), video_dvd=True))
        pipeline = ArchivalPipeline(config, manifest, bay, opener=bay.open_device)

        with pytest.raises(DecryptionError):
            pipeline.mount(job(), DEVICE)

    def test_decryption_failure(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(4), video_dvd=True))
        pipeline = ArchivalPipeline(
            config,
            manifest,
            bay,
            decryptor=FakeDecryptor(bay, fail=True),
            opener=bay.open_device,
        )

        with pytest.raises(DecryptionError):
            pipeline.mount(job(), DEVICE)

    def test_unreadable_layout(self, config, bay, manifest):
        bay.add_drive(
            DEVICE,
            SimulatedDisc(disc_bytes(4), layout_error=UnsupportedMediaError("no pvd")),
        )

        with pytest.raises(UnsupportedMediaError):
            build(config, bay, manifest).mount(job(), DEVICE)

    def test_disc_gone_before_mount(self, config, bay, manifest):
        bay.add_drive(DEVICE)

        with pytest.raises(UnsupportedMediaError) as exc_info:
            build(config, bay, manifest).mount(job(), DEVICE)

        assert exc_info.value.device == DEVICE


class TestRead:
    def test_read_stages_exact_bytes(self, config, bay, manifest):
        data = disc_bytes(5, seed=3)
        bay.add_drive(DEVICE, SimulatedDisc(data))
        pipeline = build(config, bay, manifest)
        progress = []

        media = pipeline.mount(job(), DEVICE)
        staged = pipeline.read(job(), media, nothing, lambda done, total: progress.append(done))

        assert staged.path.read_bytes() == data
        assert staged.content_hash == hashlib.sha256(data).hexdigest()
        assert staged.byte_length == len(data)
        assert staged.path.parent == config.partial_dir
        assert progress[-1] == len(data)

    def test_read_error_is_transient_and_leaves_no_partial(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(8), failing_reads=1))
        pipeline = build(config, bay, manifest)
        media = pipeline.mount(job(), DEVICE)

        with pytest.raises(TransientReadError) as excinfo:
            pipeline.read(job(), media, nothing)

        assert excinfo.value.original_error.errno == errno.EIO
        assert list(config.partial_dir.iterdir()) == []

    def test_short_read(self, config, bay, manifest):
        disc = SimulatedDisc(disc_bytes(4))
        bay.add_drive(DEVICE, disc)
        pipeline = build(config, bay, manifest)
        media = pipeline.mount(job(), DEVICE)
        disc.data = disc.data[: BLOCK * 3]

        with pytest.raises(TransientReadError, match="Short read"):
            pipeline.read(job(), media, nothing)

    def test_checkpoint_can_abort_read(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(8)))
        pipeline = build(config, bay, manifest)
        media = pipeline.mount(job(), DEVICE)
        calls = []

        def cancel_on_third():
            calls.append(1)
            if len(calls) == 3:
                raise OperatorCancelled(1)

        with pytest.raises(OperatorCancelled):
            pipeline.read(job(), media, cancel_on_third)

        assert list(config.partial_dir.iterdir()) == []

    def test_read_timeout(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(4)))
        pipeline = build(config, bay, manifest, read_timeout=-1)
        media = pipeline.mount(job(), DEVICE)

        with pytest.raises(DriveTimeoutError):
            pipeline.read(job(), media, nothing)

    def test_open_failure_is_transient(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(4)))
        pipeline = build(config, bay, manifest)
        media = pipeline.mount(job(), DEVICE)
        bay.unplug(DEVICE)

        with pytest.raises(TransientReadError):
            pipeline.read(job(), media, nothing)


class TestVerify:
    def test_checksum_mode_detects_corrupted_staging(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(4)))
        pipeline = build(config, bay, manifest)
        media = pipeline.mount(job(), DEVICE)
        staged = pipeline.read(job(), media, nothing)
        staged.path.write_bytes(b"corrupt")

        with pytest.raises(VerificationMismatchError):
            pipeline.verify(staged, media, nothing)

    def test_reread_mode_detects_unstable_disc(self, config, bay, manifest):
        disc = SimulatedDisc(disc_bytes(4, seed=1))
        bay.add_drive(DEVICE, disc)
        pipeline = build(config, bay, manifest, verify_mode="reread")
        media = pipeline.mount(job(), DEVICE)
        staged = pipeline.read(job(), media, nothing)
        disc.data = disc_bytes(4, seed=2)

        with pytest.raises(VerificationMismatchError):
            pipeline.verify(staged, media, nothing)

    def test_reread_mode_passes_stable_disc(self, config, bay, manifest):
        disc = SimulatedDisc(disc_bytes(4))
        bay.add_drive(DEVICE, disc)
        pipeline = build(config, bay, manifest, verify_mode="reread")
        media = pipeline.mount(job(), DEVICE)
        staged = pipeline.read(job(), media, nothing)

        pipeline.verify(staged, media, nothing)

        assert disc.opens == 2

    def test_trust_mode_skips(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(4)))
        pipeline = build(config, bay, manifest, verify_mode="trust")
        media = pipeline.mount(job(), DEVICE)
        staged = pipeline.read(job(), media, nothing)
        staged.path.write_bytes(b"corrupt")

        pipeline.verify(staged, media, nothing)


class TestCommit:
    def test_commit_records_and_promotes(self, config, bay, manifest):
        data = disc_bytes(4)
        bay.add_drive(DEVICE, SimulatedDisc(data, "HOLIDAY"))
        pipeline = build(config, bay, manifest)

        record = run_through(pipeline, job(job_id=9))

        assert record.path == config.archive_dir / "HOLIDAY.iso"
        assert record.path.read_bytes() == data
        assert record.source_drive == DEVICE
        assert record.job_id == 9
        assert manifest.records() == [record]
        assert list(config.partial_dir.iterdir()) == []

    def test_existing_file_never_overwritten(self, config, bay, manifest):
        data = disc_bytes(4)
        bay.add_drive(DEVICE, SimulatedDisc(data, "HOLIDAY"))
        config.archive_dir.mkdir(parents=True)
        (config.archive_dir / "HOLIDAY.iso").write_bytes(b"older")
        pipeline = build(config, bay, manifest)

        record = run_through(pipeline, job())

        digest = hashlib.sha256(data).hexdigest()
        assert record.path.name == f"HOLIDAY.{digest[:12]}.iso"
        assert (config.archive_dir / "HOLIDAY.iso").read_bytes() == b"older"

    def test_same_disc_twice_is_duplicate(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(4), "HOLIDAY"))
        pipeline = build(config, bay, manifest)

        first = run_through(pipeline, job(job_id=1))
        second = run_through(pipeline, job(job_id=2))

        assert first.duplicate is False
        assert second.duplicate is True
        assert first.path != second.path
        assert first.path.exists()
        assert second.path.exists()

    def test_manifest_failure_removes_final_file(self, config, bay, manifest):
        bay.add_drive(DEVICE, SimulatedDisc(disc_bytes(4), "HOLIDAY"))
        pipeline = build(config, bay, manifest)
        media = pipeline.mount(job(), DEVICE)
        staged = pipeline.read(job(), media, nothing)

        with patch.object(manifest, "append", side_effect=ArchiveWriteError("disk full")):
            with pytest.raises(ArchiveWriteError):
                pipeline.commit(job(), staged, media)

        assert not (config.archive_dir / "HOLIDAY.iso").exists()

    def test_discard_stale_partials(self, config, bay, manifest):
        config.partial_dir.mkdir(parents=True)
        (config.partial_dir / "job1-a1-xyz.partial").write_bytes(b"half")
        (config.partial_dir / "keep.txt").write_bytes(b"x")
        pipeline = build(config, bay, manifest)

        assert pipeline.discard_stale_partials() == 1
        assert [p.name for p in config.partial_dir.iterdir()] == ["keep.txt"]


class TestDestination:
    LAYOUT = MediaLayout(label="VOL", block_size=BLOCK, length=BLOCK)

    def test_default_name(self, config, bay, manifest):
        pipeline = build(config, bay, manifest)

        assert pipeline.destination_for(job(), self.LAYOUT) == config.archive_dir / "VOL.iso"

    def test_unlabelled_disc_falls_back(self, config, bay, manifest):
        pipeline = build(config, bay, manifest)
        layout = MediaLayout(label=None, block_size=BLOCK, length=BLOCK)

        assert pipeline.destination_for(job(label="Wedding"), layout).name == "Wedding.iso"
        assert pipeline.destination_for(job(job_id=4), layout).name == "disc-4.iso"

    def test_relative_destination(self, config, bay, manifest):
        pipeline = build(config, bay, manifest)

        result = pipeline.destination_for(job(destination=Path("family/tape.iso")), self.LAYOUT)

        assert result == config.archive_dir / "family" / "tape.iso"

    def test_directory_destination(self, config, bay, manifest, tmp_path):
        pipeline = build(config, bay, manifest)

        result = pipeline.destination_for(job(destination=tmp_path), self.LAYOUT)

        assert result == tmp_path / "VOL.iso"

    def test_sanitize_filename(self):
        assert sanitize_filename('a/b:c*?"d') == "a_b_c___d"
        assert sanitize_filename(" .name. ") == "name"
