"""
Unit tests for the upload ingestion pipeline.
"""

import io
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from aumusic.database import Database, TrackRepository
from aumusic.errors import (
    PersistenceFailed,
    StorageUnavailable,
    UploadTooLarge,
    ValidationFailed,
)
from aumusic.ingest import (
    GENERIC_FAILURE,
    IngestionPipeline,
    IngestState,
    UploadedFile,
)
from aumusic.models import Claims
from aumusic.storage import StorageLayout

ALICE = Claims(userid="alice-id", username="alice")
FIXED_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_db():
    """Create a temporary database."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db = Database(db_path=path)
    yield db
    db.close()
    os.unlink(path)


@pytest.fixture
def media_root():
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def layout(media_root):
    return StorageLayout(media_root)


@pytest.fixture
def tracks(temp_db):
    return TrackRepository(temp_db)


@pytest.fixture
def pipeline(layout, tracks):
    return IngestionPipeline(layout, tracks, max_upload_bytes=1024, clock=lambda: FIXED_TIME)


def upload(name, data, declared=None):
    return UploadedFile(filename=name, stream=io.BytesIO(data), declared_size=declared)


def files_under(root):
    return sorted(p for p in Path(root).rglob("*") if p.is_file())


def failing_tracks(*create_effects):
    """A track repository stand-in whose inserts fail (or follow create_effects)."""
    tracks = Mock()
    tracks.exists_at.return_value = False
    tracks.create.side_effect = list(create_effects) or PersistenceFailed("database is locked")
    return tracks


class TestIngest:
    def test_single_file(self, pipeline, tracks, media_root):
        """A stored file gets its bytes on disk and a matching row."""
        report = pipeline.ingest(ALICE, "Band", "EP", [upload("song.mp3", b"abc")])

        assert report.count == 1
        result = report.results[0]
        assert result.ok
        assert result.state is IngestState.METADATA_RECORDED
        assert result.size == 3
        assert result.error is None

        track = tracks.get_by_id(result.track_id)
        assert track.owner_user_id == "alice-id"
        assert track.name == "song.mp3"
        assert track.artist == "Band"
        assert track.album == "EP"
        assert track.size_bytes == 3
        assert track.mod_time == FIXED_TIME
        assert track.storage_path.endswith(os.path.join("Band", "EP", "song.mp3"))
        assert Path(track.storage_path).read_bytes() == b"abc"
        assert Path(track.storage_path).is_relative_to(media_root.resolve())

    def test_multiple_files_are_independent(self, pipeline, tracks):
        """A failing file does not stop or undo its neighbours."""
        report = pipeline.ingest(
            ALICE,
            "Band",
            "EP",
            [upload("one.mp3", b"1"), upload("..", b"x"), upload("three.mp3", b"333")],
        )

        assert report.count == 3
        assert [r.ok for r in report.results] == [True, False, True]
        assert report.succeeded == 2
        assert report.results[1].failed_at is IngestState.RECEIVED
        assert [t.name for t in tracks.list_by_owner("alice-id")] == ["one.mp3", "three.mp3"]

    def test_traversal_filename_is_contained(self, pipeline, media_root):
        report = pipeline.ingest(ALICE, "../Band", "x/../EP", [upload("../../evil.mp3", b"x")])

        result = report.results[0]
        assert result.ok
        for path in files_under(media_root):
            assert path.resolve().is_relative_to(media_root.resolve())
        assert files_under(media_root)[0].name == "evil.mp3"

    @pytest.mark.parametrize("artist,album", [("", "EP"), ("Band", ""), ("  ", "EP"), (None, None)])
    def test_artist_and_album_required(self, pipeline, media_root, artist, album):
        with pytest.raises(ValidationFailed):
            pipeline.ingest(ALICE, artist, album, [upload("song.mp3", b"abc")])
        assert files_under(media_root) == []

    def test_owner_required(self, pipeline):
        with pytest.raises(ValidationFailed):
            pipeline.ingest(None, "Band", "EP", [upload("song.mp3", b"abc")])

    def test_files_required(self, pipeline):
        with pytest.raises(ValidationFailed):
            pipeline.ingest(ALICE, "Band", "EP", [])

    def test_declared_size_over_limit(self, pipeline, media_root):
        """An oversized declaration is refused before anything is written."""
        with pytest.raises(UploadTooLarge):
            pipeline.ingest(ALICE, "Band", "EP", [upload("big.mp3", b"x", declared=4096)])
        assert files_under(media_root) == []

    def test_declared_total_over_limit(self, pipeline, media_root):
        with pytest.raises(UploadTooLarge):
            pipeline.ingest(ALICE, "Band", "EP", [upload("a.mp3", b"x")], declared_total=2048)
        assert files_under(media_root) == []

    def test_actual_bytes_over_limit(self, pipeline, tracks, media_root):
        """Undeclared bytes are counted; the overflowing file and all later ones fail."""
        report = pipeline.ingest(
            ALICE,
            "Band",
            "EP",
            [
                upload("a.mp3", b"a" * 600),
                upload("b.mp3", b"b" * 600),
                upload("c.mp3", b"c"),
            ],
        )

        assert [r.ok for r in report.results] == [True, False, False]
        assert "1024" in report.results[1].error
        assert report.results[1].failed_at is IngestState.DIRECTORY_ENSURED
        assert "1024" in report.results[2].error
        assert [p.name for p in files_under(media_root)] == ["a.mp3"]
        assert len(tracks.list_by_owner("alice-id")) == 1

    def test_metadata_failure_removes_file(self, layout, media_root):
        """A failed insert leaves neither a row nor a file."""
        tracks = failing_tracks()
        pipeline = IngestionPipeline(layout, tracks, max_upload_bytes=1024)

        report = pipeline.ingest(ALICE, "Band", "EP", [upload("song.mp3", b"abc")])

        result = report.results[0]
        assert not result.ok
        assert result.error == GENERIC_FAILURE
        assert result.failed_at is IngestState.FILE_WRITTEN
        assert files_under(media_root) == []

    def test_cleanup_failure_escalates(self, layout):
        """If the orphaned file cannot be removed the request fails loudly."""
        tracks = failing_tracks()
        pipeline = IngestionPipeline(layout, tracks, max_upload_bytes=1024)

        with patch.object(layout, "remove", side_effect=StorageUnavailable("read-only")):
            with pytest.raises(StorageUnavailable) as excinfo:
                pipeline.ingest(ALICE, "Band", "EP", [upload("song.mp3", b"abc")])
        assert "orphaned" in str(excinfo.value)

    def test_storage_failure_is_generic(self, pipeline, layout, tracks):
        with patch.object(layout, "ensure_directory", side_effect=StorageUnavailable("/secret/path")):
            report = pipeline.ingest(ALICE, "Band", "EP", [upload("song.mp3", b"abc")])

        result = report.results[0]
        assert result.error == GENERIC_FAILURE
        assert "/secret/path" not in result.error
        assert result.failed_at is IngestState.VALIDATED
        assert tracks.list_by_owner("alice-id") == []

    def test_reupload_is_rejected(self, pipeline, tracks, media_root):
        """A second file at the same path fails; the first track keeps its bytes."""
        first = pipeline.ingest(ALICE, "Band", "EP", [upload("song.mp3", b"first")]).results[0]
        report = pipeline.ingest(ALICE, "Band", "EP", [upload("song.mp3", b"second")])

        result = report.results[0]
        assert not result.ok
        assert "already exists" in result.error
        assert result.failed_at is IngestState.RECEIVED

        rows = tracks.list_by_owner("alice-id")
        assert [t.id for t in rows] == [first.track_id]
        stored = Path(tracks.get_by_id(first.track_id).storage_path)
        assert stored.read_bytes() == b"first"
        assert [p.resolve() for p in files_under(media_root)] == [stored]

    def test_failed_reupload_keeps_committed_track(self, pipeline, layout, tracks):
        """Cleanup after a failed insert never touches a file it did not create."""
        first = pipeline.ingest(ALICE, "Band", "EP", [upload("song.mp3", b"abc")]).results[0]

        # Misses the existing row, so only the filesystem stands in the way
        blind = failing_tracks()
        report = IngestionPipeline(layout, blind, max_upload_bytes=1024).ingest(
            ALICE, "Band", "EP", [upload("song.mp3", b"xyz")]
        )

        assert not report.results[0].ok
        assert "already exists" in report.results[0].error
        blind.create.assert_not_called()
        track = tracks.get_by_id(first.track_id)
        assert Path(track.storage_path).read_bytes() == b"abc"

    def test_untracked_file_is_not_replaced(self, pipeline, layout, tracks):
        path = layout.resolve_path("alice-id", "Band", "EP", "song.mp3")
        layout.ensure_directory(path)
        path.write_bytes(b"left behind")

        report = pipeline.ingest(ALICE, "Band", "EP", [upload("song.mp3", b"new")])

        result = report.results[0]
        assert not result.ok
        assert result.failed_at is IngestState.DIRECTORY_ENSURED
        assert path.read_bytes() == b"left behind"
        assert tracks.list_by_owner("alice-id") == []

    def test_failed_files_count_against_budget(self, layout, media_root):
        """Bytes streamed for a file that later failed still use up the request budget."""
        tracks = failing_tracks(PersistenceFailed("database is locked"), 7)
        pipeline = IngestionPipeline(layout, tracks, max_upload_bytes=1024)

        report = pipeline.ingest(
            ALICE, "Band", "EP", [upload("a.mp3", b"a" * 600), upload("b.mp3", b"b" * 600)]
        )

        assert [r.ok for r in report.results] == [False, False]
        assert report.results[0].error == GENERIC_FAILURE
        assert "1024" in report.results[1].error
        assert tracks.create.call_count == 1
        assert files_under(media_root) == []
