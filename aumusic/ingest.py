"""
Upload ingestion for aumusic.

Each uploaded file moves through a fixed sequence of steps:

    RECEIVED -> VALIDATED -> DIRECTORY_ENSURED -> FILE_WRITTEN -> METADATA_RECORDED

and can drop to FAILED from any of them. Bytes are written before the
metadata row is inserted; if the insert fails the file is removed again, so
a committed row always points at a complete file and no file is left
without a row.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Sequence

from .database import TrackRepository
from .errors import (
    AlreadyExists,
    PersistenceFailed,
    StorageUnavailable,
    UploadTooLarge,
    ValidationFailed,
)
from .models import Claims
from .storage import StorageLayout, sanitize_component

GENERIC_FAILURE = "failed to store file"


class IngestState(Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    DIRECTORY_ENSURED = "directory_ensured"
    FILE_WRITTEN = "file_written"
    METADATA_RECORDED = "metadata_recorded"
    FAILED = "failed"


@dataclass
class UploadedFile:
    """One file part of a multipart upload."""

    filename: str
    stream: BinaryIO
    declared_size: Optional[int] = None  # As claimed by the client; never trusted


@dataclass
class FileResult:
    """Outcome for a single uploaded file."""

    filename: str
    state: IngestState
    track_id: Optional[int] = None
    size: Optional[int] = None
    error: Optional[str] = None
    failed_at: Optional[IngestState] = None  # Last step reached before failing

    @property
    def ok(self) -> bool:
        return self.state is IngestState.METADATA_RECORDED


@dataclass
class UploadReport:
    """Per-file results of one upload request."""

    results: List[FileResult] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)


class IngestionPipeline:
    """Writes uploaded files to storage and records them as tracks."""

    def __init__(
        self,
        layout: StorageLayout,
        tracks: TrackRepository,
        max_upload_bytes: int,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            layout: Storage layout for resolving and writing files
            tracks: Track metadata repository
            max_upload_bytes: Ceiling for the whole request, checked on actual bytes
            clock: Returns the timestamp recorded on new tracks (UTC now by default)
        """
        self.layout = layout
        self.tracks = tracks
        self.max_upload_bytes = max_upload_bytes
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(__name__)

    def validate_request(
        self,
        claims: Optional[Claims],
        artist: Optional[str],
        album: Optional[str],
        files: Sequence[UploadedFile],
        declared_total: Optional[int] = None,
    ):
        """
        Request-level checks. Runs before anything touches storage.

        Raises:
            ValidationFailed: missing owner, artist, album or files
            UploadTooLarge: declared size above the ceiling
        """
        if claims is None or not claims.userid:
            raise ValidationFailed("owner is required")
        if not (artist or "").strip() or not (album or "").strip():
            raise ValidationFailed("artist and album are required")
        if not files:
            raise ValidationFailed("at least one file is required")

        if declared_total is None:
            sizes = [f.declared_size for f in files if f.declared_size is not None]
            declared_total = sum(sizes) if sizes else None
        if declared_total is not None and declared_total > self.max_upload_bytes:
            raise UploadTooLarge(
                f"upload exceeds maximum size of {self.max_upload_bytes} bytes"
            )

    def ingest(
        self,
        claims: Claims,
        artist: str,
        album: str,
        files: Sequence[UploadedFile],
        declared_total: Optional[int] = None,
    ) -> UploadReport:
        """
        Store every file of an upload request.

        Files are processed in order and independently: a failure does not
        undo files already recorded. Once the request's byte budget is used
        up, every remaining file fails.

        Raises:
            ValidationFailed / UploadTooLarge: request-level validation failed
            StorageUnavailable: an orphaned file could not be cleaned up
        """
        self.validate_request(claims, artist, album, files, declared_total)
        artist = artist.strip()
        album = album.strip()

        report = UploadReport()
        remaining = self.max_upload_bytes
        budget_exhausted = False

        for upload in files:
            if budget_exhausted:
                report.results.append(
                    FileResult(
                        filename=upload.filename,
                        state=IngestState.FAILED,
                        failed_at=IngestState.RECEIVED,
                        error=f"upload exceeds maximum size of {self.max_upload_bytes} bytes",
                    )
                )
                continue

            result = FileResult(filename=upload.filename, state=IngestState.RECEIVED)
            try:
                self._ingest_one(result, claims.userid, artist, album, upload, remaining)
            except UploadTooLarge:
                self._fail(
                    result,
                    f"upload exceeds maximum size of {self.max_upload_bytes} bytes",
                )
                budget_exhausted = True
            report.results.append(result)
            if result.size is not None:
                remaining -= result.size

        self.logger.info(
            "Upload by %s: %d of %d files stored under %s/%s",
            claims.userid, report.succeeded, report.count, artist, album,
        )
        return report

    def _ingest_one(
        self,
        result: FileResult,
        owner_id: str,
        artist: str,
        album: str,
        upload: UploadedFile,
        budget: int,
    ) -> FileResult:
        """Run one file through the steps, recording progress on result."""
        try:
            name = sanitize_component(upload.filename)
            path = self.layout.resolve_path(owner_id, artist, album, name)
        except ValidationFailed as e:
            return self._fail(result, str(e))

        # Each stored path belongs to at most one track
        try:
            in_use = self.tracks.exists_at(str(path))
        except PersistenceFailed as e:
            self.logger.error("Failed to check for an existing track at %s: %s", path, e)
            return self._fail(result, GENERIC_FAILURE)
        if in_use:
            return self._fail(result, f"a track named {name} already exists in {artist}/{album}")
        result.state = IngestState.VALIDATED

        try:
            self.layout.ensure_directory(path)
            result.state = IngestState.DIRECTORY_ENSURED

            size = self.layout.write_file(path, upload.stream, budget)
            result.state = IngestState.FILE_WRITTEN
            result.size = size
        except AlreadyExists as e:
            # A file with no row; leave it alone
            self.logger.warning("Refusing to replace untracked file %s", path)
            return self._fail(result, str(e))
        except StorageUnavailable as e:
            self.logger.error("Failed to store %s at %s: %s", upload.filename, path, e)
            return self._fail(result, GENERIC_FAILURE)

        try:
            track_id = self.tracks.create(
                owner_user_id=owner_id,
                name=name,
                artist=artist,
                album=album,
                size_bytes=size,
                storage_path=str(path),
                mod_time=self.clock(),
            )
        except PersistenceFailed as e:
            self.logger.error(
                "Failed to record track for %s, removing file: %s", path, e, exc_info=True
            )
            self._remove_orphan(path)
            return self._fail(result, GENERIC_FAILURE)

        result.state = IngestState.METADATA_RECORDED
        result.track_id = track_id
        self.logger.info("Stored track %s at %s (%d bytes)", track_id, path, size)
        return result

    def _fail(self, result: FileResult, reason: str) -> FileResult:
        result.failed_at = result.state
        result.state = IngestState.FAILED
        result.error = reason
        self.logger.info("Upload of %s failed after %s: %s",
                         result.filename, result.failed_at.value, reason)
        return result

    def _remove_orphan(self, path: Path):
        try:
            self.layout.remove(path)
        except StorageUnavailable as e:
            self.logger.critical(
                "Orphaned file %s has no track row and could not be removed; "
                "remove it manually", path,
            )
            raise StorageUnavailable(f"orphaned file left at {path}") from e
