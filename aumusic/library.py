"""
Track delivery and removal for aumusic.

Every operation resolves the caller's identity first, then looks the track
up, then checks ownership, and only then touches the filesystem.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, List, Optional

from .credentials import CredentialCodec
from .database import TrackRepository
from .errors import NotFound, StorageUnavailable
from .models import Claims, Track, TrackSummary
from .ownership import OwnershipGuard
from .storage import StorageLayout


@dataclass
class TrackStream:
    """An opened track, ready for range serving. Caller closes stream."""

    stream: BinaryIO  # Seekable
    size: int
    last_modified: datetime
    track: Track

    def close(self):
        self.stream.close()


class TrackLibrary:
    """Serves, lists and deletes a user's own tracks."""

    def __init__(
        self,
        codec: CredentialCodec,
        guard: OwnershipGuard,
        tracks: TrackRepository,
        layout: StorageLayout,
    ):
        self.codec = codec
        self.guard = guard
        self.tracks = tracks
        self.layout = layout
        self.logger = logging.getLogger(__name__)

    def _owned_track(self, token: Optional[str], track_id: int) -> Track:
        claims = self.codec.decode(token)
        track = self.tracks.get_by_id(track_id)
        if track is None:
            raise NotFound(f"track {track_id} not found")
        self.guard.check(claims, track.owner_user_id)
        if not self.layout.contains(track.storage_path):
            self.logger.error(
                "Track %s points outside the media root: %s", track.id, track.storage_path
            )
            raise StorageUnavailable(f"track {track_id} has an invalid storage path")
        return track

    def fetch(self, token: Optional[str], track_id: int) -> TrackStream:
        """
        Open a track for streaming.

        Raises:
            InvalidCredential: token did not decode
            NotFound: no such track
            Denied: track belongs to someone else
            StorageUnavailable: file missing, or path outside the media root
        """
        track = self._owned_track(token, track_id)
        try:
            stream, stat = self.layout.open_for_read(track.storage_path)
        except StorageUnavailable:
            self.logger.error(
                "Track %s has a row but its file is unavailable: %s",
                track.id, track.storage_path, exc_info=True,
            )
            raise
        return TrackStream(
            stream=stream,
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            track=track,
        )

    def delete(self, token: Optional[str], track_id: int):
        """
        Remove a track's file and then its row.

        If the file cannot be removed the row is kept, so the record never
        disappears while its file might still exist.

        Raises:
            InvalidCredential, NotFound, Denied: as for fetch
            StorageUnavailable: file removal failed or path outside the media root;
                nothing was deleted
        """
        track = self._owned_track(token, track_id)
        try:
            removed = self.layout.remove(track.storage_path)
        except StorageUnavailable:
            self.logger.error(
                "Failed to remove file for track %s at %s, keeping its row",
                track.id, track.storage_path, exc_info=True,
            )
            raise
        if not removed:
            self.logger.warning(
                "File for track %s was already missing: %s", track.id, track.storage_path
            )

        if not self.tracks.delete(track.id):
            # Lost a race with a concurrent delete of the same track
            raise NotFound(f"track {track_id} not found")
        self.logger.info("Deleted track %s (%s)", track.id, track.storage_path)

    def list(self, token: Optional[str]) -> List[TrackSummary]:
        """List the caller's own tracks in upload order."""
        claims: Claims = self.codec.decode(token)
        return self.tracks.list_by_owner(claims.userid)
