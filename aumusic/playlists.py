"""
Playlist management for aumusic.

Playlists are plain sets of a user's own tracks; there is no ordering logic
beyond the order tracks were added.
"""

import logging
from typing import List

from .database import Database, PlaylistRepository, TrackRepository
from .errors import NotFound, ValidationFailed
from .models import Claims, Playlist, TrackSummary
from .ownership import OwnershipGuard


class PlaylistManager:
    """Manages playlists and their track membership."""

    def __init__(self, database: Database, guard: OwnershipGuard):
        """
        Initialize PlaylistManager.

        Args:
            database: Database instance for persistence
            guard: Ownership checks for playlists and tracks
        """
        self.database = database
        self.repository = PlaylistRepository(database)
        self.tracks = TrackRepository(database)
        self.guard = guard
        self.logger = logging.getLogger(__name__)

    def _owned_playlist(self, claims: Claims, playlist_id: int) -> Playlist:
        playlist = self.repository.get_by_id(playlist_id)
        if playlist is None:
            raise NotFound(f"playlist {playlist_id} not found")
        self.guard.check(claims, playlist.owner_user_id)
        return playlist

    def create(self, claims: Claims, name: str) -> Playlist:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("playlist name is required")
        playlist = self.repository.create(claims.userid, name)
        self.logger.info("User %s created playlist %s", claims.userid, playlist.id)
        return playlist

    def list(self, claims: Claims) -> List[Playlist]:
        return self.repository.list_by_owner(claims.userid)

    def tracks_of(self, claims: Claims, playlist_id: int) -> List[TrackSummary]:
        self._owned_playlist(claims, playlist_id)
        return self.repository.list_tracks(playlist_id)

    def add_track(self, claims: Claims, playlist_id: int, track_id: int) -> bool:
        """
        Add one of the caller's tracks to one of the caller's playlists.

        Returns:
            False if the track was already in the playlist

        Raises:
            NotFound: playlist or track missing
            Denied: caller does not own the playlist or the track
        """
        self._owned_playlist(claims, playlist_id)
        track = self.tracks.get_by_id(track_id)
        if track is None:
            raise NotFound(f"track {track_id} not found")
        self.guard.check(claims, track.owner_user_id)
        return self.repository.add_track(playlist_id, track_id)

    def remove_track(self, claims: Claims, playlist_id: int, track_id: int):
        self._owned_playlist(claims, playlist_id)
        if not self.repository.remove_track(playlist_id, track_id):
            raise NotFound(f"track {track_id} is not in playlist {playlist_id}")

