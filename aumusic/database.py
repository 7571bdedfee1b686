"""
Database module for aumusic.

Handles SQLite database initialization, schema creation, and connection management,
plus the repositories the rest of the application uses to read and write records.
"""

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import PersistenceFailed, ValidationFailed
from .models import ConfigEntry, Playlist, Track, TrackSummary, User


def _parse_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Database:
    """Manages SQLite database connection and schema."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses ~/.aumusic/aumusic.db
        """
        self.logger = logging.getLogger(__name__)

        if db_path is None:
            # Default to ~/.aumusic/aumusic.db
            aumusic_dir = Path.home() / '.aumusic'
            aumusic_dir.mkdir(exist_ok=True)
            db_path = str(aumusic_dir / 'aumusic.db')

        self.db_path = db_path
        self._ensure_schema()
        self.logger.info('Database initialized at %s', self.db_path)

    def _ensure_schema(self):
        """Ensure database schema exists."""
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                password TEXT NOT NULL,
                email TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS tracks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                artist TEXT NOT NULL,
                album TEXT NOT NULL,
                size INTEGER NOT NULL,
                path TEXT NOT NULL,
                mod_time TIMESTAMP NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS playlists (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS playlist_tracks (
                playlist_id INTEGER NOT NULL,
                track_id INTEGER NOT NULL,
                added_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (playlist_id, track_id),
                FOREIGN KEY (playlist_id) REFERENCES playlists(id),
                FOREIGN KEY (track_id) REFERENCES tracks(id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_tracks_user
            ON tracks(user_id, id)
        ''')

        cursor.execute('''
            CREATE UNIQUE INDEX IF NOT EXISTS idx_tracks_path
            ON tracks(path)
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_playlists_user
            ON playlists(user_id, id)
        ''')

        conn.commit()
        conn.close()
        self.logger.debug('Database schema created/verified')

    def get_connection(self):
        """
        Get a new database connection (thread-safe).

        Each request worker gets its own connection. Caller is responsible
        for closing the connection when done.
        """
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Open a connection for a single round-trip.

        Commits on success, rolls back on error, and always closes. Any
        sqlite3 error is re-raised as PersistenceFailed.
        """
        try:
            conn = self.get_connection()
        except sqlite3.Error as e:
            raise PersistenceFailed(str(e)) from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceFailed(str(e)) from e
        finally:
            conn.close()

    def close(self):
        """Close database connection (no-op since we use per-operation connections)."""
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class UserRepository:
    """Persistence for registered users."""

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            id=row['id'],
            name=row['name'],
            password_hash=row['password'],
            email=row['email'],
            created_at=_parse_timestamp(row['created_at']),
        )

    def create(self, name: str, password_hash: str, email: Optional[str]) -> User:
        """
        Insert a new user with a generated id.

        Raises:
            ValidationFailed: if the name is already taken
            PersistenceFailed: on any other store error
        """
        user_id = str(uuid.uuid4())
        try:
            with self.database.connection() as conn:
                conn.execute(
                    'INSERT INTO users (id, name, password, email) VALUES (?, ?, ?, ?)',
                    (user_id, name, password_hash, email),
                )
        except PersistenceFailed as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise ValidationFailed('username is already taken') from e.__cause__
            raise
        return self.get_by_id(user_id)

    def get_by_id(self, user_id: str) -> Optional[User]:
        with self.database.connection() as conn:
            row = conn.execute(
                'SELECT id, name, password, email, created_at FROM users WHERE id = ?',
                (user_id,),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_by_name(self, name: str) -> Optional[User]:
        with self.database.connection() as conn:
            row = conn.execute(
                'SELECT id, name, password, email, created_at FROM users WHERE name = ?',
                (name,),
            ).fetchone()
        return self._row_to_user(row) if row else None


class TrackRepository:
    """Persistence for track metadata."""

    def __init__(self, database: Database):
        self.database = database

    def create(
        self,
        owner_user_id: str,
        name: str,
        artist: str,
        album: str,
        size_bytes: int,
        storage_path: str,
        mod_time: datetime,
    ) -> int:
        """
        Insert a track row.

        Returns:
            The store-generated track id
        """
        with self.database.connection() as conn:
            cursor = conn.execute(
                '''
                INSERT INTO tracks (user_id, name, artist, album, size, path, mod_time)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ''',
                (owner_user_id, name, artist, album, size_bytes, storage_path,
                 mod_time.isoformat()),
            )
            return cursor.lastrowid

    def get_by_id(self, track_id: int) -> Optional[Track]:
        with self.database.connection() as conn:
            row = conn.execute(
                '''
                SELECT id, user_id, name, artist, album, size, path, mod_time
                FROM tracks WHERE id = ?
                ''',
                (track_id,),
            ).fetchone()
        if not row:
            return None
        return Track(
            id=row['id'],
            owner_user_id=row['user_id'],
            name=row['name'],
            artist=row['artist'],
            album=row['album'],
            size_bytes=row['size'],
            storage_path=row['path'],
            mod_time=_parse_timestamp(row['mod_time']),
        )

    def exists_at(self, storage_path: str) -> bool:
        """True if some track row already points at storage_path."""
        with self.database.connection() as conn:
            row = conn.execute(
                'SELECT 1 FROM tracks WHERE path = ?', (storage_path,)
            ).fetchone()
        return row is not None

    def list_by_owner(self, owner_user_id: str) -> List[TrackSummary]:
        """List a user's tracks in insertion order."""
        with self.database.connection() as conn:
            rows = conn.execute(
                '''
                SELECT id, name, artist, album, size, mod_time
                FROM tracks WHERE user_id = ? ORDER BY id
                ''',
                (owner_user_id,),
            ).fetchall()
        return [self._row_to_summary(row) for row in rows]

    @staticmethod
    def _row_to_summary(row) -> TrackSummary:
        return TrackSummary(
            id=row['id'],
            name=row['name'],
            artist=row['artist'],
            album=row['album'],
            size=row['size'],
            mod_time=_parse_timestamp(row['mod_time']),
        )

    def delete(self, track_id: int) -> bool:
        """
        Delete a track row and its playlist memberships.

        Returns:
            True if a row was removed
        """
        with self.database.connection() as conn:
            conn.execute('DELETE FROM playlist_tracks WHERE track_id = ?', (track_id,))
            cursor = conn.execute('DELETE FROM tracks WHERE id = ?', (track_id,))
            return cursor.rowcount > 0


class PlaylistRepository:
    """Persistence for playlists and their track membership."""

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def _row_to_playlist(row) -> Playlist:
        return Playlist(
            id=row['id'],
            owner_user_id=row['user_id'],
            name=row['name'],
            created_at=_parse_timestamp(row['created_at']),
        )

    def create(self, owner_user_id: str, name: str) -> Playlist:
        with self.database.connection() as conn:
            cursor = conn.execute(
                'INSERT INTO playlists (user_id, name) VALUES (?, ?)',
                (owner_user_id, name),
            )
            playlist_id = cursor.lastrowid
        return self.get_by_id(playlist_id)

    def get_by_id(self, playlist_id: int) -> Optional[Playlist]:
        with self.database.connection() as conn:
            row = conn.execute(
                'SELECT id, user_id, name, created_at FROM playlists WHERE id = ?',
                (playlist_id,),
            ).fetchone()
        return self._row_to_playlist(row) if row else None

    def list_by_owner(self, owner_user_id: str) -> List[Playlist]:
        with self.database.connection() as conn:
            rows = conn.execute(
                'SELECT id, user_id, name, created_at FROM playlists WHERE user_id = ? ORDER BY id',
                (owner_user_id,),
            ).fetchall()
        return [self._row_to_playlist(row) for row in rows]

    def add_track(self, playlist_id: int, track_id: int) -> bool:
        """
        Add a track to a playlist.

        Returns:
            False if the track was already a member
        """
        with self.database.connection() as conn:
            cursor = conn.execute(
                'INSERT OR IGNORE INTO playlist_tracks (playlist_id, track_id) VALUES (?, ?)',
                (playlist_id, track_id),
            )
            return cursor.rowcount > 0

    def remove_track(self, playlist_id: int, track_id: int) -> bool:
        with self.database.connection() as conn:
            cursor = conn.execute(
                'DELETE FROM playlist_tracks WHERE playlist_id = ? AND track_id = ?',
                (playlist_id, track_id),
            )
            return cursor.rowcount > 0

    def list_tracks(self, playlist_id: int) -> List[TrackSummary]:
        """List member tracks in the order they were added."""
        with self.database.connection() as conn:
            rows = conn.execute(
                '''
                SELECT t.id, t.name, t.artist, t.album, t.size, t.mod_time
                FROM playlist_tracks pt
                JOIN tracks t ON t.id = pt.track_id
                WHERE pt.playlist_id = ?
                ORDER BY pt.rowid
                ''',
                (playlist_id,),
            ).fetchall()
        return [TrackRepository._row_to_summary(row) for row in rows]


class ConfigRepository:
    """Persistence for key/value configuration."""

    def __init__(self, database: Database):
        self.database = database

    def get(self, key: str) -> Optional[ConfigEntry]:
        with self.database.connection() as conn:
            row = conn.execute(
                'SELECT key, value, updated_at FROM config WHERE key = ?', (key,)
            ).fetchone()
        if not row:
            return None
        return ConfigEntry(
            key=row['key'], value=row['value'], updated_at=_parse_timestamp(row['updated_at'])
        )

    def set(self, key: str, value: str) -> bool:
        with self.database.connection() as conn:
            conn.execute(
                '''
                INSERT INTO config (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = CURRENT_TIMESTAMP
                ''',
                (key, value),
            )
        return True

    def initialize_defaults(self, defaults: dict):
        """Insert default values for keys that are not stored yet."""
        with self.database.connection() as conn:
            for key, value in defaults.items():
                if value is None:
                    continue
                conn.execute(
                    'INSERT OR IGNORE INTO config (key, value) VALUES (?, ?)',
                    (key, str(value)),
                )
