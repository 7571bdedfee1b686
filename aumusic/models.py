"""
Data models for aumusic.

Defines typed dataclasses for all entities used throughout the application.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Claims:
    """Identity carried by a decoded token."""

    userid: str  # Authorization subject
    username: str  # Informational only


@dataclass
class User:
    """Registered user."""

    id: str
    name: str
    password_hash: str
    email: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Track:
    """Stored track, including where its bytes live."""

    id: int
    owner_user_id: str
    name: str
    artist: str
    album: str
    size_bytes: int
    storage_path: str
    mod_time: datetime


@dataclass
class TrackSummary:
    """Track as shown in listings (no owner, no path)."""

    id: int
    name: str
    artist: str
    album: str
    size: int
    mod_time: datetime


@dataclass
class Playlist:
    """Named set of tracks owned by a single user."""

    id: int
    owner_user_id: str
    name: str
    created_at: Optional[datetime] = None


@dataclass
class ConfigEntry:
    """Configuration entry."""

    key: str
    value: str
    updated_at: Optional[datetime] = None
