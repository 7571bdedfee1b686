"""
Main entry point for aumusic.

Initializes all components and starts the server.
"""

import argparse
import logging
from typing import Dict, List, Optional

import uvicorn

from .config_manager import ConfigManager
from .credentials import CredentialCodec
from .database import Database, TrackRepository
from .ingest import IngestionPipeline
from .library import TrackLibrary
from .ownership import OwnershipGuard
from .passwords import PasswordHasher
from .playlists import PlaylistManager
from .storage import StorageLayout
from .user import UserManager
from .web.server import create_app

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


class AumusicServer:
    """Main server class that wires all components together."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize all components.

        Args:
            db_path: SQLite database path (defaults to ~/.aumusic/aumusic.db)
        """
        logger.info("Initializing aumusic server...")

        self.database = Database(db_path)
        self.config_manager = ConfigManager(self.database)
        self.settings = self.config_manager.settings()

        self.codec = CredentialCodec(self.settings.jwt_secret, self.settings.token_ttl_seconds)
        self.guard = OwnershipGuard(self.codec)
        self.layout = StorageLayout(self.settings.media_root)
        self.layout.root.mkdir(parents=True, exist_ok=True)
        tracks = TrackRepository(self.database)

        self.user_manager = UserManager(self.database, self.codec, PasswordHasher())
        self.ingestion_pipeline = IngestionPipeline(
            self.layout, tracks, self.settings.max_upload_bytes
        )
        self.track_library = TrackLibrary(self.codec, self.guard, tracks, self.layout)
        self.playlist_manager = PlaylistManager(self.database, self.guard)

        self.web_app = create_app(
            self.settings,
            self.codec,
            self.user_manager,
            self.ingestion_pipeline,
            self.track_library,
            self.playlist_manager,
        )

        logger.info("Media root: %s", self.layout.root)
        if self.settings.token_ttl_seconds <= 0:
            logger.warning("Tokens are issued without expiry (token_ttl_seconds=0)")
        logger.info("aumusic server initialized")

    def run(self, host: str = "0.0.0.0", port: Optional[int] = None):
        """Start the server (blocking)."""
        port = port or self.config_manager.get_int("port", 8081)
        logger.info("Starting aumusic server on %s:%d", host, port)
        uvicorn.run(self.web_app, host=host, port=port, log_level="info")

    def stop(self):
        """Release resources."""
        logger.info("Stopping aumusic server...")
        if self.database:
            self.database.close()
        logger.info("aumusic server stopped")


def configure(db_path: Optional[str], assignments: List[str]) -> Dict[str, str]:
    """
    Store KEY=VALUE assignments in the config table.

    Raises:
        ValueError: an assignment is not of the form KEY=VALUE
    """
    pairs = []
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"expected KEY=VALUE, got {assignment!r}")
        pairs.append((key, value))

    database = Database(db_path)
    try:
        config = ConfigManager(database)
        for key, value in pairs:
            config.set(key, value)
            logger.info("Set %s", key)
    finally:
        database.close()
    return dict(pairs)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="aumusic - personal music upload and streaming")
    parser.add_argument("--db", help="Path to the SQLite database")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind")
    parser.add_argument("--port", type=int, help="Port to listen on (default from config)")
    parser.add_argument(
        "--set",
        action="append",
        metavar="KEY=VALUE",
        help="Store a configuration value (e.g. media_root=/srv/music) and exit",
    )
    args = parser.parse_args()

    if args.set:
        try:
            configure(args.db, args.set)
        except ValueError as e:
            parser.error(str(e))
        return

    server = AumusicServer(db_path=args.db)
    try:
        server.run(host=args.host, port=args.port)
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()


if __name__ == "__main__":
    main()
