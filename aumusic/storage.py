"""
Filesystem layout for uploaded tracks.

Tracks live at ``<media root>/<owner id>/<artist>/<album>/<filename>``. Every
user-supplied component is reduced to a single path segment, so no path built
here can leave the media root.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Tuple, Union

from .errors import AlreadyExists, StorageUnavailable, UploadTooLarge, ValidationFailed

# Copy buffer size for streaming uploads to disk
CHUNK_SIZE = 64 * 1024


def sanitize_component(value: str) -> str:
    """
    Reduce a user-supplied name to its final path segment.

    Both ``/`` and ``\\`` count as separators, so ``../../etc/passwd`` becomes
    ``passwd`` and ``C:\\music\\a.mp3`` becomes ``a.mp3``.

    Raises:
        ValidationFailed: if nothing usable is left
    """
    if value is None or "\x00" in value:
        raise ValidationFailed("invalid name")
    segments = [s for s in value.replace("\\", "/").split("/") if s.strip()]
    segment = segments[-1].strip() if segments else ""
    if segment in ("", ".", ".."):
        raise ValidationFailed(f"invalid name: {value!r}")
    return segment


class StorageLayout:
    """Maps track identity to files under the media root."""

    def __init__(self, media_root: Union[str, Path]):
        self.root = Path(media_root).expanduser().resolve()
        self.logger = logging.getLogger(__name__)

    def resolve_path(self, owner_id: str, artist: str, album: str, filename: str) -> Path:
        """
        Build the absolute path for a track.

        Raises:
            ValidationFailed: if a component is unusable or the result escapes the root
        """
        path = self.root.joinpath(
            sanitize_component(owner_id),
            sanitize_component(artist),
            sanitize_component(album),
            sanitize_component(filename),
        )
        # Catches symlinked directories pointing outside the root
        if not path.resolve().is_relative_to(self.root):
            raise ValidationFailed("path escapes media root")
        return path

    def contains(self, path: Union[str, Path]) -> bool:
        """True if path lies under the media root."""
        return Path(path).resolve().is_relative_to(self.root)

    def ensure_directory(self, path: Path):
        """
        Create every missing ancestor directory of path.

        Raises:
            StorageUnavailable: permissions, disk full, etc. Not retried.
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.logger.error("Failed to create directory %s: %s", path.parent, e)
            raise StorageUnavailable(f"cannot create directory {path.parent}") from e

    def write_file(self, path: Path, source: BinaryIO, max_bytes: int) -> int:
        """
        Stream source into a new file at path without buffering the whole file.

        Bytes go to a temporary file in the same directory which is linked to
        path only once fully written and synced, so path never holds a
        truncated file. An existing file at path is never replaced.

        Args:
            path: Destination (parent must exist)
            source: Readable binary stream
            max_bytes: Abort once more than this many bytes have been read

        Returns:
            Number of bytes written

        Raises:
            UploadTooLarge: source yielded more than max_bytes
            AlreadyExists: a file already exists at path
            StorageUnavailable: I/O error on either side
        """
        written = 0
        try:
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-", suffix=".part")
        except OSError as e:
            raise StorageUnavailable(f"cannot create file in {path.parent}") from e

        try:
            with os.fdopen(fd, "wb") as dst:
                while True:
                    chunk = source.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > max_bytes:
                        raise UploadTooLarge(f"upload exceeds maximum size of {max_bytes} bytes")
                    dst.write(chunk)
                dst.flush()
                os.fsync(dst.fileno())
            # link() fails with EEXIST where rename() would overwrite
            os.link(tmp_name, path)
        except UploadTooLarge:
            self._discard(tmp_name)
            raise
        except FileExistsError as e:
            self._discard(tmp_name)
            raise AlreadyExists(f"{path.name} already exists") from e
        except OSError as e:
            self._discard(tmp_name)
            self.logger.error("Failed to write %s: %s", path, e)
            raise StorageUnavailable(f"cannot write {path}") from e
        self._discard(tmp_name)
        return written

    def _discard(self, tmp_name: str):
        try:
            os.remove(tmp_name)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.error("Failed to remove temporary file %s: %s", tmp_name, e)

    def open_for_read(self, path: Union[str, Path]) -> Tuple[BinaryIO, os.stat_result]:
        """
        Open a stored file for seekable reading.

        Raises:
            StorageUnavailable: file missing or unreadable
        """
        try:
            f = open(path, "rb")
        except OSError as e:
            raise StorageUnavailable(f"cannot open {path}") from e
        try:
            return f, os.fstat(f.fileno())
        except OSError as e:
            f.close()
            raise StorageUnavailable(f"cannot stat {path}") from e

    def remove(self, path: Union[str, Path]) -> bool:
        """
        Remove a stored file.

        Returns:
            False if the file was already gone

        Raises:
            StorageUnavailable: the file may still exist
        """
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageUnavailable(f"cannot remove {path}") from e
        return True
