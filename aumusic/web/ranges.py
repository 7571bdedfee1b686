"""
HTTP byte-range helpers for track delivery.

Only a single range is honoured. Multi-range and malformed headers are
ignored and the whole file is served, which RFC 9110 permits.
"""

from typing import BinaryIO, Iterator, Optional, Tuple

CHUNK_SIZE = 64 * 1024


class RangeNotSatisfiable(Exception):
    """The requested range lies entirely outside the file."""


def parse_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """
    Parse a Range header against a file size.

    Args:
        header: Raw header value, e.g. ``bytes=0-1023``, ``bytes=500-``, ``bytes=-500``
        size: File size in bytes

    Returns:
        Inclusive ``(start, end)`` offsets, or None to serve the whole file

    Raises:
        RangeNotSatisfiable: the range starts at or past the end of the file
    """
    if not header:
        return None
    units, _, ranges = header.strip().partition("=")
    if units.strip().lower() != "bytes" or not ranges or "," in ranges:
        return None

    start_s, sep, end_s = ranges.strip().partition("-")
    if not sep:
        return None
    start_s, end_s = start_s.strip(), end_s.strip()

    try:
        if not start_s:
            # Suffix range: last N bytes
            suffix = int(end_s)
            if suffix < 0:
                return None
            if suffix == 0 or size == 0:
                raise RangeNotSatisfiable()
            return max(size - suffix, 0), size - 1

        start = int(start_s)
        end = int(end_s) if end_s else size - 1
    except ValueError:
        return None

    if start < 0 or end < start:
        return None
    if start >= size:
        raise RangeNotSatisfiable()
    return start, min(end, size - 1)


def iter_file(stream: BinaryIO, start: int, length: int) -> Iterator[bytes]:
    """Yield length bytes of stream from start, then close it."""
    try:
        stream.seek(start)
        remaining = length
        while remaining > 0:
            data = stream.read(min(CHUNK_SIZE, remaining))
            if not data:
                break
            remaining -= len(data)
            yield data
    finally:
        stream.close()
