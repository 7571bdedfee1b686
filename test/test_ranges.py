"""
Unit tests for Range header parsing.
"""

import io

import pytest

from aumusic.web.ranges import RangeNotSatisfiable, iter_file, parse_range


class TestParseRange:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("bytes=0-3", (0, 3)),
            ("bytes=2-", (2, 9)),
            ("bytes=-4", (6, 9)),
            ("bytes=-100", (0, 9)),
            ("bytes=5-500", (5, 9)),
            ("bytes = 1-1", (1, 1)),
        ],
    )
    def test_single_range(self, header, expected):
        assert parse_range(header, 10) == expected

    @pytest.mark.parametrize(
        "header",
        [None, "", "bytes=0-1,4-5", "items=0-1", "bytes=abc", "bytes=5-2", "bytes=x-"],
    )
    def test_whole_file(self, header):
        assert parse_range(header, 10) is None

    @pytest.mark.parametrize("header,size", [("bytes=10-", 10), ("bytes=50-60", 10), ("bytes=-0", 10), ("bytes=0-", 0)])
    def test_not_satisfiable(self, header, size):
        with pytest.raises(RangeNotSatisfiable):
            parse_range(header, size)


def test_iter_file_reads_slice_and_closes():
    stream = io.BytesIO(b"0123456789")
    assert b"".join(iter_file(stream, 3, 4)) == b"3456"
    assert stream.closed


def test_iter_file_stops_at_eof():
    stream = io.BytesIO(b"abc")
    assert b"".join(iter_file(stream, 1, 100)) == b"bc"
