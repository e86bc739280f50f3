"""Tests for tarstream.py module.

Tests the lazily generated ustar archive and the single-file stream.
"""

import io
import os
import tarfile
from pathlib import Path

import pytest

from tarmover.errors import LocalIOError, NotFound
from tarmover.models import ManifestEntry
from tarmover.tarstream import (
    HEADER_BLOCK_SIZE,
    TRAILER_SIZE,
    FileStream,
    TarStream,
    archive_name,
    build_header,
    padded_size,
)


def drain(stream):
    return b"".join(stream)


class TestPaddedSize:
    """Tests for padded_size function."""

    @pytest.mark.parametrize(
        "size,expected",
        [(0, 0), (1, 512), (5, 512), (512, 512), (513, 1024), (3000, 3072)],
    )
    def test_rounds_up_to_block(self, size, expected):
        """Sizes should round up to the next 512 byte boundary."""
        assert padded_size(size) == expected


class TestArchiveName:
    """Tests for archive_name function."""

    def test_strips_leading_slash(self):
        """Absolute paths should be stored without the leading slash."""
        assert archive_name("/data/logs/a.txt") == "data/logs/a.txt"

    def test_relative_path_unchanged(self):
        """Relative paths should be kept as given."""
        assert archive_name("logs/a.txt") == "logs/a.txt"


class TestBuildHeader:
    """Tests for build_header function."""

    def test_header_is_one_block(self, sample_files):
        """A header should be exactly one 512 byte block."""
        header = build_header("a.txt", os.stat("a.txt"))
        assert len(header) == HEADER_BLOCK_SIZE

    def test_header_parses_back(self, sample_files):
        """tarfile should read the name and size back from the header."""
        info = tarfile.TarInfo.frombuf(
            build_header("b.txt", os.stat("b.txt")), "utf-8", "surrogateescape"
        )
        assert info.name == "b.txt"
        assert info.size == 3000
        assert info.type == tarfile.REGTYPE

    def test_name_too_long_raises(self, sample_files):
        """Names that do not fit a ustar header should be rejected."""
        with pytest.raises(ValueError):
            build_header("x" * 300, os.stat("a.txt"))


class TestTarStreamManifest:
    """Tests for manifest and size computation."""

    def test_manifest_offsets(self, sample_files):
        """Offsets should account for header and padding of earlier entries."""
        stream = TarStream(sample_files)

        assert stream.manifest == [
            ManifestEntry(name="a.txt", offset=0, size=5),
            ManifestEntry(name="b.txt", offset=1024, size=3000),
        ]

    def test_total_size_formula(self, sample_files):
        """Total size should be headers, padded content and trailer."""
        stream = TarStream(sample_files)
        last = stream.manifest[-1]

        assert stream.total_size == last.offset + HEADER_BLOCK_SIZE + padded_size(last.size) + TRAILER_SIZE
        assert stream.total_size == 5632

    def test_total_size_matches_drained_length(self, sample_files):
        """The advertised size should equal the bytes produced."""
        stream = TarStream(sample_files)
        assert len(drain(stream)) == stream.total_size

    def test_empty_file_takes_header_only(self, tmp_path, monkeypatch):
        """A zero-byte file should take one header block and no content."""
        monkeypatch.chdir(tmp_path)
        (tmp_path / "empty").write_bytes(b"")
        (tmp_path / "next").write_bytes(b"x")

        stream = TarStream(["empty", "next"])

        assert stream.manifest[1].offset == HEADER_BLOCK_SIZE
        assert len(drain(stream)) == stream.total_size

    def test_block_aligned_file_has_no_padding(self, tmp_path, monkeypatch):
        """Content that fills whole blocks should not be padded."""
        monkeypatch.chdir(tmp_path)
        (tmp_path / "exact").write_bytes(b"z" * 1024)

        stream = TarStream(["exact"])

        assert stream.total_size == HEADER_BLOCK_SIZE + 1024 + TRAILER_SIZE

    def test_nothing_opened_at_construction(self, sample_files):
        """Construction should only stat files."""
        with pytest.MonkeyPatch.context() as mp:
            def fail_open(*args, **kwargs):
                raise AssertionError("file opened during construction")

            mp.setattr("builtins.open", fail_open)
            TarStream(sample_files)


class TestTarStreamContent:
    """Tests for the bytes a tar stream produces."""

    def test_readable_by_tarfile(self, sample_files):
        """The stream should be a valid archive for the standard tarfile module."""
        data = drain(TarStream(sample_files))

        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as archive:
            members = archive.getmembers()
            assert [m.name for m in members] == ["a.txt", "b.txt"]
            assert archive.extractfile("a.txt").read() == b"hello"
            with open("b.txt", "rb") as f:
                assert archive.extractfile("b.txt").read() == f.read()

    def test_content_at_manifest_offsets(self, sample_files):
        """Content should start one header block after each manifest offset."""
        stream = TarStream(sample_files)
        data = drain(stream)

        for entry in stream.manifest:
            start = entry.offset + HEADER_BLOCK_SIZE
            with open(entry.name, "rb") as f:
                assert data[start : start + entry.size] == f.read()

    def test_ends_with_zero_trailer(self, sample_files):
        """The archive should end with two zero blocks."""
        data = drain(TarStream(sample_files))
        assert data[-TRAILER_SIZE:] == b"\0" * TRAILER_SIZE

    def test_small_read_size(self, sample_files):
        """A small read size should not change the produced bytes."""
        expected = drain(TarStream(sample_files))
        assert drain(TarStream(sample_files, read_size=7)) == expected

    def test_duplicate_paths_are_archived_twice(self, sample_files):
        """Duplicate paths should produce duplicate entries."""
        stream = TarStream(["a.txt", "a.txt"])
        assert [e.offset for e in stream.manifest] == [0, 1024]


class TestTarStreamRead:
    """Tests for the read() surface."""

    def test_read_in_pieces(self, sample_files):
        """Reading in fixed sizes should reproduce the archive."""
        expected = drain(TarStream(sample_files))
        stream = TarStream(sample_files)

        pieces = []
        while True:
            piece = stream.read(1000)
            if not piece:
                break
            pieces.append(piece)

        assert b"".join(pieces) == expected
        assert stream.position == stream.total_size

    def test_read_all(self, sample_files):
        """read() with no size should return the whole archive."""
        stream = TarStream(sample_files)
        assert len(stream.read()) == stream.total_size

    def test_close_partially_consumed(self, sample_files):
        """Closing mid-stream should end it."""
        stream = TarStream(sample_files)
        stream.read(600)
        stream.close()
        assert stream.read(100) == b""

    def test_context_manager_closes(self, sample_files):
        """Leaving the with block should close the stream."""
        with TarStream(sample_files) as stream:
            stream.read(10)
        assert stream.read(10) == b""


class TestTarStreamErrors:
    """Tests for construction and streaming failures."""

    def test_empty_list_raises(self):
        """An empty file list should be rejected."""
        with pytest.raises(ValueError, match="At least one file"):
            TarStream([])

    def test_missing_file_raises_not_found(self, sample_files):
        """A missing path should raise NotFound naming the path."""
        with pytest.raises(NotFound) as exc_info:
            TarStream(["a.txt", "missing.txt"])
        assert exc_info.value.entry == "missing.txt"

    def test_directory_raises(self, tmp_path):
        """Non-regular files should be rejected."""
        with pytest.raises(ValueError, match="Not a regular file"):
            TarStream([str(tmp_path)])

    def test_second_iteration_raises(self, sample_files):
        """A stream can only be consumed once."""
        stream = TarStream(sample_files)
        drain(stream)
        with pytest.raises(RuntimeError, match="already consumed"):
            list(stream)

    def test_file_shrinking_raises(self, sample_files):
        """A file shorter than its stat size should fail the stream."""
        stream = TarStream(sample_files)
        with open("b.txt", "wb") as f:
            f.write(b"short")

        with pytest.raises(LocalIOError, match="shrank") as exc_info:
            drain(stream)
        assert exc_info.value.entry == "b.txt"

    def test_file_removed_raises(self, sample_files):
        """A file removed after construction should fail with LocalIOError."""
        stream = TarStream(sample_files)
        os.remove("b.txt")

        with pytest.raises(LocalIOError):
            drain(stream)


class TestFileStream:
    """Tests for FileStream."""

    def test_reads_file_as_is(self, sample_files):
        """A file stream should produce the raw file bytes."""
        with FileStream("b.txt") as stream:
            assert stream.total_size == 3000
            assert stream.read(1000) + stream.read() == Path("b.txt").read_bytes()
            assert stream.manifest == []

    def test_missing_file_raises_not_found(self, tmp_path):
        """A missing path should raise NotFound."""
        with pytest.raises(NotFound):
            FileStream(str(tmp_path / "nope"))

    def test_close_releases_handle(self, sample_files):
        """close() should drop the open file."""
        stream = FileStream("a.txt")
        stream.read(1)
        stream.close()
        assert stream._file is None
