"""Virtual tar archive streams.

Builds a ustar archive on the fly from an ordered list of local files. The
archive is never written to disk: headers are produced with the standard
tarfile module and file content is read in small pieces as the consumer pulls
bytes. Because every header is exactly one block, the total size and the
position of each entry are known before the first byte is produced.

Two stream types share the same surface (``total_size``, ``read``, ``close``):

- TarStream: many files bundled as one tar archive, with a manifest.
- FileStream: a single local file uploaded as-is.
"""

import logging
import os
import stat
import tarfile
from typing import Iterator, Optional, Sequence

from tarmover.errors import LocalIOError, NotFound
from tarmover.models import ManifestEntry

logger = logging.getLogger(__name__)

# Size of a tar header block, and the unit all entries are padded to
HEADER_BLOCK_SIZE = tarfile.BLOCKSIZE

# Two zero blocks mark the end of the archive
TRAILER_SIZE = 2 * HEADER_BLOCK_SIZE

# Bytes read from a source file per read call
DEFAULT_READ_SIZE = 1024 * 1024

# Largest uid/gid that fits the 8 byte octal field of a ustar header
MAX_USTAR_ID = 0o7777777


def padded_size(size: int) -> int:
    """Round size up to the next header block boundary."""
    remainder = size % HEADER_BLOCK_SIZE
    if remainder:
        return size + HEADER_BLOCK_SIZE - remainder
    return size


def archive_name(path: str) -> str:
    """Name a file is stored under in the archive."""
    return path.replace(os.sep, "/").lstrip("/")


def _stat_regular_file(path: str) -> os.stat_result:
    try:
        st = os.stat(path)
    except FileNotFoundError as e:
        raise NotFound(f"No such file: {path}", entry=path) from e
    except OSError as e:
        raise LocalIOError(f"Cannot stat {path}: {e}", entry=path) from e

    if not stat.S_ISREG(st.st_mode):
        raise ValueError(f"Not a regular file: {path}")
    if not os.access(path, os.R_OK):
        raise LocalIOError(f"File is not readable: {path}", entry=path)
    return st


def build_header(name: str, st: os.stat_result) -> bytes:
    """Build the single ustar header block for a regular file.

    Raises:
        ValueError: If the name or size cannot be encoded in one ustar block.
    """
    info = tarfile.TarInfo(name)
    info.size = st.st_size
    info.mode = stat.S_IMODE(st.st_mode)
    info.mtime = int(st.st_mtime)
    info.type = tarfile.REGTYPE
    info.uid = st.st_uid if st.st_uid <= MAX_USTAR_ID else 0
    info.gid = st.st_gid if st.st_gid <= MAX_USTAR_ID else 0

    header = info.tobuf(format=tarfile.USTAR_FORMAT, encoding="utf-8", errors="surrogateescape")
    if len(header) != HEADER_BLOCK_SIZE:
        raise ValueError(f"Header for {name} does not fit one block")
    return header


class TarStream:
    """Lazy, single-pass tar archive of a flat list of files.

    Construction stats every file, builds every header and computes the
    manifest and total size; no file is opened until bytes are pulled.
    Consumed either by iterating (yields byte chunks) or through ``read``.
    A stream cannot be rewound: create a new one from the same paths.

    Raises (at construction):
        ValueError: Empty list, non-regular file, or unencodable entry.
        NotFound: A path does not exist.
        LocalIOError: A path cannot be stat'ed or is not readable.
    """

    def __init__(self, paths: Sequence[str], read_size: int = DEFAULT_READ_SIZE):
        if not paths:
            raise ValueError("At least one file is required to build a tar stream")

        self.paths = list(paths)
        self.read_size = read_size
        self.manifest: list[ManifestEntry] = []
        self._headers: list[bytes] = []

        offset = 0
        for path in self.paths:
            st = _stat_regular_file(path)
            name = archive_name(path)
            self._headers.append(build_header(name, st))
            self.manifest.append(ManifestEntry(name=name, offset=offset, size=st.st_size))
            offset += HEADER_BLOCK_SIZE + padded_size(st.st_size)

        self.total_size = offset + TRAILER_SIZE
        self.position = 0

        self._started = False
        self._source: Optional[Iterator[bytes]] = None
        self._buffer = bytearray()

    def __iter__(self) -> Iterator[bytes]:
        return self.chunks()

    def chunks(self) -> Iterator[bytes]:
        """Yield the archive as a sequence of byte chunks, once."""
        if self._started:
            raise RuntimeError("Tar stream already consumed; build a new one")
        self._started = True
        return self._generate()

    def _generate(self) -> Iterator[bytes]:
        for path, header, entry in zip(self.paths, self._headers, self.manifest):
            yield header
            yield from self._file_content(path, entry)
            padding = padded_size(entry.size) - entry.size
            if padding:
                yield tarfile.NUL * padding
            logger.debug("Streamed %s (%d bytes at offset %d)", entry.name, entry.size, entry.offset)
        yield tarfile.NUL * TRAILER_SIZE

    def _file_content(self, path: str, entry: ManifestEntry) -> Iterator[bytes]:
        remaining = entry.size
        try:
            with open(path, "rb") as f:
                while remaining > 0:
                    chunk = f.read(min(self.read_size, remaining))
                    if not chunk:
                        raise LocalIOError(
                            f"{path} shrank while streaming: {remaining} bytes missing",
                            entry=entry.name,
                        )
                    remaining -= len(chunk)
                    yield chunk
        except OSError as e:
            raise LocalIOError(f"Failed reading {path}: {e}", entry=entry.name) from e

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes; an empty result means end of archive."""
        if self._source is None:
            self._source = self.chunks()

        if size is None or size < 0:
            self._buffer.extend(b"".join(self._source))
            size = len(self._buffer)

        while len(self._buffer) < size:
            try:
                self._buffer.extend(next(self._source))
            except StopIteration:
                break

        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        self.position += len(data)
        return data

    def readable(self) -> bool:
        return True

    def close(self) -> None:
        """Release any open file handle held by a partially consumed stream."""
        if self._source is not None:
            self._source.close()
        self._buffer.clear()

    def __enter__(self) -> "TarStream":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


class FileStream:
    """A single local file exposed with the TarStream surface."""

    def __init__(self, path: str):
        self.path = path
        self.total_size = _stat_regular_file(path).st_size
        self.manifest: list[ManifestEntry] = []
        self.position = 0
        self._file = None

    def read(self, size: int = -1) -> bytes:
        try:
            if self._file is None:
                self._file = open(self.path, "rb")
            data = self._file.read(size)
        except OSError as e:
            raise LocalIOError(f"Failed reading {self.path}: {e}", entry=self.path) from e
        self.position += len(data)
        return data

    def readable(self) -> bool:
        return True

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "FileStream":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
