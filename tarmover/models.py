"""Data models for the tar stream transfer tool."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# Bytes per MiB, used for throughput reporting
MIB = 1024 * 1024


class Direction(Enum):
    """Kind of transfer a job performs."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    EXTRACT = "extract"


class SigningVersion(Enum):
    """Request signing scheme, mapped onto botocore signer names."""

    V4 = "s3v4"
    V2 = "s3"


@dataclass(frozen=True)
class Credentials:
    """Static access credentials for the object store."""

    access_key: str
    secret_key: str


@dataclass(frozen=True)
class StoreConfig:
    """Connection settings for an S3-compatible store.

    Built once before any transfer starts and never mutated afterwards.
    """

    access_key: str
    secret_key: str
    region: str = "us-west-2"
    endpoint: Optional[str] = None
    disable_ssl: bool = False
    disable_checksum: bool = False
    path_style: bool = False
    signing_version: SigningVersion = SigningVersion.V4


@dataclass(frozen=True)
class TransferSettings:
    """Tuning parameters shared by uploads and downloads."""

    part_size: int = 64 * MIB
    concurrency: int = 24


@dataclass(frozen=True)
class ManifestEntry:
    """Placement of one archived file inside a tar stream."""

    name: str
    offset: int
    size: int

    def to_dict(self) -> dict:
        return {"name": self.name, "offset": self.offset, "size": self.size}


@dataclass(frozen=True)
class RangeSpec:
    """Inclusive byte range for a partial retrieval.

    skip_bytes is the number of leading bytes in the range that precede the
    entry content (a tar header when the header is fetched for verification).
    """

    start_byte: int
    end_byte: int
    skip_bytes: int = 0

    @property
    def length(self) -> int:
        return self.end_byte - self.start_byte + 1

    @property
    def content_length(self) -> int:
        return self.length - self.skip_bytes

    @property
    def header_value(self) -> str:
        """Value for an HTTP Range header."""
        return f"bytes={self.start_byte}-{self.end_byte}"


@dataclass(frozen=True)
class PartPlan:
    """One contiguous block of a transfer, numbered from 1."""

    number: int
    offset: int
    length: int

    @property
    def end(self) -> int:
        """Last byte of the block, inclusive."""
        return self.offset + self.length - 1


@dataclass
class TransferJob:
    """One upload, download or extract operation."""

    direction: Direction
    bucket: str
    key: str
    local_path: Optional[str] = None
    part_size: int = 64 * MIB
    concurrency: int = 24


@dataclass
class TransferResult:
    """Outcome of a completed transfer."""

    direction: Direction
    bucket: str
    key: str
    location: str
    size: int
    elapsed: float
    parts: int = 1
    local_path: Optional[str] = None
    manifest: list[ManifestEntry] = field(default_factory=list)

    @property
    def throughput(self) -> float:
        """Throughput in MiB/s."""
        if self.elapsed <= 0:
            return 0.0
        return self.size / MIB / self.elapsed

    @property
    def bytes_per_second(self) -> float:
        """Throughput in bytes/s."""
        if self.elapsed <= 0:
            return 0.0
        return self.size / self.elapsed

    def to_dict(self) -> dict:
        return {
            "direction": self.direction.value,
            "bucket": self.bucket,
            "key": self.key,
            "location": self.location,
            "size": self.size,
            "elapsed_seconds": self.elapsed,
            "throughput_mib_s": self.throughput,
            "throughput_bytes_s": self.bytes_per_second,
            "parts": self.parts,
            "local_path": self.local_path,
            "manifest": [entry.to_dict() for entry in self.manifest],
        }
