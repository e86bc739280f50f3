"""Base reporter interface."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tarmover.models import ManifestEntry, RangeSpec, TransferJob, TransferResult


class Reporter(ABC):
    """Abstract base class for transfer reporters."""

    @abstractmethod
    def on_manifest(self, manifest: list["ManifestEntry"], total_size: int) -> None:
        """Called when a tar stream has been planned, before any upload."""
        pass

    @abstractmethod
    def on_range(self, range_spec: "RangeSpec") -> None:
        """Called with the byte range of a single-entry retrieval."""
        pass

    @abstractmethod
    def on_transfer_start(self, job: "TransferJob") -> None:
        """Called when a transfer job starts."""
        pass

    @abstractmethod
    def on_transfer_complete(self, result: "TransferResult") -> None:
        """Called when a transfer job completes."""
        pass

    @abstractmethod
    def on_transfer_failed(self, job: "TransferJob", error: Exception) -> None:
        """Called when a transfer job fails."""
        pass

    @abstractmethod
    def on_presigned_url(self, bucket: str, key: str, url: str) -> None:
        """Called when a presigned URL has been generated."""
        pass

    @abstractmethod
    def on_run_complete(self, results: list["TransferResult"]) -> None:
        """Called when all jobs are done."""
        pass
