"""Transfer orchestration.

Coordinates one or more transfer jobs against a store, managing:
- Stream creation (a fresh tar stream per attempt) and cleanup
- The transfer engine and retriever calls
- Optional retry of whole jobs on transient failures
- Reporter callbacks
"""

from typing import Any, Callable, Optional, Sequence

import httpx

from tarmover.models import (
    Direction,
    ManifestEntry,
    TransferJob,
    TransferResult,
    TransferSettings,
)
from tarmover.ranges import compute_range
from tarmover.reporters.base import Reporter
from tarmover.retriever import fetch_range_from_url, presign_get, retrieve_entry
from tarmover.retry import retry_with_backoff
from tarmover.tarstream import FileStream, TarStream
from tarmover.transfer import TransferEngine

# Timeout for presigned URL fetches, in seconds
HTTP_TIMEOUT = 60.0


class TransferRunner:
    """Runs transfer jobs and reports on them.

    Coordinates:
    - Building tar or file streams for uploads
    - Engine uploads and downloads
    - Single-entry extraction by range
    - Calling reporter callbacks for progress
    """

    def __init__(
        self,
        s3_client: Any,
        settings: TransferSettings,
        reporter: Optional[Reporter] = None,
        max_attempts: int = 1,
        retry_delays: Sequence[float] = (5.0, 15.0, 30.0),
    ):
        """Initialize the runner.

        Args:
            s3_client: boto3 S3 client (may be None for URL-only extracts)
            settings: Part size and concurrency
            reporter: Optional reporter for progress callbacks
            max_attempts: Attempts per job; 1 disables retries
            retry_delays: Delays between attempts, in seconds
        """
        self.s3_client = s3_client
        self.settings = settings
        self.reporter = reporter
        self.max_attempts = max_attempts
        self.retry_delays = retry_delays
        self.engine = TransferEngine(s3_client, settings)
        self.results: list[TransferResult] = []

    def _run_job(self, job: TransferJob, func: Callable[[], TransferResult]) -> TransferResult:
        if self.reporter:
            self.reporter.on_transfer_start(job)

        try:
            result = retry_with_backoff(
                func,
                max_attempts=self.max_attempts,
                delays=self.retry_delays,
            )
        except Exception as e:
            if self.reporter:
                self.reporter.on_transfer_failed(job, e)
            raise

        self.results.append(result)
        if self.reporter:
            self.reporter.on_transfer_complete(result)
        return result

    def _job(self, direction: Direction, bucket: str, key: str, local_path: Optional[str]) -> TransferJob:
        return TransferJob(
            direction=direction,
            bucket=bucket,
            key=key,
            local_path=local_path,
            part_size=self.settings.part_size,
            concurrency=self.settings.concurrency,
        )

    def upload_files(self, paths: Sequence[str], bucket: str, key: str) -> TransferResult:
        """Bundle paths into one tar stream and upload it to bucket/key."""
        job = self._job(Direction.UPLOAD, bucket, key, ",".join(paths))
        manifest_reported = False

        def attempt() -> TransferResult:
            nonlocal manifest_reported
            # A consumed stream cannot be rewound, so every attempt builds its own
            with TarStream(paths) as stream:
                if self.reporter and not manifest_reported:
                    self.reporter.on_manifest(stream.manifest, stream.total_size)
                    manifest_reported = True
                return self.engine.upload(stream, stream.total_size, bucket, key)

        return self._run_job(job, attempt)

    def upload_file(self, path: str, bucket: str, key: str) -> TransferResult:
        """Upload one local file as-is to bucket/key."""
        job = self._job(Direction.UPLOAD, bucket, key, path)

        def attempt() -> TransferResult:
            with FileStream(path) as stream:
                return self.engine.upload(stream, stream.total_size, bucket, key)

        return self._run_job(job, attempt)

    def download(self, bucket: str, key: str, destination: str) -> TransferResult:
        """Download a whole object to a local file."""
        job = self._job(Direction.DOWNLOAD, bucket, key, destination)
        return self._run_job(job, lambda: self.engine.download(bucket, key, destination))

    def extract(
        self,
        bucket: str,
        key: str,
        entry: ManifestEntry,
        destination: str,
        verify_header: bool = False,
    ) -> TransferResult:
        """Retrieve one archived entry from bucket/key with a ranged GET."""
        range_spec = compute_range(entry, include_header=verify_header)
        if self.reporter:
            self.reporter.on_range(range_spec)

        job = self._job(Direction.EXTRACT, bucket, key, destination)
        return self._run_job(
            job,
            lambda: retrieve_entry(self.s3_client, bucket, key, range_spec, destination, entry=entry),
        )

    def extract_from_url(
        self,
        url: str,
        entry: ManifestEntry,
        destination: str,
        verify_header: bool = False,
        http_client: Optional[httpx.Client] = None,
    ) -> TransferResult:
        """Retrieve one archived entry from a presigned URL."""
        range_spec = compute_range(entry, include_header=verify_header)
        if self.reporter:
            self.reporter.on_range(range_spec)

        job = self._job(Direction.EXTRACT, "", url.split("?", 1)[0], destination)

        def attempt() -> TransferResult:
            if http_client is not None:
                return fetch_range_from_url(http_client, url, range_spec, destination, entry=entry)
            with httpx.Client(timeout=HTTP_TIMEOUT) as client:
                return fetch_range_from_url(client, url, range_spec, destination, entry=entry)

        return self._run_job(job, attempt)

    def presign(self, bucket: str, key: str, expires: int) -> str:
        """Generate a presigned GET URL for bucket/key."""
        url = presign_get(self.s3_client, bucket, key, expires)
        if self.reporter:
            self.reporter.on_presigned_url(bucket, key, url)
        return url

    def finish(self) -> list[TransferResult]:
        """Signal the end of the run to the reporter."""
        if self.reporter:
            self.reporter.on_run_complete(self.results)
        return self.results
