"""Concurrent chunked upload and download.

Uploads read the source stream strictly in order, because tar streams are
not seekable, and hand each part to a fixed-size thread pool. Downloads split
the object into ranged GETs and write each chunk at its own offset.

In both directions at most ``concurrency`` parts are submitted and unfinished
at any time, so memory stays bounded by concurrency * part_size. The first
failure stops dispatch even when the pool has free slots; parts already in
flight are allowed to finish before the error is raised. Nothing is retried
here.
"""

import functools
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, BinaryIO, Callable, Iterable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from tarmover.errors import LocalIOError, TarMoverError, TransferError, translate_client_error
from tarmover.models import Direction, PartPlan, TransferResult, TransferSettings
from tarmover.multipart import MultipartUpload, iterate_parts
from tarmover.ranges import plan_parts
from tarmover.s3_client import object_url

logger = logging.getLogger(__name__)

# Bytes pulled from a response body per read while writing a chunk
DEFAULT_READ_SIZE = 1024 * 1024


class ChunkWriter:
    """Positioned writes into one shared file handle.

    Chunks never overlap, but seek and write on the same handle must not
    interleave between threads, so each write holds a lock.
    """

    def __init__(self, file: BinaryIO, path: str = ""):
        self._file = file
        self._path = path
        self._lock = threading.Lock()

    def write_at(self, offset: int, data: bytes) -> None:
        try:
            with self._lock:
                self._file.seek(offset)
                self._file.write(data)
        except OSError as e:
            raise LocalIOError(f"Failed writing {self._path} at offset {offset}: {e}") from e


def _first_error(futures: Iterable[Future]) -> Optional[BaseException]:
    for future in futures:
        error = future.exception()
        if error is not None:
            return error
    return None


class TransferEngine:
    """Part-sized, bounded-concurrency transfers against one S3 client."""

    def __init__(
        self,
        s3_client: Any,
        settings: TransferSettings,
        read_size: int = DEFAULT_READ_SIZE,
    ):
        self.s3_client = s3_client
        self.part_size = settings.part_size
        self.concurrency = settings.concurrency
        self.read_size = read_size

    def _dispatch(self, tasks: Iterable[Callable[[], Any]]) -> None:
        """Run tasks on the worker pool, at most `concurrency` at a time.

        Tasks are pulled from the iterable only when a slot is free, and
        finished tasks are checked before every submit, so nothing new is
        dispatched once a task has failed. Raises the first error seen, from
        a worker or from the iterable itself, after every submitted task has
        finished.
        """
        first_error: Optional[BaseException] = None
        pending: set[Future] = set()

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            try:
                for task in tasks:
                    if len(pending) >= self.concurrency:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    else:
                        done = {future for future in pending if future.done()}
                        pending -= done
                    first_error = _first_error(done)
                    if first_error is not None:
                        break
                    pending.add(executor.submit(task))
            except TarMoverError as e:
                first_error = e

            done, _ = wait(pending)
            if first_error is None:
                first_error = _first_error(done)

        if first_error is not None:
            raise first_error

    def upload(self, stream: Any, total_size: int, bucket: str, key: str) -> TransferResult:
        """Upload a sequential stream of known size to bucket/key.

        Streams no larger than one part are sent with a single PutObject;
        anything larger goes through a multipart upload that is aborted if
        any part or the completion fails.

        Args:
            stream: Object with read(size), e.g. TarStream or FileStream.
            total_size: Exact number of bytes the stream will produce.
            bucket: Destination bucket.
            key: Destination object key.

        Returns:
            TransferResult with the object location and elapsed time.

        Raises:
            TransferError: A part, the completion or the put failed.
            LocalIOError: The stream could not be read or had the wrong size.
        """
        start = time.monotonic()
        plans = plan_parts(total_size, self.part_size)

        if total_size <= self.part_size:
            location = self._put_single(stream, plans, bucket, key)
        else:
            location = self._upload_multipart(stream, plans, bucket, key)

        elapsed = time.monotonic() - start
        result = TransferResult(
            direction=Direction.UPLOAD,
            bucket=bucket,
            key=key,
            location=location,
            size=total_size,
            elapsed=elapsed,
            parts=max(len(plans), 1),
            manifest=list(getattr(stream, "manifest", [])),
        )
        logger.info("Uploaded: %s %.2f MiB/s", location, result.throughput)
        return result

    def _put_single(self, stream: Any, plans: list[PartPlan], bucket: str, key: str) -> str:
        data = b"".join(chunk for _, chunk in iterate_parts(stream, plans))
        try:
            self.s3_client.put_object(Bucket=bucket, Key=key, Body=data)
        except (BotoCoreError, ClientError) as e:
            raise translate_client_error(e, "PutObject", bucket, key) from e
        return object_url(self.s3_client, bucket, key)

    def _upload_multipart(self, stream: Any, plans: list[PartPlan], bucket: str, key: str) -> str:
        with MultipartUpload(self.s3_client, bucket, key) as upload:
            tasks = (
                functools.partial(upload.upload_part, plan.number, data)
                for plan, data in iterate_parts(stream, plans)
            )
            self._dispatch(tasks)
            response = upload.complete()

        logger.debug("Completed multipart upload of %s in %d parts", key, len(plans))
        return response.get("Location") or object_url(self.s3_client, bucket, key)

    def object_size(self, bucket: str, key: str) -> int:
        """Size of a remote object in bytes.

        Raises:
            NotFound: The object does not exist.
            TransferError: The HEAD request failed otherwise.
        """
        try:
            response = self.s3_client.head_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise translate_client_error(e, "HeadObject", bucket, key) from e
        return int(response["ContentLength"])

    def download(self, bucket: str, key: str, destination: str) -> TransferResult:
        """Download bucket/key into a local file using concurrent ranged GETs.

        On failure the destination is left as written so far and must not be
        treated as valid.

        Returns:
            TransferResult with the local path and elapsed time.

        Raises:
            NotFound: The object does not exist.
            TransferError: A chunk failed or returned the wrong length.
            LocalIOError: The destination could not be created or written.
        """
        start = time.monotonic()
        size = self.object_size(bucket, key)
        plans = plan_parts(size, self.part_size)

        try:
            file = open(destination, "wb")
        except OSError as e:
            raise LocalIOError(f"Cannot create {destination}: {e}", bucket=bucket, key=key) from e

        with file:
            writer = ChunkWriter(file, destination)
            tasks = (
                functools.partial(self._download_chunk, bucket, key, plan, writer)
                for plan in plans
            )
            self._dispatch(tasks)

        elapsed = time.monotonic() - start
        result = TransferResult(
            direction=Direction.DOWNLOAD,
            bucket=bucket,
            key=key,
            location=object_url(self.s3_client, bucket, key),
            size=size,
            elapsed=elapsed,
            parts=max(len(plans), 1),
            local_path=destination,
        )
        logger.info("Downloaded: %s %.2f MiB/s", destination, result.throughput)
        return result

    def _download_chunk(self, bucket: str, key: str, plan: PartPlan, writer: ChunkWriter) -> int:
        range_header = f"bytes={plan.offset}-{plan.end}"
        try:
            response = self.s3_client.get_object(Bucket=bucket, Key=key, Range=range_header)
            body = response["Body"]
            try:
                received = 0
                while True:
                    data = body.read(self.read_size)
                    if not data:
                        break
                    writer.write_at(plan.offset + received, data)
                    received += len(data)
            finally:
                body.close()
        except (BotoCoreError, ClientError) as e:
            raise TransferError(
                f"GetObject {range_header} failed for s3://{bucket}/{key}: {e}",
                bucket=bucket,
                key=key,
                part=plan.number,
            ) from e

        if received != plan.length:
            raise TransferError(
                f"Chunk {plan.number} of s3://{bucket}/{key}: expected {plan.length} bytes, got {received}",
                bucket=bucket,
                key=key,
                part=plan.number,
            )
        logger.debug("Downloaded chunk %d (%s)", plan.number, range_header)
        return received
