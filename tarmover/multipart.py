"""Multipart upload lifecycle management.

Handles the complete lifecycle of an S3 multipart upload:
- Initiate upload
- Upload parts and record their ETags (from many worker threads)
- Complete with parts ordered by part number, or abort
"""

import logging
import threading
from typing import Any, Iterator, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from tarmover.errors import LocalIOError, TransferError, translate_client_error
from tarmover.models import PartPlan

logger = logging.getLogger(__name__)


class MultipartUpload:
    """Manages the lifecycle of one multipart upload.

    This class handles:
    - Initiating a multipart upload
    - Uploading parts and tracking their ETags, one slot per part number
    - Completing or aborting the upload

    Part ETags may be recorded concurrently from worker threads; completion
    always lists them in part number order, whatever order they arrived in.

    Can be used as a context manager: the upload is initiated on entry and
    aborted if the block raises.
    """

    def __init__(self, s3_client: Any, bucket: str, key: str):
        """Initialize the multipart upload manager.

        Args:
            s3_client: boto3 S3 client
            bucket: Destination bucket
            key: Destination object key
        """
        self.s3_client = s3_client
        self.bucket = bucket
        self.key = key
        self.upload_id: Optional[str] = None
        self._etags: dict[int, str] = {}
        self._lock = threading.Lock()

    def initiate(self) -> str:
        """Initiate a new multipart upload.

        Returns:
            The upload ID for the new multipart upload.

        Raises:
            TransferError: If the API call fails.
        """
        try:
            response = self.s3_client.create_multipart_upload(
                Bucket=self.bucket,
                Key=self.key,
            )
        except (BotoCoreError, ClientError) as e:
            raise translate_client_error(e, "CreateMultipartUpload", self.bucket, self.key) from e

        self.upload_id = response["UploadId"]
        logger.debug("Initiated multipart upload %s for s3://%s/%s", self.upload_id, self.bucket, self.key)
        return self.upload_id

    def upload_part(self, part_number: int, data: bytes) -> str:
        """Upload one part and record its ETag.

        Args:
            part_number: The 1-indexed part number.
            data: Part content.

        Returns:
            The ETag returned by the store.

        Raises:
            RuntimeError: If upload was not initiated.
            TransferError: If the API call fails.
        """
        if self.upload_id is None:
            raise RuntimeError("Upload not initiated")

        try:
            response = self.s3_client.upload_part(
                Bucket=self.bucket,
                Key=self.key,
                UploadId=self.upload_id,
                PartNumber=part_number,
                Body=data,
            )
        except (BotoCoreError, ClientError) as e:
            raise translate_client_error(
                e, "UploadPart", self.bucket, self.key, part=part_number
            ) from e

        etag = response["ETag"]
        self.add_part(part_number, etag)
        logger.debug("Uploaded part %d (%d bytes) of %s", part_number, len(data), self.key)
        return etag

    def add_part(self, part_number: int, etag: str) -> None:
        """Record a successfully uploaded part.

        Args:
            part_number: The 1-indexed part number.
            etag: The ETag returned by the store.

        Raises:
            RuntimeError: If the part number was already recorded.
        """
        with self._lock:
            if part_number in self._etags:
                raise RuntimeError(f"Part {part_number} recorded twice")
            self._etags[part_number] = etag

    def get_uploaded_parts(self) -> list[dict]:
        """Get the uploaded parts ordered by part number.

        Returns:
            New list of {"PartNumber", "ETag"} dicts.
        """
        with self._lock:
            return [
                {"PartNumber": number, "ETag": self._etags[number]}
                for number in sorted(self._etags)
            ]

    def complete(self) -> dict:
        """Complete the multipart upload.

        Returns:
            The API response containing the final location and ETag.

        Raises:
            RuntimeError: If upload was not initiated.
            TransferError: If the API call fails.
        """
        if self.upload_id is None:
            raise RuntimeError("Upload not initiated")

        try:
            return self.s3_client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=self.key,
                UploadId=self.upload_id,
                MultipartUpload={"Parts": self.get_uploaded_parts()},
            )
        except (BotoCoreError, ClientError) as e:
            raise translate_client_error(e, "CompleteMultipartUpload", self.bucket, self.key) from e

    def abort(self) -> None:
        """Abort the multipart upload.

        Removes any uploaded parts on the store side. A no-op if the upload
        was never initiated.

        Raises:
            TransferError: If the store rejects the abort.
        """
        if self.upload_id is None:
            return

        try:
            self.s3_client.abort_multipart_upload(
                Bucket=self.bucket,
                Key=self.key,
                UploadId=self.upload_id,
            )
        except (BotoCoreError, ClientError) as e:
            raise TransferError(
                f"AbortMultipartUpload failed for s3://{self.bucket}/{self.key}: {e}",
                bucket=self.bucket,
                key=self.key,
            ) from e
        logger.debug("Aborted multipart upload %s", self.upload_id)

    def __enter__(self) -> "MultipartUpload":
        """Enter context manager - initiates upload."""
        self.initiate()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Exit context manager - aborts on exception."""
        if exc_type is not None:
            try:
                self.abort()
            except TransferError as e:
                logger.warning("Could not abort upload %s: %s", self.upload_id, e)
        return False  # Don't suppress exceptions


def iterate_parts(stream: Any, plans: Sequence[PartPlan]) -> Iterator[tuple[PartPlan, bytes]]:
    """Read planned parts from a sequential stream, strictly in order.

    Args:
        stream: Object with a read(size) method (TarStream, FileStream).
        plans: Part plans covering the whole advertised stream size.

    Yields:
        Tuples of (plan, part_data).

    Raises:
        LocalIOError: If the stream is shorter or longer than planned.
    """
    for plan in plans:
        data = stream.read(plan.length)
        if len(data) != plan.length:
            raise LocalIOError(
                f"Stream ended early: part {plan.number} expected {plan.length} bytes, got {len(data)}",
                part=plan.number,
            )
        yield plan, data

    if stream.read(1):
        raise LocalIOError("Stream produced more bytes than its advertised size")
