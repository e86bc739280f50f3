"""Error taxonomy for transfer jobs.

All errors raised by the transfer core derive from TarMoverError and carry
whatever context was known when they were raised (bucket, key, part number or
entry name) so the caller can log them and decide whether to retry.
"""

from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

# Error codes a store returns for a missing object or an unsatisfiable range
NOT_FOUND_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NotFound", "416", "InvalidRange"}


class TarMoverError(Exception):
    """Base class for all transfer errors."""

    def __init__(
        self,
        message: str,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
        part: Optional[int] = None,
        entry: Optional[str] = None,
    ):
        super().__init__(message)
        self.bucket = bucket
        self.key = key
        self.part = part
        self.entry = entry

    def context(self) -> dict:
        """Return the non-empty context fields of this error."""
        fields = {
            "bucket": self.bucket,
            "key": self.key,
            "part": self.part,
            "entry": self.entry,
        }
        return {k: v for k, v in fields.items() if v is not None}


class NotFound(TarMoverError):
    """Missing local file, missing remote object or invalid range."""


class LocalIOError(TarMoverError):
    """Local read or write failure."""


class TransferError(TarMoverError):
    """Network, part, finalize or abort failure."""


def error_code(error: ClientError) -> str:
    """Extract the store error code from a botocore ClientError."""
    return str(error.response.get("Error", {}).get("Code", ""))


def status_code(error: ClientError) -> Optional[int]:
    """Extract the HTTP status code from a botocore ClientError, if any."""
    return error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def translate_client_error(
    error: Exception,
    action: str,
    bucket: Optional[str] = None,
    key: Optional[str] = None,
    part: Optional[int] = None,
) -> TarMoverError:
    """Map a botocore exception to NotFound or TransferError.

    Args:
        error: The exception raised by the boto3 client.
        action: Short description of the failed call, used in the message.
        bucket: Bucket the call targeted.
        key: Object key the call targeted.
        part: Part number or chunk index, if the call was for one part.

    Returns:
        The translated error. Callers raise it chained to the original.
    """
    message = f"{action} failed for s3://{bucket}/{key}"
    if part is not None:
        message += f" (part {part})"

    if isinstance(error, ClientError):
        code = error_code(error)
        if code in NOT_FOUND_CODES:
            return NotFound(f"{message}: {code}", bucket=bucket, key=key, part=part)
        return TransferError(f"{message}: {error}", bucket=bucket, key=key, part=part)

    if isinstance(error, BotoCoreError):
        return TransferError(f"{message}: {error}", bucket=bucket, key=key, part=part)

    return TransferError(f"{message}: {error!r}", bucket=bucket, key=key, part=part)
