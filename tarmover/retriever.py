"""Single-entry retrieval from a remote tar archive.

One archived file is recovered with a single ranged GET computed from its
manifest entry. No tar parsing is needed: the range already starts at the
entry's content. When the range is widened to include the header, the header
is checked against the manifest entry and dropped before writing.

Two transports are supported:
- retrieve_entry: boto3 GetObject with a Range parameter (needs credentials)
- fetch_range_from_url: httpx GET with a Range header against a presigned URL
"""

import logging
import tarfile
import time
from typing import Any, Iterable, Optional

import httpx
from botocore.exceptions import BotoCoreError, ClientError

from tarmover.errors import LocalIOError, NotFound, TransferError, translate_client_error
from tarmover.models import Direction, ManifestEntry, RangeSpec, TransferResult

logger = logging.getLogger(__name__)

# Bytes pulled from the response per iteration
DEFAULT_READ_SIZE = 1024 * 1024

# Default lifetime of a presigned URL, in seconds
DEFAULT_PRESIGN_EXPIRY = 3600


def verify_header(header: bytes, entry: ManifestEntry) -> None:
    """Check that a tar header block describes the expected entry.

    An entry without a name (known only by offset and size) is checked on
    size alone.

    Raises:
        NotFound: The block is not a valid header, or its name or size
            differs from the entry (stale manifest or overwritten object).
    """
    try:
        info = tarfile.TarInfo.frombuf(header, encoding="utf-8", errors="surrogateescape")
    except tarfile.HeaderError as e:
        raise NotFound(
            f"No valid tar header at offset {entry.offset}: {e}", entry=entry.name
        ) from e

    name_matches = not entry.name or info.name == entry.name
    if not name_matches or info.size != entry.size:
        raise NotFound(
            f"Header at offset {entry.offset} describes {info.name!r} ({info.size} bytes), "
            f"expected {entry.name!r} ({entry.size} bytes)",
            entry=entry.name,
        )


def _write_body(
    chunks: Iterable[bytes],
    range_spec: RangeSpec,
    destination: str,
    entry: Optional[ManifestEntry] = None,
) -> int:
    """Write a ranged response body to destination, dropping skip_bytes first.

    The destination is only created once the header (if any) has been
    checked. Returns the number of content bytes written.

    Truncated transports fail inside the chunk iterator, so a body that
    ends early here is a range the store clamped at the end of the object.
    """
    header = bytearray()
    written = 0
    out = None

    try:
        for chunk in chunks:
            if len(header) < range_spec.skip_bytes:
                needed = range_spec.skip_bytes - len(header)
                header.extend(chunk[:needed])
                chunk = chunk[needed:]
                if len(header) == range_spec.skip_bytes and entry is not None:
                    verify_header(bytes(header), entry)
                if not chunk:
                    continue

            try:
                if out is None:
                    out = open(destination, "wb")
                out.write(chunk)
            except OSError as e:
                raise LocalIOError(f"Failed writing {destination}: {e}") from e
            written += len(chunk)

        if out is None and range_spec.content_length > 0:
            raise NotFound(f"Empty or header-only response for {range_spec.header_value}")
    finally:
        if out is not None:
            out.close()

    if written != range_spec.content_length:
        raise NotFound(
            f"Range past end of object {range_spec.header_value}: expected "
            f"{range_spec.content_length} bytes, got {written}"
        )
    return written


def retrieve_entry(
    s3_client: Any,
    bucket: str,
    key: str,
    range_spec: RangeSpec,
    destination: str,
    entry: Optional[ManifestEntry] = None,
    read_size: int = DEFAULT_READ_SIZE,
) -> TransferResult:
    """Retrieve one byte range of bucket/key into a local file.

    Args:
        s3_client: boto3 S3 client.
        bucket: Bucket holding the archive.
        key: Archive object key.
        range_spec: Range from compute_range.
        destination: Local file to create.
        entry: Manifest entry, used to check the header when the range
            includes it.
        read_size: Bytes read from the response per iteration.

    Returns:
        TransferResult with content size and elapsed time.

    Raises:
        NotFound: Missing object, unsatisfiable range, a range cut short by
            the end of the object, or a mismatched header.
        TransferError: Any other store failure.
        LocalIOError: The destination could not be written.
    """
    start = time.monotonic()
    entry_name = entry.name if entry is not None else None

    try:
        response = s3_client.get_object(Bucket=bucket, Key=key, Range=range_spec.header_value)
        body = response["Body"]
        try:
            written = _write_body(body.iter_chunks(read_size), range_spec, destination, entry)
        finally:
            body.close()
    except (BotoCoreError, ClientError) as e:
        error = translate_client_error(e, f"GetObject {range_spec.header_value}", bucket, key)
        error.entry = entry_name
        raise error from e
    except (NotFound, TransferError, LocalIOError) as e:
        e.bucket, e.key = bucket, key
        e.entry = e.entry or entry_name
        raise

    elapsed = time.monotonic() - start
    result = TransferResult(
        direction=Direction.EXTRACT,
        bucket=bucket,
        key=key,
        location=range_spec.header_value,
        size=written,
        elapsed=elapsed,
        local_path=destination,
        manifest=[entry] if entry is not None else [],
    )
    logger.info(
        "Downloaded: %s %.2f MiB/s (%.0f B/s)", destination, result.throughput, result.bytes_per_second
    )
    return result


def presign_get(
    s3_client: Any,
    bucket: str,
    key: str,
    expires: int = DEFAULT_PRESIGN_EXPIRY,
) -> str:
    """Generate a presigned GET URL for an archive object."""
    try:
        return s3_client.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires,
        )
    except (BotoCoreError, ClientError) as e:
        raise translate_client_error(e, "PresignGetObject", bucket, key) from e


def fetch_range_from_url(
    http_client: httpx.Client,
    url: str,
    range_spec: RangeSpec,
    destination: str,
    entry: Optional[ManifestEntry] = None,
    read_size: int = DEFAULT_READ_SIZE,
) -> TransferResult:
    """Retrieve one byte range from a (presigned) URL into a local file.

    A 200 response means the server ignored the Range header and would send
    the whole archive, so only 206 is accepted.

    Raises:
        NotFound: 404 or 416 from the server, a range cut short by the end
            of the object, or a mismatched header.
        TransferError: Other statuses or network failures.
        LocalIOError: The destination could not be written.
    """
    start = time.monotonic()
    headers = {"Range": range_spec.header_value}

    try:
        with http_client.stream("GET", url, headers=headers) as response:
            if response.status_code in (404, 416):
                raise NotFound(
                    f"GET {range_spec.header_value} returned {response.status_code}",
                    entry=entry.name if entry is not None else None,
                )
            if response.status_code != 206:
                message = f"GET {range_spec.header_value} returned {response.status_code}, expected 206"
                status_error = httpx.HTTPStatusError(
                    message, request=response.request, response=response
                )
                raise TransferError(message) from status_error
            written = _write_body(response.iter_bytes(read_size), range_spec, destination, entry)
    except httpx.HTTPError as e:
        raise TransferError(f"GET {range_spec.header_value} failed: {e}") from e

    elapsed = time.monotonic() - start
    result = TransferResult(
        direction=Direction.EXTRACT,
        bucket="",
        key=url.split("?", 1)[0],
        location=range_spec.header_value,
        size=written,
        elapsed=elapsed,
        local_path=destination,
        manifest=[entry] if entry is not None else [],
    )
    logger.info(
        "Downloaded: %s %.2f MiB/s (%.0f B/s)", destination, result.throughput, result.bytes_per_second
    )
    return result
