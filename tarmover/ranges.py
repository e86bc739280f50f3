"""Byte range arithmetic for partial retrievals and chunked transfers.

A manifest entry records where an entry's header starts and how long its
content is. Because a ustar header is always exactly one block, the content
range can be computed without reading anything from the archive.
"""

from tarmover.models import ManifestEntry, PartPlan, RangeSpec
from tarmover.tarstream import HEADER_BLOCK_SIZE


def compute_range(
    entry: ManifestEntry,
    header_block_size: int = HEADER_BLOCK_SIZE,
    include_header: bool = False,
) -> RangeSpec:
    """Compute the inclusive byte range of an entry's content.

    Args:
        entry: Manifest entry (offset of its header, size of its content).
        header_block_size: Size of the tar header preceding the content.
        include_header: Start the range at the header instead of the content.
            The header bytes are then reported as skip_bytes so the retriever
            can check them and drop them.

    Returns:
        RangeSpec covering exactly the entry content (plus header if asked).

    Raises:
        ValueError: If offset or size is negative, size is zero, or the
            header size is not positive.
    """
    if entry.offset < 0:
        raise ValueError(f"Negative offset for {entry.name}: {entry.offset}")
    if entry.size < 0:
        raise ValueError(f"Negative size for {entry.name}: {entry.size}")
    if entry.size == 0:
        raise ValueError(f"Entry {entry.name} has no content to retrieve")
    if header_block_size <= 0:
        raise ValueError(f"Header block size must be positive: {header_block_size}")

    content_start = entry.offset + header_block_size
    end_byte = content_start + entry.size - 1

    if include_header:
        return RangeSpec(start_byte=entry.offset, end_byte=end_byte, skip_bytes=header_block_size)
    return RangeSpec(start_byte=content_start, end_byte=end_byte)


def plan_parts(total_size: int, part_size: int) -> list[PartPlan]:
    """Split [0, total_size) into contiguous blocks numbered from 1.

    Used for both upload parts and download chunks. The last block holds
    the remainder; an empty object yields no blocks.
    """
    if total_size < 0:
        raise ValueError(f"Size must not be negative: {total_size}")
    if part_size <= 0:
        raise ValueError(f"Part size must be positive: {part_size}")

    plans = []
    offset = 0
    number = 1
    while offset < total_size:
        length = min(part_size, total_size - offset)
        plans.append(PartPlan(number=number, offset=offset, length=length))
        offset += length
        number += 1
    return plans
