"""Part planning for chunked transfers.

Splits an object of a given size into contiguous, non-overlapping byte
ranges. Used by chunked upload, chunked download, and multipart copy.
"""

from storage_cli.errors import InvalidSizeError
from storage_cli.models import Part, TransferSpec


def part_count(source_size: int, part_size: int) -> int:
    """Number of parts needed to cover ``source_size`` bytes."""
    # Example: 550 MiB in 100 MiB parts => (550 + 100 - 1) // 100 = 6
    return (source_size + part_size - 1) // part_size


def plan(source_size: int, part_size: int) -> list[Part]:
    """Compute the part plan for an object.

    Args:
        source_size: Object size in bytes.
        part_size: Maximum size of each part in bytes.

    Returns:
        Parts numbered from 1, covering ``[0, source_size)``. The last
        part may be shorter than ``part_size``. An empty object yields
        no parts; callers send it as a single empty request.

    Raises:
        InvalidSizeError: If ``source_size`` is negative or ``part_size``
            is not positive.
    """
    if source_size < 0:
        raise InvalidSizeError(f"source size must not be negative, got {source_size}")
    if part_size <= 0:
        raise InvalidSizeError(f"part size must be positive, got {part_size}")

    parts = []
    for i in range(part_count(source_size, part_size)):
        start = i * part_size
        end = min(start + part_size, source_size) - 1
        parts.append(Part(index=i + 1, start_byte=start, end_byte=end))
    return parts


def plan_for(spec: TransferSpec) -> list[Part]:
    """Plan parts for a transfer, honouring ``multipart_enabled``."""
    if not spec.multipart_enabled:
        if spec.part_size <= 0:
            raise InvalidSizeError(f"part size must be positive, got {spec.part_size}")
        return plan(spec.source_size, max(spec.source_size, 1))
    return plan(spec.source_size, spec.part_size)
