"""
Stream partitioning.

Events are spread over ``partitions`` streams by auction id so every event
for one auction lands on the same stream, in publish order. A worker that
owns a partition therefore sees a single auction's events in order.
"""

import zlib
from uuid import UUID


def partition_for(aggregate_id: UUID | str, partitions: int) -> int:
    """Stable partition index for an aggregate id."""
    if partitions < 1:
        raise ValueError("partitions must be at least 1")
    return zlib.crc32(str(aggregate_id).encode("utf-8")) % partitions


def stream_name(prefix: str, partition: int) -> str:
    return f"{prefix}:{partition}"


def stream_for(aggregate_id: UUID | str, prefix: str, partitions: int) -> str:
    """Name of the stream carrying events for ``aggregate_id``."""
    return stream_name(prefix, partition_for(aggregate_id, partitions))


def all_streams(prefix: str, partitions: int) -> list[str]:
    return [stream_name(prefix, n) for n in range(partitions)]


def parse_partition_list(value: str, partitions: int) -> list[int]:
    """
    Parse a worker's partition assignment ("0,2", "1-3" or "all").

    Raises ValueError for indexes outside ``range(partitions)``.
    """
    value = value.strip().lower()
    if value in ("", "all", "*"):
        return list(range(partitions))

    selected: set[int] = set()
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, end = (int(x) for x in part.split("-", 1))
            selected.update(range(start, end + 1))
        else:
            selected.add(int(part))

    invalid = [p for p in selected if p < 0 or p >= partitions]
    if invalid:
        raise ValueError(f"Partitions {sorted(invalid)} out of range 0..{partitions - 1}")

    return sorted(selected)
