"""
Batch descriptors for row-range jobs and the partitioning that creates them.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class BatchDescriptor:
    """
    Inclusive row range processed by one job.
    """

    start_row: int
    end_row: int
    id: Optional[int] = None

    @property
    def row_count(self) -> int:
        return self.end_row - self.start_row + 1

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"start_row": self.start_row, "end_row": self.end_row}
        if self.id is not None:
            data["id"] = self.id
        return data


def new_batch_descriptors(
    row_start: int, row_end: int, batch_size: int
) -> List[BatchDescriptor]:
    """
    Partition the inclusive range [row_start, row_end] into contiguous batches.

    Produces ceil((row_end - row_start + 1) / batch_size) descriptors with ids
    0..n-1 in range order; the last batch may be shorter.

    :param row_start: First row of the range.
    :param row_end: Last row of the range, inclusive.
    :param batch_size: Rows per batch.
    :return: Descriptors in range order.
    :raises ValueError: If batch_size < 1 or row_end < row_start.
    """
    if batch_size < 1:
        raise ValueError(f"batch size must be at least 1, got {batch_size}")
    if row_end < row_start:
        raise ValueError(f"row range is empty: {row_start}..{row_end}")

    descriptors: List[BatchDescriptor] = []
    for job_id, start in enumerate(range(row_start, row_end + 1, batch_size)):
        end = min(row_end, start + batch_size - 1)
        descriptors.append(BatchDescriptor(start_row=start, end_row=end, id=job_id))
    return descriptors
