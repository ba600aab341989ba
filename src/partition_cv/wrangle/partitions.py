"""Partition assignment and held-out record selection."""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from partition_cv.core.config import ExclusionMode
from partition_cv.wrangle.records import SUBJECT_KEY, Dataset

logger = logging.getLogger(__name__)


def assign_partitions(dataset: Dataset) -> Tuple[np.ndarray, int]:
    """Return each record's partition index and the partition count.

    The count is one more than the largest index, or 0 for an empty dataset.
    Negative indices are kept as-is; they never raise the count.
    """
    partitions = dataset.partitions()
    if partitions.size == 0:
        return partitions, 0
    num_partitions = max(int(partitions.max()) + 1, 0)
    return partitions, num_partitions


def select_excluded(
    dataset: Dataset,
    partition: int,
    mode: ExclusionMode = ExclusionMode.PARTITION,
    partitions: Optional[np.ndarray] = None,
) -> List[int]:
    """Positions to hold out of the model trained for `partition`.

    In ``PARTITION`` mode every record of that partition is held out.

    In ``LEAVE_ONE_OUT`` mode each record looks up all positions sharing its
    subject, ``S``. When ``partition > len(S)`` the position
    ``S[partition % len(S)]`` is held out. The comparison is strict, so
    partitions up to and including the subject's record count hold nothing
    out for that subject. The rule is evaluated once per record, so the
    result may contain duplicates; `remove_positions` handles them.
    """
    if mode is ExclusionMode.LEAVE_ONE_OUT:
        excluded: List[int] = []
        subject_positions: Dict[str, List[int]] = {}
        # scan from the end to match the removal order
        for j in range(len(dataset) - 1, -1, -1):
            subject = dataset[j].get_str(SUBJECT_KEY)
            if subject not in subject_positions:
                subject_positions[subject] = dataset.find(SUBJECT_KEY, subject)
            positions = subject_positions[subject]
            if not positions:
                continue
            if partition > len(positions):
                excluded.append(positions[partition % len(positions)])
        return excluded

    if partitions is None:
        partitions, _ = assign_partitions(dataset)
    return [int(j) for j in np.flatnonzero(partitions == partition)[::-1]]


def remove_positions(dataset: Dataset, positions: Iterable[int]) -> Dataset:
    """Return a copy of `dataset` without the given positions.

    Positions are deduplicated and removed from highest to lowest, so the
    result does not depend on the order or multiplicity of `positions`.
    """
    remaining = dataset.records
    n = len(remaining)
    for pos in sorted(set(int(p) for p in positions), reverse=True):
        if pos < 0 or pos >= n:
            raise IndexError(
                f"Cannot remove position {pos} from dataset of {n} records"
            )
        del remaining[pos]
    return Dataset(remaining)


def training_split(
    dataset: Dataset,
    partition: int,
    mode: ExclusionMode = ExclusionMode.PARTITION,
    partitions: Optional[np.ndarray] = None,
) -> Tuple[Dataset, List[int]]:
    """Training set for `partition` plus the held-out positions (deduplicated)."""
    excluded = select_excluded(dataset, partition, mode, partitions)
    unique = sorted(set(excluded))
    kept = remove_positions(dataset.copy(), unique)
    logger.debug(
        "Partition %d: holding out %d of %d records (%s)",
        partition,
        len(unique),
        len(dataset),
        mode.value,
    )
    return kept, unique
