"""Records, datasets and partition handling."""

from .partitions import assign_partitions, remove_positions, select_excluded, training_split
from .records import Dataset, Point, Record

__all__ = [
    "Record",
    "Dataset",
    "Point",
    "assign_partitions",
    "select_excluded",
    "remove_positions",
    "training_split",
]
