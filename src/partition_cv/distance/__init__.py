"""Gating distances used to pre-filter comparisons."""

from .gating import (
    ACCEPT,
    REJECT,
    Distance,
    FilterDistance,
    MetadataDistance,
    PartitionDistance,
    make_distance,
)

__all__ = [
    "ACCEPT",
    "REJECT",
    "Distance",
    "PartitionDistance",
    "FilterDistance",
    "MetadataDistance",
    "make_distance",
]
