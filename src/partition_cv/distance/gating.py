"""Gating distances: keep/reject pre-filters applied before scoring.

Each distance maps a pair of records to `ACCEPT` (0.0) or `REJECT`, the
most negative finite single-precision value. They carry no preference
beyond that, so they are combined with a real similarity by the caller.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np

from partition_cv.core.config import FilterConfig, global_filters
from partition_cv.core.errors import ConfigurationError
from partition_cv.wrangle.records import PARTITION_KEY, Point, Record

REJECT = -float(np.finfo(np.float32).max)
ACCEPT = 0.0

ALL_PARTITIONS_KEY = "allPartitions"
_TRUTHY = {"true", "1", "yes"}


class Distance(ABC):
    """Compare two records; `a` is the target, `b` the query."""

    @abstractmethod
    def compare(self, a: Record, b: Record) -> float:
        """Return `ACCEPT` or `REJECT` for the pair."""

    def keep(self, a: Record, b: Record) -> bool:
        return self.compare(a, b) != REJECT

    def compare_many(
        self, targets: Sequence[Record], queries: Sequence[Record]
    ) -> np.ndarray:
        """Score matrix of shape ``(len(targets), len(queries))``."""
        scores = np.full((len(targets), len(queries)), ACCEPT, dtype=np.float32)
        for i, a in enumerate(targets):
            for j, b in enumerate(queries):
                scores[i, j] = self.compare(a, b)
        return scores

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class PartitionDistance(Distance):
    """Reject pairs from different cross-validation partitions.

    A record flagged with a truthy ``allPartitions`` attribute belongs to an
    extended gallery and is accepted against every partition.
    """

    def compare(self, a: Record, b: Record) -> float:
        if _all_partitions(a) or _all_partitions(b):
            return ACCEPT
        partition_a = a.get_int(PARTITION_KEY, 0)
        partition_b = b.get_int(PARTITION_KEY, 0)
        return REJECT if partition_a != partition_b else ACCEPT


def _all_partitions(record: Record) -> bool:
    value = record.get(ALL_PARTITIONS_KEY)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


class FilterDistance(Distance):
    """Reject targets whose metadata is not in the allowed-value table.

    Only the target (`a`) is checked. For every key with a non-empty allowed
    set, a target missing the key or holding a value outside the set is
    rejected. The table is fixed at construction; without one, the
    process-wide snapshot is read once here.
    """

    def __init__(
        self,
        filters: Union[FilterConfig, Mapping[str, Iterable[Any]], None] = None,
    ) -> None:
        if filters is None:
            filters = global_filters()
        elif not isinstance(filters, FilterConfig):
            filters = FilterConfig.from_mapping(filters)
        self.filters: FilterConfig = filters

    def compare(self, a: Record, b: Record) -> float:
        for key, allowed in self.filters.items():
            if not allowed:
                continue
            metadata = a.get_str(key)
            if not metadata or metadata not in allowed:
                return REJECT
        return ACCEPT

    def __repr__(self) -> str:
        return f"FilterDistance({self.filters.to_dict()})"


class MetadataDistance(Distance):
    """Reject targets whose metadata does not match the query's.

    For each key the query (`b`) value is either an exact string to match or
    an inclusive integer range, given as a `Point` or a point-formatted
    string such as ``"(20, 40)"``. A target matches a range when its value is
    a plain decimal integer inside it. Keys missing on either side impose no
    constraint. Values that do not parse as a range fall back to exact
    matching.
    """

    def __init__(self, keys: Optional[Iterable[str]] = None) -> None:
        if isinstance(keys, str):
            keys = [keys]
        self.keys: List[str] = list(keys or [])
        bad = [k for k in self.keys if not isinstance(k, str) or not k]
        if bad:
            raise ConfigurationError(f"Metadata keys must be non-empty strings: {bad}")

    def compare(self, a: Record, b: Record) -> float:
        for key in self.keys:
            a_value = a.get_str(key)
            b_value = b.get_str(key)
            if not a_value or not b_value:
                continue

            span = Point.parse(b.get(key))
            if span is not None:
                keep = _in_range(a_value, span)
            else:
                keep = a_value == b_value

            if not keep:
                return REJECT
        return ACCEPT

    def __repr__(self) -> str:
        return f"MetadataDistance({self.keys})"


def _in_range(value: str, span: Point) -> bool:
    try:
        number = int(value)
    except ValueError:
        return False
    # only canonical integers match, "030" or "+30" do not
    if str(number) != value:
        return False
    return int(span.x) <= number <= int(span.y)


_DISTANCES: Dict[str, Callable[..., Distance]] = {
    "crossvalidate": PartitionDistance,
    "partition": PartitionDistance,
    "filter": FilterDistance,
    "metadata": MetadataDistance,
}


def make_distance(name: str, **kwargs: Any) -> Distance:
    """Build a gating distance by name (case-insensitive)."""
    factory = _DISTANCES.get(name.strip().lower())
    if factory is None:
        raise ConfigurationError(
            f"Unknown distance '{name}'. Available: {', '.join(sorted(_DISTANCES))}"
        )
    return factory(**kwargs)
