"""Records, datasets and typed metadata access.

A `Record` pairs an optional feature vector with a string-keyed metadata
mapping. Two metadata keys have fixed meaning throughout the package:

- ``Partition``: integer cross-validation partition (defaults to 0)
- ``Subject``: identity shared by records of the same subject

`Dataset` is an ordered sequence of records. Positions matter only for
removal, so most operations return positions rather than records.
"""

import math
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
    overload,
)

import numpy as np
import polars as pl

PARTITION_KEY = "Partition"
SUBJECT_KEY = "Subject"
NAME_KEY = "Name"

_POINT_RE = re.compile(
    r"^\s*\(?\s*([-+]?\d+(?:\.\d*)?(?:[eE][-+]?\d+)?)\s*,"
    r"\s*([-+]?\d+(?:\.\d*)?(?:[eE][-+]?\d+)?)\s*\)?\s*$"
)
_INT_RE = re.compile(r"^\s*[-+]?\d+\s*$")


@dataclass(frozen=True)
class Point:
    """A 2D point; doubles as an inclusive ``[x, y]`` range."""

    x: float
    y: float

    @classmethod
    def parse(cls, text: Any) -> Optional["Point"]:
        """Parse ``"(x, y)"`` or ``"x,y"``; return None when not a point."""
        if isinstance(text, Point):
            coords = (text.x, text.y)
        elif isinstance(text, (tuple, list)) and len(text) == 2:
            try:
                coords = (float(text[0]), float(text[1]))
            except (TypeError, ValueError):
                return None
        elif isinstance(text, str):
            match = _POINT_RE.match(text)
            if match is None:
                return None
            coords = (float(match.group(1)), float(match.group(2)))
        else:
            return None
        # inf and nan are not usable as range bounds
        if not all(math.isfinite(c) for c in coords):
            return None
        if isinstance(text, Point):
            return text
        return cls(*coords)

    def __str__(self) -> str:
        return f"({_format_number(self.x)}, {_format_number(self.y)})"


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


class Record:
    """An immutable training/evaluation unit.

    Args:
        data: optional feature vector (converted to a 1D float array)
        metadata: attribute mapping; values are strings, ints or `Point`s
    """

    __slots__ = ("_data", "_metadata")

    def __init__(
        self,
        data: Optional[Any] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        **attributes: Any,
    ) -> None:
        if data is not None:
            arr = np.array(data, dtype=float).ravel()
            arr.setflags(write=False)
            self._data: Optional[np.ndarray] = arr
        else:
            self._data = None
        merged: Dict[str, Any] = dict(metadata or {})
        merged.update(attributes)
        self._metadata = MappingProxyType(merged)

    @property
    def data(self) -> Optional[np.ndarray]:
        return self._data

    @property
    def metadata(self) -> Mapping[str, Any]:
        return self._metadata

    def get(self, key: str, default: Any = None) -> Any:
        value = self._metadata.get(key, default)
        return default if value is None else value

    def get_str(self, key: str, default: str = "") -> str:
        value = self._metadata.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._metadata.get(key)
        if isinstance(value, bool) or value is None:
            return default
        if isinstance(value, (int, np.integer)):
            return int(value)
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and _INT_RE.match(value):
            return int(value)
        return default

    def get_point(
        self, key: str, default: Optional[Point] = None
    ) -> Optional[Point]:
        value = self._metadata.get(key)
        if value is None:
            return default
        point = Point.parse(value)
        return default if point is None else point

    def contains(self, key: str) -> bool:
        return self._metadata.get(key) is not None

    @property
    def partition(self) -> int:
        return self.get_int(PARTITION_KEY, 0)

    @property
    def subject(self) -> str:
        return self.get_str(SUBJECT_KEY)

    @property
    def name(self) -> str:
        return self.get_str(NAME_KEY)

    def with_metadata(self, **updates: Any) -> "Record":
        """Return a copy with `updates` merged into the metadata."""
        merged = dict(self._metadata)
        merged.update(updates)
        return Record(self._data, merged)

    def with_data(self, data: Optional[Any]) -> "Record":
        return Record(data, self._metadata)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        if dict(self._metadata) != dict(other._metadata):
            return False
        if self._data is None or other._data is None:
            return self._data is None and other._data is None
        return bool(np.array_equal(self._data, other._data))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        shape = None if self._data is None else self._data.shape
        return f"Record(data_shape={shape}, metadata={dict(self._metadata)})"


class Dataset(Sequence[Record]):
    """Ordered collection of records."""

    def __init__(self, records: Optional[Iterable[Record]] = None) -> None:
        self._records: List[Record] = list(records or [])
        for idx, rec in enumerate(self._records):
            if not isinstance(rec, Record):
                raise TypeError(
                    f"Dataset items must be Record instances (position {idx} is {type(rec).__name__})"
                )

    @overload
    def __getitem__(self, index: int) -> Record: ...

    @overload
    def __getitem__(self, index: slice) -> "Dataset": ...

    def __getitem__(self, index: Union[int, slice]) -> Union[Record, "Dataset"]:
        if isinstance(index, slice):
            return Dataset(self._records[index])
        return self._records[index]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._records)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Dataset):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"Dataset(n_records={len(self._records)})"

    @property
    def records(self) -> List[Record]:
        return list(self._records)

    def copy(self) -> "Dataset":
        # records are immutable, so a shallow copy owns an independent order
        return Dataset(self._records)

    def find(self, key: str, value: Any) -> List[int]:
        """Positions of records whose `key` renders as `str(value)`."""
        target = value if isinstance(value, str) else str(value)
        return [
            idx
            for idx, rec in enumerate(self._records)
            if rec.get_str(key) == target
        ]

    def values(self, key: str, default: Any = None) -> List[Any]:
        return [rec.get(key, default) for rec in self._records]

    def partitions(self) -> np.ndarray:
        return np.asarray([rec.partition for rec in self._records], dtype=int)

    def features(self) -> np.ndarray:
        """Stack record feature vectors into a 2D array."""
        if not self._records:
            return np.empty((0, 0), dtype=float)
        missing = [i for i, r in enumerate(self._records) if r.data is None]
        if missing:
            raise ValueError(
                f"Records at positions {missing[:5]} have no feature data"
            )
        return np.vstack([rec.data for rec in self._records])

    # ----- polars conversion -----

    @classmethod
    def from_frame(
        cls,
        df: pl.DataFrame,
        feature_columns: Optional[Sequence[str]] = None,
    ) -> "Dataset":
        """Build a dataset from a DataFrame.

        Columns listed in `feature_columns` become each record's feature
        vector; all other columns become metadata. Null cells are dropped from
        the metadata so typed accessors fall back to their defaults.
        """
        feature_columns = list(feature_columns or [])
        missing = [c for c in feature_columns if c not in df.columns]
        if missing:
            raise ValueError(f"Feature columns not in frame: {missing}")
        meta_cols = [c for c in df.columns if c not in feature_columns]

        features: Optional[np.ndarray] = None
        if feature_columns:
            features = (
                df.select(feature_columns).cast(pl.Float64).to_numpy()
            )

        rows = (
            df.select(meta_cols).to_dicts()
            if meta_cols
            else [{} for _ in range(df.height)]
        )
        records = []
        for idx, row in enumerate(rows):
            metadata = {k: v for k, v in row.items() if v is not None}
            data = features[idx] if features is not None else None
            records.append(Record(data, metadata))
        return cls(records)

    @classmethod
    def from_csv(
        cls,
        path: Union[str, Path],
        feature_columns: Optional[Sequence[str]] = None,
    ) -> "Dataset":
        csv_path = Path(path)
        if not csv_path.exists():
            raise FileNotFoundError(f"Dataset file not found: {path}")
        return cls.from_frame(pl.read_csv(csv_path), feature_columns)

    def to_frame(self) -> pl.DataFrame:
        """Flatten the dataset into a DataFrame.

        Metadata keys become columns (points are rendered as strings);
        feature vectors become ``f0 .. fN`` columns.
        """
        keys: List[str] = []
        for rec in self._records:
            for key in rec.metadata:
                if key not in keys:
                    keys.append(key)

        columns: Dict[str, List[Any]] = {
            key: [
                str(v) if isinstance(v, Point) else v
                for v in (rec.metadata.get(key) for rec in self._records)
            ]
            for key in keys
        }
        with_data = [r for r in self._records if r.data is not None]
        if with_data and len(with_data) == len(self._records):
            matrix = self.features()
            for j in range(matrix.shape[1]):
                columns[f"f{j}"] = matrix[:, j].tolist()
        return pl.DataFrame(columns, strict=False)
