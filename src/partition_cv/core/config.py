"""Configuration for cross-validation runs and metadata gating.

Run settings are read from a YAML file with three optional sections::

    cross_validation:
      description: rf
      leave_one_out: false
      n_jobs: 4
    filters:
      Gender: [M]
      Race: []
    metadata:
      - Age

`load_run_config` turns that file into immutable objects. The filter table
used by `FilterDistance` is a process-wide snapshot: it is installed once with
`set_global_filters` and replaced wholesale, never edited in place.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

import yaml  # type: ignore

from partition_cv.core.errors import ConfigurationError


class ExclusionMode(Enum):
    """How records are held out of each partition's training set."""

    PARTITION = "partition"
    LEAVE_ONE_OUT = "leave_one_out"

    @classmethod
    def from_flag(cls, leave_one_out: bool) -> "ExclusionMode":
        return cls.LEAVE_ONE_OUT if leave_one_out else cls.PARTITION


@dataclass(frozen=True)
class CrossValidationConfig:
    """Settings consumed by `CrossValidateTransform`.

    Attributes:
        description: registry name of the model built for every partition
        leave_one_out: use the subject-count exclusion rule instead of
            holding out whole partitions
        n_jobs: upper bound on concurrent training jobs (None = all cores)
    """

    description: str = "Identity"
    leave_one_out: bool = False
    n_jobs: Optional[int] = None

    def __post_init__(self) -> None:
        if not isinstance(self.description, str) or not self.description.strip():
            raise ConfigurationError("description must be a non-empty model name")
        if not isinstance(self.leave_one_out, bool):
            raise ConfigurationError(
                f"leave_one_out must be a boolean, got {self.leave_one_out!r}"
            )
        if self.n_jobs is not None and (
            not isinstance(self.n_jobs, int) or self.n_jobs < 1
        ):
            raise ConfigurationError(
                f"n_jobs must be a positive integer, got {self.n_jobs!r}"
            )

    @property
    def mode(self) -> ExclusionMode:
        return ExclusionMode.from_flag(self.leave_one_out)


class FilterConfig:
    """Immutable table of metadata key -> allowed values.

    A key mapped to an empty set imposes no constraint.
    """

    def __init__(self, filters: Optional[Mapping[str, Iterable[Any]]] = None):
        table: Dict[str, FrozenSet[str]] = {}
        for key, values in (filters or {}).items():
            if not isinstance(key, str) or not key:
                raise ConfigurationError(
                    f"Filter keys must be non-empty strings, got {key!r}"
                )
            if values is None:
                table[key] = frozenset()
            elif isinstance(values, (str, int, float)):
                table[key] = frozenset([str(values)])
            else:
                table[key] = frozenset(str(v) for v in values)
        self._filters = MappingProxyType(table)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "FilterConfig":
        if data is not None and not isinstance(data, Mapping):
            raise ConfigurationError(
                f"filters must be a mapping of key -> values, got {type(data).__name__}"
            )
        return cls(data)

    def keys(self) -> List[str]:
        return list(self._filters.keys())

    def allowed(self, key: str) -> FrozenSet[str]:
        return self._filters.get(key, frozenset())

    def items(self) -> List[Tuple[str, FrozenSet[str]]]:
        return list(self._filters.items())

    @property
    def is_empty(self) -> bool:
        return not any(self._filters.values())

    def to_dict(self) -> Dict[str, List[str]]:
        return {k: sorted(v) for k, v in self._filters.items()}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FilterConfig):
            return NotImplemented
        return dict(self._filters) == dict(other._filters)

    def __repr__(self) -> str:
        return f"FilterConfig({self.to_dict()})"


_global_filters = FilterConfig()
_global_lock = threading.Lock()


def set_global_filters(
    filters: Union[FilterConfig, Mapping[str, Iterable[Any]], None],
) -> FilterConfig:
    """Install the process-wide filter snapshot and return it."""
    global _global_filters
    snapshot = (
        filters if isinstance(filters, FilterConfig) else FilterConfig(filters)
    )
    with _global_lock:
        _global_filters = snapshot
    return snapshot


def global_filters() -> FilterConfig:
    return _global_filters


class Config:
    """YAML-backed configuration with dot notation access."""

    def __init__(self, config_path: Union[str, Path]):
        """Load configuration from a YAML file.

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {config_path}"
            )

        with open(self.config_path, "r") as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Top level of {config_path} must be a mapping"
            )
        self._data: Dict[str, Any] = data
        self._populate(self, data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        config_obj = cls.__new__(cls)  # skip file loading
        config_obj._data = data
        cls._populate(config_obj, data)
        return config_obj

    @classmethod
    def _populate(cls, target: "Config", data: Dict[str, Any]) -> None:
        for key, value in data.items():
            if isinstance(value, dict):
                setattr(target, key, cls._from_dict(value))
            else:
                setattr(target, key, value)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value with optional default."""
        return getattr(self, key, default)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    def __getitem__(self, key: str) -> Any:
        return getattr(self, key)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __repr__(self) -> str:
        return f"Config({self._data})"


def load_run_config(
    config_path: Union[str, Path],
) -> Tuple[CrossValidationConfig, FilterConfig, List[str]]:
    """Read the cross-validation, filter and metadata sections of a YAML file.

    Missing sections fall back to defaults. The filter table is returned, not
    installed; call `set_global_filters` to make it the process snapshot.
    """
    config = Config(config_path)

    cv_section = config.get("cross_validation") or {}
    if isinstance(cv_section, Config):
        cv_section = cv_section.to_dict()
    if not isinstance(cv_section, dict):
        raise ConfigurationError("cross_validation section must be a mapping")
    unknown = set(cv_section) - {"description", "leave_one_out", "n_jobs"}
    if unknown:
        raise ConfigurationError(
            f"Unknown cross_validation settings: {', '.join(sorted(unknown))}"
        )
    cv_config = CrossValidationConfig(**cv_section)

    filters = config.get("filters")
    if isinstance(filters, Config):
        filters = filters.to_dict()
    filter_config = FilterConfig.from_mapping(filters)

    metadata = config.get("metadata") or []
    if isinstance(metadata, str):
        metadata = [metadata]
    if not isinstance(metadata, list):
        raise ConfigurationError("metadata section must be a list of keys")
    metadata_keys = [str(k) for k in metadata]

    return cv_config, filter_config, metadata_keys
