"""Per-partition outcomes of a cross-validation training run.

Typical workflow:

    transform.train(dataset)
    report = transform.last_report
    report.to_dataframe()          # one row per partition
    report.to_json("report.json")  # persist alongside the ensemble
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import polars as pl


@dataclass
class PartitionOutcome:
    """What happened to a single partition's model.

    `n_train` counts records the model was trained on, `n_excluded` the
    distinct positions held out of it.
    """

    partition: int
    n_train: int
    n_excluded: int
    succeeded: bool = True
    error: Optional[BaseException] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "partition": self.partition,
            "n_train": self.n_train,
            "n_excluded": self.n_excluded,
            "succeeded": self.succeeded,
            "error": None if self.error is None else repr(self.error),
        }


@dataclass
class TrainingReport:
    """Summary of one `CrossValidateTransform.train` call.

    A degenerate run (fewer than two partitions) has a single outcome for
    partition 0 with nothing excluded.
    """

    num_partitions: int
    leave_one_out: bool
    description: str
    outcomes: List[PartitionOutcome] = field(default_factory=list)

    @property
    def cross_validated(self) -> bool:
        return self.num_partitions >= 2

    @property
    def failed_partitions(self) -> List[int]:
        return [o.partition for o in self.outcomes if not o.succeeded]

    @property
    def succeeded(self) -> bool:
        return not self.failed_partitions

    def outcome(self, partition: int) -> PartitionOutcome:
        for o in self.outcomes:
            if o.partition == partition:
                return o
        raise KeyError(partition)

    @staticmethod
    def _serialize_value(v: Any) -> Any:
        if isinstance(v, Path):
            return str(v)
        if v is None or isinstance(v, (str, bool, int, float)):
            return v
        if isinstance(v, np.integer):
            return int(v)
        if isinstance(v, np.floating):
            return float(v)
        if isinstance(v, (list, tuple)):
            return [TrainingReport._serialize_value(x) for x in v]
        return str(v)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "num_partitions": self.num_partitions,
            "leave_one_out": self.leave_one_out,
            "description": self.description,
            "cross_validated": self.cross_validated,
            "failed_partitions": self.failed_partitions,
            "outcomes": [
                {k: self._serialize_value(v) for k, v in o.to_dict().items()}
                for o in self.outcomes
            ],
        }

    def to_dataframe(self) -> pl.DataFrame:
        """One row per partition."""
        schema = {
            "partition": pl.Int64,
            "n_train": pl.Int64,
            "n_excluded": pl.Int64,
            "succeeded": pl.Boolean,
            "error": pl.Utf8,
        }
        rows = [o.to_dict() for o in self.outcomes]
        return pl.DataFrame(rows, schema=schema)

    def to_json(
        self, path: Optional[Union[str, Path]] = None, indent: int = 2
    ) -> str:
        """Return the report as JSON, also writing it to `path` if given."""
        text = json.dumps(self.to_dict(), indent=indent)
        if path:
            out = Path(path)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(text)
        return text
