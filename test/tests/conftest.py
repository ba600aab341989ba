"""Shared pytest fixtures for partition_cv tests."""

from typing import Any, List, Optional

import numpy as np
import pytest

from partition_cv.core.errors import TrainingError
from partition_cv.models import Transform, register_model
from partition_cv.wrangle.records import Dataset, Record


@register_model("Recording")
class RecordingTransform(Transform):
    """Remembers the names of the records it was trained on."""

    def __init__(self) -> None:
        self.trained_on: Optional[List[str]] = None
        self.train_calls = 0

    def train(self, dataset: Dataset) -> None:
        self.trained_on = [rec.name for rec in dataset]
        self.train_calls += 1

    def project(self, record: Record) -> Record:
        return record.with_metadata(TrainedOn=",".join(self.trained_on or []))

    def _state(self) -> Any:
        return {"trained_on": self.trained_on}

    def _restore(self, state: Any) -> None:
        self.trained_on = state["trained_on"]


@register_model("Picky")
class PickyTransform(RecordingTransform):
    """Fails to train whenever a record marked Poison is in its data."""

    def train(self, dataset: Dataset) -> None:
        if any(rec.get("Poison") for rec in dataset):
            raise TrainingError("poisoned training data")
        super().train(dataset)


def make_record(name: str, partition: Optional[int] = None, **metadata: Any) -> Record:
    meta = {"Name": name, **metadata}
    if partition is not None:
        meta["Partition"] = partition
    return Record(metadata=meta)


@pytest.fixture
def partitioned_dataset() -> Dataset:
    """Six records over three partitions, with features and a linear label."""
    records = []
    for i in range(6):
        x = float(i)
        records.append(
            Record(
                data=[x, x * 0.5],
                metadata={
                    "Name": f"r{i}",
                    "Partition": i % 3,
                    "Subject": f"s{i // 2}",
                    "Label": 2.0 * x + 1.0,
                },
            )
        )
    return Dataset(records)


@pytest.fixture
def subject_dataset() -> Dataset:
    """Subject A has two records, subject B one; partitions 0..3."""
    return Dataset(
        [
            make_record("a0", 0, Subject="A"),
            make_record("a1", 1, Subject="A"),
            make_record("b0", 2, Subject="B"),
            make_record("c0", 3, Subject="C"),
        ]
    )


@pytest.fixture
def regression_dataset() -> Dataset:
    rng = np.random.RandomState(0)
    records = []
    for i in range(30):
        x = rng.uniform(0, 10, size=2)
        records.append(
            Record(
                data=x,
                metadata={
                    "Name": f"s{i}",
                    "Partition": i % 3,
                    "Label": float(3.0 * x[0] - 2.0 * x[1] + 0.5),
                },
            )
        )
    return Dataset(records)
