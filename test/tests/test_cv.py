import io
import struct
import threading

import pytest

import partition_cv.train.cv as cv_module
from partition_cv.core.config import CrossValidationConfig
from partition_cv.core.errors import (
    ConfigurationError,
    PartitionRangeError,
    SerializationError,
    TrainingError,
)
from partition_cv.models import Transform, register_model
from partition_cv.train.cv import CrossValidateTransform
from partition_cv.train.results import TrainingReport
from partition_cv.wrangle.records import Dataset, Record


@register_model("Locked")
class LockedTransform(Transform):
    """Holds a lock, so it can be neither pickled nor deep-copied."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.trained_on = None

    def train(self, dataset):
        with self.lock:
            self.trained_on = [rec.name for rec in dataset]

    def project(self, record):
        return record

    def _state(self):
        return self.trained_on

    def _restore(self, state):
        self.trained_on = state


def _names(dataset):
    return sorted(rec.name for rec in dataset)


def test_single_partition_trains_one_model_on_everything():
    ds = Dataset([Record(metadata={"Name": n}) for n in ("a", "b", "c")])
    cv = CrossValidateTransform(description="Recording")
    cv.train(ds)

    assert cv.num_models == 1
    assert sorted(cv.models[0].trained_on) == ["a", "b", "c"]
    assert not cv.last_report.cross_validated


def test_empty_dataset_still_yields_a_model():
    cv = CrossValidateTransform(description="Recording")
    cv.train(Dataset())
    assert cv.num_models == 1
    assert cv.models[0].trained_on == []
    assert cv.last_report.num_partitions == 0


def test_each_model_excludes_its_own_partition(partitioned_dataset):
    cv = CrossValidateTransform(description="Recording", n_jobs=2)
    cv.train(partitioned_dataset)

    assert cv.num_models == 3
    for i, model in enumerate(cv.models):
        expected = sorted(
            rec.name for rec in partitioned_dataset if rec.partition != i
        )
        assert sorted(model.trained_on) == expected

    report = cv.last_report
    assert isinstance(report, TrainingReport)
    assert [o.partition for o in report.outcomes] == [0, 1, 2]
    assert all(o.n_train == 4 and o.n_excluded == 2 for o in report.outcomes)


def test_leave_one_out_training_sets(subject_dataset):
    cv = CrossValidateTransform(description="Recording", leave_one_out=True)
    cv.train(subject_dataset)

    trained = [sorted(m.trained_on) for m in cv.models]
    assert trained[0] == ["a0", "a1", "b0", "c0"]
    assert trained[1] == ["a0", "a1", "b0", "c0"]
    assert trained[2] == ["a0", "a1"]
    assert trained[3] == ["a0"]


def test_project_routes_to_own_partition(partitioned_dataset):
    cv = CrossValidateTransform(description="Recording")
    cv.train(partitioned_dataset)

    for rec in partitioned_dataset:
        assert cv.route(rec) is cv.models[rec.partition]
        projected = cv.project(rec)
        # the model serving a record never saw it
        assert rec.name not in projected.get("TrainedOn").split(",")

    projected = cv.project_many(partitioned_dataset)
    assert len(projected) == len(partitioned_dataset)


def test_project_out_of_range_raises(partitioned_dataset):
    cv = CrossValidateTransform(description="Recording")
    with pytest.raises(PartitionRangeError):
        cv.project(partitioned_dataset[0])

    cv.train(partitioned_dataset)
    with pytest.raises(PartitionRangeError) as excinfo:
        cv.project(Record(metadata={"Partition": 7}))
    assert excinfo.value.partition == 7
    with pytest.raises(IndexError):
        cv.project(Record(metadata={"Partition": -1}))
    # ensemble untouched
    assert cv.num_models == 3


def test_failed_partitions_are_reported_after_all_jobs(partitioned_dataset):
    records = list(partitioned_dataset)
    records[0] = records[0].with_metadata(Poison=True)  # partition 0
    ds = Dataset(records)

    cv = CrossValidateTransform(description="Picky")
    with pytest.raises(TrainingError) as excinfo:
        cv.train(ds)

    assert excinfo.value.failed_partitions == [1, 2]
    assert cv.last_report.failed_partitions == [1, 2]
    # partition 0 never saw the poisoned record and is usable
    assert "r0" not in cv.models[0].trained_on
    assert cv.project(records[0]).get("TrainedOn")


def test_single_model_failure_raises(partitioned_dataset):
    ds = Dataset([Record(metadata={"Name": "x", "Poison": True})])
    cv = CrossValidateTransform(description="Picky")
    with pytest.raises(TrainingError) as excinfo:
        cv.train(ds)
    assert excinfo.value.failed_partitions == [0]


def test_completion_order_does_not_change_ensemble(monkeypatch, partitioned_dataset):
    calls = {"n_jobs": None}

    class ReversedParallel:
        def __init__(self, n_jobs=None, prefer=None):
            calls["n_jobs"] = n_jobs

        def __call__(self, iterable):
            tasks = list(iterable)
            done = {}
            for idx in reversed(range(len(tasks))):
                func, args, kwargs = tasks[idx]
                done[idx] = func(*args, **kwargs)
            return [done[idx] for idx in sorted(done, reverse=True)]

    monkeypatch.setattr(cv_module, "Parallel", ReversedParallel)

    cv = CrossValidateTransform(description="Recording", n_jobs=8)
    cv.train(partitioned_dataset)

    assert calls["n_jobs"] == 3  # capped by partition count
    for i, model in enumerate(cv.models):
        assert all(
            rec.partition != i
            for rec in partitioned_dataset
            if rec.name in model.trained_on
        )
    assert [o.partition for o in cv.last_report.outcomes] == [0, 1, 2]


def test_retraining_reuses_and_grows_models(partitioned_dataset):
    cv = CrossValidateTransform(description="Recording")
    cv.train(partitioned_dataset)
    first = cv.models

    cv.train(partitioned_dataset)
    assert all(a is b for a, b in zip(first, cv.models))
    assert all(m.train_calls == 2 for m in cv.models)

    grown = Dataset(
        list(partitioned_dataset) + [Record(metadata={"Name": "r6", "Partition": 3})]
    )
    cv.train(grown)
    assert cv.num_models == 4
    assert cv.models[3].train_calls == 1


def test_unknown_description_fails_fast(partitioned_dataset):
    cv = CrossValidateTransform(description="no-such-model")
    with pytest.raises(ConfigurationError):
        cv.train(partitioned_dataset)


def test_config_object_overrides_arguments():
    config = CrossValidationConfig(description="Mean", leave_one_out=True, n_jobs=2)
    cv = CrossValidateTransform(config=config)
    assert cv.description == "Mean"
    assert cv.leave_one_out


def test_store_load_round_trip(partitioned_dataset):
    cv = CrossValidateTransform(description="Mean")
    cv.train(partitioned_dataset)
    payload = cv.dumps()

    assert struct.unpack(">i", payload[:4]) == (3,)

    restored = CrossValidateTransform(description="Mean")
    restored.loads(payload)
    assert restored.num_models == 3
    for rec in partitioned_dataset:
        assert cv.project(rec) == restored.project(rec)


def test_load_truncated_stream_keeps_previous_ensemble(partitioned_dataset):
    cv = CrossValidateTransform(description="Mean")
    cv.train(partitioned_dataset)
    before = cv.models
    payload = cv.dumps()

    with pytest.raises(SerializationError):
        cv.loads(payload[:-5])
    with pytest.raises(SerializationError):
        cv.loads(b"\x00\x00")
    with pytest.raises(SerializationError):
        cv.load(io.BytesIO(struct.pack(">i", -1)))

    assert cv.models == before
    assert all(a is b for a, b in zip(before, cv.models))


def test_reload_into_trained_ensemble_of_uncopyable_models(partitioned_dataset):
    cv = CrossValidateTransform(description="Locked")
    cv.train(partitioned_dataset)
    before = cv.models

    cv.loads(cv.dumps())

    assert cv.num_models == 3
    assert all(a is not b for a, b in zip(before, cv.models))
    for old, new in zip(before, cv.models):
        assert new.trained_on == old.trained_on


def test_load_resizes_to_stream_count(partitioned_dataset):
    small = CrossValidateTransform(description="Mean")
    small.train(Dataset(list(partitioned_dataset)[:2]))  # partitions 0 and 1
    payload = small.dumps()

    big = CrossValidateTransform(description="Mean")
    big.train(partitioned_dataset)
    big.loads(payload)
    assert big.num_models == 2


def test_save_and_load_path(tmp_path, partitioned_dataset):
    cv = CrossValidateTransform(description="Mean")
    cv.train(partitioned_dataset)

    for name in ("ensemble.bin", "ensemble.bin.gz"):
        path = cv.save(tmp_path / name)
        restored = CrossValidateTransform(description="Mean")
        restored.load_path(path)
        assert restored.num_models == 3
        rec = partitioned_dataset[4]
        assert restored.project(rec) == cv.project(rec)

    # compression is detected from the file contents, not the suffix
    path = cv.save(tmp_path / "zipped.bin", compress=True)
    restored = CrossValidateTransform(description="Mean")
    restored.load_path(path)
    assert restored.num_models == 3
    assert restored.project(partitioned_dataset[1]) == cv.project(partitioned_dataset[1])

    with pytest.raises(FileNotFoundError):
        CrossValidateTransform().load_path(tmp_path / "missing.bin")


def test_report_exports(tmp_path, partitioned_dataset):
    cv = CrossValidateTransform(description="Recording")
    cv.train(partitioned_dataset)
    report = cv.last_report

    df = report.to_dataframe()
    assert df.height == 3
    assert df["succeeded"].to_list() == [True, True, True]

    out = tmp_path / "report.json"
    text = report.to_json(out)
    assert out.exists()
    assert '"num_partitions": 3' in text
