"""Cross-validated training of a registered transform.

`CrossValidateTransform` keeps one model per partition. Model ``i`` is
trained on every record except those held out for partition ``i``, and at
evaluation time a record is always routed to the model of its own
partition, so no record is ever projected by a model that saw it.

    cv = CrossValidateTransform(description="rf", n_jobs=4)
    cv.train(dataset)
    scored = cv.project_many(dataset)
    cv.save("ensemble.bin.gz")
"""

import gzip
import io
import logging
import struct
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, Tuple, Union

import joblib
from joblib import Parallel, delayed

from partition_cv.core.config import CrossValidationConfig
from partition_cv.core.errors import (
    ERR_TRUNCATED_STREAM,
    PartitionRangeError,
    SerializationError,
    TrainingError,
)
from partition_cv.models import Transform, make_model
from partition_cv.train.results import PartitionOutcome, TrainingReport
from partition_cv.wrangle.partitions import assign_partitions, training_split
from partition_cv.wrangle.records import Dataset, Record

logger = logging.getLogger(__name__)

# ensemble header: big-endian signed 32-bit model count
_COUNT = struct.Struct(">i")
_GZIP_MAGIC = b"\x1f\x8b"


def _train_partition(
    partition: int, model: Transform, data: Dataset, n_excluded: int
) -> Tuple[PartitionOutcome, Transform]:
    """Train one partition's model; failures are returned, not raised."""
    try:
        model.train(data)
    except Exception as exc:
        logger.warning(
            "Training failed for partition %d: %s", partition, exc
        )
        return (
            PartitionOutcome(
                partition, len(data), n_excluded, succeeded=False, error=exc
            ),
            model,
        )
    return PartitionOutcome(partition, len(data), n_excluded), model


class CrossValidateTransform(Transform):
    """Train and serve one model per cross-validation partition.

    Args:
        description: registry name of the model built for each partition
        leave_one_out: hold records out by the subject-count rule instead of
            by partition
        n_jobs: maximum concurrent training jobs (default: all cores)
        config: a `CrossValidationConfig`; overrides the other arguments

    Slot invariant: before any job is submitted, ``models`` holds exactly one
    model per partition and job ``i`` only ever touches ``models[i]``. Any
    change to how the ensemble grows must keep that ordering.
    """

    def __init__(
        self,
        description: str = "Identity",
        leave_one_out: bool = False,
        n_jobs: Optional[int] = None,
        config: Optional[CrossValidationConfig] = None,
    ) -> None:
        if config is None:
            config = CrossValidationConfig(
                description=description,
                leave_one_out=leave_one_out,
                n_jobs=n_jobs,
            )
        self.config = config
        self._models: List[Transform] = []
        self.last_report: Optional[TrainingReport] = None

    @property
    def description(self) -> str:
        return self.config.description

    @property
    def leave_one_out(self) -> bool:
        return self.config.leave_one_out

    @property
    def models(self) -> Tuple[Transform, ...]:
        return tuple(self._models)

    @property
    def num_models(self) -> int:
        return len(self._models)

    @property
    def is_trained(self) -> bool:
        return bool(self._models)

    def _grow(self, size: int) -> None:
        while len(self._models) < size:
            self._models.append(make_model(self.description))

    def _n_workers(self, num_partitions: int) -> int:
        limit = self.config.n_jobs or joblib.cpu_count()
        return max(1, min(limit, num_partitions))

    # ----- training -----

    def train(self, dataset: Dataset) -> None:
        """Train one model per partition, concurrently.

        With fewer than two partitions a single model is trained on the
        whole dataset. Otherwise each partition's model is trained on the
        dataset minus its held-out records and the call returns once every
        job has finished. If any partition fails, a `TrainingError` naming
        all failed partitions is raised after the others complete; their
        models stay usable.
        """
        partitions, num_partitions = assign_partitions(dataset)

        if num_partitions < 2:
            self._grow(1)
            logger.warning(
                "Found %d partition(s); training a single %s model on all %d records",
                num_partitions,
                self.description,
                len(dataset),
            )
            outcome, _ = _train_partition(0, self._models[0], dataset, 0)
            self.last_report = TrainingReport(
                num_partitions=num_partitions,
                leave_one_out=self.leave_one_out,
                description=self.description,
                outcomes=[outcome],
            )
            if outcome.error is not None:
                raise TrainingError(
                    f"Training failed: {outcome.error}", {0: outcome.error}
                ) from outcome.error
            return

        self._grow(num_partitions)
        if len(self._models) > num_partitions:
            logger.warning(
                "Ensemble holds %d models but data has %d partitions; extra models are left untouched",
                len(self._models),
                num_partitions,
            )

        mode = self.config.mode
        jobs = []
        for i in range(num_partitions):
            kept, excluded = training_split(dataset, i, mode, partitions)
            if logger.isEnabledFor(logging.DEBUG):
                for rec in kept:
                    logger.debug(
                        "Remaining data for partition %d: %s", i, rec.name
                    )
            jobs.append(
                delayed(_train_partition)(
                    i, self._models[i], kept, len(excluded)
                )
            )

        n_workers = self._n_workers(num_partitions)
        logger.info(
            "Training %d %s models (%s) with %d worker(s)",
            num_partitions,
            self.description,
            mode.value,
            n_workers,
        )
        results = Parallel(n_jobs=n_workers, prefer="threads")(jobs)

        outcomes: List[PartitionOutcome] = []
        for outcome, model in results:
            self._models[outcome.partition] = model
            outcomes.append(outcome)
        outcomes.sort(key=lambda o: o.partition)

        self.last_report = TrainingReport(
            num_partitions=num_partitions,
            leave_one_out=self.leave_one_out,
            description=self.description,
            outcomes=outcomes,
        )
        for o in outcomes:
            logger.info(
                "Partition %d: trained on %d records (%d held out)%s",
                o.partition,
                o.n_train,
                o.n_excluded,
                "" if o.succeeded else " FAILED",
            )

        failures = {
            o.partition: o.error
            for o in outcomes
            if not o.succeeded and o.error is not None
        }
        if failures:
            raise TrainingError(
                f"Training failed for partition(s) {sorted(failures)}",
                failures,
            )

    # ----- evaluation -----

    def route(self, record: Record) -> Transform:
        """The model that owns `record`'s partition."""
        partition = record.partition
        if partition < 0 or partition >= len(self._models):
            raise PartitionRangeError(partition, len(self._models))
        return self._models[partition]

    def project(self, record: Record) -> Record:
        return self.route(record).project(record)

    def project_many(self, dataset: Union[Dataset, Sequence[Record]]) -> Dataset:
        return Dataset(self.project(rec) for rec in dataset)

    # ----- persistence -----

    def store(self, stream: BinaryIO) -> None:
        stream.write(_COUNT.pack(len(self._models)))
        for model in self._models:
            model.store(stream)

    def load(self, stream: BinaryIO) -> None:
        """Replace the ensemble with the one serialized in `stream`.

        Every model is restored into a fresh instance from the registry; the
        current ensemble is only swapped out once all of them have loaded.
        """
        try:
            header = stream.read(_COUNT.size)
        except (OSError, EOFError) as exc:
            raise SerializationError(f"Unreadable ensemble stream: {exc}") from exc
        if len(header) < _COUNT.size:
            raise SerializationError(ERR_TRUNCATED_STREAM)
        (count,) = _COUNT.unpack(header)
        if count < 0:
            raise SerializationError(f"Invalid model count {count}")

        # models are built one at a time so a corrupt count fails on the
        # first unreadable payload
        staged: List[Transform] = []
        for idx in range(count):
            model = make_model(self.description)
            try:
                model.load(stream)
            except Exception as exc:
                raise SerializationError(
                    f"Failed to load model {idx} of {count}: {exc!r}"
                ) from exc
            staged.append(model)

        self._models = staged
        logger.info("Loaded %d %s model(s)", count, self.description)

    def dumps(self) -> bytes:
        buffer = io.BytesIO()
        self.store(buffer)
        return buffer.getvalue()

    def loads(self, payload: bytes) -> None:
        self.load(io.BytesIO(payload))

    def save(self, path: Union[str, Path], compress: bool = False) -> Path:
        """Write the ensemble to `path`, gzipped if asked or if it ends in .gz."""
        outp = Path(path)
        outp.parent.mkdir(parents=True, exist_ok=True)
        if compress or outp.suffix == ".gz":
            with gzip.open(str(outp), "wb") as f:
                self.store(f)
        else:
            with outp.open("wb") as f:
                self.store(f)
        return outp

    def load_path(self, path: Union[str, Path]) -> None:
        """Load an ensemble file written by `save`, compressed or not."""
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(p)
        with p.open("rb") as f:
            compressed = f.read(len(_GZIP_MAGIC)) == _GZIP_MAGIC
        if compressed:
            with gzip.open(str(p), "rb") as f:
                self.load(f)
        else:
            with p.open("rb") as f:
                self.load(f)

    def __repr__(self) -> str:
        return (
            f"CrossValidateTransform(description={self.description!r}, "
            f"leave_one_out={self.leave_one_out}, n_models={len(self._models)})"
        )
