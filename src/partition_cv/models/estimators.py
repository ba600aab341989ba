"""Built-in transforms: identity, mean centring and scikit-learn adapters."""

import logging
from typing import Any, Callable, Optional

import numpy as np
from sklearn.base import clone
from sklearn.ensemble import RandomForestRegressor
from sklearn.exceptions import NotFittedError
from sklearn.linear_model import LinearRegression

from partition_cv.core.errors import TrainingError
from partition_cv.models.base import Transform
from partition_cv.models.registry import register_factory, register_model
from partition_cv.wrangle.records import Dataset, Record

logger = logging.getLogger(__name__)

LABEL_KEY = "Label"
PREDICTION_KEY = "Prediction"


@register_model("Identity")
class IdentityTransform(Transform):
    """Passes records through unchanged."""

    def project(self, record: Record) -> Record:
        return record


@register_model("Mean", "Center")
class MeanTransform(Transform):
    """Centres feature vectors on the training mean."""

    def __init__(self) -> None:
        self.mean: Optional[np.ndarray] = None
        self.n_samples = 0

    def train(self, dataset: Dataset) -> None:
        if len(dataset) == 0:
            raise TrainingError("Cannot compute a mean from an empty dataset")
        X = dataset.features()
        self.mean = X.mean(axis=0)
        self.n_samples = X.shape[0]

    def project(self, record: Record) -> Record:
        if self.mean is None:
            raise NotFittedError("MeanTransform has not been trained")
        if record.data is None:
            raise ValueError("MeanTransform needs records with feature data")
        return record.with_data(record.data - self.mean)

    def _state(self) -> Any:
        return {"mean": self.mean, "n_samples": self.n_samples}

    def _restore(self, state: Any) -> None:
        self.mean = state["mean"]
        self.n_samples = state["n_samples"]

    def __repr__(self) -> str:
        return f"MeanTransform(n_samples={self.n_samples})"


class EstimatorTransform(Transform):
    """Adapts a scikit-learn regressor to the `Transform` interface.

    Training fits record features against the numeric `label_key` metadata;
    records without a usable label are skipped. Projection writes the
    prediction under `prediction_key`.
    """

    def __init__(
        self,
        estimator: Any,
        label_key: str = LABEL_KEY,
        prediction_key: str = PREDICTION_KEY,
    ) -> None:
        self.template = estimator
        self.estimator: Optional[Any] = None
        self.label_key = label_key
        self.prediction_key = prediction_key

    def train(self, dataset: Dataset) -> None:
        labelled = [
            (rec.data, _as_float(rec.get(self.label_key)))
            for rec in dataset
            if rec.data is not None
        ]
        labelled = [(x, y) for x, y in labelled if y is not None]
        if not labelled:
            raise TrainingError(
                f"No records with feature data and a numeric '{self.label_key}'"
            )
        X = np.vstack([x for x, _ in labelled])
        y = np.asarray([v for _, v in labelled], dtype=float)

        estimator = clone(self.template)
        try:
            estimator.fit(X, y)
        except ValueError as exc:
            raise TrainingError(
                f"{estimator.__class__.__name__} failed to fit: {exc}"
            ) from exc
        self.estimator = estimator
        logger.debug(
            "Fitted %s on %d samples",
            estimator.__class__.__name__,
            X.shape[0],
        )

    def project(self, record: Record) -> Record:
        if self.estimator is None:
            raise NotFittedError(
                f"{self.template.__class__.__name__} has not been trained"
            )
        if record.data is None:
            raise ValueError("EstimatorTransform needs records with feature data")
        prediction = self.estimator.predict(record.data.reshape(1, -1))
        return record.with_metadata(
            **{self.prediction_key: float(np.ravel(prediction)[0])}
        )

    def _state(self) -> Any:
        return {
            "estimator": self.estimator,
            "label_key": self.label_key,
            "prediction_key": self.prediction_key,
        }

    def _restore(self, state: Any) -> None:
        self.estimator = state["estimator"]
        self.label_key = state["label_key"]
        self.prediction_key = state["prediction_key"]

    def __repr__(self) -> str:
        fitted = self.estimator is not None
        return f"EstimatorTransform({self.template!r}, fitted={fitted})"


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return None if np.isnan(out) else out


def estimator_factory(make: Callable[[], Any]) -> Callable[[], Transform]:
    """Wrap a zero-argument estimator constructor as a transform factory."""

    def factory() -> Transform:
        return EstimatorTransform(make())

    return factory


def _random_forest() -> Any:
    return RandomForestRegressor(n_estimators=100, random_state=42)


for _name in ("rf", "random_forest", "RandomForest"):
    register_factory(_name, estimator_factory(_random_forest))
for _name in ("linear", "linear_regression", "lr"):
    register_factory(_name, estimator_factory(LinearRegression))
