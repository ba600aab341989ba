"""Score a trained cross-validation ensemble on its own held-out data."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import polars as pl
from scipy.stats import pearsonr
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from partition_cv.models.estimators import LABEL_KEY, PREDICTION_KEY
from partition_cv.train.cv import CrossValidateTransform
from partition_cv.wrangle.records import Dataset

logger = logging.getLogger(__name__)


@dataclass
class HoldoutEvaluation:
    """Predictions and regression metrics for held-out records.

    `metrics` covers every scored record; `per_partition` holds the same
    metrics computed within each partition.
    """

    metrics: Dict[str, Optional[float]]
    predictions: np.ndarray
    targets: np.ndarray
    partitions: np.ndarray
    per_partition: Dict[int, Dict[str, Optional[float]]] = field(
        default_factory=dict
    )
    n_skipped: int = 0

    def to_dataframe(self) -> pl.DataFrame:
        """One row per partition plus an ``overall`` row (partition = null)."""
        rows: List[Dict[str, Any]] = []
        for partition, metrics in sorted(self.per_partition.items()):
            rows.append({"partition": partition, **metrics})
        rows.append({"partition": None, **self.metrics})
        return pl.DataFrame(rows, strict=False)


def evaluate_holdout(
    transform: CrossValidateTransform,
    dataset: Dataset,
    label: str = LABEL_KEY,
    prediction_key: str = PREDICTION_KEY,
) -> HoldoutEvaluation:
    """Project each record through its own partition's model and score it.

    Records without a numeric `label` are skipped. The projection must write a
    numeric prediction under `prediction_key`.
    """
    preds: List[float] = []
    targets: List[float] = []
    parts: List[int] = []
    skipped = 0

    for rec in dataset:
        target = rec.get(label)
        if target is None or isinstance(target, bool):
            skipped += 1
            continue
        try:
            target_value = float(target)
        except (TypeError, ValueError):
            skipped += 1
            continue

        projected = transform.project(rec)
        prediction = projected.get(prediction_key)
        if prediction is None:
            raise ValueError(
                f"Projection of partition {rec.partition} produced no '{prediction_key}'"
            )
        preds.append(float(prediction))
        targets.append(target_value)
        parts.append(rec.partition)

    if skipped:
        logger.warning(
            "Skipped %d record(s) without a numeric '%s'", skipped, label
        )

    pred_arr = np.asarray(preds, dtype=float)
    target_arr = np.asarray(targets, dtype=float)
    part_arr = np.asarray(parts, dtype=int)

    per_partition = {
        int(p): calculate_metrics(
            target_arr[part_arr == p], pred_arr[part_arr == p]
        )
        for p in np.unique(part_arr)
    }
    return HoldoutEvaluation(
        metrics=calculate_metrics(target_arr, pred_arr),
        predictions=pred_arr,
        targets=target_arr,
        partitions=part_arr,
        per_partition=per_partition,
        n_skipped=skipped,
    )


def calculate_metrics(
    y_true: Sequence[float],
    y_pred: Sequence[float],
) -> Dict[str, Optional[float]]:
    """MAE/MSE/R²/Q² and Pearson correlation; None where undefined."""
    y_true_arr = np.asarray(y_true, dtype=float)
    y_pred_arr = np.asarray(y_pred, dtype=float)
    empty: Dict[str, Optional[float]] = {
        "mae": None,
        "mse": None,
        "r2": None,
        "q2": None,
        "pcc": None,
        "pval": None,
    }
    if y_true_arr.size == 0 or y_pred_arr.size == 0:
        return empty

    metrics = dict(empty)
    metrics["mae"] = float(mean_absolute_error(y_true_arr, y_pred_arr))
    metrics["mse"] = float(mean_squared_error(y_true_arr, y_pred_arr))

    denom = float(((y_true_arr - np.mean(y_true_arr)) ** 2).sum())
    if y_true_arr.size >= 2 and denom > 0:
        metrics["r2"] = float(r2_score(y_true_arr, y_pred_arr))
        metrics["q2"] = 1 - float(((y_true_arr - y_pred_arr) ** 2).sum()) / denom

    # pearsonr needs two points and non-constant inputs
    if y_true_arr.size >= 2 and np.ptp(y_true_arr) > 0 and np.ptp(y_pred_arr) > 0:
        pcc, pval = pearsonr(y_true_arr, y_pred_arr)
        metrics["pcc"] = float(pcc)
        metrics["pval"] = float(pval)

    return metrics
