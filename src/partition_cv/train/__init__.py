"""Cross-validated training, reporting and held-out evaluation."""

from .cv import CrossValidateTransform
from .evaluate import HoldoutEvaluation, evaluate_holdout
from .results import PartitionOutcome, TrainingReport

__all__ = [
    "CrossValidateTransform",
    "TrainingReport",
    "PartitionOutcome",
    "HoldoutEvaluation",
    "evaluate_holdout",
]
