"""Partitioned cross-validation training and gating distances."""

from partition_cv.core.config import CrossValidationConfig, FilterConfig
from partition_cv.core.errors import (
    ConfigurationError,
    CrossValidationError,
    PartitionRangeError,
    SerializationError,
    TrainingError,
)
from partition_cv.distance import (
    FilterDistance,
    MetadataDistance,
    PartitionDistance,
)
from partition_cv.models import Transform, make_model, register_model
from partition_cv.train import CrossValidateTransform, evaluate_holdout
from partition_cv.wrangle import Dataset, Point, Record

__version__ = "0.1.0"
