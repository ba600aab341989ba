"""Exception types raised by partition_cv."""

from typing import Dict, Optional

# standardised error messages
ERR_NO_MODELS = "No trained models; call train() or load() first"
ERR_PARTITION_RANGE = "No model for partition {partition} (ensemble has {n_models})"
ERR_TRUNCATED_STREAM = "Serialized ensemble is truncated"


class CrossValidationError(Exception):
    """Base class for all partition_cv errors."""


class ConfigurationError(CrossValidationError, ValueError):
    """Malformed configuration (unknown model name, invalid filter table)."""


class PartitionRangeError(CrossValidationError, IndexError):
    """A record references a partition with no trained model."""

    def __init__(self, partition: int, n_models: int) -> None:
        if n_models == 0:
            message = ERR_NO_MODELS
        else:
            message = ERR_PARTITION_RANGE.format(
                partition=partition, n_models=n_models
            )
        super().__init__(message)
        self.partition = partition
        self.n_models = n_models


class TrainingError(CrossValidationError, RuntimeError):
    """Training failed for one or more partitions.

    `failures` maps partition index to the exception raised by that
    partition's model. Partitions not listed trained successfully.
    """

    def __init__(
        self,
        message: str,
        failures: Optional[Dict[int, BaseException]] = None,
    ) -> None:
        super().__init__(message)
        self.failures: Dict[int, BaseException] = dict(failures or {})

    @property
    def failed_partitions(self) -> list:
        return sorted(self.failures)


class SerializationError(CrossValidationError, ValueError):
    """A serialized ensemble could not be read."""
