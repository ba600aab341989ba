"""Abstract trainable transform."""

import pickle
from abc import ABC, abstractmethod
from typing import Any, BinaryIO

from partition_cv.wrangle.records import Dataset, Record


class Transform(ABC):
    """A trainable model that maps records to records.

    `store` and `load` read and write a binary stream. Each payload must be
    self-delimiting so several transforms can share one stream.
    """

    def train(self, dataset: Dataset) -> None:
        """Fit the transform. The default is untrainable (no-op)."""

    @abstractmethod
    def project(self, record: Record) -> Record:
        """Return the transformed record."""

    def store(self, stream: BinaryIO) -> None:
        pickle.dump(self._state(), stream, protocol=pickle.HIGHEST_PROTOCOL)

    def load(self, stream: BinaryIO) -> None:
        self._restore(pickle.load(stream))

    def _state(self) -> Any:
        return None

    def _restore(self, state: Any) -> None:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
