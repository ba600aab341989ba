"""Name -> transform class registry."""

import logging
from typing import Callable, Dict, List, Type, TypeVar

from partition_cv.core.errors import ConfigurationError
from partition_cv.models.base import Transform

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Type[Transform])

_REGISTRY: Dict[str, Callable[[], Transform]] = {}


def register_model(*names: str) -> Callable[[T], T]:
    """Class decorator registering a transform under one or more names.

    Lookup is case-insensitive. Registering a taken name replaces it.
    """
    if not names:
        raise ValueError("register_model needs at least one name")

    def decorator(cls: T) -> T:
        for name in names:
            key = name.lower()
            if key in _REGISTRY:
                logger.warning("Replacing registered model '%s'", name)
            _REGISTRY[key] = cls
        return cls

    return decorator


def register_factory(name: str, factory: Callable[[], Transform]) -> None:
    """Register a zero-argument callable that builds a transform."""
    _REGISTRY[name.lower()] = factory


def make_model(name: str) -> Transform:
    """Instantiate the transform registered as `name`."""
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError("Model name must be a non-empty string")
    factory = _REGISTRY.get(name.strip().lower())
    if factory is None:
        raise ConfigurationError(
            f"Unknown model '{name}'. Available: {', '.join(available_models())}"
        )
    model = factory()
    if not isinstance(model, Transform):
        raise ConfigurationError(
            f"Model '{name}' factory returned {type(model).__name__}, not a Transform"
        )
    return model


def available_models() -> List[str]:
    return sorted(_REGISTRY)
