"""Trainable transforms and the name registry used to build them."""

from .base import Transform
from .estimators import EstimatorTransform, IdentityTransform, MeanTransform
from .registry import available_models, make_model, register_factory, register_model

__all__ = [
    "Transform",
    "IdentityTransform",
    "MeanTransform",
    "EstimatorTransform",
    "make_model",
    "register_model",
    "register_factory",
    "available_models",
]
