from .base_layer import BaseLayer

from .batchnorm2d import BatchNorm2D
from .batchnorm2d import RunningStats
from .batchnorm2d import StepCache

__all__ = [
    "BaseLayer",
    "BatchNorm2D",
    "RunningStats",
    "StepCache",
]
