from .stateful import Stateful

from .layers import BaseLayer
from .layers import BatchNorm2D

__all__ = [
    "Stateful",
    "BaseLayer",
    "BatchNorm2D",
]
