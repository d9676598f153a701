from .nn import Stateful
from .nn import BaseLayer
from .nn import BatchNorm2D

from .core import Parameter
from .core import ops
from .core.backend import CONFIG
from .core.backend import precision_scope
from .core.backend import device_scope
from .core.backend import train_mode
from .core.backend import eval_mode

from .train import TrainingContext
from .utils import BatchNormStatsLogger

__version__ = "0.1.0"

__all__ = [
    "Stateful",
    "BaseLayer",
    "BatchNorm2D",
    "Parameter",
    "ops",
    "CONFIG",
    "precision_scope",
    "device_scope",
    "train_mode",
    "eval_mode",
    "TrainingContext",
    "BatchNormStatsLogger",
]
