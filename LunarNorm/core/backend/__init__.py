from .config import CONFIG
from .config import load_config
from .context import device_scope
from .context import precision_scope
from .context import train_mode
from .context import eval_mode

__all__ = [
    "CONFIG",
    "load_config",
    "device_scope",
    "precision_scope",
    "train_mode",
    "eval_mode",
]
