from .context import TrainingContext

__all__ = [
    "TrainingContext",
]
