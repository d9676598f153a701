from .loggers import BatchNormStatsLogger

__all__ = [
    "BatchNormStatsLogger",
]
