from .stats_logger import BatchNormStatsLogger

__all__ = [
    "BatchNormStatsLogger",
]
