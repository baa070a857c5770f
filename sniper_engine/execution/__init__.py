# Execution
from .lifecycle import PositionLifecycleManager, performance_metrics
from .volume_trader import VolumeTrader

__all__ = ["PositionLifecycleManager", "performance_metrics", "VolumeTrader"]
