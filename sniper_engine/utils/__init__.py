# Utilities
from .logger import setup_logging, get_logger, TradeLogger
from .fee_estimator import FeeEstimator, FeeEstimate, FeeTier
from .notifier import Notifier, LogNotifier, TelegramNotifier

__all__ = [
    "setup_logging", "get_logger", "TradeLogger",
    "FeeEstimator", "FeeEstimate", "FeeTier",
    "Notifier", "LogNotifier", "TelegramNotifier",
]
