"""
Structured logging for the token sniper engine.
Supports JSON logging for log aggregation pipelines.
"""

import logging
import sys
from typing import Optional
from pythonjsonlogger import jsonlogger

ROOT_LOGGER = "sniper_engine"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with additional fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['timestamp'] = self.formatTime(record, self.datefmt)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    logger_name: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Whether to use JSON format
        logger_name: Optional specific logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name or ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        formatter = CustomJsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger with the given name."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class TradeLogger:
    """Specialized logger for trade-related events."""

    def __init__(self):
        self.logger = get_logger("trades")

    def target_ranked(
        self,
        subject_id: str,
        symbol: str,
        priority: float,
        rationale: str
    ):
        """Log when a scored target enters the ranking."""
        self.logger.info(
            "Target ranked",
            extra={
                "event": "target_ranked",
                "subject_id": subject_id,
                "symbol": symbol,
                "priority": priority,
                "rationale": rationale
            }
        )

    def admission_denied(self, subject_id: str, reason: str, detail: str):
        self.logger.debug(
            "Admission denied",
            extra={
                "event": "admission_denied",
                "subject_id": subject_id,
                "reason": reason,
                "detail": detail
            }
        )

    def position_opened(
        self,
        position_id: str,
        subject_id: str,
        size: float,
        entry_price: float,
        signature: str
    ):
        """Log when a buy lands and the position opens."""
        self.logger.info(
            "Position opened",
            extra={
                "event": "position_opened",
                "position_id": position_id,
                "subject_id": subject_id,
                "size": size,
                "entry_price": entry_price,
                "signature": signature
            }
        )

    def position_failed(
        self,
        position_id: str,
        subject_id: str,
        reason: str,
        error: Optional[str] = None
    ):
        """Log when a buy fails."""
        self.logger.error(
            "Position failed",
            extra={
                "event": "position_failed",
                "position_id": position_id,
                "subject_id": subject_id,
                "reason": reason,
                "error": error
            }
        )

    def exit_triggered(
        self,
        position_id: str,
        subject_id: str,
        reason: str,
        pnl_percent: float
    ):
        self.logger.info(
            "Exit triggered",
            extra={
                "event": "exit_triggered",
                "position_id": position_id,
                "subject_id": subject_id,
                "reason": reason,
                "pnl_percent": pnl_percent
            }
        )

    def position_closed(
        self,
        position_id: str,
        subject_id: str,
        signature: str,
        pnl_absolute: Optional[float],
        pnl_percent: Optional[float],
        holding_seconds: float
    ):
        """Log when the sell lands and the position closes."""
        self.logger.info(
            "Position closed",
            extra={
                "event": "position_closed",
                "position_id": position_id,
                "subject_id": subject_id,
                "signature": signature,
                "pnl_absolute": pnl_absolute,
                "pnl_percent": pnl_percent,
                "holding_seconds": holding_seconds
            }
        )

    def sell_failed(self, position_id: str, subject_id: str, error: str):
        self.logger.warning(
            "Sell failed, position reverted to open",
            extra={
                "event": "sell_failed",
                "position_id": position_id,
                "subject_id": subject_id,
                "error": error
            }
        )

    def batch_operation_failed(
        self,
        batch_name: str,
        operation: str,
        account: str,
        error: str
    ):
        """Log a single failed account inside a batch fan-out."""
        self.logger.error(
            "Batch operation failed",
            extra={
                "event": "batch_operation_failed",
                "batch_name": batch_name,
                "operation": operation,
                "account": account,
                "error": error
            }
        )
