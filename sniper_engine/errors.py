"""
Error kinds shared across the engine.

Data-source and execution failures are recovered close to where they happen;
only configuration errors are meant to reach an operator.
"""

from typing import Optional


class SniperError(Exception):
    """Base class for all engine errors."""


class DataUnavailable(SniperError):
    """Market data could not be fetched from any provider."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class RateLimited(DataUnavailable):
    """Provider is throttling us; retry on the next scheduled tick."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, source=source)
        self.retry_after = retry_after


class ExecutionFailed(SniperError):
    """A buy, sell or transfer was rejected or timed out."""

    def __init__(
        self,
        message: str,
        subject_id: Optional[str] = None,
        account: Optional[str] = None
    ):
        super().__init__(message)
        self.subject_id = subject_id
        self.account = account


class BatchExecutionFailed(ExecutionFailed):
    """Every operation of a wallet-batch fan-out failed."""

    def __init__(self, message: str, errors: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


class ConfigInvalid(SniperError, ValueError):
    """Rejected configuration or strategy update."""


class UnknownBatch(SniperError, KeyError):
    """Wallet batch name is not registered."""

    def __str__(self) -> str:
        return f"Batch {self.args[0]!r} not found" if self.args else "Batch not found"


class InvalidTransition(SniperError):
    """Illegal position state-machine edge."""
