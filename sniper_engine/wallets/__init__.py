# Wallet batches
from .batch import WalletBatchCoordinator, WalletTransport, DistributionPlan

__all__ = ["WalletBatchCoordinator", "WalletTransport", "DistributionPlan"]
