# Collaborator adapters
from .base import MarketDataSource, TradeExecutor, FeeSampleSource
from .market_data import PumpFunClient, DexScreenerClient, FallbackMarketData
from .rpc import RpcFeeSampleSource
from .simulated import SimulatedTradeExecutor, SimulatedWalletTransport

__all__ = [
    "MarketDataSource", "TradeExecutor", "FeeSampleSource",
    "PumpFunClient", "DexScreenerClient", "FallbackMarketData",
    "RpcFeeSampleSource",
    "SimulatedTradeExecutor", "SimulatedWalletTransport",
]
