"""
Token Sniper Engine

Detects, ranks and executes short-horizon token trades.

Entry points:
- python -m sniper_engine.main
  Runs the scanner, position monitor and volume loops together with the
  control API (simulation mode unless a live backend is wired in).

Key Modules:
- sniper_engine.signals: Signal normalization, opportunity scoring, target ranking
- sniper_engine.risk: Admission control
- sniper_engine.execution: Position lifecycle and volume strategies
- sniper_engine.wallets: Wallet batch creation, funding, buys and sweeps
- sniper_engine.clients: Market data, RPC and simulated execution adapters
- sniper_engine.api: FastAPI control surface
"""

__version__ = "0.1.0"
