"""
FastAPI control surface for the sniper engine.
Exposes loop control, targets, positions, settings, metrics and wallet batches.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..errors import BatchExecutionFailed, ConfigInvalid, InvalidTransition, UnknownBatch
from ..main import LOOP_NAMES, SniperEngine


class SettingsUpdate(BaseModel):
    buy_amount: Optional[float] = None
    take_profit_pct: Optional[float] = None
    stop_loss_pct: Optional[float] = None
    max_positions: Optional[int] = None
    discovery_floor: Optional[float] = None
    execution_floor: Optional[float] = None
    min_liquidity: Optional[float] = None
    ranker_capacity: Optional[int] = None
    target_max_age_seconds: Optional[float] = None


class StrategyUpdate(BaseModel):
    min_volume_threshold: Optional[float] = None
    max_slippage: Optional[float] = None
    target_impact: Optional[float] = None
    cooldown_ms: Optional[int] = None
    enabled: Optional[bool] = None
    description: Optional[str] = None


class BatchCreate(BaseModel):
    batch_name: str
    count: int = Field(gt=0, le=1000)
    prefix: Optional[str] = None


class BatchFund(BaseModel):
    amount_per_account: float = Field(gt=0)


class BatchBuy(BaseModel):
    subject_id: str
    amounts: Union[float, list[float]]
    max_slippage: Optional[float] = None


class BatchSweep(BaseModel):
    destination: Optional[str] = None
    leave_balance: Optional[float] = Field(default=None, ge=0)


def _changes(model: BaseModel) -> dict:
    return {k: v for k, v in model.model_dump().items() if v is not None}


def create_app(engine: SniperEngine) -> FastAPI:
    """Build the API app bound to one engine instance."""
    app = FastAPI(title="Token Sniper Engine API")

    # Enable CORS for dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ConfigInvalid)
    async def config_invalid_handler(request, exc: ConfigInvalid):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(UnknownBatch)
    async def unknown_batch_handler(request, exc: UnknownBatch):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(BatchExecutionFailed)
    async def batch_failed_handler(request, exc: BatchExecutionFailed):
        return JSONResponse(status_code=502, content={"detail": str(exc), "errors": exc.errors})

    @app.get("/api/health")
    async def health():
        """Health check."""
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/api/status")
    async def status():
        return await engine.status()

    @app.post("/api/loops/{name}/start")
    async def start_loop(name: str):
        if name not in LOOP_NAMES:
            raise HTTPException(status_code=404, detail=f"Unknown loop: {name}")
        started = engine.start_loop(name)
        return {"loop": name, "running": True, "changed": started}

    @app.post("/api/loops/{name}/stop")
    async def stop_loop(name: str):
        if name not in LOOP_NAMES:
            raise HTTPException(status_code=404, detail=f"Unknown loop: {name}")
        stopped = await engine.stop_loop(name)
        return {"loop": name, "running": False, "changed": stopped}

    @app.get("/api/targets")
    async def targets():
        items = await engine.list_targets()
        return {"targets": items, "count": len(items)}

    @app.get("/api/positions")
    async def positions():
        items = await engine.list_positions()
        return {"positions": items, "count": len(items)}

    @app.post("/api/positions/{position_id}/close")
    async def close_position(position_id: str):
        try:
            position = await engine.close_position(position_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown position: {position_id}")
        except InvalidTransition as e:
            raise HTTPException(status_code=409, detail=str(e))
        return position.to_dict()

    @app.get("/api/settings")
    async def get_settings():
        return engine.get_settings()

    @app.put("/api/settings")
    async def update_settings(update: SettingsUpdate):
        return engine.update_settings(**_changes(update))

    @app.get("/api/strategies")
    async def strategies():
        return {"strategies": engine.list_strategies()}

    @app.put("/api/strategies/{name}")
    async def update_strategy(name: str, update: StrategyUpdate):
        return engine.update_strategy(name, **_changes(update))

    @app.get("/api/performance")
    async def performance():
        return (await engine.get_performance_metrics()).to_dict()

    @app.get("/api/volume/performance")
    async def volume_performance():
        return await engine.get_volume_metrics()

    @app.get("/api/fees")
    async def fees():
        return engine.get_fee_estimate()

    @app.get("/api/wallets/batches")
    async def batches():
        return {"batches": engine.list_batches()}

    @app.post("/api/wallets/batches")
    async def create_batch(request: BatchCreate):
        batch = engine.create_batch(request.count, request.batch_name, request.prefix)
        return batch.to_dict(include_secrets=False)

    @app.post("/api/wallets/batches/{name}/fund")
    async def fund_batch(name: str, request: BatchFund):
        signatures = await engine.fund_batch(name, request.amount_per_account)
        return {"batch_name": name, "signatures": signatures}

    @app.post("/api/wallets/batches/{name}/buy")
    async def batch_buy(name: str, request: BatchBuy):
        signatures = await engine.batch_buy(
            name, request.subject_id, request.amounts, request.max_slippage
        )
        return {"batch_name": name, "signatures": signatures}

    @app.post("/api/wallets/batches/{name}/sweep")
    async def sweep_batch(name: str, request: BatchSweep):
        signatures = await engine.sweep_batch(name, request.destination, request.leave_balance)
        return {"batch_name": name, "signatures": signatures}

    return app
