"""FastAPI dashboard and cron endpoints for the trading agent."""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from execution.trading_cycle import TradingCycle
from ledger.reconstructor import DashboardReconstructor

logger = logging.getLogger(__name__)


def create_app(
    reconstructor: DashboardReconstructor,
    trading_cycle: Optional[TradingCycle] = None,
    account_id: str = "trading-agent.near",
    cron_secret: str = "",
) -> FastAPI:
    """Build the app with services wired onto app.state (set by agent.py)."""
    app = FastAPI(title="Trading Agent Dashboard")
    app.state.reconstructor = reconstructor
    app.state.trading_cycle = trading_cycle
    app.state.account_id = account_id
    app.state.cron_secret = cron_secret

    @app.get("/api/status")
    async def api_status(request: Request):
        store = request.app.state.reconstructor.store
        return {"status": "running", "store": bool(getattr(store, "available", False))}

    @app.get("/api/dashboard")
    async def api_dashboard(request: Request, accountId: Optional[str] = None):
        state = request.app.state
        data = await state.reconstructor.build_dashboard(accountId or state.account_id)
        return data.model_dump(by_alias=True, mode="json")

    @app.get("/api/trade/{trade_id}")
    async def api_trade_detail(request: Request, trade_id: str):
        detail = await request.app.state.reconstructor.get_trade_detail(trade_id)
        if detail is None:
            return JSONResponse(status_code=404, content={"error": "Trade not found"})
        return detail.model_dump(by_alias=True, mode="json")

    @app.get("/api/trade")
    async def api_run_cycle(request: Request):
        state = request.app.state
        if state.cron_secret:
            auth = request.headers.get("authorization", "")
            if auth != f"Bearer {state.cron_secret}":
                return JSONResponse(status_code=401, content={"error": "Unauthorized"})
        if state.trading_cycle is None:
            return JSONResponse(
                status_code=500, content={"error": "Failed to process trading request"}
            )

        try:
            result = await state.trading_cycle.run(state.account_id)
        except Exception as e:
            logger.error(f"Trading cycle failed: {e}", extra={"account_id": state.account_id})
            return JSONResponse(
                status_code=500, content={"error": "Failed to process trading request"}
            )
        return {"content": result.content}

    return app
