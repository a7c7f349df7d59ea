import logging
import re
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .analytics import project_rewards, tokens_to_percent
from .config import Settings, configure_logging, settings, validate_settings
from .errors import UpstreamError
from .formatting import TransactionView, describe_transaction, format_countdown, format_usd
from .models import DashboardSnapshot, RewardMetrics, RewardProjection, WalletInfo
from .store import DashboardStore
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------
class UsdQuote(BaseModel):
    amount: float
    usd: float
    display: str

class RewardMetricsView(RewardMetrics):
    next_distribution_in: str

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def sanitize_address(s: str) -> str:
    if not isinstance(s, str):
        return ""
    return s.strip().split("#", 1)[0].split("?", 1)[0].strip()

def is_solana_address(addr: str) -> bool:
    return bool(re.fullmatch(r"[1-9A-HJ-NP-Za-km-z]{32,44}", addr))

def _store(request: Request) -> DashboardStore:
    return request.app.state.store

# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------
def create_app(
    cfg: Settings = settings,
    client: Optional[UpstreamClient] = None,
    start_polling: bool = True,
) -> FastAPI:
    """Wire client and store into a FastAPI app.

    The store is built and started in the lifespan handler so polling lives
    exactly as long as the server.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        upstream = client
        if upstream is None:
            validate_settings(cfg)
            upstream = UpstreamClient(cfg)
        store = DashboardStore(upstream, cfg)
        app.state.client = upstream
        app.state.store = store
        if start_polling:
            store.start()
        logger.info("Dashboard store ready for mint %s", cfg.TOKEN_MINT)
        try:
            yield
        finally:
            await store.stop()
            if client is None:
                await upstream.aclose()

    app = FastAPI(title="Token Pulse API", lifespan=lifespan)
    origins = cfg.CORS_ORIGINS or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Routes
    # -------------------------------------------------------------------------
    @app.get("/")
    def ping():
        return {"message": "Token Pulse backend online."}

    @app.get("/health")
    def health(request: Request):
        store = _store(request)
        return {"status": "ok", "polling": store.running, "loading": store.loading}

    @app.get("/snapshot", response_model=DashboardSnapshot)
    async def snapshot(request: Request) -> DashboardSnapshot:
        return _store(request).snapshot()

    @app.get("/feed", response_model=List[TransactionView])
    async def feed(request: Request) -> List[TransactionView]:
        snap = _store(request).snapshot()
        rows = (describe_transaction(tx, cfg.TOKEN_MINT, snap.token_metadata) for tx in snap.transactions)
        return [row for row in rows if row is not None]

    @app.get("/wallet/{address}", response_model=WalletInfo)
    async def wallet(address: str, request: Request) -> WalletInfo:
        target = sanitize_address(address)
        if not is_solana_address(target):
            raise HTTPException(status_code=422, detail="Invalid Solana wallet address")
        info = await request.app.state.client.get_wallet_info(target)
        if info is None:
            raise HTTPException(
                status_code=404,
                detail=f"Wallet not found or has no {cfg.TOKEN_SYMBOL} tokens",
            )
        return info

    @app.get("/usd", response_model=UsdQuote)
    async def usd(request: Request, amount: float = Query(1.0, gt=0, description="Token amount")) -> UsdQuote:
        value = await request.app.state.client.get_usd_value(amount)
        return UsdQuote(amount=amount, usd=value, display=format_usd(value))

    @app.get("/rewards/projection", response_model=RewardProjection)
    async def reward_projection(
        request: Request,
        market_cap: float = Query(1_000_000, gt=0, description="Market cap in tokens"),
        lp_percent: float = Query(0.1, description="Share of the LP pool, in percent"),
        tokens: Optional[float] = Query(None, description="LP position in tokens; overrides lp_percent"),
    ) -> RewardProjection:
        if tokens is not None:
            lp_percent = tokens_to_percent(tokens)
        return project_rewards(market_cap, lp_percent, request.app.state.client.reward_model)

    @app.get("/rewards/metrics", response_model=RewardMetricsView)
    async def reward_metrics(request: Request) -> RewardMetricsView:
        try:
            metrics = await request.app.state.client.get_reward_metrics()
        except UpstreamError as e:
            raise HTTPException(status_code=502, detail=f"Upstream error: {str(e)}")
        return RewardMetricsView(
            **metrics.model_dump(),
            next_distribution_in=format_countdown(metrics.next_distribution_time),
        )

    return app

# -----------------------------------------------------------------------------
# Optional: run with uvicorn if executed directly
# -----------------------------------------------------------------------------
def run() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=settings.PORT, reload=False)

if __name__ == "__main__":
    run()
