"""
BURN RAIL - HTTP API

Thin FastAPI adapter over the runtime services.

Endpoints:
- GET /health - Service health
- GET /balance/{wallet} - Wallet token balance
- GET /price - Current and windowed token price
- GET /stats - Ledger and settlement totals
- POST /deposit - Verify and credit a deposit transaction
- POST /deposit/scan - Credit unrecorded deposits from recent history
- GET /usage-history/{wallet} - Recent usage records
- POST /cost/estimate - USD and token cost of a request
- POST /settlement/trigger - Run a settlement now (API key)
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
import structlog

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..billing.metering import Provider, UsageMetrics
from ..config import Settings
from ..core.errors import (
    BurnRailError,
    ConfigurationError,
    ConnectionExhausted,
    DuplicateTransaction,
    InsufficientBalance,
    InvalidAmount,
    InvalidPrice,
    PersistenceUnavailable,
    PriceUnavailable,
    SettlementExecutionFailed,
    VerificationFailed,
)
from ..runtime import BurnRailRuntime

logger = structlog.get_logger()

VERSION = "1.0.0"

router = APIRouter()

ERROR_STATUS = {
    InsufficientBalance: 402,
    DuplicateTransaction: 400,
    VerificationFailed: 400,
    InvalidAmount: 400,
    PriceUnavailable: 503,
    PersistenceUnavailable: 503,
    ConnectionExhausted: 503,
    SettlementExecutionFailed: 502,
    InvalidPrice: 500,
    ConfigurationError: 500,
}


# ============================================================================
# Pydantic Models
# ============================================================================

class DepositRequest(BaseModel):
    """Deposit of tokens already sent on-chain."""
    wallet_address: str = Field(..., description="Depositing wallet (base58)")
    tx_hash: str = Field(..., description="Transfer transaction signature")
    amount: Optional[Decimal] = Field(None, gt=0, description="Claimed amount, checked against the chain")


class ScanRequest(BaseModel):
    """Deposit scan request."""
    wallet_address: str
    limit: int = Field(default=20, ge=1, le=100)


class CostEstimateRequest(BaseModel):
    """Usage to price."""
    provider: Provider
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    model: Optional[str] = None
    voice_session_minutes: Decimal = Field(default=Decimal(0), ge=0)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    price: str
    rpc_endpoint: Optional[str]
    uptime_seconds: float


# ============================================================================
# Application Factory
# ============================================================================

def create_app(
    runtime: Optional[BurnRailRuntime] = None,
    start_runtime: bool = True,
    background_jobs: bool = True,
) -> FastAPI:
    """
    Create the FastAPI application.

    Without a runtime one is built from the environment when the app starts.
    """

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        rt = runtime or BurnRailRuntime(Settings.from_env())
        application.state.runtime = rt
        application.state.start_time = datetime.now(timezone.utc)
        logger.info("burn_rail_starting", version=VERSION)
        if start_runtime:
            rt.start(background_jobs=background_jobs)
        yield
        logger.info("burn_rail_stopping")
        if start_runtime:
            rt.shutdown()

    application = FastAPI(
        title="Burn Rail",
        description="Token balance, pricing and burn settlement for AI usage billing.",
        version=VERSION,
        lifespan=lifespan,
    )

    origins = list(runtime.settings.cors_origins) if runtime else ["*"]
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(BurnRailError)
    async def burn_rail_error_handler(request: Request, exc: BurnRailError):
        status = next(
            (code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)),
            500,
        )
        logger.warning(
            "request_failed",
            path=request.url.path,
            error=type(exc).__name__,
            message=exc.message,
            status=status,
        )
        return JSONResponse(
            status_code=status,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
                "details": {k: str(v) for k, v in exc.details.items()},
                "retryable": exc.retryable,
            },
        )

    application.include_router(router)
    return application


# ============================================================================
# Dependencies
# ============================================================================

def get_runtime(request: Request) -> BurnRailRuntime:
    """Get the runtime."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Application not initialized")
    return runtime


def verify_api_key(
    x_api_key: str = Header(..., alias="X-API-Key"),
    runtime: BurnRailRuntime = Depends(get_runtime),
) -> str:
    """Verify API key."""
    if x_api_key != runtime.settings.api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return x_api_key


def _amounts(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: str(v) if isinstance(v, Decimal) else v for k, v in values.items()}


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/health", response_model=HealthResponse, tags=["System"])
def health_check(request: Request, runtime: BurnRailRuntime = Depends(get_runtime)):
    """Health check endpoint."""
    uptime = (datetime.now(timezone.utc) - request.app.state.start_time).total_seconds()
    return HealthResponse(
        status="healthy",
        version=VERSION,
        price=runtime.oracle.freshness(),
        rpc_endpoint=runtime.chain.endpoint,
        uptime_seconds=uptime,
    )


@router.get("/balance/{wallet_address}", tags=["Balance"])
def get_balance(
    wallet_address: str,
    transactions: bool = Query(False, description="Include the transaction list"),
    runtime: BurnRailRuntime = Depends(get_runtime),
):
    """Current token balance of a wallet."""
    balance = runtime.ledger.get_balance(wallet_address)
    return balance.to_dict(runtime.settings.token_decimals, include_transactions=transactions)


@router.get("/price", tags=["Pricing"])
def get_price(runtime: BurnRailRuntime = Depends(get_runtime)):
    """
    Token price.

    `price` is the latest sample when still fresh; `windowed_price` is the
    value used for burn calculations.
    """
    oracle = runtime.oracle
    cached = oracle.cached_price()
    return {
        "price": str(cached) if cached is not None else None,
        "windowed_price": str(oracle.windowed_price()),
        "freshness": oracle.freshness(),
        "window_minutes": runtime.settings.twap_window_minutes,
    }


@router.get("/stats", tags=["Monitoring"])
def get_stats(runtime: BurnRailRuntime = Depends(get_runtime)):
    """Ledger totals and settlement progress."""
    return {
        "ledger": _amounts(runtime.ledger.total_stats()),
        "settlement": _amounts(runtime.settlement.stats()),
    }


@router.post("/deposit", tags=["Balance"])
def deposit(request: DepositRequest, runtime: BurnRailRuntime = Depends(get_runtime)):
    """Verify a deposit transaction on-chain and credit the wallet."""
    balance = runtime.deposits.deposit(request.wallet_address, request.tx_hash, request.amount)
    return {
        "success": True,
        "balance": balance.to_dict(runtime.settings.token_decimals),
    }


@router.post("/deposit/scan", tags=["Balance"])
def scan_deposits(request: ScanRequest, runtime: BurnRailRuntime = Depends(get_runtime)):
    """Credit deposits found in the wallet's recent token account history."""
    result = runtime.deposits.scan(request.wallet_address, limit=request.limit)
    balance = runtime.ledger.get_balance(request.wallet_address)
    return {
        **result,
        "balance": balance.to_dict(runtime.settings.token_decimals),
    }


@router.get("/usage-history/{wallet_address}", tags=["Balance"])
def usage_history(
    wallet_address: str,
    limit: int = Query(50, ge=1, le=500),
    runtime: BurnRailRuntime = Depends(get_runtime),
) -> Dict[str, List[Dict[str, Any]]]:
    """Most recent usage records of a wallet."""
    records = runtime.ledger.usage_history(wallet_address, limit=limit)
    return {"records": [r.to_dict(runtime.settings.token_decimals) for r in records]}


@router.post("/cost/estimate", tags=["Pricing"])
def estimate_cost(request: CostEstimateRequest, runtime: BurnRailRuntime = Depends(get_runtime)):
    """USD cost of a request and the tokens it would burn at the current price."""
    estimate = runtime.calculator.estimate(UsageMetrics(
        provider=request.provider,
        input_tokens=request.input_tokens,
        output_tokens=request.output_tokens,
        model=request.model,
        voice_session_minutes=request.voice_session_minutes,
    ))
    tokens, price = runtime.oracle.quote(estimate.billed_cost_usd)
    return {**estimate.to_dict(), "tokens": str(tokens), "token_price": str(price)}


@router.post("/settlement/trigger", tags=["Settlement"])
def trigger_settlement(
    runtime: BurnRailRuntime = Depends(get_runtime),
    api_key: str = Depends(verify_api_key),
):
    """Run a settlement batch now."""
    result = runtime.settlement.trigger_now()
    return result.to_dict()


# ============================================================================
# Run
# ============================================================================

def run(settings: Optional[Settings] = None):
    """Run the server."""
    import uvicorn

    settings = settings or Settings.from_env()
    uvicorn.run(
        create_app(BurnRailRuntime(settings)),
        host="0.0.0.0",
        port=settings.port,
    )


if __name__ == "__main__":
    run()
