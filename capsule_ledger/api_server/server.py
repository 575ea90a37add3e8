"""
FastAPI server: HTTP API over the capsule ledger and dormancy stats.

GET /api/dormant-wallets never fails: any upstream error yields a well-formed
all-zero body. GET /api/ledger/{wallet} reconciles the wallet's capsule
transactions across cache, RPC and indexer. GET /api/capsules/{owner} reports
the owner's freshest capsule and whether it is ready for execution.
POST /api/capsules/{owner}/intents stores the intent text submitted with a
new capsule, the one write this API accepts.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from solders.pubkey import Pubkey

from capsule_ledger import __version__
from capsule_ledger.api_server.services import CapsuleServices, CapsuleView, build_services
from capsule_ledger.capsule_logging import get_logger
from capsule_ledger.config import get_settings
from capsule_ledger.core.exceptions import RpcError
from capsule_ledger.dormancy.aggregator import DormancyStats, empty_stats
from capsule_ledger.ledger.models import LedgerView
from capsule_ledger.ledger.pipeline import run_periodic_recheck

logger = get_logger(__name__)

STATS_SOURCE = "capsule-program"
RECHECK_SHUTDOWN_TIMEOUT_SEC = 15.0
MAX_INTENT_LENGTH = 4096


# -----------------------------------------------------------------------------
# Dependency
# -----------------------------------------------------------------------------


def get_services(request: Request) -> CapsuleServices:
    """Dependency: app-scoped services built in the lifespan."""
    return request.app.state.services


def _validate_address(value: str) -> str:
    address = value.strip()
    if not address:
        raise HTTPException(status_code=400, detail="address must be non-empty")
    try:
        Pubkey.from_string(address)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid Solana address")
    return address


# -----------------------------------------------------------------------------
# Response models (camelCase on the wire)
# -----------------------------------------------------------------------------


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DormantWalletsResponse(CamelModel):
    """GET /api/dormant-wallets response."""

    series: list[int] = Field(..., description="Dormant wallet count per checkpoint, oldest first")
    labels: list[str] = Field(..., description="Short month label per checkpoint")
    dormant_count: int = Field(..., ge=0)
    estimated_assets_usd: float = Field(..., ge=0, allow_inf_nan=False)
    estimated_assets_sol: float = Field(..., ge=0, allow_inf_nan=False)
    price_usd: float = Field(..., ge=0, allow_inf_nan=False)
    source: str = Field(STATS_SOURCE)

    @classmethod
    def from_stats(cls, stats: DormancyStats) -> "DormantWalletsResponse":
        return cls(
            series=stats.series,
            labels=stats.labels,
            dormant_count=stats.dormant_count,
            estimated_assets_usd=stats.estimated_assets_usd,
            estimated_assets_sol=stats.estimated_assets_sol,
            price_usd=stats.price_usd,
        )


class LedgerEntryModel(CamelModel):
    signature: str
    kind: str = Field(..., description="creation, execution or unclassified")
    block_time: int | None = Field(None, description="Unix seconds; null when unknown")
    succeeded: bool
    slot: int | None = None
    fee: int | None = None


class LedgerResponse(CamelModel):
    """GET /api/ledger/{wallet} response."""

    wallet: str
    available: bool = Field(..., description="False only when every source failed")
    transactions: list[LedgerEntryModel] = Field(default_factory=list)
    creation_signature: str | None = None
    execution_signature: str | None = None
    sources_ok: list[str] = Field(default_factory=list)
    sources_failed: list[str] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: LedgerView) -> "LedgerResponse":
        data = view.to_dict()
        return cls(
            wallet=data["wallet"],
            available=data["available"],
            transactions=[LedgerEntryModel(**entry) for entry in data["transactions"]],
            creation_signature=data["creation_signature"],
            execution_signature=data["execution_signature"],
            sources_ok=data["sources_ok"],
            sources_failed=data["sources_failed"],
        )


class IntentModel(CamelModel):
    text: str
    created_at: int


class IntentRequest(CamelModel):
    """POST /api/capsules/{owner}/intents body, sent after the capsule transaction lands."""

    text: str = Field(..., min_length=1, max_length=MAX_INTENT_LENGTH)
    creation_signature: str | None = Field(None, description="Signature of the create or recreate transaction")
    created_at: int | None = Field(None, ge=0, description="Unix seconds; defaults to now")


class ExecutedCapsuleModel(CamelModel):
    execution_tx: str
    executed_at: int | None = None
    intent: str | None = None
    creation_tx: str | None = None


class CapsuleResponse(CamelModel):
    """GET /api/capsules/{owner} response."""

    address: str = Field(..., description="Capsule account address")
    owner: str
    is_active: bool
    executed: bool
    executed_at: int | None = None
    last_activity: int
    inactivity_period: int
    period_elapsed: bool
    recent_activity: bool = Field(..., description="Indexer shows activity inside the inactivity period")
    can_execute: bool
    seconds_remaining: int = Field(..., ge=0)
    time_remaining: str
    payload_length: int = Field(..., ge=0)
    wallet_last_activity: int | None = None
    wallet_transaction_count: int = 0
    intents: list[IntentModel] = Field(default_factory=list)
    executed_capsules: list[ExecutedCapsuleModel] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: CapsuleView) -> "CapsuleResponse":
        status = view.status
        return cls(
            address=view.address,
            owner=status.owner,
            is_active=status.is_active,
            executed=status.executed,
            executed_at=status.executed_at,
            last_activity=status.last_activity,
            inactivity_period=status.inactivity_period,
            period_elapsed=status.period_elapsed,
            recent_activity=status.recent_activity,
            can_execute=status.can_execute,
            seconds_remaining=status.seconds_remaining,
            time_remaining=status.time_remaining_text,
            payload_length=view.payload_length,
            wallet_last_activity=view.activity.last_activity if view.activity else None,
            wallet_transaction_count=view.activity.transaction_count if view.activity else 0,
            intents=[IntentModel(text=i.text, created_at=i.created_at) for i in view.intents],
            executed_capsules=[ExecutedCapsuleModel(**s.to_dict()) for s in view.executed_capsules],
        )


# -----------------------------------------------------------------------------
# Lifespan: build services, run the periodic ledger re-check in the background
# -----------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    services = build_services(settings)
    app.state.services = services

    stop_event = asyncio.Event()
    recheck_task: asyncio.Task | None = None
    if settings.recheck_wallets:
        recheck_task = asyncio.create_task(
            run_periodic_recheck(
                services.pipeline,
                settings.recheck_wallets,
                settings.recheck_interval_sec,
                stop_event,
            )
        )
        logger.info(
            "api_recheck_started",
            wallet_count=len(settings.recheck_wallets),
            interval_sec=settings.recheck_interval_sec,
        )

    yield

    stop_event.set()
    if recheck_task is not None:
        try:
            await asyncio.wait_for(recheck_task, timeout=RECHECK_SHUTDOWN_TIMEOUT_SEC)
            logger.info("api_recheck_stopped")
        except asyncio.TimeoutError:
            logger.warning("api_recheck_shutdown_timeout", timeout_sec=RECHECK_SHUTDOWN_TIMEOUT_SEC)
    await services.aclose()


# -----------------------------------------------------------------------------
# App and routes
# -----------------------------------------------------------------------------

app = FastAPI(
    title="Capsule Ledger API",
    description="API for intent capsule ledgers, capsule status and dormant wallet statistics.",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness check: API is up."""
    return {"status": "ok"}


@app.get("/api/dormant-wallets", response_model=DormantWalletsResponse)
async def dormant_wallets(services: CapsuleServices = Depends(get_services)) -> DormantWalletsResponse:
    """
    Dormant wallet series, count and estimated locked value.

    Always 200: a failed program scan or any other upstream error returns
    the all-zero shape with labels still filled in.
    """
    now = int(time.time())
    try:
        return DormantWalletsResponse.from_stats(await services.dormancy_stats(now))
    except Exception as e:
        logger.exception("dormant_wallets_failed", error=str(e))
    return DormantWalletsResponse.from_stats(empty_stats(now, services.settings.dormancy_series_points))


@app.get("/api/ledger/{wallet}", response_model=LedgerResponse)
async def ledger(wallet: str, services: CapsuleServices = Depends(get_services)) -> LedgerResponse:
    """Reconciled capsule transaction history for a wallet, newest first."""
    wallet = _validate_address(wallet)
    view = await services.ledger_view(wallet)
    return LedgerResponse.from_view(view)


@app.get("/api/capsules/{owner}", response_model=CapsuleResponse)
async def capsule(owner: str, services: CapsuleServices = Depends(get_services)) -> CapsuleResponse:
    """Status of the owner's freshest capsule. 404 when the owner has none."""
    owner = _validate_address(owner)
    try:
        view = await services.capsule_view(owner)
    except RpcError as e:
        logger.warning("capsule_scan_failed", wallet_id=owner, error=str(e))
        raise HTTPException(status_code=503, detail="Capsule lookup unavailable") from e
    if view is None:
        raise HTTPException(status_code=404, detail=f"No capsule found for owner {owner[:8]}...")
    return CapsuleResponse.from_view(view)


@app.post("/api/capsules/{owner}/intents", response_model=IntentModel, status_code=201)
def record_intent(
    owner: str,
    body: IntentRequest,
    services: CapsuleServices = Depends(get_services),
) -> IntentModel:
    """Store the intent text submitted with a new capsule so later reads can show it."""
    owner = _validate_address(owner)
    text = body.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="intent text must be non-empty")
    record = services.record_capsule_intent(
        owner,
        text,
        creation_signature=(body.creation_signature or "").strip() or None,
        created_at=body.created_at,
    )
    return IntentModel(text=record.text, created_at=record.created_at)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
    """Consistent JSON error response for HTTPException."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )
