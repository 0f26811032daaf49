"""REST API routes.

Authentication of signal submissions happens upstream; these handlers
receive already-authenticated payloads.
"""

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Header, Query, Request
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from settlement.config import get_settings
from settlement.services import PositionMonitor, PriceOracle, SettlementEngine
from settlement.services.notifier import WebhookDispatcher
from settlement.storage import cache
from settlement_core.errors import AuthenticationError, NotFoundError
from settlement_core.models import (
    RiskLevel,
    Signal,
    SignalAction,
    SignalCategory,
    SignalStatus,
    Subscription,
)
from settlement_core.store import SubscriptionStore
from settlement_core.validation import ADDRESS_PATTERN, parse_close_input, to_validation_error

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_PRICE_SYMBOLS = 50


# Request models
class WebhookCreate(BaseModel):
    """Webhook registration request."""

    url: str = Field(pattern=r"^https?://\S+$", max_length=2048)
    provider_filter: Optional[str] = Field(default=None, pattern=ADDRESS_PATTERN)
    token_filter: Optional[str] = Field(default=None, max_length=20)
    category_filter: Optional[SignalCategory] = None
    risk_level_filter: Optional[RiskLevel] = None
    min_confidence: Optional[float] = Field(default=None, ge=0, le=1)
    min_collateral_usd: Optional[float] = Field(default=None, ge=0)
    action_filters: list[SignalAction] = []
    max_failures: int = Field(default=10, ge=1, le=100)
    retry_attempts: int = Field(default=3, ge=1, le=5)
    retry_delay_ms: int = Field(default=1000, ge=0, le=60_000)
    timeout_ms: int = Field(default=5000, ge=100, le=10_000)

    @field_validator("provider_filter")
    @classmethod
    def _lower_provider(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value

    @field_validator("token_filter")
    @classmethod
    def _upper_token(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


# Dependencies (services live on app.state, wired in main.lifespan)
def get_engine(request: Request) -> SettlementEngine:
    return request.app.state.engine


def get_oracle(request: Request) -> PriceOracle:
    return request.app.state.oracle


def get_subscriptions(request: Request) -> SubscriptionStore:
    return request.app.state.subscriptions


def get_dispatcher(request: Request) -> WebhookDispatcher | None:
    return getattr(request.app.state, "dispatcher", None)


def get_monitor(request: Request) -> PositionMonitor:
    return request.app.state.monitor


def signal_view(signal: Signal) -> dict[str, Any]:
    """Status-tagged JSON projection of a signal."""
    return signal.to_state().model_dump(mode="json")


def subscription_view(sub: Subscription) -> dict[str, Any]:
    return sub.model_dump(mode="json")


# =============================================================================
# Signals
# =============================================================================

@router.post("/signals", status_code=201)
async def create_signal(request: Request, payload: dict[str, Any] = Body(...)):
    """Publish a new signal."""
    submission = await get_engine(request).submit(payload)
    return {
        "success": True,
        "signal": signal_view(submission.signal),
        "auto_closed": signal_view(submission.closed) if submission.closed else None,
        "price_source": submission.price_source,
    }


@router.post("/signals/close")
async def close_signal(request: Request, payload: dict[str, Any] = Body(...)):
    """Close an open signal at the provider's exit price."""
    inp = parse_close_input(payload)
    signal = await get_engine(request).close(
        inp.signal_id,
        exit_price=inp.exit_price,
        exit_tx_id=inp.exit_tx_id,
        pnl_override=inp.pnl_override,
        message_price=inp.message_price,
    )
    return {"success": True, "signal": signal_view(signal)}


@router.get("/signals")
async def list_signals(
    request: Request,
    provider: Optional[str] = Query(None, description="Filter by provider address"),
    token: Optional[str] = Query(None, description="Filter by token symbol"),
    status: Optional[SignalStatus] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500, description="Maximum signals to return"),
):
    """Get recent signals, newest first."""
    signals = await get_engine(request).store.query(
        provider=provider, token=token, status=status, limit=limit
    )
    return {"success": True, "signals": [signal_view(s) for s in signals]}


@router.get("/signals/{signal_id}")
async def get_signal(request: Request, signal_id: str):
    """Get a signal by ID."""
    signal = await get_engine(request).store.get(signal_id)
    if signal is None:
        raise NotFoundError(f"Signal {signal_id} not found", field="signal_id")
    return {"success": True, "signal": signal_view(signal)}


# =============================================================================
# Webhooks
# =============================================================================

@router.post("/webhooks", status_code=201)
async def create_webhook(request: Request, payload: dict[str, Any] = Body(...)):
    """Register a webhook subscription."""
    try:
        body = WebhookCreate.model_validate(payload)
    except PydanticValidationError as e:
        raise to_validation_error(e) from e

    sub = Subscription(**body.model_dump())
    await get_subscriptions(request).add(sub)
    logger.info(f"Webhook {sub.id} registered for {sub.url}")
    return {"success": True, "webhook": subscription_view(sub)}


@router.get("/webhooks")
async def list_webhooks(
    request: Request,
    url: Optional[str] = Query(None, description="Filter by endpoint URL"),
):
    """List webhook subscriptions."""
    subs = await get_subscriptions(request).list_all(url=url)
    return {"success": True, "webhooks": [subscription_view(s) for s in subs]}


@router.delete("/webhooks/{subscription_id}")
async def delete_webhook(request: Request, subscription_id: str):
    """Remove a webhook subscription."""
    deleted = await get_subscriptions(request).delete(subscription_id)
    if not deleted:
        raise NotFoundError(f"Webhook {subscription_id} not found", field="id")
    return {"success": True}


# =============================================================================
# Prices
# =============================================================================

@router.get("/prices")
async def get_prices(
    request: Request,
    symbols: str = Query(..., description="Comma-separated symbols or token addresses"),
):
    """Current prices; unknown symbols are omitted."""
    keys = list(dict.fromkeys(s.strip() for s in symbols.split(",") if s.strip()))
    keys = keys[:MAX_PRICE_SYMBOLS]
    oracle = get_oracle(request)
    quotes = await asyncio.gather(*(oracle.get_quote(k) for k in keys))
    return {
        "success": True,
        "prices": {
            quote.key: {
                "price": quote.price,
                "change_24h": quote.change_24h,
                "source": quote.source,
                "asset_class": quote.asset_class.value,
            }
            for quote in quotes
            if quote is not None
        },
    }


# =============================================================================
# Position maintenance
# =============================================================================

@router.post("/positions/evaluate")
async def evaluate_positions(
    request: Request,
    authorization: Optional[str] = Header(None),
):
    """Re-evaluate every open position (cron entry point)."""
    settings = getattr(request.app.state, "settings", None) or get_settings()
    secret = settings.cron_secret
    if secret and authorization != f"Bearer {secret}":
        raise AuthenticationError("Invalid or missing cron secret")

    results = await get_monitor(request).run_once()
    return {
        "success": True,
        "evaluated": len(results),
        "closed": [
            {"id": r.signal_id, "status": r.status.value, "reason": r.reason.value}
            for r in results
            if r.transitioned and r.reason is not None
        ],
        "skipped": sum(1 for r in results if r.current_price is None and r.error is None),
        "errors": sum(1 for r in results if r.error),
    }


@router.get("/health")
async def health(request: Request):
    """Service health with queue and store details."""
    engine = get_engine(request)
    dispatcher = get_dispatcher(request)
    return {
        "status": "healthy",
        "open_positions": len(engine.book),
        "signals_created": engine.created_count,
        "signals_settled": engine.settled_count,
        "webhooks": dispatcher.get_stats() if dispatcher else None,
        "redis": await cache.ping(),
    }
