"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)

# Reduce noise from third-party libraries (must be set before importing them)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Try to use uvloop for better performance (Unix only)
try:
    import uvloop  # noqa: F401
    _UVLOOP_ENABLED = True
except ImportError:
    _UVLOOP_ENABLED = False

from settlement.api import router
from settlement.clients import (
    BlockscoutClient,
    CoinGeckoClient,
    DexScreenerClient,
    YahooFinanceClient,
)
from settlement.config import Settings, get_settings
from settlement.risk_config import load_risk_config
from settlement.services import (
    PositionMonitor,
    PriceOracle,
    SettlementEngine,
    TradeExtractor,
    WebhookDispatcher,
)
from settlement.storage import (
    MemorySignalStore,
    MemorySubscriptionStore,
    PriceCache,
    RedisPriceCache,
    SqlSignalStore,
    SqlSubscriptionStore,
    cache,
    init_database,
)
from settlement_core.errors import SettlementError

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# Seconds to wait for queued webhooks on shutdown
SHUTDOWN_DRAIN_TIMEOUT = 5.0


def build_oracle(settings: Settings) -> PriceOracle:
    """Price oracle wired to the configured upstreams and cache backend."""
    if cache.is_cache_available():
        price_cache = RedisPriceCache(stale_max_age=settings.price_stale_max_age)
    else:
        price_cache = PriceCache(stale_max_age=settings.price_stale_max_age)
    return PriceOracle(
        cache=price_cache,
        dexscreener=DexScreenerClient(settings.dexscreener_url, timeout=settings.http_timeout),
        coingecko=CoinGeckoClient(settings.coingecko_url, timeout=settings.http_timeout),
        yahoo=YahooFinanceClient(
            settings.yahoo_url,
            timeout=settings.http_timeout,
            search_url=settings.yahoo_search_url,
        ),
        ttl=settings.price_cache_ttl,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = getattr(app.state, "settings", None) or get_settings()
    app.state.settings = settings

    logger.info(f"Starting signal settlement service (store={settings.store_backend})")

    db = None
    dispatcher = None
    monitor = None
    oracle = None
    extractor = None

    try:
        risk_path = Path(settings.risk_config_path) if settings.risk_config_path else None
        risk_config = load_risk_config(risk_path)

        if settings.store_backend == "postgres":
            db = await init_database()
            logger.info("Database initialized")
            signal_store = SqlSignalStore(db)
            subscription_store = SqlSubscriptionStore(db)
        else:
            signal_store = MemorySignalStore()
            subscription_store = MemorySubscriptionStore()

        await cache.init_cache(settings.redis_url)

        oracle = build_oracle(settings)
        extractor = TradeExtractor(
            BlockscoutClient(settings.blockscout_url, timeout=settings.http_timeout),
            oracle,
        )
        engine = SettlementEngine(
            signal_store,
            oracle=oracle,
            extractor=extractor,
            risk_config=risk_config,
            concurrency=settings.evaluation_concurrency,
        )
        dispatcher = WebhookDispatcher(
            subscription_store,
            workers=settings.dispatcher_workers,
            queue_size=settings.dispatcher_queue_size,
            default_timeout=settings.webhook_timeout,
        )
        engine.on_event(dispatcher.publish)
        monitor = PositionMonitor(engine, interval=settings.monitor_interval)

        await engine.load_open_positions()
        await dispatcher.start()
        # Positions that ran past expiry while the service was down
        await engine.close_expired()
        monitor.start()

        app.state.engine = engine
        app.state.oracle = oracle
        app.state.subscriptions = subscription_store
        app.state.dispatcher = dispatcher
        app.state.monitor = monitor

    except Exception as e:
        logger.error(f"Startup failed: {e}")
        if dispatcher:
            await dispatcher.stop()
        await cache.close_cache()
        if db:
            await db.close()
        raise  # Re-raise to prevent app from starting in broken state

    yield

    # Shutdown
    logger.info("Shutting down...")

    await monitor.stop()
    # Give queued webhooks a moment to go out, then stop workers
    try:
        await asyncio.wait_for(dispatcher.join(), timeout=SHUTDOWN_DRAIN_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning(f"{dispatcher.pending} webhook events left undelivered")
    await dispatcher.stop()
    await oracle.close()
    await extractor.close()
    await cache.close_cache()

    if db:
        try:
            await db.close()
            logger.info("Database connections closed")
        except Exception as e:
            logger.warning(f"Error closing database: {e}")

    logger.info("Shutdown complete")


async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path", "header")]
    field = ".".join(loc) or None
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": {
                "code": "VALIDATION_ERROR",
                "message": first.get("msg", "Invalid request"),
                "field": field,
            },
        },
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application."""
    app = FastAPI(
        title="Signal Settlement",
        description="Position lifecycle, settlement and notifications for trading signals",
        version=VERSION,
        lifespan=lifespan,
    )
    if settings is not None:
        app.state.settings = settings

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SettlementError, settlement_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Include REST routes
    app.include_router(router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Signal Settlement",
            "version": VERSION,
            "docs": "/docs",
            "event_loop": "uvloop" if _UVLOOP_ENABLED else "asyncio",
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "settlement.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        loop="uvloop" if _UVLOOP_ENABLED else "asyncio",
    )


if __name__ == "__main__":
    main()
