"""Database connection and table definitions.

Column names mirror the ``Signal`` and ``Subscription`` model fields
one-to-one.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from settlement.config import get_settings

Base = declarative_base()

# Token prices span from sub-nano memecoins to BTC
PRICE = Numeric(38, 18)
USD = Numeric(20, 8)
PCT = Numeric(20, 8)


class SignalTable(Base):
    """Published positions, open and settled."""

    __tablename__ = "signals"

    id = Column(String(40), primary_key=True)
    provider = Column(String(42), nullable=False)
    token = Column(String(20), nullable=False)
    token_address = Column(String(42), nullable=True)
    chain = Column(String(20), nullable=False, default="base")

    action = Column(String(10), nullable=False)
    entry_price = Column(PRICE, nullable=False)
    collateral_usd = Column(USD, nullable=False)
    leverage = Column(Float, nullable=False, default=1.0)
    stop_loss_pct = Column(PCT, nullable=True)
    take_profit_pct = Column(PCT, nullable=True)
    fees_usd = Column(USD, nullable=False, default=0)
    slippage_pct = Column(PCT, nullable=False, default=0)

    tx_id = Column(String(66), nullable=False)
    exit_tx_id = Column(String(66), nullable=True)

    exit_price = Column(PRICE, nullable=True)
    exit_timestamp = Column(DateTime(timezone=True), nullable=True)
    pnl_pct = Column(PCT, nullable=True)
    pnl_usd = Column(USD, nullable=True)
    current_price = Column(PRICE, nullable=True)
    unrealized_pnl_pct = Column(PCT, nullable=True)
    unrealized_pnl_usd = Column(USD, nullable=True)
    max_drawdown_pct = Column(PCT, nullable=False, default=0)
    holding_hours = Column(Float, nullable=True)

    status = Column(String(10), nullable=False, default="open")
    close_reason = Column(String(30), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    parent_signal_id = Column(String(40), nullable=True)
    paired_signal_id = Column(String(40), nullable=True)

    category = Column(String(20), nullable=True)
    risk_level = Column(String(10), nullable=True)
    confidence = Column(Float, nullable=True)
    reasoning = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_signals_status", "status"),
        Index("idx_signals_provider_time", "provider", "created_at"),
        Index("idx_signals_pairing", "provider", "token", "action", "status", "created_at"),
    )


class SubscriptionTable(Base):
    """Webhook subscriptions."""

    __tablename__ = "webhook_subscriptions"

    id = Column(String(36), primary_key=True)
    url = Column(Text, nullable=False)

    provider_filter = Column(String(42), nullable=True)
    token_filter = Column(String(20), nullable=True)
    category_filter = Column(String(20), nullable=True)
    risk_level_filter = Column(String(10), nullable=True)
    min_confidence = Column(Float, nullable=True)
    min_collateral_usd = Column(USD, nullable=True)
    action_filters = Column(JSONB, nullable=False, default=list)

    active = Column(Boolean, nullable=False, default=True)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    max_failures = Column(Integer, nullable=False, default=10)
    last_triggered = Column(DateTime(timezone=True), nullable=True)
    last_failure = Column(DateTime(timezone=True), nullable=True)

    retry_attempts = Column(Integer, nullable=False, default=3)
    retry_delay_ms = Column(Integer, nullable=False, default=1000)
    timeout_ms = Column(Integer, nullable=False, default=5000)

    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_webhook_subscriptions_active", "active"),
    )


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        url = database_url or settings.database_url

        # Convert postgresql:// to postgresql+asyncpg://
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

        self.engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,    # Validate before use
            pool_recycle=3600,     # Recycle every hour
            pool_timeout=30,       # Wait max 30s for connection
            connect_args={
                "timeout": 10,                 # Connection timeout
                "command_timeout": 30,         # Query timeout
            },
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self.engine.dispose()


# Global database instance
_db: Database | None = None


def get_database() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


async def init_database() -> Database:
    """Initialize the database and create tables."""
    db = get_database()
    await db.create_tables()
    return db
