"""PostgreSQL signal and subscription repositories."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import case, select, update
from sqlalchemy.dialects.postgresql import insert

from settlement.storage.database import Database, SignalTable, SubscriptionTable, get_database
from settlement_core.errors import NotFoundError, StateConflictError
from settlement_core.models import Signal, SignalStatus, Subscription

OPEN = SignalStatus.OPEN.value


def _to_column(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_to_column(v) for v in value]
    return value


def _model_values(model: Signal | Subscription) -> dict[str, Any]:
    """Model fields as column values (enums flattened to their values)."""
    return {name: _to_column(value) for name, value in model.model_dump().items()}


def _row_values(row: Any, table: Any) -> dict[str, Any]:
    data = {}
    for column in table.__table__.columns:
        value = getattr(row, column.key) if not isinstance(row, dict) else row[column.key]
        if isinstance(value, Decimal):
            value = float(value)
        data[column.key] = value
    return data


class SqlSignalStore:
    """Signal store backed by the ``signals`` table."""

    def __init__(self, db: Database | None = None):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db or get_database()

    async def add(self, signal: Signal) -> None:
        """Insert a new signal; a duplicate ID is a state conflict."""
        async with self.db.session() as session:
            stmt = insert(SignalTable).values(**_model_values(signal))
            stmt = stmt.on_conflict_do_nothing(index_elements=["id"])
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise StateConflictError(f"Signal {signal.id} already exists")

    async def get(self, signal_id: str) -> Signal | None:
        async with self.db.session() as session:
            stmt = select(SignalTable).where(SignalTable.id == signal_id)
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()

            if row is None:
                return None
            return self._row_to_signal(row)

    async def update_metrics(
        self,
        signal_id: str,
        current_price: float,
        unrealized_pnl_pct: float,
        unrealized_pnl_usd: float,
        max_drawdown_pct: float,
        updated_at: datetime,
    ) -> None:
        async with self.db.session() as session:
            stmt = (
                update(SignalTable)
                .where(SignalTable.id == signal_id, SignalTable.status == OPEN)
                .values(
                    current_price=current_price,
                    unrealized_pnl_pct=unrealized_pnl_pct,
                    unrealized_pnl_usd=unrealized_pnl_usd,
                    max_drawdown_pct=max_drawdown_pct,
                    updated_at=updated_at,
                )
            )
            await session.execute(stmt)

    async def transition(self, signal: Signal) -> Signal:
        """Compare-and-set: write the terminal row only while status is open."""
        values = _model_values(signal)
        values.pop("id")
        async with self.db.session() as session:
            stmt = (
                update(SignalTable)
                .where(SignalTable.id == signal.id, SignalTable.status == OPEN)
                .values(**values)
            )
            result = await session.execute(stmt)
            if result.rowcount == 1:
                return signal

            current = await session.execute(
                select(SignalTable.status).where(SignalTable.id == signal.id)
            )
            status = current.scalar_one_or_none()
        if status is None:
            raise NotFoundError(f"Signal {signal.id} not found", field="signal_id")
        raise StateConflictError(f"Signal {signal.id} is already {status}")

    async def set_parent(self, signal_id: str, parent_signal_id: str) -> None:
        async with self.db.session() as session:
            stmt = (
                update(SignalTable)
                .where(SignalTable.id == signal_id)
                .values(parent_signal_id=parent_signal_id)
            )
            await session.execute(stmt)

    async def list_open(self) -> list[Signal]:
        async with self.db.session() as session:
            stmt = (
                select(SignalTable)
                .where(SignalTable.status == OPEN)
                .order_by(SignalTable.created_at.asc())
            )
            result = await session.execute(stmt)
            rows = result.scalars().all()

            return [self._row_to_signal(row) for row in rows]

    async def query(
        self,
        provider: str | None = None,
        token: str | None = None,
        status: SignalStatus | None = None,
        limit: int = 50,
    ) -> list[Signal]:
        async with self.db.session() as session:
            stmt = select(SignalTable)
            if provider:
                stmt = stmt.where(SignalTable.provider == provider.lower())
            if token:
                stmt = stmt.where(SignalTable.token == token.upper())
            if status is not None:
                stmt = stmt.where(SignalTable.status == status.value)
            stmt = stmt.order_by(SignalTable.created_at.desc()).limit(limit)

            result = await session.execute(stmt)
            rows = result.scalars().all()

            return [self._row_to_signal(row) for row in rows]

    def _row_to_signal(self, row: SignalTable) -> Signal:
        """Convert database row to Signal model."""
        return Signal.model_validate(_row_values(row, SignalTable))


class SqlSubscriptionStore:
    """Subscription store backed by the ``webhook_subscriptions`` table."""

    def __init__(self, db: Database | None = None):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db or get_database()

    async def add(self, subscription: Subscription) -> None:
        async with self.db.session() as session:
            stmt = insert(SubscriptionTable).values(**_model_values(subscription))
            stmt = stmt.on_conflict_do_nothing(index_elements=["id"])
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise StateConflictError(f"Subscription {subscription.id} already exists")

    async def get(self, subscription_id: str) -> Subscription | None:
        async with self.db.session() as session:
            stmt = select(SubscriptionTable).where(SubscriptionTable.id == subscription_id)
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()

            if row is None:
                return None
            return self._row_to_subscription(row)

    async def delete(self, subscription_id: str) -> bool:
        async with self.db.session() as session:
            stmt = SubscriptionTable.__table__.delete().where(
                SubscriptionTable.id == subscription_id
            )
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def list_all(self, url: str | None = None) -> list[Subscription]:
        async with self.db.session() as session:
            stmt = select(SubscriptionTable)
            if url:
                stmt = stmt.where(SubscriptionTable.url == url)
            stmt = stmt.order_by(SubscriptionTable.created_at.asc())
            result = await session.execute(stmt)
            rows = result.scalars().all()

            return [self._row_to_subscription(row) for row in rows]

    async def list_active(self) -> list[Subscription]:
        async with self.db.session() as session:
            stmt = (
                select(SubscriptionTable)
                .where(SubscriptionTable.active.is_(True))
                .order_by(SubscriptionTable.created_at.asc())
            )
            result = await session.execute(stmt)
            rows = result.scalars().all()

            return [self._row_to_subscription(row) for row in rows]

    async def record_delivery(
        self,
        subscription_id: str,
        success: bool,
        at: datetime,
    ) -> Subscription | None:
        """Single-statement counter update so concurrent deliveries never race."""
        if success:
            values = {
                "failure_count": 0,
                "success_count": SubscriptionTable.success_count + 1,
                "last_triggered": at,
            }
        else:
            values = {
                "failure_count": SubscriptionTable.failure_count + 1,
                "last_failure": at,
                "active": case(
                    (
                        SubscriptionTable.failure_count + 1 >= SubscriptionTable.max_failures,
                        False,
                    ),
                    else_=SubscriptionTable.active,
                ),
            }
        async with self.db.session() as session:
            stmt = (
                update(SubscriptionTable)
                .where(SubscriptionTable.id == subscription_id)
                .values(**values)
                .returning(*SubscriptionTable.__table__.columns)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            row = result.mappings().first()

            if row is None:
                return None
            return Subscription.model_validate(_row_values(dict(row), SubscriptionTable))

    def _row_to_subscription(self, row: SubscriptionTable) -> Subscription:
        """Convert database row to Subscription model."""
        return Subscription.model_validate(_row_values(row, SubscriptionTable))
