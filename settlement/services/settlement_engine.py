"""Settlement engine: the lifecycle of a published position.

State machine:

    OPEN -> CLOSED   (take profit, manual close, opposite signal)
    OPEN -> STOPPED  (stop loss, max drawdown)
    OPEN -> EXPIRED  (expiry reached)

Terminal states are final. Every transition of one signal runs under that
signal's lock and is written with a compare-and-set against OPEN in the
store, so at most one transition per signal ever succeeds; a losing close
gets StateConflictError.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError

from settlement.risk_config import RiskConfig
from settlement.services.keyed_lock import KeyedLock
from settlement.services.price_oracle import PriceOracle
from settlement.services.trade_extractor import ExtractedTrade, TradeExtractor
from settlement_core.errors import (
    ExternalServiceError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from settlement_core.models import CloseReason, Signal, SignalEvent, SignalStatus
from settlement_core.pairing import PAIRING_TARGETS, OpenPositionBook
from settlement_core.pnl import holding_hours, realized_pnl
from settlement_core.rules import RuleDecision, evaluate_rules
from settlement_core.store import SignalStore
from settlement_core.validation import (
    PnlOverride,
    SignalInput,
    check_message_price,
    parse_signal_input,
    to_validation_error,
)

logger = logging.getLogger(__name__)

# Type alias for event callback (new signal / position closed)
EventCallback = Callable[[SignalEvent], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_expired(signal: Signal, now: datetime) -> bool:
    return signal.expires_at is not None and now >= signal.expires_at


@dataclass
class EvaluationResult:
    """Outcome of evaluating one signal."""

    signal_id: str
    status: SignalStatus
    reason: CloseReason | None = None
    current_price: float | None = None
    unrealized_pnl_pct: float | None = None
    transitioned: bool = False
    error: str | None = None


@dataclass
class Submission:
    """A created signal and the position it auto-closed, if any."""

    signal: Signal
    closed: Signal | None = None
    extracted: ExtractedTrade | None = None
    price_source: str = "submitted"


class SettlementEngine:
    """Owns signal creation, evaluation and settlement."""

    def __init__(
        self,
        store: SignalStore,
        oracle: PriceOracle | None = None,
        extractor: TradeExtractor | None = None,
        risk_config: RiskConfig | None = None,
        concurrency: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            store: Signal persistence
            oracle: Price oracle (needed for evaluate_with_oracle and batch runs)
            extractor: On-chain trade extractor (optional)
            risk_config: Risk rule configuration
            concurrency: Max signals evaluated at once in batch runs
            clock: Returns the current UTC time (for testing)
        """
        self.store = store
        self.oracle = oracle
        self.extractor = extractor
        self.risk = risk_config or RiskConfig()
        self.concurrency = max(1, concurrency)
        self._clock = clock

        self.book = OpenPositionBook()
        self._locks = KeyedLock()
        self._event_callbacks: list[EventCallback] = []

        # Metrics
        self.created_count = 0
        self.settled_count = 0

    # =========================================================================
    # Events
    # =========================================================================

    def on_event(self, callback: EventCallback) -> None:
        """Register callback for signal events.

        Note: Duplicate callbacks are ignored.
        """
        if callback not in self._event_callbacks:
            self._event_callbacks.append(callback)

    def off_event(self, callback: EventCallback) -> None:
        """Unregister callback for signal events."""
        if callback in self._event_callbacks:
            self._event_callbacks.remove(callback)

    async def _emit(self, signal: Signal) -> None:
        event = SignalEvent.for_signal(signal)
        for callback in self._event_callbacks:
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Event callback error for {signal.id}: {e}")

    # =========================================================================
    # Startup
    # =========================================================================

    async def load_open_positions(self) -> int:
        """Rebuild the pairing book from the store."""
        signals = await self.store.list_open()
        self.book.load(signals)
        logger.info(f"Loaded {len(self.book)} open positions")
        return len(self.book)

    # =========================================================================
    # Creation
    # =========================================================================

    async def submit(self, data: SignalInput | dict[str, Any]) -> Submission:
        """Create a signal from a submission and pair it against open positions.

        Entry price priority: on-chain extraction, then the submitted price,
        then the oracle's current price.

        Raises:
            ValidationError: malformed input, token mismatch, implausible price
            ExternalServiceError: no entry price could be determined
        """
        inp = data if isinstance(data, SignalInput) else parse_signal_input(data)
        now = self._clock()

        entry_price = None
        price_source = "submitted"
        collateral_usd = inp.collateral_usd
        token_address = inp.token_address

        extracted = None
        if self.extractor is not None:
            extracted = await self.extractor.extract(inp.tx_id, inp.token, inp.provider)
        if extracted is not None:
            entry_price = extracted.entry_price
            collateral_usd = extracted.collateral_usd
            token_address = token_address or extracted.token_address
            price_source = "onchain"
        elif inp.entry_price is not None:
            entry_price = inp.entry_price
        elif self.oracle is not None:
            entry_price = await self.oracle.get_price(token_address or inp.token)
            price_source = "oracle"

        if entry_price is None or entry_price <= 0:
            raise ExternalServiceError(
                f"Could not determine an entry price for {inp.token}",
                field="entry_price",
            )
        self._check_price_band(inp.token, entry_price)

        expires_at = inp.expires_at
        if expires_at is None:
            default_expiry = self.risk.default_expiry(inp.category)
            if default_expiry is not None:
                expires_at = now + default_expiry

        fields = inp.model_dump()
        fields.update(
            entry_price=entry_price,
            collateral_usd=collateral_usd,
            token_address=token_address,
            expires_at=expires_at,
            created_at=now,
        )
        signal = await self.create(fields)

        closed = await self.pair_auto_close(signal)
        if closed is not None:
            signal = signal.model_copy(update={"parent_signal_id": closed.id})

        logger.info(
            f"Signal {signal.id}: {signal.action.value} {signal.token} @ {entry_price} "
            f"({price_source}), collateral ${collateral_usd:.2f}"
            + (f", closed {closed.id}" if closed else "")
        )
        return Submission(signal=signal, closed=closed, extracted=extracted, price_source=price_source)

    def _check_price_band(self, token: str, price: float) -> None:
        low, high = self.risk.band_for(token)
        if not low <= price <= high:
            raise ValidationError(
                f"Entry price {price} for {token} is outside the plausible range [{low}, {high}]",
                field="entry_price",
            )

    async def create(self, fields: dict[str, Any]) -> Signal:
        """Persist a new OPEN signal and index it for pairing.

        Raises:
            ValidationError: non-positive entry price or collateral, or
                otherwise invalid fields
        """
        for name in ("entry_price", "collateral_usd"):
            value = fields.get(name)
            if value is None or value <= 0:
                raise ValidationError(f"{name} must be positive", field=name)

        data = {k: v for k, v in fields.items() if k in Signal.model_fields}
        data["status"] = SignalStatus.OPEN
        data.setdefault("created_at", self._clock())
        for name in ("exit_price", "exit_timestamp", "pnl_pct", "pnl_usd", "close_reason"):
            data.pop(name, None)
        try:
            signal = Signal.model_validate(data)
        except PydanticValidationError as e:
            raise to_validation_error(e) from e

        await self.store.add(signal)
        self.book.add(signal)
        self.created_count += 1
        await self._emit(signal)
        return signal

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def evaluate(self, signal: Signal | str, current_price: float | None) -> EvaluationResult:
        """Apply the auto-close rules at ``current_price``.

        No-op when the signal is not OPEN or no price is available.

        Raises:
            NotFoundError: unknown signal, with or without a price
        """
        signal_id = signal if isinstance(signal, str) else signal.id
        if current_price is None or current_price <= 0:
            current = await self.store.get(signal_id)
            if current is None:
                raise NotFoundError(f"Signal {signal_id} not found", field="signal_id")
            return EvaluationResult(signal_id=signal_id, status=current.status)

        async with self._locks.hold(signal_id):
            current = await self.store.get(signal_id)
            if current is None:
                raise NotFoundError(f"Signal {signal_id} not found", field="signal_id")
            if not current.is_open:
                return EvaluationResult(signal_id=signal_id, status=current.status)

            now = self._clock()
            decision = evaluate_rules(
                current, current_price, now, self.risk.max_drawdown_floor_pct
            )
            if not decision.should_close:
                await self.store.update_metrics(
                    signal_id,
                    current_price=decision.current_price,
                    unrealized_pnl_pct=decision.unrealized_pnl_pct,
                    unrealized_pnl_usd=decision.unrealized_pnl_usd,
                    max_drawdown_pct=decision.max_drawdown_pct,
                    updated_at=now,
                )
                return self._result(signal_id, decision)

            settled = self._settle(
                current,
                exit_price=current_price,
                status=decision.status,
                reason=decision.reason,
                now=now,
                decision=decision,
            )
            await self.store.transition(settled)

        await self._after_transition(settled)
        return self._result(signal_id, decision, transitioned=True)

    async def evaluate_with_oracle(self, signal: Signal) -> EvaluationResult:
        """Evaluate at the oracle's current price; no price is a logged no-op."""
        if self.oracle is None:
            raise RuntimeError("SettlementEngine has no price oracle")
        price = await self.oracle.get_price(signal.price_key)
        if price is None:
            logger.info(f"No price for {signal.price_key}, skipping evaluation of {signal.id}")
        return await self.evaluate(signal, price)

    async def evaluate_open_positions(self) -> list[EvaluationResult]:
        """Re-evaluate every open signal with one batched price lookup.

        Each signal's failure is isolated from the batch.
        """
        if self.oracle is None:
            raise RuntimeError("SettlementEngine has no price oracle")

        signals = await self.store.list_open()
        if not signals:
            return []

        prices = await self.oracle.get_prices([s.price_key for s in signals])
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(signal: Signal) -> EvaluationResult:
            async with semaphore:
                price = prices.get(signal.price_key)
                if price is None and _is_expired(signal, self._clock()):
                    expired = await self._expire(signal.id)
                    if expired is not None:
                        return EvaluationResult(
                            signal_id=signal.id,
                            status=expired.status,
                            reason=expired.close_reason,
                            current_price=expired.exit_price,
                            transitioned=True,
                        )
                return await self.evaluate(signal, price)

        results = await asyncio.gather(*(run(s) for s in signals), return_exceptions=True)

        evaluated: list[EvaluationResult] = []
        for signal, result in zip(signals, results):
            if isinstance(result, BaseException):
                logger.error(f"Evaluation failed for {signal.id}: {result}")
                evaluated.append(
                    EvaluationResult(signal_id=signal.id, status=signal.status, error=str(result))
                )
            else:
                evaluated.append(result)

        closed = sum(1 for r in evaluated if r.transitioned)
        skipped = sum(1 for r in evaluated if r.current_price is None and r.error is None)
        failed = sum(1 for r in evaluated if r.error)
        logger.info(
            f"Evaluated {len(signals)} open positions: {closed} closed, "
            f"{skipped} without price, {failed} failed"
        )
        return evaluated

    async def close_expired(self) -> list[Signal]:
        """Expire every open signal past ``expires_at``.

        Settles at the oracle's current price, or at the entry price when
        none is available (delisted or illiquid tokens, which ``evaluate``
        would otherwise leave open forever).
        """
        now = self._clock()
        signals = [s for s in await self.store.list_open() if _is_expired(s, now)]
        if not signals:
            return []

        prices: dict[str, float] = {}
        if self.oracle is not None:
            prices = await self.oracle.get_prices([s.price_key for s in signals])

        expired: list[Signal] = []
        for signal in signals:
            try:
                settled = await self._expire(signal.id, prices.get(signal.price_key))
            except Exception as e:
                logger.error(f"Expiring {signal.id} failed: {e}")
                continue
            if settled is not None:
                expired.append(settled)
        logger.info(f"Expired {len(expired)} of {len(signals)} overdue positions")
        return expired

    async def _expire(self, signal_id: str, exit_price: float | None = None) -> Signal | None:
        async with self._locks.hold(signal_id):
            current = await self.store.get(signal_id)
            if current is None or not current.is_open:
                return None
            now = self._clock()
            if not _is_expired(current, now):
                return None
            settled = self._settle(
                current,
                exit_price=exit_price or current.entry_price,
                status=SignalStatus.EXPIRED,
                reason=CloseReason.EXPIRED,
                now=now,
            )
            await self.store.transition(settled)

        await self._after_transition(settled)
        return settled

    @staticmethod
    def _result(
        signal_id: str, decision: RuleDecision, transitioned: bool = False
    ) -> EvaluationResult:
        return EvaluationResult(
            signal_id=signal_id,
            status=decision.status,
            reason=decision.reason,
            current_price=decision.current_price,
            unrealized_pnl_pct=decision.unrealized_pnl_pct,
            transitioned=transitioned,
        )

    # =========================================================================
    # Closing
    # =========================================================================

    async def close(
        self,
        signal_id: str,
        exit_price: float,
        exit_tx_id: str | None = None,
        pnl_override: PnlOverride | None = None,
        message_price: float | None = None,
    ) -> Signal:
        """Manually close an OPEN signal at ``exit_price``.

        Raises:
            ValidationError: bad exit price or signed-price mismatch
            NotFoundError: unknown signal
            StateConflictError: signal is not OPEN
        """
        if exit_price is None or exit_price <= 0:
            raise ValidationError("exit_price must be positive", field="exit_price")
        check_message_price(exit_price, message_price)

        return await self._close_open(
            signal_id,
            exit_price=exit_price,
            reason=CloseReason.MANUAL,
            exit_tx_id=exit_tx_id,
            pnl_override=pnl_override,
        )

    async def pair_auto_close(self, new_signal: Signal) -> Signal | None:
        """Close the oldest open opposite position of the same provider and token.

        SELL closes BUY/LONG, SHORT closes LONG, BUY closes SHORT. At most
        one position is closed per call, at the new signal's entry price.

        Returns:
            The closed signal, or None if nothing matched
        """
        targets = PAIRING_TARGETS.get(new_signal.action)
        window = self.risk.pairing_window(new_signal.action)
        if not targets or window is None:
            return None

        since = new_signal.created_at - window
        candidates = list(
            self.book.candidates(
                new_signal.provider,
                new_signal.token,
                targets,
                since=since,
                before=new_signal.created_at,
            )
        )
        for candidate_id in candidates:
            if candidate_id == new_signal.id:
                continue
            try:
                closed = await self._close_open(
                    candidate_id,
                    exit_price=new_signal.entry_price,
                    reason=CloseReason.AUTO_OPPOSITE_SIGNAL,
                    exit_tx_id=new_signal.tx_id,
                    paired_signal_id=new_signal.id,
                )
            except (StateConflictError, NotFoundError):
                # Settled concurrently; try the next oldest
                self.book.discard(candidate_id)
                continue

            await self.store.set_parent(new_signal.id, closed.id)
            logger.info(
                f"Auto-closed {closed.id} ({closed.action.value} {closed.token}) "
                f"by {new_signal.id} @ {new_signal.entry_price}: pnl {closed.pnl_pct:.2f}%"
            )
            return closed
        return None

    async def _close_open(
        self,
        signal_id: str,
        exit_price: float,
        reason: CloseReason,
        exit_tx_id: str | None = None,
        pnl_override: PnlOverride | None = None,
        paired_signal_id: str | None = None,
    ) -> Signal:
        async with self._locks.hold(signal_id):
            current = await self.store.get(signal_id)
            if current is None:
                raise NotFoundError(f"Signal {signal_id} not found", field="signal_id")
            if not current.is_open:
                raise StateConflictError(
                    f"Signal {signal_id} is already {current.status.value}",
                    field="signal_id",
                )
            settled = self._settle(
                current,
                exit_price=exit_price,
                status=SignalStatus.CLOSED,
                reason=reason,
                now=self._clock(),
                exit_tx_id=exit_tx_id,
                pnl_override=pnl_override,
                paired_signal_id=paired_signal_id,
            )
            await self.store.transition(settled)

        await self._after_transition(settled)
        return settled

    def _settle(
        self,
        signal: Signal,
        exit_price: float,
        status: SignalStatus,
        reason: CloseReason,
        now: datetime,
        decision: RuleDecision | None = None,
        exit_tx_id: str | None = None,
        pnl_override: PnlOverride | None = None,
        paired_signal_id: str | None = None,
    ) -> Signal:
        """Build the terminal copy of ``signal`` with realized PnL."""
        pnl = realized_pnl(
            signal.is_long,
            signal.entry_price,
            exit_price,
            signal.collateral_usd,
            leverage=signal.leverage,
            fees_usd=signal.fees_usd,
            slippage_pct=signal.slippage_pct,
        )
        pnl_pct, pnl_usd = pnl.pnl_pct, pnl.pnl_usd
        if pnl_override is not None:
            pnl_pct = pnl_override.pnl_pct
            if pnl_override.pnl_usd is not None:
                pnl_usd = pnl_override.pnl_usd
            else:
                pnl_usd = signal.collateral_usd * pnl_pct / 100

        changes: dict[str, Any] = {
            "status": status,
            "close_reason": reason,
            "exit_price": exit_price,
            "exit_timestamp": now,
            "pnl_pct": pnl_pct,
            "pnl_usd": pnl_usd,
            "current_price": exit_price,
            "holding_hours": holding_hours(signal.created_at, now),
            "updated_at": now,
        }
        if decision is not None:
            changes["unrealized_pnl_pct"] = decision.unrealized_pnl_pct
            changes["unrealized_pnl_usd"] = decision.unrealized_pnl_usd
            changes["max_drawdown_pct"] = decision.max_drawdown_pct
        if exit_tx_id is not None:
            changes["exit_tx_id"] = exit_tx_id
        if paired_signal_id is not None:
            changes["paired_signal_id"] = paired_signal_id
        return signal.evolve(**changes)

    async def _after_transition(self, settled: Signal) -> None:
        self.book.discard(settled.id)
        self.settled_count += 1
        logger.info(
            f"Signal {settled.id} {settled.status.value} ({settled.close_reason.value}) "
            f"@ {settled.exit_price}: pnl {settled.pnl_pct:.2f}% / ${settled.pnl_usd:.2f}"
        )
        await self._emit(settled)
