"""Derive entry price and collateral from a swap's token transfers.

For a swap, the trader spends a quote currency (stablecoin or WETH) and
receives the target token:

    entry_price = quote_value_usd / target_quantity

Multi-hop swaps (USDC -> WETH -> TOKEN) emit transfers for every hop, so
legs are picked by size: the largest target transfer of the claimed token,
and the largest stablecoin transfer (WETH converted to USD only when no
stablecoin moved).
"""

import logging
from dataclasses import dataclass

from settlement.clients import BlockscoutClient, TokenTransfer
from settlement.services.price_oracle import PriceOracle
from settlement_core.assets import quote_token_for, same_asset
from settlement_core.errors import ExternalServiceError, TokenMismatchError

logger = logging.getLogger(__name__)


@dataclass
class ExtractedTrade:
    """Trade economics recovered from a transaction."""

    entry_price: float
    collateral_usd: float
    token_quantity: float
    token_address: str
    token_symbol: str
    quote_token: str
    native_price_used: float | None = None


def split_legs(
    transfers: list[TokenTransfer], claimed_symbol: str
) -> tuple[list[TokenTransfer], list[TokenTransfer], list[TokenTransfer]]:
    """Split transfers into (targets, stable quotes, native quotes).

    WETH counts as the target when the claimed token is ETH itself.
    """
    targets, stables, natives = [], [], []
    for transfer in transfers:
        if transfer.raw_value <= 0:
            continue
        quote = quote_token_for(transfer.token_address, transfer.symbol)
        if quote is None or (not quote.is_stable and same_asset(quote.symbol, claimed_symbol)):
            targets.append(transfer)
        elif quote.is_stable:
            stables.append(transfer)
        else:
            natives.append(transfer)
    return targets, stables, natives


def _largest(transfers: list[TokenTransfer]) -> TokenTransfer | None:
    if not transfers:
        return None
    return max(transfers, key=lambda t: t.amount)


class TradeExtractor:
    """Recover trade economics from on-chain transfer events."""

    def __init__(self, blockscout: BlockscoutClient, oracle: PriceOracle):
        self.blockscout = blockscout
        self.oracle = oracle

    async def close(self) -> None:
        await self.blockscout.close()

    async def extract(
        self,
        tx_id: str,
        claimed_symbol: str,
        trader: str | None = None,
    ) -> ExtractedTrade | None:
        """Extract the trade in ``tx_id``.

        Returns:
            ExtractedTrade, or None when the transaction does not carry
            enough data (callers fall back to the submitted price)

        Raises:
            TokenMismatchError: the transaction traded a different token
        """
        try:
            transfers = await self.blockscout.get_token_transfers(tx_id)
        except ExternalServiceError as e:
            logger.warning(f"Could not fetch transfers for {tx_id}: {e.message}")
            return None

        if not transfers:
            logger.info(f"No token transfers in {tx_id}")
            return None

        return await self.from_transfers(transfers, claimed_symbol, tx_id=tx_id, trader=trader)

    async def from_transfers(
        self,
        transfers: list[TokenTransfer],
        claimed_symbol: str,
        tx_id: str = "",
        trader: str | None = None,
    ) -> ExtractedTrade | None:
        targets, stables, natives = split_legs(transfers, claimed_symbol)

        # Token leg
        matching = [t for t in targets if same_asset(t.symbol, claimed_symbol)]
        token_leg = _largest(matching) or _largest(targets)
        if token_leg is None:
            logger.info(f"No target token transfer in {tx_id}")
            return None
        if not same_asset(token_leg.symbol, claimed_symbol):
            raise TokenMismatchError(
                f"Transaction {tx_id} traded {token_leg.symbol}, not {claimed_symbol.upper()}",
                field="token",
                details={"found": token_leg.symbol, "claimed": claimed_symbol.upper()},
            )

        # Quote leg
        native_price = None
        stable_leg = _largest(stables)
        if stable_leg is not None:
            quote_leg = stable_leg
            collateral_usd = stable_leg.amount
        else:
            quote_leg = _largest(natives)
            if quote_leg is None:
                logger.info(f"No quote transfer in {tx_id}")
                return None
            native_price = await self.oracle.get_native_price()
            if native_price is None:
                logger.warning(f"No native price to value the WETH leg of {tx_id}")
                return None
            collateral_usd = quote_leg.amount * native_price

        quantity = token_leg.amount
        if quantity <= 0 or collateral_usd <= 0:
            return None

        trade = ExtractedTrade(
            entry_price=collateral_usd / quantity,
            collateral_usd=collateral_usd,
            token_quantity=quantity,
            token_address=token_leg.token_address,
            token_symbol=token_leg.symbol,
            quote_token=quote_leg.symbol,
            native_price_used=native_price,
        )
        logger.debug(
            f"Extracted {tx_id} for {trader or 'unknown trader'}: "
            f"{quantity} {trade.token_symbol} for ${collateral_usd:.2f} "
            f"in {trade.quote_token} @ {trade.entry_price}"
        )
        return trade
