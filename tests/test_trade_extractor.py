"""Tests for on-chain trade extraction."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from settlement.clients import BlockscoutClient, TokenTransfer
from settlement.services.trade_extractor import TradeExtractor, split_legs
from settlement_core.errors import ExternalServiceError, TokenMismatchError

from tests.conftest import PROVIDER, tx

USDC = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
WETH = "0x4200000000000000000000000000000000000006"
PEPE = "0x" + "9e" * 20
DEGEN = "0x" + "de" * 20
POOL = "0x" + "77" * 20


def transfer(address, symbol, amount, decimals=18, sender=PROVIDER, receiver=POOL):
    return TokenTransfer(
        token_address=address,
        symbol=symbol,
        decimals=decimals,
        raw_value=int(amount * 10 ** decimals),
        from_address=sender,
        to_address=receiver,
    )


def usdc(amount, **kwargs):
    return transfer(USDC, "USDC", amount, decimals=6, **kwargs)


def weth(amount, **kwargs):
    return transfer(WETH, "WETH", amount, **kwargs)


def pepe(amount, **kwargs):
    return transfer(PEPE, "PEPE", amount, sender=POOL, receiver=PROVIDER, **kwargs)


class TestSplitLegs:

    def test_classifies_transfers(self):
        targets, stables, natives = split_legs([usdc(100), weth(0.05), pepe(1_000_000)], "PEPE")
        assert [t.symbol for t in targets] == ["PEPE"]
        assert [t.symbol for t in stables] == ["USDC"]
        assert [t.symbol for t in natives] == ["WETH"]

    def test_weth_is_target_when_claimed_eth(self):
        targets, stables, natives = split_legs([usdc(2000), weth(1)], "ETH")
        assert [t.symbol for t in targets] == ["WETH"]
        assert natives == []

    def test_skips_zero_transfers(self):
        targets, _, _ = split_legs([pepe(0)], "PEPE")
        assert targets == []


class TestTradeExtractor:
    """Tests for TradeExtractor."""

    @pytest.fixture
    def oracle(self):
        oracle = MagicMock()
        oracle.get_native_price = AsyncMock(return_value=2500.0)
        return oracle

    @pytest.fixture
    def blockscout(self):
        client = MagicMock()
        client.get_token_transfers = AsyncMock(return_value=[])
        client.close = AsyncMock()
        return client

    @pytest.fixture
    def extractor(self, blockscout, oracle):
        return TradeExtractor(blockscout, oracle)

    @pytest.mark.asyncio
    async def test_stablecoin_swap(self, extractor, blockscout):
        blockscout.get_token_transfers.return_value = [usdc(100), pepe(10_000_000)]

        trade = await extractor.extract(tx(1), "pepe", PROVIDER)

        assert trade.entry_price == pytest.approx(0.00001)
        assert trade.collateral_usd == pytest.approx(100.0)
        assert trade.token_quantity == pytest.approx(10_000_000)
        assert trade.token_address == PEPE
        assert trade.quote_token == "USDC"
        assert trade.native_price_used is None

    @pytest.mark.asyncio
    async def test_weth_swap_uses_native_price(self, extractor, blockscout, oracle):
        blockscout.get_token_transfers.return_value = [weth(0.04), pepe(5_000_000)]

        trade = await extractor.extract(tx(1), "PEPE")

        assert trade.collateral_usd == pytest.approx(100.0)
        assert trade.entry_price == pytest.approx(0.00002)
        assert trade.native_price_used == 2500.0
        oracle.get_native_price.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_multi_hop_takes_largest_legs(self, extractor, blockscout, oracle):
        # USDC -> WETH -> PEPE, with a small fee transfer of PEPE
        blockscout.get_token_transfers.return_value = [
            usdc(300),
            weth(0.12, sender=POOL, receiver=POOL),
            pepe(3_000_000),
            pepe(3_000),
        ]

        trade = await extractor.extract(tx(1), "PEPE")

        assert trade.collateral_usd == pytest.approx(300.0)
        assert trade.token_quantity == pytest.approx(3_000_000)
        oracle.get_native_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_buying_eth_with_usdc(self, extractor, blockscout):
        blockscout.get_token_transfers.return_value = [usdc(2500), weth(1)]

        trade = await extractor.extract(tx(1), "ETH")

        assert trade.entry_price == pytest.approx(2500.0)
        assert trade.token_symbol == "WETH"

    @pytest.mark.asyncio
    async def test_token_mismatch(self, extractor, blockscout):
        blockscout.get_token_transfers.return_value = [
            usdc(100),
            transfer(DEGEN, "DEGEN", 50_000, sender=POOL, receiver=PROVIDER),
        ]

        with pytest.raises(TokenMismatchError) as exc_info:
            await extractor.extract(tx(1), "PEPE")
        assert exc_info.value.field == "token"
        assert exc_info.value.details["found"] == "DEGEN"

    @pytest.mark.asyncio
    async def test_upstream_failure_returns_none(self, extractor, blockscout):
        blockscout.get_token_transfers.side_effect = ExternalServiceError("down")
        assert await extractor.extract(tx(1), "PEPE") is None

    @pytest.mark.asyncio
    async def test_no_transfers_returns_none(self, extractor):
        assert await extractor.extract(tx(1), "PEPE") is None

    @pytest.mark.asyncio
    async def test_missing_quote_leg_returns_none(self, extractor, blockscout):
        blockscout.get_token_transfers.return_value = [pepe(1_000)]
        assert await extractor.extract(tx(1), "PEPE") is None

    @pytest.mark.asyncio
    async def test_no_native_price_returns_none(self, extractor, blockscout, oracle):
        oracle.get_native_price.return_value = None
        blockscout.get_token_transfers.return_value = [weth(0.1), pepe(1_000)]
        assert await extractor.extract(tx(1), "PEPE") is None

    @pytest.mark.asyncio
    async def test_close(self, extractor, blockscout):
        await extractor.close()
        blockscout.close.assert_awaited_once()


class TestBlockscoutClient:

    @pytest.mark.asyncio
    async def test_parses_transfers(self):
        body = {
            "items": [
                {
                    "token": {"address": USDC.upper().replace("0X", "0x"), "symbol": "USDC", "decimals": "6"},
                    "total": {"value": "150000000", "decimals": "6"},
                    "from": {"hash": PROVIDER},
                    "to": {"hash": POOL},
                }
            ]
        }

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"/api/v2/transactions/{tx(5)}/token-transfers"
            return httpx.Response(200, json=body)

        client = BlockscoutClient(transport=httpx.MockTransport(handler))
        transfers = await client.get_token_transfers(tx(5))
        await client.close()

        assert len(transfers) == 1
        assert transfers[0].token_address == USDC
        assert transfers[0].amount == pytest.approx(150.0)
        assert transfers[0].from_address == PROVIDER

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        client = BlockscoutClient(transport=httpx.MockTransport(lambda r: httpx.Response(502)))

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.get_token_transfers(tx(5))
        assert exc_info.value.details["status"] == 502
        await client.close()
