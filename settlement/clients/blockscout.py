"""Blockscout v2 client for on-chain token transfers."""

from dataclasses import dataclass

from settlement.clients.http import JsonHttpClient


@dataclass
class TokenTransfer:
    """One ERC-20 transfer inside a transaction."""

    token_address: str
    symbol: str
    decimals: int
    raw_value: int
    from_address: str = ""
    to_address: str = ""

    @property
    def amount(self) -> float:
        """Human-readable quantity."""
        return self.raw_value / (10 ** self.decimals)


def _parse_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class BlockscoutClient(JsonHttpClient):
    """Blockscout explorer API client (Base mainnet by default)."""

    SOURCE = "blockscout"
    BASE_URL = "https://base.blockscout.com/api/v2"

    async def get_token_transfers(self, tx_hash: str) -> list[TokenTransfer]:
        data = await self._request("GET", f"/transactions/{tx_hash}/token-transfers")
        transfers = []
        for item in (data or {}).get("items") or []:
            token = item.get("token") or {}
            address = token.get("address") or token.get("address_hash") or ""
            transfers.append(
                TokenTransfer(
                    token_address=address.lower(),
                    symbol=token.get("symbol") or "UNKNOWN",
                    decimals=_parse_int(token.get("decimals"), 18),
                    raw_value=_parse_int((item.get("total") or {}).get("value"), 0),
                    from_address=((item.get("from") or {}).get("hash") or "").lower(),
                    to_address=((item.get("to") or {}).get("hash") or "").lower(),
                )
            )
        return transfers
