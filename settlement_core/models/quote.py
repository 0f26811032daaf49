"""Ephemeral price quote models."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class AssetClass(str, Enum):
    """Routing class for the price oracle."""

    CRYPTO = "crypto"
    STOCK = "stock"
    FOREX = "forex"
    METAL = "metal"
    COMMODITY = "commodity"
    INDEX = "index"

    @property
    def is_traditional(self) -> bool:
        return self is not AssetClass.CRYPTO


@dataclass
class PriceQuote:
    """A price fetched from one upstream source.

    Never persisted; lives only in the price cache until its TTL lapses.
    """

    key: str
    price: float
    change_24h: float = 0.0
    source: str = ""
    asset_class: AssetClass = AssetClass.CRYPTO
    fetched_at: float = field(default_factory=time.time)
    ttl: float = 30.0

    def age(self, now: float | None = None) -> float:
        return (now if now is not None else time.time()) - self.fetched_at

    def is_fresh(self, now: float | None = None) -> bool:
        return self.age(now) <= self.ttl

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "price": self.price,
            "change_24h": self.change_24h,
            "source": self.source,
            "asset_class": self.asset_class.value,
            "fetched_at": self.fetched_at,
            "ttl": self.ttl,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PriceQuote":
        return cls(
            key=data["key"],
            price=float(data["price"]),
            change_24h=float(data.get("change_24h") or 0.0),
            source=data.get("source", ""),
            asset_class=AssetClass(data.get("asset_class", AssetClass.CRYPTO.value)),
            fetched_at=float(data.get("fetched_at") or 0.0),
            ttl=float(data.get("ttl") or 30.0),
        )
