"""
Price source interface consumed by the risk engine.

Prices are quoted in base-currency units with 8 decimals
(1 unit of asset = price / 1e8 base currency). Sources must fail closed:
a missing, zero or negative price raises PriceUnavailable rather than
returning a value.
"""

from __future__ import annotations

from typing import Protocol

from models.errors import PriceUnavailable

BASE_CURRENCY_UNIT = 10**8


class PriceSource(Protocol):
    def get_price(self, asset: str) -> int:
        ...


class StaticPriceSource:
    """Settable in-memory prices, e.g. for simulations and replays."""

    def __init__(self, prices: dict[str, int] | None = None):
        self._prices: dict[str, int] = dict(prices or {})

    def set_price(self, asset: str, price: int) -> None:
        self._prices[asset] = price

    def remove_price(self, asset: str) -> None:
        self._prices.pop(asset, None)

    def get_price(self, asset: str) -> int:
        price = self._prices.get(asset)
        if price is None or price <= 0:
            raise PriceUnavailable(f"no valid price for {asset}")
        return price
