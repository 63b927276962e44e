"""
Cross-reserve account risk: collateral, debt, borrow capacity, health factor.
"""

from __future__ import annotations

from dataclasses import dataclass

from data.price_source import PriceSource
from models.errors import PriceUnavailable
from models.fixed_point import MAX_UINT256, WAD, percent_mul, wad_div
from models.reserve import Reserve, ReserveLedger
from models.user_config import UserConfiguration

HEALTH_FACTOR_LIQUIDATION_THRESHOLD = WAD


@dataclass(frozen=True)
class AccountData:
    """Aggregated position of one user, values in base currency (8 decimals)."""
    total_collateral_base: int
    total_debt_base: int
    available_borrows_base: int
    avg_liquidation_threshold: int
    avg_ltv: int
    health_factor: int

    @property
    def is_liquidatable(self) -> bool:
        return self.health_factor < HEALTH_FACTOR_LIQUIDATION_THRESHOLD


EMPTY_ACCOUNT = AccountData(
    total_collateral_base=0,
    total_debt_base=0,
    available_borrows_base=0,
    avg_liquidation_threshold=0,
    avg_ltv=0,
    health_factor=MAX_UINT256,
)


def health_factor(total_collateral_base: int, avg_liquidation_threshold: int,
                  total_debt_base: int) -> int:
    """HF = collateral * liquidation_threshold / debt, in wad; MAX_UINT256 without debt."""
    if total_debt_base == 0:
        return MAX_UINT256
    return wad_div(percent_mul(total_collateral_base, avg_liquidation_threshold), total_debt_base)


class RiskAggregator:
    """
    Walks the reserves a user touches and values them through the price source.

    collateral_i = balance_i * price_i / 10^decimals_i
    avg_lt       = sum(collateral_i * lt_i) / sum(collateral_i)
    HF           = total_collateral * avg_lt / total_debt
    available    = max(0, total_collateral * avg_ltv - total_debt)

    Debt values round up, collateral values round down.
    """

    def __init__(self, price_source: PriceSource):
        self.prices = price_source

    def price_of(self, asset: str) -> int:
        price = self.prices.get_price(asset)
        if price is None or price <= 0:
            raise PriceUnavailable(f"no valid price for {asset}")
        return price

    def value_in_base(self, reserve: Reserve, amount: int, round_up: bool = False) -> int:
        unit = reserve.config.unit
        product = amount * self.price_of(reserve.asset)
        if round_up:
            return -(-product // unit)
        return product // unit

    def account_data(self, reserves: ReserveLedger, user_config: UserConfiguration | None,
                     user: str, now: int) -> AccountData:
        if user_config is None or user_config.is_empty():
            return EMPTY_ACCOUNT

        total_collateral = 0
        total_debt = 0
        weighted_ltv = 0
        weighted_lt = 0

        for reserve in reserves:
            if not user_config.is_using_as_collateral_or_borrowing(reserve.id):
                continue
            config = reserve.config

            if config.liquidation_threshold != 0 and user_config.is_using_as_collateral(reserve.id):
                balance = reserve.deposits.balance_of(user, reserve.normalized_income(now))
                value = self.value_in_base(reserve, balance)
                total_collateral += value
                weighted_ltv += value * config.ltv
                weighted_lt += value * config.liquidation_threshold

            if user_config.is_borrowing(reserve.id):
                stable, variable = reserve.user_debt(user, now)
                total_debt += self.value_in_base(reserve, stable + variable, round_up=True)

        avg_ltv = weighted_ltv // total_collateral if total_collateral else 0
        avg_lt = weighted_lt // total_collateral if total_collateral else 0
        borrow_power = percent_mul(total_collateral, avg_ltv)

        return AccountData(
            total_collateral_base=total_collateral,
            total_debt_base=total_debt,
            available_borrows_base=max(borrow_power - total_debt, 0),
            avg_liquidation_threshold=avg_lt,
            avg_ltv=avg_ltv,
            health_factor=health_factor(total_collateral, avg_lt, total_debt),
        )

    @staticmethod
    def health_factor_after_operation(account: AccountData, collateral_decrease_base: int = 0,
                                      liquidation_threshold: int = 0,
                                      debt_increase_base: int = 0) -> int:
        """
        Health factor after removing collateral valued at `collateral_decrease_base`
        (weighted by `liquidation_threshold`) and/or adding debt.
        """
        total_debt = account.total_debt_base + debt_increase_base
        if total_debt == 0:
            return MAX_UINT256
        collateral_after = account.total_collateral_base - collateral_decrease_base
        if collateral_after <= 0:
            return 0
        weighted = (account.total_collateral_base * account.avg_liquidation_threshold
                    - collateral_decrease_base * liquidation_threshold)
        lt_after = max(weighted, 0) // collateral_after
        return health_factor(collateral_after, lt_after, total_debt)
