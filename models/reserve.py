"""
Per-asset reserve state and index accrual.

liquidity_index grows linearly with the liquidity rate; variable_borrow_index
compounds with the variable rate (or grows linearly when compounding is
disabled in PoolParams). Both only ever increase.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field

from config.params import POOL, PoolParams, ReserveConfig
from models.errors import (
    BorrowAllowanceExceeded,
    MaxReservesReached,
    NotEnoughLiquidity,
    ReserveAlreadyInitialized,
    ReserveNotFound,
)
from models.fixed_point import (
    RAY,
    compounded_interest,
    linear_interest,
    ray_div,
    ray_div_floor,
    ray_mul,
    ray_mul_floor,
)
from models.interest_rate import InterestRateModel
from models.scaled_balance import DepositLedger, VariableDebtLedger
from models.stable_debt import StableRateLotLedger

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReserveData:
    """Read-only view of a reserve at one point in time."""
    asset: str
    id: int
    config: ReserveConfig
    available_liquidity: int
    liquidity_index: int
    variable_borrow_index: int
    current_liquidity_rate: int
    current_variable_rate: int
    current_stable_rate: int
    average_stable_rate: int
    last_update_timestamp: int
    total_deposits: int
    total_variable_debt: int
    total_stable_debt: int
    accrued_to_treasury: int


@dataclass
class Reserve:
    asset: str
    id: int
    config: ReserveConfig
    rate_model: InterestRateModel
    last_update_timestamp: int
    compound_variable_debt: bool = True
    max_stable_rate: int = RAY
    available_liquidity: int = 0
    liquidity_index: int = RAY
    variable_borrow_index: int = RAY
    current_liquidity_rate: int = 0
    current_variable_rate: int = 0
    current_stable_rate: int = 0
    average_stable_rate: int = 0
    accrued_to_treasury: int = 0  # scaled by liquidity_index
    borrow_allowances: dict[tuple[str, str], int] = field(default_factory=dict)
    deposits: DepositLedger = field(init=False)
    variable_debt: VariableDebtLedger = field(init=False)
    stable_debt: StableRateLotLedger = field(init=False)

    def __post_init__(self):
        self.deposits = DepositLedger(self.asset)
        self.variable_debt = VariableDebtLedger(self.asset)
        self.stable_debt = StableRateLotLedger(self.asset, max_rate=self.max_stable_rate)

    # Index views ---------------------------------------------------------
    def _variable_growth(self, now: int) -> int:
        if self.compound_variable_debt:
            return compounded_interest(self.current_variable_rate, self.last_update_timestamp, now)
        return linear_interest(self.current_variable_rate, self.last_update_timestamp, now)

    def normalized_income(self, now: int) -> int:
        """Liquidity index as of `now`, without writing it."""
        if now <= self.last_update_timestamp:
            return self.liquidity_index
        growth = linear_interest(self.current_liquidity_rate, self.last_update_timestamp, now)
        return ray_mul(growth, self.liquidity_index)

    def normalized_debt(self, now: int) -> int:
        """Variable borrow index as of `now`, without writing it."""
        if now <= self.last_update_timestamp:
            return self.variable_borrow_index
        return ray_mul(self._variable_growth(now), self.variable_borrow_index)

    # Totals --------------------------------------------------------------
    def total_variable_debt(self, now: int | None = None) -> int:
        index = self.variable_borrow_index if now is None else self.normalized_debt(now)
        return self.variable_debt.total_supply(index)

    def total_stable_debt(self, now: int | None = None) -> int:
        return self.stable_debt.total_supply(self.last_update_timestamp if now is None else now)

    def total_debt(self, now: int | None = None) -> int:
        return self.total_variable_debt(now) + self.total_stable_debt(now)

    def total_deposits(self, now: int | None = None) -> int:
        index = self.liquidity_index if now is None else self.normalized_income(now)
        return self.deposits.total_supply(index)

    def user_debt(self, user: str, now: int) -> tuple[int, int]:
        """(stable, variable) debt of `user` as of `now`."""
        return (
            self.stable_debt.balance_of(user, now),
            self.variable_debt.balance_of(user, self.normalized_debt(now)),
        )

    # Mutations -----------------------------------------------------------
    def accrue(self, now: int) -> None:
        """
        Roll both indices forward to `now`.

        Borrower interest in excess of depositor interest over the period
        (the reserve-factor cut) is credited to the treasury in scaled units.
        """
        if now <= self.last_update_timestamp:
            return

        prev_liquidity_index = self.liquidity_index
        prev_variable_total = ray_mul(self.variable_debt.scaled_total_supply, self.variable_borrow_index)
        prev_stable_total = self.stable_debt.total_supply(self.last_update_timestamp)

        new_liquidity_index = self.normalized_income(now)
        new_variable_index = self.normalized_debt(now)

        self.deposits.update_index(new_liquidity_index)
        self.variable_debt.update_index(new_variable_index)
        self.liquidity_index = new_liquidity_index
        self.variable_borrow_index = new_variable_index

        debt_interest = (
            ray_mul(self.variable_debt.scaled_total_supply, new_variable_index) - prev_variable_total
            + self.stable_debt.total_supply(now) - prev_stable_total
        )
        supply_scaled = self.deposits.scaled_total_supply + self.accrued_to_treasury
        supply_interest = (ray_mul_floor(supply_scaled, new_liquidity_index)
                           - ray_mul_floor(supply_scaled, prev_liquidity_index))
        surplus = debt_interest - supply_interest
        if surplus > 0:
            self.accrued_to_treasury += ray_div_floor(surplus, new_liquidity_index)

        self.last_update_timestamp = now

    def recompute_rates(self, total_stable_debt: int | None = None,
                        total_variable_debt: int | None = None,
                        avg_stable_rate: int | None = None) -> None:
        """Store fresh rates for the current liquidity and debt; call after accrue()."""
        now = self.last_update_timestamp
        if total_stable_debt is None or avg_stable_rate is None:
            stable_total, stable_avg = self.stable_debt.total_supply_and_avg_rate(now)
            total_stable_debt = stable_total if total_stable_debt is None else total_stable_debt
            avg_stable_rate = stable_avg if avg_stable_rate is None else avg_stable_rate
        if total_variable_debt is None:
            total_variable_debt = self.total_variable_debt()

        rates = self.rate_model.calculate_rates(
            self.available_liquidity,
            total_stable_debt + total_variable_debt,
            reserve_factor=self.config.reserve_factor,
        )
        self.current_liquidity_rate = rates.liquidity_rate
        self.current_variable_rate = rates.variable_rate
        self.current_stable_rate = rates.stable_rate
        self.average_stable_rate = avg_stable_rate

    def adjust_liquidity(self, delta: int) -> None:
        new_liquidity = self.available_liquidity + delta
        if new_liquidity < 0:
            raise NotEnoughLiquidity(
                f"{self.asset}: available {self.available_liquidity}, requested {-delta}"
            )
        self.available_liquidity = new_liquidity

    def cumulate_to_liquidity_index(self, total_liquidity: int, amount: int) -> int:
        """Distribute `amount` to current depositors by bumping the liquidity index."""
        if total_liquidity == 0 or amount == 0:
            return self.liquidity_index
        growth = RAY + ray_div(amount, total_liquidity)
        self.liquidity_index = ray_mul(growth, self.liquidity_index)
        self.deposits.update_index(self.liquidity_index)
        return self.liquidity_index

    def approve_delegation(self, delegator: str, delegatee: str, amount: int) -> None:
        self.borrow_allowances[(delegator, delegatee)] = amount

    def consume_delegation(self, delegator: str, delegatee: str, amount: int) -> None:
        allowed = self.borrow_allowances.get((delegator, delegatee), 0)
        if amount > allowed:
            raise BorrowAllowanceExceeded(
                f"{self.asset}: {delegatee} may borrow {allowed} for {delegator}, requested {amount}"
            )
        self.borrow_allowances[(delegator, delegatee)] = allowed - amount

    def data(self) -> ReserveData:
        return ReserveData(
            asset=self.asset,
            id=self.id,
            config=self.config,
            available_liquidity=self.available_liquidity,
            liquidity_index=self.liquidity_index,
            variable_borrow_index=self.variable_borrow_index,
            current_liquidity_rate=self.current_liquidity_rate,
            current_variable_rate=self.current_variable_rate,
            current_stable_rate=self.current_stable_rate,
            average_stable_rate=self.average_stable_rate,
            last_update_timestamp=self.last_update_timestamp,
            total_deposits=self.total_deposits(),
            total_variable_debt=self.total_variable_debt(),
            total_stable_debt=self.total_stable_debt(),
            accrued_to_treasury=self.accrued_to_treasury,
        )


class ReserveLedger:
    """Append-only registry of reserves, ids assigned in initialization order.

    While a journal is open, the first `get` of a reserve saves a copy of it;
    `rollback` puts those copies back and drops reserves added since `begin`.
    """

    def __init__(self, params: PoolParams = POOL):
        self.params = params
        self._reserves: list[Reserve] = []
        self._by_asset: dict[str, Reserve] = {}
        self._journal: dict[str, Reserve] | None = None
        self._length = 0

    def __iter__(self):
        return iter(self._reserves)

    def __len__(self) -> int:
        return len(self._reserves)

    def __contains__(self, asset: str) -> bool:
        return asset in self._by_asset

    def assets(self) -> list[str]:
        return [r.asset for r in self._reserves]

    def get(self, asset: str) -> Reserve:
        try:
            reserve = self._by_asset[asset]
        except KeyError:
            raise ReserveNotFound(f"no reserve for {asset}") from None
        if self._journal is not None and asset not in self._journal:
            self._journal[asset] = copy.deepcopy(reserve)
        return reserve

    def by_id(self, reserve_id: int) -> Reserve:
        return self._reserves[reserve_id]

    def init_reserve(self, asset: str, config: ReserveConfig,
                     rate_model: InterestRateModel, now: int) -> Reserve:
        if asset in self._by_asset:
            raise ReserveAlreadyInitialized(f"{asset} already initialized")
        if len(self._reserves) >= self.params.max_reserves:
            raise MaxReservesReached(f"reserve list full ({self.params.max_reserves})")
        reserve = Reserve(
            asset=asset,
            id=len(self._reserves),
            config=config,
            rate_model=rate_model,
            last_update_timestamp=now,
            compound_variable_debt=self.params.compound_variable_debt,
            max_stable_rate=self.params.max_stable_rate,
        )
        self._reserves.append(reserve)
        self._by_asset[asset] = reserve
        LOGGER.info("Initialized reserve %s with id %d", asset, reserve.id)
        return reserve

    def accrue(self, asset: str, now: int) -> Reserve:
        reserve = self.get(asset)
        reserve.accrue(now)
        return reserve

    def begin(self) -> None:
        self._journal = {}
        self._length = len(self._reserves)

    def commit(self) -> None:
        self._journal = None

    def rollback(self) -> None:
        for reserve in self._reserves[self._length:]:
            del self._by_asset[reserve.asset]
        del self._reserves[self._length:]
        for asset, saved in (self._journal or {}).items():
            if saved.id >= self._length:
                continue
            self._reserves[saved.id] = saved
            self._by_asset[asset] = saved
        self._journal = None
