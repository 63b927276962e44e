"""
Preconditions for every pool operation.

All checks run before the operation mutates ledgers, except the solvency
checks which evaluate the hypothetical post-state algebraically.
"""

from __future__ import annotations

from enum import IntEnum

from config.params import POOL, PoolParams
from models.errors import (
    AmountExceedsMaxStableLoan,
    BorrowCapExceeded,
    BorrowingNotEnabled,
    CollateralBalanceIsZero,
    CollateralCannotBeLiquidated,
    CollateralCannotCoverNewBorrow,
    CollateralSameAsBorrowingCurrency,
    FlashLoanNotEnabled,
    HealthFactorBelowThreshold,
    HealthFactorNotBelowThreshold,
    InconsistentFlashLoanParams,
    InvalidAmount,
    InvalidRateMode,
    LtvValidationFailed,
    NoDebtInAsset,
    NoDebtOfSelectedType,
    NoExplicitAmountToRepayOnBehalf,
    NotEnoughAvailableUserBalance,
    NotEnoughLiquidity,
    ReserveFrozen,
    ReserveInactive,
    ReservePaused,
    StableBorrowingNotEnabled,
    SupplyCapExceeded,
    UnderlyingBalanceZero,
)
from models.fixed_point import MAX_UINT256, percent_mul, ray_mul
from models.reserve import Reserve, ReserveLedger
from models.risk import HEALTH_FACTOR_LIQUIDATION_THRESHOLD, AccountData, RiskAggregator
from models.user_config import UserConfiguration


class RateMode(IntEnum):
    NONE = 0
    STABLE = 1
    VARIABLE = 2


def require_amount(amount: int) -> None:
    if amount <= 0:
        raise InvalidAmount(f"amount must be positive, got {amount}")


def require_usable(reserve: Reserve, allow_frozen: bool = True) -> None:
    config = reserve.config
    if not config.active:
        raise ReserveInactive(f"{reserve.asset} is not active")
    if config.paused:
        raise ReservePaused(f"{reserve.asset} is paused")
    if not allow_frozen and config.frozen:
        raise ReserveFrozen(f"{reserve.asset} is frozen")


class ValidationGate:
    def __init__(self, risk: RiskAggregator, params: PoolParams = POOL):
        self.risk = risk
        self.params = params

    def validate_deposit(self, reserve: Reserve, amount: int) -> None:
        require_amount(amount)
        require_usable(reserve, allow_frozen=False)
        cap = reserve.config.supply_cap
        if cap:
            supplied = ray_mul(
                reserve.deposits.scaled_total_supply + reserve.accrued_to_treasury,
                reserve.liquidity_index,
            )
            if supplied + amount > cap * reserve.config.unit:
                raise SupplyCapExceeded(
                    f"{reserve.asset}: supply {supplied} + {amount} exceeds cap {cap}"
                )

    def validate_withdraw(self, reserves: ReserveLedger, reserve: Reserve,
                          user_config: UserConfiguration | None, user: str,
                          amount: int, user_balance: int, now: int) -> None:
        require_amount(amount)
        if amount > user_balance:
            raise NotEnoughAvailableUserBalance(
                f"{reserve.asset}: {user} holds {user_balance}, requested {amount}"
            )
        require_usable(reserve)
        if reserve.available_liquidity < amount:
            raise NotEnoughLiquidity(
                f"{reserve.asset}: available {reserve.available_liquidity}, requested {amount}"
            )
        self.validate_collateral_decrease(reserves, reserve, user_config, user, amount, now)

    def validate_collateral_decrease(self, reserves: ReserveLedger, reserve: Reserve,
                                     user_config: UserConfiguration | None, user: str,
                                     amount: int, now: int) -> None:
        """Removing `amount` of collateral must keep HF >= 1 while the user has debt."""
        if user_config is None or not user_config.is_borrowing_any():
            return
        if not user_config.is_using_as_collateral(reserve.id):
            return
        if reserve.config.liquidation_threshold == 0:
            return
        account = self.risk.account_data(reserves, user_config, user, now)
        hf_after = self.risk.health_factor_after_operation(
            account,
            collateral_decrease_base=self.risk.value_in_base(reserve, amount, round_up=True),
            liquidation_threshold=reserve.config.liquidation_threshold,
        )
        if hf_after < HEALTH_FACTOR_LIQUIDATION_THRESHOLD:
            raise HealthFactorBelowThreshold(
                f"{user}: health factor would fall to {hf_after}"
            )

    def validate_borrow(self, reserves: ReserveLedger, reserve: Reserve,
                        user_config: UserConfiguration | None, user: str,
                        amount: int, rate_mode: int, now: int) -> AccountData:
        require_amount(amount)
        require_usable(reserve, allow_frozen=False)
        config = reserve.config
        if not config.borrowing_enabled:
            raise BorrowingNotEnabled(f"{reserve.asset}: borrowing disabled")
        if rate_mode not in (RateMode.STABLE, RateMode.VARIABLE):
            raise InvalidRateMode(f"invalid borrow rate mode {rate_mode}")
        if reserve.available_liquidity < amount:
            raise NotEnoughLiquidity(
                f"{reserve.asset}: available {reserve.available_liquidity}, requested {amount}"
            )
        if config.borrow_cap:
            total_debt = reserve.total_debt(now)
            if total_debt + amount > config.borrow_cap * config.unit:
                raise BorrowCapExceeded(
                    f"{reserve.asset}: debt {total_debt} + {amount} exceeds cap {config.borrow_cap}"
                )

        account = self.risk.account_data(reserves, user_config, user, now)
        if account.total_collateral_base == 0:
            raise CollateralBalanceIsZero(f"{user} has no collateral")
        if account.avg_ltv == 0:
            raise LtvValidationFailed(f"{user} collateral has zero LTV")
        if account.health_factor < HEALTH_FACTOR_LIQUIDATION_THRESHOLD:
            raise HealthFactorBelowThreshold(f"{user}: health factor {account.health_factor}")

        amount_base = self.risk.value_in_base(reserve, amount, round_up=True)
        borrow_power = percent_mul(account.total_collateral_base, account.avg_ltv)
        if account.total_debt_base + amount_base > borrow_power:
            raise CollateralCannotCoverNewBorrow(
                f"{user}: debt {account.total_debt_base} + {amount_base} exceeds {borrow_power}"
            )

        if rate_mode == RateMode.STABLE:
            if not config.stable_borrow_enabled:
                raise StableBorrowingNotEnabled(f"{reserve.asset}: stable borrowing disabled")
            if (user_config is not None
                    and user_config.is_using_as_collateral(reserve.id)
                    and config.ltv != 0
                    and amount <= reserve.deposits.balance_of(user, reserve.normalized_income(now))):
                raise CollateralSameAsBorrowingCurrency(
                    f"{user}: stable borrow against own {reserve.asset} collateral"
                )
            max_loan = percent_mul(reserve.available_liquidity, self.params.max_stable_loan_percent)
            if amount > max_loan:
                raise AmountExceedsMaxStableLoan(
                    f"{reserve.asset}: stable loan {amount} exceeds {max_loan}"
                )
        return account

    def validate_repay(self, reserve: Reserve, amount: int, rate_mode: int,
                       on_behalf_of: str, caller: str, stable_debt: int,
                       variable_debt: int) -> None:
        require_amount(amount)
        require_usable(reserve)
        if rate_mode not in (RateMode.STABLE, RateMode.VARIABLE):
            raise InvalidRateMode(f"invalid repay rate mode {rate_mode}")
        debt = stable_debt if rate_mode == RateMode.STABLE else variable_debt
        if debt == 0:
            raise NoDebtOfSelectedType(f"{on_behalf_of} has no {RateMode(rate_mode).name} debt")
        if amount == MAX_UINT256 and on_behalf_of != caller:
            raise NoExplicitAmountToRepayOnBehalf("repaying on behalf requires an explicit amount")

    def validate_swap_rate_mode(self, reserve: Reserve, user_config: UserConfiguration | None,
                                user: str, stable_debt: int, variable_debt: int,
                                current_mode: int, now: int) -> None:
        require_usable(reserve, allow_frozen=False)
        if current_mode == RateMode.STABLE:
            if stable_debt == 0:
                raise NoDebtOfSelectedType(f"{user} has no stable debt")
        elif current_mode == RateMode.VARIABLE:
            if variable_debt == 0:
                raise NoDebtOfSelectedType(f"{user} has no variable debt")
            config = reserve.config
            if not config.stable_borrow_enabled:
                raise StableBorrowingNotEnabled(f"{reserve.asset}: stable borrowing disabled")
            if (user_config is not None
                    and user_config.is_using_as_collateral(reserve.id)
                    and config.ltv != 0
                    and variable_debt <= reserve.deposits.balance_of(user, reserve.normalized_income(now))):
                raise CollateralSameAsBorrowingCurrency(
                    f"{user}: stable debt against own {reserve.asset} collateral"
                )
        else:
            raise InvalidRateMode(f"invalid rate mode {current_mode}")

    def validate_set_use_as_collateral(self, reserves: ReserveLedger, reserve: Reserve,
                                       user_config: UserConfiguration | None, user: str,
                                       use_as_collateral: bool, now: int) -> None:
        require_usable(reserve)
        balance = reserve.deposits.balance_of(user, reserve.normalized_income(now))
        if balance == 0:
            raise UnderlyingBalanceZero(f"{user} has no {reserve.asset} deposit")
        if not use_as_collateral:
            self.validate_collateral_decrease(reserves, reserve, user_config, user, balance, now)

    def validate_liquidation(self, collateral_reserve: Reserve, debt_reserve: Reserve,
                             user_config: UserConfiguration | None,
                             account: AccountData, user_debt: int) -> None:
        require_usable(collateral_reserve)
        require_usable(debt_reserve)
        if account.health_factor >= HEALTH_FACTOR_LIQUIDATION_THRESHOLD:
            raise HealthFactorNotBelowThreshold(
                f"health factor {account.health_factor} is not below 1"
            )
        if (collateral_reserve.config.liquidation_threshold == 0
                or user_config is None
                or not user_config.is_using_as_collateral(collateral_reserve.id)):
            raise CollateralCannotBeLiquidated(
                f"{collateral_reserve.asset} is not enabled as collateral"
            )
        if user_debt == 0:
            raise NoDebtInAsset(f"no {debt_reserve.asset} debt to liquidate")

    def validate_flash_loan(self, reserves: list[Reserve], amounts: list[int],
                            modes: list[int]) -> None:
        if not reserves or len(reserves) != len(amounts) or len(reserves) != len(modes):
            raise InconsistentFlashLoanParams("assets, amounts and modes must align")
        assets = [r.asset for r in reserves]
        if len(set(assets)) != len(assets):
            raise InconsistentFlashLoanParams("duplicate assets in flash loan")
        for reserve, amount, mode in zip(reserves, amounts, modes):
            require_amount(amount)
            require_usable(reserve)
            if not reserve.config.flash_loan_enabled:
                raise FlashLoanNotEnabled(f"{reserve.asset}: flash loans disabled")
            if mode not in (RateMode.NONE, RateMode.STABLE, RateMode.VARIABLE):
                raise InvalidRateMode(f"invalid flash loan mode {mode}")
            if reserve.available_liquidity < amount:
                raise NotEnoughLiquidity(
                    f"{reserve.asset}: available {reserve.available_liquidity}, requested {amount}"
                )
