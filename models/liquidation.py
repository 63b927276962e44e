"""
Liquidation sizing and execution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from config.params import POOL, PoolParams
from models.errors import LiquidationAmountTooSmall
from models.fixed_point import percent_div, percent_mul
from models.reserve import Reserve
from models.risk import HEALTH_FACTOR_LIQUIDATION_THRESHOLD, RiskAggregator
from models.underlying import TokenBank
from models.user_config import UserConfiguration
from models.validation import ValidationGate, require_amount

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiquidationResult:
    """Result of a single liquidation call."""
    debt_repaid: int
    collateral_seized: int
    protocol_fee: int
    close_factor: int
    health_factor_before: int
    receive_deposit: bool


@dataclass(frozen=True)
class CollateralQuote:
    collateral_amount: int
    debt_amount_needed: int
    protocol_fee: int


class LiquidationEngine:
    """
    Close factor: 100% if HF < 0.95, else 50%, 0% when HF >= 1.

    Collateral seized:
        seize = debt_to_cover * debt_price / 10^debt_decimals
                * liquidation_bonus * 10^collateral_decimals / collateral_price

    If the user holds less collateral than `seize`, all of it is taken and
    the debt covered is scaled back by inverting the formula above.
    The protocol fee is a share of the bonus part of the seized collateral.
    """

    def __init__(self, risk: RiskAggregator, validator: ValidationGate,
                 params: PoolParams = POOL):
        self.risk = risk
        self.validator = validator
        self.params = params

    def close_factor(self, hf: int) -> int:
        """Share of debt liquidatable in one call, in percentage units."""
        if hf >= HEALTH_FACTOR_LIQUIDATION_THRESHOLD:
            return 0
        if hf < self.params.close_factor_hf_threshold:
            return self.params.max_close_factor
        return self.params.default_close_factor

    def calculate_available_collateral(self, collateral_reserve: Reserve, debt_reserve: Reserve,
                                       debt_to_cover: int, user_collateral_balance: int) -> CollateralQuote:
        collateral_price = self.risk.price_of(collateral_reserve.asset)
        debt_price = self.risk.price_of(debt_reserve.asset)
        collateral_unit = collateral_reserve.config.unit
        debt_unit = debt_reserve.config.unit
        bonus = collateral_reserve.config.liquidation_bonus

        base_collateral = (debt_price * debt_to_cover * collateral_unit) // (collateral_price * debt_unit)
        max_collateral = percent_mul(base_collateral, bonus)

        if max_collateral > user_collateral_balance:
            collateral_amount = user_collateral_balance
            debt_needed = percent_div(
                (collateral_price * collateral_amount * debt_unit) // (debt_price * collateral_unit),
                bonus,
            )
        else:
            collateral_amount = max_collateral
            debt_needed = debt_to_cover

        fee = 0
        if self.params.liquidation_protocol_fee_bps:
            bonus_collateral = collateral_amount - percent_div(collateral_amount, bonus)
            fee = percent_mul(bonus_collateral, self.params.liquidation_protocol_fee_bps)
        return CollateralQuote(
            collateral_amount=collateral_amount,
            debt_amount_needed=debt_needed,
            protocol_fee=fee,
        )

    def execute(self, state, now: int, liquidator: str, collateral_asset: str,
                debt_asset: str, user: str, debt_to_cover: int,
                receive_deposit: bool) -> LiquidationResult:
        require_amount(debt_to_cover)
        reserves = state.reserves
        bank: TokenBank = state.bank
        collateral_reserve = reserves.accrue(collateral_asset, now)
        debt_reserve = reserves.accrue(debt_asset, now)
        user_config: UserConfiguration | None = state.users.get(user)

        account = self.risk.account_data(reserves, user_config, user, now)
        stable_debt, variable_debt = debt_reserve.user_debt(user, now)
        self.validator.validate_liquidation(
            collateral_reserve, debt_reserve, user_config, account, stable_debt + variable_debt,
        )

        close_factor = self.close_factor(account.health_factor)
        max_debt = percent_mul(stable_debt + variable_debt, close_factor)
        actual_debt = min(debt_to_cover, max_debt)

        user_collateral = collateral_reserve.deposits.balance_of(user)
        quote = self.calculate_available_collateral(
            collateral_reserve, debt_reserve, actual_debt, user_collateral,
        )
        actual_debt = min(actual_debt, quote.debt_amount_needed)
        seized = quote.collateral_amount
        if actual_debt == 0:
            raise LiquidationAmountTooSmall(
                f"{user}: {seized} {collateral_asset} is worth less than one unit of {debt_asset}"
            )
        to_liquidator = seized - quote.protocol_fee

        # Debt side: variable first, then stable lots oldest-first.
        if actual_debt > 0:
            variable_part = min(actual_debt, variable_debt)
            if variable_part:
                debt_reserve.variable_debt.burn(user, variable_part, debt_reserve.variable_borrow_index)
            if actual_debt > variable_part:
                debt_reserve.stable_debt.burn(user, actual_debt - variable_part, now)
            bank.transfer(debt_asset, liquidator, self.params.pool_address, actual_debt)
            debt_reserve.adjust_liquidity(actual_debt)
        if stable_debt + variable_debt == actual_debt:
            state.user_config(user).set_borrowing(debt_reserve.id, False)

        # Collateral side; the fee moves first so a full seizure takes exactly what is left.
        deposits = collateral_reserve.deposits
        if quote.protocol_fee:
            deposits.transfer(user, self.params.treasury, quote.protocol_fee)
        if seized == user_collateral:
            to_liquidator = deposits.balance_of(user)
        if to_liquidator > 0:
            if receive_deposit:
                if deposits.transfer(user, liquidator, to_liquidator):
                    state.user_config(liquidator).set_using_as_collateral(collateral_reserve.id, True)
            else:
                deposits.burn(user, to_liquidator, collateral_reserve.liquidity_index)
                collateral_reserve.adjust_liquidity(-to_liquidator)
                bank.transfer(collateral_asset, self.params.pool_address, liquidator, to_liquidator)
        if deposits.scaled_balance_of(user) == 0:
            state.user_config(user).set_using_as_collateral(collateral_reserve.id, False)

        debt_reserve.recompute_rates()
        if collateral_reserve is not debt_reserve:
            collateral_reserve.recompute_rates()

        LOGGER.warning(
            "Liquidated %s: repaid %d %s, seized %d %s (fee %d), HF before %d",
            user, actual_debt, debt_asset, seized, collateral_asset,
            quote.protocol_fee, account.health_factor,
        )
        return LiquidationResult(
            debt_repaid=actual_debt,
            collateral_seized=seized,
            protocol_fee=quote.protocol_fee,
            close_factor=close_factor,
            health_factor_before=account.health_factor,
            receive_deposit=receive_deposit,
        )
