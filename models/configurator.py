"""
Administrative reserve configuration.

Holding a PoolConfigurator is the capability to reconfigure its pool;
callers are expected to have authorized the action already.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from config.params import DEFAULT_RATES, ReserveConfig, RateStrategyParams
from models.errors import InvalidConfiguration, ReserveLiquidityNotZero
from models.fixed_point import PERCENTAGE_FACTOR, RAY, percent_mul
from models.interest_rate import InterestRateModel
from models.pool import LendingPool

LOGGER = logging.getLogger(__name__)


def validate_reserve_config(config: ReserveConfig) -> None:
    if config.decimals < 0 or config.decimals > 77:
        raise InvalidConfiguration(f"invalid decimals {config.decimals}")
    if config.ltv > config.liquidation_threshold:
        raise InvalidConfiguration("ltv must not exceed liquidation threshold")
    if config.liquidation_threshold != 0:
        if config.liquidation_bonus <= PERCENTAGE_FACTOR:
            raise InvalidConfiguration("liquidation bonus must exceed 100%")
        if percent_mul(config.liquidation_threshold, config.liquidation_bonus) > PERCENTAGE_FACTOR:
            raise InvalidConfiguration("threshold * bonus must not exceed 100%")
    if not 0 <= config.reserve_factor <= PERCENTAGE_FACTOR:
        raise InvalidConfiguration(f"invalid reserve factor {config.reserve_factor}")
    if config.supply_cap < 0 or config.borrow_cap < 0:
        raise InvalidConfiguration("caps must be non-negative")


def validate_rate_params(params: RateStrategyParams) -> None:
    if not 0 < params.optimal_utilization <= RAY:
        raise InvalidConfiguration("optimal utilization must be in (0, 1]")
    if min(params.base_rate, params.slope1, params.slope2) < 0:
        raise InvalidConfiguration("rates must be non-negative")
    if params.stable_rate_premium < PERCENTAGE_FACTOR:
        raise InvalidConfiguration("stable rate premium must be at least 100%")


class PoolConfigurator:
    def __init__(self, pool: LendingPool):
        self.pool = pool

    def init_reserve(self, asset: str, config: ReserveConfig,
                     rate_params: RateStrategyParams = DEFAULT_RATES) -> int:
        """Register a new reserve; returns its id."""
        validate_reserve_config(config)
        validate_rate_params(rate_params)
        with self.pool._operation("init_reserve") as (state, now):
            reserve = state.reserves.init_reserve(asset, config, InterestRateModel(rate_params), now)
            return reserve.id

    def _update_config(self, asset: str, **changes) -> ReserveConfig:
        with self.pool._operation("configure_reserve") as (state, now):
            reserve = state.reserves.accrue(asset, now)
            config = replace(reserve.config, **changes)
            validate_reserve_config(config)
            if changes.get("active") is False and (
                    reserve.available_liquidity or reserve.total_debt()):
                raise ReserveLiquidityNotZero(f"{asset} still holds liquidity or debt")
            reserve.config = config
            reserve.recompute_rates()
            LOGGER.info("Configured %s: %s", asset, changes)
            return config

    def configure_reserve_as_collateral(self, asset: str, ltv: int,
                                        liquidation_threshold: int,
                                        liquidation_bonus: int) -> ReserveConfig:
        return self._update_config(
            asset, ltv=ltv, liquidation_threshold=liquidation_threshold,
            liquidation_bonus=liquidation_bonus,
        )

    def set_reserve_factor(self, asset: str, reserve_factor: int) -> ReserveConfig:
        return self._update_config(asset, reserve_factor=reserve_factor)

    def set_supply_cap(self, asset: str, supply_cap: int) -> ReserveConfig:
        return self._update_config(asset, supply_cap=supply_cap)

    def set_borrow_cap(self, asset: str, borrow_cap: int) -> ReserveConfig:
        return self._update_config(asset, borrow_cap=borrow_cap)

    def set_borrowing_enabled(self, asset: str, enabled: bool,
                              stable_enabled: bool | None = None) -> ReserveConfig:
        changes = {"borrowing_enabled": enabled}
        if stable_enabled is not None:
            changes["stable_borrow_enabled"] = stable_enabled
        return self._update_config(asset, **changes)

    def set_flash_loan_enabled(self, asset: str, enabled: bool) -> ReserveConfig:
        return self._update_config(asset, flash_loan_enabled=enabled)

    def set_reserve_active(self, asset: str, active: bool) -> ReserveConfig:
        return self._update_config(asset, active=active)

    def set_reserve_freeze(self, asset: str, frozen: bool) -> ReserveConfig:
        return self._update_config(asset, frozen=frozen)

    def set_reserve_pause(self, asset: str, paused: bool) -> ReserveConfig:
        return self._update_config(asset, paused=paused)

    def set_rate_strategy(self, asset: str, rate_params: RateStrategyParams) -> None:
        validate_rate_params(rate_params)
        with self.pool._operation("set_rate_strategy") as (state, now):
            reserve = state.reserves.accrue(asset, now)
            reserve.rate_model = InterestRateModel(rate_params)
            reserve.recompute_rates()
            LOGGER.info("Updated rate strategy of %s", asset)
