"""
Protocol parameters for the lending ledger.

Units:
- percentages: 4 decimals (10_000 = 100%)
- rates and utilization: ray (1e27 = 100% annualized)
- health factor: wad (1e18 = 1.0)
- caps: whole tokens (0 = uncapped)

load_params() reads LEDGER_* overrides from the environment (and an
optional .env file) on top of the defaults below.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path

from dotenv import load_dotenv

from models.fixed_point import PERCENTAGE_FACTOR, RAY, WAD

LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "LEDGER_"


@dataclass(frozen=True)
class ReserveConfig:
    """Decoded risk configuration of a single reserve."""
    decimals: int = 18
    ltv: int = 0
    # Max borrow power contributed by this collateral
    liquidation_threshold: int = 0
    # HF = collateral * threshold / debt
    liquidation_bonus: int = 0
    # > 10_000 once collateral is enabled, e.g. 10_500 = 5% bonus
    reserve_factor: int = 1_500
    # Share of interest withheld from depositors
    supply_cap: int = 0
    borrow_cap: int = 0
    active: bool = True
    frozen: bool = False
    paused: bool = False
    borrowing_enabled: bool = False
    stable_borrow_enabled: bool = False
    flash_loan_enabled: bool = True

    @property
    def unit(self) -> int:
        return 10 ** self.decimals


@dataclass(frozen=True)
class RateStrategyParams:
    """Two-slope utilization curve, all values in ray."""
    base_rate: int = 0
    slope1: int = 4 * RAY // 100
    # Rate added per 100% utilization below the kink
    slope2: int = 75 * RAY // 100
    # Rate added per 100% utilization above the kink
    optimal_utilization: int = 80 * RAY // 100
    stable_rate_premium: int = 12_500
    # stable = variable * 1.25


@dataclass(frozen=True)
class PoolParams:
    """Pool-wide parameters."""
    flash_loan_premium_bps: int = 9
    # 0.09% of the borrowed amount
    flash_loan_premium_to_protocol_bps: int = 0
    # Share of the premium accrued to the treasury instead of depositors
    liquidation_protocol_fee_bps: int = 0
    # Share of the liquidation bonus routed to the treasury
    close_factor_hf_threshold: int = 95 * WAD // 100
    default_close_factor: int = 5_000
    max_close_factor: int = PERCENTAGE_FACTOR
    max_stable_loan_percent: int = 2_500
    # Max single stable loan as a share of available liquidity
    max_stable_rate: int = RAY
    max_reserves: int = 128
    compound_variable_debt: bool = True
    treasury: str = "treasury"
    pool_address: str = "pool"


def _coerce(raw: str, current):
    if isinstance(current, bool):
        lowered = raw.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if isinstance(current, int):
        return int(raw.strip().replace("_", ""))
    return raw.strip()


def load_params(env_file: str | Path | None = None, defaults: PoolParams | None = None) -> PoolParams:
    """
    Build PoolParams from defaults plus LEDGER_<FIELD> environment overrides.

    Malformed values are logged and ignored.
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    params = defaults or PoolParams()
    overrides = {}
    for f in fields(PoolParams):
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        current = getattr(params, f.name)
        try:
            overrides[f.name] = _coerce(raw, current)
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring malformed %s%s=%r", ENV_PREFIX, f.name.upper(), raw)
    if overrides:
        LOGGER.info("Loaded pool parameter overrides: %s", sorted(overrides))
        params = replace(params, **overrides)
    return params


# Convenient default instances (used throughout codebase)
POOL = PoolParams()
DEFAULT_RATES = RateStrategyParams()
DEFAULT_RESERVE = ReserveConfig()
