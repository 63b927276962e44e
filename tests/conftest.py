"""Shared fixtures: a manual clock, settable prices and a three-reserve pool."""

import pytest

from config.params import PoolParams, ReserveConfig
from data.price_source import StaticPriceSource
from models.configurator import PoolConfigurator
from models.pool import LendingPool

T0 = 1_700_000_000

WETH_CONFIG = ReserveConfig(
    decimals=18, ltv=8_000, liquidation_threshold=8_500, liquidation_bonus=10_500,
    borrowing_enabled=True, stable_borrow_enabled=True,
)
DAI_CONFIG = ReserveConfig(
    decimals=18, ltv=7_500, liquidation_threshold=8_000, liquidation_bonus=10_500,
    borrowing_enabled=True, stable_borrow_enabled=True,
)
USDC_CONFIG = ReserveConfig(
    decimals=6, ltv=8_000, liquidation_threshold=8_500, liquidation_bonus=10_400,
    borrowing_enabled=True,
)


class ManualClock:
    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


def units(amount, decimals: int = 18) -> int:
    return int(amount * 10**decimals)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def prices():
    return StaticPriceSource({
        "WETH": 2_000 * 10**8,
        "DAI": 1 * 10**8,
        "USDC": 1 * 10**8,
    })


@pytest.fixture
def params():
    return PoolParams()


@pytest.fixture
def pool(prices, clock, params):
    return LendingPool(prices, params=params, clock=clock)


@pytest.fixture
def configurator(pool):
    configurator = PoolConfigurator(pool)
    configurator.init_reserve("WETH", WETH_CONFIG)
    configurator.init_reserve("DAI", DAI_CONFIG)
    configurator.init_reserve("USDC", USDC_CONFIG)
    return configurator


@pytest.fixture
def funded_pool(pool, configurator):
    """Pool with liquidity: lp supplies 1000 WETH, 1M DAI and 1M USDC."""
    bank = pool.bank
    bank.mint("WETH", "lp", units(1_000))
    bank.mint("DAI", "lp", units(1_000_000))
    bank.mint("USDC", "lp", units(1_000_000, 6))
    pool.deposit("lp", "WETH", units(1_000))
    pool.deposit("lp", "DAI", units(1_000_000))
    pool.deposit("lp", "USDC", units(1_000_000, 6))
    return pool
