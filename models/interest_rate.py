"""
Utilization-driven interest rate model (two-slope kinked curve).
"""

from dataclasses import dataclass

import numpy as np

from config.params import DEFAULT_RATES, RateStrategyParams
from models.fixed_point import PERCENTAGE_FACTOR, RAY, percent_mul, ray_div, ray_mul


@dataclass(frozen=True)
class ReserveRates:
    """Rates produced for one reserve state, all in ray."""
    liquidity_rate: int
    variable_rate: int
    stable_rate: int
    utilization: int


class InterestRateModel:
    """
    Kinked utilization curve.

    U = total_debt / (available_liquidity + total_debt), clamped to [0, 1].

    Below or at optimal utilization:
        R_var = R_base + U * slope1
    Above optimal utilization:
        R_var = R_base + U_opt * slope1 + (U - U_opt) * slope2

    R_stable = R_var * stable_rate_premium
    R_liquidity = (R_var + R_stable) / 2 * U * (1 - reserve_factor)
    """

    def __init__(self, params: RateStrategyParams = DEFAULT_RATES):
        self.params = params
        self.base_rate = params.base_rate
        self.slope1 = params.slope1
        self.slope2 = params.slope2
        self.u_opt = params.optimal_utilization
        self.stable_premium = params.stable_rate_premium

    @staticmethod
    def utilization(available_liquidity: int, total_debt: int) -> int:
        """Borrowed share of the reserve, in ray."""
        denominator = available_liquidity + total_debt
        if denominator == 0 or total_debt <= 0:
            return 0
        return min(ray_div(total_debt, denominator), RAY)

    def variable_rate(self, utilization: int) -> int:
        u = max(0, min(utilization, RAY))
        if u <= self.u_opt:
            return self.base_rate + ray_mul(u, self.slope1)
        return (self.base_rate
                + ray_mul(self.u_opt, self.slope1)
                + ray_mul(u - self.u_opt, self.slope2))

    def stable_rate(self, variable_rate: int) -> int:
        return percent_mul(variable_rate, self.stable_premium)

    def calculate_rates(self, available_liquidity: int, total_debt: int,
                        reserve_factor: int = 0) -> ReserveRates:
        """Compute liquidity, variable and stable rates for a reserve state."""
        if available_liquidity == 0 and total_debt == 0:
            return ReserveRates(liquidity_rate=0, variable_rate=0, stable_rate=0, utilization=0)

        u = self.utilization(available_liquidity, total_debt)
        variable = self.variable_rate(u)
        stable = self.stable_rate(variable)
        gross_liquidity = ray_mul((variable + stable) // 2, u)
        liquidity = percent_mul(gross_liquidity, PERCENTAGE_FACTOR - reserve_factor)
        return ReserveRates(
            liquidity_rate=liquidity,
            variable_rate=variable,
            stable_rate=stable,
            utilization=u,
        )

    def rate_curve(self, n_points: int = 101, reserve_factor: int = 0) -> dict[str, np.ndarray]:
        """
        Sample the curve over utilization in [0, 1] for analysis.

        Returns float arrays (annualized decimals) keyed by
        utilization / variable_rate / stable_rate / liquidity_rate.
        """
        utilizations = np.linspace(0.0, 1.0, n_points)
        variable = np.empty(n_points, dtype=np.float64)
        stable = np.empty(n_points, dtype=np.float64)
        liquidity = np.empty(n_points, dtype=np.float64)
        for i, u in enumerate(utilizations):
            u_ray = int(round(float(u) * 10**9)) * 10**18
            var = self.variable_rate(u_ray)
            stb = self.stable_rate(var)
            liq = percent_mul(ray_mul((var + stb) // 2, u_ray), PERCENTAGE_FACTOR - reserve_factor)
            variable[i] = var / RAY
            stable[i] = stb / RAY
            liquidity[i] = liq / RAY
        return {
            "utilization": utilizations,
            "variable_rate": variable,
            "stable_rate": stable,
            "liquidity_rate": liquidity,
        }
