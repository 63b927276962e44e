"""
Fixed-point arithmetic for balances, indices and rates.

Two precisions are used throughout the ledger:
- WAD: 18 decimals (balances, health factor)
- RAY: 27 decimals (indices, annualized rates)

Percentages use 4 decimals (10_000 = 100%).

Multiplication and division round half-up:
    wad_mul(a, b) = (a * b + HALF_WAD) // WAD
    ray_div(a, b) = (a * RAY + b // 2) // b
All values model unsigned 256-bit integers: results outside
[0, MAX_UINT256] raise ArithmeticOverflow instead of wrapping.
"""

from models.errors import ArithmeticOverflow, DivisionByZero

MAX_UINT256 = 2**256 - 1

WAD = 10**18
HALF_WAD = WAD // 2

RAY = 10**27
HALF_RAY = RAY // 2

WAD_RAY_RATIO = 10**9

PERCENTAGE_FACTOR = 10_000
HALF_PERCENTAGE_FACTOR = PERCENTAGE_FACTOR // 2

SECONDS_PER_YEAR = 365 * 24 * 60 * 60


def _check_operands(*values: int) -> None:
    for value in values:
        if value < 0 or value > MAX_UINT256:
            raise ArithmeticOverflow(f"operand {value} outside uint256 range")


def _check_result(value: int, op: str) -> int:
    if value > MAX_UINT256:
        raise ArithmeticOverflow(f"{op} overflow")
    return value


def wad_mul(a: int, b: int) -> int:
    _check_operands(a, b)
    return _check_result((a * b + HALF_WAD) // WAD, "wad_mul")


def wad_div(a: int, b: int) -> int:
    _check_operands(a, b)
    if b == 0:
        raise DivisionByZero("wad_div by zero")
    return _check_result((a * WAD + b // 2) // b, "wad_div")


def ray_mul(a: int, b: int) -> int:
    _check_operands(a, b)
    return _check_result((a * b + HALF_RAY) // RAY, "ray_mul")


def ray_div(a: int, b: int) -> int:
    _check_operands(a, b)
    if b == 0:
        raise DivisionByZero("ray_div by zero")
    return _check_result((a * RAY + b // 2) // b, "ray_div")


def ray_mul_floor(a: int, b: int) -> int:
    _check_operands(a, b)
    return _check_result((a * b) // RAY, "ray_mul_floor")


def ray_mul_ceil(a: int, b: int) -> int:
    _check_operands(a, b)
    product = a * b
    return _check_result(product // RAY + (product % RAY != 0), "ray_mul_ceil")


def ray_div_floor(a: int, b: int) -> int:
    """Divide two rays rounding down (mints of deposits, burns of debt)."""
    _check_operands(a, b)
    if b == 0:
        raise DivisionByZero("ray_div_floor by zero")
    return _check_result((a * RAY) // b, "ray_div_floor")


def ray_div_ceil(a: int, b: int) -> int:
    """Divide two rays rounding up (burns of deposits, mints of debt)."""
    _check_operands(a, b)
    if b == 0:
        raise DivisionByZero("ray_div_ceil by zero")
    numerator = a * RAY
    return _check_result(numerator // b + (numerator % b != 0), "ray_div_ceil")


def ray_to_wad(a: int) -> int:
    _check_operands(a)
    result, remainder = divmod(a, WAD_RAY_RATIO)
    if remainder >= WAD_RAY_RATIO // 2:
        result += 1
    return result


def wad_to_ray(a: int) -> int:
    _check_operands(a)
    return _check_result(a * WAD_RAY_RATIO, "wad_to_ray")


def percent_mul(value: int, percentage: int) -> int:
    _check_operands(value, percentage)
    return _check_result(
        (value * percentage + HALF_PERCENTAGE_FACTOR) // PERCENTAGE_FACTOR,
        "percent_mul",
    )


def percent_div(value: int, percentage: int) -> int:
    _check_operands(value, percentage)
    if percentage == 0:
        raise DivisionByZero("percent_div by zero")
    return _check_result(
        (value * PERCENTAGE_FACTOR + percentage // 2) // percentage,
        "percent_div",
    )


def linear_interest(rate: int, last_update: int, now: int) -> int:
    """
    Simple interest factor in ray:
        1 + rate * elapsed / SECONDS_PER_YEAR
    """
    elapsed = now - last_update
    if elapsed <= 0:
        return RAY
    return _check_result(RAY + rate * elapsed // SECONDS_PER_YEAR, "linear_interest")


def compounded_interest(rate: int, last_update: int, now: int) -> int:
    """
    Per-second compounding approximated by the first three binomial terms:

        (1 + x)^n ~= 1 + n*x + n*(n-1)/2*x^2 + n*(n-1)*(n-2)/6*x^3

    with x = rate / SECONDS_PER_YEAR. Slightly under-estimates true
    compounding, never exceeds it.
    """
    exp = now - last_update
    if exp <= 0:
        return RAY

    exp_minus_one = exp - 1
    exp_minus_two = exp - 2 if exp > 2 else 0

    # Products stay unscaled until the final division; dividing by
    # SECONDS_PER_YEAR first truncates x^2 and x^3 to nothing.
    year = SECONDS_PER_YEAR
    second_term = exp * exp_minus_one * rate * rate // (2 * year * year * RAY)
    third_term = (exp * exp_minus_one * exp_minus_two * rate * rate * rate
                  // (6 * year * year * year * RAY * RAY))

    return _check_result(
        RAY + rate * exp // SECONDS_PER_YEAR + second_term + third_term,
        "compounded_interest",
    )
