"""
Fixed-rate debt held as per-holder FIFO queues of lots.

Each lot accrues simple interest from its own origination time:

    debt(lot, t) = principal + principal * rate * (t - origin) / (SECONDS_PER_YEAR * RAY)

Repayment consumes lots oldest-first. A partially repaid lot keeps its
rate; its accrued interest is folded into the remaining principal and its
origin moves to the repayment time.

Reserve-wide totals are tracked incrementally. With p, r, t0 the
principal, rate and origin of every live lot:

    S0 = sum(p)       S1 = sum(p*r)       S2 = sum(p*r*t0)
    S3 = sum(p*r^2)   S4 = sum(p*r^2*t0)

    total(t)           = S0 + (S1*t - S2) / (Y*RAY)
    sum(debt_i * r_i)  = S1 + (S3*t - S4) / (Y*RAY)

so the total and its debt-weighted average rate are O(1) at any time.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from models.errors import InvalidAmount, RepayExceedsDebt, StableRateTooHigh, TransferNotAllowed
from models.fixed_point import RAY, SECONDS_PER_YEAR

_YEAR_RAY = SECONDS_PER_YEAR * RAY


@dataclass
class StableDebtLot:
    """One fixed-rate borrow."""
    principal: int
    rate: int
    origin_timestamp: int

    def debt_at(self, now: int) -> int:
        elapsed = max(now - self.origin_timestamp, 0)
        return self.principal + self.principal * self.rate * elapsed // _YEAR_RAY


class StableRateLotLedger:
    """Per-holder ordered lots plus O(1) reserve-wide aggregates."""

    def __init__(self, asset: str, max_rate: int = RAY):
        self.asset = asset
        self.max_rate = max_rate
        self._lots: dict[str, deque[StableDebtLot]] = {}
        self._s0 = 0
        self._s1 = 0
        self._s2 = 0
        self._s3 = 0
        self._s4 = 0

    def _add(self, lot: StableDebtLot) -> None:
        p, r, t0 = lot.principal, lot.rate, lot.origin_timestamp
        self._s0 += p
        self._s1 += p * r
        self._s2 += p * r * t0
        self._s3 += p * r * r
        self._s4 += p * r * r * t0

    def _remove(self, lot: StableDebtLot) -> None:
        p, r, t0 = lot.principal, lot.rate, lot.origin_timestamp
        self._s0 -= p
        self._s1 -= p * r
        self._s2 -= p * r * t0
        self._s3 -= p * r * r
        self._s4 -= p * r * r * t0

    def lots(self, holder: str) -> list[StableDebtLot]:
        return list(self._lots.get(holder, ()))

    def holders(self) -> list[str]:
        return list(self._lots)

    def principal_balance_of(self, holder: str) -> int:
        return sum(lot.principal for lot in self._lots.get(holder, ()))

    def debt_with_interest(self, holder: str, now: int) -> int:
        return sum(lot.debt_at(now) for lot in self._lots.get(holder, ()))

    def balance_of(self, holder: str, now: int) -> int:
        return self.debt_with_interest(holder, now)

    def weighted_average_rate(self, holder: str, now: int) -> int:
        """Holder's average rate, weighted by post-interest debt of each lot."""
        weighted = 0
        total = 0
        for lot in self._lots.get(holder, ()):
            debt = lot.debt_at(now)
            weighted += debt * lot.rate
            total += debt
        if total == 0:
            return 0
        return weighted // total

    def mint(self, holder: str, amount: int, rate: int, now: int) -> tuple[bool, int]:
        """Append a lot; returns (first borrow for holder, holder's new average rate)."""
        if amount <= 0:
            raise InvalidAmount(f"{self.asset}: stable mint of {amount}")
        if rate > self.max_rate:
            raise StableRateTooHigh(f"{self.asset}: rate {rate} above ceiling {self.max_rate}")
        queue = self._lots.setdefault(holder, deque())
        is_first = len(queue) == 0
        lot = StableDebtLot(principal=amount, rate=rate, origin_timestamp=now)
        queue.append(lot)
        self._add(lot)
        return is_first, self.weighted_average_rate(holder, now)

    def burn(self, holder: str, amount: int, now: int) -> int:
        """Repay `amount` oldest-lot-first; returns holder's remaining debt."""
        outstanding = self.debt_with_interest(holder, now)
        if amount > outstanding:
            raise RepayExceedsDebt(
                f"{self.asset}: {holder} repays {amount}, owes {outstanding}"
            )
        queue = self._lots.get(holder)
        remaining = amount
        while queue and remaining > 0:
            lot = queue[0]
            debt = lot.debt_at(now)
            self._remove(lot)
            if remaining >= debt:
                queue.popleft()
                remaining -= debt
                continue
            queue[0] = StableDebtLot(
                principal=debt - remaining,
                rate=lot.rate,
                origin_timestamp=now,
            )
            self._add(queue[0])
            remaining = 0
        if queue is not None and not queue:
            del self._lots[holder]
        return outstanding - amount

    def total_supply(self, now: int) -> int:
        return self._s0 + (self._s1 * now - self._s2) // _YEAR_RAY

    def average_rate(self, now: int) -> int:
        """Reserve-wide stable rate, weighted by post-interest debt."""
        denominator = self._s0 * _YEAR_RAY + self._s1 * now - self._s2
        if denominator <= 0:
            return 0
        numerator = self._s1 * _YEAR_RAY + self._s3 * now - self._s4
        return numerator // denominator

    def total_supply_and_avg_rate(self, now: int) -> tuple[int, int]:
        return self.total_supply(now), self.average_rate(now)

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        raise TransferNotAllowed(f"{self.asset}: stable debt is not transferable")
