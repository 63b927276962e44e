"""
Per-user reserve usage bitset.

Two bits per reserve id: bit 2*id marks borrowing, bit 2*id + 1 marks
use as collateral.
"""

from dataclasses import dataclass

MAX_RESERVE_ID = 127

_BORROWING_MASK = int("01" * 128, 2)


@dataclass
class UserConfiguration:
    data: int = 0

    @staticmethod
    def _check(reserve_id: int) -> None:
        if not 0 <= reserve_id <= MAX_RESERVE_ID:
            raise ValueError(f"reserve id {reserve_id} out of range")

    def set_borrowing(self, reserve_id: int, borrowing: bool) -> None:
        self._check(reserve_id)
        bit = 1 << (reserve_id * 2)
        self.data = self.data | bit if borrowing else self.data & ~bit

    def set_using_as_collateral(self, reserve_id: int, using: bool) -> None:
        self._check(reserve_id)
        bit = 1 << (reserve_id * 2 + 1)
        self.data = self.data | bit if using else self.data & ~bit

    def is_borrowing(self, reserve_id: int) -> bool:
        self._check(reserve_id)
        return bool((self.data >> (reserve_id * 2)) & 1)

    def is_using_as_collateral(self, reserve_id: int) -> bool:
        self._check(reserve_id)
        return bool((self.data >> (reserve_id * 2 + 1)) & 1)

    def is_using_as_collateral_or_borrowing(self, reserve_id: int) -> bool:
        self._check(reserve_id)
        return bool((self.data >> (reserve_id * 2)) & 3)

    def is_borrowing_any(self) -> bool:
        return bool(self.data & _BORROWING_MASK)

    def is_empty(self) -> bool:
        return self.data == 0
