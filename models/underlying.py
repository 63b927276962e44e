"""
In-memory fungible token balances standing in for the underlying assets.
"""

from __future__ import annotations

from models.errors import InsufficientBalance, InvalidAmount


class TokenBank:
    """
    Balances keyed by (asset, holder).

    While a journal is open every write records the balance it replaces,
    so `rollback` undoes exactly the keys an operation touched.
    """

    def __init__(self):
        self._balances: dict[tuple[str, str], int] = {}
        self._journal: dict[tuple[str, str], int | None] | None = None

    def balance_of(self, asset: str, holder: str) -> int:
        return self._balances.get((asset, holder), 0)

    def _set(self, key: tuple[str, str], value: int) -> None:
        if self._journal is not None and key not in self._journal:
            self._journal[key] = self._balances.get(key)
        self._balances[key] = value

    def mint(self, asset: str, holder: str, amount: int) -> None:
        """Issue new units (external supply, e.g. a faucet in simulations)."""
        if amount < 0:
            raise InvalidAmount(f"cannot mint {amount} {asset}")
        self._set((asset, holder), self.balance_of(asset, holder) + amount)

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount(f"cannot transfer {amount} {asset}")
        available = self.balance_of(asset, sender)
        if amount > available:
            raise InsufficientBalance(
                f"{sender} holds {available} {asset}, needs {amount}"
            )
        self._set((asset, sender), available - amount)
        self._set((asset, recipient), self.balance_of(asset, recipient) + amount)

    def begin(self) -> None:
        self._journal = {}

    def commit(self) -> None:
        self._journal = None

    def rollback(self) -> None:
        for key, previous in (self._journal or {}).items():
            if previous is None:
                self._balances.pop(key, None)
            else:
                self._balances[key] = previous
        self._journal = None
