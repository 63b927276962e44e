"""
Interest-bearing balances stored in scaled form.

A holder's nominal balance is `scaled * index / RAY`; interest accrues to
every holder at once when the index grows, without per-holder writes.

Rounding is always in the protocol's favour:

    operation        deposit receipts   variable debt
    mint (scale)     floor              ceil
    burn (scale)     ceil               floor
    balance_of       floor              ceil

so a depositor can never withdraw more than was credited and a borrower
can never owe less than was lent.
"""

from __future__ import annotations

from models.errors import (
    IndexMustNotDecrease,
    InsufficientScaledBalance,
    InvalidAmount,
    TransferNotAllowed,
)
from models.fixed_point import (
    RAY,
    ray_div_ceil,
    ray_div_floor,
    ray_mul_ceil,
    ray_mul_floor,
)


class ScaledBalanceLedger:
    """Base scaled-balance ledger; subclasses fix rounding and transferability."""

    transferable = False

    def __init__(self, asset: str, index: int = RAY):
        self.asset = asset
        self.index = index
        self._scaled: dict[str, int] = {}
        self._scaled_total = 0
        self._allowances: dict[tuple[str, str], int] = {}

    # Rounding hooks -------------------------------------------------------
    def _scale_mint(self, amount: int, index: int) -> int:
        raise NotImplementedError

    def _scale_burn(self, amount: int, index: int) -> int:
        raise NotImplementedError

    def _nominal(self, scaled: int, index: int) -> int:
        raise NotImplementedError

    # Index ---------------------------------------------------------------
    def update_index(self, new_index: int) -> None:
        if new_index < self.index:
            raise IndexMustNotDecrease(
                f"{self.asset}: index {new_index} < current {self.index}"
            )
        self.index = new_index

    def _resolve_index(self, index: int | None) -> int:
        return self.index if index is None else index

    # Views ---------------------------------------------------------------
    def scaled_balance_of(self, holder: str) -> int:
        return self._scaled.get(holder, 0)

    @property
    def scaled_total_supply(self) -> int:
        return self._scaled_total

    def balance_of(self, holder: str, index: int | None = None) -> int:
        return self._nominal(self.scaled_balance_of(holder), self._resolve_index(index))

    def total_supply(self, index: int | None = None) -> int:
        return self._nominal(self._scaled_total, self._resolve_index(index))

    def holders(self) -> list[str]:
        return [h for h, s in self._scaled.items() if s > 0]

    # Mutations -----------------------------------------------------------
    def mint(self, holder: str, amount: int, index: int) -> bool:
        """Credit `amount` at `index`; returns True if the holder had no balance."""
        self.update_index(index)
        scaled = self._scale_mint(amount, index)
        if scaled == 0:
            raise InvalidAmount(f"{self.asset}: mint of {amount} scales to zero")
        return self.mint_scaled(holder, scaled)

    def mint_scaled(self, holder: str, scaled: int) -> bool:
        previous = self.scaled_balance_of(holder)
        self._scaled[holder] = previous + scaled
        self._scaled_total += scaled
        return previous == 0

    def burn(self, holder: str, amount: int, index: int) -> int:
        """Debit `amount` at `index`; returns the scaled amount removed."""
        self.update_index(index)
        scaled = self._scale_burn(amount, index)
        previous = self.scaled_balance_of(holder)
        if scaled > previous:
            raise InsufficientScaledBalance(
                f"{self.asset}: {holder} burns {scaled} scaled, holds {previous}"
            )
        self._set_scaled(holder, previous - scaled)
        self._scaled_total -= scaled
        return scaled

    def _set_scaled(self, holder: str, scaled: int) -> None:
        if scaled == 0:
            self._scaled.pop(holder, None)
        else:
            self._scaled[holder] = scaled

    # Transfers -----------------------------------------------------------
    def transfer(self, sender: str, recipient: str, amount: int,
                 index: int | None = None) -> bool:
        """Move a nominal amount between holders; returns True on recipient's first receipt."""
        raise TransferNotAllowed(f"{self.asset}: balance is not transferable")

    def approve(self, owner: str, spender: str, amount: int) -> None:
        raise TransferNotAllowed(f"{self.asset}: balance is not transferable")

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def transfer_from(self, spender: str, sender: str, recipient: str, amount: int,
                      index: int | None = None) -> bool:
        raise TransferNotAllowed(f"{self.asset}: balance is not transferable")


class DepositLedger(ScaledBalanceLedger):
    """Transferable deposit receipts, indexed by the liquidity index."""

    transferable = True

    def _scale_mint(self, amount: int, index: int) -> int:
        return ray_div_floor(amount, index)

    def _scale_burn(self, amount: int, index: int) -> int:
        return ray_div_ceil(amount, index)

    def _nominal(self, scaled: int, index: int) -> int:
        return ray_mul_floor(scaled, index)

    def transfer(self, sender: str, recipient: str, amount: int,
                 index: int | None = None) -> bool:
        index = self._resolve_index(index)
        scaled = ray_div_ceil(amount, index)
        previous = self.scaled_balance_of(sender)
        if scaled > previous:
            raise InsufficientScaledBalance(
                f"{self.asset}: {sender} transfers {scaled} scaled, holds {previous}"
            )
        if sender == recipient:
            return False
        recipient_previous = self.scaled_balance_of(recipient)
        self._set_scaled(sender, previous - scaled)
        self._set_scaled(recipient, recipient_previous + scaled)
        return recipient_previous == 0 and scaled > 0

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount("allowance must be non-negative")
        self._allowances[(owner, spender)] = amount

    def transfer_from(self, spender: str, sender: str, recipient: str, amount: int,
                      index: int | None = None) -> bool:
        allowed = self.allowance(sender, spender)
        if amount > allowed:
            raise InsufficientScaledBalance(
                f"{self.asset}: allowance {allowed} < {amount} for {spender}"
            )
        first = self.transfer(sender, recipient, amount, index)
        self._allowances[(sender, spender)] = allowed - amount
        return first


class VariableDebtLedger(ScaledBalanceLedger):
    """Non-transferable variable-rate debt, indexed by the variable borrow index."""

    def _scale_mint(self, amount: int, index: int) -> int:
        return ray_div_ceil(amount, index)

    def _scale_burn(self, amount: int, index: int) -> int:
        return ray_div_floor(amount, index)

    def _nominal(self, scaled: int, index: int) -> int:
        return ray_mul_ceil(scaled, index)

    def burn(self, holder: str, amount: int, index: int) -> int:
        owed = self.balance_of(holder, index)
        if amount > owed:
            raise InsufficientScaledBalance(
                f"{self.asset}: {holder} repays {amount}, owes {owed}"
            )
        if amount < owed:
            return super().burn(holder, amount, index)
        # Full repayment clears residual scaled dust left by ceil rounding.
        self.update_index(index)
        scaled = self.scaled_balance_of(holder)
        self._set_scaled(holder, 0)
        self._scaled_total -= scaled
        return scaled
