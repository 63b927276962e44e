"""
Flash loans: uncollateralized loans that must be settled within the same
operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from config.params import POOL, PoolParams
from models.errors import FlashLoanCallbackFailed, FlashLoanRepaymentMismatch
from models.fixed_point import PERCENTAGE_FACTOR, percent_mul, ray_div_floor, ray_mul
from models.reserve import Reserve
from models.validation import RateMode, ValidationGate

LOGGER = logging.getLogger(__name__)


class FlashLoanReceiver(Protocol):
    """Receiver contract: holds `address` and settles inside `on_flash_loan`."""

    address: str

    def on_flash_loan(self, assets: list[str], amounts: list[int], premiums: list[int],
                      initiator: str, params: bytes) -> bool:
        ...


@dataclass(frozen=True)
class FlashLoanResult:
    assets: tuple[str, ...]
    amounts: tuple[int, ...]
    premiums: tuple[int, ...]
    modes: tuple[int, ...]


# (reserve, on_behalf_of, initiator, amount, rate_mode) -> None
BorrowHook = Callable[[Reserve, str, str, int, int], None]


class FlashLoanCoordinator:
    """
    1. validate every asset and compute premium = amount * premium_bps / 10_000
    2. move principal to the receiver and invoke its callback
    3. per asset, either verify amount + premium came back (mode NONE) or
       open debt for `on_behalf_of` (mode STABLE / VARIABLE)
    4. recompute rates of every involved reserve

    Any failure propagates; the pool's unit of work discards every transfer.
    """

    def __init__(self, validator: ValidationGate, params: PoolParams = POOL):
        self.validator = validator
        self.params = params

    def premium_for(self, amount: int) -> int:
        return amount * self.params.flash_loan_premium_bps // PERCENTAGE_FACTOR

    def execute(self, state, now: int, initiator: str, receiver: FlashLoanReceiver,
                assets: Sequence[str], amounts: Sequence[int], modes: Sequence[int],
                on_behalf_of: str, params: bytes, open_debt: BorrowHook) -> FlashLoanResult:
        bank = state.bank
        vault = self.params.pool_address
        reserves = [state.reserves.get(asset) for asset in assets]
        amounts = list(amounts)
        modes = list(modes)
        self.validator.validate_flash_loan(reserves, amounts, modes)

        premiums = [self.premium_for(amount) for amount in amounts]
        vault_after_payout = []
        for reserve, amount in zip(reserves, amounts):
            reserve.accrue(now)
            reserve.adjust_liquidity(-amount)
            bank.transfer(reserve.asset, vault, receiver.address, amount)
            vault_after_payout.append(bank.balance_of(reserve.asset, vault))

        ok = receiver.on_flash_loan(list(assets), list(amounts), list(premiums), initiator, params)
        if not ok:
            raise FlashLoanCallbackFailed(f"receiver {receiver.address} returned failure")

        for reserve, amount, premium, mode, baseline in zip(
                reserves, amounts, premiums, modes, vault_after_payout):
            if mode == RateMode.NONE:
                returned = bank.balance_of(reserve.asset, vault) - baseline
                if returned != amount + premium:
                    raise FlashLoanRepaymentMismatch(
                        f"{reserve.asset}: expected {amount + premium} back, got {returned}"
                    )
                self._settle_premium(reserve, amount, premium)
            else:
                open_debt(reserve, on_behalf_of, initiator, amount, mode)
            reserve.recompute_rates()

        LOGGER.debug(
            "Flash loan by %s: %s",
            initiator, ", ".join(f"{a}={n}(+{p})" for a, n, p in zip(assets, amounts, premiums)),
        )
        return FlashLoanResult(
            assets=tuple(assets),
            amounts=tuple(amounts),
            premiums=tuple(premiums),
            modes=tuple(modes),
        )

    def _settle_premium(self, reserve: Reserve, amount: int, premium: int) -> None:
        to_protocol = percent_mul(premium, self.params.flash_loan_premium_to_protocol_bps)
        to_depositors = premium - to_protocol
        total_liquidity = ray_mul(
            reserve.deposits.scaled_total_supply + reserve.accrued_to_treasury,
            reserve.liquidity_index,
        )
        reserve.adjust_liquidity(amount + premium)
        if total_liquidity == 0:
            to_protocol += to_depositors
        else:
            reserve.cumulate_to_liquidity_index(total_liquidity, to_depositors)
        if to_protocol:
            reserve.accrued_to_treasury += ray_div_floor(to_protocol, reserve.liquidity_index)
