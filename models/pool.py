"""
Lending pool: the aggregate root for reserves, user positions and the
underlying token vault.

Every mutating operation follows the same unit of work:

    accrue -> validate -> mutate ledgers -> recompute rates -> commit

Each operation journals the ledger entries it touches and puts them back
if anything raises, so an operation either fully applies or leaves no
trace. A per-pool busy flag rejects reentry from external callbacks
(flash-loan receivers, price sources) with ReentrantCall.
"""

from __future__ import annotations

import copy
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Sequence

from config.params import POOL, PoolParams
from data.price_source import PriceSource
from models.errors import InvalidRateMode, ReentrantCall
from models.fixed_point import MAX_UINT256
from models.flash_loan import FlashLoanCoordinator, FlashLoanReceiver, FlashLoanResult
from models.liquidation import LiquidationEngine, LiquidationResult
from models.reserve import Reserve, ReserveData, ReserveLedger
from models.risk import AccountData, RiskAggregator
from models.underlying import TokenBank
from models.user_config import UserConfiguration
from models.validation import RateMode, ValidationGate, require_amount, require_usable

LOGGER = logging.getLogger(__name__)


@dataclass
class LedgerState:
    """Everything an operation may mutate, journaled per touched entry."""
    reserves: ReserveLedger
    bank: TokenBank
    users: dict[str, UserConfiguration] = field(default_factory=dict)
    _user_journal: dict[str, int | None] | None = field(default=None, repr=False)

    def user_config(self, user: str) -> UserConfiguration:
        config = self.users.get(user)
        if self._user_journal is not None and user not in self._user_journal:
            self._user_journal[user] = None if config is None else config.data
        if config is None:
            config = self.users[user] = UserConfiguration()
        return config

    def begin(self) -> None:
        self._user_journal = {}
        self.reserves.begin()
        self.bank.begin()

    def commit(self) -> None:
        self._user_journal = None
        self.reserves.commit()
        self.bank.commit()

    def rollback(self) -> None:
        for user, data in (self._user_journal or {}).items():
            if data is None:
                self.users.pop(user, None)
            else:
                self.users[user].data = data
        self._user_journal = None
        self.reserves.rollback()
        self.bank.rollback()


def _wall_clock() -> int:
    return int(time.time())


class LendingPool:
    """Deposit, borrow, repay, liquidate and flash-borrow against shared reserves."""

    def __init__(self, price_source: PriceSource, params: PoolParams = POOL,
                 clock: Callable[[], int] | None = None, bank: TokenBank | None = None):
        self.params = params
        self.address = params.pool_address
        self.risk = RiskAggregator(price_source)
        self.validator = ValidationGate(self.risk, params)
        self.liquidations = LiquidationEngine(self.risk, self.validator, params)
        self.flash_loans = FlashLoanCoordinator(self.validator, params)
        self._clock = clock or _wall_clock
        self._state = LedgerState(reserves=ReserveLedger(params), bank=bank or TokenBank())
        self.busy = False

    @property
    def bank(self) -> TokenBank:
        return self._state.bank

    @contextmanager
    def _operation(self, name: str) -> Iterator[tuple[LedgerState, int]]:
        if self.busy:
            raise ReentrantCall(f"{name} called while another operation is in progress")
        self.busy = True
        self._state.begin()
        try:
            yield self._state, self._clock()
        except BaseException as exc:
            self._state.rollback()
            LOGGER.warning("%s rolled back: %s: %s", name, type(exc).__name__, exc)
            raise
        else:
            self._state.commit()
        finally:
            self.busy = False

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------
    def deposit(self, sender: str, asset: str, amount: int, on_behalf_of: str | None = None) -> None:
        """Move `amount` of `asset` from `sender` into the reserve, crediting receipts."""
        on_behalf_of = on_behalf_of or sender
        with self._operation("deposit") as (state, now):
            reserve = state.reserves.accrue(asset, now)
            self.validator.validate_deposit(reserve, amount)

            state.bank.transfer(asset, sender, self.address, amount)
            reserve.adjust_liquidity(amount)
            if reserve.deposits.mint(on_behalf_of, amount, reserve.liquidity_index):
                state.user_config(on_behalf_of).set_using_as_collateral(reserve.id, True)
            reserve.recompute_rates()
            LOGGER.debug("deposit %s %d by %s for %s", asset, amount, sender, on_behalf_of)

    def withdraw(self, sender: str, asset: str, amount: int, to: str | None = None) -> int:
        """Burn receipts and pay out underlying; MAX_UINT256 withdraws everything."""
        to = to or sender
        with self._operation("withdraw") as (state, now):
            reserve = state.reserves.accrue(asset, now)
            balance = reserve.deposits.balance_of(sender, reserve.liquidity_index)
            amount_to_withdraw = balance if amount == MAX_UINT256 else amount
            self.validator.validate_withdraw(
                state.reserves, reserve, state.users.get(sender), sender,
                amount_to_withdraw, balance, now,
            )

            reserve.deposits.burn(sender, amount_to_withdraw, reserve.liquidity_index)
            reserve.adjust_liquidity(-amount_to_withdraw)
            if amount_to_withdraw == balance:
                state.user_config(sender).set_using_as_collateral(reserve.id, False)
            state.bank.transfer(asset, self.address, to, amount_to_withdraw)
            reserve.recompute_rates()
            LOGGER.debug("withdraw %s %d by %s to %s", asset, amount_to_withdraw, sender, to)
            return amount_to_withdraw

    def transfer_deposit(self, sender: str, asset: str, recipient: str, amount: int) -> None:
        """Move deposit receipts; the sender must stay healthy if it has debt."""
        with self._operation("transfer_deposit") as (state, now):
            reserve = state.reserves.accrue(asset, now)
            require_amount(amount)
            require_usable(reserve)
            self.validator.validate_collateral_decrease(
                state.reserves, reserve, state.users.get(sender), sender, amount, now,
            )
            if reserve.deposits.transfer(sender, recipient, amount):
                state.user_config(recipient).set_using_as_collateral(reserve.id, True)
            if reserve.deposits.scaled_balance_of(sender) == 0:
                state.user_config(sender).set_using_as_collateral(reserve.id, False)

    def set_user_use_reserve_as_collateral(self, sender: str, asset: str, use_as_collateral: bool) -> None:
        with self._operation("set_user_use_reserve_as_collateral") as (state, now):
            reserve = state.reserves.accrue(asset, now)
            self.validator.validate_set_use_as_collateral(
                state.reserves, reserve, state.users.get(sender), sender, use_as_collateral, now,
            )
            state.user_config(sender).set_using_as_collateral(reserve.id, use_as_collateral)

    # ------------------------------------------------------------------
    # Borrowing
    # ------------------------------------------------------------------
    def approve_delegation(self, delegator: str, asset: str, delegatee: str, amount: int) -> None:
        """Allow `delegatee` to borrow up to `amount` of `asset` against `delegator`'s collateral."""
        with self._operation("approve_delegation") as (state, _now):
            state.reserves.get(asset).approve_delegation(delegator, delegatee, amount)

    def _execute_borrow(self, state: LedgerState, now: int, reserve: Reserve, user: str,
                        caller: str, amount: int, rate_mode: int, release_to: str | None) -> None:
        """Open debt for `user`; when `release_to` is None the principal has already left the vault."""
        if user != caller:
            reserve.consume_delegation(user, caller, amount)
        if release_to is None:
            reserve.adjust_liquidity(amount)
        self.validator.validate_borrow(
            state.reserves, reserve, state.users.get(user), user, amount, rate_mode, now,
        )

        if rate_mode == RateMode.STABLE:
            reserve.stable_debt.mint(user, amount, reserve.current_stable_rate, now)
        else:
            reserve.variable_debt.mint(user, amount, reserve.variable_borrow_index)
        state.user_config(user).set_borrowing(reserve.id, True)

        reserve.adjust_liquidity(-amount)
        if release_to is not None:
            state.bank.transfer(reserve.asset, self.address, release_to, amount)
        reserve.recompute_rates()
        LOGGER.debug("borrow %s %d (%s) for %s by %s",
                     reserve.asset, amount, RateMode(rate_mode).name, user, caller)

    def borrow(self, sender: str, asset: str, amount: int, rate_mode: int,
               on_behalf_of: str | None = None) -> None:
        on_behalf_of = on_behalf_of or sender
        with self._operation("borrow") as (state, now):
            reserve = state.reserves.accrue(asset, now)
            self._execute_borrow(state, now, reserve, on_behalf_of, sender, amount, rate_mode,
                                 release_to=sender)

    def repay(self, sender: str, asset: str, amount: int, rate_mode: int,
              on_behalf_of: str | None = None) -> int:
        """Repay up to `amount` of debt; MAX_UINT256 repays all of it. Returns the amount paid."""
        on_behalf_of = on_behalf_of or sender
        with self._operation("repay") as (state, now):
            reserve = state.reserves.accrue(asset, now)
            stable_debt, variable_debt = reserve.user_debt(on_behalf_of, now)
            self.validator.validate_repay(
                reserve, amount, rate_mode, on_behalf_of, sender, stable_debt, variable_debt,
            )

            debt = stable_debt if rate_mode == RateMode.STABLE else variable_debt
            payback = min(amount, debt)
            if rate_mode == RateMode.STABLE:
                reserve.stable_debt.burn(on_behalf_of, payback, now)
            else:
                reserve.variable_debt.burn(on_behalf_of, payback, reserve.variable_borrow_index)
            if stable_debt + variable_debt == payback:
                state.user_config(on_behalf_of).set_borrowing(reserve.id, False)

            state.bank.transfer(asset, sender, self.address, payback)
            reserve.adjust_liquidity(payback)
            reserve.recompute_rates()
            LOGGER.debug("repay %s %d by %s for %s", asset, payback, sender, on_behalf_of)
            return payback

    def swap_borrow_rate_mode(self, sender: str, asset: str, current_mode: int) -> None:
        """Convert all of the sender's debt in `current_mode` to the other mode."""
        with self._operation("swap_borrow_rate_mode") as (state, now):
            reserve = state.reserves.accrue(asset, now)
            stable_debt, variable_debt = reserve.user_debt(sender, now)
            self.validator.validate_swap_rate_mode(
                reserve, state.users.get(sender), sender, stable_debt, variable_debt,
                current_mode, now,
            )
            if current_mode == RateMode.STABLE:
                reserve.stable_debt.burn(sender, stable_debt, now)
                reserve.variable_debt.mint(sender, stable_debt, reserve.variable_borrow_index)
            else:
                reserve.variable_debt.burn(sender, variable_debt, reserve.variable_borrow_index)
                reserve.stable_debt.mint(sender, variable_debt, reserve.current_stable_rate, now)
            reserve.recompute_rates()

    # ------------------------------------------------------------------
    # Liquidation and flash loans
    # ------------------------------------------------------------------
    def liquidation_call(self, liquidator: str, collateral_asset: str, debt_asset: str,
                         user: str, debt_to_cover: int, receive_deposit: bool = False) -> LiquidationResult:
        with self._operation("liquidation_call") as (state, now):
            return self.liquidations.execute(
                state, now, liquidator, collateral_asset, debt_asset, user,
                debt_to_cover, receive_deposit,
            )

    def flash_loan(self, initiator: str, receiver: FlashLoanReceiver, assets: Sequence[str],
                   amounts: Sequence[int], modes: Sequence[int] | None = None,
                   on_behalf_of: str | None = None, params: bytes = b"") -> FlashLoanResult:
        modes = list(modes) if modes is not None else [RateMode.NONE] * len(assets)
        on_behalf_of = on_behalf_of or initiator
        with self._operation("flash_loan") as (state, now):

            def open_debt(reserve: Reserve, user: str, caller: str, amount: int, mode: int) -> None:
                if mode not in (RateMode.STABLE, RateMode.VARIABLE):
                    raise InvalidRateMode(f"invalid flash loan debt mode {mode}")
                self._execute_borrow(state, now, reserve, user, caller, amount, mode, release_to=None)

            return self.flash_loans.execute(
                state, now, initiator, receiver, assets, amounts, modes,
                on_behalf_of, params, open_debt,
            )

    def mint_to_treasury(self, assets: Sequence[str]) -> dict[str, int]:
        """Turn accrued reserve-factor income into treasury deposit receipts."""
        minted = {}
        with self._operation("mint_to_treasury") as (state, now):
            for asset in assets:
                reserve = state.reserves.accrue(asset, now)
                scaled = reserve.accrued_to_treasury
                if scaled == 0:
                    continue
                before = reserve.deposits.balance_of(self.params.treasury)
                reserve.accrued_to_treasury = 0
                reserve.deposits.mint_scaled(self.params.treasury, scaled)
                minted[asset] = reserve.deposits.balance_of(self.params.treasury) - before
                LOGGER.info("Minted %d %s receipts to treasury", minted[asset], asset)
        return minted

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def now(self) -> int:
        return self._clock()

    def get_reserves_list(self) -> list[str]:
        return self._state.reserves.assets()

    def get_reserve_data(self, asset: str) -> ReserveData:
        return self._state.reserves.get(asset).data()

    def get_user_configuration(self, user: str) -> UserConfiguration:
        return copy.copy(self._state.users.get(user, UserConfiguration()))

    def get_user_account_data(self, user: str) -> AccountData:
        return self.risk.account_data(
            self._state.reserves, self._state.users.get(user), user, self._clock(),
        )

    def deposit_balance(self, asset: str, user: str) -> int:
        reserve = self._state.reserves.get(asset)
        return reserve.deposits.balance_of(user, reserve.normalized_income(self._clock()))

    def debt_balances(self, asset: str, user: str) -> tuple[int, int]:
        """(stable, variable) debt of `user` in `asset` as of now."""
        return self._state.reserves.get(asset).user_debt(user, self._clock())

    def stable_debt_lots(self, asset: str, user: str) -> list:
        return self._state.reserves.get(asset).stable_debt.lots(user)
