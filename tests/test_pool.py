"""End-to-end tests of pool operations against the three-reserve fixture pool."""

import pytest

from models.errors import (
    AmountExceedsMaxStableLoan,
    BorrowAllowanceExceeded,
    BorrowCapExceeded,
    BorrowingNotEnabled,
    CollateralBalanceIsZero,
    CollateralCannotCoverNewBorrow,
    CollateralSameAsBorrowingCurrency,
    HealthFactorBelowThreshold,
    InsufficientBalance,
    InvalidAmount,
    InvalidRateMode,
    LedgerError,
    NoDebtOfSelectedType,
    NoExplicitAmountToRepayOnBehalf,
    NotEnoughAvailableUserBalance,
    NotEnoughLiquidity,
    ReserveFrozen,
    ReserveNotFound,
    ReservePaused,
    SolvencyError,
    StableBorrowingNotEnabled,
    SupplyCapExceeded,
    UnderlyingBalanceZero,
)
from models.fixed_point import MAX_UINT256, RAY, SECONDS_PER_YEAR
from models.underlying import TokenBank
from models.validation import RateMode

WETH = 10**18
DAI = 10**18
USDC = 10**6

WETH_ID, DAI_ID, USDC_ID = 0, 1, 2


def supply(pool, user, asset, amount):
    pool.bank.mint(asset, user, amount)
    pool.deposit(user, asset, amount)


@pytest.fixture
def alice(funded_pool):
    """alice supplies 1 WETH ($2000 collateral, $1600 borrow power)."""
    supply(funded_pool, "alice", "WETH", 1 * WETH)
    return funded_pool


@pytest.fixture
def utilized(funded_pool):
    """whale borrows half the DAI reserve: variable 2%, stable 2.5%."""
    supply(funded_pool, "whale", "WETH", 500 * WETH)
    funded_pool.borrow("whale", "DAI", 500_000 * DAI, RateMode.VARIABLE)
    return funded_pool


class TestDeposit:
    def test_deposit_credits_receipts(self, funded_pool):
        pool = funded_pool
        supply(pool, "bob", "DAI", 100 * DAI)
        assert pool.deposit_balance("DAI", "bob") == 100 * DAI
        assert pool.bank.balance_of("DAI", "bob") == 0
        assert pool.get_user_configuration("bob").is_using_as_collateral(DAI_ID)
        assert pool.get_reserve_data("DAI").available_liquidity == 1_000_100 * DAI

    def test_deposit_on_behalf(self, funded_pool):
        pool = funded_pool
        pool.bank.mint("DAI", "bob", 100 * DAI)
        pool.deposit("bob", "DAI", 100 * DAI, on_behalf_of="carol")
        assert pool.deposit_balance("DAI", "carol") == 100 * DAI
        assert pool.deposit_balance("DAI", "bob") == 0
        assert pool.get_user_configuration("carol").is_using_as_collateral(DAI_ID)

    def test_zero_amount(self, funded_pool):
        with pytest.raises(InvalidAmount):
            funded_pool.deposit("lp", "DAI", 0)

    def test_unknown_reserve(self, funded_pool):
        with pytest.raises(ReserveNotFound):
            funded_pool.deposit("lp", "WBTC", 1)

    def test_supply_cap(self, funded_pool, configurator):
        configurator.set_supply_cap("DAI", 1_000_100)
        pool = funded_pool
        pool.bank.mint("DAI", "bob", 300 * DAI)
        pool.deposit("bob", "DAI", 100 * DAI)
        with pytest.raises(SupplyCapExceeded):
            pool.deposit("bob", "DAI", 1)

    def test_frozen_reserve_rejects_deposit(self, funded_pool, configurator):
        configurator.set_reserve_freeze("DAI", True)
        funded_pool.bank.mint("DAI", "bob", DAI)
        with pytest.raises(ReserveFrozen):
            funded_pool.deposit("bob", "DAI", DAI)
        # withdrawals stay open on a frozen reserve
        assert funded_pool.withdraw("lp", "DAI", 100 * DAI) == 100 * DAI

    def test_failed_transfer_leaves_no_trace(self, funded_pool):
        pool = funded_pool
        before = pool.get_reserve_data("DAI")
        with pytest.raises(InsufficientBalance):
            pool.deposit("ghost", "DAI", 100 * DAI)
        assert pool.get_reserve_data("DAI") == before
        assert pool.get_user_configuration("ghost").is_empty()
        assert pool.deposit_balance("DAI", "ghost") == 0

    def test_errors_share_root(self):
        assert issubclass(SupplyCapExceeded, LedgerError)
        assert issubclass(InvalidAmount, ValueError)


class TestWithdraw:
    def test_withdraw_all(self, alice):
        withdrawn = alice.withdraw("alice", "WETH", MAX_UINT256)
        assert withdrawn == 1 * WETH
        assert alice.bank.balance_of("WETH", "alice") == 1 * WETH
        assert not alice.get_user_configuration("alice").is_using_as_collateral(WETH_ID)

    def test_withdraw_to(self, alice):
        alice.withdraw("alice", "WETH", WETH // 2, to="bob")
        assert alice.bank.balance_of("WETH", "bob") == WETH // 2
        assert alice.deposit_balance("WETH", "alice") == WETH // 2
        assert alice.get_user_configuration("alice").is_using_as_collateral(WETH_ID)

    def test_more_than_balance(self, alice):
        with pytest.raises(NotEnoughAvailableUserBalance):
            alice.withdraw("alice", "WETH", 2 * WETH)

    def test_health_factor_guard(self, alice):
        alice.borrow("alice", "DAI", 1_000 * DAI, RateMode.VARIABLE)
        with pytest.raises(HealthFactorBelowThreshold):
            alice.withdraw("alice", "WETH", WETH // 2)
        alice.withdraw("alice", "WETH", WETH // 10)
        assert alice.get_user_account_data("alice").health_factor >= 10**18

    def test_paused_reserve(self, alice, configurator):
        configurator.set_reserve_pause("WETH", True)
        with pytest.raises(ReservePaused):
            alice.withdraw("alice", "WETH", WETH // 2)

    def test_not_enough_liquidity(self, funded_pool):
        pool = funded_pool
        supply(pool, "whale", "WETH", 1_000 * WETH)
        pool.borrow("whale", "USDC", 900_000 * USDC, RateMode.VARIABLE)
        with pytest.raises(NotEnoughLiquidity):
            pool.withdraw("lp", "USDC", 200_000 * USDC)


class TestBorrow:
    def test_variable_borrow(self, alice):
        alice.borrow("alice", "DAI", 1_000 * DAI, RateMode.VARIABLE)
        assert alice.bank.balance_of("DAI", "alice") == 1_000 * DAI
        assert alice.debt_balances("DAI", "alice") == (0, 1_000 * DAI)
        assert alice.get_user_configuration("alice").is_borrowing(DAI_ID)
        data = alice.get_reserve_data("DAI")
        assert data.total_variable_debt == 1_000 * DAI
        assert data.current_variable_rate > 0

    def test_exceeds_borrow_power(self, alice):
        with pytest.raises(CollateralCannotCoverNewBorrow):
            alice.borrow("alice", "DAI", 1_700 * DAI, RateMode.VARIABLE)

    def test_no_collateral(self, funded_pool):
        with pytest.raises(CollateralBalanceIsZero):
            funded_pool.borrow("nobody", "DAI", DAI, RateMode.VARIABLE)

    def test_borrowing_disabled(self, alice, configurator):
        configurator.set_borrowing_enabled("DAI", False)
        with pytest.raises(BorrowingNotEnabled):
            alice.borrow("alice", "DAI", DAI, RateMode.VARIABLE)

    def test_borrow_cap(self, alice, configurator):
        configurator.set_borrow_cap("DAI", 500)
        alice.borrow("alice", "DAI", 500 * DAI, RateMode.VARIABLE)
        with pytest.raises(BorrowCapExceeded):
            alice.borrow("alice", "DAI", 1, RateMode.VARIABLE)

    def test_not_enough_liquidity(self, alice):
        with pytest.raises(NotEnoughLiquidity):
            alice.borrow("alice", "USDC", 2_000_000 * USDC, RateMode.VARIABLE)

    def test_invalid_rate_mode(self, alice):
        with pytest.raises(InvalidRateMode):
            alice.borrow("alice", "DAI", DAI, RateMode.NONE)

    def test_frozen_reserve(self, alice, configurator):
        configurator.set_reserve_freeze("DAI", True)
        with pytest.raises(ReserveFrozen):
            alice.borrow("alice", "DAI", DAI, RateMode.VARIABLE)

    def test_solvency_errors_share_category(self):
        assert issubclass(CollateralCannotCoverNewBorrow, SolvencyError)
        assert issubclass(HealthFactorBelowThreshold, SolvencyError)


class TestStableBorrow:
    def test_lot_opened_at_current_stable_rate(self, utilized):
        pool = utilized
        rate = pool.get_reserve_data("DAI").current_stable_rate
        assert rate == 25 * RAY // 1_000
        supply(pool, "alice", "WETH", 1 * WETH)
        pool.borrow("alice", "DAI", 100 * DAI, RateMode.STABLE)
        (lot,) = pool.stable_debt_lots("DAI", "alice")
        assert lot.principal == 100 * DAI
        assert lot.rate == rate

    def test_simple_interest_on_lot(self, utilized, clock):
        pool = utilized
        supply(pool, "alice", "WETH", 1 * WETH)
        pool.borrow("alice", "DAI", 100 * DAI, RateMode.STABLE)
        clock.advance(SECONDS_PER_YEAR)
        assert pool.debt_balances("DAI", "alice") == (1025 * DAI // 10, 0)

    def test_fifo_repay(self, utilized):
        pool = utilized
        supply(pool, "alice", "WETH", 1 * WETH)
        pool.borrow("alice", "DAI", 100 * DAI, RateMode.STABLE)
        pool.borrow("alice", "DAI", 50 * DAI, RateMode.STABLE)
        first, second = pool.stable_debt_lots("DAI", "alice")
        assert second.rate > first.rate

        pool.repay("alice", "DAI", 120 * DAI, RateMode.STABLE)
        (remaining,) = pool.stable_debt_lots("DAI", "alice")
        assert remaining.principal == 30 * DAI
        assert remaining.rate == second.rate

    def test_max_stable_loan(self, utilized):
        pool = utilized
        supply(pool, "alice", "WETH", 200 * WETH)
        # 25% of the 500k DAI still available
        with pytest.raises(AmountExceedsMaxStableLoan):
            pool.borrow("alice", "DAI", 130_000 * DAI, RateMode.STABLE)
        pool.borrow("alice", "DAI", 125_000 * DAI, RateMode.STABLE)

    def test_stable_disabled(self, alice):
        with pytest.raises(StableBorrowingNotEnabled):
            alice.borrow("alice", "USDC", 100 * USDC, RateMode.STABLE)

    def test_against_own_collateral(self, funded_pool):
        pool = funded_pool
        supply(pool, "alice", "DAI", 10_000 * DAI)
        with pytest.raises(CollateralSameAsBorrowingCurrency):
            pool.borrow("alice", "DAI", 1_000 * DAI, RateMode.STABLE)
        pool.borrow("alice", "DAI", 1_000 * DAI, RateMode.VARIABLE)


class TestDelegation:
    def test_borrow_on_behalf(self, alice):
        alice.approve_delegation("alice", "DAI", "bob", 500 * DAI)
        alice.borrow("bob", "DAI", 300 * DAI, RateMode.VARIABLE, on_behalf_of="alice")
        assert alice.bank.balance_of("DAI", "bob") == 300 * DAI
        assert alice.debt_balances("DAI", "alice") == (0, 300 * DAI)
        assert alice.debt_balances("DAI", "bob") == (0, 0)
        with pytest.raises(BorrowAllowanceExceeded):
            alice.borrow("bob", "DAI", 300 * DAI, RateMode.VARIABLE, on_behalf_of="alice")

    def test_without_allowance(self, alice):
        with pytest.raises(BorrowAllowanceExceeded):
            alice.borrow("bob", "DAI", DAI, RateMode.VARIABLE, on_behalf_of="alice")


class TestRepay:
    def test_partial_repay(self, alice):
        alice.borrow("alice", "DAI", 1_000 * DAI, RateMode.VARIABLE)
        paid = alice.repay("alice", "DAI", 400 * DAI, RateMode.VARIABLE)
        assert paid == 400 * DAI
        assert alice.debt_balances("DAI", "alice") == (0, 600 * DAI)
        assert alice.get_user_configuration("alice").is_borrowing(DAI_ID)

    def test_repay_all_with_interest(self, alice, clock):
        pool = alice
        pool.borrow("alice", "DAI", 1_000 * DAI, RateMode.VARIABLE)
        clock.advance(SECONDS_PER_YEAR)
        owed = pool.debt_balances("DAI", "alice")[1]
        assert owed > 1_000 * DAI
        pool.bank.mint("DAI", "alice", 100 * DAI)
        paid = pool.repay("alice", "DAI", MAX_UINT256, RateMode.VARIABLE)
        assert paid == owed
        assert pool.debt_balances("DAI", "alice") == (0, 0)
        assert not pool.get_user_configuration("alice").is_borrowing(DAI_ID)

    def test_repay_more_than_owed_is_capped(self, alice):
        alice.borrow("alice", "DAI", 100 * DAI, RateMode.VARIABLE)
        alice.bank.mint("DAI", "alice", 100 * DAI)
        assert alice.repay("alice", "DAI", 150 * DAI, RateMode.VARIABLE) == 100 * DAI
        assert alice.bank.balance_of("DAI", "alice") == 100 * DAI

    def test_no_debt_of_type(self, alice):
        alice.borrow("alice", "DAI", 100 * DAI, RateMode.VARIABLE)
        with pytest.raises(NoDebtOfSelectedType):
            alice.repay("alice", "DAI", 100 * DAI, RateMode.STABLE)

    def test_on_behalf_requires_explicit_amount(self, alice):
        alice.borrow("alice", "DAI", 100 * DAI, RateMode.VARIABLE)
        alice.bank.mint("DAI", "carol", 100 * DAI)
        with pytest.raises(NoExplicitAmountToRepayOnBehalf):
            alice.repay("carol", "DAI", MAX_UINT256, RateMode.VARIABLE, on_behalf_of="alice")
        alice.repay("carol", "DAI", 60 * DAI, RateMode.VARIABLE, on_behalf_of="alice")
        assert alice.debt_balances("DAI", "alice") == (0, 40 * DAI)
        assert alice.bank.balance_of("DAI", "carol") == 40 * DAI


class TestSwapRateMode:
    def test_variable_to_stable_and_back(self, alice):
        pool = alice
        pool.borrow("alice", "DAI", 1_000 * DAI, RateMode.VARIABLE)
        rate = pool.get_reserve_data("DAI").current_stable_rate
        pool.swap_borrow_rate_mode("alice", "DAI", RateMode.VARIABLE)
        assert pool.debt_balances("DAI", "alice") == (1_000 * DAI, 0)
        (lot,) = pool.stable_debt_lots("DAI", "alice")
        assert lot.rate == rate > 0

        pool.swap_borrow_rate_mode("alice", "DAI", RateMode.STABLE)
        assert pool.debt_balances("DAI", "alice") == (0, 1_000 * DAI)
        assert pool.stable_debt_lots("DAI", "alice") == []

    def test_no_debt(self, alice):
        with pytest.raises(NoDebtOfSelectedType):
            alice.swap_borrow_rate_mode("alice", "DAI", RateMode.VARIABLE)

    def test_stable_disabled(self, alice):
        alice.borrow("alice", "USDC", 100 * USDC, RateMode.VARIABLE)
        with pytest.raises(StableBorrowingNotEnabled):
            alice.swap_borrow_rate_mode("alice", "USDC", RateMode.VARIABLE)


class TestCollateralToggle:
    def test_cannot_disable_backing_collateral(self, alice):
        alice.borrow("alice", "DAI", 1_000 * DAI, RateMode.VARIABLE)
        with pytest.raises(HealthFactorBelowThreshold):
            alice.set_user_use_reserve_as_collateral("alice", "WETH", False)

    def test_disabled_collateral_cannot_back_borrow(self, alice):
        alice.set_user_use_reserve_as_collateral("alice", "WETH", False)
        with pytest.raises(CollateralBalanceIsZero):
            alice.borrow("alice", "DAI", DAI, RateMode.VARIABLE)
        alice.set_user_use_reserve_as_collateral("alice", "WETH", True)
        alice.borrow("alice", "DAI", DAI, RateMode.VARIABLE)

    def test_requires_deposit(self, alice):
        with pytest.raises(UnderlyingBalanceZero):
            alice.set_user_use_reserve_as_collateral("alice", "USDC", True)


class TestTransferDeposit:
    def test_transfer(self, funded_pool):
        funded_pool.transfer_deposit("lp", "DAI", "dave", 100 * DAI)
        assert funded_pool.deposit_balance("DAI", "dave") == 100 * DAI
        assert funded_pool.deposit_balance("DAI", "lp") == 999_900 * DAI
        assert funded_pool.get_user_configuration("dave").is_using_as_collateral(DAI_ID)

    def test_transfer_guarded_by_health_factor(self, alice):
        alice.borrow("alice", "DAI", 1_000 * DAI, RateMode.VARIABLE)
        with pytest.raises(HealthFactorBelowThreshold):
            alice.transfer_deposit("alice", "WETH", "dave", WETH // 2)

    def test_transfer_everything_clears_flag(self, alice):
        alice.transfer_deposit("alice", "WETH", "dave", 1 * WETH)
        assert not alice.get_user_configuration("alice").is_using_as_collateral(WETH_ID)


class TestInterestAccrual:
    def test_depositors_and_borrowers_accrue(self, utilized, clock):
        pool = utilized
        clock.advance(SECONDS_PER_YEAR)
        debt = pool.debt_balances("DAI", "whale")[1]
        deposit = pool.deposit_balance("DAI", "lp")
        # variable 2% compounded, liquidity (2% + 2.5%) / 2 * 50% * 85%
        assert debt / DAI == pytest.approx(500_000 * 1.0202013, rel=1e-6)
        assert deposit / DAI == pytest.approx(1_000_000 * 1.0095625, rel=1e-9)

    def test_treasury_receives_surplus(self, utilized, clock):
        pool = utilized
        clock.advance(SECONDS_PER_YEAR)
        debt_interest = pool.debt_balances("DAI", "whale")[1] - 500_000 * DAI
        supply_interest = pool.deposit_balance("DAI", "lp") - 1_000_000 * DAI
        minted = pool.mint_to_treasury(["DAI", "USDC"])
        assert "USDC" not in minted
        assert minted["DAI"] == pytest.approx(debt_interest - supply_interest, abs=10)
        assert pool.deposit_balance("DAI", "treasury") == minted["DAI"]
        assert pool.get_reserve_data("DAI").accrued_to_treasury == 0

    def test_claims_covered_by_assets(self, utilized, clock):
        pool = utilized
        for _ in range(4):
            clock.advance(SECONDS_PER_YEAR // 4)
            pool.mint_to_treasury(["DAI"])
        data = pool.get_reserve_data("DAI")
        assets = data.available_liquidity + data.total_variable_debt + data.total_stable_debt
        assert data.total_deposits <= assets + 2

    def test_indices_monotonic(self, utilized, clock):
        pool = utilized
        seen = []
        for _ in range(5):
            clock.advance(30 * 86_400)
            pool.mint_to_treasury(["DAI"])
            data = pool.get_reserve_data("DAI")
            seen.append((data.liquidity_index, data.variable_borrow_index))
        assert seen == sorted(seen)
        assert all(b[0] > a[0] and b[1] > a[1] for a, b in zip(seen, seen[1:]))


class TestViews:
    def test_reserves_list(self, configurator, pool):
        assert pool.get_reserves_list() == ["WETH", "DAI", "USDC"]
        assert pool.get_reserve_data("USDC").id == USDC_ID
        assert pool.get_reserve_data("USDC").config.decimals == 6

    def test_user_configuration_is_a_copy(self, alice):
        config = alice.get_user_configuration("alice")
        config.set_borrowing(DAI_ID, True)
        assert not alice.get_user_configuration("alice").is_borrowing(DAI_ID)


class InterruptingReceiver:
    address = "receiver"

    def on_flash_loan(self, assets, amounts, premiums, initiator, params):
        raise KeyboardInterrupt


class TestRollback:
    def test_interrupt_restores_state(self, funded_pool):
        pool = funded_pool
        before = pool.get_reserve_data("DAI")
        with pytest.raises(KeyboardInterrupt):
            pool.flash_loan("receiver", InterruptingReceiver(), ["DAI"], [1_000 * DAI])
        assert pool.get_reserve_data("DAI") == before
        assert pool.bank.balance_of("DAI", "receiver") == 0
        assert pool.bank.balance_of("DAI", pool.address) == 1_000_000 * DAI
        assert not pool.busy
        supply(pool, "alice", "WETH", 1 * WETH)
        assert pool.deposit_balance("WETH", "alice") == 1 * WETH


class TestTokenBankJournal:
    def setup_method(self):
        self.bank = TokenBank()
        self.bank.mint("DAI", "alice", 10)

    def test_rollback_restores_touched_balances(self):
        self.bank.begin()
        self.bank.transfer("DAI", "alice", "bob", 4)
        self.bank.mint("WETH", "carol", 1)
        self.bank.rollback()
        assert self.bank.balance_of("DAI", "alice") == 10
        assert self.bank.balance_of("DAI", "bob") == 0
        assert self.bank.balance_of("WETH", "carol") == 0

    def test_commit_keeps_changes(self):
        self.bank.begin()
        self.bank.transfer("DAI", "alice", "bob", 4)
        self.bank.commit()
        self.bank.rollback()
        assert self.bank.balance_of("DAI", "bob") == 4
