"""
Error taxonomy for the lending ledger.

Every failure aborts the whole operation; the pool rolls back its journal
and re-raises the original exception, so callers only ever see one of the
classes below.
"""


class LedgerError(Exception):
    """Base class for every ledger failure."""
    category = "ledger"


# -----------------------------
# Validation (rejected before any state change)
# -----------------------------
class ValidationError(LedgerError, ValueError):
    category = "validation"


class InvalidAmount(ValidationError):
    pass


class ReserveNotFound(ValidationError):
    pass


class ReserveAlreadyInitialized(ValidationError):
    pass


class MaxReservesReached(ValidationError):
    pass


class ReserveInactive(ValidationError):
    pass


class ReservePaused(ValidationError):
    pass


class ReserveFrozen(ValidationError):
    pass


class BorrowingNotEnabled(ValidationError):
    pass


class StableBorrowingNotEnabled(ValidationError):
    pass


class FlashLoanNotEnabled(ValidationError):
    pass


class InvalidRateMode(ValidationError):
    pass


class InvalidConfiguration(ValidationError):
    pass


class InconsistentFlashLoanParams(ValidationError):
    pass


class NoDebtOfSelectedType(ValidationError):
    pass


class NoExplicitAmountToRepayOnBehalf(ValidationError):
    pass


class NotEnoughAvailableUserBalance(ValidationError):
    pass


class UnderlyingBalanceZero(ValidationError):
    pass


class CollateralSameAsBorrowingCurrency(ValidationError):
    pass


class BorrowAllowanceExceeded(ValidationError):
    pass


class ReserveLiquidityNotZero(ValidationError):
    pass


# -----------------------------
# Capacity
# -----------------------------
class CapacityError(LedgerError):
    category = "capacity"


class SupplyCapExceeded(CapacityError):
    pass


class BorrowCapExceeded(CapacityError):
    pass


class NotEnoughLiquidity(CapacityError):
    pass


class AmountExceedsMaxStableLoan(CapacityError):
    pass


# -----------------------------
# Solvency
# -----------------------------
class SolvencyError(LedgerError):
    category = "solvency"


class HealthFactorBelowThreshold(SolvencyError):
    pass


class HealthFactorNotBelowThreshold(SolvencyError):
    pass


class CollateralBalanceIsZero(SolvencyError):
    pass


class CollateralCannotCoverNewBorrow(SolvencyError):
    pass


class LtvValidationFailed(SolvencyError):
    pass


# -----------------------------
# Liquidation
# -----------------------------
class LiquidationError(LedgerError):
    category = "liquidation"


class NoDebtInAsset(LiquidationError):
    pass


class CollateralCannotBeLiquidated(LiquidationError):
    pass


class LiquidationAmountTooSmall(LiquidationError):
    pass


# -----------------------------
# Flash loans
# -----------------------------
class FlashLoanError(LedgerError):
    category = "flash_loan"


class FlashLoanRepaymentMismatch(FlashLoanError):
    pass


class FlashLoanCallbackFailed(FlashLoanError):
    pass


# -----------------------------
# Ledger accounting
# -----------------------------
class AccountingError(LedgerError):
    category = "accounting"


class InsufficientScaledBalance(AccountingError):
    pass


class InsufficientBalance(AccountingError):
    pass


class TransferNotAllowed(AccountingError):
    pass


class IndexMustNotDecrease(AccountingError):
    pass


class RepayExceedsDebt(AccountingError):
    pass


class StableRateTooHigh(AccountingError):
    pass


# -----------------------------
# Arithmetic
# -----------------------------
class LedgerArithmeticError(LedgerError, ArithmeticError):
    category = "arithmetic"


class ArithmeticOverflow(LedgerArithmeticError):
    pass


class DivisionByZero(LedgerArithmeticError):
    pass


# -----------------------------
# External collaborators / execution
# -----------------------------
class PriceUnavailable(LedgerError):
    category = "oracle"


class ReentrantCall(LedgerError, RuntimeError):
    category = "execution"
