"""
Amortization Calculator

Pure functions that split a principal into per-installment (principal,
interest) pairs. Intermediate values keep full Decimal precision; each
installment is rounded to the smallest currency unit once, and whatever
residue that leaves is absorbed by the last installment so the principal
column always sums to the original principal.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List

from .currency import Money, quantize, sum_money
from .errors import InvalidTermsError
from .models import InterestType, PaymentFrequency


@dataclass(frozen=True)
class InstallmentAmounts:
    """Principal and interest due for one installment"""
    principal_due: Money
    interest_due: Money

    @property
    def total_due(self) -> Money:
        return self.principal_due + self.interest_due


def period_rate(annual_rate_pct: Decimal, frequency: PaymentFrequency) -> Decimal:
    """Convert a per-annum percentage into the rate of one period"""
    return annual_rate_pct / Decimal('100') / Decimal(frequency.periods_per_year)


def level_payment(principal: Decimal, rate: Decimal, installment_count: int) -> Decimal:
    """
    Unrounded level payment for a fully amortizing loan.

    Standard formula P * r / (1 - (1 + r)^-n); plain division when r == 0.
    """
    if rate == Decimal('0'):
        return principal / Decimal(installment_count)
    factor = (Decimal('1') + rate) ** installment_count
    return principal * rate * factor / (factor - Decimal('1'))


def compute_installments(
    principal: Money,
    annual_rate_pct: Decimal,
    interest_type: InterestType,
    frequency: PaymentFrequency,
    installment_count: int
) -> List[InstallmentAmounts]:
    """
    Compute the ordered (principal, interest) split for a loan

    Args:
        principal: Amount to amortize
        annual_rate_pct: Per-annum interest rate as a percentage (12 == 12%)
        interest_type: SIMPLE (even principal) or COMPOUND (level payment)
        frequency: Installment frequency, defines the period rate
        installment_count: Number of installments

    Returns:
        One InstallmentAmounts per installment, first installment first

    Raises:
        InvalidTermsError: If count <= 0, principal <= 0 or rate < 0
    """
    if installment_count is None or installment_count <= 0:
        raise InvalidTermsError(f"Installment count must be positive, got {installment_count}")
    if not principal.is_positive():
        raise InvalidTermsError(f"Principal must be positive, got {principal.to_string()}")
    if annual_rate_pct < Decimal('0'):
        raise InvalidTermsError(f"Interest rate cannot be negative, got {annual_rate_pct}")

    currency = principal.currency
    rate = period_rate(annual_rate_pct, frequency)

    if interest_type == InterestType.COMPOUND:
        scheduled_total = quantize(level_payment(principal.amount, rate, installment_count), currency)
    else:
        scheduled_principal = quantize(principal.amount / Decimal(installment_count), currency)

    installments = []
    remaining = principal.amount

    for number in range(1, installment_count + 1):
        interest = quantize(remaining * rate, currency)

        if number == installment_count:
            principal_due = remaining
        elif interest_type == InterestType.COMPOUND:
            principal_due = min(max(scheduled_total - interest, Decimal('0')), remaining)
        else:
            principal_due = min(scheduled_principal, remaining)

        installments.append(InstallmentAmounts(
            principal_due=Money(principal_due, currency),
            interest_due=Money(interest, currency)
        ))
        remaining -= principal_due

    return installments


def total_interest(installments: List[InstallmentAmounts]) -> Money:
    """Sum of the interest column"""
    return sum_money((i.interest_due for i in installments), installments[0].interest_due.currency)
