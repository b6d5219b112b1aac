"""
Schedule Generator

Turns a loan's terms into LoanSchedule rows: due dates stepped from an anchor
date by the loan frequency, amounts from the amortization calculator. Rows
are returned unsaved; the caller persists them as one batch.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Collection, List, Optional
import calendar
import logging
import uuid

from .amortization import compute_installments
from .currency import Money
from .models import Loan, LoanSchedule, PaymentFrequency, ScheduleStatus


logger = logging.getLogger(__name__)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def step_date(anchor: date, frequency: PaymentFrequency, periods: int) -> date:
    """
    Date that lies `periods` frequency periods after `anchor`.

    Monthly steps are computed from the anchor in one go so that a 31st
    anchor gives Jan 31, Feb 28, Mar 31 rather than drifting to the 28th.
    """
    if frequency == PaymentFrequency.WEEKLY:
        return anchor + timedelta(days=7 * periods)
    elif frequency == PaymentFrequency.BIWEEKLY:
        return anchor + timedelta(days=14 * periods)
    elif frequency == PaymentFrequency.MONTHLY:
        return add_months(anchor, periods)
    raise ValueError(f"Unsupported payment frequency: {frequency}")


def derive_status(schedule: LoanSchedule, today: date) -> ScheduleStatus:
    """
    Status an installment should have on `today`

    SKIPPED is a manual override and is kept as is. Unpaid rows are OVERDUE
    once their due date has passed, PENDING otherwise; paid rows are PAID or
    PARTIAL depending on whether the payment covers the expected amount.
    """
    if schedule.status == ScheduleStatus.SKIPPED:
        return ScheduleStatus.SKIPPED
    if schedule.paid_amount is None:
        if schedule.due_date < today:
            return ScheduleStatus.OVERDUE
        return ScheduleStatus.PENDING
    if schedule.paid_amount >= schedule.expected_amount:
        return ScheduleStatus.PAID
    return ScheduleStatus.PARTIAL


class ScheduleGenerator:
    """Builds installment rows for a loan or for the open tail of its schedule"""

    def generate(
        self,
        loan: Loan,
        from_installment_number: int = 1,
        installment_count: Optional[int] = None,
        remaining_principal: Optional[Money] = None,
        anchor_date: Optional[date] = None,
        skip_numbers: Collection[int] = ()
    ) -> List[LoanSchedule]:
        """
        Generate schedule rows

        Args:
            loan: Loan whose rate, interest type and frequency apply
            from_installment_number: Number of the first generated row
            installment_count: Rows to generate (defaults to the loan's total)
            remaining_principal: Principal to amortize (defaults to the loan's principal)
            anchor_date: Due date preceding the first generated row
                (defaults to the loan's start date)
            skip_numbers: Numbers already held by rows that stay in place;
                generated rows take the lowest free numbers

        Returns:
            New PENDING rows ordered by installment number
        """
        if installment_count is None:
            installment_count = loan.total_installments
        if remaining_principal is None:
            remaining_principal = loan.principal_amount
        if anchor_date is None:
            anchor_date = loan.start_date

        amounts = compute_installments(
            principal=remaining_principal,
            annual_rate_pct=loan.interest_rate,
            interest_type=loan.interest_type,
            frequency=loan.frequency,
            installment_count=installment_count
        )

        numbers = self._free_numbers(from_installment_number, installment_count, skip_numbers)
        anchor_offset = from_installment_number - 1
        now = datetime.now(timezone.utc)

        rows = []
        for number, installment in zip(numbers, amounts):
            rows.append(LoanSchedule(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                installment_number=number,
                due_date=step_date(anchor_date, loan.frequency, number - anchor_offset),
                expected_principal=installment.principal_due,
                expected_interest=installment.interest_due,
                expected_amount=installment.total_due,
                status=ScheduleStatus.PENDING
            ))

        logger.debug(
            "Generated %d installments for loan %s starting at #%d",
            len(rows), loan.public_id, from_installment_number
        )
        return rows

    @staticmethod
    def _free_numbers(start: int, count: int, taken: Collection[int]) -> List[int]:
        taken = set(taken)
        numbers = []
        candidate = start
        while len(numbers) < count:
            if candidate not in taken:
                numbers.append(candidate)
            candidate += 1
        return numbers
