"""
Loan aggregate recomputation

Totals over a loan's schedule and the automatic ACTIVE <-> COMPLETED
transition that follows from them. DEFAULTED is never set or cleared here.
"""

from decimal import Decimal
from typing import List, Optional
import logging

from .audit import AuditEventType, AuditTrail
from .currency import Currency, Money, sum_money
from .models import Loan, LoanSchedule, LoanStatus, LoanSummary, ScheduleStatus
from .repository import LoanRepository


logger = logging.getLogger(__name__)

PENDING_STATUSES = (ScheduleStatus.PENDING, ScheduleStatus.PARTIAL, ScheduleStatus.OVERDUE)


def summarize(schedules: List[LoanSchedule], currency: Currency) -> LoanSummary:
    """Compute the aggregate view of a schedule without touching the loan"""
    total_expected = sum_money((s.expected_amount for s in schedules), currency)
    total_paid = sum_money((s.paid_amount for s in schedules if s.paid_amount is not None), currency)

    remaining = total_expected - total_paid
    if remaining.is_negative():
        remaining = Money(Decimal('0'), currency)

    return LoanSummary(
        paid_installments=sum(1 for s in schedules if s.status == ScheduleStatus.PAID),
        pending_installments=sum(1 for s in schedules if s.status in PENDING_STATUSES),
        total_installments=len(schedules),
        total_expected=total_expected,
        total_paid=total_paid,
        remaining_amount=remaining
    )


def recompute_summary(
    loan: Loan,
    repository: LoanRepository,
    audit_trail: Optional[AuditTrail] = None,
    schedules: Optional[List[LoanSchedule]] = None
) -> LoanSummary:
    """
    Recompute a loan's summary and apply the completion transition

    An ACTIVE loan whose installments are all PAID becomes COMPLETED; a
    COMPLETED loan that is no longer fully paid (after an unlink) goes back
    to ACTIVE. The loan is saved only when its status changes.
    """
    if schedules is None:
        schedules = repository.get_schedules(loan.id)
    summary = summarize(schedules, loan.currency)

    fully_paid = summary.total_installments > 0 and summary.paid_installments == summary.total_installments

    new_status = loan.status
    if fully_paid and loan.status == LoanStatus.ACTIVE:
        new_status = LoanStatus.COMPLETED
    elif not fully_paid and loan.status == LoanStatus.COMPLETED:
        new_status = LoanStatus.ACTIVE

    if new_status != loan.status:
        logger.info("Loan %s status %s -> %s", loan.public_id, loan.status.value, new_status.value)
        loan.status = new_status
        loan.touch()
        repository.save_loan(loan)

        if audit_trail:
            audit_trail.log_event(
                event_type=(AuditEventType.LOAN_COMPLETED if new_status == LoanStatus.COMPLETED
                            else AuditEventType.LOAN_REOPENED),
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "public_id": loan.public_id,
                    "total_paid": summary.total_paid,
                    "total_expected": summary.total_expected
                }
            )

    return summary
