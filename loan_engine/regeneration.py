"""
Regeneration Coordinator

Rebuilds the open tail of a loan's schedule after its terms change. Rows
before the effective installment and every PAID or PARTIAL row are locked and
never rewritten; the remaining rows are replaced by a sub-amortization of the
principal the locked rows do not cover.
"""

from dataclasses import replace
from typing import List, Optional, Tuple
import logging

from .audit import AuditEventType, AuditTrail
from .currency import sum_money
from .errors import InvalidTermsError, RegenerationConflictError
from .logging_config import log_action
from .models import Loan, LoanSchedule, ScheduleOverrides, ScheduleStatus
from .repository import LoanRepository
from .schedules import ScheduleGenerator
from .summary import recompute_summary


logger = logging.getLogger(__name__)

SETTLED_STATUSES = (ScheduleStatus.PAID, ScheduleStatus.PARTIAL)


def partition_schedules(
    schedules: List[LoanSchedule],
    effective_from_installment: int
) -> Tuple[List[LoanSchedule], List[LoanSchedule]]:
    """Split rows into (locked, open); both keep installment order"""
    locked, open_rows = [], []
    for row in schedules:
        if row.installment_number < effective_from_installment or row.status in SETTLED_STATUSES:
            locked.append(row)
        else:
            open_rows.append(row)
    return locked, open_rows


class RegenerationCoordinator:
    """Replaces the open segment of a schedule with freshly generated rows"""

    def __init__(
        self,
        repository: LoanRepository,
        generator: Optional[ScheduleGenerator] = None,
        audit_trail: Optional[AuditTrail] = None,
        max_installments: int = 360
    ):
        self.repository = repository
        self.generator = generator or ScheduleGenerator()
        self.audit_trail = audit_trail
        self.max_installments = max_installments

    def regenerate(
        self,
        loan: Loan,
        overrides: Optional[ScheduleOverrides] = None,
        effective_from_installment: int = 1
    ) -> List[LoanSchedule]:
        """
        Regenerate the open segment of a loan's schedule

        Args:
            loan: Loan to reschedule
            overrides: New terms; unset fields keep the loan's current values
            effective_from_installment: First installment number that may change

        Returns:
            The complete schedule after regeneration, ordered 1..N

        Raises:
            InvalidTermsError: If the overrides leave no valid open segment
            RegenerationConflictError: If an open row has a linked transaction
        """
        overrides = overrides or ScheduleOverrides()
        if effective_from_installment < 1:
            raise InvalidTermsError(
                f"Effective installment must be at least 1, got {effective_from_installment}"
            )

        with self.repository.locked(loan.id):
            loan = self.repository.get_loan(loan.id)
            schedules = self.repository.get_schedules(loan.id)
            locked, open_rows = partition_schedules(schedules, effective_from_installment)

            conflicts = [row for row in open_rows if row.transaction_id is not None]
            if conflicts:
                numbers = ", ".join(str(row.installment_number) for row in conflicts)
                raise RegenerationConflictError(
                    f"Installments {numbers} of loan {loan.public_id} received payments "
                    f"during regeneration; refresh and retry"
                )

            if overrides.total_installments is not None:
                if overrides.total_installments > self.max_installments:
                    raise InvalidTermsError(
                        f"At most {self.max_installments} installments are allowed, "
                        f"got {overrides.total_installments}"
                    )
                new_count = overrides.total_installments - len(locked)
                if new_count < 1:
                    raise InvalidTermsError(
                        f"{overrides.total_installments} installments cannot cover "
                        f"{len(locked)} locked installments plus a new tail"
                    )
            elif schedules:
                new_count = len(open_rows)
            else:
                # Loan created without a schedule
                new_count = loan.total_installments

            highest_locked = max((row.installment_number for row in locked), default=0)
            if len(locked) + new_count < highest_locked:
                raise InvalidTermsError(
                    f"Schedule cannot end before installment #{highest_locked}, which is already paid"
                )

            updated = self._apply_overrides(loan, overrides, has_locked=bool(locked))

            if new_count == 0:
                # Nothing open and no extension requested; only the terms change
                if updated != loan:
                    updated.touch()
                    self.repository.save_loan(updated)
                return schedules

            remaining_principal = loan.principal_amount - sum_money(
                (row.expected_principal for row in locked), loan.currency
            )
            if not remaining_principal.is_positive():
                raise InvalidTermsError(
                    f"Locked installments already cover the principal of loan {loan.public_id}"
                )

            from_number = self._first_free_number(locked)
            anchor_date = overrides.start_date or self._anchor_date(updated, schedules, from_number)

            new_rows = self.generator.generate(
                updated,
                from_installment_number=from_number,
                installment_count=new_count,
                remaining_principal=remaining_principal,
                anchor_date=anchor_date,
                skip_numbers=[row.installment_number for row in locked]
            )

            self.repository.replace_schedules(removed=open_rows, added=new_rows)

            updated.total_installments = len(locked) + len(new_rows)
            updated.touch()
            self.repository.save_loan(updated)

            result = sorted(locked + new_rows, key=lambda row: row.installment_number)
            recompute_summary(updated, self.repository, self.audit_trail, schedules=result)

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.SCHEDULE_REGENERATED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "public_id": loan.public_id,
                        "effective_from_installment": effective_from_installment,
                        "locked_installments": len(locked),
                        "replaced_installments": len(open_rows),
                        "new_installments": len(new_rows),
                        "remaining_principal": remaining_principal,
                        "interest_rate": updated.interest_rate,
                        "interest_type": updated.interest_type,
                        "frequency": updated.frequency
                    }
                )

        log_action(
            logger, "info",
            f"Regenerated {len(new_rows)} installments for loan {loan.public_id}",
            action="regenerate", resource=f"loan:{loan.public_id}",
            extra={"locked": len(locked), "replaced": len(open_rows)}
        )
        return result

    @staticmethod
    def _apply_overrides(loan: Loan, overrides: ScheduleOverrides, has_locked: bool) -> Loan:
        if overrides.interest_rate is not None and overrides.interest_rate < 0:
            raise InvalidTermsError(f"Interest rate cannot be negative, got {overrides.interest_rate}")

        changes = {}
        if overrides.interest_rate is not None:
            changes['interest_rate'] = overrides.interest_rate
        if overrides.interest_type is not None:
            changes['interest_type'] = overrides.interest_type
        if overrides.frequency is not None:
            changes['frequency'] = overrides.frequency
        if overrides.start_date is not None and not has_locked:
            changes['start_date'] = overrides.start_date
        return replace(loan, **changes)

    @staticmethod
    def _first_free_number(locked: List[LoanSchedule]) -> int:
        taken = {row.installment_number for row in locked}
        number = 1
        while number in taken:
            number += 1
        return number

    @staticmethod
    def _anchor_date(loan: Loan, schedules: List[LoanSchedule], from_number: int):
        """Due date of the installment preceding the tail, or the start date"""
        for row in schedules:
            if row.installment_number == from_number - 1:
                return row.due_date
        return loan.start_date
