"""
Loan Manager

Entry point for everything the outside world can do to a loan: create it,
read it with its schedule and summary, reschedule it, bind and unbind
payments, and the operator actions (default, skip, delete).
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Union
import logging
import uuid

from .audit import AuditEventType, AuditTrail
from .config import LoanEngineConfig, get_config
from .currency import Currency, Money, to_decimal
from .errors import InvalidLoanStateError, InvalidTermsError, LoanHasPaymentsError
from .logging_config import log_action
from .models import (
    BorrowerType, InterestType, Loan, LoanDetail, LoanOverview, LoanSchedule,
    LoanStatus, PaymentFrequency, ScheduleOverrides
)
from .payments import PaymentBinder
from .regeneration import RegenerationCoordinator
from .repository import LoanRepository
from .schedules import ScheduleGenerator, derive_status
from .storage import StorageInterface
from .summary import summarize


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('title', 'borrower_name', 'borrower_type', 'notes')


class LoanManager:
    """
    Manages loans and their installment schedules
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        config: Optional[LoanEngineConfig] = None,
        today: Callable[[], date] = date.today
    ):
        self.config = config or get_config()
        self.storage = storage
        self.audit_trail = audit_trail
        self.today = today

        self.max_installments = self.config.max_installments
        self.max_interest_rate = Decimal(self.config.max_interest_rate)

        self.repository = LoanRepository(storage)
        self.generator = ScheduleGenerator()
        self.payments = PaymentBinder(self.repository, audit_trail, today=today)
        self.regeneration = RegenerationCoordinator(
            self.repository,
            generator=self.generator,
            audit_trail=audit_trail,
            max_installments=self.max_installments
        )

    def create_loan(
        self,
        principal: Union[Money, Decimal, str, int],
        interest_rate: Union[Decimal, str, int],
        interest_type: InterestType,
        frequency: PaymentFrequency,
        start_date: date,
        total_installments: int,
        borrower_name: str,
        borrower_type: BorrowerType = BorrowerType.PERSON,
        title: Optional[str] = None,
        notes: Optional[str] = None,
        generate_schedule: bool = True,
        currency: Optional[Currency] = None
    ) -> Loan:
        """
        Create a loan and, unless told otherwise, its full schedule

        Args:
            principal: Amount lent; plain numbers are read in `currency`
            interest_rate: Per-annum percentage (12 == 12%)
            interest_type: SIMPLE or COMPOUND
            frequency: WEEKLY, BIWEEKLY or MONTHLY
            start_date: Installment #1 falls one period after this date
            total_installments: Number of installments (1..max_installments)
            borrower_name: Who owes the money
            borrower_type: PERSON or COMPANY
            title: Display title, defaults to the borrower name
            notes: Free text
            generate_schedule: Build installments now; otherwise a later
                regeneration builds them
            currency: Currency for plain-number principals, defaults to config

        Returns:
            The created Loan

        Raises:
            InvalidTermsError: If principal, rate or installment count is invalid
        """
        if not isinstance(principal, Money):
            currency = currency or Currency[self.config.default_currency]
            principal = Money(to_decimal(principal, currency.precision), currency)
        interest_rate = to_decimal(interest_rate)

        self._validate_terms(principal, interest_rate, total_installments)
        if not borrower_name or not borrower_name.strip():
            raise InvalidTermsError("Borrower name is required")

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            public_id=str(uuid.uuid4()),
            title=title or borrower_name,
            borrower_name=borrower_name,
            borrower_type=borrower_type,
            principal_amount=principal,
            interest_rate=interest_rate,
            interest_type=interest_type,
            frequency=frequency,
            total_installments=total_installments,
            start_date=start_date,
            notes=notes
        )

        schedules = self.generator.generate(loan) if generate_schedule else []

        with self.repository.locked(loan.id):
            self.repository.save_loan(loan)
            self.repository.save_schedules(schedules)

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_CREATED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "public_id": loan.public_id,
                        "borrower_name": borrower_name,
                        "principal_amount": principal,
                        "interest_rate": interest_rate,
                        "interest_type": interest_type,
                        "frequency": frequency,
                        "total_installments": total_installments,
                        "start_date": start_date
                    }
                )
                if schedules:
                    self.audit_trail.log_event(
                        event_type=AuditEventType.SCHEDULE_GENERATED,
                        entity_type="loan",
                        entity_id=loan.id,
                        metadata={"public_id": loan.public_id, "installments": len(schedules)}
                    )

        log_action(
            logger, "info",
            f"Created loan {loan.public_id} for {borrower_name}",
            action="create_loan", resource=f"loan:{loan.public_id}",
            extra={"principal": str(principal.amount), "installments": len(schedules)}
        )
        return loan

    def get_loan(self, public_id: str) -> LoanDetail:
        """Loan with its ordered schedule (statuses as of today) and summary"""
        with self.storage.consistent_read():
            loan = self.repository.get_loan_by_public_id(public_id)
            schedules = self.repository.get_schedules(loan.id)
        schedules = self._as_of_today(schedules)
        return LoanDetail(loan=loan, schedules=schedules, summary=summarize(schedules, loan.currency))

    def list_loans(self) -> List[LoanOverview]:
        with self.storage.consistent_read():
            rows = [(loan, self.repository.get_schedules(loan.id)) for loan in self.repository.list_loans()]

        overviews = []
        for loan, schedules in rows:
            schedules = self._as_of_today(schedules)
            overviews.append(LoanOverview(loan=loan, summary=summarize(schedules, loan.currency)))
        return overviews

    def regenerate_schedules(
        self,
        public_id: str,
        overrides: Optional[ScheduleOverrides] = None,
        effective_from_installment: int = 1
    ) -> LoanDetail:
        """
        Rebuild the open part of a loan's schedule with new terms

        Paid, partially paid and earlier-than-effective installments stay as
        they are; see RegenerationCoordinator for the full rules.
        """
        overrides = overrides or ScheduleOverrides()
        if overrides.interest_rate is not None:
            overrides = replace(overrides, interest_rate=to_decimal(overrides.interest_rate))
            if overrides.interest_rate > self.max_interest_rate:
                raise InvalidTermsError(
                    f"Interest rate cannot exceed {self.max_interest_rate}%, got {overrides.interest_rate}"
                )

        loan = self.repository.get_loan_by_public_id(public_id)
        self.regeneration.regenerate(loan, overrides, effective_from_installment)
        return self.get_loan(public_id)

    def register_payment(
        self,
        schedule_id: str,
        transaction_id: Union[str, int],
        paid_amount: Union[Money, Decimal, str, int],
        paid_date: date
    ) -> LoanSchedule:
        if not isinstance(paid_amount, Money):
            currency = self.repository.get_schedule(schedule_id).currency
            paid_amount = Money(to_decimal(paid_amount, currency.precision), currency)
        return self.payments.register_payment(schedule_id, transaction_id, paid_amount, paid_date)

    def unlink_payment(self, schedule_id: str) -> LoanSchedule:
        return self.payments.unlink_payment(schedule_id)

    def skip_installment(self, schedule_id: str) -> LoanSchedule:
        return self.payments.skip_installment(schedule_id)

    def find_schedule_by_transaction(self, transaction_id: Union[str, int]) -> Optional[LoanSchedule]:
        with self.storage.consistent_read():
            return self.repository.find_schedule_by_transaction(str(transaction_id))

    def update_loan(self, public_id: str, **fields) -> Loan:
        """
        Update descriptive fields of a loan

        Only title, borrower_name, borrower_type and notes can change here;
        financial terms change through regenerate_schedules.
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise InvalidTermsError(
                f"Cannot update {', '.join(sorted(unknown))}; use schedule regeneration for terms"
            )

        loan = self.repository.get_loan_by_public_id(public_id)
        with self.repository.locked(loan.id):
            loan = self.repository.get_loan(loan.id)
            changes = {
                name: value for name, value in fields.items()
                if value is not None or name == 'notes'
            }
            if 'borrower_name' in changes and not changes['borrower_name'].strip():
                raise InvalidTermsError("Borrower name is required")

            for name, value in changes.items():
                setattr(loan, name, value)
            loan.touch()
            self.repository.save_loan(loan)

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_UPDATED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"public_id": public_id, "changes": changes}
                )

        log_action(
            logger, "info", f"Updated loan {public_id}",
            action="update_loan", resource=f"loan:{public_id}",
            extra={"fields": sorted(changes)}
        )
        return loan

    def delete_loan(self, public_id: str) -> None:
        """Delete a loan and its schedule; refused while payments are linked"""
        loan = self.repository.get_loan_by_public_id(public_id)
        with self.repository.locked(loan.id):
            schedules = self.repository.get_schedules(loan.id)
            linked = [row for row in schedules if row.is_linked]
            if linked:
                raise LoanHasPaymentsError(
                    f"Loan {public_id} has {len(linked)} linked payments; unlink them first"
                )

            self.repository.delete_loan(loan)

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_DELETED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"public_id": public_id, "installments": len(schedules)}
                )

        log_action(logger, "info", f"Deleted loan {public_id}",
                   action="delete_loan", resource=f"loan:{public_id}")

    def mark_defaulted(self, public_id: str) -> Loan:
        """Move an ACTIVE loan to DEFAULTED (operator decision)"""
        loan = self.repository.get_loan_by_public_id(public_id)
        with self.repository.locked(loan.id):
            loan = self.repository.get_loan(loan.id)
            if loan.status == LoanStatus.DEFAULTED:
                return loan
            if loan.status != LoanStatus.ACTIVE:
                raise InvalidLoanStateError(
                    f"Only active loans can be defaulted; loan {public_id} is {loan.status.value}"
                )

            loan.status = LoanStatus.DEFAULTED
            loan.touch()
            self.repository.save_loan(loan)

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_DEFAULTED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"public_id": public_id}
                )

        log_action(logger, "warning", f"Loan {public_id} marked as defaulted",
                   action="mark_defaulted", resource=f"loan:{public_id}")
        return loan

    def refresh_overdue(self, as_of: Optional[date] = None) -> int:
        """
        Persist PENDING <-> OVERDUE transitions for every active loan

        Returns:
            Number of installments whose stored status changed
        """
        as_of = as_of or self.today()
        changed_total = 0

        for loan in self.repository.list_loans():
            if loan.status != LoanStatus.ACTIVE:
                continue

            with self.repository.locked(loan.id):
                changed = []
                for row in self.repository.get_schedules(loan.id):
                    status = derive_status(row, as_of)
                    if status != row.status:
                        row.status = status
                        row.touch()
                        changed.append(row)
                if not changed:
                    continue

                self.repository.save_schedules(changed)
                if self.audit_trail:
                    self.audit_trail.log_event(
                        event_type=AuditEventType.SCHEDULE_STATUS_REFRESHED,
                        entity_type="loan",
                        entity_id=loan.id,
                        metadata={
                            "public_id": loan.public_id,
                            "as_of": as_of,
                            "installments": [row.installment_number for row in changed]
                        }
                    )
            changed_total += len(changed)

        logger.info("Overdue refresh as of %s updated %d installments", as_of.isoformat(), changed_total)
        return changed_total

    def _validate_terms(self, principal: Money, interest_rate: Decimal, total_installments: int) -> None:
        if not principal.is_positive():
            raise InvalidTermsError(f"Principal must be positive, got {principal.to_string()}")
        if interest_rate < Decimal('0'):
            raise InvalidTermsError(f"Interest rate cannot be negative, got {interest_rate}")
        if interest_rate > self.max_interest_rate:
            raise InvalidTermsError(
                f"Interest rate cannot exceed {self.max_interest_rate}%, got {interest_rate}"
            )
        if not isinstance(total_installments, int) or isinstance(total_installments, bool):
            raise InvalidTermsError(f"Installment count must be an integer, got {total_installments!r}")
        if not 1 <= total_installments <= self.max_installments:
            raise InvalidTermsError(
                f"Installment count must be between 1 and {self.max_installments}, got {total_installments}"
            )

    def _as_of_today(self, schedules: List[LoanSchedule]) -> List[LoanSchedule]:
        today = self.today()
        for row in schedules:
            row.status = derive_status(row, today)
        return schedules
