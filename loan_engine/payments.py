"""
Payment Binder

Links ledger transactions to installments and unlinks them again. A
transaction pays at most one installment and an installment carries at most
one transaction.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Union
import logging

from .audit import AuditEventType, AuditTrail
from .currency import Money
from .errors import InvalidPaymentAmountError, TransactionAlreadyLinkedError
from .logging_config import log_action
from .models import LoanSchedule, ScheduleStatus
from .repository import LoanRepository
from .schedules import derive_status
from .summary import recompute_summary


logger = logging.getLogger(__name__)


class PaymentBinder:
    """Registers and unlinks installment payments"""

    def __init__(
        self,
        repository: LoanRepository,
        audit_trail: Optional[AuditTrail] = None,
        today: Callable[[], date] = date.today
    ):
        self.repository = repository
        self.audit_trail = audit_trail
        self.today = today

    def register_payment(
        self,
        schedule_id: str,
        transaction_id: Union[str, int],
        paid_amount: Union[Money, Decimal],
        paid_date: date
    ) -> LoanSchedule:
        """
        Link a transaction to an installment

        Args:
            schedule_id: Installment to pay
            transaction_id: Ledger transaction that carries the payment
            paid_amount: Amount paid; a bare Decimal is read in the loan currency
            paid_date: Date of the payment

        Returns:
            Updated LoanSchedule, PAID or PARTIAL

        Raises:
            ScheduleNotFoundError: If the installment does not exist
            InvalidPaymentAmountError: If paid_amount <= 0 or is in another currency
            TransactionAlreadyLinkedError: If the installment already has a
                transaction or the transaction pays another installment
        """
        transaction_id = str(transaction_id)
        loan_id = self.repository.get_schedule(schedule_id).loan_id

        with self.repository.locked(loan_id):
            schedule = self.repository.get_schedule(schedule_id)

            if not isinstance(paid_amount, Money):
                paid_amount = Money(paid_amount, schedule.currency)
            if paid_amount.currency != schedule.currency:
                raise InvalidPaymentAmountError(
                    f"Payment is in {paid_amount.currency.code} but installment #{schedule.installment_number} "
                    f"is in {schedule.currency.code}"
                )
            if not paid_amount.is_positive():
                raise InvalidPaymentAmountError(
                    f"Payment amount must be positive, got {paid_amount.to_string()}"
                )

            if schedule.transaction_id is not None:
                raise TransactionAlreadyLinkedError(
                    f"Installment #{schedule.installment_number} is already linked to "
                    f"transaction {schedule.transaction_id}",
                    transaction_id=schedule.transaction_id,
                    schedule_id=schedule.id
                )

            other = self.repository.find_schedule_by_transaction(transaction_id)
            if other is not None:
                raise TransactionAlreadyLinkedError(
                    f"Transaction {transaction_id} is already linked to schedule {other.id}",
                    transaction_id=transaction_id,
                    schedule_id=other.id
                )

            schedule.paid_amount = paid_amount
            schedule.paid_date = paid_date
            schedule.transaction_id = transaction_id
            if paid_amount >= schedule.expected_amount:
                schedule.status = ScheduleStatus.PAID
            else:
                schedule.status = ScheduleStatus.PARTIAL
            schedule.touch()
            self.repository.save_schedule(schedule)

            loan = self.repository.get_loan(loan_id)
            recompute_summary(loan, self.repository, self.audit_trail)

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.PAYMENT_REGISTERED,
                    entity_type="loan_schedule",
                    entity_id=schedule.id,
                    metadata={
                        "loan_id": loan_id,
                        "installment_number": schedule.installment_number,
                        "transaction_id": transaction_id,
                        "paid_amount": paid_amount,
                        "paid_date": paid_date,
                        "status": schedule.status
                    }
                )

        log_action(
            logger, "info",
            f"Payment registered on installment #{schedule.installment_number}",
            action="register_payment", resource=f"loan_schedule:{schedule.id}",
            extra={"transaction_id": transaction_id, "status": schedule.status.value}
        )
        return schedule

    def unlink_payment(self, schedule_id: str) -> LoanSchedule:
        """
        Remove the payment link from an installment

        The status is re-derived from the due date, so a future installment
        returns to PENDING and a past-due one to OVERDUE. Unlinking a row
        without a payment returns it unchanged.
        """
        loan_id = self.repository.get_schedule(schedule_id).loan_id

        with self.repository.locked(loan_id):
            schedule = self.repository.get_schedule(schedule_id)
            if schedule.transaction_id is None and schedule.paid_amount is None:
                return schedule

            previous_transaction = schedule.transaction_id
            schedule.paid_amount = None
            schedule.paid_date = None
            schedule.transaction_id = None
            schedule.status = derive_status(schedule, self.today())
            schedule.touch()
            self.repository.save_schedule(schedule)

            loan = self.repository.get_loan(loan_id)
            recompute_summary(loan, self.repository, self.audit_trail)

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.PAYMENT_UNLINKED,
                    entity_type="loan_schedule",
                    entity_id=schedule.id,
                    metadata={
                        "loan_id": loan_id,
                        "installment_number": schedule.installment_number,
                        "transaction_id": previous_transaction,
                        "status": schedule.status
                    }
                )

        log_action(
            logger, "info",
            f"Payment unlinked from installment #{schedule.installment_number}",
            action="unlink_payment", resource=f"loan_schedule:{schedule.id}",
            extra={"transaction_id": previous_transaction, "status": schedule.status.value}
        )
        return schedule

    def skip_installment(self, schedule_id: str) -> LoanSchedule:
        """Mark an unpaid installment SKIPPED (operator override)"""
        loan_id = self.repository.get_schedule(schedule_id).loan_id

        with self.repository.locked(loan_id):
            schedule = self.repository.get_schedule(schedule_id)
            if schedule.transaction_id is not None:
                raise TransactionAlreadyLinkedError(
                    f"Installment #{schedule.installment_number} has a linked payment; "
                    f"unlink it before skipping",
                    transaction_id=schedule.transaction_id,
                    schedule_id=schedule.id
                )
            if schedule.status == ScheduleStatus.SKIPPED:
                return schedule

            schedule.status = ScheduleStatus.SKIPPED
            schedule.touch()
            self.repository.save_schedule(schedule)

            loan = self.repository.get_loan(loan_id)
            recompute_summary(loan, self.repository, self.audit_trail)

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.INSTALLMENT_SKIPPED,
                    entity_type="loan_schedule",
                    entity_id=schedule.id,
                    metadata={"loan_id": loan_id, "installment_number": schedule.installment_number}
                )

        logger.info("Installment #%d of loan %s skipped", schedule.installment_number, loan_id)
        return schedule
