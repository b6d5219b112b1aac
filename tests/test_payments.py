"""
Test suite for payment binding

Covers registering and unlinking ledger transactions on installments, the
one-transaction-per-installment rule and the loan completion transition.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_engine.audit import AuditEventType, AuditTrail
from loan_engine.config import LoanEngineConfig
from loan_engine.currency import Currency, Money
from loan_engine.errors import (
    InvalidPaymentAmountError, ScheduleNotFoundError, TransactionAlreadyLinkedError
)
from loan_engine.loans import LoanManager
from loan_engine.models import InterestType, LoanStatus, PaymentFrequency, ScheduleStatus
from loan_engine.storage import InMemoryStorage


def clp(value) -> Money:
    return Money(Decimal(value), Currency.CLP)


class TestPaymentBinding:
    """Register and unlink payments on a 1,200,000 CLP loan"""

    def setup_method(self):
        self.today = date(2024, 1, 20)
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = LoanManager(
            self.storage,
            self.audit_trail,
            config=LoanEngineConfig(storage_backend="memory"),
            today=lambda: self.today
        )

        loan = self.manager.create_loan(
            principal=Decimal('1200000'),
            interest_rate=Decimal('12'),
            interest_type=InterestType.SIMPLE,
            frequency=PaymentFrequency.MONTHLY,
            start_date=date(2024, 1, 15),
            total_installments=12,
            borrower_name="Ana Rojas"
        )
        self.public_id = loan.public_id
        self.schedules = self.manager.get_loan(self.public_id).schedules

    def test_partial_payment(self):
        first = self.schedules[0]
        assert first.expected_amount == clp('112000')

        updated = self.manager.register_payment(first.id, "tx-1", Decimal('50000'), date(2024, 2, 10))

        assert updated.status == ScheduleStatus.PARTIAL
        assert updated.paid_amount == clp('50000')
        assert updated.paid_date == date(2024, 2, 10)
        assert updated.transaction_id == "tx-1"

        summary = self.manager.get_loan(self.public_id).summary
        assert summary.total_paid == clp('50000')
        assert summary.total_expected == clp('1278000')
        assert summary.remaining_amount == clp('1228000')
        assert summary.paid_installments == 0
        assert summary.pending_installments == 12

    def test_unlink_restores_pending_before_due_date(self):
        first = self.schedules[0]
        self.manager.register_payment(first.id, "tx-1", Decimal('50000'), date(2024, 2, 10))

        restored = self.manager.unlink_payment(first.id)

        assert restored.status == ScheduleStatus.PENDING
        assert restored.paid_amount is None
        assert restored.paid_date is None
        assert restored.transaction_id is None
        assert self.manager.find_schedule_by_transaction("tx-1") is None

    def test_unlink_restores_overdue_after_due_date(self):
        first = self.schedules[0]
        self.manager.register_payment(first.id, "tx-1", Decimal('50000'), date(2024, 2, 10))

        self.today = date(2024, 3, 1)
        restored = self.manager.unlink_payment(first.id)

        assert restored.status == ScheduleStatus.OVERDUE

    def test_unlink_is_idempotent(self):
        first = self.schedules[0]
        self.manager.register_payment(first.id, "tx-1", Decimal('112000'), date(2024, 2, 10))

        once = self.manager.unlink_payment(first.id)
        twice = self.manager.unlink_payment(first.id)

        assert once.status == twice.status == ScheduleStatus.PENDING
        assert twice.transaction_id is None
        unlinks = [
            e for e in self.audit_trail.get_all_events()
            if e.event_type == AuditEventType.PAYMENT_UNLINKED
        ]
        assert len(unlinks) == 1

    def test_exact_payment_is_paid_even_when_late(self):
        self.today = date(2024, 6, 1)
        first = self.schedules[0]

        updated = self.manager.register_payment(first.id, "tx-1", Decimal('112000'), date(2024, 5, 30))

        assert updated.status == ScheduleStatus.PAID

    def test_overpayment_is_paid(self):
        first = self.schedules[0]
        updated = self.manager.register_payment(first.id, "tx-1", Decimal('150000'), date(2024, 2, 1))

        assert updated.status == ScheduleStatus.PAID
        summary = self.manager.get_loan(self.public_id).summary
        assert summary.paid_installments == 1
        assert summary.total_paid == clp('150000')

    def test_amount_as_money(self):
        updated = self.manager.register_payment(
            self.schedules[0].id, "tx-1", clp('112000'), date(2024, 2, 1)
        )
        assert updated.status == ScheduleStatus.PAID

    def test_numeric_transaction_id(self):
        self.manager.register_payment(self.schedules[0].id, 42, Decimal('112000'), date(2024, 2, 1))

        found = self.manager.find_schedule_by_transaction(42)
        assert found.id == self.schedules[0].id
        assert found.transaction_id == "42"

    def test_non_positive_amount(self):
        with pytest.raises(InvalidPaymentAmountError, match="must be positive"):
            self.manager.register_payment(self.schedules[0].id, "tx-1", Decimal('0'), date(2024, 2, 1))
        with pytest.raises(InvalidPaymentAmountError):
            self.manager.register_payment(self.schedules[0].id, "tx-1", Decimal('-5'), date(2024, 2, 1))

        assert self.manager.get_loan(self.public_id).schedules[0].transaction_id is None

    def test_amount_in_another_currency(self):
        with pytest.raises(InvalidPaymentAmountError, match="USD"):
            self.manager.register_payment(
                self.schedules[0].id, "tx-1", Money(Decimal('112000'), Currency.USD), date(2024, 2, 1)
            )

        assert self.manager.get_loan(self.public_id).schedules[0].transaction_id is None

    def test_amount_with_thousands_dot(self):
        updated = self.manager.register_payment(self.schedules[0].id, "tx-1", "50.000", date(2024, 2, 1))

        assert updated.paid_amount == clp('50000')
        assert updated.status == ScheduleStatus.PARTIAL

    def test_transaction_cannot_pay_two_installments(self):
        self.manager.register_payment(self.schedules[0].id, "tx-1", Decimal('112000'), date(2024, 2, 1))

        with pytest.raises(TransactionAlreadyLinkedError, match="tx-1") as excinfo:
            self.manager.register_payment(self.schedules[1].id, "tx-1", Decimal('111000'), date(2024, 3, 1))

        assert excinfo.value.schedule_id == self.schedules[0].id
        assert self.manager.get_loan(self.public_id).schedules[1].transaction_id is None

    def test_installment_cannot_take_two_transactions(self):
        self.manager.register_payment(self.schedules[0].id, "tx-1", Decimal('50000'), date(2024, 2, 1))

        with pytest.raises(TransactionAlreadyLinkedError, match="already linked"):
            self.manager.register_payment(self.schedules[0].id, "tx-2", Decimal('62000'), date(2024, 2, 2))

    def test_transaction_reusable_after_unlink(self):
        self.manager.register_payment(self.schedules[0].id, "tx-1", Decimal('112000'), date(2024, 2, 1))
        self.manager.unlink_payment(self.schedules[0].id)

        updated = self.manager.register_payment(
            self.schedules[1].id, "tx-1", Decimal('111000'), date(2024, 3, 1)
        )
        assert updated.transaction_id == "tx-1"

    def test_unknown_schedule(self):
        with pytest.raises(ScheduleNotFoundError):
            self.manager.register_payment("missing", "tx-1", Decimal('1'), date(2024, 2, 1))
        with pytest.raises(ScheduleNotFoundError):
            self.manager.unlink_payment("missing")

    def test_payment_events_are_audited(self):
        first = self.schedules[0]
        self.manager.register_payment(first.id, "tx-1", Decimal('50000'), date(2024, 2, 10))

        events = self.audit_trail.get_events_for_entity("loan_schedule", first.id)
        assert [e.event_type for e in events] == [AuditEventType.PAYMENT_REGISTERED]
        assert events[0].metadata["transaction_id"] == "tx-1"
        assert events[0].metadata["paid_amount"] == "50000"
        assert self.audit_trail.verify_integrity()["valid"]


class TestLoanCompletion:
    """ACTIVE <-> COMPLETED follows the schedule"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.manager = LoanManager(
            self.storage,
            AuditTrail(self.storage),
            config=LoanEngineConfig(storage_backend="memory"),
            today=lambda: date(2024, 1, 20)
        )
        loan = self.manager.create_loan(
            principal=Decimal('300000'),
            interest_rate=Decimal('0'),
            interest_type=InterestType.SIMPLE,
            frequency=PaymentFrequency.MONTHLY,
            start_date=date(2024, 1, 15),
            total_installments=3,
            borrower_name="Pedro"
        )
        self.public_id = loan.public_id
        self.schedules = self.manager.get_loan(self.public_id).schedules

    def pay_all(self):
        for i, row in enumerate(self.schedules):
            self.manager.register_payment(row.id, f"tx-{i}", Decimal('100000'), date(2024, 2, 1))

    def test_fully_paid_loan_completes(self):
        self.pay_all()

        detail = self.manager.get_loan(self.public_id)
        assert detail.loan.status == LoanStatus.COMPLETED
        assert detail.summary.remaining_amount.is_zero()
        assert detail.summary.pending_installments == 0

    def test_unlink_reopens_completed_loan(self):
        self.pay_all()
        self.manager.unlink_payment(self.schedules[2].id)

        assert self.manager.get_loan(self.public_id).loan.status == LoanStatus.ACTIVE

    def test_partial_payments_do_not_complete(self):
        for i, row in enumerate(self.schedules):
            self.manager.register_payment(row.id, f"tx-{i}", Decimal('99999'), date(2024, 2, 1))

        assert self.manager.get_loan(self.public_id).loan.status == LoanStatus.ACTIVE

    def test_defaulted_loan_stays_defaulted(self):
        self.manager.mark_defaulted(self.public_id)
        self.pay_all()

        assert self.manager.get_loan(self.public_id).loan.status == LoanStatus.DEFAULTED


class TestSkipInstallment:
    """Operator skip override"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.manager = LoanManager(
            self.storage,
            AuditTrail(self.storage),
            config=LoanEngineConfig(storage_backend="memory"),
            today=lambda: date(2024, 6, 1)
        )
        loan = self.manager.create_loan(
            principal=Decimal('300000'),
            interest_rate=Decimal('12'),
            interest_type=InterestType.SIMPLE,
            frequency=PaymentFrequency.MONTHLY,
            start_date=date(2024, 1, 15),
            total_installments=3,
            borrower_name="Pedro"
        )
        self.public_id = loan.public_id
        self.schedules = self.manager.get_loan(self.public_id).schedules

    def test_skip_survives_status_derivation(self):
        self.manager.skip_installment(self.schedules[0].id)

        detail = self.manager.get_loan(self.public_id)
        assert detail.schedules[0].status == ScheduleStatus.SKIPPED
        assert detail.schedules[1].status == ScheduleStatus.OVERDUE
        assert detail.summary.pending_installments == 2

    def test_skip_linked_installment_is_refused(self):
        self.manager.register_payment(self.schedules[0].id, "tx-1", Decimal('1000'), date(2024, 2, 1))

        with pytest.raises(TransactionAlreadyLinkedError, match="unlink it before skipping"):
            self.manager.skip_installment(self.schedules[0].id)

    def test_skip_is_idempotent(self):
        first = self.manager.skip_installment(self.schedules[0].id)
        second = self.manager.skip_installment(self.schedules[0].id)

        assert first.status == second.status == ScheduleStatus.SKIPPED
