"""
Loan and schedule entities

Explicit value objects for loans and their installment rows. A Loan owns its
LoanSchedule rows; a row only references a ledger transaction by id.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .currency import Currency, Money
from .storage import StorageRecord


class InterestType(Enum):
    """How interest is charged on the outstanding principal"""
    SIMPLE = "SIMPLE"        # Even principal, declining interest
    COMPOUND = "COMPOUND"    # Level payment (French amortization)


class PaymentFrequency(Enum):
    """Installment frequency options"""
    WEEKLY = "WEEKLY"        # 52 payments per year
    BIWEEKLY = "BIWEEKLY"    # 26 payments per year
    MONTHLY = "MONTHLY"      # 12 payments per year

    @property
    def periods_per_year(self) -> int:
        return {
            PaymentFrequency.WEEKLY: 52,
            PaymentFrequency.BIWEEKLY: 26,
            PaymentFrequency.MONTHLY: 12,
        }[self]


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"  # Every installment PAID
    DEFAULTED = "DEFAULTED"  # Operator decision only


class ScheduleStatus(Enum):
    """Installment states"""
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    SKIPPED = "SKIPPED"      # Manual override


class BorrowerType(Enum):
    PERSON = "PERSON"
    COMPANY = "COMPANY"


def _money_from(data: Dict[str, Any], key: str, currency: Currency) -> Optional[Money]:
    value = data.get(key)
    if value is None:
        return None
    return Money(Decimal(value), currency)


def _date_from(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value)


@dataclass
class Loan(StorageRecord):
    """Loan with its terms; schedule rows are stored separately"""
    public_id: str
    title: str
    borrower_name: str
    borrower_type: BorrowerType
    principal_amount: Money
    interest_rate: Decimal              # Per-annum percentage, 12 == 12%
    interest_type: InterestType
    frequency: PaymentFrequency
    total_installments: int
    start_date: date
    status: LoanStatus = LoanStatus.ACTIVE
    notes: Optional[str] = None

    @property
    def currency(self) -> Currency:
        return self.principal_amount.currency

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'public_id': self.public_id,
            'title': self.title,
            'borrower_name': self.borrower_name,
            'borrower_type': self.borrower_type.value,
            'principal_amount': str(self.principal_amount.amount),
            'currency': self.currency.code,
            'interest_rate': str(self.interest_rate),
            'interest_type': self.interest_type.value,
            'frequency': self.frequency.value,
            'total_installments': self.total_installments,
            'start_date': self.start_date.isoformat(),
            'status': self.status.value,
            'notes': self.notes,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        currency = Currency[data['currency']]
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            public_id=data['public_id'],
            title=data['title'],
            borrower_name=data['borrower_name'],
            borrower_type=BorrowerType(data['borrower_type']),
            principal_amount=Money(Decimal(data['principal_amount']), currency),
            interest_rate=Decimal(data['interest_rate']),
            interest_type=InterestType(data['interest_type']),
            frequency=PaymentFrequency(data['frequency']),
            total_installments=data['total_installments'],
            start_date=date.fromisoformat(data['start_date']),
            status=LoanStatus(data['status']),
            notes=data.get('notes'),
        )


@dataclass
class LoanSchedule(StorageRecord):
    """One installment of a loan"""
    loan_id: str
    installment_number: int
    due_date: date
    expected_principal: Money
    expected_interest: Money
    expected_amount: Money
    status: ScheduleStatus = ScheduleStatus.PENDING
    paid_amount: Optional[Money] = None
    paid_date: Optional[date] = None
    transaction_id: Optional[str] = None

    def __post_init__(self):
        if self.expected_principal + self.expected_interest != self.expected_amount:
            raise ValueError(
                f"Installment {self.installment_number}: expected amount "
                f"{self.expected_amount.to_string()} does not equal principal "
                f"{self.expected_principal.to_string()} + interest "
                f"{self.expected_interest.to_string()}"
            )

    @property
    def currency(self) -> Currency:
        return self.expected_amount.currency

    @property
    def is_linked(self) -> bool:
        return self.transaction_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'loan_id': self.loan_id,
            'installment_number': self.installment_number,
            'due_date': self.due_date.isoformat(),
            'currency': self.currency.code,
            'expected_principal': str(self.expected_principal.amount),
            'expected_interest': str(self.expected_interest.amount),
            'expected_amount': str(self.expected_amount.amount),
            'status': self.status.value,
            'paid_amount': str(self.paid_amount.amount) if self.paid_amount is not None else None,
            'paid_date': self.paid_date.isoformat() if self.paid_date else None,
            'transaction_id': self.transaction_id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanSchedule':
        currency = Currency[data['currency']]
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            installment_number=data['installment_number'],
            due_date=date.fromisoformat(data['due_date']),
            expected_principal=Money(Decimal(data['expected_principal']), currency),
            expected_interest=Money(Decimal(data['expected_interest']), currency),
            expected_amount=Money(Decimal(data['expected_amount']), currency),
            status=ScheduleStatus(data['status']),
            paid_amount=_money_from(data, 'paid_amount', currency),
            paid_date=_date_from(data.get('paid_date')),
            transaction_id=data.get('transaction_id'),
        )


@dataclass
class LoanSummary:
    """Aggregate view over a loan's schedule"""
    paid_installments: int
    pending_installments: int
    total_installments: int
    total_expected: Money
    total_paid: Money
    remaining_amount: Money


@dataclass
class LoanDetail:
    """A loan with its ordered schedule and summary"""
    loan: Loan
    schedules: List[LoanSchedule] = field(default_factory=list)
    summary: Optional[LoanSummary] = None


@dataclass
class ScheduleOverrides:
    """New terms for a regeneration; None keeps the loan's current value"""
    interest_rate: Optional[Decimal] = None
    interest_type: Optional[InterestType] = None
    frequency: Optional[PaymentFrequency] = None
    total_installments: Optional[int] = None
    start_date: Optional[date] = None


@dataclass
class LoanOverview:
    """A loan with its summary, for listings"""
    loan: Loan
    summary: LoanSummary
