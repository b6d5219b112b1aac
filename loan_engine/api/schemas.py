"""
Pydantic schemas for API requests and responses
"""

from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..currency import Money, decimal_from_string
from ..models import (
    BorrowerType, InterestType, Loan, LoanSchedule, LoanSummary, PaymentFrequency,
    ScheduleOverrides
)


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (CLP, USD, EUR)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


def _money(value: Optional[Money]) -> Optional[Dict[str, str]]:
    if value is None:
        return None
    return MoneyModel.from_money(value).model_dump()


# Loan schemas
class CreateLoanRequest(BaseModel):
    title: Optional[str] = None
    borrower_name: str
    borrower_type: BorrowerType = BorrowerType.PERSON
    principal: str = Field(..., description="Principal amount as string")
    currency: Optional[str] = Field(None, description="Currency code, defaults to the configured one")
    interest_rate: str = Field(..., description="Per-annum percentage as string (12 == 12%)")
    interest_type: InterestType
    frequency: PaymentFrequency
    total_installments: int
    start_date: date
    notes: Optional[str] = None
    generate_schedule: bool = True


class UpdateLoanRequest(BaseModel):
    title: Optional[str] = None
    borrower_name: Optional[str] = None
    borrower_type: Optional[BorrowerType] = None
    notes: Optional[str] = None


class RegenerateSchedulesRequest(BaseModel):
    interest_rate: Optional[str] = None
    interest_type: Optional[InterestType] = None
    frequency: Optional[PaymentFrequency] = None
    total_installments: Optional[int] = None
    start_date: Optional[date] = None
    effective_from_installment: int = 1

    def to_overrides(self) -> ScheduleOverrides:
        return ScheduleOverrides(
            interest_rate=decimal_from_string(self.interest_rate) if self.interest_rate is not None else None,
            interest_type=self.interest_type,
            frequency=self.frequency,
            total_installments=self.total_installments,
            start_date=self.start_date
        )


class RegisterPaymentRequest(BaseModel):
    transaction_id: str
    paid_amount: str = Field(..., description="Amount paid as string, in the loan currency")
    paid_date: date


# Response builders
def loan_to_dict(loan: Loan) -> Dict[str, Any]:
    return {
        "public_id": loan.public_id,
        "title": loan.title,
        "borrower_name": loan.borrower_name,
        "borrower_type": loan.borrower_type.value,
        "principal_amount": _money(loan.principal_amount),
        "interest_rate": str(loan.interest_rate),
        "interest_type": loan.interest_type.value,
        "frequency": loan.frequency.value,
        "total_installments": loan.total_installments,
        "start_date": loan.start_date.isoformat(),
        "status": loan.status.value,
        "notes": loan.notes,
        "created_at": loan.created_at.isoformat(),
        "updated_at": loan.updated_at.isoformat()
    }


def schedule_to_dict(schedule: LoanSchedule) -> Dict[str, Any]:
    return {
        "id": schedule.id,
        "installment_number": schedule.installment_number,
        "due_date": schedule.due_date.isoformat(),
        "expected_principal": _money(schedule.expected_principal),
        "expected_interest": _money(schedule.expected_interest),
        "expected_amount": _money(schedule.expected_amount),
        "status": schedule.status.value,
        "paid_amount": _money(schedule.paid_amount),
        "paid_date": schedule.paid_date.isoformat() if schedule.paid_date else None,
        "transaction_id": schedule.transaction_id
    }


def summary_to_dict(summary: LoanSummary) -> Dict[str, Any]:
    return {
        "paid_installments": summary.paid_installments,
        "pending_installments": summary.pending_installments,
        "total_installments": summary.total_installments,
        "total_expected": _money(summary.total_expected),
        "total_paid": _money(summary.total_paid),
        "remaining_amount": _money(summary.remaining_amount)
    }


def schedules_to_list(schedules: List[LoanSchedule]) -> List[Dict[str, Any]]:
    return [schedule_to_dict(s) for s in schedules]
