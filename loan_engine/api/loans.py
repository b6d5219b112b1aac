"""
Loan endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .deps import LoanSystem, get_loan_system
from .schemas import (
    CreateLoanRequest, RegenerateSchedulesRequest, RegisterPaymentRequest, UpdateLoanRequest,
    loan_to_dict, schedule_to_dict, schedules_to_list, summary_to_dict
)
from ..currency import Currency, decimal_from_string
from ..errors import (
    LoanHasPaymentsError, LoanNotFoundError, RegenerationConflictError,
    ScheduleNotFoundError, TransactionAlreadyLinkedError
)
from ..models import LoanDetail


router = APIRouter()


def _http_error(error: ValueError) -> HTTPException:
    """Map a loan engine failure to an HTTP error"""
    if isinstance(error, (LoanNotFoundError, ScheduleNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (TransactionAlreadyLinkedError, RegenerationConflictError, LoanHasPaymentsError)):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


def _detail(detail: LoanDetail) -> dict:
    return {
        "loan": loan_to_dict(detail.loan),
        "schedules": schedules_to_list(detail.schedules),
        "summary": summary_to_dict(detail.summary)
    }


@router.get("")
async def list_loans(system: LoanSystem = Depends(get_loan_system)):
    """List loans with their summaries"""
    return {
        "loans": [
            {"loan": loan_to_dict(o.loan), "summary": summary_to_dict(o.summary)}
            for o in system.loan_manager.list_loans()
        ]
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: LoanSystem = Depends(get_loan_system)
):
    """Create a loan and its schedule"""
    try:
        currency = Currency[request.currency or system.config.default_currency]
    except KeyError:
        raise HTTPException(status_code=400, detail=f"Unknown currency '{request.currency}'")

    try:
        loan = system.loan_manager.create_loan(
            principal=request.principal,
            interest_rate=decimal_from_string(request.interest_rate),
            interest_type=request.interest_type,
            frequency=request.frequency,
            start_date=request.start_date,
            total_installments=request.total_installments,
            borrower_name=request.borrower_name,
            borrower_type=request.borrower_type,
            title=request.title,
            notes=request.notes,
            generate_schedule=request.generate_schedule,
            currency=currency
        )
        return _detail(system.loan_manager.get_loan(loan.public_id))

    except ValueError as e:
        raise _http_error(e)


@router.get("/{public_id}")
async def get_loan(
    public_id: str,
    system: LoanSystem = Depends(get_loan_system)
):
    """Get a loan with its schedule and summary"""
    try:
        return _detail(system.loan_manager.get_loan(public_id))
    except ValueError as e:
        raise _http_error(e)


@router.put("/{public_id}")
async def update_loan(
    public_id: str,
    request: UpdateLoanRequest,
    system: LoanSystem = Depends(get_loan_system)
):
    """Update descriptive loan fields"""
    try:
        loan = system.loan_manager.update_loan(public_id, **request.model_dump(exclude_unset=True))
        return loan_to_dict(loan)
    except ValueError as e:
        raise _http_error(e)


@router.delete("/{public_id}")
async def delete_loan(
    public_id: str,
    system: LoanSystem = Depends(get_loan_system)
):
    """Delete a loan without linked payments"""
    try:
        system.loan_manager.delete_loan(public_id)
        return {"message": f"Loan {public_id} deleted"}
    except ValueError as e:
        raise _http_error(e)


@router.post("/{public_id}/schedules")
async def regenerate_schedules(
    public_id: str,
    request: RegenerateSchedulesRequest,
    system: LoanSystem = Depends(get_loan_system)
):
    """Regenerate the unpaid part of the schedule"""
    try:
        detail = system.loan_manager.regenerate_schedules(
            public_id,
            request.to_overrides(),
            effective_from_installment=request.effective_from_installment
        )
        return _detail(detail)
    except ValueError as e:
        raise _http_error(e)


@router.post("/{public_id}/default")
async def mark_defaulted(
    public_id: str,
    system: LoanSystem = Depends(get_loan_system)
):
    """Mark a loan as defaulted"""
    try:
        return loan_to_dict(system.loan_manager.mark_defaulted(public_id))
    except ValueError as e:
        raise _http_error(e)


@router.post("/schedules/{schedule_id}/payment")
async def register_payment(
    schedule_id: str,
    request: RegisterPaymentRequest,
    system: LoanSystem = Depends(get_loan_system)
):
    """Link a ledger transaction to an installment"""
    try:
        schedule = system.loan_manager.register_payment(
            schedule_id,
            transaction_id=request.transaction_id,
            paid_amount=request.paid_amount,
            paid_date=request.paid_date
        )
        return schedule_to_dict(schedule)
    except ValueError as e:
        raise _http_error(e)


@router.delete("/schedules/{schedule_id}/payment")
async def unlink_payment(
    schedule_id: str,
    system: LoanSystem = Depends(get_loan_system)
):
    """Remove the payment link from an installment"""
    try:
        return schedule_to_dict(system.loan_manager.unlink_payment(schedule_id))
    except ValueError as e:
        raise _http_error(e)


@router.post("/schedules/{schedule_id}/skip")
async def skip_installment(
    schedule_id: str,
    system: LoanSystem = Depends(get_loan_system)
):
    """Mark an unpaid installment as skipped"""
    try:
        return schedule_to_dict(system.loan_manager.skip_installment(schedule_id))
    except ValueError as e:
        raise _http_error(e)
