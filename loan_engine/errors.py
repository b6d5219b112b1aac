"""
Loan engine error taxonomy

Every failure is reported to the caller as one of these types. They derive
from ValueError so callers that only care about "bad input" can keep a single
except clause.
"""

from typing import Optional


class LoanEngineError(ValueError):
    """Base class for all loan engine failures"""


class InvalidTermsError(LoanEngineError):
    """Loan terms cannot produce a schedule (principal, rate or count)"""


class InvalidPaymentAmountError(LoanEngineError):
    """A payment amount is zero or negative"""


class TransactionAlreadyLinkedError(LoanEngineError):
    """A transaction or installment is already part of a payment link"""

    def __init__(self, message: str, transaction_id: Optional[str] = None,
                 schedule_id: Optional[str] = None):
        super().__init__(message)
        self.transaction_id = transaction_id
        self.schedule_id = schedule_id


class RegenerationConflictError(LoanEngineError):
    """A payment landed on the open segment while it was being replaced"""


class LoanNotFoundError(LoanEngineError):
    """No loan with the given identifier"""


class ScheduleNotFoundError(LoanEngineError):
    """No schedule row with the given identifier"""


class LoanHasPaymentsError(LoanEngineError):
    """The loan cannot be deleted while payments are linked to it"""


class InvalidLoanStateError(LoanEngineError):
    """The operation is not allowed in the loan's current status"""
