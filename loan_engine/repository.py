"""
Loan persistence

Maps Loan and LoanSchedule entities onto the storage tables and serializes
all mutations of one loan behind a per-loan lock plus a storage transaction.
"""

from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional
import threading

from .errors import LoanNotFoundError, ScheduleNotFoundError
from .models import Loan, LoanSchedule
from .storage import StorageInterface


class LoanRepository:
    """Storage access for loans and their schedule rows"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.loans_table = "loans"
        self.schedules_table = "loan_schedules"

        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, loan_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(loan_id)
            if lock is None:
                lock = self._locks[loan_id] = threading.RLock()
            return lock

    @contextmanager
    def locked(self, loan_id: str):
        """
        Serialize work on one loan and run it as one storage transaction.

        Operations on different loans take different locks.
        """
        with self._lock_for(loan_id):
            with self.storage.atomic():
                yield

    # Loans

    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def get_loan(self, loan_id: str) -> Loan:
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return Loan.from_dict(data)

    def get_loan_by_public_id(self, public_id: str) -> Loan:
        found = self.storage.find(self.loans_table, {"public_id": public_id})
        if not found:
            raise LoanNotFoundError(f"Loan {public_id} not found")
        return Loan.from_dict(found[0])

    def list_loans(self) -> List[Loan]:
        loans = [Loan.from_dict(data) for data in self.storage.load_all(self.loans_table)]
        loans.sort(key=lambda loan: loan.created_at)
        return loans

    def delete_loan(self, loan: Loan) -> None:
        for schedule in self.get_schedules(loan.id):
            self.storage.delete(self.schedules_table, schedule.id)
        self.storage.delete(self.loans_table, loan.id)

    # Schedules

    def get_schedule(self, schedule_id: str) -> LoanSchedule:
        data = self.storage.load(self.schedules_table, schedule_id)
        if not data:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
        return LoanSchedule.from_dict(data)

    def get_schedules(self, loan_id: str) -> List[LoanSchedule]:
        """All rows of a loan ordered by installment number"""
        rows = [
            LoanSchedule.from_dict(data)
            for data in self.storage.find(self.schedules_table, {"loan_id": loan_id})
        ]
        rows.sort(key=lambda row: row.installment_number)
        return rows

    def find_schedule_by_transaction(self, transaction_id: str) -> Optional[LoanSchedule]:
        found = self.storage.find(self.schedules_table, {"transaction_id": transaction_id})
        if not found:
            return None
        return LoanSchedule.from_dict(found[0])

    def save_schedule(self, schedule: LoanSchedule) -> None:
        self.storage.save(self.schedules_table, schedule.id, schedule.to_dict())

    def save_schedules(self, schedules: Iterable[LoanSchedule]) -> None:
        for schedule in schedules:
            self.save_schedule(schedule)

    def replace_schedules(self, removed: Iterable[LoanSchedule], added: Iterable[LoanSchedule]) -> None:
        """Delete `removed` then insert `added`; callers wrap this in `locked()`"""
        for schedule in removed:
            self.storage.delete(self.schedules_table, schedule.id)
        self.save_schedules(added)
