"""
Application wiring and FastAPI dependencies
"""

from typing import Optional

from ..audit import AuditTrail
from ..config import LoanEngineConfig, get_config
from ..loans import LoanManager
from ..storage import StorageInterface, create_storage


class LoanSystem:
    """Loan engine with all components initialized"""

    def __init__(self, config: Optional[LoanEngineConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()

        self.storage = storage or create_storage(self.config.storage_backend, self.config.database_path)
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.loan_manager = LoanManager(self.storage, self.audit_trail, config=self.config)

    def close(self) -> None:
        self.storage.close()


# Global loan system instance, built on first use
loan_system: Optional[LoanSystem] = None


def get_loan_system() -> LoanSystem:
    global loan_system
    if loan_system is None:
        loan_system = LoanSystem()
    return loan_system
