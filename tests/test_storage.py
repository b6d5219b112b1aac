"""
Tests for storage backends and transaction support
"""

import pytest
import tempfile
import os
from datetime import date

from loan_engine.config import LoanEngineConfig
from loan_engine.loans import LoanManager
from loan_engine.models import InterestType, PaymentFrequency
from loan_engine.storage import InMemoryStorage, SQLiteStorage, create_storage


record = {"id": "loan_001", "borrower_name": "Ana", "principal_amount": "1200000", "notes": None}


class StorageContract:
    """Behaviour every backend shares"""

    def make_storage(self):
        raise NotImplementedError

    def setup_method(self):
        self.storage = self.make_storage()

    def teardown_method(self):
        self.storage.close()

    def test_basic_operations(self):
        self.storage.save("loans", "loan_001", record)

        assert self.storage.load("loans", "loan_001") == record
        assert self.storage.load("loans", "missing") is None
        assert self.storage.count("loans") == 1

        assert self.storage.delete("loans", "loan_001")
        assert not self.storage.delete("loans", "loan_001")
        assert self.storage.count("loans") == 0

    def test_save_replaces(self):
        self.storage.save("loans", "loan_001", record)
        self.storage.save("loans", "loan_001", dict(record, borrower_name="Luis"))

        assert self.storage.count("loans") == 1
        assert self.storage.load("loans", "loan_001")["borrower_name"] == "Luis"

    def test_load_all_keeps_insertion_order(self):
        for i in range(5):
            self.storage.save("loan_schedules", f"row_{i}", {"id": f"row_{i}", "n": i})

        assert [r["n"] for r in self.storage.load_all("loan_schedules")] == [0, 1, 2, 3, 4]

    def test_find(self):
        self.storage.save("loan_schedules", "a", {"id": "a", "loan_id": "L1", "transaction_id": "tx-1"})
        self.storage.save("loan_schedules", "b", {"id": "b", "loan_id": "L1", "transaction_id": None})
        self.storage.save("loan_schedules", "c", {"id": "c", "loan_id": "L2", "transaction_id": None})

        assert {r["id"] for r in self.storage.find("loan_schedules", {"loan_id": "L1"})} == {"a", "b"}
        assert [r["id"] for r in self.storage.find("loan_schedules", {"transaction_id": "tx-1"})] == ["a"]
        assert self.storage.find("loan_schedules", {"loan_id": "L3"}) == []

    def test_loaded_records_are_copies(self):
        self.storage.save("loans", "loan_001", record)
        loaded = self.storage.load("loans", "loan_001")
        loaded["borrower_name"] = "changed"

        assert self.storage.load("loans", "loan_001")["borrower_name"] == "Ana"

    def test_atomic_commit(self):
        with self.storage.atomic():
            self.storage.save("loans", "loan_001", record)
            self.storage.save("loan_schedules", "row_1", {"id": "row_1"})

        assert not self.storage.in_transaction
        assert self.storage.load("loans", "loan_001") == record
        assert self.storage.load("loan_schedules", "row_1") == {"id": "row_1"}

    def test_atomic_rollback(self):
        self.storage.save("loans", "loan_001", record)

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("loans", "loan_001", dict(record, borrower_name="Luis"))
                self.storage.save("loans", "loan_002", dict(record, id="loan_002"))
                self.storage.delete("loans", "loan_001")
                raise RuntimeError("boom")

        assert not self.storage.in_transaction
        assert self.storage.load("loans", "loan_001") == record
        assert self.storage.load("loans", "loan_002") is None

    def test_nested_atomic_joins_outer(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                with self.storage.atomic():
                    self.storage.save("loans", "loan_001", record)
                assert self.storage.in_transaction
                raise RuntimeError("boom")

        assert self.storage.load("loans", "loan_001") is None


class TestInMemoryStorage(StorageContract):

    def make_storage(self):
        return InMemoryStorage()

    def test_rollback_restores_only_touched_records(self):
        for i in range(3):
            self.storage.save("loans", f"loan_{i}", dict(record, id=f"loan_{i}"))

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("loans", "loan_1", dict(record, id="loan_1", borrower_name="Luis"))
                self.storage.delete("loans", "loan_1")
                self.storage.save("loans", "loan_1", dict(record, id="loan_1", borrower_name="Eva"))
                self.storage.save("loan_schedules", "row_1", {"id": "row_1"})
                assert len(self.storage._undo) == 2
                raise RuntimeError("boom")

        assert {r["id"] for r in self.storage.load_all("loans")} == {"loan_0", "loan_1", "loan_2"}
        assert self.storage.load("loans", "loan_1")["borrower_name"] == "Ana"
        assert self.storage.load_all("loan_schedules") == []


class TestSQLiteStorage(StorageContract):

    def make_storage(self):
        return SQLiteStorage(":memory:")

    def test_table_created_inside_rolled_back_transaction(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("loans", "loan_001", record)
                self.storage.save("new_table", "x", {"id": "x"})
                raise RuntimeError("boom")

        self.storage.save("new_table", "y", {"id": "y"})
        assert self.storage.count("new_table") == 1


class TestSQLitePersistence:
    """Data survives reopening the database file"""

    def setup_method(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "loans.db")

    def teardown_method(self):
        self.tmpdir.cleanup()

    def test_loans_survive_reopen(self):
        config = LoanEngineConfig(storage_backend="sqlite", database_path=self.db_path)
        storage = create_storage(config.storage_backend, config.database_path)
        manager = LoanManager(storage, config=config)
        loan = manager.create_loan(
            principal="1200000",
            interest_rate="12",
            interest_type=InterestType.SIMPLE,
            frequency=PaymentFrequency.MONTHLY,
            start_date=date(2024, 1, 15),
            total_installments=12,
            borrower_name="Ana"
        )
        row = manager.get_loan(loan.public_id).schedules[0]
        manager.register_payment(row.id, "tx-1", "50000", date(2024, 2, 1))
        storage.close()

        reopened = LoanManager(SQLiteStorage(self.db_path), config=config)
        detail = reopened.get_loan(loan.public_id)

        assert len(detail.schedules) == 12
        assert detail.schedules[0].transaction_id == "tx-1"
        assert detail.summary.total_paid.amount == 50000
        reopened.storage.close()


class TestCreateStorage:

    def test_backends(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)
        storage = create_storage("sqlite", ":memory:")
        assert isinstance(storage, SQLiteStorage)
        storage.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_storage("postgres")
