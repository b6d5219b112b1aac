"""
Test suite for audit module

Tests the hash-chained audit trail, tamper detection and integrity
verification.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from loan_engine.audit import AuditEvent, AuditEventType, AuditTrail
from loan_engine.currency import Currency, Money
from loan_engine.models import LoanStatus
from loan_engine.storage import InMemoryStorage, SQLiteStorage


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def test_metadata_serialization(self):
        """Money, Decimal, dates and enums are stored as JSON-friendly values"""
        now = datetime.now(timezone.utc)

        event = AuditEvent(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.PAYMENT_REGISTERED,
            entity_type="loan_schedule",
            entity_id="ROW001",
            previous_hash="",
            current_hash="",
            metadata={
                "paid_amount": Money(Decimal('50000'), Currency.CLP),
                "rate": Decimal('12.5'),
                "paid_date": date(2024, 2, 10),
                "status": LoanStatus.ACTIVE,
                "changes": {"notes": None, "numbers": (1, 2)}
            }
        )

        assert event.metadata == {
            "paid_amount": "50000",
            "rate": "12.5",
            "paid_date": "2024-02-10",
            "status": "ACTIVE",
            "changes": {"notes": None, "numbers": [1, 2]}
        }

    def test_hash_covers_metadata(self):
        now = datetime.now(timezone.utc)
        event = AuditEvent(
            id="AUDIT001", created_at=now, updated_at=now,
            event_type=AuditEventType.LOAN_CREATED, entity_type="loan", entity_id="L1",
            previous_hash="", current_hash="", metadata={"principal_amount": "1200000"}
        )
        event.current_hash = event.calculate_hash()
        assert event.verify_hash()

        event.metadata["principal_amount"] = "1"
        assert not event.verify_hash()


class TestAuditTrail:
    """Test hash chaining"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_chain_links_events(self):
        first = self.audit_trail.log_event(AuditEventType.LOAN_CREATED, "loan", "L1", {"a": 1})
        second = self.audit_trail.log_event(AuditEventType.SCHEDULE_GENERATED, "loan", "L1")
        third = self.audit_trail.log_event(AuditEventType.LOAN_CREATED, "loan", "L2")

        assert first.previous_hash == ""
        assert second.previous_hash == first.current_hash
        assert third.previous_hash == second.current_hash

        events = self.audit_trail.get_events_for_entity("loan", "L1")
        assert [e.id for e in events] == [first.id, second.id]
        assert len(self.audit_trail.get_all_events()) == 3

    def test_verify_integrity(self):
        for i in range(5):
            self.audit_trail.log_event(AuditEventType.PAYMENT_REGISTERED, "loan_schedule", f"R{i}")

        result = self.audit_trail.verify_integrity()
        assert result == {'total_events': 5, 'valid': True, 'broken_at': None, 'error': None}

    def test_tampering_is_detected(self):
        for i in range(3):
            self.audit_trail.log_event(
                AuditEventType.PAYMENT_REGISTERED, "loan_schedule", f"R{i}", {"paid_amount": "100"}
            )

        records = sorted(self.storage.load_all("audit_events"), key=lambda r: r["sequence"])
        tampered = records[1]
        tampered["metadata"]["paid_amount"] = "1000000"
        self.storage.save("audit_events", tampered["id"], tampered)

        result = self.audit_trail.verify_integrity()
        assert not result['valid']
        assert result['broken_at'] == tampered["id"]
        assert "Hash mismatch" in result['error']

    def test_deleted_event_breaks_chain(self):
        events = [
            self.audit_trail.log_event(AuditEventType.LOAN_UPDATED, "loan", "L1")
            for _ in range(3)
        ]
        self.storage.delete("audit_events", events[1].id)

        result = self.audit_trail.verify_integrity()
        assert not result['valid']
        assert result['broken_at'] == events[2].id
        assert "Chain broken" in result['error']

    def test_disabled_trail_logs_nothing(self):
        trail = AuditTrail(self.storage, enabled=False)

        assert trail.log_event(AuditEventType.LOAN_CREATED, "loan", "L1") is None
        assert self.storage.count("audit_events") == 0

    def test_sqlite_backed_trail(self):
        storage = SQLiteStorage(":memory:")
        trail = AuditTrail(storage)
        for i in range(3):
            trail.log_event(AuditEventType.LOAN_CREATED, "loan", f"L{i}")

        assert trail.verify_integrity()['valid']
        assert [e.entity_id for e in trail.get_all_events()] == ["L0", "L1", "L2"]
        storage.close()
