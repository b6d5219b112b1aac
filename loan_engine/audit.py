"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every loan and schedule state change is logged here.
"""

import hashlib
import json
import threading
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .currency import Money
from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    LOAN_CREATED = "loan_created"
    LOAN_UPDATED = "loan_updated"
    LOAN_DELETED = "loan_deleted"
    LOAN_DEFAULTED = "loan_defaulted"
    LOAN_COMPLETED = "loan_completed"
    LOAN_REOPENED = "loan_reopened"

    SCHEDULE_GENERATED = "schedule_generated"
    SCHEDULE_REGENERATED = "schedule_regenerated"
    SCHEDULE_STATUS_REFRESHED = "schedule_status_refreshed"

    PAYMENT_REGISTERED = "payment_registered"
    PAYMENT_UNLINKED = "payment_unlinked"
    INSTALLMENT_SKIPPED = "installment_skipped"


def _convert_value(value):
    if isinstance(value, Money):
        return str(value.amount)
    elif isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, (datetime, date)):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, dict):
        return {k: _convert_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_convert_value(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # loan or loan_schedule
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]

    def __post_init__(self):
        # Ensure metadata is JSON serializable
        self.metadata = {k: _convert_value(v) for k, v in (self.metadata or {}).items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata
        }

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._lock = threading.Lock()

    def _last_hash(self) -> str:
        events = self.storage.load_all(self.table_name)
        if not events:
            return ""
        events.sort(key=lambda x: x.get('sequence', 0))
        return events[-1].get('current_hash', "")

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditEvent]:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data

        Returns:
            Created AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        with self._lock:
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash(),
                current_hash="",
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()

            record = event.to_dict()
            # Insertion order; timestamps can collide within one clock tick
            record['sequence'] = self.storage.count(self.table_name)
            self.storage.save(self.table_name, event.id, record)
            return event

    def _load_sorted(self, filters: Dict[str, Any]) -> List[AuditEvent]:
        records = self.storage.find(self.table_name, filters)
        records.sort(key=lambda x: x.get('sequence', 0))
        for record in records:
            record.pop('sequence', None)
        return [AuditEvent.from_dict(record) for record in records]

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All events for one entity, oldest first"""
        return self._load_sorted({'entity_type': entity_type, 'entity_id': entity_id})

    def get_all_events(self) -> List[AuditEvent]:
        """Every event, oldest first"""
        return self._load_sorted({})

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the audit chain

        Returns:
            Dictionary with verification results
        """
        events = self.get_all_events()
        result = {
            'total_events': len(events),
            'valid': True,
            'broken_at': None,
            'error': None
        }

        previous_hash = ""
        for event in events:
            if not event.verify_hash():
                result.update(valid=False, broken_at=event.id,
                              error=f"Hash mismatch for event {event.id}")
                break
            if event.previous_hash != previous_hash:
                result.update(valid=False, broken_at=event.id,
                              error=f"Chain broken at event {event.id}")
                break
            previous_hash = event.current_hash

        return result
