"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every successful state change in the ledger core is logged here as
(action, entity, actor, timestamp). Writing the audit trail never fails the
operation being audited.
"""

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events"""
    # Loan events
    LOAN_APPLICATION_CREATED = "loan_application_created"
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    LOAN_SENT_FOR_REASSESSMENT = "loan_sent_for_reassessment"
    LOAN_RESUBMITTED = "loan_resubmitted"
    LOAN_DEFAULTED = "loan_defaulted"
    LOAN_COMPLETED = "loan_completed"
    PENALTY_ASSESSED = "penalty_assessed"

    # Repayment events
    REPAYMENT_RECORDED = "repayment_recorded"
    REPAYMENT_REVERSED = "repayment_reversed"

    # Account events
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DELETED = "account_deleted"
    ACCOUNT_BALANCE_REPAIRED = "account_balance_repaired"

    # Journal entry events
    JOURNAL_ENTRY_POSTED = "journal_entry_posted"

    # Period events
    BOOKS_CLOSED = "books_closed"

    # System events
    AUDIT_INTEGRITY_CHECK = "audit_integrity_check"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # loan, repayment, account, journal_entry, period
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    actor: Optional[str] = None  # User who initiated the action

    def __post_init__(self):
        if self.metadata:
            self._serialize_metadata()

    def _serialize_metadata(self) -> None:
        """Convert metadata values to JSON-serializable format"""
        def convert_value(value):
            if isinstance(value, Decimal):
                return str(value)
            elif isinstance(value, datetime):
                return value.isoformat()
            elif isinstance(value, Enum):
                return value.value
            elif isinstance(value, dict):
                return {k: convert_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [convert_value(v) for v in value]
            else:
                return value

        self.metadata = {k: convert_value(v) for k, v in self.metadata.items()}

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
            'actor': self.actor,
            'metadata': self.metadata
        }

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'), default=str)
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
        """Hash of the most recent audit event, or "" for an empty chain"""
        events = self.storage.load_all(self.table_name)
        if events:
            return events[-1].get('current_hash', "")
        return ""

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            actor: ID of user who initiated the action

        Returns:
            Created AuditEvent
        """
        # Storage lock first, then the chain lock: posting flows call in
        # here with a transaction already open
        with self.storage.atomic():
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
                    actor=actor,
                    metadata=metadata or {}
                )
                event.current_hash = event.calculate_hash()
                self.storage.insert(self.table_name, event.id, event.to_dict())
                return event

    def record(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Log an audit event as a side effect of a completed operation.

        Audit failures are logged and swallowed so they never fail the
        primary operation. Returns None when auditing is disabled or failed.
        """
        if not self.enabled:
            return None
        try:
            return self.log_event(event_type, entity_type, entity_id, metadata, actor)
        except Exception:
            logger.exception(
                "Failed to write audit event %s for %s %s",
                event_type.value, entity_type, entity_id
            )
            return None

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Get audit events for a specific entity, oldest first"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        if limit:
            events = events[-limit:]
        return events

    def get_all_events(self, limit: Optional[int] = None) -> List[AuditEvent]:
        """Get all audit events, oldest first"""
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self.get_all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
