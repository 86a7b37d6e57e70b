# rostering/audit - Assignment audit trail
from .store import InMemoryAuditStore, SqliteAuditStore
from .tracker import (
    INTERNAL_DETAIL_KEYS,
    AssignmentAuditTracker,
    AuditRecord,
    sanitize_details,
    sanitize_record,
)

__all__ = [
    "AssignmentAuditTracker", "AuditRecord",
    "InMemoryAuditStore", "SqliteAuditStore",
    "INTERNAL_DETAIL_KEYS", "sanitize_details", "sanitize_record",
]
