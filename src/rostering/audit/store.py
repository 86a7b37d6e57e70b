"""
Audit Stores
============
In-memory and SQLite persistence for audit records.

Both stores are append-only and safe for concurrent writers: the in-memory
store under a lock, the SQLite store by opening one connection per operation.
``append_many`` writes a whole run or nothing. ``discard`` exists only so the
engine can withdraw a batch whose run failed to commit.
"""
import json
import sqlite3
import threading
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from rostering.utils.logging_setup import get_logger

from .tracker import AuditRecord

logger = get_logger("rostering.audit.store")

DEFAULT_DB_PATH = Path("data/audit.db")

# SQLite caps bound parameters per statement
DISCARD_CHUNK = 500


def _matches(
    record: AuditRecord,
    employee_id: Optional[str],
    schedule_id: Optional[str],
    start_date: Optional[date],
    end_date: Optional[date],
) -> bool:
    if employee_id is not None and record.employee_id != employee_id:
        return False
    if schedule_id is not None and record.schedule_id != schedule_id:
        return False
    if start_date is not None and record.date < start_date:
        return False
    if end_date is not None and record.date > end_date:
        return False
    return True


class InMemoryAuditStore:
    """Lock-protected list of records, for tests and single-process use."""

    def __init__(self):
        self._records: List[AuditRecord] = []
        self._ids = set()
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> None:
        self.append_many([record])

    def append_many(self, records: List[AuditRecord]) -> None:
        """All records or none: a duplicate id anywhere in the batch rejects it."""
        with self._lock:
            batch_ids = [r.id for r in records]
            clash = (set(batch_ids) & self._ids) or (len(set(batch_ids)) != len(batch_ids))
            if clash:
                raise ValueError(f"Audit record already exists in batch of {len(records)}")
            self._ids.update(batch_ids)
            self._records.extend(records)

    def discard(self, record_ids: Iterable[str]) -> int:
        """Remove the given records; used only to roll back an uncommitted run."""
        ids = set(record_ids)
        with self._lock:
            kept = [r for r in self._records if r.id not in ids]
            removed = len(self._records) - len(kept)
            self._records = kept
            self._ids -= ids
        return removed

    def query(
        self,
        employee_id: Optional[str] = None,
        schedule_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[AuditRecord]:
        with self._lock:
            return [
                r for r in self._records
                if _matches(r, employee_id, schedule_id, start_date, end_date)
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class SqliteAuditStore:
    """
    Audit records in SQLite.

    Usage:
        store = SqliteAuditStore(Path("data/audit.db"))
        tracker = AssignmentAuditTracker(store)
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize with database path."""
        self.db_path = Path(db_path or DEFAULT_DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Create tables if they don't exist."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_records (
                    id TEXT PRIMARY KEY,
                    schedule_id TEXT NOT NULL,
                    employee_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    shift_type TEXT NOT NULL,
                    reasons_json TEXT,
                    fairness_json TEXT,
                    pattern_json TEXT,
                    confidence_score REAL,
                    is_override INTEGER DEFAULT 0,
                    breakdown_json TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_employee_date
                ON audit_records(employee_id, date)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_schedule
                ON audit_records(schedule_id)
            """)
            conn.commit()
        logger.debug(f"Audit database initialized at {self.db_path}")

    @staticmethod
    def _row(record: AuditRecord) -> tuple:
        d = record.to_dict()
        return (
            d["id"],
            d["schedule_id"],
            d["employee_id"],
            d["date"],
            d["shift_type"],
            json.dumps(d["reasons"], sort_keys=True),
            json.dumps(d["fairness_context"], sort_keys=True),
            json.dumps(d["pattern_context"], sort_keys=True),
            d["confidence_score"],
            int(d["is_override"]),
            json.dumps(d["scoring_breakdown"], sort_keys=True) if d["scoring_breakdown"] else None,
        )

    def append(self, record: AuditRecord) -> None:
        self.append_many([record])

    def append_many(self, records: List[AuditRecord]) -> None:
        """Insert the batch in one transaction; any failure rolls all of it back."""
        rows = [self._row(r) for r in records]
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.executemany("""
                    INSERT INTO audit_records
                    (id, schedule_id, employee_id, date, shift_type, reasons_json,
                     fairness_json, pattern_json, confidence_score, is_override, breakdown_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, rows)
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Audit record already exists in batch of {len(records)}") from e

    def discard(self, record_ids: Iterable[str]) -> int:
        """Delete the given records; used only to roll back an uncommitted run."""
        ids = list(record_ids)
        removed = 0
        with sqlite3.connect(self.db_path) as conn:
            for i in range(0, len(ids), DISCARD_CHUNK):
                chunk = ids[i:i + DISCARD_CHUNK]
                placeholders = ", ".join("?" for _ in chunk)
                cursor = conn.execute(f"DELETE FROM audit_records WHERE id IN ({placeholders})", chunk)
                removed += cursor.rowcount
        logger.warning(f"Discarded {removed} audit records from {self.db_path}")
        return removed

    def query(
        self,
        employee_id: Optional[str] = None,
        schedule_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[AuditRecord]:
        clauses, params = [], []
        if employee_id is not None:
            clauses.append("employee_id = ?")
            params.append(employee_id)
        if schedule_id is not None:
            clauses.append("schedule_id = ?")
            params.append(schedule_id)
        if start_date is not None:
            clauses.append("date >= ?")
            params.append(start_date.isoformat())
        if end_date is not None:
            clauses.append("date <= ?")
            params.append(end_date.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(f"""
                SELECT id, schedule_id, employee_id, date, shift_type, reasons_json,
                       fairness_json, pattern_json, confidence_score, is_override, breakdown_json
                FROM audit_records {where}
                ORDER BY date DESC, employee_id
            """, params).fetchall()

        return [self._from_row(row) for row in rows]

    @staticmethod
    def _from_row(row) -> AuditRecord:
        data: Dict = {
            "id": row[0],
            "schedule_id": row[1],
            "employee_id": row[2],
            "date": row[3],
            "shift_type": row[4],
            "reasons": json.loads(row[5]) if row[5] else [],
            "fairness_context": json.loads(row[6]) if row[6] else {},
            "pattern_context": json.loads(row[7]) if row[7] else {},
            "confidence_score": row[8],
            "is_override": bool(row[9]),
            "scoring_breakdown": json.loads(row[10]) if row[10] else None,
        }
        return AuditRecord.from_dict(data)
