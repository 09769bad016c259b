"""
Filing Persistence Layer.

Stores filings, their personal / entity child records, saved answers and
resumable wizard progress. Two backends share one set of operations:

- InMemoryFilingStore for tests and local development
- SQLiteFilingStore for persistent storage (filing documents as JSON)

Each operation is a read-modify-write of one Filing under a store lock, so
concurrent autosaves of different people never lose each other's answers.
"""

import json
import logging
import secrets
import sqlite3
import string
import threading
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from config.settings import get_settings
from wizard._decimal_utils import money
from wizard.models import (
    EntityFiling,
    Filing,
    FilingRole,
    FilingStatus,
    FilingType,
    PersonalFiling,
    WizardProgress,
)

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase

# Statuses from which the first "Next" moves a filing to IN_PROGRESS
_NOT_YET_STARTED = (FilingStatus.NOT_STARTED, FilingStatus.DRAFT)


class FilingStoreError(Exception):
    """Base error for filing persistence."""
    pass


class FilingNotFoundError(FilingStoreError):
    """Raised when a filing or child record does not exist."""
    pass


class DuplicateRecordError(FilingStoreError):
    """Raised when a filing would get a second primary or spouse record."""
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_base36(number: int) -> str:
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits)) or "0"


def generate_reference_number(prefix: str = "JJ") -> str:
    """Reference like ``JJ-K3P9X2QA``: 4 base36 timestamp chars + 4 random chars."""
    stamp = _to_base36(int(time.time() * 1000))[-4:]
    random_part = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix}-{stamp}{random_part}"


class FilingStore(ABC):
    """
    Abstract base class for filing storage backends.

    Backends implement loading and saving whole Filing documents; the
    operations the wizard needs are built on top of those.
    """

    def __init__(self, reference_prefix: Optional[str] = None):
        self.reference_prefix = reference_prefix or get_settings().reference_prefix
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Backend primitives
    # -------------------------------------------------------------------------

    @abstractmethod
    def _load(self, filing_id: str) -> Optional[Filing]:
        """Load a filing, or None when it does not exist."""
        pass

    @abstractmethod
    def _store(self, filing: Filing) -> None:
        """Insert or replace a filing."""
        pass

    @abstractmethod
    def _filing_id_for_record(self, record_id: str) -> Optional[str]:
        """Id of the filing owning a personal or entity record."""
        pass

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def get_filing(self, filing_id: str) -> Filing:
        """Get a filing by id. Raises FilingNotFoundError."""
        with self._lock:
            filing = self._load(filing_id)
        if filing is None:
            raise FilingNotFoundError(f"Filing not found: {filing_id}")
        return filing

    def create_filing(
        self,
        year: Optional[int] = None,
        filing_type: Union[FilingType, str] = FilingType.INDIVIDUAL,
        filing_id: Optional[str] = None,
    ) -> Filing:
        """
        Create a DRAFT filing.

        Corporate and trust filings get their single entity record here;
        individual filings get their personal records as people are added.
        Without a year the configured default tax year is used.
        """
        if year is None:
            year = get_settings().default_tax_year
        filing_type = FilingType(filing_type)
        now = _now()
        filing = Filing(
            id=filing_id or str(uuid.uuid4()),
            year=year,
            type=filing_type,
            status=FilingStatus.DRAFT,
            created_at=now,
            updated_at=now,
        )
        if filing.is_business:
            filing.entity_filing = EntityFiling(id=str(uuid.uuid4()))

        with self._lock:
            self._store(filing)
        logger.info(f"Created {filing_type.value} filing {filing.id} for {year}")
        return filing

    def add_personal_filing(
        self,
        filing_id: str,
        role: Union[FilingRole, str],
        form_data: Optional[Dict[str, Any]] = None,
    ) -> PersonalFiling:
        """Add a primary, spouse or dependent record to an individual filing."""
        role = FilingRole(role)
        with self._lock:
            filing = self.get_filing(filing_id)
            if filing.is_business:
                raise FilingStoreError(
                    f"{filing.type.value} filing {filing_id} has no personal filings"
                )
            if role == FilingRole.PRIMARY and filing.primary is not None:
                raise DuplicateRecordError(f"Filing {filing_id} already has a primary filer")
            if role == FilingRole.SPOUSE and filing.spouse is not None:
                raise DuplicateRecordError(f"Filing {filing_id} already has a spouse")

            record = PersonalFiling(
                id=str(uuid.uuid4()),
                type=role,
                form_data=dict(form_data or {}),
            )
            filing.personal_filings.append(record)
            filing.updated_at = _now()
            self._store(filing)

        logger.info(f"Added {role.value} record {record.id} to filing {filing_id}")
        return record

    def save_form_data(self, record_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Merge answers into a personal or entity record.

        A value of None removes the key. Returns the merged form data.
        """
        with self._lock:
            filing_id = self._filing_id_for_record(record_id)
            filing = self._load(filing_id) if filing_id else None
            record = filing.find_record(record_id) if filing else None
            if record is None:
                raise FilingNotFoundError(f"Filing record not found: {record_id}")

            for key, value in changes.items():
                if value is None:
                    record.form_data.pop(key, None)
                else:
                    record.form_data[key] = value
            filing.updated_at = _now()
            self._store(filing)
            merged = dict(record.form_data)

        logger.debug(f"Saved {len(changes)} field(s) for record {record_id}")
        return merged

    def save_wizard_progress(self, filing_id: str, progress: WizardProgress) -> None:
        with self._lock:
            filing = self.get_filing(filing_id)
            filing.wizard_progress = progress
            filing.updated_at = _now()
            self._store(filing)

    def mark_in_progress(self, filing_id: str) -> Filing:
        """Move a DRAFT / NOT_STARTED filing to IN_PROGRESS; other statuses are kept."""
        with self._lock:
            filing = self.get_filing(filing_id)
            if filing.status in _NOT_YET_STARTED:
                filing.status = FilingStatus.IN_PROGRESS
                filing.updated_at = _now()
                self._store(filing)
        return filing

    def reopen_filing(self, filing_id: str) -> Filing:
        """Reopen a submitted filing for amendment; its reference number is kept."""
        with self._lock:
            filing = self.get_filing(filing_id)
            filing.status = FilingStatus.IN_PROGRESS
            filing.updated_at = _now()
            self._store(filing)
        logger.info(f"Reopened filing {filing_id} for amendment")
        return filing

    def submit_for_review(self, filing_id: str, total_price: Union[Decimal, float]) -> Filing:
        """
        Submit a filing: store the quoted price, mark every child record
        complete and move the filing to UNDER_REVIEW.

        An existing reference number is preserved (amendments); otherwise a
        new one is generated.
        """
        with self._lock:
            filing = self.get_filing(filing_id)
            for record in filing.personal_filings:
                record.is_complete = True
            if filing.entity_filing is not None:
                filing.entity_filing.is_complete = True

            if not filing.reference_number:
                filing.reference_number = generate_reference_number(self.reference_prefix)
            filing.total_price = money(total_price)
            filing.status = FilingStatus.UNDER_REVIEW
            filing.updated_at = _now()
            self._store(filing)

        logger.info(
            f"Filing {filing_id} submitted for review as {filing.reference_number} "
            f"(total {filing.total_price})"
        )
        return filing


class InMemoryFilingStore(FilingStore):
    """
    In-memory filing storage for testing.

    Thread-safe but not persistent. Stored filings are copied on the way in
    and out so callers never share state with the store.
    """

    def __init__(self, reference_prefix: Optional[str] = None):
        super().__init__(reference_prefix)
        self._filings: Dict[str, Filing] = {}

    def _load(self, filing_id: str) -> Optional[Filing]:
        filing = self._filings.get(filing_id)
        return filing.model_copy(deep=True) if filing is not None else None

    def _store(self, filing: Filing) -> None:
        self._filings[filing.id] = filing.model_copy(deep=True)

    def _filing_id_for_record(self, record_id: str) -> Optional[str]:
        for filing in self._filings.values():
            if filing.find_record(record_id) is not None:
                return filing.id
        return None

    def clear(self) -> None:
        """Clear all filings (for testing)."""
        with self._lock:
            self._filings.clear()

    def count(self) -> int:
        with self._lock:
            return len(self._filings)


class SQLiteFilingStore(FilingStore):
    """
    SQLite-based filing storage.

    Each filing is stored as one JSON document; a side table maps child
    record ids to their filing so autosaves can address a record directly.
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        reference_prefix: Optional[str] = None,
    ):
        super().__init__(reference_prefix)
        self.db_path = Path(db_path or get_settings().database_path)
        self._ensure_tables_exist()

    def _ensure_tables_exist(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS filings (
                    filing_id TEXT PRIMARY KEY,
                    tax_year INTEGER NOT NULL,
                    filing_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    reference_number TEXT,
                    data JSON NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS filing_records (
                    record_id TEXT PRIMARY KEY,
                    filing_id TEXT NOT NULL,
                    record_type TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_filing_records_filing
                ON filing_records(filing_id)
            """)

            conn.commit()

    def _load(self, filing_id: str) -> Optional[Filing]:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT data FROM filings WHERE filing_id = ?", (filing_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return Filing.model_validate(json.loads(row[0]))

    def _store(self, filing: Filing) -> None:
        payload = filing.model_dump(mode="json", by_alias=True)
        now = _now()

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO filings (
                    filing_id, tax_year, filing_type, status, reference_number,
                    data, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(filing_id) DO UPDATE SET
                    status = excluded.status,
                    reference_number = excluded.reference_number,
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (
                filing.id,
                filing.year,
                filing.type.value,
                filing.status.value,
                filing.reference_number,
                json.dumps(payload, default=str),
                filing.created_at or now,
                filing.updated_at or now,
            ))

            records = [(pf.id, filing.id, pf.type.value) for pf in filing.personal_filings]
            if filing.entity_filing is not None:
                records.append((filing.entity_filing.id, filing.id, filing.type.value))
            cursor.executemany(
                "INSERT OR IGNORE INTO filing_records (record_id, filing_id, record_type) "
                "VALUES (?, ?, ?)",
                records,
            )
            conn.commit()

    def _filing_id_for_record(self, record_id: str) -> Optional[str]:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT filing_id FROM filing_records WHERE record_id = ?",
                (record_id,),
            )
            row = cursor.fetchone()
        return row[0] if row else None
