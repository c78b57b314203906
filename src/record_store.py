"""
SQLite record store for package records.

Holds the package table keyed by canonical code, plus the reference data the
scanning stations read: the printed-label catalogue, report reasons,
operators and the scan log.

DB location: configured through [Storage] DatabasePath in config.ini
             (default ~/.package_tracker/packages.db)
"""

import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from exceptions import DuplicateRecordError, RecordNotFoundError, StoreError
from logger import get_logger
from models import LabelDetails, PackageRecord

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS packages (
    code            TEXT PRIMARY KEY,
    status          TEXT NOT NULL,
    assigned_to     TEXT,
    operator        TEXT,
    product         TEXT,
    sku             TEXT,
    quantity        INTEGER,
    organization    TEXT,
    sale_reference  TEXT,
    report_details  TEXT,
    assigned_at     TEXT,
    qualified_at    TEXT,
    delivered_at    TEXT
);
CREATE INDEX IF NOT EXISTS idx_packages_status ON packages (status);

CREATE TABLE IF NOT EXISTS labels (
    code            TEXT PRIMARY KEY,
    sku             TEXT,
    product         TEXT,
    quantity        INTEGER,
    organization    TEXT,
    sale_reference  TEXT
);

CREATE TABLE IF NOT EXISTS report_reasons (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    reason          TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS operators (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    role            TEXT NOT NULL,
    UNIQUE (name, role)
);

CREATE TABLE IF NOT EXISTS scan_log (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    code            TEXT NOT NULL,
    scan_date       TEXT,
    scan_time       TEXT,
    operator        TEXT,
    area            TEXT,
    sku             TEXT,
    quantity        INTEGER,
    product         TEXT,
    organization    TEXT,
    sale_reference  TEXT
);
"""

# Columns callers may set through update()/bulk_update()
UPDATABLE_FIELDS = frozenset({
    "status", "assigned_to", "operator", "product", "sku", "quantity",
    "organization", "sale_reference", "report_details",
    "assigned_at", "qualified_at", "delivered_at",
})

_PACKAGE_COLUMNS = (
    "code", "status", "assigned_to", "operator", "product", "sku", "quantity",
    "organization", "sale_reference", "report_details",
    "assigned_at", "qualified_at", "delivered_at",
)

_SCAN_LOG_COLUMNS = (
    "code", "scan_date", "scan_time", "operator", "area", "sku", "quantity",
    "product", "organization", "sale_reference",
)

_INSERT_PACKAGE_SQL = "INSERT INTO packages ({}) VALUES ({})".format(
    ", ".join(_PACKAGE_COLUMNS), ", ".join("?" for _ in _PACKAGE_COLUMNS)
)
_INSERT_SCAN_LOG_SQL = "INSERT INTO scan_log ({}) VALUES ({})".format(
    ", ".join(_SCAN_LOG_COLUMNS), ", ".join("?" for _ in _SCAN_LOG_COLUMNS)
)


class PackageStore:
    """
    SQLite wrapper for package records.

    Every public method opens its own connection and commits or rolls back
    as one transaction. Driver errors surface as StoreError.
    """

    def __init__(self, db_path: Path):
        self._path = str(db_path)
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        try:
            with self._connect() as conn:
                conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open record store at {self._path}: {e}") from e
        logger.info(f"Record store ready at {self._path}")

    @staticmethod
    def _check_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
        if not fields:
            raise ValueError("No fields to update")
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown package fields: {sorted(unknown)}")
        return {k: getattr(v, 'value', v) for k, v in fields.items()}

    # ------------------------------------------------------------------
    # Package records
    # ------------------------------------------------------------------

    def get(self, code: str) -> PackageRecord:
        """
        Fetch the record for a code.

        Raises:
            RecordNotFoundError: If there is no row for the code
            StoreError: On any database failure
        """
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM packages WHERE code = ?", (code,)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Lookup of {code} failed: {e}")
            raise StoreError(f"Lookup of {code} failed: {e}") from e

        if row is None:
            raise RecordNotFoundError(code)
        return PackageRecord.from_dict(dict(row))

    def update(self, code: str, fields: Dict[str, Any]) -> None:
        """
        Update one record.

        Raises:
            RecordNotFoundError: If no row matched the code
        """
        values = self._check_fields(fields)
        assignments = ", ".join(f"{name} = :{name}" for name in values)
        params = dict(values, code=code)

        try:
            with self._connect() as conn:
                cur = conn.execute(f"UPDATE packages SET {assignments} WHERE code = :code", params)
        except sqlite3.Error as e:
            logger.error(f"Update of {code} failed: {e}")
            raise StoreError(f"Update of {code} failed: {e}") from e

        if cur.rowcount == 0:
            raise RecordNotFoundError(code)
        logger.debug(f"Updated {code}: {sorted(values)}")

    def bulk_update(self, codes: Iterable[str], fields: Dict[str, Any]) -> int:
        """
        Apply the same field values to every code in one statement.

        The update is all or nothing: if any listed code has no row, the
        transaction is rolled back.

        Returns:
            Number of rows updated

        Raises:
            StoreError: If the write fails or a code has no row
        """
        codes = list(dict.fromkeys(codes))
        if not codes:
            return 0

        values = self._check_fields(fields)
        assignments = ", ".join(f"{name} = ?" for name in values)
        placeholders = ", ".join("?" for _ in codes)
        sql = f"UPDATE packages SET {assignments} WHERE code IN ({placeholders})"

        try:
            with self._connect() as conn:
                cur = conn.execute(sql, list(values.values()) + codes)
                if cur.rowcount != len(codes):
                    # Raising inside the block rolls the update back
                    logger.error(f"Bulk update matched {cur.rowcount} of {len(codes)} packages, rolled back")
                    raise StoreError(f"Only {cur.rowcount} of {len(codes)} packages exist; nothing was written")
        except sqlite3.Error as e:
            logger.error(f"Bulk update of {len(codes)} codes failed: {e}")
            raise StoreError(f"Bulk update failed: {e}") from e

        logger.info(f"Bulk update: {cur.rowcount} packages -> {values.get('status', 'fields')}")
        return cur.rowcount

    def insert(self, records: List[PackageRecord]) -> None:
        """
        Insert new records in one transaction.

        Raises:
            DuplicateRecordError: If any code already exists; nothing is inserted
        """
        if not records:
            return

        rows = []
        for record in records:
            data = record.to_dict()
            rows.append(tuple(data[col] for col in _PACKAGE_COLUMNS))
        sql = _INSERT_PACKAGE_SQL

        try:
            with self._connect() as conn:
                conn.executemany(sql, rows)
        except sqlite3.IntegrityError as e:
            codes = [record.code for record in records]
            logger.warning(f"Insert rejected, duplicate code among {codes}")
            raise DuplicateRecordError(f"Package already registered: {e}", codes) from e
        except sqlite3.Error as e:
            logger.error(f"Insert of {len(records)} packages failed: {e}")
            raise StoreError(f"Insert failed: {e}") from e

        logger.info(f"Inserted {len(records)} packages")

    # ------------------------------------------------------------------
    # Label catalogue
    # ------------------------------------------------------------------

    def get_label(self, code: str) -> Optional[LabelDetails]:
        """Return the printed-label metadata for a code, or None if unknown."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT sku, product, quantity, organization, sale_reference FROM labels WHERE code = ?",
                    (code,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Label lookup of {code} failed: {e}") from e
        return LabelDetails(**dict(row)) if row else None

    def add_labels(self, labels: Dict[str, LabelDetails]) -> None:
        """Insert or replace catalogue entries keyed by code."""
        rows = [
            (code, d.sku, d.product, d.quantity, d.organization, d.sale_reference)
            for code, d in labels.items()
        ]
        try:
            with self._connect() as conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO labels VALUES (?,?,?,?,?,?)", rows
                )
        except sqlite3.Error as e:
            raise StoreError(f"Saving labels failed: {e}") from e

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def list_report_reasons(self) -> List[str]:
        try:
            with self._connect() as conn:
                rows = conn.execute("SELECT reason FROM report_reasons ORDER BY reason").fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Loading report reasons failed: {e}") from e
        return [r["reason"] for r in rows]

    def add_report_reason(self, reason: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute("INSERT OR IGNORE INTO report_reasons (reason) VALUES (?)", (reason,))
        except sqlite3.Error as e:
            raise StoreError(f"Saving report reason failed: {e}") from e

    def list_operators(self, role: str) -> List[str]:
        """Names of the operators holding a role, alphabetically."""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT name FROM operators WHERE role = ? ORDER BY name", (role,)
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Loading operators failed: {e}") from e
        return [r["name"] for r in rows]

    def add_operator(self, name: str, role: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR IGNORE INTO operators (name, role) VALUES (?, ?)", (name, role)
                )
        except sqlite3.Error as e:
            raise StoreError(f"Saving operator failed: {e}") from e

    # ------------------------------------------------------------------
    # Scan log
    # ------------------------------------------------------------------

    def insert_scan_log(self, rows: List[Dict[str, Any]]) -> int:
        """
        Append exported session rows to the scan log.

        Args:
            rows: Dicts keyed by scan log column name; missing keys become NULL

        Returns:
            Number of rows written
        """
        values = [tuple(row.get(col) for col in _SCAN_LOG_COLUMNS) for row in rows]
        sql = _INSERT_SCAN_LOG_SQL
        try:
            with self._connect() as conn:
                conn.executemany(sql, values)
        except sqlite3.Error as e:
            logger.error(f"Scan log insert failed: {e}")
            raise StoreError(f"Scan log insert failed: {e}") from e

        logger.info(f"Scan log: {len(values)} rows written")
        return len(values)

    def count_scan_log(self) -> int:
        try:
            with self._connect() as conn:
                return conn.execute("SELECT COUNT(*) FROM scan_log").fetchone()[0]
        except sqlite3.Error as e:
            raise StoreError(f"Reading scan log failed: {e}") from e

    def check_connection(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.warning(f"Record store unreachable: {e}")
            return False
