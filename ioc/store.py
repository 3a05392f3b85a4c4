"""
ioc/store.py -- SQLAlchemy-backed persistence layer for IOC records.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in ioc/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. IOCStore is the repository; one table per
IOCKind, all built from the same column template. _row_to_record is the
mapper. Route handlers never touch SQL directly.

Uniqueness of ioc_id is a UNIQUE constraint, never a SELECT-then-INSERT:
create_ioc() and update_ioc() let sqlalchemy.exc.IntegrityError propagate and
the API boundary maps it to 409. The CHECK constraint on confidence_level
backs up the API-level 0..100 validation.

Listing order is first_seen DESC, id ASC. The id tiebreaker keeps pagination
stable: every row appears on exactly one page.

Security: all queries use bound parameters. The malware substring filter
escapes LIKE wildcards in user input (autoescape=True).

Usage:
    store = IOCStore("sqlite:///iocregistry.db")
    record_id = store.create_ioc(IOCKind.SHA256, record)
    total, rows = store.list_iocs(IOCKind.SHA256, IOCFilter(reporter="abuse_ch"), page=1, limit=50)
    store.update_ioc(IOCKind.SHA256, record_id, confidence_level=75)
    store.delete_ioc(IOCKind.SHA256, record_id)
    store.close()
"""

import logging
from dataclasses import asdict
from typing import Iterable, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.timestamps import now_iso
from ioc.models import IOCFilter, IOCKind, IOCRecord

logger = logging.getLogger("iocregistry.ioc")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

# Largest 64-bit SQL INTEGER. Ids and offsets past it match no row.
MAX_ROW_ID = 2**63 - 1

# Columns a caller may write. id, created_at and updated_at are store-managed.
_WRITABLE_FIELDS = (
    "ioc_id",
    "ioc_value",
    "threat_type",
    "malware",
    "malware_printable",
    "confidence_level",
    "first_seen",
    "last_seen",
    "reference",
    "tags",
    "reporter",
)


def _ioc_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("ioc_id", String(255), nullable=False, unique=True),
        Column("ioc_value", Text, nullable=False),
        Column("threat_type", String(100), nullable=False),
        Column("malware", String(255)),
        Column("malware_printable", String(255)),
        Column("confidence_level", Integer, nullable=False),
        Column("first_seen", String(32), nullable=False),  # ISO 8601 UTC
        Column("last_seen", String(32)),
        Column("reference", Text),
        Column("tags", Text),  # comma-separated, as reported
        Column("reporter", String(255), nullable=False),
        Column("created_at", String(32), nullable=False),
        Column("updated_at", String(32), nullable=False),
        CheckConstraint("confidence_level BETWEEN 0 AND 100", name=f"ck_{name}_confidence"),
        Index(f"ix_{name}_first_seen", "first_seen"),
    )


_TABLES: dict[IOCKind, Table] = {
    IOCKind.SHA256: _ioc_table("sha256_hashes"),
    IOCKind.URL: _ioc_table("urls"),
    IOCKind.IPPORT: _ioc_table("ip_ports"),
}


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Per-connection PRAGMAs.

    journal_mode=WAL: readers proceed without blocking during writes.
    case_sensitive_like=ON: SQLite's LIKE is case-insensitive for ASCII by
        default; the malware filter is a case-sensitive "contains".
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA case_sensitive_like=ON")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IOCStore:
    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_iocs(
        self,
        kind: IOCKind,
        filters: Optional[IOCFilter] = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[int, list[IOCRecord]]:
        """Return (total matching rows, rows on the requested page).

        total ignores pagination. page is 1-based; callers validate page >= 1
        and cap limit before calling.
        """
        table = _TABLES[kind]
        conditions = _filter_conditions(table, filters or IOCFilter())
        offset = (page - 1) * limit

        count_query = select(func.count()).select_from(table)
        page_query = table.select().order_by(table.c.first_seen.desc(), table.c.id.asc()).limit(limit).offset(offset)
        for condition in conditions:
            count_query = count_query.where(condition)
            page_query = page_query.where(condition)

        with self.engine.connect() as conn:
            total = conn.execute(count_query).scalar() or 0
            if offset > MAX_ROW_ID:
                return total, []
            rows = conn.execute(page_query).fetchall()
        return total, [_row_to_record(r) for r in rows]

    def get_ioc(self, kind: IOCKind, record_id: int) -> Optional[IOCRecord]:
        """Look up a record by primary key. Returns None if not found."""
        if not _valid_id(record_id):
            return None
        table = _TABLES[kind]
        with self.engine.connect() as conn:
            row = conn.execute(table.select().where(table.c.id == record_id)).fetchone()
        return _row_to_record(row) if row is not None else None

    def count(self, kind: IOCKind) -> int:
        table = _TABLES[kind]
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table)).scalar() or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_ioc(self, kind: IOCKind, record: IOCRecord) -> int:
        """Insert a new record and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if ioc_id already exists for
        this kind, or if a NOT NULL / CHECK constraint fails.
        """
        table = _TABLES[kind]
        with self.engine.connect() as conn:
            result = conn.execute(table.insert().values(**_insert_values(record, now_iso())))
            conn.commit()
            return result.inserted_primary_key[0]

    def update_ioc(self, kind: IOCKind, record_id: int, **fields) -> bool:
        """Apply a partial update.

        Only columns in _WRITABLE_FIELDS are accepted; unknown names raise
        ValueError. updated_at is always refreshed, so an empty update still
        reports whether the record exists.

        Returns True if a row was updated, False if record_id was not found.
        Raises sqlalchemy.exc.IntegrityError on an ioc_id collision.
        """
        unknown = set(fields) - set(_WRITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown IOC fields: {unknown!r}")
        if not _valid_id(record_id):
            return False
        table = _TABLES[kind]
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(table.update().where(table.c.id == record_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_ioc(self, kind: IOCKind, record_id: int) -> bool:
        """Permanently delete a record. Returns True if deleted, False if not found."""
        if not _valid_id(record_id):
            return False
        table = _TABLES[kind]
        with self.engine.connect() as conn:
            result = conn.execute(table.delete().where(table.c.id == record_id))
            conn.commit()
        return result.rowcount > 0

    def bulk_insert(self, kind: IOCKind, records: Iterable[IOCRecord]) -> int:
        """Insert a batch of records in one transaction, skipping ioc_id duplicates.

        Returns the number of rows actually inserted. SQLite and PostgreSQL
        use INSERT ... ON CONFLICT DO NOTHING. Other backends fall back to
        row-by-row inserts inside a savepoint, which is slower but keeps the
        same skip-duplicates semantics.
        """
        table = _TABLES[kind]
        now = now_iso()
        values = [_insert_values(r, now) for r in records]
        if not values:
            return 0

        dialect = self.engine.dialect.name
        with self.engine.connect() as conn:
            if dialect in ("sqlite", "postgresql"):
                insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
                stmt = insert(table).on_conflict_do_nothing(index_elements=["ioc_id"])
                # rowcount after executemany is driver-dependent; count instead.
                before = conn.execute(select(func.count()).select_from(table)).scalar() or 0
                conn.execute(stmt, values)
                inserted = (conn.execute(select(func.count()).select_from(table)).scalar() or 0) - before
            else:
                inserted = 0
                for row in values:
                    try:
                        with conn.begin_nested():
                            conn.execute(table.insert().values(**row))
                        inserted += 1
                    except IntegrityError:
                        logger.debug("Skipped duplicate %s %s", kind.value, row["ioc_id"])
            conn.commit()
        return inserted

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _valid_id(record_id: int) -> bool:
    return 0 < record_id <= MAX_ROW_ID


def _filter_conditions(table: Table, filters: IOCFilter) -> list:
    conditions = []
    if filters.threat_type:
        conditions.append(table.c.threat_type == filters.threat_type)
    if filters.malware:
        conditions.append(table.c.malware.contains(filters.malware, autoescape=True))
    if filters.reporter:
        conditions.append(table.c.reporter == filters.reporter)
    if filters.min_confidence is not None:
        conditions.append(table.c.confidence_level >= filters.min_confidence)
    return conditions


def _insert_values(record: IOCRecord, now: str) -> dict:
    data = asdict(record)
    values = {name: data[name] for name in _WRITABLE_FIELDS}
    values["created_at"] = now
    values["updated_at"] = now
    return values


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_record(row) -> IOCRecord:
    return IOCRecord(
        id=row.id,
        ioc_id=row.ioc_id,
        ioc_value=row.ioc_value,
        threat_type=row.threat_type,
        malware=row.malware,
        malware_printable=row.malware_printable,
        confidence_level=row.confidence_level,
        first_seen=row.first_seen,
        last_seen=row.last_seen,
        reference=row.reference,
        tags=row.tags,
        reporter=row.reporter,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
