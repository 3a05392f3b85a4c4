"""
ioc/ingest.py -- Bulk import of ThreatFox CSV exports.

Pipeline:
  file lines -> iter_records() -> batched() -> IOCStore.bulk_insert()

iter_records() is a generator: the file is never loaded into memory as a
whole, and each row is parsed independently. A malformed row is logged,
recorded in ImportResult.errors, and skipped -- it never aborts the import.

Expected columns (ThreatFox "full" CSV export, 14 columns):
  first_seen_utc, ioc_id, ioc_value, ioc_type, threat_type, fk_malware,
  malware_alias, malware_printable, last_seen_utc, confidence_level,
  reference, tags, anonymous, reporter

Lines starting with '#' are comments. ThreatFox writes the literal string
"None" for empty optional fields; it is mapped to NULL here. Confidence
values outside 0..100 are clamped rather than rejected -- the feed is
trusted for range, only its format is checked.

Duplicate ioc_ids (within the file or already in the database) are skipped
by the store and counted in ImportResult.skipped.
"""

import csv
import logging
from dataclasses import dataclass, field
from itertools import islice
from typing import Iterable, Iterator, Optional

from sqlalchemy.exc import IntegrityError

from core.timestamps import parse_iso, to_iso
from ioc.models import IOCKind, IOCRecord, clamp_confidence, normalize_ioc_value
from ioc.store import IOCStore

logger = logging.getLogger("iocregistry.ingest")

DEFAULT_BATCH_SIZE = 100

# Column positions in the ThreatFox CSV export.
_FIRST_SEEN = 0
_IOC_ID = 1
_IOC_VALUE = 2
_THREAT_TYPE = 4
_MALWARE = 5
_MALWARE_PRINTABLE = 7
_LAST_SEEN = 8
_CONFIDENCE = 9
_REFERENCE = 10
_TAGS = 11
_REPORTER = 13
_MIN_COLUMNS = 14

_NULL_MARKERS = frozenset({"", "None", "none", "null"})


@dataclass
class RowError:
    line: int
    reason: str


@dataclass
class ImportResult:
    kind: IOCKind
    rows_read: int = 0
    inserted: int = 0
    skipped: int = 0
    errors: list[RowError] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------


def _optional(value: str) -> Optional[str]:
    value = value.strip()
    return None if value in _NULL_MARKERS else value


def _required(values: list[str], index: int, name: str) -> str:
    value = _optional(values[index])
    if value is None:
        raise ValueError(f"{name} is empty")
    return value


def parse_row(kind: IOCKind, values: list[str]) -> IOCRecord:
    """Map one CSV row to an IOCRecord. Raises ValueError on a malformed row."""
    if len(values) < _MIN_COLUMNS:
        raise ValueError(f"expected {_MIN_COLUMNS} columns, got {len(values)}")

    confidence_raw = _optional(values[_CONFIDENCE])
    try:
        confidence = clamp_confidence(int(confidence_raw)) if confidence_raw else 0
    except ValueError:
        raise ValueError(f"confidence_level is not an integer: {confidence_raw[:20]!r}") from None

    last_seen = _optional(values[_LAST_SEEN])
    return IOCRecord(
        ioc_id=_required(values, _IOC_ID, "ioc_id"),
        ioc_value=normalize_ioc_value(kind, _required(values, _IOC_VALUE, "ioc_value")),
        threat_type=_required(values, _THREAT_TYPE, "threat_type"),
        malware=_optional(values[_MALWARE]),
        malware_printable=_optional(values[_MALWARE_PRINTABLE]),
        confidence_level=confidence,
        first_seen=to_iso(parse_iso(_required(values, _FIRST_SEEN, "first_seen_utc"))),
        last_seen=to_iso(parse_iso(last_seen)) if last_seen else None,
        reference=_optional(values[_REFERENCE]),
        tags=_optional(values[_TAGS]),
        reporter=_required(values, _REPORTER, "reporter"),
    )


def iter_records(kind: IOCKind, lines: Iterable[str], result: ImportResult) -> Iterator[IOCRecord]:
    """Yield one IOCRecord per valid data line.

    Comment lines, blank lines and a bare header row are ignored. Invalid
    rows are appended to result.errors and skipped. A quoted field may span
    several lines; errors report the line the row starts on.
    """
    reader = csv.reader(lines, skipinitialspace=True)
    while True:
        line_no = reader.line_num + 1
        try:
            values = next(reader)
        except StopIteration:
            return
        except csv.Error as exc:
            _record_error(result, kind, line_no, f"unparseable CSV: {exc}")
            continue
        if not any(v.strip() for v in values):
            continue
        first = values[0].strip()
        if first.startswith("#") or first == "first_seen_utc":
            continue
        result.rows_read += 1
        try:
            yield parse_row(kind, values)
        except ValueError as exc:
            _record_error(result, kind, line_no, str(exc))


def batched(records: Iterable[IOCRecord], size: int) -> Iterator[list[IOCRecord]]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    iterator = iter(records)
    while batch := list(islice(iterator, size)):
        yield batch


# ---------------------------------------------------------------------------
# Import driver
# ---------------------------------------------------------------------------


def import_csv(
    store: IOCStore,
    kind: IOCKind,
    lines: Iterable[str],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> ImportResult:
    """Stream CSV lines into the store in bounded batches.

    If a whole batch is rejected by a constraint other than the ioc_id
    conflict (which bulk_insert already tolerates), the batch is retried row
    by row so only the offending rows are lost.
    """
    result = ImportResult(kind=kind)
    for batch in batched(iter_records(kind, lines, result), batch_size):
        try:
            inserted = store.bulk_insert(kind, batch)
        except IntegrityError:
            logger.warning("Batch rejected for %s; retrying %d rows individually", kind.value, len(batch))
            inserted = _insert_one_by_one(store, kind, batch, result)
        result.inserted += inserted
        result.skipped += len(batch) - inserted
        logger.info("Processed %d %s records (%d inserted)", result.rows_read, kind.label, result.inserted)
    return result


def _insert_one_by_one(store: IOCStore, kind: IOCKind, batch: list[IOCRecord], result: ImportResult) -> int:
    inserted = 0
    for record in batch:
        try:
            store.create_ioc(kind, record)
            inserted += 1
        except IntegrityError as exc:
            logger.debug("Skipped %s %s: %s", kind.value, record.ioc_id, exc.orig)
    return inserted


def _record_error(result: ImportResult, kind: IOCKind, line_no: int, reason: str) -> None:
    logger.warning("Skipping %s line %d: %s", kind.value, line_no, reason)
    result.errors.append(RowError(line=line_no, reason=reason))
