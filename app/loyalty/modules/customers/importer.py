"""
Excel customer import: extract rows, validate them, skip mobiles already stored,
then bulk insert the rest. Row-level problems land in the outcome report; only
file-level problems abort, and they do so before anything is written.

A multi-row INSERT is all-or-nothing, so when the bulk insert trips the mobile
unique constraint the queue is replayed one row per savepoint and the rows that
did not persist are reported under a single "Multiple" entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.loyalty.audit import record_event
from app.loyalty.models import Admin
from app.loyalty.modules.customers.models import Customer
from app.loyalty.modules.customers.parsers.excel import EmptyFileError, extract_rows
from app.loyalty.modules.customers.utils import (
    DOB_COLUMNS,
    MOBILE_COLUMNS,
    NAME_COLUMNS,
    coerce_text,
    first_value,
    parse_date_value,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS_ERROR = "Name and mobile are required"
DUPLICATE_MOBILE_ERROR = "Mobile number already exists"
BATCH_DUPLICATE_ERROR = "Some duplicate mobile numbers were detected during insert"
MULTIPLE_ROWS = "Multiple"
NOT_AVAILABLE = "N/A"

# Keeps the existence lookup under SQLite's bound-parameter limit; still O(1) per import in practice.
EXISTENCE_CHUNK_SIZE = 900

# Header row is row 1 in the sheet.
FIRST_DATA_ROW = 2


@dataclass(frozen=True)
class ImportRowError:
    row: int | str
    name: str
    mobile: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "name": self.name, "mobile": self.mobile, "error": self.error}


@dataclass(frozen=True)
class ValidatedRow:
    row_number: int
    name: str
    mobile: str
    date_of_birth: date | None


@dataclass
class ImportOutcome:
    total: int = 0
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[ImportRowError] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Import completed: {self.imported} imported, {self.skipped} skipped, {self.failed} failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "imported": self.imported,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
        }


def normalize_rows(raw_rows: list[dict[str, Any]], outcome: ImportOutcome) -> list[ValidatedRow]:
    """
    Resolve aliased columns per row. Rows missing a name or mobile are recorded as
    failed and dropped; everything else comes back as a ValidatedRow in input order.
    """
    validated: list[ValidatedRow] = []
    for idx, raw in enumerate(raw_rows, start=FIRST_DATA_ROW):
        name = coerce_text(first_value(raw, NAME_COLUMNS))
        mobile = coerce_text(first_value(raw, MOBILE_COLUMNS))

        if not name or not mobile:
            logger.debug("Import row %s rejected: missing name or mobile", idx)
            outcome.failed += 1
            outcome.errors.append(
                ImportRowError(
                    row=idx,
                    name=name or NOT_AVAILABLE,
                    mobile=mobile or NOT_AVAILABLE,
                    error=REQUIRED_FIELDS_ERROR,
                )
            )
            continue

        dob_raw = first_value(raw, DOB_COLUMNS)
        dob = parse_date_value(dob_raw)
        if dob_raw is not None and dob is None:
            logger.debug("Import row %s: ignoring unparseable date of birth %r", idx, dob_raw)

        validated.append(ValidatedRow(row_number=idx, name=name, mobile=mobile, date_of_birth=dob))
    return validated


def existing_mobiles(s: Session, mobiles: set[str]) -> set[str]:
    found: set[str] = set()
    ordered = sorted(mobiles)
    for start in range(0, len(ordered), EXISTENCE_CHUNK_SIZE):
        chunk = ordered[start:start + EXISTENCE_CHUNK_SIZE]
        found.update(s.scalars(select(Customer.mobile).where(Customer.mobile.in_(chunk))))
    return found


def resolve_duplicates(s: Session, rows: list[ValidatedRow], outcome: ImportOutcome) -> list[ValidatedRow]:
    """
    Skip rows whose mobile is already stored. Rows that only collide with each
    other are all queued; the unique constraint settles them at commit time.
    """
    if not rows:
        return []
    already = existing_mobiles(s, {r.mobile for r in rows})

    queued: list[ValidatedRow] = []
    for r in rows:
        if r.mobile in already:
            outcome.skipped += 1
            outcome.errors.append(
                ImportRowError(row=r.row_number, name=r.name, mobile=r.mobile, error=DUPLICATE_MOBILE_ERROR)
            )
            continue
        queued.append(r)
    return queued


def _insert_values(r: ValidatedRow, now: datetime) -> dict[str, Any]:
    return {
        "name": r.name,
        "mobile": r.mobile,
        "date_of_birth": r.date_of_birth,
        "added_date": now,
        "created_at": now,
        "updated_at": now,
    }


def _insert_one_by_one(s: Session, values: list[dict[str, Any]]) -> int:
    persisted = 0
    for v in values:
        try:
            with s.begin_nested():
                s.execute(insert(Customer), [v])
        except IntegrityError:
            continue
        persisted += 1
    return persisted


def commit_rows(s: Session, rows: list[ValidatedRow], outcome: ImportOutcome) -> None:
    if not rows:
        return
    now = datetime.utcnow()
    values = [_insert_values(r, now) for r in rows]

    try:
        with s.begin_nested():
            s.execute(insert(Customer), values)
        outcome.imported += len(values)
        return
    except IntegrityError as e:
        logger.warning("Bulk insert hit a unique constraint (%s rows queued); retrying row by row: %s", len(values), e.orig)

    persisted = _insert_one_by_one(s, values)
    outcome.imported += persisted
    outcome.failed += len(values) - persisted
    outcome.errors.append(
        ImportRowError(row=MULTIPLE_ROWS, name=NOT_AVAILABLE, mobile=NOT_AVAILABLE, error=BATCH_DUPLICATE_ERROR)
    )


def import_customers(
    s: Session,
    data: bytes,
    *,
    actor: Admin | None = None,
    filename: str | None = None,
) -> ImportOutcome:
    """
    Run the full Excel import. The caller owns the transaction and must commit.

    Raises MalformedFileError / EmptyFileError before anything is written.
    Database errors other than unique-constraint violations propagate.
    """
    raw_rows = extract_rows(data)
    if not raw_rows:
        raise EmptyFileError("Excel file is empty")

    outcome = ImportOutcome(total=len(raw_rows))
    validated = normalize_rows(raw_rows, outcome)
    queued = resolve_duplicates(s, validated, outcome)
    commit_rows(s, queued, outcome)

    record_event(
        s,
        actor=actor,
        action="customer.import",
        entity_type="Customer",
        entity_id="import",
        metadata={
            "filename": filename,
            "total": outcome.total,
            "imported": outcome.imported,
            "skipped": outcome.skipped,
            "failed": outcome.failed,
        },
    )
    logger.info(
        "Customer import finished (file=%s total=%s imported=%s skipped=%s failed=%s)",
        filename,
        outcome.total,
        outcome.imported,
        outcome.skipped,
        outcome.failed,
    )
    return outcome
