"""CSV bulk import of buyer leads.

Pipeline:
1. Normalize lines (trim, drop blanks, drop one trailing comma per data line)
2. Tokenize with the header row; empty header columns and surplus cells vanish
3. Coerce cells (blank -> absent, budgets -> int, tags -> list, email lower-cased)
4. Keep only known columns
5. Validate each row independently: in-batch duplicates, buyer rules,
   duplicates against the importing user's existing buyers
6. Insert every accepted row plus its creation history in one transaction

Row failures are collected and never abort the batch. File-level failures
(not a CSV, too many rows, commit failure) abort the whole import.
"""

import csv
import io
import logging
import re
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .buyers import transaction
from .config import MAX_IMPORT_BYTES, MAX_IMPORT_ERRORS, MAX_IMPORT_ROWS
from .errors import CsvFileError, ImportCommitError
from .history import creation_diff, history_entry
from .models import Buyer, User, utcnow
from .schemas import BuyerInput, ImportResult, ImportRowError
from .validation import collect_violations

logger = logging.getLogger(__name__)

KNOWN_FIELDS = (
    "fullName", "email", "phone", "city", "propertyType", "bhk",
    "purpose", "budgetMin", "budgetMax", "timeline", "source",
    "status", "notes", "tags",
)

BUDGET_FIELDS = ("budgetMin", "budgetMax")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]+")

# Header row is line 1, so the first data row is reported as row 2.
FIRST_DATA_ROW = 2


# =============================================================================
# File decoding and tokenizing
# =============================================================================


def decode_upload(filename: str | None, content_type: str | None, content: bytes) -> str:
    """Accept only ``.csv`` / ``text/csv`` uploads encoded as UTF-8.

    ``content`` may be truncated at ``MAX_IMPORT_BYTES + 1``; anything longer
    than the cap is rejected before decoding.
    """
    is_csv = (content_type or "").split(";")[0].strip() == "text/csv" or (
        (filename or "").lower().endswith(".csv")
    )
    if not is_csv:
        raise CsvFileError("File must be a CSV")
    if len(content) > MAX_IMPORT_BYTES:
        megabytes = MAX_IMPORT_BYTES // (1024 * 1024)
        raise CsvFileError(f"CSV file too large. Maximum {megabytes} MB allowed.")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise CsvFileError("CSV file must be UTF-8 encoded") from exc


def normalize_lines(text: str) -> str:
    """Trim lines, drop blank ones and a single trailing comma on data lines."""
    lines = [line.strip() for line in text.splitlines()]
    lines = [line for line in lines if line]
    cleaned = []
    for index, line in enumerate(lines):
        if index > 0 and line.endswith(","):
            line = line[:-1]
        cleaned.append(line)
    return "\n".join(cleaned)


def read_rows(text: str) -> list[dict[str, str | None]]:
    """Tokenize normalized CSV text into header-keyed rows.

    Empty header names and cells beyond the header are dropped; missing
    trailing cells read as None.
    """
    try:
        reader = csv.DictReader(io.StringIO(text), skipinitialspace=True)
        if reader.fieldnames is None:
            return []
        reader.fieldnames = [name.strip() for name in reader.fieldnames]
        rows = []
        for record in reader:
            rows.append({
                key: value
                for key, value in record.items()
                if key  # None holds surplus cells, "" an unnamed column
            })
        return rows
    except csv.Error as exc:
        raise CsvFileError(f"CSV parsing failed: {exc}") from exc


# =============================================================================
# Cell coercion
# =============================================================================


def parse_budget(value: str) -> int | None:
    """'₹50,00,000' -> 5000000; anything not a whole number -> None."""
    digits = _NON_NUMERIC_RE.sub("", value)
    if not digits:
        return None
    try:
        number = Decimal(digits)
    except InvalidOperation:
        return None
    if not number.is_finite() or number != number.to_integral_value():
        return None
    return int(number)


def split_tags(value: str) -> list[str]:
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def coerce_cell(field: str, value: str | None) -> Any:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if field in BUDGET_FIELDS:
        return parse_budget(value)
    if field == "tags":
        return split_tags(value)
    if field == "email":
        return value.lower()
    return value


def coerce_row(raw: dict[str, str | None]) -> dict[str, Any]:
    """Known columns only, coerced; absent values are omitted."""
    row = {}
    for field in KNOWN_FIELDS:
        value = coerce_cell(field, raw.get(field))
        if value is not None:
            row[field] = value
    return row


def prepare_rows(text: str) -> list[dict[str, Any]]:
    """Run the text stages of the pipeline and enforce the row cap."""
    rows = [coerce_row(raw) for raw in read_rows(normalize_lines(text))]
    if not rows:
        raise CsvFileError("CSV file is empty")
    if len(rows) > MAX_IMPORT_ROWS:
        raise CsvFileError(f"CSV file too large. Maximum {MAX_IMPORT_ROWS} rows allowed.")
    return rows


# =============================================================================
# Row validation
# =============================================================================


def _existing_contacts(
    session: Session,
    owner_id: uuid.UUID,
    rows: list[dict[str, Any]],
) -> tuple[set[str], set[str]]:
    """Phones and emails among ``rows`` already used by the owner's buyers."""
    phones = {row["phone"] for row in rows if row.get("phone")}
    emails = {row["email"] for row in rows if row.get("email")}
    if not phones and not emails:
        return set(), set()

    matches = session.execute(
        select(Buyer.phone, Buyer.email).where(
            Buyer.owner_id == owner_id,
            or_(Buyer.phone.in_(phones), Buyer.email.in_(emails)),
        )
    ).all()
    taken_phones = {phone for phone, _ in matches if phone in phones}
    taken_emails = {email.lower() for _, email in matches if email and email.lower() in emails}
    return taken_phones, taken_emails


def validate_rows(
    session: Session,
    owner_id: uuid.UUID,
    rows: list[dict[str, Any]],
) -> tuple[list[BuyerInput], list[ImportRowError]]:
    """Split rows into accepted buyers and row errors."""
    taken_phones, taken_emails = _existing_contacts(session, owner_id, rows)
    seen_phones: dict[str, int] = {}
    seen_emails: dict[str, int] = {}

    accepted: list[BuyerInput] = []
    errors: list[ImportRowError] = []

    for index, row in enumerate(rows):
        row_number = index + FIRST_DATA_ROW
        phone = row.get("phone")
        email = row.get("email")

        if phone and phone in seen_phones:
            errors.append(ImportRowError(
                row=row_number,
                field="phone",
                message=f"Duplicate phone number (already in row {seen_phones[phone]})",
                data=row,
            ))
            continue
        if email and email in seen_emails:
            errors.append(ImportRowError(
                row=row_number,
                field="email",
                message=f"Duplicate email (already in row {seen_emails[email]})",
                data=row,
            ))
            continue

        parsed, violations = collect_violations(row)
        if violations:
            errors.append(ImportRowError(
                row=row_number,
                field=violations[0].field,
                message="; ".join(f"{v.field}: {v.message}" for v in violations),
                violations=[v.as_dict() for v in violations],
                data=row,
            ))
            continue

        if parsed.phone in taken_phones or (parsed.email and parsed.email in taken_emails):
            errors.append(ImportRowError(
                row=row_number,
                field="phone" if parsed.phone in taken_phones else "email",
                message="A buyer with this phone number or email already exists",
                data=row,
            ))
            continue

        seen_phones[parsed.phone] = row_number
        if parsed.email:
            seen_emails[parsed.email] = row_number
        accepted.append(parsed)

    return accepted, errors


# =============================================================================
# Commit
# =============================================================================


def commit_rows(session: Session, owner: User, accepted: list[BuyerInput]) -> list[Buyer]:
    """Insert all accepted buyers and their history atomically."""
    if not accepted:
        return []

    now = utcnow()
    buyers = []
    try:
        with transaction(session):
            for data in accepted:
                values = data.model_dump()
                buyer = Buyer(
                    id=uuid.uuid4(), owner_id=owner.id, created_at=now, updated_at=now, **values
                )
                buyers.append(buyer)
                session.add(buyer)
                session.add(history_entry(buyer.id, owner.id, creation_diff(values), changed_at=now))
    except SQLAlchemyError as exc:
        logger.exception(f"CSV import transaction failed for {owner.id}: {exc}")
        raise ImportCommitError() from exc
    return buyers


def import_csv(session: Session, owner: User, text: str) -> ImportResult:
    """Run the full pipeline over decoded CSV text for ``owner``."""
    rows = prepare_rows(text)
    accepted, errors = validate_rows(session, owner.id, rows)
    imported = commit_rows(session, owner, accepted)

    count = len(imported)
    if errors:
        noun = "error" if len(errors) == 1 else "errors"
        message = f"Imported {count} rows with {len(errors)} {noun}"
    else:
        message = f"Successfully imported {count} {'row' if count == 1 else 'rows'}"

    logger.info(
        f"CSV import by {owner.id}: {len(rows)} rows, {count} imported, {len(errors)} errors"
    )
    return ImportResult(
        success=not errors,
        message=message,
        imported=count,
        valid_count=len(accepted),
        total_count=len(rows),
        errors=errors[:MAX_IMPORT_ERRORS],
        has_more_errors=len(errors) > MAX_IMPORT_ERRORS,
    )
