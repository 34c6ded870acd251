"""CSV export of buyer leads using the listing filters."""

import csv
import io
import logging
import time
from collections.abc import Iterable, Iterator
from datetime import datetime
from enum import Enum

from sqlalchemy.orm import Session

from .buyers import sorted_select
from .models import Buyer
from .schemas import BuyerQuery

logger = logging.getLogger(__name__)

EXPORT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("fullName", "full_name"),
    ("email", "email"),
    ("phone", "phone"),
    ("city", "city"),
    ("propertyType", "property_type"),
    ("bhk", "bhk"),
    ("purpose", "purpose"),
    ("budgetMin", "budget_min"),
    ("budgetMax", "budget_max"),
    ("timeline", "timeline"),
    ("source", "source"),
    ("status", "status"),
    ("notes", "notes"),
    ("tags", "tags"),
    ("createdAt", "created_at"),
    ("updatedAt", "updated_at"),
)


def export_filename(now: float | None = None) -> str:
    millis = int((time.time() if now is None else now) * 1000)
    return f"buyers-{millis}.csv"


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return ",".join(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def buyer_row(buyer: Buyer) -> list[str]:
    return [_cell(getattr(buyer, attr)) for _, attr in EXPORT_COLUMNS]


def iter_csv(buyers: Iterable[Buyer]) -> Iterator[str]:
    """Yield the header line, then one encoded line per buyer."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    def flush() -> str:
        line = buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)
        return line

    writer.writerow([name for name, _ in EXPORT_COLUMNS])
    yield flush()
    for buyer in buyers:
        writer.writerow(buyer_row(buyer))
        yield flush()


def buyers_for_export(session: Session, params: BuyerQuery) -> list[Buyer]:
    """Every buyer matching ``params``, sorted, without pagination."""
    buyers = list(session.scalars(sorted_select(params)))
    logger.info(f"Exporting {len(buyers)} buyers")
    return buyers
