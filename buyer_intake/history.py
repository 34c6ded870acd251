"""Field-level diffs for the buyer change history.

The set of tracked fields is explicit: every field a user can change, in
wire (camelCase) naming. Values are recorded in their JSON form so history
rows are readable without the enum classes.
"""

import uuid
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from .models import Buyer, BuyerHistory, utcnow

# (wire name, attribute name)
TRACKED_FIELDS: tuple[tuple[str, str], ...] = (
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
)

UPDATABLE_ATTRIBUTES = tuple(attr for _, attr in TRACKED_FIELDS)


def json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return list(value)
    return value


def _same(attr: str, old: Any, new: Any) -> bool:
    old, new = json_value(old), json_value(new)
    if attr == "tags":
        # Tag order is display-only.
        return set(old or []) == set(new or [])
    return old == new


def compute_diff(current: Buyer, incoming: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Diff a stored buyer against incoming attribute values.

    ``incoming`` is keyed by attribute name. Only changed fields are returned.
    """
    diff: dict[str, dict[str, Any]] = {}
    for wire_name, attr in TRACKED_FIELDS:
        if attr not in incoming:
            continue
        old = getattr(current, attr)
        new = incoming[attr]
        if not _same(attr, old, new):
            diff[wire_name] = {"from": json_value(old), "to": json_value(new)}
    return diff


def creation_diff(values: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Diff for a newly created buyer: every populated field from nothing."""
    diff: dict[str, dict[str, Any]] = {}
    for wire_name, attr in TRACKED_FIELDS:
        value = json_value(values.get(attr))
        if value is None or value == []:
            continue
        diff[wire_name] = {"from": None, "to": value}
    return diff


def history_entry(
    buyer_id: uuid.UUID,
    changed_by: uuid.UUID,
    diff: dict[str, dict[str, Any]],
    changed_at: datetime | None = None,
) -> BuyerHistory:
    # Callers pass the buyer's new updated_at so history order follows write order.
    return BuyerHistory(
        id=uuid.uuid4(),
        buyer_id=buyer_id,
        changed_by=changed_by,
        changed_at=changed_at or utcnow(),
        diff=diff,
    )
