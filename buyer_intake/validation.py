"""Buyer validation: per-field rules plus ordered cross-field refinements.

Field rules run first through the pydantic schema. Refinements are
independent predicate + message checks that run afterwards whether or not
the field rules passed, so a caller always gets the complete list of
violations in one response.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from .errors import BuyerValidationError, FieldViolation
from .schemas import RESIDENTIAL_PROPERTY_TYPES, BuyerInput

ModelT = TypeVar("ModelT", bound=BuyerInput)


def _lookup(payload: Mapping[str, Any], wire_name: str) -> Any:
    """Read a field by wire name, falling back to the snake_case name."""
    if wire_name in payload:
        return payload[wire_name]
    return payload.get(to_snake(wire_name))


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


@dataclass(frozen=True)
class Refinement:
    """A cross-field rule: ``holds(payload)`` is False when violated."""

    field: str
    message: str
    holds: Callable[[Mapping[str, Any]], bool]


def _bhk_given_for_residential(payload: Mapping[str, Any]) -> bool:
    property_type = _lookup(payload, "propertyType")
    if not isinstance(property_type, str):
        return True
    if property_type not in {t.value for t in RESIDENTIAL_PROPERTY_TYPES}:
        return True
    return not _is_blank(_lookup(payload, "bhk"))


def _budget_ordered(payload: Mapping[str, Any]) -> bool:
    low = _as_int(_lookup(payload, "budgetMin"))
    high = _as_int(_lookup(payload, "budgetMax"))
    if low is None or high is None:
        return True
    return high >= low


REFINEMENTS: tuple[Refinement, ...] = (
    Refinement(
        field="bhk",
        message="BHK is required for Apartment and Villa properties",
        holds=_bhk_given_for_residential,
    ),
    Refinement(
        field="budgetMax",
        message="Maximum budget must be greater than or equal to minimum budget",
        holds=_budget_ordered,
    ),
)


def _field_violations(exc: ValidationError) -> list[FieldViolation]:
    violations = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "__root__"
        violations.append(FieldViolation(field=field, message=error["msg"]))
    return violations


def collect_violations(
    payload: Mapping[str, Any],
    model: type[ModelT] = BuyerInput,
) -> tuple[ModelT | None, list[FieldViolation]]:
    """Validate ``payload`` and return the parsed model (or None) with every violation."""
    parsed: ModelT | None = None
    violations: list[FieldViolation] = []
    try:
        parsed = model.model_validate(payload)
    except ValidationError as exc:
        violations.extend(_field_violations(exc))

    # Refinements look at normalized values when available, raw input otherwise.
    view = parsed.model_dump(by_alias=True, mode="json") if parsed is not None else payload
    for refinement in REFINEMENTS:
        if not refinement.holds(view):
            violations.append(FieldViolation(field=refinement.field, message=refinement.message))

    if violations:
        parsed = None
    return parsed, violations


def validate_buyer(payload: Mapping[str, Any], model: type[ModelT] = BuyerInput) -> ModelT:
    """Return the normalized buyer or raise BuyerValidationError listing all violations."""
    parsed, violations = collect_violations(payload, model)
    if violations:
        raise BuyerValidationError(violations)
    return parsed
