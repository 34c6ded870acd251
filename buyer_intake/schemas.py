"""Pydantic schemas for buyer leads.

Schema conventions:
- Python attributes are snake_case; the wire format (JSON bodies, CSV headers,
  query strings) is camelCase via the alias generator
- Enums are the closed value sets stored in the database
- Field validators enforce single-field rules; cross-field refinements live in
  ``validation`` so every violation can be reported at once
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError


# =============================================================================
# ENUMS: Canonical value sets
# =============================================================================


class City(str, Enum):
    """Cities served by the sales team."""
    CHANDIGARH = "Chandigarh"
    MOHALI = "Mohali"
    ZIRAKPUR = "Zirakpur"
    PANCHKULA = "Panchkula"
    OTHER = "Other"


class PropertyType(str, Enum):
    """What kind of property the buyer is looking for.

    Apartment and Villa are residential and require a BHK category.
    """
    APARTMENT = "Apartment"
    VILLA = "Villa"
    PLOT = "Plot"
    OFFICE = "Office"
    RETAIL = "Retail"


RESIDENTIAL_PROPERTY_TYPES = frozenset({PropertyType.APARTMENT, PropertyType.VILLA})


class Bhk(str, Enum):
    """Bedroom/hall/kitchen category."""
    ONE = "1"
    TWO = "2"
    THREE = "3"
    FOUR = "4"
    STUDIO = "Studio"


class Purpose(str, Enum):
    BUY = "Buy"
    RENT = "Rent"


class Timeline(str, Enum):
    """How soon the buyer intends to transact."""
    WITHIN_3_MONTHS = "0-3m"
    THREE_TO_6_MONTHS = "3-6m"
    OVER_6_MONTHS = ">6m"
    EXPLORING = "Exploring"


class Source(str, Enum):
    """Where the lead came from."""
    WEBSITE = "Website"
    REFERRAL = "Referral"
    WALK_IN = "Walk-in"
    CALL = "Call"
    OTHER = "Other"


class BuyerStatus(str, Enum):
    """Pipeline stage of a lead.

    Transitions are not enforced: the owner may move a lead to any status.
    """
    NEW = "New"
    QUALIFIED = "Qualified"
    CONTACTED = "Contacted"
    VISITED = "Visited"
    NEGOTIATION = "Negotiation"
    CONVERTED = "Converted"
    DROPPED = "Dropped"


# =============================================================================
# SHARED HELPERS
# =============================================================================

PHONE_RE = re.compile(r"^\d{10,15}$")
EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 80
NOTES_MAX_LENGTH = 1000
# Budgets are stored in a 32-bit INTEGER column.
BUDGET_MAX_VALUE = 2_147_483_647


def normalize_tags(value: Any) -> list[str]:
    """Split/trim tags, drop empties and repeats, keep first-seen order."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)) or not all(isinstance(raw, str) for raw in value):
        raise PydanticCustomError("tags_type", "Tags must be a list of strings")
    tags: list[str] = []
    for raw in value:
        tag = raw.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def to_utc_naive(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CamelModel(BaseModel):
    """Base model speaking camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# =============================================================================
# BUYER SCHEMAS
# =============================================================================


class BuyerInput(CamelModel):
    """A buyer lead as submitted by a user or a CSV row.

    Blank optional values are treated as absent. ``status`` defaults to New.
    """

    full_name: str = Field(description="Buyer's full name, 2-80 characters.")
    email: str | None = Field(default=None, description="Contact email, optional.")
    phone: str = Field(description="Contact phone, 10-15 digits with no separators.")
    city: City
    property_type: PropertyType
    bhk: Bhk | None = Field(
        default=None,
        description="Required for Apartment and Villa; accepted but unchecked for other types."
    )
    purpose: Purpose
    budget_min: int | None = Field(default=None, description="Lower budget bound in INR.")
    budget_max: int | None = Field(default=None, description="Upper budget bound in INR.")
    timeline: Timeline
    source: Source
    status: BuyerStatus = Field(default=BuyerStatus.NEW)
    notes: str | None = Field(default=None, description="Free-form notes, at most 1000 characters.")
    tags: list[str] = Field(default_factory=list, description="Free-form labels.")

    @field_validator("email", "bhk", "notes", "budget_min", "budget_max", mode="before")
    @classmethod
    def blank_is_absent(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("full_name")
    @classmethod
    def check_name_length(cls, v: str) -> str:
        if len(v) < NAME_MIN_LENGTH:
            raise PydanticCustomError("name_too_short", "Full name must be at least 2 characters")
        if len(v) > NAME_MAX_LENGTH:
            raise PydanticCustomError("name_too_long", "Full name must be at most 80 characters")
        return v

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        if not PHONE_RE.match(v):
            raise PydanticCustomError("phone_format", "Phone must be 10-15 digits")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not EMAIL_RE.match(v):
            raise PydanticCustomError("email_format", "Invalid email format")
        return v.lower()

    @field_validator("budget_min", "budget_max")
    @classmethod
    def check_budget_positive(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise PydanticCustomError("budget_positive", "Budget must be a positive whole number")
        if v is not None and v > BUDGET_MAX_VALUE:
            raise PydanticCustomError("budget_too_large", "Budget must be at most 2147483647")
        return v

    @field_validator("notes")
    @classmethod
    def check_notes_length(cls, v: str | None) -> str | None:
        if v is not None and len(v) > NOTES_MAX_LENGTH:
            raise PydanticCustomError("notes_too_long", "Notes must be at most 1000 characters")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v: Any) -> list[str]:
        return normalize_tags(v)


class BuyerUpdate(BuyerInput):
    """Full replacement field set plus the last-seen ``updatedAt`` token."""

    updated_at: datetime = Field(description="Optimistic-concurrency token echoed from the last read.")

    @field_validator("updated_at")
    @classmethod
    def token_to_utc(cls, v: datetime) -> datetime:
        return to_utc_naive(v)


class BuyerRead(CamelModel):
    """A stored buyer record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: str
    email: str | None = None
    phone: str
    city: City
    property_type: PropertyType
    bhk: Bhk | None = None
    purpose: Purpose
    budget_min: int | None = None
    budget_max: int | None = None
    timeline: Timeline
    source: Source
    status: BuyerStatus
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)
    owner_id: UUID
    created_at: datetime
    updated_at: datetime


class HistoryEntryRead(CamelModel):
    """One entry of a buyer's change history."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    changed_at: datetime
    changed_by: UUID
    changed_by_name: str | None = None
    diff: dict[str, dict[str, Any]]


class BuyerDetailResponse(CamelModel):
    buyer: BuyerRead
    history: list[HistoryEntryRead]


# =============================================================================
# LISTING
# =============================================================================

SortField = Literal["fullName", "createdAt", "updatedAt"]


class BuyerQuery(CamelModel):
    """Search, filter, pagination and sort parameters for listing/export."""

    query: str | None = Field(
        default=None,
        description="Case-insensitive substring matched against name, email or phone."
    )
    city: City | None = None
    property_type: PropertyType | None = None
    status: BuyerStatus | None = None
    timeline: Timeline | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=50)
    sort_by: SortField = "updatedAt"
    sort_order: Literal["asc", "desc"] = "desc"

    @field_validator("query", "city", "property_type", "status", "timeline", mode="before")
    @classmethod
    def blank_is_absent(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class BuyerListResponse(BaseModel):
    data: list[BuyerRead]
    pagination: Pagination


# =============================================================================
# CSV IMPORT
# =============================================================================


class ImportRowError(BaseModel):
    """A rejected CSV row. ``row`` counts the header, so data starts at 2."""

    row: int
    field: str | None = None
    message: str
    violations: list[dict[str, str]] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)


class ImportResult(CamelModel):
    success: bool
    message: str
    imported: int
    valid_count: int
    total_count: int
    errors: list[ImportRowError]
    has_more_errors: bool


# =============================================================================
# AUTH & PROFILE
# =============================================================================


class MagicLinkRequest(BaseModel):
    email: str = Field(description="Address the sign-in link is sent to.")

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        v = v.strip()
        if not EMAIL_RE.match(v):
            raise PydanticCustomError("email_format", "Invalid email format")
        return v.lower()


class UserRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str | None = None
    image: str | None = None
    email_verified: datetime | None = None


class SessionResponse(CamelModel):
    token: str
    expires_at: datetime
    user: UserRead
