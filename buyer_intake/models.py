"""SQLAlchemy models for buyer lead intake.

Data Architecture Overview:
- User owns zero or more Buyer leads; ownership never changes
- Every accepted change to a Buyer is recorded in BuyerHistory
- BuyerHistory is append-only and is removed only by cascade with its Buyer
- Buyer.updated_at is the optimistic-concurrency token for updates

Auth tables (VerificationToken, UserSession) back the magic-link sign in.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .schemas import Bhk, BuyerStatus, City, PropertyType, Purpose, Source, Timeline


def utcnow() -> datetime:
    """Current time as naive UTC, the storage convention for all timestamps."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_column(enum_cls: type, name: str) -> SQLEnum:
    # Store the display value ("Walk-in", ">6m"), not the member name.
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class User(Base):
    """A signed-in agent who owns buyer leads."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255))
    image: Mapped[str | None] = mapped_column(Text, doc="Avatar URL")
    email_verified: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    buyers: Mapped[list["Buyer"]] = relationship("Buyer", back_populates="owner")
    sessions: Mapped[list["UserSession"]] = relationship(
        "UserSession", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Buyer(Base):
    """A real-estate buyer lead."""

    __tablename__ = "buyers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(80), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str] = mapped_column(String(15), nullable=False)
    city: Mapped[City] = mapped_column(_enum_column(City, "city"), nullable=False)
    property_type: Mapped[PropertyType] = mapped_column(
        _enum_column(PropertyType, "property_type"), nullable=False
    )
    bhk: Mapped[Bhk | None] = mapped_column(_enum_column(Bhk, "bhk"))
    purpose: Mapped[Purpose] = mapped_column(_enum_column(Purpose, "purpose"), nullable=False)
    budget_min: Mapped[int | None] = mapped_column(Integer)
    budget_max: Mapped[int | None] = mapped_column(Integer)
    timeline: Mapped[Timeline] = mapped_column(_enum_column(Timeline, "timeline"), nullable=False)
    source: Mapped[Source] = mapped_column(_enum_column(Source, "source"), nullable=False)
    status: Mapped[BuyerStatus] = mapped_column(
        _enum_column(BuyerStatus, "status"), nullable=False, default=BuyerStatus.NEW
    )
    notes: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False,
        doc="Strictly increases on every write; clients echo it back on update"
    )

    # Relationships
    owner: Mapped["User"] = relationship("User", back_populates="buyers")
    history: Mapped[list["BuyerHistory"]] = relationship(
        "BuyerHistory",
        back_populates="buyer",
        cascade="all, delete-orphan",
        order_by="BuyerHistory.changed_at.desc()",
    )

    __table_args__ = (
        Index("ix_buyers_owner_phone", "owner_id", "phone"),
        Index("ix_buyers_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<Buyer {self.full_name} ({self.phone})>"


class BuyerHistory(Base):
    """Audit trail entry for one accepted change to a buyer.

    ``diff`` maps wire field names to ``{"from": old, "to": new}``. Entries
    are never updated; they disappear only when the buyer is deleted.
    """

    __tablename__ = "buyer_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("buyers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    changed_by: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )
    diff: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Relationships
    buyer: Mapped["Buyer"] = relationship("Buyer", back_populates="history")
    author: Mapped["User"] = relationship("User")

    def __repr__(self) -> str:
        return f"<BuyerHistory {self.buyer_id} {sorted(self.diff)}>"


class VerificationToken(Base):
    """A pending magic-link sign in. Only the token's hash is stored."""

    __tablename__ = "verification_tokens"

    identifier: Mapped[str] = mapped_column(String(255), primary_key=True)
    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    expires: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class UserSession(Base):
    """A bearer session issued after a magic link was verified."""

    __tablename__ = "sessions"

    session_token: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="sessions")
