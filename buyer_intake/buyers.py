"""Buyer record service: create, read, update, delete and listing.

Writes follow one pattern: validate, check existence and ownership, then
commit everything for the operation in a single transaction. The update path
is guarded by the ``updated_at`` token, enforced by a conditional UPDATE so
the check and the write are atomic.
"""

import logging
import math
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.orm import Session

from .config import HISTORY_PREVIEW_LIMIT
from .errors import ConflictError, ForbiddenError, NotFoundError
from .history import UPDATABLE_ATTRIBUTES, compute_diff, creation_diff, history_entry
from .models import Buyer, BuyerHistory, User, utcnow
from .schemas import BuyerQuery, BuyerUpdate, HistoryEntryRead, Pagination
from .validation import validate_buyer

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "fullName": Buyer.full_name,
    "createdAt": Buyer.created_at,
    "updatedAt": Buyer.updated_at,
}


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """Commit on success, roll back and re-raise on any failure."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def next_updated_at(previous: datetime | None) -> datetime:
    """A timestamp strictly after ``previous``, even within one clock tick."""
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def _load_owned(session: Session, buyer_id: uuid.UUID, actor: User) -> Buyer:
    buyer = session.get(Buyer, buyer_id)
    if buyer is None:
        raise NotFoundError()
    if buyer.owner_id != actor.id:
        logger.warning(f"User {actor.id} denied access to buyer {buyer_id} owned by {buyer.owner_id}")
        raise ForbiddenError()
    return buyer


# =============================================================================
# Mutations
# =============================================================================


def create_buyer(session: Session, owner: User, payload: Mapping[str, Any]) -> Buyer:
    """Validate and insert a buyer owned by ``owner`` with its creation history entry."""
    data = validate_buyer(payload)
    values = data.model_dump()
    now = utcnow()

    with transaction(session):
        buyer = Buyer(id=uuid.uuid4(), owner_id=owner.id, created_at=now, updated_at=now, **values)
        session.add(buyer)
        session.add(history_entry(buyer.id, owner.id, creation_diff(values), changed_at=now))

    session.refresh(buyer)
    logger.info(f"Buyer {buyer.id} created by {owner.id}")
    return buyer


def update_buyer(
    session: Session,
    buyer_id: uuid.UUID,
    actor: User,
    payload: Mapping[str, Any],
) -> Buyer:
    """Replace a buyer's fields if ``payload['updatedAt']`` matches the stored token.

    Raises NotFoundError, ForbiddenError, BuyerValidationError or ConflictError;
    in every failure case the stored record is left untouched.
    """
    data = validate_buyer(payload, BuyerUpdate)

    with transaction(session):
        buyer = _load_owned(session, buyer_id, actor)
        if buyer.updated_at != data.updated_at:
            raise ConflictError()

        values = data.model_dump(include=set(UPDATABLE_ATTRIBUTES))
        diff = compute_diff(buyer, values)
        bumped = next_updated_at(buyer.updated_at)

        result = session.execute(
            update(Buyer)
            .where(Buyer.id == buyer_id, Buyer.updated_at == data.updated_at)
            .values(**values, updated_at=bumped)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Another writer committed between our read and the UPDATE.
            raise ConflictError()

        if diff:
            session.add(history_entry(buyer_id, actor.id, diff, changed_at=bumped))

    session.refresh(buyer)
    if diff:
        logger.info(f"Buyer {buyer_id} updated by {actor.id}: {sorted(diff)}")
    else:
        logger.info(f"Buyer {buyer_id} saved by {actor.id} with no field changes")
    return buyer


def delete_buyer(session: Session, buyer_id: uuid.UUID, actor: User) -> None:
    """Hard-delete a buyer; its history goes with it."""
    with transaction(session):
        buyer = _load_owned(session, buyer_id, actor)
        session.delete(buyer)
    logger.info(f"Buyer {buyer_id} deleted by {actor.id}")


# =============================================================================
# Reads
# =============================================================================


def get_buyer(session: Session, buyer_id: uuid.UUID) -> Buyer:
    buyer = session.get(Buyer, buyer_id)
    if buyer is None:
        raise NotFoundError()
    return buyer


def recent_history(
    session: Session,
    buyer_id: uuid.UUID,
    limit: int = HISTORY_PREVIEW_LIMIT,
) -> list[HistoryEntryRead]:
    """Newest-first history entries with the author's display name."""
    rows = session.execute(
        select(BuyerHistory, User.name)
        .join(User, BuyerHistory.changed_by == User.id)
        .where(BuyerHistory.buyer_id == buyer_id)
        .order_by(BuyerHistory.changed_at.desc(), BuyerHistory.id.desc())
        .limit(limit)
    ).all()
    return [
        HistoryEntryRead(
            id=entry.id,
            changed_at=entry.changed_at,
            changed_by=entry.changed_by,
            changed_by_name=name,
            diff=entry.diff,
        )
        for entry, name in rows
    ]


def filter_conditions(params: BuyerQuery) -> list:
    """WHERE clauses shared by listing and export."""
    conditions = []
    if params.query:
        conditions.append(
            or_(
                Buyer.full_name.icontains(params.query, autoescape=True),
                Buyer.email.icontains(params.query, autoescape=True),
                Buyer.phone.icontains(params.query, autoescape=True),
            )
        )
    if params.city:
        conditions.append(Buyer.city == params.city)
    if params.property_type:
        conditions.append(Buyer.property_type == params.property_type)
    if params.status:
        conditions.append(Buyer.status == params.status)
    if params.timeline:
        conditions.append(Buyer.timeline == params.timeline)
    return conditions


def sorted_select(params: BuyerQuery) -> Select:
    """Filtered buyers in the requested order; id breaks ties deterministically."""
    column = SORT_COLUMNS[params.sort_by]
    order = column.asc() if params.sort_order == "asc" else column.desc()
    return select(Buyer).where(*filter_conditions(params)).order_by(order, Buyer.id.asc())


def list_buyers(session: Session, params: BuyerQuery) -> tuple[list[Buyer], Pagination]:
    """One page of matching buyers plus totals over the whole filtered set."""
    total = session.scalar(
        select(func.count()).select_from(Buyer).where(*filter_conditions(params))
    ) or 0

    offset = (params.page - 1) * params.limit
    buyers = list(session.scalars(sorted_select(params).offset(offset).limit(params.limit)))

    pagination = Pagination(
        page=params.page,
        limit=params.limit,
        total=total,
        pages=math.ceil(total / params.limit),
    )
    return buyers, pagination
