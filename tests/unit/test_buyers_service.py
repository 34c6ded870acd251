"""Tests for the buyer mutation and listing services."""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from buyer_intake import buyers
from buyer_intake.errors import BuyerValidationError, ConflictError, ForbiddenError, NotFoundError
from buyer_intake.models import Buyer, BuyerHistory
from buyer_intake.schemas import BuyerQuery, BuyerRead, BuyerStatus
from tests.utils.factories import buyer_payload


def history_count(session, buyer_id=None) -> int:
    query = select(func.count()).select_from(BuyerHistory)
    if buyer_id is not None:
        query = query.where(BuyerHistory.buyer_id == buyer_id)
    return session.scalar(query)


def edit_payload(buyer: Buyer, **changes) -> dict:
    """What a client sends back after reading ``buyer``."""
    payload = BuyerRead.model_validate(buyer).model_dump(by_alias=True, mode="json")
    payload.update(changes)
    return payload


# =============================================================================
# create
# =============================================================================


@pytest.mark.unit
def test_create_defaults_status_and_records_history(db_session, owner):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload(fullName="John Doe"))

    assert buyer.status == BuyerStatus.NEW
    assert buyer.owner_id == owner.id
    assert buyer.created_at == buyer.updated_at

    entries = buyers.recent_history(db_session, buyer.id)
    assert len(entries) == 1
    assert entries[0].changed_by == owner.id
    assert entries[0].changed_by_name == "Owner Agent"
    assert entries[0].diff["fullName"] == {"from": None, "to": "John Doe"}
    assert entries[0].diff["status"] == {"from": None, "to": "New"}


@pytest.mark.unit
def test_create_invalid_persists_nothing(db_session, owner):
    with pytest.raises(BuyerValidationError):
        buyers.create_buyer(db_session, owner, buyer_payload(phone="12"))

    assert db_session.scalar(select(func.count()).select_from(Buyer)) == 0
    assert history_count(db_session) == 0


# =============================================================================
# update
# =============================================================================


@pytest.mark.unit
def test_update_with_current_token_records_diff(db_session, owner):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload())
    previous = buyer.updated_at

    updated = buyers.update_buyer(db_session, buyer.id, owner, edit_payload(buyer, status="Qualified"))

    assert updated.status == BuyerStatus.QUALIFIED
    assert updated.updated_at > previous
    latest = buyers.recent_history(db_session, buyer.id)[0]
    assert latest.diff == {"status": {"from": "New", "to": "Qualified"}}
    assert latest.changed_at == updated.updated_at
    assert history_count(db_session, buyer.id) == 2


@pytest.mark.unit
def test_update_with_stale_token_conflicts(db_session, owner):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload(fullName="Original Name"))
    stale = edit_payload(buyer, fullName="First Writer")
    buyers.update_buyer(db_session, buyer.id, owner, stale)

    with pytest.raises(ConflictError):
        buyers.update_buyer(db_session, buyer.id, owner, dict(stale, fullName="Second Writer"))

    db_session.expire_all()
    assert db_session.get(Buyer, buyer.id).full_name == "First Writer"
    assert history_count(db_session, buyer.id) == 2


@pytest.mark.unit
def test_update_with_made_up_token_leaves_record_unchanged(db_session, owner):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload())
    token = buyer.updated_at

    with pytest.raises(ConflictError):
        buyers.update_buyer(
            db_session, buyer.id, owner,
            edit_payload(buyer, status="Dropped", updatedAt="2000-01-01T00:00:00"),
        )

    db_session.expire_all()
    stored = db_session.get(Buyer, buyer.id)
    assert stored.status == BuyerStatus.NEW
    assert stored.updated_at == token


@pytest.mark.unit
def test_update_without_changes_bumps_token_only(db_session, owner):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload())
    previous = buyer.updated_at

    updated = buyers.update_buyer(db_session, buyer.id, owner, edit_payload(buyer))

    assert updated.updated_at > previous
    assert history_count(db_session, buyer.id) == 1


@pytest.mark.unit
def test_update_tag_reorder_is_not_a_change(db_session, owner):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload(tags=["a", "b"]))

    buyers.update_buyer(db_session, buyer.id, owner, edit_payload(buyer, tags=["b", "a"]))

    assert history_count(db_session, buyer.id) == 1


@pytest.mark.unit
def test_update_by_non_owner_is_forbidden(db_session, owner, other_user):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload())

    with pytest.raises(ForbiddenError):
        buyers.update_buyer(db_session, buyer.id, other_user, edit_payload(buyer, status="Dropped"))


@pytest.mark.unit
def test_update_missing_buyer(db_session, owner):
    payload = buyer_payload(updatedAt="2026-01-01T00:00:00")

    with pytest.raises(NotFoundError):
        buyers.update_buyer(db_session, uuid.uuid4(), owner, payload)


@pytest.mark.unit
def test_update_validates_before_writing(db_session, owner):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload())

    with pytest.raises(BuyerValidationError) as exc_info:
        buyers.update_buyer(db_session, buyer.id, owner, edit_payload(buyer, budgetMin=10, budgetMax=5))

    assert exc_info.value.fields == ["budgetMax"]


@pytest.mark.unit
def test_next_updated_at_is_strictly_increasing():
    future = datetime(2999, 1, 1)

    assert buyers.next_updated_at(future) == future + timedelta(microseconds=1)
    assert buyers.next_updated_at(datetime(2000, 1, 1)) > datetime(2000, 1, 1)
    assert buyers.next_updated_at(None) is not None


# =============================================================================
# delete & read
# =============================================================================


@pytest.mark.unit
def test_delete_cascades_history(db_session, owner):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload())
    buyers.update_buyer(db_session, buyer.id, owner, edit_payload(buyer, status="Contacted"))
    buyer_id = buyer.id

    buyers.delete_buyer(db_session, buyer_id, owner)

    assert db_session.get(Buyer, buyer_id) is None
    assert history_count(db_session, buyer_id) == 0


@pytest.mark.unit
def test_delete_requires_owner(db_session, owner, other_user):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload())

    with pytest.raises(ForbiddenError):
        buyers.delete_buyer(db_session, buyer.id, other_user)
    with pytest.raises(NotFoundError):
        buyers.delete_buyer(db_session, uuid.uuid4(), owner)


@pytest.mark.unit
def test_recent_history_is_newest_first_and_capped(db_session, owner):
    buyer = buyers.create_buyer(db_session, owner, buyer_payload())
    for status in ["Qualified", "Contacted", "Visited", "Negotiation", "Converted", "Dropped"]:
        buyer = buyers.update_buyer(db_session, buyer.id, owner, edit_payload(buyer, status=status))

    entries = buyers.recent_history(db_session, buyer.id)

    assert len(entries) == 5
    assert entries[0].diff == {"status": {"from": "Converted", "to": "Dropped"}}
    assert [e.changed_at for e in entries] == sorted((e.changed_at for e in entries), reverse=True)


# =============================================================================
# listing
# =============================================================================


@pytest.fixture
def listing_data(db_session, owner, other_user):
    buyers.create_buyer(db_session, owner, buyer_payload(
        fullName="Asha Verma", email="asha@example.com", phone="9811111111",
        city="Mohali", status="Qualified",
    ))
    buyers.create_buyer(db_session, owner, buyer_payload(
        fullName="Bikram Singh", email="bikram@example.com", phone="9822222222",
        city="Chandigarh", propertyType="Plot", bhk=None, timeline="0-3m",
    ))
    buyers.create_buyer(db_session, other_user, buyer_payload(
        fullName="Chitra Rao", email="chitra@example.com", phone="9833333333",
        city="Mohali", timeline="Exploring",
    ))


@pytest.mark.unit
def test_list_all_sorted_by_updated_desc(db_session, listing_data):
    rows, pagination = buyers.list_buyers(db_session, BuyerQuery())

    assert [b.full_name for b in rows] == ["Chitra Rao", "Bikram Singh", "Asha Verma"]
    assert pagination.model_dump() == {"page": 1, "limit": 10, "total": 3, "pages": 1}


@pytest.mark.unit
def test_search_is_case_insensitive_across_fields(db_session, listing_data):
    by_name, _ = buyers.list_buyers(db_session, BuyerQuery(query="BIKRAM"))
    by_phone, _ = buyers.list_buyers(db_session, BuyerQuery(query="98333"))
    by_email, _ = buyers.list_buyers(db_session, BuyerQuery(query="asha@"))
    wildcard, _ = buyers.list_buyers(db_session, BuyerQuery(query="%"))

    assert [b.full_name for b in by_name] == ["Bikram Singh"]
    assert [b.full_name for b in by_phone] == ["Chitra Rao"]
    assert [b.full_name for b in by_email] == ["Asha Verma"]
    assert wildcard == []


@pytest.mark.unit
def test_equality_filters_combine(db_session, listing_data):
    rows, pagination = buyers.list_buyers(
        db_session, BuyerQuery.model_validate({"city": "Mohali", "timeline": "Exploring"})
    )

    assert [b.full_name for b in rows] == ["Chitra Rao"]
    assert pagination.total == 1

    rows, _ = buyers.list_buyers(db_session, BuyerQuery.model_validate({"status": "Qualified"}))
    assert [b.full_name for b in rows] == ["Asha Verma"]


@pytest.mark.unit
def test_pagination_counts_whole_filtered_set(db_session, listing_data):
    params = BuyerQuery.model_validate({"limit": 2, "page": 2, "sortBy": "fullName", "sortOrder": "asc"})

    rows, pagination = buyers.list_buyers(db_session, params)

    assert [b.full_name for b in rows] == ["Chitra Rao"]
    assert pagination.model_dump() == {"page": 2, "limit": 2, "total": 3, "pages": 2}


@pytest.mark.unit
def test_page_past_the_end_is_empty(db_session, listing_data):
    rows, pagination = buyers.list_buyers(db_session, BuyerQuery(page=5))

    assert rows == []
    assert pagination.total == 3
