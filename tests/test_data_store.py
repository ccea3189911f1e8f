"""
Tests for the SQLModel-backed data store
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from agritenant.core.errors import BackendError, InvalidRequestError, TransientBackendError
from agritenant.models import Farmer

from conftest import ManualDateTimeClock


@pytest.mark.asyncio
async def test_select_with_columns_filters_and_order(seed, store):
    rows = await store.select("farmers", columns=["full_name"], order_by="full_name")
    assert rows == [{"full_name": "Arjun Singh"}, {"full_name": "Ravi Kumar"}, {"full_name": "Sita Devi"}]


@pytest.mark.asyncio
async def test_list_filter_is_membership(seed, store):
    rows = await store.select("tenants", filters={"id": [seed["alpha"], seed["gamma"]]}, order_by="name")
    assert [r["slug"] for r in rows] == ["alpha", "gamma"]


@pytest.mark.asyncio
async def test_unknown_collection_or_column(seed, store):
    with pytest.raises(InvalidRequestError):
        await store.select("tractors")
    with pytest.raises(InvalidRequestError):
        await store.select("farmers", filters={"shoe_size": 9})
    with pytest.raises(InvalidRequestError):
        await store.insert("farmers", [{"full_name": "X", "tenant_id": seed["alpha"], "colour": "red"}])


@pytest.mark.asyncio
async def test_update_stamps_updated_at(seed, store):
    rows = await store.update("farmers", {"village": "Shivpur"}, {"full_name": "Ravi Kumar"})
    assert rows[0]["village"] == "Shivpur"
    assert rows[0]["updated_at"] is not None


@pytest.mark.asyncio
async def test_delete_returns_count(seed, store):
    assert await store.delete("farmers", {"tenant_id": seed["alpha"]}) == 2
    assert await store.delete("farmers", {"tenant_id": seed["alpha"]}) == 0


@pytest.mark.asyncio
async def test_constraint_violation_is_backend_error(seed, store):
    with pytest.raises(BackendError) as exc:
        await store.insert("billing_plans", [{"code": "Kisan_Basic", "name": "Duplicate"}])
    assert not isinstance(exc.value, TransientBackendError)
    assert isinstance(exc.value.__cause__, IntegrityError)

    # Session is usable again after the rollback
    assert len(await store.select("billing_plans")) == 1


@pytest.mark.asyncio
async def test_connection_failure_is_transient(seed, store, monkeypatch):
    def broken_exec(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("server closed the connection"))

    monkeypatch.setattr(store.session, "exec", broken_exec)

    with pytest.raises(TransientBackendError):
        await store.select("farmers")


def test_timestamps_are_timezone_aware():
    farmer = Farmer(tenant_id="t-1", full_name="Meena Patel")
    assert farmer.created_at.tzinfo is not None
    assert farmer.created_at.utcoffset() == timedelta(0)


@pytest.mark.asyncio
async def test_security_event_window_counts_aware_timestamps(db, sink):
    clock = ManualDateTimeClock()
    await sink.write("tenant_access_denied", user_id="user-1", created_at=clock())
    clock.advance(120)
    await sink.write("tenant_access_denied", user_id="user-1", created_at=clock())
    await sink.write("tenant_switch_denied", user_id="user-1", created_at=clock())

    assert await sink.count_recent("user-1", "tenant_access_denied", clock() - timedelta(seconds=60)) == 1
    assert await sink.count_recent("user-1", "tenant_access_denied", clock() - timedelta(seconds=300)) == 2
    assert await sink.count_recent("user-2", "tenant_access_denied", clock() - timedelta(seconds=300)) == 0
