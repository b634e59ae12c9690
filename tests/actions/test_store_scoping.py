"""Tests for tenant scoping of the SQLAlchemy data store."""

import pytest

from salesdesk.actions.errors import DataStoreError


def test_insert_takes_ownership_from_acting_user(store, test_user_id: str) -> None:
    rows = store.insert("clients", {"company_name": "Acme", "user_id": "someone-else"}, user_id=test_user_id)

    assert rows[0]["user_id"] == test_user_id
    assert rows[0]["pipeline_stage"] == "inquiry"


def test_select_only_sees_own_rows(store, make_client, test_user_id: str, other_user_id: str) -> None:
    mine = make_client("Acme")
    theirs = make_client("Acme", user_id=other_user_id)

    rows = store.select("clients", {"company_name": "Acme"}, user_id=test_user_id)

    assert [row["id"] for row in rows] == [mine["id"]]
    assert store.select("clients", {"id": theirs["id"]}, user_id=test_user_id) == []


def test_update_and_delete_cannot_touch_other_tenants(store, make_client, test_user_id: str, other_user_id: str) -> None:
    theirs = make_client("Zenith", user_id=other_user_id)

    assert store.update("clients", {"id": theirs["id"]}, {"notes": "hijacked"}, user_id=test_user_id) == []
    assert store.delete("clients", {"id": theirs["id"]}, user_id=test_user_id) == []

    untouched = store.select("clients", {"id": theirs["id"]}, user_id=other_user_id)
    assert untouched[0]["notes"] is None


def test_client_owned_tables_scoped_through_client(store, make_client, test_user_id: str, other_user_id: str) -> None:
    theirs = make_client("Zenith", user_id=other_user_id)
    mine = make_client("Acme")

    with pytest.raises(DataStoreError, match="not found"):
        store.insert("contacts", {"client_id": theirs["id"], "name": "Lee"}, user_id=test_user_id)

    contact = store.insert("contacts", {"client_id": mine["id"], "name": "Kim"}, user_id=test_user_id)[0]
    assert store.select("contacts", {"id": contact["id"]}, user_id=other_user_id) == []
    assert store.select("contacts", {"id": contact["id"]}, user_id=test_user_id)[0]["name"] == "Kim"


def test_unknown_table_and_column(store, test_user_id: str) -> None:
    with pytest.raises(DataStoreError, match="Unknown table"):
        store.select("invoices", {}, user_id=test_user_id)
    with pytest.raises(DataStoreError, match="Unknown column"):
        store.select("clients", {"revenue": 1}, user_id=test_user_id)


def test_update_cannot_change_owner(store, make_client, test_user_id: str) -> None:
    mine = make_client("Acme")

    with pytest.raises(DataStoreError, match="Ownership"):
        store.update("clients", {"id": mine["id"]}, {"user_id": "user-2"}, user_id=test_user_id)


def test_delete_returns_deleted_rows(store, make_client, test_user_id: str) -> None:
    mine = make_client("Acme", industry="retail")

    deleted = store.delete("clients", {"id": mine["id"]}, user_id=test_user_id)

    assert deleted[0]["industry"] == "retail"
    assert store.select("clients", {"id": mine["id"]}, user_id=test_user_id) == []


def test_select_by_name_fragment(store, make_client, test_user_id: str, other_user_id: str) -> None:
    mine = make_client("Acme Corp")
    make_client("Acme Labs", user_id=other_user_id)
    make_client("100% Acme")

    rows = store.select("clients", {"company_name__ilike": "acme c"}, user_id=test_user_id)

    assert [row["id"] for row in rows] == [mine["id"]]
    assert len(store.select("clients", {"company_name__ilike": "ACME"}, user_id=test_user_id)) == 2
    assert store.select("clients", {"company_name__ilike": "_cme"}, user_id=test_user_id) == []
    assert len(store.select("clients", {"company_name__ilike": "0% a"}, user_id=test_user_id)) == 1
