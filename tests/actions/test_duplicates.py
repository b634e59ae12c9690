"""Tests for near-duplicate client detection."""

from salesdesk.actions.builder import build_create_client_plan
from salesdesk.actions.duplicates import compare_names, find_duplicate_clients, normalize_company_name


def test_normalize_company_name() -> None:
    assert normalize_company_name("ACME corp.") == "acme"
    assert normalize_company_name("(주)한빛 소프트") == "한빛 소프트"
    assert normalize_company_name("㈜한빛소프트") == "한빛소프트"
    assert normalize_company_name("Inc.") == "inc"


def test_compare_names_descriptors() -> None:
    assert compare_names("Acme Corp", "ACME corp.") == "high"
    assert compare_names("Acme", "Acme Robotics") == "medium"
    assert compare_names("Blue Ocean Foods", "Blue Ocean Trading") == "low"
    assert compare_names("Acme", "Zenith") is None


def test_acme_corp_is_high_duplicate(store, make_client, test_user_id: str) -> None:
    """A new "Acme Corp" matches an existing "ACME corp." with similarity high."""
    existing = make_client("ACME corp.")

    candidates = find_duplicate_clients(store, user_id=test_user_id, company_name="Acme Corp")

    assert len(candidates) == 1
    assert candidates[0].id == existing["id"]
    assert candidates[0].similarity == "high"


def test_duplicate_sets_risk_flag(store, make_client, test_user_id: str) -> None:
    make_client("ACME corp.")

    plan = build_create_client_plan(store, user_id=test_user_id, data={"company_name": "Acme Corp"})

    assert "duplicate_client" in plan.risk_flags
    assert plan.needs_confirmation is True
    assert plan.duplicate_candidates is not None
    assert plan.duplicate_candidates[0].similarity == "high"


def test_only_own_clients_are_candidates(store, make_client, test_user_id: str, other_user_id: str) -> None:
    make_client("Acme Corp", user_id=other_user_id)

    assert find_duplicate_clients(store, user_id=test_user_id, company_name="Acme Corp") == []


def test_candidates_ranked_and_limited(store, make_client, test_user_id: str) -> None:
    make_client("Acme Robotics")
    make_client("Acme")
    make_client("Acme Holdings", brand_name="ACME")
    make_client("Zenith")

    candidates = find_duplicate_clients(store, user_id=test_user_id, company_name="Acme", limit=2)

    assert [c.similarity for c in candidates] == ["high", "high"]
    assert [c.company_name for c in candidates] == ["Acme", "Acme Holdings"]


def test_brand_name_and_exclusion(store, make_client, test_user_id: str) -> None:
    target = make_client("Hanbit Soft", brand_name="Hanbit")

    by_brand = find_duplicate_clients(store, user_id=test_user_id, company_name="New Co", brand_name="HANBIT")
    excluded = find_duplicate_clients(
        store,
        user_id=test_user_id,
        company_name="Hanbit Soft",
        exclude_id=target["id"],
    )

    assert [c.id for c in by_brand] == [target["id"]]
    assert excluded == []


def test_blank_name_finds_nothing(store, make_client, test_user_id: str) -> None:
    make_client("Acme")

    assert find_duplicate_clients(store, user_id=test_user_id, company_name="  ") == []
