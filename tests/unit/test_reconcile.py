"""Unit tests for the attribution reconciliation pass."""
from decimal import Decimal

import pytest

from src.donor_core.attribution.reconcile import AttributionReconciler, aggregate_refcodes
from src.donor_core.metrics.store import DonorDataStore
from src.donor_core.schemas.records import (
    AttributionMapping,
    Campaign,
    Creative,
    Transaction,
)


def _donation(txn_id, refcode, amount, org="org_1"):
    return Transaction(
        id=txn_id,
        organization_id=org,
        type="donation",
        amount=Decimal(amount),
        occurred_at="2025-01-10T15:00:00Z",
        refcode=refcode,
    )


@pytest.fixture
def store(tmp_path):
    store = DonorDataStore(tmp_path / "donor.db")
    store.insert_transactions(
        [
            _donation("d1", "jp421", "50"),
            _donation("d2", "jp421", "25"),
            _donation("d3", "meta_fall_2024", "40"),
            _donation("d4", "mystery", "10"),
            _donation("d5", "yearend_push", "30"),
            _donation("d6", None, "999"),
        ]
    )
    store.insert_creatives(
        [
            Creative(
                creative_id="cr_1",
                campaign_id="camp_123",
                campaign_name="Fall 2024 Mobilization",
                organization_id="org_1",
                destination_url="https://donate.example.com?refcode=jp421",
            )
        ]
    )
    store.upsert_campaigns(
        [
            Campaign(campaign_id="meta_fall_2024", campaign_name="Meta Fall", organization_id="org_1"),
            Campaign(campaign_id="c_999", campaign_name="Year End Push", organization_id="org_1"),
        ]
    )
    return store


def test_aggregate_refcodes_sums_revenue():
    aggregates = aggregate_refcodes(
        [
            _donation("a", "x", "10"),
            _donation("b", "x", "15"),
            _donation("c", "x", "5", org="org_2"),
            _donation("d", None, "100"),
        ]
    )

    assert [(a.organization_id, a.refcode, a.revenue, a.count) for a in aggregates] == [
        ("org_1", "x", Decimal("25"), 2),
        ("org_2", "x", Decimal("5"), 1),
    ]


def test_dry_run_reports_without_writing(store):
    summary = AttributionReconciler(store).run("org_1", dry_run=True, min_confidence=0.7)

    assert summary.total_refcodes == 4
    assert summary.total_matched == 2
    assert summary.total_unmatched == 2
    assert summary.high_confidence == 1
    assert summary.medium_confidence == 1
    assert summary.matched_revenue == Decimal("115")
    assert summary.unmatched_revenue == Decimal("40")
    assert summary.written == 2
    assert store.list_mappings("org_1") == []


def test_apply_writes_mappings(store):
    summary = AttributionReconciler(store).run("org_1", dry_run=False, min_confidence=0.7)

    mappings = {m.refcode: m for m in store.list_mappings("org_1")}

    assert summary.written == 2
    assert mappings["jp421"].match_type.value == "url_exact"
    assert mappings["jp421"].attributed_revenue == Decimal("75")
    assert mappings["jp421"].attributed_transactions == 2
    assert mappings["meta_fall_2024"].match_type.value == "campaign_pattern"


def test_low_confidence_floor_admits_fuzzy(store):
    summary = AttributionReconciler(store).run("org_1", dry_run=True, min_confidence=0.5)

    assert summary.total_matched == 3
    assert summary.low_confidence == 1
    assert [a.refcode for a in summary.unmatched] == ["mystery"]


def test_second_pass_is_idempotent(store):
    reconciler = AttributionReconciler(store)
    reconciler.run("org_1", dry_run=False)

    before = store.list_mappings("org_1")
    summary = reconciler.run("org_1", dry_run=False)

    assert summary.written == 0
    assert summary.skipped_identical == 2
    assert store.list_mappings("org_1") == before


def test_pass_does_not_regress_deterministic_mapping(store):
    store.upsert_mapping(
        AttributionMapping(
            organization_id="org_1",
            refcode="meta_fall_2024",
            campaign_id="camp_manual",
            match_type="url_exact",
            confidence=1.0,
        )
    )

    summary = AttributionReconciler(store).run("org_1", dry_run=False)

    assert summary.skipped_deterministic == 1
    assert store.get_mapping("org_1", "meta_fall_2024").campaign_id == "camp_manual"


def test_min_confidence_from_environment(store, monkeypatch):
    monkeypatch.setenv("ATTRIBUTION_MIN_CONFIDENCE", "0.95")

    summary = AttributionReconciler(store).run("org_1")

    assert summary.min_confidence == 0.95
    assert summary.total_matched == 1


def test_second_pass_refreshes_revenue_for_new_donations(store):
    reconciler = AttributionReconciler(store)
    reconciler.run("org_1", dry_run=False)
    store.insert_transactions([_donation("d7", "jp421", "10")])

    summary = reconciler.run("org_1", dry_run=False)

    mapping = store.get_mapping("org_1", "jp421")
    assert summary.written == 1
    assert summary.skipped_identical == 1
    assert mapping.attributed_revenue == Decimal("85")
    assert mapping.attributed_transactions == 3
