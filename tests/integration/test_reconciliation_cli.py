"""Integration test for the reconciliation CLI (store + matcher + guard)."""
from __future__ import annotations

import sys
from decimal import Decimal
from unittest.mock import patch

import pytest

from scripts.run_reconciliation import main
from src.donor_core.metrics.store import DonorDataStore
from src.donor_core.schemas.records import Campaign, Creative, Transaction


def _seed(store: DonorDataStore) -> None:
    donations = [("jp421", "25"), ("jp421", "35"), ("spring_push", "15"), ("unknown_code", "5")]
    store.insert_transactions(
        [
            Transaction(
                id=f"txn_{index}",
                organization_id="org_cli",
                type="donation",
                amount=Decimal(amount),
                occurred_at="2025-02-01T17:00:00Z",
                refcode=refcode,
            )
            for index, (refcode, amount) in enumerate(donations)
        ]
    )
    store.insert_creatives(
        [
            Creative(
                creative_id="cr_1",
                campaign_id="camp_jp",
                organization_id="org_cli",
                destination_url="https://donate.example.com/?refcode=jp421",
            )
        ]
    )
    store.upsert_campaigns(
        [
            Campaign(
                campaign_id="spring_push",
                campaign_name="Spring Push",
                organization_id="org_cli",
            )
        ]
    )


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "donor.db"
    monkeypatch.setenv("DONOR_DB_PATH", str(path))
    _seed(DonorDataStore(path))
    return path


def test_cli_dry_run_leaves_store_untouched(db_path):
    with patch.object(sys, "argv", ["run_reconciliation.py", "--org", "org_cli"]):
        assert main() == 0

    assert DonorDataStore(db_path).list_mappings("org_cli") == []


def test_cli_apply_writes_mappings(db_path):
    argv = ["run_reconciliation.py", "--org", "org_cli", "--apply", "--min-confidence", "0.7"]
    with patch.object(sys, "argv", argv):
        assert main() == 0

    mappings = {m.refcode: m for m in DonorDataStore(db_path).list_mappings("org_cli")}

    assert set(mappings) == {"jp421", "spring_push"}
    assert mappings["jp421"].attributed_revenue == Decimal("60")
    assert mappings["jp421"].is_deterministic
    assert mappings["spring_push"].attribution_type == "heuristic_pattern"
