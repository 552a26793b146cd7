"""Attribution reconciliation pass.

For every (organization_id, refcode) seen on donations: match the refcode
against the organization's creatives and campaigns, drop matches below the
confidence floor, and write the survivors through the guard.
"""
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from ..metrics.store import DonorDataStore
from ..schemas.records import AttributionMapping, Campaign, Creative, Transaction
from .guard import AttributionGuard, GuardDecision
from .matcher import match_refcode


logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.7
HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.7


@dataclass
class RefcodeAggregate:
    organization_id: str
    refcode: str
    revenue: Decimal = Decimal("0")
    count: int = 0


@dataclass
class ReconciliationSummary:
    """Outcome of one reconciliation pass."""

    organization_id: Optional[str]
    dry_run: bool
    min_confidence: float
    total_refcodes: int = 0
    total_matched: int = 0
    total_unmatched: int = 0
    written: int = 0
    skipped_deterministic: int = 0
    skipped_identical: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    matched_revenue: Decimal = Decimal("0")
    unmatched_revenue: Decimal = Decimal("0")
    matches: list[AttributionMapping] = field(default_factory=list)
    unmatched: list[RefcodeAggregate] = field(default_factory=list)


def aggregate_refcodes(transactions: Iterable[Transaction]) -> list[RefcodeAggregate]:
    """Revenue and donation count per (organization_id, refcode), sorted by key."""
    aggregates: dict[tuple[str, str], RefcodeAggregate] = {}
    for txn in transactions:
        if not txn.is_donation or not txn.refcode or not txn.organization_id:
            continue
        key = (txn.organization_id, txn.refcode)
        aggregate = aggregates.get(key)
        if aggregate is None:
            aggregate = RefcodeAggregate(organization_id=txn.organization_id, refcode=txn.refcode)
            aggregates[key] = aggregate
        aggregate.revenue += txn.amount
        aggregate.count += 1
    return [aggregates[key] for key in sorted(aggregates)]


def _confidence_band(summary: ReconciliationSummary, confidence: float) -> None:
    if confidence >= HIGH_CONFIDENCE:
        summary.high_confidence += 1
    elif confidence >= MEDIUM_CONFIDENCE:
        summary.medium_confidence += 1
    else:
        summary.low_confidence += 1


class AttributionReconciler:
    """Runs reconciliation passes against the donor store."""

    def __init__(self, store: DonorDataStore) -> None:
        self.store = store
        self.default_min_confidence = float(
            os.getenv("ATTRIBUTION_MIN_CONFIDENCE", str(DEFAULT_MIN_CONFIDENCE))
        )

    def run(
        self,
        organization_id: Optional[str] = None,
        dry_run: bool = True,
        min_confidence: Optional[float] = None,
    ) -> ReconciliationSummary:
        """Match every refcode for one organization (all when None).

        Args:
            organization_id: Organization to reconcile
            dry_run: Evaluate without writing to the store
            min_confidence: Confidence floor (defaults to ATTRIBUTION_MIN_CONFIDENCE)

        Returns:
            ReconciliationSummary
        """
        if min_confidence is None:
            min_confidence = self.default_min_confidence

        logger.info(
            "Reconciling attribution for org=%s dry_run=%s min_confidence=%s",
            organization_id or "all",
            dry_run,
            min_confidence,
        )

        aggregates = aggregate_refcodes(self.store.list_transactions(organization_id))
        guard = AttributionGuard(self.store.list_mappings(organization_id))
        catalogs: dict[str, tuple[list[Creative], list[Campaign]]] = {}

        summary = ReconciliationSummary(
            organization_id=organization_id,
            dry_run=dry_run,
            min_confidence=min_confidence,
            total_refcodes=len(aggregates),
        )

        for aggregate in aggregates:
            org = aggregate.organization_id
            if org not in catalogs:
                catalogs[org] = (self.store.list_creatives(org), self.store.list_campaigns(org))
            creatives, campaigns = catalogs[org]

            match = match_refcode(aggregate.refcode, creatives, campaigns)
            if match is None or match.confidence < min_confidence:
                summary.total_unmatched += 1
                summary.unmatched_revenue += aggregate.revenue
                summary.unmatched.append(aggregate)
                continue

            mapping = AttributionMapping(
                organization_id=org,
                refcode=aggregate.refcode,
                campaign_id=match.campaign_id,
                creative_id=match.creative_id,
                platform=match.platform,
                match_type=match.match_type,
                confidence=match.confidence,
                destination_url=match.destination_url,
                match_reason=match.reason,
                attributed_revenue=aggregate.revenue,
                attributed_transactions=aggregate.count,
                is_auto_matched=True,
            )

            summary.total_matched += 1
            summary.matched_revenue += aggregate.revenue
            summary.matches.append(mapping)
            _confidence_band(summary, match.confidence)

            decision = guard.apply(mapping)
            if decision == GuardDecision.SKIP_DETERMINISTIC:
                summary.skipped_deterministic += 1
                continue
            if decision == GuardDecision.SKIP_IDENTICAL:
                summary.skipped_identical += 1
                continue

            if dry_run or self.store.upsert_mapping(mapping):
                summary.written += 1

        logger.info(
            "Reconciliation complete: matched=%s unmatched=%s written=%s "
            "skipped_deterministic=%s skipped_identical=%s",
            summary.total_matched,
            summary.total_unmatched,
            summary.written,
            summary.skipped_deterministic,
            summary.skipped_identical,
        )
        return summary
