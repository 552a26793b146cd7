"""Dashboard metrics service.

Loads an organization's rows from the donor store and runs the aggregator.
"""
import logging
import os
from datetime import date
from pathlib import Path
from typing import Optional

from ..schemas.dashboard import DailyRollupRow, DashboardMetrics
from ..schemas.records import FilterState
from .aggregator import compute_daily_rollup, compute_metrics
from .contract import DEFAULT_ORG_TIMEZONE
from .store import DonorDataStore
from .timebucket import previous_period


logger = logging.getLogger(__name__)


class DashboardMetricsService:
    """Serves dashboard metrics and the canonical daily rollup."""

    def __init__(self, store: Optional[DonorDataStore] = None) -> None:
        """Initialize service from environment variables."""
        self.db_path = Path(os.getenv("DONOR_DB_PATH", "data/donor_metrics.db"))
        self.default_timezone = os.getenv("DONOR_DEFAULT_TIMEZONE", DEFAULT_ORG_TIMEZONE)
        self.store = store or DonorDataStore(self.db_path)

        logger.info("DashboardMetricsService initialized")
        logger.info("Database: %s", self.store.db_path)

    def org_timezone(self, organization_id: str) -> str:
        return self.store.get_org_timezone(organization_id) or self.default_timezone

    def dashboard(
        self,
        organization_id: str,
        filters: Optional[FilterState] = None,
        compare_previous: bool = True,
    ) -> DashboardMetrics:
        """Compute dashboard metrics for an organization.

        Args:
            organization_id: Organization to report on
            filters: Campaign/creative/date selection
            compare_previous: Also load the equal-length previous period
                (only when an explicit date range is given)

        Returns:
            DashboardMetrics
        """
        filters = filters or FilterState()
        tz_name = self.org_timezone(organization_id)

        transactions = self.store.list_transactions(organization_id)
        spend = self.store.list_spend_records(
            organization_id, filters.start_date, filters.end_date
        )
        mappings = self.store.list_mappings(organization_id)

        previous_spend = None
        if compare_previous and filters.start_date and filters.end_date:
            prev_start, prev_end = previous_period(filters.start_date, filters.end_date)
            previous_spend = self.store.list_spend_records(organization_id, prev_start, prev_end)

        metrics = compute_metrics(
            transactions,
            spend,
            filters,
            org_timezone=tz_name,
            mappings=mappings,
            previous_transactions=transactions if previous_spend is not None else None,
            previous_spend_records=previous_spend,
        )

        logger.info(
            "Dashboard computed for %s: net_revenue=%s donations=%s",
            organization_id,
            metrics.kpis.total_net_revenue,
            metrics.kpis.donation_count,
        )
        return metrics

    def daily_rollup(
        self,
        organization_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[DailyRollupRow]:
        """Canonical unfiltered per-day totals for an organization."""
        return compute_daily_rollup(
            self.store.list_transactions(organization_id),
            org_timezone=self.org_timezone(organization_id),
            start=start,
            end=end,
        )
