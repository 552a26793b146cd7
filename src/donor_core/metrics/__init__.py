"""Metric contract, org-local day bucketing and dashboard aggregation."""
from .aggregator import compute_daily_rollup, compute_metrics
from .contract import DEFAULT_ORG_TIMEZONE, METRIC_CONTRACT, sum_metric
from .service import DashboardMetricsService
from .store import DonorDataStore
from .timebucket import bucket_by_day, day_key

__all__ = [
    "DEFAULT_ORG_TIMEZONE",
    "METRIC_CONTRACT",
    "DashboardMetricsService",
    "DonorDataStore",
    "bucket_by_day",
    "compute_daily_rollup",
    "compute_metrics",
    "day_key",
    "sum_metric",
]
