"""Record and dashboard models shared across the donor core."""
from .dashboard import DashboardKPIs, DashboardMetrics, TimeSeriesPoint
from .records import (
    AttributionMapping,
    Campaign,
    Creative,
    FilterState,
    MatchType,
    SpendPlatform,
    SpendRecord,
    Touchpoint,
    Transaction,
    TransactionType,
)

__all__ = [
    "AttributionMapping",
    "Campaign",
    "Creative",
    "DashboardKPIs",
    "DashboardMetrics",
    "FilterState",
    "MatchType",
    "SpendPlatform",
    "SpendRecord",
    "TimeSeriesPoint",
    "Touchpoint",
    "Transaction",
    "TransactionType",
]
