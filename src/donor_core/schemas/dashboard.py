"""Pydantic models for dashboard metrics handed to the presentation layer."""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from .records import Money


ZERO = Decimal("0")


class DashboardKPIs(BaseModel):
    """Flat KPI record for the hero cards."""

    total_raised: Money = ZERO
    total_net_raised: Money = ZERO
    total_net_revenue: Money = ZERO
    total_fees: Money = ZERO
    fee_percentage: float = 0.0
    refund_amount: Money = ZERO
    refund_count: int = 0
    refund_rate: float = 0.0
    recurring_raised: Money = ZERO
    recurring_donations: int = 0
    recurring_percentage: float = 0.0
    recurring_churn_rate: float = 0.0
    unique_donors: int = 0
    new_donors: int = 0
    returning_donors: int = 0
    upsell_conversion_rate: float = 0.0
    roi: float = 0.0
    total_spend: Money = ZERO
    meta_spend: Money = ZERO
    sms_spend: Money = ZERO
    total_impressions: int = 0
    total_clicks: int = 0
    avg_donation: float = 0.0
    donation_count: int = 0
    deterministic_rate: float = 0.0


class TimeSeriesPoint(BaseModel):
    """Per-day totals keyed by organization-local day."""

    date: str = Field(..., description="Day key YYYY-MM-DD in the org timezone")
    name: str = Field(..., description="Chart label, e.g. 'Jan 5'")
    donation_count: int = 0
    donations: Money = ZERO
    net_raised: Money = ZERO
    refunds: Money = Field(ZERO, description="Refund net for the day, signed negative")
    net_donations: Money = ZERO
    meta_spend: Money = ZERO
    sms_spend: Money = ZERO
    recurring_net: Money = ZERO
    unique_donors: int = 0
    attributed_donations: int = 0
    donations_prev: Money = ZERO
    net_donations_prev: Money = ZERO
    refunds_prev: Money = ZERO
    spend_prev: Money = ZERO

    @property
    def spend(self) -> Decimal:
        return self.meta_spend + self.sms_spend


class ChannelBreakdownEntry(BaseModel):
    """Filtered donations grouped by attribution platform."""

    channel: str
    label: str
    donations: int = 0
    raised: Money = ZERO
    net: Money = ZERO
    donors: int = 0
    percentage: float = 0.0


class ChannelContribution(BaseModel):
    """Spend-side conversion share per platform."""

    platform: str
    conversions: int = 0
    spend: Money = ZERO
    contribution: float = 0.0
    efficiency: float = 0.0


class SparklinePoint(BaseModel):
    date: str
    value: float


class Sparklines(BaseModel):
    """One series per KPI, one point per day, all derived from the time series."""

    net_revenue: list[SparklinePoint] = Field(default_factory=list)
    roi: list[SparklinePoint] = Field(default_factory=list)
    refund_rate: list[SparklinePoint] = Field(default_factory=list)
    recurring_health: list[SparklinePoint] = Field(default_factory=list)
    unique_donors: list[SparklinePoint] = Field(default_factory=list)
    attribution_quality: list[SparklinePoint] = Field(default_factory=list)


class DashboardTrends(BaseModel):
    """Percent change against the previous period (None when undefined)."""

    raised_trend: Optional[float] = None
    net_revenue_trend: Optional[float] = None
    donations_trend: Optional[float] = None
    donors_trend: Optional[float] = None
    refund_rate_trend: Optional[float] = None
    roi_trend: Optional[float] = None


class DashboardMetadata(BaseModel):
    timezone: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    previous_start_date: Optional[date] = None
    previous_end_date: Optional[date] = None
    campaign_id: Optional[str] = None
    creative_id: Optional[str] = None
    generated_at: datetime


class DashboardMetrics(BaseModel):
    """Complete aggregator output."""

    kpis: DashboardKPIs
    prev_kpis: Optional[DashboardKPIs] = None
    trends: DashboardTrends = Field(default_factory=DashboardTrends)
    time_series: list[TimeSeriesPoint] = Field(default_factory=list)
    channel_breakdown: list[ChannelBreakdownEntry] = Field(default_factory=list)
    channel_contribution: list[ChannelContribution] = Field(default_factory=list)
    sparklines: Sparklines = Field(default_factory=Sparklines)
    metadata: DashboardMetadata


class DailyRollupRow(BaseModel):
    """Canonical unfiltered per-day rollup row."""

    date: str
    gross_raised: Money = ZERO
    net_raised: Money = ZERO
    refunds: Money = ZERO
    net_revenue: Money = ZERO
    total_fees: Money = ZERO
    donation_count: int = 0
    unique_donors: int = 0
