"""Dashboard metrics aggregation.

Composes the metric contract, org-local day bucketing and the active
campaign/creative filter into KPI totals, a per-day time series, a channel
breakdown and sparklines.

Invariants:
- Refunds are never filtered; every filtered KPI subtracts the global refund total.
- sum(time_series[*].net_donations) == kpis.total_net_revenue (exact, Decimal).
- Sparklines are read from the time series, never recomputed from rows.
- Every ratio resolves to 0 on a zero denominator.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from ..exceptions import UnknownMatchTypeError
from ..schemas.dashboard import (
    ChannelBreakdownEntry,
    ChannelContribution,
    DailyRollupRow,
    DashboardKPIs,
    DashboardMetadata,
    DashboardMetrics,
    DashboardTrends,
    SparklinePoint,
    Sparklines,
    TimeSeriesPoint,
    ZERO,
)
from ..schemas.records import (
    AttributionMapping,
    FilterState,
    MatchType,
    SpendPlatform,
    SpendRecord,
    Transaction,
)
from .contract import DEFAULT_ORG_TIMEZONE, partition_transactions, sum_metric
from .timebucket import (
    bucket_by_day,
    day_label,
    iter_day_keys,
    previous_period,
    resolve_timezone,
)


logger = logging.getLogger(__name__)

# Spend sources that can be narrowed to a campaign / creative. Sources outside
# these sets are dropped entirely while the corresponding filter is active.
CAMPAIGN_MAPPED_PLATFORMS = frozenset({SpendPlatform.META})
CREATIVE_MAPPED_PLATFORMS = frozenset({SpendPlatform.META})

UNATTRIBUTED = "unattributed"
CHANNEL_ORDER = ("meta", "sms", "email", "other")
CHANNEL_LABELS = {
    "meta": "Meta Ads",
    "sms": "SMS",
    "email": "Email",
    "other": "Other",
    UNATTRIBUTED: "Unattributed",
}


def safe_ratio(numerator: object, denominator: object) -> float:
    """numerator / denominator, or 0.0 when the denominator is zero."""
    denominator = Decimal(denominator)
    if denominator == 0:
        return 0.0
    return float(Decimal(numerator) / denominator)


def safe_percentage(numerator: object, denominator: object) -> float:
    """numerator / denominator * 100, or 0.0 when the denominator is zero."""
    denominator = Decimal(denominator)
    if denominator == 0:
        return 0.0
    return float(Decimal(numerator) * 100 / denominator)


def compute_roi(net_revenue: Decimal, spend: Decimal) -> float:
    """(net revenue - spend) / spend, defined as exactly 0 when spend is 0."""
    if spend == 0:
        return 0.0
    return float((net_revenue - spend) / spend)


def percent_change(current: object, previous: object) -> Optional[float]:
    previous = Decimal(str(previous))
    if previous == 0:
        return None
    return float((Decimal(str(current)) - previous) * 100 / abs(previous))


@dataclass
class _Period:
    """Rows of one date window after bucketing and filtering."""

    day_keys: list[str]
    donations: list[Transaction] = field(default_factory=list)
    refunds: list[Transaction] = field(default_factory=list)
    spend: list[SpendRecord] = field(default_factory=list)
    donations_by_day: dict[str, list[Transaction]] = field(default_factory=dict)
    refunds_by_day: dict[str, list[Transaction]] = field(default_factory=dict)
    spend_by_day: dict[str, list[SpendRecord]] = field(default_factory=dict)

    @property
    def donor_ids(self) -> set[str]:
        return {txn.donor_id for txn in self.donations if txn.donor_id}


def _resolve_range(
    buckets: dict[str, list],
    start: Optional[date],
    end: Optional[date],
) -> tuple[Optional[date], Optional[date]]:
    if buckets:
        keys = sorted(buckets)
        start = start or date.fromisoformat(keys[0])
        end = end or date.fromisoformat(keys[-1])
    return start, end


def _matches_filters(txn: Transaction, filters: FilterState) -> bool:
    if filters.campaign_id and txn.campaign_id != filters.campaign_id:
        return False
    if filters.creative_id and txn.creative_id != filters.creative_id:
        return False
    return True


def filter_spend(spend_records: Iterable[SpendRecord], filters: FilterState) -> list[SpendRecord]:
    """Restrict spend rows to the active campaign/creative filter.

    A source without campaign (or creative) level mapping, such as SMS, is
    excluded entirely while that filter is active rather than partially counted.
    """
    kept: list[SpendRecord] = []
    for record in spend_records:
        if filters.campaign_id:
            if record.platform not in CAMPAIGN_MAPPED_PLATFORMS:
                continue
            if record.campaign_id != filters.campaign_id:
                continue
        if filters.creative_id:
            if record.platform not in CREATIVE_MAPPED_PLATFORMS:
                continue
            if record.creative_id != filters.creative_id:
                continue
        kept.append(record)
    return kept


def _collect_period(
    transactions: Iterable[Transaction],
    spend_records: Iterable[SpendRecord],
    filters: FilterState,
    zone: ZoneInfo,
    start: Optional[date],
    end: Optional[date],
) -> _Period:
    buckets = bucket_by_day(transactions, lambda txn: txn.occurred_at, zone)
    start, end = _resolve_range(buckets, start, end)
    if start is None or end is None:
        return _Period(day_keys=[])

    day_keys = list(iter_day_keys(start, end))
    period = _Period(day_keys=day_keys)

    for key in day_keys:
        donations, refunds = partition_transactions(buckets.get(key, []))
        donations = [txn for txn in donations if _matches_filters(txn, filters)]
        if donations:
            period.donations_by_day[key] = donations
            period.donations.extend(donations)
        if refunds:
            period.refunds_by_day[key] = refunds
            period.refunds.extend(refunds)

    in_range = set(day_keys)
    for record in filter_spend(spend_records, filters):
        key = record.date.isoformat()
        if key not in in_range:
            continue
        period.spend.append(record)
        period.spend_by_day.setdefault(key, []).append(record)

    return period


def _spend_total(records: Iterable[SpendRecord], platform: Optional[SpendPlatform] = None) -> Decimal:
    total = ZERO
    for record in records:
        if platform is None or record.platform == platform:
            total += record.spend
    return total


def _is_attributed(txn: Transaction) -> bool:
    return bool(txn.refcode or txn.source_campaign)


def _build_kpis(period: _Period, previous_donors: Optional[set[str]] = None) -> DashboardKPIs:
    donations = period.donations
    refunds = period.refunds

    gross = sum_metric("GROSS_RAISED", donations)
    net_raised = sum_metric("NET_RAISED", donations)
    refund_total = sum_metric("REFUNDS", refunds)
    fees = sum_metric("FEES", donations)
    net_revenue = net_raised - refund_total

    recurring = [txn for txn in donations if txn.is_recurring]
    recurring_churn = [txn for txn in refunds if txn.is_recurring]

    donors = period.donor_ids
    previous_donors = previous_donors or set()
    returning = len(donors & previous_donors)

    upsell_shown = sum(1 for txn in donations if txn.recurring_upsell_shown)
    upsell_succeeded = sum(1 for txn in donations if txn.recurring_upsell_succeeded)

    total_spend = _spend_total(period.spend)

    return DashboardKPIs(
        total_raised=gross,
        total_net_raised=net_raised,
        total_net_revenue=net_revenue,
        total_fees=fees,
        fee_percentage=safe_percentage(fees, gross),
        refund_amount=refund_total,
        refund_count=len(refunds),
        refund_rate=safe_percentage(refund_total, gross),
        recurring_raised=sum_metric("NET_RAISED", recurring),
        recurring_donations=len(recurring),
        recurring_percentage=safe_percentage(len(recurring), len(donations)),
        recurring_churn_rate=safe_percentage(len(recurring_churn), len(recurring)),
        unique_donors=len(donors),
        new_donors=len(donors) - returning,
        returning_donors=returning,
        upsell_conversion_rate=safe_percentage(upsell_succeeded, upsell_shown),
        roi=compute_roi(net_revenue, total_spend),
        total_spend=total_spend,
        meta_spend=_spend_total(period.spend, SpendPlatform.META),
        sms_spend=_spend_total(period.spend, SpendPlatform.SMS),
        total_impressions=sum(record.impressions for record in period.spend),
        total_clicks=sum(record.clicks for record in period.spend),
        avg_donation=safe_ratio(gross, len(donations)),
        donation_count=len(donations),
        deterministic_rate=safe_percentage(
            sum(1 for txn in donations if _is_attributed(txn)), len(donations)
        ),
    )


def _build_time_series(period: _Period, previous: Optional[_Period] = None) -> list[TimeSeriesPoint]:
    previous_points: list[TimeSeriesPoint] = []
    if previous is not None:
        previous_points = _build_time_series(previous)

    points: list[TimeSeriesPoint] = []
    for index, key in enumerate(period.day_keys):
        day_donations = period.donations_by_day.get(key, [])
        day_refunds = period.refunds_by_day.get(key, [])
        day_spend = period.spend_by_day.get(key, [])

        net_raised = sum_metric("NET_RAISED", day_donations)
        refund_total = sum_metric("REFUNDS", day_refunds)

        point = TimeSeriesPoint(
            date=key,
            name=day_label(key),
            donation_count=len(day_donations),
            donations=sum_metric("GROSS_RAISED", day_donations),
            net_raised=net_raised,
            refunds=-refund_total,
            net_donations=net_raised - refund_total,
            meta_spend=_spend_total(day_spend, SpendPlatform.META),
            sms_spend=_spend_total(day_spend, SpendPlatform.SMS),
            recurring_net=sum_metric(
                "NET_RAISED", [txn for txn in day_donations if txn.is_recurring]
            ),
            unique_donors=len({txn.donor_id for txn in day_donations if txn.donor_id}),
            attributed_donations=sum(1 for txn in day_donations if _is_attributed(txn)),
        )

        if index < len(previous_points):
            prev = previous_points[index]
            point.donations_prev = prev.donations
            point.net_donations_prev = prev.net_donations
            point.refunds_prev = prev.refunds
            point.spend_prev = prev.spend

        points.append(point)

    return points


def _build_sparklines(time_series: Sequence[TimeSeriesPoint]) -> Sparklines:
    sparklines = Sparklines()
    for point in time_series:
        sparklines.net_revenue.append(
            SparklinePoint(date=point.name, value=float(point.net_donations))
        )
        sparklines.roi.append(
            SparklinePoint(date=point.name, value=compute_roi(point.net_donations, point.spend))
        )
        sparklines.refund_rate.append(
            SparklinePoint(
                date=point.name,
                value=safe_percentage(abs(point.refunds), point.donations),
            )
        )
        sparklines.recurring_health.append(
            SparklinePoint(date=point.name, value=float(point.recurring_net))
        )
        sparklines.unique_donors.append(
            SparklinePoint(date=point.name, value=float(point.unique_donors))
        )
        sparklines.attribution_quality.append(
            SparklinePoint(
                date=point.name,
                value=safe_percentage(point.attributed_donations, point.donation_count),
            )
        )
    return sparklines


def _check_match_type(mapping: AttributionMapping) -> None:
    """Raise UnknownMatchTypeError unless match_type is a known tier."""
    if mapping.match_type not in (
        MatchType.URL_EXACT,
        MatchType.URL_PARTIAL,
        MatchType.CAMPAIGN_PATTERN,
        MatchType.FUZZY,
    ):
        raise UnknownMatchTypeError(mapping.match_type)


class _MappingIndex:
    """Lookup of attribution mappings by (organization_id, refcode)."""

    def __init__(self, mappings: Iterable[AttributionMapping]) -> None:
        self.by_key: dict[tuple[str, str], AttributionMapping] = {}
        self.by_refcode: dict[str, AttributionMapping] = {}
        for mapping in mappings:
            _check_match_type(mapping)
            self.by_key[mapping.key] = mapping
            self.by_refcode.setdefault(mapping.refcode, mapping)

    def resolve(self, txn: Transaction) -> Optional[AttributionMapping]:
        if not txn.refcode:
            return None
        if txn.organization_id is not None:
            return self.by_key.get((txn.organization_id, txn.refcode))
        return self.by_refcode.get(txn.refcode)


def build_channel_breakdown(
    donations: Sequence[Transaction],
    mappings: Iterable[AttributionMapping],
) -> list[ChannelBreakdownEntry]:
    """Group donations by the platform of their attribution mapping.

    Donations without any mapping land in an explicit 'unattributed' bucket.
    """
    index = _MappingIndex(mappings)
    groups: dict[str, list[Transaction]] = {}

    for txn in donations:
        mapping = index.resolve(txn)
        channel = mapping.platform.lower() if mapping and mapping.platform else UNATTRIBUTED
        groups.setdefault(channel, []).append(txn)

    ordered = [channel for channel in CHANNEL_ORDER if channel in groups]
    ordered += sorted(
        channel for channel in groups if channel not in CHANNEL_ORDER and channel != UNATTRIBUTED
    )
    ordered.append(UNATTRIBUTED)

    total = len(donations)
    entries: list[ChannelBreakdownEntry] = []
    for channel in ordered:
        rows = groups.get(channel, [])
        entries.append(
            ChannelBreakdownEntry(
                channel=channel,
                label=CHANNEL_LABELS.get(channel, channel.title()),
                donations=len(rows),
                raised=sum_metric("GROSS_RAISED", rows),
                net=sum_metric("NET_RAISED", rows),
                donors=len({txn.donor_id for txn in rows if txn.donor_id}),
                percentage=safe_percentage(len(rows), total),
            )
        )
    return entries


def build_channel_contribution(spend_records: Sequence[SpendRecord]) -> list[ChannelContribution]:
    """Conversion share and conversions-per-dollar for each spend platform."""
    total_conversions = sum(record.conversions for record in spend_records)
    contributions: list[ChannelContribution] = []

    for platform in SpendPlatform:
        rows = [record for record in spend_records if record.platform == platform]
        if not rows:
            continue
        conversions = sum(record.conversions for record in rows)
        spend = _spend_total(rows)
        contributions.append(
            ChannelContribution(
                platform=platform.value,
                conversions=conversions,
                spend=spend,
                contribution=safe_percentage(conversions, total_conversions),
                efficiency=safe_ratio(conversions, spend),
            )
        )
    return contributions


def _build_trends(current: DashboardKPIs, previous: DashboardKPIs) -> DashboardTrends:
    return DashboardTrends(
        raised_trend=percent_change(current.total_raised, previous.total_raised),
        net_revenue_trend=percent_change(current.total_net_revenue, previous.total_net_revenue),
        donations_trend=percent_change(current.donation_count, previous.donation_count),
        donors_trend=percent_change(current.unique_donors, previous.unique_donors),
        refund_rate_trend=percent_change(current.refund_rate, previous.refund_rate),
        roi_trend=percent_change(current.roi, previous.roi),
    )


def compute_metrics(
    transactions: Iterable[Transaction],
    spend_records: Iterable[SpendRecord],
    filters: Optional[FilterState] = None,
    org_timezone: str | None = DEFAULT_ORG_TIMEZONE,
    mappings: Optional[Iterable[AttributionMapping]] = None,
    previous_transactions: Optional[Iterable[Transaction]] = None,
    previous_spend_records: Optional[Iterable[SpendRecord]] = None,
) -> DashboardMetrics:
    """Compute KPIs, time series, channel breakdown and sparklines.

    Args:
        transactions: Donation/refund/cancellation rows
        spend_records: Meta and SMS spend rows
        filters: Campaign/creative/date-range selection (None = unfiltered, full data range)
        org_timezone: Organization zone used for every day key
        mappings: Attribution mappings for the channel breakdown
        previous_transactions: Rows for the comparison period (enables prev_kpis/trends)
        previous_spend_records: Spend rows for the comparison period

    Returns:
        DashboardMetrics
    """
    filters = filters or FilterState()
    zone = resolve_timezone(org_timezone)
    spend_records = list(spend_records)

    period = _collect_period(
        transactions, spend_records, filters, zone, filters.start_date, filters.end_date
    )

    previous: Optional[_Period] = None
    prev_start: Optional[date] = None
    prev_end: Optional[date] = None
    if previous_transactions is not None and period.day_keys:
        prev_start, prev_end = previous_period(
            date.fromisoformat(period.day_keys[0]),
            date.fromisoformat(period.day_keys[-1]),
        )
        previous = _collect_period(
            previous_transactions,
            previous_spend_records or [],
            filters,
            zone,
            prev_start,
            prev_end,
        )

    kpis = _build_kpis(period, previous.donor_ids if previous else None)
    prev_kpis = _build_kpis(previous) if previous else None
    time_series = _build_time_series(period, previous)

    logger.debug(
        "Computed metrics: days=%s donations=%s refunds=%s spend_rows=%s filtered=%s",
        len(period.day_keys),
        len(period.donations),
        len(period.refunds),
        len(period.spend),
        filters.is_filtered,
    )

    return DashboardMetrics(
        kpis=kpis,
        prev_kpis=prev_kpis,
        trends=_build_trends(kpis, prev_kpis) if prev_kpis else DashboardTrends(),
        time_series=time_series,
        channel_breakdown=build_channel_breakdown(period.donations, mappings or []),
        channel_contribution=build_channel_contribution(period.spend),
        sparklines=_build_sparklines(time_series),
        metadata=DashboardMetadata(
            timezone=zone.key,
            start_date=date.fromisoformat(period.day_keys[0]) if period.day_keys else None,
            end_date=date.fromisoformat(period.day_keys[-1]) if period.day_keys else None,
            previous_start_date=prev_start,
            previous_end_date=prev_end,
            campaign_id=filters.campaign_id,
            creative_id=filters.creative_id,
            generated_at=datetime.now(timezone.utc),
        ),
    )


def compute_daily_rollup(
    transactions: Iterable[Transaction],
    org_timezone: str | None = DEFAULT_ORG_TIMEZONE,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> list[DailyRollupRow]:
    """Canonical unfiltered per-day rollup.

    Shares bucket_by_day() with compute_metrics() so that, with no filter
    active, each row's net_revenue equals the matching time series
    net_donations.
    """
    zone = resolve_timezone(org_timezone)
    buckets = bucket_by_day(transactions, lambda txn: txn.occurred_at, zone)
    start, end = _resolve_range(buckets, start, end)
    if start is None or end is None:
        return []

    rows: list[DailyRollupRow] = []
    for key in iter_day_keys(start, end):
        donations, refunds = partition_transactions(buckets.get(key, []))
        net_raised = sum_metric("NET_RAISED", donations)
        refund_total = sum_metric("REFUNDS", refunds)
        rows.append(
            DailyRollupRow(
                date=key,
                gross_raised=sum_metric("GROSS_RAISED", donations),
                net_raised=net_raised,
                refunds=refund_total,
                net_revenue=net_raised - refund_total,
                total_fees=sum_metric("FEES", donations),
                donation_count=len(donations),
                unique_donors=len({txn.donor_id for txn in donations if txn.donor_id}),
            )
        )
    return rows
