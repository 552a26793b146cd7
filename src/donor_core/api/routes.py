"""FastAPI routes for dashboard metrics and attribution."""
import logging
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..attribution.matcher import match_refcode
from ..attribution.multitouch import AttributionModel, allocate, allocate_all
from ..attribution.reconcile import AttributionReconciler
from ..exceptions import DonorCoreError
from ..metrics.aggregator import compute_metrics
from ..metrics.contract import DEFAULT_ORG_TIMEZONE
from ..metrics.service import DashboardMetricsService
from ..schemas.dashboard import DailyRollupRow, DashboardMetrics
from ..schemas.records import (
    AttributionMapping,
    Campaign,
    Creative,
    FilterState,
    SpendRecord,
    Touchpoint,
    Transaction,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["metrics"])


@lru_cache(maxsize=1)
def get_metrics_service() -> DashboardMetricsService:
    """Process-wide service bound to DONOR_DB_PATH."""
    return DashboardMetricsService()


class ComputeMetricsRequest(BaseModel):
    """Ad-hoc aggregation over caller-supplied rows."""

    transactions: list[Transaction] = Field(default_factory=list)
    spend_records: list[SpendRecord] = Field(default_factory=list)
    filters: FilterState = Field(default_factory=FilterState)
    org_timezone: str = Field(DEFAULT_ORG_TIMEZONE, description="IANA zone for day keys")
    mappings: list[AttributionMapping] = Field(default_factory=list)
    previous_transactions: Optional[list[Transaction]] = Field(
        None, description="Rows for the comparison period (enables trends)"
    )
    previous_spend_records: Optional[list[SpendRecord]] = None


class MatchRequest(BaseModel):
    refcode: str = Field(..., description="Refcode seen on donations")
    creatives: list[Creative] = Field(default_factory=list)
    campaigns: list[Campaign] = Field(default_factory=list)


class MatchResponse(BaseModel):
    matched: bool
    match_type: Optional[str] = None
    attribution_type: Optional[str] = None
    confidence: Optional[float] = None
    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = None
    creative_id: Optional[str] = None
    destination_url: Optional[str] = None
    reason: Optional[str] = None


class ReconcileRequest(BaseModel):
    organization_id: Optional[str] = Field(None, description="Organization (all when omitted)")
    dry_run: bool = Field(True, description="Evaluate without writing mappings")
    min_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)


class AllocateRequest(BaseModel):
    touchpoints: list[Touchpoint] = Field(..., description="Journey ordered by occurred_at")
    amount: Decimal = Field(..., description="Donation amount to distribute")
    model: Optional[AttributionModel] = Field(None, description="Single model (all when omitted)")


class CreditResponse(BaseModel):
    position: int
    channel: str
    campaign_id: Optional[str] = None
    weight: float
    credit: float


def _credits(items) -> list[CreditResponse]:
    return [
        CreditResponse(
            position=item.position,
            channel=item.channel,
            campaign_id=item.campaign_id,
            weight=item.weight,
            credit=float(item.credit),
        )
        for item in items
    ]


@router.get("/health", summary="Liveness check")
async def health() -> dict:
    return {"status": "ok"}


@router.get(
    "/metrics/dashboard",
    response_model=DashboardMetrics,
    summary="Dashboard metrics for an organization",
)
def get_dashboard(
    organization_id: str = Query(..., description="Organization id"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    campaign_id: Optional[str] = Query(None),
    creative_id: Optional[str] = Query(None),
    service: DashboardMetricsService = Depends(get_metrics_service),
) -> DashboardMetrics:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must be on or before end_date",
        )

    filters = FilterState(
        campaign_id=campaign_id,
        creative_id=creative_id,
        start_date=start_date,
        end_date=end_date,
    )
    try:
        return service.dashboard(organization_id, filters)
    except DonorCoreError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post(
    "/metrics/compute",
    response_model=DashboardMetrics,
    summary="Aggregate caller-supplied rows",
)
def post_compute_metrics(payload: ComputeMetricsRequest) -> DashboardMetrics:
    try:
        return compute_metrics(
            payload.transactions,
            payload.spend_records,
            payload.filters,
            org_timezone=payload.org_timezone,
            mappings=payload.mappings,
            previous_transactions=payload.previous_transactions,
            previous_spend_records=payload.previous_spend_records,
        )
    except DonorCoreError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get(
    "/metrics/rollup",
    response_model=list[DailyRollupRow],
    summary="Canonical unfiltered daily rollup",
)
def get_rollup(
    organization_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    service: DashboardMetricsService = Depends(get_metrics_service),
) -> list[DailyRollupRow]:
    return service.daily_rollup(organization_id, start_date, end_date)


@router.post(
    "/attribution/match",
    response_model=MatchResponse,
    summary="Match a single refcode against a catalog",
)
def post_match(payload: MatchRequest) -> MatchResponse:
    match = match_refcode(payload.refcode, payload.creatives, payload.campaigns)
    if match is None:
        return MatchResponse(matched=False)

    return MatchResponse(
        matched=True,
        match_type=match.match_type.value,
        attribution_type=match.attribution_type,
        confidence=match.confidence,
        campaign_id=match.campaign_id,
        campaign_name=match.campaign_name,
        creative_id=match.creative_id,
        destination_url=match.destination_url,
        reason=match.reason,
    )


@router.post("/attribution/reconcile", summary="Run a reconciliation pass")
def post_reconcile(
    payload: ReconcileRequest,
    service: DashboardMetricsService = Depends(get_metrics_service),
) -> dict:
    reconciler = AttributionReconciler(service.store)
    summary = reconciler.run(
        organization_id=payload.organization_id,
        dry_run=payload.dry_run,
        min_confidence=payload.min_confidence,
    )
    result = asdict(summary)
    result["matches"] = [mapping.model_dump(mode="json") for mapping in summary.matches]
    return result


@router.post("/attribution/allocate", summary="Split a donation across touchpoints")
def post_allocate(payload: AllocateRequest) -> dict:
    try:
        if payload.model is not None:
            credits = allocate(payload.touchpoints, payload.amount, payload.model)
            return {payload.model.value: _credits(credits)}

        results = allocate_all(payload.touchpoints, payload.amount)
    except DonorCoreError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    return {model.value: _credits(credits) for model, credits in results.items()}
