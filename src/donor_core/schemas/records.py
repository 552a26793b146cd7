"""Pydantic models for rows read from and written to the donor data store."""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional, Union

from pydantic import BaseModel, Field, PlainSerializer, model_validator


Money = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]


class TransactionType(str, Enum):
    """Financial event kinds."""

    DONATION = "donation"
    REFUND = "refund"
    CANCELLATION = "cancellation"


class SpendPlatform(str, Enum):
    """Advertising cost sources."""

    META = "meta"
    SMS = "sms"


class MatchType(str, Enum):
    """Attribution match tiers, strongest first."""

    URL_EXACT = "url_exact"
    URL_PARTIAL = "url_partial"
    CAMPAIGN_PATTERN = "campaign_pattern"
    FUZZY = "fuzzy"

    @property
    def is_deterministic(self) -> bool:
        return self is MatchType.URL_EXACT


ATTRIBUTION_TYPES: dict[MatchType, str] = {
    MatchType.URL_EXACT: "deterministic_url_refcode",
    MatchType.URL_PARTIAL: "heuristic_partial_url",
    MatchType.CAMPAIGN_PATTERN: "heuristic_pattern",
    MatchType.FUZZY: "heuristic_fuzzy",
}


def attribution_type_for(match_type: object) -> str:
    """Map a match type (enum or raw string) to its attribution label."""
    try:
        return ATTRIBUTION_TYPES[MatchType(match_type)]
    except ValueError:
        return "unknown"


class Transaction(BaseModel):
    """One financial event (donation, refund or cancellation)."""

    id: str = Field(..., description="Unique transaction id (refunds carry their own id)")
    organization_id: Optional[str] = None
    type: TransactionType = TransactionType.DONATION
    amount: Money = Field(..., description="Gross amount, signed per type")
    fee: Money = Decimal("0")
    net_amount: Optional[Money] = Field(
        None,
        description=(
            "amount - fee for donations, amount for refunds and cancellations; "
            "derived when omitted"
        ),
    )
    occurred_at: Optional[Union[datetime, str]] = Field(
        None, description="Absolute instant; unparseable values are dropped when bucketing"
    )
    donor_id: Optional[str] = Field(None, description="Pseudonymous donor hash")
    refcode: Optional[str] = None
    source_campaign: Optional[str] = None
    is_recurring: bool = False
    recurring_upsell_shown: bool = False
    recurring_upsell_succeeded: bool = False
    campaign_id: Optional[str] = None
    creative_id: Optional[str] = None

    @model_validator(mode="after")
    def _derive_net_amount(self) -> "Transaction":
        if self.net_amount is None:
            # Fees on refunds and cancellations never count toward REFUNDS.
            if self.type == TransactionType.DONATION:
                self.net_amount = self.amount - self.fee
            else:
                self.net_amount = self.amount
        return self

    @property
    def is_donation(self) -> bool:
        return self.type == TransactionType.DONATION


class SpendRecord(BaseModel):
    """One day/campaign/creative advertising cost entry."""

    platform: SpendPlatform
    campaign_id: Optional[str] = None
    creative_id: Optional[str] = None
    date: date
    spend: Money = Decimal("0")
    conversions: int = 0
    impressions: int = 0
    clicks: int = 0
    messages_sent: int = 0


class AttributionMapping(BaseModel):
    """Resolved link between a refcode and a campaign and/or creative."""

    organization_id: str
    refcode: str
    campaign_id: Optional[str] = None
    creative_id: Optional[str] = None
    platform: str = "meta"
    match_type: MatchType
    confidence: float = Field(..., ge=0.0, le=1.0)
    attribution_type: Optional[str] = None
    destination_url: Optional[str] = None
    match_reason: Optional[str] = None
    attributed_revenue: Money = Decimal("0")
    attributed_transactions: int = 0
    is_auto_matched: bool = True

    @model_validator(mode="after")
    def _derive_attribution_type(self) -> "AttributionMapping":
        if self.attribution_type is None:
            self.attribution_type = attribution_type_for(self.match_type)
        return self

    @property
    def key(self) -> tuple[str, str]:
        return (self.organization_id, self.refcode)

    @property
    def is_deterministic(self) -> bool:
        return self.match_type.is_deterministic


class Campaign(BaseModel):
    """Campaign catalog row (Meta campaign or SMS blast)."""

    campaign_id: str
    campaign_name: str = ""
    organization_id: Optional[str] = None
    platform: str = "meta"


class Creative(BaseModel):
    """Ad creative catalog row with its landing URL."""

    creative_id: Optional[str] = None
    campaign_id: str
    campaign_name: str = ""
    organization_id: Optional[str] = None
    destination_url: Optional[str] = None
    extracted_refcode: Optional[str] = Field(
        None, description="refcode query parameter of destination_url"
    )


class Touchpoint(BaseModel):
    """One event in a donor's journey."""

    donor_id: Optional[str] = None
    channel: str
    occurred_at: datetime
    campaign_id: Optional[str] = None

    @property
    def is_donation(self) -> bool:
        return self.channel == "donation"


class FilterState(BaseModel):
    """Dashboard filter selection (read-only for the aggregator)."""

    campaign_id: Optional[str] = None
    creative_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @property
    def is_filtered(self) -> bool:
        return bool(self.campaign_id or self.creative_id)
