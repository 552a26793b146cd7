"""Refcode to campaign/creative matching with tiered confidence.

Match tiers (first hit wins):
- url_exact (1.0): creative destination refcode equals the refcode (deterministic)
- url_partial (0.7): creative destination refcode overlaps the refcode
- campaign_pattern (0.8): normalized refcode equals the normalized campaign id
- fuzzy (<= 0.5): refcode/campaign name token similarity above 0.5

Only url_exact is deterministic; every other tier is heuristic.
"""
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import parse_qs, urlparse

from ..schemas.records import Campaign, Creative, MatchType, attribution_type_for


logger = logging.getLogger(__name__)


URL_EXACT_CONFIDENCE = 1.0
URL_PARTIAL_CONFIDENCE = 0.7
CAMPAIGN_PATTERN_CONFIDENCE = 0.8
FUZZY_THRESHOLD = 0.5
FUZZY_CONFIDENCE_CAP = 0.5

_TOKEN_SPLIT = re.compile(r"[_\-\s]+")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class AttributionMatch:
    """Result of matching one refcode against the campaign catalog."""

    match_type: MatchType
    confidence: float
    campaign_id: str
    campaign_name: str = ""
    creative_id: Optional[str] = None
    destination_url: Optional[str] = None
    reason: str = ""
    platform: str = "meta"

    @property
    def is_deterministic(self) -> bool:
        return self.match_type.is_deterministic

    @property
    def attribution_type(self) -> str:
        return attribution_type_for(self.match_type)


def normalize(value: str) -> str:
    """Lower-case and strip everything but ASCII letters and digits."""
    return _NON_ALNUM.sub("", (value or "").lower())


def tokenize(value: str) -> list[str]:
    return [token for token in _TOKEN_SPLIT.split((value or "").lower()) if token]


def similarity(a: str, b: str) -> float:
    """Name similarity in [0, 1].

    Normalized equality scores 1.0 and normalized containment 0.8. Otherwise
    each exact token pair (longer than 2 chars) adds 1.0 and each substring
    token pair adds 0.5, divided by the larger token count.
    """
    norm_a = normalize(a)
    norm_b = normalize(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    if norm_a in norm_b or norm_b in norm_a:
        return 0.8

    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0

    score = 0.0
    for token_a in tokens_a:
        for token_b in tokens_b:
            if token_a == token_b and len(token_a) > 2:
                score += 1.0
            elif token_a in token_b or token_b in token_a:
                score += 0.5

    return min(score / max(len(tokens_a), len(tokens_b)), 1.0)


def extract_refcode_from_url(url: Optional[str]) -> Optional[str]:
    """Return the refcode query parameter of a landing URL, if any."""
    if not url:
        return None

    try:
        params = parse_qs(urlparse(url).query)
    except ValueError as exc:
        logger.warning("Failed to parse URL %s: %s", url[:100], exc)
        return None

    value = (params.get("refcode", [None])[0] or "").strip()
    return value or None


def creative_refcode(creative: Creative) -> Optional[str]:
    return creative.extracted_refcode or extract_refcode_from_url(creative.destination_url)


def _sorted_creatives(creatives: Iterable[Creative]) -> list[Creative]:
    return sorted(creatives, key=lambda c: (c.campaign_id, c.creative_id or ""))


def _sorted_campaigns(campaigns: Iterable[Campaign]) -> list[Campaign]:
    return sorted(campaigns, key=lambda c: c.campaign_id)


def match_refcode_to_creative(
    refcode: Optional[str],
    creatives: Iterable[Creative],
) -> Optional[AttributionMatch]:
    """Match a refcode against creative destination URLs.

    Args:
        refcode: Refcode seen on donations
        creatives: Creative catalog rows (any order)

    Returns:
        url_exact or url_partial match, or None
    """
    if not refcode or not normalize(refcode):
        return None

    wanted = refcode.strip().lower()
    candidates = []
    for creative in _sorted_creatives(creatives):
        code = creative_refcode(creative)
        if code and normalize(code):
            candidates.append((creative, code.lower()))

    for creative, code in candidates:
        if code == wanted:
            return AttributionMatch(
                match_type=MatchType.URL_EXACT,
                confidence=URL_EXACT_CONFIDENCE,
                campaign_id=creative.campaign_id,
                campaign_name=creative.campaign_name,
                creative_id=creative.creative_id,
                destination_url=creative.destination_url,
                reason=f"Exact URL refcode match: ad destination contains ?refcode={refcode}",
            )

    for creative, code in candidates:
        if code in wanted or wanted in code:
            return AttributionMatch(
                match_type=MatchType.URL_PARTIAL,
                confidence=URL_PARTIAL_CONFIDENCE,
                campaign_id=creative.campaign_id,
                campaign_name=creative.campaign_name,
                creative_id=creative.creative_id,
                destination_url=creative.destination_url,
                reason=(
                    f'Partial URL match: "{creative_refcode(creative)}" overlaps with "{refcode}"'
                ),
            )

    return None


def match_refcode_to_campaign(
    refcode: Optional[str],
    campaigns: Iterable[Campaign],
) -> Optional[AttributionMatch]:
    """Match a refcode against campaign ids, then fuzzily against names.

    Args:
        refcode: Refcode seen on donations
        campaigns: Campaign catalog rows (any order)

    Returns:
        campaign_pattern or fuzzy match, or None
    """
    normalized = normalize(refcode or "")
    if not normalized:
        return None

    ordered = _sorted_campaigns(campaigns)

    for campaign in ordered:
        if normalize(campaign.campaign_id) == normalized:
            return AttributionMatch(
                match_type=MatchType.CAMPAIGN_PATTERN,
                confidence=CAMPAIGN_PATTERN_CONFIDENCE,
                campaign_id=campaign.campaign_id,
                campaign_name=campaign.campaign_name,
                reason="Pattern: refcode matches campaign ID directly",
                platform=campaign.platform,
            )

    best: Optional[Campaign] = None
    best_score = 0.0
    for campaign in ordered:
        score = similarity(refcode, campaign.campaign_name)
        if score > FUZZY_THRESHOLD and score > best_score:
            best = campaign
            best_score = score

    if best is None:
        return None

    return AttributionMatch(
        match_type=MatchType.FUZZY,
        confidence=min(best_score * 0.5, FUZZY_CONFIDENCE_CAP),
        campaign_id=best.campaign_id,
        campaign_name=best.campaign_name,
        reason=f"Fuzzy: {round(best_score * 100)}% name similarity (directional only)",
        platform=best.platform,
    )


def match_refcode(
    refcode: Optional[str],
    creatives: Iterable[Creative],
    campaigns: Iterable[Campaign],
) -> Optional[AttributionMatch]:
    """Run the creative tier, then the campaign tier."""
    match = match_refcode_to_creative(refcode, creatives)
    if match is None:
        match = match_refcode_to_campaign(refcode, campaigns)

    if match is not None:
        logger.debug(
            "Matched refcode %s -> %s (%s, confidence=%.2f)",
            refcode,
            match.campaign_id,
            match.match_type.value,
            match.confidence,
        )
    return match
