"""Unit tests for refcode attribution matching."""
import itertools

from src.donor_core.attribution.matcher import (
    extract_refcode_from_url,
    match_refcode,
    match_refcode_to_campaign,
    match_refcode_to_creative,
    normalize,
    similarity,
)
from src.donor_core.schemas.records import (
    Campaign,
    Creative,
    MatchType,
    attribution_type_for,
)


CREATIVES = [
    Creative(
        creative_id="cr_1",
        campaign_id="camp_123",
        campaign_name="Fall 2024 Mobilization",
        destination_url="https://donate.example.com?refcode=jp421",
        extracted_refcode="jp421",
    ),
    Creative(
        creative_id="cr_2",
        campaign_id="camp_456",
        campaign_name="Year End Push",
        destination_url="https://donate.example.com?refcode=yearend_2024_v1",
        extracted_refcode="yearend_2024_v1",
    ),
]

CAMPAIGNS = [
    Campaign(campaign_id="meta_fall_2024", campaign_name="Meta Fall 2024 Mobilization"),
    Campaign(campaign_id="fb_yearend", campaign_name="Facebook Year End Campaign"),
]


def test_exact_match_is_deterministic():
    """Exact URL refcode match has confidence 1.0."""
    match = match_refcode_to_creative("jp421", CREATIVES)

    assert match is not None
    assert match.match_type == MatchType.URL_EXACT
    assert match.confidence == 1.0
    assert match.campaign_id == "camp_123"
    assert match.creative_id == "cr_1"
    assert match.is_deterministic is True
    assert match.attribution_type == "deterministic_url_refcode"


def test_exact_match_is_case_insensitive():
    match = match_refcode_to_creative("JP421", CREATIVES)

    assert match.match_type == MatchType.URL_EXACT
    assert match.confidence == 1.0


def test_exact_beats_partial_regardless_of_order():
    creatives = [
        Creative(campaign_id="a_variant", extracted_refcode="jp421_variant_a"),
        Creative(campaign_id="z_exact", extracted_refcode="jp421"),
    ]

    match = match_refcode_to_creative("jp421", creatives)

    assert match.match_type == MatchType.URL_EXACT
    assert match.campaign_id == "z_exact"


def test_partial_match_is_heuristic():
    creatives = [
        Creative(
            campaign_id="camp_789",
            campaign_name="Q4 Campaign",
            destination_url="https://donate.example.com?refcode=jp421_variant_a",
            extracted_refcode="jp421_variant_a",
        )
    ]

    match = match_refcode_to_creative("jp421", creatives)

    assert match.match_type == MatchType.URL_PARTIAL
    assert match.confidence == 0.7
    assert match.is_deterministic is False
    assert match.attribution_type == "heuristic_partial_url"
    assert "Partial URL match" in match.reason
    assert "jp421_variant_a" in match.reason


def test_refcode_extracted_from_destination_url():
    creatives = [
        Creative(
            campaign_id="camp_9",
            destination_url="https://donate.example.com/give?amount=10&refcode=spring25",
        )
    ]

    match = match_refcode_to_creative("spring25", creatives)

    assert match.match_type == MatchType.URL_EXACT


def test_no_creative_match_returns_none():
    assert match_refcode_to_creative("nonexistent_code", CREATIVES) is None


def test_empty_or_unnormalizable_refcode_never_matches():
    for refcode in (None, "", "   ", "---", "__"):
        assert match_refcode_to_creative(refcode, CREATIVES) is None
        assert match_refcode_to_campaign(refcode, CAMPAIGNS) is None
        assert match_refcode(refcode, CREATIVES, CAMPAIGNS) is None


def test_punctuation_only_creative_refcode_never_matches():
    """A creative refcode like "_" must not partially match "jp_421"."""
    creatives = [
        Creative(creative_id="cr_punct", campaign_id="camp_x", extracted_refcode="_"),
        Creative(
            creative_id="cr_dash",
            campaign_id="camp_y",
            destination_url="https://donate.example.com?refcode=-",
        ),
    ]

    assert match_refcode_to_creative("jp_421", creatives) is None
    assert match_refcode_to_creative("spring-push", creatives) is None
    assert match_refcode_to_creative("jp421", creatives + CREATIVES).campaign_id == "camp_123"


def test_campaign_id_pattern_match():
    match = match_refcode_to_campaign("meta_fall_2024", CAMPAIGNS)

    assert match.match_type == MatchType.CAMPAIGN_PATTERN
    assert match.confidence == 0.8
    assert match.attribution_type == "heuristic_pattern"


def test_campaign_pattern_ignores_separators_and_case():
    match = match_refcode_to_campaign("Meta-Fall-2024", CAMPAIGNS)

    assert match.campaign_id == "meta_fall_2024"


def test_fuzzy_match_capped_at_half():
    campaigns = [Campaign(campaign_id="c_999", campaign_name="Year End Push")]

    match = match_refcode_to_campaign("yearend_push", campaigns)

    assert match.match_type == MatchType.FUZZY
    assert match.confidence == 0.5
    assert match.attribution_type == "heuristic_fuzzy"
    assert "directional only" in match.reason


def test_fuzzy_below_threshold_returns_none():
    assert match_refcode_to_campaign("meta_fall_campaign", CAMPAIGNS) is None


def test_fuzzy_confidence_never_exceeds_half():
    campaigns = [
        Campaign(campaign_id="c1", campaign_name="Spring Gala Dinner"),
        Campaign(campaign_id="c2", campaign_name="spring gala"),
        Campaign(campaign_id="c3", campaign_name="Gala Spring Dinner 2025"),
    ]

    for refcode in ("spring_gala", "gala_dinner_spring", "springgala2025"):
        match = match_refcode_to_campaign(refcode, campaigns)
        if match is not None:
            assert match.confidence <= 0.5


def test_results_independent_of_candidate_order():
    campaigns = [
        Campaign(campaign_id="c_b", campaign_name="Year End Push"),
        Campaign(campaign_id="c_a", campaign_name="Year-End Push"),
        Campaign(campaign_id="c_c", campaign_name="Spring Push"),
    ]

    results = {
        match_refcode_to_campaign("yearend_push", list(order))
        for order in itertools.permutations(campaigns)
    }

    assert len(results) == 1
    assert results.pop().campaign_id == "c_a"


def test_match_refcode_prefers_creative_tier():
    match = match_refcode("yearend_2024_v1", CREATIVES, CAMPAIGNS)

    assert match.match_type == MatchType.URL_EXACT
    assert match.campaign_id == "camp_456"


def test_match_refcode_falls_back_to_campaign_tier():
    match = match_refcode("fb_yearend", [], CAMPAIGNS)

    assert match.match_type == MatchType.CAMPAIGN_PATTERN


def test_attribution_type_mapping():
    assert attribution_type_for("url_exact") == "deterministic_url_refcode"
    assert attribution_type_for("url_partial") == "heuristic_partial_url"
    assert attribution_type_for("campaign_pattern") == "heuristic_pattern"
    assert attribution_type_for("fuzzy") == "heuristic_fuzzy"
    assert attribution_type_for("anything_else") == "unknown"


def test_normalize_and_similarity():
    assert normalize("JP-421 Fall!") == "jp421fall"
    assert similarity("year_end", "Year End") == 1.0
    assert similarity("year_end", "Year End Push") == 0.8
    assert similarity("", "anything") == 0.0


def test_extract_refcode_from_url():
    assert extract_refcode_from_url("https://x.com/?refcode=abc&x=1") == "abc"
    assert extract_refcode_from_url("https://x.com/?utm_source=fb") is None
    assert extract_refcode_from_url(None) is None
