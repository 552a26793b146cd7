"""Unit tests for multi-touch credit allocation."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.donor_core.attribution.multitouch import (
    AttributionModel,
    allocate,
    allocate_all,
    credit_by_channel,
)
from src.donor_core.exceptions import TouchpointOrderError, UnknownAttributionModelError
from src.donor_core.schemas.records import Touchpoint


DONATED_AT = datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc)


def _journey(*steps):
    """Build touchpoints from (channel, days_before_donation) pairs, donation last."""
    touchpoints = [
        Touchpoint(donor_id="donor_a", channel=channel, occurred_at=DONATED_AT - timedelta(days=days))
        for channel, days in steps
    ]
    touchpoints.append(Touchpoint(donor_id="donor_a", channel="donation", occurred_at=DONATED_AT))
    return touchpoints


def _credits(items):
    return [item.credit for item in items]


def test_first_and_last_touch():
    journey = _journey(("meta_ad", 10), ("sms", 5), ("email", 1))

    first = allocate(journey, "100", AttributionModel.FIRST_TOUCH)
    last = allocate(journey, "100", "last_touch")

    assert _credits(first) == [Decimal("100"), Decimal("0"), Decimal("0")]
    assert _credits(last) == [Decimal("0"), Decimal("0"), Decimal("100")]
    assert [item.channel for item in first] == ["meta_ad", "sms", "email"]


def test_linear_sums_exactly():
    journey = _journey(("meta_ad", 3), ("sms", 2), ("email", 1))

    credits = _credits(allocate(journey, "100", AttributionModel.LINEAR))

    assert credits == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum(credits) == Decimal("100")


def test_position_based_forty_twenty_forty():
    journey = _journey(("meta_ad", 4), ("sms", 3), ("email", 2), ("meta_ad", 1))

    credits = _credits(allocate(journey, "200", AttributionModel.POSITION_BASED))

    assert credits == [Decimal("80"), Decimal("20"), Decimal("20"), Decimal("80")]


def test_position_based_two_touchpoints_split_evenly():
    journey = _journey(("meta_ad", 4), ("sms", 1))

    credits = _credits(allocate(journey, "50", AttributionModel.POSITION_BASED))

    assert credits == [Decimal("25"), Decimal("25")]


def test_position_based_single_touchpoint_takes_all():
    journey = _journey(("sms", 1))

    credits = _credits(allocate(journey, "50", AttributionModel.POSITION_BASED))

    assert credits == [Decimal("50")]


def test_time_decay_favors_recency():
    journey = _journey(("meta_ad", 14), ("sms", 7), ("email", 0))

    items = allocate(journey, "100", AttributionModel.TIME_DECAY)
    credits = _credits(items)

    assert credits[0] < credits[1] < credits[2]
    assert sum(credits) == Decimal("100")
    assert items[0].weight == pytest.approx(0.25 / 1.75)
    assert items[2].weight == pytest.approx(1.0 / 1.75)


def test_every_model_sums_to_amount():
    journey = _journey(("meta_ad", 9), ("sms", 6), ("email", 4), ("meta_ad", 2), ("sms", 1))

    results = allocate_all(journey, Decimal("77.77"))

    assert set(results) == set(AttributionModel)
    for credits in results.values():
        assert sum(_credits(credits)) == Decimal("77.77")


def test_direct_donation_credits_the_donation():
    journey = _journey()

    for model in AttributionModel:
        items = allocate(journey, "25", model)
        assert [item.channel for item in items] == ["donation"]
        assert _credits(items) == [Decimal("25")]


def test_out_of_order_touchpoints_raise():
    journey = _journey(("meta_ad", 2), ("sms", 5))

    with pytest.raises(TouchpointOrderError) as exc_info:
        allocate(journey, "10", AttributionModel.LINEAR)

    assert exc_info.value.position == 1
    assert exc_info.value.donor_id == "donor_a"


def test_unknown_model_raises():
    with pytest.raises(UnknownAttributionModelError):
        allocate(_journey(("sms", 1)), "10", "data_driven")


def test_empty_journey_allocates_nothing():
    assert allocate([], "10", AttributionModel.LINEAR) == []


def test_credit_by_channel():
    journey = _journey(("meta_ad", 3), ("sms", 2), ("meta_ad", 1))

    totals = credit_by_channel(allocate(journey, "90", AttributionModel.LINEAR))

    assert totals == {"meta_ad": Decimal("60"), "sms": Decimal("30")}


def test_small_amount_never_goes_negative():
    """Five touchpoints sharing three cents: each credit is zero or one cent."""
    journey = _journey(("meta_ad", 5), ("sms", 4), ("email", 3), ("meta_ad", 2), ("sms", 1))

    credits = _credits(allocate(journey, "0.03", AttributionModel.LINEAR))

    assert all(credit >= 0 for credit in credits)
    assert sum(credits) == Decimal("0.03")
    # Leftover cents go to the most recent touchpoints.
    assert credits == [Decimal("0"), Decimal("0"), Decimal("0.01"), Decimal("0.01"), Decimal("0.01")]


def test_linear_credits_differ_by_at_most_one_cent():
    journey = _journey(("meta_ad", 3), ("sms", 2), ("email", 1))

    credits = _credits(allocate(journey, "0.05", AttributionModel.LINEAR))

    assert credits == [Decimal("0.01"), Decimal("0.02"), Decimal("0.02")]
    assert max(credits) - min(credits) <= Decimal("0.01")


def test_long_journey_splits_one_dollar_without_negatives():
    steps = [("meta_ad" if i % 2 else "sms", 150 - i) for i in range(150)]
    journey = _journey(*steps)

    for model in AttributionModel:
        credits = _credits(allocate(journey, "1.00", model))
        assert all(credit >= 0 for credit in credits), model
        assert sum(credits) == Decimal("1.00"), model

    linear = _credits(allocate(journey, "1.00", AttributionModel.LINEAR))
    assert max(linear) - min(linear) <= Decimal("0.01")
