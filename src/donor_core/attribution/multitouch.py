"""Multi-touch credit allocation over a donor journey.

Models:
- first_touch: 100% to the first marketing touchpoint
- last_touch: 100% to the last marketing touchpoint before the donation
- linear: equal split
- position_based: 40% first, 40% last, 20% spread over the middle
  (one touchpoint takes 100%, two split 50/50)
- time_decay: exponential weight with a 7-day half-life, measured back from
  the donation, normalized

A journey with no marketing touchpoints credits the donation itself (direct).
Credits are split in whole cents by largest remainder: every share is floored,
then leftover cents go to the largest fractional remainders (ties to the most
recent touchpoint), so each model sums to the donation amount exactly and no
credit goes negative.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional, Sequence

from ..exceptions import TouchpointOrderError, UnknownAttributionModelError
from ..schemas.records import Touchpoint


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
TIME_DECAY_HALF_LIFE_DAYS = 7.0
POSITION_ENDPOINT_WEIGHT = 0.4
POSITION_MIDDLE_WEIGHT = 0.2


class AttributionModel(str, Enum):
    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    LINEAR = "linear"
    POSITION_BASED = "position_based"
    TIME_DECAY = "time_decay"


@dataclass(frozen=True)
class TouchpointCredit:
    """Share of a donation credited to one touchpoint."""

    position: int
    channel: str
    occurred_at: datetime
    weight: float
    credit: Decimal
    campaign_id: Optional[str] = None


def validate_order(touchpoints: Sequence[Touchpoint]) -> None:
    """Raise TouchpointOrderError unless occurred_at is non-decreasing."""
    for position in range(1, len(touchpoints)):
        if touchpoints[position].occurred_at < touchpoints[position - 1].occurred_at:
            raise TouchpointOrderError(touchpoints[position].donor_id, position)


def _credited_touchpoints(touchpoints: Sequence[Touchpoint]) -> list[tuple[int, Touchpoint]]:
    marketing = [(i, tp) for i, tp in enumerate(touchpoints) if not tp.is_donation]
    if marketing:
        return marketing
    # Direct donation: the final event takes all credit.
    return [(len(touchpoints) - 1, touchpoints[-1])]


def _position_weights(count: int) -> list[float]:
    if count == 1:
        return [1.0]
    if count == 2:
        return [0.5, 0.5]
    middle = POSITION_MIDDLE_WEIGHT / (count - 2)
    return [POSITION_ENDPOINT_WEIGHT] + [middle] * (count - 2) + [POSITION_ENDPOINT_WEIGHT]


def _time_decay_weights(credited: Sequence[Touchpoint], reference: datetime) -> list[float]:
    raw = []
    for tp in credited:
        age_days = max((reference - tp.occurred_at).total_seconds(), 0.0) / 86400
        raw.append(0.5 ** (age_days / TIME_DECAY_HALF_LIFE_DAYS))
    total = sum(raw)
    return [weight / total for weight in raw]


def _weights(
    model: AttributionModel,
    credited: Sequence[Touchpoint],
    reference: datetime,
) -> list[float]:
    count = len(credited)
    if model == AttributionModel.FIRST_TOUCH:
        return [1.0] + [0.0] * (count - 1)
    if model == AttributionModel.LAST_TOUCH:
        return [0.0] * (count - 1) + [1.0]
    if model == AttributionModel.LINEAR:
        return [1.0 / count] * count
    if model == AttributionModel.POSITION_BASED:
        return _position_weights(count)
    if model == AttributionModel.TIME_DECAY:
        return _time_decay_weights(credited, reference)
    raise UnknownAttributionModelError(model)


def _split_cents(total: Decimal, weights: Sequence[float]) -> list[Decimal]:
    """Largest-remainder split of total into whole cents proportional to weights."""
    sign = -1 if total < 0 else 1
    cents = int(abs(total) / CENT)
    exact_weights = [Decimal(str(weight)) for weight in weights]
    weight_sum = sum(exact_weights)
    if weight_sum <= 0:
        exact_weights = [Decimal("1")] * len(weights)
        weight_sum = Decimal(len(weights))

    exact = [cents * weight / weight_sum for weight in exact_weights]
    floors = [int(share.to_integral_value(rounding=ROUND_FLOOR)) for share in exact]
    leftover = cents - sum(floors)

    # Largest fractional remainder first; ties go to the later touchpoint.
    order = sorted(
        range(len(exact)),
        key=lambda index: (exact[index] - floors[index], index),
        reverse=True,
    )
    for step in range(leftover):
        floors[order[step % len(order)]] += 1

    return [sign * Decimal(share) * CENT for share in floors]


def _resolve_model(model: AttributionModel | str) -> AttributionModel:
    try:
        return AttributionModel(model)
    except ValueError:
        raise UnknownAttributionModelError(model) from None


def allocate(
    touchpoints: Sequence[Touchpoint],
    amount: Decimal | int | float | str,
    model: AttributionModel | str,
) -> list[TouchpointCredit]:
    """Split a donation amount across its journey under one model.

    Args:
        touchpoints: Journey ordered by occurred_at, donation last
        amount: Donation amount to distribute
        model: Attribution model (enum or its value)

    Returns:
        One credit per credited touchpoint, in journey order

    Raises:
        TouchpointOrderError: touchpoints are not ordered by occurred_at
        UnknownAttributionModelError: model is not supported
    """
    model = _resolve_model(model)
    if not touchpoints:
        return []
    validate_order(touchpoints)

    total = Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    credited = _credited_touchpoints(touchpoints)
    weights = _weights(model, [tp for _, tp in credited], touchpoints[-1].occurred_at)

    shares = _split_cents(total, weights)

    credits: list[TouchpointCredit] = []
    for (position, tp), weight, credit in zip(credited, weights, shares):
        credits.append(
            TouchpointCredit(
                position=position,
                channel=tp.channel,
                occurred_at=tp.occurred_at,
                weight=weight,
                credit=credit,
                campaign_id=tp.campaign_id,
            )
        )

    return credits


def allocate_all(
    touchpoints: Sequence[Touchpoint],
    amount: Decimal | int | float | str,
) -> dict[AttributionModel, list[TouchpointCredit]]:
    """Run every model over the same journey."""
    results = {model: allocate(touchpoints, amount, model) for model in AttributionModel}
    logger.debug(
        "Allocated %s across %s touchpoints under %s models",
        amount,
        len(touchpoints),
        len(results),
    )
    return results


def credit_by_channel(credits: Sequence[TouchpointCredit]) -> dict[str, Decimal]:
    """Total credit per channel, in first-seen order."""
    totals: dict[str, Decimal] = {}
    for item in credits:
        totals[item.channel] = totals.get(item.channel, Decimal("0")) + item.credit
    return totals
