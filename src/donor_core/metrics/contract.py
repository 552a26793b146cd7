"""Canonical metric definitions.

Metric contract:
- GROSS_RAISED: sum(amount) over donations
- NET_RAISED: sum(net_amount) over donations
- REFUNDS: sum(|net_amount|) over refunds + cancellations
- NET_REVENUE: NET_RAISED - REFUNDS
- FEES: sum(fee) over donations

Donations and refunds are always disjoint row sets. Refunds carry no
campaign attribution of their own, so they are bucketed by the refund's own
date and are never campaign/creative filtered.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from ..exceptions import UnknownMetricError
from ..schemas.records import Transaction, TransactionType


DEFAULT_ORG_TIMEZONE = "America/New_York"

DONATION_TYPES = frozenset({TransactionType.DONATION})
REFUND_TYPES = frozenset({TransactionType.REFUND, TransactionType.CANCELLATION})


@dataclass(frozen=True)
class MetricDefinition:
    """Field/sign/filter rule for one named metric."""

    name: str
    field: Optional[str]
    transaction_types: frozenset[TransactionType]
    use_absolute_value: bool = False
    calculation: Optional[str] = None


METRIC_CONTRACT: dict[str, MetricDefinition] = {
    "GROSS_RAISED": MetricDefinition(
        name="GROSS_RAISED",
        field="amount",
        transaction_types=DONATION_TYPES,
    ),
    "NET_RAISED": MetricDefinition(
        name="NET_RAISED",
        field="net_amount",
        transaction_types=DONATION_TYPES,
    ),
    "REFUNDS": MetricDefinition(
        name="REFUNDS",
        field="net_amount",
        transaction_types=REFUND_TYPES,
        use_absolute_value=True,
    ),
    "NET_REVENUE": MetricDefinition(
        name="NET_REVENUE",
        field=None,
        transaction_types=frozenset(),
        calculation="NET_RAISED - REFUNDS",
    ),
    "FEES": MetricDefinition(
        name="FEES",
        field="fee",
        transaction_types=DONATION_TYPES,
    ),
}


def get_metric(name: str) -> MetricDefinition:
    try:
        return METRIC_CONTRACT[name]
    except KeyError:
        raise UnknownMetricError(name) from None


def partition_transactions(
    transactions: Iterable[Transaction],
) -> tuple[list[Transaction], list[Transaction]]:
    """Split rows into (donations, refunds_and_cancellations), order preserved."""
    donations: list[Transaction] = []
    refunds: list[Transaction] = []
    for txn in transactions:
        if txn.type in DONATION_TYPES:
            donations.append(txn)
        elif txn.type in REFUND_TYPES:
            refunds.append(txn)
    return donations, refunds


def metric_value(txn: Transaction, name: str) -> Decimal:
    """Contribution of a single row to a field-based metric (0 if excluded)."""
    definition = get_metric(name)
    if definition.field is None:
        raise UnknownMetricError(f"{name} is derived and has no per-row value")
    if txn.type not in definition.transaction_types:
        return Decimal("0")

    value = Decimal(getattr(txn, definition.field) or 0)
    return abs(value) if definition.use_absolute_value else value


def sum_metric(name: str, transactions: Iterable[Transaction]) -> Decimal:
    """Sum a metric over rows, applying its type filter and sign rule.

    NET_REVENUE is derived from NET_RAISED and REFUNDS over the same rows.
    """
    definition = get_metric(name)
    rows = list(transactions)

    if definition.calculation == "NET_RAISED - REFUNDS":
        return sum_metric("NET_RAISED", rows) - sum_metric("REFUNDS", rows)

    total = Decimal("0")
    for txn in rows:
        total += metric_value(txn, name)
    return total
