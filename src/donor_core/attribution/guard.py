"""Write guard protecting deterministic attribution mappings.

Rules for a candidate mapping against the existing one for the same
(organization_id, refcode):
- no existing mapping -> write
- candidate deterministic -> write (deterministic always wins)
- candidate heuristic, existing deterministic -> skip
- candidate identical to existing -> skip (no mutation)
- otherwise -> write

The rule is commutative across passes, so overlapping reconciliation runs
converge to the same end state. The store applies the same rule in SQL.
"""
import logging
from enum import Enum
from typing import Iterable, Optional

from ..schemas.records import AttributionMapping


logger = logging.getLogger(__name__)

MappingKey = tuple[str, str]

# Fields compared when deciding whether a candidate would change anything.
_IDENTITY_FIELDS = (
    "campaign_id",
    "creative_id",
    "platform",
    "match_type",
    "confidence",
    "destination_url",
    "attributed_revenue",
    "attributed_transactions",
)


class GuardDecision(str, Enum):
    WRITE = "write"
    SKIP_DETERMINISTIC = "skip_deterministic"
    SKIP_IDENTICAL = "skip_identical"

    @property
    def should_write(self) -> bool:
        return self is GuardDecision.WRITE


class AttributionGuard:
    """Lookup table of current mappings keyed by (organization_id, refcode).

    Loaded from the store at the start of a reconciliation pass.
    """

    def __init__(self, mappings: Optional[Iterable[AttributionMapping]] = None) -> None:
        self._table: dict[MappingKey, AttributionMapping] = {}
        for mapping in mappings or []:
            self._table[mapping.key] = mapping

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, key: object) -> bool:
        return key in self._table

    def get(self, key: MappingKey) -> Optional[AttributionMapping]:
        return self._table.get(key)

    def is_deterministic(self, key: MappingKey) -> bool:
        existing = self._table.get(key)
        return existing is not None and existing.is_deterministic

    def evaluate(self, mapping: AttributionMapping) -> GuardDecision:
        existing = self._table.get(mapping.key)
        if existing is None:
            return GuardDecision.WRITE

        if _same_mapping(existing, mapping):
            return GuardDecision.SKIP_IDENTICAL

        if mapping.is_deterministic:
            return GuardDecision.WRITE

        if existing.is_deterministic:
            logger.info(
                "Skipping heuristic %s match for %s/%s: deterministic mapping exists (%s)",
                mapping.match_type.value,
                mapping.organization_id,
                mapping.refcode,
                existing.campaign_id,
            )
            return GuardDecision.SKIP_DETERMINISTIC

        return GuardDecision.WRITE

    def apply(self, mapping: AttributionMapping) -> GuardDecision:
        """Evaluate and, when allowed, record the mapping in the table."""
        decision = self.evaluate(mapping)
        if decision.should_write:
            self._table[mapping.key] = mapping
        return decision


def _same_mapping(a: AttributionMapping, b: AttributionMapping) -> bool:
    return all(getattr(a, name) == getattr(b, name) for name in _IDENTITY_FIELDS)
