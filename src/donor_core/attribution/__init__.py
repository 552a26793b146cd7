"""Refcode matching, deterministic-mapping guard and multi-touch allocation."""
from .guard import AttributionGuard, GuardDecision
from .matcher import (
    AttributionMatch,
    match_refcode,
    match_refcode_to_campaign,
    match_refcode_to_creative,
)
from .multitouch import AttributionModel, TouchpointCredit, allocate, allocate_all
from .reconcile import AttributionReconciler, ReconciliationSummary

__all__ = [
    "AttributionGuard",
    "AttributionMatch",
    "AttributionModel",
    "AttributionReconciler",
    "GuardDecision",
    "ReconciliationSummary",
    "TouchpointCredit",
    "allocate",
    "allocate_all",
    "match_refcode",
    "match_refcode_to_campaign",
    "match_refcode_to_creative",
]
