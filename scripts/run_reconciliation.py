#!/usr/bin/env python3
"""CLI entry point for attribution reconciliation.

Usage:
    # Preview matches for every organization (dry run)
    PYTHONPATH=. python scripts/run_reconciliation.py

    # Write matches for one organization
    PYTHONPATH=. python scripts/run_reconciliation.py --org org_123 --apply

    # Accept lower-confidence heuristic matches
    PYTHONPATH=. python scripts/run_reconciliation.py --min-confidence 0.5
"""
import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.donor_core.attribution.reconcile import AttributionReconciler
from src.donor_core.metrics.service import DashboardMetricsService


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Donor attribution reconciliation")
    parser.add_argument(
        "--org",
        type=str,
        help="Organization id to reconcile. Defaults to all organizations.",
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Write mappings to the store (default is a dry run)",
    )
    parser.add_argument(
        "--min-confidence",
        type=float,
        default=None,
        help="Minimum match confidence (default: ATTRIBUTION_MIN_CONFIDENCE or 0.7)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger("run_reconciliation")

    service = DashboardMetricsService()
    reconciler = AttributionReconciler(service.store)

    summary = reconciler.run(
        organization_id=args.org,
        dry_run=not args.apply,
        min_confidence=args.min_confidence,
    )

    logger.info(
        "Refcodes=%s matched=%s (high=%s medium=%s low=%s) unmatched=%s",
        summary.total_refcodes,
        summary.total_matched,
        summary.high_confidence,
        summary.medium_confidence,
        summary.low_confidence,
        summary.total_unmatched,
    )
    logger.info(
        "Matched revenue=%s unmatched revenue=%s",
        summary.matched_revenue,
        summary.unmatched_revenue,
    )
    for mapping in summary.matches:
        logger.info(
            "  %s/%s -> %s [%s %.2f] %s",
            mapping.organization_id,
            mapping.refcode,
            mapping.campaign_id,
            mapping.match_type.value,
            mapping.confidence,
            mapping.match_reason,
        )

    if summary.dry_run:
        logger.info("DRY RUN: %s mappings would be written", summary.written)
    else:
        logger.info("Wrote %s mappings", summary.written)

    return 0


if __name__ == "__main__":
    sys.exit(main())
