#!/usr/bin/env python3
"""
Live backfill smoke run.

Syncs the curated Postgres views into the STAGING graph using the settings
in .env, prints a per-entity summary, then runs the validation battery
against the same environment.

Usage:
    python scripts/run_live_backfill.py            # full STAGING backfill
    python scripts/run_live_backfill.py --dry-run  # count source rows only
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / '.env')

from regintel_graph.config import get_settings
from regintel_graph.models.environment import Environment
from regintel_graph.pipeline import BackfillPipeline, SyncResult
from regintel_graph.validation import GraphValidator, ValidationReport


# =============================================================================
# Reporting
# =============================================================================


def print_sync_report(result: SyncResult) -> None:
    print(f"\n--- BACKFILL SUMMARY ({result.environment}, run {result.run_id}) ---")
    header = f"{'Entity':<14} {'Rows':<8} {'Phase ms':<10}"
    print(header)
    print("-" * len(header))
    for label, rows in result.summary.items():
        timing = result.phase_timings.get(f'entity_sync:{label}', 0.0)
        print(f"{label:<14} {rows:<8} {timing:<10.1f}")
    print("-" * len(header))
    print(f"{'TOTAL':<14} {result.total_found:<8} {result.processing_time_ms}ms")

    if not result.dry_run:
        print(f"\n  Nodes created: {result.nodes_created}")
        print(f"  Derived nodes created: {result.derived_nodes_created}")
        print(f"  Relationships (created or matched): {result.relationships_created}")
        for name, count in result.relationship_passes.items():
            print(f"    {name:<28} {count}")

    for warning in result.warnings:
        print(f"  WARNING: {warning}")
    if result.errors:
        print(f"\n--- ERRORS ({len(result.errors)}) ---")
        for err in result.errors:
            print(f"  - {err}")


def print_validation_report(report: ValidationReport) -> None:
    print(f"\n--- VALIDATION ({report.environment}) ---")
    print(f"  Non-approved nodes: {report.non_approved_count}")
    print(f"  Missing approval metadata: {report.missing_approval_metadata}")
    print(f"  Orphan relationships: {report.orphan_relationships}")
    print(f"  Duplicate keys (advisory): {len(report.duplicate_keys)}")
    for dup in report.duplicate_keys[:10]:
        print(f"    {dup.label}.{dup.key_property} = {dup.key!r} x{dup.count}")


# =============================================================================
# Main
# =============================================================================


async def main(dry_run: bool) -> int:
    missing = get_settings().validate_settings()
    if missing:
        print(f"Missing configuration: {', '.join(missing)}")
        return 2

    print("=" * 70)
    print("LIVE BACKFILL — STAGING" + (" (DRY RUN)" if dry_run else ""))
    print("=" * 70)

    pipeline = await BackfillPipeline.from_env()
    try:
        result = await pipeline.run_backfill(Environment.STAGING, dry_run=dry_run)
        print_sync_report(result)

        report = None
        if not dry_run:
            report = await GraphValidator(pipeline.neo4j).run_validation(Environment.STAGING)
            print_validation_report(report)
    finally:
        await pipeline.close()

    passed = result.success and (report is None or report.passed)
    print("\n" + "=" * 70)
    print("RUN COMPLETE — " + ("ALL CHECKS PASSED" if passed else "FAILURES DETECTED"))
    print("=" * 70)
    return 0 if passed else 1


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('--dry-run', action='store_true', help='Count source rows only; issue no writes')
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.dry_run)))
