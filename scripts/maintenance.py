#!/usr/bin/env python3
"""
Command-line catalog maintenance for the content store.

Finds datasets without catalog entries and entries without datasets,
and repairs them with --apply.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import dotenv
dotenv.load_dotenv()

from studyrepo.core.errors import RepositoryError
from studyrepo.core.maintenance import MaintenanceReport, reconcile_catalogs
from studyrepo.core.store import FileStore


def format_report(report: MaintenanceReport) -> str:
    """Format a maintenance report for display."""
    lines = []

    lines.append(f"Operation: {report.operation}")
    if report.completed_at and report.started_at:
        duration = report.completed_at - report.started_at
        lines.append(f"Duration: {duration.total_seconds():.2f} seconds")

    if report.errors:
        lines.append(f"Status: FAILED ({len(report.errors)} errors)")
    elif report.issues_found > report.issues_resolved:
        lines.append(f"Status: DRIFT FOUND ({report.issues_found} issues)")
    else:
        lines.append("Status: SUCCESS")

    if report.issues_found > 0:
        lines.append(f"Issues Found: {report.issues_found}")
    if report.issues_resolved > 0:
        lines.append(f"Issues Resolved: {report.issues_resolved}")

    if report.metadata:
        lines.append("Details:")
        for key, value in report.metadata.items():
            lines.append(f"  {key}: {value}")

    if report.errors:
        lines.append("Errors:")
        for error in report.errors:
            lines.append(f"  - {error}")

    if report.recommendations:
        lines.append("Recommendations:")
        for rec in report.recommendations:
            lines.append(f"  - {rec}")

    # Don't flood output
    if report.actions_taken and len(report.actions_taken) <= 10:
        lines.append("Actions Taken:")
        for action in report.actions_taken:
            lines.append(f"  - {action}")
    elif report.actions_taken:
        lines.append(f"Actions Taken: {len(report.actions_taken)}")

    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(
        description="Catalog index maintenance for the study content store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                  # Report drift between datasets and catalogs
  %(prog)s --apply          # Re-index orphaned datasets, drop dangling entries
  %(prog)s --json           # Output the report as JSON

Environment variables:
- CONTENT_DIR=./content (content root)
- STORE_LOCK_TIMEOUT_SEC=10 (lock wait before giving up)
        """
    )

    parser.add_argument(
        "--apply", "-a",
        action="store_true",
        help="Repair the drift that was found"
    )

    parser.add_argument(
        "--content-dir", "-d",
        help="Content root to check (defaults to CONTENT_DIR)"
    )

    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output results as JSON instead of human-readable text"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    args = parser.parse_args()

    try:
        store = FileStore(args.content_dir)
        if not store.content_dir.exists():
            print(f"ERROR: Content directory does not exist: {store.content_dir}")
            return 1

        if not args.quiet and not args.json:
            print(f"{'Repairing' if args.apply else 'Checking'} catalogs under {store.content_dir}...")
        report = reconcile_catalogs(store, apply=args.apply)

        if args.json:
            print(json.dumps(report.to_dict(), indent=2, default=str, ensure_ascii=False))
        elif not args.quiet or report.errors:
            print(format_report(report))

        if report.errors:
            return 1
        elif report.issues_found > report.issues_resolved:
            return 2
        return 0

    except RepositoryError as e:
        print(f"ERROR: Maintenance failed ({e.kind}): {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
