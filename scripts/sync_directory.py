#!/usr/bin/env python3
"""
Directory Sync CLI

Runs one directory synchronization against the configured authority and
object store and prints a summary.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import get_settings
from casegate.errors import SyncAborted
from casegate.integrations.authority_client import CaseAuthorityClient
from casegate.security.audit import AuditLog, AuditLogger
from casegate.security.directory import EntitlementDirectory
from casegate.security.synchronizer import DirectorySynchronizer, SyncReport, SyncStatus
from casegate.storage.azure_blob import AzureBlobObjectStore


def format_summary(report: SyncReport, directory: EntitlementDirectory, top: int) -> str:
    """Format a sync report for display."""
    stats = directory.stats(top=top)
    lines = [
        f"\n{'='*60}",
        f"Directory sync: {report.status.value.upper()}",
        f"{'='*60}",
        f"Cases scanned:   {report.cases_scanned}",
        f"Identities:      {report.identities}",
        f"Administrators:  {stats['administrators']}",
        f"Staffed cases:   {stats['staffed_cases']}",
    ]
    if report.failed_cases:
        lines.append(f"Failed cases:    {', '.join(report.failed_cases)}")

    if stats["top_identities"]:
        lines.append(f"{'-'*60}")
        lines.append(f"Top {len(stats['top_identities'])} identities by case count:")
        for index, identity in enumerate(stats["top_identities"], start=1):
            label = identity["name"] or identity["key"]
            lines.append(f"  {index}. {label} ({identity['email'] or '-'}): {identity['case_count']} cases")

    return "\n".join(lines)


async def run_sync(args: argparse.Namespace) -> int:
    settings = get_settings()
    directory = EntitlementDirectory()
    authority = CaseAuthorityClient()

    audit_path = Path(settings.audit_log_path) if settings.audit_log_path else None
    synchronizer = DirectorySynchronizer(
        directory=directory,
        authority=authority,
        store=AzureBlobObjectStore(),
        audit=AuditLogger(AuditLog(storage_path=audit_path), enable_console=args.verbose),
        request_delay=args.delay,
    )

    try:
        report = await synchronizer.sync()
    except SyncAborted as e:
        print(f"Sync aborted: {e}", file=sys.stderr)
        return 2
    finally:
        await authority.aclose()

    if args.output == "json":
        print(json.dumps(report.model_dump(mode="json"), indent=2))
    else:
        print(format_summary(report, directory, args.top))

    if args.export:
        args.export.write_text(directory.snapshot.export_json() + "\n")
        print(f"\nDirectory written to {args.export}", file=sys.stderr)

    return 1 if report.status == SyncStatus.PARTIAL else 0


def main():
    parser = argparse.ArgumentParser(
        description="Rebuild the case entitlement directory once"
    )

    parser.add_argument(
        "-e", "--export",
        type=Path,
        help="Write the resulting directory as JSON",
    )

    parser.add_argument(
        "-d", "--delay",
        type=float,
        default=None,
        help="Seconds between roster requests (default from settings)",
    )

    parser.add_argument(
        "-t", "--top",
        type=int,
        default=5,
        help="Number of identities listed in the summary",
    )

    parser.add_argument(
        "-o", "--output",
        choices=["text", "json"],
        default="text",
        help="Output format",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Print audit events",
    )

    args = parser.parse_args()
    sys.exit(asyncio.run(run_sync(args)))


if __name__ == "__main__":
    main()
