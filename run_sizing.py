#!/usr/bin/env python3
"""
M365 Sizing - Run a sizing analysis
Fetches usage reports, prints a summary and renders the HTML report

Usage:
    python3 run_sizing.py [--group NAME] [--include-archives] [--verbose] [--json]
"""

import argparse
import json
import logging
import sys
from typing import Optional

from analyzer import analyze_tenant, print_summary
from api_client import get_report_source, get_archive_client
from config import OUTPUT_DIR
from errors import SizingError
from logger_config import setup_logging
from models import SizingResult
from report import render_report, save_result_json
from session_manager import ArchiveSessionManager

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Estimate Microsoft 365 storage footprint and growth."
    )
    parser.add_argument("--group", type=str, default=None,
                        help="Only size mailboxes and OneDrive accounts of this group")
    parser.add_argument("--include-archives", action="store_true",
                        help="Also read archive mailbox sizes (slow on large tenants)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json", action="store_true",
                        help="Also print the sizing record as JSON")
    parser.add_argument("--reports-dir", type=str, default=None,
                        help="Read usage report CSV files from this directory instead of Graph")
    parser.add_argument("--output-dir", type=str, default=OUTPUT_DIR,
                        help=f"Where to write the report (default: {OUTPUT_DIR})")
    parser.add_argument("--log-file", type=str, default=None, help="Also log to this file")
    return parser


def run(group_name: Optional[str] = None, include_archives: bool = False,
        reports_dir: Optional[str] = None, output_dir: str = OUTPUT_DIR) -> tuple[SizingResult, str]:
    """
    Run the analysis and render the report

    Returns (sizing record, report path)
    """
    source = get_report_source(reports_dir)

    if include_archives:
        if reports_dir:
            raise SizingError("Archive analysis needs a live tenant connection, not --reports-dir")
        archive_client = get_archive_client()
        with ArchiveSessionManager(archive_client.connect) as manager:
            result = analyze_tenant(source, group_name, True, manager)
    else:
        result = analyze_tenant(source, group_name)

    print_summary(result)

    save_result_json(result, output_dir)
    report_path = render_report(result, output_dir)
    return result, report_path


def main(argv=None) -> Optional[SizingResult]:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    print("=" * 60)
    print("MICROSOFT 365 SIZING")
    print("=" * 60)
    if args.include_archives:
        print("⚠️  Archive analysis reads every mailbox and may take hours")
    print()

    try:
        result, report_path = run(args.group, args.include_archives, args.reports_dir, args.output_dir)
    except SizingError as e:
        logger.error("%s", e)
        return None

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))

    print(f"\n{'=' * 60}")
    print(f"✅ REPORT SAVED to {report_path}")
    print(f"{'=' * 60}")
    return result


def cli() -> None:
    sys.exit(0 if main() is not None else 1)


if __name__ == "__main__":
    cli()
