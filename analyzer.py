"""
M365 Sizing - Analyzer
Aggregates usage reports into per-workload sizing: entity counts, total and
average storage, annual growth, forecasts and optional archive totals
"""

import logging
import re
from datetime import datetime, date
from typing import Optional

from config import (
    REPORT_PERIOD_DAYS, DEFAULT_GROWTH_PERCENT, WORKLOADS, WORKLOAD_TITLES,
    WORKLOAD_REPORTS, COLUMN_STORAGE_BYTES, COLUMN_IS_DELETED, COLUMN_REPORT_DATE,
    COLUMN_REFRESH_DATE, COLUMN_SITE_TYPE, COLUMN_RECIPIENT_TYPE,
    COLUMN_HAS_ARCHIVE, SHARED_RECIPIENT_TYPES
)
from errors import SizingError, WorkloadUnavailableError, ArchiveLookupError
from growth import estimate_series_growth, forecast_storage
from models import UsageSample, WorkloadSizing, ArchiveSizing, SizingResult

logger = logging.getLogger(__name__)

# "<anything> 1,234,567 bytes" with an optional closing parenthesis
ARCHIVE_SIZE_PATTERN = re.compile(
    r"(?<![\d.,])(\d{1,3}(?:,\d{3})+|\d+)\s+bytes\)?\s*$", re.IGNORECASE
)

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")


def parse_bool(value) -> bool:
    """Report flags come through as "True"/"False" strings"""
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("true", "yes", "1")


def parse_int(value) -> int:
    """Parse a byte count column, treating blanks and junk as 0"""
    if value is None:
        return 0
    text = str(value).strip().replace(",", "")
    if not text:
        return 0
    try:
        return int(float(text))
    except ValueError:
        return 0


def parse_report_date(value) -> Optional[date]:
    if not value:
        return None
    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_archive_size(text) -> Optional[int]:
    """
    Extract the byte count from an archive size string

    Accepts "2048 bytes" and "1.5 GB (1,610,612,736 bytes)".
    Returns None for anything else.
    """
    if not text:
        return None
    match = ARCHIVE_SIZE_PATTERN.search(str(text).strip())
    if not match:
        return None
    return int(match.group(1).replace(",", ""))


def format_size(num_bytes: float) -> str:
    """Human readable size (1024 based)"""
    num = float(num_bytes or 0)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(num) < 1024.0:
            return f"{num:.1f} {unit}" if unit != "B" else f"{int(num)} B"
        num /= 1024.0
    return f"{num:.1f} PB"


def rows_to_samples(rows: list, entity_column: str, default_entity: str = "") -> list[UsageSample]:
    """
    Convert report rows to usage samples

    Rows without a readable date are dropped. A missing deletion column
    means the row is not deleted.
    """
    samples = []
    for row in rows:
        report_date = parse_report_date(row.get(COLUMN_REPORT_DATE) or row.get(COLUMN_REFRESH_DATE))
        if report_date is None:
            logger.debug("Skipping row without a report date: %s", row)
            continue
        samples.append(UsageSample(
            report_date=report_date,
            entity_id=(row.get(entity_column) or default_entity).strip(),
            storage_bytes=parse_int(row.get(COLUMN_STORAGE_BYTES)),
            is_deleted=parse_bool(row.get(COLUMN_IS_DELETED, False)),
        ))
    return samples


def filter_detail_rows(rows: list, principal_column: Optional[str],
                       members: Optional[set]) -> list:
    """Drop deleted entities and, when a group filter is set, non-members"""
    active = [r for r in rows if not parse_bool(r.get(COLUMN_IS_DELETED, False))]
    if members is None or principal_column is None:
        return active
    return [
        r for r in active
        if (r.get(principal_column) or "").strip().lower() in members
    ]


def filter_series_rows(rows: list, site_type: Optional[str]) -> list:
    """Keep the storage rows for one site type, if the report has that column"""
    if not site_type or not rows or COLUMN_SITE_TYPE not in rows[0]:
        return rows
    return [
        r for r in rows
        if (r.get(COLUMN_SITE_TYPE) or "").strip().lower() == site_type.lower()
    ]


def count_mailbox_types(rows: list) -> tuple[int, int]:
    """Return (user mailboxes, shared mailboxes)"""
    shared = 0
    for row in rows:
        recipient_type = (row.get(COLUMN_RECIPIENT_TYPE) or "").strip().lower()
        if recipient_type in SHARED_RECIPIENT_TYPES:
            shared += 1
    return len(rows) - shared, shared


def _mark_unavailable(result: SizingResult, sizing: WorkloadSizing, error: Exception) -> None:
    message = f"{sizing.title}: reports unavailable ({error})"
    logger.warning(message)
    sizing.available = False
    sizing.warnings.append(message)
    result.warnings.append(message)


def _start_workload(result: SizingResult, name: str) -> WorkloadSizing:
    sizing = result.workload(name)
    sizing.title = WORKLOAD_TITLES[name]
    sizing.entity_label = WORKLOAD_REPORTS[name]["entity_label"]
    return sizing


def _size_entities(sizing: WorkloadSizing, rows: list) -> None:
    sizing.entity_count = len(rows)
    sizing.total_bytes = sum(parse_int(r.get(COLUMN_STORAGE_BYTES)) for r in rows)
    sizing.average_bytes = sizing.total_bytes // len(rows) if rows else 0
    sizing.available = True


def _apply_growth(result: SizingResult, sizing: WorkloadSizing, source, name: str) -> None:
    """Growth comes from the tenant-wide daily storage report"""
    report = WORKLOAD_REPORTS[name]
    try:
        rows = source.get_report(report["storage_report"], REPORT_PERIOD_DAYS)
    except WorkloadUnavailableError as e:
        message = f"{sizing.title}: no storage history, using {DEFAULT_GROWTH_PERCENT}% growth ({e})"
        logger.warning(message)
        sizing.warnings.append(message)
        result.warnings.append(message)
        sizing.growth_percent = DEFAULT_GROWTH_PERCENT
        return

    rows = filter_series_rows(rows, report["series_site_type"])
    samples = rows_to_samples(rows, COLUMN_SITE_TYPE, default_entity=name)
    sizing.growth_percent = estimate_series_growth(samples)
    logger.debug("%s: %d storage samples, growth %d%%", sizing.title, len(samples), sizing.growth_percent)


def _warn_if_filtered_out(result: SizingResult, sizing: WorkloadSizing,
                          all_rows: list, kept_rows: list, members: Optional[set]) -> None:
    if members is not None and all_rows and not kept_rows:
        message = (
            f"{sizing.title}: no report rows matched the group members. "
            "User names may be concealed in the usage reports privacy setting."
        )
        logger.warning(message)
        sizing.warnings.append(message)
        result.warnings.append(message)


def collect_archive_sizes(mailboxes: list, archive_manager) -> ArchiveSizing:
    """
    Read archive sizes mailbox by mailbox through a managed session

    Mailboxes whose lookup fails or whose size cannot be parsed are skipped.
    SessionFailedError is not caught: losing the session aborts the run.
    """
    archive = ArchiveSizing()
    principal_column = WORKLOAD_REPORTS["exchange"]["principal_column"]
    candidates = [
        r for r in mailboxes
        if COLUMN_HAS_ARCHIVE not in r or parse_bool(r.get(COLUMN_HAS_ARCHIVE))
    ]

    print(f"[Exchange] Reading archive statistics for {len(candidates)} mailboxes...")

    for index, row in enumerate(candidates, start=1):
        if index % 100 == 0:
            logger.info("Archive statistics: %d/%d mailboxes", index, len(candidates))

        identity = (row.get(principal_column) or "").strip()
        if not identity:
            archive.skipped_count += 1
            continue

        session = archive_manager.ensure_healthy_session()
        try:
            size_text = session.get_archive_size(identity)
        except ArchiveLookupError as e:
            logger.warning("Skipping archive for %s: %s", identity, e)
            archive.skipped_count += 1
            continue

        size = parse_archive_size(size_text)
        if size is None:
            logger.warning("Skipping archive for %s: unreadable size %r", identity, size_text)
            archive.skipped_count += 1
            continue

        archive.archive_count += 1
        archive.total_bytes += size

    if archive.archive_count > 0:
        archive.average_bytes = archive.total_bytes // archive.archive_count

    print(f"[Exchange] ✓ {archive.archive_count} archives, {archive.skipped_count} skipped")
    return archive


def process_exchange(result: SizingResult, source, members: Optional[set] = None,
                     include_archives: bool = False, archive_manager=None) -> SizingResult:
    """
    Size mailboxes

    The headline count is whichever of user or shared mailboxes is larger;
    totals and averages cover every included mailbox.
    """
    sizing = _start_workload(result, "exchange")
    report = WORKLOAD_REPORTS["exchange"]
    print(f"[{sizing.title}] Fetching {report['detail_report']}...", flush=True)

    try:
        rows = source.get_report(report["detail_report"], REPORT_PERIOD_DAYS)
    except WorkloadUnavailableError as e:
        _mark_unavailable(result, sizing, e)
        return result

    mailboxes = filter_detail_rows(rows, report["principal_column"], members)
    _warn_if_filtered_out(result, sizing, rows, mailboxes, members)
    _size_entities(sizing, mailboxes)

    user_count, shared_count = count_mailbox_types(mailboxes)
    sizing.user_mailbox_count = user_count
    sizing.shared_mailbox_count = shared_count
    if shared_count > user_count:
        sizing.entity_count = shared_count
        sizing.entity_label = "Shared mailboxes"
    else:
        sizing.entity_count = user_count
        sizing.entity_label = "User mailboxes"

    _apply_growth(result, sizing, source, "exchange")

    if include_archives:
        if archive_manager is None:
            raise SizingError("Archive analysis needs an archive session manager")
        sizing.archive = collect_archive_sizes(mailboxes, archive_manager)
        sizing.total_bytes += sizing.archive.total_bytes

    sizing.forecast_bytes = forecast_storage(sizing.total_bytes, sizing.growth_percent)
    print(f"[{sizing.title}] ✓ {user_count} user / {shared_count} shared mailboxes, "
          f"{format_size(sizing.total_bytes)}, growth {sizing.growth_percent}%")
    return result


def _process_file_workload(result: SizingResult, name: str, source,
                           members: Optional[set]) -> SizingResult:
    sizing = _start_workload(result, name)
    report = WORKLOAD_REPORTS[name]
    print(f"[{sizing.title}] Fetching {report['detail_report']}...", flush=True)

    try:
        rows = source.get_report(report["detail_report"], REPORT_PERIOD_DAYS)
    except WorkloadUnavailableError as e:
        _mark_unavailable(result, sizing, e)
        return result

    entities = filter_detail_rows(rows, report["principal_column"], members)
    if report["principal_column"] is not None:
        _warn_if_filtered_out(result, sizing, rows, entities, members)
    _size_entities(sizing, entities)
    _apply_growth(result, sizing, source, name)
    sizing.forecast_bytes = forecast_storage(sizing.total_bytes, sizing.growth_percent)

    print(f"[{sizing.title}] ✓ {sizing.entity_count} {sizing.entity_label.lower()}, "
          f"{format_size(sizing.total_bytes)}, growth {sizing.growth_percent}%")
    return result


def process_onedrive(result: SizingResult, source, members: Optional[set] = None) -> SizingResult:
    """Size OneDrive accounts (filtered by owner when a group is given)"""
    return _process_file_workload(result, "onedrive", source, members)


def process_sharepoint(result: SizingResult, source, members: Optional[set] = None) -> SizingResult:
    """Size SharePoint sites; sites are never filtered by group"""
    return _process_file_workload(result, "sharepoint", source, members)


def analyze_tenant(source, group_name: Optional[str] = None,
                   include_archives: bool = False, archive_manager=None) -> SizingResult:
    """
    Size all workloads

    Args:
        source: report source (GraphAPI or LocalReportSource)
        group_name: only count mailboxes and OneDrive accounts of this group
        include_archives: also read archive mailbox sizes
        archive_manager: ArchiveSessionManager, required with include_archives

    Raises the terminal errors (permissions, unknown group, lost archive
    session). A workload whose reports are missing is left at zero.
    """
    result = SizingResult(group_name=group_name, period_days=REPORT_PERIOD_DAYS)

    members = None
    if group_name:
        print(f"Resolving members of '{group_name}'...")
        members = source.get_group_members(group_name)

    result = process_exchange(result, source, members, include_archives, archive_manager)
    result = process_onedrive(result, source, members)
    result = process_sharepoint(result, source, members)

    result.total_bytes = sum(w.total_bytes for w in result.workloads)
    return result


def print_summary(result: SizingResult) -> None:
    """Print formatted summary"""
    print(f"\n{'=' * 96}")
    title = "M365 SIZING SUMMARY"
    if result.group_name:
        title += f" (group: {result.group_name})"
    print(title)
    print(f"{'=' * 96}")

    print(f"\n{'Workload':<24} {'Entities':>18} {'Total':>12} {'Average':>12} {'Growth':>8} {'1y Forecast':>14}")
    print("-" * 96)

    for name in WORKLOADS:
        w = result.workload(name)
        if not w.available:
            print(f"{w.title:<24} {'unavailable':>18}")
            continue
        entities = f"{w.entity_count:,} {w.entity_label.split()[0].lower()}"
        forecast = format_size(w.forecast_bytes[0]) if w.forecast_bytes else "-"
        print(f"{w.title:<24} {entities:>18} {format_size(w.total_bytes):>12} "
              f"{format_size(w.average_bytes):>12} {w.growth_percent:>7}% {forecast:>14}")

    archive = result.exchange.archive
    if archive is not None:
        print(f"\n--- ARCHIVES ---")
        print(f"  Archives: {archive.archive_count:,}  Total: {format_size(archive.total_bytes)}  "
              f"Average: {format_size(archive.average_bytes)}  Skipped: {archive.skipped_count:,}")

    print("-" * 96)
    print(f"{'Total':<24} {'':>18} {format_size(result.total_bytes):>12}")

    if result.warnings:
        print(f"\n--- WARNINGS ---")
        for warning in result.warnings:
            print(f"  ! {warning}")
