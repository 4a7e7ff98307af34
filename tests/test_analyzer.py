import logging
from unittest.mock import MagicMock

import pytest
import requests

from analyzer import (
    analyze_tenant, collect_archive_sizes, count_mailbox_types, filter_detail_rows,
    format_size, parse_archive_size, parse_bool, parse_int, process_exchange,
    process_sharepoint, rows_to_samples
)
from api_client import ExchangeSession
from conftest import FakeReportSource, FakeSession, detail_rows, storage_rows
from errors import (
    ArchiveLookupError, GroupNotFoundError, PermissionDeniedError, SessionFailedError
)
from models import SizingResult

MAIL = "User Principal Name"
OWNER = "Owner Principal Name"


def full_tenant_reports():
    return {
        "getMailboxUsageDetail": detail_rows(100, MAIL, size=2000, deleted=5),
        "getMailboxUsageStorage": storage_rows([1000, 1005, 1010]),
        "getOneDriveUsageAccountDetail": detail_rows(80, OWNER, size=500),
        "getOneDriveUsageStorage": storage_rows([100, 200], site_type="OneDrive"),
        "getSharePointSiteUsageDetail": detail_rows(5, OWNER, size=10000),
        "getSharePointSiteUsageStorage": storage_rows([1000, 1000], site_type="All"),
    }


@pytest.mark.parametrize("text,expected", [
    ("2048 bytes", 2048),
    ("0 B (0 bytes)", 0),
    ("1.5 GB (1,610,612,736 bytes)", 1610612736),
    ("  12.3 MB (12,897,484 bytes)  ", 12897484),
])
def test_parse_archive_size(text, expected):
    assert parse_archive_size(text) == expected


@pytest.mark.parametrize("text", [None, "", "Unlimited", "1.5 GB", "1,2,3 bytes", "12 kilobytes"])
def test_parse_archive_size_rejects(text):
    assert parse_archive_size(text) is None


def test_parse_helpers():
    assert parse_bool("True") and parse_bool(True) and not parse_bool("False")
    assert not parse_bool(None)
    assert parse_int("1,024") == 1024
    assert parse_int("") == 0
    assert parse_int("n/a") == 0


def test_format_size():
    assert format_size(512) == "512 B"
    assert format_size(1536) == "1.5 KB"
    assert format_size(5 * 1024 ** 3) == "5.0 GB"


def test_rows_to_samples_defaults_missing_deleted_column():
    rows = [
        {"Report Date": "2026-05-02", "Storage Used (Byte)": "10"},
        {"Report Date": "", "Storage Used (Byte)": "20"},
        {"Report Date": "2026-05-01", "Storage Used (Byte)": "30", "Is Deleted": "True"},
    ]
    samples = rows_to_samples(rows, "Site Type", default_entity="exchange")
    assert len(samples) == 2
    assert samples[0].is_deleted is False
    assert samples[0].entity_id == "exchange"
    assert samples[1].is_deleted is True


def test_filter_detail_rows_by_group_case_insensitive():
    rows = detail_rows(3, MAIL, deleted=1)
    kept = filter_detail_rows(rows, MAIL, {"USER1@contoso.com".lower(), "user3@contoso.com"})
    # user3 is deleted
    assert [r[MAIL] for r in kept] == ["user1@contoso.com"]


def test_count_mailbox_types():
    rows = [{"Recipient Type": "User"}, {"Recipient Type": "Shared"},
            {"Recipient Type": "SharedMailbox"}, {}]
    assert count_mailbox_types(rows) == (2, 2)


def test_end_to_end_totals():
    source = FakeReportSource(full_tenant_reports())
    result = analyze_tenant(source)

    assert result.exchange.entity_count == 100
    assert result.exchange.total_bytes == 200000
    assert result.exchange.average_bytes == 2000
    assert result.exchange.growth_percent == 1
    assert result.onedrive.entity_count == 80
    assert result.onedrive.total_bytes == 40000
    assert result.onedrive.growth_percent == 200
    assert result.sharepoint.entity_count == 5
    assert result.sharepoint.growth_percent == 0
    assert result.total_bytes == sum(w.total_bytes for w in result.workloads)
    assert result.total_bytes == 200000 + 40000 + 50000
    assert result.warnings == []
    assert all(period == 180 for _, period in source.requested)


def test_missing_workload_report_leaves_defaults():
    reports = full_tenant_reports()
    del reports["getSharePointSiteUsageDetail"]
    result = analyze_tenant(FakeReportSource(reports))

    assert result.sharepoint.available is False
    assert result.sharepoint.entity_count == 0
    assert result.sharepoint.total_bytes == 0
    assert result.sharepoint.forecast_bytes == []
    assert result.exchange.available and result.onedrive.available
    assert result.total_bytes == result.exchange.total_bytes + result.onedrive.total_bytes
    assert any("SharePoint" in w for w in result.warnings)


def test_missing_storage_history_uses_default_growth():
    reports = full_tenant_reports()
    del reports["getOneDriveUsageStorage"]
    result = analyze_tenant(FakeReportSource(reports))

    assert result.onedrive.available
    assert result.onedrive.growth_percent == 10
    assert result.onedrive.forecast_bytes[0] == 44000


def test_series_site_type_filter():
    reports = full_tenant_reports()
    reports["getSharePointSiteUsageStorage"] = (
        storage_rows([100, 200], site_type="All") + storage_rows([5, 5000], site_type="Group")
    )
    result = process_sharepoint(SizingResult(), FakeReportSource(reports))
    assert result.sharepoint.growth_percent == 200


def test_shared_mailboxes_become_primary_count():
    reports = full_tenant_reports()
    reports["getMailboxUsageDetail"] = (
        detail_rows(3, MAIL, **{"Recipient Type": "User"})
        + detail_rows(7, MAIL, **{"Recipient Type": "Shared"})
    )
    result = process_exchange(SizingResult(), FakeReportSource(reports))

    assert result.exchange.entity_count == 7
    assert result.exchange.entity_label == "Shared mailboxes"
    assert result.exchange.user_mailbox_count == 3
    assert result.exchange.shared_mailbox_count == 7
    assert result.exchange.total_bytes == 10 * 1000


def test_user_mailboxes_are_primary_without_recipient_type():
    result = process_exchange(SizingResult(), FakeReportSource(full_tenant_reports()))
    assert result.exchange.entity_label == "User mailboxes"
    assert result.exchange.entity_count == 100


def test_group_filter_applies_to_mail_and_onedrive_only():
    members = {"user0@contoso.com", "user1@contoso.com"}
    result = analyze_tenant(FakeReportSource(full_tenant_reports(), members), group_name="Sales")

    assert result.group_name == "Sales"
    assert result.exchange.entity_count == 2
    assert result.onedrive.entity_count == 2
    assert result.sharepoint.entity_count == 5


def test_group_filter_without_matches_warns():
    result = analyze_tenant(FakeReportSource(full_tenant_reports(), {"nobody@contoso.com"}),
                            group_name="Sales")
    assert result.exchange.entity_count == 0
    assert any("concealed" in w for w in result.exchange.warnings)


def test_unknown_group_is_terminal():
    with pytest.raises(GroupNotFoundError):
        analyze_tenant(FakeReportSource(full_tenant_reports(), members=None), group_name="Nope")


def test_permission_error_is_not_recovered():
    source = FakeReportSource(full_tenant_reports())
    source.get_report = MagicMock(side_effect=PermissionDeniedError("getMailboxUsageDetail"))
    with pytest.raises(PermissionDeniedError) as excinfo:
        analyze_tenant(source)
    assert "Reports Reader" in str(excinfo.value)


def _archive_manager(session):
    manager = MagicMock()
    manager.ensure_healthy_session.return_value = session
    return manager


def test_collect_archive_sizes_skips_bad_entities():
    mailboxes = detail_rows(5, MAIL)
    mailboxes[4]["Has Archive"] = "False"
    for row in mailboxes[:4]:
        row["Has Archive"] = "True"
    session = FakeSession({
        "user0@contoso.com": "1.0 KB (1,024 bytes)",
        "user1@contoso.com": "3072 bytes",
        "user2@contoso.com": "Unlimited",
        "user3@contoso.com": ArchiveLookupError("user3@contoso.com: HTTP 500"),
    })
    manager = _archive_manager(session)

    archive = collect_archive_sizes(mailboxes, manager)

    assert archive.archive_count == 2
    assert archive.total_bytes == 4096
    assert archive.average_bytes == 2048
    assert archive.skipped_count == 2
    # one health check per looked-up mailbox
    assert manager.ensure_healthy_session.call_count == 4


def test_unreadable_archive_responses_are_skipped():
    session = ExchangeSession("tenant", "token")
    session.http = MagicMock()
    response = MagicMock(status_code=200, ok=True)
    response.json.side_effect = requests.exceptions.JSONDecodeError("Expecting value", "", 0)
    session.http.post.return_value = response

    archive = collect_archive_sizes(detail_rows(2, MAIL), _archive_manager(session))

    assert archive.archive_count == 0
    assert archive.skipped_count == 2
    assert session.http.post.call_count == 2


def test_archive_progress_logged_when_entity_skipped(caplog):
    sizes = {f"user{i}@contoso.com": "1024 bytes" for i in range(99)}
    session = FakeSession(sizes)

    with caplog.at_level(logging.INFO, logger="analyzer"):
        archive = collect_archive_sizes(detail_rows(100, MAIL), _archive_manager(session))

    assert archive.archive_count == 99
    assert archive.skipped_count == 1
    assert "Archive statistics: 100/100 mailboxes" in caplog.text


def test_archive_bytes_count_toward_mail_total():
    reports = full_tenant_reports()
    reports["getMailboxUsageDetail"] = detail_rows(2, MAIL, size=1000)
    session = FakeSession({"user0@contoso.com": "500 bytes", "user1@contoso.com": "1500 bytes"})

    result = process_exchange(SizingResult(), FakeReportSource(reports),
                              include_archives=True, archive_manager=_archive_manager(session))

    assert result.exchange.archive.total_bytes == 2000
    assert result.exchange.total_bytes == 4000
    assert result.exchange.average_bytes == 1000


def test_lost_archive_session_aborts():
    manager = MagicMock()
    manager.ensure_healthy_session.side_effect = SessionFailedError("gone")
    with pytest.raises(SessionFailedError):
        analyze_tenant(FakeReportSource(full_tenant_reports()), include_archives=True,
                       archive_manager=manager)
