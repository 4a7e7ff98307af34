"""
Shared test fixtures: fake report sources, sessions and a controllable clock
"""

import os
import sys
from datetime import date, timedelta

import pytest

# Ensure project root is on path
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, PROJECT_ROOT)

from errors import GroupNotFoundError, WorkloadUnavailableError  # noqa: E402
from session_manager import SESSION_OPEN  # noqa: E402


class FakeReportSource:
    """Serves canned report rows by report name"""

    def __init__(self, reports=None, members=None):
        self.reports = reports or {}
        self.members = members
        self.requested = []

    def get_report(self, report_name, period_days):
        self.requested.append((report_name, period_days))
        if report_name not in self.reports:
            raise WorkloadUnavailableError(f"{report_name}: not found")
        return self.reports[report_name]

    def get_group_members(self, group_name):
        if self.members is None:
            raise GroupNotFoundError(f"Group '{group_name}' was not found")
        return self.members


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeSession:
    """Stands in for an ExchangeSession"""

    def __init__(self, sizes=None):
        self.state = SESSION_OPEN
        self.sizes = sizes or {}
        self.closed = False

    def get_archive_size(self, identity):
        from errors import ArchiveLookupError
        value = self.sizes.get(identity)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise ArchiveLookupError(f"{identity}: no archive statistics returned")
        return value

    def close(self):
        self.closed = True
        self.state = "Closed"


def detail_rows(count, principal_column, size=1000, deleted=0, **extra):
    """Detail report rows: `count` live entities then `deleted` deleted ones"""
    rows = []
    for i in range(count + deleted):
        row = {
            "Report Refresh Date": "2026-10-15",
            principal_column: f"user{i}@contoso.com",
            "Is Deleted": "True" if i >= count else "False",
            "Storage Used (Byte)": str(size),
        }
        row.update(extra)
        rows.append(row)
    return rows


def storage_rows(values, site_type=None, newest_first=True):
    """Daily storage report rows for the given byte values (oldest first)"""
    start = date(2026, 4, 1)
    rows = []
    for i, value in enumerate(values):
        row = {
            "Report Refresh Date": "2026-10-15",
            "Storage Used (Byte)": str(value),
            "Report Date": (start + timedelta(days=i)).isoformat(),
            "Report Period": "180",
        }
        if site_type:
            row["Site Type"] = site_type
        rows.append(row)
    # Graph lists the newest day first
    return list(reversed(rows)) if newest_first else rows


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Records requested sleeps instead of sleeping"""
    calls = []
    return calls
