"""
M365 Sizing - Configuration
Tenant credentials, report names and workload column mappings
"""

import os

# App registration (client credentials flow)
TENANT_ID = os.environ.get("M365_TENANT_ID", "")
CLIENT_ID = os.environ.get("M365_CLIENT_ID", "")
CLIENT_SECRET = os.environ.get("M365_CLIENT_SECRET", "")

# Base API URLs
LOGIN_URL = "https://login.microsoftonline.com"
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
EXCHANGE_ADMIN_URL = "https://outlook.office365.com/adminapi/beta"
EXCHANGE_SCOPE = "https://outlook.office365.com/.default"

# Where rendered reports and data.json are written
OUTPUT_DIR = os.environ.get("M365_SIZING_OUTPUT_DIR", "output")

# Usage reports only go back 180 days
REPORT_PERIOD_DAYS = 180

# Reported when a workload has fewer than 2 usable storage samples
DEFAULT_GROWTH_PERCENT = 10

# Years of storage forecast shown in the report
FORECAST_YEARS = 3

# Retry configuration for Graph calls
MAX_RETRIES = 3
RETRY_DELAY_BASE = 2  # seconds, doubles each retry
REQUEST_TIMEOUT = 60

# Exchange Online sessions are cut off by the service after a while, so
# they are renewed well before that (seconds)
SESSION_REFRESH_SECONDS = 870
SESSION_SETTLE_OFFSET_SECONDS = 420
SESSION_RETRY_DELAY_SECONDS = 60
SESSION_MAX_FAILURES = 3

# Role an admin needs to read usage reports
REQUIRED_REPORT_ROLE = "Reports Reader (or Global Reader)"

# Application permission needed to resolve the group filter
REQUIRED_GROUP_PERMISSION = "GroupMember.Read.All (or Group.Read.All)"

# Workload keys in report order
WORKLOADS = ["exchange", "onedrive", "sharepoint"]

WORKLOAD_TITLES = {
    "exchange": "Exchange Online",
    "onedrive": "OneDrive for Business",
    "sharepoint": "SharePoint Online",
}

# Report names, principal columns and series filters per workload
WORKLOAD_REPORTS = {
    "exchange": {
        "detail_report": "getMailboxUsageDetail",
        "storage_report": "getMailboxUsageStorage",
        "principal_column": "User Principal Name",
        "entity_label": "Mailboxes",
        "series_site_type": None,
    },
    "onedrive": {
        "detail_report": "getOneDriveUsageAccountDetail",
        "storage_report": "getOneDriveUsageStorage",
        "principal_column": "Owner Principal Name",
        "entity_label": "Users",
        "series_site_type": "OneDrive",
    },
    "sharepoint": {
        "detail_report": "getSharePointSiteUsageDetail",
        "storage_report": "getSharePointSiteUsageStorage",
        "principal_column": None,  # sites are not owned by group members
        "entity_label": "Sites",
        "series_site_type": "All",
    },
}

# Common report columns
COLUMN_STORAGE_BYTES = "Storage Used (Byte)"
COLUMN_IS_DELETED = "Is Deleted"
COLUMN_REPORT_DATE = "Report Date"
COLUMN_REFRESH_DATE = "Report Refresh Date"
COLUMN_SITE_TYPE = "Site Type"
COLUMN_RECIPIENT_TYPE = "Recipient Type"
COLUMN_HAS_ARCHIVE = "Has Archive"

# Recipient types counted as shared mailboxes (lower-cased)
SHARED_RECIPIENT_TYPES = {"shared", "sharedmailbox"}

# File with one principal name per line, used as the group filter offline
LOCAL_GROUP_MEMBERS_FILE = "group_members.txt"
