"""
M365 Sizing - API Client
Wrappers for Microsoft Graph usage reports, group membership and
Exchange Online archive statistics, plus a local CSV report source
"""

import csv
import io
import logging
import os
import time
from typing import Optional

import requests

from config import (
    TENANT_ID, CLIENT_ID, CLIENT_SECRET, LOGIN_URL, GRAPH_BASE_URL, GRAPH_SCOPE,
    EXCHANGE_ADMIN_URL, EXCHANGE_SCOPE, MAX_RETRIES, RETRY_DELAY_BASE,
    REQUEST_TIMEOUT, LOCAL_GROUP_MEMBERS_FILE, REQUIRED_GROUP_PERMISSION
)
from errors import (
    SizingError, PermissionDeniedError, GroupNotFoundError,
    WorkloadUnavailableError, ArchiveLookupError
)
from session_manager import SESSION_OPEN

logger = logging.getLogger(__name__)

# Throttling and server-side errors worth retrying
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


def get_access_token(tenant_id: str, client_id: str, client_secret: str, scope: str) -> dict:
    """
    Request an app-only token with the client credentials grant

    Returns the token response (access_token, expires_in, ...)
    """
    token_url = f"{LOGIN_URL}/{tenant_id}/oauth2/v2.0/token"
    data = {
        "grant_type": "client_credentials",
        "client_id": client_id,
        "client_secret": client_secret,
        "scope": scope,
    }
    response = requests.post(token_url, data=data, timeout=REQUEST_TIMEOUT)
    if not response.ok:
        raise SizingError(
            f"Authentication failed for tenant {tenant_id}: "
            f"HTTP {response.status_code} {_error_detail(response)}"
        )
    token = response.json()
    if not token.get("access_token"):
        raise SizingError("No access token in the token response")
    return token


def parse_csv_report(text: str) -> list[dict]:
    """Parse a usage report CSV body into a list of row dicts"""
    text = text.lstrip("\ufeff")
    if not text.strip():
        return []
    return list(csv.DictReader(io.StringIO(text)))


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error", "")
    # Graph nests the message, the token endpoint does not
    if isinstance(error, dict):
        return error.get("message", "")
    return body.get("error_description", error)


class GraphAPI:
    """API client for Microsoft Graph reports and groups"""

    def __init__(self, tenant_id: str, client_id: str, client_secret: str):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = GRAPH_BASE_URL
        self._access_token = None
        self._token_expires_at = 0.0

    def _headers(self) -> dict:
        if not self._access_token or time.time() >= self._token_expires_at:
            token = get_access_token(self.tenant_id, self.client_id, self.client_secret, GRAPH_SCOPE)
            self._access_token = token["access_token"]
            # Refresh a minute early
            self._token_expires_at = time.time() + int(token.get("expires_in", 3600)) - 60
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
        }

    def _request(self, url: str, params: Optional[dict] = None) -> requests.Response:
        """Make GET request to API with retry logic"""
        for attempt in range(MAX_RETRIES):
            try:
                response = requests.request(
                    "GET", url, headers=self._headers(), params=params, timeout=REQUEST_TIMEOUT
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if attempt < MAX_RETRIES - 1:
                    delay = RETRY_DELAY_BASE * (2 ** attempt)
                    logger.warning("Timeout on %s, retry %d/%d in %ds...", url, attempt + 1, MAX_RETRIES, delay)
                    time.sleep(delay)
                    continue
                raise

            if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES - 1:
                delay = RETRY_DELAY_BASE * (2 ** attempt)
                retry_after = response.headers.get("Retry-After")
                if retry_after and retry_after.isdigit():
                    delay = int(retry_after)
                logger.warning("HTTP %d on %s, retry %d/%d in %ds...",
                               response.status_code, url, attempt + 1, MAX_RETRIES, delay)
                time.sleep(delay)
                continue

            response.raise_for_status()
            return response

        raise SizingError(f"Giving up on {url} after {MAX_RETRIES} attempts")

    def _get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        url = endpoint if endpoint.startswith("http") else f"{self.base_url}{endpoint}"
        return self._request(url, params).json()

    def _get_all_pages(self, endpoint: str, params: Optional[dict] = None) -> list:
        """Fetch all pages of a collection by following @odata.nextLink"""
        all_data = []
        response = self._get(endpoint, params)

        while True:
            all_data.extend(response.get("value", []))
            next_link = response.get("@odata.nextLink")
            if not next_link:
                break
            # nextLink already carries the query string
            response = self._get(next_link)

        return all_data

    def get_report(self, report_name: str, period_days: int) -> list[dict]:
        """
        Download a usage report as CSV rows

        Args:
            report_name: Graph report function, e.g. getMailboxUsageDetail
            period_days: 7, 30, 90 or 180

        Raises PermissionDeniedError on 403 and WorkloadUnavailableError
        for anything else that stops the report from being read.
        """
        url = f"{self.base_url}/reports/{report_name}(period='D{period_days}')"
        logger.debug("Fetching report %s", report_name)

        try:
            response = self._request(url)
        except requests.exceptions.HTTPError as e:
            response = e.response
            if response is not None and response.status_code == 403:
                raise PermissionDeniedError(report_name, _error_detail(response)) from e
            raise WorkloadUnavailableError(f"{report_name}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise WorkloadUnavailableError(f"{report_name}: {e}") from e

        rows = parse_csv_report(response.content.decode("utf-8-sig"))
        logger.debug("Report %s returned %d rows", report_name, len(rows))
        return rows

    def get_group_members(self, group_name: str) -> set[str]:
        """
        Get the principal names of every user in a group (nested included)

        Returns lower-cased user principal names.
        Raises GroupNotFoundError if the group is missing or has no users,
        PermissionDeniedError on 403 and SizingError for any other failure.
        """
        escaped = group_name.replace("'", "''")
        try:
            groups = self._get_all_pages("/groups", {
                "$filter": f"displayName eq '{escaped}'",
                "$select": "id,displayName",
            })
            if not groups:
                raise GroupNotFoundError(f"Group '{group_name}' was not found")
            if len(groups) > 1:
                logger.warning("%d groups named '%s', using the first", len(groups), group_name)

            group_id = groups[0]["id"]
            members = self._get_all_pages(
                f"/groups/{group_id}/transitiveMembers",
                {"$select": "id,userPrincipalName"},
            )
        except requests.exceptions.HTTPError as e:
            response = e.response
            if response is not None and response.status_code == 403:
                raise PermissionDeniedError(
                    f"group {group_name}", _error_detail(response), REQUIRED_GROUP_PERMISSION
                ) from e
            if response is not None and response.status_code == 404:
                raise GroupNotFoundError(f"Group '{group_name}' was not found") from e
            raise SizingError(f"Could not read group '{group_name}': {e}") from e
        except requests.exceptions.RequestException as e:
            raise SizingError(f"Could not read group '{group_name}': {e}") from e

        principals = {
            m["userPrincipalName"].lower()
            for m in members if m.get("userPrincipalName")
        }
        if not principals:
            raise GroupNotFoundError(f"Group '{group_name}' has no user members")

        logger.info("Group '%s' has %d users", group_name, len(principals))
        return principals


class LocalReportSource:
    """Reads previously downloaded usage reports (<report name>.csv) from a directory"""

    def __init__(self, directory: str):
        self.directory = directory

    def get_report(self, report_name: str, period_days: int) -> list[dict]:
        path = os.path.join(self.directory, f"{report_name}.csv")
        if not os.path.exists(path):
            raise WorkloadUnavailableError(f"{report_name}: {path} not found")

        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            rows = list(csv.DictReader(f))
        logger.debug("Read %d rows from %s", len(rows), path)
        return rows

    def get_group_members(self, group_name: str) -> set[str]:
        path = os.path.join(self.directory, LOCAL_GROUP_MEMBERS_FILE)
        if not os.path.exists(path):
            raise GroupNotFoundError(
                f"Group '{group_name}' cannot be resolved offline: {path} not found"
            )

        with open(path, "r", encoding="utf-8") as f:
            principals = {line.strip().lower() for line in f if line.strip()}
        if not principals:
            raise GroupNotFoundError(f"Group '{group_name}' has no members in {path}")
        return principals


class ExchangeSession:
    """One authenticated connection to the Exchange Online admin API"""

    def __init__(self, tenant_id: str, access_token: str):
        self.tenant_id = tenant_id
        self.url = f"{EXCHANGE_ADMIN_URL}/{tenant_id}/InvokeCommand"
        self.http = requests.Session()
        self.http.headers.update({
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        self.state = SESSION_OPEN

    def get_archive_size(self, identity: str) -> str:
        """
        Run Get-MailboxStatistics -Archive for one mailbox

        Returns the TotalItemSize string, e.g. "1.2 GB (1,288,490,188 bytes)"
        """
        body = {
            "CmdletInput": {
                "CmdletName": "Get-MailboxStatistics",
                "Parameters": {"Identity": identity, "Archive": True},
            }
        }
        try:
            response = self.http.post(self.url, json=body, timeout=REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            raise ArchiveLookupError(f"{identity}: {e}") from e

        if response.status_code == 401:
            # Token no longer accepted; the manager opens a new session
            self.state = "Broken"
            raise ArchiveLookupError(f"{identity}: session no longer authorised")
        if not response.ok:
            raise ArchiveLookupError(f"{identity}: HTTP {response.status_code} {_error_detail(response)}")

        try:
            values = response.json().get("value", [])
            size = values[0].get("TotalItemSize") if values else None
        except (ValueError, AttributeError, TypeError) as e:
            raise ArchiveLookupError(f"{identity}: unreadable response") from e

        if not size:
            raise ArchiveLookupError(f"{identity}: no archive statistics returned")
        return str(size)

    def close(self) -> None:
        self.http.close()
        self.state = "Closed"


class ExchangeArchiveClient:
    """Opens Exchange Online sessions for archive enumeration"""

    def __init__(self, tenant_id: str, client_id: str, client_secret: str):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret

    def connect(self) -> ExchangeSession:
        token = get_access_token(self.tenant_id, self.client_id, self.client_secret, EXCHANGE_SCOPE)
        return ExchangeSession(self.tenant_id, token["access_token"])


def _require_credentials() -> None:
    missing = [name for name, value in (
        ("M365_TENANT_ID", TENANT_ID),
        ("M365_CLIENT_ID", CLIENT_ID),
        ("M365_CLIENT_SECRET", CLIENT_SECRET),
    ) if not value]
    if missing:
        raise SizingError(f"Missing environment variables: {', '.join(missing)}")


def get_report_source(reports_dir: Optional[str] = None):
    """
    Create the report source for this run

    Uses CSV files from `reports_dir` when given, otherwise Microsoft Graph
    with the app registration from the environment.
    """
    if reports_dir:
        logger.info("Reading usage reports from %s", reports_dir)
        return LocalReportSource(reports_dir)

    _require_credentials()
    return GraphAPI(TENANT_ID, CLIENT_ID, CLIENT_SECRET)


def get_archive_client() -> ExchangeArchiveClient:
    _require_credentials()
    return ExchangeArchiveClient(TENANT_ID, CLIENT_ID, CLIENT_SECRET)
