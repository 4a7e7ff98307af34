"""
M365 Sizing - Errors
Terminal failures abort the run; the rest are recovered where they happen
"""

from config import REQUIRED_REPORT_ROLE


class SizingError(Exception):
    """Base class for all sizing failures"""


class PermissionDeniedError(SizingError):
    """The signed-in principal is not allowed to read reports or groups"""

    def __init__(self, report: str, detail: str = "", role: str = REQUIRED_REPORT_ROLE):
        self.report = report
        message = (
            f"Access denied reading '{report}'. "
            f"The app or account needs the {role} role."
        )
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class GroupNotFoundError(SizingError):
    """The group used as the inclusion filter does not exist or is empty"""


class SessionFailedError(SizingError):
    """The archive enumeration session could not be (re)established"""


class WorkloadUnavailableError(SizingError):
    """A workload's reports could not be retrieved; the run continues without it"""


class ArchiveLookupError(SizingError):
    """Archive statistics for a single mailbox could not be read"""
