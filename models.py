"""
M365 Sizing - Models
Usage samples read from reports and the sizing record built from them
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Optional


@dataclass(frozen=True)
class UsageSample:
    """One row of a usage report: a day, an entity and its storage"""
    report_date: date
    entity_id: str
    storage_bytes: int
    is_deleted: bool = False


@dataclass
class ArchiveSizing:
    """Archive mailbox totals, only filled when archives are analysed"""
    archive_count: int = 0
    total_bytes: int = 0
    average_bytes: int = 0
    skipped_count: int = 0


@dataclass
class WorkloadSizing:
    """Sizing for one workload (mail, OneDrive or SharePoint)"""
    name: str
    title: str = ""
    entity_label: str = ""
    entity_count: int = 0
    total_bytes: int = 0
    average_bytes: int = 0
    growth_percent: int = 0
    forecast_bytes: list = field(default_factory=list)
    available: bool = False
    warnings: list = field(default_factory=list)
    # Mail only
    user_mailbox_count: int = 0
    shared_mailbox_count: int = 0
    archive: Optional[ArchiveSizing] = None


@dataclass
class SizingResult:
    """The one record a run builds up and renders"""
    exchange: WorkloadSizing = field(default_factory=lambda: WorkloadSizing("exchange"))
    onedrive: WorkloadSizing = field(default_factory=lambda: WorkloadSizing("onedrive"))
    sharepoint: WorkloadSizing = field(default_factory=lambda: WorkloadSizing("sharepoint"))
    total_bytes: int = 0
    group_name: Optional[str] = None
    period_days: int = 0
    generated_at: str = field(default_factory=lambda: datetime.now().isoformat(timespec="seconds"))
    warnings: list = field(default_factory=list)

    def workload(self, name: str) -> WorkloadSizing:
        return getattr(self, name)

    @property
    def workloads(self) -> list:
        return [self.exchange, self.onedrive, self.sharepoint]

    def to_dict(self) -> dict:
        return asdict(self)
