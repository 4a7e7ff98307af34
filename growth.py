"""
M365 Sizing - Growth Estimator
Turns a series of daily storage samples into one annual growth percentage
"""

import math
from typing import Iterable

from config import DEFAULT_GROWTH_PERCENT, FORECAST_YEARS
from models import UsageSample


def build_growth_series(samples: Iterable[UsageSample]) -> list[UsageSample]:
    """Drop deleted samples and order the rest oldest first"""
    kept = [s for s in samples if not s.is_deleted]
    return sorted(kept, key=lambda s: s.report_date)


def estimate_annual_growth(values: list, default: int = DEFAULT_GROWTH_PERCENT) -> int:
    """
    Estimate annual growth from chronologically ordered byte counts

    Each day-over-day change is ((curr / prev) - 1) * 100, or 0 when the
    previous day is 0. The mean daily change is doubled and rounded up,
    which extrapolates the 180 day window to a year.

    Returns `default` when there are fewer than 2 values.
    """
    if len(values) < 2:
        return default

    deltas = []
    for prev, curr in zip(values, values[1:]):
        if prev > 0:
            deltas.append(((curr / prev) - 1) * 100)
        else:
            deltas.append(0)

    mean = sum(deltas) / len(deltas)
    return math.ceil(mean * 2)


def estimate_series_growth(samples: Iterable[UsageSample],
                           default: int = DEFAULT_GROWTH_PERCENT) -> int:
    series = build_growth_series(samples)
    return estimate_annual_growth([s.storage_bytes for s in series], default)


def forecast_storage(total_bytes: int, growth_percent: int,
                     years: int = FORECAST_YEARS) -> list[int]:
    """Projected storage for each of the next `years` years"""
    rate = 1 + growth_percent / 100
    return [int(round(total_bytes * rate ** year)) for year in range(1, years + 1)]
