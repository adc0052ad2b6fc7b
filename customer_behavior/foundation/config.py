"""Run configuration for the segmentation and retention analyses."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

DEFAULT_QUALIFYING_STATUSES = frozenset({"delivered", "shipped"})
DEFAULT_RETENTION_WINDOW = 12
DEFAULT_MIN_COHORT_SIZE = 20


def normalise_statuses(statuses: Iterable[str]) -> frozenset[str]:
    """Return lower-cased, stripped status strings."""
    return frozenset(status.strip().lower() for status in statuses)


@dataclass(frozen=True)
class AnalyticsConfig:
    """Configuration for a batch analytics run.

    Attributes
    ----------
    as_of:
        Reference instant for recency. Always supplied explicitly so that
        results are reproducible; the wall clock is never consulted.
    qualifying_statuses:
        Order statuses that count as a successful purchase.
    retention_window_periods:
        Number of period buckets (0..N-1) tracked per cohort.
    min_cohort_size:
        Minimum period-0 cohort size for inclusion in cross-cohort
        retention averages.
    strict:
        If True, malformed keys (items referencing unknown orders, orders
        referencing unknown customers) abort the run with a ValueError that
        identifies the row. If False they are skipped, counted in the
        data quality report and logged.
    ranking_min_cohort_size:
        Minimum cohort size for the best/worst cohort ranking.
    ranking_period:
        Period number whose retention is used to rank cohorts.
    """

    as_of: datetime
    qualifying_statuses: frozenset[str] = field(
        default_factory=lambda: DEFAULT_QUALIFYING_STATUSES
    )
    retention_window_periods: int = DEFAULT_RETENTION_WINDOW
    min_cohort_size: int = DEFAULT_MIN_COHORT_SIZE
    strict: bool = True
    ranking_min_cohort_size: int = 30
    ranking_period: int = 3

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not isinstance(self.as_of, datetime):
            raise TypeError(
                f"as_of must be a datetime instance, got {type(self.as_of).__name__}"
            )
        statuses = normalise_statuses(self.qualifying_statuses)
        if not statuses:
            raise ValueError("qualifying_statuses cannot be empty")
        # frozen dataclass: bypass __setattr__ to store the normalised set
        object.__setattr__(self, "qualifying_statuses", statuses)
        if self.retention_window_periods < 1:
            raise ValueError(
                f"retention_window_periods must be >= 1, got {self.retention_window_periods}"
            )
        if self.min_cohort_size < 1:
            raise ValueError(
                f"min_cohort_size must be >= 1, got {self.min_cohort_size}"
            )
        if self.ranking_min_cohort_size < 1:
            raise ValueError(
                f"ranking_min_cohort_size must be >= 1, got {self.ranking_min_cohort_size}"
            )
        if not 0 <= self.ranking_period < self.retention_window_periods:
            raise ValueError(
                f"ranking_period must be within the retention window "
                f"[0, {self.retention_window_periods}), got {self.ranking_period}"
            )
