"""Cohort retention analysis.

Builds the cohort x period retention matrix from activity records and
summarises it across cohorts. For each cohort month the matrix holds a
fixed window of period buckets 0..N-1: distinct active customers, revenue,
and the share of the period-0 cohort still active.

Quick Start
-----------
>>> from customer_behavior.foundation.cohorts import assign_cohorts, bucketize_activity
>>> from customer_behavior.analyses.retention import (
...     build_retention_matrix,
...     summarize_cross_cohort_retention,
... )
>>> activity = bucketize_activity(qualified_orders, assign_cohorts(qualified_orders))  # doctest: +SKIP
>>> matrix = build_retention_matrix(activity, window_periods=12)  # doctest: +SKIP
>>> summary = summarize_cross_cohort_retention(matrix, min_cohort_size=20)  # doctest: +SKIP
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from customer_behavior.foundation.cohorts import ActivityRecord, CohortMonth

# Standard percentage precision: 2 decimal places (e.g., 45.67%)
PERCENTAGE_PRECISION = Decimal("0.01")
CENTS = Decimal("0.01")


def _pct(numerator: int, denominator: int) -> Decimal | None:
    if denominator == 0:
        return None
    return (Decimal(100) * numerator / denominator).quantize(
        PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
    )


@dataclass(frozen=True)
class RetentionCell:
    """One (cohort_month, period_number) entry of the retention matrix.

    Attributes
    ----------
    cohort_month:
        Acquisition month of the cohort.
    period_number:
        Months since acquisition (0 = acquisition month).
    active_customers:
        Distinct cohort members with a qualifying order in this period.
    pct_of_cohort:
        100 * active_customers / period-0 active customers, or None when
        the period-0 count is zero.
    revenue:
        Revenue from cohort members in this period.
    observed:
        False when the period lies after the observation end, i.e. the
        zero counts reflect missing data rather than churn.
    """

    cohort_month: CohortMonth
    period_number: int
    active_customers: int
    pct_of_cohort: Decimal | None
    revenue: Decimal
    observed: bool = True

    def __post_init__(self) -> None:
        """Validate retention cell constraints."""
        if self.period_number < 0:
            raise ValueError(f"period_number must be >= 0, got {self.period_number}")
        if self.active_customers < 0:
            raise ValueError(
                f"active_customers must be >= 0, got {self.active_customers}"
            )
        if self.revenue < 0:
            raise ValueError(f"revenue must be >= 0, got {self.revenue}")

    @property
    def avg_revenue_per_customer(self) -> Decimal:
        """Revenue per active customer (zero when nobody was active)."""
        if self.active_customers == 0:
            return Decimal("0.00")
        return (self.revenue / self.active_customers).quantize(
            CENTS, rounding=ROUND_HALF_UP
        )


@dataclass(frozen=True)
class RetentionMatrix:
    """Retention cells for every cohort, ordered by cohort then period."""

    cells: tuple[RetentionCell, ...]
    window_periods: int
    observation_end: CohortMonth | None
    _index: dict[tuple[CohortMonth, int], RetentionCell] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        """Validate RetentionMatrix constraints and index cells."""
        if self.window_periods < 1:
            raise ValueError(f"window_periods must be >= 1, got {self.window_periods}")
        if len(self.cells) % self.window_periods != 0:
            raise ValueError(
                "Every cohort must have exactly window_periods cells, "
                f"got {len(self.cells)} cells for window {self.window_periods}"
            )
        object.__setattr__(
            self,
            "_index",
            {(cell.cohort_month, cell.period_number): cell for cell in self.cells},
        )

    @property
    def cohort_months(self) -> list[CohortMonth]:
        return sorted({month for month, _ in self._index})

    def cohort_cells(self, cohort_month: CohortMonth) -> list[RetentionCell]:
        """Cells of one cohort, ordered by period number."""
        return [
            self._index[(cohort_month, period_number)]
            for period_number in range(self.window_periods)
            if (cohort_month, period_number) in self._index
        ]

    def cohort_size(self, cohort_month: CohortMonth) -> int:
        """Period-0 active customers of a cohort."""
        cell = self._index.get((cohort_month, 0))
        if cell is None:
            raise KeyError(f"Unknown cohort month: {cohort_month}")
        return cell.active_customers

    def cell(self, cohort_month: CohortMonth, period_number: int) -> RetentionCell:
        cell = self._index.get((cohort_month, period_number))
        if cell is None:
            raise KeyError(f"No cell for cohort {cohort_month} period {period_number}")
        return cell


def build_retention_matrix(
    activity: Iterable[ActivityRecord],
    window_periods: int = 12,
    observation_end: CohortMonth | None = None,
) -> RetentionMatrix:
    """Aggregate activity records into the cohort x period matrix.

    Parameters
    ----------
    activity:
        Activity records with period numbers assigned.
    window_periods:
        Number of buckets per cohort (periods 0..N-1). Activity at period N
        or later is outside the matrix.
    observation_end:
        Last month covered by the data. Cells after it are marked
        ``observed=False``. Defaults to the latest activity month.

    Returns
    -------
    RetentionMatrix
        ``window_periods`` cells per cohort. Periods without activity carry
        zero customers and zero revenue.

    Examples
    --------
    A cohort of 40 customers with 8 still active at period 3 has a period-3
    retention of 20%:

    >>> m = build_retention_matrix(activity, window_periods=6)  # doctest: +SKIP
    >>> m.cell(CohortMonth(2018, 1), 3).pct_of_cohort  # doctest: +SKIP
    Decimal('20.00')
    """
    if window_periods < 1:
        raise ValueError(f"window_periods must be >= 1, got {window_periods}")

    customers: dict[tuple[CohortMonth, int], set[str]] = defaultdict(set)
    revenue: dict[tuple[CohortMonth, int], Decimal] = defaultdict(lambda: Decimal("0"))
    cohorts: set[CohortMonth] = set()
    latest_activity: CohortMonth | None = None

    for record in activity:
        cohorts.add(record.cohort_month)
        if latest_activity is None or record.activity_month > latest_activity:
            latest_activity = record.activity_month
        if record.period_number >= window_periods:
            continue
        key = (record.cohort_month, record.period_number)
        customers[key].add(record.customer_unique_id)
        revenue[key] += record.revenue_in_month

    if observation_end is None:
        observation_end = latest_activity

    cells: list[RetentionCell] = []
    for cohort_month in sorted(cohorts):
        cohort_size = len(customers.get((cohort_month, 0), ()))
        for period_number in range(window_periods):
            key = (cohort_month, period_number)
            active = len(customers.get(key, ()))
            observed = (
                observation_end is None
                or cohort_month.index + period_number <= observation_end.index
            )
            cells.append(
                RetentionCell(
                    cohort_month=cohort_month,
                    period_number=period_number,
                    active_customers=active,
                    pct_of_cohort=_pct(active, cohort_size),
                    revenue=revenue.get(key, Decimal("0")).quantize(
                        CENTS, rounding=ROUND_HALF_UP
                    ),
                    observed=observed,
                )
            )

    return RetentionMatrix(
        cells=tuple(cells),
        window_periods=window_periods,
        observation_end=observation_end,
    )


@dataclass(frozen=True)
class PeriodRetentionSummary:
    """Cross-cohort average retention at one period.

    Attributes
    ----------
    period_number:
        Months since acquisition.
    avg_retention_pct:
        Unweighted mean of pct_of_cohort over included cohorts, or None when
        no cohort qualifies.
    cohorts_included:
        Number of cohorts contributing to the average.
    """

    period_number: int
    avg_retention_pct: Decimal | None
    cohorts_included: int


def summarize_cross_cohort_retention(
    matrix: RetentionMatrix,
    min_cohort_size: int = 20,
) -> list[PeriodRetentionSummary]:
    """Average retention per period across sufficiently large cohorts.

    Small cohorts are excluded because their retention swings widely and
    would dominate an unweighted mean. Cells with undefined percentages or
    lying after the observation end are skipped as well.

    Parameters
    ----------
    matrix:
        Output of :func:`build_retention_matrix`.
    min_cohort_size:
        Minimum period-0 size for a cohort to be included.

    Returns
    -------
    list[PeriodRetentionSummary]
        One row per period 0..N-1.
    """
    if min_cohort_size < 1:
        raise ValueError(f"min_cohort_size must be >= 1, got {min_cohort_size}")

    eligible = {
        cohort_month
        for cohort_month in matrix.cohort_months
        if matrix.cohort_size(cohort_month) >= min_cohort_size
    }

    by_period: dict[int, list[Decimal]] = defaultdict(list)
    for cell in matrix.cells:
        if cell.cohort_month not in eligible:
            continue
        if cell.pct_of_cohort is None or not cell.observed:
            continue
        by_period[cell.period_number].append(cell.pct_of_cohort)

    summary: list[PeriodRetentionSummary] = []
    for period_number in range(matrix.window_periods):
        values = by_period.get(period_number, [])
        avg = (
            (sum(values, Decimal("0")) / len(values)).quantize(
                PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
            )
            if values
            else None
        )
        summary.append(
            PeriodRetentionSummary(
                period_number=period_number,
                avg_retention_pct=avg,
                cohorts_included=len(values),
            )
        )
    return summary


@dataclass(frozen=True)
class CohortOverview:
    """Headline figures over all cohorts.

    Attributes
    ----------
    total_cohorts:
        Number of cohort months.
    total_customers:
        Customers across all cohorts.
    earliest_cohort, latest_cohort:
        First and last cohort month, None when there are no cohorts.
    avg_cohort_size:
        Mean period-0 size, rounded to a whole customer.
    """

    total_cohorts: int
    total_customers: int
    earliest_cohort: CohortMonth | None
    latest_cohort: CohortMonth | None
    avg_cohort_size: Decimal


def summarize_cohorts(matrix: RetentionMatrix) -> CohortOverview:
    """Summarise cohort counts and sizes."""
    months = matrix.cohort_months
    sizes = [matrix.cohort_size(month) for month in months]
    avg_size = (
        (Decimal(sum(sizes)) / len(sizes)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        if sizes
        else Decimal("0")
    )
    return CohortOverview(
        total_cohorts=len(months),
        total_customers=sum(sizes),
        earliest_cohort=months[0] if months else None,
        latest_cohort=months[-1] if months else None,
        avg_cohort_size=avg_size,
    )


@dataclass(frozen=True)
class CohortRanking:
    """A cohort's retention at the ranking period."""

    cohort_month: CohortMonth
    cohort_size: int
    period_number: int
    retention_pct: Decimal
    month_1_retention_pct: Decimal | None


def rank_cohorts(
    matrix: RetentionMatrix,
    period_number: int = 3,
    min_cohort_size: int = 30,
    top_n: int = 5,
) -> tuple[list[CohortRanking], list[CohortRanking]]:
    """Return the best and worst cohorts by retention at ``period_number``.

    Only cohorts of at least ``min_cohort_size`` customers whose period is
    observed take part. Ties are broken by cohort month.

    Returns
    -------
    tuple[list[CohortRanking], list[CohortRanking]]
        (best, worst), each at most ``top_n`` long.
    """
    if not 0 <= period_number < matrix.window_periods:
        raise ValueError(
            f"period_number must be within [0, {matrix.window_periods}), got {period_number}"
        )
    if top_n < 1:
        raise ValueError(f"top_n must be >= 1, got {top_n}")

    rankings: list[CohortRanking] = []
    for cohort_month in matrix.cohort_months:
        size = matrix.cohort_size(cohort_month)
        if size < min_cohort_size:
            continue
        cell = matrix.cell(cohort_month, period_number)
        if not cell.observed or cell.pct_of_cohort is None:
            continue
        month_1 = (
            matrix.cell(cohort_month, 1).pct_of_cohort
            if matrix.window_periods > 1
            else None
        )
        rankings.append(
            CohortRanking(
                cohort_month=cohort_month,
                cohort_size=size,
                period_number=period_number,
                retention_pct=cell.pct_of_cohort,
                month_1_retention_pct=month_1,
            )
        )

    best = sorted(rankings, key=lambda r: (-r.retention_pct, r.cohort_month))[:top_n]
    worst = sorted(rankings, key=lambda r: (r.retention_pct, r.cohort_month))[:top_n]
    return best, worst


def cohort_revenue_within_window(
    activity: Sequence[ActivityRecord],
    cohort_month: CohortMonth,
    window_periods: int,
) -> Decimal:
    """Total revenue of a cohort's customers in their first N months."""
    return sum(
        (
            record.revenue_in_month
            for record in activity
            if record.cohort_month == cohort_month
            and record.period_number < window_periods
        ),
        Decimal("0"),
    )
