"""Pandas DataFrame adapters for cohort retention outputs."""

from typing import Sequence

import numpy as np
import pandas as pd  # type: ignore

from customer_behavior.analyses.retention import (
    PeriodRetentionSummary,
    RetentionMatrix,
)
from ._utils import decimal_to_float

MATRIX_COLUMNS = [
    "cohort_month",
    "period_number",
    "active_customers",
    "pct_of_cohort",
    "revenue",
    "avg_revenue_per_customer",
    "observed",
]

SUMMARY_COLUMNS = ["period_number", "avg_retention_pct", "cohorts_included"]

PIVOT_VALUES = ("active_customers", "pct_of_cohort", "revenue")


def retention_matrix_to_dataframe(matrix: RetentionMatrix) -> pd.DataFrame:
    """Convert the retention matrix to a long-format DataFrame.

    ``pct_of_cohort`` is NaN where the percentage is undefined (empty
    period-0 cohort). Rows are ordered by cohort_month, period_number.
    """
    if not matrix.cells:
        return pd.DataFrame(columns=MATRIX_COLUMNS)

    rows = [
        {
            "cohort_month": str(cell.cohort_month),
            "period_number": cell.period_number,
            "active_customers": cell.active_customers,
            "pct_of_cohort": (
                np.nan
                if cell.pct_of_cohort is None
                else decimal_to_float(cell.pct_of_cohort)
            ),
            "revenue": decimal_to_float(cell.revenue),
            "avg_revenue_per_customer": decimal_to_float(cell.avg_revenue_per_customer),
            "observed": cell.observed,
        }
        for cell in matrix.cells
    ]
    return pd.DataFrame(rows, columns=MATRIX_COLUMNS)


def pivot_retention(matrix: RetentionMatrix, value: str = "pct_of_cohort") -> pd.DataFrame:
    """Return a cohort x period table of one matrix value.

    Args:
        matrix: Retention matrix to pivot
        value: One of "active_customers", "pct_of_cohort", "revenue"

    Returns:
        DataFrame indexed by cohort_month with columns ``month_0`` ..
        ``month_{N-1}``. Unobserved cells are NaN.

    Example:
        >>> pivot_retention(result.matrix, "active_customers").head()
    """
    if value not in PIVOT_VALUES:
        raise ValueError(f"value must be one of {PIVOT_VALUES}, got {value!r}")

    columns = [f"month_{k}" for k in range(matrix.window_periods)]
    long_df = retention_matrix_to_dataframe(matrix)
    if long_df.empty:
        empty = pd.DataFrame(columns=columns)
        empty.index.name = "cohort_month"
        return empty

    long_df = long_df.copy()
    long_df[value] = long_df[value].astype(float).where(long_df["observed"])
    wide = long_df.pivot(index="cohort_month", columns="period_number", values=value)
    wide = wide.reindex(columns=range(matrix.window_periods))
    wide.columns = columns
    wide.index.name = "cohort_month"
    return wide.sort_index()


def retention_summary_to_dataframe(
    summary: Sequence[PeriodRetentionSummary],
) -> pd.DataFrame:
    """Convert the cross-cohort summary to a DataFrame (NaN for no data)."""
    if not summary:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    rows = [
        {
            "period_number": row.period_number,
            "avg_retention_pct": (
                np.nan
                if row.avg_retention_pct is None
                else decimal_to_float(row.avg_retention_pct)
            ),
            "cohorts_included": row.cohorts_included,
        }
        for row in summary
    ]
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
