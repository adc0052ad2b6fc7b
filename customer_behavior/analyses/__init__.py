"""Customer behavior analyses built on the foundation layer.

1. Segment reporting - distribution, top customers, score combinations
2. Cohort retention - retention matrix, cross-cohort averages, rankings
"""

from .retention import (
    CohortOverview,
    CohortRanking,
    PeriodRetentionSummary,
    RetentionCell,
    RetentionMatrix,
    build_retention_matrix,
    cohort_revenue_within_window,
    rank_cohorts,
    summarize_cohorts,
    summarize_cross_cohort_retention,
)
from .segment_report import (
    ScoreCombination,
    SegmentSummary,
    rfm_score_distribution,
    summarize_segments,
    top_customers_by_segment,
)

__all__ = [
    # Segment reporting
    "ScoreCombination",
    "SegmentSummary",
    "rfm_score_distribution",
    "summarize_segments",
    "top_customers_by_segment",
    # Cohort retention
    "CohortOverview",
    "CohortRanking",
    "PeriodRetentionSummary",
    "RetentionCell",
    "RetentionMatrix",
    "build_retention_matrix",
    "cohort_revenue_within_window",
    "rank_cohorts",
    "summarize_cohorts",
    "summarize_cross_cohort_retention",
]
