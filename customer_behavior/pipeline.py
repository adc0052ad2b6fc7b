"""End-to-end batch runs for the segmentation and retention products.

Both runs start from the same qualified orders (see
:func:`~customer_behavior.foundation.orders.qualify_orders`) so that the
exclusion rules and the customer identity key are shared.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from customer_behavior.analyses.retention import (
    CohortOverview,
    CohortRanking,
    PeriodRetentionSummary,
    RetentionMatrix,
    build_retention_matrix,
    rank_cohorts,
    summarize_cohorts,
    summarize_cross_cohort_retention,
)
from customer_behavior.foundation.cohorts import (
    ActivityRecord,
    CohortMonth,
    assign_cohorts,
    bucketize_activity_with_report,
)
from customer_behavior.foundation.config import AnalyticsConfig
from customer_behavior.foundation.orders import (
    DataQualityReport,
    QualifiedOrders,
    qualify_orders,
    reject_future_purchases,
)
from customer_behavior.foundation.records import (
    CustomerRecord,
    OrderItemRecord,
    OrderRecord,
)
from customer_behavior.foundation.rfm import (
    CustomerMetrics,
    RFMBreakpoints,
    calculate_rfm_breakpoints,
    extract_customer_metrics,
    score_customers,
)
from customer_behavior.foundation.segments import CustomerSegment, segment_customers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SegmentationResult:
    """Output of :func:`run_segmentation`."""

    metrics: tuple[CustomerMetrics, ...]
    breakpoints: Optional[RFMBreakpoints]
    segments: tuple[CustomerSegment, ...]
    report: DataQualityReport


@dataclass(frozen=True)
class RetentionResult:
    """Output of :func:`run_retention`."""

    activity: tuple[ActivityRecord, ...]
    matrix: RetentionMatrix
    summary: tuple[PeriodRetentionSummary, ...]
    overview: CohortOverview
    best_cohorts: tuple[CohortRanking, ...]
    worst_cohorts: tuple[CohortRanking, ...]
    report: DataQualityReport


def prepare_orders(
    orders: Sequence[OrderRecord],
    items: Sequence[OrderItemRecord],
    customers: Sequence[CustomerRecord],
    config: AnalyticsConfig,
) -> QualifiedOrders:
    """Run the shared qualification stage with the configured policy."""
    qualified = qualify_orders(
        orders,
        items,
        customers,
        qualifying_statuses=config.qualifying_statuses,
        strict=config.strict,
        as_of=config.as_of,
    )
    logger.info(
        f"Qualified {qualified.report.qualified_orders}/{qualified.report.total_orders} "
        f"orders (statuses={sorted(config.qualifying_statuses)})"
    )
    return qualified


def run_segmentation(
    qualified: QualifiedOrders,
    config: AnalyticsConfig,
    parallel: bool = True,
    parallel_threshold: int = 1_000_000,
    n_workers: Optional[int] = None,
) -> SegmentationResult:
    """Extract metrics, score against the full population and classify.

    Metric extraction must finish for every customer before the breakpoints
    are computed; scoring and classification then run per customer.
    """
    metrics = extract_customer_metrics(
        qualified.orders,
        as_of=config.as_of,
        parallel=parallel,
        parallel_threshold=parallel_threshold,
        n_workers=n_workers,
    )
    if not metrics:
        logger.warning("No customers with qualifying orders; segmentation is empty")
        return SegmentationResult(
            metrics=(), breakpoints=None, segments=(), report=qualified.report
        )

    breakpoints = calculate_rfm_breakpoints(metrics)
    scores = score_customers(metrics, breakpoints)
    segments = segment_customers(scores)
    logger.info(f"Segmented {len(segments)} customers")

    return SegmentationResult(
        metrics=tuple(metrics),
        breakpoints=breakpoints,
        segments=tuple(segments),
        report=qualified.report,
    )


def run_retention(qualified: QualifiedOrders, config: AnalyticsConfig) -> RetentionResult:
    """Assign cohorts, bucket activity into periods and aggregate retention.

    The observation end is the month of ``config.as_of``, so cells after the
    reference date are marked unobserved. A purchase after ``config.as_of``
    raises ValueError, as it does in :func:`run_segmentation`.
    """
    reject_future_purchases(qualified.orders, config.as_of)
    assignments = assign_cohorts(qualified.orders)
    bucketized = bucketize_activity_with_report(
        qualified.orders, assignments, strict=config.strict
    )

    report = qualified.report
    if bucketized.unassigned_rows:
        report = replace(report, unassigned_activity=bucketized.unassigned_rows)

    matrix = build_retention_matrix(
        bucketized.records,
        window_periods=config.retention_window_periods,
        observation_end=CohortMonth.from_datetime(config.as_of),
    )
    summary = summarize_cross_cohort_retention(
        matrix, min_cohort_size=config.min_cohort_size
    )
    overview = summarize_cohorts(matrix)
    best, worst = rank_cohorts(
        matrix,
        period_number=config.ranking_period,
        min_cohort_size=config.ranking_min_cohort_size,
    )
    logger.info(
        f"Built retention matrix for {overview.total_cohorts} cohorts "
        f"({overview.total_customers} customers, window={config.retention_window_periods})"
    )

    return RetentionResult(
        activity=bucketized.records,
        matrix=matrix,
        summary=tuple(summary),
        overview=overview,
        best_cohorts=tuple(best),
        worst_cohorts=tuple(worst),
        report=report,
    )
