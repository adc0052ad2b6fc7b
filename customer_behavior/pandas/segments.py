"""Pandas DataFrame adapters for RFM segmentation outputs."""

from typing import Sequence

import pandas as pd  # type: ignore

from customer_behavior.analyses.segment_report import SegmentSummary
from customer_behavior.foundation.segments import SEGMENT_PLAYBOOK, CustomerSegment
from ._utils import decimal_to_float

SEGMENT_COLUMNS = [
    "customer_unique_id",
    "recency_days",
    "frequency_orders",
    "monetary_total",
    "avg_order_value",
    "first_order_date",
    "last_order_date",
    "city",
    "state",
    "recency_score",
    "frequency_score",
    "monetary_score",
    "rfm_score",
    "segment_label",
]

SUMMARY_COLUMNS = [
    "segment_label",
    "customer_count",
    "pct_of_customers",
    "total_revenue",
    "avg_customer_value",
    "avg_orders_per_customer",
    "avg_recency_days",
    "pct_of_revenue",
    "recommended_action",
    "marketing_priority",
]


def segments_to_dataframe(segments: Sequence[CustomerSegment]) -> pd.DataFrame:
    """Convert segmented customers to a DataFrame.

    Args:
        segments: Sequence of CustomerSegment objects

    Returns:
        DataFrame with one row per customer, sorted by customer_unique_id,
        holding raw metrics, the three scores and the segment label.

    Example:
        >>> result = run_segmentation(qualified, config)
        >>> df = segments_to_dataframe(result.segments)
        >>> df.groupby("segment_label").size()
    """
    if not segments:
        return pd.DataFrame(columns=SEGMENT_COLUMNS)

    rows = []
    for customer in segments:
        score = customer.score
        m = score.metrics
        rows.append(
            {
                "customer_unique_id": m.customer_unique_id,
                "recency_days": m.recency_days,
                "frequency_orders": m.frequency_orders,
                "monetary_total": decimal_to_float(m.monetary_total),
                "avg_order_value": decimal_to_float(m.avg_order_value),
                "first_order_date": m.first_order_date,
                "last_order_date": m.last_order_date,
                "city": m.city,
                "state": m.state,
                "recency_score": score.recency_score,
                "frequency_score": score.frequency_score,
                "monetary_score": score.monetary_score,
                "rfm_score": score.rfm_score,
                "segment_label": customer.segment.value,
            }
        )

    df = pd.DataFrame(rows, columns=SEGMENT_COLUMNS)
    return df.sort_values("customer_unique_id").reset_index(drop=True)


def segment_summary_to_dataframe(summaries: Sequence[SegmentSummary]) -> pd.DataFrame:
    """Convert segment summaries to a DataFrame with playbook columns.

    Row order of ``summaries`` (total revenue descending) is preserved.
    """
    if not summaries:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    rows = []
    for summary in summaries:
        playbook = SEGMENT_PLAYBOOK[summary.segment]
        rows.append(
            {
                "segment_label": summary.segment.value,
                "customer_count": summary.customer_count,
                "pct_of_customers": decimal_to_float(summary.pct_of_customers),
                "total_revenue": decimal_to_float(summary.total_revenue),
                "avg_customer_value": decimal_to_float(summary.avg_customer_value),
                "avg_orders_per_customer": decimal_to_float(
                    summary.avg_orders_per_customer
                ),
                "avg_recency_days": decimal_to_float(summary.avg_recency_days),
                "pct_of_revenue": decimal_to_float(summary.pct_of_revenue),
                "recommended_action": playbook.recommended_action,
                "marketing_priority": playbook.marketing_priority,
            }
        )
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
