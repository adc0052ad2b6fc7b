"""Foundational building blocks for customer behavior analytics.

This package exposes the input record definitions, the shared order
qualification stage, RFM metric extraction and scoring, segment
classification, and cohort/period bucketing.
"""

from .cohorts import (
    ActivityRecord,
    CohortMonth,
    assign_cohorts,
    bucketize_activity,
    bucketize_activity_with_report,
)
from .config import AnalyticsConfig
from .orders import (
    DataQualityReport,
    QualifiedOrder,
    QualifiedOrders,
    qualify_orders,
    reject_future_purchases,
)
from .records import CustomerRecord, OrderItemRecord, OrderRecord, RecordContract
from .rfm import (
    CustomerMetrics,
    CustomerScore,
    QuantileBreakpoints,
    RFMBreakpoints,
    calculate_breakpoints,
    calculate_rfm_breakpoints,
    extract_customer_metrics,
    percentile_cont,
    score_customers,
)
from .segments import (
    SEGMENT_PLAYBOOK,
    SEGMENT_RULES,
    CustomerSegment,
    Segment,
    classify_segment,
    segment_customers,
    segment_playbook,
)

__all__ = [
    "ActivityRecord",
    "AnalyticsConfig",
    "CohortMonth",
    "CustomerMetrics",
    "CustomerRecord",
    "CustomerScore",
    "CustomerSegment",
    "DataQualityReport",
    "OrderItemRecord",
    "OrderRecord",
    "QualifiedOrder",
    "QualifiedOrders",
    "QuantileBreakpoints",
    "RFMBreakpoints",
    "RecordContract",
    "SEGMENT_PLAYBOOK",
    "SEGMENT_RULES",
    "Segment",
    "assign_cohorts",
    "bucketize_activity",
    "bucketize_activity_with_report",
    "calculate_breakpoints",
    "calculate_rfm_breakpoints",
    "classify_segment",
    "extract_customer_metrics",
    "percentile_cont",
    "qualify_orders",
    "reject_future_purchases",
    "score_customers",
    "segment_customers",
    "segment_playbook",
]
