"""Segment-level reporting on top of the RFM segmentation.

Answers the questions a marketing team asks once every customer carries a
segment label:
- How are customers and revenue distributed across segments?
- Who are the most valuable customers in each key segment?
- Which (R, F, M) combinations concentrate the most revenue?
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from customer_behavior.foundation.segments import CustomerSegment, Segment

PERCENTAGE_PRECISION = Decimal("0.01")
CENTS = Decimal("0.01")

# Segments worth reaching out to individually
KEY_SEGMENTS = (
    Segment.CHAMPIONS,
    Segment.LOYAL_CUSTOMERS,
    Segment.BIG_SPENDERS,
    Segment.AT_RISK,
    Segment.CANNOT_LOSE_THEM,
)


@dataclass(frozen=True)
class SegmentSummary:
    """Distribution figures for one segment.

    Attributes
    ----------
    segment:
        The segment label.
    customer_count:
        Customers in the segment.
    pct_of_customers:
        Share of all segmented customers (0-100).
    total_revenue:
        Sum of monetary_total over the segment.
    avg_customer_value:
        Mean monetary_total.
    avg_orders_per_customer:
        Mean frequency_orders, one decimal place.
    avg_recency_days:
        Mean recency_days, one decimal place.
    pct_of_revenue:
        Share of total revenue (0-100).
    """

    segment: Segment
    customer_count: int
    pct_of_customers: Decimal
    total_revenue: Decimal
    avg_customer_value: Decimal
    avg_orders_per_customer: Decimal
    avg_recency_days: Decimal
    pct_of_revenue: Decimal

    def __post_init__(self) -> None:
        """Validate segment summary."""
        if self.customer_count <= 0:
            raise ValueError(
                f"customer_count must be positive: {self.customer_count} ({self.segment.value})"
            )
        if not 0 <= self.pct_of_customers <= 100:
            raise ValueError(
                f"pct_of_customers must be 0-100: {self.pct_of_customers} ({self.segment.value})"
            )
        if not 0 <= self.pct_of_revenue <= 100:
            raise ValueError(
                f"pct_of_revenue must be 0-100: {self.pct_of_revenue} ({self.segment.value})"
            )


def summarize_segments(segments: Sequence[CustomerSegment]) -> list[SegmentSummary]:
    """Summarise customers and revenue per segment.

    Returns
    -------
    list[SegmentSummary]
        One row per segment present, ordered by total revenue descending.
    """
    if not segments:
        return []

    grouped: dict[Segment, list[CustomerSegment]] = defaultdict(list)
    for customer in segments:
        grouped[customer.segment].append(customer)

    total_customers = len(segments)
    total_revenue = sum(
        (c.score.metrics.monetary_total for c in segments), Decimal("0")
    )

    summaries: list[SegmentSummary] = []
    for segment, members in grouped.items():
        count = len(members)
        revenue = sum((c.score.metrics.monetary_total for c in members), Decimal("0"))
        orders = sum(c.score.metrics.frequency_orders for c in members)
        recency = sum(c.score.metrics.recency_days for c in members)
        pct_revenue = (
            (revenue / total_revenue * 100).quantize(
                PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
            )
            if total_revenue > 0
            else Decimal("0.00")
        )
        summaries.append(
            SegmentSummary(
                segment=segment,
                customer_count=count,
                pct_of_customers=(Decimal(count) / total_customers * 100).quantize(
                    PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
                ),
                total_revenue=revenue.quantize(CENTS, rounding=ROUND_HALF_UP),
                avg_customer_value=(revenue / count).quantize(
                    CENTS, rounding=ROUND_HALF_UP
                ),
                avg_orders_per_customer=(Decimal(orders) / count).quantize(
                    Decimal("0.1"), rounding=ROUND_HALF_UP
                ),
                avg_recency_days=(Decimal(recency) / count).quantize(
                    Decimal("0.1"), rounding=ROUND_HALF_UP
                ),
                pct_of_revenue=pct_revenue,
            )
        )

    summaries.sort(key=lambda s: (-s.total_revenue, s.segment.value))
    return summaries


def top_customers_by_segment(
    segments: Sequence[CustomerSegment],
    top_n: int = 3,
    include: Iterable[Segment] = KEY_SEGMENTS,
) -> dict[Segment, list[CustomerSegment]]:
    """Return the highest-spending customers of each selected segment.

    Customers are ranked by monetary_total descending, ties broken by
    customer_unique_id. Segments without customers are omitted.
    """
    if top_n < 1:
        raise ValueError(f"top_n must be >= 1, got {top_n}")

    wanted = set(include)
    grouped: dict[Segment, list[CustomerSegment]] = defaultdict(list)
    for customer in segments:
        if customer.segment in wanted:
            grouped[customer.segment].append(customer)

    return {
        segment: sorted(
            members,
            key=lambda c: (-c.score.metrics.monetary_total, c.customer_unique_id),
        )[:top_n]
        for segment, members in sorted(grouped.items(), key=lambda kv: kv[0].value)
    }


@dataclass(frozen=True)
class ScoreCombination:
    """Customers and revenue sharing one (R, F, M) score triple."""

    rfm_score: str
    customer_count: int
    avg_revenue_per_customer: Decimal
    total_revenue: Decimal


def rfm_score_distribution(
    segments: Sequence[CustomerSegment],
    min_customers: int = 5,
    limit: int | None = 20,
) -> list[ScoreCombination]:
    """Revenue by score combination, largest first.

    Combinations with fewer than ``min_customers`` customers are dropped.
    """
    grouped: dict[str, list[Decimal]] = defaultdict(list)
    for customer in segments:
        grouped[customer.score.rfm_score].append(customer.score.metrics.monetary_total)

    combinations = [
        ScoreCombination(
            rfm_score=rfm_score,
            customer_count=len(values),
            avg_revenue_per_customer=(sum(values, Decimal("0")) / len(values)).quantize(
                CENTS, rounding=ROUND_HALF_UP
            ),
            total_revenue=sum(values, Decimal("0")).quantize(
                CENTS, rounding=ROUND_HALF_UP
            ),
        )
        for rfm_score, values in grouped.items()
        if len(values) >= min_customers
    ]
    combinations.sort(key=lambda c: (-c.total_revenue, c.rfm_score))
    return combinations[:limit] if limit is not None else combinations
