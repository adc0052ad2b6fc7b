"""Cohort assignment and period bucketing.

Customers are grouped into acquisition cohorts by the calendar month of
their first qualifying purchase. Each later month of activity is then
expressed as a period offset from the cohort month.

Months are represented as integer (year, month) pairs rather than dates.
Offsets use ``year * 12 + month`` arithmetic, so variable month lengths and
timezone conversions never shift a purchase into a neighbouring bucket.

Quick Start
-----------
>>> from datetime import datetime
>>> from decimal import Decimal
>>> from customer_behavior.foundation.orders import QualifiedOrder
>>> orders = [
...     QualifiedOrder("O1", "U1", datetime(2018, 1, 15), Decimal("10"), 1),
...     QualifiedOrder("O2", "U1", datetime(2018, 4, 2), Decimal("20"), 1),
... ]
>>> assignments = assign_cohorts(orders)
>>> str(assignments["U1"])
'2018-01'
>>> [a.period_number for a in bucketize_activity(orders, assignments)]
[0, 3]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping

from customer_behavior.foundation.orders import QualifiedOrder

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class CohortMonth:
    """A calendar month as a (year, month) pair.

    Ordering follows the calendar. ``index`` maps the month onto a single
    integer axis so that month differences are plain subtraction.
    """

    year: int
    month: int

    def __post_init__(self) -> None:
        """Validate month range."""
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")

    @classmethod
    def from_datetime(cls, dt: date | datetime) -> "CohortMonth":
        return cls(dt.year, dt.month)

    @classmethod
    def parse(cls, value: str) -> "CohortMonth":
        """Parse a ``YYYY-MM`` string.

        >>> CohortMonth.parse("2017-11")
        CohortMonth(year=2017, month=11)
        """
        try:
            year, month = value.split("-")
            return cls(int(year), int(month))
        except ValueError as exc:
            raise ValueError(f"Expected YYYY-MM month string, got {value!r}") from exc

    @property
    def index(self) -> int:
        return self.year * 12 + self.month

    def months_since(self, other: "CohortMonth") -> int:
        """Number of calendar months from ``other`` to this month."""
        return self.index - other.index

    def shift(self, months: int) -> "CohortMonth":
        """Return the month ``months`` after this one (negative goes back)."""
        zero_based = self.year * 12 + (self.month - 1) + months
        return CohortMonth(zero_based // 12, zero_based % 12 + 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def assign_cohorts(qualified_orders: Iterable[QualifiedOrder]) -> dict[str, CohortMonth]:
    """Assign each customer to the month of their earliest qualifying purchase.

    Parameters
    ----------
    qualified_orders:
        Qualified orders of the run. Customers without any qualifying order
        are absent from the result.

    Returns
    -------
    dict[str, CohortMonth]
        Mapping of customer_unique_id to cohort month.
    """
    first_purchase: dict[str, datetime] = {}
    for order in qualified_orders:
        current = first_purchase.get(order.customer_unique_id)
        if current is None or order.purchase_ts < current:
            first_purchase[order.customer_unique_id] = order.purchase_ts

    return {
        customer_unique_id: CohortMonth.from_datetime(ts)
        for customer_unique_id, ts in first_purchase.items()
    }


@dataclass(frozen=True)
class ActivityRecord:
    """A customer's activity within one calendar month.

    Attributes
    ----------
    customer_unique_id:
        The active customer.
    cohort_month:
        The customer's acquisition month.
    activity_month:
        The month the orders were placed in.
    orders_in_month:
        Distinct qualifying orders placed in the month.
    revenue_in_month:
        Sum of order values in the month.
    period_number:
        Months elapsed from cohort_month to activity_month.
    """

    customer_unique_id: str
    cohort_month: CohortMonth
    activity_month: CohortMonth
    orders_in_month: int
    revenue_in_month: Decimal
    period_number: int

    def __post_init__(self) -> None:
        """Validate activity record."""
        if self.period_number < 0:
            raise ValueError(
                f"period_number must be >= 0, got {self.period_number} "
                f"(customer_unique_id={self.customer_unique_id})"
            )
        if self.period_number != self.activity_month.months_since(self.cohort_month):
            raise ValueError(
                f"period_number {self.period_number} does not match "
                f"{self.activity_month} - {self.cohort_month} "
                f"(customer_unique_id={self.customer_unique_id})"
            )
        if self.orders_in_month <= 0:
            raise ValueError(
                f"orders_in_month must be positive, got {self.orders_in_month} "
                f"(customer_unique_id={self.customer_unique_id})"
            )


@dataclass(frozen=True)
class BucketizedActivity:
    """Activity records plus the number of rows skipped in permissive mode."""

    records: tuple[ActivityRecord, ...]
    unassigned_rows: int = 0


def bucketize_activity_with_report(
    qualified_orders: Iterable[QualifiedOrder],
    assignments: Mapping[str, CohortMonth],
    strict: bool = True,
) -> BucketizedActivity:
    """Group orders by (customer, month) and compute period offsets.

    Parameters
    ----------
    qualified_orders:
        Qualified orders of the run.
    assignments:
        Output of :func:`assign_cohorts` for the same orders.
    strict:
        If True, an order whose customer has no cohort assignment raises
        ValueError. If False it is skipped, counted and logged.

    Raises
    ------
    ValueError
        On an unassigned customer in strict mode, or when an order falls
        before its customer's cohort month (the assignments were derived
        from a different order set).
    """
    buckets: dict[tuple[str, CohortMonth], dict[str, object]] = {}
    unassigned: list[str] = []

    for order in qualified_orders:
        cohort_month = assignments.get(order.customer_unique_id)
        if cohort_month is None:
            if strict:
                raise ValueError(
                    f"No cohort assignment for customer "
                    f"(customer_unique_id={order.customer_unique_id}, "
                    f"order_id={order.order_id}). "
                    f"To skip and count such rows, set strict=False."
                )
            unassigned.append(order.order_id)
            continue

        activity_month = CohortMonth.from_datetime(order.purchase_ts)
        key = (order.customer_unique_id, activity_month)
        bucket = buckets.setdefault(
            key,
            {
                "cohort_month": cohort_month,
                "order_ids": set(),
                "revenue": Decimal("0"),
            },
        )
        bucket["order_ids"].add(order.order_id)
        bucket["revenue"] += order.order_value

    if unassigned:
        logger.warning(
            f"Skipped {len(unassigned)} orders of customers without cohort assignment "
            f"(first 5: {unassigned[:5]}). "
            f"Set strict=True to reject such batches instead."
        )

    records: list[ActivityRecord] = []
    for (customer_unique_id, activity_month), payload in buckets.items():
        cohort_month = payload["cohort_month"]
        period_number = activity_month.months_since(cohort_month)
        if period_number < 0:
            raise ValueError(
                f"Activity month {activity_month} precedes cohort month {cohort_month} "
                f"(customer_unique_id={customer_unique_id}). Cohort assignments must be "
                f"derived from the same qualified orders."
            )
        records.append(
            ActivityRecord(
                customer_unique_id=customer_unique_id,
                cohort_month=cohort_month,
                activity_month=activity_month,
                orders_in_month=len(payload["order_ids"]),
                revenue_in_month=payload["revenue"].quantize(
                    Decimal("0.01"), rounding=ROUND_HALF_UP
                ),
                period_number=period_number,
            )
        )

    records.sort(
        key=lambda r: (r.cohort_month, r.customer_unique_id, r.period_number)
    )
    return BucketizedActivity(records=tuple(records), unassigned_rows=len(unassigned))


def bucketize_activity(
    qualified_orders: Iterable[QualifiedOrder],
    assignments: Mapping[str, CohortMonth],
    strict: bool = True,
) -> list[ActivityRecord]:
    """Return activity records with period numbers.

    Convenience wrapper around :func:`bucketize_activity_with_report` for
    callers that do not need the skipped-row count.
    """
    return list(
        bucketize_activity_with_report(qualified_orders, assignments, strict).records
    )
