"""RFM (Recency-Frequency-Monetary) calculation utilities.

RFM analysis segments customers based on three dimensions:
- Recency: How recently did the customer make a purchase?
- Frequency: How often do they purchase?
- Monetary: How much do they spend?

The computation is an explicit two-pass algorithm. Pass 1
(:func:`extract_customer_metrics`) materializes one :class:`CustomerMetrics`
per person and may run in parallel across customers. Pass 2
(:func:`score_customers`) needs the complete population, because the
quantile breakpoints are global statistics; it never starts before pass 1
has been fully collected.
"""

from __future__ import annotations

import multiprocessing
import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence, Union

from customer_behavior.foundation.orders import QualifiedOrder, reject_future_purchases

Number = Union[int, Decimal]

# Percentile fractions of the four score breakpoints
BREAKPOINT_FRACTIONS = (Decimal("0.2"), Decimal("0.4"), Decimal("0.6"), Decimal("0.8"))

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class CustomerMetrics:
    """Raw RFM metrics for a single customer.

    Attributes
    ----------
    customer_unique_id:
        The person these metrics describe.
    recency_days:
        Whole days from the latest qualifying purchase to ``as_of``.
    frequency_orders:
        Number of distinct qualifying orders.
    monetary_total:
        Sum of price + freight over all qualifying items.
    avg_order_value:
        monetary_total / frequency_orders.
    first_order_date:
        Earliest qualifying purchase timestamp.
    last_order_date:
        Latest qualifying purchase timestamp.
    city, state:
        Location of the account used for the latest order.
    """

    customer_unique_id: str
    recency_days: int
    frequency_orders: int
    monetary_total: Decimal
    avg_order_value: Decimal
    first_order_date: datetime
    last_order_date: datetime
    city: str = ""
    state: str = ""

    def __post_init__(self) -> None:
        """Validate RFM metrics."""
        if self.recency_days < 0:
            raise ValueError(
                f"Recency cannot be negative: {self.recency_days} "
                f"(customer_unique_id={self.customer_unique_id})"
            )
        if self.frequency_orders <= 0:
            raise ValueError(
                f"Frequency must be positive: {self.frequency_orders} "
                f"(customer_unique_id={self.customer_unique_id})"
            )
        if self.monetary_total < 0:
            raise ValueError(
                f"Monetary value cannot be negative: {self.monetary_total} "
                f"(customer_unique_id={self.customer_unique_id})"
            )
        if self.first_order_date > self.last_order_date:
            raise ValueError(
                f"first_order_date ({self.first_order_date}) is after last_order_date "
                f"({self.last_order_date}) (customer_unique_id={self.customer_unique_id})"
            )
        expected_avg = self.monetary_total / self.frequency_orders
        if abs(self.avg_order_value - expected_avg) > CENTS:
            raise ValueError(
                f"avg_order_value ({self.avg_order_value}) != monetary_total / "
                f"frequency_orders ({expected_avg}) "
                f"(customer_unique_id={self.customer_unique_id})"
            )


def _calculate_metrics_for_customers(
    orders_by_customer: dict[str, list[QualifiedOrder]], as_of: datetime
) -> list[CustomerMetrics]:
    """Calculate metrics for a chunk of customers.

    Designed to be called by multiprocessing workers; every customer in the
    chunk is processed independently.
    """
    metrics: list[CustomerMetrics] = []

    for customer_unique_id, orders in orders_by_customer.items():
        latest = max(orders, key=lambda o: (o.purchase_ts, o.order_id))
        first_order_date = min(o.purchase_ts for o in orders)
        frequency = len({o.order_id for o in orders})

        monetary_total = sum(
            (o.order_value for o in orders), Decimal("0")
        ).quantize(CENTS, rounding=ROUND_HALF_UP)
        avg_order_value = (monetary_total / frequency).quantize(
            CENTS, rounding=ROUND_HALF_UP
        )

        metrics.append(
            CustomerMetrics(
                customer_unique_id=customer_unique_id,
                recency_days=(as_of - latest.purchase_ts).days,
                frequency_orders=frequency,
                monetary_total=monetary_total,
                avg_order_value=avg_order_value,
                first_order_date=first_order_date,
                last_order_date=latest.purchase_ts,
                city=latest.city,
                state=latest.state,
            )
        )

    return metrics


def extract_customer_metrics(
    qualified_orders: Iterable[QualifiedOrder],
    as_of: datetime,
    parallel: bool = True,
    parallel_threshold: int = 1_000_000,
    n_workers: Optional[int] = None,
) -> list[CustomerMetrics]:
    """Reduce qualified orders to one CustomerMetrics per person.

    **Timezone Assumptions**: ``as_of`` and all purchase timestamps must use
    the same timezone (or all be timezone-naive).

    **Data Quality**: A purchase timestamp after ``as_of`` is malformed input
    and raises ValueError; it would otherwise produce a negative recency.

    **Parallel Processing**: Customers are partitioned across a process pool
    when their number reaches ``parallel_threshold``. Results from all workers
    are merged before returning, so callers always receive the complete
    population.

    Parameters
    ----------
    qualified_orders:
        Output of :func:`~customer_behavior.foundation.orders.qualify_orders`.
    as_of:
        Reference instant for recency. Must be supplied explicitly.
    parallel:
        Enable parallel processing above ``parallel_threshold`` customers.
    parallel_threshold:
        Number of customers at which the process pool is used.
    n_workers:
        Number of worker processes; defaults to the CPU count.

    Returns
    -------
    list[CustomerMetrics]
        One entry per customer with at least one qualifying order, sorted by
        customer_unique_id.

    Examples
    --------
    >>> from datetime import datetime
    >>> from decimal import Decimal
    >>> orders = [
    ...     QualifiedOrder("O1", "U1", datetime(2018, 1, 5), Decimal("100.00"), 1),
    ...     QualifiedOrder("O2", "U1", datetime(2018, 3, 1), Decimal("50.00"), 2),
    ... ]
    >>> metrics = extract_customer_metrics(orders, as_of=datetime(2018, 3, 11))
    >>> metrics[0].recency_days, metrics[0].frequency_orders
    (10, 2)
    >>> metrics[0].monetary_total
    Decimal('150.00')
    """
    qualified_orders = list(qualified_orders)
    reject_future_purchases(qualified_orders, as_of)

    orders_by_customer: dict[str, list[QualifiedOrder]] = {}
    for order in qualified_orders:
        orders_by_customer.setdefault(order.customer_unique_id, []).append(order)

    if not orders_by_customer:
        return []

    num_customers = len(orders_by_customer)
    use_parallel = parallel and num_customers >= parallel_threshold

    if use_parallel:
        workers = max(1, n_workers) if n_workers is not None else (os.cpu_count() or 1)

        customer_items = list(orders_by_customer.items())
        chunk_size = max(1, num_customers // workers)
        chunks = [
            (dict(customer_items[i : i + chunk_size]), as_of)
            for i in range(0, num_customers, chunk_size)
        ]

        with multiprocessing.Pool(processes=workers) as pool:
            chunk_results = pool.starmap(_calculate_metrics_for_customers, chunks)

        # Fan-in: scoring must see every customer
        metrics: list[CustomerMetrics] = []
        for chunk_result in chunk_results:
            metrics.extend(chunk_result)
    else:
        metrics = _calculate_metrics_for_customers(orders_by_customer, as_of)

    metrics.sort(key=lambda m: m.customer_unique_id)
    return metrics


def _interpolate(ordered: Sequence[Decimal], fraction: Decimal) -> Decimal:
    position = fraction * (len(ordered) - 1)
    lower = int(position)
    upper = min(lower + 1, len(ordered) - 1)
    weight = position - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * weight


def percentile_cont(values: Sequence[Number], fraction: Number | str) -> Decimal:
    """Continuous percentile with linear interpolation.

    For ``n`` sorted values the percentile ``p`` sits at position
    ``p * (n - 1)``; the result interpolates linearly between the two
    bracketing order statistics. Arithmetic is exact (Decimal), so a value
    equal to a breakpoint always compares equal to it.

    Examples
    --------
    >>> percentile_cont([1, 2, 3, 4], "0.5")
    Decimal('2.5')
    >>> percentile_cont([7, 7, 7], "0.8")
    Decimal('7.0')
    """
    if not values:
        raise ValueError("Cannot compute a percentile of an empty population")
    fraction = Decimal(str(fraction))
    if not 0 <= fraction <= 1:
        raise ValueError(f"Percentile fraction must be between 0 and 1: {fraction}")
    ordered = sorted(Decimal(str(value)) for value in values)
    return _interpolate(ordered, fraction)


@dataclass(frozen=True)
class QuantileBreakpoints:
    """The P20/P40/P60/P80 breakpoints of one metric."""

    p20: Decimal
    p40: Decimal
    p60: Decimal
    p80: Decimal

    def __post_init__(self) -> None:
        """Validate monotonic breakpoints."""
        if not self.p20 <= self.p40 <= self.p60 <= self.p80:
            raise ValueError(
                f"Breakpoints must be monotonic: "
                f"p20={self.p20}, p40={self.p40}, p60={self.p60}, p80={self.p80}"
            )

    def score_lower_is_better(self, value: Number) -> int:
        """Score where small values are best (recency)."""
        if value <= self.p20:
            return 5
        if value <= self.p40:
            return 4
        if value <= self.p60:
            return 3
        if value <= self.p80:
            return 2
        return 1

    def score_higher_is_better(self, value: Number) -> int:
        """Score where large values are best (frequency, monetary)."""
        if value >= self.p80:
            return 5
        if value >= self.p60:
            return 4
        if value >= self.p40:
            return 3
        if value >= self.p20:
            return 2
        return 1


def calculate_breakpoints(values: Sequence[Number]) -> QuantileBreakpoints:
    """Compute the four score breakpoints over a full population.

    All-identical values yield four coinciding breakpoints; every customer
    then receives the same score, without error.
    """
    if not values:
        raise ValueError("Cannot compute breakpoints of an empty population")
    ordered = sorted(Decimal(str(value)) for value in values)
    p20, p40, p60, p80 = (_interpolate(ordered, f) for f in BREAKPOINT_FRACTIONS)
    return QuantileBreakpoints(p20=p20, p40=p40, p60=p60, p80=p80)


@dataclass(frozen=True)
class RFMBreakpoints:
    """Population breakpoints for all three RFM dimensions."""

    recency: QuantileBreakpoints
    frequency: QuantileBreakpoints
    monetary: QuantileBreakpoints


def calculate_rfm_breakpoints(metrics: Sequence[CustomerMetrics]) -> RFMBreakpoints:
    """Compute breakpoints for recency, frequency and monetary."""
    if not metrics:
        raise ValueError("Cannot compute breakpoints of an empty population")
    return RFMBreakpoints(
        recency=calculate_breakpoints([m.recency_days for m in metrics]),
        frequency=calculate_breakpoints([m.frequency_orders for m in metrics]),
        monetary=calculate_breakpoints([m.monetary_total for m in metrics]),
    )


@dataclass(frozen=True)
class CustomerScore:
    """RFM scores (1-5) for a single customer.

    Attributes
    ----------
    metrics:
        The raw metrics the scores were derived from.
    recency_score:
        1-5, where 5 = most recent.
    frequency_score:
        1-5, where 5 = most frequent.
    monetary_score:
        1-5, where 5 = highest spend.
    rfm_score:
        Combined score string (e.g. "555" for best customers).
    """

    metrics: CustomerMetrics
    recency_score: int
    frequency_score: int
    monetary_score: int
    rfm_score: str

    def __post_init__(self) -> None:
        """Validate RFM scores."""
        for score_name, score_value in [
            ("recency_score", self.recency_score),
            ("frequency_score", self.frequency_score),
            ("monetary_score", self.monetary_score),
        ]:
            if not 1 <= score_value <= 5:
                raise ValueError(
                    f"{score_name} must be between 1 and 5: {score_value} "
                    f"(customer_unique_id={self.customer_unique_id})"
                )
        expected = f"{self.recency_score}{self.frequency_score}{self.monetary_score}"
        if self.rfm_score != expected:
            raise ValueError(
                f"rfm_score ({self.rfm_score}) does not match r/f/m scores ({expected}) "
                f"(customer_unique_id={self.customer_unique_id})"
            )

    @property
    def customer_unique_id(self) -> str:
        return self.metrics.customer_unique_id


def score_customers(
    metrics: Sequence[CustomerMetrics],
    breakpoints: RFMBreakpoints | None = None,
) -> list[CustomerScore]:
    """Score every customer against population-wide breakpoints.

    This is a barrier: ``metrics`` must be the complete population. Passing a
    partial list silently shifts every threshold.

    Parameters
    ----------
    metrics:
        All customer metrics of the run.
    breakpoints:
        Precomputed breakpoints for the same population. Computed from
        ``metrics`` when omitted.

    Returns
    -------
    list[CustomerScore]
        Scores sorted by customer_unique_id.

    Examples
    --------
    >>> from datetime import datetime
    >>> from decimal import Decimal
    >>> d = datetime(2018, 1, 1)
    >>> population = [
    ...     CustomerMetrics("U1", 10, 1, Decimal("100"), Decimal("100"), d, d),
    ...     CustomerMetrics("U2", 50, 10, Decimal("5000"), Decimal("500"), d, d),
    ... ]
    >>> [s.rfm_score for s in score_customers(population)]
    ['511', '155']
    """
    if not metrics:
        return []

    if breakpoints is None:
        breakpoints = calculate_rfm_breakpoints(metrics)

    scores: list[CustomerScore] = []
    for m in metrics:
        r = breakpoints.recency.score_lower_is_better(m.recency_days)
        f = breakpoints.frequency.score_higher_is_better(m.frequency_orders)
        mon = breakpoints.monetary.score_higher_is_better(m.monetary_total)
        scores.append(
            CustomerScore(
                metrics=m,
                recency_score=r,
                frequency_score=f,
                monetary_score=mon,
                rfm_score=f"{r}{f}{mon}",
            )
        )

    scores.sort(key=lambda s: s.customer_unique_id)
    return scores
