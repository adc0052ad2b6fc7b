"""Order qualification: the shared input stage of both analytics branches.

Raw orders, items and customers are joined once into a list of
:class:`QualifiedOrder` objects keyed on ``customer_unique_id``. Both the
RFM segmentation and the cohort retention analysis consume this output, so
the exclusion rules and the malformed-key policy are identical for them.

An order qualifies when all of the following hold:

- its status (case-insensitive) is one of the qualifying statuses,
- it has a purchase timestamp,
- its ``customer_id`` resolves to a customer record,
- at least one item joins to it.

Items are mandatory: an order without items contributes to neither
frequency, monetary value nor cohort assignment.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from customer_behavior.foundation.records import (
    CustomerRecord,
    OrderItemRecord,
    OrderRecord,
)

logger = logging.getLogger(__name__)

# Number of offending identifiers kept per issue for error messages and logs
SAMPLE_SIZE = 5


@dataclass(frozen=True)
class QualifiedOrder:
    """An order that passed qualification, attributed to a person.

    Attributes
    ----------
    order_id:
        Unique order identifier.
    customer_unique_id:
        The person who placed the order.
    purchase_ts:
        Purchase timestamp (never None).
    order_value:
        Sum of price + freight over the order's items.
    item_count:
        Number of items joined to the order (always >= 1).
    city, state:
        Location of the customer account that placed this order.
    """

    order_id: str
    customer_unique_id: str
    purchase_ts: datetime
    order_value: Decimal
    item_count: int
    city: str = ""
    state: str = ""

    def __post_init__(self) -> None:
        """Validate qualified order."""
        if self.item_count < 1:
            raise ValueError(
                f"Qualified order must have at least one item (order_id={self.order_id})"
            )
        if self.order_value < 0:
            raise ValueError(
                f"Order value cannot be negative: {self.order_value} (order_id={self.order_id})"
            )


@dataclass(frozen=True)
class DataQualityReport:
    """Counts of rows excluded during qualification.

    Attributes
    ----------
    total_orders:
        Number of order records received.
    qualified_orders:
        Number of orders that passed qualification.
    non_qualifying_status:
        Orders whose status is not a qualifying status.
    missing_purchase_ts:
        Qualifying-status orders without a purchase timestamp.
    orders_without_items:
        Otherwise qualifying orders that no item joins to.
    unknown_customer:
        Orders whose customer_id has no customer record (only non-zero
        in permissive mode).
    orphan_items:
        Items whose order_id has no order record (only non-zero in
        permissive mode).
    unassigned_activity:
        Activity rows dropped by the period bucketizer because the
        customer has no cohort assignment (permissive mode only).
    samples:
        Up to ``SAMPLE_SIZE`` offending identifiers per issue.
    """

    total_orders: int = 0
    qualified_orders: int = 0
    non_qualifying_status: int = 0
    missing_purchase_ts: int = 0
    orders_without_items: int = 0
    unknown_customer: int = 0
    orphan_items: int = 0
    unassigned_activity: int = 0
    samples: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def skipped_malformed(self) -> int:
        """Rows skipped because of malformed keys."""
        return self.unknown_customer + self.orphan_items + self.unassigned_activity

    def as_dict(self) -> dict[str, object]:
        """Return JSON-serialisable representation of the report."""
        return {
            "total_orders": self.total_orders,
            "qualified_orders": self.qualified_orders,
            "non_qualifying_status": self.non_qualifying_status,
            "missing_purchase_ts": self.missing_purchase_ts,
            "orders_without_items": self.orders_without_items,
            "unknown_customer": self.unknown_customer,
            "orphan_items": self.orphan_items,
            "unassigned_activity": self.unassigned_activity,
            "samples": {key: list(value) for key, value in self.samples.items()},
        }


@dataclass(frozen=True)
class QualifiedOrders:
    """Result of :func:`qualify_orders`."""

    orders: tuple[QualifiedOrder, ...]
    report: DataQualityReport

    def __len__(self) -> int:
        return len(self.orders)

    def __iter__(self):
        return iter(self.orders)


def _check_unique(ids: Sequence[str], label: str) -> None:
    counts = Counter(ids)
    duplicates = [key for key, count in counts.items() if count > 1]
    if duplicates:
        raise ValueError(
            f"Duplicate {label} values detected: {duplicates[:SAMPLE_SIZE]}. "
            f"Each {label} must appear exactly once."
        )


def reject_future_purchases(
    orders: Iterable[QualifiedOrder], as_of: datetime
) -> None:
    """Raise ValueError for the first order purchased after ``as_of``.

    A purchase after the reference instant is malformed input whatever the
    strict setting: it would give a negative recency and an activity cell
    outside the observation window.
    """
    for order in orders:
        if order.purchase_ts > as_of:
            raise ValueError(
                f"Purchase timestamp ({order.purchase_ts}) cannot be after as_of "
                f"({as_of}) (order_id={order.order_id}, "
                f"customer_unique_id={order.customer_unique_id})"
            )


def qualify_orders(
    orders: Iterable[OrderRecord],
    items: Iterable[OrderItemRecord],
    customers: Iterable[CustomerRecord],
    qualifying_statuses: Iterable[str],
    strict: bool = True,
    as_of: datetime | None = None,
) -> QualifiedOrders:
    """Filter and join raw records into qualified orders.

    Parameters
    ----------
    orders, items, customers:
        Raw input records from the cleaning layer.
    qualifying_statuses:
        Order statuses counted as successful purchases. Comparison is
        case-insensitive; unknown statuses simply do not qualify.
    strict:
        If True (default), an item referencing an unknown order or an order
        referencing an unknown customer raises ValueError naming the row.
        If False such rows are skipped, counted in the report and logged.
    as_of:
        Reference instant of the run. When given, a qualified order
        purchased after it raises ValueError (see
        :func:`reject_future_purchases`).

    Returns
    -------
    QualifiedOrders
        Qualified orders sorted by (customer_unique_id, purchase_ts,
        order_id), together with a data quality report.

    Raises
    ------
    ValueError
        On duplicate order_id or customer_id values, or on malformed keys
        when ``strict`` is True, or on a purchase after ``as_of``.

    Examples
    --------
    >>> from datetime import datetime
    >>> from decimal import Decimal
    >>> orders = [OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5))]
    >>> items = [OrderItemRecord("O1", "1", "P1", Decimal("10"), Decimal("2.5"))]
    >>> customers = [CustomerRecord("A1", "U1")]
    >>> result = qualify_orders(orders, items, customers, {"delivered"})
    >>> result.orders[0].order_value
    Decimal('12.50')
    """
    orders = list(orders)
    items = list(items)
    customers = list(customers)
    statuses = frozenset(status.strip().lower() for status in qualifying_statuses)

    _check_unique([order.order_id for order in orders], "order_id")
    _check_unique([customer.customer_id for customer in customers], "customer_id")

    customers_by_id = {customer.customer_id: customer for customer in customers}
    known_order_ids = {order.order_id for order in orders}

    # Join items to orders
    item_totals: dict[str, Decimal] = {}
    item_counts: dict[str, int] = {}
    orphan_items: list[str] = []
    for item in items:
        if item.order_id not in known_order_ids:
            if strict:
                raise ValueError(
                    f"Order item references unknown order_id: "
                    f"(order_id={item.order_id}, item_id={item.item_id}). "
                    f"To skip and count such rows, set strict=False."
                )
            orphan_items.append(f"{item.order_id}/{item.item_id}")
            continue
        item_totals[item.order_id] = (
            item_totals.get(item.order_id, Decimal("0")) + item.line_total
        )
        item_counts[item.order_id] = item_counts.get(item.order_id, 0) + 1

    non_qualifying: list[str] = []
    missing_ts: list[str] = []
    without_items: list[str] = []
    unknown_customer: list[str] = []
    qualified: list[QualifiedOrder] = []

    for order in orders:
        if order.normalised_status not in statuses:
            non_qualifying.append(order.order_id)
            continue
        if order.purchase_ts is None:
            missing_ts.append(order.order_id)
            continue
        customer = customers_by_id.get(order.customer_id)
        if customer is None:
            if strict:
                raise ValueError(
                    f"Order references unknown customer_id: "
                    f"(order_id={order.order_id}, customer_id={order.customer_id}). "
                    f"To skip and count such rows, set strict=False."
                )
            unknown_customer.append(order.order_id)
            continue
        if order.order_id not in item_counts:
            without_items.append(order.order_id)
            continue

        qualified.append(
            QualifiedOrder(
                order_id=order.order_id,
                customer_unique_id=customer.customer_unique_id,
                purchase_ts=order.purchase_ts,
                order_value=item_totals[order.order_id].quantize(
                    Decimal("0.01"), rounding=ROUND_HALF_UP
                ),
                item_count=item_counts[order.order_id],
                city=customer.city,
                state=customer.state,
            )
        )

    samples = {
        name: tuple(values[:SAMPLE_SIZE])
        for name, values in (
            ("non_qualifying_status", non_qualifying),
            ("missing_purchase_ts", missing_ts),
            ("orders_without_items", without_items),
            ("unknown_customer", unknown_customer),
            ("orphan_items", orphan_items),
        )
        if values
    }
    report = DataQualityReport(
        total_orders=len(orders),
        qualified_orders=len(qualified),
        non_qualifying_status=len(non_qualifying),
        missing_purchase_ts=len(missing_ts),
        orders_without_items=len(without_items),
        unknown_customer=len(unknown_customer),
        orphan_items=len(orphan_items),
        samples=samples,
    )

    if missing_ts or without_items:
        logger.info(
            f"Excluded {len(missing_ts)} orders without purchase timestamp and "
            f"{len(without_items)} orders without items"
        )
    if unknown_customer or orphan_items:
        logger.warning(
            f"Skipped malformed rows: {len(unknown_customer)} orders with unknown "
            f"customer_id (first {SAMPLE_SIZE}: {unknown_customer[:SAMPLE_SIZE]}), "
            f"{len(orphan_items)} items with unknown order_id "
            f"(first {SAMPLE_SIZE}: {orphan_items[:SAMPLE_SIZE]}). "
            f"Set strict=True to reject such batches instead."
        )

    qualified.sort(key=lambda o: (o.customer_unique_id, o.purchase_ts, o.order_id))
    if as_of is not None:
        reject_future_purchases(qualified, as_of)
    return QualifiedOrders(orders=tuple(qualified), report=report)
