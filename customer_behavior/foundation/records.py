"""Input record definitions and validation utilities.

The records capture the minimum pieces of information that the
segmentation and retention analyses rely on. They mirror the cleaned
order, order item and customer tables produced by the upstream cleaning
layer, and are consumed read-only.

Note that ``customer_id`` identifies a per-order customer account, while
``customer_unique_id`` identifies the actual person. One person may have
several ``customer_id`` values; all customer-level analytics are keyed on
``customer_unique_id``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping


@dataclass(frozen=True)
class OrderRecord:
    """A single order as exported by the cleaning layer.

    Attributes
    ----------
    order_id:
        Unique order identifier.
    customer_id:
        Per-order customer account identifier.
    status:
        Order status string (e.g. "delivered", "shipped", "canceled").
    purchase_ts:
        Purchase timestamp. Orders without one cannot be anchored to a
        calendar month and are excluded from all analytics.
    delivered_ts:
        Timestamp the order reached the customer, if known.
    estimated_delivery_ts:
        Promised delivery date, if known.
    """

    order_id: str
    customer_id: str
    status: str
    purchase_ts: datetime | None = None
    delivered_ts: datetime | None = None
    estimated_delivery_ts: datetime | None = None

    @property
    def normalised_status(self) -> str:
        return self.status.strip().lower()


@dataclass(frozen=True)
class OrderItemRecord:
    """A single line item belonging to an order."""

    order_id: str
    item_id: str
    product_id: str
    price: Decimal
    freight_value: Decimal

    def __post_init__(self) -> None:
        """Validate non-negative monetary fields."""
        if self.price < 0:
            raise ValueError(
                f"Item price cannot be negative: {self.price} "
                f"(order_id={self.order_id}, item_id={self.item_id})"
            )
        if self.freight_value < 0:
            raise ValueError(
                f"Freight value cannot be negative: {self.freight_value} "
                f"(order_id={self.order_id}, item_id={self.item_id})"
            )

    @property
    def line_total(self) -> Decimal:
        """Price plus freight, the revenue attributed to this line."""
        return self.price + self.freight_value


@dataclass(frozen=True)
class CustomerRecord:
    """Mapping from an order account to the person behind it."""

    customer_id: str
    customer_unique_id: str
    city: str = ""
    state: str = ""


def _to_decimal(value: Any, *, field_name: str, idx: int) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(
            f"{field_name} must be numeric",
            {"record_index": idx, "value": value},
        ) from exc


def _optional_datetime(value: Any, *, field_name: str, idx: int) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    raise TypeError(
        f"{field_name} must be a datetime instance or ISO string",
        {"record_index": idx, "value": value},
    )


def _require(data: Mapping[str, Any], fields: Iterable[str], idx: int) -> None:
    missing = [name for name in fields if data.get(name) in (None, "")]
    if missing:
        raise ValueError(
            "Record missing required fields",
            {"missing_fields": missing, "record_index": idx},
        )


class RecordContract:
    """Validate raw mappings and return canonical input records.

    Each ``validate_*`` method accepts any iterable of mappings (for
    example rows decoded from JSON) and raises on the first malformed
    record, reporting its index.
    """

    ORDER_FIELDS = ("order_id", "customer_id", "status")
    ITEM_FIELDS = ("order_id", "item_id", "price", "freight_value")
    CUSTOMER_FIELDS = ("customer_id", "customer_unique_id")

    def validate_orders(self, records: Iterable[Mapping[str, Any]]) -> list[OrderRecord]:
        canonical: list[OrderRecord] = []
        for idx, record in enumerate(records):
            _require(record, self.ORDER_FIELDS, idx)
            canonical.append(
                OrderRecord(
                    order_id=str(record["order_id"]),
                    customer_id=str(record["customer_id"]),
                    status=str(record["status"]),
                    purchase_ts=_optional_datetime(
                        record.get("purchase_ts"), field_name="purchase_ts", idx=idx
                    ),
                    delivered_ts=_optional_datetime(
                        record.get("delivered_ts"), field_name="delivered_ts", idx=idx
                    ),
                    estimated_delivery_ts=_optional_datetime(
                        record.get("estimated_delivery_ts"),
                        field_name="estimated_delivery_ts",
                        idx=idx,
                    ),
                )
            )
        return canonical

    def validate_items(
        self, records: Iterable[Mapping[str, Any]]
    ) -> list[OrderItemRecord]:
        canonical: list[OrderItemRecord] = []
        for idx, record in enumerate(records):
            _require(record, self.ITEM_FIELDS, idx)
            canonical.append(
                OrderItemRecord(
                    order_id=str(record["order_id"]),
                    item_id=str(record["item_id"]),
                    product_id=str(record.get("product_id", "")),
                    price=_to_decimal(record["price"], field_name="price", idx=idx),
                    freight_value=_to_decimal(
                        record["freight_value"], field_name="freight_value", idx=idx
                    ),
                )
            )
        return canonical

    def validate_customers(
        self, records: Iterable[Mapping[str, Any]]
    ) -> list[CustomerRecord]:
        canonical: list[CustomerRecord] = []
        for idx, record in enumerate(records):
            _require(record, self.CUSTOMER_FIELDS, idx)
            canonical.append(
                CustomerRecord(
                    customer_id=str(record["customer_id"]),
                    customer_unique_id=str(record["customer_unique_id"]),
                    city=str(record.get("city") or ""),
                    state=str(record.get("state") or ""),
                )
            )
        return canonical
