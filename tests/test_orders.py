"""Tests for the shared order qualification stage."""

import logging
from datetime import datetime
from decimal import Decimal

import pytest

from customer_behavior.foundation.orders import (
    DataQualityReport,
    QualifiedOrder,
    qualify_orders,
    reject_future_purchases,
)
from customer_behavior.foundation.records import (
    CustomerRecord,
    OrderItemRecord,
    OrderRecord,
)

STATUSES = {"delivered", "shipped"}


def _item(order_id, item_id="1", price="10.00", freight="2.00"):
    return OrderItemRecord(order_id, item_id, "P", Decimal(price), Decimal(freight))


@pytest.fixture
def customers():
    """Two accounts belonging to the same person plus one other person."""
    return [
        CustomerRecord("A1", "U1", "sao paulo", "SP"),
        CustomerRecord("A2", "U1", "campinas", "SP"),
        CustomerRecord("A3", "U2", "rio de janeiro", "RJ"),
    ]


class TestQualifiedOrder:
    """Test QualifiedOrder validation."""

    def test_zero_items_raises_error(self):
        with pytest.raises(ValueError, match="at least one item"):
            QualifiedOrder("O1", "U1", datetime(2018, 1, 1), Decimal("0"), 0)

    def test_negative_value_raises_error(self):
        with pytest.raises(ValueError, match="Order value cannot be negative"):
            QualifiedOrder("O1", "U1", datetime(2018, 1, 1), Decimal("-1"), 1)


class TestQualifyOrders:
    """Test qualify_orders filtering and joining."""

    def test_order_value_sums_price_and_freight(self, customers):
        orders = [OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5))]
        items = [_item("O1", "1", "10.00", "2.50"), _item("O1", "2", "5.00", "1.25")]

        result = qualify_orders(orders, items, customers, STATUSES)

        assert len(result) == 1
        order = result.orders[0]
        assert order.order_value == Decimal("18.75")
        assert order.item_count == 2
        assert order.customer_unique_id == "U1"
        assert (order.city, order.state) == ("sao paulo", "SP")

    def test_accounts_resolve_to_same_person(self, customers):
        """Orders from different customer_id values of one person share the key."""
        orders = [
            OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5)),
            OrderRecord("O2", "A2", "shipped", datetime(2018, 2, 5)),
        ]
        items = [_item("O1"), _item("O2")]

        result = qualify_orders(orders, items, customers, STATUSES)

        assert {o.customer_unique_id for o in result} == {"U1"}
        assert [o.order_id for o in result] == ["O1", "O2"]

    def test_status_match_is_case_insensitive(self, customers):
        orders = [OrderRecord("O1", "A1", "DELIVERED", datetime(2018, 1, 5))]
        result = qualify_orders(orders, [_item("O1")], customers, {"Delivered"})
        assert len(result) == 1

    def test_non_qualifying_statuses_are_counted(self, customers):
        orders = [
            OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5)),
            OrderRecord("O2", "A1", "canceled", datetime(2018, 1, 6)),
            OrderRecord("O3", "A3", "unavailable", datetime(2018, 1, 7)),
        ]
        items = [_item("O1"), _item("O2"), _item("O3")]

        result = qualify_orders(orders, items, customers, STATUSES)

        assert [o.order_id for o in result] == ["O1"]
        assert result.report.non_qualifying_status == 2
        assert result.report.samples["non_qualifying_status"] == ("O2", "O3")

    def test_missing_purchase_timestamp_excluded(self, customers):
        orders = [OrderRecord("O1", "A1", "delivered", None)]
        result = qualify_orders(orders, [_item("O1")], customers, STATUSES)
        assert len(result) == 0
        assert result.report.missing_purchase_ts == 1

    def test_orders_without_items_excluded(self, customers):
        """Items are mandatory for frequency, monetary and cohort assignment."""
        orders = [
            OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5)),
            OrderRecord("O2", "A3", "delivered", datetime(2018, 1, 6)),
        ]
        result = qualify_orders(orders, [_item("O1")], customers, STATUSES)

        assert [o.order_id for o in result] == ["O1"]
        assert result.report.orders_without_items == 1

    def test_duplicate_order_id_raises_error(self, customers):
        orders = [
            OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5)),
            OrderRecord("O1", "A3", "delivered", datetime(2018, 1, 6)),
        ]
        with pytest.raises(ValueError, match="Duplicate order_id values detected"):
            qualify_orders(orders, [_item("O1")], customers, STATUSES)

    def test_duplicate_customer_id_raises_error(self):
        customers = [CustomerRecord("A1", "U1"), CustomerRecord("A1", "U2")]
        with pytest.raises(ValueError, match="Duplicate customer_id values detected"):
            qualify_orders([], [], customers, STATUSES)

    def test_strict_orphan_item_raises_error(self, customers):
        orders = [OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5))]
        items = [_item("O1"), _item("O404", "7")]
        with pytest.raises(ValueError, match="unknown order_id.*order_id=O404, item_id=7"):
            qualify_orders(orders, items, customers, STATUSES)

    def test_strict_unknown_customer_raises_error(self, customers):
        orders = [OrderRecord("O1", "A404", "delivered", datetime(2018, 1, 5))]
        with pytest.raises(ValueError, match="unknown customer_id.*customer_id=A404"):
            qualify_orders(orders, [_item("O1")], customers, STATUSES)

    def test_permissive_mode_skips_and_counts(self, customers, caplog):
        """Malformed keys are skipped, counted and logged when strict=False."""
        orders = [
            OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5)),
            OrderRecord("O2", "A404", "delivered", datetime(2018, 1, 6)),
        ]
        items = [_item("O1"), _item("O2"), _item("O404")]

        with caplog.at_level(logging.WARNING):
            result = qualify_orders(orders, items, customers, STATUSES, strict=False)

        assert [o.order_id for o in result] == ["O1"]
        assert result.report.unknown_customer == 1
        assert result.report.orphan_items == 1
        assert result.report.skipped_malformed == 2
        assert "Skipped malformed rows" in caplog.text

    def test_output_sorted_by_customer_then_time(self, customers):
        orders = [
            OrderRecord("O3", "A3", "delivered", datetime(2018, 1, 1)),
            OrderRecord("O2", "A1", "delivered", datetime(2018, 3, 1)),
            OrderRecord("O1", "A2", "delivered", datetime(2018, 2, 1)),
        ]
        items = [_item("O1"), _item("O2"), _item("O3")]

        result = qualify_orders(orders, items, customers, STATUSES)

        assert [o.order_id for o in result] == ["O1", "O2", "O3"]

    def test_report_totals(self, customers):
        orders = [
            OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5)),
            OrderRecord("O2", "A1", "canceled", datetime(2018, 1, 6)),
        ]
        result = qualify_orders(orders, [_item("O1")], customers, STATUSES)

        assert result.report.total_orders == 2
        assert result.report.qualified_orders == 1

    def test_purchase_after_as_of_raises_error(self, customers):
        orders = [
            OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5)),
            OrderRecord("O2", "A3", "delivered", datetime(2018, 5, 2)),
        ]
        items = [_item("O1"), _item("O2")]

        with pytest.raises(ValueError, match="cannot be after as_of.*order_id=O2"):
            qualify_orders(
                orders, items, customers, STATUSES, as_of=datetime(2018, 3, 1)
            )

    def test_future_purchase_check_ignores_excluded_orders(self, customers):
        """Only qualified orders are checked against as_of."""
        orders = [
            OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 5)),
            OrderRecord("O2", "A3", "canceled", datetime(2018, 5, 2)),
        ]
        items = [_item("O1"), _item("O2")]

        result = qualify_orders(
            orders, items, customers, STATUSES, as_of=datetime(2018, 3, 1)
        )

        assert [o.order_id for o in result] == ["O1"]


class TestRejectFuturePurchases:
    """Test reject_future_purchases."""

    def test_purchase_at_as_of_is_accepted(self):
        as_of = datetime(2018, 3, 1, 12)
        orders = [QualifiedOrder("O1", "U1", as_of, Decimal("1"), 1)]
        reject_future_purchases(orders, as_of)

    def test_error_names_order_and_customer(self):
        orders = [QualifiedOrder("O9", "U7", datetime(2018, 3, 2), Decimal("1"), 1)]
        with pytest.raises(ValueError, match="order_id=O9, customer_unique_id=U7"):
            reject_future_purchases(orders, datetime(2018, 3, 1))


class TestDataQualityReport:
    """Test DataQualityReport serialisation."""

    def test_as_dict_is_json_friendly(self):
        report = DataQualityReport(
            total_orders=3,
            qualified_orders=1,
            unknown_customer=2,
            samples={"unknown_customer": ("O2", "O3")},
        )
        payload = report.as_dict()
        assert payload["unknown_customer"] == 2
        assert payload["samples"] == {"unknown_customer": ["O2", "O3"]}
        assert report.skipped_malformed == 2
