"""Pandas DataFrame adapters for the input record tables.

Column names default to the public Olist e-commerce dataset layout
(``olist_orders_dataset.csv``, ``olist_order_items_dataset.csv``,
``olist_customers_dataset.csv``) and can be remapped per call.
"""

from pathlib import Path
from typing import List, Union

import pandas as pd  # type: ignore

from customer_behavior.foundation.records import (
    CustomerRecord,
    OrderItemRecord,
    OrderRecord,
    RecordContract,
)
from ._utils import to_optional_datetime

PathLike = Union[str, Path]


def _check_columns(df: pd.DataFrame, required: List[str]) -> None:
    missing_cols = set(required) - set(df.columns)
    if missing_cols:
        raise ValueError(f"DataFrame missing required columns: {sorted(missing_cols)}")


def _check_not_null(df: pd.DataFrame, cols: List[str], label: str) -> None:
    null_cols = df[cols].isnull().any()
    if null_cols.any():
        null_col_names = null_cols[null_cols].index.tolist()
        raise ValueError(
            f"Null/NaN values found in columns: {null_col_names}. "
            f"{label} require complete key data."
        )


def dataframe_to_orders(
    orders_df: pd.DataFrame,
    order_id_col: str = "order_id",
    customer_id_col: str = "customer_id",
    status_col: str = "order_status",
    purchase_ts_col: str = "order_purchase_timestamp",
    delivered_ts_col: str = "order_delivered_customer_date",
    estimated_delivery_ts_col: str = "order_estimated_delivery_date",
) -> List[OrderRecord]:
    """Convert an orders DataFrame to OrderRecord list.

    Timestamp columns may hold strings or datetimes; missing values become
    None. The delivery columns are optional.

    Raises:
        ValueError: If key columns are missing or contain nulls
    """
    _check_columns(orders_df, [order_id_col, customer_id_col, status_col, purchase_ts_col])
    if orders_df.empty:
        return []
    _check_not_null(orders_df, [order_id_col, customer_id_col, status_col], "Orders")

    purchase = pd.to_datetime(orders_df[purchase_ts_col], errors="raise")
    optional_ts = {}
    for key, col in (
        ("delivered_ts", delivered_ts_col),
        ("estimated_delivery_ts", estimated_delivery_ts_col),
    ):
        if col in orders_df.columns:
            optional_ts[key] = pd.to_datetime(orders_df[col], errors="raise")

    rows = []
    for position, record in enumerate(orders_df.to_dict("records")):
        row = {
            "order_id": record[order_id_col],
            "customer_id": record[customer_id_col],
            "status": record[status_col],
            "purchase_ts": to_optional_datetime(purchase.iloc[position]),
        }
        for key, series in optional_ts.items():
            row[key] = to_optional_datetime(series.iloc[position])
        rows.append(row)

    return RecordContract().validate_orders(rows)


def dataframe_to_items(
    items_df: pd.DataFrame,
    order_id_col: str = "order_id",
    item_id_col: str = "order_item_id",
    product_id_col: str = "product_id",
    price_col: str = "price",
    freight_value_col: str = "freight_value",
) -> List[OrderItemRecord]:
    """Convert an order items DataFrame to OrderItemRecord list.

    Raises:
        ValueError: If columns are missing, contain nulls or hold negative amounts
    """
    required = [order_id_col, item_id_col, price_col, freight_value_col]
    _check_columns(items_df, required)
    if items_df.empty:
        return []
    _check_not_null(items_df, required, "Order items")

    rows = [
        {
            "order_id": record[order_id_col],
            "item_id": record[item_id_col],
            "product_id": record.get(product_id_col)
            if pd.notna(record.get(product_id_col))
            else "",
            "price": record[price_col],
            "freight_value": record[freight_value_col],
        }
        for record in items_df.to_dict("records")
    ]
    return RecordContract().validate_items(rows)


def dataframe_to_customers(
    customers_df: pd.DataFrame,
    customer_id_col: str = "customer_id",
    customer_unique_id_col: str = "customer_unique_id",
    city_col: str = "customer_city",
    state_col: str = "customer_state",
) -> List[CustomerRecord]:
    """Convert a customers DataFrame to CustomerRecord list.

    Raises:
        ValueError: If key columns are missing or contain nulls
    """
    required = [customer_id_col, customer_unique_id_col]
    _check_columns(customers_df, required)
    if customers_df.empty:
        return []
    _check_not_null(customers_df, required, "Customers")

    rows = [
        {
            "customer_id": record[customer_id_col],
            "customer_unique_id": record[customer_unique_id_col],
            "city": record.get(city_col) if pd.notna(record.get(city_col)) else "",
            "state": record.get(state_col) if pd.notna(record.get(state_col)) else "",
        }
        for record in customers_df.to_dict("records")
    ]
    return RecordContract().validate_customers(rows)


def load_orders_csv(path: PathLike, **column_map: str) -> List[OrderRecord]:
    """Read an orders CSV and convert it to records."""
    df = pd.read_csv(path, dtype=str, keep_default_na=True)
    return dataframe_to_orders(df, **column_map)


def load_items_csv(path: PathLike, **column_map: str) -> List[OrderItemRecord]:
    """Read an order items CSV and convert it to records.

    Prices are read as strings so that Decimal conversion is exact.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=True)
    return dataframe_to_items(df, **column_map)


def load_customers_csv(path: PathLike, **column_map: str) -> List[CustomerRecord]:
    """Read a customers CSV and convert it to records."""
    df = pd.read_csv(path, dtype=str, keep_default_na=True)
    return dataframe_to_customers(df, **column_map)
