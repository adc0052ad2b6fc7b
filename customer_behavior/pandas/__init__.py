"""Pandas DataFrame adapters for customer behavior analytics components."""

from .records import (
    dataframe_to_orders,
    dataframe_to_items,
    dataframe_to_customers,
    load_orders_csv,
    load_items_csv,
    load_customers_csv,
)
from .segments import (
    segments_to_dataframe,
    segment_summary_to_dataframe,
)
from .retention import (
    retention_matrix_to_dataframe,
    pivot_retention,
    retention_summary_to_dataframe,
)

__all__ = [
    # Input record adapters
    "dataframe_to_orders",
    "dataframe_to_items",
    "dataframe_to_customers",
    "load_orders_csv",
    "load_items_csv",
    "load_customers_csv",
    # Segmentation adapters
    "segments_to_dataframe",
    "segment_summary_to_dataframe",
    # Retention adapters
    "retention_matrix_to_dataframe",
    "pivot_retention",
    "retention_summary_to_dataframe",
]
