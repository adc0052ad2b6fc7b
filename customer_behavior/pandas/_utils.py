"""Shared utilities for pandas conversion operations."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import pandas as pd  # type: ignore


def decimal_to_float(value: Optional[Decimal]) -> Optional[float]:
    """Convert Decimal to float for pandas compatibility, keeping None.

    Example:
        >>> decimal_to_float(Decimal("12.50"))
        12.5
        >>> decimal_to_float(None) is None
        True
    """
    if value is None:
        return None
    return float(value)


def to_optional_datetime(value: object) -> Optional[datetime]:
    """Convert a pandas timestamp-like value to datetime, mapping NaT/NaN to None."""
    if value is None or pd.isna(value):
        return None
    return pd.Timestamp(value).to_pydatetime()
