"""Integration tests for the segmentation and retention CLI commands.

Tests the complete workflow from Olist-style CSV exports through the CLI
commands to the output CSV files and data quality report.
"""

import argparse
import json
from datetime import datetime

import pandas as pd
import pytest

from customer_behavior.cli import (
    _parse_as_of,
    cohort_retention_cli,
    segment_customers_cli,
)

ORDERS_HEADER = (
    "order_id,customer_id,order_status,order_purchase_timestamp,"
    "order_approved_at,order_delivered_carrier_date,"
    "order_delivered_customer_date,order_estimated_delivery_date\n"
)
ITEMS_HEADER = (
    "order_id,order_item_id,product_id,seller_id,shipping_limit_date,"
    "price,freight_value\n"
)
CUSTOMERS_HEADER = (
    "customer_id,customer_unique_id,customer_zip_code_prefix,"
    "customer_city,customer_state\n"
)


def _write(path, header, rows):
    path.write_text(header + "".join(",".join(row) + "\n" for row in rows))
    return path


@pytest.fixture
def olist_csvs(tmp_path):
    """Create a small Olist-shaped dataset spanning several months."""
    customers = []
    orders = []
    items = []
    order_no = 0

    # 30 customers acquired in January, a third of them come back in April
    for i in range(30):
        account = f"acc{i:03d}"
        person = f"person{i:03d}"
        customers.append([account, person, "14409", "franca", "SP"])
        purchases = ["2018-01-1%d 10:00:00" % (i % 9)]
        if i % 3 == 0:
            purchases.append("2018-04-05 12:00:00")
        for ts in purchases:
            order_no += 1
            order_id = f"ord{order_no:04d}"
            orders.append(
                [order_id, account, "delivered", ts, ts, ts, ts, "2018-06-30 00:00:00"]
            )
            items.append(
                [order_id, "1", f"prod{i % 4}", "seller1", ts, f"{10 + i}.90", "7.50"]
            )

    # One canceled order and one order without items
    customers.append(["acc900", "person900", "01001", "sao paulo", "SP"])
    orders.append(["ord9000", "acc900", "canceled", "2018-02-01 09:00:00", "", "", "", ""])
    items.append(["ord9000", "1", "prod1", "seller1", "", "99.00", "5.00"])
    orders.append(["ord9001", "acc900", "delivered", "2018-02-02 09:00:00", "", "", "", ""])

    return (
        _write(tmp_path / "orders.csv", ORDERS_HEADER, orders),
        _write(tmp_path / "items.csv", ITEMS_HEADER, items),
        _write(tmp_path / "customers.csv", CUSTOMERS_HEADER, customers),
    )


def _args(olist_csvs, output_dir, *extra):
    return [str(p) for p in olist_csvs] + [
        "--as-of",
        "2018-06-01",
        "--output-dir",
        str(output_dir),
        *extra,
    ]


class TestSegmentCustomersCLI:
    """Test segment_customers CLI command."""

    def test_basic_workflow(self, olist_csvs, tmp_path):
        output_dir = tmp_path / "segments"

        exit_code = segment_customers_cli(_args(olist_csvs, output_dir))

        assert exit_code == 0
        df = pd.read_csv(output_dir / "customer_segments.csv")
        assert len(df) == 30
        assert df["customer_unique_id"].is_unique
        assert df["recency_score"].between(1, 5).all()
        assert df["frequency_score"].between(1, 5).all()
        assert df["monetary_score"].between(1, 5).all()
        assert "Cannot Lose Them" not in set(df["segment_label"])

    def test_repeat_buyers_score_top_frequency(self, olist_csvs, tmp_path):
        output_dir = tmp_path / "segments"
        segment_customers_cli(_args(olist_csvs, output_dir))

        df = pd.read_csv(output_dir / "customer_segments.csv")
        repeaters = df[df["frequency_orders"] == 2]
        assert len(repeaters) == 10
        assert (repeaters["frequency_score"] == 5).all()

    def test_summary_and_quality_outputs(self, olist_csvs, tmp_path):
        output_dir = tmp_path / "segments"
        segment_customers_cli(_args(olist_csvs, output_dir))

        summary = pd.read_csv(output_dir / "segment_summary.csv")
        assert summary["customer_count"].sum() == 30
        assert summary["pct_of_customers"].sum() == pytest.approx(100.0, abs=0.1)
        assert summary["marketing_priority"].isin(["HIGH", "MEDIUM", "LOW"]).all()
        assert (output_dir / "rfm_score_distribution.csv").exists()

        report = json.loads((output_dir / "data_quality.json").read_text())
        assert report["non_qualifying_status"] == 1
        assert report["orders_without_items"] == 1
        assert report["qualified_orders"] == 40

    def test_unknown_customer_strict_fails(self, olist_csvs, tmp_path):
        orders_csv = olist_csvs[0]
        with orders_csv.open("a") as fh:
            fh.write("ord9999,ghost,delivered,2018-03-01 00:00:00,,,,\n")

        with pytest.raises(ValueError, match="unknown customer_id"):
            segment_customers_cli(_args(olist_csvs, tmp_path / "out"))

    def test_unknown_customer_skipped_when_permissive(self, olist_csvs, tmp_path):
        orders_csv = olist_csvs[0]
        with orders_csv.open("a") as fh:
            fh.write("ord9999,ghost,delivered,2018-03-01 00:00:00,,,,\n")
        output_dir = tmp_path / "out"

        exit_code = segment_customers_cli(
            _args(olist_csvs, output_dir, "--skip-malformed")
        )

        assert exit_code == 0
        report = json.loads((output_dir / "data_quality.json").read_text())
        assert report["unknown_customer"] == 1

    def test_empty_orders_fail_gracefully(self, olist_csvs, tmp_path):
        _write(olist_csvs[0], ORDERS_HEADER, [])
        _write(olist_csvs[1], ITEMS_HEADER, [])

        exit_code = segment_customers_cli(_args(olist_csvs, tmp_path / "out"))

        assert exit_code != 0

    def test_utc_as_of_matches_naive_as_of(self, olist_csvs, tmp_path):
        naive_dir = tmp_path / "naive"
        utc_dir = tmp_path / "utc"
        segment_customers_cli(_args(olist_csvs, naive_dir))
        args = _args(olist_csvs, utc_dir)
        args[args.index("--as-of") + 1] = "2018-06-01T00:00:00Z"

        exit_code = segment_customers_cli(args)

        assert exit_code == 0
        naive = pd.read_csv(naive_dir / "customer_segments.csv")
        utc = pd.read_csv(utc_dir / "customer_segments.csv")
        assert list(utc["recency_days"]) == list(naive["recency_days"])


class TestParseAsOf:
    """Test --as-of parsing."""

    def test_date_only(self):
        assert _parse_as_of("2018-06-01") == datetime(2018, 6, 1)

    def test_offset_is_converted_to_naive_utc(self):
        parsed = _parse_as_of("2018-06-01T03:00:00+03:00")
        assert parsed == datetime(2018, 6, 1)
        assert parsed.tzinfo is None

    def test_z_suffix(self):
        assert _parse_as_of("2018-06-01T12:30:00Z") == datetime(2018, 6, 1, 12, 30)

    def test_invalid_value_raises_argument_error(self):
        with pytest.raises(argparse.ArgumentTypeError, match="--as-of must be"):
            _parse_as_of("June 1st")


class TestCohortRetentionCLI:
    """Test cohort_retention CLI command."""

    def test_basic_workflow(self, olist_csvs, tmp_path):
        output_dir = tmp_path / "retention"

        exit_code = cohort_retention_cli(
            _args(olist_csvs, output_dir, "--window", "8", "--min-cohort-size", "20")
        )

        assert exit_code == 0
        matrix = pd.read_csv(output_dir / "retention_matrix.csv")
        assert len(matrix) == 8
        assert list(matrix["period_number"]) == list(range(8))

        pct = pd.read_csv(output_dir / "retention_pct.csv", index_col="cohort_month")
        assert pct.loc["2018-01", "month_0"] == pytest.approx(100.0)
        assert pct.loc["2018-01", "month_3"] == pytest.approx(33.33)
        # June is the as-of month; July onwards is unobserved
        assert pct.loc["2018-01", "month_5"] == pytest.approx(0.0)
        assert pd.isna(pct.loc["2018-01", "month_6"])

        summary = pd.read_csv(output_dir / "retention_summary.csv")
        assert summary.loc[3, "avg_retention_pct"] == pytest.approx(33.33)
        assert summary.loc[3, "cohorts_included"] == 1

    def test_cohort_rankings(self, olist_csvs, tmp_path):
        output_dir = tmp_path / "retention"

        cohort_retention_cli(_args(olist_csvs, output_dir, "--window", "6"))

        rankings = pd.read_csv(output_dir / "cohort_rankings.csv")
        assert list(rankings["performance_type"]) == ["BEST PERFORMING", "WORST PERFORMING"]
        assert (rankings["cohort_size"] == 30).all()
        assert "month_3_retention_pct" in rankings.columns

    def test_revenue_pivot_written(self, olist_csvs, tmp_path):
        output_dir = tmp_path / "retention"

        cohort_retention_cli(_args(olist_csvs, output_dir, "--window", "6"))

        revenue = pd.read_csv(output_dir / "retention_revenue.csv", index_col="cohort_month")
        counts = pd.read_csv(output_dir / "retention_counts.csv", index_col="cohort_month")
        assert counts.loc["2018-01", "month_3"] == 10
        assert revenue.loc["2018-01", "month_3"] > 0
