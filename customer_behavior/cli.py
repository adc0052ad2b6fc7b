"""Command line entry points for the customer behavior analytics toolkit."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd  # type: ignore

from customer_behavior.analyses.segment_report import (
    rfm_score_distribution,
    summarize_segments,
    top_customers_by_segment,
)
from customer_behavior.foundation.config import (
    DEFAULT_MIN_COHORT_SIZE,
    DEFAULT_QUALIFYING_STATUSES,
    DEFAULT_RETENTION_WINDOW,
    AnalyticsConfig,
)
from customer_behavior.foundation.orders import QualifiedOrders
from customer_behavior.foundation.segments import segment_playbook
from customer_behavior.pandas import (
    load_customers_csv,
    load_items_csv,
    load_orders_csv,
    pivot_retention,
    retention_matrix_to_dataframe,
    retention_summary_to_dataframe,
    segment_summary_to_dataframe,
    segments_to_dataframe,
)
from customer_behavior.pandas._utils import decimal_to_float
from customer_behavior.pipeline import prepare_orders, run_retention, run_segmentation

logger = logging.getLogger(__name__)


MAX_INPUT_BYTES = 512 * 1024 * 1024  # 512 MiB cap per input file to avoid accidental OOM

RFM_DISTRIBUTION_COLUMNS = [
    "rfm_score",
    "customer_count",
    "avg_revenue_per_customer",
    "total_revenue",
]

RANKING_COLUMNS = [
    "performance_type",
    "cohort_month",
    "cohort_size",
    "month_1_retention_pct",
    "retention_pct",
]


def _check_size(path: Path) -> Path:
    resolved = path.resolve()
    size = resolved.stat().st_size
    if size > MAX_INPUT_BYTES:
        raise ValueError(
            f"Input file {resolved} is {size} bytes; exceeds limit of {MAX_INPUT_BYTES} bytes"
        )
    return resolved


def _parse_as_of(value: str) -> datetime:
    """Parse ``--as-of`` into a naive UTC datetime.

    Order timestamps are loaded naive, so an offset or ``Z`` suffix is
    converted to UTC and then dropped.
    """
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"--as-of must be an ISO date or datetime, got {value!r}"
        ) from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("orders", type=Path, help="Path to orders CSV")
    parser.add_argument("items", type=Path, help="Path to order items CSV")
    parser.add_argument("customers", type=Path, help="Path to customers CSV")
    parser.add_argument(
        "--as-of",
        type=_parse_as_of,
        required=True,
        help="Reference date for recency (ISO format: YYYY-MM-DD[THH:MM:SS])",
    )
    parser.add_argument(
        "--status",
        dest="statuses",
        action="append",
        help=(
            "Qualifying order status; repeat for several "
            f"(default: {', '.join(sorted(DEFAULT_QUALIFYING_STATUSES))})"
        ),
    )
    parser.add_argument(
        "--skip-malformed",
        action="store_true",
        help="Skip and count rows with unknown order/customer keys instead of failing",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        required=True,
        help="Directory for output CSV files",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        level=getattr(logging, level),
    )


def _load_and_qualify(args: argparse.Namespace, config: AnalyticsConfig) -> QualifiedOrders:
    logger.info(f"Loading orders from {args.orders}")
    orders = load_orders_csv(_check_size(args.orders))
    logger.info(f"Loading order items from {args.items}")
    items = load_items_csv(_check_size(args.items))
    logger.info(f"Loading customers from {args.customers}")
    customers = load_customers_csv(_check_size(args.customers))
    logger.info(
        f"Loaded {len(orders)} orders, {len(items)} items, {len(customers)} customers"
    )
    return prepare_orders(orders, items, customers, config)


def _write_quality_report(qualified: QualifiedOrders, output_dir: Path) -> None:
    path = output_dir / "data_quality.json"
    with path.open("w", encoding="utf-8") as fh:
        json.dump(qualified.report.as_dict(), fh, indent=2, sort_keys=True)
    logger.info(f"Data quality report exported to {path}")


def segment_customers_cli(argv: list[str] | None = None) -> int:
    """Compute RFM scores and segments and export them to CSV.

    Writes ``customer_segments.csv`` (one row per customer),
    ``segment_summary.csv`` (distribution plus recommended actions),
    ``rfm_score_distribution.csv`` and ``top_customers.csv`` into the
    output directory, together with ``data_quality.json``.

    Returns
    -------
    int
        Exit code (0 for success, non-zero for error)
    """
    parser = argparse.ArgumentParser(
        description="Segment customers by Recency, Frequency and Monetary value"
    )
    _add_common_arguments(parser)
    parser.add_argument(
        "--top-n",
        type=int,
        default=3,
        help="Customers listed per key segment in top_customers.csv (default: 3)",
    )
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    config = AnalyticsConfig(
        as_of=args.as_of,
        qualifying_statuses=frozenset(args.statuses or DEFAULT_QUALIFYING_STATUSES),
        strict=not args.skip_malformed,
    )
    qualified = _load_and_qualify(args, config)

    result = run_segmentation(qualified, config)
    if not result.segments:
        logger.error("No customers with qualifying orders found")
        return 1

    output_dir = args.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)

    segments_to_dataframe(result.segments).to_csv(
        output_dir / "customer_segments.csv", index=False
    )

    summaries = summarize_segments(result.segments)
    segment_summary_to_dataframe(summaries).to_csv(
        output_dir / "segment_summary.csv", index=False
    )

    combos = rfm_score_distribution(result.segments)
    pd.DataFrame(
        [
            {
                "rfm_score": combo.rfm_score,
                "customer_count": combo.customer_count,
                "avg_revenue_per_customer": float(combo.avg_revenue_per_customer),
                "total_revenue": float(combo.total_revenue),
            }
            for combo in combos
        ],
        columns=RFM_DISTRIBUTION_COLUMNS,
    ).to_csv(output_dir / "rfm_score_distribution.csv", index=False)

    # segments_to_dataframe sorts by id, so rank within segment is added per group
    top = top_customers_by_segment(result.segments, top_n=args.top_n)
    top_frames = []
    for members in top.values():
        frame = segments_to_dataframe(members)
        order = {m.score.customer_unique_id: rank for rank, m in enumerate(members, 1)}
        frame["rank_in_segment"] = frame["customer_unique_id"].map(order)
        top_frames.append(frame.sort_values("rank_in_segment"))
    if top_frames:
        pd.concat(top_frames, ignore_index=True).to_csv(
            output_dir / "top_customers.csv", index=False
        )

    _write_quality_report(qualified, output_dir)

    for entry in segment_playbook(s.segment for s in summaries):
        logger.info(
            f"[{entry.marketing_priority}] {entry.segment.value}: {entry.recommended_action}"
        )
    logger.info(
        f"Segmented {len(result.segments)} customers into {len(summaries)} segments; "
        f"outputs written to {output_dir}"
    )
    return 0


def cohort_retention_cli(argv: list[str] | None = None) -> int:
    """Build the cohort retention matrix and export it to CSV.

    Writes ``retention_matrix.csv`` (long format), ``retention_pct.csv``,
    ``retention_counts.csv`` and ``retention_revenue.csv`` (cohort x period
    pivots), ``retention_summary.csv`` (cross-cohort averages) and
    ``cohort_rankings.csv`` into the output directory, together with
    ``data_quality.json``.

    Returns
    -------
    int
        Exit code (0 for success, non-zero for error)
    """
    parser = argparse.ArgumentParser(
        description="Cohort retention analysis by first-purchase month"
    )
    _add_common_arguments(parser)
    parser.add_argument(
        "--window",
        type=int,
        default=DEFAULT_RETENTION_WINDOW,
        help=f"Periods tracked per cohort (default: {DEFAULT_RETENTION_WINDOW})",
    )
    parser.add_argument(
        "--min-cohort-size",
        type=int,
        default=DEFAULT_MIN_COHORT_SIZE,
        help=(
            "Minimum cohort size for cross-cohort averages "
            f"(default: {DEFAULT_MIN_COHORT_SIZE})"
        ),
    )
    parser.add_argument(
        "--ranking-period",
        type=int,
        default=3,
        help="Period whose retention ranks cohorts (default: 3)",
    )
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    config = AnalyticsConfig(
        as_of=args.as_of,
        qualifying_statuses=frozenset(args.statuses or DEFAULT_QUALIFYING_STATUSES),
        retention_window_periods=args.window,
        min_cohort_size=args.min_cohort_size,
        strict=not args.skip_malformed,
        ranking_period=args.ranking_period,
    )
    qualified = _load_and_qualify(args, config)

    result = run_retention(qualified, config)
    if not result.matrix.cells:
        logger.error("No cohorts found in qualifying orders")
        return 1

    output_dir = args.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)

    retention_matrix_to_dataframe(result.matrix).to_csv(
        output_dir / "retention_matrix.csv", index=False
    )
    for value, name in (
        ("pct_of_cohort", "retention_pct.csv"),
        ("active_customers", "retention_counts.csv"),
        ("revenue", "retention_revenue.csv"),
    ):
        pivot_retention(result.matrix, value).to_csv(output_dir / name)
    retention_summary_to_dataframe(result.summary).to_csv(
        output_dir / "retention_summary.csv", index=False
    )

    ranking_rows = [
        {
            "performance_type": label,
            "cohort_month": str(ranking.cohort_month),
            "cohort_size": ranking.cohort_size,
            "month_1_retention_pct": decimal_to_float(ranking.month_1_retention_pct),
            "retention_pct": decimal_to_float(ranking.retention_pct),
        }
        for label, rankings in (
            ("BEST PERFORMING", result.best_cohorts),
            ("WORST PERFORMING", result.worst_cohorts),
        )
        for ranking in rankings
    ]
    pd.DataFrame(ranking_rows, columns=RANKING_COLUMNS).rename(
        columns={"retention_pct": f"month_{config.ranking_period}_retention_pct"}
    ).to_csv(output_dir / "cohort_rankings.csv", index=False)

    _write_quality_report(qualified, output_dir)

    overview = result.overview
    logger.info(
        f"{overview.total_cohorts} cohorts ({overview.earliest_cohort} to "
        f"{overview.latest_cohort}), {overview.total_customers} customers, "
        f"average cohort size {overview.avg_cohort_size}"
    )
    for row in result.summary[1:]:
        if row.avg_retention_pct is not None:
            logger.info(
                f"Month {row.period_number}: average retention {row.avg_retention_pct}% "
                f"across {row.cohorts_included} cohorts"
            )
    logger.info(f"Outputs written to {output_dir}")
    return 0


def segments_main() -> None:
    raise SystemExit(segment_customers_cli())


def retention_main() -> None:
    raise SystemExit(cohort_retention_cli())


def main() -> None:
    """Dispatch ``segments`` / ``retention`` subcommands for ``python -m`` use."""
    commands = {"segments": segment_customers_cli, "retention": cohort_retention_cli}
    if len(sys.argv) < 2 or sys.argv[1] not in commands:
        print(f"usage: {sys.argv[0]} {{{','.join(commands)}}} ...", file=sys.stderr)
        raise SystemExit(2)
    raise SystemExit(commands[sys.argv[1]](sys.argv[2:]))


if __name__ == "__main__":  # pragma: no cover
    main()
