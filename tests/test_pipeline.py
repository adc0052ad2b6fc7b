"""End-to-end tests for the segmentation and retention runs."""

from datetime import datetime
from decimal import Decimal

import pytest

from customer_behavior.foundation.cohorts import CohortMonth
from customer_behavior.foundation.config import AnalyticsConfig
from customer_behavior.foundation.orders import qualify_orders
from customer_behavior.foundation.records import (
    CustomerRecord,
    OrderItemRecord,
    OrderRecord,
)
from customer_behavior.foundation.segments import Segment
from customer_behavior.pipeline import prepare_orders, run_retention, run_segmentation

AS_OF = datetime(2018, 6, 1)


@pytest.fixture
def records():
    """Small marketplace: one loyal repeat buyer, one lapsed buyer, one newcomer."""
    customers = [
        CustomerRecord("A1", "LOYAL", "sao paulo", "SP"),
        CustomerRecord("A2", "LOYAL", "santos", "SP"),
        CustomerRecord("A3", "LAPSED", "curitiba", "PR"),
        CustomerRecord("A4", "NEW", "recife", "PE"),
    ]
    orders = [
        OrderRecord("O1", "A1", "delivered", datetime(2018, 1, 10)),
        OrderRecord("O2", "A2", "delivered", datetime(2018, 2, 12)),
        OrderRecord("O3", "A1", "shipped", datetime(2018, 5, 20)),
        OrderRecord("O4", "A3", "delivered", datetime(2018, 1, 3)),
        OrderRecord("O5", "A3", "canceled", datetime(2018, 5, 1)),
        OrderRecord("O6", "A4", "delivered", datetime(2018, 5, 28)),
        OrderRecord("O7", "A4", "delivered", None),
    ]
    items = [
        OrderItemRecord("O1", "1", "P1", Decimal("100.00"), Decimal("10.00")),
        OrderItemRecord("O2", "1", "P2", Decimal("80.00"), Decimal("5.00")),
        OrderItemRecord("O3", "1", "P1", Decimal("120.00"), Decimal("12.00")),
        OrderItemRecord("O3", "2", "P3", Decimal("30.00"), Decimal("0.00")),
        OrderItemRecord("O4", "1", "P4", Decimal("20.00"), Decimal("4.50")),
        OrderItemRecord("O5", "1", "P4", Decimal("500.00"), Decimal("0.00")),
        OrderItemRecord("O6", "1", "P5", Decimal("15.00"), Decimal("3.00")),
    ]
    return orders, items, customers


class TestAnalyticsConfig:
    """Test AnalyticsConfig validation."""

    def test_statuses_are_normalised(self):
        config = AnalyticsConfig(as_of=AS_OF, qualifying_statuses=frozenset({" Delivered "}))
        assert config.qualifying_statuses == frozenset({"delivered"})

    def test_defaults(self):
        config = AnalyticsConfig(as_of=AS_OF)
        assert config.qualifying_statuses == frozenset({"delivered", "shipped"})
        assert config.retention_window_periods == 12
        assert config.min_cohort_size == 20
        assert config.strict is True

    def test_as_of_must_be_datetime(self):
        with pytest.raises(TypeError, match="as_of must be a datetime"):
            AnalyticsConfig(as_of="2018-06-01")

    def test_empty_statuses_raise_error(self):
        with pytest.raises(ValueError, match="qualifying_statuses cannot be empty"):
            AnalyticsConfig(as_of=AS_OF, qualifying_statuses=frozenset())

    def test_ranking_period_outside_window_raises_error(self):
        with pytest.raises(ValueError, match="ranking_period must be within"):
            AnalyticsConfig(as_of=AS_OF, retention_window_periods=3, ranking_period=3)


class TestRunSegmentation:
    """Test run_segmentation."""

    def test_segments_every_qualifying_person_once(self, records):
        config = AnalyticsConfig(as_of=AS_OF)
        qualified = prepare_orders(*records, config)

        result = run_segmentation(qualified, config)

        ids = [s.customer_unique_id for s in result.segments]
        assert ids == ["LAPSED", "LOYAL", "NEW"]

    def test_metrics_merge_accounts_of_one_person(self, records):
        config = AnalyticsConfig(as_of=AS_OF)
        result = run_segmentation(prepare_orders(*records, config), config)

        loyal = next(m for m in result.metrics if m.customer_unique_id == "LOYAL")
        assert loyal.frequency_orders == 3
        assert loyal.monetary_total == Decimal("357.00")
        assert loyal.avg_order_value == Decimal("119.00")
        assert loyal.recency_days == 12
        assert loyal.city == "sao paulo"

    def test_canceled_order_does_not_count(self, records):
        config = AnalyticsConfig(as_of=AS_OF)
        result = run_segmentation(prepare_orders(*records, config), config)

        lapsed = next(m for m in result.metrics if m.customer_unique_id == "LAPSED")
        assert lapsed.frequency_orders == 1
        assert lapsed.monetary_total == Decimal("24.50")
        assert result.report.non_qualifying_status == 1
        assert result.report.missing_purchase_ts == 1

    def test_scores_follow_population(self, records):
        config = AnalyticsConfig(as_of=AS_OF)
        result = run_segmentation(prepare_orders(*records, config), config)

        by_id = {s.customer_unique_id: s for s in result.segments}
        assert by_id["LOYAL"].score.frequency_score == 5
        assert by_id["LOYAL"].score.monetary_score == 5
        assert by_id["LAPSED"].score.recency_score == 1
        # single-order ties put F=3 at the P40 breakpoint
        assert by_id["LAPSED"].segment is Segment.AT_RISK

    def test_empty_input(self):
        config = AnalyticsConfig(as_of=AS_OF)
        result = run_segmentation(prepare_orders([], [], [], config), config)
        assert result.segments == ()
        assert result.breakpoints is None


class TestRunRetention:
    """Test run_retention."""

    def test_matrix_from_shared_qualification(self, records):
        config = AnalyticsConfig(
            as_of=AS_OF, retention_window_periods=6, min_cohort_size=1
        )
        result = run_retention(prepare_orders(*records, config), config)

        jan = CohortMonth(2018, 1)
        may = CohortMonth(2018, 5)
        assert result.matrix.cohort_months == [jan, may]
        assert result.matrix.cohort_size(jan) == 2
        assert result.matrix.cell(jan, 1).active_customers == 1
        assert result.matrix.cell(jan, 1).pct_of_cohort == Decimal("50.00")
        assert result.matrix.cell(jan, 4).active_customers == 1
        assert result.matrix.cell(jan, 4).revenue == Decimal("162.00")

    def test_observation_end_is_as_of_month(self, records):
        config = AnalyticsConfig(
            as_of=AS_OF, retention_window_periods=6, min_cohort_size=1
        )
        result = run_retention(prepare_orders(*records, config), config)

        assert result.matrix.observation_end == CohortMonth(2018, 6)
        may_cells = result.matrix.cohort_cells(CohortMonth(2018, 5))
        assert [c.observed for c in may_cells] == [True, True, False, False, False, False]

    def test_summary_and_overview(self, records):
        config = AnalyticsConfig(
            as_of=AS_OF, retention_window_periods=6, min_cohort_size=2
        )
        result = run_retention(prepare_orders(*records, config), config)

        assert result.summary[1].avg_retention_pct == Decimal("50.00")
        assert result.summary[1].cohorts_included == 1
        assert result.overview.total_customers == 3
        assert result.best_cohorts == ()

    def test_period_numbers_never_negative(self, records):
        config = AnalyticsConfig(as_of=AS_OF)
        result = run_retention(prepare_orders(*records, config), config)
        assert all(a.period_number >= 0 for a in result.activity)


class TestFuturePurchases:
    """Both runs reject purchases after as_of the same way."""

    EARLY_AS_OF = datetime(2018, 3, 1)

    def test_prepare_orders_rejects_future_purchase(self, records):
        config = AnalyticsConfig(as_of=self.EARLY_AS_OF)
        with pytest.raises(ValueError, match="cannot be after as_of.*order_id=O3"):
            prepare_orders(*records, config)

    def test_run_segmentation_rejects_future_purchase(self, records):
        qualified = qualify_orders(*records, qualifying_statuses={"delivered", "shipped"})
        config = AnalyticsConfig(as_of=self.EARLY_AS_OF)
        with pytest.raises(ValueError, match="cannot be after as_of"):
            run_segmentation(qualified, config)

    def test_run_retention_rejects_future_purchase(self, records):
        qualified = qualify_orders(*records, qualifying_statuses={"delivered", "shipped"})
        config = AnalyticsConfig(
            as_of=self.EARLY_AS_OF, retention_window_periods=6, min_cohort_size=1
        )
        with pytest.raises(ValueError, match="cannot be after as_of"):
            run_retention(qualified, config)
