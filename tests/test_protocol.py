"""End-to-end checks of the executeQuery -> createChart protocol on real DuckDB datasets."""
import pytest

from queryviz.api.charts import chart_source, create_chart
from queryviz.api.query_sql import RETRY_NOTE, execute_query
from queryviz.core.errors import (
    AggregationIneligible, ArtifactUnavailable, ChartTypeMismatch, DatasetNotFound,
    ExecutionFailed, ExecutionTimeout, FieldNotFound, GuardRejected, VolumeExceeded,
)
from queryviz.core.config import settings
from queryviz.core.schemas import ChartRequest
from queryviz.infra.meta import get_chart_artifact, get_query_artifact, loads


def _chart(dataset, artifact_id, chart_type, x, y, color=None):
    req = ChartRequest(artifact_id=artifact_id, chart_type=chart_type, x_field=x, y_field=y, color_field=color)
    return create_chart(dataset.dataset_id, req)


def test_query_stores_full_result_and_returns_preview(sales_dataset):
    res = execute_query(sales_dataset.dataset_id, f"SELECT region, revenue FROM {sales_dataset.table_name}")
    assert res.success
    assert res.row_count == 200
    assert len(res.preview) == 5
    assert res.column_order == ["region", "revenue"]

    stored = get_query_artifact(res.artifact_id)
    assert stored.status == "success"
    assert stored.sql_text.endswith("LIMIT 1500")
    assert len(loads(stored.sample)) == 200


def test_query_is_capped_at_exploratory_limit(distribution_dataset):
    res = execute_query(distribution_dataset.dataset_id, f"SELECT * FROM {distribution_dataset.table_name}")
    assert res.row_count == 1500


def test_values_are_normalized(sales_dataset):
    res = execute_query(
        sales_dataset.dataset_id,
        f"SELECT sale_date, CAST(revenue AS DECIMAL(10, 2)) AS amount, "
        f"CAST('nan' AS DOUBLE) AS bad FROM {sales_dataset.table_name} ORDER BY sale_date LIMIT 1",
    )
    row = res.preview[0]
    assert row["sale_date"] == "2024-01-01"
    assert isinstance(row["amount"], float)
    assert row["bad"] is None


def test_guard_rejection_is_persisted_as_failed(sales_dataset):
    with pytest.raises(GuardRejected) as exc:
        execute_query(sales_dataset.dataset_id, f"DELETE FROM {sales_dataset.table_name}")
    details = exc.value.details
    assert details["note"] == RETRY_NOTE
    failed = get_query_artifact(details["artifact_id"])
    assert failed.status == "failed"
    assert failed.sql_text == f"DELETE FROM {sales_dataset.table_name}"
    assert "DELETE" in failed.error


def test_engine_error_is_persisted_as_failed(sales_dataset):
    with pytest.raises(ExecutionFailed) as exc:
        execute_query(sales_dataset.dataset_id, f"SELECT no_such_column FROM {sales_dataset.table_name}")
    assert get_query_artifact(exc.value.details["artifact_id"]).status == "failed"


def test_unknown_dataset():
    with pytest.raises(DatasetNotFound):
        execute_query("missing", "SELECT 1")


def test_distribution_chart_over_cap_uses_statistics(distribution_dataset):
    """50,000 raw rows behind a 1,500-row query become one statistics row per category."""
    q = execute_query(
        distribution_dataset.dataset_id, f"SELECT category, value FROM {distribution_dataset.table_name}"
    )
    assert q.row_count == 1500

    chart = _chart(distribution_dataset, q.artifact_id, "distribution", "category", "value")
    assert chart.aggregated
    assert chart.source_row_count == 50_000
    assert chart.row_count == 5
    assert chart.spec["usermeta"]["aggregated"] is True
    values = chart.spec["data"]["values"]
    assert [v["category"] for v in values] == ["c0", "c1", "c2", "c3", "c4"]
    assert all(v["count"] == 10_000 for v in values)
    assert values[0]["min"] == 0
    assert values[0]["max"] == 995

    stored = get_chart_artifact(chart.chart_artifact_id)
    assert stored.aggregated
    assert "QUANTILE_CONT" in stored.source_sql


def test_distribution_chart_at_cap_stays_raw(make_dataset):
    ds = make_dataset("SELECT 'g' || CAST(i % 4 AS VARCHAR) AS grp, CAST(i AS DOUBLE) AS v FROM range(10000) AS t(i)")
    q = execute_query(ds.dataset_id, f"SELECT grp, v FROM {ds.table_name}")
    chart = _chart(ds, q.artifact_id, "boxplot", "grp", "v")
    assert not chart.aggregated
    assert chart.row_count == 10_000
    assert chart.spec["mark"]["type"] == "boxplot"


def test_distribution_chart_one_over_cap_aggregates(make_dataset):
    ds = make_dataset("SELECT 'g' || CAST(i % 4 AS VARCHAR) AS grp, CAST(i AS DOUBLE) AS v FROM range(10001) AS t(i)")
    q = execute_query(ds.dataset_id, f"SELECT grp, v FROM {ds.table_name}")
    chart = _chart(ds, q.artifact_id, "boxplot", "grp", "v")
    assert chart.aggregated
    assert chart.row_count == 4


def test_distribution_over_cap_with_distinct_is_ineligible(distribution_dataset):
    q = execute_query(
        distribution_dataset.dataset_id,
        f"SELECT DISTINCT category, value, k FROM {distribution_dataset.table_name} "
        f"CROSS JOIN range(20) AS r(k)",
    )
    with pytest.raises(AggregationIneligible):
        _chart(distribution_dataset, q.artifact_id, "boxplot", "category", "value")


def test_boxplot_on_grouped_query_suggests_bar(distribution_dataset):
    q = execute_query(
        distribution_dataset.dataset_id,
        f"SELECT category, AVG(value) AS value FROM {distribution_dataset.table_name} GROUP BY category",
    )
    with pytest.raises(ChartTypeMismatch) as exc:
        _chart(distribution_dataset, q.artifact_id, "boxplot", "category", "value")
    assert exc.value.details["suggested_chart_type"] == "bar"


def test_scatter_over_cap_is_rejected_with_guidance(distribution_dataset):
    q = execute_query(
        distribution_dataset.dataset_id, f"SELECT value, value * 2 AS doubled FROM {distribution_dataset.table_name}"
    )
    with pytest.raises(VolumeExceeded) as exc:
        _chart(distribution_dataset, q.artifact_id, "scatter", "value", "doubled")
    assert exc.value.details == {"row_count": 50_000, "max_rows": 5_000, "chart_type": "scatter"}
    assert "GROUP BY" in exc.value.message


def test_caller_limit_below_cap_is_kept(distribution_dataset):
    q = execute_query(
        distribution_dataset.dataset_id,
        f"SELECT value, value * 2 AS doubled FROM {distribution_dataset.table_name} LIMIT 300",
    )
    chart = _chart(distribution_dataset, q.artifact_id, "scatter", "value", "doubled")
    assert chart.source_row_count == 300
    assert chart.row_count == 300


def test_chart_source_drops_only_the_exploratory_cap():
    assert chart_source("SELECT a FROM t LIMIT 1500") == "SELECT a FROM t"
    assert chart_source("SELECT a FROM t LIMIT 20;") == "SELECT a FROM t LIMIT 20"


def test_field_typo_is_not_substituted(sales_dataset):
    q = execute_query(sales_dataset.dataset_id, f"SELECT region, revenue FROM {sales_dataset.table_name}")
    with pytest.raises(FieldNotFound) as exc:
        _chart(sales_dataset, q.artifact_id, "bar", "region", "revenu")
    details = exc.value.details
    assert details["suggestions"] == {"yField": "revenue"}
    assert details["available_columns"] == ["region", "revenue"]


def test_column_order_round_trips(sales_dataset):
    """Column order follows the SELECT list, not the table or row-key order."""
    q = execute_query(
        sales_dataset.dataset_id, f"SELECT revenue, sale_date, region FROM {sales_dataset.table_name}"
    )
    assert q.column_order == ["revenue", "sale_date", "region"]
    chart = _chart(sales_dataset, q.artifact_id, "line", "sale_date", "revenue", color="region")
    stored = get_chart_artifact(chart.chart_artifact_id)
    assert loads(stored.column_order) == ["revenue", "sale_date", "region"]


def test_identical_chart_requests_are_not_deduplicated(sales_dataset):
    q = execute_query(
        sales_dataset.dataset_id,
        f"SELECT region, SUM(revenue) AS revenue FROM {sales_dataset.table_name} GROUP BY region ORDER BY region",
    )
    first = _chart(sales_dataset, q.artifact_id, "bar", "region", "revenue")
    second = _chart(sales_dataset, q.artifact_id, "bar", "region", "revenue")
    assert first.chart_artifact_id != second.chart_artifact_id
    assert first.spec == second.spec


def test_missing_artifact_is_unavailable(sales_dataset):
    with pytest.raises(ArtifactUnavailable):
        _chart(sales_dataset, "does-not-exist", "bar", "region", "revenue")


def test_failed_artifact_is_unavailable(sales_dataset):
    with pytest.raises(GuardRejected) as exc:
        execute_query(sales_dataset.dataset_id, "SELECT 1; SELECT 2")
    with pytest.raises(ArtifactUnavailable):
        _chart(sales_dataset, exc.value.details["artifact_id"], "bar", "region", "revenue")


def test_empty_artifact_is_unavailable(sales_dataset):
    q = execute_query(sales_dataset.dataset_id, f"SELECT region, revenue FROM {sales_dataset.table_name} WHERE 1 = 0")
    assert q.row_count == 0
    with pytest.raises(ArtifactUnavailable):
        _chart(sales_dataset, q.artifact_id, "bar", "region", "revenue")


def test_artifact_from_another_dataset_is_unavailable(sales_dataset, make_dataset):
    other = make_dataset("SELECT 'x' AS region, 1.0 AS revenue")
    q = execute_query(sales_dataset.dataset_id, f"SELECT region, revenue FROM {sales_dataset.table_name}")
    with pytest.raises(ArtifactUnavailable):
        _chart(other, q.artifact_id, "bar", "region", "revenue")


def test_heatmap_without_color_field_is_rejected_up_front(sales_dataset):
    q = execute_query(sales_dataset.dataset_id, f"SELECT region, sale_date FROM {sales_dataset.table_name}")
    with pytest.raises(ChartTypeMismatch):
        _chart(sales_dataset, q.artifact_id, "heatmap", "region", "sale_date")


def test_timeout_is_persisted_with_simplification_hint(sales_dataset, monkeypatch):
    monkeypatch.setattr(settings, "QUERY_TIMEOUT_SECONDS", 0.2)
    with pytest.raises(ExecutionTimeout) as exc:
        execute_query(
            sales_dataset.dataset_id,
            "SELECT SUM(a.range * b.range) AS s FROM range(200000) AS a, range(200000) AS b",
        )
    assert "Simplify the query" in exc.value.message
    failed = get_query_artifact(exc.value.details["artifact_id"])
    assert failed.status == "failed"
    assert "time limit" in failed.error


def test_duplicate_column_names_survive_into_the_artifact(sales_dataset):
    q = execute_query(
        sales_dataset.dataset_id,
        f"SELECT a.region, b.region FROM {sales_dataset.table_name} AS a "
        f"JOIN {sales_dataset.table_name} AS b ON a.revenue = b.revenue",
    )
    assert q.column_order == ["region", "region_1"]
    assert set(q.preview[0]) == {"region", "region_1"}
    assert loads(get_query_artifact(q.artifact_id).column_order) == ["region", "region_1"]
