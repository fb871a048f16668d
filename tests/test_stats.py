import pytest

from queryviz.core.errors import AggregationIneligible
from queryviz.core.stats import can_convert_to_stats, convert_to_stats_query, count_query
from queryviz.infra.duck import connect_db

SOURCE = (
    "SELECT grp, v FROM (VALUES ('a', 1), ('a', 2), ('a', 3), ('a', 4), ('a', 5), "
    "('b', 10), ('b', 20), ('b', 30)) AS t(grp, v) LIMIT 1500;"
)


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT region, AVG(revenue) FROM t GROUP BY region",
        "SELECT region, AVG(revenue) FROM t group\n  by region",
        "SELECT DISTINCT region, revenue FROM t",
        "SELECT region, revenue, ROW_NUMBER() OVER (PARTITION BY region) FROM t",
        "SELECT region, SUM(revenue) over(ORDER BY day) FROM t",
    ],
)
def test_ineligible_sources(sql):
    assert not can_convert_to_stats(sql)
    with pytest.raises(AggregationIneligible):
        convert_to_stats_query(sql, "region", "revenue")


def test_raw_select_is_eligible():
    assert can_convert_to_stats("SELECT region, revenue FROM t WHERE revenue > 0")


def test_stats_query_shape():
    sql = convert_to_stats_query(SOURCE, "grp", "v")
    assert 'FROM (SELECT grp, v FROM (VALUES' in sql
    assert "LIMIT" not in sql
    assert 'GROUP BY "grp"' in sql
    assert sql.rstrip().endswith('ORDER BY "grp"')


def test_stats_query_computes_percentiles():
    """The rewritten query runs on DuckDB and yields one row of statistics per group."""
    with connect_db() as con:
        rows = con.execute(convert_to_stats_query(SOURCE, "grp", "v")).fetchall()
    assert rows == [
        ("a", 1, 2.0, 3.0, 4.0, 5, 5),
        ("b", 10, 15.0, 20.0, 25.0, 30, 3),
    ]


def test_count_query():
    assert count_query("SELECT a FROM t") == "SELECT COUNT(*) FROM (SELECT a FROM t) AS subquery"
