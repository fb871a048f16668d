# queryviz/core/stats.py
"""
Statistical fallback for distribution charts.

When a box plot's source query returns more rows than the distribution cap,
the query is wrapped as a subquery and replaced by per-group percentile
statistics (min/q1/median/q3/max/count). Wrapping instead of splicing into
FROM/WHERE keeps CTEs, joins and nested selects intact.
"""
import re

from queryviz.core.errors import AggregationIneligible
from queryviz.core.guard import strip_limit

STAT_COLUMNS = ["min", "q1", "median", "q3", "max", "count"]

# coarse textual checks: re-aggregating grouped/deduplicated/windowed data is ambiguous
_INELIGIBLE = [
    (re.compile(r"\bGROUP\s+BY\b", re.IGNORECASE), "GROUP BY"),
    (re.compile(r"\bDISTINCT\b", re.IGNORECASE), "DISTINCT"),
    (re.compile(r"\bOVER\s*\(", re.IGNORECASE), "window functions (OVER)"),
]


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def ineligibility_reason(sql: str) -> str | None:
    for rx, label in _INELIGIBLE:
        if rx.search(sql or ""):
            return label
    return None


def can_convert_to_stats(sql: str) -> bool:
    return ineligibility_reason(sql) is None


def convert_to_stats_query(sql: str, x_field: str, y_field: str) -> str:
    """Rewrite a raw-row query into one row of box statistics per `x_field` value."""
    reason = ineligibility_reason(sql)
    if reason:
        raise AggregationIneligible(
            f"Cannot build a box plot from aggregate statistics: the query uses {reason}. "
            "Use a simple SELECT of raw rows (category column + numeric column), "
            "or use chartType='bar' for already-aggregated data.",
            details={"feature": reason},
        )

    inner = strip_limit(sql)
    x, y = quote_ident(x_field), quote_ident(y_field)
    return (
        f"SELECT\n"
        f"  {x},\n"
        f"  MIN({y}) AS min,\n"
        f"  QUANTILE_CONT({y}, 0.25) AS q1,\n"
        f"  QUANTILE_CONT({y}, 0.50) AS median,\n"
        f"  QUANTILE_CONT({y}, 0.75) AS q3,\n"
        f"  MAX({y}) AS max,\n"
        f"  COUNT(*) AS count\n"
        f"FROM ({inner}) AS data\n"
        f"GROUP BY {x}\n"
        f"ORDER BY {x}"
    )


def count_query(sql: str) -> str:
    return f"SELECT COUNT(*) FROM ({sql}) AS subquery"
