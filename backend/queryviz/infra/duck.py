import logging
import math
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time as dtime
from decimal import Decimal
from typing import Any, List

import duckdb

from queryviz.core.errors import ExecutionFailed, ExecutionTimeout

logger = logging.getLogger("queryviz.duck")

SIMPLIFY_HINT = "Simplify the query: add filters, aggregate with GROUP BY, reduce JOINs, or add a LIMIT."

@contextmanager
def connect_db():
    con = duckdb.connect(database=":memory:")
    try:
        yield con
    finally:
        con.close()

def sql_literal(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"

def attach_dataset(con, dataset) -> None:
    """Expose the dataset's parquet file as a view named after its table."""
    name = dataset.table_name.replace('"', '""')
    con.execute(f'CREATE OR REPLACE VIEW "{name}" AS SELECT * FROM parquet_scan({sql_literal(dataset.uri)});')

@dataclass
class QueryResult:
    columns: List[str]
    rows: List[dict] = field(default_factory=list)
    duration_ms: int = 0

def normalize_value(v: Any) -> Any:
    if v is None or isinstance(v, (bool, int, str)):
        return v
    if isinstance(v, float):
        return v if math.isfinite(v) else None
    if isinstance(v, Decimal):
        f = float(v)
        return f if math.isfinite(f) else None
    if isinstance(v, (datetime, date, dtime)):
        return v.isoformat()
    if isinstance(v, (list, tuple)):
        return [normalize_value(x) for x in v]
    if isinstance(v, dict):
        return {str(k): normalize_value(x) for k, x in v.items()}
    return str(v)

def dedupe_columns(columns: List[str]) -> List[str]:
    """Suffix repeated output names (id, id_1) so no value is lost when rows become dicts."""
    taken = set(columns)
    out: List[str] = []
    for c in columns:
        if c not in out:
            out.append(c)
            continue
        n = 1
        while f"{c}_{n}" in taken:
            n += 1
        taken.add(f"{c}_{n}")
        out.append(f"{c}_{n}")
    return out

def run_query(con, sql: str, timeout_s: float) -> QueryResult:
    """
    Execute a guarded statement on an open connection.
    Column order comes from the cursor description, never from the row dicts.
    """
    timer = threading.Timer(timeout_s, con.interrupt)
    started = time.perf_counter()
    timer.start()
    try:
        cur = con.execute(sql)
        columns = [d[0] for d in (cur.description or [])]
        raw = cur.fetchall()
    except duckdb.InterruptException as e:
        raise ExecutionTimeout(
            f"Query exceeded the {timeout_s:g}s time limit. {SIMPLIFY_HINT}",
            {"timeout_seconds": timeout_s, "suggestion": SIMPLIFY_HINT},
        ) from e
    except duckdb.Error as e:
        raise ExecutionFailed(str(e)) from e
    finally:
        timer.cancel()
    duration_ms = int((time.perf_counter() - started) * 1000)
    columns = dedupe_columns(columns)
    rows = [{c: normalize_value(v) for c, v in zip(columns, r)} for r in raw]
    logger.debug("query returned %d rows in %dms", len(rows), duration_ms)
    return QueryResult(columns=columns, rows=rows, duration_ms=duration_ms)

def scalar(con, sql: str, timeout_s: float) -> Any:
    res = run_query(con, sql, timeout_s)
    if not res.rows:
        return None
    return res.rows[0][res.columns[0]]
