import os
import tempfile
from pathlib import Path
from uuid import uuid4

import pytest

# metadata store and dataset files go to a throwaway directory; must be set
# before queryviz.core.config is first imported
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="queryviz-tests-")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from queryviz.core.config import settings  # noqa: E402
from queryviz.infra.duck import connect_db, sql_literal  # noqa: E402
from queryviz.api.ingest import ingest_parquet  # noqa: E402


@pytest.fixture
def make_dataset():
    """Register a dataset built from a DuckDB SELECT (e.g. over range(n))."""

    def _make(select_sql: str, file_name: str = "synthetic.csv", user_context: str | None = None):
        out = (settings.TMP_DIR / f"{uuid4().hex}.parquet").resolve()
        with connect_db() as con:
            con.execute(f"COPY ({select_sql}) TO {sql_literal(out.as_posix())} (FORMAT PARQUET);")
        return ingest_parquet(Path(out), file_name, owner="tests", user_context=user_context)

    return _make


@pytest.fixture
def distribution_dataset(make_dataset):
    """50,000 rows over five categories, values 0..999 within each."""
    return make_dataset(
        "SELECT 'c' || CAST(i % 5 AS VARCHAR) AS category, CAST(i % 1000 AS DOUBLE) AS value "
        "FROM range(50000) AS t(i)"
    )


@pytest.fixture
def sales_dataset(make_dataset):
    return make_dataset(
        "SELECT CASE i % 4 WHEN 0 THEN 'north' WHEN 1 THEN 'south' WHEN 2 THEN 'east' ELSE 'west' END AS region, "
        "CAST(100 + i AS DOUBLE) AS revenue, "
        "DATE '2024-01-01' + CAST(i % 30 AS INTEGER) AS sale_date "
        "FROM range(200) AS t(i)"
    )