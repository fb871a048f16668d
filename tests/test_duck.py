from pathlib import Path
from uuid import uuid4

import pytest

from queryviz.api.ingest import ingest_parquet
from queryviz.core.config import settings
from queryviz.core.errors import ExecutionFailed, ExecutionTimeout, IngestFailed
from queryviz.infra.duck import SIMPLIFY_HINT, connect_db, dedupe_columns, run_query

SLOW_SQL = "SELECT SUM(a.range * b.range) AS s FROM range(200000) AS a, range(200000) AS b"


def test_timeout_interrupts_and_suggests_simplification():
    with connect_db() as con:
        with pytest.raises(ExecutionTimeout) as exc:
            run_query(con, SLOW_SQL, 0.2)
        assert "Simplify the query" in exc.value.message
        assert exc.value.details == {"timeout_seconds": 0.2, "suggestion": SIMPLIFY_HINT}
        assert exc.value.status_code == 408

        # the connection stays usable after an interrupt
        assert run_query(con, "SELECT 1 AS x", 5).rows == [{"x": 1}]


def test_engine_error_is_typed():
    with connect_db() as con:
        with pytest.raises(ExecutionFailed):
            run_query(con, "SELECT missing_column FROM range(3)", 5)


def test_duplicate_output_names_keep_every_value():
    with connect_db() as con:
        res = run_query(con, "SELECT 1 AS a, 2 AS a, 3 AS a", 5)
    assert res.columns == ["a", "a_1", "a_2"]
    assert res.rows == [{"a": 1, "a_1": 2, "a_2": 3}]


def test_dedupe_columns_avoids_existing_names():
    assert dedupe_columns(["id", "name"]) == ["id", "name"]
    assert dedupe_columns(["id", "id_1", "id"]) == ["id", "id_1", "id_2"]


def test_unreadable_parquet_is_rejected_and_cleaned_up():
    bogus = Path(settings.TMP_DIR) / f"{uuid4().hex}.parquet"
    bogus.write_bytes(b"not a parquet file")
    with pytest.raises(IngestFailed) as exc:
        ingest_parquet(bogus, "broken.csv")
    assert exc.value.code == "ingest_failed"
    assert not bogus.exists()
