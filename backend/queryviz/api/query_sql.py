# queryviz/api/query_sql.py
from __future__ import annotations

import logging
import time

from fastapi import APIRouter

from queryviz.core.config import settings
from queryviz.core.errors import PipelineError
from queryviz.core.guard import guard_sql
from queryviz.core.schemas import QueryRequest, QueryResponse
from queryviz.infra.duck import connect_db, attach_dataset, run_query
from queryviz.infra.meta import insert_query_artifact
from queryviz.api.ingest import require_dataset

router = APIRouter(prefix="/v1", tags=["sql"])
logger = logging.getLogger("queryviz.query")

RETRY_NOTE = "Failed queries count toward your step budget. Don't retry more than once."


def execute_query(
    dataset_id: str,
    query: str,
    reasoning: str = "",
    owner: str = "anonymous",
    deep_dive: bool = False,
) -> QueryResponse:
    """
    Guard, run and persist one read query against a dataset.

    The full guarded result is stored on the query artifact; only a short
    preview goes back to the caller. Any guard, engine or timeout failure is
    recorded as a failed artifact before the error propagates.
    """
    dataset = require_dataset(dataset_id)
    timeout = settings.DEEP_DIVE_TIMEOUT_SECONDS if deep_dive else settings.QUERY_TIMEOUT_SECONDS
    started = time.perf_counter()

    try:
        guarded = guard_sql(query, dataset.table_name, settings.QUERY_MAX_ROWS)
        with connect_db() as con:
            attach_dataset(con, dataset)
            result = run_query(con, guarded, timeout)
    except PipelineError as e:
        duration_ms = int((time.perf_counter() - started) * 1000)
        failed = insert_query_artifact(
            dataset_id=dataset.dataset_id,
            sql_text=query,
            status="failed",
            owner=owner,
            reasoning=reasoning,
            duration_ms=duration_ms,
            error=e.message,
        )
        logger.info("query %s failed (%s): %s", failed.artifact_id, e.code, e.message)
        e.details.setdefault("artifact_id", failed.artifact_id)
        e.details.setdefault("note", RETRY_NOTE)
        raise

    a = insert_query_artifact(
        dataset_id=dataset.dataset_id,
        sql_text=guarded,
        status="success",
        owner=owner,
        reasoning=reasoning,
        column_order=result.columns,
        rows=result.rows,
        duration_ms=result.duration_ms,
    )
    logger.info("query %s on %s: %d rows in %dms", a.artifact_id, dataset.table_name, a.row_count, a.duration_ms)

    return QueryResponse(
        artifact_id=a.artifact_id,
        status=a.status,
        row_count=a.row_count,
        column_order=result.columns,
        preview=result.rows[: settings.PREVIEW_ROWS],
        reasoning=reasoning,
        duration_ms=a.duration_ms,
    )


@router.post("/datasets/{dataset_id}/query", response_model=QueryResponse)
def run_sql(dataset_id: str, req: QueryRequest) -> QueryResponse:
    return execute_query(dataset_id, req.query, req.reasoning, req.owner, req.deep_dive)
