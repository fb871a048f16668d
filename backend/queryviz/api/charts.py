# queryviz/api/charts.py
from __future__ import annotations

import logging

from fastapi import APIRouter

from queryviz.core.config import settings
from queryviz.core.chart_specs import build_chart_spec, get_builder
from queryviz.core.chart_types import VOLUME_POLICIES, ChartType
from queryviz.core.errors import ArtifactUnavailable, ChartTypeMismatch, FieldNotFound, VolumeExceeded
from queryviz.core.fields import validate_chart_fields
from queryviz.core.guard import guard_sql, strip_limit, strip_terminator, top_level_limit
from queryviz.core.schemas import ChartRequest, ChartResponse
from queryviz.core.spec_validator import validate_chart_spec
from queryviz.core.stats import convert_to_stats_query, count_query
from queryviz.infra.duck import connect_db, attach_dataset, run_query, scalar
from queryviz.infra.meta import QueryArtifact, get_query_artifact, insert_chart_artifact, loads
from queryviz.api.ingest import require_dataset

router = APIRouter(prefix="/v1", tags=["charts"])
logger = logging.getLogger("queryviz.charts")


def _usable_artifact(dataset_id: str, artifact_id: str) -> QueryArtifact:
    a = get_query_artifact(artifact_id)
    if a is None or a.dataset_id != dataset_id:
        reason = "does not exist for this dataset"
    elif a.status != "success":
        reason = "is from a failed query"
    elif a.row_count == 0:
        reason = "returned no rows"
    else:
        return a
    raise ArtifactUnavailable(
        f"Query artifact '{artifact_id}' {reason}. Run executeQuery first and pass the "
        "artifact_id from its successful response.",
        {"artifact_id": artifact_id},
    )


def chart_source(sql_text: str) -> str:
    """Query text to re-execute: the exploratory row cap is dropped, a smaller caller limit is kept."""
    limit = top_level_limit(sql_text)
    if limit is None or limit >= settings.QUERY_MAX_ROWS:
        return strip_limit(sql_text)
    return strip_terminator(sql_text)[0]


def create_chart(dataset_id: str, req: ChartRequest) -> ChartResponse:
    dataset = require_dataset(dataset_id)
    artifact = _usable_artifact(dataset.dataset_id, req.artifact_id)
    column_order = loads(artifact.column_order, [])

    fields = validate_chart_fields(req.x_field, req.y_field, req.color_field, column_order)
    if not fields.valid:
        raise FieldNotFound(
            "; ".join(fields.errors),
            {"errors": fields.errors, "suggestions": fields.suggestions, "available_columns": column_order},
        )

    chart_type = ChartType(req.chart_type)
    get_builder(chart_type).check_request(req, artifact.sql_text)
    policy = VOLUME_POLICIES[chart_type]
    source = chart_source(artifact.sql_text)

    with connect_db() as con:
        attach_dataset(con, dataset)
        total = int(scalar(con, count_query(source), settings.QUERY_TIMEOUT_SECONDS) or 0)

        aggregated = False
        if total > policy.max_rows:
            if not policy.aggregate_fallback:
                raise VolumeExceeded(
                    f"Query returns {total:,} rows, above the {policy.max_rows:,}-row limit for "
                    f"{chart_type.value} charts. Aggregate in SQL (GROUP BY with AVG/SUM/COUNT), "
                    "add filters, or add a LIMIT, then request the chart again.",
                    {"row_count": total, "max_rows": policy.max_rows, "chart_type": chart_type.value},
                )
            sql = convert_to_stats_query(source, req.x_field, req.y_field)
            aggregated = True
            logger.info("chart on %s: %d rows over cap %d, using percentile statistics",
                        artifact.artifact_id, total, policy.max_rows)
        else:
            sql = guard_sql(source, dataset.table_name, policy.max_rows)

        rows = run_query(con, sql, settings.QUERY_TIMEOUT_SECONDS).rows

    doc = build_chart_spec(rows, req, aggregated=aggregated)
    ok, error, spec = validate_chart_spec(doc.spec)
    if not ok:
        raise ChartTypeMismatch(f"Generated chart failed validation: {error}")

    c = insert_chart_artifact(
        dataset_id=dataset.dataset_id,
        query_artifact_id=artifact.artifact_id,
        chart_type=chart_type.value,
        spec=spec,
        source_sql=sql,
        rows=rows,
        column_order=column_order,
        title=req.title,
        owner=req.owner,
        aggregated=aggregated,
        warnings=doc.warnings,
    )
    logger.info("chart %s (%s) from query %s: %d rows", c.chart_artifact_id, chart_type.value,
                artifact.artifact_id, len(rows))

    return ChartResponse(
        chart_artifact_id=c.chart_artifact_id,
        chart_type=chart_type,
        spec=spec,
        warnings=doc.warnings,
        aggregated=aggregated,
        row_count=len(rows),
        source_row_count=total,
    )


@router.post("/datasets/{dataset_id}/charts", response_model=ChartResponse)
def create_chart_route(dataset_id: str, req: ChartRequest) -> ChartResponse:
    return create_chart(dataset_id, req)
