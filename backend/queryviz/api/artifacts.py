from fastapi import APIRouter, HTTPException

from queryviz.core.errors import ArtifactUnavailable
from queryviz.core.schemas import (
    QueryArtifactOut, ChartArtifactOut, PinRequest, HistoryResponse, HistoryItem,
)
from queryviz.infra.meta import (
    QueryArtifact, ChartArtifact, get_query_artifact, get_chart_artifact, set_query_pinned, list_history, loads,
)
from queryviz.api.ingest import require_dataset

router = APIRouter(prefix="/v1", tags=["artifacts"])

def _missing(kind: str, artifact_id: str) -> ArtifactUnavailable:
    return ArtifactUnavailable(f"{kind} artifact '{artifact_id}' not found", {"artifact_id": artifact_id})

def query_out(a: QueryArtifact) -> QueryArtifactOut:
    return QueryArtifactOut(
        artifact_id=a.artifact_id,
        dataset_id=a.dataset_id,
        sql_text=a.sql_text,
        column_order=loads(a.column_order, []),
        row_count=a.row_count,
        sample=loads(a.sample, []),
        status=a.status,
        error=a.error,
        duration_ms=a.duration_ms,
        reasoning=a.reasoning,
        owner=a.owner,
        pinned=a.pinned,
        created_at=a.created_at,
    )

def chart_out(c: ChartArtifact) -> ChartArtifactOut:
    return ChartArtifactOut(
        chart_artifact_id=c.chart_artifact_id,
        dataset_id=c.dataset_id,
        query_artifact_id=c.query_artifact_id,
        chart_type=c.chart_type,
        spec=loads(c.spec, {}),
        source_sql=c.source_sql,
        sample=loads(c.sample, []),
        column_order=loads(c.column_order, []),
        title=c.title,
        aggregated=c.aggregated,
        warnings=loads(c.warnings, []),
        owner=c.owner,
        created_at=c.created_at,
    )

@router.get("/queries/{artifact_id}", response_model=QueryArtifactOut)
def fetch_query_artifact(artifact_id: str):
    a = get_query_artifact(artifact_id)
    if not a:
        raise _missing("Query", artifact_id)
    return query_out(a)

@router.post("/queries/{artifact_id}/pin", response_model=QueryArtifactOut)
def pin_query_artifact(artifact_id: str, req: PinRequest):
    a = set_query_pinned(artifact_id, req.pinned)
    if not a:
        raise _missing("Query", artifact_id)
    return query_out(a)

@router.get("/charts/{chart_artifact_id}", response_model=ChartArtifactOut)
def fetch_chart_artifact(chart_artifact_id: str):
    c = get_chart_artifact(chart_artifact_id)
    if not c:
        raise _missing("Chart", chart_artifact_id)
    return chart_out(c)

@router.get("/datasets/{dataset_id}/history", response_model=HistoryResponse)
def get_history(dataset_id: str, limit: int = 50):
    if limit <= 0 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be 1..500")
    require_dataset(dataset_id)
    queries, charts = list_history(dataset_id, limit=limit)
    items = [
        HistoryItem(kind="query", artifact_id=q.artifact_id, created_at=q.created_at, status=q.status,
                    sql_text=q.sql_text, pinned=q.pinned)
        for q in queries
    ] + [
        HistoryItem(kind="chart", artifact_id=c.chart_artifact_id, created_at=c.created_at, status="success",
                    title=c.title or None, sql_text=c.source_sql)
        for c in charts
    ]
    # newest first across both kinds
    items.sort(key=lambda i: i.created_at, reverse=True)
    return HistoryResponse(dataset_id=dataset_id, items=items[:limit])
