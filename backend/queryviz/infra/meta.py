# queryviz/infra/meta.py
import json, time
from typing import Any, List, Optional
from uuid import uuid4
from sqlmodel import SQLModel, Field, create_engine, Session, select
from queryviz.core.config import settings

class Dataset(SQLModel, table=True):
    dataset_id: str = Field(primary_key=True, index=True)
    table_name: str
    file_name: str
    user_context: Optional[str] = None
    uri: str                # parquet file backing the table
    row_count: int
    column_count: int
    columns: str            # JSON [{"name","dtype"}]
    owner: str
    created_at: int

class QueryArtifact(SQLModel, table=True):
    artifact_id: str = Field(primary_key=True, index=True)
    dataset_id: str = Field(index=True)
    sql_text: str
    column_order: str       # JSON array, from engine result metadata
    row_count: int = 0
    sample: str = "[]"      # JSON rows, full guarded result
    status: str             # success | failed
    error: Optional[str] = None
    duration_ms: int = 0
    reasoning: str = ""
    owner: str
    pinned: bool = False
    created_at: int

class ChartArtifact(SQLModel, table=True):
    chart_artifact_id: str = Field(primary_key=True, index=True)
    dataset_id: str = Field(index=True)
    query_artifact_id: str = Field(index=True)
    chart_type: str
    spec: str               # JSON chart document
    source_sql: str
    sample: str             # JSON rows the chart was drawn from
    column_order: str       # JSON array, copied from the query artifact
    title: str = ""
    aggregated: bool = False
    warnings: str = "[]"
    owner: str
    created_at: int

engine = create_engine(f"sqlite:///{settings.META_DB}", connect_args={"check_same_thread": False})
SQLModel.metadata.create_all(engine)

# ---------------- helpers ----------------

def dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)

def loads(text: Optional[str], default: Any = None) -> Any:
    if not text:
        return default
    return json.loads(text)

def new_id() -> str:
    return uuid4().hex

# ---------------- datasets ----------------

def insert_dataset(
    *,
    table_name: str,
    file_name: str,
    uri: str,
    row_count: int,
    columns: list[dict],
    owner: str,
    user_context: Optional[str] = None,
    dataset_id: Optional[str] = None,
) -> Dataset:
    row = Dataset(
        dataset_id=dataset_id or new_id(),
        table_name=table_name,
        file_name=file_name,
        user_context=user_context,
        uri=uri,
        row_count=row_count,
        column_count=len(columns),
        columns=dumps(columns),
        owner=owner,
        created_at=int(time.time()),
    )
    with Session(engine) as db:
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

def get_dataset(dataset_id: str) -> Optional[Dataset]:
    with Session(engine) as db:
        return db.get(Dataset, dataset_id)

# ---------------- artifacts (append-only, except the pin flag) ----------------

def insert_query_artifact(
    *,
    dataset_id: str,
    sql_text: str,
    status: str,
    owner: str,
    reasoning: str = "",
    column_order: Optional[list[str]] = None,
    rows: Optional[list[dict]] = None,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> QueryArtifact:
    rows = rows or []
    row = QueryArtifact(
        artifact_id=new_id(),
        dataset_id=dataset_id,
        sql_text=sql_text,
        column_order=dumps(column_order or []),
        row_count=len(rows),
        sample=dumps(rows),
        status=status,
        error=error,
        duration_ms=duration_ms,
        reasoning=reasoning,
        owner=owner,
        created_at=int(time.time()),
    )
    with Session(engine) as db:
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

def get_query_artifact(artifact_id: str) -> Optional[QueryArtifact]:
    with Session(engine) as db:
        return db.get(QueryArtifact, artifact_id)

def set_query_pinned(artifact_id: str, pinned: bool) -> Optional[QueryArtifact]:
    with Session(engine) as db:
        row = db.get(QueryArtifact, artifact_id)
        if not row:
            return None
        row.pinned = pinned
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

def insert_chart_artifact(
    *,
    dataset_id: str,
    query_artifact_id: str,
    chart_type: str,
    spec: dict,
    source_sql: str,
    rows: list[dict],
    column_order: list[str],
    title: str,
    owner: str,
    aggregated: bool = False,
    warnings: Optional[list[str]] = None,
) -> ChartArtifact:
    row = ChartArtifact(
        chart_artifact_id=new_id(),
        dataset_id=dataset_id,
        query_artifact_id=query_artifact_id,
        chart_type=chart_type,
        spec=dumps(spec),
        source_sql=source_sql,
        sample=dumps(rows),
        column_order=dumps(column_order),
        title=title,
        aggregated=aggregated,
        warnings=dumps(warnings or []),
        owner=owner,
        created_at=int(time.time()),
    )
    with Session(engine) as db:
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

def get_chart_artifact(chart_artifact_id: str) -> Optional[ChartArtifact]:
    with Session(engine) as db:
        return db.get(ChartArtifact, chart_artifact_id)

# ---------------- history ----------------

def list_history(dataset_id: str, limit: int = 50) -> tuple[List[QueryArtifact], List[ChartArtifact]]:
    with Session(engine) as db:
        queries = db.exec(
            select(QueryArtifact)
            .where(QueryArtifact.dataset_id == dataset_id)
            .order_by(QueryArtifact.created_at.desc())
            .limit(limit)
        ).all()
        charts = db.exec(
            select(ChartArtifact)
            .where(ChartArtifact.dataset_id == dataset_id)
            .order_by(ChartArtifact.created_at.desc())
            .limit(limit)
        ).all()
        return list(queries), list(charts)
