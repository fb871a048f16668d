import logging
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Optional
from uuid import uuid4

import duckdb
from fastapi import APIRouter, UploadFile, File, Form

from queryviz.core.config import settings
from queryviz.core.errors import DatasetNotFound, IngestFailed
from queryviz.core.schemas import UploadResponse, DatasetOut, ColumnSchema
from queryviz.infra.duck import connect_db, attach_dataset, run_query, sql_literal
from queryviz.infra.artifacts import DatasetStore
from queryviz.infra.meta import Dataset, insert_dataset, get_dataset, loads

router = APIRouter(prefix="/v1", tags=["ingest"])
store = DatasetStore()
logger = logging.getLogger("queryviz.ingest")

UPLOAD_PREVIEW_ROWS = 20

def dataset_out(d: Dataset) -> DatasetOut:
    return DatasetOut(
        dataset_id=d.dataset_id,
        table_name=d.table_name,
        file_name=d.file_name,
        user_context=d.user_context,
        row_count=d.row_count,
        column_count=d.column_count,
        columns=[ColumnSchema(**c) for c in loads(d.columns, [])],
        created_at=d.created_at,
    )

def require_dataset(dataset_id: str) -> Dataset:
    d = get_dataset(dataset_id)
    if not d:
        raise DatasetNotFound(f"Dataset '{dataset_id}' not found", {"dataset_id": dataset_id})
    return d

def ingest_parquet(
    temp_parquet: Path,
    file_name: str,
    owner: str = "anonymous",
    user_context: Optional[str] = None,
) -> Dataset:
    """Move a parquet file into the dataset store and register it under a fresh table name."""
    src = sql_literal(temp_parquet.as_posix())
    try:
        with connect_db() as con:
            described = con.execute(f"DESCRIBE SELECT * FROM parquet_scan({src});").fetchall()
            rows = int(con.execute(f"SELECT COUNT(*) FROM parquet_scan({src});").fetchone()[0])
    except duckdb.Error as e:
        temp_parquet.unlink(missing_ok=True)
        raise IngestFailed(f"Could not read converted file '{file_name}': {e}") from e
    columns = [{"name": str(r[0]), "dtype": str(r[1])} for r in described]

    _, final_parquet = store.store_parquet(temp_parquet)
    d = insert_dataset(
        table_name=f"ds_{uuid4().hex[:12]}",
        file_name=file_name,
        uri=final_parquet.as_posix(),
        row_count=rows,
        columns=columns,
        owner=owner,
        user_context=user_context,
    )
    logger.info("dataset %s registered as %s (%d rows, %d columns)", d.dataset_id, d.table_name, rows, len(columns))
    return d

def preview_dataset(d: Dataset, limit: int = UPLOAD_PREVIEW_ROWS) -> list[dict]:
    name = d.table_name.replace('"', '""')
    with connect_db() as con:
        attach_dataset(con, d)
        return run_query(con, f'SELECT * FROM "{name}" LIMIT {int(limit)}', settings.QUERY_TIMEOUT_SECONDS).rows

@router.post("/upload", response_model=UploadResponse)
async def upload_csv(
    file: UploadFile = File(...),
    owner: str = Form("anonymous"),
    user_context: Optional[str] = Form(None),
):
    # 1) Save CSV to a temp file
    temp_csv = Path(NamedTemporaryFile(delete=False, dir=settings.TMP_DIR, suffix=".csv").name)
    temp_csv.write_bytes(await file.read())

    # 2) Convert CSV -> Parquet via DuckDB (let DuckDB create the file)
    temp_parquet = (settings.TMP_DIR / f"{uuid4().hex}.parquet").resolve()
    try:
        with connect_db() as con:
            con.execute(f"CREATE TABLE t AS SELECT * FROM read_csv_auto({sql_literal(temp_csv.as_posix())});")
            con.execute(f"COPY t TO {sql_literal(temp_parquet.as_posix())} (FORMAT PARQUET);")
    except duckdb.Error as e:
        temp_parquet.unlink(missing_ok=True)
        raise IngestFailed(
            f"Could not parse '{file.filename}' as CSV: {e}",
            {"file_name": file.filename},
        ) from e
    finally:
        temp_csv.unlink(missing_ok=True)

    # 3) Register the dataset + preview
    d = ingest_parquet(temp_parquet, file.filename or "upload.csv", owner=owner, user_context=user_context)
    return UploadResponse(dataset=dataset_out(d), preview=preview_dataset(d))

@router.get("/datasets/{dataset_id}", response_model=DatasetOut)
def get_dataset_route(dataset_id: str):
    return dataset_out(require_dataset(dataset_id))
