from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from queryviz.core.chart_types import ChartType

class ColumnSchema(BaseModel):
    name: str
    dtype: str

class DatasetOut(BaseModel):
    dataset_id: str
    table_name: str
    file_name: str
    user_context: Optional[str] = None
    row_count: int
    column_count: int
    columns: List[ColumnSchema]
    created_at: int

class UploadResponse(BaseModel):
    dataset: DatasetOut
    preview: list[dict]

class QueryRequest(BaseModel):
    query: str              # agent SQL; should reference the dataset's table_name
    reasoning: str = ""     # provenance only, never parsed
    owner: str = "anonymous"
    deep_dive: bool = False # longer timeout for exhaustive analysis

class QueryResponse(BaseModel):
    success: bool = True
    artifact_id: str
    status: str
    row_count: int
    column_order: List[str]
    preview: list[dict]     # <= PREVIEW_ROWS; the full result stays on the artifact
    reasoning: str
    duration_ms: int

class ChartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    artifact_id: str = Field(alias="artifactId")   # query artifact returned by a completed query
    chart_type: ChartType = Field(alias="chartType")
    x_field: str = Field(alias="xField")
    y_field: str = Field(alias="yField")
    color_field: Optional[str] = Field(default=None, alias="colorField")
    title: str = ""
    subtitle: Optional[str] = None
    x_axis_label: Optional[str] = Field(default=None, alias="xAxisLabel")
    y_axis_label: Optional[str] = Field(default=None, alias="yAxisLabel")
    owner: str = "anonymous"

    @field_validator("chart_type", mode="before")
    @classmethod
    def _family_alias(cls, v):
        # accepts family names too ("distribution" -> boxplot)
        return ChartType(v) if isinstance(v, str) else v

class ChartResponse(BaseModel):
    success: bool = True
    chart_artifact_id: str
    chart_type: ChartType
    spec: Dict[str, Any]
    warnings: List[str] = []
    aggregated: bool = False
    row_count: int
    source_row_count: int

class QueryArtifactOut(BaseModel):
    artifact_id: str
    dataset_id: str
    sql_text: str
    column_order: List[str]
    row_count: int
    sample: list[dict]
    status: str
    error: Optional[str] = None
    duration_ms: int
    reasoning: str
    owner: str
    pinned: bool
    created_at: int

class ChartArtifactOut(BaseModel):
    chart_artifact_id: str
    dataset_id: str
    query_artifact_id: str
    chart_type: str
    spec: Dict[str, Any]
    source_sql: str
    sample: list[dict]
    column_order: List[str]
    title: str
    aggregated: bool
    warnings: List[str]
    owner: str
    created_at: int

class PinRequest(BaseModel):
    pinned: bool

class HistoryItem(BaseModel):
    kind: str               # "query" | "chart"
    artifact_id: str
    created_at: int
    status: str
    title: Optional[str] = None
    sql_text: Optional[str] = None
    pinned: bool = False

class HistoryResponse(BaseModel):
    dataset_id: str
    items: List[HistoryItem]
