import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from queryviz.core.config import settings
from queryviz.core.errors import PipelineError
from queryviz.api.ingest import router as ingest_router
from queryviz.api.query_sql import router as sql_router
from queryviz.api.charts import router as charts_router
from queryviz.api.artifacts import router as artifacts_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="QueryViz Backend", version="0.1.0")

@app.get("/health")
def health(): return {"status": "ok"}

@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, err: PipelineError):
    return JSONResponse(status_code=err.status_code, content=err.to_dict())

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingest_router)
app.include_router(sql_router)
app.include_router(charts_router)
app.include_router(artifacts_router)
