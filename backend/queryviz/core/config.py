import os
from pathlib import Path
from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()

_DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))

class Settings(BaseModel):
    DATA_DIR: Path = _DATA_DIR.resolve()
    DATASETS_DIR: Path = Path(os.getenv("DATASETS_DIR", "") or (_DATA_DIR / "datasets")).resolve()
    META_DB: Path = Path(os.getenv("META_DB", "") or (_DATA_DIR / "meta" / "meta.db")).resolve()
    TMP_DIR: Path = Path(os.getenv("TMP_DIR", "") or (_DATA_DIR / "tmp")).resolve()

    # row cap applied to exploratory queries (chart caps live in core.chart_types)
    QUERY_MAX_ROWS: int = int(os.getenv("QUERY_MAX_ROWS", "1500"))
    PREVIEW_ROWS: int = int(os.getenv("PREVIEW_ROWS", "5"))
    QUERY_TIMEOUT_SECONDS: float = float(os.getenv("QUERY_TIMEOUT_SECONDS", "30"))
    DEEP_DIVE_TIMEOUT_SECONDS: float = float(os.getenv("DEEP_DIVE_TIMEOUT_SECONDS", "60"))

    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
settings.DATASETS_DIR.mkdir(parents=True, exist_ok=True)
settings.META_DB.parent.mkdir(parents=True, exist_ok=True)
settings.TMP_DIR.mkdir(parents=True, exist_ok=True)
