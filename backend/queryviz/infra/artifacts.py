import hashlib
from pathlib import Path
from typing import Tuple
from queryviz.core.config import settings

CHUNK = 1 << 20

class DatasetStore:
    """Content-addressed home for dataset parquet files."""

    def __init__(self, root: Path | None = None):
        self.root = (root or settings.DATASETS_DIR).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _hash_file(self, path: Path) -> str:
        h = hashlib.sha256()
        with path.open("rb") as f:
            while b := f.read(CHUNK):
                h.update(b)
        return h.hexdigest()

    def path_for(self, digest: str) -> Path:
        return self.root / digest[:2] / f"{digest}.parquet"

    def store_parquet(self, temp_parquet: Path) -> Tuple[str, Path]:
        # identical uploads share one file; each still gets its own dataset row
        digest = self._hash_file(temp_parquet)
        dst = self.path_for(digest)
        dst.parent.mkdir(parents=True, exist_ok=True)
        if not dst.exists():
            temp_parquet.replace(dst)
        else:
            temp_parquet.unlink(missing_ok=True)
        return digest, dst
