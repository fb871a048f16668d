import json
import re
from typing import Any, Dict, Optional, Tuple

from queryviz.core.chart_specs import MAX_DATA_POINTS

VALID_SCHEMAS = (
    "https://vega.github.io/schema/vega-lite/v5.json",
    "https://vega.github.io/schema/vega-lite/v4.json",
)
MIN_WIDTH, MAX_WIDTH = 300, 1200
MIN_HEIGHT, MAX_HEIGHT = 200, 800

_UNSAFE_KEYS = {"__proto__", "constructor", "prototype"}

# expressions/signals can run code in the renderer
DANGEROUS_PATTERNS = [
    re.compile(r'"expr":', re.IGNORECASE),
    re.compile(r'"signal":', re.IGNORECASE),
    re.compile(r'"on":\s*\[', re.IGNORECASE),
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"onerror=", re.IGNORECASE),
    re.compile(r"onclick=", re.IGNORECASE),
]


def validate_chart_spec(spec: Any) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
    """
    Sanity/security check on a chart document before it is persisted or rendered.
    Returns (is_valid, error, sanitized_spec).
    """
    if not isinstance(spec, dict):
        return False, "Invalid spec: must be a valid object", None

    schema = spec.get("$schema")
    if not isinstance(schema, str) or not any(v in schema for v in VALID_SCHEMAS):
        return False, "Invalid or missing $schema property", None

    values = (spec.get("data") or {}).get("values")
    if isinstance(values, list):
        if len(values) > MAX_DATA_POINTS:
            return False, f"Data exceeds maximum allowed points ({MAX_DATA_POINTS})", None
        clean = [
            {k: v for k, v in row.items() if k not in _UNSAFE_KEYS} if isinstance(row, dict) else row
            for row in values
        ]
        spec = {**spec, "data": {**spec["data"], "values": clean}}

    text = json.dumps(spec, default=str)
    for rx in DANGEROUS_PATTERNS:
        if rx.search(text):
            return False, "Spec contains potentially dangerous properties", None

    width, height = spec.get("width"), spec.get("height")
    if isinstance(width, (int, float)) and not MIN_WIDTH <= width <= MAX_WIDTH:
        return False, f"Width must be between {MIN_WIDTH} and {MAX_WIDTH}", None
    if isinstance(height, (int, float)) and not MIN_HEIGHT <= height <= MAX_HEIGHT:
        return False, f"Height must be between {MIN_HEIGHT} and {MAX_HEIGHT}", None

    title = spec.get("title")
    fallback = title.get("text") if isinstance(title, dict) else title
    return True, None, ensure_description(spec, fallback)


def ensure_description(spec: Dict[str, Any], fallback: Optional[str] = None) -> Dict[str, Any]:
    desc = spec.get("description")
    if isinstance(desc, str) and desc:
        return spec
    return {**spec, "description": fallback or "Data visualization"}
