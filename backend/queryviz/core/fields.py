import math
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

SUGGESTION_RATIO = 0.4


class FieldValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    suggestions: Dict[str, str] = Field(default_factory=dict)


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit insertion/deletion/substitution costs."""
    m, n = len(a), len(b)
    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(m + 1):
        dp[i][0] = i
    for j in range(n + 1):
        dp[0][j] = j
    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if a[i - 1] == b[j - 1]:
                dp[i][j] = dp[i - 1][j - 1]
            else:
                dp[i][j] = 1 + min(dp[i - 1][j], dp[i][j - 1], dp[i - 1][j - 1])
    return dp[m][n]


def closest_column(name: str, columns: List[str]) -> tuple[Optional[str], int]:
    best, best_d = None, math.inf
    needle = name.lower()
    for col in columns:
        d = levenshtein(needle, col.lower())
        if d < best_d:
            best, best_d = col, d
    return best, best_d


def validate_chart_fields(
    x_field: str,
    y_field: str,
    color_field: Optional[str],
    available_columns: List[str],
) -> FieldValidationResult:
    """
    Check requested chart fields against the query's recorded column order.

    Suggestions are offered, never applied: the caller decides whether the
    closest column is what it meant.
    """
    checks = [("xField", x_field), ("yField", y_field)]
    if color_field:
        checks.append(("colorField", color_field))

    errors: List[str] = []
    suggestions: Dict[str, str] = {}
    for label, value in checks:
        if value in available_columns:
            continue
        errors.append(f"Field '{value}' not found in query results")
        match, dist = closest_column(value, available_columns)
        # only plausible matches; short names would otherwise match anything
        if match is not None and dist <= math.ceil(len(value) * SUGGESTION_RATIO):
            suggestions[label] = match

    return FieldValidationResult(valid=not errors, errors=errors, suggestions=suggestions)
