from dataclasses import dataclass
from enum import Enum
from typing import Dict


class ChartType(str, Enum):
    BAR = "bar"
    LINE = "line"
    SCATTER = "scatter"
    AREA = "area"
    PIE = "pie"
    BOXPLOT = "boxplot"
    HEATMAP = "heatmap"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value == key:
                    return member
            return _FAMILY_ALIASES.get(key)
        return None


# chart family names used by callers that think in terms of intent
_FAMILY_ALIASES: Dict[str, ChartType] = {
    "comparison": ChartType.BAR,
    "categorical": ChartType.BAR,
    "trend": ChartType.LINE,
    "correlation": ChartType.SCATTER,
    "cumulative": ChartType.AREA,
    "proportion": ChartType.PIE,
    "distribution": ChartType.BOXPLOT,
    "box": ChartType.BOXPLOT,
    "pattern": ChartType.HEATMAP,
    "2d": ChartType.HEATMAP,
}


@dataclass(frozen=True)
class VolumePolicy:
    max_rows: int
    aggregate_fallback: bool


DISTRIBUTION_ROW_CAP = 10_000
CONTINUOUS_ROW_CAP = 5_000
CATEGORICAL_ROW_CAP = 1_500

VOLUME_POLICIES: Dict[ChartType, VolumePolicy] = {
    ChartType.BOXPLOT: VolumePolicy(DISTRIBUTION_ROW_CAP, aggregate_fallback=True),
    ChartType.SCATTER: VolumePolicy(CONTINUOUS_ROW_CAP, aggregate_fallback=False),
    ChartType.LINE: VolumePolicy(CONTINUOUS_ROW_CAP, aggregate_fallback=False),
    ChartType.AREA: VolumePolicy(CONTINUOUS_ROW_CAP, aggregate_fallback=False),
    ChartType.BAR: VolumePolicy(CATEGORICAL_ROW_CAP, aggregate_fallback=False),
    ChartType.PIE: VolumePolicy(CATEGORICAL_ROW_CAP, aggregate_fallback=False),
    ChartType.HEATMAP: VolumePolicy(CATEGORICAL_ROW_CAP, aggregate_fallback=False),
}
