# queryviz/core/chart_specs.py
"""
Vega-Lite v5 document builders, one per chart family.

Every builder shares the same entry point, `build(rows, request, aggregated)`,
and owns its own encoding block and edge-case policy. Field types are
inferred once per build (see `BuildContext`), and number formats are chosen
per axis because x and y often live on very different scales.

Rejections raise `ChartTypeMismatch` with a message the calling agent can act
on; legibility problems that still render (a 14-slice pie) are returned as
warnings instead.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from queryviz.core.chart_types import ChartType
from queryviz.core.errors import ChartTypeMismatch
from queryviz.core.schemas import ChartRequest
from queryviz.core.stats import STAT_COLUMNS

logger = logging.getLogger("queryviz.charts")

VEGA_LITE_SCHEMA = "https://vega.github.io/schema/vega-lite/v5.json"
MAX_DATA_POINTS = 10_000
DEFAULT_HEIGHT = 350
DEFAULT_COLOR = "#1f77b4"  # tableau10 blue
TEMPORAL_TOOLTIP_FORMAT = "%B %d, %Y"
ORDINAL_MAX_DISTINCT = 20

_FONT = "system-ui, -apple-system, sans-serif"

BASE_CONFIG: Dict[str, Any] = {
    "axis": {
        "labelFontSize": 11,
        "titleFontSize": 13,
        "labelFont": _FONT,
        "titleFont": _FONT,
        "gridOpacity": 0.5,
        "domainWidth": 1,
    },
    "legend": {"labelFontSize": 11, "titleFontSize": 12, "labelFont": _FONT, "titleFont": _FONT},
    "title": {"fontSize": 16, "font": _FONT, "anchor": "start", "fontWeight": 600},
    "view": {"strokeWidth": 0, "continuousWidth": 550, "continuousHeight": 350},
    "bar": {"discreteBandSize": 40, "cornerRadiusEnd": 4},
    "line": {"strokeWidth": 2, "point": True},
    "area": {"line": True, "opacity": 0.7},
    "circle": {"size": 80, "opacity": 0.7},
}

_AGGREGATE_CALL = re.compile(r"\b(AVG|SUM|COUNT|MIN|MAX)\s*\(", re.IGNORECASE)
_GROUP_BY = re.compile(r"\bGROUP\s+BY\b", re.IGNORECASE)

_MONTHS = r"(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?"
_DATE_PARTS = [
    re.compile(r"^\d{4}[-/.]\d{1,2}"),                       # 2024-03, 2024-03-01T10:00
    re.compile(r"^\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}\b"),       # 03/01/2024
    re.compile(rf"\b{_MONTHS}\s+\d{{1,2}},?\s+\d{{4}}\b", re.IGNORECASE),  # March 1, 2024
    re.compile(rf"\b\d{{1,2}}\s+{_MONTHS}\s+\d{{4}}\b", re.IGNORECASE),    # 1 Mar 2024
    re.compile(rf"^{_MONTHS}\s+\d{{4}}$", re.IGNORECASE),                   # Mar 2024
]


@dataclass
class ChartDocument:
    spec: Dict[str, Any]
    warnings: List[str] = field(default_factory=list)


# ---------------- type inference ----------------

def is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and math.isnan(value))


def is_integral(value: Any) -> bool:
    return is_number(value) and (isinstance(value, int) or float(value).is_integer())


def _parses_as_number(text: str) -> bool:
    try:
        float(text)
        return True
    except ValueError:
        return False


def is_temporal_value(value: Any) -> bool:
    """Date-like string that is not also a bare number ("2024-03-01" yes, "7" no, "T1" no)."""
    if not isinstance(value, str) or _parses_as_number(value):
        return False
    # pandas reads codes like "T1" or "3pm" as times of day; require a date part
    if not any(rx.search(value) for rx in _DATE_PARTS):
        return False
    try:
        ts = pd.to_datetime(value)
    except (ValueError, TypeError, OverflowError):
        return False
    return not pd.isna(ts)


def first_non_null(rows: List[Dict[str, Any]], name: str) -> Any:
    for row in rows:
        value = row.get(name)
        if value is not None and not (isinstance(value, float) and math.isnan(value)):
            return value
    return None


def infer_field_type(rows: List[Dict[str, Any]], name: str) -> str:
    sample = first_non_null(rows, name)
    if is_temporal_value(sample):
        return "temporal"
    if is_number(sample):
        distinct = {row.get(name) for row in rows if row.get(name) is not None}
        if len(distinct) <= ORDINAL_MAX_DISTINCT and all(is_integral(v) for v in distinct):
            return "ordinal"
        return "quantitative"
    return "nominal"


def number_format(rows: List[Dict[str, Any]], name: str) -> str:
    """Two decimals for rate-like ranges (0 < max < 2), rounded integers otherwise."""
    values = [row.get(name) for row in rows if is_number(row.get(name))]
    if not values:
        return ",.0f"
    top = max(values)
    return ",.2f" if 0 < top < 2 else ",.0f"


def to_number(value: Any) -> Optional[float]:
    # NUMERIC/DECIMAL columns may arrive as strings
    if is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        return None if math.isnan(parsed) else parsed
    return None


# ---------------- build context ----------------

class BuildContext:
    """Everything derived from the rows once per build."""

    def __init__(self, rows: List[Dict[str, Any]], request: ChartRequest):
        self.rows = rows
        self.request = request
        self.frame = pd.DataFrame.from_records(rows)
        self.x = request.x_field
        self.y = request.y_field
        self.color = request.color_field
        self.x_title = request.x_axis_label or request.x_field
        self.y_title = request.y_axis_label or request.y_field

        self.x_type = infer_field_type(rows, self.x)
        self.x_temporal = self.x_type == "temporal"
        self.x_format = number_format(rows, self.x)
        self.y_format = number_format(rows, self.y)

    def distinct(self, name: str) -> int:
        if name not in self.frame.columns:
            return 0
        return int(self.frame[name].nunique(dropna=False))

    def x_axis(self, label_angle: int = 0) -> Dict[str, Any]:
        axis: Dict[str, Any] = {
            "title": self.x_title,
            "labelAngle": label_angle,
            "labelOverlap": "greedy",
            "labelPadding": 5,
            "labelLimit": 100,
        }
        if self.x_type in ("quantitative", "ordinal"):
            axis["format"] = self.x_format
        return axis

    def y_quantitative(self) -> Dict[str, Any]:
        return {
            "field": self.y,
            "type": "quantitative",
            "axis": {"format": self.y_format, "title": self.y_title},
        }

    def color_channel(self, legend_extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.color:
            return {"value": DEFAULT_COLOR}
        legend = {"title": self.color, **(legend_extra or {})}
        return {
            "field": self.color,
            "type": "nominal",
            "scale": {"scheme": "tableau10"},
            "legend": legend,
        }

    def x_tooltip(self) -> Dict[str, Any]:
        tip: Dict[str, Any] = {"field": self.x, "type": self.x_type, "title": self.x_title}
        if self.x_temporal:
            tip["format"] = TEMPORAL_TOOLTIP_FORMAT
        elif self.x_type in ("quantitative", "ordinal"):
            tip["format"] = self.x_format
        return tip

    def tooltips(self) -> List[Dict[str, Any]]:
        tips = [
            self.x_tooltip(),
            {"field": self.y, "type": "quantitative", "title": self.y_title, "format": self.y_format},
        ]
        if self.color:
            tips.append({"field": self.color, "type": "nominal", "title": self.color})
        return tips


def _box_size(categories: int) -> int:
    if categories > 20:
        return 10
    if categories > 10:
        return 20
    return 40


# ---------------- builders ----------------

class ChartBuilder:
    chart_type: ChartType

    def check_request(self, request: ChartRequest, source_sql: str) -> None:
        """Reject requests that cannot succeed before any query is re-executed."""

    def build(self, rows: List[Dict[str, Any]], request: ChartRequest, aggregated: bool = False) -> ChartDocument:
        if not rows:
            raise ChartTypeMismatch(
                "No data available to visualize. Re-run the query and check its filters return rows."
            )
        if len(rows) > MAX_DATA_POINTS:
            raise ChartTypeMismatch(
                f"Dataset too large ({len(rows)} points). Maximum is {MAX_DATA_POINTS}. "
                "Consider aggregating data first.",
                details={"row_count": len(rows), "max_points": MAX_DATA_POINTS},
            )

        ctx = BuildContext(rows, request)
        spec = self._base_spec(ctx)
        warnings: List[str] = []
        self.encode(spec, ctx, warnings, aggregated)
        for w in warnings:
            logger.warning("%s chart: %s", self.chart_type.value, w)
        return ChartDocument(spec=spec, warnings=warnings)

    def encode(self, spec: Dict[str, Any], ctx: BuildContext, warnings: List[str], aggregated: bool) -> None:
        raise NotImplementedError

    def _base_spec(self, ctx: BuildContext) -> Dict[str, Any]:
        req = ctx.request
        summary = f"{self.chart_type.value} chart showing {ctx.y_title} by {ctx.x_title}"
        spec: Dict[str, Any] = {
            "$schema": VEGA_LITE_SCHEMA,
            "description": f"{req.title}. {summary}" if req.title else summary,
            "width": "container",
            "height": DEFAULT_HEIGHT,
            "autosize": {"type": "fit", "contains": "padding"},
            "data": {"values": ctx.rows},
            "config": BASE_CONFIG,
        }
        if req.title:
            spec["title"] = {"text": req.title, **({"subtitle": req.subtitle} if req.subtitle else {})}
        return spec


class BarChart(ChartBuilder):
    chart_type = ChartType.BAR

    def encode(self, spec, ctx, warnings, aggregated):
        categories = ctx.distinct(ctx.x)
        mark: Dict[str, Any] = {"type": "bar", "cornerRadiusEnd": 4, "tooltip": True, "invalid": "filter"}
        if categories > 20:
            mark["discreteBandSize"] = 25
        angle = -45 if ctx.x_type == "nominal" and categories > 8 else 0

        color_legend = {"titleFontSize": 12, "labelFontSize": 11, "labelLimit": 150, "symbolSize": 100}
        spec["mark"] = mark
        spec["encoding"] = {
            "x": {"field": ctx.x, "type": ctx.x_type, "axis": ctx.x_axis(angle)},
            "y": ctx.y_quantitative(),
            "color": ctx.color_channel(color_legend),
            "tooltip": ctx.tooltips(),
        }


class LineChart(ChartBuilder):
    chart_type = ChartType.LINE

    def _mark(self) -> Dict[str, Any]:
        # break at nulls but keep the missing periods on the scale
        return {
            "type": "line",
            "point": True,
            "tooltip": True,
            "strokeWidth": 2,
            "invalid": "break-paths-show-domains",
        }

    def encode(self, spec, ctx, warnings, aggregated):
        angle = -45 if ctx.distinct(ctx.x) > 10 else 0
        spec["mark"] = self._mark()
        spec["encoding"] = {
            "x": {"field": ctx.x, "type": ctx.x_type, "axis": ctx.x_axis(angle)},
            "y": ctx.y_quantitative(),
            "color": ctx.color_channel(),
            "tooltip": ctx.tooltips(),
        }


class AreaChart(LineChart):
    chart_type = ChartType.AREA

    def _mark(self) -> Dict[str, Any]:
        return {
            "type": "area",
            "line": True,
            "point": False,
            "tooltip": True,
            "invalid": "break-paths-show-domains",
        }


class ScatterChart(ChartBuilder):
    chart_type = ChartType.SCATTER

    def encode(self, spec, ctx, warnings, aggregated):
        axis_common = {"labelOverlap": "greedy", "labelPadding": 5, "labelLimit": 100}
        spec["mark"] = {"type": "circle", "size": 80, "opacity": 0.7, "tooltip": True, "invalid": "filter"}
        tips = [
            {"field": ctx.x, "type": "quantitative", "title": ctx.x_title, "format": ctx.x_format},
            {"field": ctx.y, "type": "quantitative", "title": ctx.y_title, "format": ctx.y_format},
        ]
        if ctx.color:
            tips.append({"field": ctx.color, "type": "nominal", "title": ctx.color})
        spec["encoding"] = {
            "x": {
                "field": ctx.x,
                "type": "quantitative",
                "axis": {"format": ctx.x_format, "title": ctx.x_title, **axis_common},
            },
            "y": {
                "field": ctx.y,
                "type": "quantitative",
                "axis": {"format": ctx.y_format, "title": ctx.y_title, **axis_common},
            },
            "color": ctx.color_channel(),
            "tooltip": tips,
        }


class PieChart(ChartBuilder):
    chart_type = ChartType.PIE

    def encode(self, spec, ctx, warnings, aggregated):
        categories = ctx.distinct(ctx.x)
        if categories > 10:
            warnings.append(
                f"Pie chart has {categories} categories. Consider using a bar chart for better readability."
            )
        spec["mark"] = {"type": "arc", "tooltip": True, "invalid": "filter", "innerRadius": 0, "outerRadius": 120}
        spec["encoding"] = {
            "theta": {"field": ctx.y, "type": "quantitative", "stack": True},
            "color": {
                "field": ctx.x,
                "type": "nominal",
                "scale": {"scheme": "tableau10"},
                "legend": {"title": ctx.x_title, "orient": "right", "labelLimit": 150},
            },
            "tooltip": [
                {"field": ctx.x, "type": "nominal", "title": ctx.x_title},
                {"field": ctx.y, "type": "quantitative", "title": ctx.y_title, "format": ctx.y_format},
            ],
        }
        spec["view"] = {"stroke": None}


class BoxPlotChart(ChartBuilder):
    chart_type = ChartType.BOXPLOT
    MIN_POINTS_PER_CATEGORY = 3

    def check_request(self, request, source_sql):
        has_agg = bool(_AGGREGATE_CALL.search(source_sql or ""))
        if has_agg or _GROUP_BY.search(source_sql or ""):
            found = "aggregation functions (AVG/SUM/COUNT/MIN/MAX)" if has_agg else "GROUP BY"
            raise ChartTypeMismatch(
                f"Boxplot requires raw, unaggregated data but your query contains {found}. "
                f"For aggregated data showing {request.y_field} by {request.x_field}, use chartType='bar' instead.",
                details={"suggested_chart_type": ChartType.BAR.value},
            )

    def encode(self, spec, ctx, warnings, aggregated):
        sample_x = first_non_null(ctx.rows, ctx.x)
        if not (isinstance(sample_x, str) or is_integral(sample_x)):
            warnings.append("Box plot requires a categorical x-axis. Consider a scatter plot instead.")
        if aggregated:
            self._encode_aggregated(spec, ctx)
        else:
            self._encode_raw(spec, ctx)

    def _encode_raw(self, spec, ctx):
        per_category = ctx.frame.groupby(ctx.x, dropna=False).size()
        fewest = int(per_category.min())
        if fewest < self.MIN_POINTS_PER_CATEGORY:
            plural = "" if fewest == 1 else "s"
            raise ChartTypeMismatch(
                f"Boxplot requires multiple raw data points per category (found {fewest} point{plural} "
                "per category). Your data appears to be pre-aggregated (e.g., using AVG, COUNT, SUM). "
                "Use a bar chart to compare aggregated values across categories instead.",
                details={"min_points_per_category": fewest, "suggested_chart_type": ChartType.BAR.value},
            )

        categories = len(per_category)
        spec["mark"] = {
            "type": "boxplot",
            "extent": "min-max",
            "size": _box_size(categories),
            "tooltip": True,
            "invalid": "filter",
        }
        spec["encoding"] = {
            "x": {
                "field": ctx.x,
                "type": "nominal",
                "axis": {
                    "title": ctx.x_title,
                    "labelAngle": -45 if categories > 10 else 0,
                    "labelOverlap": "greedy",
                    "labelPadding": 5,
                    "labelLimit": 100,
                },
            },
            "y": {
                "field": ctx.y,
                "type": "quantitative",
                "axis": {"format": ctx.y_format, "title": ctx.y_title},
                "scale": {"zero": False},
            },
            "color": {"field": ctx.x, "type": "nominal", "scale": {"scheme": "tableau10"}, "legend": None},
            "tooltip": [
                {"field": ctx.x, "type": "nominal", "title": ctx.x_title},
                {"field": ctx.y, "type": "quantitative", "title": f"{ctx.y_title} (Range)", "format": ctx.y_format},
            ],
        }

    def _encode_aggregated(self, spec, ctx):
        # rows are {x, min, q1, median, q3, max, count}; no primitive mark carries all five
        # statistics with a full tooltip, so the box is composed from layers
        missing = [c for c in STAT_COLUMNS if c not in ctx.frame.columns]
        if missing:
            raise ChartTypeMismatch(
                f"Aggregate box plot data is missing statistics columns: {', '.join(missing)}."
            )
        categories = len(ctx.rows)
        size = _box_size(categories)
        fmt = number_format(ctx.rows, "max")
        x_nominal = {"field": ctx.x, "type": "nominal"}
        label = ctx.y_title

        spec["layer"] = [
            {
                "mark": {"type": "rule", "size": 1},
                "encoding": {
                    "x": {**x_nominal, "axis": {
                        "title": ctx.x_title,
                        "labelAngle": -45 if categories > 10 else 0,
                        "labelOverlap": "greedy",
                        "labelPadding": 5,
                        "labelLimit": 100,
                    }},
                    "y": {
                        "field": "min",
                        "type": "quantitative",
                        "scale": {"zero": False},
                        "axis": {"format": fmt, "title": label},
                    },
                    "y2": {"field": "max"},
                },
            },
            {
                "mark": {"type": "bar", "size": size},
                "encoding": {
                    "x": dict(x_nominal),
                    "y": {"field": "q1", "type": "quantitative"},
                    "y2": {"field": "q3"},
                    "color": {"field": ctx.x, "type": "nominal", "scale": {"scheme": "tableau10"}, "legend": None},
                },
            },
            {
                "mark": {"type": "tick", "color": "white", "size": size},
                "encoding": {
                    "x": dict(x_nominal),
                    "y": {"field": "median", "type": "quantitative"},
                },
            },
            {
                # invisible full box, present only to carry the tooltip
                "mark": {"type": "bar", "size": size, "opacity": 0},
                "encoding": {
                    "x": dict(x_nominal),
                    "y": {"field": "q1", "type": "quantitative"},
                    "y2": {"field": "q3"},
                    "tooltip": [
                        {"field": ctx.x, "type": "nominal", "title": ctx.x_title},
                        {"field": "min", "type": "quantitative", "title": f"Min {label}", "format": fmt},
                        {"field": "q1", "type": "quantitative", "title": f"Q1 {label}", "format": fmt},
                        {"field": "median", "type": "quantitative", "title": f"Median {label}", "format": fmt},
                        {"field": "q3", "type": "quantitative", "title": f"Q3 {label}", "format": fmt},
                        {"field": "max", "type": "quantitative", "title": f"Max {label}", "format": fmt},
                        {"field": "count", "type": "quantitative", "title": "Count", "format": ",.0f"},
                    ],
                },
            },
        ]
        spec["usermeta"] = {
            "aggregated": True,
            "statistics": list(STAT_COLUMNS),
            "note": (
                "Computed from server-side percentile statistics. Whiskers span min to max; "
                "individual outlier points are not drawn."
            ),
        }


class HeatmapChart(ChartBuilder):
    chart_type = ChartType.HEATMAP
    MAX_CATEGORIES = 30

    def check_request(self, request, source_sql):
        if not request.color_field:
            raise ChartTypeMismatch(
                "Heatmap requires a colorField parameter to specify the quantitative value for color "
                "encoding. This should be a numeric column from your aggregated data "
                "(e.g., COUNT(*), AVG(...), SUM(...)).",
                details={"missing": "colorField"},
            )

    def encode(self, spec, ctx, warnings, aggregated):
        self.check_request(ctx.request, "")
        value_field = ctx.color
        if to_number(first_non_null(ctx.rows, value_field)) is None:
            raise ChartTypeMismatch(
                f"Heatmap requires a quantitative value field for color encoding. The field '{value_field}' "
                "does not contain numeric values. Please ensure your query includes a numeric aggregation "
                "(e.g., COUNT(*), AVG(...), SUM(...)) and specify it via colorField parameter.",
                details={"field": value_field},
            )

        pairs = ctx.frame.groupby([ctx.x, ctx.y], dropna=False).size()
        duplicates = int((pairs > 1).sum())
        if duplicates:
            warnings.append(
                f"Heatmap has {duplicates} duplicate x,y combinations. "
                f"Data should be aggregated with GROUP BY {ctx.x}, {ctx.y}."
            )

        x_count, y_count = ctx.distinct(ctx.x), ctx.distinct(ctx.y)
        if x_count > self.MAX_CATEGORIES or y_count > self.MAX_CATEGORIES:
            warnings.append(
                f"Heatmap has {x_count}x{y_count} cells. Consider filtering or binning for better "
                f"readability (recommend <={self.MAX_CATEGORIES} categories per dimension)."
            )

        numeric = [to_number(r.get(value_field)) for r in ctx.rows]
        top = max((v for v in numeric if v is not None), default=None)
        value_format = ",.2f" if top is not None and 0 < top < 2 else ",.0f"

        spec["mark"] = {"type": "rect", "tooltip": True, "invalid": "filter"}
        spec["encoding"] = {
            "x": {
                "field": ctx.x,
                "type": "nominal",
                "axis": {
                    "title": ctx.x_title,
                    "labelAngle": -45 if x_count > 10 else 0,
                    "labelOverlap": "greedy",
                    "labelPadding": 5,
                    "labelLimit": 100,
                },
            },
            "y": {
                "field": ctx.y,
                "type": "nominal",
                "axis": {"title": ctx.y_title, "labelOverlap": "greedy"},
            },
            "color": {
                "field": value_field,
                "type": "quantitative",
                "scale": {"scheme": "blues"},
                "legend": {"title": value_field, "orient": "right"},
            },
            "tooltip": [
                {"field": ctx.x, "type": "nominal", "title": ctx.x_title},
                {"field": ctx.y, "type": "nominal", "title": ctx.y_title},
                {"field": value_field, "type": "quantitative", "title": value_field, "format": value_format},
            ],
        }


BUILDERS: Dict[ChartType, ChartBuilder] = {
    b.chart_type: b
    for b in (BarChart(), LineChart(), AreaChart(), ScatterChart(), PieChart(), BoxPlotChart(), HeatmapChart())
}

_unbuilt = set(ChartType) - set(BUILDERS)
if _unbuilt:
    raise RuntimeError(f"no chart builder registered for: {sorted(t.value for t in _unbuilt)}")


def get_builder(chart_type: ChartType | str) -> ChartBuilder:
    return BUILDERS[ChartType(chart_type)]


def build_chart_spec(rows: List[Dict[str, Any]], request: ChartRequest, aggregated: bool = False) -> ChartDocument:
    return get_builder(request.chart_type).build(rows, request, aggregated=aggregated)
