"""
Switchboard Visualization Tools

Text charts that render anywhere a Feishu card can show Markdown: bar,
pie, line, heatmap and table, drawn with unicode blocks and emoji.
"""

import csv
import io
import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from switchboard.core.registry import capability

logger = logging.getLogger(__name__)

BAR_WIDTH = 20
SPARK_CHARS = "▁▂▃▄▅▆▇█"
HEAT_CELLS = ("🟥", "🟨", "🟩")

CHART_TYPES = ("bar", "pie", "line", "heatmap", "table")


class DataPoint(BaseModel):
    label: str
    value: float
    target: Optional[float] = None


class DataSource(BaseModel):
    text: str = Field(description="Raw CSV or JSON text")
    format: str = Field(default="csv", description="csv or json")
    label_column: str
    value_column: str
    target_column: Optional[str] = None


class VisualizationParams(BaseModel):
    chart_type: Optional[str] = Field(default=None, description="bar, pie, line, heatmap, or table")
    title: Optional[str] = Field(default=None, description="Chart title")
    data: Optional[List[DataPoint]] = Field(default=None, description="Structured [{label, value}] data")
    source: Optional[DataSource] = Field(default=None, description="Raw CSV/JSON text with column mappings")
    render_mode: Optional[str] = Field(default=None, description="auto or ascii")


# =============================================================================
# Data Parsing
# =============================================================================

def _to_float(value: Any) -> Optional[float]:
    try:
        return float(str(value).strip().rstrip("%"))
    except (TypeError, ValueError):
        return None


def parse_source(source: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Turn raw CSV/JSON text plus column mappings into label/value points."""
    text = source.get("text", "")
    fmt = (source.get("format") or "csv").lower()

    if fmt == "json":
        parsed = json.loads(text)
        rows = parsed if isinstance(parsed, list) else [parsed]
    else:
        rows = list(csv.DictReader(io.StringIO(text.strip())))

    label_col = source.get("label_column")
    value_col = source.get("value_column")
    target_col = source.get("target_column")

    points = []
    for row in rows:
        label = str(row.get(label_col) or "").strip()
        if not label:
            continue
        point = {"label": label, "value": _to_float(row.get(value_col)) or 0.0}
        if target_col:
            point["target"] = _to_float(row.get(target_col))
        points.append(point)
    return points


def normalize_data(data: Any) -> List[Dict[str, Any]]:
    """Accept points as dicts, models, or a {label: value} mapping."""
    if isinstance(data, dict):
        return [{"label": str(k), "value": _to_float(v) or 0.0} for k, v in data.items()]

    points = []
    for item in data or []:
        if isinstance(item, BaseModel):
            item = item.model_dump()
        label = str(item.get("label", "")).strip()
        if not label:
            continue
        points.append({
            "label": label,
            "value": _to_float(item.get("value")) or 0.0,
            "target": _to_float(item.get("target")) if item.get("target") is not None else None,
        })
    return points


# =============================================================================
# Renderers
# =============================================================================

def _bar(value: float, maximum: float, width: int = BAR_WIDTH) -> str:
    filled = int(round(width * value / maximum)) if maximum > 0 else 0
    return "█" * filled + "░" * (width - filled)


def _fmt(value: float) -> str:
    return f"{value:.0f}" if float(value).is_integer() else f"{value:.2f}"


def render_bar(points: List[Dict[str, Any]]) -> str:
    maximum = max((p["value"] for p in points), default=0)
    width = max(len(p["label"]) for p in points)
    return "\n".join(f"{p['label']:<{width}} {_bar(p['value'], maximum)} {_fmt(p['value'])}" for p in points)


def render_pie(points: List[Dict[str, Any]]) -> str:
    total = sum(p["value"] for p in points)
    width = max(len(p["label"]) for p in points)
    lines = []
    for p in points:
        share = 100.0 * p["value"] / total if total else 0.0
        lines.append(f"{p['label']:<{width}} {_bar(share, 100)} {share:.1f}%")
    return "\n".join(lines)


def render_line(points: List[Dict[str, Any]]) -> str:
    values = [p["value"] for p in points]
    low, high = min(values), max(values)
    span = (high - low) or 1
    spark = "".join(SPARK_CHARS[int((v - low) / span * (len(SPARK_CHARS) - 1))] for v in values)
    return f"{spark}\n{points[0]['label']} → {points[-1]['label']}  (min {_fmt(low)}, max {_fmt(high)})"


def render_heatmap(points: List[Dict[str, Any]], thresholds=(50.0, 80.0)) -> str:
    low, high = thresholds
    width = max(len(p["label"]) for p in points)
    lines = []
    for p in points:
        cell = HEAT_CELLS[0] if p["value"] < low else HEAT_CELLS[1] if p["value"] < high else HEAT_CELLS[2]
        lines.append(f"{cell} {p['label']:<{width}} {_fmt(p['value'])}")
    return "\n".join(lines)


def render_table(points: List[Dict[str, Any]]) -> str:
    lines = ["| Label | Value | Target | Progress |", "|---|---|---|---|"]
    for p in points:
        target = p.get("target")
        if target:
            progress = f"{_bar(min(p['value'], target), target, 10)} {100.0 * p['value'] / target:.0f}%"
            lines.append(f"| {p['label']} | {_fmt(p['value'])} | {_fmt(target)} | {progress} |")
        else:
            lines.append(f"| {p['label']} | {_fmt(p['value'])} | - | - |")
    return "\n".join(lines)


_RENDERERS = {
    "bar": render_bar,
    "pie": render_pie,
    "line": render_line,
    "heatmap": render_heatmap,
    "table": render_table,
}


def render_chart(chart_type: str, title: str, points: List[Dict[str, Any]]) -> str:
    """Markdown for a chart; tables render as Markdown, others in a code block."""
    renderer = _RENDERERS.get(chart_type, render_bar)
    body = renderer(points)
    if chart_type == "table":
        return f"**{title}**\n\n{body}"
    return f"**{title}**\n```\n{body}\n```"


def missing_data_prompt(chart_type: str) -> str:
    return (
        f"I can generate a **{chart_type}** chart, but I need the **data**.\n\n"
        f"Please provide either:\n"
        f"- A JSON array like:\n"
        f"[\n  {{ \"label\": \"A\", \"value\": 10 }},\n  {{ \"label\": \"B\", \"value\": 20 }}\n]\n\n"
        f"- Or paste CSV text (with headers) and tell me which columns are label/value."
    )


@capability(
    name="visualization",
    params=VisualizationParams,
    extraction_prompt="""
Extract visualization parameters.
- chart_type: bar, pie, line, heatmap, or table
- title: Any title mentioned

IMPORTANT:
- If the user didn't provide data, leave data/source empty (the executor will ask for it).
- If the user pasted CSV/JSON inline, put it into source.text and set source.format + columns when obvious.
""",
)
def visualization(
    chart_type: Optional[str] = None,
    title: Optional[str] = None,
    data: Optional[Any] = None,
    source: Optional[Dict[str, Any]] = None,
    render_mode: Optional[str] = None,
) -> Any:
    """Generate a text chart for label/value data.

    Args:
        chart_type: bar, pie, line, heatmap, or table
        title: Chart title
        data: Structured [{label, value}] data
        source: Raw CSV/JSON text with label_column and value_column
        render_mode: auto or ascii; both render text charts

    Returns:
        Markdown chart, or a request for data when none was given
    """
    chart_type = chart_type if chart_type in CHART_TYPES else "bar"
    title = title or "Chart"

    if data is None and source is None:
        return missing_data_prompt(chart_type)

    if isinstance(source, BaseModel):
        source = source.model_dump()

    points = parse_source(source) if source is not None else normalize_data(data)
    if not points:
        return {"success": False, "output": "", "error": "No usable data points"}

    logger.info(f"[Visualization] Rendering {chart_type} chart with {len(points)} points ({render_mode or 'auto'})")
    return {"success": True, "output": render_chart(chart_type, title, points)}
