"""
OKR Analysis Workflow

1. Resolve the period from the query (``11月`` -> ``"11 月"``, ``Q4``)
2. Query has-metric coverage per company
3. Render a bar chart
4. Summarize; falls back to a fixed-format summary if the model call fails
"""

import asyncio
import logging
from typing import Any, Dict

from switchboard.core.llm import complete_text
from switchboard.tools.okr import analyze_has_metric_percentage, default_okr_period, infer_okr_period
from switchboard.tools.visualization import render_chart

from .base import Workflow, WorkflowExecutionResult, WorkflowInput

logger = logging.getLogger(__name__)

LOW_COVERAGE_THRESHOLD = 50.0


def build_chart_points(metrics: Dict[str, Any]):
    return [
        {"label": item["company"], "value": item["average_has_metric_percentage"]}
        for item in metrics.get("summary", [])
    ]


def summarize_metrics(metrics: Dict[str, Any]) -> str:
    """Fixed-format summary used when no model is available."""
    summary = metrics.get("summary", [])
    lines = [
        f"**周期**: {metrics['period']}",
        f"**公司数**: {metrics['total_companies']}",
        f"**平均覆盖率**: {metrics['overall_average']}%",
    ]
    if summary:
        best, worst = summary[0], summary[-1]
        lines.append(f"**最高**: {best['company']} ({best['average_has_metric_percentage']}%)")
        lines.append(f"**最低**: {worst['company']} ({worst['average_has_metric_percentage']}%)")
        low = [s["company"] for s in summary if s["average_has_metric_percentage"] < LOW_COVERAGE_THRESHOLD]
        if low:
            lines.append(f"**低于 {LOW_COVERAGE_THRESHOLD:.0f}%**: {', '.join(low)}")
    return "\n".join(lines)


class OkrAnalysisWorkflow(Workflow):
    """OKR metric coverage report with chart and insights."""

    id = "okr-analysis"
    name = "OKR Analysis"
    description = "Analyze manager OKR metric coverage per company with a chart and summary"
    tags = ["okr", "analytics"]

    async def run(self, input: WorkflowInput) -> WorkflowExecutionResult:
        period = infer_okr_period(input.query) or default_okr_period()
        logger.info(f"[OKR Workflow] Analyzing period {period}")

        await input.update(f"📊 正在查询 {period} 的 OKR 数据...")
        metrics = await asyncio.to_thread(analyze_has_metric_percentage, period)

        if not metrics.get("summary"):
            return self._completed(f"未找到 {period} 的 OKR 数据。请确认该周期的数据已经导入。")

        chart = render_chart("bar", f"{period} 指标覆盖率 (%)", build_chart_points(metrics))
        await input.update(f"📈 已生成图表，正在分析 {metrics['total_companies']} 家公司...")

        facts = summarize_metrics(metrics)
        try:
            insights = await complete_text(
                "你是 OKR 分析师。根据下面的指标覆盖率数据，用中文写 3-5 条简洁的分析要点，"
                "指出表现最好和最需要改进的公司，并给出建议。\n\n"
                f"{facts}\n\n明细:\n"
                + "\n".join(
                    f"- {s['company']}: {s['average_has_metric_percentage']}%" for s in metrics["summary"]
                )
            )
        except Exception as e:
            logger.warning(f"[OKR Workflow] Insight generation failed, using fixed summary: {e}")
            insights = ""

        sections = [f"## 📊 OKR 分析报告 ({period})", facts, chart]
        if insights:
            sections.append(f"### 分析\n\n{insights}")
        return self._completed("\n\n".join(sections))
