"""
Switchboard OKR Tools

Manager OKR review over the analytics database: for every city company, the
share of manager metrics that actually carry a value (has_metric_percentage).
"""

import logging
import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from switchboard.core.config import get_config
from switchboard.core.registry import capability

logger = logging.getLogger(__name__)

_MONTH_RE = re.compile(r"(\d{1,2})\s*月")
_QUARTER_RE = re.compile(r"(?<![A-Za-z0-9])Q([1-4])(?![0-9])", re.IGNORECASE)

_engines: Dict[str, Engine] = {}


def default_okr_period(now: Optional[datetime] = None) -> str:
    """Current month in the "N 月" format used by the metrics table."""
    now = now or datetime.now()
    return f"{now.month} 月"


def infer_okr_period(query: str) -> Optional[str]:
    """Month ("11月" -> "11 月") or quarter ("q4" -> "Q4") mentioned in a query."""
    month = _MONTH_RE.search(query or "")
    if month:
        return f"{int(month.group(1))} 月"
    quarter = _QUARTER_RE.search(query or "")
    if quarter:
        return f"Q{quarter.group(1)}"
    return None


def _get_engine(database_url: str) -> Engine:
    engine = _engines.get(database_url)
    if engine is None:
        engine = create_engine(database_url)
        _engines[database_url] = engine
    return engine


def analyze_has_metric_percentage(period: str, engine: Optional[Engine] = None) -> Dict[str, Any]:
    """Has-metric coverage per company for one period.

    Args:
        period: Period label, e.g. "11 月" or "Q4"
        engine: SQLAlchemy engine (defaults to analytics.database_url)

    Returns:
        Dict with per-company summaries sorted by coverage, best first
    """
    analytics = get_config().analytics
    engine = engine or _get_engine(analytics.database_url)
    table = analytics.metrics_table

    query = text(f"""
        SELECT COALESCE(company_name, 'Unknown') AS company_name,
               metric_type,
               COUNT(*) AS total,
               SUM(CASE WHEN value IS NULL THEN 1 ELSE 0 END) AS nulls
        FROM {table}
        WHERE period = :period
        GROUP BY COALESCE(company_name, 'Unknown'), metric_type
    """)

    with engine.connect() as conn:
        rows = conn.execute(query, {"period": period}).fetchall()

    by_company: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for company_name, metric_type, total, nulls in rows:
        if company_name == "Unknown" or not total:
            continue
        has_metric = 100.0 - (100.0 * (nulls or 0) / total)
        by_company[company_name].append({
            "metric_type": metric_type,
            "has_metric_percentage": round(has_metric, 2),
            "total": total,
            "nulls": nulls or 0,
        })

    summary = []
    for company, metrics in by_company.items():
        average = sum(m["has_metric_percentage"] for m in metrics) / len(metrics)
        summary.append({
            "company": company,
            "average_has_metric_percentage": round(average, 2),
            "metrics": metrics,
        })
    summary.sort(key=lambda item: item["average_has_metric_percentage"], reverse=True)

    overall = (
        round(sum(s["average_has_metric_percentage"] for s in summary) / len(summary), 2)
        if summary else 0.0
    )

    return {
        "period": period,
        "total_companies": len(summary),
        "overall_average": overall,
        "summary": summary,
    }


class OkrReviewParams(BaseModel):
    period: Optional[str] = Field(default=None, description="Time period (e.g., '11 月', 'Q4')")


@capability(
    name="mgr_okr_review",
    params=OkrReviewParams,
    extraction_prompt="""
Extract OKR query parameters.
- Period: Look for month (11月, 12月) or quarter (Q4, Q3)
Return period in the format "11 月" (space before 月) when month is provided.
""",
)
def mgr_okr_review(period: Optional[str] = None, query: str = "") -> Dict[str, Any]:
    """Analyze manager OKR metrics by checking has_metric_percentage per city company.

    Args:
        period: Period to analyze, e.g. "11 月". Defaults to the period in the query or the current month.
        query: Original user query, used to infer the period

    Returns:
        Coverage summary per company
    """
    period = period or infer_okr_period(query) or default_okr_period()
    logger.info(f"[OKR] Reviewing has_metric_percentage for {period}")
    try:
        return analyze_has_metric_percentage(period)
    except Exception as e:
        logger.error(f"[OKR] Analysis failed for {period}: {e}")
        return {"period": period, "error": str(e) or "Failed to analyze OKR metrics"}
