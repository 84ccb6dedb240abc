"""Unit tests for OKR coverage analysis and the OKR workflow."""
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from switchboard.tools.okr import (
    analyze_has_metric_percentage,
    default_okr_period,
    infer_okr_period,
    mgr_okr_review,
)
from switchboard.workflows.base import WorkflowInput
from switchboard.workflows.okr_analysis import OkrAnalysisWorkflow, build_chart_points, summarize_metrics

ROWS = [
    # company, metric_type, value, period
    ("北京公司", "revenue", 1.0, "11 月"),
    ("北京公司", "revenue", 2.0, "11 月"),
    ("北京公司", "cost", 3.0, "11 月"),
    ("上海公司", "revenue", None, "11 月"),
    ("上海公司", "revenue", 5.0, "11 月"),
    (None, "revenue", 1.0, "11 月"),
    ("北京公司", "revenue", None, "10 月"),
]


@pytest.fixture
def okr_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.connect() as conn:
        conn.execute(text(
            "CREATE TABLE okr_metrics (company_name TEXT, metric_type TEXT, value REAL, period TEXT)"
        ))
        for company, metric_type, value, period in ROWS:
            conn.execute(
                text("INSERT INTO okr_metrics VALUES (:c, :m, :v, :p)"),
                {"c": company, "m": metric_type, "v": value, "p": period},
            )
        conn.commit()
    yield engine
    engine.dispose()


class TestPeriods:
    """Tests for period inference."""

    def test_month(self):
        """Test months are normalized with a space before 月."""
        assert infer_okr_period("看看11月的OKR") == "11 月"
        assert infer_okr_period("3 月数据") == "3 月"

    def test_quarter(self):
        """Test quarters are upper-cased."""
        assert infer_okr_period("分析q4的OKR") == "Q4"

    def test_none(self):
        """Test a query without a period."""
        assert infer_okr_period("OKR分析") is None

    def test_default(self):
        """Test the default is the current month."""
        assert default_okr_period(datetime(2026, 10, 18)) == "10 月"


class TestAnalysis:
    """Tests for coverage arithmetic."""

    def test_has_metric_percentage(self, okr_engine):
        """Test coverage per company, sorted best first, unknown companies dropped."""
        result = analyze_has_metric_percentage("11 月", engine=okr_engine)

        assert result["total_companies"] == 2
        assert [s["company"] for s in result["summary"]] == ["北京公司", "上海公司"]
        assert result["summary"][0]["average_has_metric_percentage"] == 100.0
        assert result["summary"][1]["average_has_metric_percentage"] == 50.0
        assert result["overall_average"] == 75.0

    def test_empty_period(self, okr_engine):
        """Test a period with no rows."""
        result = analyze_has_metric_percentage("1 月", engine=okr_engine)
        assert result["summary"] == []
        assert result["overall_average"] == 0.0

    def test_capability_reports_errors(self):
        """Test database failures come back as an error field."""
        with patch("switchboard.tools.okr.analyze_has_metric_percentage", side_effect=RuntimeError("no table")):
            result = mgr_okr_review(query="11月OKR")
        assert result == {"period": "11 月", "error": "no table"}


class TestOkrAnalysisWorkflow:
    """Tests for the OKR workflow."""

    @pytest.mark.asyncio
    async def test_report_with_chart_and_insights(self, okr_engine):
        """Test the report has a chart, the summary and model insights."""
        def analyze(period):
            return analyze_has_metric_percentage(period, engine=okr_engine)

        with patch("switchboard.workflows.okr_analysis.analyze_has_metric_percentage", side_effect=analyze), \
                patch("switchboard.workflows.okr_analysis.complete_text", AsyncMock(return_value="上海需要补数据")):
            result = await OkrAnalysisWorkflow().run(WorkflowInput(query="分析11月的OKR覆盖率"))

        assert result.success
        assert "11 月" in result.response
        assert "北京公司" in result.response
        assert "上海需要补数据" in result.response

    @pytest.mark.asyncio
    async def test_insights_are_optional(self, okr_engine):
        """Test a failed insight call still returns the report."""
        def analyze(period):
            return analyze_has_metric_percentage(period, engine=okr_engine)

        with patch("switchboard.workflows.okr_analysis.analyze_has_metric_percentage", side_effect=analyze), \
                patch("switchboard.workflows.okr_analysis.complete_text", AsyncMock(side_effect=RuntimeError("429"))):
            result = await OkrAnalysisWorkflow().run(WorkflowInput(query="分析11月的OKR覆盖率"))

        assert result.success
        assert "北京公司" in result.response

    @pytest.mark.asyncio
    async def test_no_data(self, okr_engine):
        """Test an empty period is reported without calling the model."""
        complete = AsyncMock()
        with patch(
            "switchboard.workflows.okr_analysis.analyze_has_metric_percentage",
            side_effect=lambda period: analyze_has_metric_percentage(period, engine=okr_engine),
        ), patch("switchboard.workflows.okr_analysis.complete_text", complete):
            result = await OkrAnalysisWorkflow().run(WorkflowInput(query="分析1月的OKR"))

        assert "未找到" in result.response
        complete.assert_not_called()

    def test_helpers(self, okr_engine):
        """Test chart points and the summary text."""
        analysis = analyze_has_metric_percentage("11 月", engine=okr_engine)
        points = build_chart_points(analysis)
        assert points[0] == {"label": "北京公司", "value": 100.0}

        summary = summarize_metrics(analysis)
        assert "上海公司" in summary
