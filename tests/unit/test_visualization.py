"""Unit tests for text chart rendering."""
from switchboard.tools.visualization import (
    DataPoint,
    normalize_data,
    parse_source,
    render_bar,
    render_chart,
    render_heatmap,
    render_line,
    render_pie,
    render_table,
    visualization,
)

POINTS = [{"label": "Beijing", "value": 80.0}, {"label": "Shanghai", "value": 40.0}]


class TestParsing:
    """Tests for data normalization."""

    def test_csv_source(self):
        """Test CSV rows map through the column names."""
        points = parse_source({
            "text": "city,coverage,goal\nBeijing,80%,90\nShanghai,40,\n,10,5",
            "format": "csv",
            "label_column": "city",
            "value_column": "coverage",
            "target_column": "goal",
        })
        assert points == [
            {"label": "Beijing", "value": 80.0, "target": 90.0},
            {"label": "Shanghai", "value": 40.0, "target": None},
        ]

    def test_json_source(self):
        """Test JSON arrays are parsed too."""
        points = parse_source({
            "text": '[{"name": "A", "n": "3"}]',
            "format": "json",
            "label_column": "name",
            "value_column": "n",
        })
        assert points == [{"label": "A", "value": 3.0}]

    def test_normalize_mapping_and_models(self):
        """Test mappings and pydantic points are accepted."""
        assert normalize_data({"A": 1, "B": "2"}) == [{"label": "A", "value": 1.0}, {"label": "B", "value": 2.0}]
        assert normalize_data([DataPoint(label="C", value=5, target=10)]) == [
            {"label": "C", "value": 5.0, "target": 10.0}
        ]


class TestRenderers:
    """Tests for individual chart renderers."""

    def test_bar_scales_to_maximum(self):
        """Test the largest value fills the bar."""
        lines = render_bar(POINTS).splitlines()
        assert lines[0].count("█") == 20
        assert lines[1].count("█") == 10

    def test_pie_shares(self):
        """Test pie slices are percentages of the total."""
        text = render_pie(POINTS)
        assert "66.7%" in text
        assert "33.3%" in text

    def test_line_sparkline(self):
        """Test the sparkline runs from low to high."""
        text = render_line([{"label": "Jan", "value": 1}, {"label": "Feb", "value": 5}])
        assert text.startswith("▁█")
        assert "Jan → Feb" in text

    def test_heatmap_thresholds(self):
        """Test cells are colored by threshold."""
        text = render_heatmap([{"label": "a", "value": 10}, {"label": "b", "value": 60}, {"label": "c", "value": 95}])
        assert [line[0] for line in text.splitlines()] == ["🟥", "🟨", "🟩"]

    def test_table_progress(self):
        """Test targets produce a progress column."""
        text = render_table([{"label": "A", "value": 50, "target": 100}, {"label": "B", "value": 3}])
        assert "| A | 50 | 100 |" in text
        assert "50%" in text
        assert "| B | 3 | - | - |" in text

    def test_chart_wrapping(self):
        """Test tables are Markdown and other charts use code blocks."""
        assert render_chart("table", "T", POINTS).startswith("**T**\n\n|")
        assert "```" in render_chart("bar", "T", POINTS)


class TestVisualizationCapability:
    """Tests for the capability entry point."""

    def test_asks_for_data(self):
        """Test a request without data asks for it."""
        assert "need the **data**" in visualization(chart_type="pie")

    def test_unknown_chart_type_defaults_to_bar(self):
        """Test unknown chart types render as bars."""
        result = visualization(chart_type="radar", title="Coverage", data=POINTS)
        assert result["success"] is True
        assert "█" in result["output"]

    def test_no_usable_points(self):
        """Test data without labels is reported."""
        result = visualization(data=[{"label": "", "value": 1}])
        assert result["success"] is False
