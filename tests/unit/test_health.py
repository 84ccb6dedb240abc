"""Unit tests for the health monitor."""
import pytest

from switchboard.core.health import ErrorCategory, HealthMonitor, categorize_error


class TestCategorizeError:
    """Tests for message-based error categories."""

    @pytest.mark.parametrize("message,category", [
        ("HTTP 429 Too Many Requests", ErrorCategory.RATE_LIMIT),
        ("Rate limit exceeded", ErrorCategory.RATE_LIMIT),
        ("Request timed out", ErrorCategory.TIMEOUT),
        ("401 Unauthorized", ErrorCategory.AUTH_ERROR),
        ("invalid api key", ErrorCategory.AUTH_ERROR),
        ("something else", ErrorCategory.OTHER),
        ("", ErrorCategory.OTHER),
    ])
    def test_categories(self, message, category):
        """Test each category is inferred from message text."""
        assert categorize_error(message) == category


class TestHealthMonitor:
    """Tests for counters and status."""

    def test_healthy_by_default(self):
        """Test a fresh monitor reports healthy."""
        assert HealthMonitor().status() == "healthy"

    def test_latency_average(self):
        """Test the running latency average."""
        monitor = HealthMonitor()
        monitor.track_agent_call(100, success=True)
        monitor.track_agent_call(300, success=True)
        assert monitor.agent.avg_latency_ms == 200

    def test_degraded_and_unhealthy(self):
        """Test error rates move the status."""
        monitor = HealthMonitor()
        for _ in range(3):
            monitor.track_agent_call(10, success=True)
        monitor.track_agent_call(10, success=False)
        assert monitor.status() == "degraded"

        for _ in range(3):
            monitor.track_agent_call(10, success=False)
        assert monitor.status() == "unhealthy"

    def test_errors_tracked(self):
        """Test error counters and the last error."""
        monitor = HealthMonitor()
        monitor.track_error(ErrorCategory.TIMEOUT, "timed out after 120s")
        monitor.track_error(ErrorCategory.RATE_LIMIT, "429")

        metrics = monitor.metrics()
        assert metrics["errors"]["total"] == 2
        assert metrics["errors"]["timeouts"] == 1
        assert metrics["last_error"]["type"] == "RATE_LIMIT"
        assert metrics["status"] == "healthy"
