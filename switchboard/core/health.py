"""
Health Monitor

In-process error and latency bookkeeping for the reasoning agent, exposed
through the /health endpoint.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    AUTH_ERROR = "AUTH_ERROR"
    OTHER = "OTHER"


def categorize_error(message: str) -> ErrorCategory:
    """Coarse error category from message text."""
    text = (message or "").lower()
    if "429" in text or "rate limit" in text or "too many requests" in text:
        return ErrorCategory.RATE_LIMIT
    if "timeout" in text or "timed out" in text:
        return ErrorCategory.TIMEOUT
    if "401" in text or "403" in text or "unauthorized" in text or "forbidden" in text or "api key" in text:
        return ErrorCategory.AUTH_ERROR
    return ErrorCategory.OTHER


@dataclass
class AgentMetrics:
    call_count: int = 0
    success_count: int = 0
    error_count: int = 0
    avg_latency_ms: float = 0.0
    last_call: Optional[str] = None


@dataclass
class ErrorCounts:
    total: int = 0
    rate_limits: int = 0
    timeouts: int = 0
    auth: int = 0
    other: int = 0


@dataclass
class HealthMonitor:
    started_at: float = field(default_factory=time.monotonic)
    errors: ErrorCounts = field(default_factory=ErrorCounts)
    agent: AgentMetrics = field(default_factory=AgentMetrics)
    last_error: Optional[Dict[str, str]] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def track_agent_call(self, latency_ms: float, success: bool) -> None:
        with self._lock:
            m = self.agent
            m.call_count += 1
            if success:
                m.success_count += 1
            else:
                m.error_count += 1
            m.avg_latency_ms = (m.avg_latency_ms * (m.call_count - 1) + latency_ms) / m.call_count
            m.last_call = datetime.now(timezone.utc).isoformat()

    def track_error(self, category: ErrorCategory, message: str) -> None:
        with self._lock:
            self.errors.total += 1
            if category == ErrorCategory.RATE_LIMIT:
                self.errors.rate_limits += 1
            elif category == ErrorCategory.TIMEOUT:
                self.errors.timeouts += 1
            elif category == ErrorCategory.AUTH_ERROR:
                self.errors.auth += 1
            else:
                self.errors.other += 1
            self.last_error = {
                "type": category.value,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "message": message[:200],
            }
        logger.warning(f"[Health] {category.value}: {message[:200]}")

    def status(self) -> str:
        calls = self.agent.call_count
        error_rate = self.agent.error_count / calls if calls else 0.0
        if error_rate > 0.5:
            return "unhealthy"
        if error_rate > 0.2 or self.errors.rate_limits > 5:
            return "degraded"
        return "healthy"

    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "status": self.status(),
                "uptime_seconds": round(time.monotonic() - self.started_at, 1),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "errors": vars(self.errors).copy(),
                "last_error": self.last_error,
                "agent": vars(self.agent).copy(),
            }


health_monitor = HealthMonitor()
