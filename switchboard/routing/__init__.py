"""
Switchboard Routing

Pattern classifier, priority router and direct capability executor. The
query router (``switchboard.routing.router``) composes them.
"""

from switchboard.routing.classifier import ClassificationResult, Confidence, PatternClassifier, get_classifier
from switchboard.routing.priority_router import PriorityRouter, RoutingDecision, get_priority_router
from switchboard.routing.rules import RouteTarget, RuleLoadError

__all__ = [
    "ClassificationResult",
    "Confidence",
    "PatternClassifier",
    "get_classifier",
    "PriorityRouter",
    "RoutingDecision",
    "get_priority_router",
    "RouteTarget",
    "RuleLoadError",
]
