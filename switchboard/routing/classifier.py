"""
Pattern Classifier

Deterministic first-match routing over an ordered rule table. No LLM, no
scoring: rules are checked in ascending priority and the first pattern that
matches decides the target.

Usage:
    from switchboard.routing.classifier import get_classifier

    result = get_classifier().classify("列出我的issues")
    # result.target -> ToolTarget(tool_id="gitlab_cli"), result.confidence -> "pattern"
"""

import logging
import re
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .rules import (
    AgentTarget,
    IntentRule,
    RouteTarget,
    SlashCommandTarget,
    load_intent_rules,
    target_to_dict,
)

logger = logging.getLogger(__name__)

# Rules below this priority are high-confidence matches
EXACT_PRIORITY_THRESHOLD = 20

_SLASH_COMMAND_RE = re.compile(r"^/(\S+)")


class Confidence(str, Enum):
    EXACT = "exact"
    PATTERN = "pattern"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of classifying one query."""
    intent: str
    target: RouteTarget
    confidence: Confidence
    matched_pattern: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "intent": self.intent,
            "target": target_to_dict(self.target),
            "confidence": self.confidence.value,
        }
        if self.matched_pattern is not None:
            data["matchedPattern"] = self.matched_pattern
        return data


def extract_slash_command(query: str) -> Optional[str]:
    """Return the leading ``/command`` of a query, lower-cased."""
    match = _SLASH_COMMAND_RE.match(query)
    return f"/{match.group(1).lower()}" if match else None


class PatternClassifier:
    """First-match classifier over a priority-ordered rule table.

    The table is sorted once at construction. ``sorted`` is stable, so rules
    sharing a priority keep their declaration order.
    """

    def __init__(self, rules: List[IntentRule]):
        self._rules = sorted((r for r in rules if r.enabled), key=lambda r: r.priority)

    @property
    def rules(self) -> List[IntentRule]:
        return list(self._rules)

    def classify(self, query: str) -> ClassificationResult:
        """Classify a query into an intent.

        Args:
            query: User text with the bot mention already removed

        Returns:
            Classification with target and confidence tier
        """
        trimmed = (query or "").strip()

        if trimmed:
            for rule in self._rules:
                for pattern in rule.patterns:
                    if not pattern.search(trimmed):
                        continue

                    logger.debug(
                        f"[Classifier] Matched {rule.id} (priority={rule.priority}) for: {trimmed[:50]!r}"
                    )

                    if isinstance(rule.target, SlashCommandTarget):
                        command = extract_slash_command(trimmed)
                        if command:
                            return ClassificationResult(
                                intent=rule.id,
                                target=SlashCommandTarget(command=command),
                                confidence=Confidence.EXACT,
                                matched_pattern=pattern.pattern,
                            )

                    confidence = (
                        Confidence.EXACT if rule.priority < EXACT_PRIORITY_THRESHOLD
                        else Confidence.PATTERN
                    )
                    return ClassificationResult(
                        intent=rule.id,
                        target=rule.target,
                        confidence=confidence,
                        matched_pattern=pattern.pattern,
                    )

        logger.debug(f"[Classifier] No match, fallback to agent for: {trimmed[:50]!r}")
        return ClassificationResult(
            intent="unknown",
            target=AgentTarget(),
            confidence=Confidence.FALLBACK,
        )

    def classify_many(self, queries: List[str]) -> List[Dict[str, Any]]:
        """Classify a batch without executing anything (debugging helper)."""
        return [{"query": q, **self.classify(q).to_dict()} for q in queries]


# =============================================================================
# Global Instance
# =============================================================================

_classifier: Optional[PatternClassifier] = None
_classifier_lock = threading.Lock()


def get_classifier(rules_path: Optional[Path] = None) -> PatternClassifier:
    """Get or create the global classifier (thread-safe)."""
    global _classifier
    if _classifier is None:
        with _classifier_lock:
            if _classifier is None:
                if rules_path is None:
                    from switchboard.core.config import get_config
                    rules_path = get_config().routing.intent_rules_path
                _classifier = PatternClassifier(load_intent_rules(Path(rules_path)))
    return _classifier


def reset_classifier() -> None:
    """Drop the global classifier so the next call reloads the rule file."""
    global _classifier
    with _classifier_lock:
        _classifier = None
