"""
Priority Router

Declarative, score-based routing among a small set of named destinations.
Unlike the pattern classifier, every enabled destination is scored and the
best one wins; a query that matches nothing gets a "general" decision.

Scoring:
    score = (matched keywords / total keywords) * (1 / priority)
    confidence = min(score * 2, 1.0) if score > 0.3 else 0.5

The formula lets a low-priority-number destination with a weak keyword
overlap beat a better-covered destination further down the list.
TODO: revisit weighting once routing quality is measured on real traffic.
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Pattern

from .rules import DecisionType, RoutingRule, load_routing_rules, validate_routing_rule

logger = logging.getLogger(__name__)

GENERAL_CONFIDENCE = 0.5
CONFIDENCE_SCORE_THRESHOLD = 0.3


@dataclass
class RoutingDecision:
    """Best destination for a query."""
    destination_id: str
    category: str
    confidence: float
    matched_keywords: List[str] = field(default_factory=list)
    type: DecisionType = DecisionType.GENERAL
    workflow_id: Optional[str] = None
    instructions: str = ""

    @classmethod
    def general(cls) -> "RoutingDecision":
        return cls(
            destination_id="manager",
            category="general",
            confidence=GENERAL_CONFIDENCE,
            type=DecisionType.GENERAL,
        )

    @property
    def is_general(self) -> bool:
        return self.type == DecisionType.GENERAL

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "destinationId": self.destination_id,
            "category": self.category,
            "confidence": self.confidence,
            "matchedKeywords": list(self.matched_keywords),
            "type": self.type.value,
        }
        if self.workflow_id:
            data["workflowId"] = self.workflow_id
        return data


@dataclass(frozen=True)
class CompiledRule:
    rule: RoutingRule
    patterns: List[Pattern]


def compile_keyword(keyword: str) -> Pattern:
    """Compile a keyword into a case-insensitive, boundary-anchored pattern.

    Boundaries are ASCII word characters only: ``\\b`` would treat CJK
    characters as word characters and stop ``利润`` matching inside ``Q4的利润``.
    """
    escaped = re.escape(keyword.strip())
    return re.compile(rf"(?<![A-Za-z0-9_]){escaped}(?![A-Za-z0-9_])", re.IGNORECASE)


def compile_rules(rules: List[RoutingRule]) -> List[CompiledRule]:
    """Compile enabled rules, ordered by priority (stable)."""
    compiled = [
        CompiledRule(rule=validate_routing_rule(rule), patterns=[compile_keyword(k) for k in rule.keywords])
        for rule in rules
        if rule.enabled and rule.keywords
    ]
    compiled.sort(key=lambda c: c.rule.priority)
    return compiled


def score_to_confidence(score: float) -> float:
    if score > CONFIDENCE_SCORE_THRESHOLD:
        return min(score * 2, 1.0)
    return GENERAL_CONFIDENCE


class PriorityRouter:
    """Scores queries against cached, compiled routing rules.

    The compiled table is built lazily from ``loader`` and swapped atomically
    on ``clear_cache()``; readers always see either the old or the new table.
    """

    def __init__(self, loader: Callable[[], List[RoutingRule]]):
        self._loader = loader
        self._compiled: Optional[List[CompiledRule]] = None
        self._lock = threading.Lock()

    @classmethod
    def from_rules(cls, rules: List[RoutingRule]) -> "PriorityRouter":
        frozen = [validate_routing_rule(rule) for rule in rules]
        return cls(lambda: frozen)

    @classmethod
    def from_file(cls, path: Path) -> "PriorityRouter":
        return cls(lambda: load_routing_rules(Path(path)))

    def _get_compiled(self) -> List[CompiledRule]:
        compiled = self._compiled
        if compiled is None:
            with self._lock:
                if self._compiled is None:
                    self._compiled = compile_rules(self._loader())
                    logger.info(f"[PriorityRouter] Compiled {len(self._compiled)} destinations")
                compiled = self._compiled
        return compiled

    def clear_cache(self) -> None:
        """Rebuild the compiled table from the loader and swap it in."""
        rebuilt = compile_rules(self._loader())
        with self._lock:
            self._compiled = rebuilt
        logger.info(f"[PriorityRouter] Cache rebuilt with {len(rebuilt)} destinations")

    def score(self, query: str) -> List[Dict[str, Any]]:
        """Score every enabled destination; best first, zero-match rules dropped."""
        scores = []
        for compiled in self._get_compiled():
            matches = [
                keyword
                for keyword, pattern in zip(compiled.rule.keywords, compiled.patterns)
                if pattern.search(query)
            ]
            if not matches:
                continue
            score = (len(matches) / len(compiled.patterns)) * (1 / compiled.rule.priority)
            scores.append({"rule": compiled.rule, "score": score, "matches": matches})

        scores.sort(key=lambda s: s["score"], reverse=True)
        return scores

    def route(self, query: str) -> RoutingDecision:
        """Pick the best destination for a query. Never fails."""
        scores = self.score(query or "")
        if not scores:
            return RoutingDecision.general()

        best = scores[0]
        rule: RoutingRule = best["rule"]
        decision = RoutingDecision(
            destination_id=rule.destination_id,
            category=rule.category,
            confidence=score_to_confidence(best["score"]),
            matched_keywords=best["matches"],
            type=rule.type,
            workflow_id=rule.workflow_id,
            instructions=rule.instructions,
        )
        logger.debug(
            f"[PriorityRouter] {decision.destination_id} score={best['score']:.3f} "
            f"confidence={decision.confidence:.2f} keywords={decision.matched_keywords}"
        )
        return decision

    def route_many(self, queries: List[str]) -> List[RoutingDecision]:
        return [self.route(q) for q in queries]


# =============================================================================
# Global Instance
# =============================================================================

_router: Optional[PriorityRouter] = None
_router_lock = threading.Lock()


def get_priority_router() -> PriorityRouter:
    """Get or create the global priority router (thread-safe)."""
    global _router
    if _router is None:
        with _router_lock:
            if _router is None:
                from switchboard.core.config import get_config
                _router = PriorityRouter.from_file(get_config().routing.routing_rules_path)
    return _router
