"""
Routing Rule Types and Loaders

Rule tables live in YAML next to this module. Loading (YAML -> typed rules)
is kept apart from matching so the classifier and the priority router can be
exercised with hand-built rules.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Union

import yaml

logger = logging.getLogger(__name__)


class RuleLoadError(Exception):
    """Raised when a rule file is missing or malformed."""
    pass


# =============================================================================
# Route Targets
# =============================================================================

class TargetType(str, Enum):
    """Kind of handler a classification points at."""
    WORKFLOW = "workflow"
    TOOL = "tool"
    DOC_COMMAND = "doc-command"
    SLASH_COMMAND = "slash-command"
    AGENT = "agent"


@dataclass(frozen=True)
class WorkflowTarget:
    workflow_id: str
    type: TargetType = TargetType.WORKFLOW


@dataclass(frozen=True)
class ToolTarget:
    tool_id: str
    type: TargetType = TargetType.TOOL


@dataclass(frozen=True)
class DocCommandTarget:
    type: TargetType = TargetType.DOC_COMMAND


@dataclass(frozen=True)
class SlashCommandTarget:
    command: str = ""
    type: TargetType = TargetType.SLASH_COMMAND


@dataclass(frozen=True)
class AgentTarget:
    type: TargetType = TargetType.AGENT


RouteTarget = Union[WorkflowTarget, ToolTarget, DocCommandTarget, SlashCommandTarget, AgentTarget]


def target_to_dict(target: RouteTarget) -> Dict[str, Any]:
    """Serialize a target the way API callers and batch harnesses expect."""
    data: Dict[str, Any] = {"type": target.type.value}
    if isinstance(target, WorkflowTarget):
        data["workflowId"] = target.workflow_id
    elif isinstance(target, ToolTarget):
        data["toolId"] = target.tool_id
    elif isinstance(target, SlashCommandTarget):
        data["command"] = target.command
    return data


def parse_target(raw: Dict[str, Any]) -> RouteTarget:
    """Build a RouteTarget from its YAML mapping."""
    kind = raw.get("type")
    if kind == TargetType.WORKFLOW.value:
        return WorkflowTarget(workflow_id=raw["workflow_id"])
    if kind == TargetType.TOOL.value:
        return ToolTarget(tool_id=raw["tool_id"])
    if kind == TargetType.DOC_COMMAND.value:
        return DocCommandTarget()
    if kind == TargetType.SLASH_COMMAND.value:
        return SlashCommandTarget(command=raw.get("command", ""))
    if kind == TargetType.AGENT.value:
        return AgentTarget()
    raise RuleLoadError(f"Unknown target type: {kind!r}")


# =============================================================================
# Intent Rules (Pattern Classifier)
# =============================================================================

@dataclass(frozen=True)
class IntentRule:
    """One ordered classifier rule. Lower priority is checked first."""
    id: str
    patterns: List[Pattern]
    target: RouteTarget
    priority: int
    enabled: bool = True
    description: str = ""
    examples: List[str] = field(default_factory=list)


def load_intent_rules(path: Path) -> List[IntentRule]:
    """Load classifier rules from YAML.

    Patterns are compiled case-insensitively. Declaration order is preserved
    so that equal priorities resolve by position in the file.

    Args:
        path: YAML file with a top-level ``rules`` list

    Returns:
        Rules in declaration order

    Raises:
        RuleLoadError: If the file cannot be read or a rule is malformed
    """
    data = _read_yaml(path)
    rules = []
    for raw in data.get("rules", []):
        try:
            rules.append(IntentRule(
                id=raw["id"],
                patterns=[re.compile(p, re.IGNORECASE) for p in raw["patterns"]],
                target=parse_target(raw["target"]),
                priority=int(raw["priority"]),
                enabled=raw.get("enabled", True),
                description=raw.get("description", ""),
                examples=list(raw.get("examples", [])),
            ))
        except (KeyError, TypeError, re.error) as e:
            raise RuleLoadError(f"Invalid intent rule {raw.get('id', '?')!r} in {path}: {e}") from e

    logger.info(f"[Rules] Loaded {len(rules)} intent rules from {path.name}")
    return rules


# =============================================================================
# Routing Rules (Priority Router)
# =============================================================================

class DecisionType(str, Enum):
    WORKFLOW = "workflow"
    SUBAGENT = "subagent"
    SKILL = "skill"
    GENERAL = "general"


@dataclass(frozen=True)
class RoutingRule:
    """Keyword set for one destination of the priority router."""
    destination_id: str
    category: str
    keywords: List[str]
    priority: int
    type: DecisionType = DecisionType.SKILL
    enabled: bool = True
    workflow_id: Optional[str] = None
    instructions: str = ""


def validate_routing_rule(rule: RoutingRule) -> RoutingRule:
    """Reject rules the scorer cannot use; priorities start at 1."""
    if rule.priority < 1:
        raise RuleLoadError(f"Routing rule {rule.destination_id!r} has priority {rule.priority}, expected 1 or more")
    return rule


def load_routing_rules(path: Path) -> List[RoutingRule]:
    """Load priority-router rules from YAML.

    Args:
        path: YAML file with a top-level ``destinations`` list

    Returns:
        Rules in declaration order

    Raises:
        RuleLoadError: If the file cannot be read or a rule is malformed
    """
    data = _read_yaml(path)
    rules = []
    for raw in data.get("destinations", []):
        try:
            rule_type = DecisionType(raw.get("type", "skill"))
            workflow_id = raw.get("workflow_id")
            if rule_type == DecisionType.WORKFLOW and not workflow_id:
                raise RuleLoadError(f"Workflow destination {raw['id']!r} has no workflow_id")
            rules.append(validate_routing_rule(RoutingRule(
                destination_id=raw["id"],
                category=raw["category"],
                keywords=[str(k) for k in raw["keywords"]],
                priority=int(raw.get("priority", 999)),
                type=rule_type,
                enabled=raw.get("enabled", True),
                workflow_id=workflow_id,
                instructions=raw.get("instructions", "").strip(),
            )))
        except (KeyError, TypeError, ValueError) as e:
            raise RuleLoadError(f"Invalid routing rule {raw.get('id', '?')!r} in {path}: {e}") from e

    logger.info(f"[Rules] Loaded {len(rules)} routing destinations from {path.name}")
    return rules


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise RuleLoadError(f"Could not read rules from {path}: {e}") from e
