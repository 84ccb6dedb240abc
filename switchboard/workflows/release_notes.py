"""
Release Notes Workflow

Collects merged merge requests (or specific issues, when numbers such as
``#123`` are given) through read-only glab calls and turns them into a
grouped changelog.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from switchboard.core.llm import complete_text
from switchboard.tools.gitlab import GitLabCommandError, run_glab

from .base import Workflow, WorkflowExecutionResult, WorkflowInput

logger = logging.getLogger(__name__)

DEFAULT_MR_LIMIT = 20

_ISSUE_REF_RE = re.compile(r"#(\d+)")
_VERSION_RE = re.compile(r"\bv?\d+\.\d+(?:\.\d+)?\b")

CHANGELOG_PROMPT = """You are writing release notes for {version}.

Based on these GitLab items, generate a concise, well-formatted changelog in Chinese.

Group items by type:
- ✨ 新功能 (Features)
- 🐛 问题修复 (Bug Fixes)
- 🔧 优化改进 (Improvements)
- 📝 其他 (Other)

One clear sentence per item, including its number. Use bullet points.

Items:
{items}

Output ONLY the changelog content."""


def parse_release_request(query: str):
    """Issue numbers and version mentioned in a request."""
    issues = [int(n) for n in _ISSUE_REF_RE.findall(query or "")]
    version = _VERSION_RE.search(query or "")
    return issues, version.group(0) if version else None


def parse_glab_json(output: str) -> Any:
    try:
        return json.loads(output)
    except (json.JSONDecodeError, TypeError):
        return None


def describe_item(item: Dict[str, Any], marker: str) -> str:
    labels = item.get("labels") or []
    label_str = f" [{', '.join(labels)}]" if labels else ""
    description = (item.get("description") or "").strip()[:200] or "(no description)"
    return f"- {marker}{item.get('iid')}: {item.get('title', 'Unknown')}{label_str}\n  {description}"


class ReleaseNotesWorkflow(Workflow):
    """Changelog from merged MRs or listed issues."""

    id = "release-notes"
    name = "Release Notes"
    description = "Generate release notes from merged merge requests or GitLab issues"
    tags = ["gitlab", "release"]

    async def run(self, input: WorkflowInput) -> WorkflowExecutionResult:
        issue_numbers, version = parse_release_request(input.query)
        version = version or "next release"

        await input.update("📦 正在收集 GitLab 变更...")
        if issue_numbers:
            items, missing = await self._fetch_issues(issue_numbers)
            marker = "#"
        else:
            items, missing = await self._fetch_merged_mrs(), []
            marker = "!"

        if not items:
            return self._completed("没有找到可用于生成发布说明的变更。")

        item_text = "\n\n".join(describe_item(item, marker) for item in items)
        try:
            changelog = await complete_text(CHANGELOG_PROMPT.format(version=version, items=item_text))
        except Exception as e:
            logger.warning(f"[ReleaseNotes] Changelog generation failed, listing items: {e}")
            changelog = "\n".join(f"- {marker}{item.get('iid')}: {item.get('title', '')}" for item in items)

        response = f"## 🚀 {version}\n\n{changelog}"
        if missing:
            response += f"\n\n⚠️ 无法获取: {', '.join(f'#{n}' for n in missing)}"
        return self._completed(response)

    async def _fetch_merged_mrs(self) -> List[Dict[str, Any]]:
        result = await run_glab(f"mr list --merged --per-page {DEFAULT_MR_LIMIT} --output json")
        data = parse_glab_json(result.get("output", ""))
        if isinstance(data, list):
            return data
        # Plain table output: one MR per line
        return [{"iid": "", "title": line.strip()} for line in result.get("output", "").splitlines() if line.strip()]

    async def _fetch_issues(self, numbers: List[int]):
        items: List[Dict[str, Any]] = []
        missing: List[int] = []
        for number in numbers:
            issue: Optional[Dict[str, Any]] = None
            try:
                result = await run_glab(f"issue view {number} --output json")
                data = parse_glab_json(result.get("output", ""))
                issue = data if isinstance(data, dict) else None
            except GitLabCommandError as e:
                logger.warning(f"[ReleaseNotes] Failed to fetch issue #{number}: {e}")
            if issue is None:
                missing.append(number)
            else:
                items.append(issue)
        logger.info(f"[ReleaseNotes] Fetched {len(items)}/{len(numbers)} issues")
        return items, missing
