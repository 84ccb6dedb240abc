"""
DPA Assistant Workflow

Team assistant for the DPA group: GitLab issues, chat search, document
reading and feedback collection.

Steps:
1. Confirmation callbacks (``__gitlab_confirm__:{json}``, ``__gitlab_cancel__``)
2. Slash commands (``/help``, ``/创建``, ``/list``, ...)
3. Intent classification with a small structured-output call
4. Branch by intent; ``general_chat`` skips to the reasoning agent

Anything that changes GitLab is drafted first and only executed after the
user presses the confirm button.
"""

import json
import logging
import re
import shlex
from datetime import date, timedelta
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from switchboard.core.config import get_config
from switchboard.core.extraction import extract_structured
from switchboard.core.memory import ConversationMemory, get_memory, resolve_memory_scope
from switchboard.tools.feishu_chat import feishu_chat_history
from switchboard.tools.feishu_docs import feishu_docs, parse_doc_reference
from switchboard.tools.gitlab import GitLabCommandError, run_glab

from .base import Workflow, WorkflowExecutionResult, WorkflowInput

logger = logging.getLogger(__name__)

CONFIRM_PREFIX = "__gitlab_confirm__:"
CANCEL_PREFIX = "__gitlab_cancel__"

SLASH_COMMANDS: Dict[str, str] = {
    "/collect": "feedback_collect",
    "/收集": "feedback_collect",
    "/创建": "gitlab_create",
    "/create": "gitlab_create",
    "/list": "gitlab_list",
    "/列表": "gitlab_list",
    "/status": "gitlab_list",
    "/update": "gitlab_update",
    "/comment": "gitlab_update",
    "/close": "gitlab_update",
    "/sync": "chat_search",
}

HELP_COMMANDS = ["/help", "/帮助"]

HELP_TEXT = """## 🤖 DPA Assistant

**GitLab**
- `/创建 <描述>` or `/create <description>`: draft a new issue (asks for confirmation)
- `/list` or `/列表`: list open issues (add "my"/"我的" for yours)
- `/update`, `/comment`, `/close <#iid> ...`: change an issue (asks for confirmation)

**Chat & docs**
- `/collect` or `/收集`: summarize feedback from this chat
- `/sync`: search recent chat messages
- Paste a Feishu doc link to read it

`/help` or `/帮助` shows this message."""

Intent = Literal["gitlab_create", "gitlab_list", "gitlab_update", "chat_search", "doc_read", "feedback_collect", "general_chat"]

_SLASH_PREFIX_RE = re.compile(r"^/\S+\s*")
_ISSUE_URL_RE = re.compile(r"/issues/(\d+)")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# =============================================================================
# Structured Outputs
# =============================================================================

class DpaIntent(BaseModel):
    intent: Intent = Field(description="The single best intent for the query")


class IssueDraft(BaseModel):
    title: str = Field(description="Issue title")
    description: str = Field(default="", description="Issue description, expanded with context")
    project: Optional[str] = Field(default=None, description="GitLab project path, e.g. dpa/dagster")
    priority: Optional[int] = Field(default=None, description="1=critical, 2=high, 3=medium, 4=low")
    due_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    labels: List[str] = Field(default_factory=list)


class IssueUpdateDraft(BaseModel):
    issue_iid: Optional[int] = Field(default=None, description="Issue number, e.g. 123 for #123")
    action: Literal["comment", "close", "reopen", "label"] = "comment"
    comment: Optional[str] = None
    labels: List[str] = Field(default_factory=list)


class FeedbackSummary(BaseModel):
    summary: str = Field(description="Short overall summary")
    points: List[str] = Field(default_factory=list, description="Distinct feedback points")


# =============================================================================
# Helpers
# =============================================================================

def next_weekday(today: date, weekday: int) -> date:
    """Next given weekday strictly after ``today`` (Monday=0)."""
    days = (weekday - today.weekday() + 7) % 7 or 7
    return today + timedelta(days=days)


def build_issue_payload(draft: IssueDraft, default_project: str) -> Dict[str, Any]:
    """Confirmation payload for an issue draft, including the glab command."""
    project = (draft.project or default_project).strip()
    priority = draft.priority if draft.priority in (1, 2, 3, 4) else None
    due_date = draft.due_date if draft.due_date and _DATE_RE.match(draft.due_date) else None

    labels: List[str] = []
    if priority:
        labels.append(f"priority::{priority}")
    labels.extend(label.strip() for label in draft.labels if label and label.strip())

    command = f"issue create -t {shlex.quote(draft.title)} -d {shlex.quote(draft.description or draft.title)}"
    if labels:
        command += f" -l {shlex.quote(','.join(labels))}"
    if due_date:
        command += f" --due-date {due_date}"

    return {
        "title": draft.title,
        "description": draft.description,
        "project": project,
        "priority": priority,
        "due_date": due_date,
        "labels": labels,
        "glab_command": command,
    }


def render_issue_preview(payload: Dict[str, Any]) -> str:
    lines = ["📋 **Issue Preview**", "", f"**Title**: {payload['title']}", f"**Project**: {payload['project']}"]
    if payload.get("priority"):
        lines.append(f"**Priority**: P{payload['priority']}")
    if payload.get("due_date"):
        lines.append(f"**Due Date**: {payload['due_date']}")
    if payload.get("labels"):
        lines.append(f"**Labels**: {', '.join(payload['labels'])}")
    lines.extend(["", "**Description**:", payload.get("description") or "(none)", "", "---",
                  "*Click ✅ Confirm to create this issue, or ❌ Cancel to abort.*"])
    return "\n".join(lines)


def build_update_command(draft: IssueUpdateDraft) -> str:
    iid = draft.issue_iid
    if draft.action == "close":
        return f"issue close {iid}"
    if draft.action == "reopen":
        return f"issue reopen {iid}"
    if draft.action == "label":
        return f"issue update {iid} --label {shlex.quote(','.join(draft.labels))}"
    return f"issue note {iid} -m {shlex.quote(draft.comment or '')}"


# =============================================================================
# Workflow
# =============================================================================

class DpaAssistantWorkflow(Workflow):
    """DPA team assistant with intent-based routing."""

    id = "dpa-assistant"
    name = "DPA Assistant"
    description = "GitLab issues, chat search, document reading and feedback collection for the DPA team"
    tags = ["gitlab", "feishu", "dpa"]

    def __init__(self, memory: Optional[ConversationMemory] = None):
        self._memory = memory

    async def run(self, input: WorkflowInput) -> WorkflowExecutionResult:
        query = input.query.strip()

        if query.startswith(CONFIRM_PREFIX):
            return await self._confirm(query[len(CONFIRM_PREFIX):], input)
        if query.startswith(CANCEL_PREFIX):
            return self._completed("🚫 Issue creation cancelled.")

        command = query.split()[0].lower() if query.startswith("/") else None
        if command in HELP_COMMANDS:
            return self._completed(HELP_TEXT)

        if command in SLASH_COMMANDS:
            intent = SLASH_COMMANDS[command]
            query = _SLASH_PREFIX_RE.sub("", query)
        else:
            intent = await self.classify_intent(query)

        logger.info(f"[DPA Workflow] Intent: {intent}")

        if intent == "gitlab_create":
            return await self._draft_issue(query)
        if intent == "gitlab_update":
            return await self._draft_update(query, input)
        if intent == "gitlab_list":
            return await self._list(query)
        if intent == "chat_search":
            return await self._chat_search(query, input)
        if intent == "doc_read":
            return await self._doc_read(query)
        if intent == "feedback_collect":
            return await self._collect_feedback(query, input)
        return self._skip("general_chat")

    async def classify_intent(self, query: str) -> str:
        """Classify a free-text query; classification failures count as general chat."""
        prompt = f"""You are an intent classifier. Classify the user query into ONE of these intents:

- gitlab_create: User wants to CREATE a new GitLab issue (e.g., "create issue", "new bug", "报个bug", "创建issue")
- gitlab_update: User wants to COMMENT on, CLOSE, REOPEN or RELABEL an existing issue (e.g., "close #12", "关闭工单")
- gitlab_list: User wants to LIST or VIEW GitLab issues/MRs (e.g., "show issues", "list MRs", "查看issue", "我的MR")
- chat_search: User wants to SEARCH Feishu chat history (e.g., "find messages about X", "what did Y say", "查找聊天记录")
- doc_read: User wants to READ a Feishu document (e.g., "read doc X", "查看文档", contains Feishu doc URL)
- feedback_collect: User wants feedback in the chat COLLECTED or SUMMARIZED (e.g., "总结反馈", "收集意见")
- general_chat: General conversation, questions, help requests, or anything that doesn't fit above

Query: "{query}\""""
        try:
            result = await extract_structured(prompt, DpaIntent)
            return result.intent
        except Exception as e:
            logger.warning(f"[DPA Workflow] Intent classification failed, treating as general chat: {e}")
            return "general_chat"

    # -------------------------------------------------------------------------
    # GitLab
    # -------------------------------------------------------------------------

    async def _draft_issue(self, query: str) -> WorkflowExecutionResult:
        gitlab = get_config().gitlab
        today = date.today()
        prompt = f"""Parse this GitLab issue creation request.
- project: look for explicit mentions like "in dpa/xxx", "项目 xxx".
  Common DPA projects: dpa/dagster (data pipelines), dpa/analytics (analysis/reports), dpa/dbt (data models).
  If not specified, use "{gitlab.default_project}".
- priority: 1-4. Look for "priority X", "P1", "urgent", "critical".
- due_date: YYYY-MM-DD. Today is {today.isoformat()}; "next wednesday" is {next_weekday(today, 2).isoformat()}.
- labels: explicit tags ("tag:", "label:", "#tag"), product names, teams, categories (bug, feature, task).

Request: "{query}\""""
        draft = await extract_structured(prompt, IssueDraft)
        payload = build_issue_payload(draft, gitlab.default_project)
        return self._confirmation(render_issue_preview(payload), payload)

    async def _draft_update(self, query: str, input: WorkflowInput) -> WorkflowExecutionResult:
        draft = await extract_structured(
            f"Parse this GitLab issue change request (comment, close, reopen or label).\n\nRequest: \"{query}\"",
            IssueUpdateDraft,
        )
        if draft.issue_iid is None:
            linked = input.linked_context.get("linked_issue") or {}
            draft.issue_iid = linked.get("iid")
        if draft.issue_iid is None:
            return self._completed("❓ Which issue? Please include the issue number, e.g. `#123`.")

        command = build_update_command(draft)
        payload = {
            "title": f"#{draft.issue_iid} {draft.action}",
            "description": draft.comment or "",
            "project": get_config().gitlab.default_project,
            "priority": None,
            "due_date": None,
            "labels": draft.labels,
            "glab_command": command,
        }
        preview = (
            f"📝 **Issue Change Preview**\n\n**Issue**: #{draft.issue_iid}\n**Action**: {draft.action}\n"
            f"**Command**: `glab {command}`\n\n---\n*Click ✅ Confirm to apply, or ❌ Cancel to abort.*"
        )
        return self._confirmation(preview, payload)

    async def _confirm(self, raw_payload: str, input: WorkflowInput) -> WorkflowExecutionResult:
        try:
            payload = json.loads(raw_payload)
        except json.JSONDecodeError as e:
            return self._failed(f"Invalid confirmation data: {e}")

        command = payload.get("glab_command")
        if not command:
            return self._failed("Confirmation data has no glab command")

        gitlab = get_config().gitlab
        project = payload.get("project") or gitlab.default_project
        logger.info(f"[DPA Workflow] Confirmation received, running: glab {command}")
        try:
            result = await run_glab(command, config=gitlab.model_copy(update={"default_project": project}))
        except GitLabCommandError as e:
            logger.error(f"[DPA Workflow] Confirmed command failed: {e}")
            action = "create issue" if command.startswith("issue create") else "run command"
            return self._completed(f"❌ Failed to {action}\n\nError: {e}")
        output = result.get("output", "")

        iid_match = _ISSUE_URL_RE.search(output)
        if iid_match and input.chat_id and input.root_id:
            self._link_issue(input, int(iid_match.group(1)), project, payload.get("title", ""))

        if command.startswith("issue create"):
            return self._completed(
                f"✅ **Issue Created!**\n\n**Title**: {payload.get('title')}\n**Project**: {project}\n\n{output}"
            )
        return self._completed(f"✅ **Done**: `glab {command}`\n\n{output}")

    def _link_issue(self, input: WorkflowInput, iid: int, project: str, title: str) -> None:
        """Remember the issue in the thread so follow-ups can refer to it."""
        memory = self._memory or get_memory()
        scope = resolve_memory_scope(
            input.user_id or "unknown", input.chat_id, input.root_id, input.message_id,
            thread_override=get_config().memory.thread_override,
        )
        try:
            data = memory.get_working_memory(scope)
            data["linked_issue"] = {"iid": iid, "project": project, "title": title}
            memory.set_working_memory(scope, data)
        except Exception as e:
            logger.warning(f"[DPA Workflow] Could not link issue #{iid} to thread: {e}")

    async def _list(self, query: str) -> WorkflowExecutionResult:
        is_mr = re.search(r"\b(mr|mrs|merge\s*requests?)\b|合并请求", query, re.IGNORECASE) is not None
        is_mine = re.search(r"\b(my|mine)\b|我的", query, re.IGNORECASE) is not None

        kind = "mr" if is_mr else "issue"
        command = f"{kind} list --state opened" if is_mr else f"{kind} list"
        if is_mine:
            command += " --assignee=@me"

        result = await run_glab(command)
        title = f"{'My ' if is_mine else ''}{'Merge Requests' if is_mr else 'Issues'}"
        return self._completed(f"## {title}\n\n```\n{result['output']}\n```")

    # -------------------------------------------------------------------------
    # Chat and documents
    # -------------------------------------------------------------------------

    async def _fetch_chat(self, input: WorkflowInput, limit: int = 50) -> Optional[List[Dict[str, Any]]]:
        if not input.chat_id:
            return None
        result = await feishu_chat_history(chat_id=input.chat_id, limit=limit)
        return result.get("messages", [])

    async def _chat_search(self, query: str, input: WorkflowInput) -> WorkflowExecutionResult:
        messages = await self._fetch_chat(input)
        if messages is None:
            return self._completed("❌ 无法搜索聊天记录：未提供聊天ID\n\nPlease specify which chat to search.")

        keywords = [w for w in query.lower().split() if len(w) > 1]
        matches = [m for m in messages if any(k in m["content"].lower() for k in keywords)] if keywords else messages
        if not matches:
            return self._completed(f"未找到相关消息。已搜索 {len(messages)} 条消息。")

        lines = [f"- **{m['sender_id'] or 'User'}**: {m['content'][:100]}" for m in matches[:10]]
        return self._completed(f"## 搜索结果 ({len(matches)} 条消息)\n\n" + "\n".join(lines))

    async def _collect_feedback(self, query: str, input: WorkflowInput) -> WorkflowExecutionResult:
        messages = await self._fetch_chat(input)
        if messages is None:
            return self._completed("❌ 无法收集反馈：未提供聊天ID")
        if not messages:
            return self._completed("未找到可以总结的消息。")

        await input.update(f"🔍 正在整理 {len(messages)} 条消息中的反馈...")
        transcript = "\n".join(f"{m['sender_id'] or 'User'}: {m['content']}" for m in messages)
        summary = await extract_structured(
            f"Collect and summarize the feedback in this chat transcript. Request: \"{query}\"\n\n{transcript}",
            FeedbackSummary,
        )
        points = "\n".join(f"- {p}" for p in summary.points)
        return self._completed(f"## 📝 反馈总结\n\n{summary.summary}\n\n{points}".rstrip())

    async def _doc_read(self, query: str) -> WorkflowExecutionResult:
        if parse_doc_reference_in(query) is None:
            return self._completed("❌ 未找到文档链接\n\n请提供飞书文档链接。")
        result = await feishu_docs(query=query, action="read")
        return self._completed(result.get("output", ""))


def parse_doc_reference_in(text: str):
    """Document reference anywhere in free text."""
    for word in [text] + text.split():
        reference = parse_doc_reference(word)
        if reference:
            return reference
    return None
