"""
Feishu Task Workflow

Create, list and complete Feishu tasks. Creating and completing are drafted
first and only carried out after ``__feishu_task_confirm__:{json}``.
"""

import json
import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, Literal, Optional

import httpx
from pydantic import BaseModel, Field

from switchboard.core.extraction import extract_structured
from switchboard.core.feishu import FeishuAPIError, FeishuClient, get_feishu_client

from .base import Workflow, WorkflowExecutionResult, WorkflowInput

logger = logging.getLogger(__name__)

TASK_CONFIRM_PREFIX = "__feishu_task_confirm__:"
TASK_CANCEL_PREFIX = "__feishu_task_cancel__"
MAX_LIST_LIMIT = 50

_TASK_PREFIX_RE = re.compile(r"^(?:/?(?:task|todo|任务|待办))\s*[:：-]?\s*", re.IGNORECASE)
_ISO_DATE_RE = re.compile(r"\b\d{4}-\d{2}-\d{2}\b")
_ZH_DATE_RE = re.compile(r"(\d{1,2})\s*月\s*(\d{1,2})\s*(?:日|号)")

HELP_TEXT = """## ✅ Feishu Tasks

- `/task <summary>`: draft a new task (asks for confirmation)
- `list tasks` / `查看任务`: show your open tasks
- `complete task <guid>` / `完成任务 <guid>`: mark a task done (asks for confirmation)"""


class TaskRequest(BaseModel):
    intent: Literal["create_task", "list_tasks", "complete_task", "help"] = "create_task"
    summary: Optional[str] = Field(default=None, description="Short task title")
    description: Optional[str] = None
    due_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    task_guid: Optional[str] = Field(default=None, description="Task GUID for complete_task")
    completed: bool = Field(default=True, description="False to reopen a task")
    limit: int = 20


def strip_task_prefix(text: str) -> str:
    return _TASK_PREFIX_RE.sub("", text or "").strip()


def resolve_due_date(text: str, today: Optional[date] = None) -> Optional[str]:
    """Due date mentioned in free text, as YYYY-MM-DD."""
    today = today or date.today()
    if not text:
        return None

    iso = _ISO_DATE_RE.search(text)
    if iso:
        return iso.group(0)

    zh = _ZH_DATE_RE.search(text)
    if zh:
        month, day = int(zh.group(1)), int(zh.group(2))
        try:
            return date(today.year, month, day).isoformat()
        except ValueError:
            return None

    lowered = text.lower()
    if "后天" in lowered:
        return (today + timedelta(days=2)).isoformat()
    if "明天" in lowered or "tomorrow" in lowered:
        return (today + timedelta(days=1)).isoformat()
    if "今天" in lowered or "today" in lowered:
        return today.isoformat()

    friday = today + timedelta(days=((4 - today.weekday()) % 7) or 7)
    if re.search(r"下周五|next\s*friday", lowered):
        return (friday + timedelta(days=7)).isoformat()
    if re.search(r"本周五|周五|this\s*friday", lowered):
        return friday.isoformat()
    return None


def due_timestamp_ms(due_date: Optional[str]) -> Optional[int]:
    if not due_date:
        return None
    try:
        return int(datetime.strptime(due_date, "%Y-%m-%d").timestamp() * 1000)
    except ValueError:
        return None


def format_task_list(tasks) -> str:
    if not tasks:
        return "📭 没有找到任务。"
    lines = []
    for task in tasks:
        done = str(task.get("completed_at") or "0") != "0"
        lines.append(f"- {'✅' if done else '⬜'} {task.get('summary', '(untitled)')} `{task.get('guid', '')}`")
    return f"## 任务列表 ({len(tasks)})\n\n" + "\n".join(lines)


class FeishuTaskWorkflow(Workflow):
    """Feishu task management with confirmation before writes."""

    id = "feishu-task"
    name = "Feishu Task"
    description = "Create, list and complete Feishu tasks"
    tags = ["feishu", "task"]

    def __init__(self, client: Optional[FeishuClient] = None):
        self._client = client

    @property
    def client(self) -> FeishuClient:
        if self._client is None:
            self._client = get_feishu_client()
        return self._client

    async def run(self, input: WorkflowInput) -> WorkflowExecutionResult:
        query = input.query.strip()

        if query.startswith(TASK_CONFIRM_PREFIX):
            return await self._confirm(query[len(TASK_CONFIRM_PREFIX):])
        if query.startswith(TASK_CANCEL_PREFIX):
            return self._completed("🚫 已取消任务操作。")

        text = strip_task_prefix(query)
        if not text:
            return self._completed(HELP_TEXT)

        request = await extract_structured(
            f"""Parse this Feishu task request.
- intent: create_task, list_tasks, complete_task or help
- summary: short task title (create_task)
- due_date: YYYY-MM-DD if a deadline is mentioned. Today is {date.today().isoformat()}.
- task_guid: the task GUID (complete_task)

Request: "{text}\"""",
            TaskRequest,
        )
        logger.info(f"[FeishuTask] Intent: {request.intent}")

        if request.intent == "help":
            return self._completed(HELP_TEXT)

        if request.intent == "list_tasks":
            tasks = await self.client.list_tasks(limit=min(max(request.limit, 1), MAX_LIST_LIMIT), completed=False)
            return self._completed(format_task_list(tasks))

        if request.intent == "complete_task":
            if not request.task_guid:
                return self._completed("❓ 请提供要完成的任务 GUID。")
            payload = {"action": "complete", "task_guid": request.task_guid, "completed": request.completed}
            verb = "完成" if request.completed else "重新打开"
            return self._confirmation(
                f"📝 **确认{verb}任务**\n\n**Task**: `{request.task_guid}`\n\n---\n*点击 ✅ 确认 或 ❌ 取消*",
                payload,
            )

        summary = request.summary or text
        due_date = request.due_date or resolve_due_date(text)
        payload = {
            "action": "create",
            "summary": summary,
            "description": request.description or "",
            "due_date": due_date,
        }
        preview = ["📋 **任务预览**", "", f"**标题**: {summary}"]
        if payload["description"]:
            preview.append(f"**描述**: {payload['description']}")
        if due_date:
            preview.append(f"**截止日期**: {due_date}")
        preview.extend(["", "---", "*点击 ✅ 确认创建，或 ❌ 取消*"])
        return self._confirmation("\n".join(preview), payload)

    async def _confirm(self, raw_payload: str) -> WorkflowExecutionResult:
        try:
            payload: Dict[str, Any] = json.loads(raw_payload)
        except json.JSONDecodeError as e:
            return self._failed(f"Invalid confirmation data: {e}")

        if payload.get("action") == "complete":
            try:
                task = await self.client.complete_task(payload["task_guid"], completed=payload.get("completed", True))
            except (FeishuAPIError, httpx.HTTPError) as e:
                logger.error(f"[FeishuTask] Completing task {payload['task_guid']} failed: {e}")
                return self._completed(f"❌ 更新任务失败\n\nError: {e}")
            return self._completed(f"✅ 已更新任务: {task.get('summary') or payload['task_guid']}")

        if not payload.get("summary"):
            return self._failed("Confirmation data has no task summary")

        try:
            task = await self.client.create_task(
                payload["summary"],
                description=payload.get("description", ""),
                due_timestamp_ms=due_timestamp_ms(payload.get("due_date")),
            )
        except (FeishuAPIError, httpx.HTTPError) as e:
            logger.error(f"[FeishuTask] Creating task failed: {e}")
            return self._completed(f"❌ 创建任务失败\n\nError: {e}")
        logger.info(f"[FeishuTask] Created task {task.get('guid')}")
        link = task.get("url")
        return self._completed(f"✅ **任务已创建**: {payload['summary']}" + (f"\n\n{link}" if link else ""))
