"""Document Tracking Workflow: natural-language setup of document watches."""

import asyncio
import logging
from typing import Optional

from switchboard.tools.doc_tracking import DocumentTracker

from .base import Workflow, WorkflowExecutionResult, WorkflowInput
from .dpa_assistant import parse_doc_reference_in

logger = logging.getLogger(__name__)


class DocumentTrackingWorkflow(Workflow):
    """Registers a watch for the Feishu document mentioned in the query."""

    id = "document-tracking"
    name = "Document Tracking"
    description = "Track a Feishu document and report changes in this chat"
    tags = ["feishu", "docs"]

    def __init__(self, tracker: Optional[DocumentTracker] = None):
        self._tracker = tracker

    @property
    def tracker(self) -> DocumentTracker:
        if self._tracker is None:
            self._tracker = DocumentTracker()
        return self._tracker

    async def run(self, input: WorkflowInput) -> WorkflowExecutionResult:
        if not input.chat_id:
            return self._completed("❌ 无法设置文档监控：未提供聊天ID")

        reference = parse_doc_reference_in(input.query)
        if reference is None:
            return self._completed(
                "❓ 请提供要监控的飞书文档链接，例如：\n`监控这个文档 https://xxx.feishu.cn/docx/...`"
            )
        doc_token, doc_type = reference

        revision = None
        title = doc_token
        try:
            document = await self.tracker.client.get_document(doc_token)
            revision = document.get("revision_id")
            revision = str(revision) if revision is not None else None
            title = document.get("title") or doc_token
        except Exception as e:
            logger.warning(f"[DocTracking] Could not read {doc_token} before watching: {e}")

        added = await asyncio.to_thread(
            self.tracker.watch, input.chat_id, doc_token, _extract_url(input.query) or doc_token,
            input.user_id or "", revision,
        )
        if not added:
            return self._completed(f"ℹ️ 已经在监控 **{title}**")
        logger.info(f"[DocTracking] Watch registered for {doc_type} {doc_token} in {input.chat_id}")
        return self._completed(f"✅ 开始监控 **{title}**。文档有变化时会在本群通知。")


def _extract_url(text: str) -> Optional[str]:
    for word in text.split():
        if word.startswith("http"):
            return word
    return None
