"""
Switchboard Document Tracking

Chat commands for watching Feishu documents:

    watch <url|token>     start tracking a document in this chat
    unwatch <url|token>   stop tracking it
    watched               list documents tracked in this chat
    check <url|token>     compare the current revision with the last one seen
    tracking:status       summary of tracked documents

Watches are stored in the ``tracked_documents`` table.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from switchboard.core.database import Database, get_db
from switchboard.core.feishu import FeishuClient, get_feishu_client

from .feishu_docs import parse_doc_reference

logger = logging.getLogger(__name__)

_COMMAND_RE = re.compile(r"^(watch|check|unwatch|watched|tracking:\w+)(?:\s+(.*))?$", re.IGNORECASE | re.DOTALL)

HELP_TEXT = (
    "📄 **Document tracking commands**\n"
    "- `watch <doc url>`: start tracking a document\n"
    "- `unwatch <doc url>`: stop tracking\n"
    "- `watched`: list tracked documents\n"
    "- `check <doc url>`: check for changes now\n"
    "- `tracking:status`: tracking summary"
)


class DocumentTracker:
    """Persistent per-chat document watches."""

    def __init__(self, db: Optional[Database] = None, client: Optional[FeishuClient] = None):
        self.db = db or get_db()
        self._client = client

    @property
    def client(self) -> FeishuClient:
        if self._client is None:
            self._client = get_feishu_client()
        return self._client

    def is_watched(self, chat_id: str, doc_token: str) -> bool:
        row = self.db.fetchone(
            "SELECT 1 FROM tracked_documents WHERE chat_id = :chat_id AND doc_token = :doc_token",
            {"chat_id": chat_id, "doc_token": doc_token},
        )
        return row is not None

    def watch(self, chat_id: str, doc_token: str, doc_url: str = "", user_id: str = "",
              revision: Optional[str] = None) -> bool:
        """Start tracking a document. Returns False if it was already tracked."""
        if self.is_watched(chat_id, doc_token):
            return False
        self.db.insert("tracked_documents", {
            "doc_token": doc_token,
            "chat_id": chat_id,
            "doc_url": doc_url,
            "added_by": user_id,
            "last_revision": revision,
            "created_at": datetime.now().isoformat(),
        })
        logger.info(f"[DocTracking] Watching {doc_token} in {chat_id}")
        return True

    def unwatch(self, chat_id: str, doc_token: str) -> bool:
        removed = self.db.delete(
            "tracked_documents",
            "chat_id = :chat_id AND doc_token = :doc_token",
            {"chat_id": chat_id, "doc_token": doc_token},
        )
        return removed > 0

    def list_watched(self, chat_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if chat_id:
            rows = self.db.fetchall(
                "SELECT doc_token, chat_id, doc_url, added_by, last_revision, created_at "
                "FROM tracked_documents WHERE chat_id = :chat_id ORDER BY created_at",
                {"chat_id": chat_id},
            )
        else:
            rows = self.db.fetchall(
                "SELECT doc_token, chat_id, doc_url, added_by, last_revision, created_at "
                "FROM tracked_documents ORDER BY created_at"
            )
        keys = ("doc_token", "chat_id", "doc_url", "added_by", "last_revision", "created_at")
        return [dict(zip(keys, row)) for row in rows]

    def set_revision(self, chat_id: str, doc_token: str, revision: Optional[str]) -> None:
        self.db.execute(
            "UPDATE tracked_documents SET last_revision = :revision "
            "WHERE chat_id = :chat_id AND doc_token = :doc_token",
            {"revision": revision, "chat_id": chat_id, "doc_token": doc_token},
        )

    async def check(self, chat_id: str, doc_token: str) -> Dict[str, Any]:
        """Fetch the current revision and compare it with the stored one."""
        document = await self.client.get_document(doc_token)
        current = document.get("revision_id")
        current = str(current) if current is not None else None

        previous = None
        for item in self.list_watched(chat_id):
            if item["doc_token"] == doc_token:
                previous = item["last_revision"]
                break

        changed = previous is not None and current is not None and previous != current
        if self.is_watched(chat_id, doc_token):
            self.set_revision(chat_id, doc_token, current)

        return {
            "doc_token": doc_token,
            "title": document.get("title", ""),
            "previous_revision": previous,
            "current_revision": current,
            "changed": changed,
        }


# =============================================================================
# Command Handling
# =============================================================================

async def handle_doc_command(
    text: str,
    chat_id: str,
    user_id: str = "",
    tracker: Optional[DocumentTracker] = None,
) -> str:
    """Run one document tracking command and return the reply text."""
    tracker = tracker or DocumentTracker()
    match = _COMMAND_RE.match((text or "").strip())
    if not match:
        return HELP_TEXT

    command = match.group(1).lower()
    argument = (match.group(2) or "").strip()
    logger.info(f"[DocTracking] Command {command!r} in {chat_id}")

    if command == "watched":
        docs = tracker.list_watched(chat_id)
        if not docs:
            return "📭 No documents are tracked in this chat."
        lines = [f"- {d['doc_url'] or d['doc_token']}" for d in docs]
        return f"📄 Tracking {len(docs)} document(s):\n" + "\n".join(lines)

    if command.startswith("tracking:"):
        if command == "tracking:status":
            total = len(tracker.list_watched())
            here = len(tracker.list_watched(chat_id))
            return f"📊 Tracking {here} document(s) in this chat, {total} in total."
        return HELP_TEXT

    reference = parse_doc_reference(argument)
    if reference is None:
        return f"❌ Could not find a Feishu document in: {argument or '(empty)'}\n\n{HELP_TEXT}"
    doc_token, _ = reference

    if command == "watch":
        revision = None
        try:
            document = await tracker.client.get_document(doc_token)
            revision = document.get("revision_id")
            revision = str(revision) if revision is not None else None
        except Exception as e:
            logger.warning(f"[DocTracking] Could not read {doc_token} before watching: {e}")
        if not tracker.watch(chat_id, doc_token, doc_url=argument, user_id=user_id, revision=revision):
            return f"ℹ️ Already tracking {argument}"
        return f"✅ Now tracking {argument}. I'll report changes in this chat."

    if command == "unwatch":
        if tracker.unwatch(chat_id, doc_token):
            return f"🛑 Stopped tracking {argument}"
        return f"ℹ️ {argument} was not being tracked."

    # check
    result = await tracker.check(chat_id, doc_token)
    title = result["title"] or doc_token
    if result["changed"]:
        return (
            f"🔔 **{title}** changed: revision {result['previous_revision']} → {result['current_revision']}"
        )
    return f"✅ **{title}** has no new changes (revision {result['current_revision']})."
