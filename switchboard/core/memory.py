"""
Conversation Memory

Scope resolution plus a small SQLite-backed store for conversation turns and
per-thread working memory.

Scope:
    resource_id = "user:{user_id}"
    thread_id   = "feishu:{chat_id}:{root_id}"

A message that starts its own thread (``root_id == message_id``) or has no
root at all is a top-level chat message; those share one stable thread,
``feishu:{chat_id}:{thread_override}``, so context carries across turns.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .database import Database, get_db

logger = logging.getLogger(__name__)

DEFAULT_THREAD_OVERRIDE = "main"


@dataclass(frozen=True)
class MemoryScope:
    """Stable identifiers for one conversation thread."""
    resource_id: str
    thread_id: str
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


def resolve_memory_scope(
    user_id: str,
    chat_id: str,
    root_id: Optional[str] = None,
    message_id: Optional[str] = None,
    thread_override: str = DEFAULT_THREAD_OVERRIDE,
) -> MemoryScope:
    """Derive the memory scope for a chat message.

    Args:
        user_id: Sender id (open_id)
        chat_id: Chat the message was posted in
        root_id: Thread root message id, if the message is a reply
        message_id: Id of the message itself
        thread_override: Thread key used for top-level messages

    Returns:
        MemoryScope keyed by user and thread
    """
    in_thread = bool(root_id) and root_id != message_id
    thread_key = root_id if in_thread else thread_override

    return MemoryScope(
        resource_id=f"user:{user_id}",
        thread_id=f"feishu:{chat_id}:{thread_key}",
        metadata={
            "user_id": user_id,
            "chat_id": chat_id,
            "root_id": root_id,
            "message_id": message_id,
            "in_thread": in_thread,
        },
    )


class ConversationMemory:
    """Conversation turns and working memory keyed by (resource_id, thread_id)."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def append_message(
        self,
        scope: MemoryScope,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Store one message in the scope's thread.

        Returns:
            Row id of the stored message
        """
        row_id = self.db.insert("memory_messages", {
            "resource_id": scope.resource_id,
            "thread_id": scope.thread_id,
            "role": role,
            "content": content,
            "metadata": json.dumps(metadata, ensure_ascii=False) if metadata else None,
            "created_at": datetime.now().isoformat(),
        })
        logger.debug(f"[Memory] Added {role} message to {scope.thread_id}")
        return row_id

    def get_messages(self, scope: MemoryScope, limit: Optional[int] = None) -> List[Dict[str, str]]:
        """Most recent messages of the thread in chronological order.

        Args:
            scope: Memory scope
            limit: Keep only the last N messages

        Returns:
            List of ``{"role", "content"}`` dicts ready for a chat completion
        """
        params = {"resource_id": scope.resource_id, "thread_id": scope.thread_id}
        if limit:
            rows = self.db.fetchall(
                """
                SELECT role, content FROM memory_messages
                WHERE resource_id = :resource_id AND thread_id = :thread_id
                ORDER BY id DESC
                LIMIT :limit
                """,
                {**params, "limit": limit},
            )
            rows = list(reversed(rows))
        else:
            rows = self.db.fetchall(
                """
                SELECT role, content FROM memory_messages
                WHERE resource_id = :resource_id AND thread_id = :thread_id
                ORDER BY id ASC
                """,
                params,
            )
        return [{"role": row[0], "content": row[1]} for row in rows]

    def get_working_memory(self, scope: MemoryScope) -> Dict[str, Any]:
        row = self.db.fetchone(
            "SELECT data FROM working_memory WHERE resource_id = :resource_id AND thread_id = :thread_id",
            {"resource_id": scope.resource_id, "thread_id": scope.thread_id},
        )
        if row is None:
            return {}
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"[Memory] Corrupt working memory for {scope.thread_id}, ignoring")
            return {}

    def set_working_memory(self, scope: MemoryScope, data: Dict[str, Any]) -> None:
        """Replace the working memory of the thread."""
        self.db.execute(
            """
            INSERT INTO working_memory (resource_id, thread_id, data, updated_at)
            VALUES (:resource_id, :thread_id, :data, :updated_at)
            ON CONFLICT(resource_id, thread_id)
            DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
            """,
            {
                "resource_id": scope.resource_id,
                "thread_id": scope.thread_id,
                "data": json.dumps(data, ensure_ascii=False),
                "updated_at": datetime.now().isoformat(),
            },
        )

    def clear_thread(self, scope: MemoryScope) -> int:
        """Delete the thread's messages and working memory.

        Returns:
            Number of messages removed
        """
        where = "resource_id = :resource_id AND thread_id = :thread_id"
        params = {"resource_id": scope.resource_id, "thread_id": scope.thread_id}
        removed = self.db.delete("memory_messages", where, params)
        self.db.delete("working_memory", where, params)
        logger.info(f"[Memory] Cleared thread {scope.thread_id} ({removed} messages)")
        return removed


_memory: Optional[ConversationMemory] = None


def get_memory() -> ConversationMemory:
    """Get the global conversation memory."""
    global _memory
    if _memory is None:
        _memory = ConversationMemory()
    return _memory
