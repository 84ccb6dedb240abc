"""
Switchboard Feishu Chat Tools

Fetch recent chat history from a Feishu group or private chat.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from switchboard.core.feishu import get_feishu_client, parse_message_content
from switchboard.core.registry import capability

logger = logging.getLogger(__name__)


class ChatHistoryParams(BaseModel):
    chat_id: Optional[str] = Field(default=None, description="Chat ID to fetch history from")
    limit: int = Field(default=20, description="Number of messages to retrieve")
    start_time: Optional[str] = Field(default=None, description="Start time (unix seconds)")
    end_time: Optional[str] = Field(default=None, description="End time (unix seconds)")
    sender_id: Optional[str] = Field(default=None, description="Filter by sender open_id/user_id")


def simplify_message(item: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce an IM message item to sender, time and plain text."""
    sender = item.get("sender") or {}
    sender_id = sender.get("id") or ""
    if isinstance(sender_id, dict):
        sender_id = sender_id.get("user_id") or sender_id.get("open_id") or ""
    created = item.get("create_time")
    timestamp = ""
    if created:
        timestamp = datetime.fromtimestamp(int(created) / 1000).strftime("%Y-%m-%d %H:%M")
    return {
        "message_id": item.get("message_id"),
        "sender_id": sender_id,
        "sender_type": sender.get("sender_type", "user"),
        "time": timestamp,
        "content": parse_message_content((item.get("body") or {}).get("content", "")),
    }


def format_history(messages: List[Dict[str, Any]]) -> str:
    lines = []
    for msg in messages:
        who = "Bot" if msg["sender_type"] == "app" else msg["sender_id"] or "User"
        lines.append(f"[{msg['time']}] {who}: {msg['content']}")
    return "\n".join(lines)


@capability(
    name="feishu_chat_history",
    params=ChatHistoryParams,
    extraction_prompt="""
Extract chat history fetch parameters from the query.
The chat_id will be provided from context.
Extract optional filters like start/end time or sender if explicitly mentioned.
""",
)
async def feishu_chat_history(
    chat_id: Optional[str] = None,
    limit: int = 20,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    sender_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Fetch recent messages from a Feishu chat.

    Args:
        chat_id: Chat ID ("oc_xxx" for groups)
        limit: Number of messages to retrieve
        start_time: Unix seconds lower bound
        end_time: Unix seconds upper bound
        sender_id: Only keep messages from this sender

    Returns:
        Messages oldest first, plus a readable transcript
    """
    if not chat_id:
        raise ValueError("No chat_id provided for chat history")

    items = await get_feishu_client().list_messages(
        chat_id, limit=limit or 20, start_time=start_time, end_time=end_time
    )
    messages = [simplify_message(item) for item in items]
    if sender_id:
        messages = [m for m in messages if m["sender_id"] == sender_id]
    messages.reverse()

    logger.info(f"[FeishuChat] Fetched {len(messages)} messages from {chat_id}")
    if not messages:
        return {"output": "No messages found in this chat for the given filters."}

    return {
        "output": f"💬 Last {len(messages)} messages:\n\n{format_history(messages)}",
        "messages": messages,
    }
