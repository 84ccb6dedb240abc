"""
Feishu Open API Client

Thin async wrapper over the Feishu (Lark) Open API endpoints the gateway uses:
tenant access tokens, IM messages (send, reply, patch, list), docx content
and tasks.

Usage:
    from switchboard.core.feishu import get_feishu_client

    client = get_feishu_client()
    message_id = await client.send_card(chat_id, card)
    await client.patch_card(message_id, updated_card)
"""

import json
import logging
import re
import time
from typing import Any, Dict, List, Optional

import httpx

from .config import FeishuConfig, get_config

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Refresh the tenant token this many seconds before it expires
TOKEN_REFRESH_MARGIN = 300

_MENTION_RE = re.compile(r"@_user_\d+\s*|<at [^>]*>.*?</at>\s*")


def parse_message_content(content: str) -> str:
    """Plain text of an IM message body (text or rich-text post)."""
    try:
        data = json.loads(content)
    except (TypeError, json.JSONDecodeError):
        return content or ""

    if not isinstance(data, dict):
        return str(data)
    if "text" in data:
        text = data["text"]
    else:
        post = data.get("content") or next(
            (v.get("content") for v in data.values() if isinstance(v, dict) and "content" in v), []
        )
        lines = []
        for paragraph in post or []:
            lines.append("".join(el.get("text", "") for el in paragraph if isinstance(el, dict)))
        text = "\n".join(lines)
        if data.get("title"):
            text = f"{data['title']}\n{text}"
    return _MENTION_RE.sub("", text).strip()


class FeishuAPIError(Exception):
    """Non-zero ``code`` in a Feishu API response."""

    def __init__(self, code: int, msg: str):
        self.code = code
        self.msg = msg
        super().__init__(f"Feishu API error {code}: {msg}")


class FeishuClient:
    """Async client for the Feishu Open API."""

    def __init__(self, config: Optional[FeishuConfig] = None, timeout: float = DEFAULT_TIMEOUT):
        self.config = config or get_config().feishu
        self.base_url = self.config.base_url.rstrip("/")
        self.timeout = timeout

        self._client: Optional[httpx.AsyncClient] = None
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def get_tenant_token(self) -> str:
        """Tenant access token, cached until shortly before expiry."""
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        client = await self._get_client()
        response = await client.post(
            f"{self.base_url}/auth/v3/tenant_access_token/internal",
            json={"app_id": self.config.app_id, "app_secret": self.config.app_secret},
        )
        response.raise_for_status()
        data = response.json()
        if data.get("code", 0) != 0:
            raise FeishuAPIError(data.get("code", -1), data.get("msg", "unknown error"))

        self._token = data["tenant_access_token"]
        self._token_expires_at = time.monotonic() + max(int(data.get("expire", 7200)) - TOKEN_REFRESH_MARGIN, 60)
        logger.debug("[Feishu] Refreshed tenant access token")
        return self._token

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Authenticated API call returning the ``data`` object.

        Raises:
            FeishuAPIError: When the API reports a non-zero code
            httpx.HTTPStatusError: On HTTP errors
        """
        client = await self._get_client()
        token = await self.get_tenant_token()

        try:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                params={k: v for k, v in (params or {}).items() if v is not None},
                json=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"[Feishu] {method} {path} failed with {e.response.status_code}: {e.response.text[:200]}")
            raise
        except httpx.RequestError as e:
            logger.error(f"[Feishu] {method} {path} request failed: {e}")
            raise

        data = response.json()
        if data.get("code", 0) != 0:
            raise FeishuAPIError(data.get("code", -1), data.get("msg", "unknown error"))
        return data.get("data") or {}

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_card(self, chat_id: str, card: Dict[str, Any]) -> str:
        """Post an interactive card to a chat. Returns the message id."""
        data = await self.request(
            "POST",
            "/im/v1/messages",
            params={"receive_id_type": "chat_id"},
            json_body={
                "receive_id": chat_id,
                "msg_type": "interactive",
                "content": json.dumps(card, ensure_ascii=False),
            },
        )
        return data.get("message_id", "")

    async def reply_card(self, message_id: str, card: Dict[str, Any], in_thread: bool = False) -> str:
        """Reply to a message with an interactive card. Returns the new message id."""
        data = await self.request(
            "POST",
            f"/im/v1/messages/{message_id}/reply",
            json_body={
                "msg_type": "interactive",
                "content": json.dumps(card, ensure_ascii=False),
                "reply_in_thread": in_thread,
            },
        )
        return data.get("message_id", "")

    async def patch_card(self, message_id: str, card: Dict[str, Any]) -> None:
        """Replace the content of a previously sent card."""
        await self.request(
            "PATCH",
            f"/im/v1/messages/{message_id}",
            json_body={"content": json.dumps(card, ensure_ascii=False)},
        )

    async def list_messages(
        self,
        chat_id: str,
        limit: int = 20,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Most recent messages of a chat, newest first."""
        data = await self.request(
            "GET",
            "/im/v1/messages",
            params={
                "container_id_type": "chat",
                "container_id": chat_id,
                "page_size": min(max(limit, 1), 50),
                "sort_type": "ByCreateTimeDesc",
                "start_time": start_time,
                "end_time": end_time,
            },
        )
        return data.get("items", [])

    # =========================================================================
    # Documents
    # =========================================================================

    async def get_document(self, doc_token: str) -> Dict[str, Any]:
        """Docx metadata (title, revision_id, ...)."""
        data = await self.request("GET", f"/docx/v1/documents/{doc_token}")
        return data.get("document", {})

    async def get_document_raw_content(self, doc_token: str) -> str:
        data = await self.request("GET", f"/docx/v1/documents/{doc_token}/raw_content")
        return data.get("content", "")

    # =========================================================================
    # Tasks
    # =========================================================================

    async def create_task(
        self,
        summary: str,
        description: str = "",
        due_timestamp_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"summary": summary, "description": description}
        if due_timestamp_ms:
            body["due"] = {"timestamp": str(due_timestamp_ms), "is_all_day": True}
        data = await self.request("POST", "/task/v2/tasks", json_body=body)
        return data.get("task", {})

    async def list_tasks(self, limit: int = 20, completed: Optional[bool] = None) -> List[Dict[str, Any]]:
        data = await self.request(
            "GET",
            "/task/v2/tasks",
            params={"page_size": min(max(limit, 1), 50), "completed": completed},
        )
        return data.get("items", [])

    async def complete_task(self, task_guid: str, completed: bool = True) -> Dict[str, Any]:
        """Mark a task completed, or reopen it with ``completed=False``."""
        completed_at = str(int(time.time() * 1000)) if completed else "0"
        data = await self.request(
            "PATCH",
            f"/task/v2/tasks/{task_guid}",
            json_body={"task": {"completed_at": completed_at}, "update_fields": ["completed_at"]},
        )
        return data.get("task", {})


_client: Optional[FeishuClient] = None


def get_feishu_client() -> FeishuClient:
    """Get the global Feishu client."""
    global _client
    if _client is None:
        _client = FeishuClient()
    return _client
