"""
Switchboard Feishu Docs Tools

Read Feishu documents by URL or token.
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field

from switchboard.core.feishu import get_feishu_client
from switchboard.core.registry import capability

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"^(docx?cn[a-zA-Z0-9]+|shtcn[a-zA-Z0-9]+|bitcn[a-zA-Z0-9]+)$")
_URL_RE = re.compile(r"https?://(?:[\w-]+\.)*(?:feishu\.cn|larksuite\.com)/(docs|docx|sheets|bitable|wiki)/([a-zA-Z0-9]+)")
_BARE_TOKEN_RE = re.compile(r"^[a-zA-Z0-9_-]{20,}$")

URL_TYPES = {"docs": "doc", "docx": "docx", "sheets": "sheet", "bitable": "bitable", "wiki": "wiki"}

MAX_CONTENT_CHARS = 6000


def parse_doc_reference(text: str) -> Optional[Tuple[str, str]]:
    """Find a document in free text.

    Returns:
        ``(doc_token, doc_type)`` or None when the text holds no URL or token
    """
    text = (text or "").strip()

    url_match = _URL_RE.search(text)
    if url_match:
        url_type, token = url_match.groups()
        return token, URL_TYPES.get(url_type, "doc")

    for word in text.split():
        token_match = _TOKEN_RE.match(word)
        if token_match:
            token = token_match.group(1)
            if token.startswith("shtcn"):
                return token, "sheet"
            if token.startswith("bitcn"):
                return token, "bitable"
            if token.startswith("docxcn"):
                return token, "docx"
            return token, "doc"

    if _BARE_TOKEN_RE.match(text):
        return text, "docx"
    return None


class FeishuDocsParams(BaseModel):
    doc_url: Optional[str] = Field(default=None, description="Feishu document URL")
    doc_token: Optional[str] = Field(default=None, description="Document token if URL not provided")
    action: str = Field(default="read", description="read or metadata")
    doc_type: Optional[str] = Field(default=None, description="doc, sheet, or bitable")


@capability(
    name="feishu_docs",
    params=FeishuDocsParams,
    extraction_prompt="""
Extract document reference from the user query.
Look for Feishu document URLs or document tokens.
Choose action:
- "read" for reading content
- "metadata" for basic document info
""",
)
async def feishu_docs(
    doc_url: Optional[str] = None,
    doc_token: Optional[str] = None,
    action: str = "read",
    doc_type: Optional[str] = None,
    query: str = "",
) -> Dict[str, Any]:
    """Read a Feishu document or its metadata.

    Args:
        doc_url: Document URL
        doc_token: Document token
        action: "read" for content, "metadata" for title and revision
        doc_type: Document type hint
        query: Original user query, searched for a URL when none was extracted

    Returns:
        Document content or metadata
    """
    reference = None
    for candidate in (doc_token, doc_url, query):
        if candidate:
            reference = parse_doc_reference(candidate)
            if reference:
                break
    if reference is None:
        raise ValueError("No document token or URL provided")

    token, detected_type = reference
    client = get_feishu_client()
    logger.info(f"[FeishuDocs] {action} {token} ({doc_type or detected_type})")

    document = await client.get_document(token)
    title = document.get("title", "")

    if action == "metadata":
        return {
            "result": {
                "doc_token": token,
                "doc_type": doc_type or detected_type,
                "title": title,
                "revision_id": document.get("revision_id"),
            }
        }

    content = await client.get_document_raw_content(token)
    if len(content) > MAX_CONTENT_CHARS:
        content = content[:MAX_CONTENT_CHARS] + "\n\n... (truncated)"
    return {"output": f"📄 **{title or token}**\n\n{content}" if content else f"📄 **{title or token}** is empty."}
