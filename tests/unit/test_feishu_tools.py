"""Unit tests for the Feishu chat history and docs capabilities."""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from switchboard.tools.feishu_chat import feishu_chat_history, simplify_message
from switchboard.tools.feishu_docs import MAX_CONTENT_CHARS, feishu_docs


def im_item(message_id, sender, text, sender_type="user"):
    return {
        "message_id": message_id,
        "sender": {"id": sender, "sender_type": sender_type},
        "create_time": "1760000000000",
        "body": {"content": json.dumps({"text": text})},
    }


@pytest.fixture
def feishu_client():
    client = MagicMock()
    client.list_messages = AsyncMock(return_value=[
        im_item("om_3", "ou_2", "third"),
        im_item("om_2", "cli_bot", "second", sender_type="app"),
        im_item("om_1", "ou_1", "first"),
    ])
    client.get_document = AsyncMock(return_value={"title": "Roadmap", "revision_id": 7})
    client.get_document_raw_content = AsyncMock(return_value="Q4 goals")
    return client


class TestChatHistory:
    """Tests for feishu_chat_history."""

    def test_simplify_message(self):
        """Test message bodies are reduced to plain text."""
        message = simplify_message(im_item("om_1", "ou_1", "@_user_1 hello"))
        assert message["content"] == "hello"
        assert message["sender_id"] == "ou_1"

    @pytest.mark.asyncio
    async def test_oldest_first_transcript(self, feishu_client):
        """Test messages are returned oldest first with bot lines marked."""
        with patch("switchboard.tools.feishu_chat.get_feishu_client", return_value=feishu_client):
            result = await feishu_chat_history(chat_id="oc_1", limit=3)

        assert [m["content"] for m in result["messages"]] == ["first", "second", "third"]
        assert "Bot: second" in result["output"]
        feishu_client.list_messages.assert_awaited_once_with("oc_1", limit=3, start_time=None, end_time=None)

    @pytest.mark.asyncio
    async def test_sender_filter(self, feishu_client):
        """Test the sender filter keeps only that sender's messages."""
        with patch("switchboard.tools.feishu_chat.get_feishu_client", return_value=feishu_client):
            result = await feishu_chat_history(chat_id="oc_1", sender_id="ou_1")
        assert [m["message_id"] for m in result["messages"]] == ["om_1"]

    @pytest.mark.asyncio
    async def test_chat_id_required(self):
        """Test a missing chat id is an error."""
        with pytest.raises(ValueError):
            await feishu_chat_history()


class TestFeishuDocs:
    """Tests for feishu_docs."""

    @pytest.mark.asyncio
    async def test_read_from_query(self, feishu_client):
        """Test the document URL is found in the raw query."""
        with patch("switchboard.tools.feishu_docs.get_feishu_client", return_value=feishu_client):
            result = await feishu_docs(query="总结 https://acme.feishu.cn/docx/AbC123 的内容")

        assert result["output"] == "📄 **Roadmap**\n\nQ4 goals"
        feishu_client.get_document.assert_awaited_once_with("AbC123")

    @pytest.mark.asyncio
    async def test_metadata(self, feishu_client):
        """Test metadata reports title and revision."""
        with patch("switchboard.tools.feishu_docs.get_feishu_client", return_value=feishu_client):
            result = await feishu_docs(doc_url="https://acme.feishu.cn/sheets/Sh1", action="metadata")

        assert result["result"] == {"doc_token": "Sh1", "doc_type": "sheet", "title": "Roadmap", "revision_id": 7}
        feishu_client.get_document_raw_content.assert_not_called()

    @pytest.mark.asyncio
    async def test_long_content_truncated(self, feishu_client):
        """Test long documents are cut."""
        feishu_client.get_document_raw_content.return_value = "x" * (MAX_CONTENT_CHARS + 10)
        with patch("switchboard.tools.feishu_docs.get_feishu_client", return_value=feishu_client):
            result = await feishu_docs(doc_token="doccnAbc123")

        assert result["output"].endswith("... (truncated)")

    @pytest.mark.asyncio
    async def test_no_reference(self):
        """Test a request without a document is an error."""
        with pytest.raises(ValueError):
            await feishu_docs(query="read the doc")
