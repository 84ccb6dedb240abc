"""
Feishu Channel Implementation

Feishu (Lark) bot surface over the Open API:

- Incoming ``im.message.receive_v1`` events become ``Message`` objects
- Each answer is one interactive card, patched as the answer streams in
- Workflows that need confirmation get ✅ / ❌ buttons whose values are the
  callback queries (``__gitlab_confirm__:{json}`` and friends)
- Button presses are routed like any other query
"""

import logging
from typing import Any, Dict, Optional, Tuple

from switchboard.core.batcher import UpdateBatcher
from switchboard.core.config import FeishuConfig, get_config
from switchboard.core.feishu import FeishuClient, parse_message_content
from switchboard.interfaces.base import Channel, DeliveryResult, Message, MessageType
from switchboard.routing.router import QueryRouter, RouterContext, RouterResult, get_query_router
from switchboard.workflows.dpa_assistant import CANCEL_PREFIX, CONFIRM_PREFIX
from switchboard.workflows.feishu_task import TASK_CANCEL_PREFIX, TASK_CONFIRM_PREFIX

logger = logging.getLogger(__name__)

THINKING_TEXT = "🤔 思考中..."

# workflow id -> (confirm prefix, cancel prefix)
CONFIRMATION_PREFIXES: Dict[str, Tuple[str, str]] = {
    "dpa-assistant": (CONFIRM_PREFIX, CANCEL_PREFIX),
    "feishu-task": (TASK_CONFIRM_PREFIX, TASK_CANCEL_PREFIX),
}


def build_card(text: str, buttons: Optional[Tuple[str, str]] = None, streaming: bool = False) -> Dict[str, Any]:
    """Interactive card with a markdown body and optional confirm/cancel buttons.

    Args:
        text: Markdown body
        buttons: (confirm value, cancel value) queries sent back on click
        streaming: Adds a small "still typing" footer
    """
    elements = [{"tag": "markdown", "content": text or THINKING_TEXT}]
    if streaming:
        elements.append({"tag": "note", "elements": [{"tag": "plain_text", "content": "⏳ 生成中..."}]})
    if buttons:
        confirm_value, cancel_value = buttons
        elements.append({
            "tag": "action",
            "actions": [
                {
                    "tag": "button",
                    "text": {"tag": "plain_text", "content": "✅ Confirm"},
                    "type": "primary",
                    "value": {"query": confirm_value},
                },
                {
                    "tag": "button",
                    "text": {"tag": "plain_text", "content": "❌ Cancel"},
                    "type": "danger",
                    "value": {"query": cancel_value},
                },
            ],
        })
    return {"config": {"wide_screen_mode": True, "update_multi": True}, "elements": elements}


def confirmation_buttons(result: RouterResult) -> Optional[Tuple[str, str]]:
    """Button values for a result that needs confirmation."""
    if not result.needs_confirmation or result.confirmation_data is None:
        return None
    prefixes = CONFIRMATION_PREFIXES.get(result.workflow_id or "")
    if prefixes is None:
        logger.warning(f"[Feishu] No confirmation callbacks known for workflow {result.workflow_id}")
        return None
    confirm_prefix, cancel_prefix = prefixes
    return f"{confirm_prefix}{result.confirmation_data}", cancel_prefix


def message_from_event(event: Dict[str, Any]) -> Optional[Message]:
    """Message for an ``im.message.receive_v1`` event body, or None for unsupported types."""
    msg = event.get("message", {})
    msg_type = msg.get("message_type", "text")
    if msg_type not in ("text", "post"):
        return None
    sender = event.get("sender", {}).get("sender_id", {})
    return Message(
        content=parse_message_content(msg.get("content", "")),
        type=MessageType.POST if msg_type == "post" else MessageType.TEXT,
        chat_id=msg.get("chat_id"),
        message_id=msg.get("message_id"),
        root_id=msg.get("root_id") or None,
        sender_id=sender.get("open_id") or sender.get("user_id"),
        channel="feishu",
        metadata={"chat_type": msg.get("chat_type")},
    )


def message_from_card_action(event: Dict[str, Any]) -> Optional[Message]:
    """Message for a card button press; the button value carries the query."""
    action = event.get("action", {})
    value = action.get("value") or {}
    query = value.get("query") if isinstance(value, dict) else None
    if not query:
        return None
    context = event.get("context", {})
    operator = event.get("operator", {})
    return Message(
        content=query,
        type=MessageType.CARD_ACTION,
        chat_id=context.get("open_chat_id") or event.get("open_chat_id"),
        message_id=context.get("open_message_id") or event.get("open_message_id"),
        sender_id=operator.get("open_id") or event.get("open_id"),
        channel="feishu",
    )


class FeishuChannel(Channel):
    """
    Feishu bot channel.

    Events arrive through the HTTP API (``POST /feishu/events``); this class
    only sends. Answers stream into a single card through ``UpdateBatcher``.
    """

    def __init__(
        self,
        channel_id: str = "feishu",
        client: Optional[FeishuClient] = None,
        router: Optional[QueryRouter] = None,
        config: Optional[FeishuConfig] = None,
    ):
        config = config or get_config().feishu
        super().__init__(channel_id, config.model_dump())
        self.feishu_config = config
        self.client = client or FeishuClient(config)
        self._router = router

    @property
    def router(self) -> QueryRouter:
        if self._router is None:
            self._router = get_query_router()
        return self._router

    def is_available(self) -> bool:
        return bool(self.feishu_config.app_id and self.feishu_config.app_secret)

    async def stop(self):
        await self.client.close()
        await super().stop()

    async def send(self, message: Message) -> DeliveryResult:
        """Send ``message.content`` as a card: a reply when ``message_id`` is set, else a new message."""
        card = build_card(message.content)
        try:
            if message.message_id:
                message_id = await self.client.reply_card(message.message_id, card, in_thread=bool(message.root_id))
            elif message.chat_id:
                message_id = await self.client.send_card(message.chat_id, card)
            else:
                return DeliveryResult(success=False, error="Message has no chat_id or message_id")
        except Exception as e:
            logger.error(f"[Feishu] Failed to send card: {e}")
            return DeliveryResult(success=False, error=str(e))
        return DeliveryResult(success=True, message_id=message_id)

    async def handle_message(self, message: Message) -> RouterResult:
        """Answer an incoming message: placeholder card, streamed patches, final card."""
        placeholder = await self.send(Message(
            content=THINKING_TEXT,
            chat_id=message.chat_id,
            message_id=message.message_id if message.type != MessageType.CARD_ACTION else None,
            root_id=message.root_id,
        ))
        card_id = placeholder.message_id if placeholder.success else None

        final_buttons: Dict[str, Optional[Tuple[str, str]]] = {"buttons": None}

        async def deliver(text: str, final: bool) -> None:
            if not card_id:
                return
            card = build_card(text, buttons=final_buttons["buttons"] if final else None, streaming=not final)
            await self.client.patch_card(card_id, card)

        batcher = UpdateBatcher.from_config(deliver, get_config().batching)
        context = RouterContext(
            chat_id=message.chat_id,
            root_id=message.root_id,
            message_id=message.message_id,
            user_id=message.sender_id,
            on_update=batcher.update,
        )

        result = await self.router.route(message.content, context)
        final_buttons["buttons"] = confirmation_buttons(result)

        try:
            await batcher.finish(result.response)
        except Exception as e:
            logger.error(f"[Feishu] Failed to update card {card_id}: {e}")

        if not card_id and message.chat_id:
            # Placeholder failed; fall back to a fresh message with the final answer
            card = build_card(result.response, buttons=final_buttons["buttons"])
            try:
                await self.client.send_card(message.chat_id, card)
            except Exception as e:
                logger.error(f"[Feishu] Failed to deliver answer to {message.chat_id}: {e}")

        logger.info(f"[Feishu] Answered {message.message_id} via {result.routed_via}")
        return result
