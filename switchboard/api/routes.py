"""
Switchboard API Routes

Endpoints:
    POST /feishu/events   - Feishu event subscription (challenge, messages, card actions)
    POST /chat            - Route a query (JSON, or streamed NDJSON snapshots)
    POST /classify        - Pattern classifier only
    POST /route/decision  - Priority router only
    GET  /health          - Health metrics and model tier state
    GET  /tools           - Registered capabilities
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from switchboard.core.batcher import UpdateBatcher
from switchboard.core.config import get_config
from switchboard.core.health import health_monitor
from switchboard.core.llm import close_llm_clients
from switchboard.core.loader import load_capabilities
from switchboard.core.logging import setup_logging
from switchboard.core.model_selector import get_tier_state
from switchboard.core.registry import get_tool_registry
from switchboard.interfaces.feishu.channel import FeishuChannel, message_from_card_action, message_from_event
from switchboard.routing.classifier import get_classifier
from switchboard.routing.priority_router import get_priority_router
from switchboard.routing.router import RouterContext, get_query_router

logger = logging.getLogger(__name__)


# =============================================================================
# API Key Authentication
# =============================================================================

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


async def verify_api_key(authorization: Optional[str] = Security(api_key_header)) -> bool:
    """Verify the API key from the Authorization header.

    Expects: Authorization: Bearer <api_key>

    If ``api.api_key`` is not configured, authentication is disabled.
    """
    api_key = get_config().api.api_key
    if not api_key:
        return True

    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Invalid Authorization header format. Use: Bearer <api_key>",
        )

    if parts[1] != api_key:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return True


# =============================================================================
# Lifespan Management
# =============================================================================

_channel: Optional[FeishuChannel] = None


def get_feishu_channel() -> FeishuChannel:
    global _channel
    if _channel is None:
        _channel = FeishuChannel()
    return _channel


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    config = get_config()
    setup_logging(config.system.log_level, config.system.log_file)
    logger.info("Starting Switchboard...")

    loaded = load_capabilities()
    logger.info(f"Loaded {len(get_tool_registry())} capabilities from {len(loaded)} modules")

    channel = get_feishu_channel()
    if channel.is_available():
        await channel.start()
    else:
        logger.warning("Feishu credentials not configured - /feishu/events will only answer challenges")

    yield

    logger.info("Shutting down Switchboard...")
    if channel.is_running:
        await channel.stop()
    await close_llm_clients()


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Switchboard",
    description="Chat query router for Feishu: rules, workflows, tools and a reasoning agent",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Request/Response Models
# =============================================================================

class ChatRequest(BaseModel):
    """Chat request model."""
    text: str = Field(..., description="User message")
    user_id: Optional[str] = Field(default=None, description="User identifier")
    chat_id: Optional[str] = Field(default=None, description="Chat identifier; enables memory")
    root_id: Optional[str] = Field(default=None, description="Thread root message id")
    message_id: Optional[str] = Field(default=None, description="This message's id")
    messages: Optional[List[Dict[str, str]]] = Field(default=None, description="Prior conversation")
    stream: bool = Field(default=False, description="Stream NDJSON answer snapshots")


class ChatResponse(BaseModel):
    """Chat response model."""
    text: str = Field(..., description="Answer")
    routed_via: str = Field(..., description="doc-command / workflow / tool / agent / workflow-fallback / error")
    workflow_id: Optional[str] = None
    tool_id: Optional[str] = None
    needs_confirmation: bool = False
    confirmation_data: Optional[str] = None
    classification: Optional[Dict[str, Any]] = None
    routing_decision: Optional[Dict[str, Any]] = None
    duration_ms: float = 0.0


class QueryRequest(BaseModel):
    query: str = Field(..., description="Query text")


# =============================================================================
# Routes
# =============================================================================

@app.get("/", include_in_schema=False)
async def root():
    return {"message": "Switchboard", "docs": "/docs"}


@app.get("/health", tags=["System"])
async def health_check():
    """Health metrics and model tier state."""
    metrics = health_monitor.metrics()
    metrics["model_tiers"] = get_tier_state().snapshot()
    metrics["tools_loaded"] = len(get_tool_registry())
    return metrics


@app.get("/tools", tags=["System"])
async def list_tools(authorized: bool = Depends(verify_api_key)):
    """List all registered capabilities and their schemas."""
    registry = get_tool_registry()
    return {
        "count": len(registry),
        "tools": [
            {
                "name": entry.name,
                "description": entry.description,
                "schema": entry.schema,
                "mutating": entry.mutating,
            }
            for entry in registry.values()
        ],
    }


@app.post("/classify", tags=["Routing"])
async def classify(request: QueryRequest, authorized: bool = Depends(verify_api_key)):
    """Pattern classification only (no execution)."""
    return get_classifier().classify(request.query).to_dict()


@app.post("/route/decision", tags=["Routing"])
async def route_decision(request: QueryRequest, authorized: bool = Depends(verify_api_key)):
    """Priority router decision only (no execution)."""
    return get_priority_router().route(request.query).to_dict()


@app.post("/chat", tags=["Chat"])
async def chat(request: ChatRequest, authorized: bool = Depends(verify_api_key)):
    """Route a query through the full pipeline.

    With ``stream=true`` the answer is streamed as plain text while the
    agent generates it; otherwise a ChatResponse is returned.
    """
    logger.info(f"[Chat] Request from user={request.user_id}: {request.text[:100]}")
    router = get_query_router()
    context = RouterContext(
        chat_id=request.chat_id,
        root_id=request.root_id,
        message_id=request.message_id,
        user_id=request.user_id,
    )

    if request.stream:
        return StreamingResponse(_stream_answer(request, context), media_type="application/x-ndjson")

    result = await router.route(request.text, context, messages=request.messages)
    return ChatResponse(
        text=result.response,
        routed_via=result.routed_via,
        workflow_id=result.workflow_id,
        tool_id=result.tool_id,
        needs_confirmation=result.needs_confirmation,
        confirmation_data=result.confirmation_data,
        classification=result.classification.to_dict() if result.classification else None,
        routing_decision=result.routing_decision.to_dict() if result.routing_decision else None,
        duration_ms=round(result.duration_ms, 1),
    )


async def _stream_answer(request: ChatRequest, context: RouterContext):
    """Yield NDJSON lines ``{"text": ..., "final": ...}``.

    Every line carries the whole answer so far and replaces the previous
    one. Snapshots are debounced by the update batcher; the last line is
    always the complete answer with ``final`` set.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def send(text: str, final: bool) -> None:
        await queue.put(json.dumps({"text": text, "final": final}, ensure_ascii=False) + "\n")

    batcher = UpdateBatcher.from_config(send, get_config().batching)
    context.on_update = batcher.update

    async def answer() -> None:
        try:
            result = await get_query_router().route(request.text, context, messages=request.messages)
            await batcher.finish(result.response)
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(answer())
    try:
        while True:
            line = await queue.get()
            if line is None:
                break
            yield line
        task.result()
    finally:
        if not task.done():
            task.cancel()


@app.post("/feishu/events", tags=["Feishu"])
async def feishu_events(payload: Dict[str, Any], background_tasks: BackgroundTasks):
    """Feishu event subscription callback.

    Answers the URL verification challenge, and queues message and card
    action events; Feishu expects a reply within three seconds.
    """
    verification_token = get_config().feishu.verification_token

    if payload.get("type") == "url_verification":
        if verification_token and payload.get("token") != verification_token:
            raise HTTPException(status_code=403, detail="Invalid verification token")
        return {"challenge": payload.get("challenge")}

    header = payload.get("header", {})
    token = header.get("token") or payload.get("token")
    if verification_token and token != verification_token:
        raise HTTPException(status_code=403, detail="Invalid verification token")

    event_type = header.get("event_type") or payload.get("type")
    event = payload.get("event", payload)

    if event_type == "im.message.receive_v1":
        message = message_from_event(event)
    elif event_type in ("card.action.trigger", "card_action") or "action" in event:
        message = message_from_card_action(event)
    else:
        logger.debug(f"[Feishu] Ignoring event type {event_type}")
        return {"ok": True}

    if message is None or not message.content:
        return {"ok": True}

    logger.info(f"[Feishu] {event_type} in {message.chat_id}: {message.content[:50]!r}")
    background_tasks.add_task(get_feishu_channel().handle_message, message)
    return {"ok": True}


# =============================================================================
# Main Entry Point
# =============================================================================

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    return app


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    uvicorn.run(
        "switchboard.api.routes:app",
        host=config.system.host,
        port=config.system.port,
        reload=config.system.debug,
    )
