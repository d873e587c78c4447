"""文本生成路由

POST /v1/chat: stream=false 返回 JSON；stream=true 返回 SSE：
    event: chunk  增量分片
    event: done   终止帧（StreamResult，含计费信息）
    event: error  流中途失败时的终止帧

流开始前的错误（模型不可用、额度不足、熔断中）按普通 HTTP 错误返回。
"""

import json
from collections.abc import AsyncIterator

import structlog
from aigateway.provider import (
    ConversationMessage,
    GatewayError,
    GenerationRequest,
    MessagePart,
    MessageRole,
    PartType,
    StreamChunk,
    Tenant,
)
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from ..deps import get_orchestrator
from ..errors import error_body
from ..models import StreamResult, TextResponse
from ..services.orchestrator import GatewayOrchestrator

log = structlog.get_logger()

router = APIRouter()


class ChatMessagePart(BaseModel):
    type: PartType = PartType.TEXT
    text: str | None = None
    image_url: str | None = None


class ChatMessage(BaseModel):
    role: MessageRole
    content: str | list[ChatMessagePart] = Field(description="纯文本或多模态分片列表")

    def to_message(self) -> ConversationMessage:
        if isinstance(self.content, str):
            return ConversationMessage(role=self.role, content=self.content)
        parts = tuple(
            MessagePart(type=p.type, text=p.text, image_url=p.image_url) for p in self.content
        )
        return ConversationMessage(role=self.role, parts=parts)


class ChatRequest(BaseModel):
    """文本生成请求体"""

    user_id: str = Field(min_length=1)
    organization_id: str | None = None
    model: str = Field(min_length=1)
    messages: list[ChatMessage] = Field(min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    smart_routing: bool = False
    stream: bool = False
    conversation_id: str | None = None

    def to_generation_request(self) -> GenerationRequest:
        return GenerationRequest(
            tenant=Tenant(user_id=self.user_id, organization_id=self.organization_id),
            model=self.model,
            messages=tuple(m.to_message() for m in self.messages),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            smart_routing=self.smart_routing,
            stream=self.stream,
            conversation_id=self.conversation_id,
        )


def _sse_frame(item: StreamChunk | StreamResult) -> dict:
    if isinstance(item, StreamResult):
        return {"event": "done", "id": item.id, "data": item.model_dump_json()}
    return {"event": "chunk", "id": item.id, "data": item.model_dump_json()}


async def _relay(
    first: StreamChunk | StreamResult,
    rest: AsyncIterator[StreamChunk | StreamResult],
) -> AsyncIterator[dict]:
    """把编排器产出的分片转成 SSE 事件，失败时以 error 事件结束"""
    try:
        yield _sse_frame(first)
        async for item in rest:
            yield _sse_frame(item)
    except GatewayError as e:
        log.warning("chat_stream_failed", kind=e.kind.value, error=e.message)
        yield {"event": "error", "data": json.dumps(error_body(e), ensure_ascii=False)}
    finally:
        await rest.aclose()


@router.post("/v1/chat", response_model=TextResponse)
async def chat(
    body: ChatRequest,
    orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
):
    structlog.contextvars.bind_contextvars(
        user_id=body.user_id,
        organization_id=body.organization_id,
    )
    request = body.to_generation_request()

    if not body.stream:
        return await orchestrator.generate_text(request)

    stream = orchestrator.stream_text(request)
    # 先取第一帧：流开始前的错误走普通 HTTP 错误响应
    first = await anext(stream)
    return EventSourceResponse(_relay(first, stream))
