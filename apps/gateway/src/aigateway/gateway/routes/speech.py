"""语音合成路由 -- POST /v1/speech，音频以 base64 放在 JSON 中返回"""

import structlog
from aigateway.provider import SpeechRequest, Tenant
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_orchestrator
from ..models import SpeechResponse
from ..services.orchestrator import GatewayOrchestrator

router = APIRouter()


class SpeechBody(BaseModel):
    user_id: str = Field(min_length=1)
    organization_id: str | None = None
    model: str | None = None
    text: str = Field(min_length=1, max_length=4096)
    voice: str = "alloy"
    response_format: str = "mp3"
    speed: float = Field(default=1.0, ge=0.25, le=4.0)


@router.post("/v1/speech", response_model=SpeechResponse)
async def synthesize_speech(
    body: SpeechBody,
    orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
):
    structlog.contextvars.bind_contextvars(
        user_id=body.user_id,
        organization_id=body.organization_id,
    )
    request = SpeechRequest(
        tenant=Tenant(user_id=body.user_id, organization_id=body.organization_id),
        **body.model_dump(exclude={"user_id", "organization_id"}),
    )
    return await orchestrator.synthesize_speech(request)
