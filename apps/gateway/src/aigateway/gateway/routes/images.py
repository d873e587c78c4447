"""图片生成路由 -- POST /v1/images"""

import structlog
from aigateway.provider import ImageRequest, Tenant
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_orchestrator
from ..models import ImageResponse
from ..services.orchestrator import GatewayOrchestrator

router = APIRouter()


class ImageGenerationBody(BaseModel):
    user_id: str = Field(min_length=1)
    organization_id: str | None = None
    model: str | None = Field(default=None, description="为空时使用最便宜的可用图片模型")
    prompt: str = Field(min_length=1, max_length=4000)
    n: int = Field(default=1, ge=1, le=4)
    size: str = "1024x1024"
    quality: str = "standard"
    style: str = "vivid"


@router.post("/v1/images", response_model=ImageResponse)
async def generate_image(
    body: ImageGenerationBody,
    orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
):
    structlog.contextvars.bind_contextvars(
        user_id=body.user_id,
        organization_id=body.organization_id,
    )
    request = ImageRequest(
        tenant=Tenant(user_id=body.user_id, organization_id=body.organization_id),
        **body.model_dump(exclude={"user_id", "organization_id"}),
    )
    return await orchestrator.generate_image(request)
