"""语音识别路由 -- POST /v1/transcriptions（multipart 上传）"""

import structlog
from aigateway.provider import ErrorKind, GatewayError, Tenant, TranscriptionRequest
from fastapi import APIRouter, Depends, File, Form, UploadFile

from ..deps import get_orchestrator
from ..models import TranscriptionResponse
from ..services.orchestrator import GatewayOrchestrator

router = APIRouter()

# 25 MB，与 OpenAI whisper 上传上限一致
MAX_AUDIO_BYTES = 25 * 1024 * 1024


@router.post("/v1/transcriptions", response_model=TranscriptionResponse)
async def transcribe(
    file: UploadFile = File(...),
    user_id: str = Form(..., min_length=1),
    organization_id: str | None = Form(default=None),
    model: str | None = Form(default=None),
    language: str | None = Form(default=None),
    prompt: str | None = Form(default=None),
    orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
):
    structlog.contextvars.bind_contextvars(user_id=user_id, organization_id=organization_id)

    audio = await file.read()
    if not audio:
        raise GatewayError("Audio file is empty", kind=ErrorKind.INVALID_REQUEST)
    if len(audio) > MAX_AUDIO_BYTES:
        raise GatewayError(
            "Audio file is too large",
            kind=ErrorKind.INVALID_REQUEST,
            details={"max_bytes": MAX_AUDIO_BYTES, "size": len(audio)},
        )

    request = TranscriptionRequest(
        tenant=Tenant(user_id=user_id, organization_id=organization_id),
        model=model,
        audio=audio,
        filename=file.filename or "audio.mp3",
        language=language,
        prompt=prompt,
    )
    return await orchestrator.transcribe(request)
