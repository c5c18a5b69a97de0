"""Chat endpoint."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from chatrelay.api.deps import get_chat_service, get_credential_context
from chatrelay.core import classify_error, get_logger
from chatrelay.core.logging import request_id_ctx
from chatrelay.providers import ChatMessage, CredentialContext
from chatrelay.services import ChatService, encode_stream

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

STREAM_HEADERS = {
    "Connection": "keep-alive",
    "Cache-Control": "no-cache",
}


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str
    id: str | None = None


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessageIn] = Field(..., min_length=1)
    files: dict[str, Any] | None = None
    prompt_id: str | None = Field(None, alias="promptId")
    context_optimization: bool = Field(False, alias="contextOptimization")
    chat_mode: Literal["discuss", "build"] = Field("build", alias="chatMode")
    max_llm_steps: int | None = Field(None, alias="maxLLMSteps", ge=1)


@router.post("/chat", response_model=None)
async def chat_route(
    body: ChatRequest = Body(...),
    context: CredentialContext = Depends(get_credential_context),
    chat_service: ChatService = Depends(get_chat_service),
) -> StreamingResponse | JSONResponse:
    """
    Stream one chat turn.

    Failures before streaming starts return a JSON error body; later
    failures are reported in-band.
    """
    messages = [ChatMessage(role=m.role, content=m.content, id=m.id) for m in body.messages]
    try:
        stream = await chat_service.stream_chat(
            messages,
            context=context,
            files=body.files,
            context_optimization=body.context_optimization,
            chat_mode=body.chat_mode,
            prompt_id=body.prompt_id,
        )
    except Exception as exc:
        error = classify_error(exc)
        logger.error(
            "Chat request failed",
            data={"code": error.code.value, "error": error.message, "provider": error.provider},
        )
        return JSONResponse(status_code=error.status_code, content=error.to_chat_payload())

    headers = dict(STREAM_HEADERS)
    request_id = request_id_ctx.get()
    if request_id:
        headers["X-Request-ID"] = request_id
    return StreamingResponse(
        encode_stream(stream), media_type="text/event-stream; charset=utf-8", headers=headers
    )
