"""
Chat API routes: one-shot JSON completion and the SSE relay.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from chat_relay.config import Settings, get_settings
from chat_relay.errors import RelayError, ValidationError
from chat_relay.models.chat import ChatRequest, ErrorBody
from chat_relay.services.relay import RelayEncoder
from chat_relay.services.upstream import get_upstream
from chat_relay.services.validator import parse_chat_body

router = APIRouter()
log = logging.getLogger("routes")

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorBody.of(message).model_dump())


async def read_chat_request(raw_request: Request, settings: Settings) -> ChatRequest:
    declared = raw_request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > settings.max_body_bytes:
        raise ValidationError("body", "request body too large")
    body = await raw_request.body()
    if len(body) > settings.max_body_bytes:
        raise ValidationError("body", "request body too large")
    return parse_chat_body(body)


@router.post("/chat")
async def chat_endpoint(raw_request: Request, settings: Settings = Depends(get_settings)):
    """Non-streaming chat: returns a ChatResult or a 400 error body"""
    try:
        request = await read_chat_request(raw_request, settings)
        upstream = get_upstream()
        result = await upstream.complete(request)
    except RelayError as e:
        return error_response(e.message)
    except Exception:
        log.exception("Unexpected error in /api/chat")
        return error_response("Request failed")
    return JSONResponse(content=result.model_dump(exclude_none=True))


@router.post("/chat/stream")
async def chat_stream_endpoint(raw_request: Request, settings: Settings = Depends(get_settings)):
    """Streaming chat: always a 200 event stream; failures arrive in-band"""
    encoder = RelayEncoder(
        max_duration=settings.stream_max_seconds,
        keepalive_interval=settings.stream_keepalive_seconds,
    )
    try:
        request = await read_chat_request(raw_request, settings)
        upstream = get_upstream()
    except RelayError as e:
        body = encoder.error_frames(e.message)
    except Exception:
        log.exception("Unexpected error opening /api/chat/stream")
        body = encoder.error_frames("Stream failed")
    else:
        log.info("Starting stream (model=%s)", request.model or upstream.default_model)
        body = encoder.frames(
            upstream.stream_complete(request),
            is_disconnected=raw_request.is_disconnected,
        )

    return StreamingResponse(body, media_type="text/event-stream", headers=SSE_HEADERS)
