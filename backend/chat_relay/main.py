"""
FastAPI application entry point
"""
import logging
import math
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from chat_relay.config import get_settings
from chat_relay.routes import chat
from chat_relay.routes.chat import error_response
from chat_relay.services.rate_limit import RateLimiter

settings = get_settings()

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
log = logging.getLogger("chat_relay")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not settings.openai_api_key:
        log.error("Missing OPENAI_API_KEY; chat requests will fail until it is set")
    log.info("Default model: %s", settings.default_model)
    yield


app = FastAPI(
    title="Chat Relay API",
    description="Chat-completion gateway with an SSE streaming relay",
    version="1.0.0",
    lifespan=lifespan,
)

# Basic rate limit to avoid accidental key burn
rate_limiter = RateLimiter(settings.rate_limit_max, settings.rate_limit_window_seconds)


@app.middleware("http")
async def rate_limit(request: Request, call_next):
    if request.url.path.startswith("/api/"):
        caller = request.client.host if request.client else "unknown"
        allowed, retry_after = rate_limiter.hit(caller)
        if not allowed:
            log.warning("Rate limit exceeded for %s", caller)
            response = error_response("Too many requests, please try again later.", status_code=429)
            response.headers["Retry-After"] = str(math.ceil(retry_after))
            return response
    return await call_next(request)


# CORS is added last so it also wraps rate-limit rejections
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(chat.router, prefix="/api", tags=["chat"])


@app.get("/health")
async def health_check():
    """Liveness check"""
    return {"ok": True}


def run() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
