# Backend/app/main.py
from __future__ import annotations

import time

from fastapi import APIRouter, FastAPI, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.config import settings
from app.core.logging import configure_logging, get_logger
from app.core.request_id import clear_request_id, new_request_id, set_request_id
from api.routers.feed import router as feed_router

configure_logging(service_name="api")
logger = get_logger()

app = FastAPI(
    title="Marketplace Feed API",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds X-Request-Id (incoming or fresh) to every log line of the request."""

    async def dispatch(self, request: Request, call_next):
        req_id = new_request_id(request.headers.get("x-request-id"))
        set_request_id(req_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers["X-Request-Id"] = req_id
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            return response
        except Exception as exc:
            logger.error("request_failed", path=request.url.path, error_type=exc.__class__.__name__)
            raise
        finally:
            clear_request_id()


app.add_middleware(RequestIdMiddleware)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", path=request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# --- Health ---
@app.get("/health")
async def health():
    return {
        "ok": True,
        "version": settings.APP_VERSION,
        "feed_backend_enabled": settings.FEED_BACKEND_ENABLED,
    }


@app.head("/health")
async def health_head():
    return Response(status_code=200)


# --- API v1 ---
api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(feed_router)
app.include_router(api_v1_router)
