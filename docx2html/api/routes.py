from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from docx2html.core.config import get_config
from docx2html.core.engine import output_extension
from docx2html.core.errors import InitError, ServiceBusy, ServiceError
from docx2html.core.logging import log_exception
from docx2html.core.models import ConversionRequest, EngineState
from docx2html.services.context import AppContext


router = APIRouter()

CORS_ORIGIN = {"Access-Control-Allow-Origin": "*"}
CORS_PREFLIGHT = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

MEDIA_TYPES = {
    "html": "text/html",
    "xhtml": "application/xhtml+xml",
}


ctx = AppContext.build(get_config())


@router.options("/{path:path}")
def preflight(path: str):
    return Response(status_code=204, headers=CORS_PREFLIGHT)


@router.post("/")
async def convert(request: Request, to: str = "html"):
    body = await _read_body(request, ctx.config.max_upload_bytes)
    if body is None:
        return PlainTextResponse("uploaded file exceeds size limit", status_code=413, headers=CORS_ORIGIN)
    try:
        result = await ctx.manager.handle(ConversionRequest(data=body, target_format=to))
    except ServiceError as e:
        return _error_response(e)
    media_type = MEDIA_TYPES.get(output_extension(to), "text/plain")
    return Response(content=result.content, media_type=media_type, headers=CORS_ORIGIN)


@router.api_route("/", methods=["GET", "PUT", "PATCH", "DELETE", "HEAD"])
def method_not_allowed():
    headers = dict(CORS_ORIGIN)
    headers["Allow"] = "POST, OPTIONS"
    return PlainTextResponse("Use POST with DOCX file", status_code=405, headers=headers)


@router.get("/healthz")
def healthz():
    st = ctx.manager.status()
    if st.state == EngineState.INIT_FAILED:
        return JSONResponse(
            {"status": "failed", "engine": st.state.value, "error": st.init_error},
            status_code=503,
            headers=CORS_ORIGIN,
        )
    return JSONResponse({"status": "ok", "engine": st.state.value, "pending": st.pending}, headers=CORS_ORIGIN)


@router.get("/version")
def version():
    st = ctx.manager.status()
    return JSONResponse(
        {
            "service": "docx2html-service",
            "engine_state": st.state.value,
            "engine_binary": st.engine_binary,
            "engine_version": st.engine_version,
        },
        headers=CORS_ORIGIN,
    )


@router.post("/v1/engine/reinit")
async def reinit():
    fut = ctx.manager.retry_initialization()
    if fut is None:
        return PlainTextResponse(
            f"engine is {ctx.manager.state.value}; reinit only applies after a failed initialization",
            status_code=409,
            headers=CORS_ORIGIN,
        )
    try:
        instance = await asyncio.shield(asyncio.wrap_future(fut))
    except InitError as e:
        return _error_response(e)
    return JSONResponse({"engine": "ready", "engine_version": instance.version}, headers=CORS_ORIGIN)


# Registered after the routes above so they win; OPTIONS is answered by preflight
@router.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"])
def not_found(path: str):
    return PlainTextResponse(f"Not found: /{path}", status_code=404, headers=CORS_ORIGIN)


def unhandled_error(request: Request, exc: Exception) -> PlainTextResponse:
    """App-level handler for anything a route did not map itself."""
    log_exception(ctx.config.log_dir / "server.log", f"unhandled {request.method} {request.url.path}", exc)
    return PlainTextResponse("Internal server error", status_code=500, headers=CORS_ORIGIN)


def _error_response(exc: ServiceError) -> PlainTextResponse:
    headers = dict(CORS_ORIGIN)
    if isinstance(exc, ServiceBusy):
        headers["Retry-After"] = str(exc.retry_after)
    return PlainTextResponse(f"Conversion error: {exc.message}", status_code=exc.http_status, headers=headers)


async def _read_body(request: Request, max_bytes: int = 0) -> Optional[bytes]:
    """Read the raw body; None when it exceeds max_bytes."""
    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if max_bytes and total > max_bytes:
            return None
        chunks.append(chunk)
    return b"".join(chunks)

