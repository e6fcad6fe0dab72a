"""FastAPI app entry."""

from __future__ import annotations

import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from modgate.api import router as moderation_api
from modgate.config.settings import settings
from modgate.core.audit import shutdown_audit_worker
from modgate.core.errors import InternalError, ModGateError
from modgate.util.logger import logger

app = FastAPI(title=settings.app_name)
app.include_router(moderation_api.router, prefix=settings.api_prefix)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.debug(
        "request done method=%s path=%s status=%s ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000.0,
    )
    return response


@app.exception_handler(ModGateError)
async def modgate_error_handler(request: Request, exc: ModGateError) -> JSONResponse:
    return moderation_api._error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = str(errors[0].get("msg", "invalid request")) if errors else "invalid request"
    logger.info("request rejected path=%s detail=%s", request.url.path, detail)
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"invalid request body: {detail}", "error_code": "invalid_request"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error path=%s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal server error", "error_code": InternalError.code},
    )


@app.get("/health")
def health() -> dict:
    logger.info("health check")
    return {"status": "ok", "models": moderation_api.manager.registry.ids()}


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    await moderation_api.manager.aclose()
    shutdown_audit_worker()
