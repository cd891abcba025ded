"""全局错误处理中间件。"""
from __future__ import annotations
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from docscan.common.exceptions import DocScanError
import structlog

logger = structlog.get_logger()


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DocScanError)
    async def handle_docscan_error(request: Request, exc: DocScanError):
        logger.warning("business_error",
                       code=exc.code, message=exc.message,
                       status=exc.http_status, path=request.url.path)
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def handle_general_error(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error_code": "INTERNAL_ERROR", "message": "Internal server error",
                     "severity": "error"},
        )
