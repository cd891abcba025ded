"""
DocScan Server 应用入口。

启动: uvicorn docscan.main:create_app --factory --port 8000
需要: SANE (scanimage/scanadf) + libtiff (tiffcp) + ImageMagick；SCAN_MOCK=true 时均不需要
"""
from __future__ import annotations
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docscan.settings import Settings, settings

logger = structlog.get_logger()

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}


def _configure_logging(config: Settings = settings) -> None:
    renderer = (
        structlog.dev.ConsoleRenderer()
        if config.app_env == "development"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _LEVELS.get(config.log_level.upper(), 20)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    from docscan.common.dependencies import get_supervisor
    from docscan.common.exceptions import ConfigurationError
    from docscan.jobs.supervisor import JobSupervisor
    from docscan.preflight import ensure_environment_ready

    log = structlog.get_logger()
    log.info("startup_begin", env=settings.app_env, mock=settings.scan_mock,
             inbox=str(settings.inbox_path))
    app.state.services_ready = {"tools": False}

    # 外部工具缺失不阻止启动，health 报告 degraded
    try:
        ensure_environment_ready(settings)
        app.state.services_ready["tools"] = True
    except ConfigurationError as e:
        log.error("preflight_failed", missing=e.missing, error=e.message)

    settings.inbox_path.mkdir(parents=True, exist_ok=True)
    supervisor = JobSupervisor(settings)
    app.state.supervisor = supervisor

    async def _supervisor() -> JobSupervisor:
        return supervisor

    app.dependency_overrides[get_supervisor] = _supervisor
    log.info("startup_complete", services=app.state.services_ready)

    try:
        yield
    finally:
        log.info("shutdown_begin", live_processes=len(supervisor.registry))
        await supervisor.shutdown()
        log.info("shutdown_complete")


def _health_payload(app: FastAPI) -> tuple[int, dict]:
    services = getattr(app.state, "services_ready", None) or {}
    healthy = bool(services) and all(services.values())
    body = {
        "status": "healthy" if healthy else "degraded",
        "services": services,
        "mock": settings.scan_mock,
    }
    return (200 if healthy else 503), body


def create_app() -> FastAPI:
    _configure_logging()

    app = FastAPI(
        title=settings.app_title,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.app_env == "development" else None,
    )
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from docscan.common.middleware import register_error_handlers
    from docscan.gateway.router import router as scan_router

    register_error_handlers(app)

    @app.get("/api/v1/health")
    async def health():
        status_code, body = _health_payload(app)
        return JSONResponse(status_code=status_code, content=body)

    app.include_router(scan_router, prefix="/api/v1")
    return app
