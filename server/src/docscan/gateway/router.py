"""
HTTP 路由 (薄传输层，业务逻辑全部在 JobSupervisor)。

端点:
- Devices: GET /devices, GET /devices/{device_id}/options
- Jobs: POST /jobs, GET /jobs, GET /jobs/{id}, POST /jobs/{id}/cancel
- Artifacts: GET /jobs/{id}/manifest, GET /jobs/{id}/events,
             GET /jobs/{id}/pages/{index}, GET /jobs/{id}/documents/{index}
job 端点均接受可选 ?base_dir= (对应 ScanRequest.tmp_dir)。
"""
from __future__ import annotations
from typing import Annotated, Literal
from fastapi import APIRouter, Query, Path as PathParam
from fastapi.responses import FileResponse
from docscan.common.dependencies import Supervisor
from docscan.common.schemas import (
    CancelResult, Device, DeviceCapabilities, JobEvent, JobManifest,
    JobStatus, JobSummary, ScanRequest, StartScanResult,
)
import structlog

logger = structlog.get_logger()

router = APIRouter(tags=["scan"])

StateFilter = Literal["running", "completed", "cancelled", "error", "unknown"]
# 以 tmp_dir 启动的 job 不在 inbox 下，查询时需给出同一目录
BaseDir = Annotated[str | None, Query(description="job 所在的基础目录，默认 inbox")]


# ───────────────────────── Devices ─────────────────────────

@router.get("/devices", response_model=list[Device])
async def list_devices(supervisor: Supervisor):
    return await supervisor.list_devices()


@router.get("/devices/{device_id:path}/options", response_model=DeviceCapabilities)
async def get_device_options(supervisor: Supervisor, device_id: str):
    return await supervisor.get_device_options(device_id)


# ───────────────────────── Jobs ─────────────────────────

@router.post("/jobs", response_model=StartScanResult)
async def start_scan_job(
    supervisor: Supervisor,
    body: ScanRequest,
    wait: bool = Query(True, description="false 时后台执行，立即返回 running"),
):
    return await supervisor.start_job(body, wait=wait)


@router.get("/jobs", response_model=list[JobSummary])
async def list_jobs(
    supervisor: Supervisor,
    base_dir: BaseDir = None,
    limit: int = Query(20, ge=1, le=100),
    state: StateFilter | None = Query(None),
):
    return await supervisor.list_jobs(limit=limit, state=state, base_dir=base_dir)


@router.get("/jobs/{job_id}", response_model=JobStatus)
async def get_job_status(supervisor: Supervisor, job_id: str, base_dir: BaseDir = None):
    return await supervisor.get_job_status(job_id, base_dir)


@router.post("/jobs/{job_id}/cancel", response_model=CancelResult)
async def cancel_job(supervisor: Supervisor, job_id: str, base_dir: BaseDir = None):
    return await supervisor.cancel_job(job_id, base_dir)


# ───────────────────────── Artifacts ─────────────────────────

@router.get("/jobs/{job_id}/manifest", response_model=JobManifest)
async def get_manifest(supervisor: Supervisor, job_id: str, base_dir: BaseDir = None):
    return await supervisor.get_manifest(job_id, base_dir)


@router.get("/jobs/{job_id}/events", response_model=list[JobEvent])
async def get_events(supervisor: Supervisor, job_id: str, base_dir: BaseDir = None):
    return await supervisor.get_events(job_id, base_dir)


@router.get("/jobs/{job_id}/pages/{index}")
async def get_page(supervisor: Supervisor, job_id: str, base_dir: BaseDir = None,
                   index: int = PathParam(ge=1)):
    page = await supervisor.page_path(job_id, index, base_dir)
    return FileResponse(page.path, media_type=page.mime_type)


@router.get("/jobs/{job_id}/documents/{index}")
async def get_document(supervisor: Supervisor, job_id: str, base_dir: BaseDir = None,
                       index: int = PathParam(ge=1)):
    doc = await supervisor.document_path(job_id, index, base_dir)
    return FileResponse(doc.path, media_type=doc.mime_type)
