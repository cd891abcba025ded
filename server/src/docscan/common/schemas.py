"""核心 DTO。持久化 (manifest / events) 与调用方可见的结构都在这里定义。"""
from __future__ import annotations
import re
from datetime import datetime, timezone
from typing import Any
from pydantic import BaseModel, Field, field_validator
from docscan.common.enums import (
    AssemblyMethod, BreakPolicyType, JobState, OutputFormat, PageSize, ScanSource,
)

_FEEDER_RE = re.compile(r"adf|feeder", re.IGNORECASE)
_DUPLEX_RE = re.compile(r"duplex", re.IGNORECASE)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_feeder_source(source: str | None) -> bool:
    return bool(source) and bool(_FEEDER_RE.search(source))


def is_duplex_feeder_source(source: str | None) -> bool:
    return is_feeder_source(source) and bool(_DUPLEX_RE.search(source or ""))


# ───────────────────────── 设备 ─────────────────────────

class Device(BaseModel):
    id: str
    vendor: str | None = None
    model: str | None = None

    @property
    def backend(self) -> str:
        return self.id.split(":", 1)[0]


class DeviceCapabilities(BaseModel):
    """设备能力。None 表示“未知”，空列表表示“设备明确没有”。"""
    sources: list[str] | None = None
    color_modes: list[str] | None = None
    resolutions: list[int] | None = None
    adf: bool | None = None
    duplex: bool | None = None

    @property
    def has_duplex_feeder(self) -> bool:
        return any(is_duplex_feeder_source(s) for s in self.sources or [])

    @property
    def has_feeder(self) -> bool:
        return any(is_feeder_source(s) for s in self.sources or [])

    @property
    def is_empty(self) -> bool:
        return not (self.sources or self.color_modes or self.resolutions)


# ───────────────────────── 请求 ─────────────────────────

class CustomSize(BaseModel):
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class DocBreakPolicy(BaseModel):
    type: BreakPolicyType | None = None
    blank_threshold: float | None = None
    page_count: int | None = None
    timer_ms: int | None = None
    barcode_values: list[str] | None = None


class ScanRequest(BaseModel):
    """调用方输入；解析后 (resolved) 同一结构写入 manifest.params。"""
    device_id: str | None = None
    resolution_dpi: int | None = Field(default=None, gt=0)
    # 设备词汇各异 (Halftone / Gray16 …)，保持自由字符串
    color_mode: str | None = None
    source: str | None = None
    duplex: bool | None = None
    page_size: PageSize | None = None
    custom_size_mm: CustomSize | None = None
    doc_break_policy: DocBreakPolicy | None = None
    output_format: OutputFormat | None = None
    tmp_dir: str | None = None

    @field_validator("source")
    @classmethod
    def _canonical_source(cls, v: str | None) -> str | None:
        if v is None:
            return None
        for known in ScanSource:
            if v.strip().lower() == known.value.lower():
                return known.value
        return v

    @property
    def effective_format(self) -> OutputFormat:
        return self.output_format or OutputFormat.TIFF


# ───────────────────────── Job 记录 ─────────────────────────

class PageRecord(BaseModel):
    index: int
    path: str
    sha256: str
    mime_type: str


class DocumentRecord(BaseModel):
    index: int
    pages: list[int]
    path: str
    sha256: str
    mime_type: str
    assembly: AssemblyMethod = AssemblyMethod.MERGED


class JobManifest(BaseModel):
    job_id: str
    run_dir: str
    device_id: str | None = None
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: str = Field(default_factory=utcnow_iso)
    state: JobState = JobState.RUNNING
    params: ScanRequest = Field(default_factory=ScanRequest)
    pages: list[PageRecord] = Field(default_factory=list)
    documents: list[DocumentRecord] = Field(default_factory=list)
    error: str | None = None


class JobEvent(BaseModel):
    timestamp: str = Field(default_factory=utcnow_iso)
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


# ───────────────────────── 结果 ─────────────────────────

class StartScanResult(BaseModel):
    job_id: str
    run_dir: str
    state: JobState


class JobStatus(BaseModel):
    job_id: str
    state: str
    pages: int = 0
    documents: int = 0
    run_dir: str | None = None
    device_id: str | None = None
    error: str | None = None


class JobSummary(BaseModel):
    job_id: str
    state: str
    created_at: str | None = None
    device_id: str | None = None
    pages: int = 0
    documents: int = 0
    run_dir: str


class CancelResult(BaseModel):
    ok: bool = True
    job_id: str
    state: JobState = JobState.CANCELLED
    previous_state: JobState
    process_terminated: bool = False
