"""
Job 目录存储 (manifest.json 快照 + events.jsonl 审计日志)。

布局:
    <base>/job-<uuid4>/
        manifest.json        原子替换写入
        events.jsonl         只追加，每行一个 JSON 对象
        page_0001.tiff ...   采集页
        doc_0001.tiff ...    合并文档
        scanner.stdout.log / scanner.stderr.log
"""
from __future__ import annotations
import hashlib
import os
import re
import uuid
from pathlib import Path
import aiofiles
import orjson
import structlog
from pydantic import ValidationError
from docscan.common.enums import UNKNOWN_STATE
from docscan.common.exceptions import InvalidJobIdError
from docscan.common.schemas import JobEvent, JobManifest, JobSummary

logger = structlog.get_logger()

JOB_ID_RE = re.compile(r"^job-[0-9a-fA-F-]{36}$")
MANIFEST_FILE = "manifest.json"
EVENTS_FILE = "events.jsonl"
STDOUT_LOG = "scanner.stdout.log"
STDERR_LOG = "scanner.stderr.log"
MAX_LIST_LIMIT = 100
HASH_CHUNK = 8192


def new_job_id() -> str:
    return f"job-{uuid.uuid4()}"


def validate_job_id(job_id: str) -> str:
    if not isinstance(job_id, str) or not JOB_ID_RE.fullmatch(job_id):
        raise InvalidJobIdError(f"invalid job id: {job_id!r}")
    return job_id


def resolve_job_dir(base_dir: Path | str, job_id: str) -> Path:
    """校验 job_id 并返回 base 下的目录；拒绝任何越出 base 的路径。"""
    validate_job_id(job_id)
    base = Path(base_dir).resolve()
    run_dir = (base / job_id).resolve()
    if run_dir.parent != base:
        raise InvalidJobIdError(f"job id escapes base directory: {job_id!r}")
    return run_dir


async def sha256_file(path: Path | str) -> str:
    h = hashlib.sha256()
    async with aiofiles.open(path, "rb") as f:
        while chunk := await f.read(HASH_CHUNK):
            h.update(chunk)
    return h.hexdigest()


async def tail_text_file(path: Path | str, max_bytes: int = 2000) -> str:
    """读取文本文件末尾 (诊断用)。文件不存在返回空串。"""
    try:
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
    except FileNotFoundError:
        return ""
    return data[-max_bytes:].decode("utf-8", errors="replace")


class JobStore:
    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir).resolve()

    def job_dir(self, job_id: str) -> Path:
        return resolve_job_dir(self.base_dir, job_id)

    def create_run_dir(self, job_id: str, base_dir: Path | str | None = None) -> Path:
        """为新 job 创建目录。目录已存在视为 id 冲突，不复用。"""
        run_dir = resolve_job_dir(base_dir or self.base_dir, job_id)
        run_dir.parent.mkdir(parents=True, exist_ok=True)
        run_dir.mkdir(exist_ok=False)
        return run_dir

    # ───────────────────────── manifest ─────────────────────────

    async def write_manifest(self, run_dir: Path, manifest: JobManifest) -> None:
        """先写临时文件再 os.replace，读者不会看到写了一半的 manifest。"""
        target = Path(run_dir) / MANIFEST_FILE
        tmp = target.with_name(f".{MANIFEST_FILE}.{uuid.uuid4().hex[:8]}.tmp")
        payload = orjson.dumps(manifest.model_dump(mode="json"), option=orjson.OPT_INDENT_2)
        async with aiofiles.open(tmp, "wb") as f:
            await f.write(payload)
        os.replace(tmp, target)

    async def read_manifest(self, run_dir: Path) -> JobManifest | None:
        """不存在或无法解析时返回 None。"""
        path = Path(run_dir) / MANIFEST_FILE
        try:
            async with aiofiles.open(path, "rb") as f:
                raw = await f.read()
        except FileNotFoundError:
            return None
        try:
            return JobManifest.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as e:
            logger.warning("manifest_unreadable", path=str(path), error=str(e))
            return None

    # ───────────────────────── events ─────────────────────────

    async def append_event(self, run_dir: Path, event: JobEvent) -> None:
        line = orjson.dumps(event.model_dump(mode="json")) + b"\n"
        async with aiofiles.open(Path(run_dir) / EVENTS_FILE, "ab") as f:
            await f.write(line)

    async def read_events(self, run_dir: Path) -> list[JobEvent]:
        path = Path(run_dir) / EVENTS_FILE
        try:
            async with aiofiles.open(path, "rb") as f:
                raw = await f.read()
        except FileNotFoundError:
            return []
        events = []
        for line in raw.splitlines():
            if not line.strip():
                continue
            try:
                events.append(JobEvent.model_validate(orjson.loads(line)))
            except (orjson.JSONDecodeError, ValidationError) as e:
                logger.warning("event_line_unreadable", path=str(path), error=str(e))
        return events

    # ───────────────────────── listing ─────────────────────────

    async def list_jobs(self, limit: int = 20, state: str | None = None,
                        base_dir: Path | str | None = None) -> list[JobSummary]:
        """扫描 base (默认 inbox) 下的 job 目录，按 created_at 倒序。"""
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        base = Path(base_dir).expanduser().resolve() if base_dir else self.base_dir
        if not base.is_dir():
            return []

        summaries: list[JobSummary] = []
        for entry in base.iterdir():
            if not entry.is_dir() or not JOB_ID_RE.fullmatch(entry.name):
                continue
            manifest = await self.read_manifest(entry)
            if manifest is None:
                summary = JobSummary(job_id=entry.name, state=UNKNOWN_STATE, run_dir=str(entry))
            else:
                summary = JobSummary(
                    job_id=manifest.job_id,
                    state=manifest.state.value,
                    created_at=manifest.created_at,
                    device_id=manifest.device_id,
                    pages=len(manifest.pages),
                    documents=len(manifest.documents),
                    run_dir=str(entry),
                )
            if state and summary.state != state:
                continue
            summaries.append(summary)

        summaries.sort(key=lambda s: (s.created_at or "", s.job_id), reverse=True)
        return summaries[:limit]
