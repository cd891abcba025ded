"""
Job 生命周期管理。

状态机:
    running ──→ completed | error | cancelled
    completed / error 仍可被显式取消为 cancelled；cancelled 为最终态。

流程:
1. 解析参数 → 分配 job_id / run_dir → manifest + job_started
2. 依次执行规划的采集命令；失败记录事件并尝试下一个候选
3. 成功后收集页面 (哈希) → 分段 → 合并文档
4. completed + job_completed；持久化上次使用设备
取消是带外信号: 终止活跃子进程并把 manifest 置为 cancelled，执行协程在检查点处停止。
"""
from __future__ import annotations
import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
import aiofiles
import aiofiles.os
import structlog
from docscan.common.enums import (
    UNKNOWN_STATE, JobEventType, JobState, OutputFormat,
)
from docscan.common.exceptions import (
    CommandExecutionFailedError, DeviceUnavailableError,
    JobAlreadyTerminalError, JobNotFoundError,
)
from docscan.common.proc import CommandOutcome
from docscan.common.schemas import (
    CancelResult, Device, DeviceCapabilities, DocumentRecord, JobEvent, JobManifest,
    JobStatus, JobSummary, PageRecord, ScanRequest, StartScanResult, utcnow_iso,
)
from docscan.devices.preferences import LastUsedDeviceStore
from docscan.devices.prober import SaneProber
from docscan.devices.selector import DeviceSelector
from docscan.jobs.assembler import DocumentAssembler
from docscan.jobs.planner import CommandCandidate, document_filename, plan_commands
from docscan.jobs.registry import ProcessRegistry
from docscan.jobs.resolver import InputResolver
from docscan.jobs.segmenter import is_unsupported_policy, segment_pages
from docscan.settings import Settings, settings as default_settings
from docscan.storage.job_store import (
    STDERR_LOG, STDOUT_LOG, JobStore, new_job_id, resolve_job_dir, sha256_file, tail_text_file,
    validate_job_id,
)

logger = structlog.get_logger()

_PAGE_FILE = re.compile(r"^page_(\d+)\.([a-z]+)$")
LOG_TAIL_BYTES = 2000


@dataclass
class _LiveJob:
    """执行中的 job: 内存中的 manifest 是唯一写入源，所有写入在 lock 内完成。"""
    manifest: JobManifest
    run_dir: Path
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def stopped(self) -> bool:
        return self.manifest.state.is_terminal


class JobSupervisor:
    def __init__(
        self,
        config: Settings | None = None,
        *,
        prober: SaneProber | None = None,
        store: JobStore | None = None,
        registry: ProcessRegistry | None = None,
        assembler: DocumentAssembler | None = None,
        last_used: LastUsedDeviceStore | None = None,
        resolver: InputResolver | None = None,
    ):
        self._config = config or default_settings
        self.prober = prober or SaneProber(self._config)
        self.store = store or JobStore(self._config.inbox_path)
        self.registry = registry or ProcessRegistry()
        self.assembler = assembler or DocumentAssembler(self._config)
        self.last_used = last_used or LastUsedDeviceStore(self._config.state_file)
        self.resolver = resolver or InputResolver(
            self.prober,
            DeviceSelector(self.prober, self._config.exclude_backends, self._config.prefer_backends),
            self.last_used,
            self._config.persist_last_used_device,
        )
        self._live: dict[str, _LiveJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_lock = asyncio.Lock()

    # ───────────────────────── 设备 ─────────────────────────

    async def list_devices(self) -> list[Device]:
        return await self.prober.list_devices()

    async def get_device_options(self, device_id: str) -> DeviceCapabilities:
        return await self.prober.get_device_options(device_id)

    # ───────────────────────── 启动 ─────────────────────────

    async def start_job(self, request: ScanRequest, *, wait: bool = True) -> StartScanResult:
        """
        启动采集 job。

        只有设备完全不可用时抛出 DeviceUnavailableError；
        采集失败不抛出，job 以 error 终态结束。
        wait=False 时后台执行，立即返回 running。
        """
        resolved = await self.resolver.resolve(request)
        if not self._config.scan_mock and not resolved.device_id:
            raise DeviceUnavailableError("no usable scan device found")

        job_id = new_job_id()
        base = Path(request.tmp_dir).expanduser() if request.tmp_dir else None
        run_dir = self.store.create_run_dir(job_id, base)

        job = _LiveJob(
            manifest=JobManifest(
                job_id=job_id, run_dir=str(run_dir),
                device_id=resolved.device_id, params=resolved,
            ),
            run_dir=run_dir,
        )
        self._live[job_id] = job
        async with job.lock:
            await self.store.write_manifest(run_dir, job.manifest)
            await self._event(job, JobEventType.JOB_STARTED, {
                "input": request.model_dump(mode="json", exclude_none=True),
                "params": resolved.model_dump(mode="json", exclude_none=True),
                "mock": self._config.scan_mock,
            })
        logger.info("job_started", job_id=job_id, device_id=resolved.device_id,
                    run_dir=str(run_dir), mock=self._config.scan_mock)

        if wait:
            await self._run(job)
        else:
            task = asyncio.create_task(self._run(job), name=f"scan-{job_id}")
            self._tasks[job_id] = task
            task.add_done_callback(lambda _t, jid=job_id: self._tasks.pop(jid, None))

        return StartScanResult(job_id=job_id, run_dir=str(run_dir), state=job.manifest.state)

    async def wait_for(self, job_id: str) -> None:
        """等待后台 job 的执行协程结束 (无后台任务时立即返回)。"""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self) -> None:
        """终止全部活跃子进程并等待后台任务退出。"""
        for job_id in list(self._live):
            self.registry.terminate(job_id)
        tasks = list(self._tasks.values())
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ───────────────────────── 执行 ─────────────────────────

    async def _run(self, job: _LiveJob) -> None:
        job_id = job.manifest.job_id
        try:
            if self._config.scan_mock:
                pages = await self._capture_mock(job)
            else:
                pages = await self._capture(job)
            if pages is None or job.stopped:
                return
            await self._assemble(job, pages)
            if await self._finish(job, JobState.COMPLETED):
                await self._remember_device(job.manifest.device_id)
        except CommandExecutionFailedError as e:
            await self._finish(job, JobState.ERROR, error=e.message,
                               data={"reason": e.message, "attempts": e.attempts})
        except asyncio.CancelledError:
            logger.warning("job_task_cancelled", job_id=job_id)
            raise
        except Exception as e:
            # 任何意外都必须落到终态，不能让 job 永远停在 running
            logger.exception("job_crashed", job_id=job_id)
            await self._finish(job, JobState.ERROR, error=str(e),
                               data={"reason": f"{type(e).__name__}: {e}"})
        finally:
            self._live.pop(job_id, None)

    async def _capture(self, job: _LiveJob) -> list[Path] | None:
        """依次尝试候选命令。返回页面文件；被取消时返回 None；全部失败抛 CommandExecutionFailedError。"""
        candidates = plan_commands(
            job.manifest.params, job.run_dir,
            scanimage_bin=self._config.scanimage_bin,
            scanadf_bin=self._config.scanadf_bin,
        )
        attempts: list[dict[str, Any]] = []
        pages: list[Path] = []
        for n, cand in enumerate(candidates, start=1):
            if job.stopped:
                return None
            async with job.lock:
                await self._event(job, JobEventType.SCANNER_EXEC, {
                    "attempt": n, "tool": cand.tool, "bin": cand.executable, "args": cand.args,
                })
            outcome = await self._exec(job, cand)
            if job.stopped:
                return None

            pages = collect_page_files(job.run_dir, cand.output_format)
            if outcome.ok and pages:
                logger.info("scanner_succeeded", job_id=job.manifest.job_id,
                            tool=cand.tool, pages=len(pages))
                return pages

            detail = outcome.detail() if not outcome.ok else {"error": "no pages produced"}
            attempt = {
                "attempt": n, "tool": cand.tool, "bin": cand.executable, **detail,
                "stderr_tail": await tail_text_file(job.run_dir / STDERR_LOG, LOG_TAIL_BYTES),
                "stdout_tail": await tail_text_file(job.run_dir / STDOUT_LOG, LOG_TAIL_BYTES),
            }
            attempts.append(attempt)
            last = n == len(candidates)
            logger.warning("scanner_attempt_failed", job_id=job.manifest.job_id,
                           tool=cand.tool, attempt=n, last=last, **detail)
            async with job.lock:
                await self._event(
                    job,
                    JobEventType.SCANNER_FAILED if last else JobEventType.SCANNER_PRIMARY_FAILED,
                    attempt,
                )
            if not last:
                await stash_attempt(job.run_dir, n, pages)

        # 最后一次尝试残留的页面保留在原处，记录进 manifest 供事后检查
        if pages:
            await self._record_pages(job, pages, announce=False)
        raise CommandExecutionFailedError(
            f"all {len(candidates)} scanner attempts failed", attempts=attempts)

    async def _exec(self, job: _LiveJob, cand: CommandCandidate) -> CommandOutcome:
        """执行采集命令，stdout/stderr 写入 run_dir 日志。无超时，依赖取消终止。"""
        job_id = job.manifest.job_id
        async with aiofiles.open(job.run_dir / STDOUT_LOG, "wb") as out, \
                aiofiles.open(job.run_dir / STDERR_LOG, "wb") as err:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *cand.argv,
                    stdin=asyncio.subprocess.DEVNULL, stdout=out.fileno(), stderr=err.fileno(),
                    cwd=str(job.run_dir),
                )
            except OSError as e:
                return CommandOutcome(argv=cand.argv, returncode=None, error=f"spawn failed: {e}")

            with self.registry.track(job_id, proc):
                # 启动期间到达的取消: 进程登记前 terminate() 找不到它
                if job.stopped and proc.returncode is None:
                    proc.terminate()
                    logger.info("process_terminated_after_spawn", job_id=job_id, pid=proc.pid)
                try:
                    returncode = await proc.wait()
                except asyncio.CancelledError:
                    if proc.returncode is None:
                        proc.kill()
                        await proc.wait()
                    raise
        return CommandOutcome(argv=cand.argv, returncode=returncode)

    async def _capture_mock(self, job: _LiveJob) -> list[Path] | None:
        fmt = job.manifest.params.effective_format
        pages: list[Path] = []
        for i in range(1, max(1, self._config.scan_mock_pages) + 1):
            if job.stopped:
                return None
            path = job.run_dir / f"page_{i:04d}.{fmt.extension}"
            async with aiofiles.open(path, "wb") as f:
                await f.write(f"MOCK_{fmt.value.upper()}_PAGE_{i}".encode())
            pages.append(path)
        return pages

    async def _record_pages(self, job: _LiveJob, pages: list[Path], announce: bool = True) -> None:
        records = []
        for i, path in enumerate(pages, start=1):
            records.append(PageRecord(
                index=i, path=str(path), sha256=await sha256_file(path),
                mime_type=mime_type_for(path),
            ))
        async with job.lock:
            if job.stopped:
                return
            job.manifest.pages = records
            await self._save(job)
            if announce:
                for r in records:
                    await self._event(job, JobEventType.PAGE_CAPTURED,
                                      {"index": r.index, "path": r.path, "sha256": r.sha256})

    async def _assemble(self, job: _LiveJob, pages: list[Path]) -> None:
        await self._record_pages(job, pages)
        params = job.manifest.params
        policy = params.doc_break_policy
        if is_unsupported_policy(policy):
            logger.warning("break_policy_unsupported", job_id=job.manifest.job_id,
                           policy=policy.type.value)
            async with job.lock:
                await self._event(job, JobEventType.BREAK_POLICY_UNSUPPORTED, {
                    "type": policy.type.value, "applied": "none",
                })

        by_index = {r.index: Path(r.path) for r in job.manifest.pages}
        groups = segment_pages(sorted(by_index), policy)
        fmt = params.effective_format
        for doc_index, group in enumerate(groups, start=1):
            if job.stopped:
                return
            dest = job.run_dir / document_filename(doc_index, fmt)
            group_paths = [by_index[i] for i in group]
            if self._config.scan_mock:
                outcome = await self.assembler.concatenate(group_paths, dest)
            else:
                outcome = await self.assembler.assemble(group_paths, dest)
            if outcome is None:
                continue
            record = DocumentRecord(
                index=doc_index, pages=group, path=str(outcome.path),
                sha256=await sha256_file(outcome.path),
                mime_type=mime_type_for(outcome.path), assembly=outcome.method,
            )
            async with job.lock:
                if job.stopped:
                    return
                job.manifest.documents.append(record)
                await self._save(job)
                await self._event(job, JobEventType.DOCUMENT_ASSEMBLED, {
                    "index": doc_index, "pages": group, "path": record.path,
                    "assembly": outcome.method.value,
                })
                if outcome.degraded:
                    await self._event(job, JobEventType.ASSEMBLY_DEGRADED, {
                        "index": doc_index, "pages": group, "errors": outcome.errors,
                    })

    async def _finish(self, job: _LiveJob, state: JobState, *,
                      error: str | None = None, data: dict | None = None) -> bool:
        """写入终态。job 已被取消时不做任何写入，返回 False。"""
        event_type = {
            JobState.COMPLETED: JobEventType.JOB_COMPLETED,
            JobState.ERROR: JobEventType.JOB_ERROR,
        }[state]
        async with job.lock:
            if job.stopped:
                return False
            job.manifest.state = state
            job.manifest.error = error
            await self._save(job)
            payload = {"pages": len(job.manifest.pages), "documents": len(job.manifest.documents)}
            payload.update(data or {})
            await self._event(job, event_type, payload)
        logger.info("job_finished", job_id=job.manifest.job_id, state=state.value,
                    pages=len(job.manifest.pages), documents=len(job.manifest.documents))
        return True

    async def _remember_device(self, device_id: str | None) -> None:
        if not device_id or not self._config.persist_last_used_device:
            return
        try:
            await self.last_used.save(device_id)
        except OSError as e:
            logger.warning("last_used_device_save_failed", device_id=device_id, error=str(e))

    async def _save(self, job: _LiveJob) -> None:
        job.manifest.updated_at = utcnow_iso()
        await self.store.write_manifest(job.run_dir, job.manifest)

    async def _event(self, job: _LiveJob, event_type: JobEventType, data: dict | None = None) -> None:
        await self.store.append_event(job.run_dir, JobEvent(type=event_type.value, data=data or {}))

    # ───────────────────────── 取消 / 查询 ─────────────────────────

    def _locate(self, job_id: str, base_dir: Path | str | None = None) -> Path:
        """
        job_id → run_dir。执行中的 job 直接取内存记录；
        其余在 base_dir (tmp_dir 启动的 job) 或 inbox 下查找，不保留已结束 job 的索引。
        """
        validate_job_id(job_id)
        job = self._live.get(job_id)
        if job is not None:
            return job.run_dir
        if base_dir:
            return resolve_job_dir(Path(base_dir).expanduser(), job_id)
        return self.store.job_dir(job_id)

    async def cancel_job(self, job_id: str, base_dir: Path | str | None = None) -> CancelResult:
        """
        取消 job。

        - job_id 非法 → InvalidJobIdError
        - manifest 不存在 (含刚分配尚未写入) → JobNotFoundError
        - 已是 cancelled → JobAlreadyTerminalError
        - 其余状态 (running / completed / error) → cancelled，job_cancelled 仅写一次
        """
        run_dir = self._locate(job_id, base_dir)
        job = self._live.get(job_id)
        if job is not None:
            async with job.lock:
                return await self._cancel(job, terminate=True)

        async with self._cancel_lock:
            job = self._live.get(job_id)
            if job is not None:
                async with job.lock:
                    return await self._cancel(job, terminate=True)
            manifest = await self.store.read_manifest(run_dir)
            if manifest is None:
                raise JobNotFoundError(f"job {job_id} not found")
            return await self._cancel(_LiveJob(manifest=manifest, run_dir=run_dir), terminate=False)

    async def _cancel(self, job: _LiveJob, terminate: bool) -> CancelResult:
        job_id = job.manifest.job_id
        previous = job.manifest.state
        if previous == JobState.CANCELLED:
            raise JobAlreadyTerminalError(f"job {job_id} is already cancelled")

        terminated = self.registry.terminate(job_id) if terminate else False
        job.manifest.state = JobState.CANCELLED
        await self._save(job)
        await self._event(job, JobEventType.JOB_CANCELLED, {
            "previous_state": previous.value, "process_terminated": terminated,
        })
        logger.info("job_cancelled", job_id=job_id, previous_state=previous.value,
                    process_terminated=terminated)
        return CancelResult(job_id=job_id, previous_state=previous, process_terminated=terminated)

    async def get_job_status(self, job_id: str, base_dir: Path | str | None = None) -> JobStatus:
        """除 job_id 非法外从不抛出；manifest 不存在时返回 unknown。"""
        run_dir = self._locate(job_id, base_dir)
        job = self._live.get(job_id)
        manifest = job.manifest if job is not None else await self.store.read_manifest(run_dir)
        if manifest is None:
            return JobStatus(job_id=job_id, state=UNKNOWN_STATE, run_dir=str(run_dir),
                             error="manifest not found")
        return JobStatus(
            job_id=manifest.job_id,
            state=manifest.state.value,
            pages=len(manifest.pages),
            documents=len(manifest.documents),
            run_dir=str(run_dir),
            device_id=manifest.device_id,
            error=manifest.error,
        )

    async def list_jobs(self, limit: int = 20, state: str | None = None,
                        base_dir: Path | str | None = None) -> list[JobSummary]:
        return await self.store.list_jobs(limit=limit, state=state, base_dir=base_dir)

    # ───────────────────────── 产物 ─────────────────────────

    async def get_manifest(self, job_id: str, base_dir: Path | str | None = None) -> JobManifest:
        manifest = await self.store.read_manifest(self._locate(job_id, base_dir))
        if manifest is None:
            raise JobNotFoundError(f"job {job_id} not found")
        return manifest

    async def get_events(self, job_id: str, base_dir: Path | str | None = None) -> list[JobEvent]:
        run_dir = self._locate(job_id, base_dir)
        if not run_dir.is_dir():
            raise JobNotFoundError(f"job {job_id} not found")
        return await self.store.read_events(run_dir)

    async def page_path(self, job_id: str, index: int,
                        base_dir: Path | str | None = None) -> PageRecord:
        manifest = await self.get_manifest(job_id, base_dir)
        for page in manifest.pages:
            if page.index == index and Path(page.path).is_file():
                return page
        raise JobNotFoundError(f"page {index} of job {job_id} not found")

    async def document_path(self, job_id: str, index: int,
                            base_dir: Path | str | None = None) -> DocumentRecord:
        manifest = await self.get_manifest(job_id, base_dir)
        for doc in manifest.documents:
            if doc.index == index and Path(doc.path).is_file():
                return doc
        raise JobNotFoundError(f"document {index} of job {job_id} not found")


def collect_page_files(run_dir: Path, fmt: OutputFormat) -> list[Path]:
    """run_dir 下本次输出格式的页面文件，按页号 (即采集顺序) 排序。"""
    found = []
    for entry in run_dir.iterdir():
        m = _PAGE_FILE.match(entry.name)
        if m and entry.is_file() and m.group(2) == fmt.extension:
            found.append((int(m.group(1)), entry))
    return [p for _, p in sorted(found)]


async def stash_attempt(run_dir: Path, attempt: int, pages: list[Path]) -> Path:
    """把失败尝试的残留页面与日志移到 attempt_<n>/，下一个候选从干净目录开始。"""
    target = run_dir / f"attempt_{attempt}"
    await aiofiles.os.makedirs(target, exist_ok=True)
    leftovers = [p for p in run_dir.iterdir() if _PAGE_FILE.match(p.name) and p.is_file()]
    logs = [run_dir / name for name in (STDOUT_LOG, STDERR_LOG)]
    for path in {*pages, *leftovers, *logs}:
        # 源与目标同在 run_dir 下
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.replace(path, target / path.name)
    return target


def mime_type_for(path: Path | str) -> str:
    fmt = OutputFormat.from_suffix(Path(path).suffix)
    return fmt.mime_type if fmt else "application/octet-stream"
