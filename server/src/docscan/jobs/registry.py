"""活跃子进程登记表。仅在采集命令执行期间持有条目，由 JobSupervisor 实例拥有。"""
from __future__ import annotations
import asyncio
from contextlib import contextmanager
from typing import Iterator
import structlog

logger = structlog.get_logger()


class ProcessRegistry:
    def __init__(self) -> None:
        self._procs: dict[str, asyncio.subprocess.Process] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._procs

    def __len__(self) -> int:
        return len(self._procs)

    def get(self, job_id: str) -> asyncio.subprocess.Process | None:
        return self._procs.get(job_id)

    @contextmanager
    def track(self, job_id: str, proc: asyncio.subprocess.Process) -> Iterator[None]:
        """登记期间的任何退出路径 (成功 / 异常 / 取消) 都会移除条目。"""
        self._procs[job_id] = proc
        try:
            yield
        finally:
            if self._procs.get(job_id) is proc:
                del self._procs[job_id]

    def terminate(self, job_id: str) -> bool:
        """向活跃进程发送 SIGTERM。返回是否确实发出了信号。"""
        proc = self._procs.get(job_id)
        if proc is None or proc.returncode is not None:
            return False
        try:
            proc.terminate()
        except ProcessLookupError:
            return False
        logger.info("process_terminated", job_id=job_id, pid=proc.pid)
        return True
