"""FastAPI 依赖注入。lifespan 中 override 这些 sentinel 函数。"""
from __future__ import annotations
from typing import Annotated
from fastapi import Depends
from docscan.jobs.supervisor import JobSupervisor


async def get_supervisor() -> JobSupervisor:
    """占位: 由 main.py lifespan 通过 dependency_overrides 替换。"""
    raise RuntimeError("JobSupervisor not initialized. Check lifespan setup.")


Supervisor = Annotated[JobSupervisor, Depends(get_supervisor)]
