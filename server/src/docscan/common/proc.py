"""外部命令执行 (短命令: 枚举 / 探测 / 合并)。采集类长命令由 JobSupervisor 自行托管。"""
from __future__ import annotations
import asyncio
import signal
from dataclasses import dataclass
import structlog

logger = structlog.get_logger()


@dataclass
class CommandOutcome:
    argv: list[str]
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None  # 无法启动 / 超时

    @property
    def ok(self) -> bool:
        return self.error is None and self.returncode == 0

    def detail(self) -> dict:
        return describe_exit(self.returncode, self.error)


def describe_exit(returncode: int | None, error: str | None = None) -> dict:
    """退出状态 → 结构化描述。负返回码表示被信号终止。"""
    if error:
        return {"error": error}
    if returncode is None:
        return {"error": "no exit status"}
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return {"signal": name}
    return {"exit_code": returncode}


async def run_command(argv: list[str], timeout: float | None = None) -> CommandOutcome:
    """执行命令并收集输出。启动失败与超时都以 CommandOutcome.error 返回，不抛出。"""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.debug("command_spawn_failed", bin=argv[0], error=str(e))
        return CommandOutcome(argv=argv, returncode=None, error=f"spawn failed: {e}")

    try:
        stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("command_timeout", bin=argv[0], timeout=timeout)
        return CommandOutcome(argv=argv, returncode=proc.returncode, error=f"timeout after {timeout}s")
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        raise

    return CommandOutcome(
        argv=argv,
        returncode=proc.returncode,
        stdout=stdout_b.decode("utf-8", errors="replace"),
        stderr=stderr_b.decode("utf-8", errors="replace"),
    )
