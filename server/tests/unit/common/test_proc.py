"""外部命令执行测试。"""
import pytest
from docscan.common.proc import describe_exit, run_command


def test_describe_exit():
    assert describe_exit(0) == {"exit_code": 0}
    assert describe_exit(7) == {"exit_code": 7}
    assert describe_exit(-15) == {"signal": "SIGTERM"}
    assert describe_exit(None, "spawn failed: x") == {"error": "spawn failed: x"}


@pytest.mark.asyncio
async def test_run_command_collects_output(tools):
    outcome = await run_command([tools.failing])
    assert not outcome.ok
    assert outcome.returncode == 9
    assert "device busy" in outcome.stderr


@pytest.mark.asyncio
async def test_run_command_spawn_failure(tools):
    outcome = await run_command([tools.missing])
    assert not outcome.ok
    assert outcome.error.startswith("spawn failed")
    assert outcome.detail() == {"error": outcome.error}


@pytest.mark.asyncio
async def test_run_command_timeout_kills(tools):
    outcome = await run_command([tools.sleeper], timeout=0.2)
    assert not outcome.ok
    assert "timeout" in outcome.error
    assert outcome.returncode is not None


@pytest.mark.asyncio
async def test_run_command_exec_format_error(tools):
    outcome = await run_command([tools.garbage, "-L"])
    assert not outcome.ok
    assert outcome.returncode is None
    assert outcome.error.startswith("spawn failed")
